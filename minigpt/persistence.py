# Model State Persistence
# =======================
#
# Export and import of a trained model together with its tokenizer.
#
# Two on-disk formats share the same metadata:
# - a single JSON document {config, tokenizer, weights, timestamp}, where each
#   weight is {shape, data} with data flattened in row-major order
# - a checkpoint directory with the weights in model.safetensors (keys are the
#   trainable-variable names) and everything else in model_state.json
#
# Restoring is tolerant: a saved tensor whose name is unknown to the model or
# whose shape differs is skipped with a RestoreMismatchWarning, and the rest
# of the state is still applied.

import json
import logging
import time
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import torch
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from safetensors.torch import load_file, save_file

from .configuration import ModelConfig
from .errors import RestoreMismatchWarning
from .model import TransformerModel
from .tokenizer import CharTokenizer

logger = logging.getLogger(__name__)

WEIGHTS_FILENAME = "model.safetensors"
STATE_FILENAME = "model_state.json"


def _now_ms() -> int:
    return int(time.time() * 1000)


class SerializedTokenizer(BaseModel):
    """``{charToId, idToChar, vocabSize}`` table; missing maps mean an empty vocabulary."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    char_to_id: Optional[Dict[str, int]] = None
    id_to_char: Optional[Dict[int, str]] = None
    vocab_size: int = 0

    @classmethod
    def from_tokenizer(cls, tokenizer: CharTokenizer) -> "SerializedTokenizer":
        return cls.model_validate(tokenizer.to_serialized())


class SerializedWeight(BaseModel):
    shape: List[int]
    data: List[float]

    @model_validator(mode="after")
    def _check_size(self) -> "SerializedWeight":
        expected = 1
        for dim in self.shape:
            expected *= dim
        if len(self.data) != expected:
            raise ValueError(f"weight data has {len(self.data)} values but shape {self.shape} needs {expected}")
        return self

    @classmethod
    def from_tensor(cls, tensor: torch.Tensor) -> "SerializedWeight":
        values = tensor.detach().cpu()
        return cls(shape=list(values.shape), data=values.reshape(-1).tolist())

    def to_tensor(self, dtype: torch.dtype = torch.float32) -> torch.Tensor:
        return torch.tensor(self.data, dtype=dtype).reshape(self.shape)


class StateMetadata(BaseModel):
    """Everything in a saved state except the weight values."""

    config: ModelConfig
    tokenizer: SerializedTokenizer = Field(default_factory=SerializedTokenizer)
    timestamp: int = Field(default_factory=_now_ms, description="Export time in epoch milliseconds")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SavedModelState(StateMetadata):
    weights: Dict[str, SerializedWeight] = Field(default_factory=dict)


@dataclass
class RestoreReport:
    """Outcome of applying saved tensors to a model."""

    restored: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)     # saved, but unknown to the model
    mismatched: List[str] = field(default_factory=list)  # saved with a different shape
    untouched: List[str] = field(default_factory=list)   # model variables absent from the state

    @property
    def complete(self) -> bool:
        return not (self.missing or self.mismatched or self.untouched)


def export_model_state(model: TransformerModel, tokenizer: CharTokenizer) -> SavedModelState:
    """Snapshot every trainable variable, the tokenizer table and the config."""
    weights = {
        name: SerializedWeight.from_tensor(param)
        for name, param in model.trainable_variables().items()
    }
    state = SavedModelState(
        config=model.config,
        tokenizer=SerializedTokenizer.from_tokenizer(tokenizer),
        weights=weights,
    )
    logger.info(f"Exported model state with {len(weights)} tensors")
    return state


def restore_tensors(model: TransformerModel, tensors: Mapping[str, torch.Tensor]) -> RestoreReport:
    """Copy named tensors into the model's trainable variables in place.

    Unknown names and shape mismatches are skipped with a
    RestoreMismatchWarning; they never raise.
    """
    variables = model.trainable_variables()
    report = RestoreReport()

    for name, tensor in tensors.items():
        param = variables.get(name)
        if param is None:
            message = f"Saved tensor '{name}' does not exist in the model; skipped"
            report.missing.append(name)
        elif tuple(param.shape) != tuple(tensor.shape):
            message = (
                f"Shape mismatch for '{name}': model {tuple(param.shape)}, "
                f"saved {tuple(tensor.shape)}; skipped"
            )
            report.mismatched.append(name)
        else:
            with torch.no_grad():
                param.copy_(tensor.to(device=param.device, dtype=param.dtype))
            report.restored.append(name)
            continue

        logger.warning(message)
        warnings.warn(message, RestoreMismatchWarning, stacklevel=3)

    report.untouched = [name for name in variables if name not in tensors]
    if report.untouched:
        logger.warning(f"{len(report.untouched)} model tensors were not in the saved state: {report.untouched}")

    logger.info(
        f"Restored {len(report.restored)}/{len(variables)} tensors "
        f"({len(report.missing)} missing, {len(report.mismatched)} mismatched)"
    )
    return report


def import_model_state(
    model: TransformerModel,
    state: Union[SavedModelState, Mapping[str, Any]],
) -> RestoreReport:
    """Apply a saved state's weights to ``model``.

    Args:
        model: Model whose trainable variables are overwritten
        state: SavedModelState or its dict form (camelCase keys accepted)

    Returns:
        RestoreReport listing restored, missing and mismatched names
    """
    if not isinstance(state, SavedModelState):
        state = SavedModelState.model_validate(state)

    variables = model.trainable_variables()
    tensors = {}
    for name, weight in state.weights.items():
        dtype = variables[name].dtype if name in variables else torch.float32
        tensors[name] = weight.to_tensor(dtype)
    return restore_tensors(model, tensors)


def import_tokenizer(state: Union[StateMetadata, Mapping[str, Any]]) -> CharTokenizer:
    """Rebuild the tokenizer stored in a saved state."""
    if isinstance(state, StateMetadata):
        table = state.tokenizer.model_dump(by_alias=True)
    else:
        table = state.get("tokenizer")
    return CharTokenizer.from_serialized(table)


def build_model_from_state(
    state: Union[SavedModelState, Mapping[str, Any]],
) -> Tuple[TransformerModel, CharTokenizer, RestoreReport]:
    """Create a model from a saved state's config and load its weights into it."""
    if not isinstance(state, SavedModelState):
        state = SavedModelState.model_validate(state)

    model = TransformerModel(state.config)
    report = import_model_state(model, state)
    model.eval()
    return model, import_tokenizer(state), report


def save_state(state: SavedModelState, path: Union[str, Path]) -> Path:
    """Write a saved state as one JSON document."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(state.model_dump_json(by_alias=True), encoding="utf-8")
    logger.info(f"Saved model state to {path}")
    return path


def load_state(path: Union[str, Path]) -> SavedModelState:
    """Read a JSON document written by save_state."""
    path = Path(path)
    state = SavedModelState.model_validate_json(path.read_text(encoding="utf-8"))
    logger.info(f"Loaded model state from {path} ({len(state.weights)} tensors)")
    return state


def save_checkpoint(
    model: TransformerModel,
    tokenizer: CharTokenizer,
    checkpoint_dir: Union[str, Path],
) -> Path:
    """Save weights with safetensors and metadata as JSON.

    Args:
        model: Model to save
        tokenizer: Tokenizer saved alongside the weights
        checkpoint_dir: Directory to write into (created if needed)

    Returns:
        Path to the checkpoint directory
    """
    checkpoint_dir = Path(checkpoint_dir)
    checkpoint_dir.mkdir(parents=True, exist_ok=True)

    tensors = {
        name: param.detach().cpu().contiguous()
        for name, param in model.trainable_variables().items()
    }
    save_file(tensors, checkpoint_dir / WEIGHTS_FILENAME, metadata={"format": "pt"})

    metadata = StateMetadata(config=model.config, tokenizer=SerializedTokenizer.from_tokenizer(tokenizer))
    with open(checkpoint_dir / STATE_FILENAME, "w", encoding="utf-8") as f:
        json.dump(metadata.to_dict(), f, indent=2)

    logger.info(f"Saved checkpoint with {len(tensors)} tensors to {checkpoint_dir}")
    return checkpoint_dir


def load_checkpoint(
    checkpoint_dir: Union[str, Path],
    model: Optional[TransformerModel] = None,
) -> Tuple[TransformerModel, CharTokenizer, RestoreReport]:
    """Load a checkpoint directory written by save_checkpoint.

    Args:
        checkpoint_dir: Directory holding model.safetensors and model_state.json
        model: Optional model to load into; built from the saved config if None

    Returns:
        Tuple of (model, tokenizer, restore report)
    """
    checkpoint_dir = Path(checkpoint_dir)
    with open(checkpoint_dir / STATE_FILENAME, "r", encoding="utf-8") as f:
        metadata = StateMetadata.model_validate(json.load(f))

    if model is None:
        model = TransformerModel(metadata.config)

    tensors = load_file(checkpoint_dir / WEIGHTS_FILENAME, device="cpu")
    report = restore_tensors(model, tensors)
    model.eval()
    return model, import_tokenizer(metadata), report
