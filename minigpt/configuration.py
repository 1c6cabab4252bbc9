"""
Pydantic configuration for MiniGPT.

Three settings objects drive the package:
- ModelConfig: architecture of one TransformerModel (frozen once created)
- TrainingConfig: batch size, epochs, learning rate and window length of a training call
- GenerationConfig: length, temperature and top-k of a sampling call

All of them serialize with camelCase keys (``dModel``, ``numHeads``, ...), the
spelling used by the saved-state JSON format, and accept either spelling on
input.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_D_MODEL,
    DEFAULT_DROPOUT,
    DEFAULT_EPOCHS,
    DEFAULT_LEARNING_RATE,
    DEFAULT_MAX_LEN,
    DEFAULT_MAX_NEW_TOKENS,
    DEFAULT_NUM_HEADS,
    DEFAULT_NUM_LAYERS,
    DEFAULT_SEQ_LEN,
    DEFAULT_TEMPERATURE,
    DEFAULT_TOP_K,
    FFN_EXPANSION,
)
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


MODEL_PRESETS: Dict[str, Dict[str, Any]] = {
    "tiny": {
        "name": "Tiny (Playground)",
        "d_model": 64, "num_heads": 4, "num_layers": 2, "dff": 256,
        "max_len": 64, "dropout_rate": 0.1,
    },
    "small": {
        "name": "Small (Learner)",
        "d_model": 128, "num_heads": 4, "num_layers": 4, "dff": 512,
        "max_len": 128, "dropout_rate": 0.1,
    },
    "medium": {
        "name": "Medium (Heavy)",
        "d_model": 256, "num_heads": 8, "num_layers": 6, "dff": 1024,
        "max_len": 128, "dropout_rate": 0.1,
    },
}


class ModelConfig(BaseModel):
    """
    Architecture of a decoder-only character transformer.

    Field constraints reject nonsensical sizes at creation time. The
    ``d_model % num_heads`` invariant is checked by TransformerModel when the
    model is built, so that it surfaces as a ConfigurationError before any
    tensor is allocated.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    vocab_size: int = Field(..., ge=1, description="Number of token ids, reserved ids included")
    d_model: int = Field(DEFAULT_D_MODEL, ge=1, description="Embedding / hidden dimension")
    num_heads: int = Field(DEFAULT_NUM_HEADS, ge=1, description="Attention heads per block")
    dff: int = Field(..., ge=1, description="Hidden width of the feed-forward sublayer")
    num_layers: int = Field(DEFAULT_NUM_LAYERS, ge=1, description="Number of transformer blocks")
    max_len: int = Field(DEFAULT_MAX_LEN, ge=1, description="Longest context fed to the model")
    dropout_rate: float = Field(DEFAULT_DROPOUT, ge=0.0, lt=1.0, description="Dropout used while training")

    @model_validator(mode="before")
    @classmethod
    def _default_dff(cls, data: Any) -> Any:
        # dff follows d_model unless given explicitly
        if isinstance(data, dict) and data.get("dff") is None:
            d_model = data.get("d_model", data.get("dModel", DEFAULT_D_MODEL))
            if isinstance(d_model, int):
                data = {**data, "dff": FFN_EXPANSION * d_model}
        return data

    @property
    def head_dim(self) -> int:
        return self.d_model // self.num_heads

    @classmethod
    def from_preset(cls, preset: str, vocab_size: int) -> "ModelConfig":
        """
        Build a configuration from one of the named model sizes.

        Presets carry everything except the vocabulary size, which depends on
        the corpus the tokenizer was built from.
        """
        if preset not in MODEL_PRESETS:
            available = list(MODEL_PRESETS.keys())
            raise ConfigurationError(f"Invalid preset '{preset}'. Available presets: {available}")

        settings = {k: v for k, v in MODEL_PRESETS[preset].items() if k != "name"}
        logger.debug("Using preset %s (%s)", preset, MODEL_PRESETS[preset]["name"])
        return cls(vocab_size=vocab_size, **settings)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with camelCase keys."""
        return self.model_dump(by_alias=True)


class TrainingConfig(BaseModel):
    """Settings for one training call."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, validate_assignment=True)

    batch_size: int = Field(DEFAULT_BATCH_SIZE, ge=1, description="Windows per optimizer step")
    epochs: int = Field(DEFAULT_EPOCHS, ge=1, description="Full passes over the windows")
    learning_rate: float = Field(DEFAULT_LEARNING_RATE, gt=0.0, description="Fixed Adam learning rate")
    seq_len: int = Field(DEFAULT_SEQ_LEN, ge=1, description="Length of every training window")


class GenerationConfig(BaseModel):
    """Settings for one sampling call."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, validate_assignment=True)

    max_new_tokens: int = Field(DEFAULT_MAX_NEW_TOKENS, ge=0, description="Tokens to generate")
    temperature: float = Field(DEFAULT_TEMPERATURE, ge=0.0, description="Logit divisor, floored at MIN_TEMPERATURE")
    top_k: int = Field(DEFAULT_TOP_K, ge=0, description="Sample among the k best logits (0 = all)")
