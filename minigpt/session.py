# Session
# =======
#
# Owner of the current model and tokenizer.
#
# A Session ties the library pieces together the way an interactive front-end
# uses them: build a model for a corpus, train it, sample from it, look at its
# attention, save and restore it. It tracks a RunStatus, refuses to start a
# second run while one is active and can cancel the active run between
# batches or tokens.

import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator, List, Mapping, Optional, Union

import torch

from .configuration import GenerationConfig, ModelConfig, TrainingConfig
from .constants import DEFAULT_CORPUS
from .errors import MiniGPTError, SessionBusyError
from .generator import generate_text, iter_generate
from .model import AttentionState, TransformerModel
from .persistence import (
    RestoreReport,
    SavedModelState,
    export_model_state,
    import_model_state,
    import_tokenizer,
    load_checkpoint,
)
from .tokenizer import CharTokenizer
from .train import TrainingHistory, train_model
from .utils import CancellationToken, set_seed

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    IDLE = "IDLE"
    INITIALIZING = "INITIALIZING"
    THINKING = "THINKING"      # single forward pass
    TRAINING = "TRAINING"
    GENERATING = "GENERATING"
    READY = "READY"


@dataclass
class AttentionInspection:
    """Next-token prediction for a text and the attention behind it."""

    text: str
    token_ids: List[int]
    predicted_id: int
    predicted_text: str
    attention: AttentionState


class Session:
    """Holds one model/tokenizer pair and runs operations on it one at a time."""

    def __init__(self) -> None:
        self.model: Optional[TransformerModel] = None
        self.tokenizer: Optional[CharTokenizer] = None
        self.status = RunStatus.IDLE
        self._cancel_token: Optional[CancellationToken] = None
        self._busy = False

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def is_ready(self) -> bool:
        return self.model is not None and self.tokenizer is not None

    def _require_model(self) -> None:
        if not self.is_ready:
            raise MiniGPTError("Session has no model; call initialize() or load_state() first")

    @contextlib.contextmanager
    def _run(self, status: RunStatus, require_model: bool = True) -> Iterator[CancellationToken]:
        if self._busy:
            raise SessionBusyError(f"Cannot start {status.value.lower()}: session is {self.status.value}")
        if require_model:
            self._require_model()

        token = CancellationToken()
        previous_status = self.status
        self._busy = True
        self._cancel_token = token
        self.status = status
        try:
            yield token
        finally:
            self._busy = False
            self._cancel_token = None
            self.status = RunStatus.READY if self.is_ready else previous_status

    def initialize(self, corpus: str = DEFAULT_CORPUS, preset: str = "tiny", seed: Optional[int] = None) -> TransformerModel:
        """Build a tokenizer from ``corpus`` and a freshly initialized model for it."""
        with self._run(RunStatus.INITIALIZING, require_model=False):
            if seed is not None:
                set_seed(seed)

            tokenizer = CharTokenizer.from_corpus(corpus)
            config = ModelConfig.from_preset(preset, tokenizer.get_vocab_size())
            model = TransformerModel(config)
            model.eval()

            self.tokenizer = tokenizer
            self.model = model
            logger.info(f"Session initialized with preset '{preset}' (vocab_size={tokenizer.get_vocab_size()})")
        return model

    def train(
        self,
        corpus: str,
        config: Optional[TrainingConfig] = None,
        on_log: Optional[Callable[[str], None]] = None,
    ) -> TrainingHistory:
        """Train the current model on ``corpus``."""
        config = config or TrainingConfig()
        with self._run(RunStatus.TRAINING) as token:
            return train_model(self.model, self.tokenizer, corpus, config, on_log=on_log, cancel_token=token)

    def generate(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
        on_step: Optional[Callable[[str], None]] = None,
        generator: Optional[torch.Generator] = None,
    ) -> str:
        """Sample a continuation of ``prompt``."""
        config = config or GenerationConfig()
        with self._run(RunStatus.GENERATING) as token:
            return generate_text(
                self.model, self.tokenizer, prompt, config,
                on_step=on_step, generator=generator, cancel_token=token,
            )

    def stream(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
        generator: Optional[torch.Generator] = None,
    ) -> Iterator[str]:
        """Like generate(), but yields each token's text as it is sampled.

        The session stays busy until the iterator is exhausted or closed.
        """
        config = config or GenerationConfig()
        with self._run(RunStatus.GENERATING) as token:
            yield from iter_generate(
                self.model, self.tokenizer, prompt, config,
                generator=generator, cancel_token=token,
            )

    def predict(self, text: str) -> AttentionInspection:
        """Predict the character after ``text`` and capture the last block's attention."""
        with self._run(RunStatus.THINKING):
            token_ids = self.tokenizer.encode(text)
            prediction = self.model.predict_next(token_ids)
            return AttentionInspection(
                text=text,
                token_ids=token_ids,
                predicted_id=prediction.predicted_id,
                predicted_text=self.tokenizer.decode([prediction.predicted_id]),
                attention=prediction.attention,
            )

    def attention_map(self, text: str, head: int = 0) -> List[List[float]]:
        """[seq, seq] attention weights of one head for ``text``."""
        inspection = self.predict(text)
        if inspection.attention.seq_len == 0:
            return []
        return inspection.attention.head(head)

    def cancel(self) -> bool:
        """Ask the active run to stop at its next batch or token.

        Returns:
            True if a run was active
        """
        if self._cancel_token is None:
            return False
        logger.info(f"Cancelling active {self.status.value.lower()} run")
        self._cancel_token.cancel()
        return True

    def export_state(self) -> SavedModelState:
        self._require_model()
        return export_model_state(self.model, self.tokenizer)

    def load_state(self, state: Union[SavedModelState, Mapping[str, Any]]) -> RestoreReport:
        """Replace the tokenizer and load weights from ``state``.

        The current model is reused when its config matches the saved one;
        otherwise a new model is built from the saved config.
        """
        if not isinstance(state, SavedModelState):
            state = SavedModelState.model_validate(state)

        with self._run(RunStatus.INITIALIZING, require_model=False):
            tokenizer = import_tokenizer(state)
            if self.model is None or self.model.config != state.config:
                logger.info(
                    f"Building model from saved config "
                    f"(d_model={state.config.d_model}, num_layers={state.config.num_layers})"
                )
                model = TransformerModel(state.config)
            else:
                model = self.model

            report = import_model_state(model, state)
            model.eval()
            self.model = model
            self.tokenizer = tokenizer
        return report

    def load_checkpoint(self, checkpoint_dir: Union[str, Path]) -> RestoreReport:
        """Replace model and tokenizer with a safetensors checkpoint directory."""
        with self._run(RunStatus.INITIALIZING, require_model=False):
            model, tokenizer, report = load_checkpoint(checkpoint_dir)
            self.model = model
            self.tokenizer = tokenizer
        return report
