"""
MiniGPT - a small decoder-only character transformer.

Everything needed to play with a GPT-style model on a single text: build a
character vocabulary, train a causal transformer on sliding windows of the
text, sample from it with temperature/top-k and look at its attention.

Modules:
- tokenizer.py: Character vocabulary with reserved PAD/UNK ids
- functional.py: Positional encoding, causal mask, GELU, dense projection
- layers.py: Attention, feed-forward, layer norm and transformer blocks
- model.py: TransformerModel with next-token prediction and attention introspection
- dataset.py / train.py: Windowed dataset and Adam training loop
- generator.py: Autoregressive temperature/top-k sampling
- persistence.py: JSON and safetensors model state
- session.py: Stateful owner of a model/tokenizer pair
- cli.py: Command-line entry point
"""

__version__ = "1.0.0"

from .configuration import MODEL_PRESETS, GenerationConfig, ModelConfig, TrainingConfig
from .errors import (
    ConfigurationError,
    DatasetTooSmallError,
    MiniGPTError,
    OperationCancelledError,
    RestoreMismatchWarning,
    RuntimeComputationError,
    SessionBusyError,
)
from .tokenizer import CharTokenizer
from .model import AttentionState, ModelOutput, Prediction, TransformerModel
from .dataset import WindowBatch, build_dataset, count_windows, create_dataloader
from .train import TrainingEvent, TrainingHistory, iter_train, train_model, train_step
from .generator import generate_text, iter_generate, sample_from_logits
from .persistence import (
    RestoreReport,
    SavedModelState,
    export_model_state,
    import_model_state,
    import_tokenizer,
    load_checkpoint,
    load_state,
    save_checkpoint,
    save_state,
)
from .session import AttentionInspection, RunStatus, Session
from .utils import CancellationToken

__all__ = [
    "MODEL_PRESETS",
    "ModelConfig",
    "TrainingConfig",
    "GenerationConfig",
    "MiniGPTError",
    "ConfigurationError",
    "DatasetTooSmallError",
    "RuntimeComputationError",
    "OperationCancelledError",
    "SessionBusyError",
    "RestoreMismatchWarning",
    "CharTokenizer",
    "TransformerModel",
    "ModelOutput",
    "Prediction",
    "AttentionState",
    "WindowBatch",
    "build_dataset",
    "count_windows",
    "create_dataloader",
    "TrainingEvent",
    "TrainingHistory",
    "iter_train",
    "train_model",
    "train_step",
    "sample_from_logits",
    "iter_generate",
    "generate_text",
    "SavedModelState",
    "RestoreReport",
    "export_model_state",
    "import_model_state",
    "import_tokenizer",
    "save_state",
    "load_state",
    "save_checkpoint",
    "load_checkpoint",
    "Session",
    "RunStatus",
    "AttentionInspection",
    "CancellationToken",
]
