# Training Loop
# =============
#
# Mini-batch training of a TransformerModel on a single text corpus.
#
# Components:
# - create_optimizer: Adam with a fixed learning rate
# - train_step: one forward/backward/update on a batch, all-or-nothing
# - iter_train: generator that trains and yields a TrainingEvent after the
#   dataset is built, after every batch and after every epoch
# - train_model: drives iter_train, reports progress through a callback and
#   returns the per-epoch losses

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional

import torch
import torch.nn.functional as F

from .configuration import TrainingConfig
from .constants import LOG_EVERY_N_STEPS
from .dataset import build_dataset, create_dataloader
from .errors import ConfigurationError, MiniGPTError, OperationCancelledError, RuntimeComputationError
from .model import TransformerModel
from .tokenizer import CharTokenizer
from .utils import CancellationToken

logger = logging.getLogger(__name__)

EVENT_DATASET = "dataset"
EVENT_BATCH = "batch"
EVENT_EPOCH = "epoch"


@dataclass
class TrainingEvent:
    """Progress report yielded by iter_train."""

    kind: str                 # EVENT_DATASET, EVENT_BATCH or EVENT_EPOCH
    epoch: int = 0            # 1-based, 0 for EVENT_DATASET
    epochs: int = 0
    step: int = 0             # 1-based batch index inside the epoch
    num_batches: int = 0
    num_samples: int = 0
    loss: float = 0.0         # batch loss, or mean batch loss for EVENT_EPOCH


@dataclass
class TrainingHistory:
    num_samples: int = 0
    num_batches: int = 0
    epoch_losses: List[float] = field(default_factory=list)

    @property
    def final_loss(self) -> Optional[float]:
        return self.epoch_losses[-1] if self.epoch_losses else None


def create_optimizer(model: TransformerModel, learning_rate: float) -> torch.optim.Optimizer:
    """Adam over every trainable variable of the model."""
    return torch.optim.Adam(model.trainable_variables().values(), lr=learning_rate)


def compute_loss(logits: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
    """Mean cross-entropy over every batch position.

    Args:
        logits: [batch, seq, vocab]
        targets: [batch, seq] target ids

    Returns:
        Scalar loss tensor
    """
    vocab_size = logits.size(-1)
    return F.cross_entropy(logits.reshape(-1, vocab_size), targets.reshape(-1).to(logits.device))


def train_step(
    model: TransformerModel,
    optimizer: torch.optim.Optimizer,
    inputs: torch.Tensor,
    targets: torch.Tensor,
) -> float:
    """Perform a single optimizer step.

    Either the whole update is applied or none of it: a failure in the
    forward or backward pass clears the gradients and raises before
    optimizer.step() is called.

    Args:
        model: Model to train
        optimizer: Optimizer over the model's trainable variables
        inputs: Input token ids [batch, seq]
        targets: Target token ids [batch, seq]

    Returns:
        Loss value of the batch before the update

    Raises:
        RuntimeComputationError: If the forward or backward pass fails
    """
    optimizer.zero_grad()
    try:
        output = model(inputs, training=True)
        loss = compute_loss(output.logits, targets)
        if not torch.isfinite(loss):
            raise RuntimeComputationError(f"Loss is not finite ({loss.item()})")
        loss.backward()
    except RuntimeComputationError:
        optimizer.zero_grad()
        raise
    except (RuntimeError, ValueError, IndexError) as e:
        optimizer.zero_grad()
        raise RuntimeComputationError(f"Training step failed: {e}") from e

    optimizer.step()
    return loss.item()


def iter_train(
    model: TransformerModel,
    tokenizer: CharTokenizer,
    corpus: str,
    config: TrainingConfig,
    cancel_token: Optional[CancellationToken] = None,
    optimizer: Optional[torch.optim.Optimizer] = None,
) -> Iterator[TrainingEvent]:
    """Train ``model`` on ``corpus``, yielding progress as it goes.

    Batches are taken in text order without shuffling. The cancellation
    token is checked between batches, so a cancelled run stops after its
    last completed update.

    Raises:
        ConfigurationError: If config.seq_len exceeds the model's max_len
        DatasetTooSmallError: If the corpus yields no full batch
        RuntimeComputationError: If a training step fails
        OperationCancelledError: If the token is cancelled
    """
    if config.seq_len > model.config.max_len:
        raise ConfigurationError(
            f"seq_len ({config.seq_len}) exceeds the model's max_len ({model.config.max_len})"
        )

    windows = build_dataset(corpus, tokenizer, config.seq_len, config.batch_size)
    yield TrainingEvent(
        kind=EVENT_DATASET,
        epochs=config.epochs,
        num_batches=windows.num_batches,
        num_samples=windows.num_samples,
    )

    loader = create_dataloader(windows, config.batch_size)
    if optimizer is None:
        optimizer = create_optimizer(model, config.learning_rate)

    model.train()
    try:
        for epoch in range(1, config.epochs + 1):
            epoch_start_time = time.time()
            epoch_loss = 0.0

            for step, (inputs, targets) in enumerate(loader, start=1):
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled("training")

                loss = train_step(model, optimizer, inputs, targets)
                epoch_loss += loss

                if step % LOG_EVERY_N_STEPS == 0:
                    logger.debug(f"Epoch {epoch}, step {step}/{windows.num_batches}: loss={loss:.4f}")

                yield TrainingEvent(
                    kind=EVENT_BATCH,
                    epoch=epoch,
                    epochs=config.epochs,
                    step=step,
                    num_batches=windows.num_batches,
                    num_samples=windows.num_samples,
                    loss=loss,
                )

            avg_loss = epoch_loss / windows.num_batches
            epoch_time = time.time() - epoch_start_time
            logger.info(
                f"Epoch {epoch}/{config.epochs} completed. Average loss: {avg_loss:.4f}, "
                f"Time: {epoch_time:.2f}s"
            )
            yield TrainingEvent(
                kind=EVENT_EPOCH,
                epoch=epoch,
                epochs=config.epochs,
                step=windows.num_batches,
                num_batches=windows.num_batches,
                num_samples=windows.num_samples,
                loss=avg_loss,
            )
    finally:
        model.eval()


def train_model(
    model: TransformerModel,
    tokenizer: CharTokenizer,
    corpus: str,
    config: TrainingConfig,
    on_log: Optional[Callable[[str], None]] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> TrainingHistory:
    """Train ``model`` and report progress as plain-text messages.

    Args:
        model: Model to train in place
        tokenizer: Tokenizer matching the model's vocabulary
        corpus: Training text
        config: Batch size, epochs, learning rate and window length
        on_log: Optional callback receiving one message per event
        cancel_token: Optional token checked between batches

    Returns:
        TrainingHistory with the mean loss of every epoch

    Raises:
        MiniGPTError: Any failure is reported as "Error: <message>" and re-raised
    """
    def log(message: str) -> None:
        if on_log is not None:
            on_log(message)

    history = TrainingHistory()
    log(f"Preparing dataset from {len(corpus)} characters...")

    try:
        for event in iter_train(model, tokenizer, corpus, config, cancel_token=cancel_token):
            if event.kind == EVENT_DATASET:
                history.num_samples = event.num_samples
                history.num_batches = event.num_batches
                log(f"Dataset created. Samples: {event.num_samples}. Batches per epoch: {event.num_batches}")
            elif event.kind == EVENT_EPOCH:
                history.epoch_losses.append(event.loss)
                log(f"Epoch {event.epoch}/{event.epochs} - Loss: {event.loss:.4f}")
    except OperationCancelledError:
        log("Training cancelled.")
        raise
    except MiniGPTError as e:
        logger.error(f"Training failed: {e}")
        log(f"Error: {e}")
        raise

    log("Training complete. Weights updated.")
    return history
