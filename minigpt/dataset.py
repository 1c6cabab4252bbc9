# Dataset Construction
# ====================
#
# Sliding-window training data for next-character prediction.
#
# Components:
# - WindowBatch: all (input, target) windows of a corpus as two int64 tensors
# - count_windows: window/sample/batch arithmetic without building tensors
# - build_dataset: tokenize a corpus and cut it into shifted windows
# - create_dataloader: contiguous, unshuffled DataLoader over a WindowBatch

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import torch
from torch.utils.data import DataLoader, TensorDataset

from .errors import ConfigurationError, DatasetTooSmallError
from .tokenizer import CharTokenizer

logger = logging.getLogger(__name__)


@dataclass
class WindowBatch:
    """Input windows and their one-step-shifted targets, both [num_samples, seq_len]."""

    inputs: torch.Tensor
    targets: torch.Tensor
    batch_size: int

    @property
    def num_samples(self) -> int:
        return self.inputs.size(0)

    @property
    def seq_len(self) -> int:
        return self.inputs.size(1)

    @property
    def num_batches(self) -> int:
        return self.num_samples // self.batch_size


def count_windows(text_length: int, seq_len: int, batch_size: int) -> Tuple[int, int, int]:
    """
    Window arithmetic for a corpus of ``text_length`` token ids.

    Returns:
        Tuple of (raw windows, usable samples, batches). Raw windows are
        ``max(0, text_length - seq_len)``; usable samples are the largest
        multiple of ``batch_size`` not above that.

    Raises:
        ConfigurationError: If seq_len or batch_size is below 1
    """
    if seq_len < 1 or batch_size < 1:
        raise ConfigurationError(
            f"seq_len and batch_size must be at least 1, got seq_len={seq_len}, batch_size={batch_size}"
        )
    raw = max(0, text_length - seq_len)
    num_batches = raw // batch_size
    return raw, num_batches * batch_size, num_batches


def build_dataset(text: str, tokenizer: CharTokenizer, seq_len: int, batch_size: int) -> WindowBatch:
    """Tokenize ``text`` and cut it into training windows.

    Window i is ``ids[i:i + seq_len]`` with target ``ids[i + 1:i + seq_len + 1]``.
    Windows that do not fill a whole batch are dropped from the end.

    Args:
        text: Training corpus
        tokenizer: Tokenizer used to encode the corpus
        seq_len: Length of each window
        batch_size: Windows per batch

    Returns:
        WindowBatch holding every usable window in text order

    Raises:
        ConfigurationError: If seq_len or batch_size is below 1
        DatasetTooSmallError: If not even one full batch can be formed
    """
    ids, unknown = tokenizer.encode_with_report(text)
    if unknown:
        logger.warning(f"{unknown} corpus characters are not in the vocabulary and were encoded as UNK")

    raw, num_samples, num_batches = count_windows(len(ids), seq_len, batch_size)
    if num_batches == 0:
        raise DatasetTooSmallError(len(ids), seq_len, batch_size, raw)

    token_ids = torch.tensor(ids, dtype=torch.long)
    # [num_samples, seq_len + 1] windows, then split into input/target views
    windows = token_ids.unfold(0, seq_len + 1, 1)[:num_samples]
    inputs = windows[:, :-1].contiguous()
    targets = windows[:, 1:].contiguous()

    logger.info(
        f"Built dataset: {num_samples} windows of length {seq_len} "
        f"({num_batches} batches, {raw - num_samples} trailing windows dropped)"
    )
    return WindowBatch(inputs=inputs, targets=targets, batch_size=batch_size)


def create_dataloader(batch: WindowBatch, batch_size: Optional[int] = None) -> DataLoader:
    """Create a DataLoader that yields contiguous batches in text order.

    Args:
        batch: Windows produced by build_dataset
        batch_size: Windows per batch (defaults to the one the windows were cut for)

    Returns:
        DataLoader yielding (inputs, targets) pairs of shape [batch_size, seq_len]
    """
    batch_size = batch_size or batch.batch_size
    dataset = TensorDataset(batch.inputs, batch.targets)
    return DataLoader(dataset, batch_size=batch_size, shuffle=False, drop_last=True)
