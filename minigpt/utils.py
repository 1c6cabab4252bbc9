# Utilities
# =========
#
# Helpers shared by the training loop, the sampler, the session and the CLI:
# - setup_logging: root logger configuration for command-line use
# - set_seed: seed Python and torch RNGs
# - count_parameters: number of (trainable) parameters of a module
# - CancellationToken: cooperative cancellation flag for long runs

import logging
import random
from pathlib import Path
from typing import Optional, Union

import torch
import torch.nn as nn

from .errors import OperationCancelledError

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: Union[int, str] = logging.INFO, log_file: Optional[Union[str, Path]] = None) -> None:
    """Configure the root logger with a stream handler and an optional file handler.

    Library code never calls this; it is meant for entry points such as the CLI.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def set_seed(seed: int) -> None:
    """Seed Python's and torch's random number generators."""
    random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)
    logger.debug(f"Random seed set to {seed}")


def count_parameters(model: nn.Module, trainable_only: bool = True) -> int:
    """Count model parameters.

    Args:
        model: Module to inspect
        trainable_only: Only count parameters with requires_grad set

    Returns:
        Total number of scalar parameters
    """
    return sum(p.numel() for p in model.parameters() if p.requires_grad or not trainable_only)


class CancellationToken:
    """Flag checked by training and generation between batches or tokens."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self, operation: str = "operation") -> None:
        if self._cancelled:
            logger.info(f"{operation.capitalize()} cancelled")
            raise OperationCancelledError(f"{operation.capitalize()} was cancelled")
