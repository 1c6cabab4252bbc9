"""
Numerical primitives shared by the transformer layers.

- positional_encoding: sinusoidal position signals, cached per shape
- causal_mask: look-ahead mask with 1 on future positions
- gelu: tanh approximation of the Gaussian error linear unit
- dense: matmul of an N-D input against a 2-D weight through a 2-D reshape
"""

import math
from functools import lru_cache

import torch

from .constants import POSITIONAL_BASE

_SQRT_2_OVER_PI = math.sqrt(2.0 / math.pi)


@lru_cache(maxsize=32)
def positional_encoding(max_positions: int, d_model: int) -> torch.Tensor:
    """
    Sinusoidal positional encoding of shape [max_positions, d_model].

    PE(pos, i) = sin(angle) for even i and cos(angle) for odd i, with
    angle = pos / 10000^(2 * floor(i / 2) / d_model).

    The result is cached and shared between calls; callers must not modify it
    in place.
    """
    positions = torch.arange(max_positions, dtype=torch.float64).unsqueeze(1)  # [P, 1]
    dims = torch.arange(d_model, dtype=torch.float64)                            # [D]
    exponent = (2 * torch.div(dims, 2, rounding_mode="floor")) / d_model
    angles = positions / torch.pow(POSITIONAL_BASE, exponent)                  # [P, D]

    encoding = torch.where(dims.remainder(2) == 0, torch.sin(angles), torch.cos(angles))
    return encoding.to(torch.float32)


def causal_mask(seq_len: int, device: torch.device = None) -> torch.Tensor:
    """Float [seq_len, seq_len] mask: entry (i, j) is 1.0 when j > i, else 0.0."""
    return torch.triu(torch.ones(seq_len, seq_len, device=device), diagonal=1)


def gelu(x: torch.Tensor) -> torch.Tensor:
    """0.5 * x * (1 + tanh(sqrt(2/pi) * (x + 0.044715 * x^3)))"""
    return 0.5 * x * (1.0 + torch.tanh(_SQRT_2_OVER_PI * (x + 0.044715 * torch.pow(x, 3))))


def dense(x: torch.Tensor, weight: torch.Tensor) -> torch.Tensor:
    """
    Project ``x`` [..., dim] with ``weight`` [dim, out].

    Inputs of rank > 2 are flattened to [rows, dim], multiplied as plain 2-D
    matrices and reshaped back to [..., out].
    """
    if weight.dim() != 2:
        raise ValueError(f"weight must be 2D [dim, out], got shape {tuple(weight.shape)}")
    if x.size(-1) != weight.size(0):
        raise ValueError(
            f"Last input dimension {x.size(-1)} does not match weight input dimension {weight.size(0)}"
        )

    if x.dim() > 2:
        leading = x.shape[:-1]
        flat = x.reshape(-1, weight.size(0))
        out = torch.matmul(flat, weight)
        return out.reshape(*leading, weight.size(1))

    return torch.matmul(x, weight)
