# Transformer Layers
# ==================
#
# Building blocks of the causal transformer. Every learned weight is a raw
# nn.Parameter with the [in, out] layout expected by ``dense``, so parameter
# names and shapes map one-to-one onto the persisted state.
#
# Components:
# - scaled_dot_product_attention: softmax(QK^T / sqrt(depth) + mask * -1e9) V
# - TokenEmbedding: id -> vector lookup table
# - MultiHeadAttention: Wq/Wk/Wv/Wo projections around per-head attention
# - FeedForward: dense -> GELU -> dense
# - LayerNormalization: last-axis normalization with learned gamma/beta
# - TransformerBlock: post-norm residual block (attention, then feed-forward)

import math
import logging
from typing import Optional, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F

from .constants import LAYER_NORM_EPS, MASK_VALUE, WEIGHT_INIT_STD
from .functional import dense, gelu

logger = logging.getLogger(__name__)


def _normal_parameter(*shape: int, std: float = WEIGHT_INIT_STD) -> nn.Parameter:
    weight = torch.empty(*shape)
    nn.init.normal_(weight, mean=0.0, std=std)
    return nn.Parameter(weight)


def scaled_dot_product_attention(
    q: torch.Tensor,
    k: torch.Tensor,
    v: torch.Tensor,
    mask: Optional[torch.Tensor] = None,
) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Attention over the last two axes.

    Args:
        q: [..., seq_q, depth]
        k: [..., seq_k, depth]
        v: [..., seq_k, depth_v]
        mask: Optional [seq_q, seq_k] (or broadcastable) tensor, 1 where the
              score must be suppressed

    Returns:
        Tuple of (output [..., seq_q, depth_v], weights [..., seq_q, seq_k])
    """
    depth = k.size(-1)
    scores = torch.matmul(q, k.transpose(-2, -1)) / math.sqrt(depth)

    if mask is not None:
        # A large finite offset keeps fully masked rows free of NaN
        scores = scores + mask * MASK_VALUE

    weights = F.softmax(scores, dim=-1)
    output = torch.matmul(weights, v)
    return output, weights


class TokenEmbedding(nn.Module):
    """Maps integer ids to d_model-dimensional vectors."""

    def __init__(self, vocab_size: int, d_model: int) -> None:
        super().__init__()
        self.vocab_size = vocab_size
        self.d_model = d_model
        self.embedding = _normal_parameter(vocab_size, d_model)

    def forward(self, token_ids: torch.Tensor) -> torch.Tensor:
        return F.embedding(token_ids, self.embedding)


class MultiHeadAttention(nn.Module):
    """
    Multi-head attention with four [d_model, d_model] projections.

    The model dimension is split into ``num_heads`` heads of depth
    ``d_model // num_heads``; the heads run in parallel and are concatenated
    back before the output projection.
    """

    def __init__(self, d_model: int, num_heads: int) -> None:
        super().__init__()
        if d_model % num_heads != 0:
            raise ValueError(f"d_model ({d_model}) must be divisible by num_heads ({num_heads})")

        self.d_model = d_model
        self.num_heads = num_heads
        self.depth = d_model // num_heads

        self.wq = _normal_parameter(d_model, d_model)
        self.wk = _normal_parameter(d_model, d_model)
        self.wv = _normal_parameter(d_model, d_model)
        self.wo = _normal_parameter(d_model, d_model)

    def split_heads(self, x: torch.Tensor) -> torch.Tensor:
        """[batch, seq, d_model] -> [batch, heads, seq, depth]"""
        batch = x.size(0)
        return x.view(batch, -1, self.num_heads, self.depth).transpose(1, 2)

    def forward(
        self,
        query: torch.Tensor,
        key: torch.Tensor,
        value: torch.Tensor,
        mask: Optional[torch.Tensor] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Returns:
            Tuple of (output [batch, seq, d_model], weights [batch, heads, seq, seq])
        """
        batch = query.size(0)

        q = self.split_heads(dense(query, self.wq))
        k = self.split_heads(dense(key, self.wk))
        v = self.split_heads(dense(value, self.wv))

        attn_output, attn_weights = scaled_dot_product_attention(q, k, v, mask)

        # [batch, heads, seq, depth] -> [batch, seq, d_model]
        attn_output = attn_output.transpose(1, 2).contiguous().view(batch, -1, self.d_model)
        return dense(attn_output, self.wo), attn_weights


class FeedForward(nn.Module):
    """Position-wise feed-forward network: d_model -> dff -> d_model."""

    def __init__(self, d_model: int, dff: int) -> None:
        super().__init__()
        self.w1 = _normal_parameter(d_model, dff)
        self.w2 = _normal_parameter(dff, d_model)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return dense(gelu(dense(x, self.w1)), self.w2)


class LayerNormalization(nn.Module):
    """Zero-mean / unit-variance normalization of the last axis, then gamma * x + beta."""

    def __init__(self, d_model: int, eps: float = LAYER_NORM_EPS) -> None:
        super().__init__()
        self.eps = eps
        self.gamma = nn.Parameter(torch.ones(d_model))
        self.beta = nn.Parameter(torch.zeros(d_model))

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        mean = x.mean(dim=-1, keepdim=True)
        variance = (x - mean).pow(2).mean(dim=-1, keepdim=True)
        normalized = (x - mean) / torch.sqrt(variance + self.eps)
        return normalized * self.gamma + self.beta


class TransformerBlock(nn.Module):
    """
    Causal transformer block in post-norm form:

        h   = LayerNorm1(x + MultiHeadAttention(x, x, x, mask))
        out = LayerNorm2(h + FeedForward(h))
    """

    def __init__(self, d_model: int, num_heads: int, dff: int, dropout_rate: float = 0.0) -> None:
        super().__init__()
        self.dropout_rate = dropout_rate
        self.mha = MultiHeadAttention(d_model, num_heads)
        self.ffn = FeedForward(d_model, dff)
        self.layernorm1 = LayerNormalization(d_model)
        self.layernorm2 = LayerNormalization(d_model)

    def forward(
        self,
        x: torch.Tensor,
        mask: Optional[torch.Tensor] = None,
        training: bool = False,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        attn_output, attn_weights = self.mha(x, x, x, mask)
        attn_output = F.dropout(attn_output, p=self.dropout_rate, training=training)
        hidden_states = self.layernorm1(x + attn_output)

        ffn_output = self.ffn(hidden_states)
        ffn_output = F.dropout(ffn_output, p=self.dropout_rate, training=training)
        hidden_states = self.layernorm2(hidden_states + ffn_output)

        return hidden_states, attn_weights
