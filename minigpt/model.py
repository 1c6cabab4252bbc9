# MiniGPT Model
# =============
#
# Decoder-only character transformer built from the layers in layers.py:
#
#   ids -> embedding * sqrt(d_model) + sinusoidal positions
#       -> num_layers x TransformerBlock (causal mask)
#       -> dense(final_proj) -> logits [batch, seq, vocab]
#
# The blocks are "encoder-style" (self-attention + feed-forward, post-norm)
# but every one of them receives the look-ahead mask, so the stack is causal
# and can be sampled autoregressively.

import math
import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

import torch
import torch.nn as nn
import torch.nn.functional as F

from .configuration import ModelConfig
from .constants import PAD_TOKEN_ID, WEIGHT_INIT_STD
from .errors import ConfigurationError, RuntimeComputationError
from .functional import causal_mask, dense, positional_encoding
from .layers import TokenEmbedding, TransformerBlock
from .utils import count_parameters

logger = logging.getLogger(__name__)


@dataclass
class ModelOutput:
    logits: torch.Tensor             # [batch, seq, vocab]
    attention_weights: torch.Tensor  # last block only: [batch, heads, seq, seq]


@dataclass
class AttentionState:
    """Attention weights of the last block for one sequence."""

    weights: torch.Tensor  # [heads, seq, seq], every row sums to 1

    @property
    def num_heads(self) -> int:
        return self.weights.size(0)

    @property
    def seq_len(self) -> int:
        return self.weights.size(-1)

    def head(self, index: int) -> List[List[float]]:
        """Weights of one head as nested lists, rows = queries, columns = keys."""
        if not 0 <= index < self.num_heads:
            raise IndexError(f"head index {index} out of range for {self.num_heads} heads")
        return self.weights[index].tolist()


@dataclass
class Prediction:
    predicted_id: int
    attention: AttentionState


class TransformerModel(nn.Module):
    """Causal transformer over a character vocabulary."""

    def __init__(self, config: ModelConfig) -> None:
        # Fail before any parameter is allocated
        if config.d_model % config.num_heads != 0:
            raise ConfigurationError(
                f"d_model ({config.d_model}) must be divisible by num_heads ({config.num_heads})"
            )
        super().__init__()
        self.config = config

        self.embedding = TokenEmbedding(config.vocab_size, config.d_model)
        self.blocks = nn.ModuleList([
            TransformerBlock(config.d_model, config.num_heads, config.dff, config.dropout_rate)
            for _ in range(config.num_layers)
        ])

        # Projection back to vocabulary logits
        final_proj = torch.empty(config.d_model, config.vocab_size)
        nn.init.normal_(final_proj, mean=0.0, std=WEIGHT_INIT_STD)
        self.final_proj = nn.Parameter(final_proj)

        logger.info(
            f"Created TransformerModel with {self.get_parameter_count():,} parameters "
            f"(layers={config.num_layers}, d_model={config.d_model}, heads={config.num_heads}, "
            f"vocab_size={config.vocab_size})"
        )

    @property
    def device(self) -> torch.device:
        return self.final_proj.device

    def get_parameter_count(self) -> int:
        return count_parameters(self, trainable_only=False)

    def forward(self, input_ids: torch.Tensor, training: bool = False) -> ModelOutput:
        """Run the full stack.

        Args:
            input_ids: [batch_size, seq_len] integer token ids
            training: Enables dropout

        Returns:
            ModelOutput with logits [batch, seq, vocab] and the last block's
            attention weights [batch, heads, seq, seq]

        Raises:
            RuntimeComputationError: If input_ids is not a 2-D integer tensor of
                in-vocabulary ids no longer than max_len
        """
        if not isinstance(input_ids, torch.Tensor):
            raise RuntimeComputationError(f"input_ids must be a torch.Tensor, got {type(input_ids)}")
        if input_ids.dim() != 2:
            raise RuntimeComputationError(
                f"input_ids must be 2D [batch_size, seq_len], got shape {tuple(input_ids.shape)}"
            )
        if input_ids.dtype not in (torch.int32, torch.int64):
            raise RuntimeComputationError(f"input_ids must have integer dtype, got {input_ids.dtype}")

        batch_size, seq_len = input_ids.shape
        if seq_len > self.config.max_len:
            raise RuntimeComputationError(
                f"Sequence length {seq_len} exceeds max_len ({self.config.max_len})"
            )
        input_ids = input_ids.to(self.device)

        # Empty batch or empty sequences
        if input_ids.numel() == 0:
            return ModelOutput(
                logits=self.final_proj.new_zeros(batch_size, seq_len, self.config.vocab_size),
                attention_weights=self.final_proj.new_zeros(
                    batch_size, self.config.num_heads, seq_len, seq_len
                ),
            )

        if input_ids.min() < 0 or input_ids.max() >= self.config.vocab_size:
            raise RuntimeComputationError(
                f"token ids must lie in [0, {self.config.vocab_size}), "
                f"got range [{input_ids.min().item()}, {input_ids.max().item()}]"
            )

        hidden_states = self.embedding(input_ids) * math.sqrt(self.config.d_model)
        positions = positional_encoding(seq_len, self.config.d_model).to(
            device=hidden_states.device, dtype=hidden_states.dtype
        )
        hidden_states = hidden_states + positions
        hidden_states = F.dropout(hidden_states, p=self.config.dropout_rate, training=training)

        mask = causal_mask(seq_len, device=hidden_states.device)

        attention_weights = None
        for block in self.blocks:
            hidden_states, attention_weights = block(hidden_states, mask, training=training)

        logits = dense(hidden_states, self.final_proj)
        return ModelOutput(logits=logits, attention_weights=attention_weights)

    @torch.no_grad()
    def predict_next(self, token_ids: Sequence[int]) -> Prediction:
        """Most likely next id for one sequence, plus its attention weights.

        Does not touch parameters or gradients. Sequences longer than max_len
        are clipped to their last max_len ids. An empty sequence gives
        predicted_id 0 and an empty attention state.
        """
        if len(token_ids) == 0:
            logger.warning("predict_next called with an empty sequence")
            empty = torch.zeros(self.config.num_heads, 0, 0)
            return Prediction(predicted_id=PAD_TOKEN_ID, attention=AttentionState(empty))

        context = list(token_ids)[-self.config.max_len:]
        input_ids = torch.tensor([context], dtype=torch.long, device=self.device)
        output = self(input_ids, training=False)

        last_logits = output.logits[0, -1, :]
        predicted_id = int(torch.argmax(last_logits).item())
        weights = output.attention_weights[0].detach().cpu()
        return Prediction(predicted_id=predicted_id, attention=AttentionState(weights))

    def trainable_variables(self) -> Dict[str, nn.Parameter]:
        """All learned tensors under their persisted names."""
        variables = {"emb_embedding": self.embedding.embedding}

        for i, block in enumerate(self.blocks):
            prefix = f"blk{i}"
            variables[f"{prefix}_mha_wq"] = block.mha.wq
            variables[f"{prefix}_mha_wk"] = block.mha.wk
            variables[f"{prefix}_mha_wv"] = block.mha.wv
            variables[f"{prefix}_mha_wo"] = block.mha.wo
            variables[f"{prefix}_ffn_w1"] = block.ffn.w1
            variables[f"{prefix}_ffn_w2"] = block.ffn.w2
            variables[f"{prefix}_ln1_g"] = block.layernorm1.gamma
            variables[f"{prefix}_ln1_b"] = block.layernorm1.beta
            variables[f"{prefix}_ln2_g"] = block.layernorm2.gamma
            variables[f"{prefix}_ln2_b"] = block.layernorm2.beta

        variables["final_proj"] = self.final_proj
        return variables
