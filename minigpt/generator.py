# Text Generation
# ===============
#
# Autoregressive sampling from a trained TransformerModel.
#
# Components:
# - sample_from_logits: temperature / top-k sampling of one id
# - iter_generate: generator yielding one decoded token per step
# - generate_text: drives iter_generate and returns the continuation

import logging
from typing import Callable, Iterator, Optional

import torch
import torch.nn.functional as F

from .configuration import GenerationConfig
from .constants import MIN_TEMPERATURE, UNK_TOKEN_ID
from .errors import RuntimeComputationError
from .model import TransformerModel
from .tokenizer import CharTokenizer
from .utils import CancellationToken

logger = logging.getLogger(__name__)


def sample_from_logits(
    logits: torch.Tensor,
    temperature: float,
    top_k: int,
    generator: Optional[torch.Generator] = None,
) -> int:
    """Sample one token id from a 1-D logit vector.

    Logits are divided by ``max(temperature, MIN_TEMPERATURE)``. When
    ``0 < top_k < vocab_size`` only the k largest logits are kept. One
    uniform draw is then mapped through the cumulative softmax
    distribution; if rounding leaves the draw above the final cumulative
    value, the last candidate is taken.

    Args:
        logits: [vocab_size] unnormalized scores
        temperature: Softmax temperature, 0 behaves like greedy decoding
        top_k: Number of candidates to keep (0 or >= vocab_size keeps all)
        generator: Optional torch.Generator for reproducible draws

    Returns:
        Sampled token id
    """
    if logits.dim() != 1:
        raise ValueError(f"logits must be 1D [vocab_size], got shape {tuple(logits.shape)}")

    scaled = logits.detach().float().cpu() / max(temperature, MIN_TEMPERATURE)
    vocab_size = scaled.size(0)

    if 0 < top_k < vocab_size:
        values, indices = torch.topk(scaled, top_k)
    else:
        values, indices = scaled, None

    probs = F.softmax(values, dim=-1)
    cumulative = torch.cumsum(probs, dim=-1)
    draw = torch.rand(1, generator=generator).item()

    # First candidate whose cumulative probability exceeds the draw
    position = int((cumulative <= draw).sum().item())
    position = min(position, values.size(0) - 1)

    if indices is not None:
        return int(indices[position].item())
    return position


def iter_generate(
    model: TransformerModel,
    tokenizer: CharTokenizer,
    prompt: str,
    config: GenerationConfig,
    generator: Optional[torch.Generator] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> Iterator[str]:
    """Generate ``config.max_new_tokens`` tokens after ``prompt``, one at a time.

    The model only sees the last ``max_len`` ids of the growing sequence. An
    empty prompt starts from a single UNK id. There is no end-of-sequence
    token, so every call runs for the full length unless cancelled.

    Yields:
        The decoded text of each new token

    Raises:
        RuntimeComputationError: If a forward pass fails
        OperationCancelledError: If the token is cancelled between steps
    """
    token_ids = tokenizer.encode(prompt)
    if not token_ids:
        token_ids = [UNK_TOKEN_ID]

    max_len = model.config.max_len
    model.eval()

    for step in range(config.max_new_tokens):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled("generation")

        context = token_ids[-max_len:]
        input_ids = torch.tensor([context], dtype=torch.long)
        try:
            with torch.no_grad():
                output = model(input_ids, training=False)
        except RuntimeComputationError:
            raise
        except (RuntimeError, ValueError, IndexError) as e:
            raise RuntimeComputationError(f"Generation step {step} failed: {e}") from e

        next_id = sample_from_logits(output.logits[0, -1], config.temperature, config.top_k, generator)
        token_ids.append(next_id)
        logger.debug(f"Step {step}: sampled id {next_id}")

        yield tokenizer.decode([next_id])


def generate_text(
    model: TransformerModel,
    tokenizer: CharTokenizer,
    prompt: str,
    config: GenerationConfig,
    on_step: Optional[Callable[[str], None]] = None,
    generator: Optional[torch.Generator] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> str:
    """Generate a continuation of ``prompt``.

    Args:
        model: Trained model
        tokenizer: Tokenizer matching the model's vocabulary
        prompt: Text to continue
        config: Length, temperature and top-k
        on_step: Optional callback receiving each generated token's text
        generator: Optional torch.Generator for reproducible sampling
        cancel_token: Optional token checked between steps

    Returns:
        The generated text, without the prompt
    """
    logger.info(
        f"Generating {config.max_new_tokens} tokens "
        f"(temperature={config.temperature}, top_k={config.top_k})"
    )

    pieces = []
    for piece in iter_generate(model, tokenizer, prompt, config, generator=generator, cancel_token=cancel_token):
        pieces.append(piece)
        if on_step is not None:
            on_step(piece)

    return "".join(pieces)
