# Command-Line Interface
# ======================
#
# python -m minigpt / minigpt <command>
#
# Commands:
# - train: build a model for a corpus, train it and save its state
# - generate: stream a continuation of a prompt from a saved state
# - inspect: show the next-character prediction and attention for a text

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import torch
from pydantic import ValidationError

from .configuration import MODEL_PRESETS, GenerationConfig, TrainingConfig
from .constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CORPUS,
    DEFAULT_EPOCHS,
    DEFAULT_LEARNING_RATE,
    DEFAULT_MAX_NEW_TOKENS,
    DEFAULT_SEQ_LEN,
    DEFAULT_TEMPERATURE,
    DEFAULT_TOP_K,
)
from .errors import MiniGPTError
from .persistence import load_state, save_checkpoint, save_state
from .session import Session
from .utils import setup_logging

logger = logging.getLogger(__name__)


def _read_corpus(args: argparse.Namespace) -> str:
    if args.corpus is not None:
        return Path(args.corpus).read_text(encoding="utf-8")
    if args.text is not None:
        return args.text
    logger.info("No corpus given, training on the built-in sample text")
    return DEFAULT_CORPUS


def _load_session(args: argparse.Namespace) -> Session:
    session = Session()
    if args.checkpoint is not None:
        session.load_checkpoint(args.checkpoint)
    else:
        session.load_state(load_state(args.state))
    return session


def cmd_train(args: argparse.Namespace) -> int:
    corpus = _read_corpus(args)
    session = Session()
    session.initialize(corpus, preset=args.preset, seed=args.seed)

    config = TrainingConfig(
        batch_size=args.batch_size,
        epochs=args.epochs,
        learning_rate=args.learning_rate,
        seq_len=args.seq_len,
    )
    history = session.train(corpus, config, on_log=lambda message: print(message, flush=True))

    if args.output is not None:
        save_state(session.export_state(), args.output)
        print(f"Model state saved to {args.output}")
    if args.checkpoint_dir is not None:
        save_checkpoint(session.model, session.tokenizer, args.checkpoint_dir)
        print(f"Checkpoint saved to {args.checkpoint_dir}")

    logger.info(f"Final loss: {history.final_loss:.4f}")
    return 0


def cmd_generate(args: argparse.Namespace) -> int:
    session = _load_session(args)

    config = GenerationConfig(
        max_new_tokens=args.max_new_tokens,
        temperature=args.temperature,
        top_k=args.top_k,
    )
    generator = None
    if args.seed is not None:
        generator = torch.Generator().manual_seed(args.seed)

    def write(piece: str) -> None:
        sys.stdout.write(piece)
        sys.stdout.flush()

    write(args.prompt)
    session.generate(args.prompt, config, on_step=write, generator=generator)
    write("\n")
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    session = _load_session(args)
    inspection = session.predict(args.text)

    print(f"Text: {inspection.text!r}")
    print(f"Predicted next: {inspection.predicted_text!r} (id {inspection.predicted_id})")

    if inspection.attention.seq_len == 0:
        print("No attention weights for an empty input")
        return 0

    chars = list(args.text)[-inspection.attention.seq_len:]
    print(f"Attention (head {args.head}, rows = queries, columns = keys):")
    for char, row in zip(chars, inspection.attention.head(args.head)):
        print(f"  {char!r:>6} " + " ".join(f"{weight:.2f}" for weight in row))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="minigpt", description="Character-level transformer playground")
    parser.add_argument("--log-level", type=str, default="INFO",
                        help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--log-file", type=str, default=None,
                        help="Optional file to write logs to")
    subparsers = parser.add_subparsers(dest="command", required=True)

    train = subparsers.add_parser("train", help="Train a new model on a corpus")
    source = train.add_mutually_exclusive_group()
    source.add_argument("--corpus", type=str, default=None,
                        help="Path to a UTF-8 text file to train on")
    source.add_argument("--text", type=str, default=None,
                        help="Training text given inline")
    train.add_argument("--preset", type=str, default="tiny", choices=sorted(MODEL_PRESETS),
                       help="Model size preset")
    train.add_argument("--epochs", type=int, default=DEFAULT_EPOCHS,
                       help="Number of epochs")
    train.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE,
                       help="Batch size")
    train.add_argument("--learning-rate", type=float, default=DEFAULT_LEARNING_RATE,
                       help="Adam learning rate")
    train.add_argument("--seq-len", type=int, default=DEFAULT_SEQ_LEN,
                       help="Training window length")
    train.add_argument("--seed", type=int, default=None,
                       help="Random seed for weight initialization")
    train.add_argument("--output", type=str, default=None,
                       help="Write the trained state to this JSON file")
    train.add_argument("--checkpoint-dir", type=str, default=None,
                       help="Write a safetensors checkpoint to this directory")
    train.set_defaults(func=cmd_train)

    for name, help_text in (("generate", "Generate text from a saved model"),
                            ("inspect", "Show prediction and attention for a text")):
        sub = subparsers.add_parser(name, help=help_text)
        state = sub.add_mutually_exclusive_group(required=True)
        state.add_argument("--state", type=str, help="Saved JSON model state")
        state.add_argument("--checkpoint", type=str, help="Checkpoint directory")

    generate = subparsers.choices["generate"]
    generate.add_argument("--prompt", type=str, default="",
                          help="Text to continue")
    generate.add_argument("--max-new-tokens", type=int, default=DEFAULT_MAX_NEW_TOKENS,
                          help="Number of characters to generate")
    generate.add_argument("--temperature", type=float, default=DEFAULT_TEMPERATURE,
                          help="Sampling temperature (0 = greedy)")
    generate.add_argument("--top-k", type=int, default=DEFAULT_TOP_K,
                          help="Sample among the k most likely characters (0 = all)")
    generate.add_argument("--seed", type=int, default=None,
                          help="Random seed for sampling")
    generate.set_defaults(func=cmd_generate)

    inspect = subparsers.choices["inspect"]
    inspect.add_argument("--text", type=str, required=True,
                         help="Text to inspect")
    inspect.add_argument("--head", type=int, default=0,
                         help="Attention head to print")
    inspect.set_defaults(func=cmd_inspect)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        return args.func(args)
    except (MiniGPTError, ValidationError, OSError, IndexError) as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
