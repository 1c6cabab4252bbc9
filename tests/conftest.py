import sys
import torch
import pytest
from pathlib import Path

# Ensure project root is on sys.path for package imports during pytest runs.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from minigpt.configuration import ModelConfig
from minigpt.model import TransformerModel
from minigpt.tokenizer import CharTokenizer


@pytest.fixture(scope="session", autouse=True)
def set_test_seeds():
    """Set seeds for reproducible tests across the session."""
    torch.manual_seed(42)


@pytest.fixture
def pattern_corpus():
    """A strictly alternating two-character corpus."""
    return "AB" * 40


@pytest.fixture
def pattern_tokenizer(pattern_corpus):
    return CharTokenizer.from_corpus(pattern_corpus)


@pytest.fixture
def pattern_model(pattern_tokenizer):
    """Single-layer, single-head model small enough to train in seconds."""
    torch.manual_seed(0)
    config = ModelConfig(
        vocab_size=pattern_tokenizer.get_vocab_size(),
        d_model=16,
        num_heads=1,
        num_layers=1,
        dff=64,
        max_len=16,
        dropout_rate=0.0,
    )
    return TransformerModel(config)


@pytest.fixture
def text_corpus():
    """A short natural-language corpus."""
    return (
        "The quick brown fox jumps over the lazy dog. "
        "Transformers are cool. The lazy dog sleeps. "
    ) * 3


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
