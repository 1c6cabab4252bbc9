"""Pytest configuration and fixtures."""

import pytest
import torch
import sys
import os

TESTS_DIR = os.path.dirname(__file__)
PACKAGE_DIR = os.path.dirname(TESTS_DIR)
REPO_ROOT = os.path.dirname(PACKAGE_DIR)

for path in (REPO_ROOT,):
    if path not in sys.path:
        sys.path.insert(0, path)

from minigpt.configuration import ModelConfig
from minigpt.model import TransformerModel
from minigpt.tokenizer import CharTokenizer

SAMPLE_CORPUS = "hello world, hello transformer. "


@pytest.fixture(autouse=True)
def seed_everything():
    """Reseed torch before every test so random weights are reproducible."""
    torch.manual_seed(1234)


@pytest.fixture
def corpus():
    """A short corpus with a handful of distinct characters."""
    return SAMPLE_CORPUS * 4


@pytest.fixture
def tokenizer(corpus):
    """Tokenizer built from the sample corpus."""
    return CharTokenizer.from_corpus(corpus)


@pytest.fixture
def small_config(tokenizer):
    """A small model configuration for testing."""
    return ModelConfig(
        vocab_size=tokenizer.get_vocab_size(),
        d_model=16,
        num_heads=2,
        num_layers=2,
        dff=32,
        max_len=16,
        dropout_rate=0.0,
    )


@pytest.fixture
def small_model(small_config):
    """A small model for testing."""
    return TransformerModel(small_config)


@pytest.fixture
def sample_batch(small_config):
    """Sample batch of token IDs."""
    batch_size, seq_len = 2, 10
    return torch.randint(0, small_config.vocab_size, (batch_size, seq_len))
