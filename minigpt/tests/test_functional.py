"""Tests for the numerical primitives."""

import math

import pytest
import torch
import torch.nn.functional as F

from minigpt.functional import causal_mask, dense, gelu, positional_encoding


class TestPositionalEncoding:

    def test_shape_and_dtype(self):
        encoding = positional_encoding(10, 8)
        assert encoding.shape == (10, 8)
        assert encoding.dtype == torch.float32

    def test_first_position(self):
        """sin(0) = 0 on even dims, cos(0) = 1 on odd dims."""
        encoding = positional_encoding(4, 6)
        assert torch.allclose(encoding[0, 0::2], torch.zeros(3))
        assert torch.allclose(encoding[0, 1::2], torch.ones(3))

    def test_known_values(self):
        d_model = 8
        encoding = positional_encoding(3, d_model)

        assert encoding[1, 0].item() == pytest.approx(math.sin(1.0), abs=1e-6)
        assert encoding[1, 1].item() == pytest.approx(math.cos(1.0), abs=1e-6)
        angle = 2 / 10000 ** (2 / d_model)
        assert encoding[2, 2].item() == pytest.approx(math.sin(angle), abs=1e-6)
        assert encoding[2, 3].item() == pytest.approx(math.cos(angle), abs=1e-6)

    def test_cached_per_shape(self):
        assert positional_encoding(5, 4) is positional_encoding(5, 4)
        assert positional_encoding(5, 4) is not positional_encoding(6, 4)


class TestCausalMask:

    def test_values(self):
        mask = causal_mask(3)
        expected = torch.tensor([
            [0.0, 1.0, 1.0],
            [0.0, 0.0, 1.0],
            [0.0, 0.0, 0.0],
        ])
        assert torch.equal(mask, expected)

    def test_single_position(self):
        assert torch.equal(causal_mask(1), torch.zeros(1, 1))


class TestGelu:

    def test_matches_tanh_approximation(self):
        x = torch.linspace(-5, 5, steps=101)
        torch.testing.assert_close(gelu(x), F.gelu(x, approximate="tanh"), atol=1e-6, rtol=1e-5)

    def test_fixed_points(self):
        assert gelu(torch.tensor(0.0)).item() == 0.0
        assert gelu(torch.tensor(10.0)).item() == pytest.approx(10.0, abs=1e-4)


class TestDense:

    def test_two_dimensional(self):
        x = torch.randn(4, 3)
        weight = torch.randn(3, 5)
        torch.testing.assert_close(dense(x, weight), x @ weight)

    def test_higher_rank_input(self):
        x = torch.randn(2, 4, 3)
        weight = torch.randn(3, 5)

        out = dense(x, weight)
        assert out.shape == (2, 4, 5)
        torch.testing.assert_close(out, torch.matmul(x, weight))

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError, match="does not match"):
            dense(torch.randn(2, 4), torch.randn(3, 5))

    def test_weight_must_be_2d(self):
        with pytest.raises(ValueError, match="2D"):
            dense(torch.randn(2, 3), torch.randn(3, 5, 1))
