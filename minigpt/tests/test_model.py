"""Tests for the transformer model."""

import pytest
import torch

from minigpt.configuration import ModelConfig
from minigpt.errors import ConfigurationError, RuntimeComputationError
from minigpt.model import AttentionState, ModelOutput, TransformerModel


class TestForward:
    """Test the forward pass."""

    def test_logits_shape(self, small_model, small_config, sample_batch):
        output = small_model(sample_batch)

        assert isinstance(output, ModelOutput)
        assert output.logits.shape == (2, 10, small_config.vocab_size)
        assert output.attention_weights.shape == (2, small_config.num_heads, 10, 10)

    def test_attention_rows_sum_to_one(self, small_model, sample_batch):
        weights = small_model(sample_batch).attention_weights
        torch.testing.assert_close(weights.sum(dim=-1), torch.ones(weights.shape[:-1]), atol=1e-5, rtol=0)

    def test_attention_is_causal(self, small_model, sample_batch):
        weights = small_model(sample_batch).attention_weights
        future = torch.triu(torch.ones(10, 10, dtype=torch.bool), diagonal=1)
        assert weights[..., future].max().item() <= 1e-6

    def test_later_tokens_do_not_change_earlier_logits(self, small_model, sample_batch):
        changed = sample_batch.clone()
        changed[:, -1] = (changed[:, -1] + 1) % small_model.config.vocab_size

        with torch.no_grad():
            original = small_model(sample_batch).logits
            modified = small_model(changed).logits

        torch.testing.assert_close(original[:, :-1], modified[:, :-1])
        assert not torch.allclose(original[:, -1], modified[:, -1])

    def test_inference_is_deterministic(self, tokenizer):
        config = ModelConfig(vocab_size=tokenizer.get_vocab_size(), d_model=16, num_heads=2,
                             num_layers=1, max_len=8, dropout_rate=0.5)
        model = TransformerModel(config)
        ids = torch.randint(0, config.vocab_size, (1, 8))

        with torch.no_grad():
            assert torch.equal(model(ids).logits, model(ids).logits)

    def test_empty_sequence(self, small_model, small_config):
        output = small_model(torch.empty(3, 0, dtype=torch.long))

        assert output.logits.shape == (3, 0, small_config.vocab_size)
        assert output.attention_weights.shape == (3, small_config.num_heads, 0, 0)

    def test_empty_batch(self, small_model, small_config):
        output = small_model(torch.zeros(0, 5, dtype=torch.long))

        assert output.logits.shape == (0, 5, small_config.vocab_size)
        assert output.attention_weights.shape == (0, small_config.num_heads, 5, 5)

    def test_rejects_non_2d_input(self, small_model):
        with pytest.raises(RuntimeComputationError, match="2D"):
            small_model(torch.tensor([1, 2, 3]))

    def test_rejects_float_input(self, small_model):
        with pytest.raises(RuntimeComputationError, match="integer"):
            small_model(torch.zeros(1, 3))

    def test_rejects_sequence_longer_than_max_len(self, small_model, small_config):
        too_long = torch.zeros(1, small_config.max_len + 1, dtype=torch.long)
        with pytest.raises(RuntimeComputationError, match="max_len"):
            small_model(too_long)

    def test_rejects_out_of_vocabulary_ids(self, small_model, small_config):
        with pytest.raises(RuntimeComputationError, match="token ids"):
            small_model(torch.tensor([[0, small_config.vocab_size]]))


class TestConstruction:

    def test_indivisible_heads_raise_configuration_error(self):
        config = ModelConfig(vocab_size=10, d_model=10, num_heads=3)
        with pytest.raises(ConfigurationError, match="divisible"):
            TransformerModel(config)

    def test_trainable_variable_names(self, small_model, small_config):
        variables = small_model.trainable_variables()

        assert len(variables) == 2 + 10 * small_config.num_layers
        assert list(variables)[0] == "emb_embedding"
        assert list(variables)[-1] == "final_proj"
        for i in range(small_config.num_layers):
            for suffix in ("mha_wq", "mha_wk", "mha_wv", "mha_wo", "ffn_w1", "ffn_w2",
                           "ln1_g", "ln1_b", "ln2_g", "ln2_b"):
                assert f"blk{i}_{suffix}" in variables

    def test_trainable_variable_shapes(self, small_model, small_config):
        variables = small_model.trainable_variables()
        d, v, f = small_config.d_model, small_config.vocab_size, small_config.dff

        assert variables["emb_embedding"].shape == (v, d)
        assert variables["blk0_mha_wq"].shape == (d, d)
        assert variables["blk0_ffn_w1"].shape == (d, f)
        assert variables["blk0_ffn_w2"].shape == (f, d)
        assert variables["blk1_ln2_g"].shape == (d,)
        assert variables["final_proj"].shape == (d, v)

    def test_registry_covers_all_parameters(self, small_model):
        registered = {id(p) for p in small_model.trainable_variables().values()}
        assert registered == {id(p) for p in small_model.parameters()}
        assert small_model.get_parameter_count() == sum(
            p.numel() for p in small_model.trainable_variables().values()
        )

    def test_layer_norm_initialization(self, small_model):
        variables = small_model.trainable_variables()
        assert torch.equal(variables["blk0_ln1_g"], torch.ones_like(variables["blk0_ln1_g"]))
        assert torch.equal(variables["blk0_ln1_b"], torch.zeros_like(variables["blk0_ln1_b"]))


class TestPredictNext:

    def test_matches_forward_argmax(self, small_model):
        ids = [2, 5, 7, 3]
        prediction = small_model.predict_next(ids)

        with torch.no_grad():
            logits = small_model(torch.tensor([ids])).logits
        assert prediction.predicted_id == int(logits[0, -1].argmax())
        assert isinstance(prediction.attention, AttentionState)
        assert prediction.attention.num_heads == small_model.config.num_heads
        assert prediction.attention.seq_len == 4

    def test_empty_input(self, small_model):
        prediction = small_model.predict_next([])

        assert prediction.predicted_id == 0
        assert prediction.attention.seq_len == 0
        assert prediction.attention.weights.numel() == 0

    def test_has_no_side_effects(self, small_model):
        before = {name: p.clone() for name, p in small_model.trainable_variables().items()}

        small_model.predict_next([2, 3, 4])

        for name, param in small_model.trainable_variables().items():
            assert torch.equal(param, before[name])
            assert param.grad is None

    def test_long_input_is_clipped(self, small_model, small_config):
        ids = list(range(2, 6)) * small_config.max_len
        prediction = small_model.predict_next(ids)
        assert prediction.attention.seq_len == small_config.max_len

    def test_attention_head_rows(self, small_model):
        attention = small_model.predict_next([2, 3, 4]).attention

        rows = attention.head(1)
        assert len(rows) == 3
        assert rows[0][1] <= 1e-6
        assert sum(rows[2]) == pytest.approx(1.0, abs=1e-5)

        with pytest.raises(IndexError):
            attention.head(attention.num_heads)
