"""Session workflow: initialize, train, save, reload, generate."""

import pytest
import torch

from minigpt.configuration import GenerationConfig, TrainingConfig
from minigpt.errors import DatasetTooSmallError
from minigpt.persistence import load_state, save_state
from minigpt.session import RunStatus, Session


def test_train_save_reload_generate(text_corpus, tmp_path):
    session = Session()
    session.initialize(text_corpus, preset="tiny", seed=5)
    history = session.train(text_corpus, TrainingConfig(batch_size=8, epochs=2, seq_len=16))
    assert len(history.epoch_losses) == 2

    path = save_state(session.export_state(), tmp_path / "session.json")

    restored = Session()
    report = restored.load_state(load_state(path))
    assert report.complete
    assert restored.status == RunStatus.READY

    greedy = GenerationConfig(max_new_tokens=15, temperature=0.0, top_k=1)
    assert restored.generate("The ", greedy) == session.generate("The ", greedy)
    assert restored.attention_map("The lazy") == session.attention_map("The lazy")


def test_state_without_one_tensor_still_loads(text_corpus):
    session = Session()
    session.initialize(text_corpus, seed=6)
    state = session.export_state()
    del state.weights["blk0_mha_wq"]

    restored = Session()
    report = restored.load_state(state)

    assert report.untouched == ["blk0_mha_wq"]
    assert len(report.restored) == len(session.model.trainable_variables()) - 1
    assert torch.equal(
        restored.model.trainable_variables()["final_proj"],
        session.model.trainable_variables()["final_proj"],
    )


def test_training_too_short_text_keeps_session_usable(text_corpus):
    session = Session()
    session.initialize(text_corpus, seed=7)
    messages = []

    with pytest.raises(DatasetTooSmallError, match="Text too short"):
        session.train("The", TrainingConfig(batch_size=8, seq_len=16), on_log=messages.append)

    assert messages[-1].startswith("Error: ")
    assert session.status == RunStatus.READY
    assert session.generate("The", GenerationConfig(max_new_tokens=2))
