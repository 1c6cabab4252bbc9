"""Tests for the character tokenizer."""

import pytest

from minigpt.constants import PAD_TOKEN, PAD_TOKEN_ID, UNK_TOKEN, UNK_TOKEN_ID
from minigpt.tokenizer import CharTokenizer


class TestCharTokenizer:
    """Test vocabulary construction and the encode/decode codec."""

    def test_vocabulary_is_sorted_after_reserved_ids(self):
        tokenizer = CharTokenizer.from_corpus("hello")

        assert tokenizer.vocab[PAD_TOKEN] == PAD_TOKEN_ID
        assert tokenizer.vocab[UNK_TOKEN] == UNK_TOKEN_ID
        assert [tokenizer.vocab[c] for c in "ehlo"] == [2, 3, 4, 5]
        assert tokenizer.get_vocab_size() == 6
        assert len(tokenizer) == 6

    def test_vocab_size_counts_distinct_characters(self, corpus):
        tokenizer = CharTokenizer.from_corpus(corpus)
        assert tokenizer.get_vocab_size() == 2 + len(set(corpus))

    def test_build_is_deterministic(self):
        """Character order in the corpus does not change the ids."""
        assert CharTokenizer.from_corpus("abcabc") == CharTokenizer.from_corpus("cba")

    def test_roundtrip(self, tokenizer, corpus):
        text = corpus[:40]
        assert tokenizer.decode(tokenizer.encode(text)) == text

    def test_unknown_characters_map_to_unk(self):
        tokenizer = CharTokenizer.from_corpus("ab")

        ids, unknown = tokenizer.encode_with_report("aZb?")
        assert ids == [2, UNK_TOKEN_ID, 3, UNK_TOKEN_ID]
        assert unknown == 2
        assert tokenizer.encode("aZb?") == ids

    def test_empty_text(self, tokenizer):
        assert tokenizer.encode("") == []
        assert tokenizer.decode([]) == ""

    def test_unmapped_ids_are_dropped(self):
        tokenizer = CharTokenizer.from_corpus("ab")

        text, dropped = tokenizer.decode_with_report([2, 99, 3, -4])
        assert text == "ab"
        assert dropped == 2

    def test_reserved_ids_decode_to_markers(self):
        tokenizer = CharTokenizer.from_corpus("ab")
        assert tokenizer.decode([PAD_TOKEN_ID, UNK_TOKEN_ID, 2]) == "<PAD><UNK>a"

    def test_serialized_roundtrip(self, tokenizer):
        data = tokenizer.to_serialized()

        assert set(data) == {"charToId", "idToChar", "vocabSize"}
        assert all(isinstance(key, str) for key in data["idToChar"])
        assert CharTokenizer.from_serialized(data) == tokenizer

    def test_from_serialized_accepts_string_ids(self):
        data = {
            "charToId": {"<PAD>": 0, "<UNK>": 1, "x": 2},
            "idToChar": {"0": "<PAD>", "1": "<UNK>", "2": "x"},
            "vocabSize": 3,
        }
        tokenizer = CharTokenizer.from_serialized(data)

        assert tokenizer.encode("x") == [2]
        assert tokenizer.decode([2]) == "x"
        assert tokenizer.get_vocab_size() == 3

    def test_null_vocab_size_uses_table_length(self):
        data = {
            "charToId": {"<PAD>": 0, "<UNK>": 1, "x": 2},
            "idToChar": {"0": "<PAD>", "1": "<UNK>", "2": "x"},
            "vocabSize": None,
        }
        tokenizer = CharTokenizer.from_serialized(data)

        assert tokenizer.get_vocab_size() == 3
        assert tokenizer.encode("x") == [2]

    @pytest.mark.parametrize("data", [None, {}, {"charToId": {"a": 2}}, {"idToChar": {"2": "a"}}])
    def test_malformed_table_gives_empty_vocabulary(self, data):
        tokenizer = CharTokenizer.from_serialized(data)

        assert tokenizer.get_vocab_size() == 0
        assert tokenizer.encode("a") == [UNK_TOKEN_ID]
        assert tokenizer.decode([0, 1, 2]) == ""
