# Character Tokenizer
# ===================
#
# Character-level vocabulary and codec.
#
# Components:
# - CharTokenizer: builds a vocabulary from a corpus or a serialized table,
#   encodes text to ids and decodes ids back to text

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .constants import (
    NUM_RESERVED_TOKENS,
    PAD_TOKEN,
    PAD_TOKEN_ID,
    UNK_TOKEN,
    UNK_TOKEN_ID,
)

logger = logging.getLogger(__name__)


class CharTokenizer:
    """Character-level tokenizer with reserved PAD (0) and UNK (1) ids."""

    def __init__(
        self,
        vocab: Optional[Dict[str, int]] = None,
        inverse_vocab: Optional[Dict[int, str]] = None,
        vocab_size: int = 0,
    ) -> None:
        self.vocab: Dict[str, int] = dict(vocab or {})
        self.inverse_vocab: Dict[int, str] = dict(inverse_vocab or {})
        self.vocab_size = vocab_size

    @classmethod
    def from_corpus(cls, corpus: str) -> "CharTokenizer":
        """Build a vocabulary from every distinct character of ``corpus``.

        Characters are sorted by code point and numbered from 2, so the same
        corpus always produces the same ids.

        Args:
            corpus: Text the vocabulary is extracted from

        Returns:
            Tokenizer with vocab_size == 2 + number of distinct characters
        """
        vocab = {PAD_TOKEN: PAD_TOKEN_ID, UNK_TOKEN: UNK_TOKEN_ID}
        inverse_vocab = {PAD_TOKEN_ID: PAD_TOKEN, UNK_TOKEN_ID: UNK_TOKEN}

        idx = NUM_RESERVED_TOKENS
        for char in sorted(set(corpus)):
            vocab[char] = idx
            inverse_vocab[idx] = char
            idx += 1

        logger.info(f"Built character vocabulary from {len(corpus)} characters (vocab_size={idx})")
        return cls(vocab, inverse_vocab, idx)

    @classmethod
    def from_serialized(cls, data: Optional[Mapping[str, Any]]) -> "CharTokenizer":
        """Hydrate a tokenizer from a ``{charToId, idToChar, vocabSize}`` table.

        Ids in ``idToChar`` may be strings (JSON object keys). A table missing
        either map gives an empty tokenizer instead of an error.
        """
        if not data or data.get("charToId") is None or data.get("idToChar") is None:
            logger.warning("Serialized tokenizer is missing charToId/idToChar; using an empty vocabulary")
            return cls()

        vocab = {char: int(idx) for char, idx in data["charToId"].items()}
        inverse_vocab = {int(idx): char for idx, char in data["idToChar"].items()}
        vocab_size = data.get("vocabSize")
        vocab_size = len(inverse_vocab) if vocab_size is None else int(vocab_size)
        return cls(vocab, inverse_vocab, vocab_size)

    def to_serialized(self) -> Dict[str, Any]:
        """Return the ``{charToId, idToChar, vocabSize}`` table."""
        return {
            "charToId": dict(self.vocab),
            "idToChar": {str(idx): char for idx, char in self.inverse_vocab.items()},
            "vocabSize": self.vocab_size,
        }

    def encode_with_report(self, text: str) -> Tuple[List[int], int]:
        """Encode text and count characters replaced by UNK.

        Returns:
            Tuple of (token ids, number of UNK substitutions)
        """
        ids = []
        unknown = 0
        for char in text:
            idx = self.vocab.get(char)
            if idx is None:
                idx = UNK_TOKEN_ID
                unknown += 1
            ids.append(idx)

        if unknown:
            logger.debug("Mapped %d unknown characters to UNK", unknown)
        return ids, unknown

    def encode(self, text: str) -> List[int]:
        """Encode text into token ids; unknown characters become UNK."""
        return self.encode_with_report(text)[0]

    def decode_with_report(self, token_ids: List[int]) -> Tuple[str, int]:
        """Decode ids and count ids with no character.

        Unmapped ids contribute nothing to the text.

        Returns:
            Tuple of (decoded text, number of dropped ids)
        """
        chars = []
        dropped = 0
        for idx in token_ids:
            char = self.inverse_vocab.get(int(idx))
            if char is None:
                dropped += 1
                continue
            chars.append(char)

        if dropped:
            logger.debug("Dropped %d unmapped ids while decoding", dropped)
        return "".join(chars), dropped

    def decode(self, token_ids: List[int]) -> str:
        """Decode token ids back to text."""
        return self.decode_with_report(token_ids)[0]

    def get_vocab_size(self) -> int:
        return self.vocab_size

    def __len__(self) -> int:
        return self.vocab_size

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CharTokenizer):
            return NotImplemented
        return (
            self.vocab == other.vocab
            and self.inverse_vocab == other.inverse_vocab
            and self.vocab_size == other.vocab_size
        )

    def __repr__(self) -> str:
        return f"CharTokenizer(vocab_size={self.vocab_size})"
