"""Fixed-length tokenization on top of the ``tokenizers`` library."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Sequence, Tuple, Union

import structlog
from tokenizers import Tokenizer

from flagembed.common.errors import EncodingError

logger = structlog.get_logger("encoder")

PAD_TOKEN = "[PAD]"
PAD_ID = 0


@dataclass(frozen=True)
class EncodedSequence:
    """Token ids, attention mask and type ids of one input, all ``max_length`` long."""

    ids: Tuple[int, ...]
    attention_mask: Tuple[int, ...]
    type_ids: Tuple[int, ...]

    def __len__(self) -> int:
        return len(self.ids)


class Encoder:
    """Encodes batches of strings to exactly ``max_length`` tokens each.

    The wrapped tokenizer is configured once: longest-first truncation at
    ``max_length`` and right padding to ``max_length`` with ``[PAD]`` / id 0.
    After construction the tokenizer is only read, so one encoder may be used
    from several threads.
    """

    def __init__(self, tokenizer: Tokenizer, max_length: int = 512):
        if max_length <= 0:
            raise ValueError(f"max_length must be positive, got {max_length}")
        self.max_length = max_length
        self.tokenizer = tokenizer
        self.tokenizer.enable_truncation(
            max_length=max_length,
            stride=0,
            strategy="longest_first",
        )
        self.tokenizer.enable_padding(
            direction="right",
            pad_id=PAD_ID,
            pad_token=PAD_TOKEN,
            length=max_length,
        )

    @classmethod
    def from_file(cls, path: Union[str, Path], max_length: int = 512) -> "Encoder":
        """Load a ``tokenizer.json`` file."""
        try:
            tokenizer = Tokenizer.from_file(str(path))
        except Exception as exc:
            raise EncodingError(f"failed to load tokenizer from {path}: {exc}") from exc
        logger.info("Tokenizer loaded", path=str(path), max_length=max_length)
        return cls(tokenizer, max_length=max_length)

    def encode(self, batch: Sequence[str]) -> List[EncodedSequence]:
        """Encode ``batch`` in order; raises ``EncodingError`` on tokenizer failure."""
        if not batch:
            return []
        try:
            encodings = self.tokenizer.encode_batch(list(batch), add_special_tokens=True)
        except Exception as exc:
            raise EncodingError(f"failed to encode batch of {len(batch)}: {exc}") from exc

        sequences = [self._to_sequence(encoding) for encoding in encodings]
        for index, sequence in enumerate(sequences):
            if len(sequence) != self.max_length:
                raise EncodingError(
                    f"input {index} encoded to {len(sequence)} tokens, expected {self.max_length}"
                )
        return sequences

    @staticmethod
    def _to_sequence(encoding: Any) -> EncodedSequence:
        return EncodedSequence(
            ids=tuple(encoding.ids),
            attention_mask=tuple(encoding.attention_mask),
            type_ids=tuple(encoding.type_ids),
        )
