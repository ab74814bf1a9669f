"""Flat tensor buffers and their assembly from encoded sequences.

``TensorBuffer`` keeps a flat, contiguous ``numpy`` array next to its shape
and refuses to exist when the two disagree. ``TensorAssembler`` widens token
ids, masks and type ids to ``int64`` (the input type of the exported models)
and lays them out row-major as ``[batch_size, max_length]``.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from flagembed.common.errors import TensorShapeError
from flagembed.encoders.encoder import EncodedSequence


@dataclass(frozen=True)
class TensorBuffer:
    """Flat data plus shape; ``len(data) == prod(shape)``."""

    data: np.ndarray
    shape: Tuple[int, ...]

    def __post_init__(self):
        if self.data.ndim != 1:
            raise TensorShapeError(f"tensor data must be flat, got {self.data.ndim} dimensions")
        expected = int(np.prod(self.shape, dtype=np.int64)) if self.shape else 1
        if self.data.size != expected:
            raise TensorShapeError(
                f"tensor data has {self.data.size} elements, shape {list(self.shape)} needs {expected}"
            )

    @classmethod
    def from_array(cls, array: np.ndarray) -> "TensorBuffer":
        return cls(data=np.ascontiguousarray(array).reshape(-1), shape=tuple(int(d) for d in array.shape))

    @property
    def batch_size(self) -> int:
        return self.shape[0]

    def as_array(self) -> np.ndarray:
        """View the data with its shape applied."""
        return self.data.reshape(self.shape)


class TensorAssembler:
    """Flattens encoded sequences into ids / mask / type-id buffers."""

    dtype = np.int64

    def __init__(self, max_length: int):
        self.max_length = max_length

    def assemble(
        self, sequences: Sequence[EncodedSequence]
    ) -> Tuple[TensorBuffer, TensorBuffer, TensorBuffer]:
        batch_size = len(sequences)
        shape = (batch_size, self.max_length)

        ids = np.empty(shape, dtype=self.dtype)
        mask = np.empty(shape, dtype=self.dtype)
        type_ids = np.empty(shape, dtype=self.dtype)

        for row, sequence in enumerate(sequences):
            if not (len(sequence.ids) == len(sequence.attention_mask) == len(sequence.type_ids) == self.max_length):
                raise TensorShapeError(
                    f"sequence {row} has lengths "
                    f"{len(sequence.ids)}/{len(sequence.attention_mask)}/{len(sequence.type_ids)}, "
                    f"expected {self.max_length}"
                )
            ids[row] = sequence.ids
            mask[row] = sequence.attention_mask
            type_ids[row] = sequence.type_ids

        return (
            TensorBuffer(ids.reshape(-1), shape),
            TensorBuffer(mask.reshape(-1), shape),
            TensorBuffer(type_ids.reshape(-1), shape),
        )
