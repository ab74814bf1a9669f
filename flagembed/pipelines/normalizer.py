"""First-token pooling and L2 normalization of hidden states.

Each input's embedding is the hidden state at position 0 (the ``[CLS]``
token), scaled to unit length. ``EPSILON`` is added after the division, so
every component is shifted by ``1e-12`` and the resulting norm is
``~1 + EPSILON * sqrt(dim)``. Vectors already stored elsewhere were produced
this way, so the offset stays.
"""

from typing import List

import numpy as np
import structlog

from flagembed.common.errors import TensorShapeError
from flagembed.encoders.tensors import TensorBuffer

logger = structlog.get_logger("normalizer")

EPSILON = np.float32(1e-12)


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    """Return ``vector / ||vector|| + EPSILON`` as float32.

    An all-zero vector has no direction and comes back as NaNs.
    """
    vector = np.asarray(vector, dtype=np.float32)
    norm = np.sqrt(np.sum(vector * vector, dtype=np.float32))
    with np.errstate(divide="ignore", invalid="ignore"):
        return vector / norm + EPSILON


class Normalizer:
    """Turns a ``[batch, seq_len, hidden_dim]`` buffer into one vector per input."""

    def normalize(self, hidden_states: TensorBuffer) -> List[np.ndarray]:
        if len(hidden_states.shape) != 3:
            raise TensorShapeError(
                f"hidden states must be [batch, seq_len, hidden_dim], got {list(hidden_states.shape)}"
            )
        batch_size, _, hidden_dim = hidden_states.shape
        states = hidden_states.as_array()

        embeddings = []
        for row in range(batch_size):
            first_token = states[row, 0, :]
            if not np.any(first_token):
                logger.warning("Degenerate hidden state, embedding will be NaN", row=row, dim=hidden_dim)
            embeddings.append(l2_normalize(first_token))
        return embeddings
