"""Vector similarity between face embeddings."""
from __future__ import annotations

from typing import Sequence

import numpy as np

from phenomatch.errors import LengthMismatch


def as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    """Convert an embedding into a 1D float64 array."""
    return np.asarray(values, dtype=np.float64).reshape(-1)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity in [-1, 1].

    Raises:
        LengthMismatch: If the vectors have different dimensions

    A zero vector is a degenerate but valid embedding and scores 0.0.
    """
    vec_a = as_vector(a)
    vec_b = as_vector(b)
    if vec_a.shape != vec_b.shape:
        raise LengthMismatch(
            f"Embedding dimensions differ: {vec_a.shape[0]} vs {vec_b.shape[0]}"
        )

    norm_a = float(np.linalg.norm(vec_a))
    norm_b = float(np.linalg.norm(vec_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    # Rounding can push identical vectors a hair past 1.0
    return float(np.clip(similarity, -1.0, 1.0))
