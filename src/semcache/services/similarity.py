"""Vector similarity helpers."""

from collections.abc import Sequence

import numpy as np

from semcache.domain.exceptions import DimensionMismatchError


def as_vector(values: Sequence[float] | np.ndarray, dtype=np.float64) -> np.ndarray:
    return np.asarray(values, dtype=dtype).reshape(-1)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity of two equal-length vectors.

    Raises DimensionMismatchError on length mismatch. A zero-magnitude
    vector has similarity 0 with everything.
    """
    x = as_vector(a)
    y = as_vector(b)
    if x.shape[0] != y.shape[0]:
        raise DimensionMismatchError(x.shape[0], y.shape[0])

    magnitude = float(np.linalg.norm(x) * np.linalg.norm(y))
    if magnitude == 0.0:
        return 0.0
    return float(np.dot(x, y) / magnitude)


def l2_normalize(values: Sequence[float] | np.ndarray, dtype=np.float32) -> np.ndarray:
    """Unit-length copy of a vector; zero vectors are returned unchanged."""
    x = as_vector(values, dtype=dtype)
    norm = np.linalg.norm(x)
    if norm == 0:
        return x
    return x / norm
