"""In-memory FAISS index mapping cache keys to normalized vectors."""

from collections.abc import Sequence

import faiss
import numpy as np

from semcache.domain.exceptions import DimensionMismatchError
from semcache.services.similarity import l2_normalize


class VectorIndex:
    """Inner-product index over unit vectors, i.e. cosine similarity.

    Scores are float32 and only used to shortlist candidates; callers
    re-score exactly before applying a threshold.
    """

    def __init__(self, dimension: int):
        self._dimension = dimension
        self._index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))
        self._positions: dict[str, int] = {}
        self._keys: dict[int, str] = {}
        self._next_position = 0

    def _prepare(self, embedding: Sequence[float]) -> np.ndarray:
        x = l2_normalize(embedding)
        if x.shape[0] != self._dimension:
            raise DimensionMismatchError(self._dimension, x.shape[0])
        return x.reshape(1, -1)

    def add(self, key: str, embedding: Sequence[float]) -> int:
        x = self._prepare(embedding)
        self.remove(key)
        position_id = self._next_position
        self._next_position += 1
        self._index.add_with_ids(x, np.array([position_id], dtype=np.int64))
        self._positions[key] = position_id
        self._keys[position_id] = key
        return position_id

    def search(self, embedding: Sequence[float], k: int) -> list[tuple[str, float]]:
        x = self._prepare(embedding)
        k = min(k, self._index.ntotal)
        if k <= 0:
            return []
        scores, indices = self._index.search(x, k)
        hits = []
        for position_id, score in zip(indices[0], scores[0]):
            key = self._keys.get(int(position_id))
            if key is not None:
                hits.append((key, float(score)))
        return hits

    def remove(self, key: str) -> bool:
        position_id = self._positions.pop(key, None)
        if position_id is None:
            return False
        del self._keys[position_id]
        self._index.remove_ids(np.array([position_id], dtype=np.int64))
        return True

    def __contains__(self, key: str) -> bool:
        return key in self._positions

    @property
    def size(self) -> int:
        return len(self._positions)

    @property
    def dimension(self) -> int:
        return self._dimension
