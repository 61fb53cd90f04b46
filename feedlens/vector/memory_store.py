"""In-memory vector store using a brute-force scan."""

import threading
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .base import VectorSearchResult, VectorStore, VectorStoreConfig, batch_similarity
from ..utils.logging import get_logger_for_component


class MemoryVectorStore(VectorStore):
    """Reference backend for development and tests.

    Vectors are rows of one float64 matrix and a search scores the query
    against every row at once, so it suits small to moderate collections.
    """

    def __init__(self, config: Optional[VectorStoreConfig] = None):
        super().__init__(config)
        self._matrix = np.empty((0, self.config.dimension), dtype=np.float64)
        self._ids: List[str] = []
        self._rows: Dict[str, int] = {}
        self._metadata: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.logger = get_logger_for_component("vector_store")

    def store(
        self, entry_id: str, vector: Sequence[float], metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        values = self.validate_vector(vector)
        with self._lock:
            row = self._rows.get(entry_id)
            if row is None:
                self._rows[entry_id] = len(self._ids)
                self._ids.append(entry_id)
                self._matrix = np.vstack([self._matrix, values])
            else:
                self._matrix[row] = values
            self._metadata[entry_id] = dict(metadata or {})

    def get(self, entry_id: str) -> Optional[List[float]]:
        with self._lock:
            row = self._rows.get(entry_id)
            return None if row is None else self._matrix[row].tolist()

    def search(
        self,
        query: Sequence[float],
        limit: int = 10,
        threshold: Optional[float] = None,
    ) -> List[VectorSearchResult]:
        query_values = self.validate_vector(query)
        if limit <= 0:
            return []

        with self._lock:
            matrix = self._matrix
            ids = list(self._ids)
            metadata = {entry_id: dict(self._metadata[entry_id]) for entry_id in ids}

        scores = batch_similarity(query_values, matrix, self.config.metric)
        # stable sort keeps insertion order among equal scores
        order = np.argsort(-scores, kind="stable")
        if threshold is not None:
            order = order[scores[order] >= threshold]

        return [
            VectorSearchResult(ids[i], float(scores[i]), metadata[ids[i]])
            for i in order[:limit]
        ]

    def delete(self, entry_id: str) -> bool:
        with self._lock:
            row = self._rows.pop(entry_id, None)
            if row is None:
                return False
            self._matrix = np.delete(self._matrix, row, axis=0)
            del self._ids[row]
            self._metadata.pop(entry_id, None)
            self._rows = {eid: i for i, eid in enumerate(self._ids)}
            return True

    def size(self) -> int:
        return len(self._ids)

    def clear(self) -> None:
        with self._lock:
            self._matrix = np.empty((0, self.config.dimension), dtype=np.float64)
            self._ids.clear()
            self._rows.clear()
            self._metadata.clear()
