"""
Vector store abstraction
========================

Embeddings keyed by entry id with nearest-neighbour search. Every backend
reports similarity with the same convention so callers can switch backends
without changing thresholds:

- cosine: dot(a, b) / (|a| * |b|), 0 when either norm is 0
- l2: 1 / (1 + euclidean distance)
- innerproduct: raw dot product
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np

from ..config.settings import SimilarityMetric
from ..utils.exceptions import DimensionMismatchError


@dataclass(frozen=True)
class VectorStoreConfig:
    dimension: int = 1536
    metric: SimilarityMetric = SimilarityMetric.COSINE


@dataclass
class VectorRecord:
    """One item for ``store_batch``."""
    entry_id: str
    vector: Sequence[float]
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class VectorSearchResult:
    entry_id: str
    similarity: float
    metadata: Dict[str, Any] = field(default_factory=dict)


def vector_norm(a: Sequence[float]) -> float:
    return float(np.linalg.norm(np.asarray(a, dtype=np.float64)))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity, defined as 0 when either vector has zero norm."""
    return calculate_similarity(a, b, SimilarityMetric.COSINE)


def batch_similarity(query: np.ndarray, matrix: np.ndarray, metric: SimilarityMetric) -> np.ndarray:
    """Similarity of ``query`` against every row of ``matrix``."""
    if matrix.shape[0] == 0:
        return np.zeros(0, dtype=np.float64)

    if metric is SimilarityMetric.COSINE:
        dots = matrix @ query
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        out = np.zeros_like(dots)
        np.divide(dots, norms, out=out, where=norms != 0)
        return out
    if metric is SimilarityMetric.L2:
        return 1.0 / (1.0 + np.linalg.norm(matrix - query, axis=1))
    if metric is SimilarityMetric.INNER_PRODUCT:
        return matrix @ query
    raise ValueError(f"Unsupported similarity metric: {metric}")


def calculate_similarity(
    a: Sequence[float], b: Sequence[float], metric: SimilarityMetric
) -> float:
    return float(batch_similarity(np.asarray(a, dtype=np.float64),
                                  np.asarray([b], dtype=np.float64), metric)[0])


class VectorStore(ABC):
    """Base class for vector store backends."""

    def __init__(self, config: Optional[VectorStoreConfig] = None):
        self.config = config or VectorStoreConfig()

    def get_config(self) -> VectorStoreConfig:
        return self.config

    def validate_vector(self, vector: Sequence[float]) -> np.ndarray:
        """Check the dimension and return the vector as a float64 array.

        Raises:
            DimensionMismatchError: If the length differs from the store dimension
        """
        if len(vector) != self.config.dimension:
            raise DimensionMismatchError(self.config.dimension, len(vector))
        return np.asarray(vector, dtype=np.float64)

    @abstractmethod
    def store(
        self, entry_id: str, vector: Sequence[float], metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Store or overwrite the vector for an entry."""

    def store_batch(self, items: Iterable[VectorRecord]) -> int:
        """Store items one by one. Not atomic: earlier items stay if a later one fails."""
        count = 0
        for item in items:
            self.store(item.entry_id, item.vector, item.metadata)
            count += 1
        return count

    @abstractmethod
    def get(self, entry_id: str) -> Optional[List[float]]:
        """Return the stored vector or None."""

    @abstractmethod
    def search(
        self,
        query: Sequence[float],
        limit: int = 10,
        threshold: Optional[float] = None,
    ) -> List[VectorSearchResult]:
        """Most similar entries first, at most ``limit``, none below ``threshold``."""

    @abstractmethod
    def delete(self, entry_id: str) -> bool:
        """Remove the vector only; the entry itself is untouched."""

    @abstractmethod
    def size(self) -> int:
        """Number of stored vectors."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every stored vector."""

    def close(self) -> None:
        """Release backend resources."""
