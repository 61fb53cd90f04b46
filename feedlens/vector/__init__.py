"""
Vector stores for entry embeddings.

The sqlite backend is imported lazily by the factory so the memory backend
works without the sqlite-vec extension.
"""

from .base import VectorRecord, VectorSearchResult, VectorStore, VectorStoreConfig, calculate_similarity
from .factory import create_vector_store, vector_store_from_settings
from .memory_store import MemoryVectorStore

__all__ = [
    "VectorRecord",
    "VectorSearchResult",
    "VectorStore",
    "VectorStoreConfig",
    "calculate_similarity",
    "create_vector_store",
    "vector_store_from_settings",
    "MemoryVectorStore",
]
