"""
Persistent vector store backed by sqlite-vec.

Vectors live in ``entries.embedding`` as packed float32 blobs. Distances are
computed by sqlite-vec's scalar functions and translated into the shared
similarity convention inside the query, so threshold, ordering and limit are
all applied by SQLite.
"""

import json
import sqlite3
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .base import VectorSearchResult, VectorStore, VectorStoreConfig, vector_norm
from ..config.settings import SimilarityMetric
from ..database.connection import DatabaseConnection
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import (
    ConfigurationError,
    DatabaseError,
    ErrorCode,
    ResourceNotFoundError,
)


def to_f32(vector: Sequence[float]) -> np.ndarray:
    return np.asarray(vector, dtype=np.float32)


def deserialize_f32(blob: bytes) -> List[float]:
    return np.frombuffer(blob, dtype=np.float32).astype(np.float64).tolist()


class SqliteVectorStore(VectorStore):
    """Vector store over the entries table using sqlite-vec distance functions."""

    def __init__(self, db: DatabaseConnection, config: Optional[VectorStoreConfig] = None):
        super().__init__(config)
        self.db = db
        self.logger = get_logger_for_component("vector_store")
        if not self.check_available():
            raise ConfigurationError(
                "sqlite-vec extension is not loaded on the database connections",
                config_key="vector_store.backend",
                error_code=ErrorCode.VECTOR_BACKEND_UNKNOWN,
            )

    def check_available(self) -> bool:
        try:
            with self.db.get_connection() as conn:
                version = conn.execute("SELECT vec_version()").fetchone()[0]
            self.logger.debug(f"sqlite-vec {version} available")
            return True
        except sqlite3.Error:
            return False

    def store(
        self, entry_id: str, vector: Sequence[float], metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        # norms are taken from the float32 values actually stored
        values = to_f32(self.validate_vector(vector))
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    """
                    UPDATE entries
                    SET embedding = ?, embedding_norm = ?, embedding_metadata = ?
                    WHERE id = ?
                    """,
                    (
                        values.tobytes(),
                        vector_norm(values),
                        json.dumps(metadata or {}, ensure_ascii=False),
                        entry_id,
                    ),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to store embedding for {entry_id}: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

        if cursor.rowcount == 0:
            raise ResourceNotFoundError(f"Entry not found: {entry_id}", resource_id=entry_id)

    def get(self, entry_id: str) -> Optional[List[float]]:
        with self.db.get_connection() as conn:
            row = conn.execute(
                "SELECT embedding FROM entries WHERE id = ?", (entry_id,)
            ).fetchone()
        if row is None or row["embedding"] is None:
            return None
        return deserialize_f32(row["embedding"])

    def _similarity_sql(self, query_norm: float) -> str:
        metric = self.config.metric
        if metric is SimilarityMetric.COSINE:
            if query_norm == 0:
                return "0.0"
            return (
                "CASE WHEN embedding_norm = 0 THEN 0.0 "
                "ELSE 1.0 - vec_distance_cosine(embedding, :query) END"
            )
        if metric is SimilarityMetric.L2:
            return "1.0 / (1.0 + vec_distance_l2(embedding, :query))"
        if metric is SimilarityMetric.INNER_PRODUCT:
            # <a,b> = (|a|^2 + |b|^2 - |a-b|^2) / 2
            return (
                "(embedding_norm * embedding_norm + :query_norm_sq"
                " - vec_distance_l2(embedding, :query) * vec_distance_l2(embedding, :query)) / 2.0"
            )
        raise ConfigurationError(f"Unsupported similarity metric: {metric}")

    def search(
        self,
        query: Sequence[float],
        limit: int = 10,
        threshold: Optional[float] = None,
    ) -> List[VectorSearchResult]:
        values = to_f32(self.validate_vector(query))
        if limit <= 0:
            return []

        query_norm = vector_norm(values)
        sql = f"""
            SELECT id, embedding_metadata, similarity FROM (
                SELECT id, embedding_metadata, {self._similarity_sql(query_norm)} AS similarity
                FROM entries
                WHERE embedding IS NOT NULL AND vec_length(embedding) = :dimension
            )
            WHERE :threshold IS NULL OR similarity >= :threshold
            ORDER BY similarity DESC, id
            LIMIT :limit
        """
        params = {
            "query": values.tobytes(),
            "query_norm_sq": query_norm * query_norm,
            "dimension": self.config.dimension,
            "threshold": threshold,
            "limit": limit,
        }

        try:
            with self.db.get_connection() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Vector search failed: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

        return [
            VectorSearchResult(
                entry_id=row["id"],
                similarity=float(row["similarity"]),
                metadata=json.loads(row["embedding_metadata"] or "{}"),
            )
            for row in rows
        ]

    def delete(self, entry_id: str) -> bool:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE entries
                SET embedding = NULL, embedding_norm = NULL, embedding_metadata = NULL
                WHERE id = ? AND embedding IS NOT NULL
                """,
                (entry_id,),
            )
            conn.commit()
            return cursor.rowcount > 0

    def size(self) -> int:
        with self.db.get_connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM entries WHERE embedding IS NOT NULL"
            ).fetchone()[0]

    def clear(self) -> None:
        with self.db.get_connection() as conn:
            conn.execute(
                "UPDATE entries SET embedding = NULL, embedding_norm = NULL, "
                "embedding_metadata = NULL WHERE embedding IS NOT NULL"
            )
            conn.commit()
