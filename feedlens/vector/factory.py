"""Vector store construction from configuration."""

from typing import Optional, Union

from .base import VectorStore, VectorStoreConfig
from .memory_store import MemoryVectorStore
from ..config.settings import VectorStoreBackend, VectorStoreSettings
from ..database.connection import DatabaseConnection
from ..utils.exceptions import ConfigurationError, ErrorCode


def create_vector_store(
    backend: Union[VectorStoreBackend, str],
    config: Optional[VectorStoreConfig] = None,
    db: Optional[DatabaseConnection] = None,
) -> VectorStore:
    """Build a vector store for ``backend``.

    Raises:
        ConfigurationError: Unknown backend, or sqlite backend without a database
    """
    try:
        backend = VectorStoreBackend(backend)
    except ValueError as e:
        raise ConfigurationError(
            f"Unknown vector store type: {backend}",
            config_key="vector_store.backend",
            error_code=ErrorCode.VECTOR_BACKEND_UNKNOWN,
        ) from e

    config = config or VectorStoreConfig()

    if backend is VectorStoreBackend.MEMORY:
        return MemoryVectorStore(config)

    if backend is VectorStoreBackend.SQLITE:
        if db is None:
            raise ConfigurationError(
                "The sqlite vector store needs a database connection",
                config_key="vector_store.backend",
            )
        from .sqlite_store import SqliteVectorStore

        return SqliteVectorStore(db, config)

    raise ConfigurationError(
        f"Unknown vector store type: {backend}",
        config_key="vector_store.backend",
        error_code=ErrorCode.VECTOR_BACKEND_UNKNOWN,
    )


def vector_store_from_settings(
    settings: VectorStoreSettings, db: Optional[DatabaseConnection] = None
) -> VectorStore:
    return create_vector_store(
        settings.backend,
        VectorStoreConfig(dimension=settings.dimension, metric=settings.metric),
        db=db,
    )
