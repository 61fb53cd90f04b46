"""
FeedLens Database Connection Management
=======================================

SQLite connection pool and transaction management. Connections optionally
load the sqlite-vec extension so the persistent vector store can use its
distance functions.
"""

import sqlite3
import threading
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Generator, List, Dict, Any
from queue import Queue, Empty, Full

from ..utils.exceptions import DatabaseError, ErrorCode

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """Thread-safe SQLite database connection manager with pooling."""

    def __init__(
        self,
        db_path: str = "data/feedlens.db",
        pool_size: int = 5,
        load_vector_extension: bool = False,
        busy_timeout_ms: int = 5000,
    ):
        """Initialize database connection manager.

        Args:
            db_path: Path to SQLite database file
            pool_size: Maximum number of connections in pool
            load_vector_extension: Load sqlite-vec into every connection
            busy_timeout_ms: How long a writer waits for a lock
        """
        self.db_path = Path(db_path)
        self.pool_size = pool_size
        self.load_vector_extension = load_vector_extension
        self.busy_timeout_ms = busy_timeout_ms
        self.pool: Queue = Queue(maxsize=pool_size)
        self.lock = threading.Lock()
        self._total_connections = 0

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_pool()

    def _initialize_pool(self) -> None:
        for _ in range(self.pool_size):
            self.pool.put(self._create_connection())

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new configured SQLite connection."""
        try:
            conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=self.busy_timeout_ms / 1000.0,
            )
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Cannot open database {self.db_path}: {e}",
                error_code=ErrorCode.DATABASE_CONNECTION,
            ) from e

        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        conn.execute("PRAGMA temp_store = MEMORY")

        if self.load_vector_extension:
            self._load_sqlite_vec(conn)

        conn.row_factory = sqlite3.Row

        with self.lock:
            self._total_connections += 1

        logger.debug(f"Created database connection #{self._total_connections}")
        return conn

    @staticmethod
    def _load_sqlite_vec(conn: sqlite3.Connection) -> None:
        import sqlite_vec

        try:
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
        except (AttributeError, sqlite3.Error) as e:
            conn.close()
            raise DatabaseError(
                f"Failed to load sqlite-vec extension: {e}",
                error_code=ErrorCode.DATABASE_CONNECTION,
                recoverable=False,
            ) from e

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a connection from the pool with automatic return.

        Usage:
            with db.get_connection() as conn:
                rows = conn.execute("SELECT * FROM entries").fetchall()
        """
        start_time = time.time()
        conn = None

        try:
            try:
                conn = self.pool.get(timeout=10.0)
            except Empty:
                logger.warning("Connection pool exhausted, creating new connection")
                conn = self._create_connection()

            acquisition_time = time.time() - start_time
            if acquisition_time > 1.0:
                logger.warning(
                    f"Database connection acquisition took {acquisition_time:.2f}s"
                )

            yield conn

        except sqlite3.Error as e:
            logger.error(f"Database connection error: {e}")
            if conn is not None and conn.in_transaction:
                conn.rollback()
            raise
        finally:
            if conn is not None:
                self._release(conn)

    def _release(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            # Never hand back a connection holding a write lock
            conn.rollback()
        try:
            self.pool.put_nowait(conn)
        except Full:
            conn.close()
            with self.lock:
                self._total_connections -= 1

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Execute operations within a write transaction.

        ``BEGIN IMMEDIATE`` takes the write lock up front, so read-then-write
        sequences (job claims, dedup checks) are atomic across processes.

        Usage:
            with db.transaction() as conn:
                conn.execute("UPDATE jobs ...")
                conn.execute("INSERT INTO jobs ...")
        """
        with self.get_connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.commit()
            except Exception as e:
                conn.rollback()
                logger.error(f"Transaction rolled back due to error: {e}")
                raise

    def execute_query(self, query: str, params: tuple = ()) -> List[sqlite3.Row]:
        """Execute a SELECT query and return all rows."""
        with self.get_connection() as conn:
            return conn.execute(query, params).fetchall()

    def execute_one(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        """Execute a query and return a single row or None."""
        with self.get_connection() as conn:
            return conn.execute(query, params).fetchone()

    def execute_update(self, query: str, params: tuple = ()) -> int:
        """Execute an INSERT/UPDATE/DELETE query.

        Returns:
            Number of affected rows
        """
        with self.get_connection() as conn:
            cursor = conn.execute(query, params)
            conn.commit()
            return cursor.rowcount

    def get_database_info(self) -> Dict[str, Any]:
        """Get database size and table row counts."""
        with self.get_connection() as conn:
            page_count = conn.execute("PRAGMA page_count").fetchone()[0]
            page_size = conn.execute("PRAGMA page_size").fetchone()[0]

            table_counts = {}
            for table in ("categories", "feeds", "entries", "rules", "jobs"):
                try:
                    table_counts[table] = conn.execute(
                        f"SELECT COUNT(*) FROM {table}"
                    ).fetchone()[0]
                except sqlite3.Error:
                    table_counts[table] = 0

            return {
                "database_size_mb": page_count * page_size / (1024 * 1024),
                "table_counts": table_counts,
                "connection_pool_size": self.pool.qsize(),
                "total_connections": self._total_connections,
                "vector_extension": self.load_vector_extension,
            }

    def close_all_connections(self) -> None:
        """Close all connections in the pool."""
        logger.info("Closing all database connections")

        while True:
            try:
                conn = self.pool.get_nowait()
            except Empty:
                break
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing connection: {e}")

        with self.lock:
            self._total_connections = 0
