"""
FeedLens Database Schema
========================

SQLite schema for the analysis pipeline:
- categories: user-owned categories
- feeds: feed sources, owned by a user, optionally categorised
- entries: ingested items with preliminary/deep analysis fields and embeddings
- rules: user automation rules (conditions and actions stored as JSON)
- jobs: durable analysis queue jobs
- queues: per-queue administrative state (paused flag)
"""

import sqlite3
import logging
from contextlib import closing
from pathlib import Path

logger = logging.getLogger(__name__)


class DatabaseSchema:
    """Database schema manager for the FeedLens SQLite database."""

    TABLES = ("categories", "feeds", "entries", "rules", "jobs", "queues")

    def __init__(self, db_path: str = "data/feedlens.db"):
        """Initialize database schema manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables with proper schema."""
        with closing(sqlite3.connect(self.db_path)) as conn:
            conn.execute("PRAGMA foreign_keys = ON")

            # Dependency order
            self._create_categories_table(conn)
            self._create_feeds_table(conn)
            self._create_entries_table(conn)
            self._create_rules_table(conn)
            self._create_jobs_table(conn)
            self._create_queues_table(conn)

            self._run_migrations(conn)
            self._create_indexes(conn)

            conn.commit()
            logger.info("Database schema created successfully")

    def _create_categories_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE(user_id, name)
            )
        """
        )

    def _create_feeds_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS feeds (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                url TEXT NOT NULL,
                category_id INTEGER,
                created_at TEXT NOT NULL,
                FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL,
                UNIQUE(user_id, url)
            )
        """
        )

    def _create_entries_table(self, conn: sqlite3.Connection) -> None:
        """Create entries table. Embeddings are float32 blobs."""
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS entries (
                id TEXT PRIMARY KEY,
                feed_id INTEGER,
                title TEXT NOT NULL,
                content TEXT,
                summary TEXT,
                author TEXT,
                url TEXT,
                tags TEXT NOT NULL DEFAULT '[]',  -- JSON array
                category_id INTEGER,
                is_read BOOLEAN NOT NULL DEFAULT FALSE,
                read_at TEXT,
                is_starred BOOLEAN NOT NULL DEFAULT FALSE,
                is_archived BOOLEAN NOT NULL DEFAULT FALSE,
                prelim_status TEXT CHECK (prelim_status IN ('passed', 'rejected')),
                prelim_value INTEGER,
                prelim_ignore BOOLEAN,
                prelim_reason TEXT,
                prelim_summary TEXT,
                prelim_language TEXT,
                prelim_analyzed_at TEXT,
                prelim_model TEXT,
                ai_one_line_summary TEXT,
                ai_summary TEXT,
                ai_main_points TEXT,  -- JSON array of {point, explanation, importance}
                ai_key_quotes TEXT,  -- JSON array
                ai_domain TEXT,
                ai_subcategory TEXT,
                ai_tags TEXT,  -- JSON array
                ai_score INTEGER CHECK (ai_score BETWEEN 1 AND 10),
                ai_score_dimensions TEXT,  -- JSON object
                ai_analysis_model TEXT,
                ai_processing_time_ms INTEGER,
                ai_reflection_rounds INTEGER,
                ai_analyzed_at TEXT,
                embedding BLOB,
                embedding_norm REAL,
                embedding_metadata TEXT,  -- JSON object
                created_at TEXT NOT NULL,
                FOREIGN KEY (feed_id) REFERENCES feeds(id) ON DELETE CASCADE,
                FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL
            )
        """
        )

    def _create_rules_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS rules (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                is_enabled BOOLEAN NOT NULL DEFAULT TRUE,
                conditions TEXT NOT NULL DEFAULT '[]',  -- JSON array
                actions TEXT NOT NULL DEFAULT '[]',  -- JSON array
                matched_count INTEGER NOT NULL DEFAULT 0,
                last_matched_at TEXT,
                created_at TEXT NOT NULL
            )
        """
        )

    def _create_jobs_table(self, conn: sqlite3.Connection) -> None:
        """Create jobs table. All times are unix epoch seconds."""
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                queue TEXT NOT NULL,
                name TEXT NOT NULL,
                entry_id TEXT,
                data TEXT NOT NULL DEFAULT '{}',  -- JSON object
                priority INTEGER NOT NULL DEFAULT 5,
                state TEXT NOT NULL CHECK (state IN ('waiting', 'delayed', 'active', 'completed', 'failed')),
                attempts_made INTEGER NOT NULL DEFAULT 0,
                max_attempts INTEGER NOT NULL DEFAULT 1,
                backoff_delay REAL NOT NULL DEFAULT 1.0,
                available_at REAL NOT NULL,
                lock_token TEXT,
                locked_until REAL,
                stalled_count INTEGER NOT NULL DEFAULT 0,
                progress INTEGER NOT NULL DEFAULT 0,
                result TEXT,
                failed_reason TEXT,
                created_at REAL NOT NULL,
                processed_at REAL,
                finished_at REAL
            )
        """
        )

    def _create_queues_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS queues (
                name TEXT PRIMARY KEY,
                paused BOOLEAN NOT NULL DEFAULT FALSE
            )
        """
        )

    def _create_indexes(self, conn: sqlite3.Connection) -> None:
        indexes = [
            # Entry indexes
            "CREATE INDEX IF NOT EXISTS idx_entries_feed ON entries(feed_id)",
            "CREATE INDEX IF NOT EXISTS idx_entries_created ON entries(created_at)",
            "CREATE INDEX IF NOT EXISTS idx_entries_prelim_status ON entries(prelim_status)",
            # Feed and rule indexes
            "CREATE INDEX IF NOT EXISTS idx_feeds_user ON feeds(user_id)",
            "CREATE INDEX IF NOT EXISTS idx_rules_user_enabled ON rules(user_id, is_enabled)",
            # Job indexes
            "CREATE INDEX IF NOT EXISTS idx_jobs_claim ON jobs(queue, state, priority, available_at)",
            "CREATE INDEX IF NOT EXISTS idx_jobs_entry ON jobs(queue, entry_id, state)",
            "CREATE INDEX IF NOT EXISTS idx_jobs_finished ON jobs(queue, state, finished_at)",
        ]

        for index_sql in indexes:
            conn.execute(index_sql)

    def _run_migrations(self, conn: sqlite3.Connection) -> None:
        """Add columns introduced after the first schema version."""
        entry_columns = {
            row[1] for row in conn.execute("PRAGMA table_info(entries)").fetchall()
        }

        if "embedding_metadata" not in entry_columns:
            logger.info("Adding embedding_metadata column to entries table")
            conn.execute("ALTER TABLE entries ADD COLUMN embedding_metadata TEXT")

    def verify_schema(self) -> bool:
        """Verify that every expected table exists."""
        try:
            with closing(sqlite3.connect(self.db_path)) as conn:
                tables = {
                    row[0]
                    for row in conn.execute(
                        """
                        SELECT name FROM sqlite_master
                        WHERE type='table' AND name NOT LIKE 'sqlite_%'
                    """
                    ).fetchall()
                }

                missing = set(self.TABLES) - tables
                if missing:
                    logger.error(f"Missing tables: {sorted(missing)}")
                    return False

                conn.execute("PRAGMA foreign_key_check")
                logger.info("Database schema verification passed")
                return True

        except sqlite3.Error as e:
            logger.error(f"Schema verification failed: {e}")
            return False
