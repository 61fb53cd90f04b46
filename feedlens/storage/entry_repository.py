"""
Entry Repository
================

Data access for entries: creation, analysis-state persistence, rule-driven
flag mutations and the lookups the queues and rule engine need.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Dict, Any

from ..database.models import Entry, PrelimStatus, to_db_timestamp, utc_now
from ..database.connection import DatabaseConnection
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import DatabaseError, ErrorCode

_ENTRY_CONTEXT_QUERY = """
    SELECT e.*,
           f.title AS feed_title,
           f.user_id AS feed_user_id,
           COALESCE(ec.name, fc.name) AS category_name
    FROM entries e
    LEFT JOIN feeds f ON e.feed_id = f.id
    LEFT JOIN categories ec ON e.category_id = ec.id
    LEFT JOIN categories fc ON f.category_id = fc.id
"""

# Columns rule actions are allowed to touch
_MUTABLE_FLAGS = {"is_read", "read_at", "is_starred", "is_archived", "category_id"}

_DEEP_FIELDS = {
    "ai_one_line_summary",
    "ai_summary",
    "ai_main_points",
    "ai_key_quotes",
    "ai_domain",
    "ai_subcategory",
    "ai_tags",
    "ai_score",
    "ai_score_dimensions",
    "ai_analysis_model",
    "ai_processing_time_ms",
    "ai_reflection_rounds",
    "ai_analyzed_at",
}


@dataclass
class EntryContext:
    """Entry plus the feed/category context rule conditions read."""
    entry: Entry
    feed_title: Optional[str] = None
    user_id: Optional[str] = None
    category_name: Optional[str] = None

    @classmethod
    def from_db_row(cls, row: Any) -> "EntryContext":
        data = dict(row)
        feed_title = data.pop("feed_title", None)
        user_id = data.pop("feed_user_id", None)
        category_name = data.pop("category_name", None)
        return cls(
            entry=Entry.from_db_row(data),
            feed_title=feed_title,
            user_id=user_id,
            category_name=category_name,
        )


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_db_timestamp(value)
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return value


class EntryRepository:
    """Repository for Entry persistence."""

    def __init__(self, db_connection: DatabaseConnection):
        """Initialize entry repository.

        Args:
            db_connection: Database connection manager
        """
        self.db = db_connection
        self.logger = get_logger_for_component("entry_repository")

    def create_entry(self, entry: Entry) -> str:
        """Insert a new entry.

        Raises:
            DatabaseError: If creation fails
        """
        try:
            with self.db.get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO entries (id, feed_id, title, content, summary, author,
                                         url, tags, category_id, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    self._insert_params(entry),
                )
                conn.commit()

            self.logger.debug(f"Created entry: {entry.id}")
            return entry.id

        except Exception as e:
            raise DatabaseError(
                f"Failed to create entry: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    def create_entries_batch(self, entries: List[Entry]) -> int:
        """Insert entries in one transaction, skipping ids that already exist."""
        if not entries:
            return 0

        try:
            with self.db.transaction() as conn:
                cursor = conn.executemany(
                    """
                    INSERT OR IGNORE INTO entries (id, feed_id, title, content, summary,
                                                   author, url, tags, category_id, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [self._insert_params(entry) for entry in entries],
                )
                created = cursor.rowcount

            self.logger.info(f"Batch created {created} entries")
            return created

        except Exception as e:
            raise DatabaseError(
                f"Failed to batch create entries: {e}",
                error_code=ErrorCode.DATABASE_TRANSACTION,
            ) from e

    @staticmethod
    def _insert_params(entry: Entry) -> tuple:
        return (
            entry.id,
            entry.feed_id,
            entry.title,
            entry.content,
            entry.summary,
            entry.author,
            entry.url,
            json.dumps(entry.tags, ensure_ascii=False),
            entry.category_id,
            to_db_timestamp(entry.created_at),
        )

    def get_entry(self, entry_id: str) -> Optional[Entry]:
        """Get entry by ID.

        Returns:
            Entry or None if it does not exist

        Raises:
            DatabaseError: If the lookup itself fails
        """
        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM entries WHERE id = ?", (entry_id,)
                ).fetchone()
        except Exception as e:
            raise DatabaseError(
                f"Failed to load entry {entry_id}: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

        return Entry.from_db_row(row) if row else None

    def get_entry_context(self, entry_id: str) -> Optional[EntryContext]:
        """Get entry with feed title, owner and effective category name."""
        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    _ENTRY_CONTEXT_QUERY + " WHERE e.id = ?", (entry_id,)
                ).fetchone()
        except Exception as e:
            raise DatabaseError(
                f"Failed to load entry context {entry_id}: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

        return EntryContext.from_db_row(row) if row else None

    def get_recent_entry_contexts(self, user_id: str, limit: int = 100) -> List[EntryContext]:
        """Most recent entries from the user's feeds, newest first."""
        try:
            with self.db.get_connection() as conn:
                rows = conn.execute(
                    _ENTRY_CONTEXT_QUERY
                    + " WHERE f.user_id = ? ORDER BY e.created_at DESC, e.id LIMIT ?",
                    (user_id, limit),
                ).fetchall()
                return [EntryContext.from_db_row(row) for row in rows]

        except Exception as e:
            self.logger.error(f"Failed to get recent entries for user {user_id}: {e}")
            return []

    def get_unanalyzed_entry_ids(self, limit: int = 100) -> List[str]:
        """IDs of entries with content but no preliminary result, newest first."""
        try:
            with self.db.get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT id FROM entries
                    WHERE content IS NOT NULL AND TRIM(content) != ''
                      AND prelim_status IS NULL
                    ORDER BY created_at DESC
                    LIMIT ?
                    """,
                    (limit,),
                ).fetchall()
                return [row["id"] for row in rows]

        except Exception as e:
            raise DatabaseError(
                f"Failed to scan unanalyzed entries: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    def save_preliminary_result(
        self,
        entry_id: str,
        *,
        ignore: bool,
        reason: str,
        value: int,
        summary: str,
        language: str,
        model: str,
        analyzed_at: Optional[datetime] = None,
    ) -> bool:
        """Persist a preliminary evaluation and its pass/reject status."""
        status = PrelimStatus.REJECTED if ignore else PrelimStatus.PASSED
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    """
                    UPDATE entries SET
                        prelim_status = ?, prelim_ignore = ?, prelim_reason = ?,
                        prelim_value = ?, prelim_summary = ?, prelim_language = ?,
                        prelim_model = ?, prelim_analyzed_at = ?
                    WHERE id = ?
                    """,
                    (
                        status.value,
                        ignore,
                        reason,
                        value,
                        summary,
                        language,
                        model,
                        to_db_timestamp(analyzed_at or utc_now()),
                        entry_id,
                    ),
                )
                conn.commit()
                return cursor.rowcount > 0

        except Exception as e:
            raise DatabaseError(
                f"Failed to save preliminary result for {entry_id}: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    def save_deep_analysis(self, entry_id: str, fields: Dict[str, Any]) -> bool:
        """Persist deep-analysis fields (``ai_*`` columns only)."""
        unknown = set(fields) - _DEEP_FIELDS
        if unknown:
            raise ValueError(f"Not deep-analysis fields: {sorted(unknown)}")
        return self._update_columns(entry_id, fields)

    def update_flags(self, entry_id: str, **fields: Any) -> bool:
        """Update user-visible entry state (read/star/archive/category)."""
        unknown = set(fields) - _MUTABLE_FLAGS
        if unknown:
            raise ValueError(f"Not mutable entry flags: {sorted(unknown)}")
        return self._update_columns(entry_id, fields)

    def _update_columns(self, entry_id: str, fields: Dict[str, Any]) -> bool:
        if not fields:
            return True

        set_clause = ", ".join(f"{column} = ?" for column in fields)
        values = [_encode(value) for value in fields.values()]
        values.append(entry_id)

        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    f"UPDATE entries SET {set_clause} WHERE id = ?", values
                )
                conn.commit()
                return cursor.rowcount > 0

        except Exception as e:
            raise DatabaseError(
                f"Failed to update entry {entry_id}: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    def add_tag(self, entry_id: str, tag: str) -> bool:
        """Add a tag if not already present."""
        return self._modify_tags(entry_id, lambda tags: tags if tag in tags else tags + [tag])

    def remove_tag(self, entry_id: str, tag: str) -> bool:
        return self._modify_tags(entry_id, lambda tags: [t for t in tags if t != tag])

    def _modify_tags(self, entry_id: str, change) -> bool:
        try:
            with self.db.transaction() as conn:
                row = conn.execute(
                    "SELECT tags FROM entries WHERE id = ?", (entry_id,)
                ).fetchone()
                if row is None:
                    return False

                tags = json.loads(row["tags"] or "[]")
                updated = change(tags)
                if updated != tags:
                    conn.execute(
                        "UPDATE entries SET tags = ? WHERE id = ?",
                        (json.dumps(updated, ensure_ascii=False), entry_id),
                    )
                return True

        except Exception as e:
            raise DatabaseError(
                f"Failed to update tags for entry {entry_id}: {e}",
                error_code=ErrorCode.DATABASE_TRANSACTION,
            ) from e

    def get_entry_count(self) -> int:
        try:
            with self.db.get_connection() as conn:
                result = conn.execute("SELECT COUNT(*) FROM entries").fetchone()
                return result[0] if result else 0

        except Exception as e:
            self.logger.error(f"Failed to get entry count: {e}")
            return 0
