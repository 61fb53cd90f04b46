"""
Feed Repository
===============

Feeds and categories. Feed fetching lives elsewhere; this repository only
records the sources entries belong to and their owners.
"""

from typing import Optional

from ..database.models import Category, Feed, to_db_timestamp
from ..database.connection import DatabaseConnection
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import DatabaseError, ErrorCode


class FeedRepository:
    """Repository for Feed and Category records."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection
        self.logger = get_logger_for_component("feed_repository")

    def create_category(self, category: Category) -> int:
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    "INSERT INTO categories (user_id, name, created_at) VALUES (?, ?, ?)",
                    (category.user_id, category.name, to_db_timestamp(category.created_at)),
                )
                conn.commit()
                return cursor.lastrowid

        except Exception as e:
            raise DatabaseError(
                f"Failed to create category: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    def get_category(self, category_id: int) -> Optional[Category]:
        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM categories WHERE id = ?", (category_id,)
                ).fetchone()
                return Category(**dict(row)) if row else None

        except Exception as e:
            self.logger.error(f"Failed to get category {category_id}: {e}")
            return None

    def create_feed(self, feed: Feed) -> int:
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO feeds (user_id, title, url, category_id, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        feed.user_id,
                        feed.title,
                        feed.url,
                        feed.category_id,
                        to_db_timestamp(feed.created_at),
                    ),
                )
                conn.commit()
                feed_id = cursor.lastrowid

            self.logger.debug(f"Created feed {feed_id}: {feed.title}")
            return feed_id

        except Exception as e:
            raise DatabaseError(
                f"Failed to create feed: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    def get_feed(self, feed_id: int) -> Optional[Feed]:
        try:
            with self.db.get_connection() as conn:
                row = conn.execute("SELECT * FROM feeds WHERE id = ?", (feed_id,)).fetchone()
                return Feed(**dict(row)) if row else None

        except Exception as e:
            self.logger.error(f"Failed to get feed {feed_id}: {e}")
            return None
