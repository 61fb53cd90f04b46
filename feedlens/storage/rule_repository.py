"""
Rule Repository
===============

Persistence for user automation rules and their match statistics.
"""

from datetime import datetime
from typing import List, Optional

from ..database.models import Rule, dump_actions, dump_conditions, to_db_timestamp, utc_now
from ..database.connection import DatabaseConnection
from ..rules.validation import validate_rule
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import DatabaseError, ErrorCode


class RuleRepository:
    """Repository for Rule CRUD operations."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection
        self.logger = get_logger_for_component("rule_repository")

    def create_rule(self, rule: Rule, validate: bool = True) -> int:
        """Create a new rule.

        Args:
            rule: Rule to create
            validate: Reject drafts with unknown fields/operators or missing params

        Returns:
            Created rule ID

        Raises:
            ValidationError: If the rule is malformed
            DatabaseError: If creation fails
        """
        if validate:
            validate_rule(rule)

        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO rules (user_id, name, is_enabled, conditions, actions,
                                       matched_count, last_matched_at, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        rule.user_id,
                        rule.name,
                        rule.is_enabled,
                        dump_conditions(rule.conditions),
                        dump_actions(rule.actions),
                        rule.matched_count,
                        to_db_timestamp(rule.last_matched_at),
                        to_db_timestamp(rule.created_at),
                    ),
                )
                conn.commit()
                rule_id = cursor.lastrowid

            self.logger.info(f"Created rule '{rule.name}' ({rule_id}) for user {rule.user_id}")
            return rule_id

        except Exception as e:
            raise DatabaseError(
                f"Failed to create rule: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    def get_rule(self, rule_id: int) -> Optional[Rule]:
        try:
            with self.db.get_connection() as conn:
                row = conn.execute("SELECT * FROM rules WHERE id = ?", (rule_id,)).fetchone()
                return Rule.from_db_row(row) if row else None

        except Exception as e:
            self.logger.error(f"Failed to get rule {rule_id}: {e}")
            return None

    def get_enabled_rules(self, user_id: Optional[str] = None) -> List[Rule]:
        """Enabled rules in creation order, optionally scoped to one user.

        Raises:
            DatabaseError: If the query fails
        """
        query = "SELECT * FROM rules WHERE is_enabled = 1"
        params: tuple = ()
        if user_id is not None:
            query += " AND user_id = ?"
            params = (user_id,)
        query += " ORDER BY created_at ASC, id ASC"

        try:
            with self.db.get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
                return [Rule.from_db_row(row) for row in rows]

        except Exception as e:
            raise DatabaseError(
                f"Failed to load enabled rules: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    def record_match(self, rule_id: int, matched_at: Optional[datetime] = None) -> bool:
        """Increment the match counter and stamp the match time atomically."""
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    """
                    UPDATE rules
                    SET matched_count = matched_count + 1, last_matched_at = ?
                    WHERE id = ?
                    """,
                    (to_db_timestamp(matched_at or utc_now()), rule_id),
                )
                conn.commit()
                return cursor.rowcount > 0

        except Exception as e:
            raise DatabaseError(
                f"Failed to record match for rule {rule_id}: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    def set_enabled(self, rule_id: int, enabled: bool) -> bool:
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    "UPDATE rules SET is_enabled = ? WHERE id = ?", (enabled, rule_id)
                )
                conn.commit()
                return cursor.rowcount > 0

        except Exception as e:
            self.logger.error(f"Failed to update rule {rule_id}: {e}")
            return False

    def delete_rule(self, rule_id: int) -> bool:
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
                conn.commit()
                return cursor.rowcount > 0

        except Exception as e:
            self.logger.error(f"Failed to delete rule {rule_id}: {e}")
            return False
