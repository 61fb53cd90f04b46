"""
Rule Engine
===========

Matches user automation rules against entries and applies their actions.

Conditions are ANDed; evaluation never raises, a condition that cannot be
evaluated (unknown field, bad regex, non-numeric comparison) is simply
False. Actions run in order and each failure is logged and skipped.
"""

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

from ..database.models import (
    AddTagAction,
    ArchiveAction,
    AssignCategoryAction,
    Condition,
    MarkReadAction,
    MarkUnreadAction,
    RemoveTagAction,
    Rule,
    RuleDraft,
    SkipAction,
    StarAction,
    UnarchiveAction,
    UnstarAction,
    utc_now,
)
from ..storage.entry_repository import EntryContext, EntryRepository
from ..utils.logging import get_logger_for_component

if TYPE_CHECKING:
    from ..storage.rule_repository import RuleRepository


@dataclass
class RuleProcessingResult:
    """Outcome of running all enabled rules against one entry.

    ``actions`` counts every action of every matched rule, applied or not.
    """
    entry_id: str
    matched: List[str] = field(default_factory=list)
    actions: int = 0


@dataclass
class ConditionTestResult:
    condition: Condition
    match_count: int
    total_entries: int


@dataclass
class RuleTestResult:
    """Dry-run statistics for a rule draft."""
    total_entries: int
    match_count: int
    conditions: List[ConditionTestResult] = field(default_factory=list)


def resolve_field(context: EntryContext, field_name: str) -> Any:
    """Value of a rule field for an entry.

    Absent text fields resolve to an empty string; unknown fields to ``None``.
    """
    entry = context.entry
    if field_name == "title":
        return entry.title or ""
    if field_name == "content":
        return entry.content or entry.summary or ""
    if field_name == "author":
        return entry.author or ""
    if field_name == "category":
        return context.category_name or ""
    if field_name == "tag":
        return list(entry.tags)
    if field_name == "feedTitle":
        return context.feed_title or ""
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _contains(field_value: Any, needle: str) -> bool:
    # string fields only; the tag list is reached through ``in``
    return isinstance(field_value, str) and needle in field_value.lower()


def _equals(field_value: Any, expected: Any) -> bool:
    return field_value is not None and field_value == expected


def evaluate_condition(context: EntryContext, condition: Condition) -> bool:
    """Evaluate one condition. Never raises."""
    value = resolve_field(context, condition.field)
    expected = condition.value
    operator = condition.operator

    if operator == "contains":
        return _contains(value, str(expected).lower())
    if operator == "notContains":
        return not _contains(value, str(expected).lower())
    if operator == "equals":
        return _equals(value, expected)
    if operator == "notEquals":
        return not _equals(value, expected)

    if operator == "matches":
        try:
            pattern = re.compile(str(expected), re.IGNORECASE)
        except re.error:
            return False
        return isinstance(value, str) and pattern.search(value) is not None

    if operator == "in":
        if not isinstance(expected, list):
            return False
        if isinstance(value, list):
            return any(item in expected for item in value)
        return value is not None and value in expected

    if operator in ("gt", "lt"):
        if not _is_number(value):
            return False
        right = _as_number(expected)
        if right is None:
            return False
        left = float(value)
        return left > right if operator == "gt" else left < right

    return False


class RuleEngine:
    """Evaluates rules against entries and executes matched actions."""

    def __init__(self, entries: EntryRepository, rules: "RuleRepository", sample_size: int = 100):
        self.entries = entries
        self.rules = rules
        self.sample_size = sample_size
        self.logger = get_logger_for_component("rule_engine")

    @staticmethod
    def _matches(context: EntryContext, conditions: Sequence[Condition]) -> bool:
        return all(evaluate_condition(context, condition) for condition in conditions)

    def match_rule(self, entry_id: str, rule: RuleDraft) -> bool:
        """True when every condition of ``rule`` holds for the entry.

        A rule without conditions matches everything; a missing entry matches
        nothing.
        """
        context = self.entries.get_entry_context(entry_id)
        if context is None:
            return False
        return self._matches(context, rule.conditions)

    def execute_actions(self, entry_id: str, actions: Sequence[Any]) -> int:
        """Apply actions in order; returns how many were applied."""
        applied = 0
        for action in actions:
            try:
                if self._apply(entry_id, action):
                    applied += 1
            except Exception as e:
                self.logger.error(
                    f"Action {getattr(action, 'type', action)!r} failed for entry {entry_id}: {e}"
                )
        return applied

    def _apply(self, entry_id: str, action: Any) -> bool:
        if isinstance(action, MarkReadAction):
            return self.entries.update_flags(entry_id, is_read=True, read_at=utc_now())
        if isinstance(action, MarkUnreadAction):
            return self.entries.update_flags(entry_id, is_read=False, read_at=None)
        if isinstance(action, StarAction):
            return self.entries.update_flags(entry_id, is_starred=True)
        if isinstance(action, UnstarAction):
            return self.entries.update_flags(entry_id, is_starred=False)
        if isinstance(action, ArchiveAction):
            return self.entries.update_flags(entry_id, is_archived=True)
        if isinstance(action, UnarchiveAction):
            return self.entries.update_flags(entry_id, is_archived=False)

        if isinstance(action, AssignCategoryAction):
            if action.category_id is None:
                self.logger.warning(f"assignCategory without categoryId ignored for entry {entry_id}")
                return False
            return self.entries.update_flags(entry_id, category_id=action.category_id)

        if isinstance(action, (AddTagAction, RemoveTagAction)):
            if not action.tag:
                self.logger.warning(f"{action.type} without tag ignored for entry {entry_id}")
                return False
            if isinstance(action, AddTagAction):
                return self.entries.add_tag(entry_id, action.tag)
            return self.entries.remove_tag(entry_id, action.tag)

        if isinstance(action, SkipAction):
            return False

        self.logger.warning(f"Unsupported action {action!r} for entry {entry_id}")
        return False

    def process_entry(self, entry_id: str) -> RuleProcessingResult:
        """Run enabled rules (creation order) against one entry.

        Rules are scoped to the owner of the entry's feed when known.
        """
        result = RuleProcessingResult(entry_id=entry_id)
        context = self.entries.get_entry_context(entry_id)
        if context is None:
            self.logger.warning(f"Rule processing skipped, entry {entry_id} not found")
            return result

        rules: List[Rule] = self.rules.get_enabled_rules(context.user_id)
        for rule in rules:
            if not self._matches(context, rule.conditions):
                continue

            self.rules.record_match(rule.id, utc_now())
            result.matched.append(rule.name)
            self.execute_actions(entry_id, rule.actions)
            result.actions += len(rule.actions)

            # later rules see the effects of earlier actions
            context = self.entries.get_entry_context(entry_id) or context

        if result.matched:
            self.logger.info(
                f"Entry {entry_id} matched {len(result.matched)} rule(s), "
                f"{result.actions} action(s) executed"
            )
        return result

    def test_rule(self, user_id: str, draft: RuleDraft) -> RuleTestResult:
        """Dry-run ``draft`` over the user's most recent entries. No side effects."""
        contexts = self.entries.get_recent_entry_contexts(user_id, self.sample_size)
        total = len(contexts)

        per_condition = [
            ConditionTestResult(
                condition=condition,
                match_count=sum(1 for ctx in contexts if evaluate_condition(ctx, condition)),
                total_entries=total,
            )
            for condition in draft.conditions
        ]
        return RuleTestResult(
            total_entries=total,
            match_count=sum(1 for ctx in contexts if self._matches(ctx, draft.conditions)),
            conditions=per_condition,
        )
