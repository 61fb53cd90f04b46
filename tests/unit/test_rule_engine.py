"""
Tests for RuleEngine
====================

Condition operators, action execution, rule scoping and dry runs.
"""

import pytest

from feedlens.database.models import (
    AssignCategoryAction,
    Category,
    Condition,
    Feed,
    Rule,
    RuleDraft,
    StarAction,
)
from feedlens.rules.engine import RuleEngine, evaluate_condition, resolve_field
from feedlens.database.models import Entry
from feedlens.storage.entry_repository import EntryContext


def ctx(**entry_fields):
    extra = {
        key: entry_fields.pop(key)
        for key in ("feed_title", "user_id", "category_name")
        if key in entry_fields
    }
    data = {"id": "e1", "title": "New AI breakthrough"}
    data.update(entry_fields)
    return EntryContext(entry=Entry(**data), **extra)


def cond(field, operator, value):
    return Condition(field=field, operator=operator, value=value)


@pytest.fixture
def engine(entry_repo, rule_repo):
    return RuleEngine(entry_repo, rule_repo)


class TestResolveField:

    def test_content_falls_back_to_summary(self):
        assert resolve_field(ctx(summary="short"), "content") == "short"
        assert resolve_field(ctx(content="full", summary="short"), "content") == "full"

    def test_context_fields(self):
        context = ctx(feed_title="AI Weekly", category_name="Tech", tags=["x"])
        assert resolve_field(context, "feedTitle") == "AI Weekly"
        assert resolve_field(context, "category") == "Tech"
        assert resolve_field(context, "tag") == ["x"]

    def test_unknown_field(self):
        assert resolve_field(ctx(), "publishedAt") is None


class TestEvaluateCondition:
    """Operator semantics; evaluation never raises."""

    def test_contains_is_case_insensitive(self):
        assert evaluate_condition(ctx(), cond("title", "contains", "ai"))
        assert evaluate_condition(ctx(), cond("title", "contains", "BREAK"))
        assert not evaluate_condition(ctx(), cond("title", "contains", "robot"))

    def test_not_contains(self):
        assert evaluate_condition(ctx(), cond("title", "notContains", "robot"))
        assert not evaluate_condition(ctx(), cond("title", "notContains", "ai"))

    def test_contains_on_missing_field(self):
        assert not evaluate_condition(ctx(), cond("author", "contains", "x"))
        assert evaluate_condition(ctx(), cond("author", "notContains", "x"))

    def test_string_operators_reject_tag_list(self):
        context = ctx(tags=["machine-learning", "python"])
        assert not evaluate_condition(context, cond("tag", "contains", "learn"))
        assert not evaluate_condition(context, cond("tag", "notContains", "rust"))
        assert not evaluate_condition(context, cond("tag", "matches", "^mach"))

    def test_equals_is_exact(self):
        context = ctx(author="Jane Doe")
        assert evaluate_condition(context, cond("author", "equals", "Jane Doe"))
        assert not evaluate_condition(context, cond("author", "equals", "jane doe"))
        assert evaluate_condition(context, cond("author", "notEquals", "John"))

    def test_equals_on_tags_is_not_membership(self):
        context = ctx(tags=["ai"])
        assert not evaluate_condition(context, cond("tag", "equals", "ai"))
        assert evaluate_condition(context, cond("tag", "notEquals", "ai"))
        assert evaluate_condition(context, cond("tag", "in", ["ai"]))

    def test_equals_missing_field_is_false(self):
        assert not evaluate_condition(ctx(), cond("author", "equals", None))

    def test_matches(self):
        assert evaluate_condition(ctx(), cond("title", "matches", r"^new\s+ai"))
        assert not evaluate_condition(ctx(), cond("title", "matches", r"^ai"))

    def test_invalid_regex_is_false(self):
        assert evaluate_condition(ctx(), cond("title", "matches", "([unclosed")) is False

    def test_in(self):
        context = ctx(author="Jane", tags=["a", "b"])
        assert evaluate_condition(context, cond("author", "in", ["Jane", "John"]))
        assert not evaluate_condition(context, cond("author", "in", ["John"]))
        assert evaluate_condition(context, cond("tag", "in", ["b", "z"]))
        assert not evaluate_condition(context, cond("author", "in", "Jane"))

    def test_gt_lt_on_numeric_string_field_is_false(self):
        context = ctx(title="42")
        assert not evaluate_condition(context, cond("title", "gt", 10))
        assert not evaluate_condition(context, cond("title", "lt", "100"))

    def test_gt_lt_compare_numbers(self, monkeypatch):
        import feedlens.rules.engine as engine_module

        monkeypatch.setattr(engine_module, "resolve_field", lambda context, name: 42)
        assert evaluate_condition(ctx(), cond("title", "gt", 10))
        assert evaluate_condition(ctx(), cond("title", "lt", "100"))
        assert not evaluate_condition(ctx(), cond("title", "gt", 42))

    def test_gt_lt_ignore_booleans(self, monkeypatch):
        import feedlens.rules.engine as engine_module

        monkeypatch.setattr(engine_module, "resolve_field", lambda context, name: True)
        assert not evaluate_condition(ctx(), cond("title", "gt", 0))

    def test_gt_non_numeric_is_false(self):
        assert not evaluate_condition(ctx(), cond("title", "gt", 1))
        assert not evaluate_condition(ctx(title="5"), cond("title", "lt", "abc"))

    def test_unknown_operator_is_false(self):
        assert not evaluate_condition(ctx(), cond("title", "startsWith", "New"))


class TestRuleEngine:
    """Test suite for RuleEngine against a real database."""

    def create_rule(self, rule_repo, user_id="alice", **fields):
        data = {
            "name": "Star AI",
            "conditions": [{"field": "title", "operator": "contains", "value": "AI"}],
            "actions": [{"type": "star"}],
        }
        data.update(fields)
        rule_id = rule_repo.create_rule(Rule(user_id=user_id, **data))
        return rule_id

    def test_match_rule_ands_conditions(self, engine, make_entry):
        entry = make_entry(title="New AI breakthrough", author="Jane")
        both = RuleDraft(conditions=[cond("title", "contains", "ai"), cond("author", "equals", "Jane")])
        one_fails = RuleDraft(conditions=[cond("title", "contains", "ai"), cond("author", "equals", "Bob")])

        assert engine.match_rule(entry.id, both) is True
        assert engine.match_rule(entry.id, one_fails) is False

    def test_rule_without_conditions_matches(self, engine, make_entry):
        entry = make_entry()
        assert engine.match_rule(entry.id, RuleDraft()) is True

    def test_missing_entry_matches_nothing(self, engine):
        assert engine.match_rule("missing", RuleDraft()) is False

    def test_category_condition_uses_feed_category(self, engine, make_entry):
        entry = make_entry()
        assert engine.match_rule(entry.id, RuleDraft(conditions=[cond("category", "equals", "Tech")]))

    def test_process_entry_stars_and_counts_once(self, engine, make_entry, entry_repo, rule_repo):
        rule_id = self.create_rule(rule_repo)
        entry = make_entry(title="New AI breakthrough")

        result = engine.process_entry(entry.id)

        assert result.matched == ["Star AI"]
        assert result.actions == 1
        assert entry_repo.get_entry(entry.id).is_starred is True
        rule = rule_repo.get_rule(rule_id)
        assert rule.matched_count == 1
        assert rule.last_matched_at is not None

    def test_non_matching_rule_not_counted(self, engine, make_entry, entry_repo, rule_repo):
        rule_id = self.create_rule(rule_repo)
        entry = make_entry(title="Gardening tips")

        result = engine.process_entry(entry.id)

        assert result.matched == []
        assert entry_repo.get_entry(entry.id).is_starred is False
        assert rule_repo.get_rule(rule_id).matched_count == 0

    def test_disabled_rules_ignored(self, engine, make_entry, rule_repo):
        rule_id = self.create_rule(rule_repo)
        rule_repo.set_enabled(rule_id, False)
        entry = make_entry(title="AI news")

        assert engine.process_entry(entry.id).matched == []

    def test_rules_scoped_to_feed_owner(self, engine, make_entry, rule_repo):
        self.create_rule(rule_repo, user_id="bob")
        entry = make_entry(title="AI news")

        assert engine.process_entry(entry.id).matched == []

    def test_later_rules_see_earlier_actions(self, engine, make_entry, rule_repo, entry_repo):
        self.create_rule(rule_repo, name="tagger", actions=[{"type": "addTag", "params": {"tag": "ai"}}])
        self.create_rule(
            rule_repo,
            name="archiver",
            conditions=[{"field": "tag", "operator": "in", "value": ["ai"]}],
            actions=[{"type": "archive"}],
        )
        entry = make_entry(title="AI news")

        result = engine.process_entry(entry.id)

        assert result.matched == ["tagger", "archiver"]
        stored = entry_repo.get_entry(entry.id)
        assert stored.tags == ["ai"]
        assert stored.is_archived is True

    def test_action_count_includes_every_action(self, engine, make_entry, rule_repo, entry_repo):
        self.create_rule(rule_repo, name="r", conditions=[], actions=[{"type": "star"}, {"type": "skip"}])
        entry = make_entry()

        result = engine.process_entry(entry.id)

        assert result.matched == ["r"]
        assert result.actions == 2
        assert entry_repo.get_entry(entry.id).is_starred is True

    def test_process_missing_entry(self, engine):
        result = engine.process_entry("missing")
        assert result.matched == []
        assert result.actions == 0

    def test_execute_all_flag_actions(self, engine, make_entry, entry_repo):
        entry = make_entry()
        actions = RuleDraft(actions=[
            {"type": "markRead"}, {"type": "star"}, {"type": "archive"}, {"type": "skip"},
        ]).actions

        applied = engine.execute_actions(entry.id, actions)

        stored = entry_repo.get_entry(entry.id)
        assert applied == 3
        assert stored.is_read and stored.read_at is not None
        assert stored.is_starred and stored.is_archived

        engine.execute_actions(entry.id, RuleDraft(actions=[
            {"type": "markUnread"}, {"type": "unstar"}, {"type": "unarchive"},
        ]).actions)
        stored = entry_repo.get_entry(entry.id)
        assert not stored.is_read and stored.read_at is None
        assert not stored.is_starred and not stored.is_archived

    def test_tags_behave_as_set(self, engine, make_entry, entry_repo):
        entry = make_entry(tags=["python"])
        actions = RuleDraft(actions=[
            {"type": "addTag", "tag": "python"},
            {"type": "addTag", "tag": "rust"},
            {"type": "removeTag", "tag": "python"},
        ]).actions

        engine.execute_actions(entry.id, actions)

        assert entry_repo.get_entry(entry.id).tags == ["rust"]

    def test_assign_category_changes_only_the_entry(
        self, engine, make_entry, entry_repo, feed_repo, sample_feed
    ):
        target = feed_repo.create_category(Category(user_id="alice", name="Research"))
        entry = make_entry()
        sibling = make_entry()

        applied = engine.execute_actions(entry.id, [AssignCategoryAction(categoryId=target)])

        assert applied == 1
        assert entry_repo.get_entry(entry.id).category_id == target
        assert entry_repo.get_entry(sibling.id).category_id is None
        assert feed_repo.get_feed(sample_feed["feed_id"]).category_id == sample_feed["category_id"]
        assert entry_repo.get_entry_context(entry.id).category_name == "Research"

    def test_missing_params_are_noops(self, engine, make_entry, entry_repo):
        entry = make_entry()
        applied = engine.execute_actions(entry.id, [
            AssignCategoryAction(),
            RuleDraft(actions=[{"type": "addTag"}]).actions[0],
            StarAction(),
        ])

        assert applied == 1
        stored = entry_repo.get_entry(entry.id)
        assert stored.category_id is None
        assert stored.tags == []

    def test_failing_action_does_not_stop_later_ones(self, engine, make_entry, entry_repo, monkeypatch):
        entry = make_entry()

        def broken_add_tag(entry_id, tag):
            raise RuntimeError("disk full")

        monkeypatch.setattr(entry_repo, "add_tag", broken_add_tag)
        actions = RuleDraft(actions=[{"type": "addTag", "tag": "x"}, {"type": "star"}]).actions

        assert engine.execute_actions(entry.id, actions) == 1
        assert entry_repo.get_entry(entry.id).is_starred

    def test_test_rule_reports_counts_without_side_effects(
        self, engine, make_entry, entry_repo, rule_repo
    ):
        make_entry(title="AI one", author="Jane")
        make_entry(title="AI two", author="Bob")
        make_entry(title="Cooking", author="Jane")
        draft = RuleDraft(
            name="draft",
            conditions=[cond("title", "contains", "ai"), cond("author", "equals", "Jane")],
            actions=[{"type": "star"}],
        )

        result = engine.test_rule("alice", draft)

        assert result.total_entries == 3
        assert result.match_count == 1
        assert [c.match_count for c in result.conditions] == [2, 2]
        assert all(c.total_entries == 3 for c in result.conditions)
        assert not any(ctx.entry.is_starred for ctx in entry_repo.get_recent_entry_contexts("alice"))
        assert rule_repo.get_enabled_rules() == []

    def test_test_rule_for_unknown_user(self, engine, make_entry):
        make_entry()
        result = engine.test_rule("nobody", RuleDraft())
        assert result.total_entries == 0
        assert result.match_count == 0


class TestRuleRepository:

    def test_unknown_action_types_dropped_on_load(self, rule_repo, db):
        with db.get_connection() as conn:
            conn.execute(
                "INSERT INTO rules (user_id, name, is_enabled, conditions, actions, matched_count, created_at) "
                "VALUES ('alice', 'legacy', 1, '[]', ?, 0, '2024-01-01T00:00:00+00:00')",
                ('[{"type": "star"}, {"type": "sendEmail"}]',),
            )
            conn.commit()

        rules = rule_repo.get_enabled_rules("alice")

        assert len(rules) == 1
        assert [a.type for a in rules[0].actions] == ["star"]

    def test_params_shape_round_trips(self, rule_repo):
        rule_id = rule_repo.create_rule(Rule(
            user_id="alice",
            name="cat",
            actions=[{"type": "assignCategory", "params": {"categoryId": 7}}],
        ))

        action = rule_repo.get_rule(rule_id).actions[0]
        assert isinstance(action, AssignCategoryAction)
        assert action.category_id == 7

    def test_enabled_rules_in_creation_order(self, rule_repo):
        first = rule_repo.create_rule(Rule(user_id="alice", name="first"))
        second = rule_repo.create_rule(Rule(user_id="alice", name="second"))
        rule_repo.create_rule(Rule(user_id="bob", name="other"))

        assert [r.id for r in rule_repo.get_enabled_rules("alice")] == [first, second]
        assert len(rule_repo.get_enabled_rules()) == 3

    def test_delete_rule(self, rule_repo):
        rule_id = rule_repo.create_rule(Rule(user_id="alice", name="gone"))
        assert rule_repo.delete_rule(rule_id) is True
        assert rule_repo.get_rule(rule_id) is None


def test_feed_fixture_sanity(feed_repo, sample_feed):
    feed = feed_repo.get_feed(sample_feed["feed_id"])
    assert isinstance(feed, Feed)
    assert feed.title == "AI Weekly"
