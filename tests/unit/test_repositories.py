"""
Tests for Repository Components
===============================

Test suite for EntryRepository and FeedRepository covering persistence of
analysis state, rule-driven mutations and the lookups the pipeline needs.
"""

import pytest

from feedlens.database.connection import DatabaseConnection
from feedlens.database.models import Category, Entry, Feed, PrelimStatus
from feedlens.database.schema import DatabaseSchema
from feedlens.processing.deep_analysis import analysis_fields
from feedlens.ai.analyzer import DeepAnalysis, ScoreDimensions
from feedlens.utils.exceptions import DatabaseError


class TestEntryRepository:
    """Test suite for EntryRepository."""

    def test_create_and_get_entry(self, entry_repo, make_entry):
        entry = make_entry(tags=["python", "python", " db "])

        retrieved = entry_repo.get_entry(entry.id)

        assert retrieved.title == entry.title
        assert retrieved.content == entry.content
        assert retrieved.tags == ["python", "db"]
        assert retrieved.prelim_status is None
        assert retrieved.has_embedding is False

    def test_get_missing_entry(self, entry_repo):
        assert entry_repo.get_entry("nope") is None

    def test_duplicate_id_raises(self, entry_repo, make_entry):
        entry = make_entry()
        with pytest.raises(DatabaseError):
            entry_repo.create_entry(entry)

    def test_batch_create_skips_existing(self, entry_repo, make_entry, sample_feed):
        existing = make_entry()
        created = entry_repo.create_entries_batch([
            existing,
            Entry(id="new-1", feed_id=sample_feed["feed_id"], title="New"),
        ])

        assert created == 1
        assert entry_repo.get_entry_count() == 2

    def test_save_preliminary_result(self, entry_repo, make_entry):
        entry = make_entry()

        assert entry_repo.save_preliminary_result(
            entry.id, ignore=True, reason="off-topic", value=2,
            summary="meh", language="en", model="gemini-1.5-flash",
        )

        stored = entry_repo.get_entry(entry.id)
        assert stored.prelim_status is PrelimStatus.REJECTED
        assert stored.prelim_ignore is True
        assert stored.prelim_value == 2
        assert stored.prelim_analyzed_at is not None

    def test_save_deep_analysis(self, entry_repo, make_entry):
        entry = make_entry()
        analysis = DeepAnalysis(
            one_line_summary="One line",
            summary="Longer summary",
            main_points=[{"point": "p", "explanation": "e", "importance": 4}],
            key_quotes=["q"],
            domain="technology",
            tags=["db"],
            score_dimensions=ScoreDimensions(7.5, 6, 8, 5),
            ai_score=7,
            model="m",
            reflection_rounds=1,
        )

        entry_repo.save_deep_analysis(entry.id, analysis_fields(analysis, 120))

        stored = entry_repo.get_entry(entry.id)
        assert stored.ai_main_points[0].point == "p"
        assert stored.ai_main_points[0].importance == 4
        assert stored.ai_score_dimensions["depth"] == 7.5
        assert stored.ai_score == 7
        assert stored.ai_processing_time_ms == 120
        assert stored.ai_analyzed_at is not None

    def test_save_deep_analysis_rejects_other_columns(self, entry_repo, make_entry):
        entry = make_entry()
        with pytest.raises(ValueError):
            entry_repo.save_deep_analysis(entry.id, {"title": "hijacked"})

    def test_update_flags_rejects_other_columns(self, entry_repo, make_entry):
        entry = make_entry()
        with pytest.raises(ValueError):
            entry_repo.update_flags(entry.id, prelim_status="passed")

    def test_update_flags_missing_entry(self, entry_repo):
        assert entry_repo.update_flags("nope", is_starred=True) is False

    def test_tags_missing_entry(self, entry_repo):
        assert entry_repo.add_tag("nope", "x") is False

    def test_entry_context(self, entry_repo, make_entry, sample_feed):
        entry = make_entry()

        context = entry_repo.get_entry_context(entry.id)

        assert context.entry.id == entry.id
        assert context.feed_title == "AI Weekly"
        assert context.user_id == "alice"
        assert context.category_name == "Tech"

    def test_entry_context_without_feed(self, entry_repo):
        entry_repo.create_entry(Entry(id="orphan", title="No feed"))

        context = entry_repo.get_entry_context("orphan")

        assert context.feed_title is None
        assert context.user_id is None
        assert context.category_name is None

    def test_recent_contexts_scoped_to_user(self, entry_repo, feed_repo, make_entry):
        make_entry()
        other_feed = feed_repo.create_feed(Feed(user_id="bob", title="Bob's", url="https://b.example/rss"))
        entry_repo.create_entry(Entry(id="bob-1", feed_id=other_feed, title="Bob entry"))

        alice = entry_repo.get_recent_entry_contexts("alice")
        bob = entry_repo.get_recent_entry_contexts("bob", limit=5)

        assert [c.entry.id for c in alice] == ["entry-1"]
        assert [c.entry.id for c in bob] == ["bob-1"]


class TestFeedRepository:

    def test_categories_unique_per_user(self, feed_repo):
        feed_repo.create_category(Category(user_id="alice", name="News"))
        feed_repo.create_category(Category(user_id="bob", name="News"))

        with pytest.raises(DatabaseError):
            feed_repo.create_category(Category(user_id="alice", name="News"))

    def test_get_category(self, feed_repo, sample_feed):
        category = feed_repo.get_category(sample_feed["category_id"])
        assert category.name == "Tech"
        assert feed_repo.get_category(9999) is None


class TestDatabase:

    def test_schema_verifies(self, temp_db):
        assert DatabaseSchema(temp_db).verify_schema()

    def test_create_tables_is_idempotent(self, temp_db):
        DatabaseSchema(temp_db).create_tables()
        assert DatabaseSchema(temp_db).verify_schema()

    def test_transaction_rolls_back(self, db, make_entry):
        entry = make_entry()

        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute("UPDATE entries SET title = 'changed' WHERE id = ?", (entry.id,))
                raise RuntimeError("abort")

        assert db.execute_one("SELECT title FROM entries WHERE id = ?", (entry.id,))["title"] == entry.title

    def test_database_info(self, db, make_entry):
        make_entry()
        info = db.get_database_info()
        assert info["table_counts"]["entries"] == 1

    def test_pool_reuses_connections(self, temp_db):
        db = DatabaseConnection(temp_db, pool_size=1)
        with db.get_connection() as first:
            pass
        with db.get_connection() as second:
            pass
        assert first is second
        db.close_all_connections()
