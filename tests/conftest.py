"""
PyTest Configuration and Fixtures
=================================

Shared fixtures and configuration for FeedLens tests.

Every test gets its own temporary SQLite database with the full schema;
queue tests drive time through ``FakeClock`` instead of sleeping.
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Keep tests independent of a developer's .env / shell
os.environ.pop("FEEDLENS_DATABASE__PATH", None)
os.environ["FEEDLENS_DEBUG"] = "false"

from feedlens.config.settings import (  # noqa: E402
    AnalysisSettings,
    DatabaseSettings,
    FeedLensSettings,
    LoggingSettings,
    QueueSettings,
    QueuesSettings,
    VectorStoreSettings,
)
from feedlens.database.connection import DatabaseConnection  # noqa: E402
from feedlens.database.models import Category, Entry, Feed  # noqa: E402
from feedlens.database.schema import DatabaseSchema  # noqa: E402
from feedlens.storage.entry_repository import EntryRepository  # noqa: E402
from feedlens.storage.feed_repository import FeedRepository  # noqa: E402
from feedlens.storage.rule_repository import RuleRepository  # noqa: E402

TEST_DIMENSION = 64


class FakeClock:
    """Controllable replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def temp_db():
    """Create temporary database file with the full schema."""
    temp_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_path = temp_file.name
    temp_file.close()

    DatabaseSchema(db_path).create_tables()

    yield db_path

    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(db_path + suffix)
        except FileNotFoundError:
            pass


@pytest.fixture
def db(temp_db):
    """Pooled connection manager over the temporary database."""
    connection = DatabaseConnection(temp_db, pool_size=2)
    yield connection
    connection.close_all_connections()


@pytest.fixture
def entry_repo(db):
    return EntryRepository(db)


@pytest.fixture
def rule_repo(db):
    return RuleRepository(db)


@pytest.fixture
def feed_repo(db):
    return FeedRepository(db)


@pytest.fixture
def sample_feed(feed_repo):
    """Feed owned by ``alice`` in her ``Tech`` category."""
    category_id = feed_repo.create_category(Category(user_id="alice", name="Tech"))
    feed_id = feed_repo.create_feed(
        Feed(user_id="alice", title="AI Weekly", url="https://example.com/ai.xml", category_id=category_id)
    )
    return {"feed_id": feed_id, "category_id": category_id, "user_id": "alice"}


@pytest.fixture
def make_entry(entry_repo, sample_feed):
    """Factory creating entries in ``sample_feed``."""
    counter = {"n": 0}

    def _make(**overrides) -> Entry:
        counter["n"] += 1
        data = {
            "id": f"entry-{counter['n']}",
            "feed_id": sample_feed["feed_id"],
            "title": f"Test entry {counter['n']}",
            "content": "Some content about software engineering and databases.",
            "author": "Jane Doe",
            "url": f"https://example.com/{counter['n']}",
        }
        data.update(overrides)
        entry = Entry(**data)
        entry_repo.create_entry(entry)
        return entry

    return _make


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def queue_settings():
    """Queue policy without initial delay so jobs are claimable at once."""
    return QueueSettings(attempts=3, backoff_delay=1.0, delay=0.0, concurrency=2, lock_duration=30.0)


@pytest.fixture
def test_settings(temp_db):
    """Application settings pointing at the temporary database."""
    return FeedLensSettings(
        database=DatabaseSettings(path=temp_db, pool_size=2),
        logging=LoggingSettings(file_path=None, console_logging=False),
        queue=QueuesSettings(
            preliminary=QueueSettings(attempts=2, backoff_delay=0.01, delay=0.0, concurrency=2, poll_interval=0.05),
            deep=QueueSettings(attempts=3, backoff_delay=0.01, delay=0.0, concurrency=2, poll_interval=0.05),
        ),
        analysis=AnalysisSettings(timeout=5.0),
        vector_store=VectorStoreSettings(dimension=TEST_DIMENSION),
    )


@pytest.fixture
def app(test_settings):
    """Initialised application context (memory vector store, heuristic analyzer)."""
    from feedlens.app import AppContext

    context = AppContext(test_settings, configure_logging=False).init()
    yield context
    context.db.close_all_connections()
