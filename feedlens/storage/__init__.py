"""
FeedLens Storage Layer
======================

Repository implementations for entries, feeds/categories and rules.
"""

from .entry_repository import EntryContext, EntryRepository
from .feed_repository import FeedRepository
from .rule_repository import RuleRepository

__all__ = [
    "EntryContext",
    "EntryRepository",
    "FeedRepository",
    "RuleRepository",
]
