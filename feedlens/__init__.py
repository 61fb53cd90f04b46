"""
FeedLens - Feed Analysis Pipeline
=================================

Two-stage content analysis for ingested feed entries: a cheap preliminary
screen, deep AI analysis for entries that pass, semantic embeddings for
similarity lookup and user-defined automation rules.

Main Components:
- Queue: durable SQLite job queue with retries, leases and asyncio workers
- Workflow: DAG orchestrator composing the analysis steps
- Vector: embedding stores (in-memory, sqlite-vec) with similarity search
- Rules: condition matching and entry actions
"""

__version__ = "0.3.0"
__author__ = "FeedLens Development Team"
__description__ = "Two-stage AI analysis pipeline for feed entries"

from .app import AppContext
from .config.settings import FeedLensSettings, load_settings
from .utils.logging import configure_application_logging, get_logger_for_component
from .utils.exceptions import FeedLensError

__all__ = [
    "AppContext",
    "FeedLensSettings",
    "load_settings",
    "configure_application_logging",
    "get_logger_for_component",
    "FeedLensError",
]
