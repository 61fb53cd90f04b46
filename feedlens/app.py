"""
Application Context
===================

Owns every long-lived component (database pool, repositories, analyzer,
vector store, rule engine, workflow, queues) and wires them together.
Components get their collaborators through their constructors; nothing is
a module-level singleton.

Usage:
    app = AppContext(load_settings())
    app.init()
    try:
        app.preliminary.add_job("entry-1")
    finally:
        await app.shutdown()
"""

from typing import List, Optional

from .ai.analyzer import ContentAnalyzer
from .ai.evaluator import PreliminaryEvaluator
from .ai.heuristic_analyzer import HeuristicAnalyzer
from .ai.language import ModelSelector
from .config.settings import FeedLensSettings, VectorStoreBackend
from .database.connection import DatabaseConnection
from .database.schema import DatabaseSchema
from .processing.deep_analysis import DEEP_QUEUE, DeepAnalysisProcessor
from .processing.preliminary import PRELIMINARY_QUEUE, PreliminaryProcessor
from .queue.job_queue import JobQueue
from .queue.worker import Worker
from .rules.engine import RuleEngine
from .storage.entry_repository import EntryRepository
from .storage.feed_repository import FeedRepository
from .storage.rule_repository import RuleRepository
from .utils.exceptions import ConfigurationError, DatabaseError, ErrorCode
from .utils.logging import configure_application_logging, get_logger_for_component
from .vector.base import VectorStore
from .vector.factory import vector_store_from_settings
from .workflow.analysis_workflow import create_article_analysis_workflow
from .workflow.orchestrator import WorkflowOrchestrator


class AppContext:
    """Explicitly initialised container for the processing pipeline."""

    def __init__(self, settings: FeedLensSettings, analyzer: Optional[ContentAnalyzer] = None,
                 configure_logging: bool = True):
        self.settings = settings
        self._analyzer = analyzer
        self._configure_logging = configure_logging
        self.logger = get_logger_for_component("app")

        self.db: Optional[DatabaseConnection] = None
        self.entries: Optional[EntryRepository] = None
        self.rules: Optional[RuleRepository] = None
        self.feeds: Optional[FeedRepository] = None
        self.analyzer: Optional[ContentAnalyzer] = None
        self.rule_engine: Optional[RuleEngine] = None
        self.workflow: Optional[WorkflowOrchestrator] = None
        self.preliminary_queue: Optional[JobQueue] = None
        self.deep_queue: Optional[JobQueue] = None
        self.preliminary: Optional[PreliminaryProcessor] = None
        self.deep: Optional[DeepAnalysisProcessor] = None
        self._vector_store: Optional[VectorStore] = None
        self._workers: List[Worker] = []
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def init(self) -> "AppContext":
        """Build all components.

        Raises:
            ConfigurationError: Invalid settings, unknown vector backend,
                missing sqlite-vec or a cyclic workflow
        """
        if self._initialized:
            return self

        s = self.settings
        if self._configure_logging:
            configure_application_logging(
                log_level=s.get_effective_log_level(),
                log_file=s.logging.file_path,
                enable_console=s.logging.console_logging,
                structured_logging=s.logging.structured_logging,
                max_file_size_mb=s.logging.max_file_size_mb,
                backup_count=s.logging.backup_count,
            )

        DatabaseSchema(s.database.path).create_tables()
        try:
            self.db = DatabaseConnection(
                s.database.path,
                pool_size=s.database.pool_size,
                load_vector_extension=s.vector_store.backend is VectorStoreBackend.SQLITE,
                busy_timeout_ms=s.database.busy_timeout_ms,
            )
        except DatabaseError as e:
            raise ConfigurationError(
                f"Database setup failed: {e.message}",
                config_key="database.path",
            ) from e

        self.entries = EntryRepository(self.db)
        self.rules = RuleRepository(self.db)
        self.feeds = FeedRepository(self.db)
        self.analyzer = self._analyzer or HeuristicAnalyzer()
        self._vector_store = vector_store_from_settings(s.vector_store, self.db)
        self.rule_engine = RuleEngine(self.entries, self.rules, s.rules.test_sample_size)
        self.workflow = create_article_analysis_workflow()

        selector = ModelSelector(s.analysis)
        self.preliminary_queue = JobQueue(self.db, PRELIMINARY_QUEUE, s.queue.preliminary)
        self.deep_queue = JobQueue(self.db, DEEP_QUEUE, s.queue.deep)
        self.deep = DeepAnalysisProcessor(
            self.deep_queue,
            self.entries,
            self.analyzer,
            self.workflow,
            s.analysis,
            vector_store=self._vector_store if s.vector_store.enabled else None,
            rule_engine=self.rule_engine,
            selector=selector,
        )
        self.preliminary = PreliminaryProcessor(
            self.preliminary_queue,
            self.entries,
            PreliminaryEvaluator(self.analyzer, s.analysis, selector),
            deep=self.deep,
        )

        self._initialized = True
        self.logger.info(
            f"{s.app_name} initialised (db={s.database.path}, "
            f"vector_store={s.vector_store.backend.value}, analyzer={self.analyzer.name})"
        )
        return self

    def _require_init(self) -> None:
        if not self._initialized:
            raise ConfigurationError(
                "Application context used before init()",
                error_code=ErrorCode.CONFIG_MISSING,
            )

    @property
    def vector_store(self) -> VectorStore:
        self._require_init()
        return self._vector_store

    def set_vector_store(self, store: VectorStore) -> None:
        """Replace the process-wide vector store (tests, custom backends)."""
        self._require_init()
        self._vector_store = store
        if self.settings.vector_store.enabled:
            self.deep.vector_store = store

    def create_workers(self) -> List[Worker]:
        """One worker per stage, using each queue's configured concurrency."""
        self._require_init()
        workers = [self.preliminary.create_worker(), self.deep.create_worker()]
        self._workers.extend(workers)
        return workers

    async def shutdown(self) -> None:
        """Close workers (waiting for running jobs), the analyzer and the database."""
        if not self._initialized:
            return

        for worker in self._workers:
            await worker.close()
        self._workers.clear()

        await self.analyzer.close()
        self._vector_store.close()
        self.db.close_all_connections()
        self._initialized = False
        self.logger.info("Application context shut down")
