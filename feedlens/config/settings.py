"""
FeedLens Configuration System
=============================

Configuration management with environment variables and Pydantic models.
Environment variables override Field defaults with clear precedence, e.g.
``FEEDLENS_QUEUE__PRELIMINARY__CONCURRENCY=8``.
"""

from pathlib import Path
from typing import Optional
from enum import Enum

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from ..utils.exceptions import ConfigurationError, ErrorCode

DAY_SECONDS = 24 * 60 * 60


class LogLevel(str, Enum):
    """Available log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class VectorStoreBackend(str, Enum):
    """Available vector store implementations."""
    MEMORY = "memory"
    SQLITE = "sqlite"


class SimilarityMetric(str, Enum):
    """Similarity metrics supported by every vector store backend."""
    COSINE = "cosine"
    L2 = "l2"
    INNER_PRODUCT = "innerproduct"


class DatabaseSettings(BaseModel):
    """Database configuration."""
    path: str = Field(default="data/feedlens.db", description="SQLite database file path")
    pool_size: int = Field(default=5, ge=1, le=20, description="Connection pool size")
    busy_timeout_ms: int = Field(default=5000, ge=0, description="SQLite busy timeout in milliseconds")


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Global log level")
    file_path: Optional[str] = Field(default="logs/feedlens.log", description="Log file path")
    max_file_size_mb: int = Field(default=10, ge=1, le=100, description="Max log file size in MB")
    backup_count: int = Field(default=5, ge=1, le=20, description="Number of log backup files")
    structured_logging: bool = Field(default=False, description="Use structured JSON logging")
    console_logging: bool = Field(default=True, description="Enable console logging")


class QueueSettings(BaseModel):
    """Retry, retention and concurrency policy for one queue."""
    attempts: int = Field(default=2, ge=1, le=20, description="Maximum attempts per job")
    backoff_delay: float = Field(default=1.0, ge=0.0, description="Base exponential backoff delay in seconds")
    delay: float = Field(default=0.0, ge=0.0, description="Delay before a new job becomes available, seconds")
    default_priority: int = Field(default=5, ge=1, description="Priority when none is given (lower runs first)")
    concurrency: int = Field(default=5, ge=1, le=100, description="Concurrent jobs per worker")
    lock_duration: float = Field(default=30.0, gt=0, description="Job lease length in seconds")
    stalled_interval: float = Field(default=30.0, gt=0, description="Seconds between stalled-job checks")
    max_stalled_count: int = Field(default=1, ge=0, description="Stalls tolerated before a job fails")
    poll_interval: float = Field(default=1.0, gt=0, description="Idle wait between claim attempts, seconds")
    remove_on_complete_age: int = Field(default=3 * DAY_SECONDS, ge=0, description="Seconds to keep completed jobs")
    remove_on_complete_count: int = Field(default=500, ge=0, description="Completed jobs to keep")
    remove_on_fail_age: int = Field(default=7 * DAY_SECONDS, ge=0, description="Seconds to keep failed jobs")


def _preliminary_queue() -> QueueSettings:
    return QueueSettings(
        attempts=2,
        backoff_delay=1.0,
        delay=1.0,
        concurrency=5,
        remove_on_complete_age=3 * DAY_SECONDS,
        remove_on_complete_count=500,
        remove_on_fail_age=7 * DAY_SECONDS,
    )


def _deep_queue() -> QueueSettings:
    return QueueSettings(
        attempts=3,
        backoff_delay=2.0,
        delay=0.0,
        concurrency=3,
        lock_duration=120.0,
        remove_on_complete_age=7 * DAY_SECONDS,
        remove_on_complete_count=1000,
        remove_on_fail_age=30 * DAY_SECONDS,
    )


class QueuesSettings(BaseModel):
    """Settings for both analysis stages."""
    preliminary: QueueSettings = Field(default_factory=_preliminary_queue)
    deep: QueueSettings = Field(default_factory=_deep_queue)


class ModelTierSettings(BaseModel):
    """Model identifiers for one language tier."""
    preliminary: str
    analysis: str
    reflection: str


class AnalysisSettings(BaseModel):
    """Content analyzer configuration."""
    timeout: float = Field(default=60.0, gt=0, description="Seconds to wait for one analyzer call")
    min_value: int = Field(default=3, ge=1, le=5, description="Preliminary value below which entries are ignored")
    summary_length: int = Field(default=50, ge=10, le=500, description="Max characters of the preliminary summary")
    preliminary_content_limit: int = Field(default=3000, ge=200, description="Characters sent to preliminary evaluation")
    segment_size: int = Field(default=2000, ge=200, description="Target characters per analysis segment")
    segment_overlap: int = Field(default=1, ge=0, le=5, description="Blocks shared between adjacent segments")
    reflection_rounds: int = Field(default=1, ge=0, le=5, description="Refinement passes after analysis")
    chinese: ModelTierSettings = Field(
        default_factory=lambda: ModelTierSettings(
            preliminary="deepseek-chat", analysis="deepseek-chat", reflection="deepseek-chat"
        )
    )
    english: ModelTierSettings = Field(
        default_factory=lambda: ModelTierSettings(
            preliminary="gemini-1.5-flash", analysis="gemini-1.5-pro", reflection="gemini-1.5-pro"
        )
    )
    other: ModelTierSettings = Field(
        default_factory=lambda: ModelTierSettings(
            preliminary="gemini-1.5-flash", analysis="gemini-1.5-pro", reflection="gemini-1.5-pro"
        )
    )


class VectorStoreSettings(BaseModel):
    """Embedding storage configuration."""
    enabled: bool = Field(default=True, description="Store embeddings after deep analysis")
    backend: VectorStoreBackend = Field(default=VectorStoreBackend.MEMORY, description="Vector store backend")
    dimension: int = Field(default=1536, ge=1, le=8192, description="Embedding dimension")
    metric: SimilarityMetric = Field(default=SimilarityMetric.COSINE, description="Similarity metric")


class RuleSettings(BaseModel):
    """Rule engine configuration."""
    test_sample_size: int = Field(default=100, ge=1, le=5000, description="Entries sampled by a rule dry run")


class FeedLensSettings(BaseSettings):
    """Main application settings."""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    queue: QueuesSettings = Field(default_factory=QueuesSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    vector_store: VectorStoreSettings = Field(default_factory=VectorStoreSettings)
    rules: RuleSettings = Field(default_factory=RuleSettings)

    app_name: str = Field(default="FeedLens", description="Application name")
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "env_prefix": "FEEDLENS_",
        "extra": "ignore",
    }

    def validate_configuration(self) -> None:
        """Validate complete configuration."""
        errors = []

        if self.database.path != ":memory:":
            try:
                Path(self.database.path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(f"Invalid database path: {e}")

        if self.logging.file_path:
            try:
                Path(self.logging.file_path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(f"Invalid log file path: {e}")

        if errors:
            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}",
                error_code=ErrorCode.CONFIG_INVALID,
            )

    def get_effective_log_level(self) -> str:
        """Get effective log level considering debug mode."""
        if self.debug:
            return "DEBUG"
        return self.logging.level.value


def load_settings(**overrides) -> FeedLensSettings:
    """Load settings from environment variables, .env and defaults.

    Args:
        **overrides: Explicit values taking precedence over the environment

    Returns:
        Loaded and validated settings

    Raises:
        ConfigurationError: If configuration is invalid
    """
    from dotenv import load_dotenv
    load_dotenv()

    try:
        settings = FeedLensSettings(**overrides)
        settings.validate_configuration()
        return settings

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Failed to initialize settings: {e}",
            error_code=ErrorCode.CONFIG_PARSE_ERROR,
        ) from e
