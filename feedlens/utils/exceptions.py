"""
FeedLens Custom Exceptions
==========================

Custom exception hierarchy for FeedLens with error codes, context
information, and user-friendly error messages.
"""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for categorizing exceptions."""

    # Configuration errors (C001-C099)
    CONFIG_INVALID = "C001"
    CONFIG_MISSING = "C002"
    CONFIG_PARSE_ERROR = "C003"
    WORKFLOW_CYCLE = "C004"
    VECTOR_BACKEND_UNKNOWN = "C005"

    # Database errors (D001-D099)
    DATABASE_CONNECTION = "D001"
    DATABASE_TRANSACTION = "D004"
    DATABASE_ERROR = "D006"

    # Content processing errors (P001-P099)
    CONTENT_MISSING = "P002"

    # Analyzer errors (A001-A099)
    ANALYZER_ERROR = "A001"
    ANALYZER_TIMEOUT = "A004"

    # Queue errors (Q001-Q099)
    QUEUE_ERROR = "Q001"
    QUEUE_ENQUEUE_FAILED = "Q002"

    # Workflow errors (W001-W099)
    WORKFLOW_NODE_FAILED = "W001"
    WORKFLOW_UNKNOWN_NODE = "W002"

    # Validation errors (V001-V099)
    VALIDATION_REQUIRED_FIELD = "V001"
    VALIDATION_INVALID_FORMAT = "V002"
    VALIDATION_DIMENSION_MISMATCH = "V005"

    # Resource errors (R001-R099)
    RESOURCE_NOT_FOUND = "R002"


class FeedLensError(Exception):
    """Base exception for all FeedLens errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        recoverable: bool = False,
    ):
        """Initialize FeedLens error.

        Args:
            message: Technical error message for logging
            error_code: Categorized error code
            context: Additional context information
            user_message: User-friendly error message
            recoverable: Whether retrying the operation may succeed
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.user_message = user_message or message
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": str(self),
            "user_message": self.user_message,
            "context": self.context,
            "recoverable": self.recoverable,
        }

    def __str__(self) -> str:
        """String representation with error code."""
        if self.error_code:
            return f"[{self.error_code.value}] {super().__str__()}"
        return super().__str__()


def _passthrough(kwargs: Dict[str, Any], *consumed: str) -> Dict[str, Any]:
    return {k: v for k, v in kwargs.items() if k not in consumed}


class ConfigurationError(FeedLensError):
    """Configuration-related errors. Fatal at setup time."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        """Initialize configuration error.

        Args:
            message: Error message
            config_key: Configuration key that caused the error
            **kwargs: Additional arguments for FeedLensError
        """
        context = kwargs.get("context", {})
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.CONFIG_INVALID),
            context=context,
            user_message=kwargs.get("user_message", f"Configuration error: {message}"),
            **_passthrough(kwargs, "context", "error_code", "user_message"),
        )


class CircularDependencyError(ConfigurationError):
    """Workflow graph contains a cycle."""

    def __init__(self, message: str = "Workflow contains circular dependency", **kwargs):
        kwargs.setdefault("error_code", ErrorCode.WORKFLOW_CYCLE)
        super().__init__(message, **kwargs)


class DatabaseError(FeedLensError):
    """Database-related errors."""

    def __init__(self, message: str, query: Optional[str] = None, **kwargs):
        """Initialize database error.

        Args:
            message: Error message
            query: SQL query that caused the error
            **kwargs: Additional arguments for FeedLensError
        """
        context = kwargs.get("context", {})
        if query:
            context["query"] = query

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.DATABASE_CONNECTION),
            context=context,
            user_message=kwargs.get("user_message", "Database operation failed"),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(
                kwargs, "context", "error_code", "user_message", "recoverable"
            ),
        )


class AnalysisError(FeedLensError):
    """Content analyzer errors (timeouts, bad responses, provider outages)."""

    def __init__(
        self,
        message: str,
        model: Optional[str] = None,
        stage: Optional[str] = None,
        **kwargs,
    ):
        """Initialize analysis error.

        Args:
            message: Error message
            model: Model identifier used for the call
            stage: Analysis stage (preliminary, analysis, reflection)
            **kwargs: Additional arguments for FeedLensError
        """
        context = kwargs.get("context", {})
        if model:
            context["model"] = model
        if stage:
            context["stage"] = stage

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.ANALYZER_ERROR),
            context=context,
            user_message=kwargs.get(
                "user_message", "Content analysis temporarily unavailable"
            ),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(
                kwargs, "context", "error_code", "user_message", "recoverable"
            ),
        )


class QueueError(FeedLensError):
    """Job queue errors."""

    def __init__(self, message: str, queue_name: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if queue_name:
            context["queue"] = queue_name

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.QUEUE_ERROR),
            context=context,
            user_message=kwargs.get("user_message", "Queue operation failed"),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(
                kwargs, "context", "error_code", "user_message", "recoverable"
            ),
        )


class WorkflowError(FeedLensError):
    """Errors raised while executing a workflow node."""

    def __init__(self, message: str, node_id: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if node_id:
            context["node_id"] = node_id

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.WORKFLOW_NODE_FAILED),
            context=context,
            user_message=kwargs.get("user_message", "Workflow step failed"),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(
                kwargs, "context", "error_code", "user_message", "recoverable"
            ),
        )


class ValidationError(FeedLensError):
    """Data validation errors. Never retried."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        """Initialize validation error.

        Args:
            message: Error message
            field_name: Field name that failed validation
            **kwargs: Additional arguments for FeedLensError
        """
        context = kwargs.get("context", {})
        if field_name:
            context["field_name"] = field_name

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.VALIDATION_INVALID_FORMAT),
            context=context,
            user_message=kwargs.get(
                "user_message", f"Invalid {field_name or 'input'}: {message}"
            ),
            recoverable=kwargs.get("recoverable", False),
            **_passthrough(
                kwargs, "context", "error_code", "user_message", "recoverable"
            ),
        )


class ContentValidationError(ValidationError):
    """Entry content is missing or unusable."""

    def __init__(self, message: str, entry_id: Optional[str] = None, **kwargs):
        """Initialize content validation error.

        Args:
            message: Error message
            entry_id: Entry that failed validation
            **kwargs: Additional arguments for ValidationError
        """
        context = kwargs.get("context", {})
        if entry_id:
            context["entry_id"] = entry_id

        super().__init__(
            message=message,
            field_name=kwargs.pop("field_name", "content"),
            error_code=kwargs.get("error_code", ErrorCode.CONTENT_MISSING),
            context=context,
            user_message=kwargs.get(
                "user_message", f"Content validation failed: {message}"
            ),
            **_passthrough(kwargs, "context", "error_code", "user_message"),
        )


class DimensionMismatchError(ValidationError):
    """Vector length does not match the store's configured dimension."""

    def __init__(self, expected: int, actual: int, **kwargs):
        super().__init__(
            f"Vector dimension mismatch: expected {expected}, got {actual}",
            field_name="vector",
            error_code=ErrorCode.VALIDATION_DIMENSION_MISMATCH,
            context={"expected": expected, "actual": actual},
            **kwargs,
        )
        self.expected = expected
        self.actual = actual


class ResourceNotFoundError(ValidationError):
    """A referenced record does not exist."""

    def __init__(self, message: str, resource_id: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if resource_id:
            context["resource_id"] = resource_id

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.RESOURCE_NOT_FOUND),
            context=context,
            user_message=kwargs.get("user_message", message),
            **_passthrough(kwargs, "context", "error_code", "user_message"),
        )


def is_retryable_error(exception: BaseException) -> bool:
    """Check if a job failure is worth retrying.

    FeedLens errors carry their own ``recoverable`` flag. Anything else
    (timeouts, dropped connections, unexpected bugs) is treated as transient
    and left to the attempt cap.

    Args:
        exception: Exception raised by a job handler

    Returns:
        True if the job should be scheduled for another attempt
    """
    if isinstance(exception, FeedLensError):
        return exception.recoverable
    return True

