"""Custom exception hierarchy for jsrev.

All custom exceptions inherit from JsRevError to enable:
- Unified exception handling at the CLI boundary
- Clear distinction between fatal errors and per-chunk failures
- Consistent error messaging patterns

Only configuration and source-loading errors abort a run. Analyzer errors
are raised by analyzers and captured by the orchestrator as outcome data.
"""

from enum import Enum
from typing import Any

__all__ = [
    "JsRevError",
    "ErrorKind",
    "ConfigError",
    "ConfigValidationError",
    "SourceLoadError",
    "AnalyzerError",
    "AnalyzerTransientError",
    "AnalyzerPermanentError",
    "CancelledError",
]


class ErrorKind(str, Enum):
    """Error kinds surfaced in results and notes.

    Non-fatal kinds are recorded as data in AnalysisResult; only
    CONFIGURATION_INVALID aborts a run before processing begins.
    """

    MALFORMED_INPUT_BOUNDARY = "MalformedInputBoundary"
    OVERSIZED_UNSPLITTABLE_CHUNK = "OversizedUnsplittableChunk"
    ANALYZER_TRANSIENT_FAILURE = "AnalyzerTransientFailure"
    ANALYZER_PERMANENT_FAILURE = "AnalyzerPermanentFailure"
    BUDGET_EXCEEDED = "BudgetExceeded"
    CONFIGURATION_INVALID = "ConfigurationInvalid"


class JsRevError(Exception):
    """Base exception for all jsrev errors."""

    pass


class ConfigError(JsRevError):
    """Configuration loading or validation error.

    Raised when:
    - Configuration file cannot be read or is not valid YAML
    - Configuration data is not a mapping
    """

    pass


class ConfigValidationError(ConfigError):
    """Validation error with structured Pydantic details.

    Attributes:
        errors: List of error dicts with 'loc', 'msg', and 'type' fields.

    Example:
        >>> try:
        ...     load_config(path)
        ... except ConfigValidationError as e:
        ...     for err in e.errors:
        ...         print(".".join(str(x) for x in err["loc"]), err["msg"])

    """

    def __init__(self, message: str, errors: list[dict[str, Any]]) -> None:
        """Initialize ConfigValidationError with message and structured errors."""
        super().__init__(message)
        self.errors = errors


class SourceLoadError(JsRevError):
    """Input source could not be loaded.

    Raised when the file is missing, is a directory, is unreadable,
    or exceeds the configured maximum size.
    """

    pass


class AnalyzerError(JsRevError):
    """Analyzer call failure.

    Analyzers raise one of the two subclasses so the orchestrator can
    decide whether to retry. The bare base class is treated as permanent.

    Attributes:
        kind: ErrorKind classification.
        status_code: HTTP status code, if the failure came from an HTTP API.

    """

    kind: ErrorKind = ErrorKind.ANALYZER_PERMANENT_FAILURE

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize AnalyzerError with message and optional status code."""
        super().__init__(message)
        self.status_code = status_code


class AnalyzerTransientError(AnalyzerError):
    """Retryable analyzer failure (timeout, rate limit, 5xx, network)."""

    kind = ErrorKind.ANALYZER_TRANSIENT_FAILURE


class AnalyzerPermanentError(AnalyzerError):
    """Non-retryable analyzer failure (rejected input, auth failure)."""

    kind = ErrorKind.ANALYZER_PERMANENT_FAILURE


class CancelledError(JsRevError):
    """Raised at cooperative cancellation checkpoints.

    This is NOT asyncio.CancelledError. It is raised by
    CancellationToken.check_cancelled() when cancellation was requested.
    """

    pass
