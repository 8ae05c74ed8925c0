"""Core infrastructure: configuration, exceptions, cancellation."""

from jsrev.core.cancellation import CancellationToken
from jsrev.core.config import (
    AnalysisConfig,
    ChunkingConfig,
    FocusWeights,
    JsRevConfig,
    LibraryFilterConfig,
    LLMConfig,
    MergeConfig,
    RetryConfig,
    SecurityConfig,
    load_config,
)
from jsrev.core.exceptions import (
    AnalyzerError,
    AnalyzerPermanentError,
    AnalyzerTransientError,
    CancelledError,
    ConfigError,
    ConfigValidationError,
    ErrorKind,
    JsRevError,
    SourceLoadError,
)

__all__ = [
    "AnalysisConfig",
    "AnalyzerError",
    "AnalyzerPermanentError",
    "AnalyzerTransientError",
    "CancellationToken",
    "CancelledError",
    "ChunkingConfig",
    "ConfigError",
    "ConfigValidationError",
    "ErrorKind",
    "FocusWeights",
    "JsRevConfig",
    "JsRevError",
    "LLMConfig",
    "LibraryFilterConfig",
    "MergeConfig",
    "RetryConfig",
    "SecurityConfig",
    "SourceLoadError",
    "load_config",
]
