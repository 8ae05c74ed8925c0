"""Base class for chunk analyzers.

An analyzer is the single capability the orchestrator depends on: take one
ChunkRequest, return its findings or raise an AnalyzerError subclass that
says whether the failure is worth retrying. Provider identity never leaks
into the orchestrator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from jsrev.analysis.types import ChunkFinding, ChunkRequest
from jsrev.core.config import SecurityConfig
from jsrev.security.patterns import Severity


class BaseAnalyzer(ABC):
    """Abstract base class for analyzers.

    Attributes:
        name: Analyzer identifier used in logs and results.

    Example:
        >>> class NullAnalyzer(BaseAnalyzer):
        ...     name = "null"
        ...
        ...     async def analyze(self, request: ChunkRequest) -> list[ChunkFinding]:
        ...         return []

    """

    name: str = "analyzer"

    def __init__(self, security: SecurityConfig | None = None) -> None:
        """Initialize with the finding selection settings."""
        self.security = security or SecurityConfig()
        self._min_rank = Severity(self.security.min_severity).rank
        enabled = self.security.enabled_categories
        self._categories = frozenset(enabled) if enabled is not None else None

    def __repr__(self) -> str:
        """Return string representation for logging."""
        return f"{self.__class__.__name__}(name={self.name!r})"

    def accepts(self, category: str, severity: Severity) -> bool:
        """Return True if a finding passes the category/severity selection."""
        if severity.rank < self._min_rank:
            return False
        return self._categories is None or category in self._categories

    @abstractmethod
    async def analyze(self, request: ChunkRequest) -> list[ChunkFinding]:
        """Analyze one chunk.

        Args:
            request: Chunk plus its source text (overlap included).

        Returns:
            Findings with offsets relative to request.base_offset.

        Raises:
            AnalyzerTransientError: Retryable failure.
            AnalyzerPermanentError: Non-retryable failure.

        """
        ...
