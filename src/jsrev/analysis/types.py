"""Data types exchanged between analyzers, the orchestrator and the merger.

Analyzers return ChunkFindings with offsets relative to the request's
base_offset. The orchestrator wraps them in AnalysisOutcomes (one per
dispatched chunk) and records every chunk it did not dispatch as a
SkipRecord. Nothing here is mutated after construction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from jsrev.core.exceptions import ErrorKind
from jsrev.security.patterns import Severity
from jsrev.segmentation.types import Chunk


@dataclass(frozen=True, slots=True)
class ChunkRequest:
    """One analyzer call.

    Attributes:
        chunk: Chunk being analyzed.
        text: Source text of [chunk.context_start, chunk.end).
        base_offset: Absolute offset of text[0] (== chunk.context_start).

    """

    chunk: Chunk
    text: str
    base_offset: int

    @property
    def primary_offset(self) -> int:
        """Offset within text where the chunk's primary range begins."""
        return self.chunk.start - self.base_offset


@dataclass(frozen=True, slots=True)
class ChunkFinding:
    """A finding as reported by an analyzer.

    Attributes:
        category: Security category.
        severity: Finding severity.
        confidence: Confidence in [0, 1].
        offset: Offset relative to ChunkRequest.base_offset.
        description: What was found.
        recommendation: Suggested fix, if any.
        rule: Pattern name or analyzer rule id, if any.
        evidence: Matched source text, if any.

    """

    category: str
    severity: Severity
    confidence: float
    offset: int
    description: str
    recommendation: str = ""
    rule: str | None = None
    evidence: str = ""


@dataclass(frozen=True, slots=True)
class AnalysisOutcome:
    """Per-chunk result of the orchestrator.

    Attributes:
        chunk_id: Id of the analyzed chunk.
        findings: Findings in analyzer order (empty on failure).
        succeeded: Whether the analyzer call eventually succeeded.
        attempts: Number of analyzer calls made (1 + retries used).
        error_kind: Failure classification when not succeeded.
        error_message: Last error message when not succeeded.

    """

    chunk_id: str
    findings: tuple[ChunkFinding, ...] = ()
    succeeded: bool = True
    attempts: int = 1
    error_kind: ErrorKind | None = None
    error_message: str | None = None


class SkipReason(str, Enum):
    """Why a chunk was never dispatched."""

    BUDGET_EXCEEDED = "budget-exceeded"
    CANCELLED = "cancelled"
    LIBRARY = "library"
    LOW_IMPORTANCE = "low-importance"


@dataclass(frozen=True, slots=True)
class SkipRecord:
    """A chunk that was selected out or dropped before dispatch."""

    chunk_id: str
    reason: SkipReason
    message: str = ""

    @property
    def error_kind(self) -> ErrorKind | None:
        """ErrorKind for budget drops, None for other skips."""
        return ErrorKind.BUDGET_EXCEEDED if self.reason is SkipReason.BUDGET_EXCEEDED else None


@dataclass(slots=True)
class OrchestrationResult:
    """Everything the orchestrator hands to the merger.

    Attributes:
        outcomes: One outcome per dispatched chunk, in dispatch order.
        skipped: Chunks never dispatched, in importance order.
        tokens_spent: Tokens reserved for dispatched chunks (primary +
            overlap, counted once per chunk).
        cancelled: Whether cancellation was observed during the run.

    """

    outcomes: list[AnalysisOutcome] = field(default_factory=list)
    skipped: list[SkipRecord] = field(default_factory=list)
    tokens_spent: int = 0
    cancelled: bool = False

    @property
    def succeeded(self) -> list[AnalysisOutcome]:
        """Outcomes whose analyzer call succeeded."""
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> list[AnalysisOutcome]:
        """Outcomes whose analyzer call failed."""
        return [o for o in self.outcomes if not o.succeeded]
