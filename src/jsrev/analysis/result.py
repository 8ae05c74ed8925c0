"""AnalysisResult models.

The result is the only structured output handed to renderers. All models
are frozen Pydantic models so the result serializes with
model_dump_json() and round-trips with model_validate_json().
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from jsrev.core.exceptions import ErrorKind
from jsrev.security.patterns import Severity


class CodeLocation(BaseModel):
    """Absolute position in the original source.

    Attributes:
        offset: Character offset into the source.
        line: 1-indexed line.
        column: 0-indexed column.
        chunk_id: Chunk whose analysis produced the finding.

    """

    model_config = ConfigDict(frozen=True)

    offset: int = Field(ge=0)
    line: int = Field(ge=1)
    column: int = Field(ge=0)
    chunk_id: str


class Finding(BaseModel):
    """A merged, deduplicated finding."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Sequential finding identifier (F0001, ...)")
    category: str
    severity: Severity
    confidence: float = Field(ge=0.0, le=1.0)
    location: CodeLocation
    description: str
    recommendation: str = ""
    rule: str | None = None
    evidence: str = ""


class DetectedLibrary(BaseModel):
    """A library region detected in the source."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str | None = None
    category: str = "unknown"
    confidence: float = Field(ge=0.0, le=1.0)
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    filtered: bool = Field(description="Whether the region lowered chunk importance")
    informational: bool = Field(default=False, description="Below the confidence threshold")


class FailedChunk(BaseModel):
    """A dispatched chunk whose analysis failed."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    error_kind: ErrorKind
    message: str = ""
    attempts: int = Field(default=1, ge=1)


class SkippedChunk(BaseModel):
    """A chunk that was never dispatched."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    reason: str
    error_kind: ErrorKind | None = None
    message: str = ""


class RunNoteModel(BaseModel):
    """A non-fatal degradation recorded during the run."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    offset: int | None = None
    chunk_id: str | None = None


class SourceMetrics(BaseModel):
    """Size metrics of the analyzed source."""

    model_config = ConfigDict(frozen=True)

    file: str = ""
    size: int = 0
    lines: int = 0
    functions: int = 0
    estimated_tokens: int = 0
    minified: bool = False
    digest: str = ""


class Summary(BaseModel):
    """Summary counters for the run."""

    model_config = ConfigDict(frozen=True)

    total_findings: int = 0
    by_severity: dict[str, int] = Field(default_factory=dict)
    libraries_detected: int = 0
    code_reduction: float = Field(default=0.0, description="Filtered library share of the source, in percent")
    tokens_used: int = 0
    processing_time_ms: float = 0.0
    total_chunks: int = 0
    analyzed_chunks: int = 0
    failed_chunks: int = 0
    skipped_chunks: int = 0
    cancelled: bool = False


class AnalysisResult(BaseModel):
    """The final, merged artifact of one analysis run."""

    model_config = ConfigDict(frozen=True)

    metrics: SourceMetrics = Field(default_factory=SourceMetrics)
    findings: list[Finding] = Field(default_factory=list)
    libraries: list[DetectedLibrary] = Field(default_factory=list)
    summary: Summary = Field(default_factory=Summary)
    failed: list[FailedChunk] = Field(default_factory=list)
    skipped: list[SkippedChunk] = Field(default_factory=list)
    notes: list[RunNoteModel] = Field(default_factory=list)
    analyzer: str = ""
    timestamp: datetime | None = None

    @property
    def partial(self) -> bool:
        """True if any chunk failed or was skipped."""
        return bool(self.failed or self.skipped)

    def findings_at_least(self, severity: Severity) -> list[Finding]:
        """Return findings at or above a severity, preserving order."""
        return [f for f in self.findings if f.severity.rank >= severity.rank]
