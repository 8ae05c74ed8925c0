"""Core data types for the segmentation pipeline.

Defines boundary marks produced by the scanner, run notes for non-fatal
degradations, and the immutable Chunk produced by the chunk builder.

All dataclasses are frozen. The scorer attaches importance by building a
new Chunk with dataclasses.replace(); nothing downstream mutates a chunk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from jsrev.core.exceptions import ErrorKind


class BoundaryKind(str, Enum):
    """Classification of a scanner boundary mark."""

    SAFE_SPLIT = "safe-split"  # Top-level statement/function boundary
    UNSAFE = "unsafe"  # Start of a string, template, comment or regex literal


class ChunkType(str, Enum):
    """Structural classification of a chunk."""

    FUNCTION = "function"
    CLASS = "class"
    MODULE = "module"
    GLOBAL = "global"
    EVENT_HANDLER = "event-handler"
    LIBRARY = "library"
    UTILITY = "utility"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class BoundaryMark:
    """A classified offset in the source.

    Attributes:
        offset: Character offset. For SAFE_SPLIT the split happens before
            the character at this offset.
        kind: Mark classification.

    """

    offset: int
    kind: BoundaryKind

    @property
    def is_safe(self) -> bool:
        """Return True for safe-split marks."""
        return self.kind is BoundaryKind.SAFE_SPLIT


@dataclass(frozen=True, slots=True)
class RunNote:
    """Non-fatal degradation recorded during a run.

    Attributes:
        kind: ErrorKind of the degradation.
        message: Human-readable explanation.
        offset: Source offset the note refers to, if any.
        chunk_id: Chunk the note refers to, if any.

    """

    kind: ErrorKind
    message: str
    offset: int | None = None
    chunk_id: str | None = None


@dataclass(frozen=True, slots=True)
class Chunk:
    """A contiguous analysis unit.

    The primary range [start, end) of all chunks tiles the source exactly
    once. The overlap region [context_start, start) is secondary context
    sent to the analyzer but never counted in estimated_tokens.

    Attributes:
        id: Stable hash of the primary range and chunking revision.
        index: Position in source order.
        start: Primary range start (inclusive).
        end: Primary range end (exclusive).
        context_start: Start of the overlap region (== start when none).
        estimated_tokens: Token estimate of the primary range.
        overlap_tokens: Token estimate of the overlap region.
        type: Structural classification.
        start_line: 1-indexed line of start.
        end_line: 1-indexed line of end - 1.
        importance: Score in [0, 1], attached by the scorer.
        dependencies: Ids of chunks declaring identifiers this chunk uses.
        libraries: Names of filtered libraries overlapping the chunk.
        library_fraction: Fraction of the primary range covered by
            filtered library matches.
        oversized: True if the chunk exceeds max_tokens because it could
            not be split at a safe boundary.
        malformed_tail: True if this is the trailing remainder after
            the scanner gave up on malformed input.

    """

    id: str
    index: int
    start: int
    end: int
    context_start: int
    estimated_tokens: int
    overlap_tokens: int
    type: ChunkType
    start_line: int
    end_line: int
    importance: float = 0.0
    dependencies: tuple[str, ...] = field(default_factory=tuple)
    libraries: tuple[str, ...] = field(default_factory=tuple)
    library_fraction: float = 0.0
    oversized: bool = False
    malformed_tail: bool = False

    def __repr__(self) -> str:
        """Return a compact representation of the chunk."""
        flags = ""
        if self.oversized:
            flags += ", oversized"
        if self.malformed_tail:
            flags += ", malformed_tail"
        return (
            f"Chunk(id={self.id!r}, range=[{self.start},{self.end}), "
            f"tokens={self.estimated_tokens}, type={self.type.value!r}, "
            f"importance={self.importance:.3f}{flags})"
        )

    @property
    def length(self) -> int:
        """Length of the primary range."""
        return self.end - self.start

    @property
    def total_tokens(self) -> int:
        """Tokens actually sent to the analyzer (primary + overlap)."""
        return self.estimated_tokens + self.overlap_tokens

    def contains(self, offset: int) -> bool:
        """Return True if offset lies in the primary range."""
        return self.start <= offset < self.end

    def in_overlap(self, offset: int) -> bool:
        """Return True if offset lies in the overlap region."""
        return self.context_start <= offset < self.start
