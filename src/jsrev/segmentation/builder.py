"""Chunk builder: packs safe-split segments into token-budgeted chunks.

Greedily accumulates the segments between top-level safe boundaries until
the next one would exceed the per-chunk budget. A single segment that is
too large on its own is kept whole and flagged oversized, unless the
strategy opts into a statement-level fallback pass over that region.

Every offset of the buffer lands in exactly one chunk's primary range.
Overlap context is recorded separately (context_start) and never counted
in estimated_tokens.
"""

from __future__ import annotations

import bisect
import dataclasses
import hashlib
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from itertools import pairwise

from jsrev.core.config import ChunkingConfig
from jsrev.core.exceptions import ErrorKind
from jsrev.libraries.matcher import LibraryMatch, covered_length, filtered_ranges
from jsrev.segmentation.scanner import BoundaryScanner
from jsrev.segmentation.types import Chunk, ChunkType, RunNote
from jsrev.source import SourceBuffer, estimate_tokens

logger = logging.getLogger(__name__)

# Deepest brace nesting the fallback pass descends to when scopes may be split
MAX_FALLBACK_DEPTH = 4

# Chunks whose primary range is at least this share library code are typed LIBRARY
LIBRARY_TYPE_THRESHOLD = 0.5

_FUNCTION_HEAD = re.compile(
    r"(?:export\s+(?:default\s+)?)?(?:async\s+)?function\b"
    r"|(?:var|let|const)\s+[\w$]+\s*=\s*(?:async\s*)?(?:function\b|\([^)]*\)\s*=>|[\w$]+\s*=>)"
)
_CLASS_HEAD = re.compile(r"(?:export\s+(?:default\s+)?)?class\b|(?:var|let|const)\s+[\w$]+\s*=\s*class\b")
_EVENT_HANDLER = re.compile(
    r"\baddEventListener\s*\(|\.on[a-z]+\s*=\s*(?:function|\(|[\w$]+\s*=>)|\.on\(\s*[\"'][\w.:-]+[\"']"
)
_MODULE_HEAD = re.compile(r"(?:import|export)\b|[\"']use strict[\"']")
_MODULE_BODY = re.compile(r"\brequire\s*\(|\bmodule\.exports\b|\bexports\.[\w$]+\s*=|\bdefine\s*\(")
_GLOBAL_HEAD = re.compile(r"(?:var|let|const)\b|(?:window|globalThis|self)\.[\w$]+\s*=|[!+~(]\s*(?:async\s+)?function\b|\(\s*\(")
_UTILITY_BODY = re.compile(r"[\w$]+\.prototype\.[\w$]+\s*=|[\w$]+\s*:\s*function\b")

_DECLARATION = re.compile(
    r"\b(?:function\*?|class|var|let|const)\s+([A-Za-z_$][\w$]*)"
    r"|(?<![\w$.])([A-Za-z_$][\w$]*)\s*=(?![=>])"
)
_IDENTIFIER = re.compile(r"(?<![\w$.])[A-Za-z_$][\w$]*")

_KEYWORDS = frozenset(
    {
        "async", "await", "break", "case", "catch", "class", "const", "continue",
        "debugger", "default", "delete", "else", "export", "extends", "false",
        "finally", "for", "function", "if", "import", "in", "instanceof", "let",
        "new", "null", "return", "static", "super", "switch", "this", "throw",
        "true", "try", "typeof", "undefined", "var", "void", "while", "with", "yield",
    }
)


@dataclass(slots=True)
class ChunkPlan:
    """Chunks in source order plus notes recorded while building them."""

    chunks: list[Chunk] = field(default_factory=list)
    notes: list[RunNote] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        """Sum of primary-range token estimates (overlap excluded)."""
        return sum(c.estimated_tokens for c in self.chunks)


def chunk_id(start: int, end: int, revision: int = 0) -> str:
    """Stable chunk id derived from the primary range and chunking revision."""
    return hashlib.sha256(f"{start}:{end}:{revision}".encode()).hexdigest()[:16]


def classify_chunk(text: str, library_fraction: float = 0.0) -> ChunkType:
    """Best-effort structural classification of a chunk's primary text."""
    if library_fraction >= LIBRARY_TYPE_THRESHOLD:
        return ChunkType.LIBRARY
    head = text.lstrip(" \t\r\n;")
    if _CLASS_HEAD.match(head):
        return ChunkType.CLASS
    if _FUNCTION_HEAD.match(head):
        return ChunkType.FUNCTION
    if _EVENT_HANDLER.search(text):
        return ChunkType.EVENT_HANDLER
    if _MODULE_HEAD.match(head) or _MODULE_BODY.search(text):
        return ChunkType.MODULE
    if len(_UTILITY_BODY.findall(text)) >= 2:
        return ChunkType.UTILITY
    if _GLOBAL_HEAD.match(head):
        return ChunkType.GLOBAL
    return ChunkType.UNKNOWN


class ChunkBuilder:
    """Builds a ChunkPlan for one buffer under one chunking strategy.

    Args:
        buffer: Source to chunk.
        config: Chunking strategy.

    """

    def __init__(self, buffer: SourceBuffer, config: ChunkingConfig) -> None:
        """Initialize the builder."""
        self._buffer = buffer
        self._config = config
        self._capacity = max(1, config.max_tokens - config.overlap_tokens)

    def _tokens(self, length: int) -> int:
        return estimate_tokens(length, self._config.chars_per_token)

    def build(
        self,
        boundaries: BoundaryScanner,
        library_matches: Sequence[LibraryMatch] = (),
    ) -> ChunkPlan:
        """Pack the scanner's safe boundaries into chunks.

        Args:
            boundaries: Top-level scanner over the whole buffer. It is
                iterated exactly once; its notes are carried into the plan.
            library_matches: Detected libraries used for typing and
                library fractions.

        Returns:
            ChunkPlan with chunks in source order.

        """
        length = len(self._buffer)
        plan = ChunkPlan()
        if length == 0:
            return plan

        safe = [mark.offset for mark in boundaries if mark.is_safe and 0 < mark.offset < length]
        notes = list(boundaries.notes)
        cuts = [0, *safe, length]

        tail_start: int | None = None
        if boundaries.malformed_at is not None:
            tail_start = cuts[-2]
            cuts = cuts[:-1]

        ranges = self._pack(cuts, allow_fallback=True) if len(cuts) > 1 else []
        if tail_start is not None:
            ranges.append((tail_start, length, self._tokens(length - tail_start) > self._config.max_tokens))

        lib_ranges = filtered_ranges(list(library_matches))
        filtering = [lm for lm in library_matches if lm.filters]
        chunks: list[Chunk] = []
        for index, (start, end, oversized) in enumerate(ranges):
            context_start = self._context_start(start, end, oversized, chunks[-1].start if chunks else start, cuts)
            fraction = covered_length(lib_ranges, start, end) / (end - start)
            libraries = sorted({lm.name for lm in filtering if lm.start < end and start < lm.end})
            chunks.append(
                Chunk(
                    id=chunk_id(start, end, self._config.revision),
                    index=index,
                    start=start,
                    end=end,
                    context_start=context_start,
                    estimated_tokens=self._tokens(end - start),
                    overlap_tokens=self._tokens(start - context_start),
                    type=classify_chunk(self._buffer.slice(start, end), fraction),
                    start_line=self._buffer.location(start)[0],
                    end_line=self._buffer.location(end - 1)[0],
                    libraries=tuple(libraries),
                    library_fraction=round(fraction, 6),
                    oversized=oversized,
                    malformed_tail=tail_start is not None and start == tail_start,
                )
            )

        chunks = _attach_dependencies(self._buffer, chunks, self._config.min_identifier_length)

        for note in notes:
            if note.kind is ErrorKind.MALFORMED_INPUT_BOUNDARY and chunks and chunks[-1].malformed_tail:
                note = dataclasses.replace(note, chunk_id=chunks[-1].id)
            plan.notes.append(note)
        for chunk in chunks:
            if chunk.oversized:
                plan.notes.append(
                    RunNote(
                        kind=ErrorKind.OVERSIZED_UNSPLITTABLE_CHUNK,
                        message=(
                            f"Chunk [{chunk.start},{chunk.end}) needs {chunk.estimated_tokens} tokens, "
                            f"exceeds max_tokens={self._config.max_tokens}"
                        ),
                        offset=chunk.start,
                        chunk_id=chunk.id,
                    )
                )
                logger.warning("Oversized %s chunk at offset %d kept whole", chunk.type.value, chunk.start)

        plan.chunks = chunks
        logger.info(
            "Built %d chunk(s) from %d characters (%d safe boundaries, %d oversized)",
            len(chunks),
            length,
            len(safe),
            sum(1 for c in chunks if c.oversized),
        )
        return plan

    # ------------------------------------------------------------------
    # Packing
    # ------------------------------------------------------------------

    def _pack(self, cuts: list[int], allow_fallback: bool) -> list[tuple[int, int, bool]]:
        """Greedy accumulation over consecutive cut points.

        Returns (start, end, oversized) ranges tiling [cuts[0], cuts[-1]).
        """
        ranges: list[tuple[int, int, bool]] = []
        cur_start = cur_end = cuts[0]
        for a, b in pairwise(cuts):
            segment = self._tokens(b - a)
            if segment > self._capacity:
                if cur_end > cur_start:
                    ranges.append((cur_start, cur_end, False))
                if segment <= self._config.max_tokens:
                    # Fits alone once its overlap is trimmed
                    ranges.append((a, b, False))
                elif allow_fallback:
                    ranges.extend(self._split_oversized(a, b))
                else:
                    ranges.append((a, b, True))
                cur_start = cur_end = b
            elif self._tokens(b - cur_start) > self._capacity:
                ranges.append((cur_start, cur_end, False))
                cur_start, cur_end = a, b
            else:
                cur_end = b
        if cur_end > cur_start:
            ranges.append((cur_start, cur_end, False))
        return ranges

    def _split_oversized(self, start: int, end: int) -> list[tuple[int, int, bool]]:
        """Sub-split one oversized top-level segment, or keep it whole."""
        config = self._config
        if config.preserve_functions and not config.force_split_oversized:
            return [(start, end, True)]

        limit = 1 if config.preserve_scopes else MAX_FALLBACK_DEPTH
        cuts = [start, end]
        for depth in range(1, limit + 1):
            inner = BoundaryScanner(self._buffer, start, end, max_depth=depth).safe_offsets()
            cuts = [start, *(o for o in inner if start < o < end), end]
            if all(self._tokens(b - a) <= self._capacity for a, b in pairwise(cuts)):
                break
        logger.debug("Fallback pass split [%d,%d) at %d statement boundaries", start, end, len(cuts) - 2)
        return self._pack(cuts, allow_fallback=False)

    def _context_start(self, start: int, end: int, oversized: bool, prev_start: int, cuts: list[int]) -> int:
        """Start of the overlap region carried before a chunk.

        Primary plus overlap stays within max_tokens; only oversized
        chunks, which exceed it on their own, keep the full overlap.
        """
        overlap_tokens = self._config.overlap_tokens
        if not oversized:
            overlap_tokens = min(overlap_tokens, self._config.max_tokens - self._tokens(end - start))
        overlap_chars = int(overlap_tokens * self._config.chars_per_token)
        if overlap_chars <= 0 or start == 0:
            return start
        lower = max(prev_start, start - overlap_chars)
        i = bisect.bisect_left(cuts, lower)
        if i < len(cuts) and cuts[i] < start:
            return cuts[i]
        return lower


def _attach_dependencies(buffer: SourceBuffer, chunks: list[Chunk], min_length: int) -> list[Chunk]:
    """Record, per chunk, the chunks declaring identifiers it uses.

    The first chunk (in source order) declaring a name owns it. This is a
    textual heuristic, not scope resolution.
    """
    owner: dict[str, int] = {}
    declared: list[set[str]] = []
    for chunk in chunks:
        names: set[str] = set()
        for m in _DECLARATION.finditer(buffer.text, chunk.start, chunk.end):
            name = m.group(1) or m.group(2)
            if len(name) >= min_length and name not in _KEYWORDS:
                names.add(name)
                owner.setdefault(name, chunk.index)
        declared.append(names)

    result: list[Chunk] = []
    for chunk in chunks:
        used = {
            m.group(0)
            for m in _IDENTIFIER.finditer(buffer.text, chunk.start, chunk.end)
            if len(m.group(0)) >= min_length
        }
        targets = sorted(
            {owner[name] for name in used - declared[chunk.index] if name in owner} - {chunk.index}
        )
        deps = tuple(chunks[i].id for i in targets)
        result.append(dataclasses.replace(chunk, dependencies=deps) if deps else chunk)
    return result


def build_chunks(
    buffer: SourceBuffer,
    config: ChunkingConfig,
    library_matches: Sequence[LibraryMatch] = (),
    boundaries: BoundaryScanner | None = None,
) -> ChunkPlan:
    """Scan (unless boundaries are given) and chunk a buffer.

    Args:
        buffer: Source to chunk.
        config: Chunking strategy.
        library_matches: Detected libraries.
        boundaries: Pre-built top-level scanner (a fresh one by default).

    Returns:
        ChunkPlan with chunks in source order.

    """
    scanner = boundaries if boundaries is not None else BoundaryScanner(buffer)
    return ChunkBuilder(buffer, config).build(scanner, library_matches)
