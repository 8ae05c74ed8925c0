"""Library/bundler fingerprint matcher.

Runs every signature fingerprint over the buffer independently, so hits
of different libraries (and of one library's own fingerprints) may
overlap. Nearby hits of the same library are clustered into a region,
each region is scored, and overlapping regions of different libraries
are resolved deterministically.

Matches never remove bytes from the source. A filtering match only
lowers the importance of the chunks it covers.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from jsrev.core.config import LibraryFilterConfig
from jsrev.libraries.signatures import LibrarySignature
from jsrev.source import SourceBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LibraryMatch:
    """A detected library region.

    Attributes:
        name: Library name.
        start: Region start offset (inclusive).
        end: Region end offset (exclusive).
        confidence: Heuristic ranking in [0, 1], never proof.
        should_filter: The signature's filter flag.
        informational: True when confidence is below the configured
            minimum; informational matches never filter.
        category: Library category.
        version: Extracted version string, if any.

    """

    name: str
    start: int
    end: int
    confidence: float
    should_filter: bool
    informational: bool = False
    category: str = "unknown"
    version: str | None = None

    @property
    def filters(self) -> bool:
        """Return True if this match de-prioritizes its region."""
        return self.should_filter and not self.informational

    @property
    def length(self) -> int:
        """Length of the matched region."""
        return self.end - self.start


@dataclass(slots=True)
class _Candidate:
    sig_index: int
    start: int
    end: int
    pattern_ids: set[int]


def _signature_hits(text: str, patterns: tuple[re.Pattern[str], ...]) -> list[tuple[int, int, int]]:
    """(start, end, pattern index) of every non-empty fingerprint hit, by position."""
    hits = [
        (m.start(), m.end(), pat_index)
        for pat_index, pattern in enumerate(patterns)
        for m in pattern.finditer(text)
        if m.end() > m.start()
    ]
    hits.sort()
    return hits


def _cluster(
    hits: list[tuple[int, int, int]], sig_index: int, gap: int
) -> list[_Candidate]:
    clusters: list[_Candidate] = []
    current: _Candidate | None = None
    for start, end, pat_index in hits:
        if current is not None and start - current.end <= gap:
            current.end = max(current.end, end)
            current.pattern_ids.add(pat_index)
            continue
        current = _Candidate(sig_index, start, end, {pat_index})
        clusters.append(current)
    return clusters


def _overlaps(a: tuple[int, int], b: tuple[int, int]) -> bool:
    return a[0] < b[1] and b[0] < a[1]


def match_libraries(
    buffer: SourceBuffer,
    signatures: list[LibrarySignature],
    config: LibraryFilterConfig | None = None,
) -> list[LibraryMatch]:
    """Detect library regions in a buffer.

    Region confidence is the signature confidence scaled by the share of
    its distinct fingerprints found in the region (0.6 for one of many,
    1.0 for all). Overlapping regions of different libraries keep the
    highest confidence, then the longer region, then the signature
    declared first.

    Args:
        buffer: Source to scan.
        signatures: Rule table in declaration order.
        config: Matching settings (defaults when None).

    Returns:
        Matches ordered by start offset.

    """
    config = config or LibraryFilterConfig()
    if not signatures or not buffer.text:
        return []

    scored: list[tuple[float, _Candidate]] = []
    for sig_index, signature in enumerate(signatures):
        sig_hits = _signature_hits(buffer.text, signature.patterns)
        for candidate in _cluster(sig_hits, sig_index, config.cluster_gap):
            share = len(candidate.pattern_ids) / len(signature.patterns)
            scored.append((round(signature.confidence * (0.6 + 0.4 * share), 4), candidate))

    scored.sort(key=lambda item: (-item[0], -(item[1].end - item[1].start), item[1].sig_index, item[1].start))

    kept: list[tuple[float, _Candidate]] = []
    for confidence, candidate in scored:
        span = (candidate.start, candidate.end)
        if any(
            other.sig_index != candidate.sig_index and _overlaps(span, (other.start, other.end))
            for _, other in kept
        ):
            logger.debug(
                "Dropped %s at [%d,%d): overlaps a stronger match",
                signatures[candidate.sig_index].name,
                candidate.start,
                candidate.end,
            )
            continue
        kept.append((confidence, candidate))

    matches = [
        _to_match(buffer, signatures[candidate.sig_index], candidate, confidence, config)
        for confidence, candidate in kept
    ]
    matches.sort(key=lambda lm: (lm.start, lm.name))
    logger.info(
        "Library matching: %d region(s), %d filtering",
        len(matches),
        sum(1 for lm in matches if lm.filters),
    )
    return matches


def _to_match(
    buffer: SourceBuffer,
    signature: LibrarySignature,
    candidate: _Candidate,
    confidence: float,
    config: LibraryFilterConfig,
) -> LibraryMatch:
    version = None
    if signature.version is not None:
        lo = max(0, candidate.start - config.version_window)
        hi = min(len(buffer.text), candidate.end + config.version_window)
        vm = signature.version.search(buffer.text, lo, hi)
        if vm is not None:
            version = vm.group(1) if vm.groups() else vm.group(0)
    return LibraryMatch(
        name=signature.name,
        start=candidate.start,
        end=candidate.end,
        confidence=confidence,
        should_filter=signature.should_filter,
        informational=confidence < config.min_confidence,
        category=signature.category,
        version=version,
    )


def filtered_ranges(matches: list[LibraryMatch]) -> list[tuple[int, int]]:
    """Return the sorted union of regions covered by filtering matches."""
    spans = sorted((lm.start, lm.end) for lm in matches if lm.filters)
    merged: list[tuple[int, int]] = []
    for start, end in spans:
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def covered_length(ranges: list[tuple[int, int]], start: int, end: int) -> int:
    """Return how many offsets of [start, end) fall inside ranges."""
    total = 0
    for lo, hi in ranges:
        if hi <= start:
            continue
        if lo >= end:
            break
        total += min(hi, end) - max(lo, start)
    return total
