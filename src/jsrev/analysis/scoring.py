"""Importance scorer.

Ranks chunks by security-pattern hit density, dependency connectivity and
a constant baseline, then discounts the share of the chunk covered by
filtered library code. All weights come from FocusWeights.

Pure and deterministic: identical chunks, buffer, patterns and weights
always produce identical scores and ordering.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence

from jsrev.core.config import FocusWeights
from jsrev.libraries.matcher import LibraryMatch, covered_length, filtered_ranges
from jsrev.security.patterns import SecurityPattern
from jsrev.segmentation.types import Chunk
from jsrev.source import SourceBuffer

logger = logging.getLogger(__name__)


def weighted_hits(buffer: SourceBuffer, start: int, end: int, patterns: Sequence[SecurityPattern]) -> float:
    """Sum of pattern weights over all matches inside [start, end)."""
    total = 0.0
    for pattern in patterns:
        if pattern.weight <= 0.0:
            continue
        hits = sum(1 for _ in pattern.regex.finditer(buffer.text, start, end))
        total += hits * pattern.weight
    return total


def score_chunk(
    chunk: Chunk,
    buffer: SourceBuffer,
    patterns: Sequence[SecurityPattern],
    weights: FocusWeights,
    library_matches: Sequence[LibraryMatch] | None = None,
) -> float:
    """Compute a chunk's importance in [0, 1].

    Args:
        chunk: Chunk to score.
        buffer: Source the chunk addresses.
        patterns: Security rule table.
        weights: Scorer weights for the active focus.
        library_matches: Library matches; when None the chunk's own
            library_fraction is used.

    Returns:
        Importance score rounded to 6 decimals.

    """
    if chunk.length <= 0:
        return 0.0

    hits = weighted_hits(buffer, chunk.start, chunk.end, patterns)
    density = min(1.0, (hits * 1000.0 / chunk.length) / weights.density_saturation)
    connectivity = min(1.0, len(chunk.dependencies) / weights.connectivity_saturation)

    if library_matches is None:
        library_fraction = chunk.library_fraction
    else:
        library_fraction = (
            covered_length(filtered_ranges(list(library_matches)), chunk.start, chunk.end) / chunk.length
        )

    total_weight = weights.security + weights.connectivity + weights.baseline
    raw = (weights.security * density + weights.connectivity * connectivity + weights.baseline) / total_weight
    score = raw * (1.0 - weights.library_penalty * library_fraction)
    return round(max(0.0, min(1.0, score)), 6)


def score_chunks(
    chunks: Sequence[Chunk],
    buffer: SourceBuffer,
    patterns: Sequence[SecurityPattern],
    weights: FocusWeights,
) -> list[Chunk]:
    """Attach importance to every chunk and rank them.

    Returns:
        New Chunk objects ordered by importance descending, then source
        position ascending.

    """
    scored = [
        dataclasses.replace(chunk, importance=score_chunk(chunk, buffer, patterns, weights))
        for chunk in chunks
    ]
    scored.sort(key=lambda c: (-c.importance, c.start))
    if scored:
        logger.debug(
            "Scored %d chunks: top=%.3f bottom=%.3f",
            len(scored),
            scored[0].importance,
            scored[-1].importance,
        )
    return scored
