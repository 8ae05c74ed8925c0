"""Result merger: absolute locations, dedup, ordering, summary.

Pure and deterministic. Findings are considered in chunk-importance order
regardless of the order in which analyzer calls completed, so identical
inputs always yield an identical AnalysisResult. Wall-clock values
(processing time, timestamp) are supplied by the caller.

Dedup policy: two findings are duplicates when they share a category,
lie within ``dedup_window_bytes`` of each other and their descriptions
reach ``description_similarity`` (difflib ratio). The higher-confidence
one is kept; on a tie the one seen first in importance order wins.
"""

from __future__ import annotations

import bisect
import difflib
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from jsrev.analysis.result import (
    AnalysisResult,
    CodeLocation,
    DetectedLibrary,
    FailedChunk,
    Finding,
    RunNoteModel,
    SkippedChunk,
    SourceMetrics,
    Summary,
)
from jsrev.analysis.types import ChunkFinding, OrchestrationResult
from jsrev.core.config import MergeConfig
from jsrev.core.exceptions import ErrorKind
from jsrev.libraries.matcher import LibraryMatch, filtered_ranges
from jsrev.security.patterns import Severity
from jsrev.segmentation.types import Chunk, RunNote
from jsrev.source import SourceBuffer, compute_metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Candidate:
    chunk: Chunk
    offset: int
    finding: ChunkFinding


class ResultMerger:
    """Merges orchestration outcomes into an AnalysisResult.

    Args:
        buffer: Analyzed source.
        chunks: All chunks of the run (any order).
        config: Dedup settings.

    """

    def __init__(self, buffer: SourceBuffer, chunks: Sequence[Chunk], config: MergeConfig | None = None) -> None:
        """Index chunks by id and by primary start."""
        self._buffer = buffer
        self._config = config or MergeConfig()
        self._by_id = {c.id: c for c in chunks}
        self._rank = {c.id: i for i, c in enumerate(sorted(chunks, key=lambda c: (-c.importance, c.start)))}
        self._by_start = sorted(chunks, key=lambda c: c.start)
        self._starts = [c.start for c in self._by_start]

    def owner_of(self, offset: int) -> Chunk | None:
        """Chunk whose primary range contains offset."""
        i = bisect.bisect_right(self._starts, offset) - 1
        if i < 0:
            return None
        chunk = self._by_start[i]
        return chunk if chunk.contains(offset) else None

    def merge(
        self,
        orchestration: OrchestrationResult,
        library_matches: Sequence[LibraryMatch] = (),
        notes: Sequence[RunNote] = (),
        analyzer: str = "",
        processing_time_ms: float = 0.0,
        timestamp: datetime | None = None,
        chars_per_token: float = 4.0,
    ) -> AnalysisResult:
        """Build the final result.

        Args:
            orchestration: Orchestrator output.
            library_matches: Detected libraries.
            notes: Run notes from scanning and chunking.
            analyzer: Analyzer name recorded in the result.
            processing_time_ms: Wall time measured by the caller.
            timestamp: Run timestamp supplied by the caller.
            chars_per_token: Ratio used for the metrics token estimate.

        Returns:
            AnalysisResult with findings ordered by severity descending,
            then absolute offset ascending.

        """
        succeeded = {o.chunk_id for o in orchestration.outcomes if o.succeeded}
        candidates = self._collect(orchestration, succeeded)
        kept = self._deduplicate(candidates)
        kept.sort(
            key=lambda c: (
                -c.finding.severity.rank,
                c.offset,
                c.finding.category,
                c.finding.description,
                -c.finding.confidence,
            )
        )

        findings: list[Finding] = []
        for n, cand in enumerate(kept, start=1):
            line, column = self._buffer.location(cand.offset)
            findings.append(
                Finding(
                    id=f"F{n:04d}",
                    category=cand.finding.category,
                    severity=cand.finding.severity,
                    confidence=max(0.0, min(1.0, cand.finding.confidence)),
                    location=CodeLocation(offset=cand.offset, line=line, column=column, chunk_id=cand.chunk.id),
                    description=cand.finding.description,
                    recommendation=cand.finding.recommendation,
                    rule=cand.finding.rule,
                    evidence=cand.finding.evidence,
                )
            )

        failed = [
            FailedChunk(
                chunk_id=o.chunk_id,
                error_kind=o.error_kind or ErrorKind.ANALYZER_PERMANENT_FAILURE,
                message=o.error_message or "",
                attempts=o.attempts,
            )
            for o in orchestration.outcomes
            if not o.succeeded
        ]
        skipped = [
            SkippedChunk(chunk_id=s.chunk_id, reason=s.reason.value, error_kind=s.error_kind, message=s.message)
            for s in orchestration.skipped
        ]
        libraries = [
            DetectedLibrary(
                name=lm.name,
                version=lm.version,
                category=lm.category,
                confidence=lm.confidence,
                start=lm.start,
                end=lm.end,
                filtered=lm.filters,
                informational=lm.informational,
            )
            for lm in library_matches
        ]

        summary = Summary(
            total_findings=len(findings),
            by_severity={s.value: sum(1 for f in findings if f.severity is s) for s in Severity},
            libraries_detected=len({lm.name for lm in library_matches if not lm.informational}),
            code_reduction=code_reduction(len(self._buffer), library_matches),
            tokens_used=orchestration.tokens_spent,
            processing_time_ms=round(processing_time_ms, 3),
            total_chunks=len(self._by_id),
            analyzed_chunks=len(succeeded),
            failed_chunks=len(failed),
            skipped_chunks=len(skipped),
            cancelled=orchestration.cancelled,
        )
        metrics = compute_metrics(self._buffer, chars_per_token)

        logger.info(
            "Merged %d finding(s) from %d candidate(s) (%d chunk(s) analyzed)",
            len(findings),
            len(candidates),
            len(succeeded),
        )
        return AnalysisResult(
            metrics=SourceMetrics(
                file=self._buffer.path,
                size=metrics.size,
                lines=metrics.lines,
                functions=metrics.functions,
                estimated_tokens=metrics.estimated_tokens,
                minified=metrics.minified,
                digest=self._buffer.digest,
            ),
            findings=findings,
            libraries=libraries,
            summary=summary,
            failed=failed,
            skipped=skipped,
            notes=[
                RunNoteModel(kind=n.kind, message=n.message, offset=n.offset, chunk_id=n.chunk_id) for n in notes
            ],
            analyzer=analyzer,
            timestamp=timestamp,
        )

    def _collect(self, orchestration: OrchestrationResult, succeeded: set[str]) -> list[_Candidate]:
        """Absolute-offset candidates in chunk-importance order."""
        outcomes = sorted(
            (o for o in orchestration.outcomes if o.succeeded and o.chunk_id in self._by_id),
            key=lambda o: self._rank[o.chunk_id],
        )
        candidates: list[_Candidate] = []
        for outcome in outcomes:
            chunk = self._by_id[outcome.chunk_id]
            for finding in outcome.findings:
                offset = max(chunk.context_start, min(chunk.context_start + finding.offset, chunk.end - 1))
                if chunk.in_overlap(offset):
                    owner = self.owner_of(offset)
                    if owner is not None and owner.id in succeeded:
                        logger.debug("Dropped overlap finding at %d (owned by %s)", offset, owner.id)
                        continue
                candidates.append(_Candidate(chunk, offset, finding))
        return candidates

    def _deduplicate(self, candidates: list[_Candidate]) -> list[_Candidate]:
        window = self._config.dedup_window_bytes
        threshold = self._config.description_similarity
        kept: list[_Candidate] = []
        by_category: dict[str, list[int]] = {}

        for cand in candidates:
            duplicate_of: int | None = None
            for idx in by_category.get(cand.finding.category, []):
                existing = kept[idx]
                if abs(existing.offset - cand.offset) > window:
                    continue
                ratio = difflib.SequenceMatcher(
                    None, existing.finding.description, cand.finding.description
                ).ratio()
                if ratio >= threshold:
                    duplicate_of = idx
                    break

            if duplicate_of is None:
                by_category.setdefault(cand.finding.category, []).append(len(kept))
                kept.append(cand)
            elif cand.finding.confidence > kept[duplicate_of].finding.confidence:
                kept[duplicate_of] = cand

        if len(kept) < len(candidates):
            logger.debug("Dedup removed %d duplicate finding(s)", len(candidates) - len(kept))
        return kept


def code_reduction(total_length: int, library_matches: Sequence[LibraryMatch]) -> float:
    """Share of the source covered by filtering library matches, in percent."""
    if total_length <= 0:
        return 0.0
    filtered = sum(end - start for start, end in filtered_ranges(list(library_matches)))
    return round(filtered / total_length * 100.0, 2)


def merge_results(
    orchestration: OrchestrationResult,
    chunks: Sequence[Chunk],
    buffer: SourceBuffer,
    config: MergeConfig | None = None,
    library_matches: Sequence[LibraryMatch] = (),
    notes: Sequence[RunNote] = (),
) -> AnalysisResult:
    """Functional form of ResultMerger(buffer, chunks, config).merge(...)."""
    return ResultMerger(buffer, chunks, config).merge(orchestration, library_matches, notes)
