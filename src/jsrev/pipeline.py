"""End-to-end analysis pipeline.

Data flows strictly forward:

    SourceBuffer -> BoundaryScanner -> library matcher -> ChunkBuilder
        -> scorer -> selection -> AnalysisOrchestrator -> ResultMerger

Everything up to selection is synchronous and pure (prepare()). Only the
orchestrator performs external calls. Wall-clock time and the run
timestamp are measured here, outside the merger, so merge() stays
deterministic.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from jsrev.analysis.merger import ResultMerger
from jsrev.analysis.orchestrator import AnalysisOrchestrator
from jsrev.analysis.result import AnalysisResult
from jsrev.analysis.scoring import score_chunks
from jsrev.analysis.types import SkipReason, SkipRecord
from jsrev.analyzers.base import BaseAnalyzer
from jsrev.core.cancellation import CancellationToken
from jsrev.core.config import AnalysisConfig, JsRevConfig
from jsrev.libraries.matcher import LibraryMatch, match_libraries
from jsrev.libraries.signatures import LibrarySignature, load_library_signatures
from jsrev.security.patterns import SecurityPattern, load_security_patterns
from jsrev.segmentation.builder import build_chunks
from jsrev.segmentation.types import Chunk, ChunkType, RunNote
from jsrev.source import SourceBuffer

logger = logging.getLogger(__name__)

# (phase, fraction of that phase done, message); phases are prepare, analysis, merge
ProgressCallback = Callable[[str, float, str], None]


@dataclass(slots=True)
class PreparedSource:
    """Output of the synchronous stages.

    Attributes:
        buffer: Source being analyzed.
        library_matches: Detected library regions.
        chunks: Scored chunks, importance descending.
        notes: Scanner and chunk-builder notes.

    """

    buffer: SourceBuffer
    library_matches: list[LibraryMatch] = field(default_factory=list)
    chunks: list[Chunk] = field(default_factory=list)
    notes: list[RunNote] = field(default_factory=list)


def load_rule_tables(config: JsRevConfig) -> tuple[list[SecurityPattern], list[LibrarySignature]]:
    """Load bundled rule tables plus the files named in config."""
    extra_patterns = [config.security.custom_patterns_file] if config.security.custom_patterns_file else []
    extra_signatures = [config.libraries.signatures_file] if config.libraries.signatures_file else []
    return (
        load_security_patterns(extra_patterns),
        load_library_signatures(extra_signatures),
    )


def prepare(
    buffer: SourceBuffer,
    config: JsRevConfig,
    patterns: Sequence[SecurityPattern],
    signatures: Sequence[LibrarySignature],
) -> PreparedSource:
    """Scan, detect libraries, chunk and score a buffer."""
    library_matches = match_libraries(buffer, list(signatures), config.libraries)
    plan = build_chunks(buffer, config.chunking, library_matches)
    ranked = score_chunks(plan.chunks, buffer, patterns, config.analysis.weights)
    return PreparedSource(buffer=buffer, library_matches=library_matches, chunks=ranked, notes=plan.notes)


def select_chunks(chunks: Sequence[Chunk], config: AnalysisConfig) -> tuple[list[Chunk], list[SkipRecord]]:
    """Split ranked chunks into those to dispatch and those filtered out.

    Library chunks are filtered when filter_libraries is set; chunks
    scoring below min_importance are filtered always. Order is preserved.
    """
    selected: list[Chunk] = []
    skipped: list[SkipRecord] = []
    for chunk in chunks:
        if config.filter_libraries and chunk.type is ChunkType.LIBRARY:
            libs = ", ".join(chunk.libraries) or "library code"
            skipped.append(SkipRecord(chunk.id, SkipReason.LIBRARY, f"filtered as {libs}"))
        elif chunk.importance < config.min_importance:
            skipped.append(
                SkipRecord(
                    chunk.id,
                    SkipReason.LOW_IMPORTANCE,
                    f"importance {chunk.importance:.3f} below {config.min_importance:.3f}",
                )
            )
        else:
            selected.append(chunk)
    if skipped:
        logger.info("Selection: %d chunk(s) dispatched, %d filtered", len(selected), len(skipped))
    return selected, skipped


async def analyze_source(
    buffer: SourceBuffer,
    analyzer: BaseAnalyzer,
    config: JsRevConfig,
    patterns: Sequence[SecurityPattern] | None = None,
    signatures: Sequence[LibrarySignature] | None = None,
    cancel_token: CancellationToken | None = None,
    progress: ProgressCallback | None = None,
) -> AnalysisResult:
    """Run the whole pipeline on one buffer.

    Args:
        buffer: Source to analyze.
        analyzer: Analyzer capability.
        config: Root configuration.
        patterns: Security rule table (bundled + configured when None).
        signatures: Library rule table (bundled + configured when None).
        cancel_token: Optional cooperative cancellation token.
        progress: Optional callback reporting per-phase progress.

    Returns:
        Merged AnalysisResult. Partial failures are recorded in it,
        never raised.

    """
    started = time.perf_counter()

    def report(phase: str, fraction: float, message: str) -> None:
        if progress is not None:
            progress(phase, fraction, message)

    report("prepare", 0.0, f"scanning {len(buffer.text):,} characters")
    if patterns is None or signatures is None:
        loaded_patterns, loaded_signatures = load_rule_tables(config)
        patterns = loaded_patterns if patterns is None else patterns
        signatures = loaded_signatures if signatures is None else signatures

    prepared = prepare(buffer, config, patterns, signatures)
    selected, filtered = select_chunks(prepared.chunks, config.analysis)
    report(
        "prepare",
        1.0,
        f"{len(prepared.chunks)} chunk(s), {len(prepared.library_matches)} library region(s)",
    )

    def on_chunk_done(done: int, total: int) -> None:
        report("analysis", done / total, f"{done}/{total} chunk(s) analyzed")

    report("analysis", 0.0, f"{len(selected)} chunk(s) to analyze")

    orchestrator = AnalysisOrchestrator(analyzer, buffer, config.analysis, cancel_token)
    orchestration = await orchestrator.run(selected, on_progress=on_chunk_done)
    orchestration.skipped = filtered + orchestration.skipped

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    merger = ResultMerger(buffer, prepared.chunks, config.merge)
    result = merger.merge(
        orchestration,
        library_matches=prepared.library_matches,
        notes=prepared.notes,
        analyzer=analyzer.name,
        processing_time_ms=elapsed_ms,
        timestamp=datetime.now(UTC),
        chars_per_token=config.chunking.chars_per_token,
    )
    report("merge", 1.0, f"{result.summary.total_findings} finding(s)")
    return result


async def analyze_file(
    path: Path | str,
    analyzer: BaseAnalyzer,
    config: JsRevConfig,
    cancel_token: CancellationToken | None = None,
    progress: ProgressCallback | None = None,
) -> AnalysisResult:
    """Load a file (size-checked) and analyze it.

    Raises:
        SourceLoadError: If the file cannot be loaded.

    """
    buffer = SourceBuffer.from_path(path, max_size=config.analysis.max_file_size)
    return await analyze_source(buffer, analyzer, config, cancel_token=cancel_token, progress=progress)
