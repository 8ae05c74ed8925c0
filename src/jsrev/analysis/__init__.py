"""Scoring, orchestration and merging of chunk analyses."""

from jsrev.analysis.types import (
    AnalysisOutcome,
    ChunkFinding,
    ChunkRequest,
    OrchestrationResult,
    SkipReason,
    SkipRecord,
)
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
from jsrev.analysis.scoring import score_chunk, score_chunks, weighted_hits
from jsrev.analysis.orchestrator import AnalysisOrchestrator, calculate_backoff, run_analysis
from jsrev.analysis.merger import ResultMerger, code_reduction, merge_results

__all__ = [
    "AnalysisOrchestrator",
    "AnalysisOutcome",
    "AnalysisResult",
    "ChunkFinding",
    "ChunkRequest",
    "CodeLocation",
    "DetectedLibrary",
    "FailedChunk",
    "Finding",
    "OrchestrationResult",
    "ResultMerger",
    "RunNoteModel",
    "SkipReason",
    "SkipRecord",
    "SkippedChunk",
    "SourceMetrics",
    "Summary",
    "calculate_backoff",
    "code_reduction",
    "merge_results",
    "run_analysis",
    "score_chunk",
    "score_chunks",
    "weighted_hits",
]
