"""Tests for AnalysisOrchestrator."""

import asyncio
import dataclasses
import random

import pytest

from jsrev.analysis.orchestrator import AnalysisOrchestrator, calculate_backoff, run_analysis
from jsrev.analysis.types import ChunkFinding, ChunkRequest, SkipReason
from jsrev.analyzers.base import BaseAnalyzer
from jsrev.core.cancellation import CancellationToken
from jsrev.core.config import AnalysisConfig, RetryConfig
from jsrev.core.exceptions import (
    AnalyzerPermanentError,
    AnalyzerTransientError,
    ErrorKind,
)
from jsrev.security.patterns import Severity
from jsrev.segmentation.types import Chunk, ChunkType
from jsrev.source import SourceBuffer

NO_DELAY = RetryConfig(retries=3, base_delay_seconds=0.0, jitter_factor=0.0)


def _source(n: int) -> tuple[SourceBuffer, list[Chunk]]:
    """n one-token chunks of 'a();', ranked in source order."""
    buffer = SourceBuffer("a();" * n)
    chunks = [
        Chunk(
            id=f"c{i}",
            index=i,
            start=4 * i,
            end=4 * i + 4,
            context_start=4 * i,
            estimated_tokens=1,
            overlap_tokens=0,
            type=ChunkType.UNKNOWN,
            start_line=1,
            end_line=1,
            importance=1.0 - i / (n + 1),
        )
        for i in range(n)
    ]
    return buffer, chunks


def _config(**kwargs: object) -> AnalysisConfig:
    return AnalysisConfig(retry=kwargs.pop("retry", NO_DELAY), **kwargs)  # type: ignore[arg-type]


class ScriptedAnalyzer(BaseAnalyzer):
    """Analyzer whose behaviour per chunk id is scripted by a list of errors."""

    name = "scripted"

    def __init__(
        self,
        errors: dict[str, list[Exception]] | None = None,
        delays: dict[str, float] | None = None,
        on_call: object = None,
    ) -> None:
        super().__init__()
        self.errors = {k: list(v) for k, v in (errors or {}).items()}
        self.delays = delays or {}
        self.on_call = on_call
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def analyze(self, request: ChunkRequest) -> list[ChunkFinding]:
        chunk_id = request.chunk.id
        self.calls.append(chunk_id)
        if callable(self.on_call):
            self.on_call(chunk_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(chunk_id, 0.0))
            pending = self.errors.get(chunk_id)
            if pending:
                raise pending.pop(0)
            return [
                ChunkFinding(
                    category="general",
                    severity=Severity.LOW,
                    confidence=0.5,
                    offset=request.primary_offset,
                    description=f"seen {chunk_id}",
                )
            ]
        finally:
            self.in_flight -= 1


# -----------------------------------------------------------------------------
# Dispatch and budget
# -----------------------------------------------------------------------------


class TestDispatch:
    """Dispatch order, concurrency and budget."""

    @pytest.mark.asyncio
    async def test_all_chunks_analyzed(self) -> None:
        """Without a budget every chunk is dispatched once."""
        buffer, chunks = _source(5)
        analyzer = ScriptedAnalyzer()
        result = await AnalysisOrchestrator(analyzer, buffer, _config()).run(chunks)
        assert [o.chunk_id for o in result.outcomes] == [c.id for c in chunks]
        assert sorted(analyzer.calls) == sorted(c.id for c in chunks)
        assert result.skipped == []
        assert result.tokens_spent == 5
        assert all(len(o.findings) == 1 for o in result.outcomes)

    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        """No chunks, no calls."""
        buffer, _ = _source(0)
        result = await AnalysisOrchestrator(ScriptedAnalyzer(), buffer, _config()).run([])
        assert result.outcomes == []
        assert result.tokens_spent == 0

    @pytest.mark.asyncio
    async def test_outcomes_in_dispatch_order(self) -> None:
        """Completion order does not change the outcome order."""
        buffer, chunks = _source(4)
        analyzer = ScriptedAnalyzer(delays={"c0": 0.05, "c1": 0.02})
        result = await AnalysisOrchestrator(analyzer, buffer, _config(concurrency=4)).run(chunks)
        assert [o.chunk_id for o in result.outcomes] == ["c0", "c1", "c2", "c3"]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self) -> None:
        """Never more than `concurrency` calls in flight."""
        buffer, chunks = _source(6)
        analyzer = ScriptedAnalyzer(delays={c.id: 0.01 for c in chunks})
        await AnalysisOrchestrator(analyzer, buffer, _config(concurrency=2)).run(chunks)
        assert analyzer.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_zero_budget_dispatches_nothing(self) -> None:
        """A budget of 0 skips every chunk as budget-exceeded."""
        buffer, chunks = _source(3)
        analyzer = ScriptedAnalyzer()
        result = await AnalysisOrchestrator(analyzer, buffer, _config(max_total_tokens=0)).run(chunks)
        assert analyzer.calls == []
        assert result.outcomes == []
        assert [s.chunk_id for s in result.skipped] == ["c0", "c1", "c2"]
        assert all(s.reason is SkipReason.BUDGET_EXCEEDED for s in result.skipped)
        assert all(s.error_kind is ErrorKind.BUDGET_EXCEEDED for s in result.skipped)

    @pytest.mark.asyncio
    async def test_budget_drops_lowest_ranked(self) -> None:
        """Chunks past the budget are dropped in importance order."""
        buffer, chunks = _source(4)
        result = await AnalysisOrchestrator(
            ScriptedAnalyzer(), buffer, _config(max_total_tokens=2, concurrency=3)
        ).run(chunks)
        assert [o.chunk_id for o in result.outcomes] == ["c0", "c1"]
        assert [s.chunk_id for s in result.skipped] == ["c2", "c3"]
        assert result.tokens_spent == 2

    @pytest.mark.asyncio
    async def test_budget_counts_overlap(self) -> None:
        """Overlap tokens are part of the reserved cost."""
        buffer, chunks = _source(2)
        chunks = [chunks[0], dataclasses.replace(chunks[1], overlap_tokens=1, context_start=0)]
        result = await AnalysisOrchestrator(ScriptedAnalyzer(), buffer, _config(max_total_tokens=2)).run(chunks)
        assert [o.chunk_id for o in result.outcomes] == ["c0"]
        assert [s.chunk_id for s in result.skipped] == ["c1"]

    @pytest.mark.asyncio
    async def test_progress_reported_per_chunk(self) -> None:
        """on_progress sees (completed, total) once per finished chunk, failures included."""
        buffer, chunks = _source(3)
        analyzer = ScriptedAnalyzer(errors={"c1": [AnalyzerPermanentError("bad request")]})
        seen: list[tuple[int, int]] = []
        await AnalysisOrchestrator(analyzer, buffer, _config(concurrency=2)).run(
            chunks, on_progress=lambda done, total: seen.append((done, total))
        )
        assert seen == [(1, 3), (2, 3), (3, 3)]


# -----------------------------------------------------------------------------
# Failures and retries
# -----------------------------------------------------------------------------


class TestFailures:
    """Per-chunk failure isolation and retry policy."""

    @pytest.mark.asyncio
    async def test_permanent_failure_is_isolated(self) -> None:
        """One failing chunk out of five leaves four successes."""
        buffer, chunks = _source(5)
        analyzer = ScriptedAnalyzer(errors={"c2": [AnalyzerPermanentError("rejected", status_code=400)]})
        result = await AnalysisOrchestrator(analyzer, buffer, _config()).run(chunks)
        assert len(result.outcomes) == 5
        assert len(result.succeeded) == 4
        (failed,) = result.failed
        assert failed.chunk_id == "c2"
        assert failed.error_kind is ErrorKind.ANALYZER_PERMANENT_FAILURE
        assert failed.attempts == 1
        assert analyzer.calls.count("c2") == 1

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self) -> None:
        """Transient failures are retried until success."""
        buffer, chunks = _source(1)
        analyzer = ScriptedAnalyzer(
            errors={"c0": [AnalyzerTransientError("429", status_code=429), AnalyzerTransientError("503")]}
        )
        result = await AnalysisOrchestrator(analyzer, buffer, _config()).run(chunks)
        (outcome,) = result.outcomes
        assert outcome.succeeded is True
        assert outcome.attempts == 3
        assert result.tokens_spent == 1

    @pytest.mark.asyncio
    async def test_transient_failure_exhausts_retries(self) -> None:
        """After retries + 1 attempts the chunk is recorded as failed."""
        buffer, chunks = _source(1)
        analyzer = ScriptedAnalyzer(errors={"c0": [AnalyzerTransientError("busy")] * 5})
        config = _config(retry=RetryConfig(retries=2, base_delay_seconds=0.0, jitter_factor=0.0))
        result = await AnalysisOrchestrator(analyzer, buffer, config).run(chunks)
        (outcome,) = result.outcomes
        assert outcome.succeeded is False
        assert outcome.attempts == 3
        assert outcome.error_kind is ErrorKind.ANALYZER_TRANSIENT_FAILURE
        assert outcome.error_message == "busy"

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self) -> None:
        """Builtin connection errors are retried."""
        buffer, chunks = _source(1)
        analyzer = ScriptedAnalyzer(errors={"c0": [ConnectionResetError("reset")]})
        result = await AnalysisOrchestrator(analyzer, buffer, _config()).run(chunks)
        assert result.outcomes[0].succeeded is True
        assert result.outcomes[0].attempts == 2

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_permanent(self) -> None:
        """Unclassified exceptions are recorded, not raised or retried."""
        buffer, chunks = _source(2)
        analyzer = ScriptedAnalyzer(errors={"c0": [ValueError("bug")]})
        result = await AnalysisOrchestrator(analyzer, buffer, _config()).run(chunks)
        failed = result.failed[0]
        assert failed.error_kind is ErrorKind.ANALYZER_PERMANENT_FAILURE
        assert "ValueError" in (failed.error_message or "")
        assert failed.attempts == 1
        assert len(result.succeeded) == 1

    @pytest.mark.asyncio
    async def test_call_timeout_is_transient(self) -> None:
        """A call exceeding call_timeout_seconds fails as transient."""
        buffer, chunks = _source(1)
        analyzer = ScriptedAnalyzer(delays={"c0": 1.0})
        config = _config(
            call_timeout_seconds=0.01,
            retry=RetryConfig(retries=0, base_delay_seconds=0.0, jitter_factor=0.0),
        )
        result = await AnalysisOrchestrator(analyzer, buffer, config).run(chunks)
        outcome = result.outcomes[0]
        assert outcome.succeeded is False
        assert outcome.error_kind is ErrorKind.ANALYZER_TRANSIENT_FAILURE
        assert "timed out" in (outcome.error_message or "")


# -----------------------------------------------------------------------------
# Cancellation
# -----------------------------------------------------------------------------


class TestCancellation:
    """Cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self) -> None:
        """A cancelled token dispatches nothing."""
        buffer, chunks = _source(3)
        token = CancellationToken()
        token.request_cancel()
        analyzer = ScriptedAnalyzer()
        result = await AnalysisOrchestrator(analyzer, buffer, _config(), cancel_token=token).run(chunks)
        assert analyzer.calls == []
        assert result.cancelled is True
        assert [s.reason for s in result.skipped] == [SkipReason.CANCELLED] * 3

    @pytest.mark.asyncio
    async def test_cancel_mid_run_lets_in_flight_finish(self) -> None:
        """The in-flight call completes; later chunks are skipped."""
        buffer, chunks = _source(4)
        token = CancellationToken()
        analyzer = ScriptedAnalyzer(on_call=lambda chunk_id: token.request_cancel())
        result = await AnalysisOrchestrator(
            analyzer, buffer, _config(concurrency=1), cancel_token=token
        ).run(chunks)
        assert [o.chunk_id for o in result.outcomes] == ["c0"]
        assert result.outcomes[0].succeeded is True
        assert [s.chunk_id for s in result.skipped] == ["c1", "c2", "c3"]
        assert result.cancelled is True

    @pytest.mark.asyncio
    async def test_cancel_stops_retries(self) -> None:
        """No retry is scheduled once cancellation was requested."""
        buffer, chunks = _source(1)
        token = CancellationToken()
        analyzer = ScriptedAnalyzer(
            errors={"c0": [AnalyzerTransientError("busy")] * 3},
            on_call=lambda chunk_id: token.request_cancel(),
        )
        result = await AnalysisOrchestrator(analyzer, buffer, _config(), cancel_token=token).run(chunks)
        assert result.outcomes[0].attempts == 1
        assert result.outcomes[0].succeeded is False

    @pytest.mark.asyncio
    async def test_cancel_during_backoff_skips_retry(self) -> None:
        """Cancellation arriving while backing off prevents the next call."""
        buffer, chunks = _source(1)
        token = CancellationToken()
        retry = RetryConfig(retries=3, base_delay_seconds=0.2, jitter_factor=0.0)
        analyzer = ScriptedAnalyzer(errors={"c0": [AnalyzerTransientError("busy")] * 3})
        orchestrator = AnalysisOrchestrator(analyzer, buffer, _config(retry=retry), cancel_token=token)

        asyncio.get_running_loop().call_later(0.05, token.request_cancel)
        result = await orchestrator.run(chunks)

        assert analyzer.calls == ["c0"]
        (outcome,) = result.outcomes
        assert outcome.succeeded is False
        assert outcome.attempts == 1
        assert outcome.error_kind is ErrorKind.ANALYZER_TRANSIENT_FAILURE
        assert result.cancelled is True


class TestHelpers:
    """Tests for calculate_backoff() and run_analysis()."""

    def test_backoff_without_jitter(self) -> None:
        """Delays double per attempt and are capped."""
        retry = RetryConfig(base_delay_seconds=1.0, max_delay_seconds=5.0, jitter_factor=0.0)
        assert [calculate_backoff(n, retry) for n in range(4)] == [1.0, 2.0, 4.0, 5.0]

    def test_backoff_jitter_range(self) -> None:
        """Jitter stays within +/- jitter_factor."""
        retry = RetryConfig(base_delay_seconds=1.0, jitter_factor=0.2)
        rng = random.Random(7)
        delays = [calculate_backoff(0, retry, rng) for _ in range(20)]
        assert all(0.8 <= d <= 1.2 for d in delays)

    @pytest.mark.asyncio
    async def test_run_analysis_wrapper(self) -> None:
        """run_analysis() is AnalysisOrchestrator(...).run()."""
        buffer, chunks = _source(2)
        result = await run_analysis(chunks, ScriptedAnalyzer(), buffer, _config())
        assert len(result.succeeded) == 2
