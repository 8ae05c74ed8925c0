"""Analysis orchestrator: budgeted, bounded-concurrency analyzer dispatch.

Runs a fixed pool of ``concurrency`` workers that pull chunks in
importance order from a shared cursor. Every dispatch first reserves the
chunk's token cost under an asyncio.Lock, so the run budget cannot be
overrun by concurrent workers. The first chunk that does not fit ends
dispatch: it and every lower-ranked chunk are recorded as skipped with
BudgetExceeded.

Each dispatched chunk owns a private retry loop. Transient failures are
retried with exponential backoff and jitter; permanent failures are
recorded immediately. No failure of a single chunk aborts the run.

Cancellation is cooperative: the token is checked at every dispatch
decision and between retries. Calls already in flight are never
interrupted.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Iterator, Sequence
from typing import TYPE_CHECKING

from jsrev.analysis.types import (
    AnalysisOutcome,
    ChunkRequest,
    OrchestrationResult,
    SkipReason,
    SkipRecord,
)
from jsrev.core.cancellation import CancellationToken
from jsrev.core.config import AnalysisConfig, RetryConfig
from jsrev.core.exceptions import AnalyzerError, ErrorKind
from jsrev.segmentation.types import Chunk
from jsrev.source import SourceBuffer

if TYPE_CHECKING:
    from jsrev.analyzers.base import BaseAnalyzer

logger = logging.getLogger(__name__)


def calculate_backoff(attempt: int, retry: RetryConfig, rng: random.Random | None = None) -> float:
    """Delay before retry number ``attempt`` (0-based).

    Exponential (base * 2**attempt) capped at max_delay_seconds, then
    scaled by a random factor in [1 - jitter, 1 + jitter].
    """
    delay = min(retry.max_delay_seconds, retry.base_delay_seconds * (2**attempt))
    if retry.jitter_factor > 0 and delay > 0:
        rand = (rng or random).uniform(-retry.jitter_factor, retry.jitter_factor)
        delay = delay * (1.0 + rand)
    return max(0.0, delay)


class AnalysisOrchestrator:
    """Schedules chunk analysis against one analyzer.

    Args:
        analyzer: Analyzer capability.
        buffer: Source the chunks address.
        config: Budget, concurrency, timeout and retry settings.
        cancel_token: Optional cooperative cancellation token.
        rng: Optional random source for backoff jitter.

    Example:
        >>> orchestrator = AnalysisOrchestrator(analyzer, buffer, config.analysis)
        >>> result = await orchestrator.run(ranked_chunks)
        >>> len(result.outcomes) + len(result.skipped) == len(ranked_chunks)
        True

    """

    def __init__(
        self,
        analyzer: BaseAnalyzer,
        buffer: SourceBuffer,
        config: AnalysisConfig,
        cancel_token: CancellationToken | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the orchestrator."""
        self._analyzer = analyzer
        self._buffer = buffer
        self._config = config
        self._cancel_token = cancel_token
        self._rng = rng

    def __repr__(self) -> str:
        """Return string representation for logging."""
        return (
            f"AnalysisOrchestrator(analyzer={self._analyzer.name!r}, "
            f"concurrency={self._config.concurrency}, budget={self._config.max_total_tokens})"
        )

    @property
    def _cancelled(self) -> bool:
        return self._cancel_token is not None and self._cancel_token.is_cancelled

    async def run(
        self,
        chunks: Sequence[Chunk],
        on_progress: Callable[[int, int], None] | None = None,
    ) -> OrchestrationResult:
        """Analyze chunks in the given (importance) order.

        Args:
            chunks: Chunks ordered by importance descending.
            on_progress: Called with (completed, total) after each chunk
                finishes, successfully or not.

        Returns:
            OrchestrationResult with one outcome per dispatched chunk (in
            dispatch order) and one skip record per undispatched chunk.

        """
        result = OrchestrationResult()
        if not chunks:
            return result

        budget = self._config.max_total_tokens
        cursor: Iterator[Chunk] = iter(chunks)
        lock = asyncio.Lock()
        dispatched: list[str] = []
        outcomes: dict[str, AnalysisOutcome] = {}
        stopped = False

        def skip_rest(first: Chunk, reason: SkipReason, message: str) -> None:
            nonlocal stopped
            stopped = True
            result.skipped.append(SkipRecord(first.id, reason, message))
            for chunk in cursor:
                result.skipped.append(SkipRecord(chunk.id, reason, message))

        async def next_chunk() -> Chunk | None:
            async with lock:
                if stopped:
                    return None
                chunk = next(cursor, None)
                if chunk is None:
                    return None
                if self._cancelled:
                    result.cancelled = True
                    skip_rest(chunk, SkipReason.CANCELLED, "run cancelled before dispatch")
                    logger.info("Cancellation observed, %d chunk(s) not dispatched", len(result.skipped))
                    return None
                cost = chunk.total_tokens
                if budget is not None and result.tokens_spent + cost > budget:
                    skip_rest(
                        chunk,
                        SkipReason.BUDGET_EXCEEDED,
                        f"token budget {budget} reached ({result.tokens_spent} spent, next chunk needs {cost})",
                    )
                    logger.warning(
                        "Token budget %d reached after %d chunk(s); remaining chunks dropped",
                        budget,
                        len(dispatched),
                    )
                    return None
                result.tokens_spent += cost
                dispatched.append(chunk.id)
                return chunk

        async def worker(worker_id: int) -> None:
            while (chunk := await next_chunk()) is not None:
                logger.debug("Worker %d: chunk %s (importance %.3f)", worker_id, chunk.id, chunk.importance)
                outcomes[chunk.id] = await self._analyze_with_retry(chunk)
                if on_progress is not None:
                    on_progress(len(outcomes), len(chunks))

        pool_size = min(self._config.concurrency, len(chunks))
        await asyncio.gather(*(worker(i) for i in range(pool_size)))

        result.outcomes = [outcomes[chunk_id] for chunk_id in dispatched]
        if self._cancelled:
            result.cancelled = True
        logger.info(
            "Orchestration done: %d succeeded, %d failed, %d skipped, %d tokens",
            len(result.succeeded),
            len(result.failed),
            len(result.skipped),
            result.tokens_spent,
        )
        return result

    async def _analyze_with_retry(self, chunk: Chunk) -> AnalysisOutcome:
        """Run the analyzer for one chunk with its private retry loop."""
        request = ChunkRequest(
            chunk=chunk,
            text=self._buffer.slice(chunk.context_start, chunk.end),
            base_offset=chunk.context_start,
        )
        retry = self._config.retry
        timeout = self._config.call_timeout_seconds
        attempts = 0

        while True:
            attempts += 1
            try:
                if timeout is not None:
                    async with asyncio.timeout(timeout):
                        findings = await self._analyzer.analyze(request)
                else:
                    findings = await self._analyzer.analyze(request)
                if attempts > 1:
                    logger.info("Chunk %s succeeded after %d attempts", chunk.id, attempts)
                return AnalysisOutcome(chunk_id=chunk.id, findings=tuple(findings), attempts=attempts)
            except AnalyzerError as e:
                kind, message = e.kind, str(e)
            except TimeoutError:
                kind, message = ErrorKind.ANALYZER_TRANSIENT_FAILURE, f"analyzer call timed out after {timeout}s"
            except ConnectionError as e:
                kind, message = ErrorKind.ANALYZER_TRANSIENT_FAILURE, f"{type(e).__name__}: {e}"
            except Exception as e:
                # Unclassified analyzer bugs are recorded, never propagated
                kind, message = ErrorKind.ANALYZER_PERMANENT_FAILURE, f"{type(e).__name__}: {e}"

            retryable = kind is ErrorKind.ANALYZER_TRANSIENT_FAILURE
            if retryable and attempts <= retry.retries and not self._cancelled:
                delay = calculate_backoff(attempts - 1, retry, self._rng)
                logger.warning(
                    "Chunk %s failed (attempt %d/%d): %s. Retrying in %.2fs...",
                    chunk.id,
                    attempts,
                    retry.retries + 1,
                    message,
                    delay,
                )
                await asyncio.sleep(delay)
                if not self._cancelled:
                    continue
                logger.info("Chunk %s: cancellation observed during backoff, not retrying", chunk.id)

            logger.error("Chunk %s failed after %d attempt(s): %s", chunk.id, attempts, message)
            return AnalysisOutcome(
                chunk_id=chunk.id,
                succeeded=False,
                attempts=attempts,
                error_kind=kind,
                error_message=message,
            )


async def run_analysis(
    chunks: Sequence[Chunk],
    analyzer: BaseAnalyzer,
    buffer: SourceBuffer,
    config: AnalysisConfig,
    cancel_token: CancellationToken | None = None,
) -> OrchestrationResult:
    """Convenience wrapper around AnalysisOrchestrator.run()."""
    return await AnalysisOrchestrator(analyzer, buffer, config, cancel_token).run(chunks)
