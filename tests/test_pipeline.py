"""End-to-end tests for the analysis pipeline."""

from pathlib import Path

import pytest

from jsrev.analyzers.heuristic import HeuristicAnalyzer
from jsrev.core.cancellation import CancellationToken
from jsrev.core.config import JsRevConfig, build_config
from jsrev.core.exceptions import ErrorKind, SourceLoadError
from jsrev.libraries.signatures import LibrarySignature
from jsrev.pipeline import analyze_file, analyze_source, load_rule_tables, prepare, select_chunks
from jsrev.security.patterns import SecurityPattern
from jsrev.segmentation.types import ChunkType
from jsrev.source import SourceBuffer

WEBPACK_JS = "var __webpack_modules__={};function __webpack_require__(e){return __webpack_modules__[e]}"


def _config(**analysis: object) -> JsRevConfig:
    return build_config(
        {
            "chunking": {"max_tokens": 3, "overlap_tokens": 0},
            "analysis": {"retry": {"base_delay_seconds": 0.0, "jitter_factor": 0.0}, **analysis},
        }
    )


class TestPrepare:
    """Tests for prepare() and select_chunks()."""

    def test_chunks_ranked(
        self,
        example_source: SourceBuffer,
        small_config: JsRevConfig,
        patterns: list[SecurityPattern],
        signatures: list[LibrarySignature],
    ) -> None:
        """The eval() function is ranked first."""
        prepared = prepare(example_source, small_config, patterns, signatures)
        assert [(c.start, c.end) for c in prepared.chunks] == [(0, 21), (21, 43)]
        assert prepared.chunks[0].importance == pytest.approx(0.85)
        assert prepared.library_matches == []
        assert [n.kind for n in prepared.notes] == [ErrorKind.OVERSIZED_UNSPLITTABLE_CHUNK] * 2

    def test_min_importance(
        self,
        example_source: SourceBuffer,
        patterns: list[SecurityPattern],
        signatures: list[LibrarySignature],
    ) -> None:
        """Chunks below min_importance are filtered out."""
        config = _config(min_importance=0.5)
        prepared = prepare(example_source, config, patterns, signatures)
        selected, skipped = select_chunks(prepared.chunks, config.analysis)
        assert [c.start for c in selected] == [0]
        assert [s.reason.value for s in skipped] == ["low-importance"]

    def test_rule_tables(self, small_config: JsRevConfig) -> None:
        """Bundled tables load without extra files."""
        patterns, signatures = load_rule_tables(small_config)
        assert patterns
        assert signatures


class TestAnalyzeSource:
    """Tests for analyze_source()."""

    @pytest.mark.asyncio
    async def test_two_function_example(
        self,
        example_source: SourceBuffer,
        small_config: JsRevConfig,
        patterns: list[SecurityPattern],
        signatures: list[LibrarySignature],
    ) -> None:
        """One eval() finding at its absolute position."""
        analyzer = HeuristicAnalyzer(patterns, small_config.security)
        result = await analyze_source(example_source, analyzer, small_config, patterns, signatures)

        assert [f.rule for f in result.findings] == ["eval-call"]
        location = result.findings[0].location
        assert (location.offset, location.line, location.column) == (13, 1, 13)
        summary = result.summary
        assert (summary.total_chunks, summary.analyzed_chunks) == (2, 2)
        assert summary.tokens_used == 12
        assert summary.code_reduction == 0.0
        assert result.analyzer == "heuristic"
        assert result.timestamp is not None
        assert result.partial is False
        assert len(result.notes) == 2
        assert result.metrics.file == "example.js"

    @pytest.mark.asyncio
    async def test_zero_budget(
        self,
        example_source: SourceBuffer,
        patterns: list[SecurityPattern],
        signatures: list[LibrarySignature],
    ) -> None:
        """A zero budget dispatches nothing and records every chunk."""
        config = _config(max_total_tokens=0)
        analyzer = HeuristicAnalyzer(patterns)
        result = await analyze_source(example_source, analyzer, config, patterns, signatures)

        assert result.findings == []
        assert [s.reason for s in result.skipped] == ["budget-exceeded", "budget-exceeded"]
        assert all(s.error_kind is ErrorKind.BUDGET_EXCEEDED for s in result.skipped)
        assert result.summary.tokens_used == 0
        assert result.partial is True

    @pytest.mark.asyncio
    async def test_malformed_input_noted(
        self,
        small_config: JsRevConfig,
        patterns: list[SecurityPattern],
        signatures: list[LibrarySignature],
    ) -> None:
        """An unterminated string is recorded, not raised."""
        buffer = SourceBuffer("a();b();var s='oops")
        result = await analyze_source(buffer, HeuristicAnalyzer(patterns), small_config, patterns, signatures)
        assert ErrorKind.MALFORMED_INPUT_BOUNDARY in [n.kind for n in result.notes]
        assert result.summary.total_chunks >= 2

    @pytest.mark.asyncio
    async def test_clean_source(
        self,
        small_config: JsRevConfig,
        patterns: list[SecurityPattern],
        signatures: list[LibrarySignature],
    ) -> None:
        """Code without matches yields an empty, complete result."""
        buffer = SourceBuffer("function add(a,b){return a+b}")
        result = await analyze_source(buffer, HeuristicAnalyzer(patterns), small_config, patterns, signatures)
        assert result.findings == []
        assert result.summary.total_findings == 0
        assert result.summary.code_reduction == 0.0
        assert result.partial is False

    @pytest.mark.asyncio
    async def test_library_chunk_skipped(
        self,
        patterns: list[SecurityPattern],
        signatures: list[LibrarySignature],
    ) -> None:
        """Webpack runtime code is filtered before dispatch."""
        config = build_config({})
        buffer = SourceBuffer(WEBPACK_JS)
        prepared = prepare(buffer, config, patterns, signatures)
        assert [c.type for c in prepared.chunks] == [ChunkType.LIBRARY]

        result = await analyze_source(buffer, HeuristicAnalyzer(patterns), config, patterns, signatures)
        assert [s.reason for s in result.skipped] == ["library"]
        assert "webpack-runtime" in [lib.name for lib in result.libraries if lib.filtered]
        assert result.summary.code_reduction > 0
        assert result.summary.analyzed_chunks == 0

    @pytest.mark.asyncio
    async def test_library_filtering_disabled(
        self,
        patterns: list[SecurityPattern],
        signatures: list[LibrarySignature],
    ) -> None:
        """filter_libraries=False still analyzes library chunks."""
        config = build_config({"analysis": {"filter_libraries": False}})
        buffer = SourceBuffer(WEBPACK_JS)
        result = await analyze_source(buffer, HeuristicAnalyzer(patterns), config, patterns, signatures)
        assert result.skipped == []
        assert result.summary.analyzed_chunks == 1

    @pytest.mark.asyncio
    async def test_pre_cancelled(
        self,
        example_source: SourceBuffer,
        small_config: JsRevConfig,
        patterns: list[SecurityPattern],
        signatures: list[LibrarySignature],
    ) -> None:
        """A cancelled token skips every chunk and marks the summary."""
        token = CancellationToken()
        token.request_cancel()
        analyzer = HeuristicAnalyzer(patterns)
        result = await analyze_source(
            example_source, analyzer, small_config, patterns, signatures, cancel_token=token
        )
        assert [s.reason for s in result.skipped] == ["cancelled", "cancelled"]
        assert result.summary.cancelled is True
        assert result.findings == []

    @pytest.mark.asyncio
    async def test_progress_phases(
        self,
        example_source: SourceBuffer,
        small_config: JsRevConfig,
        patterns: list[SecurityPattern],
        signatures: list[LibrarySignature],
    ) -> None:
        """Progress runs prepare, analysis per chunk, then merge."""
        calls: list[tuple[str, float, str]] = []
        await analyze_source(
            example_source,
            HeuristicAnalyzer(patterns),
            small_config,
            patterns,
            signatures,
            progress=lambda phase, fraction, message: calls.append((phase, fraction, message)),
        )

        assert [(phase, fraction) for phase, fraction, _ in calls] == [
            ("prepare", 0.0),
            ("prepare", 1.0),
            ("analysis", 0.0),
            ("analysis", 0.5),
            ("analysis", 1.0),
            ("merge", 1.0),
        ]
        assert calls[1][2] == "2 chunk(s), 0 library region(s)"
        assert calls[-1][2] == "1 finding(s)"

    @pytest.mark.asyncio
    async def test_progress_when_nothing_dispatched(
        self,
        example_source: SourceBuffer,
        patterns: list[SecurityPattern],
        signatures: list[LibrarySignature],
    ) -> None:
        """With a zero budget analysis never advances but merge still completes."""
        calls: list[tuple[str, float]] = []
        await analyze_source(
            example_source,
            HeuristicAnalyzer(patterns),
            _config(max_total_tokens=0),
            patterns,
            signatures,
            progress=lambda phase, fraction, _: calls.append((phase, fraction)),
        )
        assert calls == [("prepare", 0.0), ("prepare", 1.0), ("analysis", 0.0), ("merge", 1.0)]


class TestAnalyzeFile:
    """Tests for analyze_file()."""

    @pytest.mark.asyncio
    async def test_reads_file(
        self, tmp_path: Path, small_config: JsRevConfig, patterns: list[SecurityPattern]
    ) -> None:
        """Files are loaded and analyzed."""
        path = tmp_path / "app.js"
        path.write_text("function a(){eval(x)}function b(){return 1}", encoding="utf-8")
        result = await analyze_file(path, HeuristicAnalyzer(patterns), small_config)
        assert result.summary.total_findings == 1
        assert result.metrics.file == str(path)

    @pytest.mark.asyncio
    async def test_missing_file(
        self, tmp_path: Path, small_config: JsRevConfig, patterns: list[SecurityPattern]
    ) -> None:
        """A missing file raises SourceLoadError."""
        with pytest.raises(SourceLoadError, match="File not found"):
            await analyze_file(tmp_path / "missing.js", HeuristicAnalyzer(patterns), small_config)

    @pytest.mark.asyncio
    async def test_size_limit(self, tmp_path: Path, patterns: list[SecurityPattern]) -> None:
        """Files over max_file_size are rejected."""
        path = tmp_path / "big.js"
        path.write_text("a();" * 10, encoding="utf-8")
        config = build_config({"analysis": {"max_file_size": 8}})
        with pytest.raises(SourceLoadError, match="exceeds maximum"):
            await analyze_file(path, HeuristicAnalyzer(patterns), config)

    @pytest.mark.asyncio
    async def test_progress_forwarded(
        self, tmp_path: Path, small_config: JsRevConfig, patterns: list[SecurityPattern]
    ) -> None:
        """analyze_file passes the progress callback through."""
        path = tmp_path / "app.js"
        path.write_text("a();", encoding="utf-8")
        phases: list[str] = []
        await analyze_file(
            path, HeuristicAnalyzer(patterns), small_config, progress=lambda phase, *_: phases.append(phase)
        )
        assert phases[0] == "prepare"
        assert phases[-1] == "merge"
