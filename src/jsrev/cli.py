"""js-rev command line interface.

Thin plumbing over jsrev.pipeline: loads config and rule tables, runs the
analysis and renders tables with rich. JSON output is the serialized
AnalysisResult.
"""

import asyncio
import logging
import signal
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from types import FrameType
from typing import Any

import typer
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from jsrev.analysis.result import AnalysisResult
from jsrev.analyzers import create_analyzer
from jsrev.cli_utils import (
    EXIT_CONFIG_ERROR,
    EXIT_ERROR,
    EXIT_SIGINT,
    _error,
    _info,
    _setup_logging,
    _success,
    _warning,
    console,
    format_size,
)
from jsrev.core.cancellation import CancellationToken
from jsrev.core.config import JsRevConfig, load_config
from jsrev.core.exceptions import ConfigError, ConfigValidationError, SourceLoadError
from jsrev.libraries.matcher import match_libraries
from jsrev.pipeline import analyze_source, load_rule_tables, prepare
from jsrev.security.patterns import Severity
from jsrev.source import SourceBuffer, compute_metrics

logger = logging.getLogger(__name__)

PACKAGE_NAME = "js-reverse-engineer"

# Findings shown in the console table; the JSON output always has all of them
MAX_TABLE_FINDINGS = 50

_SEVERITY_STYLES = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
}

app = typer.Typer(
    name="js-rev",
    help="Token-budgeted segmentation and analysis of large minified JavaScript",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        try:
            pkg_version = version(PACKAGE_NAME)
        except PackageNotFoundError:
            pkg_version = "unknown"
        console.print(f"js-rev {pkg_version}")
        raise typer.Exit()


@app.callback()
def main(
    show_version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Token-budgeted segmentation and analysis of large minified JavaScript."""


def _load_config_or_exit(config_path: Path | None, overrides: dict[str, Any]) -> JsRevConfig:
    """Load configuration, exiting with EXIT_CONFIG_ERROR on failure."""
    try:
        return load_config(config_path, overrides)
    except ConfigValidationError as e:
        _error(str(e))
        for err in e.errors:
            loc = ".".join(str(x) for x in err["loc"])
            _error(f"  {loc}: {err['msg']}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from e
    except ConfigError as e:
        _error(str(e))
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from e


def _load_buffer_or_exit(file: Path, config: JsRevConfig) -> SourceBuffer:
    """Load the input file, exiting with EXIT_ERROR on failure."""
    try:
        return SourceBuffer.from_path(file, max_size=config.analysis.max_file_size)
    except SourceLoadError as e:
        _error(str(e))
        raise typer.Exit(code=EXIT_ERROR) from e


def _build_overrides(**sections: dict[str, Any]) -> dict[str, Any]:
    """Drop unset (None) values and empty sections."""
    overrides: dict[str, Any] = {}
    for section, values in sections.items():
        kept = {k: v for k, v in values.items() if v is not None}
        if kept:
            overrides[section] = kept
    return overrides


def _render_result(result: AnalysisResult) -> None:
    summary = result.summary
    table = Table(title="Analysis Summary", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("File", result.metrics.file)
    table.add_row("Size", format_size(result.metrics.size))
    table.add_row("Analyzer", result.analyzer)
    table.add_row(
        "Chunks",
        f"{summary.total_chunks} total, {summary.analyzed_chunks} analyzed, "
        f"{summary.failed_chunks} failed, {summary.skipped_chunks} skipped",
    )
    table.add_row("Tokens used", f"{summary.tokens_used:,}")
    table.add_row("Libraries", str(summary.libraries_detected))
    table.add_row("Code reduction", f"{summary.code_reduction:.1f}%")
    table.add_row("Findings", ", ".join(f"{k}: {v}" for k, v in summary.by_severity.items()))
    table.add_row("Time", f"{summary.processing_time_ms / 1000:.2f}s")
    console.print(table)

    if result.findings:
        findings = Table(title="Findings")
        findings.add_column("ID")
        findings.add_column("Severity")
        findings.add_column("Category")
        findings.add_column("Line", justify="right")
        findings.add_column("Description")
        for f in result.findings[:MAX_TABLE_FINDINGS]:
            style = _SEVERITY_STYLES.get(f.severity, "")
            findings.add_row(
                f.id,
                f"[{style}]{f.severity.value}[/{style}]",
                f.category,
                str(f.location.line),
                f.description,
            )
        console.print(findings)
        if len(result.findings) > MAX_TABLE_FINDINGS:
            _info(f"{len(result.findings) - MAX_TABLE_FINDINGS} more finding(s) in the JSON output")

    for failed in result.failed:
        _warning(f"Chunk {failed.chunk_id} failed ({failed.error_kind.value}): {failed.message}")
    for note in result.notes:
        _warning(f"{note.kind.value}: {note.message}")


@app.command("analyze")
def analyze(
    file: Path = typer.Option(
        ...,
        "--file",
        "-f",
        help="JavaScript file to analyze",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the AnalysisResult as JSON to this path",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML configuration file",
    ),
    provider: str | None = typer.Option(
        None,
        "--provider",
        help="Analyzer provider: heuristic, anthropic or openai",
    ),
    focus: str | None = typer.Option(
        None,
        "--focus",
        help="Analysis focus: security, general, performance or privacy",
    ),
    max_tokens: int | None = typer.Option(
        None,
        "--max-tokens",
        help="Maximum estimated tokens per chunk",
    ),
    max_total_tokens: int | None = typer.Option(
        None,
        "--max-total-tokens",
        help="Token budget for the whole run",
    ),
    concurrency: int | None = typer.Option(
        None,
        "--concurrency",
        help="Maximum analyzer calls in flight",
    ),
    filter_libraries: bool | None = typer.Option(
        None,
        "--filter-libraries/--no-filter-libraries",
        help="Skip chunks classified as library code",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Only log errors",
    ),
) -> None:
    """Analyze a JavaScript file and report findings.

    Examples:
        js-rev analyze -f bundle.min.js
        js-rev analyze -f bundle.min.js --provider anthropic --max-total-tokens 400000 -o report.json

    """
    _setup_logging(verbose=verbose, quiet=quiet)

    overrides = _build_overrides(
        llm={"provider": provider},
        analysis={
            "focus": focus,
            "max_total_tokens": max_total_tokens,
            "concurrency": concurrency,
            "filter_libraries": filter_libraries,
        },
        chunking={"max_tokens": max_tokens},
    )
    config = _load_config_or_exit(config_path, overrides)
    buffer = _load_buffer_or_exit(file, config)
    patterns, signatures = load_rule_tables(config)

    try:
        analyzer = create_analyzer(config, patterns)
    except ConfigError as e:
        _error(str(e))
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from e

    token = CancellationToken()

    def _on_sigint(signum: int, frame: FrameType | None) -> None:
        if token.is_cancelled:
            raise KeyboardInterrupt
        _warning("Cancelling: waiting for in-flight chunks (Ctrl+C again to abort)")
        token.request_cancel()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            transient=True,
            console=console,
            disable=quiet,
        ) as prog:
            task = prog.add_task("Preparing…", total=1.0)

            def _on_progress(phase: str, fraction: float, message: str) -> None:
                prog.update(task, description=f"{phase.capitalize()}: {message}", completed=fraction)

            result = asyncio.run(
                analyze_source(
                    buffer, analyzer, config, patterns, signatures, cancel_token=token, progress=_on_progress
                )
            )
    except KeyboardInterrupt:
        _error("Interrupted")
        raise typer.Exit(code=EXIT_SIGINT) from None
    finally:
        signal.signal(signal.SIGINT, previous)

    _render_result(result)

    if output is not None:
        try:
            output.write_text(result.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            _error(f"Cannot write {output}: {e}")
            raise typer.Exit(code=EXIT_ERROR) from e
        _success(f"Report written to {output}")


@app.command("metrics")
def metrics(
    file: Path = typer.Option(
        ...,
        "--file",
        "-f",
        help="JavaScript file to measure",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML configuration file",
    ),
    max_tokens: int | None = typer.Option(
        None,
        "--max-tokens",
        help="Maximum estimated tokens per chunk",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
) -> None:
    """Show file metrics and how many chunks the token budget needs."""
    _setup_logging(verbose=verbose, quiet=False)
    config = _load_config_or_exit(config_path, _build_overrides(chunking={"max_tokens": max_tokens}))
    buffer = _load_buffer_or_exit(file, config)
    patterns, signatures = load_rule_tables(config)

    file_metrics = compute_metrics(buffer, config.chunking.chars_per_token)
    prepared = prepare(buffer, config, patterns, signatures)

    table = Table(title=f"Metrics: {file.name}", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Size", format_size(file_metrics.size))
    table.add_row("Lines", f"{file_metrics.lines:,}")
    table.add_row("Functions", f"{file_metrics.functions:,}")
    table.add_row("Estimated tokens", f"{file_metrics.estimated_tokens:,}")
    table.add_row("Minified", "yes" if file_metrics.minified else "no")
    table.add_row("Max tokens per chunk", f"{config.chunking.max_tokens:,}")
    table.add_row("Chunks needed", str(len(prepared.chunks)))
    table.add_row("Oversized chunks", str(sum(1 for c in prepared.chunks if c.oversized)))
    console.print(table)


@app.command("libraries")
def libraries(
    file: Path = typer.Option(
        ...,
        "--file",
        "-f",
        help="JavaScript file to scan",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML configuration file",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
) -> None:
    """List detected libraries and bundler runtimes."""
    _setup_logging(verbose=verbose, quiet=False)
    config = _load_config_or_exit(config_path, {})
    buffer = _load_buffer_or_exit(file, config)
    _, signatures = load_rule_tables(config)

    matches = match_libraries(buffer, signatures, config.libraries)
    if not matches:
        _info("No libraries detected")
        return

    table = Table(title="Detected Libraries")
    table.add_column("Library")
    table.add_column("Version")
    table.add_column("Category")
    table.add_column("Confidence", justify="right")
    table.add_column("Range")
    table.add_column("Filtered")
    for lm in matches:
        table.add_row(
            lm.name,
            lm.version or "-",
            lm.category,
            f"{lm.confidence:.2f}",
            f"[{lm.start:,}, {lm.end:,})",
            "yes" if lm.filters else ("informational" if lm.informational else "no"),
        )
    console.print(table)
