"""Shared CLI utilities for js-rev.

Exit codes, the console singleton, message helpers and logging setup.
"""

import logging
import os
import sys

from rich.console import Console
from rich.logging import RichHandler

# Exit codes following Unix conventions
EXIT_SUCCESS: int = 0
EXIT_ERROR: int = 1  # Input error (file not found, unreadable, too large)
EXIT_CONFIG_ERROR: int = 2  # Configuration/usage error
EXIT_SIGINT: int = 130  # 128 + SIGINT (2) - Interrupted by Ctrl+C

# When stdout is piped, Rich strips ANSI codes
_is_tty = sys.stdout.isatty()

console = Console(force_terminal=_is_tty, no_color=not _is_tty)

logger = logging.getLogger(__name__)


def _error(message: str) -> None:
    """Display error message with red styling."""
    console.print(f"[red]Error:[/red] {message}")


def _info(message: str) -> None:
    """Display info message with blue styling."""
    console.print(f"[blue]Info:[/blue] {message}")


def _success(message: str) -> None:
    """Display success message with green styling."""
    console.print(f"[green]✓[/green] {message}")


def _warning(message: str) -> None:
    """Display warning message with yellow styling."""
    console.print(f"[yellow]Warning:[/yellow] {message}")


def format_size(size: int) -> str:
    """Format a byte count as B/KB/MB."""
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} B"


def _setup_logging(verbose: bool, quiet: bool) -> None:
    """Configure logging based on verbosity flags.

    Args:
        verbose: If True, set DEBUG level.
        quiet: If True, set ERROR level.

    Note:
        verbose takes precedence over quiet. Default level is WARNING.
        JSREV_LOG_LEVEL overrides both flags.

    """
    env_level = os.environ.get("JSREV_LOG_LEVEL", "").upper()
    if env_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        level = getattr(logging, env_level)
    elif verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING

    logging.root.handlers.clear()

    handler = RichHandler(console=console, rich_tracebacks=True, show_path=False)
    handler.setLevel(level)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
    )

    # HTTP client loggers can print request URLs and headers carrying API keys
    for logger_name in ("httpx", "httpcore"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)
