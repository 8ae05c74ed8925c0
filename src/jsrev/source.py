"""Immutable source buffer with offset-to-line resolution and file metrics.

The SourceBuffer is loaded once per run and never mutated. Offsets used
throughout jsrev are character offsets into the decoded text; every
component (scanner, library matcher, chunk builder, merger) addresses
source through the same buffer so finding locations stay absolute.
"""

from __future__ import annotations

import bisect
import hashlib
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path

from jsrev.core.exceptions import SourceLoadError

logger = logging.getLogger(__name__)

# Rough function count used for metrics (works on minified code too)
_FUNCTION_RE = re.compile(r"function\s*\(|=>\s*{|\w+\s*:\s*function")

# Average line length above which a file is considered minified
MINIFIED_LINE_LENGTH = 500


def estimate_tokens(char_count: int, chars_per_token: float = 4.0) -> int:
    """Conservative token estimate for a run of characters.

    Rounds up so a non-empty range never estimates to zero tokens.

    Args:
        char_count: Number of characters.
        chars_per_token: Characters per token ratio.

    Returns:
        Estimated token count (0 for an empty range).

    """
    if char_count <= 0:
        return 0
    return math.ceil(char_count / chars_per_token)


@dataclass(frozen=True, slots=True)
class SourceBuffer:
    """Immutable source text plus a sorted line-start index.

    Attributes:
        text: Decoded source text.
        path: Origin path, if loaded from disk.
        line_starts: Offsets at which each line begins (first is always 0).

    """

    text: str
    path: str = ""
    line_starts: tuple[int, ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        starts = [0]
        starts.extend(m.end() for m in re.finditer("\n", self.text))
        object.__setattr__(self, "line_starts", tuple(starts))

    def __len__(self) -> int:
        return len(self.text)

    def __repr__(self) -> str:
        """Return a short representation for logging."""
        return f"SourceBuffer(path={self.path!r}, size={len(self.text)}, lines={self.line_count})"

    @classmethod
    def from_path(cls, path: Path | str, max_size: int | None = None) -> SourceBuffer:
        """Load a buffer from disk.

        Undecodable bytes are replaced rather than rejected; minified bundles
        regularly contain stray binary.

        Args:
            path: File to load.
            max_size: Optional maximum file size in bytes.

        Returns:
            Loaded SourceBuffer.

        Raises:
            SourceLoadError: If the file is missing, unreadable or too large.

        """
        p = Path(path)
        if not p.exists():
            raise SourceLoadError(f"File not found: {p}")
        if not p.is_file():
            raise SourceLoadError(f"Not a regular file: {p}")
        try:
            size = p.stat().st_size
            if max_size is not None and size > max_size:
                raise SourceLoadError(
                    f"File {p} is {size} bytes, exceeds maximum of {max_size} bytes"
                )
            raw = p.read_bytes()
        except OSError as e:
            raise SourceLoadError(f"Cannot read {p}: {e}") from e

        text = raw.decode("utf-8", errors="replace")
        logger.debug("Loaded %s: %d bytes, %d characters", p, size, len(text))
        return cls(text=text, path=str(p))

    @property
    def line_count(self) -> int:
        """Number of lines (a trailing newline starts an empty last line)."""
        return len(self.line_starts)

    @property
    def digest(self) -> str:
        """SHA-256 hex digest of the text."""
        return hashlib.sha256(self.text.encode("utf-8", errors="replace")).hexdigest()

    def location(self, offset: int) -> tuple[int, int]:
        """Resolve an offset to (line, column).

        Lines are 1-indexed, columns 0-indexed. Offsets are clamped to
        [0, len] so callers never get an IndexError.
        """
        offset = max(0, min(offset, len(self.text)))
        line_idx = bisect.bisect_right(self.line_starts, offset) - 1
        return line_idx + 1, offset - self.line_starts[line_idx]

    def slice(self, start: int, end: int) -> str:
        """Return text[start:end]."""
        return self.text[start:end]

    def snippet(self, offset: int, radius: int = 40) -> str:
        """Return a single-line excerpt around offset for report context."""
        start = max(0, offset - radius)
        end = min(len(self.text), offset + radius)
        return self.text[start:end].replace("\n", " ").strip()


@dataclass(frozen=True, slots=True)
class FileMetrics:
    """Basic size metrics of a source buffer.

    Attributes:
        size: Size in bytes (UTF-8).
        lines: Line count.
        functions: Rough function count.
        estimated_tokens: Whole-file token estimate.
        minified: True when the average line length suggests minification.

    """

    size: int
    lines: int
    functions: int
    estimated_tokens: int
    minified: bool


def compute_metrics(buffer: SourceBuffer, chars_per_token: float = 4.0) -> FileMetrics:
    """Compute FileMetrics for a buffer."""
    size = len(buffer.text.encode("utf-8", errors="replace"))
    lines = buffer.line_count
    functions = sum(1 for _ in _FUNCTION_RE.finditer(buffer.text))
    avg_line = len(buffer.text) / lines if lines else 0
    return FileMetrics(
        size=size,
        lines=lines,
        functions=functions,
        estimated_tokens=estimate_tokens(len(buffer.text), chars_per_token),
        minified=avg_line > MINIFIED_LINE_LENGTH,
    )
