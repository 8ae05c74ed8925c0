"""Security pattern rule table loader.

Loads security patterns from the bundled YAML file plus optional
user-supplied files and compiles them into SecurityPattern objects. The
core treats the result as an opaque rule table: no pattern names are
hard-coded outside the data files.

Malformed files and entries are logged and skipped, never fatal.
"""

from __future__ import annotations

import importlib.resources
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

BUNDLED_PATTERNS_FILE = "security_patterns.yaml"


class Severity(str, Enum):
    """Finding severity levels, ordered low to critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Numeric rank (low=0 ... critical=3) for ordering."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}

SECURITY_CATEGORIES: frozenset[str] = frozenset(
    [
        "xss",
        "injection",
        "csrf",
        "data-exposure",
        "eval-usage",
        "dom-manipulation",
        "network-security",
        "privacy",
        "crypto",
        "authentication",
        "authorization",
        "general",
    ]
)


@dataclass(frozen=True, slots=True)
class SecurityPattern:
    """A compiled security rule.

    Attributes:
        name: Rule identifier (e.g., "eval-call").
        regex: Compiled pattern.
        category: Security category (see SECURITY_CATEGORIES).
        severity: Severity assigned to matches.
        description: What a match means.
        recommendation: Suggested fix, if any.
        weight: Contribution of one hit to importance scoring.
        confidence: Confidence of a heuristic finding from this rule.

    """

    name: str
    regex: re.Pattern[str]
    category: str
    severity: Severity
    description: str
    recommendation: str = ""
    weight: float = 1.0
    confidence: float = 0.6

    def __repr__(self) -> str:
        """Return a string representation of the pattern."""
        return (
            f"SecurityPattern(name={self.name!r}, category={self.category!r}, "
            f"severity={self.severity.value!r}, weight={self.weight:.1f})"
        )


def get_data_dir() -> Path:
    """Resolve the bundled rule table directory.

    Raises:
        FileNotFoundError: If the bundled data directory is missing.

    """
    try:
        data_dir = Path(str(importlib.resources.files("jsrev") / "data"))
        if data_dir.is_dir():
            return data_dir
    except (ModuleNotFoundError, TypeError):
        pass

    fallback = Path(__file__).parent.parent / "data"
    if fallback.is_dir():
        return fallback

    raise FileNotFoundError("jsrev data directory not found. Reinstall: pip install -e .")


def load_yaml_entries(file_path: Path, key: str) -> list[dict[str, Any]]:
    """Load the list stored under *key* from a YAML rule file.

    Args:
        file_path: Path to YAML file.
        key: Top-level key holding the entry list.

    Returns:
        List of entry dicts. Empty list on any error.

    """
    if not file_path.exists():
        logger.warning("Rule file not found: %s", file_path)
        return []

    try:
        with open(file_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.warning("Malformed YAML in %s, skipping: %s", file_path.name, e)
        return []
    except OSError as e:
        logger.warning("Failed to read %s: %s", file_path.name, e)
        return []

    if not isinstance(data, dict):
        logger.warning("Invalid format in %s: expected dict, got %s", file_path.name, type(data))
        return []

    entries = data.get(key, [])
    if not isinstance(entries, list):
        logger.warning("Invalid '%s' in %s: expected list", key, file_path.name)
        return []

    return [e for e in entries if isinstance(e, dict)]


def compile_security_pattern(entry: dict[str, Any]) -> SecurityPattern | None:
    """Compile one YAML entry into a SecurityPattern.

    Returns:
        SecurityPattern, or None if the entry is malformed.

    """
    name = entry.get("name")
    raw = entry.get("pattern")
    if not name or not raw:
        logger.warning("Skipping security pattern without name/pattern: %r", entry)
        return None

    flags = re.IGNORECASE if entry.get("ignore_case") else 0
    try:
        regex = re.compile(str(raw), flags)
        severity = Severity(str(entry.get("severity", "medium")).lower())
        weight = float(entry.get("weight", 1.0))
        confidence = float(entry.get("confidence", 0.6))
    except re.error as e:
        logger.warning("Skipping security pattern %s: invalid regex: %s", name, e)
        return None
    except ValueError as e:
        logger.warning("Skipping security pattern %s: %s", name, e)
        return None

    category = str(entry.get("category", "general"))
    if category not in SECURITY_CATEGORIES:
        logger.debug("Pattern %s uses unknown category %r, mapped to 'general'", name, category)
        category = "general"

    return SecurityPattern(
        name=str(name),
        regex=regex,
        category=category,
        severity=severity,
        description=str(entry.get("description", "")),
        recommendation=str(entry.get("recommendation", "")),
        weight=max(0.0, weight),
        confidence=max(0.0, min(1.0, confidence)),
    )


def load_security_patterns(
    extra_files: list[Path] | None = None,
    include_bundled: bool = True,
) -> list[SecurityPattern]:
    """Load and compile security patterns.

    Bundled patterns come first, then extra files in the given order.
    A later pattern with the same name replaces an earlier one in place.

    Args:
        extra_files: Additional YAML pattern files.
        include_bundled: Whether to load the bundled rule table.

    Returns:
        List of compiled patterns in declaration order.

    """
    files: list[Path] = []
    if include_bundled:
        try:
            files.append(get_data_dir() / BUNDLED_PATTERNS_FILE)
        except FileNotFoundError:
            logger.warning("Data directory not found, bundled patterns unavailable")
    files.extend(extra_files or [])

    by_name: dict[str, SecurityPattern] = {}
    for file_path in files:
        for entry in load_yaml_entries(file_path, "patterns"):
            pattern = compile_security_pattern(entry)
            if pattern is not None:
                by_name[pattern.name] = pattern

    logger.info("Loaded %d security patterns from %d file(s)", len(by_name), len(files))
    return list(by_name.values())
