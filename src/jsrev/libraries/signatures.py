"""Library and bundler signature rule table.

Signatures are loaded from the bundled YAML table plus an optional user
file. Nothing in jsrev hard-codes a library name: the matcher only sees
the compiled LibrarySignature objects produced here.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jsrev.security.patterns import get_data_dir, load_yaml_entries

logger = logging.getLogger(__name__)

BUNDLED_SIGNATURES_FILE = "library_signatures.yaml"

LIBRARY_CATEGORIES: frozenset[str] = frozenset(
    [
        "framework",
        "utility",
        "polyfill",
        "bundler",
        "analytics",
        "ui",
        "testing",
        "build-tool",
        "security",
        "unknown",
    ]
)

# Named groups are reserved for the matcher's combined alternation
_NAMED_GROUP = re.compile(r"\(\?P<")


@dataclass(frozen=True, slots=True)
class LibrarySignature:
    """A compiled library fingerprint.

    Attributes:
        name: Library name reported in results.
        patterns: Compiled fingerprints (literals are escaped).
        category: Library category (see LIBRARY_CATEGORIES).
        confidence: Confidence of a match hitting every pattern.
        should_filter: Whether matched regions are de-prioritized.
        version: Optional version-extraction regex (group 1).

    """

    name: str
    patterns: tuple[re.Pattern[str], ...]
    category: str = "unknown"
    confidence: float = 0.8
    should_filter: bool = True
    version: re.Pattern[str] | None = None

    def __repr__(self) -> str:
        """Return a string representation of the signature."""
        return (
            f"LibrarySignature(name={self.name!r}, category={self.category!r}, "
            f"patterns={len(self.patterns)}, confidence={self.confidence:.2f})"
        )


def _compile_fingerprint(name: str, raw: Any) -> re.Pattern[str] | None:
    if isinstance(raw, str):
        return re.compile(re.escape(raw))
    if isinstance(raw, dict):
        if "literal" in raw:
            return re.compile(re.escape(str(raw["literal"])))
        if "regex" in raw:
            source = str(raw["regex"])
            if _NAMED_GROUP.search(source):
                logger.warning("Signature %s: named groups are not allowed in %r", name, source)
                return None
            return re.compile(source)
    logger.warning("Signature %s: unsupported pattern entry %r", name, raw)
    return None


def compile_library_signature(entry: dict[str, Any]) -> LibrarySignature | None:
    """Compile one YAML entry into a LibrarySignature.

    Returns:
        LibrarySignature, or None if the entry is malformed.

    """
    name = entry.get("name")
    raw_patterns = entry.get("patterns")
    if not name or not isinstance(raw_patterns, list) or not raw_patterns:
        logger.warning("Skipping library signature without name/patterns: %r", entry)
        return None

    try:
        compiled = [_compile_fingerprint(str(name), raw) for raw in raw_patterns]
        version = entry.get("version")
        version_re = re.compile(str(version)) if version else None
        confidence = float(entry.get("confidence", 0.8))
    except re.error as e:
        logger.warning("Skipping library signature %s: invalid regex: %s", name, e)
        return None
    except ValueError as e:
        logger.warning("Skipping library signature %s: %s", name, e)
        return None

    patterns = tuple(p for p in compiled if p is not None)
    if not patterns:
        logger.warning("Skipping library signature %s: no usable patterns", name)
        return None

    category = str(entry.get("category", "unknown"))
    if category not in LIBRARY_CATEGORIES:
        logger.debug("Signature %s uses unknown category %r, mapped to 'unknown'", name, category)
        category = "unknown"

    return LibrarySignature(
        name=str(name),
        patterns=patterns,
        category=category,
        confidence=max(0.0, min(1.0, confidence)),
        should_filter=bool(entry.get("should_filter", True)),
        version=version_re,
    )


def load_library_signatures(
    extra_files: list[Path] | None = None,
    include_bundled: bool = True,
) -> list[LibrarySignature]:
    """Load and compile library signatures.

    Declaration order is preserved; it breaks ties during overlap
    resolution. A later signature with the same name replaces an earlier
    one in place.

    Args:
        extra_files: Additional YAML signature files.
        include_bundled: Whether to load the bundled rule table.

    Returns:
        List of compiled signatures in declaration order.

    """
    files: list[Path] = []
    if include_bundled:
        try:
            files.append(get_data_dir() / BUNDLED_SIGNATURES_FILE)
        except FileNotFoundError:
            logger.warning("Data directory not found, bundled signatures unavailable")
    files.extend(extra_files or [])

    by_name: dict[str, LibrarySignature] = {}
    for file_path in files:
        for entry in load_yaml_entries(file_path, "signatures"):
            signature = compile_library_signature(entry)
            if signature is not None:
                by_name[signature.name] = signature

    logger.info("Loaded %d library signatures from %d file(s)", len(by_name), len(files))
    return list(by_name.values())
