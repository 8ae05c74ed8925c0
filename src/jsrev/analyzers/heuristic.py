"""Local pattern-based analyzer (no network).

Runs the security rule table over the chunk text. Used as the default
provider and as a deterministic stand-in for the LLM in tests.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from jsrev.analysis.types import ChunkFinding, ChunkRequest
from jsrev.analyzers.base import BaseAnalyzer
from jsrev.core.config import SecurityConfig
from jsrev.core.exceptions import ConfigError
from jsrev.security.patterns import SecurityPattern

logger = logging.getLogger(__name__)

# Evidence is truncated to keep reports readable on minified one-liners
MAX_EVIDENCE_LENGTH = 120


class HeuristicAnalyzer(BaseAnalyzer):
    """Security pattern matcher implementing the analyzer capability.

    Args:
        patterns: Security rule table.
        security: Category/severity selection and false-positive filters.

    Raises:
        ConfigError: If a false-positive filter is not a valid regex.

    """

    name = "heuristic"

    def __init__(
        self,
        patterns: Sequence[SecurityPattern],
        security: SecurityConfig | None = None,
    ) -> None:
        """Select the active patterns and compile false-positive filters."""
        super().__init__(security)
        self._patterns = [p for p in patterns if self.accepts(p.category, p.severity)]
        try:
            self._fp_filters = [re.compile(f) for f in self.security.false_positive_filters]
        except re.error as e:
            raise ConfigError(f"Invalid false_positive_filters regex: {e}") from e
        logger.debug(
            "HeuristicAnalyzer: %d/%d patterns active, %d false-positive filters",
            len(self._patterns),
            len(patterns),
            len(self._fp_filters),
        )

    async def analyze(self, request: ChunkRequest) -> list[ChunkFinding]:
        """Match every active pattern against the request text."""
        findings: list[ChunkFinding] = []
        for pattern in self._patterns:
            for m in pattern.regex.finditer(request.text):
                evidence = m.group(0)
                if any(fp.search(evidence) for fp in self._fp_filters):
                    logger.debug("Suppressed %s match at %d (false-positive filter)", pattern.name, m.start())
                    continue
                findings.append(
                    ChunkFinding(
                        category=pattern.category,
                        severity=pattern.severity,
                        confidence=pattern.confidence,
                        offset=m.start(),
                        description=pattern.description or pattern.name,
                        recommendation=pattern.recommendation,
                        rule=pattern.name,
                        evidence=evidence[:MAX_EVIDENCE_LENGTH],
                    )
                )
        findings.sort(key=lambda f: (f.offset, f.rule or ""))
        return findings
