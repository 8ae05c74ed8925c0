"""Analyzer implementations and factory."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence

import httpx

from jsrev.analyzers.base import BaseAnalyzer
from jsrev.analyzers.heuristic import HeuristicAnalyzer
from jsrev.analyzers.llm import DEFAULT_API_KEY_ENV, HttpLLMAnalyzer
from jsrev.core.config import JsRevConfig
from jsrev.core.exceptions import ConfigError
from jsrev.security.patterns import SecurityPattern

__all__ = [
    "BaseAnalyzer",
    "HeuristicAnalyzer",
    "HttpLLMAnalyzer",
    "create_analyzer",
]

logger = logging.getLogger(__name__)


def create_analyzer(
    config: JsRevConfig,
    patterns: Sequence[SecurityPattern],
    env: Mapping[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BaseAnalyzer:
    """Create the analyzer selected by config.llm.provider.

    Args:
        config: Root configuration.
        patterns: Security rule table (used by the heuristic analyzer).
        env: Environment used to resolve API keys (os.environ by default).
        transport: Optional httpx transport for HTTP analyzers.

    Returns:
        Configured analyzer.

    Raises:
        ConfigError: If an HTTP provider's API key is not set.

    """
    llm = config.llm
    if llm.provider == "heuristic":
        return HeuristicAnalyzer(patterns, config.security)

    env = os.environ if env is None else env
    key_env = llm.api_key_env or DEFAULT_API_KEY_ENV[llm.provider]
    api_key = env.get(key_env, "")
    if not api_key:
        raise ConfigError(f"Provider '{llm.provider}' needs an API key in ${key_env}")

    timeout = config.analysis.call_timeout_seconds or 120.0
    analyzer = HttpLLMAnalyzer(
        llm,
        api_key,
        security=config.security,
        focus=config.analysis.focus,
        timeout_seconds=timeout,
        transport=transport,
    )
    logger.info("Using %r", analyzer)
    return analyzer
