"""Configuration models and loader for jsrev.

Provides frozen Pydantic models for every tunable of the segmentation and
analysis pipeline. A single JsRevConfig is built once (defaults, then an
optional YAML file, then CLI overrides) and threaded explicitly into each
component call. There is no process-wide config singleton.

API keys never live in config files: LLMConfig only names the environment
variable that holds the key.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from jsrev.core.exceptions import ConfigError, ConfigValidationError

logger = logging.getLogger(__name__)

AnalysisFocus = Literal["security", "general", "performance", "privacy"]
SeverityName = Literal["low", "medium", "high", "critical"]
ProviderName = Literal["heuristic", "anthropic", "openai"]

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["chunking", "analysis", "libraries", "security", "merge", "llm"]
)


class ChunkingConfig(BaseModel):
    """Chunk builder strategy.

    Attributes:
        max_tokens: Maximum estimated tokens per chunk (primary + overlap).
        overlap_tokens: Trailing context prepended to each chunk after the first.
        preserve_functions: Never sub-split a function/class body that alone
            exceeds max_tokens (emitted as a flagged oversized chunk instead).
        preserve_scopes: Restrict statement-level sub-splitting to the
            outermost body of an oversized construct.
        force_split_oversized: Opt into statement-level sub-splitting even
            when preserve_functions is set.
        chars_per_token: Conservative characters-per-token ratio.
        revision: Folded into chunk ids so re-chunking can be distinguished.
        min_identifier_length: Shorter identifiers are ignored when
            computing dependency edges (minified one-letter names).

    """

    model_config = ConfigDict(frozen=True)

    max_tokens: int = Field(
        default=180_000,
        ge=1,
        description="Maximum estimated tokens per chunk",
    )
    overlap_tokens: int = Field(
        default=0,
        ge=0,
        description="Trailing context tokens carried into the next chunk",
    )
    preserve_functions: bool = Field(
        default=True,
        description="Keep oversized function/class bodies whole",
    )
    preserve_scopes: bool = Field(
        default=True,
        description="Only sub-split oversized constructs at their outermost body",
    )
    force_split_oversized: bool = Field(
        default=False,
        description="Sub-split oversized constructs at statement level",
    )
    chars_per_token: float = Field(
        default=4.0,
        gt=0.0,
        le=32.0,
        description="Characters per estimated token",
    )
    revision: int = Field(
        default=0,
        ge=0,
        description="Chunking revision folded into chunk ids",
    )
    min_identifier_length: int = Field(
        default=3,
        ge=1,
        le=64,
        description="Minimum identifier length considered for dependency edges",
    )


class RetryConfig(BaseModel):
    """Retry/backoff policy for transient analyzer failures."""

    model_config = ConfigDict(frozen=True)

    retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Maximum retry attempts after the first call",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Initial delay between retries (seconds)",
    )
    max_delay_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=300.0,
        description="Maximum delay between retries (cap)",
    )
    jitter_factor: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Random +/- fraction applied to each delay",
    )


class FocusWeights(BaseModel):
    """Importance scorer weights.

    Attributes:
        security: Weight of security-pattern hit density.
        connectivity: Weight of outgoing dependency edges.
        baseline: Constant share every chunk receives.
        library_penalty: Multiplicative penalty per fraction of the chunk
            covered by filtered library code (0 = none, 1 = full).
        density_saturation: Weighted hits per 1000 characters that count
            as maximum density.
        connectivity_saturation: Dependency edge count that counts as
            maximum connectivity.

    """

    model_config = ConfigDict(frozen=True)

    security: float = Field(default=0.6, ge=0.0)
    connectivity: float = Field(default=0.2, ge=0.0)
    baseline: float = Field(default=0.2, ge=0.0)
    library_penalty: float = Field(default=0.8, ge=0.0, le=1.0)
    density_saturation: float = Field(default=5.0, gt=0.0)
    connectivity_saturation: int = Field(default=5, ge=1)

    @model_validator(mode="after")
    def _check_total(self) -> FocusWeights:
        if self.security + self.connectivity + self.baseline <= 0.0:
            raise ValueError("at least one of security/connectivity/baseline must be > 0")
        return self

    @classmethod
    def for_focus(cls, focus: AnalysisFocus) -> FocusWeights:
        """Return the preset weights for an analysis focus."""
        return _FOCUS_PRESETS.get(focus, _FOCUS_PRESETS["security"])


_FOCUS_PRESETS: dict[str, FocusWeights] = {
    "security": FocusWeights(security=0.7, connectivity=0.15, baseline=0.15),
    "general": FocusWeights(security=0.3, connectivity=0.5, baseline=0.2),
    "performance": FocusWeights(security=0.2, connectivity=0.4, baseline=0.4),
    "privacy": FocusWeights(security=0.6, connectivity=0.2, baseline=0.2),
}


class AnalysisConfig(BaseModel):
    """Orchestrator settings: budget, concurrency, retries, selection."""

    model_config = ConfigDict(frozen=True)

    focus: AnalysisFocus = Field(
        default="security",
        description="Analysis focus area (selects scorer weight preset)",
    )
    focus_weights: FocusWeights | None = Field(
        default=None,
        description="Explicit scorer weights; overrides the focus preset",
    )
    concurrency: int = Field(
        default=3,
        ge=1,
        le=32,
        description="Maximum analyzer calls in flight",
    )
    max_total_tokens: int | None = Field(
        default=None,
        ge=0,
        description="Token budget for the whole run (None = unlimited)",
    )
    call_timeout_seconds: float | None = Field(
        default=None,
        gt=0.0,
        le=3600.0,
        description="Per-call timeout; expiry counts as a transient failure",
    )
    min_importance: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Chunks scoring below this are skipped before dispatch",
    )
    filter_libraries: bool = Field(
        default=True,
        description="Skip chunks classified as library code",
    )
    max_file_size: int = Field(
        default=100 * 1024 * 1024,
        ge=1,
        description="Maximum accepted input size in bytes",
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @property
    def weights(self) -> FocusWeights:
        """Return effective scorer weights (explicit override or focus preset)."""
        return self.focus_weights or FocusWeights.for_focus(self.focus)


class LibraryFilterConfig(BaseModel):
    """Library/bundler fingerprint matching settings."""

    model_config = ConfigDict(frozen=True)

    min_confidence: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Matches below this are informational and never filter",
    )
    cluster_gap: int = Field(
        default=4096,
        ge=0,
        description="Max distance between hits grouped into one library region",
    )
    version_window: int = Field(
        default=512,
        ge=0,
        description="Characters searched around a region for a version string",
    )
    signatures_file: Path | None = Field(
        default=None,
        description="Optional YAML file of additional library signatures",
    )


class SecurityConfig(BaseModel):
    """Security pattern selection for scoring and the heuristic analyzer."""

    model_config = ConfigDict(frozen=True)

    enabled_categories: list[str] | None = Field(
        default=None,
        description="Restrict findings to these categories (None = all)",
    )
    min_severity: SeverityName = Field(
        default="low",
        description="Findings below this severity are dropped",
    )
    false_positive_filters: list[str] = Field(
        default_factory=list,
        description="Regexes; findings whose matched text matches one are dropped",
    )
    custom_patterns_file: Path | None = Field(
        default=None,
        description="Optional YAML file of additional security patterns",
    )


class MergeConfig(BaseModel):
    """Finding deduplication settings."""

    model_config = ConfigDict(frozen=True)

    dedup_window_bytes: int = Field(
        default=64,
        ge=0,
        description="Findings of one category closer than this may be duplicates",
    )
    description_similarity: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="SequenceMatcher ratio at which descriptions count as equal",
    )


class LLMConfig(BaseModel):
    """Analyzer provider selection."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderName = Field(
        default="heuristic",
        description="heuristic (local), anthropic or openai",
    )
    model: str | None = Field(
        default=None,
        description="Model identifier (provider default when None)",
    )
    base_url: str | None = Field(
        default=None,
        description="API base URL override",
    )
    api_key_env: str | None = Field(
        default=None,
        description="Environment variable holding the API key",
    )
    max_output_tokens: int = Field(default=4096, ge=1, le=200_000)
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)


class JsRevConfig(BaseModel):
    """Root configuration object."""

    model_config = ConfigDict(frozen=True)

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    libraries: LibraryFilterConfig = Field(default_factory=LibraryFilterConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    merge: MergeConfig = Field(default_factory=MergeConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)

    @model_validator(mode="after")
    def _check_overlap(self) -> JsRevConfig:
        if self.chunking.overlap_tokens >= self.chunking.max_tokens:
            raise ValueError(
                f"chunking.overlap_tokens ({self.chunking.overlap_tokens}) must be "
                f"smaller than chunking.max_tokens ({self.chunking.max_tokens})"
            )
        return self


def build_config(data: dict[str, Any]) -> JsRevConfig:
    """Validate a raw config mapping into a JsRevConfig.

    Args:
        data: Mapping with optional top-level sections.

    Returns:
        Validated JsRevConfig.

    Raises:
        ConfigValidationError: If validation fails (ConfigurationInvalid).

    """
    for key in data:
        if key not in _KNOWN_SECTIONS:
            logger.warning("Unknown config key '%s' ignored", key)
    known = {k: v for k, v in data.items() if k in _KNOWN_SECTIONS}
    try:
        return JsRevConfig.model_validate(known)
    except ValidationError as e:
        errors = [
            {"loc": tuple(err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in e.errors()
        ]
        raise ConfigValidationError(f"Invalid configuration: {len(errors)} error(s)", errors) from e


def load_config(path: Path | None = None, overrides: dict[str, Any] | None = None) -> JsRevConfig:
    """Load configuration from an optional YAML file plus overrides.

    Priority (high to low): overrides (CLI flags), YAML file, defaults.

    Args:
        path: Optional YAML config file.
        overrides: Nested mapping deep-merged over the file contents.

    Returns:
        Validated JsRevConfig.

    Raises:
        ConfigError: If the file cannot be read or is not a YAML mapping.
        ConfigValidationError: If the merged configuration is invalid.

    """
    data: dict[str, Any] = {}
    if path is not None:
        try:
            with open(path, encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Malformed YAML in {path}: {e}") from e
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {path} must contain a mapping, got {type(raw).__name__}")
        data = raw
        logger.debug("Loaded config file %s (sections: %s)", path, sorted(data))

    if overrides:
        data = _deep_merge(data, overrides)

    return build_config(data)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result
