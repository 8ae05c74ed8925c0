"""HTTP language-model analyzer.

Sends one chunk per request to the Anthropic Messages API or the OpenAI
Chat Completions API and parses a findings JSON document out of the reply.

Failure classification:
    - Transient: network errors, timeouts, 429 rate limit, 5xx server errors.
    - Permanent: any other non-200 status (400, 401, 403, 404, 422, ...)
      and replies without a parseable findings document.

The orchestrator owns retries; this adapter makes exactly one HTTP call
per analyze().
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx

from jsrev.analysis.types import ChunkFinding, ChunkRequest
from jsrev.analyzers.base import BaseAnalyzer
from jsrev.core.config import AnalysisFocus, LLMConfig, SecurityConfig
from jsrev.core.exceptions import AnalyzerPermanentError, AnalyzerTransientError
from jsrev.security.patterns import SECURITY_CATEGORIES, Severity

logger = logging.getLogger(__name__)

FINDINGS_START = "<!-- FINDINGS_START -->"
FINDINGS_END = "<!-- FINDINGS_END -->"

DEFAULT_BASE_URLS: dict[str, str] = {
    "anthropic": "https://api.anthropic.com",
    "openai": "https://api.openai.com",
}
DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-3-5-sonnet-latest",
    "openai": "gpt-4o-mini",
}
DEFAULT_API_KEY_ENV: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}
ANTHROPIC_VERSION = "2023-06-01"

_FOCUS_HINTS: dict[str, str] = {
    "security": "security vulnerabilities (XSS, injection, secrets, unsafe eval, insecure transport)",
    "general": "notable functionality, risky constructs and security issues",
    "performance": "performance problems and security issues",
    "privacy": "tracking, data collection and exposure of personal data",
}

_SYSTEM_PROMPT = """You review fragments of minified or bundled JavaScript for {focus}.
Reply with a JSON document between the markers, and nothing else:
{start}
{{"findings": [{{"category": "<one of: {categories}>",
  "severity": "low|medium|high|critical", "confidence": 0.0-1.0,
  "line": <1-based line within the fragment>, "evidence": "<exact code excerpt>",
  "description": "...", "recommendation": "..."}}]}}
{end}
Use an empty findings list when nothing is worth reporting."""

_JSON_FENCE = re.compile(r"```json\s*\n(.*?)\n```", re.DOTALL)
_RAW_FINDINGS = re.compile(r'\{\s*"findings"\s*:')


def _is_retryable_error(
    status_code: int | None,
    exception: Exception | None,
) -> bool:
    """Determine if an HTTP failure is retryable.

    Retryable: network errors, timeouts, 429 rate limit, 5xx server errors.
    Not retryable: other client errors (400, 401, 403, 404, 422).

    """
    if exception is not None:
        return isinstance(exception, (httpx.TimeoutException, httpx.RequestError))
    if status_code is not None:
        return status_code == 429 or status_code >= 500
    return False


def _normalize_confidence(value: object) -> float:
    """Normalize confidence to 0.0-1.0 range.

    Models may return confidence as percentage (0-100) or fraction (0.0-1.0).

    """
    try:
        conf = float(value)  # type: ignore[arg-type]
    except (ValueError, TypeError):
        return 0.5
    if conf > 1.0:
        conf = conf / 100.0
    return max(0.0, min(1.0, conf))


def _normalize_severity(value: object) -> Severity:
    try:
        return Severity(str(value).strip().lower())
    except ValueError:
        return Severity.MEDIUM


def extract_findings_json(output: str) -> list[dict[str, Any]] | None:
    """Extract the findings list from a model reply.

    Tries, in order: text between FINDINGS markers, a fenced ```json block,
    and a bare {"findings": ...} object.

    Returns:
        List of raw finding dicts, or None if no parseable document exists.

    """
    json_str: str | None = None
    start_idx = output.find(FINDINGS_START)
    end_idx = output.find(FINDINGS_END)
    if start_idx != -1 and end_idx > start_idx:
        json_str = output[start_idx + len(FINDINGS_START) : end_idx].strip()
    else:
        fence = _JSON_FENCE.search(output)
        if fence:
            json_str = fence.group(1)
        else:
            raw = _RAW_FINDINGS.search(output)
            if raw:
                depth = 0
                for i in range(raw.start(), len(output)):
                    if output[i] == "{":
                        depth += 1
                    elif output[i] == "}":
                        depth -= 1
                        if depth == 0:
                            json_str = output[raw.start() : i + 1]
                            break

    if json_str is None:
        return None
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse findings JSON: %s", e)
        return None

    findings = data.get("findings") if isinstance(data, dict) else data
    if not isinstance(findings, list):
        return None
    return [f for f in findings if isinstance(f, dict)]


def _line_offset(text: str, line: int) -> int:
    """Offset of the start of a 1-based line in text (clamped)."""
    offset = 0
    for _ in range(max(0, line - 1)):
        nl = text.find("\n", offset)
        if nl == -1:
            break
        offset = nl + 1
    return offset


class HttpLLMAnalyzer(BaseAnalyzer):
    """Analyzer backed by a hosted language model over HTTP.

    Args:
        llm: Provider settings (provider must be anthropic or openai).
        api_key: API key (already resolved from the environment).
        security: Category/severity selection applied to parsed findings.
        focus: Analysis focus used in the system prompt.
        timeout_seconds: HTTP timeout per request.
        transport: Optional httpx transport.

    """

    def __init__(
        self,
        llm: LLMConfig,
        api_key: str,
        security: SecurityConfig | None = None,
        focus: AnalysisFocus = "security",
        timeout_seconds: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the adapter."""
        super().__init__(security)
        if llm.provider not in DEFAULT_BASE_URLS:
            raise ValueError(f"HttpLLMAnalyzer does not support provider {llm.provider!r}")
        self.name = llm.provider
        self._llm = llm
        self._api_key = api_key
        self._model = llm.model or DEFAULT_MODELS[llm.provider]
        self._base_url = (llm.base_url or DEFAULT_BASE_URLS[llm.provider]).rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport
        self._system = _SYSTEM_PROMPT.format(
            focus=_FOCUS_HINTS.get(focus, _FOCUS_HINTS["security"]),
            start=FINDINGS_START,
            end=FINDINGS_END,
            categories=", ".join(sorted(SECURITY_CATEGORIES)),
        )

    def __repr__(self) -> str:
        """Return string representation with the API key masked."""
        key = self._api_key
        masked = f"{key[:5]}***" if key and len(key) > 10 else "***"
        return f"HttpLLMAnalyzer(provider={self.name!r}, model={self._model!r}, api_key={masked})"

    @property
    def model(self) -> str:
        """Model identifier in use."""
        return self._model

    def _build_request(self, request: ChunkRequest) -> tuple[str, dict[str, str], dict[str, Any]]:
        prompt = (
            f"Fragment {request.chunk.id} (lines {request.chunk.start_line}-{request.chunk.end_line}, "
            f"type {request.chunk.type.value}):\n\n{request.text}"
        )
        if self._llm.provider == "anthropic":
            url = f"{self._base_url}/v1/messages"
            headers = {
                "x-api-key": self._api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            }
            body: dict[str, Any] = {
                "model": self._model,
                "max_tokens": self._llm.max_output_tokens,
                "temperature": self._llm.temperature,
                "system": self._system,
                "messages": [{"role": "user", "content": prompt}],
            }
        else:
            url = f"{self._base_url}/v1/chat/completions"
            headers = {
                "Authorization": f"Bearer {self._api_key}",
                "content-type": "application/json",
            }
            body = {
                "model": self._model,
                "max_tokens": self._llm.max_output_tokens,
                "temperature": self._llm.temperature,
                "messages": [
                    {"role": "system", "content": self._system},
                    {"role": "user", "content": prompt},
                ],
            }
        return url, headers, body

    def _reply_text(self, data: Any) -> str:
        if self._llm.provider == "anthropic":
            blocks = data.get("content", []) if isinstance(data, dict) else []
            return "".join(
                b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text"
            )
        choices = data.get("choices", []) if isinstance(data, dict) else []
        if not choices or not isinstance(choices[0], dict):
            return ""
        return str((choices[0].get("message") or {}).get("content") or "")

    async def analyze(self, request: ChunkRequest) -> list[ChunkFinding]:
        """Send the chunk to the model and parse its findings.

        Raises:
            AnalyzerTransientError: Network error, timeout, 429 or 5xx.
            AnalyzerPermanentError: Other HTTP errors or an unparseable reply.

        """
        url, headers, body = self._build_request(request)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, headers=headers, json=body)
        except (httpx.TimeoutException, httpx.RequestError) as e:
            raise AnalyzerTransientError(f"{self.name} request failed: {type(e).__name__}: {e}") from e

        if response.status_code != 200:
            message = f"{self.name} API error: HTTP {response.status_code}: {response.text[:200]}"
            if _is_retryable_error(response.status_code, None):
                raise AnalyzerTransientError(message, status_code=response.status_code)
            raise AnalyzerPermanentError(message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise AnalyzerPermanentError(f"{self.name} returned non-JSON body: {e}") from e

        raw_findings = extract_findings_json(self._reply_text(data))
        if raw_findings is None:
            raise AnalyzerPermanentError(f"{self.name} reply for chunk {request.chunk.id} has no findings document")

        findings = self._convert(raw_findings, request)
        logger.debug("Chunk %s: %d finding(s) from %s", request.chunk.id, len(findings), self.name)
        return findings

    def _convert(self, raw_findings: list[dict[str, Any]], request: ChunkRequest) -> list[ChunkFinding]:
        findings: list[ChunkFinding] = []
        for idx, f in enumerate(raw_findings):
            category = str(f.get("category") or "general").lower()
            if category not in SECURITY_CATEGORIES:
                category = "general"
            severity = _normalize_severity(f.get("severity", "medium"))
            if not self.accepts(category, severity):
                continue

            evidence = str(f.get("evidence") or f.get("snippet") or "")
            offset = request.text.find(evidence) if evidence else -1
            if offset == -1:
                try:
                    line = int(f.get("line") or 0)
                except (ValueError, TypeError):
                    line = 0
                offset = _line_offset(request.text, line) if line > 0 else request.primary_offset

            description = str(f.get("description") or f.get("title") or "").strip()
            if not description:
                logger.warning("Skipping finding %d without description", idx)
                continue
            findings.append(
                ChunkFinding(
                    category=category,
                    severity=severity,
                    confidence=_normalize_confidence(f.get("confidence", 0.5)),
                    offset=offset,
                    description=description,
                    recommendation=str(f.get("recommendation") or f.get("fix") or ""),
                    rule=str(f["id"]) if f.get("id") else None,
                    evidence=evidence[:120],
                )
            )
        return findings
