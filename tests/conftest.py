"""Shared fixtures for jsrev tests.

- `patterns` / `signatures` - bundled rule tables (loaded once per session)
- `example_source` - two top-level functions, the first one calling eval()
- `small_config` - config with a 3-token chunk budget and fast retries
"""

import pytest

from jsrev.core.config import JsRevConfig, build_config
from jsrev.libraries.signatures import LibrarySignature, load_library_signatures
from jsrev.security.patterns import SecurityPattern, load_security_patterns
from jsrev.source import SourceBuffer

EXAMPLE_JS = "function a(){eval(x)}function b(){return 1}"


@pytest.fixture(scope="session")
def patterns() -> list[SecurityPattern]:
    """Bundled security patterns."""
    return load_security_patterns()


@pytest.fixture(scope="session")
def signatures() -> list[LibrarySignature]:
    """Bundled library signatures."""
    return load_library_signatures()


@pytest.fixture
def example_source() -> SourceBuffer:
    """Two functions, split at offset 21."""
    return SourceBuffer(EXAMPLE_JS, path="example.js")


@pytest.fixture
def small_config() -> JsRevConfig:
    """Config forcing one chunk per top-level function, no retry delays."""
    return build_config(
        {
            "chunking": {"max_tokens": 3, "overlap_tokens": 0},
            "analysis": {"retry": {"base_delay_seconds": 0.0, "jitter_factor": 0.0}},
        }
    )
