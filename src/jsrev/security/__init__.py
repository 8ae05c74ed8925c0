"""Security pattern rule table."""

from jsrev.security.patterns import (
    SECURITY_CATEGORIES,
    SecurityPattern,
    Severity,
    compile_security_pattern,
    get_data_dir,
    load_security_patterns,
    load_yaml_entries,
)

__all__ = [
    "SECURITY_CATEGORIES",
    "SecurityPattern",
    "Severity",
    "compile_security_pattern",
    "get_data_dir",
    "load_security_patterns",
    "load_yaml_entries",
]
