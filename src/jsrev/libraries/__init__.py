"""Library and bundler detection."""

from jsrev.libraries.matcher import (
    LibraryMatch,
    covered_length,
    filtered_ranges,
    match_libraries,
)
from jsrev.libraries.signatures import (
    LIBRARY_CATEGORIES,
    LibrarySignature,
    compile_library_signature,
    load_library_signatures,
)

__all__ = [
    "LIBRARY_CATEGORIES",
    "LibraryMatch",
    "LibrarySignature",
    "compile_library_signature",
    "covered_length",
    "filtered_ranges",
    "load_library_signatures",
    "match_libraries",
]
