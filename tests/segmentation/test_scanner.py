"""Tests for BoundaryScanner."""

import pytest

from jsrev.core.exceptions import ErrorKind
from jsrev.segmentation.scanner import BoundaryScanner
from jsrev.segmentation.types import BoundaryKind
from jsrev.source import SourceBuffer


def _safe(text: str, max_depth: int = 0) -> list[int]:
    return BoundaryScanner(SourceBuffer(text), max_depth=max_depth).safe_offsets()


class TestTopLevelBoundaries:
    """Safe splits between top-level statements."""

    def test_semicolons(self) -> None:
        """A top-level ';' splits after itself, never at the very end."""
        assert _safe("a();b();") == [4]

    def test_function_declarations(self) -> None:
        """A closing brace followed by a new statement is a split."""
        assert _safe("function a(){eval(x)}function b(){return 1}") == [21]

    def test_nested_statements_not_split_at_depth_zero(self) -> None:
        """Statements inside a function body are not top-level."""
        assert _safe("function f(){a();b();}c();") == [22]

    def test_nested_statements_with_max_depth(self) -> None:
        """max_depth=1 also yields statement boundaries one brace deep."""
        assert _safe("function f(){a();b();}c();", max_depth=1) == [17, 21, 22]

    def test_else_continues_statement(self) -> None:
        """No split between '}' and else."""
        assert _safe("if(a){b()}else{c()}d()") == [19]

    def test_member_access_after_object_literal(self) -> None:
        """'}' followed by '.' continues the expression."""
        assert _safe("var o={a:1}.a;x()") == [14]

    def test_newline_ends_statement(self) -> None:
        """A newline between complete statements is a split."""
        assert _safe("a()\nb()") == [4]

    @pytest.mark.parametrize("text", ["a=1+\nb", "a=1\n+b", "f(a,\nb)"])
    def test_newline_inside_expression(self, text: str) -> None:
        """Newlines that cannot end a statement are not splits."""
        assert _safe(text) == []

    def test_empty_buffer(self) -> None:
        """An empty buffer has no marks and no notes."""
        scanner = BoundaryScanner(SourceBuffer(""))
        assert list(scanner) == []
        assert scanner.notes == []


class TestLexicalStates:
    """Boundaries are never emitted inside literals or comments."""

    def test_semicolon_in_string(self) -> None:
        """';' inside a string is ignored and the string start is unsafe."""
        scanner = BoundaryScanner(SourceBuffer("var s='a;b';x();"))
        marks = list(scanner)
        assert [m.offset for m in marks if m.is_safe] == [12]
        assert [m.offset for m in marks if m.kind is BoundaryKind.UNSAFE] == [6]

    def test_escaped_quote(self) -> None:
        """An escaped quote does not end the string."""
        assert _safe("var s='a\\';b';c();") == [14]

    def test_template_expression(self) -> None:
        """Code inside ${...} is never split."""
        assert _safe("x=`${a;b}`;y();") == [11]

    def test_comments(self) -> None:
        """';' inside line and block comments is ignored."""
        assert _safe("a();// x;y\nb();/* c; d */e();") == [4, 11, 15]

    def test_regex_literal(self) -> None:
        """';' and '}' inside a regex literal are ignored."""
        assert _safe("var r=/;}/g;x();") == [12]

    def test_regex_character_class(self) -> None:
        """'/' inside a character class does not end the regex."""
        assert _safe("r=/[/]/;x();") == [8]

    def test_division_is_not_regex(self) -> None:
        """'/' after an identifier is division."""
        assert _safe("a=b/2;c=d/e;f();") == [6, 12]

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ('x=a++/2;s="a/b";t();', [8, 16]),
            ("y=(b)--/2;c();", [10]),
            ("z=q[0]++/n;d();", [11]),
        ],
    )
    def test_division_after_postfix_operator(self, text: str, expected: list[int]) -> None:
        """'/' after a postfix ++ or -- is division, not a regex."""
        scanner = BoundaryScanner(SourceBuffer(text))
        assert scanner.safe_offsets() == expected
        assert scanner.malformed_at is None

    def test_regex_after_binary_plus(self) -> None:
        """'/' after a single binary '+' still starts a regex."""
        assert _safe("a+/x;/.test(s);b();") == [15]

    def test_hashbang(self) -> None:
        """A leading #! line is treated as a comment."""
        scanner = BoundaryScanner(SourceBuffer("#!/usr/bin/env node\na();b();"))
        marks = list(scanner)
        assert marks[0].offset == 0
        assert marks[0].kind is BoundaryKind.UNSAFE
        assert [m.offset for m in marks if m.is_safe] == [20, 24]


class TestMalformedInput:
    """Malformed input is recorded, never rejected."""

    def test_unterminated_string(self) -> None:
        """Scanning stops at an unterminated string with one note."""
        scanner = BoundaryScanner(SourceBuffer("function a(){return 'unterminated"))
        assert scanner.safe_offsets() == []
        assert scanner.malformed_at == 20
        assert len(scanner.notes) == 1
        assert scanner.notes[0].kind is ErrorKind.MALFORMED_INPUT_BOUNDARY
        assert scanner.notes[0].offset == 20

    def test_unbalanced_brace(self) -> None:
        """Boundaries before an unclosed brace are kept."""
        scanner = BoundaryScanner(SourceBuffer("a();function f(){b();"))
        assert scanner.safe_offsets() == [4]
        assert scanner.malformed_at == 16
        assert "unbalanced" in scanner.notes[0].message

    def test_unterminated_block_comment(self) -> None:
        """An unterminated block comment is malformed."""
        scanner = BoundaryScanner(SourceBuffer("a();/* never closed"))
        assert scanner.safe_offsets() == [4]
        assert scanner.malformed_at == 4

    def test_scanner_is_restartable(self) -> None:
        """Iterating twice gives the same marks and resets notes."""
        scanner = BoundaryScanner(SourceBuffer("a();var s='oops"))
        first = list(scanner)
        second = list(scanner)
        assert first == second
        assert len(scanner.notes) == 1
