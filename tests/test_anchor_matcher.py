"""Tests for single-annotation anchor resolution."""

import pytest

from mcp_line_annotations.anchor_matcher import (
    complexity_score,
    is_too_generic,
    resolve,
    search_radius,
)
from mcp_line_annotations.models import Annotation, Matched, Unresolved


def _annotation(snapshot: str, line: int) -> Annotation:
    return Annotation(file_path="app.ts", stored_line=line, content_snapshot=snapshot, body="note")


def _numbered_lines(count: int) -> list[str]:
    return [f"value_{i} = compute({i}, factor)" for i in range(count)]


class TestSpecificityGate:
    @pytest.mark.parametrize(
        "snapshot",
        ["", "   ", "}", "{", ";", "});", "),", "[]", "else", "try", "catch",
         "finally", "do", "then", "42", "-3.5", "x = 1", "count = 0;", "=>", "-->"],
    )
    def test_generic_lines_rejected(self, snapshot):
        assert is_too_generic(snapshot)

    @pytest.mark.parametrize(
        "snapshot",
        ["return total;", "foo()", "a+b", "x", "} else {", "elsewhere()", "x = y", "count = limit;"],
    )
    def test_specific_lines_accepted(self, snapshot):
        assert not is_too_generic(snapshot)

    def test_keyword_must_match_exactly(self):
        assert is_too_generic("else")
        assert not is_too_generic("else if (ready)")

    def test_closing_brace_rejected_even_on_exact_stored_match(self):
        lines = ["function f() {", "  run();", "}"]
        result = resolve(_annotation("}", 2), lines)
        assert result == Unresolved("generic_snapshot")

    def test_else_rejected_even_on_exact_stored_match(self):
        lines = ["if (a) {", "} ", "else", "{"]
        assert resolve(_annotation("else", 2), lines) == Unresolved("generic_snapshot")

    def test_semicolon_always_unresolved(self):
        for lines in ([";"], [";", ";", ";"], ["foo();", "bar();"]):
            assert resolve(_annotation(";", 0), lines) == Unresolved("generic_snapshot")

    def test_missing_snapshot(self):
        lines = ["", "text"]
        assert resolve(_annotation("", 0), lines) == Unresolved("missing_snapshot")


class TestComplexity:
    def test_empty_is_zero(self):
        assert complexity_score("") == 0.0

    def test_function_header_is_highly_specific(self):
        # 0.3 length + 18/23 * 0.3 alnum + 0.2 specials + 0.2 words
        assert complexity_score("function loadConfig() {") == pytest.approx(0.3 + 18 / 23 * 0.3 + 0.4)

    def test_score_is_bounded(self):
        text = "some very long line with (lots) of {different} [special] chars; !@#%^&*"
        assert complexity_score(text) <= 1.0

    def test_radius_by_complexity(self):
        assert search_radius("x", 1000) == 2
        assert search_radius("foo bar", 1000) == 5
        assert search_radius("function loadConfig() {", 1000) == 10

    def test_radius_capped_by_file_size(self):
        assert search_radius("function loadConfig() {", 100) == 3
        assert search_radius("function loadConfig() {", 101) == 8
        assert search_radius("function loadConfig() {", 500) == 8
        assert search_radius("function loadConfig() {", 501) == 10
        assert search_radius("foo bar", 50) == 3


class TestResolve:
    def test_exact_match_at_stored_line(self):
        lines = _numbered_lines(10)
        assert resolve(_annotation(lines[4], 4), lines) == Matched(4)

    def test_match_ignores_surrounding_whitespace(self):
        lines = ["start()", "    return total;   ", "end()"]
        assert resolve(_annotation("return total;", 1), lines) == Matched(1)

    def test_match_is_case_sensitive(self):
        lines = ["Return Total;"] * 3
        assert resolve(_annotation("return total;", 1), lines) == Unresolved("not_found")

    def test_line_above_checked_before_line_below(self):
        lines = ["header()", "const a = compute();", "middle()", "const a = compute();"]
        assert resolve(_annotation("const a = compute();", 2), lines) == Matched(1)

    def test_line_below_when_above_differs(self):
        lines = ["header()", "other()", "middle()", "const a = compute();"]
        assert resolve(_annotation("const a = compute();", 2), lines) == Matched(3)

    def test_pure_insertion_above(self):
        lines = _numbered_lines(20)
        annotation = _annotation(lines[10], 10)
        edited = ["// new 1", "// new 2", "// new 3"] + lines
        assert resolve(annotation, edited) == Matched(13)

    def test_pure_deletion_above(self):
        lines = _numbered_lines(20)
        annotation = _annotation(lines[10], 10)
        edited = lines[:3] + lines[5:]
        assert resolve(annotation, edited) == Matched(8)

    def test_shift_beyond_radius_is_unresolved(self):
        lines = _numbered_lines(20)
        annotation = _annotation(lines[10], 10)
        edited = ["// a", "// b", "// c", "// d"] + lines
        assert resolve(annotation, edited) == Unresolved("not_found")

    def test_no_whole_document_scan(self):
        lines = _numbered_lines(60)
        annotation = _annotation(lines[50], 5)
        assert resolve(annotation, lines) == Unresolved("not_found")

    def test_stored_line_past_end_of_file(self):
        lines = _numbered_lines(10)
        annotation = _annotation(lines[9], 11)
        assert resolve(annotation, lines) == Matched(9)

    def test_claimed_lines_skipped(self):
        lines = ["a()", "b()", "total += item.price;", "c()", "total += item.price;", "d()"]
        annotation = _annotation("total += item.price;", 2)
        assert resolve(annotation, lines, claimed={2}) == Matched(4)
        assert resolve(annotation, lines, claimed={2, 4}) == Unresolved("not_found")

    def test_empty_document(self):
        assert resolve(_annotation("return total;", 0), []) == Unresolved("not_found")
