"""
Text matcher test suite.

Run with full visibility:
    pytest tests/test_matcher.py -v -s
"""

from __future__ import annotations

import pytest

from hil_accept_tools.exceptions import HilAcceptError, UnknownOperatorError
from hil_accept_tools.matcher import (
    MATCH,
    OPERATORS,
    ExpectationError,
    Mismatch,
    canonical_operator,
    compare,
    expect,
    predicate,
)


def _report(label, detail=""):
    # type: (str, str) -> None
    if detail:
        print("  [{}] {}".format(label, detail))
    else:
        print("  [{}]".format(label))


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Operators
# ═══════════════════════════════════════════════════════════════════════════

class TestOperators:
    """Each operator passes and fails on the right inputs."""

    @pytest.mark.parametrize("operator, observed, expected", [
        ("be", "READY", "READY"),
        ("contain", "foo\nbar", "bar"),
        ("match", "temp=23C", r"temp=\d+C"),
        ("start with", "OK done", "OK"),
        ("end with", "all done", "done"),
    ])
    def test_operator_passes(self, operator, observed, expected):
        _report("TEST", "{} {!r} {!r}".format(operator, observed, expected))
        assert compare(observed, expected, operator) is MATCH

    @pytest.mark.parametrize("operator, observed, expected", [
        ("be", "READY", "READY!"),
        ("contain", "foo\nbar", "baz"),
        ("match", "temp=hot", r"temp=\d+C"),
        ("start with", "done OK", "OK"),
        ("end with", "done all", "done"),
    ])
    def test_operator_fails_with_detail(self, operator, observed, expected):
        outcome = compare(observed, expected, operator)
        assert isinstance(outcome, Mismatch)
        assert not outcome
        assert outcome.operator == operator
        assert outcome.expected == expected
        assert outcome.observed == observed

    def test_match_anchors_per_line(self):
        _report("TEST", "^ and $ anchor at line boundaries")
        assert compare("boot\nREADY\nidle", r"^READY$", "match") is MATCH

    def test_equality_is_exact(self):
        assert isinstance(compare("abc ", "abc", "be"), Mismatch)

    def test_all_operators_listed(self):
        assert set(OPERATORS) == {"be", "contain", "match", "start with", "end with"}


class TestAliases:
    """Alternative operator spellings resolve to the canonical names."""

    @pytest.mark.parametrize("alias, canonical", [
        ("equals", "be"),
        ("contains", "contain"),
        ("matches", "match"),
        ("starts-with", "start with"),
        ("ends-with", "end with"),
    ])
    def test_alias(self, alias, canonical):
        assert canonical_operator(alias) == canonical

    def test_mismatch_reports_canonical_name(self):
        outcome = compare("abc", "x", "contains")
        assert outcome.operator == "contain"


class TestUnknownOperator:
    """Operators outside the supported set are rejected."""

    def test_compare_rejects(self):
        with pytest.raises(UnknownOperatorError) as exc_info:
            compare("abc", "abc", "resemble")
        _report("CAUGHT", str(exc_info.value))
        assert "resemble" in str(exc_info.value)

    def test_predicate_rejects_eagerly(self):
        _report("TEST", "predicate() validates the operator before any wait")
        with pytest.raises(UnknownOperatorError):
            predicate("abc", "resemble")

    def test_under_common_base(self):
        assert issubclass(UnknownOperatorError, HilAcceptError)


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Bytes values
# ═══════════════════════════════════════════════════════════════════════════

class TestBytesObserved:
    """Raw bytes are compared against the UTF-8 encoding of the expectation."""

    def test_bytes_equal(self):
        assert compare(b"pong", "pong", "be") is MATCH

    def test_bytes_contain(self):
        assert compare(b"\x00\xffOK\x01", "OK", "contain") is MATCH

    def test_bytes_regex(self):
        assert compare(b"\xfe v=42", r"v=\d+", "match") is MATCH

    def test_bytes_mismatch_keeps_bytes(self):
        outcome = compare(b"\x01\x02", "pong", "be")
        assert isinstance(outcome, Mismatch)
        assert outcome.expected == b"pong"
        assert outcome.observed == b"\x01\x02"


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Descriptions and raising variant
# ═══════════════════════════════════════════════════════════════════════════

class TestDescriptions:

    def test_describe_embeds_all_parts(self):
        text = compare("hello world", "bye", "start with").describe()
        _report("RESULT", text)
        assert "start with" in text
        assert "'bye'" in text
        assert "'hello world'" in text

    def test_describe_with_message(self):
        mismatch = Mismatch(operator="assert", expected="", observed="x", message="boom")
        assert mismatch.describe().startswith("boom")

    def test_expect_raises_assertion(self):
        with pytest.raises(ExpectationError) as exc_info:
            expect("abc", "z", "contain")
        assert isinstance(exc_info.value, AssertionError)
        assert exc_info.value.mismatch.operator == "contain"

    def test_expect_returns_match(self):
        assert expect("abc", "b", "contain") is MATCH

    def test_predicate_closure(self):
        check = predicate("bar", "contain")
        assert check("foo bar") is MATCH
        assert isinstance(check("foo"), Mismatch)
