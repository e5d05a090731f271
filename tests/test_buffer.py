"""
ConditionBuffer test suite — producer thread vs. blocking consumer.

Run with full visibility:
    pytest tests/test_buffer.py -v -s
"""

from __future__ import annotations

import re
import threading
import time

import pytest

from hil_accept_tools.buffer import ConditionBuffer, normalize
from hil_accept_tools.exceptions import (
    LastMismatchError,
    MatchError,
    TimeoutNoMatchError,
    UnknownOperatorError,
)
from hil_accept_tools.matcher import MATCH, Mismatch, compare, expect, predicate

# Slack allowed on wall-clock assertions
_TOLERANCE_S = 0.5


def _report(label, detail=""):
    # type: (str, str) -> None
    if detail:
        print("  [{}] {}".format(label, detail))
    else:
        print("  [{}]".format(label))


def _producer(buf, chunks, delay_s=0.0, start_delay_s=0.0):
    """Start a thread appending *chunks* to *buf*."""

    def run():
        time.sleep(start_delay_s)
        for chunk in chunks:
            buf.append(chunk)
            if delay_s:
                time.sleep(delay_s)

    t = threading.Thread(target=run, daemon=True)
    t.start()
    return t


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Normalization
# ═══════════════════════════════════════════════════════════════════════════

class TestNormalize:

    def test_crlf_to_lf(self):
        assert normalize(b"foo\r\nbar") == "foo\nbar"

    def test_trailing_whitespace_stripped(self):
        assert normalize(b"READY\r\n\r\n  \t") == "READY"

    def test_leading_whitespace_kept(self):
        assert normalize(b"  x\r\n") == "  x"

    def test_lone_cr_kept(self):
        assert normalize(b"a\rb") == "a\rb"

    def test_non_text_is_opaque(self):
        _report("TEST", "invalid UTF-8 is passed through untouched")
        raw = b"\xff\xfe\r\n\x00 "
        assert normalize(raw) == raw
        assert isinstance(normalize(raw), bytes)

    def test_utf8_text_normalized(self):
        assert normalize("température\r\n".encode("utf-8")) == "température"

    def test_incomplete_trailing_character_held_back(self):
        partial = "25°".encode("utf-8")[:-1]
        assert normalize(partial) == "25"

    def test_invalid_byte_before_end_is_opaque(self):
        raw = b"ok\xffmore"
        assert normalize(raw) == raw


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Basic buffer operations
# ═══════════════════════════════════════════════════════════════════════════

class TestAppendReset:

    def test_append_accumulates(self):
        buf = ConditionBuffer("A")
        buf.append(b"foo")
        buf.append("bar")
        assert buf.snapshot() == "foobar"
        assert len(buf) == 6

    def test_reset_clears(self):
        buf = ConditionBuffer("A")
        buf.append(b"stale")
        buf.reset()
        assert len(buf) == 0
        assert buf.snapshot() == ""


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — wait_until success paths
# ═══════════════════════════════════════════════════════════════════════════

class TestWaitUntilSuccess:

    def test_already_satisfied_returns_immediately(self):
        buf = ConditionBuffer("A")
        buf.append(b"foo\r\nbar")
        start = time.monotonic()
        data = buf.wait_until(3.0, predicate("bar", "contain"))
        elapsed = time.monotonic() - start
        _report("RESULT", "{!r} in {:.3f}s".format(data, elapsed))
        assert data == "foo\nbar"
        assert elapsed < _TOLERANCE_S

    def test_wakes_on_append_from_other_thread(self):
        _report("TEST", "consumer blocks, producer appends 0.2s later")
        buf = ConditionBuffer("A")
        t = _producer(buf, [b"boot...\r\n", b"READY\r\n"], start_delay_s=0.2)
        start = time.monotonic()
        data = buf.wait_until(3.0, predicate("READY", "contain"))
        elapsed = time.monotonic() - start
        t.join(timeout=2)
        _report("RESULT", "matched after {:.3f}s".format(elapsed))
        assert "READY" in data
        assert 0.15 <= elapsed < 3.0

    def test_bool_predicate(self):
        buf = ConditionBuffer("A")
        _producer(buf, [b"x"], start_delay_s=0.05)
        assert buf.wait_until(2.0, lambda d: d == "x") == "x"

    def test_predicate_sees_final_concatenation(self):
        _report("TEST", "every append is visible, in order, to the predicate")
        buf = ConditionBuffer("A")
        chunks = ["{},".format(i).encode("ascii") for i in range(200)]
        expected = b"".join(chunks).decode("ascii")
        t = _producer(buf, chunks, delay_s=0.0005)
        data = buf.wait_until(5.0, lambda d: d.count(",") == 200)
        t.join(timeout=5)
        assert data == expected

    def test_raising_predicate_can_still_succeed(self):
        buf = ConditionBuffer("A")
        _producer(buf, [b"partial", b" complete"], delay_s=0.05)

        def check(d):
            expect(d, "complete", "end with")
            return True

        assert buf.wait_until(3.0, check) == "partial complete"

    def test_expect_as_predicate(self):
        _report("TEST", "expect() returns MATCH, so it works directly as a predicate")
        buf = ConditionBuffer("A")
        _producer(buf, [b"x", b"READY"], delay_s=0.05)
        data = buf.wait_until(3.0, lambda d: expect(d, "READY", "end with"))
        assert data == "xREADY"

    def test_split_multibyte_character_stays_text(self):
        _report("TEST", "a UTF-8 character split across chunks is held back, not opaque")
        buf = ConditionBuffer("A")
        degree = "°".encode("utf-8")
        buf.append("temp=25".encode("utf-8") + degree[:1])
        assert buf.snapshot() == "temp=25"
        t = _producer(buf, [degree[1:], b"C\r\nREADY\r\n"], delay_s=0.05, start_delay_s=0.05)
        data = buf.wait_until(3.0, lambda d: "READY" in d)
        t.join(timeout=2)
        _report("RESULT", repr(data))
        assert data == "temp=25°C\nREADY"

    def test_opaque_bytes_reach_predicate(self):
        buf = ConditionBuffer("A")
        buf.append(b"\xff\x00OK")
        data = buf.wait_until(1.0, predicate("OK", "contain"))
        assert data == b"\xff\x00OK"

    def test_multiple_waiters_all_wake(self):
        buf = ConditionBuffer("A")
        results = []

        def waiter():
            results.append(buf.wait_until(3.0, predicate("GO", "contain")))

        threads = [threading.Thread(target=waiter, daemon=True) for _ in range(4)]
        for t in threads:
            t.start()
        time.sleep(0.1)
        buf.append(b"GO")
        for t in threads:
            t.join(timeout=3)
        assert results == ["GO"] * 4


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — wait_until failure paths
# ═══════════════════════════════════════════════════════════════════════════

class TestWaitUntilFailure:

    def test_false_predicate_times_out(self):
        buf = ConditionBuffer("A")
        buf.append(b"foo\r\nbar")
        start = time.monotonic()
        with pytest.raises(TimeoutNoMatchError) as exc_info:
            buf.wait_until(0.2, lambda d: "baz" in d)
        elapsed = time.monotonic() - start
        _report("CAUGHT", "{} after {:.3f}s".format(exc_info.value, elapsed))
        assert not isinstance(exc_info.value, LastMismatchError)
        assert 0.19 <= elapsed < 0.2 + _TOLERANCE_S
        assert "A" in str(exc_info.value)

    def test_none_result_times_out(self):
        _report("TEST", "a predicate returning None never counts as a match")
        buf = ConditionBuffer("A")
        buf.append(b"foo\r\nbar")
        start = time.monotonic()
        with pytest.raises(TimeoutNoMatchError) as exc_info:
            buf.wait_until(0.2, lambda d: re.search("baz", d))
        elapsed = time.monotonic() - start
        _report("CAUGHT", "{} after {:.3f}s".format(exc_info.value, elapsed))
        assert not isinstance(exc_info.value, LastMismatchError)
        assert 0.19 <= elapsed < 0.2 + _TOLERANCE_S

    def test_mismatch_predicate_reports_detail(self):
        buf = ConditionBuffer("Serial1")
        buf.append(b"foo\r\nbar")
        start = time.monotonic()
        with pytest.raises(LastMismatchError) as exc_info:
            buf.wait_until(0.2, predicate("baz", "contain"))
        elapsed = time.monotonic() - start
        message = str(exc_info.value)
        _report("CAUGHT", message)
        assert 0.19 <= elapsed < 0.2 + _TOLERANCE_S
        assert "Serial1" in message
        assert "contain" in message
        assert "'baz'" in message
        assert "'foo\\nbar'" in message
        assert exc_info.value.mismatch.observed == "foo\nbar"

    def test_last_mismatch_is_reported(self):
        _report("TEST", "the most recent mismatch wins over earlier ones")
        buf = ConditionBuffer("A")
        _producer(buf, [b"a", b"b", b"c"], delay_s=0.03)
        with pytest.raises(LastMismatchError) as exc_info:
            buf.wait_until(0.4, predicate("xyz", "be"))
        assert exc_info.value.mismatch.observed == "abc"

    def test_assertion_error_is_captured(self):
        buf = ConditionBuffer("A")
        buf.append(b"value=1")

        def check(d):
            assert d == "value=2", "value is not 2"

        with pytest.raises(LastMismatchError) as exc_info:
            buf.wait_until(0.1, check)
        assert "value is not 2" in str(exc_info.value)

    def test_expectation_error_keeps_mismatch(self):
        buf = ConditionBuffer("A")
        buf.append(b"abc")
        with pytest.raises(LastMismatchError) as exc_info:
            buf.wait_until(0.1, lambda d: expect(d, "z", "start with"))
        assert exc_info.value.mismatch.operator == "start with"

    def test_false_after_mismatch_keeps_mismatch(self):
        buf = ConditionBuffer("A")
        calls = []

        def check(d):
            calls.append(d)
            if len(calls) == 1:
                return compare(d, "zzz", "be")
            return False

        _producer(buf, [b"1", b"2"], delay_s=0.03)
        with pytest.raises(LastMismatchError):
            buf.wait_until(0.3, check)

    def test_non_assertion_error_propagates(self):
        buf = ConditionBuffer("A")
        start = time.monotonic()
        with pytest.raises(UnknownOperatorError):
            buf.wait_until(2.0, lambda d: compare(d, "x", "resembles"))
        assert time.monotonic() - start < _TOLERANCE_S

    def test_zero_timeout_checks_once(self):
        buf = ConditionBuffer("A")
        buf.append(b"ok")
        assert buf.wait_until(0, lambda d: d == "ok") == "ok"
        with pytest.raises(TimeoutNoMatchError):
            buf.wait_until(0, lambda d: d == "nope")

    def test_hierarchy(self):
        assert issubclass(LastMismatchError, TimeoutNoMatchError)
        assert issubclass(TimeoutNoMatchError, MatchError)


class TestTypeguardEnforcement:

    def test_rejects_non_string_name(self):
        with pytest.raises(Exception):
            ConditionBuffer(42)  # type: ignore[arg-type]

    def test_match_singleton(self):
        assert MATCH and not Mismatch(operator="be", expected="a", observed="b")
