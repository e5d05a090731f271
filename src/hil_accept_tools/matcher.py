"""Text comparison operators used to judge device output.

Every operator takes an observed value and an expected value and returns a
tagged result: ``MATCH`` on success, or a ``Mismatch`` describing the operator,
the expected value and what was actually observed.  ``expect`` is the raising
variant for callers that prefer assertion-style control flow.

Observed ``bytes`` (USB replies, channel data that is not valid UTF-8) are
compared against the UTF-8 encoding of the expected text.
"""

from __future__ import annotations

import dataclasses
import re
from typing import Callable, Dict, Union

from .exceptions import UnknownOperatorError
from .types import ChannelData


@dataclasses.dataclass(frozen=True)
class Match:
    """Successful comparison."""

    def __bool__(self) -> bool:
        return True


MATCH = Match()


@dataclasses.dataclass(frozen=True)
class Mismatch:
    """Failed comparison.

    Attributes:
        operator: Canonical operator name (``"contain"``, ``"be"``, ...).
        expected: The expected value or pattern.
        observed: The value that was actually observed.
        message: Optional free-form detail, used when the failure came from a
            plain ``AssertionError`` instead of an operator.
    """
    operator: str
    expected: ChannelData
    observed: ChannelData
    message: str = ""

    def __bool__(self) -> bool:
        return False

    def describe(self) -> str:
        """Human-readable description embedding operator, expected and observed."""
        if self.message:
            return f"{self.message} (observed {self.observed!r})"
        return (
            f"expected {self.observed!r} to {self.operator} {self.expected!r}"
        )


MatchOutcome = Union[Match, Mismatch]


class ExpectationError(AssertionError):
    """Assertion raised by ``expect``; carries the ``Mismatch``."""

    def __init__(self, mismatch: Mismatch) -> None:
        super().__init__(mismatch.describe())
        self.mismatch = mismatch


def _coerce(observed: ChannelData, expected: ChannelData) -> ChannelData:
    """Bring *expected* to the same type as *observed*."""
    if isinstance(observed, bytes) and isinstance(expected, str):
        return expected.encode("utf-8")
    if isinstance(observed, str) and isinstance(expected, bytes):
        return expected.decode("utf-8", errors="replace")
    return expected


def _equals(observed, expected) -> bool:
    return observed == expected


def _contains(observed, expected) -> bool:
    return expected in observed


def _matches(observed, expected) -> bool:
    # ^ and $ anchor at line boundaries, as in a multi-line device log
    return re.search(expected, observed, re.MULTILINE) is not None


def _starts_with(observed, expected) -> bool:
    return observed.startswith(expected)


def _ends_with(observed, expected) -> bool:
    return observed.endswith(expected)


_OPERATORS: Dict[str, Callable[[ChannelData, ChannelData], bool]] = {
    "be": _equals,
    "contain": _contains,
    "match": _matches,
    "start with": _starts_with,
    "end with": _ends_with,
}

_ALIASES = {
    "equals": "be",
    "equal": "be",
    "contains": "contain",
    "matches": "match",
    "starts-with": "start with",
    "ends-with": "end with",
}

OPERATORS = tuple(_OPERATORS)


def canonical_operator(operator: str) -> str:
    """Resolve *operator* (or one of its aliases) to its canonical name.

    Raises:
        UnknownOperatorError: If the operator is not supported.
    """
    name = _ALIASES.get(operator, operator)
    if name not in _OPERATORS:
        valid = ", ".join(repr(op) for op in OPERATORS)
        raise UnknownOperatorError(
            f"Unknown operation: {operator!r}. Must be one of: {valid}."
        )
    return name


def compare(observed: ChannelData, expected: ChannelData, operator: str) -> MatchOutcome:
    """Compare *observed* against *expected* using *operator*.

    Returns:
        ``MATCH`` when the comparison holds, otherwise a ``Mismatch``.

    Raises:
        UnknownOperatorError: If the operator is not supported.
    """
    name = canonical_operator(operator)
    expected = _coerce(observed, expected)
    if _OPERATORS[name](observed, expected):
        return MATCH
    return Mismatch(operator=name, expected=expected, observed=observed)


def expect(observed: ChannelData, expected: ChannelData, operator: str) -> Match:
    """Like ``compare`` but raises ``ExpectationError`` on mismatch.

    Returns ``MATCH`` so ``lambda d: expect(d, ...)`` works as a predicate.
    """
    outcome = compare(observed, expected, operator)
    if isinstance(outcome, Mismatch):
        raise ExpectationError(outcome)
    return outcome


def predicate(expected: ChannelData, operator: str) -> Callable[[ChannelData], MatchOutcome]:
    """Build a channel predicate comparing the data against *expected*.

    The operator is validated immediately so a typo fails the step at once
    instead of after a full timeout.
    """
    name = canonical_operator(operator)

    def _check(data: ChannelData) -> MatchOutcome:
        return compare(data, expected, name)

    return _check
