"""Thread-safe accumulation buffer with blocking predicate waits.

One ``ConditionBuffer`` exists per open channel.  The I/O scheduler thread
appends incoming bytes; the scenario thread blocks in ``wait_until`` until a
predicate over everything received so far holds, or the timeout elapses.

All access to the accumulated bytes happens while holding the buffer's
``threading.Condition``.  ``append`` broadcasts under the lock, and
``wait_until`` re-evaluates the predicate after every wakeup, so a consumer
can never miss data that arrived between its check and its wait.

Predicates return ``MATCH``/``Mismatch`` (or a plain bool).  A ``Mismatch``,
or an ``AssertionError`` raised by the predicate, is advisory: it is
remembered and the wait continues.  If the deadline passes, the most recent
mismatch is reported, which is far more useful than a bare timeout.
"""

from __future__ import annotations

import codecs
import logging
import threading
import time
from typing import Optional, Union

from typeguard import typechecked

from .exceptions import LastMismatchError, TimeoutNoMatchError
from .matcher import ExpectationError, Mismatch
from .types import ChannelData, Predicate

logger = logging.getLogger("hil_accept_tools.buffer")


def normalize(raw: bytes) -> ChannelData:
    """Normalize accumulated channel bytes for predicate evaluation.

    Data that decodes as UTF-8 has CRLF converted to LF and trailing
    whitespace stripped.  An incomplete multi-byte sequence at the very end
    is a character still arriving and is held back, not treated as binary.
    Anything else is returned untouched as ``bytes``.
    """
    decoder = codecs.getincrementaldecoder("utf-8")()
    try:
        text = decoder.decode(raw, final=False)
    except UnicodeDecodeError:
        return bytes(raw)
    return text.replace("\r\n", "\n").rstrip()


def _evaluate(predicate: Predicate, data: ChannelData) -> Optional[Mismatch]:
    """Run *predicate* once.  Returns ``None`` on success, else the mismatch.

    Only a truthy result counts as success; ``None`` is falsy like any other.
    A falsy result yields a ``Mismatch`` with an empty operator so the caller
    can tell "never reported detail" apart.
    """
    try:
        result = predicate(data)
    except ExpectationError as exc:
        return exc.mismatch
    except AssertionError as exc:
        return Mismatch(
            operator="assert", expected="", observed=data,
            message=str(exc) or type(exc).__name__,
        )
    if isinstance(result, Mismatch):
        return result
    if result:
        return None
    return Mismatch(operator="", expected="", observed=data)


@typechecked
class ConditionBuffer:
    """Append-only byte accumulator with a condition-variable monitor.

    Example::

        buf = ConditionBuffer("Serial")
        # scheduler thread:
        buf.append(b"READY\\r\\n")
        # scenario thread:
        text = buf.wait_until(3.0, lambda d: "READY" in d)
    """

    def __init__(self, name: str) -> None:
        """Initialize an empty buffer.

        Args:
            name: Channel name, embedded into every failure message.
        """
        self.name = name
        self._data = bytearray()
        self._cond = threading.Condition(threading.Lock())

    def append(self, chunk: Union[bytes, str]) -> None:
        """Append *chunk* and wake every waiter.

        Safe to call from the scheduler thread while other threads wait.
        """
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        with self._cond:
            self._data.extend(chunk)
            total = len(self._data)
            self._cond.notify_all()
        logger.debug("[BUFFER] +%d bytes on %s (total %d)", len(chunk), self.name, total)

    def reset(self) -> None:
        """Discard all accumulated data."""
        with self._cond:
            discarded = len(self._data)
            self._data.clear()
        logger.debug("[BUFFER] Reset %s (%d bytes discarded)", self.name, discarded)

    def snapshot(self) -> ChannelData:
        """Return the normalized accumulated data."""
        with self._cond:
            return normalize(bytes(self._data))

    def __len__(self) -> int:
        with self._cond:
            return len(self._data)

    def wait_until(self, timeout_s: float, predicate: Predicate) -> ChannelData:
        """Block until *predicate* holds over the normalized data.

        The predicate is evaluated immediately, then again after every
        ``append`` (and on timeout), always against the complete data
        accumulated so far.

        Args:
            timeout_s: Maximum time to wait, in seconds.
            predicate: Callable taking the normalized data and returning
                ``MATCH``/``Mismatch`` or a bool.  It may also raise
                ``AssertionError``; that is treated as a mismatch.

        Returns:
            The normalized data the predicate succeeded on.

        Raises:
            LastMismatchError: The deadline passed and the predicate reported
                at least one detailed mismatch; the last one is attached.
            TimeoutNoMatchError: The deadline passed and the predicate only
                ever returned false.
        """
        start_time = time.monotonic()
        deadline = start_time + timeout_s
        last_mismatch: Optional[Mismatch] = None
        evaluations = 0

        with self._cond:
            while True:
                data = normalize(bytes(self._data))
                mismatch = _evaluate(predicate, data)
                evaluations += 1
                if mismatch is None:
                    logger.info(
                        "[WAIT] %s matched after %.3fs (%d evaluations, %d bytes)",
                        self.name, time.monotonic() - start_time, evaluations,
                        len(self._data),
                    )
                    return data
                if mismatch.operator:
                    last_mismatch = mismatch

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cond.wait(remaining)

        elapsed = time.monotonic() - start_time
        if last_mismatch is not None:
            msg = (
                f"{self.name} output doesn't match after {elapsed:.2f}s: "
                f"{last_mismatch.describe()}"
            )
            logger.warning("[WAIT] MISMATCH — %s", msg)
            raise LastMismatchError(msg, mismatch=last_mismatch)

        msg = (
            f"{self.name} output doesn't match expected data "
            f"(no match within {timeout_s:.2f}s, observed {data!r})"
        )
        logger.warning("[WAIT] TIMEOUT — %s", msg)
        raise TimeoutNoMatchError(msg)
