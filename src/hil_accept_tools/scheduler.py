"""Single background I/O thread shared by every open channel.

The scheduler owns one daemon thread that polls each subscribed transport
for newly arrived bytes and hands them to the subscription's callback, in
arrival order.  It is constructed and started explicitly by its owner (a
``ScenarioSession`` or a test), injected into ``ChannelRegistry``, and must be
stopped only after every channel has been closed.

Lifecycle::

    scheduler = IOScheduler()
    scheduler.start()
    handle = scheduler.subscribe(transport, buffer.append)
    ...
    scheduler.unsubscribe(handle)   # no callback for it after this returns
    scheduler.stop()
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
import threading
from typing import Dict, Optional

from typeguard import typechecked

from . import SCHEDULER_POLL_INTERVAL_S, SCHEDULER_JOIN_TIMEOUT_S
from .exceptions import SchedulerError, TransportError
from .transport import Transport
from .types import DataCallback

logger = logging.getLogger("hil_accept_tools.scheduler")


@dataclasses.dataclass(frozen=True)
class Subscription:
    """Handle returned by ``IOScheduler.subscribe``."""
    id: int
    name: str
    transport: Transport
    on_data: DataCallback


@typechecked
class IOScheduler:
    """Polls subscribed transports on one background thread."""

    def __init__(
        self,
        poll_interval_s: float = SCHEDULER_POLL_INTERVAL_S,
        thread_name: str = "hil-io",
    ) -> None:
        """Initialize a stopped scheduler.

        Args:
            poll_interval_s: Sleep between poll rounds when no transport had
                data.  Default: 0.01 (10 ms).
            thread_name: Name of the background thread.
        """
        if poll_interval_s <= 0:
            raise SchedulerError(
                f"Invalid poll_interval_s {poll_interval_s!r}: must be a positive number of seconds."
            )
        self.poll_interval_s = poll_interval_s
        self.thread_name = thread_name
        self._subscriptions: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        # Held for a whole poll round; unsubscribe takes it so that no
        # callback for a removed subscription can still be in flight.
        self._dispatch_lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ---- Lifecycle ----

    def start(self) -> None:
        """Start the background thread.  Starting a running scheduler is a no-op."""
        if self.is_running():
            logger.debug("[SCHED-START] %s already running — skipping", self.thread_name)
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self.thread_name, daemon=True)
        self._thread.start()
        logger.info("[SCHED-START] Started %s (poll=%.3fs)", self.thread_name, self.poll_interval_s)

    def stop(self, timeout_s: float = SCHEDULER_JOIN_TIMEOUT_S) -> None:
        """Stop the background thread and wait for it to exit.

        Any subscriptions still registered are dropped; their owners should
        have unsubscribed first.

        Raises:
            SchedulerError: If the thread does not exit within *timeout_s*.
        """
        thread = self._thread
        if thread is None:
            logger.debug("[SCHED-STOP] stop() called on stopped scheduler %s", self.thread_name)
            return

        with self._dispatch_lock:
            leftover = [s.name for s in self._subscriptions.values()]
            self._subscriptions.clear()
        if leftover:
            logger.warning(
                "[SCHED-STOP] Dropping %d live subscription(s) on %s: %s",
                len(leftover), self.thread_name, ", ".join(leftover),
            )

        self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout_s)
            if thread.is_alive():
                raise SchedulerError(
                    f"I/O thread {self.thread_name} did not exit within {timeout_s:.1f}s"
                )
        self._thread = None
        logger.info("[SCHED-STOP] Stopped %s", self.thread_name)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __enter__(self) -> IOScheduler:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        if exc_type is None:
            self.stop()
            return
        # Leave the in-flight exception as the one the caller sees
        try:
            self.stop()
        except SchedulerError as stop_exc:
            logger.error("[SCHED-STOP] %s (while handling %s)", stop_exc, exc_type.__name__)

    # ---- Subscriptions ----

    def subscribe(self, transport: Transport, on_data: DataCallback, name: str = "") -> Subscription:
        """Start delivering bytes read from *transport* to *on_data*.

        *on_data* runs on the scheduler thread.

        Raises:
            SchedulerError: If the scheduler is not running.
        """
        if not self.is_running():
            raise SchedulerError(
                f"Cannot subscribe {name or transport.endpoint}: I/O scheduler "
                f"{self.thread_name} is not running. Call start() first."
            )
        with self._dispatch_lock:
            sub = Subscription(
                id=next(self._ids),
                name=name or transport.endpoint,
                transport=transport,
                on_data=on_data,
            )
            self._subscriptions[sub.id] = sub
        logger.debug("[SCHED-SUB] Subscribed %s (id=%d)", sub.name, sub.id)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        """Stop delivering for *subscription*.  Unknown handles are ignored."""
        with self._dispatch_lock:
            removed = self._subscriptions.pop(subscription.id, None)
        if removed is not None:
            logger.debug("[SCHED-UNSUB] Unsubscribed %s (id=%d)", removed.name, removed.id)

    def subscription_count(self) -> int:
        with self._dispatch_lock:
            return len(self._subscriptions)

    # ---- Poll loop ----

    def _run(self) -> None:
        while not self._stop_event.is_set():
            delivered = self._poll_once()
            if not delivered:
                self._stop_event.wait(self.poll_interval_s)

    def _poll_once(self) -> bool:
        """Poll every subscription once.  Returns whether any data arrived."""
        delivered = False
        with self._dispatch_lock:
            for sub in list(self._subscriptions.values()):
                try:
                    chunk = sub.transport.read_available()
                except TransportError as exc:
                    logger.error(
                        "[SCHED-POLL] Read from %s failed, dropping subscription: %s",
                        sub.name, exc,
                    )
                    self._subscriptions.pop(sub.id, None)
                    continue
                except Exception as exc:
                    # Any transport bug must not take down delivery for the others
                    logger.exception(
                        "[SCHED-POLL] Unexpected %s reading %s, dropping subscription: %s",
                        type(exc).__name__, sub.name, exc,
                    )
                    self._subscriptions.pop(sub.id, None)
                    continue

                if not chunk:
                    continue
                delivered = True
                try:
                    sub.on_data(chunk)
                except Exception as cb_exc:
                    logger.warning(
                        "[SCHED-POLL] on_data callback for %s raised %s: %s "
                        "(callback errors are swallowed to protect the poll loop)",
                        sub.name, type(cb_exc).__name__, cb_exc,
                    )
        return delivered
