"""Named serial channels with open/close lifecycle and blocking output checks.

``ChannelRegistry`` maps channel names (``"Serial"``, ``"Serial1"``, ...) to
open channels.  Opening a channel resolves its device path from the
environment, opens a transport, and subscribes it on the injected
``IOScheduler`` so that incoming bytes are appended to the channel's
``ConditionBuffer``.  ``check_data`` then blocks the scenario thread until a
predicate over everything received so far holds.

Example::

    with IOScheduler() as scheduler:
        registry = ChannelRegistry(scheduler)
        registry.open("Serial", baud_rate=115200)
        registry.write("Serial", "status\\n")
        registry.check_data("Serial", predicate("OK", "contain"))
        registry.close_all()
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Callable, Dict, List, Mapping, Optional, Union

from typeguard import typechecked

from . import CHECK_DATA_TIMEOUT_S, DEFAULT_SERIAL_CHANNELS, SERIAL_BAUD_RATE, SERIAL_BYTESIZE
from .buffer import ConditionBuffer
from .config import resolve_channel_device
from .exceptions import AlreadyOpenError, ChannelCloseError, NotOpenError
from .scheduler import IOScheduler, Subscription
from .transport import SerialPortTransport, Transport
from .types import ChannelData, Predicate

logger = logging.getLogger("hil_accept_tools.channels")

# (device_path, baud_rate, data_bits) -> unopened transport
TransportFactory = Callable[[str, int, int], Transport]


def _serial_transport(device: str, baud_rate: int, data_bits: int) -> Transport:
    return SerialPortTransport(device, baud_rate=baud_rate, bytesize=data_bits)


def encode_outbound(data: Union[str, bytes]) -> bytes:
    """Translate an outbound payload to wire bytes.

    Text has LF translated to CRLF and is UTF-8 encoded; bytes are sent as-is.
    """
    if isinstance(data, bytes):
        return data
    return data.replace("\r\n", "\n").replace("\n", "\r\n").encode("utf-8")


@dataclasses.dataclass
class Channel:
    """An open channel.  Owned by ``ChannelRegistry``."""
    name: str
    transport: Transport
    buffer: ConditionBuffer
    subscription: Subscription


@typechecked
class ChannelRegistry:
    """Opens, tracks and closes named channels."""

    def __init__(
        self,
        scheduler: IOScheduler,
        channels: Optional[Mapping[str, str]] = None,
        transport_factory: Optional[TransportFactory] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Initialize an empty registry.

        Args:
            scheduler: Running I/O scheduler that will deliver channel data.
            channels: Channel name -> environment variable holding its device
                path.  Default: ``DEFAULT_SERIAL_CHANNELS``.
            transport_factory: Builds the transport for a device path.
                Default: pyserial ``SerialPortTransport``.
            environ: Environment to resolve device paths from
                (default: ``os.environ``).
        """
        self.scheduler = scheduler
        self.channels = dict(DEFAULT_SERIAL_CHANNELS if channels is None else channels)
        self.transport_factory = transport_factory or _serial_transport
        self.environ = environ
        self._open: Dict[str, Channel] = {}
        self._lock = threading.Lock()

    # ---- Lifecycle ----

    def open(self, name: str, baud_rate: int = SERIAL_BAUD_RATE, data_bits: int = SERIAL_BYTESIZE) -> Channel:
        """Open channel *name*.

        Raises:
            AlreadyOpenError: If the channel is already open.
            UnknownChannelError: If *name* is not a configured channel.
            MissingConfigError: If the channel's environment variable is unset.
            TransportError: If the device cannot be opened.
            SchedulerError: If the scheduler is not running.
        """
        context = f"open {name}"
        with self._lock:
            if name in self._open:
                raise AlreadyOpenError(f"Serial port is already open: {name}")

            device = resolve_channel_device(name, self.channels, self.environ)
            transport = self.transport_factory(device, baud_rate, data_bits)
            buffer = ConditionBuffer(name)

            transport.open(context)
            try:
                subscription = self.scheduler.subscribe(transport, buffer.append, name=name)
            except Exception:
                transport.close()
                raise

            channel = Channel(name=name, transport=transport, buffer=buffer, subscription=subscription)
            self._open[name] = channel

        logger.info("[CHANNEL-OPEN] Opened %s on %s at %d baud", name, device, baud_rate)
        return channel

    def close(self, name: str) -> None:
        """Close channel *name*.

        The channel is removed from the registry even if its transport fails
        to close; that failure is then re-raised.

        Raises:
            NotOpenError: If the channel is not open.
        """
        with self._lock:
            channel = self._active(name)
            del self._open[name]
        self._shutdown(channel)

    def close_all(self) -> None:
        """Close every open channel, best-effort.

        Every channel is attempted and removed.  Failures are logged and,
        once all closes have been attempted, reported together.

        Raises:
            ChannelCloseError: If one or more channels failed to close.
        """
        with self._lock:
            channels = list(self._open.values())
            self._open.clear()

        failures: Dict[str, Exception] = {}
        for channel in channels:
            try:
                self._shutdown(channel)
            except Exception as exc:
                logger.error("[CHANNEL-CLOSE] Error closing %s: %s", channel.name, exc)
                failures[channel.name] = exc

        if failures:
            first_name, first_exc = next(iter(failures.items()))
            msg = (
                f"Failed to close {len(failures)} of {len(channels)} channel(s); "
                f"first failure on {first_name}: {first_exc}"
            )
            raise ChannelCloseError(msg, failures=failures)

    def reset(self) -> None:
        """Alias of ``close_all`` used by scenario teardown."""
        self.close_all()

    def _shutdown(self, channel: Channel) -> None:
        # Unsubscribe first: no delivery may reach the channel after this.
        self.scheduler.unsubscribe(channel.subscription)
        channel.transport.close()
        logger.info("[CHANNEL-CLOSE] Closed %s", channel.name)

    # ---- Data ----

    def write(self, name: str, data: Union[str, bytes]) -> int:
        """Send *data* to channel *name*.  Text gets LF -> CRLF translation.

        Returns:
            Number of bytes written.

        Raises:
            NotOpenError: If the channel is not open.
            TransportError: If the write fails.
        """
        channel = self._get(name)
        payload = encode_outbound(data)
        logger.info("[CHANNEL-WRITE] %s <- %r", name, payload)
        return channel.transport.write(payload, context=f"write {name}")

    def check_data(
        self,
        name: str,
        predicate: Predicate,
        timeout_s: float = CHECK_DATA_TIMEOUT_S,
    ) -> ChannelData:
        """Block until *predicate* holds over the data received on *name*.

        Returns:
            The normalized channel data the predicate succeeded on.

        Raises:
            NotOpenError: If the channel is not open.
            LastMismatchError: Timed out; carries the most recent mismatch.
            TimeoutNoMatchError: Timed out without any reported mismatch.
        """
        channel = self._get(name)
        logger.info("[CHANNEL-CHECK] Waiting up to %.2fs on %s", timeout_s, name)
        return channel.buffer.wait_until(timeout_s, predicate)

    def reset_data(self, name: str) -> None:
        """Discard data received so far on *name* without closing it.

        Raises:
            NotOpenError: If the channel is not open.
        """
        self._get(name).buffer.reset()

    # ---- Queries ----

    def is_open(self, name: str) -> bool:
        with self._lock:
            return name in self._open

    def open_channels(self) -> List[str]:
        with self._lock:
            return list(self._open)

    def _get(self, name: str) -> Channel:
        with self._lock:
            return self._active(name)

    def _active(self, name: str) -> Channel:
        channel = self._open.get(name)
        if channel is None:
            raise NotOpenError(f"Serial port is not open: {name}")
        return channel
