"""Device transports delivering bytes to the I/O scheduler.

A transport is the physical end of a channel.  It never blocks on reads:
the scheduler thread calls ``read_available`` in its poll loop and hands any
bytes to the channel's buffer.  Writes come from the scenario thread.

Cross-platform: the pyserial implementation works on Windows (COMx) and Linux
(/dev/ttyUSB*, /dev/ttyS*, /dev/ttyACM*).
"""

from __future__ import annotations

import abc
import logging
from typing import List, Optional

import serial
import serial.tools.list_ports
from typeguard import typechecked

from . import (
    SERIAL_BAUD_RATE,
    SERIAL_BYTESIZE,
    SERIAL_PARITY,
    SERIAL_STOPBITS,
    SERIAL_READ_TIMEOUT,
    SERIAL_WRITE_TIMEOUT,
)
from .exceptions import SerialCommunicationError

logger = logging.getLogger("hil_accept_tools.transport")

# pyserial constants for the line settings a device under test can use
_PARITY_MAP = {
    "N": serial.PARITY_NONE,
    "E": serial.PARITY_EVEN,
    "O": serial.PARITY_ODD,
}
_STOPBITS_MAP = {1: serial.STOPBITS_ONE, 2: serial.STOPBITS_TWO}
_BYTESIZE_MAP = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}


def _line_setting(setting, value, table, port):
    """Look *value* up in *table*, raising a message naming the channel device."""
    if value not in table:
        supported = ", ".join(repr(k) for k in table)
        raise SerialCommunicationError(
            f"Unsupported {setting} {value!r} for {port} (supported: {supported})"
        )
    return table[value]


def _available_ports() -> str:
    return ", ".join(p.device for p in serial.tools.list_ports.comports()) or "none"


class Transport(abc.ABC):
    """Interface between a channel and the device endpoint behind it."""

    #: Human-readable endpoint description (device path, URL, ...)
    endpoint: str = ""

    @abc.abstractmethod
    def open(self, context: str) -> None:
        """Establish the connection.  Raises ``TransportError`` on failure."""

    @abc.abstractmethod
    def is_open(self) -> bool:
        """Return whether the connection is established."""

    @abc.abstractmethod
    def read_available(self) -> bytes:
        """Return whatever bytes have arrived, without blocking (``b""`` if none)."""

    @abc.abstractmethod
    def write(self, data: bytes, context: str) -> int:
        """Send *data* in full.  Returns the number of bytes written."""

    @abc.abstractmethod
    def close(self) -> None:
        """Close the connection.  Closing a closed transport is a no-op."""


class SerialPortTransport(Transport):
    """Serial port endpoint backed by pyserial.

    Example::

        port = SerialPortTransport("/dev/ttyUSB0", baud_rate=115200)
        port.open(context="boot log")
        port.write(b"status\\r\\n", context="query status")
        chunk = port.read_available()
    """

    def __init__(
        self,
        port: str,
        baud_rate: int = SERIAL_BAUD_RATE,
        bytesize: int = SERIAL_BYTESIZE,
        parity: str = SERIAL_PARITY,
        stopbits: int = SERIAL_STOPBITS,
        write_timeout: Optional[float] = SERIAL_WRITE_TIMEOUT,
    ) -> None:
        """Validate line settings; the port is not touched until ``open``.

        Raises:
            SerialCommunicationError: If a line setting is not supported.
        """
        if baud_rate <= 0:
            raise SerialCommunicationError(f"Baud rate must be positive for {port}, got {baud_rate!r}")
        if write_timeout is not None and write_timeout < 0:
            raise SerialCommunicationError(
                f"write_timeout must be None or >= 0 for {port}, got {write_timeout!r}"
            )
        self.port = port
        self.endpoint = port
        self.baud_rate = baud_rate
        self.write_timeout = write_timeout
        self.bytesize = _line_setting("bytesize", bytesize, _BYTESIZE_MAP, port)
        self.parity = _line_setting("parity", parity.upper(), _PARITY_MAP, port)
        self.stopbits = _line_setting("stopbits", stopbits, _STOPBITS_MAP, port)
        self._serial: Optional[serial.Serial] = None
        logger.debug(
            "[SERIAL-INIT] %s %d baud %d%s%d",
            port, baud_rate, bytesize, parity.upper(), stopbits,
        )

    def open(self, context: str) -> None:
        """Open the serial port.

        Raises:
            SerialCommunicationError: If the port cannot be opened.  The
                message lists the ports the OS does know about.
        """
        if self.is_open():
            logger.debug("[SERIAL-OPEN] [%s] %s already open", context, self.port)
            return

        try:
            self._serial = serial.Serial(
                port=self.port,
                baudrate=self.baud_rate,
                bytesize=self.bytesize,
                parity=self.parity,
                stopbits=self.stopbits,
                timeout=SERIAL_READ_TIMEOUT,
                write_timeout=self.write_timeout,
            )
        except (serial.SerialException, OSError) as exc:
            msg = (
                f"[{context}] Cannot open {self.port} at {self.baud_rate} baud: {exc} "
                f"(available ports: {_available_ports()})"
            )
            logger.error("[SERIAL-OPEN] %s", msg)
            raise SerialCommunicationError(msg) from exc

        logger.info("[SERIAL-OPEN] [%s] Opened %s at %d baud", context, self.port, self.baud_rate)

    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def read_available(self) -> bytes:
        """Drain the OS receive buffer without blocking.

        Raises:
            SerialCommunicationError: If the port is closed or the device
                disappeared.
        """
        if self._serial is None:
            raise SerialCommunicationError(f"Cannot read from {self.port}: port is not open")
        try:
            waiting = self._serial.in_waiting
            return self._serial.read(waiting) if waiting > 0 else b""
        except (serial.SerialException, OSError) as exc:
            logger.error("[SERIAL-READ] %s: %s", self.port, exc)
            raise SerialCommunicationError(f"Read from {self.port} failed: {exc}") from exc

    def write(self, data: bytes, context: str) -> int:
        """Write all of *data* and flush it to the device.

        Raises:
            SerialCommunicationError: If the port is not open, the write
                fails or times out, or only part of *data* went out.
        """
        if not self.is_open():
            raise SerialCommunicationError(f"[{context}] Cannot write to {self.port}: port is not open")

        try:
            n = self._serial.write(data)
            self._serial.flush()
        except (serial.SerialException, OSError) as exc:
            # SerialTimeoutException included: write_timeout elapsed
            logger.error("[SERIAL-WRITE] [%s] %s: %s", context, self.port, exc)
            raise SerialCommunicationError(f"[{context}] Write to {self.port} failed: {exc}") from exc
        if n != len(data):
            raise SerialCommunicationError(
                f"[{context}] Short write on {self.port}: {n} of {len(data)} bytes"
            )

        logger.debug("[SERIAL-WRITE] [%s] %d bytes to %s", context, n, self.port)
        return n

    def close(self) -> None:
        """Close the serial port.  Closing a closed port is a no-op."""
        if self._serial is None:
            return
        try:
            self._serial.close()
        finally:
            self._serial = None
        logger.info("[SERIAL-CLOSE] Closed %s", self.port)

    def __repr__(self) -> str:
        return f"SerialPortTransport({self.port!r}, baud_rate={self.baud_rate})"


@typechecked
def list_serial_ports() -> List[str]:
    """Return descriptions of the serial ports visible to the operating system."""
    descriptions = []
    for p in serial.tools.list_ports.comports():
        descriptions.append(f"{p.device} — {p.description}")
        logger.debug("[SERIAL-LIST] Found port: %s (%s)", p.device, p.description)
    return descriptions
