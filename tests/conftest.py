"""Pytest configuration — path setup, logging, and fake device transports."""

import logging
import os
import sys
import threading

import pytest

# ---------------------------------------------------------------------------
# Path setup: ensure the package is importable regardless of installation
# ---------------------------------------------------------------------------
_SRC_DIR = os.path.join(os.path.dirname(__file__), os.pardir, "src")
_SRC_DIR = os.path.normpath(_SRC_DIR)
if _SRC_DIR not in sys.path:
    sys.path.insert(0, _SRC_DIR)

# ---------------------------------------------------------------------------
# Logging: route all library log output to the console so pytest -s shows it
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)

from hil_accept_tools.exceptions import TransportError  # noqa: E402
from hil_accept_tools.scheduler import IOScheduler  # noqa: E402
from hil_accept_tools.transport import Transport  # noqa: E402


class FakeTransport(Transport):
    """In-memory device endpoint.

    ``feed`` injects bytes as if the device had sent them; with ``echo=True``
    every write is looped back.  ``written`` records everything sent.
    """

    def __init__(self, endpoint, baud_rate=9600, data_bits=8, echo=False):
        self.endpoint = endpoint
        self.baud_rate = baud_rate
        self.data_bits = data_bits
        self.echo = echo
        self.written = []
        self.fail_open = False
        self.fail_close = False
        self.fail_read = False
        self.close_calls = 0
        self._pending = bytearray()
        self._lock = threading.Lock()
        self._open = False

    def open(self, context):
        if self.fail_open:
            raise TransportError(f"[{context}] cannot open {self.endpoint}")
        self._open = True

    def is_open(self):
        return self._open

    def feed(self, data):
        with self._lock:
            self._pending.extend(data)

    def read_available(self):
        if self.fail_read:
            raise TransportError(f"read failed on {self.endpoint}")
        with self._lock:
            chunk = bytes(self._pending)
            self._pending.clear()
        return chunk

    def write(self, data, context):
        self.written.append(data)
        if self.echo:
            self.feed(data)
        return len(data)

    def close(self):
        self.close_calls += 1
        self._open = False
        if self.fail_close:
            raise TransportError(f"close failed on {self.endpoint}")


class FakeTransportFactory:
    """Transport factory for ``ChannelRegistry`` that keeps every transport it builds."""

    def __init__(self, echo=False):
        self.echo = echo
        self.created = []
        self.fail_open = False

    def __call__(self, device, baud_rate, data_bits):
        transport = FakeTransport(device, baud_rate, data_bits, echo=self.echo)
        transport.fail_open = self.fail_open
        self.created.append(transport)
        return transport

    def last(self):
        return self.created[-1]

    def for_device(self, device):
        return [t for t in self.created if t.endpoint == device][-1]


TEST_CHANNELS = {
    "A": "HIL_TEST_A_DEV",
    "B": "HIL_TEST_B_DEV",
    "Unset": "HIL_TEST_UNSET_DEV",
}

TEST_ENVIRON = {
    "HIL_TEST_A_DEV": "/dev/fake-a",
    "HIL_TEST_B_DEV": "/dev/fake-b",
}


@pytest.fixture()
def scheduler():
    """A running I/O scheduler, stopped after the test."""
    sched = IOScheduler(poll_interval_s=0.005)
    sched.start()
    yield sched
    sched.stop()


@pytest.fixture()
def transport_factory():
    return FakeTransportFactory()
