"""Scenario setup/teardown and the behavioral steps acceptance tests call.

A ``ScenarioSession`` owns everything one scenario touches: the I/O
scheduler, the channel registry and the USB request channel.  ``setup``
starts the scheduler; ``teardown`` clears the USB reply, closes every channel
and only then stops the scheduler, so no delivery callback can outlive its
channel.

The step methods mirror the sentences of the acceptance features::

    with ScenarioSession(feature_dir="features/serial") as s:
        s.given_application("app/echo")
        s.open_serial("Serial1", baud_rate=115200)
        s.write_serial("Serial1", "ping\\n")
        s.serial_output_should("Serial1", "contain", "pong")
"""

from __future__ import annotations

import logging
import os
import time
from typing import Mapping, Optional, Union

from typeguard import typechecked

from . import APP_BOOT_DELAY_S, BUILD_COMMAND, CHECK_DATA_TIMEOUT_S, SERIAL_BAUD_RATE
from .channels import ChannelRegistry, TransportFactory
from .exceptions import ChannelCloseError, HilAcceptError, SchedulerError
from .external import build_application
from .matcher import expect, predicate
from .scheduler import IOScheduler
from .types import ChannelData
from .usb import CommandRunner, UsbRequestChannel

logger = logging.getLogger("hil_accept_tools.scenario")

_UNIT_SCALE = {
    "second": 1.0,
    "seconds": 1.0,
    "millisecond": 0.001,
    "milliseconds": 0.001,
}


@typechecked
class ScenarioSession:
    """Runs the steps of one acceptance scenario against the device."""

    def __init__(
        self,
        feature_dir: str = ".",
        channels: Optional[Mapping[str, str]] = None,
        transport_factory: Optional[TransportFactory] = None,
        usb_runner: Optional[CommandRunner] = None,
        environ: Optional[Mapping[str, str]] = None,
        build_command: str = BUILD_COMMAND,
        boot_delay_s: float = APP_BOOT_DELAY_S,
        check_timeout_s: float = CHECK_DATA_TIMEOUT_S,
    ) -> None:
        """Initialize the session; nothing runs until ``setup``.

        Args:
            feature_dir: Directory application paths are relative to.
            channels: Channel name -> environment variable mapping.
            transport_factory: Transport builder for the channel registry.
            usb_runner: Command runner for the USB request channel.
            environ: Environment for device path lookups.
            build_command: Tool that builds and flashes an application.
            boot_delay_s: Time to let the device boot after flashing.
            check_timeout_s: Default wait for output checks.
        """
        self.feature_dir = feature_dir
        self.build_command = build_command
        self.boot_delay_s = boot_delay_s
        self.check_timeout_s = check_timeout_s
        self.scheduler = IOScheduler()
        self.serial = ChannelRegistry(
            self.scheduler,
            channels=channels,
            transport_factory=transport_factory,
            environ=environ,
        )
        self.usb = UsbRequestChannel(runner=usb_runner)

    # ---- Lifecycle ----

    def setup(self) -> None:
        """Start the I/O scheduler for this scenario."""
        self.scheduler.start()
        logger.info("[SCENARIO] Setup complete")

    def teardown(self) -> None:
        """Reset the USB reply, close all channels, then stop the scheduler.

        The scheduler is stopped even if some channels failed to close; the
        close failure is re-raised afterwards.  A scheduler stop failure at
        that point is only logged, so the close failure is what the caller
        sees.
        """
        self.usb.reset()
        try:
            self.serial.close_all()
        except ChannelCloseError as exc:
            logger.error("[SCENARIO] Teardown: %s", exc)
            try:
                self.scheduler.stop()
            except SchedulerError as stop_exc:
                logger.error("[SCENARIO] Teardown: %s", stop_exc)
            raise
        self.scheduler.stop()
        logger.info("[SCENARIO] Teardown complete")

    def __enter__(self) -> ScenarioSession:
        self.setup()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        self.teardown()

    # ---- Misc steps ----

    def given_application(self, app_dir: str) -> str:
        """Build and flash *app_dir* (relative to the feature directory), then
        give the device time to boot into it."""
        app_path = os.path.join(self.feature_dir, app_dir)
        output = build_application(
            app_path, context=f"application {app_dir}", build_command=self.build_command,
        )
        if self.boot_delay_s > 0:
            time.sleep(self.boot_delay_s)
        return output

    def wait_for(self, value: Union[int, float, str], unit: str = "seconds") -> None:
        """Sleep for *value* seconds or milliseconds."""
        scale = _UNIT_SCALE.get(unit)
        if scale is None:
            raise HilAcceptError(
                f"Unknown time unit {unit!r}. Must be one of: {', '.join(sorted(_UNIT_SCALE))}."
            )
        time.sleep(float(value) * scale)

    # ---- Serial steps ----

    def open_serial(self, port: str, baud_rate: Optional[int] = None) -> None:
        self.serial.open(port, baud_rate=baud_rate or SERIAL_BAUD_RATE)

    def write_serial(self, port: str, data: Union[str, bytes]) -> None:
        self.serial.write(port, data)

    def serial_output_should(
        self,
        port: str,
        operator: str,
        expected: str,
        timeout_s: Optional[float] = None,
    ) -> ChannelData:
        """Wait until the output of *port* satisfies *operator* against *expected*."""
        timeout = self.check_timeout_s if timeout_s is None else timeout_s
        return self.serial.check_data(port, predicate(expected, operator), timeout_s=timeout)

    # ---- USB steps ----

    def send_usb_request(
        self,
        data: Union[str, bytes] = b"",
        index: Optional[int] = None,
        host_to_device: bool = False,
    ) -> bytes:
        """Send a USB test request; text payloads are UTF-8 encoded."""
        payload = data.encode("utf-8") if isinstance(data, str) else data
        if index is None:
            return self.usb.send_request(data=payload, host_to_device=host_to_device)
        return self.usb.send_request(index=index, data=payload, host_to_device=host_to_device)

    def usb_reply_should(self, operator: str, expected: str) -> None:
        """Assert on the last USB reply.  Raises ``ExpectationError`` on mismatch."""
        expect(self.usb.take_reply(), expected, operator)
