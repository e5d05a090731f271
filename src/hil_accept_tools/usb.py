"""USB control request/reply channel.

There is no persistent connection: every request runs the external transfer
tool synchronously and the decoded reply replaces the previous one.  Payloads
cross the process boundary hex-encoded.
"""

from __future__ import annotations

import binascii
import logging
from typing import Callable, Optional, Sequence

from typeguard import typechecked

from . import (
    USB_DEFAULT_REQUEST,
    USB_DEFAULT_REQUEST_INDEX,
    USB_DEFAULT_REQUEST_VALUE,
    USB_REQUEST_COMMAND,
)
from .exceptions import NoReplyError, TransportError
from .external import run_command

logger = logging.getLogger("hil_accept_tools.usb")

# (args, context) -> trimmed stdout
CommandRunner = Callable[[Sequence[str], str], str]


@typechecked
class UsbRequestChannel:
    """Sends vendor control requests and retains the last reply.

    Example::

        usb = UsbRequestChannel()
        usb.send_request(data=b"ping")
        assert usb.take_reply() == b"pong"
    """

    def __init__(
        self,
        command: str = USB_REQUEST_COMMAND,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        """Initialize with no stored reply.

        Args:
            command: Transfer tool to invoke (default: ``send_usb_req``).
            runner: Executes the tool; default ``external.run_command``.
        """
        self.command = command
        self.runner = runner or run_command
        self._last_reply: Optional[bytes] = None

    def build_args(
        self,
        request: int,
        value: int,
        index: int,
        host_to_device: bool,
        data: bytes,
    ):
        """Return the transfer tool's argument list for one request."""
        args = [self.command, "-r", str(request), "-v", str(value), "-i", str(index)]
        if host_to_device:
            args += ["-d", "out"]
        args += ["-x", data.hex()]
        return args

    def send_request(
        self,
        request: int = USB_DEFAULT_REQUEST,
        value: int = USB_DEFAULT_REQUEST_VALUE,
        index: int = USB_DEFAULT_REQUEST_INDEX,
        host_to_device: bool = False,
        data: bytes = b"",
    ) -> bytes:
        """Send one control request and store its reply.

        Blocks for the duration of the external transfer.

        Returns:
            The decoded reply bytes (also retained for ``take_reply``).

        Raises:
            ExternalCommandError: If the transfer tool fails.
            TransportError: If the tool's output is not valid hex.
        """
        direction = "host-to-device" if host_to_device else "device-to-host"
        context = f"USB request {request} (value={value}, index={index}, {direction})"
        args = self.build_args(request, value, index, host_to_device, data)
        logger.info("[USB-REQ] [%s] Sending %d payload bytes", context, len(data))

        output = self.runner(args, context)
        try:
            reply = bytes.fromhex("".join(output.split()))
        except ValueError as exc:
            msg = f"[{context}] Reply is not valid hex: {output[:80]!r}"
            logger.error("[USB-REQ] DECODE ERROR — %s", msg)
            raise TransportError(msg) from exc

        self._last_reply = reply
        logger.info("[USB-REQ] [%s] Reply: %d bytes (%s)", context, len(reply),
                    binascii.hexlify(reply[:32]).decode("ascii"))
        return reply

    def take_reply(self) -> bytes:
        """Return the reply to the most recent request.

        Raises:
            NoReplyError: If no request was sent since the last reset.
        """
        if self._last_reply is None:
            raise NoReplyError("No reply data available: no USB request has been sent since the last reset")
        return self._last_reply

    def has_reply(self) -> bool:
        return self._last_reply is not None

    def reset(self) -> None:
        """Forget the stored reply."""
        self._last_reply = None
        logger.debug("[USB-RESET] Cleared stored reply")
