"""Custom exceptions for channel, matching, USB and external command operations."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Optional

if TYPE_CHECKING:
    from .matcher import Mismatch


class HilAcceptError(Exception):
    """Common base exception for all hil_accept_tools errors."""
    pass


class ChannelError(HilAcceptError):
    """Base exception for channel lifecycle errors."""
    pass


class AlreadyOpenError(ChannelError):
    """Exception for opening a channel that is already open."""
    pass


class UnknownChannelError(ChannelError):
    """Exception for a channel name that is not configured."""
    pass


class NotOpenError(ChannelError):
    """Exception for using a channel that is not open."""
    pass


class ChannelCloseError(ChannelError):
    """Exception raised by ``close_all`` after every channel was attempted.

    Attributes:
        failures: Mapping of channel name to the exception its close raised,
            in the order the channels were closed.
    """

    def __init__(self, message: str, *, failures: Dict[str, Exception]) -> None:
        super().__init__(message)
        self.failures = failures


class MatchError(HilAcceptError):
    """Base exception for output checks that did not hold."""
    pass


class TimeoutNoMatchError(MatchError):
    """Exception for a wait whose predicate never held and never reported a mismatch."""
    pass


class LastMismatchError(TimeoutNoMatchError):
    """Exception for a wait that timed out after the predicate reported mismatches.

    A refinement of ``TimeoutNoMatchError``: catching the latter handles
    every timed-out check, with or without mismatch detail.

    Attributes:
        mismatch: The most recent ``Mismatch`` observed before the deadline.
    """

    def __init__(self, message: str, *, mismatch: Mismatch) -> None:
        super().__init__(message)
        self.mismatch = mismatch


class UnknownOperatorError(HilAcceptError):
    """Exception for a comparison operator outside the supported set."""
    pass


class NoReplyError(HilAcceptError):
    """Exception for taking a USB reply when no request has been sent."""
    pass


class MissingConfigError(HilAcceptError):
    """Exception for a required environment variable that is not set."""
    pass


class ExternalCommandError(HilAcceptError):
    """Exception for non-zero exit codes of shelled-out commands.

    Attributes:
        command: The command line that failed.
        return_code: The non-zero exit code.
        stdout: Standard output from the command.
        stderr: Standard error from the command.
    """

    def __init__(
        self,
        message: str,
        *,
        command: str,
        return_code: Optional[int],
        stdout: str,
        stderr: str,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.return_code = return_code
        self.stdout = stdout
        self.stderr = stderr


class TransportError(HilAcceptError):
    """Base exception for transport I/O failures."""
    pass


class SerialCommunicationError(TransportError):
    """Exception for serial ports that cannot be configured, opened, read or written.

    Messages include the port path and platform-specific troubleshooting hints.
    """
    pass


class SchedulerError(HilAcceptError):
    """Exception for using the I/O scheduler outside its start/stop lifecycle."""
    pass
