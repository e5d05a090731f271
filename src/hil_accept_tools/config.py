"""Environment-based configuration lookups.

Device paths and similar per-bench settings live in environment variables so
nothing machine-specific is committed.  They are resolved lazily, when the
resource that needs them is used, so a missing variable only fails the
scenarios that actually touch that device.
"""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from .exceptions import MissingConfigError, UnknownChannelError

logger = logging.getLogger("hil_accept_tools.config")


def env_var(name: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Return the value of environment variable *name*.

    Raises:
        MissingConfigError: If the variable is not defined.
    """
    env = os.environ if environ is None else environ
    value = env.get(name)
    if value is None:
        msg = f"Environment variable is not defined: {name}"
        logger.error("[CONFIG] %s", msg)
        raise MissingConfigError(msg)
    return value


def resolve_channel_device(
    channel: str,
    channels: Mapping[str, str],
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Resolve a channel name to its device path.

    Args:
        channel: Channel name, e.g. ``"Serial1"``.
        channels: Mapping of channel name to environment variable name.
        environ: Environment to read from (default: ``os.environ``).

    Raises:
        UnknownChannelError: If *channel* is not configured.
        MissingConfigError: If its environment variable is not defined.
    """
    variable = channels.get(channel)
    if variable is None:
        valid = ", ".join(sorted(channels)) or "(none)"
        raise UnknownChannelError(
            f"Unknown serial port: {channel}. Configured channels: {valid}."
        )
    device = env_var(variable, environ)
    logger.debug("[CONFIG] %s -> %s (from %s)", channel, device, variable)
    return device
