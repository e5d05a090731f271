"""Shelled-out helper commands: application build/flash and generic execution."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from typing import Sequence

from typeguard import typechecked

from . import BUILD_COMMAND
from .exceptions import ExternalCommandError

logger = logging.getLogger("hil_accept_tools.external")


@typechecked
def run_command(args: Sequence[str], context: str) -> str:
    """Run an external command synchronously and return its output.

    There is no timeout at this layer; the tools invoked are expected to
    bound themselves.

    Args:
        args: Program and arguments.
        context: Description of the purpose, embedded into error messages.

    Returns:
        Captured standard output with trailing whitespace trimmed.

    Raises:
        ExternalCommandError: If the program cannot be started or exits
            with a non-zero code.  The message includes captured stderr.
    """
    command = shlex.join(args)
    logger.info("[EXEC] [%s] Running %s", context, command)
    start_time = time.monotonic()

    try:
        proc = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except OSError as exc:
        msg = f"[{context}] Cannot run external command {command}: {exc}"
        logger.error("[EXEC] START FAILED — %s", msg)
        raise ExternalCommandError(
            msg, command=command, return_code=None, stdout="", stderr=str(exc),
        ) from exc

    elapsed = time.monotonic() - start_time
    logger.info(
        "[EXEC] [%s] Completed %s in %.2fs — rc=%d, stdout=%d chars, stderr=%d chars",
        context, args[0], elapsed, proc.returncode, len(proc.stdout), len(proc.stderr),
    )

    if proc.returncode != 0:
        msg = (
            f"[{context}] External command has finished with an error "
            f"(exit code: {proc.returncode}): {command}\n{proc.stderr.rstrip()}"
        )
        logger.warning("[EXEC] %s", msg)
        raise ExternalCommandError(
            msg,
            command=command,
            return_code=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
        )

    return proc.stdout.rstrip()


@typechecked
def build_application(app_path: str, context: str, build_command: str = BUILD_COMMAND) -> str:
    """Build and flash the application in *app_path* onto the device.

    Returns:
        The build tool's standard output (trailing whitespace trimmed).

    Raises:
        ExternalCommandError: If the build tool fails.
    """
    app_path = os.path.normpath(app_path)
    logger.info("[BUILD] [%s] Building application %s", context, app_path)
    return run_command([build_command, app_path], context=context)
