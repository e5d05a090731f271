"""Command-line interface for HIL Accept Tools."""

from __future__ import annotations

import argparse
import sys

from . import CHECK_DATA_TIMEOUT_S, SERIAL_BAUD_RATE, USB_DEFAULT_REQUEST, USB_DEFAULT_REQUEST_INDEX
from .channels import ChannelRegistry
from .exceptions import ChannelCloseError, ExternalCommandError, HilAcceptError, LastMismatchError
from .external import build_application
from .matcher import OPERATORS, predicate
from .scheduler import IOScheduler
from .transport import list_serial_ports
from .usb import UsbRequestChannel


def command_build(args) -> int:
    """Build and flash an application."""
    try:
        output = build_application(args.app_dir, context=f"CLI build {args.app_dir}")
        if output:
            print(output)
        return 0

    except ExternalCommandError as e:
        print(f"Build failed (exit {e.return_code}): {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def command_usb_request(args) -> int:
    """Send a USB control request and print the reply as hex."""
    try:
        payload = bytes.fromhex(args.data)
    except ValueError:
        print(f"Error: --data is not valid hex: {args.data!r}", file=sys.stderr)
        return 1

    try:
        usb = UsbRequestChannel()
        reply = usb.send_request(
            request=args.request,
            index=args.index,
            host_to_device=args.out,
            data=payload,
        )
        print(reply.hex())
        return 0

    except Exception as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def command_serial_list(args) -> int:
    """List available serial ports."""
    ports = list_serial_ports()
    if not ports:
        print("No serial ports found.")
    else:
        print("Available serial ports:")
        for p in ports:
            print(f"  {p}")
    return 0


def _close_after_failure(registry) -> None:
    """Close every channel without masking the error already in flight."""
    try:
        registry.close_all()
    except ChannelCloseError as e:
        print(f"Warning: {str(e)}", file=sys.stderr)


def command_serial_expect(args) -> int:
    """Open a channel, optionally write to it, and check its output."""
    try:
        check = predicate(args.expected, args.op)
        with IOScheduler() as scheduler:
            registry = ChannelRegistry(scheduler)
            registry.open(args.channel, baud_rate=args.baud_rate)
            try:
                if args.write is not None:
                    registry.write(args.channel, args.write)
                data = registry.check_data(args.channel, check, timeout_s=args.timeout)
            except HilAcceptError:
                _close_after_failure(registry)
                raise
            registry.close_all()

        print(data if isinstance(data, str) else data.hex())
        return 0

    except LastMismatchError as e:
        print(f"Mismatch: {e}", file=sys.stderr)
        return 1
    except HilAcceptError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def main(argv=None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="HIL Accept Tools - drive a device under test over serial and USB"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Build application
    build_parser = subparsers.add_parser("build", help="Build and flash an application")
    build_parser.add_argument("app_dir", help="Application directory")
    build_parser.set_defaults(func=command_build)

    # USB request
    usb_parser = subparsers.add_parser("usb-request", help="Send a USB control request")
    usb_parser.add_argument(
        "--request", type=int, default=USB_DEFAULT_REQUEST,
        help=f"Request code (default: {USB_DEFAULT_REQUEST})",
    )
    usb_parser.add_argument(
        "--index", type=int, default=USB_DEFAULT_REQUEST_INDEX,
        help=f"Request index (default: {USB_DEFAULT_REQUEST_INDEX})",
    )
    usb_parser.add_argument(
        "--out", action="store_true", default=False,
        help="Host-to-device request",
    )
    usb_parser.add_argument(
        "--data", type=str, default="",
        help="Request payload as hex (default: empty)",
    )
    usb_parser.set_defaults(func=command_usb_request)

    # Serial list
    serial_list_parser = subparsers.add_parser(
        "serial-list", help="List available serial ports",
    )
    serial_list_parser.set_defaults(func=command_serial_list)

    # Serial expect
    expect_parser = subparsers.add_parser(
        "serial-expect", help="Wait until a channel's output satisfies a check",
    )
    expect_parser.add_argument("channel", help="Channel name (e.g. Serial1)")
    expect_parser.add_argument(
        "--op", choices=list(OPERATORS), default="contain",
        help="Comparison operator (default: contain)",
    )
    expect_parser.add_argument("--expected", required=True, help="Expected text or pattern")
    expect_parser.add_argument("--write", type=str, default=None, help="Text to send first")
    expect_parser.add_argument(
        "--timeout", type=float, default=CHECK_DATA_TIMEOUT_S,
        help=f"Timeout in seconds (default: {CHECK_DATA_TIMEOUT_S})",
    )
    expect_parser.add_argument(
        "--baud-rate", type=int, default=SERIAL_BAUD_RATE,
        help=f"Baud rate (default: {SERIAL_BAUD_RATE})",
    )
    expect_parser.set_defaults(func=command_serial_expect)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
