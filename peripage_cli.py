#!/usr/bin/env python3
"""
PeriPage Thermal Printer CLI
----------------------------

Drives PeriPage A6 / A6+ / A40 / A40+ printers over Bluetooth SPP
(RFCOMM socket or serial device node) or BLE on dual-mode units.

It uses:
  - pyserial / socket (SPP byte stream)
  - bleak  (BLE scan and GATT transport)
  - Pillow + qrcode (image -> 1-bit rows)

Usage examples:

  # 1) Find your printer (BLE advertisement)
  peripage scan

  # 2) Query device information
  peripage info --address 04:7F:0E:B0:CA:57

  # 3) Print wrapped text with the printer's built-in font
  PERIPAGE_MODEL=A6p peripage text --address 04:7F:0E:B0:CA:57 --file note.txt

  # 4) Print an image or a QR code
  peripage image --address /dev/rfcomm0 --file picture.png
  peripage qr --address 04:7F:0E:B0:CA:57 --data https://example.com

The address may also come from the PERIPAGE_ADDRESS environment variable.
"""

import argparse
import asyncio
import logging
import os
import sys

from bleak import BleakScanner
from PIL import Image, UnidentifiedImageError

from peripage_codec import PeripageError
from peripage_printer import Printer
from peripage_profiles import PROFILES, get_profile
from peripage_raster import ALIGNMENTS, DEFAULT_QR_SIZE_PX
from peripage_transport import (
    DEFAULT_BAUDRATE,
    DEFAULT_RFCOMM_CHANNEL,
    TRANSPORT_KINDS,
    detect_transport_kind,
    open_transport,
)

# ---------------------------------------------------------------------
# Configuration & Constants
# ---------------------------------------------------------------------

DEFAULT_ADDRESS = os.getenv("PERIPAGE_ADDRESS", "").strip()
DEFAULT_MODEL = os.getenv("PERIPAGE_MODEL", "A6p").strip()
DEFAULT_TRANSPORT = os.getenv("PERIPAGE_TRANSPORT", "auto").strip().lower()
DEFAULT_WRITE_UUID = os.getenv("PERIPAGE_WRITE_UUID", "").strip().lower()
DEFAULT_NOTIFY_UUID = os.getenv("PERIPAGE_NOTIFY_UUID", "").strip().lower()
DEFAULT_CHANNEL = int(os.getenv("PERIPAGE_CHANNEL", str(DEFAULT_RFCOMM_CHANNEL)))
DEFAULT_BAUD = int(os.getenv("PERIPAGE_BAUDRATE", str(DEFAULT_BAUDRATE)))

# Unset means "leave the device's current setting alone"
_concentration = os.getenv("PERIPAGE_CONCENTRATION", "").strip()
DEFAULT_CONCENTRATION = int(_concentration) if _concentration else None

DEFAULT_FEED = 30
LOG_FORMAT = "%(levelname)s: %(message)s"

# Errors a command reports as "Error: ..." instead of a traceback
COMMAND_ERRORS = (ConnectionError, OSError, ValueError, PeripageError)


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------


def fail(message: str):
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def resolve_address(args) -> str:
    address = (getattr(args, "address", None) or DEFAULT_ADDRESS).strip()
    if not address:
        fail("No printer address specified.\nSet env PERIPAGE_ADDRESS or pass --address.")
    return address


def resolve_write_uuid(args) -> str:
    uuid = (getattr(args, "write_uuid", None) or DEFAULT_WRITE_UUID).strip().lower()
    if not uuid:
        fail("No write characteristic UUID specified.\nSet env PERIPAGE_WRITE_UUID or pass --write-uuid.")
    return uuid


def build_printer(args, address: str) -> Printer:
    """Create an unconnected session from CLI arguments and environment defaults."""
    try:
        profile = get_profile(args.model or DEFAULT_MODEL)
        kind = args.transport or DEFAULT_TRANSPORT
        if kind == "auto":
            kind = detect_transport_kind(address)
        write_uuid = resolve_write_uuid(args) if kind == "ble" else ""
        transport = open_transport(
            address,
            kind=kind,
            channel=args.channel if args.channel is not None else DEFAULT_CHANNEL,
            baudrate=args.baudrate if args.baudrate is not None else DEFAULT_BAUD,
            write_uuid=write_uuid,
            notify_uuid=args.notify_uuid or DEFAULT_NOTIFY_UUID or None,
        )
    except ValueError as e:
        fail(str(e))
    return Printer(transport, profile)


def run_job(args, job):
    """Connect, apply concentration, run ``job(printer)``, always disconnect."""
    address = resolve_address(args)
    printer = build_printer(args, address)

    # Only print jobs carry --concentration
    concentration = None
    if "concentration" in vars(args):
        concentration = args.concentration
        if concentration is None:
            concentration = DEFAULT_CONCENTRATION

    print(f"Connecting to printer at {address}...")
    try:
        with printer:
            print("Connected.")
            if concentration is not None:
                printer.set_concentration(concentration, wait=True)
            job(printer)
    except COMMAND_ERRORS as e:
        fail(str(e))


def read_text(args) -> str:
    if args.file:
        try:
            with open(args.file, "r", encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            fail(f"could not read file '{args.file}': {e}")
    return args.message or ""


# ---------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------


async def scan_devices(args):
    print("Scanning for BLE devices...")
    devices = await BleakScanner.discover(timeout=args.timeout)
    if not devices:
        print("No BLE devices found.")
        return

    for d in devices:
        # bleak versions differ: rssi may be an attribute or live in metadata
        rssi = getattr(d, "rssi", None)
        if rssi is None and hasattr(d, "metadata"):
            rssi = d.metadata.get("rssi")

        marker = "  <- PeriPage" if d.name and "peripage" in d.name.lower() else ""
        print(f"{d.address}  |  name={d.name!r}  |  rssi={rssi}{marker}")


def do_info(args):
    def job(printer):
        for label, value in printer.protocol.iter_info():
            print(f"{label:>9}: {value}")
        if args.full:
            info = printer.get_full_info()
            print(f"{'full':>9}: {info}")

    run_job(args, job)


def do_text(args):
    text = read_text(args)
    if not text.strip():
        fail("No text to print. Provide --file or --message.")

    def job(printer):
        for line in text.splitlines():
            printer.print_line(line)
        printer.flush()
        printer.feed(args.feed)
        print("Text print job sent.")

    run_job(args, job)


def do_image(args):
    print(f"Loading image from {args.file}...")
    try:
        img = Image.open(args.file)
        img.load()
    except UnidentifiedImageError as e:
        fail(f"invalid or unsupported image file '{args.file}': {e}")
    except OSError as e:
        fail(f"could not load image '{args.file}': {e}")

    def job(printer):
        printer.print_image(img, align=args.align)
        printer.feed(args.feed)
        print("Image print job sent.")

    run_job(args, job)


def do_qr(args):
    if not args.data:
        fail("No QR data given. Provide --data.")

    def job(printer):
        printer.print_qr(args.data, size=args.size)
        printer.feed(args.feed)
        print("QR print job sent.")

    run_job(args, job)


def do_feed(args):
    run_job(args, lambda printer: printer.feed(args.size))


def do_concentration(args):
    def job(printer):
        printer.set_concentration(args.level, wait=True)
        print(f"Concentration set to {args.level}.")

    run_job(args, job)


def do_power_timeout(args):
    def job(printer):
        printer.set_power_timeout(args.minutes, wait=True)
        print(f"Power-off timeout set to {args.minutes} minute(s).")

    run_job(args, job)


# ---------------------------------------------------------------------
# CLI setup
# ---------------------------------------------------------------------


def add_connection_args(p: argparse.ArgumentParser):
    p.add_argument("--address", help="MAC, BLE UUID or serial device (env PERIPAGE_ADDRESS)")
    p.add_argument(
        "--model",
        help=f"Printer model: {', '.join(x.name for x in PROFILES.values())} "
             "(default: env PERIPAGE_MODEL or A6p)",
    )
    p.add_argument("--transport", choices=TRANSPORT_KINDS, help="Transport (default: auto)")
    p.add_argument("--channel", type=int, help="RFCOMM channel (default 1)")
    p.add_argument("--baudrate", type=int, help="Serial baud rate (default 115200)")
    p.add_argument("--write-uuid", help="BLE write characteristic UUID")
    p.add_argument("--notify-uuid", help="BLE notify characteristic UUID")


def add_print_args(p: argparse.ArgumentParser):
    p.add_argument(
        "--concentration",
        type=int,
        choices=(0, 1, 2),
        help="Print darkness before printing (default: env PERIPAGE_CONCENTRATION)",
    )
    p.add_argument(
        "--feed",
        type=int,
        default=DEFAULT_FEED,
        help=f"Paper feed after the job (default {DEFAULT_FEED})",
    )


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="PeriPage thermal printer CLI")
    p.add_argument("-v", "--verbose", action="store_true", help="Log protocol traffic")
    sub = p.add_subparsers(dest="command", required=True)

    # scan
    ps = sub.add_parser("scan", help="Scan for nearby BLE devices")
    ps.add_argument("--timeout", type=float, default=5.0, help="Scan duration in seconds")
    ps.set_defaults(func=scan_devices)

    # info
    pi = sub.add_parser("info", help="Query device information")
    add_connection_args(pi)
    pi.add_argument(
        "--full",
        action="store_true",
        help="Also run the full-info query (shifts the next printout)",
    )
    pi.set_defaults(func=do_info)

    # text
    pt = sub.add_parser("text", help="Print wrapped ASCII text")
    add_connection_args(pt)
    add_print_args(pt)
    group = pt.add_mutually_exclusive_group(required=True)
    group.add_argument("--file", help="Text file to print")
    group.add_argument("--message", help="Inline text to print")
    pt.set_defaults(func=do_text)

    # image
    pim = sub.add_parser("image", help="Print an image file")
    add_connection_args(pim)
    add_print_args(pim)
    pim.add_argument("--file", required=True, help="Image file to print")
    pim.add_argument("--align", choices=ALIGNMENTS, default="center", help="Horizontal placement")
    pim.set_defaults(func=do_image)

    # qr
    pq = sub.add_parser("qr", help="Print a QR code")
    add_connection_args(pq)
    add_print_args(pq)
    pq.add_argument("--data", required=True, help="Text or URL to encode")
    pq.add_argument(
        "--size",
        type=int,
        default=DEFAULT_QR_SIZE_PX,
        help=f"Symbol size in pixels before fitting to the head (default {DEFAULT_QR_SIZE_PX})",
    )
    pq.set_defaults(func=do_qr)

    # feed
    pf = sub.add_parser("feed", help="Advance the paper")
    add_connection_args(pf)
    pf.add_argument("--size", type=int, default=DEFAULT_FEED, help="Feed units, 1-255")
    pf.set_defaults(func=do_feed)

    # concentration
    pc = sub.add_parser("concentration", help="Set print darkness")
    add_connection_args(pc)
    pc.add_argument("--level", type=int, choices=(0, 1, 2), required=True, help="0 light .. 2 dark")
    pc.set_defaults(func=do_concentration)

    # power-timeout
    pp = sub.add_parser("power-timeout", help="Set the auto power-off delay")
    add_connection_args(pp)
    pp.add_argument("--minutes", type=int, required=True, help="Idle minutes before power-off")
    pp.set_defaults(func=do_power_timeout)

    return p


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def main(argv=None):
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    try:
        result = args.func(args)
        if asyncio.iscoroutine(result):
            asyncio.run(result)
    except KeyboardInterrupt:
        print("\nInterrupted, exiting.")


if __name__ == "__main__":
    main()
