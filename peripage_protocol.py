"""
PeriPage binary command protocol.

Every command is a fixed byte prefix followed by big-endian arguments.
The printer never acknowledges anything: the only way to stay in sync
with it is to leave it a fixed amount of time to digest a command before
sending the next one or reading its answer. There is no overheat
protection command and no cancel/stop command, so a started job always
runs to completion.
"""

import logging
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from peripage_codec import (
    MalformedInput,
    big_endian,
    bytes_to_ascii,
    bytes_to_hex,
    hex_to_bytes,
    pad_or_truncate,
)
from peripage_profiles import PrinterProfile
from peripage_raster import split_rows

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------

# These waits are part of the protocol. The device corrupts its internal
# buffer alignment when a command arrives before the previous one has been
# processed, so shortening them is a behavioural regression.
SETTLE_INTERVAL_SEC = 0.25
ROW_INTERVAL_SEC = 0.01


# ---------------------------------------------------------------------
# Command vocabulary
# ---------------------------------------------------------------------

RESET_FRAME = hex_to_bytes("10fffe01" + "00" * 12)
FEED_OPCODE = hex_to_bytes("1b4a")
CONCENTRATION_OPCODE = hex_to_bytes("10ff1000")
POWER_TIMEOUT_OPCODE = hex_to_bytes("10ff12")
ROW_TRANSFER_OPCODE = hex_to_bytes("1d7630")
ROW_HEADER_MARKER = b"\x00"

QUERY_IP = hex_to_bytes("10ff20f0")
QUERY_NAME = hex_to_bytes("10ff3011")
QUERY_SERIAL_NUMBER = hex_to_bytes("10ff20f2")
QUERY_FIRMWARE = hex_to_bytes("10ff20f1")
QUERY_BATTERY = hex_to_bytes("10ff50f1")
QUERY_HARDWARE = hex_to_bytes("10ff3010")
QUERY_MAC = hex_to_bytes("10ff3012")
QUERY_FULL_INFO = hex_to_bytes("10ff70f100")

MIN_FEED = 0x01
MAX_FEED = 0xFF
CONCENTRATION_LEVELS = (0, 1, 2)
MIN_POWER_TIMEOUT_MIN = 0x0001
MAX_POWER_TIMEOUT_MIN = 0xFFF0

# The row-count field of the transfer header is a single byte
MAX_ROWS_PER_CHUNK = 0xFF

LINE_TERMINATOR = b"\n"
FULL_INFO_SEPARATOR = "|"


# ---------------------------------------------------------------------
# Frame builders
# ---------------------------------------------------------------------


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def feed_frame(size: int) -> bytes:
    return FEED_OPCODE + big_endian(clamp(size, MIN_FEED, MAX_FEED))


def concentration_frame(level: int) -> bytes:
    level = clamp(level, CONCENTRATION_LEVELS[0], CONCENTRATION_LEVELS[-1])
    return CONCENTRATION_OPCODE + big_endian(level)


def power_timeout_frame(minutes: int) -> bytes:
    minutes = clamp(minutes, MIN_POWER_TIMEOUT_MIN, MAX_POWER_TIMEOUT_MIN)
    return POWER_TIMEOUT_OPCODE + big_endian(minutes, 2)


def row_header(row_bytes: int, row_count: int) -> bytes:
    """
    Header announcing ``row_count`` rows of ``row_bytes`` bytes each.

    Layout: ``1d7630 | row_bytes:2 | 00 | row_count:1 | 00``. For an A6+
    single row this is ``1d7630 0048 00 01 00``.
    """
    return (
        ROW_TRANSFER_OPCODE
        + big_endian(row_bytes, 2)
        + ROW_HEADER_MARKER
        + big_endian(row_count)
        + ROW_HEADER_MARKER
    )


def chunk_rows(rows: Sequence[bytes], size: int = MAX_ROWS_PER_CHUNK) -> List[Sequence[bytes]]:
    """Split ``rows`` into consecutive groups of at most ``size`` rows, in order."""
    return [rows[i : i + size] for i in range(0, len(rows), size)]


@dataclass(frozen=True)
class DeviceInfo:
    """Parsed answer to the full-info query."""

    name: str
    device_mac: str
    client_mac: str
    firmware: str
    serial_number: str
    battery: int

    @classmethod
    def parse(cls, payload: str) -> "DeviceInfo":
        """
        Parse ``name+mac_suffix|device_mac|client_mac|firmware|serial|battery``.
        Example: ``PeriPage+DF7A|00:F5:73:25:AC:9F|C5:12:81:19:2C:51|V2.11_304dpi|A6491571121|84``.
        """
        fields = [f.strip() for f in payload.strip("\x00\r\n ").split(FULL_INFO_SEPARATOR)]
        if len(fields) != 6:
            raise MalformedInput(f"expected 6 '|'-separated fields, got {payload!r}")
        try:
            battery = int(fields[5])
        except ValueError as e:
            raise MalformedInput(f"invalid battery level in {payload!r}") from e
        return cls(fields[0], fields[1], fields[2], fields[3], fields[4], battery)


# ---------------------------------------------------------------------
# Protocol engine
# ---------------------------------------------------------------------


class PrinterProtocol:
    """
    Encodes commands for one printer and writes them to its transport.

    Not safe for concurrent use: the printer tracks buffer state that a
    second writer would desynchronize. Share it through a single worker.
    """

    def __init__(self, transport, profile: PrinterProfile):
        self.transport = transport
        self.profile = profile

    # -- primitives -----------------------------------------------------

    def tell(self, frame: bytes) -> None:
        """Write a frame without waiting for the device."""
        logger.debug("tell %d byte(s): %s", len(frame), bytes_to_hex(frame[:32]))
        self.transport.write(frame)

    def ask(self, frame: bytes) -> bytes:
        """Write a frame, let the device settle, then return whatever it sent back."""
        self.tell(frame)
        time.sleep(SETTLE_INTERVAL_SEC)
        response = self.transport.available_read()
        logger.debug("ask got %d byte(s): %s", len(response), bytes_to_hex(response))
        return response

    def send(self, frame: bytes, wait: bool = False) -> Optional[bytes]:
        return self.ask(frame) if wait else self.tell(frame)

    # -- configuration ----------------------------------------------------

    def reset(self) -> None:
        """
        Re-arm the printer. Required once after connecting (the printer
        neither answers nor prints before it) and before every row transfer.
        """
        self.tell(RESET_FRAME)

    def feed(self, size: int) -> None:
        """Advance the paper by ``size`` units, clamped to 1..255."""
        self.tell(feed_frame(size))

    def set_concentration(self, level: int, wait: bool = False) -> None:
        """Set print darkness 0 (light) .. 2 (dark); darker heats the head more."""
        self.send(concentration_frame(level), wait)

    def set_power_timeout(self, minutes: int, wait: bool = False) -> None:
        """Set the idle auto power-off delay, clamped to 1..0xfff0 minutes."""
        self.send(power_timeout_frame(minutes), wait)

    # -- text -------------------------------------------------------------

    def write_ascii(self, text: str, wait: bool = False) -> None:
        """
        Write raw text into the printer's line buffer without any checks.

        Two consecutive newlines freeze the printer; use the text buffer
        engine unless the input is known to be safe.
        """
        try:
            frame = text.encode("ascii")
        except UnicodeEncodeError as e:
            raise MalformedInput(f"not an ASCII string: {text!r}") from e
        self.send(frame, wait)

    def write_line(self, text: str) -> None:
        self.tell(text.encode("ascii"))
        self.tell(LINE_TERMINATOR)

    # -- rows -------------------------------------------------------------

    def transfer_row(self, row: bytes) -> None:
        """Print a single row, padded or truncated to the head width."""
        row_bytes = self.profile.row_bytes
        self.reset()
        self.tell(row_header(row_bytes, 1) + pad_or_truncate(row, row_bytes))
        time.sleep(ROW_INTERVAL_SEC)

    def transfer_rows(self, rows: Sequence[bytes]) -> None:
        """
        Print rows in order, in chunks of at most 255 rows per header.

        The printer is reset before every chunk; without it later chunks
        come out vertically shifted.
        """
        if not rows:
            return

        row_bytes = self.profile.row_bytes
        chunks = chunk_rows(list(rows))
        logger.info("Sending %d row(s) in %d chunk(s)", len(rows), len(chunks))

        for chunk in chunks:
            self.reset()
            self.tell(row_header(row_bytes, len(chunk)))
            for row in chunk:
                self.tell(pad_or_truncate(row, row_bytes))
                time.sleep(ROW_INTERVAL_SEC)

    def transfer_image_bytes(self, data: bytes) -> None:
        """Print a packed bitmap whose rows are laid out back to back."""
        if not data:
            return
        self.transfer_rows(split_rows(data, self.profile.row_bytes))

    # -- device info --------------------------------------------------------

    def query(self, frame: bytes) -> bytes:
        return self.ask(frame)

    def query_text(self, frame: bytes) -> str:
        return bytes_to_ascii(self.query(frame))

    def get_ip(self) -> str:
        """Unknown property, an A6+ answers ``IP-300``."""
        return self.query_text(QUERY_IP)

    def get_name(self) -> str:
        """Device name plus the last two MAC bytes, e.g. ``PeriPage+DF7A``."""
        return self.query_text(QUERY_NAME)

    def get_serial_number(self) -> str:
        return self.query_text(QUERY_SERIAL_NUMBER)

    def get_firmware(self) -> str:
        return self.query_text(QUERY_FIRMWARE)

    def get_hardware(self) -> str:
        return self.query_text(QUERY_HARDWARE)

    def get_mac(self) -> str:
        return self.query_text(QUERY_MAC)

    def get_battery(self) -> Optional[int]:
        """Battery percentage; the answer is ``[0x00, percent]``. None if the device stayed silent."""
        response = self.query(QUERY_BATTERY)
        if len(response) < 2:
            logger.warning("Short battery response: %r", response)
            return None
        return response[1]

    def get_full_info(self) -> DeviceInfo:
        """
        All device properties in one record.

        WARNING: this query shifts subsequently printed images horizontally
        and leaves a stray block character in the printer's text buffer.
        """
        logger.warning("Full-info query may corrupt the next printout")
        return DeviceInfo.parse(self.query_text(QUERY_FULL_INFO))

    def iter_info(self) -> Iterable[tuple]:
        """Yield ``(label, value)`` for every side-effect-free query."""
        yield "name", self.get_name()
        yield "serial", self.get_serial_number()
        yield "firmware", self.get_firmware()
        yield "hardware", self.get_hardware()
        yield "mac", self.get_mac()
        yield "ip", self.get_ip()
        yield "battery", self.get_battery()
