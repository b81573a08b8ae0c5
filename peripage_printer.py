"""
One printing session: a transport, the protocol on top of it and the
text cursor that mirrors the printer's line buffer.

A ``Printer`` is not thread-safe. Applications with several producers
must funnel their requests into a single worker that owns the session.
There is no way to cancel a job once its frames are written; the only
way out is ``disconnect()``, which abandons the session.
"""

import logging
import time
from typing import Optional, Sequence

from PIL import Image

from peripage_profiles import PrinterProfile
from peripage_protocol import SETTLE_INTERVAL_SEC, DeviceInfo, PrinterProtocol
from peripage_raster import DEFAULT_QR_SIZE_PX, image_to_rows, make_qr_image
from peripage_text import TextBuffer
from peripage_transport import Transport

logger = logging.getLogger(__name__)


class Printer:
    def __init__(self, transport: Transport, profile: PrinterProfile):
        self.transport = transport
        self.profile = profile
        self.protocol = PrinterProtocol(transport, profile)
        self.text = TextBuffer(self.protocol, profile.row_characters)

    # ---------------------------------------------------------------------
    # Connection
    # ---------------------------------------------------------------------

    def connect(self) -> None:
        """Open the transport and send the mandatory initial reset."""
        self.transport.connect()
        time.sleep(SETTLE_INTERVAL_SEC)
        self.protocol.reset()
        time.sleep(SETTLE_INTERVAL_SEC)
        logger.info("Printer %s ready", self.profile.name)

    def disconnect(self) -> None:
        """Close the transport; a link that already dropped is still released."""
        if self.transport.is_connected:
            time.sleep(SETTLE_INTERVAL_SEC)
        self.transport.close()

    def reconnect(self) -> None:
        self.transport.close()
        self.connect()

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()

    # ---------------------------------------------------------------------
    # Text
    # ---------------------------------------------------------------------

    def print_text(self, text: str) -> None:
        self.text.print_text(text)

    def print_line(self, text: str) -> None:
        self.text.print_line(text)

    def flush(self) -> None:
        self.text.flush()

    # ---------------------------------------------------------------------
    # Bitmaps
    # ---------------------------------------------------------------------

    def print_rows(self, rows: Sequence[bytes]) -> None:
        self.protocol.transfer_rows(rows)

    def print_image_bytes(self, data: bytes) -> None:
        self.protocol.transfer_image_bytes(data)

    def print_image(self, im: Image.Image, align: str = "center") -> None:
        """Dither ``im`` to the head width and print it."""
        rows = image_to_rows(im, self.profile.row_width, align)
        self.protocol.transfer_rows(rows)

    def print_image_file(self, path: str, align: str = "center") -> None:
        with Image.open(path) as im:
            im.load()
            self.print_image(im, align)

    def print_qr(self, data: str, size: int = DEFAULT_QR_SIZE_PX) -> None:
        self.print_image(make_qr_image(data, size))

    # ---------------------------------------------------------------------
    # Configuration
    # ---------------------------------------------------------------------

    def feed(self, size: int) -> None:
        self.protocol.feed(size)

    def set_concentration(self, level: int, wait: bool = False) -> None:
        self.protocol.set_concentration(level, wait)

    def set_power_timeout(self, minutes: int, wait: bool = False) -> None:
        self.protocol.set_power_timeout(minutes, wait)

    # ---------------------------------------------------------------------
    # Device info
    # ---------------------------------------------------------------------

    def get_name(self) -> str:
        return self.protocol.get_name()

    def get_serial_number(self) -> str:
        return self.protocol.get_serial_number()

    def get_firmware(self) -> str:
        return self.protocol.get_firmware()

    def get_hardware(self) -> str:
        return self.protocol.get_hardware()

    def get_mac(self) -> str:
        return self.protocol.get_mac()

    def get_ip(self) -> str:
        return self.protocol.get_ip()

    def get_battery(self) -> Optional[int]:
        return self.protocol.get_battery()

    def get_full_info(self) -> DeviceInfo:
        return self.protocol.get_full_info()
