"""
Byte-stream transports for the printer.

The protocol only needs a duplex stream with a non-blocking read of
whatever bytes are currently buffered. PeriPage printers expose a
Bluetooth Serial Port Profile channel, reachable either as an RFCOMM
socket (Linux), a serial device node (``/dev/rfcomm0``, ``/dev/cu.*``,
``COMx``) or, on dual-mode units, a BLE characteristic.
"""

import abc
import asyncio
import logging
import re
import socket
from typing import Optional

import serial
from bleak import BleakClient
from bleak.exc import BleakError

logger = logging.getLogger(__name__)

DEFAULT_RFCOMM_CHANNEL = 1
DEFAULT_BAUDRATE = 115200
DEFAULT_SERIAL_TIMEOUT_SEC = 2.0
DEFAULT_WRITE_TIMEOUT_SEC = 5.0

# BLE communication constants
DEFAULT_CHUNK_SIZE = 180
DEFAULT_WRITE_DELAY_SEC = 0.02

READ_BUFFER_SIZE = 1024

# MAC format: AA:BB:CC:DD:EE:FF
MAC_PATTERN = re.compile(r"^[0-9A-Fa-f]{2}(:[0-9A-Fa-f]{2}){5}$")
# CoreBluetooth UUID format: XXXXXXXX-XXXX-XXXX-XXXX-XXXXXXXXXXXX
UUID_PATTERN = re.compile(
    r"^[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}$"
)

TRANSPORT_KINDS = ("auto", "rfcomm", "serial", "ble")


class Transport(metaclass=abc.ABCMeta):
    """Duplex byte channel: Disconnected -> connect() -> Ready -> close()."""

    @property
    @abc.abstractmethod
    def is_connected(self) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def connect(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def write(self, data: bytes) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def available_read(self) -> bytes:
        """Return the bytes buffered right now, possibly empty. Never blocks."""
        raise NotImplementedError

    @abc.abstractmethod
    def close(self) -> None:
        raise NotImplementedError

    def _require_connected(self):
        if not self.is_connected:
            raise ConnectionError(f"{type(self).__name__} is not connected")

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class RfcommTransport(Transport):
    """Classic Bluetooth SPP over a Linux RFCOMM socket."""

    def __init__(self, mac: str, channel: int = DEFAULT_RFCOMM_CHANNEL):
        self.mac = mac
        self.channel = channel
        self._sock: Optional[socket.socket] = None

    @property
    def is_connected(self) -> bool:
        return self._sock is not None

    def connect(self) -> None:
        if self._sock is not None:
            raise ConnectionError(f"already connected to {self.mac}")
        if not hasattr(socket, "AF_BLUETOOTH"):
            raise ConnectionError("this Python build has no RFCOMM socket support; use a serial port")
        sock = socket.socket(socket.AF_BLUETOOTH, socket.SOCK_STREAM, socket.BTPROTO_RFCOMM)
        try:
            sock.connect((self.mac, self.channel))
        except OSError as e:
            sock.close()
            raise ConnectionError(f"could not connect to {self.mac}: {e}") from e
        self._sock = sock
        logger.info("RFCOMM connected to %s channel %d", self.mac, self.channel)

    def write(self, data: bytes) -> None:
        self._require_connected()
        self._sock.sendall(data)

    def available_read(self) -> bytes:
        self._require_connected()
        chunks = []
        self._sock.setblocking(False)
        try:
            while True:
                try:
                    chunk = self._sock.recv(READ_BUFFER_SIZE)
                except BlockingIOError:
                    break
                if not chunk:
                    break
                chunks.append(chunk)
        finally:
            self._sock.setblocking(True)
        return b"".join(chunks)

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
            logger.info("RFCOMM disconnected from %s", self.mac)


class SerialTransport(Transport):
    """SPP channel already bound to a serial device node."""

    def __init__(self, port: str, baudrate: int = DEFAULT_BAUDRATE):
        self.port = port
        self.baudrate = baudrate
        self._serial: Optional[serial.Serial] = None

    @property
    def is_connected(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def connect(self) -> None:
        if self.is_connected:
            raise ConnectionError(f"already connected to {self.port}")
        try:
            self._serial = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                timeout=DEFAULT_SERIAL_TIMEOUT_SEC,
                write_timeout=DEFAULT_WRITE_TIMEOUT_SEC,
            )
        except serial.SerialException as e:
            raise ConnectionError(f"could not open {self.port}: {e}") from e
        logger.info("Opened %s at %d baud", self.port, self.baudrate)

    def write(self, data: bytes) -> None:
        self._require_connected()
        try:
            self._serial.write(data)
            self._serial.flush()
        except serial.SerialException as e:
            raise OSError(f"write to {self.port} failed: {e}") from e

    def available_read(self) -> bytes:
        self._require_connected()
        try:
            waiting = self._serial.in_waiting
            return self._serial.read(waiting) if waiting else b""
        except serial.SerialException as e:
            raise OSError(f"read from {self.port} failed: {e}") from e

    def close(self) -> None:
        if self._serial is not None:
            self._serial.close()
            self._serial = None
            logger.info("Closed %s", self.port)


class BleTransport(Transport):
    """
    BLE GATT transport for dual-mode printers.

    bleak is asyncio-only, so the client lives on a private event loop that
    this object drives synchronously. Notifications from ``notify_uuid``
    are buffered until ``available_read`` drains them.
    """

    def __init__(
        self,
        address: str,
        write_uuid: str,
        notify_uuid: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        write_delay: float = DEFAULT_WRITE_DELAY_SEC,
    ):
        if not write_uuid:
            raise ValueError("BLE transport needs a write characteristic UUID")
        self.address = address
        self.write_uuid = write_uuid.strip().lower()
        self.notify_uuid = notify_uuid.strip().lower() if notify_uuid else None
        self.chunk_size = chunk_size
        self.write_delay = write_delay
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._client: Optional[BleakClient] = None
        self._received = bytearray()

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    def _run(self, coro):
        return self._loop.run_until_complete(coro)

    def _on_notify(self, _sender, data: bytearray):
        self._received.extend(data)

    def connect(self) -> None:
        if self.is_connected:
            raise ConnectionError(f"already connected to {self.address}")
        self._loop = asyncio.new_event_loop()
        self._client = BleakClient(self.address)
        try:
            self._run(self._client.connect())
            if self.notify_uuid:
                self._run(self._client.start_notify(self.notify_uuid, self._on_notify))
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            self._shutdown_loop()
            raise ConnectionError(f"could not connect to {self.address}: {e}") from e
        logger.info("BLE connected to %s", self.address)

    async def _write_long(self, data: bytes):
        for i in range(0, len(data), self.chunk_size):
            chunk = data[i : i + self.chunk_size]
            await self._client.write_gatt_char(self.write_uuid, chunk, response=False)
            if self.write_delay:
                await asyncio.sleep(self.write_delay)

    def write(self, data: bytes) -> None:
        self._require_connected()
        self._run(self._write_long(data))

    def available_read(self) -> bytes:
        self._require_connected()
        # Let the loop deliver notifications queued since the last call
        self._run(asyncio.sleep(0))
        data = bytes(self._received)
        self._received.clear()
        return data

    def close(self) -> None:
        if self._client is None:
            return
        try:
            if self._client.is_connected:
                self._run(self._client.disconnect())
        finally:
            self._shutdown_loop()
            logger.info("BLE disconnected from %s", self.address)

    def _shutdown_loop(self):
        self._client = None
        if self._loop is not None:
            self._loop.close()
            self._loop = None


def detect_transport_kind(address: str) -> str:
    """Guess the transport from the address shape."""
    if address.startswith("/dev/") or re.match(r"^COM\d+$", address, re.IGNORECASE):
        return "serial"
    if MAC_PATTERN.match(address):
        return "rfcomm"
    if UUID_PATTERN.match(address):
        return "ble"
    raise ValueError(
        f"Cannot tell the transport for address {address!r}; "
        "expected a MAC, a BLE UUID or a serial device path"
    )


def open_transport(
    address: str,
    kind: str = "auto",
    channel: int = DEFAULT_RFCOMM_CHANNEL,
    baudrate: int = DEFAULT_BAUDRATE,
    write_uuid: str = "",
    notify_uuid: Optional[str] = None,
) -> Transport:
    """Build an unconnected transport for ``address``."""
    if not address:
        raise ValueError("No printer address given")
    if kind not in TRANSPORT_KINDS:
        raise ValueError(f"transport must be one of {TRANSPORT_KINDS}, got {kind!r}")
    if kind == "auto":
        kind = detect_transport_kind(address)

    if kind == "rfcomm":
        return RfcommTransport(address, channel)
    if kind == "serial":
        return SerialTransport(address, baudrate)
    return BleTransport(address, write_uuid, notify_uuid)
