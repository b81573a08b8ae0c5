"""
Byte-level helpers shared by the PeriPage protocol and raster code.

All multi-byte integers on the wire are big-endian and every helper here
returns a fresh ``bytes`` object.
"""

import binascii


class PeripageError(Exception):
    """Base class for errors raised by the driver itself (not the transport)."""


class MalformedInput(PeripageError, ValueError):
    """Input that cannot be decoded, e.g. an odd-length or non-hex string."""


class Overflow(PeripageError, OverflowError):
    """A numeric argument does not fit into its encoded width."""


def hex_to_bytes(text: str) -> bytes:
    """Decode a strict hex string (pairs of digits, nothing else) into bytes."""
    if len(text) % 2:
        raise MalformedInput(f"odd-length hex string: {text!r}")
    try:
        return binascii.unhexlify(text)
    except (binascii.Error, ValueError) as e:
        raise MalformedInput(f"invalid hex string {text!r}: {e}") from e


def bytes_to_hex(data: bytes) -> str:
    return binascii.hexlify(bytes(data)).decode("ascii")


def bytes_to_ascii(data: bytes) -> str:
    """Decode a device response; bytes outside ASCII become U+FFFD."""
    return bytes(data).decode("ascii", errors="replace")


def big_endian(value: int, width: int = 1) -> bytes:
    """
    Encode ``value`` into exactly ``width`` bytes, most significant first.

    Callers clamp arguments before encoding, so an ``Overflow`` here points
    at a programming error rather than bad user input.
    """
    if value < 0:
        raise Overflow(f"cannot encode negative value {value}")
    try:
        return value.to_bytes(width, "big")
    except OverflowError as e:
        raise Overflow(f"value {value} does not fit in {width} byte(s)") from e


def pad_or_truncate(data: bytes, length: int) -> bytes:
    """Right-pad ``data`` with zero bytes, or cut it, to exactly ``length``."""
    data = bytes(data)
    if len(data) < length:
        return data + bytes(length - len(data))
    return data[:length]
