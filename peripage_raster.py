"""
Image -> printer row conversion.

The printer takes 1 bit per dot, 8 horizontally adjacent dots per byte
(most significant bit on the left), where a 1-bit burns a dot ("mark")
and a 0-bit leaves the paper blank. Every row is exactly as wide as the
printer's head, so narrower images are padded with blank dots.
"""

import logging
from typing import List

import qrcode
from PIL import Image, ImageOps
from qrcode.image.pil import PilImage

logger = logging.getLogger(__name__)

ALIGNMENTS = ("center", "left", "right")

DEFAULT_QR_SIZE_PX = 500
QR_BOX_SIZE_PX = 10
QR_BORDER_MODULES = 4


def flatten_alpha(im: Image.Image) -> Image.Image:
    """Composite transparent images onto white so transparency prints blank."""
    if im.mode in ("RGBA", "LA", "PA") or "transparency" in im.info:
        rgba = im.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        return Image.alpha_composite(background, rgba).convert("RGB")
    return im


def resize_to_width(im: Image.Image, width: int) -> Image.Image:
    """Shrink ``im`` to at most ``width`` pixels wide, keeping the aspect ratio."""
    new_width = min(im.width, width)
    if new_width == im.width:
        return im
    new_height = max(1, int(new_width / im.width * im.height))
    return im.resize((new_width, new_height), Image.Resampling.BILINEAR)


def dither(im: Image.Image) -> Image.Image:
    """
    Reduce to a 1-bit image with Floyd-Steinberg error diffusion.
    Returns mode '1' where 0 = black and 255 = white, like Pillow does.
    """
    return im.convert("L").convert("1", dither=Image.Dither.FLOYDSTEINBERG)


def invert(im: Image.Image) -> Image.Image:
    """Swap polarity so dark source pixels become set bits."""
    inverted = ImageOps.invert(im.convert("L"))
    return inverted.convert("1", dither=Image.Dither.NONE)


def pad_to_width(im: Image.Image, width: int, align: str = "center") -> Image.Image:
    """Place ``im`` on a blank (0-bit) canvas exactly ``width`` pixels wide."""
    if align not in ALIGNMENTS:
        raise ValueError(f"align must be one of {ALIGNMENTS}, got {align!r}")

    if align == "left":
        offset = 0
    elif align == "right":
        offset = width - im.width
    else:
        offset = (width - im.width) // 2

    canvas = Image.new("1", (width, im.height), 0)
    canvas.paste(im, (offset, 0))
    return canvas


def prepare_image(im: Image.Image, width: int, align: str = "center") -> Image.Image:
    """
    Run the whole pipeline: resize, grayscale, dither, invert, pad.

    The result is a mode '1' image exactly ``width`` pixels wide in device
    polarity (set bit = burnt dot).
    """
    im = flatten_alpha(im)
    im = resize_to_width(im, width)
    im = dither(im)
    im = invert(im)
    return pad_to_width(im, width, align)


def split_rows(data: bytes, stride: int) -> List[bytes]:
    """Cut a packed bitmap into rows of ``stride`` bytes; the last row is zero-padded."""
    if stride <= 0:
        raise ValueError("stride must be positive")

    rows = []
    for i in range(0, len(data), stride):
        row = bytes(data[i : i + stride])
        if len(row) < stride:
            row += bytes(stride - len(row))
        rows.append(row)
    return rows


def image_to_rows(im: Image.Image, width: int, align: str = "center") -> List[bytes]:
    """
    Convert any Pillow image into printer rows for a head ``width`` dots wide.

    The canvas is cut down to whole bytes, so every row is exactly
    ``width // 8`` bytes; dots past the last full byte are never printed.
    """
    stride = width // 8
    if stride <= 0:
        raise ValueError(f"row width must be at least 8 dots, got {width}")
    prepared = prepare_image(im, stride * 8, align)
    rows = split_rows(prepared.tobytes(), stride)
    logger.debug(
        "Rasterized %dx%d image into %d rows of %d bytes",
        im.width, im.height, len(rows), stride,
    )
    return rows


def make_qr_image(data: str, size: int = DEFAULT_QR_SIZE_PX) -> Image.Image:
    """Render ``data`` as a square QR symbol ``size`` pixels wide."""
    if not data:
        raise ValueError("QR code data must not be empty")

    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=QR_BOX_SIZE_PX,
        border=QR_BORDER_MODULES,
        image_factory=PilImage,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white").get_image()
    # Nearest neighbour keeps module edges sharp
    return img.convert("L").resize((size, size), Image.Resampling.NEAREST)
