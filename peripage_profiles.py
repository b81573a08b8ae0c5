"""
Per-model printing parameters.

The supported PeriPage models only differ by the number of dots on a
printed row, so a model is a small immutable value rather than a class.
"""

from dataclasses import dataclass
from typing import Dict

# Width of one glyph in the printer's built-in ASCII font, in dots
CHARACTER_WIDTH_PX = 12


@dataclass(frozen=True)
class PrinterProfile:
    name: str
    row_width: int

    @property
    def row_bytes(self) -> int:
        """Bytes per image row: one bit per dot, overflow is truncated."""
        return self.row_width // 8

    @property
    def row_characters(self) -> int:
        """Characters of the built-in font that fit on a single row."""
        return self.row_width // CHARACTER_WIDTH_PX


A6 = PrinterProfile("A6", 384)
A6P = PrinterProfile("A6p", 576)
A40 = PrinterProfile("A40", 1728)
A40P = PrinterProfile("A40p", 1848)

PROFILES: Dict[str, PrinterProfile] = {p.name.lower(): p for p in (A6, A6P, A40, A40P)}


def get_profile(name: str) -> PrinterProfile:
    """Look up a model by name, case-insensitively (``"a6+"`` means ``A6p``)."""
    key = name.strip().lower().replace("+", "p")
    try:
        return PROFILES[key]
    except KeyError:
        known = ", ".join(p.name for p in PROFILES.values())
        raise ValueError(f"Unknown printer model {name!r} (known: {known})") from None
