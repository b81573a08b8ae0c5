"""
Wrapped ASCII printing through the printer's built-in font.

The printer keeps its own line buffer and offers no way to inspect it.
``TextBuffer`` mirrors that buffer: a line shorter than a full row is held
back in ``pending`` until more text completes it or it is flushed, so what
the printer has buffered and what we think it has buffered never diverge.
"""

import logging
import time
import unicodedata

from peripage_protocol import SETTLE_INTERVAL_SEC

logger = logging.getLogger(__name__)

# Paper advance used instead of an empty line. Two newlines in a row
# freeze the printer, so blank lines are never sent as text.
BLANK_LINE_FEED = 30

PRINTABLE_MIN = 0x20
PRINTABLE_MAX = 0x7E


def filter_ascii(text: str) -> str:
    """
    Keep newlines and printable 7-bit ASCII, drop everything else.
    Accented letters survive as their base letter (``"é"`` -> ``"e"``).
    """
    text = unicodedata.normalize("NFD", text)
    return "".join(
        ch for ch in text if ch == "\n" or PRINTABLE_MIN <= ord(ch) <= PRINTABLE_MAX
    )


class TextBuffer:
    """Line-wrapping engine that keeps one partial line between calls."""

    def __init__(self, protocol, row_characters: int):
        if row_characters <= 0:
            raise ValueError("row_characters must be positive")
        self.protocol = protocol
        self.row_characters = row_characters
        self.pending = ""

    def print_text(self, text: str) -> None:
        """
        Print ``text``, wrapping it at ``row_characters``.

        Each newline-separated segment does exactly one thing: if a partial
        row is pending it is sent and the segment itself is used up doing
        so; otherwise a blank segment becomes a paper feed; otherwise the
        segment is wrapped, full rows go out immediately and the short
        remainder is kept in ``pending``.

        Because of the first rule, multi-line text should be fed through
        ``print_line`` one line at a time.
        """
        text = self.pending + filter_ascii(text)
        self.pending = ""
        if not text:
            return

        if text.isspace():
            for _ in range(text.count("\n")):
                self._feed_blank_line()
            return

        for segment in text.split("\n"):
            if self.pending:
                self.flush()
            elif not segment.strip():
                self._feed_blank_line()
            else:
                self._wrap(segment)

    def print_line(self, text: str) -> None:
        self.print_text(text + "\n")

    def flush(self) -> None:
        """Send the pending partial line, if any."""
        if self.pending:
            self._send_line(self.pending)
            self.pending = ""

    def _wrap(self, line: str) -> None:
        """Send every full row of ``line`` and keep the remainder pending."""
        width = self.row_characters
        for i in range(0, len(line), width):
            part = line[i : i + width]
            if len(part) == width:
                self._send_line(part)
            else:
                self.pending = part

    def _send_line(self, line: str) -> None:
        logger.debug("Printing line %r", line)
        self.protocol.write_line(line)
        time.sleep(SETTLE_INTERVAL_SEC)

    def _feed_blank_line(self) -> None:
        self.protocol.feed(BLANK_LINE_FEED)
        time.sleep(SETTLE_INTERVAL_SEC)
