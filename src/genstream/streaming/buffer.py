"""
Line buffer for genstream.

This module splits decoded text into lines with:
- Partial line carry-over between reads
- Carriage return stripping
- Final flush of an unterminated tail
"""

from typing import List, Optional

from ..utils.logging import get_logger

logger = get_logger("genstream.buffer")


class LineBuffer:
    """Accumulates decoded text and extracts complete lines."""

    def __init__(self, max_line_length: int = 1024 * 1024):
        """
        Initialize line buffer.

        Args:
            max_line_length: Partial line length that triggers a warning.
                Lines are never truncated.
        """
        self.max_line_length = max_line_length
        # Unterminated fragments, joined only once their newline arrives
        self._fragments: List[str] = []
        self._pending_chars = 0
        self._oversize_warned = False

        # Stats
        self._total_chars = 0
        self._total_lines = 0

    @property
    def pending(self) -> str:
        """The retained, not yet terminated, partial line."""
        return "".join(self._fragments)

    @property
    def total_lines(self) -> int:
        """Number of lines emitted so far, including flushed tails."""
        return self._total_lines

    def feed(self, text: str) -> List[str]:
        """
        Append decoded text and return every complete line.

        Args:
            text: Decoded text fragment

        Returns:
            Complete lines, newline and trailing carriage return removed
        """
        if not text:
            return []

        self._total_chars += len(text)
        if "\n" not in text:
            self._fragments.append(text)
            self._pending_chars += len(text)
            self._check_oversize()
            return []

        pieces = text.split("\n")
        pieces[0] = "".join(self._fragments) + pieces[0]
        tail = pieces.pop()
        self._fragments = [tail] if tail else []
        self._pending_chars = len(tail)
        self._oversize_warned = False
        self._check_oversize()

        lines = [piece.rstrip("\r") for piece in pieces]
        self._total_lines += len(lines)
        return lines

    def _check_oversize(self) -> None:
        if self._pending_chars > self.max_line_length and not self._oversize_warned:
            logger.warning(
                "partial_line_too_long",
                length=self._pending_chars,
                max_length=self.max_line_length
            )
            self._oversize_warned = True

    def flush(self) -> Optional[str]:
        """
        Emit the retained tail and clear the buffer.

        Returns:
            The tail as one final line, or None if it was blank
        """
        tail = "".join(self._fragments).rstrip("\r")
        self._fragments = []
        self._pending_chars = 0
        self._oversize_warned = False

        if not tail.strip():
            return None

        self._total_lines += 1
        return tail

    def get_stats(self) -> dict:
        """Get buffer statistics."""
        return {
            "total_chars": self._total_chars,
            "total_lines": self._total_lines,
            "pending_chars": self._pending_chars,
        }


# Export public API
__all__ = ['LineBuffer']
