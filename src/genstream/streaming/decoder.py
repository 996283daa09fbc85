"""
Byte-to-event decoding for genstream.

:class:`IncrementalDecoder` turns byte buffers into text without breaking
multi-byte characters that straddle chunk boundaries. :class:`ChunkDecoder`
chains it with :class:`LineBuffer` and the line classifier so a raw chunk
goes in and classified events come out.
"""

import codecs
from typing import List, Optional

from .buffer import LineBuffer
from .classifier import LineClassifier
from .events import ClassifiedEvent


class IncrementalDecoder:
    """Non-fatal incremental text decoder."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    @property
    def has_remainder(self) -> bool:
        """Whether an incomplete multi-byte sequence is held over."""
        buffered, _ = self._decoder.getstate()
        return bool(buffered)

    def decode(self, data: bytes) -> str:
        """Decode a buffer, holding back an incomplete trailing sequence."""
        return self._decoder.decode(data, final=False)

    def finish(self) -> str:
        """Flush the held-over bytes; an incomplete sequence becomes U+FFFD."""
        text = self._decoder.decode(b"", final=True)
        self._decoder.reset()
        return text


class ChunkDecoder:
    """Synchronous bytes -> events pipeline for one stream."""

    def __init__(
        self,
        encoding: str = "utf-8",
        max_line_length: int = 1024 * 1024,
        classifier: Optional[LineClassifier] = None
    ):
        self.decoder = IncrementalDecoder(encoding)
        self.buffer = LineBuffer(max_line_length=max_line_length)
        self.classifier = classifier or LineClassifier()

    def feed(self, chunk: bytes) -> List[ClassifiedEvent]:
        """Decode a chunk and classify every line it completes."""
        lines = self.buffer.feed(self.decoder.decode(chunk))
        return [self.classifier.classify(line) for line in lines]

    def finish(self) -> List[ClassifiedEvent]:
        """Flush decoder and buffer; classify whatever was left over."""
        events = [
            self.classifier.classify(line)
            for line in self.buffer.feed(self.decoder.finish())
        ]
        tail = self.buffer.flush()
        if tail is not None:
            events.append(self.classifier.classify(tail))
        return events


__all__ = ['IncrementalDecoder', 'ChunkDecoder']
