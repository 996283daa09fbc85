"""
genstream - Incremental decoding of AI generation streams.

This package turns a long-lived, arbitrarily chunked HTTP response that
mixes heartbeat comments, tagged JSON payloads, bare JSON, free text and
agent progress logs into ordered content deltas and control signals:
- Chunk-safe UTF-8 decoding and line buffering
- Ordered line classification
- Stall monitoring with liveness probes
- Exactly-once completion signalling
- Per-message aggregation
"""

__version__ = "0.1.0"

from .streaming import (
    ChunkDecoder,
    ClassifiedEvent,
    EventKind,
    CallbackSink,
    MessageAggregator,
    SessionState,
    StreamSession,
    StreamSink,
    classify_line,
)
from .transport import HttpStreamSource, IterableSource

__all__ = [
    "ChunkDecoder",
    "ClassifiedEvent",
    "EventKind",
    "CallbackSink",
    "MessageAggregator",
    "SessionState",
    "StreamSession",
    "StreamSink",
    "classify_line",
    "HttpStreamSource",
    "IterableSource",
]
