"""Streaming decoder components for generation streams."""

from .events import ClassifiedEvent, EventKind
from .classifier import LineClassifier, classify_line
from .buffer import LineBuffer
from .decoder import ChunkDecoder, IncrementalDecoder
from .watchdog import ProbeOutcome, StallWatchdog
from .session import CallbackSink, SessionState, StreamSession, StreamSink
from .aggregator import Message, MessageAggregator

__all__ = [
    "ClassifiedEvent",
    "EventKind",
    "LineClassifier",
    "classify_line",
    "LineBuffer",
    "ChunkDecoder",
    "IncrementalDecoder",
    "ProbeOutcome",
    "StallWatchdog",
    "CallbackSink",
    "SessionState",
    "StreamSession",
    "StreamSink",
    "Message",
    "MessageAggregator",
]
