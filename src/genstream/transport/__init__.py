"""Byte sources for generation streams."""

from .base import ByteStreamSource, IterableSource, SourceState
from .http import HttpLivenessProbe, HttpStreamSource

__all__ = [
    "ByteStreamSource",
    "IterableSource",
    "SourceState",
    "HttpLivenessProbe",
    "HttpStreamSource",
]
