"""Classified stream events."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class EventKind(Enum):
    """Kinds of event a stream line can map to."""
    KEEPALIVE = "keepalive"
    DELTA = "delta"
    PROGRESS = "progress"
    COMPLETION = "completion"
    PASSTHROUGH = "passthrough"
    IGNORE = "ignore"


@dataclass(frozen=True)
class ClassifiedEvent:
    """One line of the stream after classification.

    Only the fields relevant to ``kind`` are set: ``text`` for deltas,
    ``stage``/``status``/``message`` for progress, ``payload`` for passthrough.
    """
    kind: EventKind
    text: Optional[str] = None
    stage: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None
    payload: Any = None

    @classmethod
    def keepalive(cls) -> "ClassifiedEvent":
        return cls(EventKind.KEEPALIVE)

    @classmethod
    def delta(cls, text: str) -> "ClassifiedEvent":
        return cls(EventKind.DELTA, text=text)

    @classmethod
    def progress(cls, stage: str, status: str, message: str) -> "ClassifiedEvent":
        return cls(EventKind.PROGRESS, stage=stage, status=status, message=message)

    @classmethod
    def completion(cls) -> "ClassifiedEvent":
        return cls(EventKind.COMPLETION)

    @classmethod
    def passthrough(cls, payload: Any) -> "ClassifiedEvent":
        return cls(EventKind.PASSTHROUGH, payload=payload)

    @classmethod
    def ignore(cls) -> "ClassifiedEvent":
        return cls(EventKind.IGNORE)

    @property
    def has_content(self) -> bool:
        """Whether the event carries something a consumer can show."""
        if self.kind is EventKind.DELTA:
            return bool(self.text)
        return self.kind in (EventKind.PROGRESS, EventKind.PASSTHROUGH)
