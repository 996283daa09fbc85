"""
Message aggregation for genstream.

Consumer-side state: one :class:`Message` per generation request, built up
from the events a stream session dispatches. Events for message ids that
are no longer tracked (the UI went away mid-stream) are dropped quietly.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .events import ClassifiedEvent, EventKind
from .session import StreamSink
from ..utils.errors import StreamError
from ..utils.logging import get_logger

logger = get_logger("genstream.aggregator")


@dataclass
class ProgressStep:
    """One ``[Agent]`` progress report."""
    stage: str
    status: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Message:
    """Accumulated state of one generated message."""
    id: str
    content: str = ""
    loading: bool = True
    completed: bool = False
    status: Optional[ProgressStep] = None
    steps: List[ProgressStep] = field(default_factory=list)
    passthrough: List[Any] = field(default_factory=list)
    error: Optional[StreamError] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "loading": self.loading,
            "completed": self.completed,
            "status": (
                {"stage": self.status.stage, "status": self.status.status, "message": self.status.message}
                if self.status else None
            ),
            "steps": len(self.steps),
            "error": self.error.to_dict()["error"] if self.error else None,
        }


def extract_text(payload: Any) -> Optional[str]:
    """Text carried by a recognised structured payload, if any.

    Recognises ``{"choices": [{"delta": {"content": ...}}]}`` and
    ``{"content": ...}``.
    """
    if not isinstance(payload, dict):
        return None

    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            return delta["content"]

    if isinstance(payload.get("content"), str):
        return payload["content"]

    return None


class MessageSink(StreamSink):
    """Feeds one message of an aggregator from a stream session."""

    def __init__(self, aggregator: "MessageAggregator", message_id: str):
        self.aggregator = aggregator
        self.message_id = message_id

    def on_delta(self, text):
        self.aggregator.append_delta(self.message_id, text)

    def on_progress(self, stage, status, message):
        self.aggregator.record_progress(self.message_id, stage, status, message)

    def on_passthrough(self, payload):
        self.aggregator.record_passthrough(self.message_id, payload)

    def on_error(self, error):
        self.aggregator.fail(self.message_id, error)

    def on_complete(self):
        self.aggregator.complete(self.message_id)


class MessageAggregator:
    """Per-message accumulation of deltas and progress."""

    def __init__(self, extract_passthrough_text: bool = True):
        """
        Initialize aggregator.

        Args:
            extract_passthrough_text: Append text found in recognised
                passthrough shapes to the message content
        """
        self.extract_passthrough_text = extract_passthrough_text
        self._messages: Dict[str, Message] = {}

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._messages

    def __len__(self) -> int:
        return len(self._messages)

    def create(self, message_id: Optional[str] = None) -> Message:
        """Start tracking a message in the loading state."""
        message = Message(id=message_id or uuid.uuid4().hex)
        self._messages[message.id] = message
        return message

    def get(self, message_id: str) -> Optional[Message]:
        return self._messages.get(message_id)

    def remove(self, message_id: str) -> None:
        """Stop tracking a message; later events for it are ignored."""
        self._messages.pop(message_id, None)

    def sink_for(self, message_id: str) -> MessageSink:
        """A session sink that feeds ``message_id``."""
        return MessageSink(self, message_id)

    def _lookup(self, message_id: str, operation: str) -> Optional[Message]:
        message = self._messages.get(message_id)
        if message is None:
            logger.debug("unknown_message", message_id=message_id, operation=operation)
        return message

    def apply(self, message_id: str, event: ClassifiedEvent) -> None:
        """Route a classified event to the matching update."""
        if event.kind is EventKind.DELTA:
            self.append_delta(message_id, event.text or "")
        elif event.kind is EventKind.PROGRESS:
            self.record_progress(message_id, event.stage, event.status, event.message)
        elif event.kind is EventKind.PASSTHROUGH:
            self.record_passthrough(message_id, event.payload)
        elif event.kind is EventKind.COMPLETION:
            self.complete(message_id)

    def append_delta(self, message_id: str, text: str) -> None:
        if not text:
            return
        message = self._lookup(message_id, "delta")
        if message is None:
            return
        message.content += text
        message.loading = False

    def record_progress(self, message_id: str, stage: str, status: str, text: str) -> None:
        message = self._lookup(message_id, "progress")
        if message is None:
            return
        step = ProgressStep(stage=stage, status=status, message=text)
        message.steps.append(step)
        message.status = step

    def record_passthrough(self, message_id: str, payload: Any) -> None:
        message = self._lookup(message_id, "passthrough")
        if message is None:
            return
        text = extract_text(payload) if self.extract_passthrough_text else None
        if text is None:
            message.passthrough.append(payload)
            return
        self.append_delta(message_id, text)

    def complete(self, message_id: str) -> None:
        message = self._lookup(message_id, "complete")
        if message is None:
            return
        message.completed = True
        message.loading = False

    def fail(self, message_id: str, error: StreamError) -> None:
        """Record a failure notice; partial content is kept."""
        message = self._lookup(message_id, "fail")
        if message is None:
            return
        message.error = error
        message.loading = False


__all__ = ['ProgressStep', 'Message', 'MessageSink', 'MessageAggregator', 'extract_text']
