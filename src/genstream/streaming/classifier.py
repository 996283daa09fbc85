"""
Line classifier for genstream.

Maps one decoded line of the generation stream to exactly one
:class:`ClassifiedEvent`. The backend mixes several shapes on the same
stream, so rules are evaluated in a fixed priority order:

1. blank line                          -> IGNORE
2. ``:`` comment containing keepalive  -> KEEPALIVE
3. any other ``:`` comment             -> IGNORE
4. ``data:`` line                      -> COMPLETION / PROGRESS / DELTA / PASSTHROUGH
5. ``event:`` line                     -> IGNORE
6. ``[Agent] <stage> <status> - <msg>`` -> PROGRESS
7. anything else                       -> DELTA / PASSTHROUGH

Classification never raises; malformed payloads degrade to plain-text deltas.
"""

import json
import re
from typing import Any, Callable, List, Optional, Tuple

from .events import ClassifiedEvent
from ..utils.errors import DecodeError
from ..utils.logging import get_logger

logger = get_logger("genstream.classifier")

DONE_MARKER = "[DONE]"
AGENT_PATTERN = re.compile(r"^\[Agent\]\s+(\w+)\s+(\w+)\s+-\s+(.+)$")

Rule = Callable[[str], Optional[ClassifiedEvent]]


def parse_json(text: str) -> Any:
    """Parse a JSON document, raising DecodeError on failure."""
    try:
        return json.loads(text)
    except (ValueError, RecursionError) as e:
        raise DecodeError(f"Invalid JSON: {e}", cause=e) from e


def extract_payload(text: str) -> ClassifiedEvent:
    """
    Turn a payload into a delta or passthrough event.

    Args:
        text: Raw payload (a ``data:`` value or a whole bare line)

    Returns:
        DELTA for ``{"d": str}`` objects, JSON strings, scalars and
        unparseable text; PASSTHROUGH for any other object or array
    """
    try:
        value = parse_json(text)
    except DecodeError:
        logger.debug("payload_not_json", payload=text[:100])
        return ClassifiedEvent.delta(text)

    if isinstance(value, dict) and isinstance(value.get("d"), str):
        return ClassifiedEvent.delta(value["d"])
    if isinstance(value, str):
        return ClassifiedEvent.delta(value)
    if isinstance(value, (dict, list)):
        return ClassifiedEvent.passthrough(value)

    # Numbers, booleans and null are model output that happened to parse
    return ClassifiedEvent.delta(text)


class LineClassifier:
    """Ordered set of line matchers; the first match wins."""

    def __init__(self):
        self.rules: List[Tuple[str, Rule]] = [
            ("blank", self._match_blank),
            ("keepalive", self._match_keepalive),
            ("comment", self._match_comment),
            ("data", self._match_data),
            ("event", self._match_event),
            ("agent", self._match_agent),
        ]

    def classify(self, line: str) -> ClassifiedEvent:
        """
        Classify a single line.

        Args:
            line: Line without its terminating newline

        Returns:
            The event for the first matching rule
        """
        for name, rule in self.rules:
            try:
                event = rule(line)
            except Exception as e:
                logger.error("classifier_rule_error", rule=name, error=str(e), line=line[:100])
                return ClassifiedEvent.delta(line)
            if event is not None:
                return event
        return extract_payload(line)

    __call__ = classify

    @staticmethod
    def _match_blank(line: str) -> Optional[ClassifiedEvent]:
        if not line.strip():
            return ClassifiedEvent.ignore()
        return None

    @staticmethod
    def _match_keepalive(line: str) -> Optional[ClassifiedEvent]:
        if line.startswith(":") and "keepalive" in line:
            return ClassifiedEvent.keepalive()
        return None

    @staticmethod
    def _match_comment(line: str) -> Optional[ClassifiedEvent]:
        if line.startswith(":"):
            return ClassifiedEvent.ignore()
        return None

    @staticmethod
    def _match_data(line: str) -> Optional[ClassifiedEvent]:
        if not line.startswith("data:"):
            return None

        payload = line[5:]
        if payload.startswith(" "):
            payload = payload[1:]

        if payload.strip() == DONE_MARKER:
            return ClassifiedEvent.completion()
        # Progress logs also arrive wrapped in data: lines; never valid JSON
        return LineClassifier._match_agent(payload) or extract_payload(payload)

    @staticmethod
    def _match_event(line: str) -> Optional[ClassifiedEvent]:
        if line.startswith("event:"):
            logger.debug("stream_event_annotation", name=line[6:].strip())
            return ClassifiedEvent.ignore()
        return None

    @staticmethod
    def _match_agent(line: str) -> Optional[ClassifiedEvent]:
        match = AGENT_PATTERN.match(line)
        if match:
            stage, status, message = match.groups()
            return ClassifiedEvent.progress(stage, status, message)
        return None


_default_classifier = LineClassifier()


def classify_line(line: str) -> ClassifiedEvent:
    """Classify a line with the default rule set."""
    return _default_classifier.classify(line)


# Export public API
__all__ = ['LineClassifier', 'classify_line', 'extract_payload', 'parse_json', 'DONE_MARKER']
