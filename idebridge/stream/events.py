"""Stream event classification for claude CLI stream-json output.

A decoded record is wrapped in an immutable StreamEvent; everything else in
this module is a pure predicate or extractor over one event. Fields are read
on demand and unknown fields are left untouched in ``event.data``.

Text is taken from ``content_block_delta`` stream events only. With
``--include-partial-messages`` the CLI repeats the same text inside the
complete ``assistant`` message and again in the final ``result``; reading
either of those would duplicate output.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class EventKind(str, Enum):
    """Closed set of semantic event kinds."""

    INIT = "init"
    STREAM_DELTA = "stream_delta"
    STREAM_STOP = "stream_stop"
    RESULT = "result"
    ERROR_SYSTEM = "error_system"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class StreamEvent:
    """One decoded JSON record from the subprocess output."""

    data: dict[str, Any]

    @property
    def type(self) -> Optional[str]:
        return _str_or_none(self.data.get("type"))

    @property
    def subtype(self) -> Optional[str]:
        return _str_or_none(self.data.get("subtype"))

    @property
    def inner(self) -> dict[str, Any]:
        """Nested API event carried by ``stream_event`` records."""
        inner = self.data.get("event")
        return inner if isinstance(inner, dict) else {}

    @property
    def inner_type(self) -> Optional[str]:
        return _str_or_none(self.inner.get("type"))

    @property
    def kind(self) -> EventKind:
        return classify(self)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def is_stream_event(event: StreamEvent) -> bool:
    return event.type == "stream_event"


def is_init(event: StreamEvent) -> bool:
    return event.type == "system" and event.subtype == "init"


def is_error(event: StreamEvent) -> bool:
    return event.type == "system" and event.subtype == "error"


def is_result(event: StreamEvent) -> bool:
    return event.type == "result"


def is_message_end(event: StreamEvent) -> bool:
    """True for the stream event closing one assistant message."""
    return is_stream_event(event) and event.inner_type == "message_stop"


def extract_text_delta(event: StreamEvent) -> Optional[str]:
    """Incremental text of a ``content_block_delta`` stream event, else None."""
    if not is_stream_event(event) or event.inner_type != "content_block_delta":
        return None
    delta = event.inner.get("delta")
    if not isinstance(delta, dict):
        return None
    text = delta.get("text")
    if isinstance(text, str) and text:
        return text
    return None


def extract_cost(event: StreamEvent) -> Optional[float]:
    """Total cost in USD reported by a result record."""
    if not is_result(event):
        return None
    cost = event.get("total_cost_usd")
    if isinstance(cost, bool) or not isinstance(cost, (int, float)):
        return None
    return cost


def extract_model(event: StreamEvent) -> Optional[str]:
    """Model named by a result record.

    Prefers an explicit ``model`` field, then falls back to the first key of
    ``modelUsage``. That fallback relies on the key order of the source
    JSON, which the CLI does not promise, so treat it as best-effort when
    several models were used.
    """
    if not is_result(event):
        return None
    model = event.get("model")
    if isinstance(model, str):
        return model
    usage = event.get("modelUsage")
    if isinstance(usage, dict) and usage:
        return next(iter(usage))
    return None


def extract_error_message(event: StreamEvent) -> str:
    """Message of a system error record as display text."""
    message = event.get("message")
    if isinstance(message, str) and message:
        return message
    if isinstance(message, dict):
        text = message.get("message") or message.get("text")
        if isinstance(text, str) and text:
            return text
    if message not in (None, "", {}):
        return str(message)
    return "Unknown error"


def classify(event: StreamEvent) -> EventKind:
    """Map an event onto its semantic kind."""
    if is_init(event):
        return EventKind.INIT
    if is_error(event):
        return EventKind.ERROR_SYSTEM
    if is_result(event):
        return EventKind.RESULT
    if is_stream_event(event) and event.inner_type == "content_block_delta":
        return EventKind.STREAM_DELTA
    if is_message_end(event):
        return EventKind.STREAM_STOP
    return EventKind.UNCLASSIFIED
