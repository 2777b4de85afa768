"""Decoding and classification of claude CLI stream-json output."""

from idebridge.stream.events import EventKind, StreamEvent
from idebridge.stream.parser import StreamJsonParser

__all__ = [
    "EventKind",
    "StreamEvent",
    "StreamJsonParser",
]
