"""Line framer for claude CLI ``--output-format stream-json`` output.

The subprocess writes one JSON object per line, but the bytes arrive in
arbitrary chunks and, when launched through a shell or PTY, mixed with ANSI
control sequences, prompts and echoed commands.
"""

import codecs
import json
import re
from dataclasses import dataclass, field
from typing import Optional, Union
import structlog

from idebridge.stream.events import StreamEvent

log = structlog.get_logger()

# CSI-style sequences: ESC or C1 CSI, optional parameters, one final byte
ANSI_PATTERN = re.compile(
    r"[\x1b\x9b][\[()#;?]*(?:[0-9]{1,4}(?:;[0-9]{0,4})*)?[0-9A-ORZcf-nqry=><]"
)

LINE_BREAK = re.compile(r"\r?\n")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from text."""
    return ANSI_PATTERN.sub("", text)


def decode_line(line: str) -> Optional[StreamEvent]:
    """Decode one complete line, or None if it is not a JSON object."""
    clean = strip_ansi(line).strip()
    if not clean.startswith("{"):
        return None
    try:
        data = json.loads(clean)
    except json.JSONDecodeError:
        log.debug("stream_line_not_json", line=clean[:100])
        return None
    if not isinstance(data, dict):
        return None
    return StreamEvent(data)


def _utf8_decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


@dataclass
class StreamJsonParser:
    """Turns successive output chunks into decoded stream events.

    Usage:
        parser = StreamJsonParser()
        for chunk in output:
            for event in parser.feed(chunk):
                handle(event)

    One parser belongs to one logical stream; calls to ``feed`` must not
    interleave across producers.
    """

    _buffer: str = ""
    _decoder: codecs.IncrementalDecoder = field(default_factory=_utf8_decoder, repr=False)

    @property
    def buffer(self) -> str:
        """Pending partial line (never contains a line terminator)."""
        return self._buffer

    def feed(self, chunk: Union[str, bytes]) -> list[StreamEvent]:
        """Add a chunk and return events for every line it completes.

        Args:
            chunk: Next piece of output; bytes are decoded as UTF-8 with
                multi-byte characters allowed to straddle chunks

        Returns:
            Events in stream order
        """
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)

        lines = LINE_BREAK.split(self._buffer + chunk)
        # The last piece has not seen its terminator yet
        self._buffer = lines.pop()

        events: list[StreamEvent] = []
        for line in lines:
            event = decode_line(line)
            if event is not None:
                events.append(event)
        return events

    def reset(self):
        """Drop any pending partial line."""
        self._buffer = ""
        self._decoder = _utf8_decoder()
