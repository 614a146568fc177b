"""
Server-Sent Events Decoding
===========================
Incremental decoder for the `text/event-stream` format.

Bytes arrive in arbitrary chunks (a chunk may end mid-line or mid-event),
so the decoder keeps a line buffer and the fields of the event being built
between calls to `feed()`.

Usage:
    >>> decoder = SSEDecoder()
    >>> events = decoder.feed(b"event: message_end\\ndata: {}\\n\\n")
    >>> events[0].event
    'message_end'
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)

BOM = "\ufeff"
DEFAULT_EVENT = "message"
LINE_END = re.compile(rb"\r\n|\r|\n")


@dataclass
class ServerEvent:
    """One dispatched SSE event."""
    event: str = DEFAULT_EVENT
    data: str = ""
    id: Optional[str] = None


class SSEDecoder:
    """
    Stateful line/event decoder.

    `last_event_id` persists across events (and across reconnects when the
    same decoder is reused), matching the EventSource processing model.
    """

    def __init__(self):
        self._buffer = bytearray()
        self._scan_from = 0
        self._started = False
        self.last_event_id = ""
        self.retry: Optional[int] = None
        self._reset_event()

    def _reset_event(self) -> None:
        self._event_type = ""
        self._data_lines: List[str] = []

    def reset_stream(self) -> None:
        """Drop partial input before a reconnect. `last_event_id` is kept."""
        self._buffer = bytearray()
        self._scan_from = 0
        self._started = False
        self._reset_event()

    # =========================================================================
    # INPUT
    # =========================================================================

    def feed(self, chunk: bytes) -> List[ServerEvent]:
        """Feed raw bytes; return every event completed by this chunk."""
        self._buffer.extend(chunk)
        events = []
        for line in self._split_lines(final=False):
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> None:
        """
        Handle end of stream.

        A trailing unterminated line is processed, but an event that was
        never closed by a blank line is discarded.
        """
        for line in self._split_lines(final=True):
            self._process_line(line)
        self._reset_event()

    def _split_lines(self, final: bool) -> List[str]:
        lines = []
        buf = self._buffer
        start = 0
        pos = self._scan_from
        while True:
            match = LINE_END.search(buf, pos)
            if match is None:
                break
            if match.group() == b"\r" and match.end() == len(buf) and not final:
                # CR at the chunk edge: the LF may be in the next chunk
                break
            lines.append(bytes(buf[start:match.start()]))
            start = pos = match.end()

        if start:
            del buf[:start]
        if final and buf:
            lines.append(bytes(buf))
            buf.clear()
        # Bytes before the last one hold no line break; a held CR is rescanned
        self._scan_from = max(len(buf) - 1, 0)

        decoded = []
        for raw in lines:
            line = raw.decode("utf-8", errors="replace")
            if not self._started:
                self._started = True
                if line.startswith(BOM):
                    line = line[1:]
            decoded.append(line)
        return decoded

    # =========================================================================
    # FIELD PROCESSING
    # =========================================================================

    def _process_line(self, line: str) -> Optional[ServerEvent]:
        if line == "":
            return self._dispatch()

        if line.startswith(":"):
            return None

        if ":" in line:
            field, value = line.split(":", 1)
            if value.startswith(" "):
                value = value[1:]
        else:
            field, value = line, ""

        if field == "event":
            self._event_type = value
        elif field == "data":
            self._data_lines.append(value)
        elif field == "id":
            if "\x00" not in value:
                self.last_event_id = value
        elif field == "retry":
            if value.isascii() and value.isdigit():
                self.retry = int(value)
        else:
            logger.debug(f"Ignoring unknown SSE field: {field!r}")
        return None

    def _dispatch(self) -> Optional[ServerEvent]:
        if not self._data_lines:
            self._reset_event()
            return None

        event = ServerEvent(
            event=self._event_type or DEFAULT_EVENT,
            data="\n".join(self._data_lines),
            id=self.last_event_id or None,
        )
        self._reset_event()
        return event
