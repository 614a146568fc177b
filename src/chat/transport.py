"""
EventSource Transport
=====================
A blocking, single-threaded counterpart of the browser `EventSource`.

Responsibilities:
    - Open the SSE connection with `requests` (streaming body)
    - Decode events and dispatch them, in order, to registered listeners
    - Track the ready state (CONNECTING / OPEN / CLOSED)
    - Report disconnects as `error` events and reconnect after `retry` ms
      unless a listener closed the source

Listeners run to completion one at a time on the thread that calls `run()`.
"""

import logging
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional

import requests

from .config import DEFAULT_RECONNECT_MS
from .sse import SSEDecoder

logger = logging.getLogger(__name__)


class ReadyState(IntEnum):
    CONNECTING = 0
    OPEN = 1
    CLOSED = 2


@dataclass
class MessageEvent:
    """What listeners receive. `source` is the dispatching EventSource."""
    type: str
    data: Optional[str] = None
    last_event_id: str = ""
    source: Any = None


Listener = Callable[[MessageEvent], None]


class EventSource:
    """
    Usage:
        >>> es = EventSource("http://localhost:8000/api/chat?q=hi")
        >>> es.add_event_listener("message", lambda ev: print(ev.data))
        >>> es.add_event_listener("error", lambda ev: ev.source.close())
        >>> es.run()
    """

    def __init__(
        self,
        url: str,
        session: Optional[requests.Session] = None,
        connect_timeout: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.url = url
        self.ready_state = ReadyState.CONNECTING
        self.reconnect_ms = DEFAULT_RECONNECT_MS
        self._session = session or requests.Session()
        self._connect_timeout = connect_timeout
        self._sleep = sleep
        self._decoder = SSEDecoder()
        self._listeners: Dict[str, List[Listener]] = {}
        self._response: Optional[requests.Response] = None

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def add_event_listener(self, event_type: str, listener: Listener) -> None:
        handlers = self._listeners.setdefault(event_type, [])
        if listener not in handlers:
            handlers.append(listener)

    def remove_event_listener(self, event_type: str, listener: Listener) -> None:
        handlers = self._listeners.get(event_type, [])
        if listener in handlers:
            handlers.remove(listener)

    def _dispatch(self, event: MessageEvent) -> None:
        # Copy: a listener may remove itself or others while dispatching
        for listener in list(self._listeners.get(event.type, [])):
            if self.ready_state == ReadyState.CLOSED and event.type != "error":
                break
            listener(event)

    def _dispatch_error(self) -> None:
        self._dispatch(MessageEvent(type="error", source=self))

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def closed(self) -> bool:
        return self.ready_state == ReadyState.CLOSED

    def close(self) -> None:
        self.ready_state = ReadyState.CLOSED
        if self._response is not None:
            self._response.close()
            self._response = None

    def run(self) -> None:
        """Connect and dispatch until the source is closed."""
        while not self.closed:
            self._connect_and_read()
            if self.closed:
                break

            # Disconnected: announce, then reconnect unless a listener closed us
            self.ready_state = ReadyState.CONNECTING
            self._dispatch_error()
            if self.closed:
                break

            logger.info(f"Reconnecting to {self.url} in {self.reconnect_ms} ms")
            self._sleep(self.reconnect_ms / 1000)
            self._decoder.reset_stream()

    def _connect_and_read(self) -> None:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if self._decoder.last_event_id:
            headers["Last-Event-ID"] = self._decoder.last_event_id

        try:
            response = self._session.get(
                self.url,
                headers=headers,
                stream=True,
                timeout=(self._connect_timeout, None),
            )
        except requests.RequestException as e:
            logger.warning(f"SSE connection to {self.url} failed: {e}")
            return

        content_type = response.headers.get("Content-Type", "")
        if response.status_code != 200 or not content_type.startswith("text/event-stream"):
            logger.warning(
                f"SSE connection rejected: HTTP {response.status_code} ({content_type or 'no content type'})"
            )
            response.close()
            # Fail the connection: no reconnect
            self.ready_state = ReadyState.CLOSED
            self._dispatch_error()
            return

        self._response = response
        self.ready_state = ReadyState.OPEN
        self._dispatch(MessageEvent(type="open", source=self))

        try:
            for chunk in response.iter_content(chunk_size=None):
                if self.closed:
                    return
                events = self._decoder.feed(chunk)
                # retry-only blocks dispatch nothing but still count
                if self._decoder.retry is not None:
                    self.reconnect_ms = self._decoder.retry
                for event in events:
                    self._dispatch(
                        MessageEvent(
                            type=event.event,
                            data=event.data,
                            last_event_id=event.id or "",
                            source=self,
                        )
                    )
                    if self.closed:
                        return
            self._decoder.flush()
        except requests.RequestException as e:
            if not self.closed:
                logger.warning(f"SSE stream from {self.url} interrupted: {e}")
        finally:
            if self._response is not None:
                self._response.close()
                self._response = None
