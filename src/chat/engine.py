"""
Incremental Merge Engine
========================
Client side of the relay: sends one query at a time, folds streamed answer
fragments into the last assistant message and tracks the stream lifecycle.

Session lifecycle:
    Idle -> Streaming             send()
    Streaming -> Streaming        message / message_replace with an answer
    Streaming -> Completed        message_end
    Streaming -> Aborted          error (benign when the stream already
                                  produced text and the transport is only
                                  trying to reconnect; genuine otherwise)

The engine is the only writer of the transcript. Presentation code reads
`messages`, `loading` and `conversation_id`, optionally via `on_update`.
"""

import logging
from typing import Callable, List, Optional
from urllib.parse import urlencode

from pydantic import ValidationError

from .config import DEFAULT_RELAY_URL, MAX_OVERLAP_SCAN
from .merge import merge_fragment
from .models import AnswerPayload, ErrorPayload, Message, MessageEndPayload, Role
from .transport import EventSource, MessageEvent, ReadyState

logger = logging.getLogger(__name__)

ANSWER_EVENTS = ("message", "message_replace")


class StreamSession:
    """
    One outstanding query and its connection.

    `ended` is set once the stream is known to be finished (explicitly or
    by the benign reconnect path). `saw_fragment` is set by the first
    answer fragment applied.
    """

    def __init__(self, engine: "ChatEngine", source: EventSource):
        self.engine = engine
        self.source = source
        self.ended = False
        self.saw_fragment = False

        for event_type in ANSWER_EVENTS:
            source.add_event_listener(event_type, self.on_answer)
        source.add_event_listener("message_end", self.on_message_end)
        source.add_event_listener("error", self.on_error)

    def on_answer(self, event: MessageEvent) -> None:
        try:
            payload = AnswerPayload.model_validate_json(event.data or "")
        except ValidationError:
            logger.debug(f"Dropping malformed {event.type} event: {event.data!r}")
            return
        self.saw_fragment = True
        self.engine.apply_partial(payload.answer)

    def on_message_end(self, event: MessageEvent) -> None:
        try:
            payload = MessageEndPayload.model_validate_json(event.data or "")
            if payload.conversation_id:
                self.engine.conversation_id = payload.conversation_id
        except ValidationError:
            logger.debug(f"Unreadable message_end payload: {event.data!r}")

        self.ended = True
        self.source.remove_event_listener("error", self.on_error)
        self._finish()

    def on_error(self, event: MessageEvent) -> None:
        if self.ended:
            return

        state = self.source.ready_state

        # Upstream closed after answering but without message_end
        if self.saw_fragment and state == ReadyState.CONNECTING:
            self.ended = True
            self._finish()
            return

        detail = None
        if event.data:
            try:
                detail = ErrorPayload.model_validate_json(event.data).error
            except ValidationError:
                detail = event.data
        logger.error(
            f"SSE error (abnormal): state={state.name} had_chunk={self.saw_fragment}"
            + (f" error={detail}" if detail else "")
        )
        self._finish()

    def _finish(self) -> None:
        self.source.close()
        self.engine.end_session(self)


class ChatEngine:
    """
    Usage:
        >>> engine = ChatEngine("http://localhost:8000/api/chat")
        >>> engine.ask("What is SSE?")
        >>> engine.messages[-1].content
    """

    def __init__(
        self,
        relay_url: str = DEFAULT_RELAY_URL,
        transport_factory: Callable[[str], EventSource] = EventSource,
        on_update: Optional[Callable[["ChatEngine"], None]] = None,
        max_overlap_scan: int = MAX_OVERLAP_SCAN,
    ):
        self.relay_url = relay_url
        self.transport_factory = transport_factory
        self.on_update = on_update
        self.max_overlap_scan = max_overlap_scan

        self.messages: List[Message] = []
        self.conversation_id: Optional[str] = None
        self.session: Optional[StreamSession] = None

    @property
    def loading(self) -> bool:
        return self.session is not None

    def build_url(self, query: str) -> str:
        params = {"q": query}
        if self.conversation_id:
            params["cid"] = self.conversation_id
        return f"{self.relay_url}?{urlencode(params)}"

    # =========================================================================
    # SENDING
    # =========================================================================

    def send(self, text: str) -> Optional[StreamSession]:
        """
        Start a streaming turn. Returns the new session, or None when the
        text is blank or another turn is still streaming.
        """
        text = text.strip()
        if not text:
            return None
        if self.loading:
            logger.warning("Query rejected: a response is still streaming")
            return None

        self.messages.append(Message(Role.USER, text))
        self.messages.append(Message(Role.ASSISTANT, ""))

        source = self.transport_factory(self.build_url(text))
        self.session = StreamSession(self, source)
        self._notify()
        return self.session

    def ask(self, text: str) -> Optional[Message]:
        """Send a query and block until its stream has finished."""
        session = self.send(text)
        if session is None:
            return None
        try:
            session.source.run()
        finally:
            # Still set when a listener raised or the caller interrupted run()
            if self.session is session:
                self.abort()
        return self.messages[-1]

    def abort(self) -> None:
        """Drop the outstanding stream, keeping whatever text it produced."""
        session = self.session
        if session is None:
            return
        session.ended = True
        session.source.close()
        self.session = None

    # =========================================================================
    # STREAM CALLBACKS
    # =========================================================================

    def apply_partial(self, partial: str) -> None:
        if not self.messages:
            return
        last = self.messages[-1]
        if last.role != Role.ASSISTANT:
            return
        last.content = merge_fragment(last.content, partial, self.max_overlap_scan)
        self._notify()

    def end_session(self, session: StreamSession) -> None:
        if self.session is session:
            self.session = None
            self._notify()

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update(self)
