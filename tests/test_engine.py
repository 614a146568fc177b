import logging
from urllib.parse import parse_qs, urlparse

import pytest

from src.chat.engine import ChatEngine
from src.chat.models import Message, Role
from src.chat.transport import EventSource, ReadyState
from tests.fakes import FakeResponse, FakeSession, ScriptedEventSource

RELAY_URL = "http://relay/api/chat"


def relay_body(*blocks):
    """SSE body as the relay sends it: guard line first, then upstream bytes."""
    return [b"retry: 100000000\n\n"] + [block.encode("utf-8") for block in blocks]


@pytest.fixture
def sessions():
    """Queue of FakeSessions; each new EventSource takes the next one."""
    return []


@pytest.fixture
def engine(sessions):
    created = []

    def factory(url):
        source = EventSource(url, session=sessions.pop(0), sleep=lambda s: None)
        created.append(source)
        return source

    engine = ChatEngine(RELAY_URL, transport_factory=factory)
    engine.created = created
    return engine


def scripted_engine(*script):
    sources = []

    def factory(url):
        source = ScriptedEventSource(url, script)
        sources.append(source)
        return source

    return ChatEngine(RELAY_URL, transport_factory=factory), sources


# =============================================================================
# END-TO-END SCENARIOS
# =============================================================================

def test_cumulative_answer_and_conversation_id(engine, sessions):
    session = FakeSession(FakeResponse(relay_body(
        'event: message\ndata: {"answer": "Hel"}\n\n',
        'event: message\ndata: {"answer": "Hello"}\n\n',
        'event: message_end\ndata: {"conversation_id": "c1"}\n\n',
    )))
    sessions.append(session)

    engine.ask("hi")

    assert engine.messages == [Message(Role.USER, "hi"), Message(Role.ASSISTANT, "Hello")]
    assert engine.conversation_id == "c1"
    assert not engine.loading
    assert engine.created[0].ready_state == ReadyState.CLOSED

    query = parse_qs(urlparse(session.requests[0]["url"]).query)
    assert query == {"q": ["hi"]}


def test_second_query_carries_conversation_id(engine, sessions):
    sessions.append(FakeSession(FakeResponse(relay_body(
        'data: {"answer": "one"}\n\n',
        'event: message_end\ndata: {"conversation_id": "c1"}\n\n',
    ))))
    second = FakeSession(FakeResponse(relay_body(
        'data: {"answer": "two"}\n\n',
        'event: message_end\ndata: {"conversation_id": "c1"}\n\n',
    )))
    sessions.append(second)

    engine.ask("first")
    engine.ask("second question")

    query = parse_qs(urlparse(second.requests[0]["url"]).query)
    assert query == {"q": ["second question"], "cid": ["c1"]}
    assert [m.content for m in engine.messages] == ["first", "one", "second question", "two"]
    assert engine.conversation_id == "c1"


def test_delta_fragments_with_overlap(engine, sessions):
    sessions.append(FakeSession(FakeResponse(relay_body(
        'data: {"answer": "hello wo"}\n\n',
        'data: {"answer": "world"}\n\n',
        'event: message_replace\ndata: {"answer": "hello world"}\n\n',
        'data: {"answer": "hello"}\n\n',
        'event: message_end\ndata: {}\n\n',
    ))))

    engine.ask("greet")

    assert engine.messages[-1].content == "hello world"
    assert engine.conversation_id is None


def test_malformed_payloads_are_dropped(engine, sessions):
    sessions.append(FakeSession(FakeResponse(relay_body(
        'data: {"answer": "A"}\n\n',
        'data: not json\n\n',
        'data: {"answer": 42}\n\n',
        'data: {"other": "x"}\n\n',
        'data: {"answer": "AB"}\n\n',
        'event: message_end\ndata: {broken\n\n',
    ))))

    engine.ask("q")

    assert engine.messages[-1].content == "AB"
    assert engine.conversation_id is None
    assert not engine.loading


def test_close_without_message_end_after_text_is_completion(engine, sessions, caplog):
    # Upstream body ends after content; the transport falls back to CONNECTING
    sessions.append(FakeSession(FakeResponse(relay_body('data: {"answer": "done"}\n\n'))))

    with caplog.at_level(logging.ERROR):
        engine.ask("q")

    assert engine.messages[-1].content == "done"
    assert not engine.loading
    assert engine.created[0].ready_state == ReadyState.CLOSED
    assert "abnormal" not in caplog.text


def test_close_before_any_text_is_abnormal(engine, sessions, caplog):
    sessions.append(FakeSession(FakeResponse(relay_body())))

    with caplog.at_level(logging.ERROR):
        engine.ask("q")

    assert engine.messages[-1] == Message(Role.ASSISTANT, "")
    assert not engine.loading
    assert "abnormal" in caplog.text


def test_relay_error_event_is_abnormal(engine, sessions, caplog):
    sessions.append(FakeSession(FakeResponse(relay_body(
        'data: {"answer": "partial"}\n\n',
        'event: error\ndata: {"error": "ReadError: connection reset"}\n\n',
    ))))

    with caplog.at_level(logging.ERROR):
        engine.ask("q")

    assert engine.messages[-1].content == "partial"
    assert not engine.loading
    assert "ReadError: connection reset" in caplog.text


def test_relay_rejection_is_abnormal(engine, sessions, caplog):
    sessions.append(FakeSession(FakeResponse([b"Upstream error: 401 bad key"], status_code=502, content_type="text/plain")))

    with caplog.at_level(logging.ERROR):
        engine.ask("q")

    assert not engine.loading
    assert "state=CLOSED" in caplog.text


# =============================================================================
# STATE MACHINE (scripted transport)
# =============================================================================

def test_hard_closed_drop_after_fragment_is_genuine_failure(caplog):
    engine, sources = scripted_engine(
        ("event", "message", '{"answer": "Hel"}'),
        ("error", ReadyState.CLOSED),
    )

    with caplog.at_level(logging.ERROR):
        engine.ask("hi")

    assert engine.messages[-1].content == "Hel"
    assert not engine.loading
    assert sources[0].close_calls == 1
    assert "SSE error (abnormal)" in caplog.text


def test_benign_reconnect_after_fragment(caplog):
    engine, sources = scripted_engine(
        ("event", "message", '{"answer": "Hello"}'),
        ("error", ReadyState.CONNECTING),
    )

    with caplog.at_level(logging.ERROR):
        engine.ask("hi")

    assert engine.messages[-1].content == "Hello"
    assert not engine.loading
    assert caplog.text == ""


def test_message_end_detaches_error_handler():
    engine, sources = scripted_engine(
        ("event", "message", '{"answer": "x"}'),
        ("event", "message_end", '{"conversation_id": "c9"}'),
    )

    session = engine.send("hi")
    sources[0].run()

    assert sources[0].listeners["error"] == []
    # A late error after completion changes nothing
    session.on_error(None)
    assert sources[0].close_calls == 1
    assert engine.conversation_id == "c9"


def test_conversation_id_overwritten_by_later_end():
    engine, _ = scripted_engine(("event", "message_end", '{"conversation_id": "c2"}'))
    engine.conversation_id = "c1"

    engine.ask("hi")

    assert engine.conversation_id == "c2"


def test_second_send_while_streaming_is_rejected():
    engine, sources = scripted_engine(
        ("event", "message", '{"answer": "ok"}'),
        ("event", "message_end", "{}"),
    )

    first = engine.send("one")
    assert engine.loading
    assert engine.send("two") is None

    assert len(sources) == 1
    assert [m.role for m in engine.messages] == [Role.USER, Role.ASSISTANT]

    first.source.run()
    assert not engine.loading
    assert engine.send("two") is not None


def test_blank_query_is_ignored():
    engine, sources = scripted_engine()

    assert engine.send("   ") is None
    assert engine.messages == []
    assert sources == []


def test_on_update_sees_each_step():
    snapshots = []
    engine, _ = scripted_engine(
        ("event", "message", '{"answer": "Hel"}'),
        ("event", "message", '{"answer": "Hello"}'),
        ("event", "message_end", "{}"),
    )
    engine.on_update = lambda e: snapshots.append((e.messages[-1].content, e.loading))

    engine.ask("hi")

    assert snapshots == [("", True), ("Hel", True), ("Hello", True), ("Hello", False)]


def test_raising_update_hook_does_not_leave_engine_busy():
    engine, sources = scripted_engine(
        ("event", "message", '{"answer": "Hel"}'),
        ("event", "message_end", "{}"),
    )

    def hook(e):
        if e.messages[-1].content:
            raise RuntimeError("display failed")

    engine.on_update = hook

    with pytest.raises(RuntimeError, match="display failed"):
        engine.ask("hi")

    assert not engine.loading
    assert sources[0].close_calls == 1
    assert engine.messages[-1].content == "Hel"

    engine.on_update = None
    assert engine.send("again") is not None
