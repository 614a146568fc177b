"""Stream Chat client: SSE transport, overlap merging and the chat session engine"""

from .merge import (
    combine,
    collapse_repeated_words,
    find_overlap,
    merge_fragment,
)
from .models import (
    Role,
    Message,
    AnswerPayload,
    MessageEndPayload,
    ErrorPayload,
)
from .sse import SSEDecoder, ServerEvent
from .transport import EventSource, MessageEvent, ReadyState
from .engine import ChatEngine, StreamSession

__all__ = [
    # Merging
    "combine",
    "collapse_repeated_words",
    "find_overlap",
    "merge_fragment",
    # Models
    "Role",
    "Message",
    "AnswerPayload",
    "MessageEndPayload",
    "ErrorPayload",
    # SSE
    "SSEDecoder",
    "ServerEvent",
    # Transport
    "EventSource",
    "MessageEvent",
    "ReadyState",
    # Engine
    "ChatEngine",
    "StreamSession",
]

__version__ = "1.0.0"
