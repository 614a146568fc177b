"""Transcript and event payload models."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    role: Role
    content: str = ""


# =============================================================================
# EVENT PAYLOADS
# =============================================================================

class AnswerPayload(BaseModel):
    """Body of `message` / `message_replace` events."""
    answer: str


class MessageEndPayload(BaseModel):
    """Body of `message_end` events."""
    conversation_id: Optional[str] = None


class ErrorPayload(BaseModel):
    """Body of the relay-injected `error` event."""
    error: str
