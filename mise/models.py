"""
Pydantic models for sessions, messages, stream events and request bodies.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Topic(str, Enum):
    CODING = "coding"
    GENERAL = "general"
    MLB = "mlb"
    COOKING = "cooking"
    FITNESS = "fitness"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Topic"]:
        """Return the matching topic, or None for unknown or empty values."""
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: Literal["user", "assistant"]
    content: str
    created_at: datetime
    model: Optional[str] = None
    topic: Optional[Topic] = None


class Session(BaseModel):
    id: str
    messages: List[Message] = Field(default_factory=list)
    topic: Optional[Topic] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class Fragment(BaseModel):
    """One incremental piece of generated text."""

    text: str = ""
    is_final: bool = False


class ChatEvent(BaseModel):
    """A relay event; identical in shape for every transport."""

    type: Literal["started", "chunk", "complete", "error"]
    session_id: Optional[str] = None
    model: Optional[str] = None
    chunk: Optional[str] = None
    done: Optional[bool] = None
    response: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def started(cls, session_id: str, model: str) -> "ChatEvent":
        return cls(type="started", session_id=session_id, model=model)

    @classmethod
    def chunk_of(cls, fragment: Fragment, model: str) -> "ChatEvent":
        return cls(type="chunk", chunk=fragment.text, model=model, done=fragment.is_final)

    @classmethod
    def completed(
        cls,
        session_id: str,
        response: Optional[str] = None,
        model: Optional[str] = None,
    ) -> "ChatEvent":
        return cls(type="complete", session_id=session_id, response=response, model=model)

    @classmethod
    def failed(cls, error: str) -> "ChatEvent":
        return cls(type="error", error=error)

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)


class ChatRequest(BaseModel):
    query: str = Field("", description="User query to route to a model.")
    session_id: str = Field("", description="Conversation session identifier.")
    model: Optional[str] = Field(None, description="Explicit model; skips model selection.")
    stream: bool = True


class ChatResponse(BaseModel):
    response: str
    model: str
    session_id: str


class SessionCreateRequest(BaseModel):
    topic: Optional[str] = None
