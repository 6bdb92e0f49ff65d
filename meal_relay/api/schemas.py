import json
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Literal, Optional

# Inbound keys, in the order the webhook receives them
CHAT_FIELDS = (
    "message",
    "timestamp",
    "user_id",
    "first_name",
    "last_name",
    "email",
    "dietary_preference",
    "allergies",
    "meals_per_day",
    "adults_count",
    "children_count",
    "session_id",
)

TRUTHY = {"1", "true", "yes", "on"}


def as_text(value: Any) -> str:
    """Coerce a loosely-typed inbound value to the string the webhook expects."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str = ""
    timestamp: str = ""
    user_id: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    dietary_preference: str = ""
    allergies: str = ""
    meals_per_day: str = ""
    adults_count: str = ""
    children_count: str = ""
    session_id: str = ""
    stream: bool = False  # Enable SSE streaming response

    @field_validator(*CHAT_FIELDS, mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return as_text(value)

    @field_validator("stream", mode="before")
    @classmethod
    def _coerce_stream(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        return as_text(value).strip().lower() in TRUTHY


class ChatResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    error: str


class StreamEvent(BaseModel):
    """One Server-Sent Event emitted by the relay."""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["connected", "delta", "complete", "error"]
    content: Optional[str] = None
    is_complete: Optional[bool] = Field(default=None, alias="isComplete")

    @classmethod
    def connected(cls) -> "StreamEvent":
        return cls(type="connected")

    @classmethod
    def delta(cls, token: str) -> "StreamEvent":
        return cls(type="delta", content=f"{token} ", is_complete=False)

    @classmethod
    def complete(cls) -> "StreamEvent":
        return cls(type="complete", is_complete=True)

    @classmethod
    def error(cls, message: str) -> "StreamEvent":
        return cls(type="error", content=message, is_complete=True)

    @property
    def is_terminal(self) -> bool:
        return self.type in ("complete", "error")

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json(by_alias=True, exclude_none=True)}\n\n"


class ChatEvent(BaseModel):
    """Lifecycle notification sent by the chat page (entering chat, sending a message)."""
    model_config = ConfigDict(extra="ignore")

    event: Literal["user_entered_chat", "message_sent"]
    user_id: str = ""
    message: str = ""
    triggered_from: str = ""
    timestamp: str = ""

    @field_validator("user_id", "message", "triggered_from", "timestamp", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return as_text(value)
