"""Session models for conversation management."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from barta.models.messages import CamelModel, ChatMessage, ModelVariant, ensure_aware


class ChatSession(CamelModel):
    """One persistent conversation thread."""

    id: str
    title: str = ""
    messages: list[ChatMessage] = Field(default_factory=list)
    model: ModelVariant
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    system_instruction: str = ""

    @field_validator("timestamp")
    @classmethod
    def timestamp_is_aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)


class SessionSummary(BaseModel):
    """Summary of a session for list views."""

    session_id: str
    title: str
    model: ModelVariant
    message_count: int = 0
    updated_at: datetime


class SessionListResponse(BaseModel):
    """Response for listing sessions."""

    sessions: list[SessionSummary]
    active_session_id: Optional[str] = None
    total: int


class NewChatRequest(BaseModel):
    model: ModelVariant = ModelVariant.GENERAL


class ModelChangeRequest(BaseModel):
    model: ModelVariant
