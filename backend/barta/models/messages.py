"""Message models for chat history and WebSocket communication."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Reserved id suffixes. The welcome suffix marks the synthetic greeting that is
# never replayed to the remote conversation.
WELCOME_SUFFIX = "_ai_welcome"
USER_SUFFIX = "_user"
AI_SUFFIX = "_ai"
IMAGE_PROMPT_SUFFIX = "_user_img_prompt"
IMAGE_RESULT_SUFFIX = "_ai_img_gen"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive timestamps read back from storage as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_message_id(suffix: str) -> str:
    """Return a session-unique message id ending with ``suffix``."""
    return f"{uuid4().hex}{suffix}"


class Sender(str, Enum):
    """Message author."""

    USER = "user"
    AI = "ai"


class ModelVariant(str, Enum):
    """Closed set of assistant flavours; each maps to one system instruction."""

    GENERAL = "general"
    CODING = "coding"


DEFAULT_MODEL_VARIANT = ModelVariant.GENERAL


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys for the local store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ChatMessage(CamelModel):
    """One entry of a session's history."""

    id: str = Field(default_factory=lambda: new_message_id(USER_SUFFIX))
    text: str = ""
    sender: Sender
    timestamp: datetime = Field(default_factory=_utcnow)
    image_url: Optional[str] = None  # data URI of an uploaded image
    is_image_query: Optional[bool] = None
    generated_image: Optional[str] = None  # base64 payload
    model_used: Optional[ModelVariant] = None

    @field_validator("timestamp")
    @classmethod
    def timestamp_is_aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @property
    def is_welcome(self) -> bool:
        return self.id.endswith(WELCOME_SUFFIX)


class ImageAttachment(BaseModel):
    """An uploaded image, validated and base64-encoded."""

    mime_type: str
    data: str

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class OutgoingMessage(BaseModel):
    """Message sent to client via WebSocket."""

    type: str
    content: Optional[str] = None
    session_id: Optional[str] = None
    message_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
