"""Pure operations over a session's ordered message list.

Every function returns a new list and never mutates its input, so they can be
passed straight to ``SessionRegistry.mutate`` as message transforms.
Operations addressing a message by id leave the list unchanged when the id is
absent; a removed placeholder is never brought back.
"""

from __future__ import annotations

from typing import Callable, Optional

from barta.models.messages import ChatMessage, ModelVariant, Sender

MessageTransform = Callable[[list[ChatMessage]], list[ChatMessage]]

TITLE_MAX_CHARS = 35
TITLE_ELLIPSIS = "..."
BACKFILL_TITLE_MAX_CHARS = 30


def append(message: ChatMessage) -> MessageTransform:
    def transform(messages: list[ChatMessage]) -> list[ChatMessage]:
        return [*messages, message]

    return transform


def _update(message_id: str, **changes) -> MessageTransform:
    def transform(messages: list[ChatMessage]) -> list[ChatMessage]:
        return [
            msg.model_copy(update=changes) if msg.id == message_id else msg
            for msg in messages
        ]

    return transform


def append_fragment(message_id: str, fragment: str) -> MessageTransform:
    """Append ``fragment`` to the text of the in-flight message ``message_id``."""

    def transform(messages: list[ChatMessage]) -> list[ChatMessage]:
        return [
            msg.model_copy(update={"text": msg.text + fragment})
            if msg.id == message_id
            else msg
            for msg in messages
        ]

    return transform


def finalize(message_id: str, model: ModelVariant) -> MessageTransform:
    """Stamp the model variant on a completed AI message."""
    return _update(message_id, model_used=model)


def replace_text(
    message_id: str, text: str, model: Optional[ModelVariant] = None
) -> MessageTransform:
    """Overwrite the text of ``message_id``, discarding what was accumulated."""
    changes: dict = {"text": text}
    if model is not None:
        changes["model_used"] = model
    return _update(message_id, **changes)


def replace(message_id: str, message: ChatMessage) -> MessageTransform:
    def transform(messages: list[ChatMessage]) -> list[ChatMessage]:
        return [message if msg.id == message_id else msg for msg in messages]

    return transform


def find(messages: list[ChatMessage], message_id: str) -> Optional[ChatMessage]:
    return next((msg for msg in messages if msg.id == message_id), None)


def first_user_text(messages: list[ChatMessage]) -> Optional[str]:
    first = next(
        (msg for msg in messages if msg.sender == Sender.USER and msg.text), None
    )
    return first.text if first else None


def derive_title(text: str) -> str:
    """Title from a user message: 35 characters, ``...`` when truncated."""
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + TITLE_ELLIPSIS
    return text
