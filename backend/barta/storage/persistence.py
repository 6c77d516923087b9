"""Serialize the session registry to and from the durable local store.

Stored layout (two keys)::

    bartaChatHistory  -> {"<session id>": {"id": ..., "title": ...,
                          "messages": [{"id": ..., "text": ..., "sender": "user",
                                        "timestamp": "2026-10-19T09:30:00Z",
                                        "modelUsed": "general"}, ...],
                          "model": "general", "timestamp": ...,
                          "systemInstruction": ...}, ...}
    bartaActiveChatId -> "<session id>"

Timestamps are written as ISO-8601 strings. On read, ISO strings and epoch
numbers are both turned back into ``datetime`` objects.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from pydantic import TypeAdapter

from barta.chat import message_store
from barta.models.sessions import ChatSession
from barta.storage.local_store import LocalStore

logger = logging.getLogger(__name__)

CHAT_HISTORY_KEY = "bartaChatHistory"
ACTIVE_CHAT_ID_KEY = "bartaActiveChatId"

_sessions_adapter = TypeAdapter(dict[str, ChatSession])


def dump_sessions(sessions: dict[str, ChatSession]) -> str:
    """Serialize the registry mapping to a JSON string."""
    return _sessions_adapter.dump_json(
        sessions, by_alias=True, exclude_none=True
    ).decode("utf-8")


def load_sessions(raw: str, default_title: str) -> dict[str, ChatSession]:
    """Parse a stored registry mapping.

    Raises:
        ValueError: If ``raw`` is not valid JSON or does not match the schema
            (``pydantic.ValidationError`` is a ``ValueError``).
    """
    data = json.loads(raw)
    sessions = _sessions_adapter.validate_python(data)

    for session in sessions.values():
        if not session.title:
            text = message_store.first_user_text(session.messages)
            session.title = (
                text[: message_store.BACKFILL_TITLE_MAX_CHARS] if text else default_title
            )
    return sessions


class PersistenceBridge:
    """Reads and writes the registry through a ``LocalStore``."""

    def __init__(self, store: LocalStore, default_title: str) -> None:
        self._store = store
        self._default_title = default_title

    def load(self) -> tuple[dict[str, ChatSession], Optional[str]]:
        """Return the stored sessions and the stored active id.

        Raises:
            ValueError: If the stored history cannot be parsed.
            OSError: If the store cannot be read.
        """
        raw_history = self._store.get_item(CHAT_HISTORY_KEY)
        active_id = self._store.get_item(ACTIVE_CHAT_ID_KEY)

        sessions: dict[str, ChatSession] = {}
        if raw_history:
            sessions = load_sessions(raw_history, self._default_title)
        logger.info(
            "Loaded %d stored sessions (active=%s)", len(sessions), active_id
        )
        return sessions, active_id

    def flush(self, sessions: dict[str, ChatSession], active_id: str) -> None:
        self._store.set_items(
            {
                CHAT_HISTORY_KEY: dump_sessions(sessions),
                ACTIVE_CHAT_ID_KEY: active_id,
            }
        )
        logger.debug("Flushed %d sessions (active=%s)", len(sessions), active_id)
