"""Session registry: the single owner of every chat session.

Lifecycle:
    registry = SessionRegistry(persistence, errors, adapter)
    registry.initialize()          # once the auth state has resolved
    registry.mutate(...)           # every write goes through here
    registry.select_session(...)   # rebinds the remote conversation

All writes happen on the event loop thread between awaits, so each
``mutate`` is an atomic read-modify-write. The remote binding carries the
generation it was issued under; every rebind bumps the generation, which lets
in-flight streams notice they belong to a discarded binding.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from barta.chat import message_store
from barta.chat.adapter import ConversationAdapter
from barta.chat.errors import ErrorChannel
from barta.chat.exceptions import InitializationError, MissingCredential
from barta.chat.message_store import MessageTransform
from barta.models.messages import (
    DEFAULT_MODEL_VARIANT,
    WELCOME_SUFFIX,
    ChatMessage,
    ModelVariant,
    Sender,
    new_message_id,
)
from barta.models.sessions import ChatSession, SessionSummary
from barta.personality.loader import get_personality, get_system_instruction
from barta.storage.persistence import PersistenceBridge

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Binding:
    """Remote conversation handle tagged with its session and generation."""

    __slots__ = ("session_id", "generation", "handle")

    def __init__(self, session_id: str, generation: int, handle: Any) -> None:
        self.session_id = session_id
        self.generation = generation
        self.handle = handle


class SessionRegistry:
    """Maps session ids to sessions and tracks the active one."""

    def __init__(
        self,
        persistence: PersistenceBridge,
        errors: ErrorChannel,
        adapter: ConversationAdapter | None = None,
        personality: dict[str, Any] | None = None,
    ) -> None:
        self._persistence = persistence
        self._errors = errors
        # None means no API key: sessions are local-only.
        self._adapter = adapter
        self._personality = personality if personality is not None else get_personality()

        self.sessions: dict[str, ChatSession] = {}
        self.active_id: Optional[str] = None
        self.binding: Optional[Binding] = None
        self.generation = 0
        self.version = 0
        self.initializing = True
        # Fresh session built for an empty store but not yet written.
        self._unsaved_fresh: Optional[ChatSession] = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def default_title(self) -> str:
        return self._personality["default_chat_title"]

    @property
    def active_session(self) -> Optional[ChatSession]:
        if self.active_id is None:
            return None
        return self.sessions.get(self.active_id)

    @property
    def has_remote(self) -> bool:
        return self._adapter is not None

    def is_current(self, session_id: str, generation: int) -> bool:
        """True while ``session_id`` is active under binding ``generation``."""
        return self.active_id == session_id and self.generation == generation

    def list_sessions(self) -> list[SessionSummary]:
        """Session summaries, most recently active first."""
        ordered = sorted(self.sessions.values(), key=lambda s: s.timestamp, reverse=True)
        return [
            SessionSummary(
                session_id=s.id,
                title=s.title or self.default_title,
                model=s.model,
                message_count=len(s.messages),
                updated_at=s.timestamp,
            )
            for s in ordered
        ]

    # ------------------------------------------------------------------
    # Creation and loading
    # ------------------------------------------------------------------

    def create_session(
        self,
        model: ModelVariant,
        id: Optional[str] = None,
        messages: Optional[list[ChatMessage]] = None,
        title: Optional[str] = None,
    ) -> ChatSession:
        """Build (but do not insert) a new session."""
        if messages is None:
            messages = [
                ChatMessage(
                    id=new_message_id(WELCOME_SUFFIX),
                    text=self._personality["welcome_message"].strip(),
                    sender=Sender.AI,
                    model_used=model,
                )
            ]
        return ChatSession(
            id=id or uuid4().hex,
            title=title or self.default_title,
            messages=messages,
            model=model,
            timestamp=_now(),
            system_instruction=get_system_instruction(model, self._personality),
        )

    def load_all(
        self,
        session_id_to_load: Optional[str] = None,
        model: Optional[ModelVariant] = None,
    ) -> tuple[dict[str, ChatSession], str]:
        """Hydrate the registry from durable storage.

        Always leaves exactly one resolvable active session. A corrupt store
        is reported once as ``InitializationError`` and replaced by a fresh
        session.
        """
        model = model or DEFAULT_MODEL_VARIANT
        try:
            sessions, stored_active_id = self._persistence.load()
            active_id = session_id_to_load or stored_active_id

            if active_id not in sessions:
                if sessions and not session_id_to_load:
                    active_id = max(sessions.values(), key=lambda s: s.timestamp).id
                else:
                    fresh = self._fresh_session(model)
                    sessions[fresh.id] = fresh
                    active_id = fresh.id
        except (OSError, ValueError) as exc:
            logger.exception("Failed to load stored chat history")
            self._errors.report(InitializationError(str(exc)))
            fresh = self.create_session(model)
            sessions = {fresh.id: fresh}
            active_id = fresh.id

        self.sessions = sessions
        self.active_id = active_id
        self.version += 1
        return sessions, active_id

    def _fresh_session(self, model: ModelVariant) -> ChatSession:
        # Loading an empty store twice before a flush yields the same session.
        pending = self._unsaved_fresh
        if pending is None or pending.model != model:
            pending = self.create_session(model)
            self._unsaved_fresh = pending
        return pending

    def initialize(
        self,
        session_id_to_load: Optional[str] = None,
        model: Optional[ModelVariant] = None,
    ) -> None:
        """Load stored sessions and bind the active one to the remote side."""
        self.initializing = True
        self._errors.clear()
        try:
            self.load_all(session_id_to_load, model)

            if not self.has_remote:
                self.generation += 1
                self.binding = None
                self._errors.report(MissingCredential("GOOGLE_API_KEY is not set"))
            else:
                self._bind_active(model)
        finally:
            self.initializing = False
        self.flush()

    def _bind_active(self, model: Optional[ModelVariant]) -> None:
        try:
            self._rebind(self.sessions[self.active_id], replay=True)
        except Exception as exc:
            logger.exception("Failed to bind the active session")
            self._errors.report(InitializationError(str(exc)))
            fresh = self.create_session(model or DEFAULT_MODEL_VARIANT)
            self.sessions = {fresh.id: fresh}
            self.active_id = fresh.id
            self.version += 1
            try:
                self._rebind(fresh, replay=False)
            except Exception:
                # The session stays usable for display; sends report SessionNotReady.
                logger.exception("Failed to bind the fallback session")

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _rebind(self, session: ChatSession, replay: bool) -> None:
        """Discard the current handle and bind ``session`` afresh."""
        self.generation += 1
        self.binding = None
        if self._adapter is None:
            return
        history = session.messages if replay else []
        handle = self._adapter.bind(session.system_instruction, history)
        self.binding = Binding(session.id, self.generation, handle)

    def _rebind_reporting(self, session: ChatSession, replay: bool) -> None:
        try:
            self._rebind(session, replay)
        except Exception as exc:
            logger.exception("Failed to rebind session %s", session.id)
            self._errors.report(InitializationError(str(exc)))
            return
        if self.has_remote:
            self._errors.clear()
        else:
            self._errors.report(MissingCredential("GOOGLE_API_KEY is not set"))

    def select_session(self, session_id: str) -> bool:
        """Make ``session_id`` active; returns False when nothing changed."""
        if session_id == self.active_id:
            return False
        session = self.sessions.get(session_id)
        if session is None:
            logger.warning("Cannot select unknown session %s", session_id)
            return False

        self.active_id = session_id
        self.version += 1
        self._rebind_reporting(session, replay=True)
        logger.info("Selected session %s (generation=%d)", session_id, self.generation)
        self.flush()
        return True

    def start_new_chat(self, model: ModelVariant) -> ChatSession:
        session = self.create_session(model)
        self.sessions = {**self.sessions, session.id: session}
        self.active_id = session.id
        self.version += 1
        self._rebind_reporting(session, replay=False)
        logger.info("Started new %s chat %s", model.value, session.id)
        self.flush()
        return session

    def change_model(self, model: ModelVariant) -> Optional[ChatSession]:
        """Start a new chat when ``model`` differs from the active session's."""
        active = self.active_session
        if active is not None and active.model == model:
            return None
        return self.start_new_chat(model)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def mutate(
        self,
        session_id: str,
        transform: MessageTransform,
        title_override: Optional[str] = None,
        persist: bool = True,
    ) -> Optional[ChatSession]:
        """Apply ``transform`` to a session's messages as one atomic step.

        Returns the updated session, or None when ``session_id`` is unknown.
        ``persist=False`` skips the flush for intermediate streaming writes.
        """
        current = self.sessions.get(session_id)
        if current is None:
            logger.debug("Ignoring mutation of unknown session %s", session_id)
            return None

        messages = transform(current.messages)
        title = current.title
        if title_override:
            title = title_override
        elif len(messages) > 1 and current.title == self.default_title:
            text = message_store.first_user_text(messages)
            if text:
                title = message_store.derive_title(text)

        updated = current.model_copy(
            update={"messages": messages, "title": title, "timestamp": _now()}
        )
        self.sessions = {**self.sessions, session_id: updated}
        self.version += 1
        if persist:
            self.flush()
        return updated

    def flush(self) -> None:
        """Write the registry to durable storage once initialization settled."""
        if self.initializing or not self.active_id or not self.sessions:
            return
        try:
            self._persistence.flush(self.sessions, self.active_id)
        except OSError:
            logger.exception("Failed to persist chat history")
            return
        self._unsaved_fresh = None
