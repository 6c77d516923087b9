"""Streaming reconciler: folds response fragments into the message history.

One exchange per user turn moves through::

    IDLE -> SENDING -> STREAMING -> SETTLED_SUCCESS | SETTLED_ERROR

A send that is refused before anything is written ends in ``REJECTED``.

Fragments are appended to an AI placeholder in arrival order. Each exchange
remembers the session id and binding generation it started under; once the
user switches chats (or starts a new one) the registry's generation moves on
and every later fragment, the finalization and the error overwrite of that
exchange are dropped. The remote stream itself keeps running to completion.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from barta.chat import message_store
from barta.chat.adapter import ConversationAdapter, MessageContent
from barta.chat.errors import ErrorChannel
from barta.chat.exceptions import (
    BartaError,
    EmptyInput,
    ImageGenerationError,
    MissingCredential,
    RemoteCallError,
    SendFailed,
    SessionNotReady,
)
from barta.chat.registry import Binding, SessionRegistry
from barta.models.messages import (
    AI_SUFFIX,
    IMAGE_PROMPT_SUFFIX,
    IMAGE_RESULT_SUFFIX,
    USER_SUFFIX,
    ChatMessage,
    ImageAttachment,
    Sender,
    new_message_id,
)
from barta.models.quota import User
from barta.models.sessions import ChatSession
from barta.personality.loader import get_personality
from barta.quota.tracker import QuotaTracker

logger = logging.getLogger(__name__)

# Called with (placeholder id, fragment) for every fragment written.
FragmentListener = Callable[[str, str], Awaitable[None]]


def local_now() -> datetime:
    return datetime.now().astimezone()


class ExchangeState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    SETTLED_SUCCESS = "settled_success"
    SETTLED_ERROR = "settled_error"
    REJECTED = "rejected"


IN_FLIGHT = (ExchangeState.SENDING, ExchangeState.STREAMING)


class StreamingReconciler:
    """Runs chat and image exchanges against the active session."""

    def __init__(
        self,
        registry: SessionRegistry,
        errors: ErrorChannel,
        adapter: ConversationAdapter | None,
        quota: QuotaTracker,
        personality: dict[str, Any] | None = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self._registry = registry
        self._errors = errors
        self._adapter = adapter
        self._quota = quota
        self._personality = personality if personality is not None else get_personality()
        self._clock = clock
        self._states: dict[str, ExchangeState] = {}
        # Session of the one image generation allowed at a time, if any.
        self._image_session_id: Optional[str] = None

    def state(self, session_id: str) -> ExchangeState:
        return self._states.get(session_id, ExchangeState.IDLE)

    def is_busy(self, session_id: str) -> bool:
        return self.state(session_id) in IN_FLIGHT

    def _reject(self, error: BartaError) -> ExchangeState:
        self._errors.report(error)
        return ExchangeState.REJECTED

    def _settle_if_interrupted(self, session_id: str) -> None:
        # Still in flight only when the awaiting task was cancelled.
        if self.is_busy(session_id):
            logger.warning("Exchange in session %s was cancelled", session_id)
            self._states[session_id] = ExchangeState.IDLE

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def send(
        self,
        text: str,
        image: Optional[ImageAttachment] = None,
        listener: Optional[FragmentListener] = None,
    ) -> ExchangeState:
        """Send one user turn to the active session and stream the answer."""
        text = (text or "").strip()
        if not text and image is not None:
            text = self._personality["image_query_prompt_default"].strip()
        if not text:
            return self._reject(EmptyInput("Nothing to send"))

        session = self._registry.active_session
        if session is None:
            return self._reject(SessionNotReady("No active session"))
        if self.is_busy(session.id):
            logger.info("Send ignored: session %s already has an exchange in flight", session.id)
            return ExchangeState.REJECTED
        if self._adapter is None:
            return self._reject(MissingCredential("GOOGLE_API_KEY is not set"))
        binding = self._registry.binding
        if binding is None or binding.session_id != session.id:
            return self._reject(SessionNotReady(f"Session {session.id} is not bound"))

        self._states[session.id] = ExchangeState.SENDING
        try:
            return await self._stream_exchange(session, binding, text, image, listener)
        finally:
            self._settle_if_interrupted(session.id)

    async def _stream_exchange(
        self,
        session: ChatSession,
        binding: Binding,
        text: str,
        image: Optional[ImageAttachment],
        listener: Optional[FragmentListener],
    ) -> ExchangeState:
        session_id = session.id
        generation = binding.generation
        model = session.model
        self._errors.clear()

        user_message = ChatMessage(
            id=new_message_id(USER_SUFFIX),
            text=text,
            sender=Sender.USER,
            image_url=image.data_uri if image else None,
            is_image_query=image is not None,
        )
        self._registry.mutate(session_id, message_store.append(user_message))

        placeholder_id = new_message_id(AI_SUFFIX)
        self._registry.mutate(
            session_id,
            message_store.append(ChatMessage(id=placeholder_id, text="", sender=Sender.AI)),
        )

        content = MessageContent(text=text, image=image) if image else text
        fragments = 0
        self._states[session_id] = ExchangeState.STREAMING
        try:
            async for fragment in self._adapter.send_stream(binding.handle, content):
                if not self._registry.is_current(session_id, generation):
                    continue
                self._registry.mutate(
                    session_id,
                    message_store.append_fragment(placeholder_id, fragment),
                    persist=False,
                )
                fragments += 1
                if listener is not None:
                    listener = await self._notify(listener, placeholder_id, fragment)
        except Exception as exc:
            if isinstance(exc, RemoteCallError):
                error: RemoteCallError = exc
            else:
                logger.exception("Unexpected failure while streaming to session %s", session_id)
                error = SendFailed(str(exc))
            self._states[session_id] = ExchangeState.SETTLED_ERROR
            self._settle_error(session_id, generation, placeholder_id, model, error)
            return ExchangeState.SETTLED_ERROR

        self._states[session_id] = ExchangeState.SETTLED_SUCCESS
        if self._registry.is_current(session_id, generation):
            self._registry.mutate(session_id, message_store.finalize(placeholder_id, model))
        else:
            logger.info(
                "Stream for session %s finished after a switch; result dropped", session_id
            )
        logger.info("Exchange settled in session %s (%d fragments)", session_id, fragments)
        return ExchangeState.SETTLED_SUCCESS

    async def _notify(
        self, listener: FragmentListener, message_id: str, fragment: str
    ) -> Optional[FragmentListener]:
        try:
            await listener(message_id, fragment)
        except Exception as exc:
            logger.warning("Fragment listener failed, detaching it: %s", exc)
            return None
        return listener

    def _settle_error(
        self,
        session_id: str,
        generation: int,
        placeholder_id: str,
        model,
        error: RemoteCallError,
    ) -> None:
        if not self._registry.is_current(session_id, generation):
            logger.warning("Stale stream for session %s failed: %s", session_id, error)
            return
        text = self._errors.message_for(error)
        self._registry.mutate(
            session_id, message_store.replace_text(placeholder_id, text, model)
        )
        self._errors.report(error)

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def generate_image(self, prompt: str, user: Optional[User]) -> ExchangeState:
        """Generate an image into the active session, counting it against the quota.

        The result is written to the session the request came from even if the
        user switched away meanwhile. Only one generation runs at a time.
        """
        prompt = (prompt or "").strip()
        if not prompt:
            return self._reject(EmptyInput("Empty image prompt"))
        if self._adapter is None:
            return self._reject(MissingCredential("GOOGLE_API_KEY is not set"))

        session = self._registry.active_session
        if session is None:
            return self._reject(SessionNotReady("No active session"))
        if self.is_busy(session.id):
            logger.info("Image request ignored: session %s is busy", session.id)
            return ExchangeState.REJECTED

        if self._image_session_id is not None:
            logger.info(
                "Image request ignored: a generation for session %s is in flight",
                self._image_session_id,
            )
            return ExchangeState.REJECTED

        # The generation is counted before the remote call; a failed one is
        # handed back.
        now = self._clock()
        try:
            self._quota.reserve(user, now)
        except BartaError as exc:
            return self._reject(exc)

        session_id = session.id
        self._states[session_id] = ExchangeState.SENDING
        self._image_session_id = session_id
        produced = False
        try:
            produced = await self._produce_image(session, prompt)
        finally:
            self._image_session_id = None
            if not produced:
                self._quota.release(user)
            self._settle_if_interrupted(session_id)

        if not produced:
            return ExchangeState.SETTLED_ERROR
        try:
            await self._quota.commit(user)
        except Exception:
            logger.exception("Failed to record image generation for %s", user.uid)
        return ExchangeState.SETTLED_SUCCESS

    async def _produce_image(self, session: ChatSession, prompt: str) -> bool:
        """Write the request and its result (or failure) into ``session``."""
        session_id = session.id
        model = session.model
        templates = self._personality["image_generation"]
        self._errors.clear()

        self._registry.mutate(
            session_id,
            message_store.append(
                ChatMessage(
                    id=new_message_id(IMAGE_PROMPT_SUFFIX),
                    text=templates["request_template"].format(prompt=prompt),
                    sender=Sender.USER,
                )
            ),
        )
        placeholder_id = new_message_id(IMAGE_RESULT_SUFFIX)
        self._registry.mutate(
            session_id,
            message_store.append(
                ChatMessage(
                    id=placeholder_id,
                    text=templates["in_progress"],
                    sender=Sender.AI,
                    model_used=model,
                )
            ),
        )

        try:
            image_b64 = await self._adapter.generate_image(prompt)
        except Exception as exc:
            if isinstance(exc, ImageGenerationError):
                error = exc
            else:
                logger.exception("Unexpected failure while generating an image")
                error = ImageGenerationError(str(exc))
            self._states[session_id] = ExchangeState.SETTLED_ERROR
            self._registry.mutate(
                session_id,
                message_store.replace_text(placeholder_id, self._errors.message_for(error)),
            )
            self._errors.report(error)
            return False

        result = ChatMessage(
            id=placeholder_id,
            text=templates["result_template"].format(prompt=prompt),
            sender=Sender.AI,
            generated_image=image_b64,
            model_used=model,
        )
        self._registry.mutate(session_id, message_store.replace(placeholder_id, result))
        self._states[session_id] = ExchangeState.SETTLED_SUCCESS
        return True
