"""Chat service: wires the registry, reconciler, quota tracker and identity.

Lifecycle:
    service = ChatService.from_settings(settings)
    await service.initialize()   # call once at startup
    ...
    await service.close()        # call once at shutdown
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from barta.auth.identity import IdentityProvider, LocalIdentityProvider
from barta.chat.adapter import ConversationAdapter, GeminiConversationAdapter
from barta.chat.errors import ErrorChannel
from barta.chat.exceptions import BartaError, SignInFailed, SignOutFailed
from barta.chat.reconciler import (
    ExchangeState,
    FragmentListener,
    StreamingReconciler,
    local_now,
)
from barta.chat.registry import SessionRegistry
from barta.config import Settings
from barta.models.messages import ImageAttachment, ModelVariant
from barta.models.quota import User
from barta.models.sessions import ChatSession
from barta.personality.loader import get_error_messages, get_personality
from barta.quota.store import DocumentStore, InMemoryDocumentStore, MongoDocumentStore
from barta.quota.tracker import QuotaTracker
from barta.storage.local_store import LocalStore
from barta.storage.persistence import PersistenceBridge
from barta.utils.media_validation import attachment_from_base64

logger = logging.getLogger(__name__)


class ChatService:
    """Single entry point used by the HTTP and WebSocket layers."""

    def __init__(
        self,
        settings: Settings,
        local_store: LocalStore,
        document_store: DocumentStore,
        identity: IdentityProvider,
        adapter: ConversationAdapter | None = None,
        personality: dict[str, Any] | None = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.settings = settings
        self.clock = clock
        personality = personality if personality is not None else get_personality()

        self._adapter = adapter
        self._document_store = document_store
        self.identity = identity
        self.errors = ErrorChannel(get_error_messages(personality))
        self.registry = SessionRegistry(
            PersistenceBridge(local_store, personality["default_chat_title"]),
            self.errors,
            adapter,
            personality,
        )
        self.quota = QuotaTracker(
            document_store,
            settings.user_data_collection,
            settings.daily_image_generation_limit,
        )
        self.reconciler = StreamingReconciler(
            self.registry, self.errors, adapter, self.quota, personality, clock
        )

        self.current_user: Optional[User] = None
        self._unsubscribe_auth: Optional[Callable[[], None]] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._initialized = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChatService":
        """Build the service with the production collaborators."""
        adapter = GeminiConversationAdapter(settings) if settings.has_credential else None
        if settings.mongodb_uri:
            document_store: DocumentStore = MongoDocumentStore(
                settings.mongodb_uri, settings.mongodb_database
            )
        else:
            logger.warning("MONGODB_URI not set - quota records are kept in memory")
            document_store = InMemoryDocumentStore()
        return cls(
            settings=settings,
            local_store=LocalStore(settings.storage_path),
            document_store=document_store,
            identity=LocalIdentityProvider.from_settings(settings),
            adapter=adapter,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def document_store(self) -> DocumentStore:
        return self._document_store

    async def initialize(self) -> None:
        """Resolve the auth state, then load and bind the chat sessions."""
        if self._initialized:
            logger.warning("ChatService already initialized - skipping")
            return

        self._unsubscribe_auth = self.identity.on_auth_state_changed(
            self._on_auth_state_changed
        )
        self.registry.initialize()
        await self._await_quota_refresh()

        self._initialized = True
        logger.info(
            "ChatService initialized (sessions=%d, active=%s, remote=%s)",
            len(self.registry.sessions),
            self.registry.active_id,
            self.registry.has_remote,
        )

    async def close(self) -> None:
        if self._unsubscribe_auth is not None:
            self._unsubscribe_auth()
            self._unsubscribe_auth = None
        if self._adapter is not None:
            await self._adapter.close()
        await self._document_store.close()
        self._initialized = False

    def _on_auth_state_changed(self, user: Optional[User]) -> None:
        previous = self.current_user
        self.current_user = user
        if user is None:
            if previous is not None:
                self.quota.forget(previous.uid)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No event loop to refresh the quota of %s", user.uid)
            return
        self._refresh_task = loop.create_task(self._refresh_quota(user))

    async def _await_quota_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is not None:
            await task

    async def _refresh_quota(self, user: User) -> None:
        try:
            await self.quota.refresh(user)
        except Exception:
            # The cached (or empty) record stays in use until the next login.
            logger.exception("Failed to load quota record for %s", user.uid)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def login(self) -> Optional[User]:
        try:
            user = await self.identity.sign_in()
        except Exception as exc:
            logger.exception("Sign-in failed")
            self.errors.report(SignInFailed(str(exc)))
            return None
        await self._await_quota_refresh()
        return user

    async def logout(self) -> bool:
        try:
            await self.identity.sign_out()
        except Exception as exc:
            logger.exception("Sign-out failed")
            self.errors.report(SignOutFailed(str(exc)))
            return False
        return True

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_new_chat(self, model: ModelVariant) -> ChatSession:
        return self.registry.start_new_chat(model)

    def select_session(self, session_id: str) -> bool:
        return self.registry.select_session(session_id)

    def change_model(self, model: ModelVariant) -> Optional[ChatSession]:
        return self.registry.change_model(model)

    # ------------------------------------------------------------------
    # Exchanges
    # ------------------------------------------------------------------

    def attach_image(self, data: str, content_type: Optional[str]) -> Optional[ImageAttachment]:
        """Validate a base64 upload; reports and returns None when rejected."""
        try:
            return attachment_from_base64(data, content_type, self.settings.max_upload_bytes)
        except BartaError as exc:
            self.errors.report(exc)
            return None

    async def send_message(
        self,
        text: str,
        image: Optional[ImageAttachment] = None,
        listener: Optional[FragmentListener] = None,
    ) -> ExchangeState:
        return await self.reconciler.send(text, image, listener)

    async def generate_image(self, prompt: str) -> ExchangeState:
        return await self.reconciler.generate_image(prompt, self.current_user)
