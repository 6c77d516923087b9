"""Shared test fixtures for the Barta AI backend."""

import asyncio
from collections.abc import AsyncGenerator, AsyncIterator, Callable, Sequence
from datetime import datetime, timedelta
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from barta.auth.identity import LocalIdentityProvider
from barta.chat.adapter import Content, ConversationAdapter, to_replay_turns
from barta.chat.errors import ErrorChannel
from barta.chat.registry import SessionRegistry
from barta.chat.service import ChatService
from barta.config import Settings
from barta.dependencies import get_chat_service
from barta.main import app
from barta.models.messages import ChatMessage
from barta.models.quota import User
from barta.personality.loader import get_error_messages, get_personality
from barta.quota.store import InMemoryDocumentStore
from barta.storage.local_store import LocalStore
from barta.storage.persistence import PersistenceBridge

TEST_USER = User(uid="user-1", display_name="Test User")


class FakeAdapter(ConversationAdapter):
    """Scripted stand-in for the Gemini adapter.

    ``fragments`` are yielded in order, then ``error`` (if set) is raised.
    With ``gate`` set the stream stops before fragment ``pause_at`` and sets
    ``paused`` until the test opens the gate.
    """

    def __init__(self) -> None:
        self.fragments: list[str] = ["Hello", " there", "!"]
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.paused = asyncio.Event()
        self.pause_at = 0

        self.image_result = "aW1hZ2U="
        self.image_error: Optional[Exception] = None
        self.image_gate: Optional[asyncio.Event] = None
        self.image_paused = asyncio.Event()

        self.fail_binds = 0
        self.binds: list[SimpleNamespace] = []
        self.sent: list[tuple[Any, Content]] = []
        self.image_prompts: list[str] = []
        self.closed = False

    def bind(self, system_instruction: str, replay_history: Sequence[ChatMessage]) -> Any:
        if self.fail_binds:
            self.fail_binds -= 1
            raise RuntimeError("bind refused")
        handle = SimpleNamespace(
            system_instruction=system_instruction,
            replay=to_replay_turns(replay_history),
        )
        self.binds.append(handle)
        return handle

    def send_stream(self, handle: Any, content: Content) -> AsyncIterator[str]:
        self.sent.append((handle, content))
        return self._stream()

    async def _stream(self) -> AsyncIterator[str]:
        for index, fragment in enumerate(self.fragments):
            if self.gate is not None and index == self.pause_at:
                self.paused.set()
                await self.gate.wait()
            yield fragment
        if self.error is not None:
            raise self.error

    async def generate_image(self, prompt: str) -> str:
        self.image_prompts.append(prompt)
        if self.image_gate is not None:
            self.image_paused.set()
            await self.image_gate.wait()
        if self.image_error is not None:
            raise self.image_error
        return self.image_result

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    """Local-time clock the tests can move forward."""

    def __init__(self) -> None:
        self.now = datetime(2026, 10, 19, 10, 30).astimezone()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def personality() -> dict[str, Any]:
    return get_personality()


@pytest.fixture
def error_messages(personality: dict[str, Any]) -> dict[str, str]:
    return get_error_messages(personality)


@pytest.fixture
def storage_path(tmp_path: Path) -> Path:
    return tmp_path / "storage.json"


@pytest.fixture
def local_store(storage_path: Path) -> LocalStore:
    return LocalStore(storage_path)


@pytest.fixture
def test_settings(storage_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        google_api_key="test-key",
        storage_path=storage_path,
        mongodb_uri="",
        daily_image_generation_limit=3,
        local_user_id=TEST_USER.uid,
        local_user_name=TEST_USER.display_name,
    )


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def errors(error_messages: dict[str, str]) -> ErrorChannel:
    return ErrorChannel(error_messages)


@pytest.fixture
def make_registry(
    local_store: LocalStore,
    errors: ErrorChannel,
    adapter: FakeAdapter,
    personality: dict[str, Any],
) -> Callable[..., SessionRegistry]:
    """Build registries sharing one local store (simulates restarts)."""

    def factory(with_adapter: bool = True) -> SessionRegistry:
        return SessionRegistry(
            PersistenceBridge(local_store, personality["default_chat_title"]),
            errors,
            adapter if with_adapter else None,
            personality,
        )

    return factory


@pytest.fixture
def make_service(
    test_settings: Settings,
    local_store: LocalStore,
    document_store: InMemoryDocumentStore,
    adapter: FakeAdapter,
    personality: dict[str, Any],
    clock: FakeClock,
) -> Callable[..., ChatService]:
    """Build (uninitialized) services wired to the fakes."""

    def factory(with_adapter: bool = True, signed_in: bool = True) -> ChatService:
        return ChatService(
            settings=test_settings,
            local_store=local_store,
            document_store=document_store,
            identity=LocalIdentityProvider(TEST_USER, signed_in=signed_in),
            adapter=adapter if with_adapter else None,
            personality=personality,
            clock=clock,
        )

    return factory


@pytest_asyncio.fixture
async def service(make_service: Callable[..., ChatService]) -> AsyncGenerator[ChatService, None]:
    """Initialized chat service with a working remote side and a signed-in user."""
    chat_service = make_service()
    await chat_service.initialize()
    yield chat_service
    await chat_service.close()


@pytest_asyncio.fixture
async def client(service: ChatService) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    app.dependency_overrides[get_chat_service] = lambda: service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
