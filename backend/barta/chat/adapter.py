"""Remote conversation adapter for Google Gemini.

A ``ConversationHandle`` is one remote conversation: the system instruction,
the replayed turns and everything exchanged since. Handles are built by
``bind`` and discarded on every rebind; nothing else mutates them.

Text goes through LangChain's ``ChatGoogleGenerativeAI`` streaming API. Image
generation calls the Imagen ``:predict`` REST endpoint directly with the API
key, the same way the speech services are reached.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Literal, Sequence, Union

import httpx
from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    HumanMessage,
    SystemMessage,
)
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import BaseModel

from barta.chat.exceptions import (
    ImageGenerationError,
    InvalidCredential,
    RemoteCallError,
    SendFailed,
)
from barta.config import Settings
from barta.models.messages import ChatMessage, ImageAttachment, Sender

logger = logging.getLogger(__name__)

INVALID_KEY_MARKERS = ("API key not valid", "API_KEY_INVALID")


class ReplayTurn(BaseModel):
    """One past turn replayed to rebuild conversational context."""

    role: Literal["user", "model"]
    text: str


class MessageContent(BaseModel):
    """A user turn carrying an inline image next to its text."""

    text: str
    image: ImageAttachment


Content = Union[str, MessageContent]


def to_replay_turns(messages: Sequence[ChatMessage]) -> list[ReplayTurn]:
    """Select and map the messages replayed on rebind.

    The synthetic welcome message and messages without text are skipped.
    """
    return [
        ReplayTurn(role="user" if msg.sender == Sender.USER else "model", text=msg.text)
        for msg in messages
        if msg.text and not msg.is_welcome
    ]


def to_human_message(content: Content) -> HumanMessage:
    if isinstance(content, MessageContent):
        return HumanMessage(
            content=[
                {"type": "text", "text": content.text},
                {"type": "image_url", "image_url": content.image.data_uri},
            ]
        )
    return HumanMessage(content=content)


def chunk_text(chunk: Any) -> str:
    """Extract the text delta of a streamed chunk (may be empty)."""
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return ""


def convert_remote_error(exc: Exception) -> RemoteCallError:
    message = str(exc)
    if any(marker in message for marker in INVALID_KEY_MARKERS):
        return InvalidCredential(message)
    return SendFailed(message)


class ConversationHandle:
    """Remote conversation bound to one session."""

    def __init__(
        self,
        llm: ChatGoogleGenerativeAI,
        system_instruction: str,
        replay: Sequence[ReplayTurn],
    ) -> None:
        self._llm = llm
        self.system_instruction = system_instruction
        self.history: list[BaseMessage] = [
            HumanMessage(content=turn.text)
            if turn.role == "user"
            else AIMessage(content=turn.text)
            for turn in replay
        ]

    async def send_message_stream(self, content: Content) -> AsyncIterator[str]:
        """Send one user turn and yield the response text as it arrives.

        The exchange is appended to ``history`` only once the stream finished.

        Raises:
            InvalidCredential: The provider rejected the API key.
            SendFailed: Any other provider or transport failure.
        """
        human = to_human_message(content)
        messages: list[BaseMessage] = [
            SystemMessage(content=self.system_instruction),
            *self.history,
            human,
        ]

        parts: list[str] = []
        try:
            async for chunk in self._llm.astream(messages):
                if not isinstance(chunk, AIMessageChunk):
                    continue
                text = chunk_text(chunk)
                if text:
                    parts.append(text)
                    yield text
        except RemoteCallError:
            raise
        except Exception as exc:
            logger.error("Gemini stream failed: %s", exc)
            raise convert_remote_error(exc) from exc

        self.history.extend([human, AIMessage(content="".join(parts))])


class ConversationAdapter(ABC):
    """Interface to the remote conversational and image capabilities."""

    @abstractmethod
    def bind(
        self, system_instruction: str, replay_history: Sequence[ChatMessage]
    ) -> Any:
        """Build a fresh conversation handle seeded with the filtered history."""
        pass

    @abstractmethod
    def send_stream(self, handle: Any, content: Content) -> AsyncIterator[str]:
        """Return the single-pass stream of response text fragments."""
        pass

    @abstractmethod
    async def generate_image(self, prompt: str) -> str:
        """Return a base64 encoded image for ``prompt``."""
        pass

    async def close(self) -> None:
        pass


class GeminiConversationAdapter(ConversationAdapter):
    """Gemini chat + Imagen image generation."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = http_client

    def _build_llm(self) -> ChatGoogleGenerativeAI:
        return ChatGoogleGenerativeAI(
            model=self._settings.gemini_model,
            google_api_key=self._settings.google_api_key,
            temperature=0.7,
            streaming=True,
        )

    def bind(
        self, system_instruction: str, replay_history: Sequence[ChatMessage]
    ) -> ConversationHandle:
        replay = to_replay_turns(replay_history)
        handle = ConversationHandle(self._build_llm(), system_instruction, replay)
        logger.info(
            "Bound Gemini conversation (model=%s, replayed_turns=%d)",
            self._settings.gemini_model,
            len(replay),
        )
        return handle

    def send_stream(
        self, handle: ConversationHandle, content: Content
    ) -> AsyncIterator[str]:
        return handle.send_message_stream(content)

    async def generate_image(self, prompt: str) -> str:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.request_timeout)

        url = f"{self._settings.gemini_api_base}/models/{self._settings.image_model}:predict"
        request_body = {
            "instances": [{"prompt": prompt}],
            "parameters": {"sampleCount": 1, "outputMimeType": "image/jpeg"},
        }

        try:
            response = await self._client.post(
                url,
                params={"key": self._settings.google_api_key},
                json=request_body,
            )
            response.raise_for_status()
            data = response.json()
            image_b64 = data["predictions"][0]["bytesBase64Encoded"]
        except httpx.HTTPStatusError as e:
            logger.error(
                "Imagen API error %d: %s", e.response.status_code, e.response.text[:200]
            )
            raise ImageGenerationError(str(e)) from e
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
            logger.error("Image generation failed: %s", e)
            raise ImageGenerationError(str(e)) from e

        if not image_b64:
            raise ImageGenerationError("Imagen returned an empty image")

        logger.info("Generated image (%d base64 chars) for prompt: '%s'", len(image_b64), prompt[:60])
        return image_b64

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
