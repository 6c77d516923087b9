"""Tests for the Gemini conversation adapter."""

import json

import httpx
import pytest
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, SystemMessage

from barta.chat.adapter import (
    ConversationHandle,
    GeminiConversationAdapter,
    MessageContent,
    ReplayTurn,
    chunk_text,
    convert_remote_error,
    to_human_message,
    to_replay_turns,
)
from barta.chat.exceptions import ImageGenerationError, InvalidCredential, SendFailed
from barta.models.messages import ChatMessage, ImageAttachment, Sender


class FakeLLM:
    """Minimal stand-in for ChatGoogleGenerativeAI.astream."""

    def __init__(self, chunks: list[str], error: Exception | None = None) -> None:
        self.chunks = chunks
        self.error = error
        self.calls: list[list] = []

    async def astream(self, messages):
        self.calls.append(list(messages))
        for chunk in self.chunks:
            yield AIMessageChunk(content=chunk)
        if self.error is not None:
            raise self.error


def test_replay_skips_welcome_and_empty_messages() -> None:
    messages = [
        ChatMessage(id="w_ai_welcome", text="Welcome!", sender=Sender.AI),
        ChatMessage(id="1_user", text="Hi", sender=Sender.USER),
        ChatMessage(id="2_ai", text="Hello!", sender=Sender.AI),
        ChatMessage(id="3_user", text="", sender=Sender.USER),
        ChatMessage(id="4_ai", text="", sender=Sender.AI),
    ]

    turns = to_replay_turns(messages)

    assert turns == [ReplayTurn(role="user", text="Hi"), ReplayTurn(role="model", text="Hello!")]


def test_human_message_carries_inline_image() -> None:
    image = ImageAttachment(mime_type="image/jpeg", data="/9j/4AAQ")

    message = to_human_message(MessageContent(text="What is this?", image=image))

    assert message.content == [
        {"type": "text", "text": "What is this?"},
        {"type": "image_url", "image_url": "data:image/jpeg;base64,/9j/4AAQ"},
    ]
    assert to_human_message("plain").content == "plain"


def test_chunk_text_handles_content_parts() -> None:
    assert chunk_text(AIMessageChunk(content="abc")) == "abc"
    assert chunk_text(AIMessageChunk(content=[{"type": "text", "text": "a"}, "b"])) == "ab"
    assert chunk_text(AIMessageChunk(content="")) == ""


def test_convert_remote_error_detects_invalid_key() -> None:
    invalid = convert_remote_error(Exception("400 API key not valid. Please pass a valid API key."))

    assert isinstance(invalid, InvalidCredential)
    assert isinstance(convert_remote_error(Exception("500 internal")), SendFailed)


@pytest.mark.asyncio
async def test_handle_streams_and_records_exchange() -> None:
    llm = FakeLLM(["Hel", "", "lo"])
    replay = [ReplayTurn(role="user", text="Hi"), ReplayTurn(role="model", text="Hey")]
    handle = ConversationHandle(llm, "Be brief.", replay)

    fragments = [text async for text in handle.send_message_stream("Say hello")]

    assert fragments == ["Hel", "lo"]
    sent = llm.calls[0]
    assert isinstance(sent[0], SystemMessage) and sent[0].content == "Be brief."
    assert [m.content for m in sent[1:]] == ["Hi", "Hey", "Say hello"]
    assert isinstance(handle.history[-2], HumanMessage)
    assert isinstance(handle.history[-1], AIMessage)
    assert handle.history[-1].content == "Hello"


@pytest.mark.asyncio
async def test_handle_failure_is_converted_and_not_recorded() -> None:
    llm = FakeLLM(["partial"], error=Exception("API key not valid"))
    handle = ConversationHandle(llm, "Be brief.", [])

    with pytest.raises(InvalidCredential):
        async for _ in handle.send_message_stream("Hello"):
            pass

    assert handle.history == []


@pytest.mark.asyncio
async def test_generate_image_calls_predict_endpoint(test_settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, json={"predictions": [{"bytesBase64Encoded": "aW1n", "mimeType": "image/jpeg"}]}
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    adapter = GeminiConversationAdapter(test_settings, http_client=client)

    result = await adapter.generate_image("a cat on a sofa")
    await adapter.close()

    assert result == "aW1n"
    request = seen[0]
    assert request.url.path.endswith("/models/imagen-3.0-generate-002:predict")
    assert request.url.params["key"] == "test-key"
    assert json.loads(request.content)["instances"] == [{"prompt": "a cat on a sofa"}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(400, json={"error": {"message": "Invalid prompt"}}),
        httpx.Response(200, json={"predictions": []}),
        httpx.Response(200, json={"predictions": [{"bytesBase64Encoded": ""}]}),
    ],
)
async def test_generate_image_failures_raise(test_settings, response: httpx.Response) -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: response))
    adapter = GeminiConversationAdapter(test_settings, http_client=client)

    with pytest.raises(ImageGenerationError):
        await adapter.generate_image("a cat")
    await adapter.close()
