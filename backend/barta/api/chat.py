"""WebSocket endpoint for real-time chat with the active session."""

import json
import logging
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect

from barta.chat.exceptions import ExchangeInFlight
from barta.chat.reconciler import ExchangeState
from barta.chat.service import ChatService
from barta.dependencies import get_chat_service
from barta.models.messages import ImageAttachment, OutgoingMessage

logger = logging.getLogger(__name__)


async def websocket_chat(websocket: WebSocket) -> None:
    """Handle WebSocket connections for real-time chat.

    Protocol:
        Client sends JSON: {"type": "text", "content": "...",
                            "image": {"mime_type": "...", "data": "<base64>"}}
        Server sends JSON: {"type": "text"|"stream"|"status"|"error", "content": "...",
                            "session_id": "...", "message_id": "...", "timestamp": "..."}
    """
    await websocket.accept()
    service = get_chat_service()
    logger.info("WebSocket connected: active_session=%s", service.registry.active_id)

    await _send_message(websocket, "status", "Connected", service.registry.active_id)

    try:
        while True:
            raw = await websocket.receive_text()

            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await _send_message(websocket, "error", "Invalid JSON", service.registry.active_id)
                continue

            msg_type = data.get("type", "text")
            if msg_type != "text":
                await _send_message(
                    websocket, "error", "Empty or unsupported message", service.registry.active_id
                )
                continue

            await _handle_text_message(
                websocket, service, data.get("content") or "", data.get("image")
            )

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected")


async def _handle_text_message(
    websocket: WebSocket,
    service: ChatService,
    content: str,
    image_payload: Optional[dict[str, Any]],
) -> None:
    """Run one exchange and relay its fragments as ``stream`` frames."""
    session_id = service.registry.active_id

    image: Optional[ImageAttachment] = None
    if image_payload:
        image = service.attach_image(
            image_payload.get("data") or "", image_payload.get("mime_type")
        )
        if image is None:
            await _send_error(websocket, service, session_id)
            return

    if session_id is not None and service.reconciler.is_busy(session_id):
        busy = ExchangeInFlight(f"Session {session_id} is still answering")
        await _send_message(websocket, "error", service.errors.message_for(busy), session_id)
        return

    await _send_message(websocket, "status", "Thinking...", session_id)

    async def relay(message_id: str, fragment: str) -> None:
        await _send_message(websocket, "stream", fragment, session_id, message_id)

    state = await service.send_message(content, image, listener=relay)

    if state == ExchangeState.SETTLED_SUCCESS:
        session = service.registry.sessions.get(session_id) if session_id else None
        final = session.messages[-1] if session and session.messages else None
        await _send_message(
            websocket,
            "text",
            final.text if final else "",
            session_id,
            final.id if final else None,
        )
    else:
        await _send_error(websocket, service, session_id)


async def _send_error(
    websocket: WebSocket, service: ChatService, session_id: Optional[str]
) -> None:
    error = service.errors.current
    await _send_message(
        websocket, "error", error.message if error else "Request rejected", session_id
    )


async def _send_message(
    websocket: WebSocket,
    msg_type: str,
    content: str,
    session_id: Optional[str],
    message_id: Optional[str] = None,
) -> None:
    """Send a structured JSON message over the WebSocket."""
    payload = OutgoingMessage(
        type=msg_type,
        content=content,
        session_id=session_id,
        message_id=message_id,
    )
    await websocket.send_json(payload.model_dump(mode="json"))
