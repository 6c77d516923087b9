"""Session management endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from barta.chat.service import ChatService
from barta.dependencies import get_chat_service
from barta.models.sessions import (
    ModelChangeRequest,
    NewChatRequest,
    SessionListResponse,
    SessionSummary,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _summary(service: ChatService, session_id: str) -> SessionSummary:
    return next(s for s in service.registry.list_sessions() if s.session_id == session_id)


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    service: ChatService = Depends(get_chat_service),
) -> SessionListResponse:
    """Return all chat sessions, most recently active first."""
    sessions = service.registry.list_sessions()
    return SessionListResponse(
        sessions=sessions,
        active_session_id=service.registry.active_id,
        total=len(sessions),
    )


@router.post("", response_model=SessionSummary, status_code=201)
async def start_new_chat(
    request: NewChatRequest,
    service: ChatService = Depends(get_chat_service),
) -> SessionSummary:
    """Start a fresh chat with the requested model and make it active."""
    session = service.start_new_chat(request.model)
    return _summary(service, session.id)


@router.put("/model")
async def change_model(
    request: ModelChangeRequest,
    service: ChatService = Depends(get_chat_service),
) -> dict[str, Any]:
    """Switch model; a different model starts a new chat."""
    session = service.change_model(request.model)
    return {
        "changed": session is not None,
        "active_session_id": service.registry.active_id,
    }


@router.post("/{session_id}/select")
async def select_session(
    session_id: str,
    service: ChatService = Depends(get_chat_service),
) -> dict[str, Any]:
    """Make a stored session the active one."""
    if session_id not in service.registry.sessions:
        raise HTTPException(status_code=404, detail="Session not found")
    changed = service.select_session(session_id)
    return {"changed": changed, "active_session_id": service.registry.active_id}


@router.get("/{session_id}/history")
async def get_session_history(
    session_id: str,
    service: ChatService = Depends(get_chat_service),
) -> dict[str, Any]:
    """Return the full message history for a session."""
    session = service.registry.sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    return {
        "session_id": session_id,
        "title": session.title,
        "model": session.model,
        "messages": [
            msg.model_dump(mode="json", by_alias=True, exclude_none=True)
            for msg in session.messages
        ],
    }
