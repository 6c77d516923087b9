"""Sign-in / sign-out endpoints backed by the identity provider."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from barta.chat.service import ChatService
from barta.dependencies import get_chat_service

router = APIRouter()


@router.get("/me")
async def current_user(
    service: ChatService = Depends(get_chat_service),
) -> dict[str, Any]:
    user = service.current_user
    return {"signed_in": user is not None, "user": user}


@router.post("/login")
async def login(
    service: ChatService = Depends(get_chat_service),
) -> dict[str, Any]:
    user = await service.login()
    if user is None:
        error = service.errors.current
        raise HTTPException(status_code=401, detail=error.message if error else "Sign-in failed")
    return {"signed_in": True, "user": user}


@router.post("/logout")
async def logout(
    service: ChatService = Depends(get_chat_service),
) -> dict[str, Any]:
    if not await service.logout():
        error = service.errors.current
        raise HTTPException(status_code=500, detail=error.message if error else "Sign-out failed")
    return {"signed_in": False}
