"""Global error surface endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends

from barta.chat.errors import ErrorReport
from barta.chat.service import ChatService
from barta.dependencies import get_chat_service

router = APIRouter()


@router.get("", response_model=Optional[ErrorReport])
async def get_current_error(
    service: ChatService = Depends(get_chat_service),
) -> Optional[ErrorReport]:
    """Return the most recent error, or null when there is none."""
    return service.errors.current


@router.delete("", status_code=204)
async def clear_error(
    service: ChatService = Depends(get_chat_service),
) -> None:
    service.errors.clear()
