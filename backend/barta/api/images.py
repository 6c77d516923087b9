"""Image generation endpoint."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends

from barta.chat.reconciler import ExchangeState
from barta.chat.service import ChatService
from barta.dependencies import get_chat_service
from barta.models.quota import ImageRequest
from barta.quota.tracker import current_count

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("")
async def generate_image(
    request: ImageRequest,
    service: ChatService = Depends(get_chat_service),
) -> dict[str, Any]:
    """Generate an image into the active session.

    Refusals (login, quota, credential) come back as ``state=rejected`` with
    the reported error rather than as HTTP errors, so the client can show the
    same message it shows for chat failures.
    """
    state = await service.generate_image(request.prompt)
    error = service.errors.current
    return {
        "state": state,
        "active_session_id": service.registry.active_id,
        "error": error.model_dump(mode="json") if error and state != ExchangeState.SETTLED_SUCCESS else None,
    }


@router.get("/quota")
async def get_quota(
    service: ChatService = Depends(get_chat_service),
) -> dict[str, Any]:
    """Return today's image generation count for the signed-in user."""
    user = service.current_user
    if user is None:
        return {"signed_in": False, "count": 0, "limit": service.quota.limit}
    record = service.quota.cached(user.uid)
    count = current_count(record, service.clock()) if record else 0
    return {"signed_in": True, "count": count, "limit": service.quota.limit}
