"""Health check endpoint for infrastructure monitoring."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends

from barta.chat.service import ChatService
from barta.config import Settings, get_settings
from barta.dependencies import get_chat_service

logger = logging.getLogger(__name__)
router = APIRouter()


def _check_gemini(service: ChatService) -> dict[str, Any]:
    """Report whether remote calls are possible at all."""
    if not service.registry.has_remote:
        return {"status": "unhealthy", "error": "GOOGLE_API_KEY is not configured"}
    return {"status": "healthy", "bound": service.registry.binding is not None}


async def _check_document_store(service: ChatService) -> dict[str, Any]:
    """Ping the quota document store and return status."""
    try:
        await service.document_store.ping()
        return {"status": "healthy"}
    except Exception as exc:
        logger.warning("Document store health check failed: %s", exc)
        return {"status": "unhealthy", "error": str(exc)}


@router.get("")
async def health_check(
    service: ChatService = Depends(get_chat_service),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Return aggregate health of the chat backend."""
    services = {
        "gemini": _check_gemini(service),
        "document_store": await _check_document_store(service),
    }

    overall = (
        "healthy"
        if all(s["status"] == "healthy" for s in services.values())
        else "degraded"
    )

    return {
        "status": overall,
        "environment": settings.environment,
        "model": settings.gemini_model,
        "services": services,
    }
