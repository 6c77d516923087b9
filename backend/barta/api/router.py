"""Central API router that aggregates all route modules."""

from fastapi import APIRouter

from barta.api.auth import router as auth_router
from barta.api.errors import router as errors_router
from barta.api.health import router as health_router
from barta.api.images import router as images_router
from barta.api.sessions import router as sessions_router

api_router = APIRouter()

api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(sessions_router, prefix="/sessions", tags=["sessions"])
api_router.include_router(images_router, prefix="/images", tags=["images"])
api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(errors_router, prefix="/errors", tags=["errors"])
