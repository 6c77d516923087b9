"""FastAPI application entry point with lifespan management."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from barta.api.chat import websocket_chat
from barta.api.router import api_router
from barta.config import settings
from barta.dependencies import get_chat_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    logger.info("Starting Barta AI backend...")

    # Load stored sessions and bind the active one to Gemini
    chat_service = get_chat_service()
    await chat_service.initialize()
    logger.info("Chat service initialized successfully")

    yield

    # Cleanup
    await chat_service.close()
    logger.info("Barta AI backend shut down cleanly")


app = FastAPI(
    title=f"{settings.app_name} API",
    description="Multi-session Gemini chat with streaming replies and daily image generation quota",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount API routes
app.include_router(api_router, prefix="/api")

# Mount WebSocket endpoint (outside /api prefix to match frontend expectations)
app.websocket("/ws/chat")(websocket_chat)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
