"""Dependency injection providers for FastAPI."""

from barta.chat.service import ChatService
from barta.config import settings

# Global singleton instance (single event loop, no cross-thread access)
_chat_service: ChatService | None = None


def get_chat_service() -> ChatService:
    """Return singleton ChatService instance."""
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService.from_settings(settings)
    return _chat_service
