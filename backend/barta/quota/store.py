"""Per-user document store for account data.

Documents are addressed by ``(collection, user_id)``. ``set`` with
``merge=True`` only touches the fields it is given. Fields whose value is the
``SERVER_TIMESTAMP`` sentinel are stamped by the store itself rather than by
the client clock.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP: Any = _ServerTimestamp()


class DocumentStore(ABC):
    """Interface for reading and writing per-user documents."""

    @abstractmethod
    async def get(self, collection: str, user_id: str) -> Optional[dict[str, Any]]:
        """Return the user's document, or None when absent."""
        pass

    @abstractmethod
    async def set(
        self,
        collection: str,
        user_id: str,
        data: dict[str, Any],
        merge: bool = True,
    ) -> None:
        """Write ``data`` to the user's document."""
        pass

    async def ping(self) -> None:
        pass

    async def close(self) -> None:
        pass


class InMemoryDocumentStore(DocumentStore):
    """Keeps documents in a dictionary; the server clock is the local clock."""

    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], dict[str, Any]] = {}

    async def get(self, collection: str, user_id: str) -> Optional[dict[str, Any]]:
        doc = self._documents.get((collection, user_id))
        return dict(doc) if doc is not None else None

    async def set(
        self,
        collection: str,
        user_id: str,
        data: dict[str, Any],
        merge: bool = True,
    ) -> None:
        now = datetime.now(timezone.utc)
        resolved = {
            key: now if value is SERVER_TIMESTAMP else value for key, value in data.items()
        }
        existing = self._documents.get((collection, user_id), {}) if merge else {}
        self._documents[(collection, user_id)] = {**existing, **resolved}


class MongoDocumentStore(DocumentStore):
    """MongoDB documents keyed by ``_id = user_id``.

    ``SERVER_TIMESTAMP`` fields are written with ``$currentDate`` so MongoDB
    assigns the time.
    """

    def __init__(self, connection_string: str, database_name: str) -> None:
        self._client = AsyncIOMotorClient(
            connection_string,
            serverSelectionTimeoutMS=5_000,
            tz_aware=True,
        )
        self._db: AsyncIOMotorDatabase = self._client[database_name]

    async def get(self, collection: str, user_id: str) -> Optional[dict[str, Any]]:
        doc = await self._db[collection].find_one({"_id": user_id}, {"_id": 0})
        return doc

    async def set(
        self,
        collection: str,
        user_id: str,
        data: dict[str, Any],
        merge: bool = True,
    ) -> None:
        server_fields = [key for key, value in data.items() if value is SERVER_TIMESTAMP]
        fields = {key: value for key, value in data.items() if value is not SERVER_TIMESTAMP}

        if merge:
            update: dict[str, Any] = {}
            if fields:
                update["$set"] = fields
            if server_fields:
                update["$currentDate"] = {key: True for key in server_fields}
            if not update:
                return
            await self._db[collection].update_one({"_id": user_id}, update, upsert=True)
            return

        # Full replace: stamp server fields with a follow-up $currentDate.
        await self._db[collection].replace_one({"_id": user_id}, fields, upsert=True)
        if server_fields:
            await self._db[collection].update_one(
                {"_id": user_id},
                {"$currentDate": {key: True for key in server_fields}},
            )

    async def ping(self) -> None:
        await self._client.admin.command("ping")

    async def close(self) -> None:
        self._client.close()
        logger.info("MongoDB connection closed")
