"""Daily image generation quota.

The counter resets at local midnight: a stored count only applies when its
``last_generated_at`` falls on today's local calendar date. The in-memory
cache is refreshed on login. Each generation reserves a slot in the cache
(client clock) before the remote call, hands it back if nothing was produced
and writes it through on success; the document store records the server time.
Another device writing in between is only noticed on the next refresh.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from barta.chat.exceptions import LoginRequired, QuotaExceeded
from barta.models.quota import QuotaRecord, User
from barta.quota.store import SERVER_TIMESTAMP, DocumentStore

logger = logging.getLogger(__name__)


def _local_date(value: datetime) -> date:
    # Naive datetimes are taken as already being local time.
    if value.tzinfo is None:
        return value.date()
    return value.astimezone().date()


def current_count(record: QuotaRecord, now: datetime) -> int:
    """Generations counted for the local day of ``now``."""
    if _local_date(record.last_generated_at) == _local_date(now):
        return record.count
    return 0


def try_consume(record: QuotaRecord, now: datetime, limit: int) -> QuotaRecord:
    """Return the record after one more generation.

    Raises:
        QuotaExceeded: If today's count already reached ``limit``.
    """
    count = current_count(record, now)
    if count >= limit:
        raise QuotaExceeded(f"Daily limit of {limit} image generations reached")
    return QuotaRecord(count=count + 1, last_generated_at=now)


class QuotaTracker:
    """Caches each user's quota record and persists consumed generations."""

    def __init__(self, store: DocumentStore, collection: str, limit: int) -> None:
        self._store = store
        self._collection = collection
        self.limit = limit
        self._cache: dict[str, QuotaRecord] = {}

    def cached(self, user_id: str) -> Optional[QuotaRecord]:
        return self._cache.get(user_id)

    async def refresh(self, user: User) -> QuotaRecord:
        """Re-read the authoritative record (on login)."""
        doc = await self._store.get(self._collection, user.uid)
        record = QuotaRecord.model_validate(doc) if doc else QuotaRecord()
        self._cache[user.uid] = record
        logger.info("Quota for %s: count=%d", user.uid, record.count)
        return record

    def forget(self, user_id: str) -> None:
        self._cache.pop(user_id, None)

    def reserve(self, user: Optional[User], now: datetime) -> QuotaRecord:
        """Count one generation in the cache before it runs.

        Raises:
            LoginRequired: If ``user`` is None.
            QuotaExceeded: If today's count reached the limit.
        """
        if user is None:
            raise LoginRequired("Image generation requires a signed-in user")
        record = try_consume(self._cache.get(user.uid, QuotaRecord()), now, self.limit)
        self._cache[user.uid] = record
        return record

    def release(self, user: User) -> None:
        """Hand back a reservation whose generation produced nothing."""
        record = self._cache.get(user.uid)
        if record is None or record.count == 0:
            return
        self._cache[user.uid] = record.model_copy(update={"count": record.count - 1})

    async def commit(self, user: User) -> None:
        """Merge-write the cached count; the store stamps its own time."""
        record = self._cache.get(user.uid)
        if record is None:
            logger.info("Quota for %s dropped before it was written", user.uid)
            return
        await self._store.set(
            self._collection,
            user.uid,
            {"count": record.count, "lastGeneratedAt": SERVER_TIMESTAMP},
            merge=True,
        )
