"""Database adapters for short URL records.

The pipeline never touches SQLAlchemy or Redis directly; resources talk to a
``DatabaseAdapter`` handed to them on the event.

Flow Diagram — SqlDatabaseAdapter.get_short_url_params()
=========================================================
::
    ┌─────────────┐
    │ Check Redis │
    │ shorturl:id │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Query   │  │ Return  │
│ Postgres│  │ cached  │
└────┬────┘  └─────────┘
     ▼
┌─────────┐
│ Cache   │
│ result  │
└─────────┘

Key Behaviours
===============
- delete_short_urls() evicts cache entries before the commit and again after
  it, so a resolve right after a delete always misses.
- Ids whose eviction keeps failing are remembered per process; lookups for
  them bypass the cache until an eviction succeeds.
- SQLAlchemy and Redis failures are re-raised as DatabaseError with the
  original message.
- InMemoryDatabaseAdapter keeps records in a dict; used for
  DATABASE_BACKEND=memory and in tests.

Classes:
    DatabaseAdapter:  Abstract contract used by the short URL resources.
    SqlDatabaseAdapter:  PostgreSQL storage with a Redis read cache.
    InMemoryDatabaseAdapter:  Process-local storage.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError
from sqlalchemy import delete, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.exceptions import DatabaseError
from mediavault.models import ShortUrlRecord
from mediavault.schemas import ShortUrlParams

__all__ = ["DatabaseAdapter", "InMemoryDatabaseAdapter", "SqlDatabaseAdapter"]

logger = logging.getLogger(__name__)

EVICTION_ATTEMPTS = 3

DEFAULT_CACHE_TTL_SECONDS = 3600


class DatabaseAdapter(ABC):
    @abstractmethod
    async def get_short_url_params(self, short_url_id: str) -> ShortUrlParams | None:
        """Return the record stored under ``short_url_id``, or None."""

    @abstractmethod
    async def get_short_url_id(self, params: ShortUrlParams) -> str | None:
        """Return the id of an existing record with identical parameters."""

    @abstractmethod
    async def insert_short_url(self, short_url_id: str, params: ShortUrlParams) -> None: ...

    @abstractmethod
    async def delete_short_urls(
        self, user: str, image_identifier: str, short_url_id: str | None = None
    ) -> int:
        """Delete one short URL, or every short URL of the image when no id is given."""

    @abstractmethod
    async def get_status(self) -> bool: ...


# ============================================================================
# IN-MEMORY
# ============================================================================


class InMemoryDatabaseAdapter(DatabaseAdapter):
    def __init__(self, records: dict[str, ShortUrlParams] | None = None) -> None:
        self._records: dict[str, ShortUrlParams] = dict(records or {})

    async def get_short_url_params(self, short_url_id: str) -> ShortUrlParams | None:
        return self._records.get(short_url_id)

    async def get_short_url_id(self, params: ShortUrlParams) -> str | None:
        for short_url_id, stored in self._records.items():
            if stored == params:
                return short_url_id
        return None

    async def insert_short_url(self, short_url_id: str, params: ShortUrlParams) -> None:
        if short_url_id in self._records:
            raise DatabaseError(f"Short URL {short_url_id} already exists")
        self._records[short_url_id] = params

    async def delete_short_urls(
        self, user: str, image_identifier: str, short_url_id: str | None = None
    ) -> int:
        doomed = [
            key
            for key, stored in self._records.items()
            if stored.user == user
            and stored.image_identifier == image_identifier
            and (short_url_id is None or key == short_url_id)
        ]
        for key in doomed:
            del self._records[key]
        return len(doomed)

    async def get_status(self) -> bool:
        return True


# ============================================================================
# SQL + REDIS
# ============================================================================


def _to_params(record: ShortUrlRecord) -> ShortUrlParams:
    return ShortUrlParams(
        user=record.user,
        image_identifier=record.image_identifier,
        extension=record.extension,
        query=record.query,
    )


class SqlDatabaseAdapter(DatabaseAdapter):
    # Shared by every per-request adapter in the process.
    _unevicted: set[str] = set()

    def __init__(
        self,
        session: AsyncSession,
        cache: redis.Redis | None = None,
        cache_ttl: int = DEFAULT_CACHE_TTL_SECONDS,
    ) -> None:
        assert session is not None, "session must not be None"
        self.session = session
        self.cache = cache
        self.cache_ttl = cache_ttl

    @staticmethod
    def _cache_key(short_url_id: str) -> str:
        return f"shorturl:{short_url_id}"

    async def get_short_url_params(self, short_url_id: str) -> ShortUrlParams | None:
        cache_key = self._cache_key(short_url_id)
        use_cache = self.cache is not None
        if use_cache and short_url_id in self._unevicted:
            use_cache = await self._evict([short_url_id])

        try:
            if use_cache:
                cached = await self.cache.get(cache_key)
                if cached:
                    return ShortUrlParams.model_validate_json(cached)

            result = await self.session.execute(
                select(ShortUrlRecord).where(ShortUrlRecord.short_url_id == short_url_id)
            )
            record = result.scalar_one_or_none()
            if record is None:
                return None

            params = _to_params(record)
            if use_cache:
                await self.cache.set(cache_key, params.model_dump_json(by_alias=True), ex=self.cache_ttl)
            return params
        except (SQLAlchemyError, RedisError) as exc:
            raise DatabaseError(str(exc)) from exc

    async def get_short_url_id(self, params: ShortUrlParams) -> str | None:
        try:
            result = await self.session.execute(
                select(ShortUrlRecord).where(
                    ShortUrlRecord.user == params.user,
                    ShortUrlRecord.image_identifier == params.image_identifier,
                )
            )
            # JSON equality is not portable in SQL, compare the few candidates here
            for record in result.scalars():
                if _to_params(record) == params:
                    return record.short_url_id
            return None
        except SQLAlchemyError as exc:
            raise DatabaseError(str(exc)) from exc

    async def insert_short_url(self, short_url_id: str, params: ShortUrlParams) -> None:
        record = ShortUrlRecord(
            short_url_id=short_url_id,
            user=params.user,
            image_identifier=params.image_identifier,
            extension=params.extension,
            query=params.query,
        )
        try:
            self.session.add(record)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise DatabaseError(str(exc)) from exc

    async def delete_short_urls(
        self, user: str, image_identifier: str, short_url_id: str | None = None
    ) -> int:
        conditions: list[Any] = [
            ShortUrlRecord.user == user,
            ShortUrlRecord.image_identifier == image_identifier,
        ]
        if short_url_id is not None:
            conditions.append(ShortUrlRecord.short_url_id == short_url_id)

        try:
            result = await self.session.execute(select(ShortUrlRecord.short_url_id).where(*conditions))
            ids = list(result.scalars())
            if not ids:
                return 0

            await self._evict(ids)
            await self.session.execute(delete(ShortUrlRecord).where(*conditions))
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise DatabaseError(str(exc)) from exc

        # A lookup may have refilled the cache between the first eviction and the commit
        if not await self._evict(ids):
            logger.error("Cache entries for deleted short URL(s) %s could not be evicted", ids)

        logger.debug("Deleted %d short URL(s) for %s/%s", len(ids), user, image_identifier)
        return len(ids)

    async def _evict(self, short_url_ids: Iterable[str]) -> bool:
        """Drop cached entries, retrying a few times.

        Returns False when every attempt failed; the ids are then remembered
        so lookups skip the cache for them.
        """
        ids = list(short_url_ids)
        if self.cache is None or not ids:
            return True
        keys = [self._cache_key(short_url_id) for short_url_id in ids]
        for attempt in range(1, EVICTION_ATTEMPTS + 1):
            try:
                await self.cache.delete(*keys)
            except RedisError as exc:
                logger.warning("Cache eviction attempt %d for %s failed: %s", attempt, ids, exc)
            else:
                self._unevicted.difference_update(ids)
                return True
        self._unevicted.update(ids)
        return False

    async def get_status(self) -> bool:
        try:
            await self.session.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.error("Database health check failed: %s", exc)
            return False
        return True
