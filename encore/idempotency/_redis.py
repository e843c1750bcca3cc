"""
Redis store — distributed lock + cached response.

Lock:     SET <prefix>lock:<key> <token> NX PX <ttl>
Response: SET <prefix>result:<key> <json> [PX <ttl>]
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog
from kungfu import Error, Ok, Result
from redis.asyncio import Redis

from encore.idempotency._types import StoreUnavailableError

if TYPE_CHECKING:
    from encore.config import EncoreSettings

logger = structlog.get_logger(__name__)


def _millis(ttl: timedelta | None) -> int | None:
    if ttl is None:
        return None
    return max(int(ttl.total_seconds() * 1000), 1)


class RedisStore:
    """
    Idempotency store on Redis.

    Note: the client's lifetime belongs to the caller — RedisStore never
    closes it. Use a client created with decode_responses=True.

    Example:
        client = Redis.from_url("redis://localhost:6379/0", decode_responses=True)
        store = RedisStore(client, key_prefix="points:")
    """

    def __init__(self, client: Redis, key_prefix: str = "encore:") -> None:
        self._client = client
        self._key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "encore:", **kwargs: Any) -> RedisStore:
        client = Redis.from_url(url, decode_responses=True, **kwargs)
        return cls(client, key_prefix=key_prefix)

    @classmethod
    def from_settings(cls, settings: EncoreSettings) -> RedisStore:
        if not settings.redis_url:
            raise ValueError("ENCORE_REDIS_URL is not set")
        return cls.from_url(settings.redis_url, key_prefix=settings.key_prefix)

    def _lock_key(self, key: str) -> str:
        return f"{self._key_prefix}lock:{key}"

    def _result_key(self, key: str) -> str:
        return f"{self._key_prefix}result:{key}"

    def _failure(self, operation: str, key: str, e: Exception) -> StoreUnavailableError:
        logger.error(
            "redis_store_call_failed",
            store_operation=operation,
            idempotency_key=key,
            error_type=type(e).__name__,
        )
        return StoreUnavailableError(
            message=f"Redis {operation} failed: {e}",
            operation=operation,
            key=key,
            cause=e,
        )

    async def try_lock(
        self, key: str, ttl: timedelta | None
    ) -> Result[bool, StoreUnavailableError]:
        try:
            acquired = await self._client.set(
                self._lock_key(key),
                uuid.uuid4().hex,
                nx=True,
                px=_millis(ttl),
            )
        except Exception as e:
            return Error(self._failure("try_lock", key, e))
        return Ok(bool(acquired))

    async def unlock(self, key: str) -> Result[bool, StoreUnavailableError]:
        try:
            deleted = await self._client.delete(self._lock_key(key))
        except Exception as e:
            return Error(self._failure("unlock", key, e))
        return Ok(deleted > 0)

    async def get_cached(self, key: str) -> Result[str | None, StoreUnavailableError]:
        try:
            value = await self._client.get(self._result_key(key))
        except Exception as e:
            return Error(self._failure("get_cached", key, e))
        if isinstance(value, bytes):
            value = value.decode()
        return Ok(value)

    async def set_cached(
        self, key: str, value: str, ttl: timedelta | None
    ) -> Result[None, StoreUnavailableError]:
        try:
            await self._client.set(self._result_key(key), value, px=_millis(ttl))
        except Exception as e:
            return Error(self._failure("set_cached", key, e))
        return Ok(None)

    async def forget(self, key: str) -> Result[bool, StoreUnavailableError]:
        try:
            deleted = await self._client.delete(self._lock_key(key), self._result_key(key))
        except Exception as e:
            return Error(self._failure("forget", key, e))
        return Ok(deleted > 0)


__all__ = ("RedisStore",)
