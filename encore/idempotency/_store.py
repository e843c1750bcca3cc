"""
Idempotency store — lock + cached response protocol.

All methods return Result for explicit error handling.
Values are serialized responses (see _codec).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from kungfu import Result, Ok

from encore.idempotency._types import StoreUnavailableError


# ═══════════════════════════════════════════════════════════════════════════════
# Store Protocol — Result-based
# ═══════════════════════════════════════════════════════════════════════════════


class Store(Protocol):
    """
    Idempotency store protocol.

    Note: try_lock is the only correctness primitive — it MUST be atomic
    (single round-trip set-if-absent). Everything else is plain key/value.

    Example — wrapping an existing cache client:

        class MemcachedStore:
            def __init__(self, client: Client) -> None:
                self.client = client

            async def try_lock(self, key: str, ttl: timedelta | None) -> Result[bool, StoreUnavailableError]:
                try:
                    return Ok(await self.client.add(f"lock:{key}", b"1", exptime=...))
                except Exception as e:
                    return Error(StoreUnavailableError(str(e), "try_lock", key, e))

            # ... other methods
    """

    async def try_lock(
        self, key: str, ttl: timedelta | None
    ) -> Result[bool, StoreUnavailableError]:
        """Acquire lock. Ok(True) if acquired, Ok(False) if already held."""
        ...

    async def unlock(self, key: str) -> Result[bool, StoreUnavailableError]:
        """Release lock unconditionally. Ok(True) if it was held."""
        ...

    async def get_cached(self, key: str) -> Result[str | None, StoreUnavailableError]:
        """Get committed response. Ok(None) if absent."""
        ...

    async def set_cached(
        self, key: str, value: str, ttl: timedelta | None
    ) -> Result[None, StoreUnavailableError]:
        """Store committed response, overwriting any previous one."""
        ...

    async def forget(self, key: str) -> Result[bool, StoreUnavailableError]:
        """Drop lock and response. Ok(True) if anything existed."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Function-based Store Builder
# ═══════════════════════════════════════════════════════════════════════════════

type TryLockFn = Callable[
    [str, timedelta | None], Awaitable[Result[bool, StoreUnavailableError]]
]
type UnlockFn = Callable[[str], Awaitable[Result[bool, StoreUnavailableError]]]
type GetCachedFn = Callable[
    [str], Awaitable[Result[str | None, StoreUnavailableError]]
]
type SetCachedFn = Callable[
    [str, str, timedelta | None], Awaitable[Result[None, StoreUnavailableError]]
]
type ForgetFn = Callable[[str], Awaitable[Result[bool, StoreUnavailableError]]]


@dataclass(frozen=True)
class FunctionalStore:
    """
    Store built from functions.

    Example:
        store = store_from(
            try_lock=cache.lock,
            unlock=cache.unlock,
            get_cached=cache.get_response,
            set_cached=cache.put_response,
            forget=cache.evict,
        )
    """

    _try_lock: TryLockFn
    _unlock: UnlockFn
    _get_cached: GetCachedFn
    _set_cached: SetCachedFn
    _forget: ForgetFn

    async def try_lock(
        self, key: str, ttl: timedelta | None
    ) -> Result[bool, StoreUnavailableError]:
        return await self._try_lock(key, ttl)

    async def unlock(self, key: str) -> Result[bool, StoreUnavailableError]:
        return await self._unlock(key)

    async def get_cached(self, key: str) -> Result[str | None, StoreUnavailableError]:
        return await self._get_cached(key)

    async def set_cached(
        self, key: str, value: str, ttl: timedelta | None
    ) -> Result[None, StoreUnavailableError]:
        return await self._set_cached(key, value, ttl)

    async def forget(self, key: str) -> Result[bool, StoreUnavailableError]:
        return await self._forget(key)


def store_from(
    try_lock: TryLockFn,
    unlock: UnlockFn,
    get_cached: GetCachedFn,
    set_cached: SetCachedFn,
    forget: ForgetFn,
) -> FunctionalStore:
    """Create Store from functions."""
    return FunctionalStore(
        _try_lock=try_lock,
        _unlock=unlock,
        _get_cached=get_cached,
        _set_cached=set_cached,
        _forget=forget,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Memory Store — single process / tests
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class _Entry:
    """Internal mutable entry for MemoryStore."""

    value: str
    expires_at: datetime | None

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and datetime.now() >= self.expires_at


def _expiry(ttl: timedelta | None) -> datetime | None:
    return datetime.now() + ttl if ttl else None


class MemoryStore:
    """
    In-memory idempotency store.

    Note: one process only. Locks are not shared between workers and
    nothing survives a restart.
    """

    def __init__(self) -> None:
        self._locks: dict[str, _Entry] = {}
        self._cached: dict[str, _Entry] = {}
        self._mutex = asyncio.Lock()

    async def try_lock(
        self, key: str, ttl: timedelta | None
    ) -> Result[bool, StoreUnavailableError]:
        async with self._mutex:
            existing = self._locks.get(key)
            if existing is not None and not existing.is_expired:
                return Ok(False)
            self._locks[key] = _Entry(value="1", expires_at=_expiry(ttl))
            return Ok(True)

    async def unlock(self, key: str) -> Result[bool, StoreUnavailableError]:
        async with self._mutex:
            entry = self._locks.pop(key, None)
            return Ok(entry is not None and not entry.is_expired)

    async def get_cached(self, key: str) -> Result[str | None, StoreUnavailableError]:
        async with self._mutex:
            entry = self._cached.get(key)
            if entry is None:
                return Ok(None)
            if entry.is_expired:
                del self._cached[key]
                return Ok(None)
            return Ok(entry.value)

    async def set_cached(
        self, key: str, value: str, ttl: timedelta | None
    ) -> Result[None, StoreUnavailableError]:
        async with self._mutex:
            self._cached[key] = _Entry(value=value, expires_at=_expiry(ttl))
            return Ok(None)

    async def forget(self, key: str) -> Result[bool, StoreUnavailableError]:
        async with self._mutex:
            lock = self._locks.pop(key, None)
            cached = self._cached.pop(key, None)
            return Ok(lock is not None or cached is not None)

    def is_locked(self, key: str) -> bool:
        """Inspect lock state without touching it."""
        entry = self._locks.get(key)
        return entry is not None and not entry.is_expired


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Store",
    "FunctionalStore",
    "store_from",
    "MemoryStore",
)
