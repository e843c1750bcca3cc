"""Shared test doubles for the points ledger."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import pytest
from kungfu import Error, Ok, Result

from encore import idempotency as I
from encore._log import current_seq


@dataclass(frozen=True, slots=True)
class PointOp:
    cus_id: str
    points: int


@dataclass(frozen=True, slots=True)
class PointsBalance:
    cus_id: str
    available: int


type PointsResult = I.OperationResult[PointsBalance]


class LedgerDown(Exception):
    pass


@dataclass(slots=True)
class Ledger:
    """
    Fake points ledger.

    gate: when set, add_points blocks until the event fires.
    """

    calls: int = 0
    balances: dict[str, int] = field(default_factory=dict)
    seen_seqs: list[str | None] = field(default_factory=list)
    gate: asyncio.Event | None = None
    entered: asyncio.Event = field(default_factory=asyncio.Event)

    async def add_points(
        self, request: I.OperationRequest[PointOp]
    ) -> Result[PointsResult, str]:
        self.calls += 1
        self.seen_seqs.append(current_seq())
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        op = request.payload
        assert op is not None
        balance = self.balances.get(op.cus_id, 0) + op.points
        self.balances[op.cus_id] = balance
        return Ok(I.OperationResult(data=PointsBalance(op.cus_id, balance)))

    async def reject_points(
        self, request: I.OperationRequest[PointOp]
    ) -> Result[PointsResult, str]:
        self.calls += 1
        return Error("ledger rejected the operation")

    async def crash(self, request: I.OperationRequest[PointOp]) -> Result[PointsResult, str]:
        self.calls += 1
        raise LedgerDown("ledger connection lost")


def add_points(seq: str | None, *, type: str | None = "gift", points: int = 10) -> I.OperationRequest[PointOp]:
    return I.OperationRequest(
        name="addPoints",
        type=type,
        seq=seq,
        payload=PointOp(cus_id="cus-1", points=points),
    )


def unwrap_ok[T](result: Result[T, Any]) -> T:
    match result:
        case Ok(value):
            return value
        case Error(err):
            pytest.fail(f"expected Ok, got Error({err!r})")


def unwrap_error[E](result: Result[Any, E]) -> E:
    match result:
        case Error(err):
            return err
        case Ok(value):
            pytest.fail(f"expected Error, got Ok({value!r})")


def _down(operation: str, key: str) -> I.StoreUnavailableError:
    return I.StoreUnavailableError(
        message="backend down",
        operation=operation,
        key=key,
        cause=ConnectionError("backend down"),
    )


@dataclass(slots=True)
class RecordingStore:
    """
    MemoryStore wrapper that records calls and can fail selected ones.
    """

    inner: I.MemoryStore = field(default_factory=I.MemoryStore)
    calls: list[str] = field(default_factory=list)
    failing: set[str] = field(default_factory=set)

    def as_store(self) -> I.FunctionalStore:
        return I.store_from(
            try_lock=self.try_lock,
            unlock=self.unlock,
            get_cached=self.get_cached,
            set_cached=self.set_cached,
            forget=self.forget,
        )

    async def try_lock(self, key: str, ttl: timedelta | None) -> Result[bool, I.StoreUnavailableError]:
        self.calls.append("try_lock")
        if "try_lock" in self.failing:
            return Error(_down("try_lock", key))
        return await self.inner.try_lock(key, ttl)

    async def unlock(self, key: str) -> Result[bool, I.StoreUnavailableError]:
        self.calls.append("unlock")
        if "unlock" in self.failing:
            return Error(_down("unlock", key))
        return await self.inner.unlock(key)

    async def get_cached(self, key: str) -> Result[str | None, I.StoreUnavailableError]:
        self.calls.append("get_cached")
        if "get_cached" in self.failing:
            return Error(_down("get_cached", key))
        return await self.inner.get_cached(key)

    async def set_cached(
        self, key: str, value: str, ttl: timedelta | None
    ) -> Result[None, I.StoreUnavailableError]:
        self.calls.append("set_cached")
        if "set_cached" in self.failing:
            return Error(_down("set_cached", key))
        return await self.inner.set_cached(key, value, ttl)

    async def forget(self, key: str) -> Result[bool, I.StoreUnavailableError]:
        self.calls.append("forget")
        if "forget" in self.failing:
            return Error(_down("forget", key))
        return await self.inner.forget(key)
