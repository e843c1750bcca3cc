"""Shared infrastructure for examples."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field

from kungfu import Error, Ok, Result

from encore import current_seq
from encore import idempotency as I


# Types
@dataclass(frozen=True, slots=True)
class PointOp:
    cus_id: str
    points: int


@dataclass(frozen=True, slots=True)
class Balance:
    cus_id: str
    available: int


# Errors
@dataclass(frozen=True, slots=True)
class LedgerRejected(Exception):
    message: str

    def __str__(self) -> str:
        return self.message


# Fake ledger
@dataclass(slots=True)
class FakeLedger:
    balances: dict[str, int] = field(default_factory=lambda: {"cus-1": 100})
    calls: int = 0
    delay: float = 0.01

    async def add_points(
        self, request: I.OperationRequest[PointOp]
    ) -> Result[I.OperationResult[Balance], LedgerRejected]:
        op = request.payload
        if op is None:
            return Error(LedgerRejected("missing payload"))
        self.calls += 1
        print(f"  [LEDGER] +{op.points} for {op.cus_id} (seq={current_seq()}, call #{self.calls})")
        await asyncio.sleep(self.delay)
        if op.points <= 0:
            return Error(LedgerRejected(f"points must be positive, got {op.points}"))
        self.balances[op.cus_id] = self.balances.get(op.cus_id, 0) + op.points
        return Ok(I.OperationResult(data=Balance(op.cus_id, self.balances[op.cus_id])))


def add_points(seq: str | None, points: int = 10, type: str | None = "gift") -> I.OperationRequest[PointOp]:
    return I.OperationRequest(name="addPoints", type=type, seq=seq, payload=PointOp("cus-1", points))


# Helpers
def banner(title: str) -> None:
    print(f"\n{'─' * 50}\n{title}\n{'─' * 50}")


def show(result: Result[I.OperationResult[Balance], object]) -> None:
    match result:
        case Ok(r) if r.is_duplicate:
            print(f"   duplicate: status={r.status} error={r.error!r}")
        case Ok(r):
            print(f"   ok: seq={r.seq} data={r.data}")
        case Error(e):
            print(f"   error: {e}")


def run(main: Callable[[], Coroutine[object, object, None]]) -> None:
    asyncio.run(main())
