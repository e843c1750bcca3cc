"""
Idempotency types — requests, responses, errors.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum, IntEnum, auto
from typing import Generic, Protocol, Self, TypeVar

P = TypeVar("P")
T = TypeVar("T")


# ═══════════════════════════════════════════════════════════════════════════════
# Status Codes
# ═══════════════════════════════════════════════════════════════════════════════


class Status(IntEnum):
    """
    Response status codes known to the interceptor.

    Services are free to use any other integer for their own outcomes;
    the interceptor only ever produces DUPLICATE_IDEMPOTENT itself.
    """

    OK = 0
    DUPLICATE_IDEMPOTENT = 1100


DUPLICATE_MESSAGE = "Duplicate submission, please do not resubmit"


# ═══════════════════════════════════════════════════════════════════════════════
# Request
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class OperationRequest(Generic[P]):
    """
    A call to an intercepted operation.

    name + type + seq identify the logical request; payload is never
    inspected by the interceptor.

    Note: seq=None (or blank) opts the call out of deduplication.
    """

    name: str
    type: str | None = None
    seq: str | None = None
    payload: P | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Response
# ═══════════════════════════════════════════════════════════════════════════════


class Response(Protocol):
    """
    What the interceptor needs from an operation's response.

    Implement with a frozen dataclass; with_seq must return a copy.
    """

    @property
    def status(self) -> int: ...

    @property
    def error(self) -> str | None: ...

    @property
    def seq(self) -> str | None: ...

    def with_seq(self, seq: str) -> Self: ...


@dataclass(frozen=True, slots=True)
class OperationResult(Generic[T]):
    """
    Default response envelope.

    Example:
        OperationResult(data=PointsBalance(cus_id="c1", available=120))
        OperationResult(status=2001, error="insufficient points")
    """

    status: int = Status.OK
    error: str | None = None
    seq: str | None = None
    data: T | None = None

    @property
    def is_ok(self) -> bool:
        return self.status == Status.OK

    @property
    def is_duplicate(self) -> bool:
        return self.status == Status.DUPLICATE_IDEMPOTENT

    def with_seq(self, seq: str) -> OperationResult[T]:
        return replace(self, seq=seq)


# ═══════════════════════════════════════════════════════════════════════════════
# Disposition — which branch an invocation took
# ═══════════════════════════════════════════════════════════════════════════════


class Disposition(Enum):
    """
    Lifecycle:
        BYPASSED                         (blank seq)
        REPLAYED                         (cached response)
        REJECTED                         (lock held elsewhere)
        EXECUTED | FAILED                (lock acquired)
        STORE_FAILED                     (any store call failed)
    """

    BYPASSED = auto()
    REPLAYED = auto()
    REJECTED = auto()
    EXECUTED = auto()
    FAILED = auto()
    STORE_FAILED = auto()


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════


class InvalidInputError(ValueError):
    """Dedup key requested for a blank seq."""


@dataclass(frozen=True, slots=True)
class StoreUnavailableError:
    """
    A store call failed.

    operation: which store call ("try_lock", "get_cached", ...).
    cause: the backend exception, if any.
    """

    message: str
    operation: str
    key: str | None = None
    cause: Exception | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Status",
    "DUPLICATE_MESSAGE",
    "OperationRequest",
    "Response",
    "OperationResult",
    "Disposition",
    "InvalidInputError",
    "StoreUnavailableError",
)
