"""
Idempotency — at-most-once execution per request sequence token.

    from encore import idempotency as I

    interceptor = (
        I.intercept(I.MemoryStore())
        .response(I.OperationResult[PointsBalance])
        .policy(I.Policy().with_lock_ttl(minutes=5))
        .build()
    )

    request = I.OperationRequest(name="addPoints", type="gift", seq="abc123", payload=op)
    result = await interceptor.invoke(request, ledger.add_points)

Per invocation:

    blank seq ──────────────────────────────► operation (no store calls)

    get_cached(key) ── hit ─────────────────► replay stored response
         │
        miss
         │
    try_lock(key) ──── held elsewhere ──────► DUPLICATE_IDEMPOTENT response
         │
      acquired
         │
    operation ──────── fails ───────────────► error (lock stays held*)
         │
    set_cached(key) → unlock(key) ──────────► response (seq echoed)

    * unless Policy.release_on_failure
"""

from encore.idempotency._types import (
    Status,
    DUPLICATE_MESSAGE,
    OperationRequest,
    Response,
    OperationResult,
    Disposition,
    InvalidInputError,
    StoreUnavailableError,
)
from encore.idempotency._key import (
    SEPARATOR,
    KeyFn,
    build_key,
    key_for,
)
from encore.idempotency._store import (
    Store,
    FunctionalStore,
    store_from,
    MemoryStore,
)
from encore.idempotency._codec import (
    Codec,
    JsonCodec,
)
from encore.idempotency._policy import Policy
from encore.idempotency._graph import (
    InterceptionSpec,
    run_interception,
    Outcome,
    OutcomeOk,
    OutcomeError,
    OutcomeRaised,
    SpecNode,
    BypassNode,
    FetchCachedNode,
    CachedResponseNode,
    CacheMissNode,
    FetchErrorNode,
    AcquireLockNode,
    LockedNode,
    LockBusyNode,
    LockErrorNode,
    InterceptionOutcome,
    FinalResultNode,
)
from encore.idempotency._interceptor import (
    RejectFn,
    reject_with_result,
    Interceptor,
    Intercept,
    intercept,
)
from encore.idempotency._redis import RedisStore
from encore.idempotency._sqlalchemy import (
    IdempotencyMixin,
    SQLAlchemyStore,
)

__all__ = (
    # Types
    "Status",
    "DUPLICATE_MESSAGE",
    "OperationRequest",
    "Response",
    "OperationResult",
    "Disposition",
    "InvalidInputError",
    "StoreUnavailableError",
    # Key
    "SEPARATOR",
    "KeyFn",
    "build_key",
    "key_for",
    # Store
    "Store",
    "FunctionalStore",
    "store_from",
    "MemoryStore",
    "RedisStore",
    "IdempotencyMixin",
    "SQLAlchemyStore",
    # Codec
    "Codec",
    "JsonCodec",
    # Policy
    "Policy",
    # Spec & API
    "InterceptionSpec",
    "run_interception",
    # Outcome
    "Outcome",
    "OutcomeOk",
    "OutcomeError",
    "OutcomeRaised",
    # Nodes
    "SpecNode",
    "BypassNode",
    "FetchCachedNode",
    "CachedResponseNode",
    "CacheMissNode",
    "FetchErrorNode",
    "AcquireLockNode",
    "LockedNode",
    "LockBusyNode",
    "LockErrorNode",
    "InterceptionOutcome",
    "FinalResultNode",
    # Interceptor
    "RejectFn",
    "reject_with_result",
    "Interceptor",
    "Intercept",
    "intercept",
)
