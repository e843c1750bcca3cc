"""
Interception graph — the per-invocation state machine as nodnod nodes.

Architecture:
    InterceptionSpec (injected)
         │
         ▼
    SpecNode
         │
         ├──────────────────────────┐
         ▼                          ▼
    FetchCachedNode            BypassNode (blank seq)
         │
         ├── CachedResponseNode ───────────────┐
         ├── FetchErrorNode ───────────────────┤
         └── CacheMissNode                     │
                  │                            │
                  ▼                            │
             AcquireLockNode                   │
                  │                            │
                  ├── LockedNode ──────────────┼── InterceptionOutcome (@polymorphic)
                  ├── LockBusyNode ────────────┤             │
                  └── LockErrorNode ───────────┘             ▼
                                                      FinalResultNode

Note: no 'from __future__ import annotations' here — nodnod reads the
type hints of __compose__ at runtime to wire dependencies.
"""

from dataclasses import dataclass
from typing import Any

import structlog
from kungfu import Error, Ok, Result
from nodnod import NodeError, case, polymorphic

from encore import graph as G
from encore.idempotency._key import is_blank
from encore.idempotency._policy import Policy
from encore.idempotency._store import Store
from encore.idempotency._types import (
    Disposition,
    OperationRequest,
    StoreUnavailableError,
)

logger = structlog.get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Input — Spec (injected)
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class InterceptionSpec:
    """
    Everything one invocation needs.

    key is None when the request carries a blank seq; the graph then
    routes straight to the operation.

    reject: factory (status, message) -> response, used for duplicates.
    """

    request: OperationRequest[Any]
    key: str | None
    operation: Any
    store: Store
    policy: Policy
    codec: Any
    reject: Any


def _log(spec: InterceptionSpec) -> Any:
    return logger.bind(
        idempotency_key=spec.key,
        operation=spec.request.name,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Entry Nodes
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class SpecNode:
    """Wraps InterceptionSpec for graph."""

    def __init__(self, spec: InterceptionSpec) -> None:
        self.spec = spec

    @classmethod
    def __compose__(cls, spec: InterceptionSpec) -> "SpecNode":
        return cls(spec)


@G.node
class BypassNode:
    """Validates: caller opted out (blank seq)."""

    def __init__(self, spec: InterceptionSpec) -> None:
        self.spec = spec

    @classmethod
    def __compose__(cls, spec_node: SpecNode) -> "BypassNode":
        if spec_node.spec.key is not None:
            raise NodeError("Dedup requested")
        return cls(spec_node.spec)


# ═══════════════════════════════════════════════════════════════════════════════
# Cache Check
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class FetchCachedNode:
    """Reads the committed response, if any."""

    def __init__(
        self,
        cached: str | None,
        spec: InterceptionSpec,
        store_error: StoreUnavailableError | None = None,
    ) -> None:
        self.cached = cached
        self.spec = spec
        self.store_error = store_error

    @classmethod
    async def __compose__(cls, spec_node: SpecNode) -> "FetchCachedNode":
        spec = spec_node.spec
        if spec.key is None:
            raise NodeError("Dedup disabled")

        match await spec.store.get_cached(spec.key):
            case Ok(cached):
                return cls(cached, spec)
            case Error(err):
                return cls(None, spec, store_error=err)


@G.node
class CachedResponseNode:
    """Validates: a committed response exists."""

    def __init__(self, raw: str, spec: InterceptionSpec) -> None:
        self.raw = raw
        self.spec = spec

    @classmethod
    def __compose__(cls, fetch: FetchCachedNode) -> "CachedResponseNode":
        if fetch.store_error is not None:
            raise NodeError("Store error")
        if fetch.cached is None or is_blank(fetch.cached):
            raise NodeError("Nothing cached")
        return cls(fetch.cached, fetch.spec)


@G.node
class CacheMissNode:
    """Validates: store answered, nothing committed yet."""

    def __init__(self, spec: InterceptionSpec) -> None:
        self.spec = spec

    @classmethod
    def __compose__(cls, fetch: FetchCachedNode) -> "CacheMissNode":
        if fetch.store_error is not None:
            raise NodeError("Store error")
        if not is_blank(fetch.cached):
            raise NodeError("Cached")
        return cls(fetch.spec)


@G.node
class FetchErrorNode:
    """Validates: get_cached failed."""

    def __init__(self, error: StoreUnavailableError, spec: InterceptionSpec) -> None:
        self.error = error
        self.spec = spec

    @classmethod
    def __compose__(cls, fetch: FetchCachedNode) -> "FetchErrorNode":
        if fetch.store_error is None:
            raise NodeError("No store error")
        return cls(fetch.store_error, fetch.spec)


# ═══════════════════════════════════════════════════════════════════════════════
# Lock Check
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class AcquireLockNode:
    """
    Attempts the lock.

    Note: only reachable on a cache miss, so try_lock runs at most once
    per invocation.
    """

    def __init__(
        self,
        acquired: bool,
        spec: InterceptionSpec,
        store_error: StoreUnavailableError | None = None,
    ) -> None:
        self.acquired = acquired
        self.spec = spec
        self.store_error = store_error

    @classmethod
    async def __compose__(cls, miss: CacheMissNode) -> "AcquireLockNode":
        spec = miss.spec
        if spec.key is None:
            raise NodeError("Dedup disabled")

        match await spec.store.try_lock(spec.key, spec.policy.lock_ttl):
            case Ok(acquired):
                return cls(acquired, spec)
            case Error(err):
                return cls(False, spec, store_error=err)


@G.node
class LockedNode:
    """Validates: this invocation owns the lock for key."""

    def __init__(self, key: str, seq: str, spec: InterceptionSpec) -> None:
        self.key = key
        self.seq = seq
        self.spec = spec

    @classmethod
    def __compose__(cls, attempt: AcquireLockNode) -> "LockedNode":
        if not attempt.acquired:
            raise NodeError("Not acquired")
        spec = attempt.spec
        if spec.key is None or spec.request.seq is None:
            raise NodeError("Dedup disabled")
        return cls(spec.key, spec.request.seq, spec)


@G.node
class LockBusyNode:
    """Validates: somebody else holds the lock."""

    def __init__(self, spec: InterceptionSpec) -> None:
        self.spec = spec

    @classmethod
    def __compose__(cls, attempt: AcquireLockNode) -> "LockBusyNode":
        if attempt.store_error is not None:
            raise NodeError("Store error")
        if attempt.acquired:
            raise NodeError("Acquired")
        return cls(attempt.spec)


@G.node
class LockErrorNode:
    """Validates: try_lock failed."""

    def __init__(self, error: StoreUnavailableError, spec: InterceptionSpec) -> None:
        self.error = error
        self.spec = spec

    @classmethod
    def __compose__(cls, attempt: AcquireLockNode) -> "LockErrorNode":
        if attempt.store_error is None:
            raise NodeError("No store error")
        return cls(attempt.store_error, attempt.spec)


# ═══════════════════════════════════════════════════════════════════════════════
# Outcome Types
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class OutcomeOk:
    """Response to hand back."""

    value: Any
    disposition: Disposition


@dataclass(frozen=True)
class OutcomeError:
    """Error to hand back — operation's own or StoreUnavailableError."""

    error: Any
    disposition: Disposition


@dataclass(frozen=True)
class OutcomeRaised:
    """Operation raised; re-raised once outside the graph."""

    exception: Exception
    disposition: Disposition


type Outcome = OutcomeOk | OutcomeError | OutcomeRaised


async def _call(spec: InterceptionSpec, disposition: Disposition) -> Outcome:
    """Run the wrapped operation, capturing every way it can end."""
    try:
        result: Result[Any, Any] = await spec.operation(spec.request)
    except Exception as e:
        return OutcomeRaised(e, disposition)

    match result:
        case Ok(value):
            return OutcomeOk(value, disposition)
        case Error(err):
            return OutcomeError(err, disposition)


async def _release_after_failure(
    spec: InterceptionSpec, key: str, failure: Outcome
) -> Outcome:
    log = _log(spec)
    if not spec.policy.release_on_failure:
        log.warning("idempotency_operation_failed", lock_held=True)
        return failure

    match await spec.store.unlock(key):
        case Ok(_):
            log.warning("idempotency_operation_failed", lock_held=False)
        case Error(err):
            log.error(
                "idempotency_unlock_failed",
                lock_held=True,
                store_operation=err.operation,
                error=err.message,
            )
    return failure


def _store_failed(spec: InterceptionSpec, error: StoreUnavailableError) -> Outcome:
    _log(spec).error(
        "idempotency_store_failed",
        store_operation=error.operation,
        error=error.message,
    )
    return OutcomeError(error, Disposition.STORE_FAILED)


# ═══════════════════════════════════════════════════════════════════════════════
# Polymorphic Outcome — one case per validated state
# ═══════════════════════════════════════════════════════════════════════════════


@polymorphic[Outcome]
class InterceptionOutcome:
    """
    Polymorphic router — each @case depends on a validated state node.

    Note: state nodes are mutually exclusive, exactly one case applies.
    """

    @case
    async def bypass(cls, node: BypassNode) -> Outcome:
        """Blank seq — plain call, nothing stored."""
        _log(node.spec).debug("idempotency_bypassed")
        return await _call(node.spec, Disposition.BYPASSED)

    @case
    def replay(cls, node: CachedResponseNode) -> Outcome:
        """Committed earlier — hand back the stored response."""
        spec = node.spec
        try:
            response = spec.codec.decode(node.raw)
        except Exception as e:
            return _store_failed(
                spec,
                StoreUnavailableError(
                    message=f"Unreadable cached response: {e}",
                    operation="get_cached",
                    key=spec.key,
                    cause=e,
                ),
            )
        _log(spec).info("idempotency_replayed", status=response.status)
        return OutcomeOk(response, Disposition.REPLAYED)

    @case
    def fetch_failed(cls, node: FetchErrorNode) -> Outcome:
        """get_cached failed."""
        return _store_failed(node.spec, node.error)

    @case
    def lock_failed(cls, node: LockErrorNode) -> Outcome:
        """try_lock failed."""
        return _store_failed(node.spec, node.error)

    @case
    def reject_duplicate(cls, node: LockBusyNode) -> Outcome:
        """In flight elsewhere — reject without touching the lock."""
        spec = node.spec
        _log(spec).info("idempotency_duplicate_rejected")
        response = spec.reject(spec.policy.duplicate_status, spec.policy.duplicate_message)
        return OutcomeOk(response, Disposition.REJECTED)

    @case
    async def execute(cls, node: LockedNode) -> Outcome:
        """Lock owned — run, then commit response and unlock."""
        spec, key = node.spec, node.key

        outcome = await _call(spec, Disposition.FAILED)
        if not isinstance(outcome, OutcomeOk):
            return await _release_after_failure(spec, key, outcome)

        response = outcome.value.with_seq(node.seq)
        try:
            raw = spec.codec.encode(response)
        except Exception as e:
            return await _release_after_failure(spec, key, OutcomeRaised(e, Disposition.FAILED))

        match await spec.store.set_cached(key, raw, spec.policy.result_ttl):
            case Error(err):
                return _store_failed(spec, err)
            case Ok(_):
                pass

        match await spec.store.unlock(key):
            case Error(err):
                return _store_failed(spec, err)
            case Ok(_):
                pass

        _log(spec).info("idempotency_committed", status=response.status)
        return OutcomeOk(response, Disposition.EXECUTED)


# ═══════════════════════════════════════════════════════════════════════════════
# Final Node
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class FinalResultNode:
    """Converts Outcome to Result."""

    def __init__(self, outcome: Outcome) -> None:
        self.outcome = outcome

    @classmethod
    def __compose__(cls, outcome: InterceptionOutcome) -> "FinalResultNode":
        return cls(outcome.value)

    @property
    def disposition(self) -> Disposition:
        return self.outcome.disposition

    def to_result(self) -> Result[Any, Any]:
        """Ok/Error as produced; a captured exception is re-raised as-is."""
        match self.outcome:
            case OutcomeOk(value=v):
                return Ok(v)
            case OutcomeError(error=err):
                return Error(err)
            case OutcomeRaised(exception=exc):
                raise exc


# ═══════════════════════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════════════════════


async def run_interception(spec: InterceptionSpec) -> Result[Any, Any]:
    """Execute one invocation via a freshly built graph."""
    node = await G.run(FinalResultNode).inject(spec)
    return node.to_result()


__all__ = (
    "InterceptionSpec",
    "Outcome",
    "OutcomeOk",
    "OutcomeError",
    "OutcomeRaised",
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
    "run_interception",
)
