"""
Interceptor — reusable idempotent wrapper plus fluent builder.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from kungfu import LazyCoroResult, Ok, Result

from encore import graph as G
from encore._log import SEQ_CONTEXT_KEY
from encore._types import Operation
from encore.idempotency._codec import Codec, JsonCodec
from encore.idempotency._graph import FinalResultNode, InterceptionSpec
from encore.idempotency._key import KeyFn, is_blank, key_for
from encore.idempotency._policy import Policy
from encore.idempotency._store import MemoryStore, Store
from encore.idempotency._types import (
    OperationRequest,
    OperationResult,
    StoreUnavailableError,
)

type RejectFn[R] = Callable[[int, str], R]


def reject_with_result(status: int, message: str) -> OperationResult[Any]:
    """Default rejection: a bare OperationResult."""
    return OperationResult(status=status, error=message)


# ═══════════════════════════════════════════════════════════════════════════════
# Interceptor
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True, frozen=True)
class Interceptor[R]:
    """
    Idempotent invocation wrapper.

    Holds no per-call state — share one instance across tasks; all
    coordination goes through the store.

    Example:
        interceptor = Interceptor(
            store=RedisStore.from_url("redis://localhost"),
            codec=JsonCodec(OperationResult[PointsBalance]),
            policy=Policy().with_lock_ttl(minutes=5),
        )
        result = await interceptor.invoke(request, ledger.add_points)
    """

    store: Store
    codec: Codec[R]
    policy: Policy = Policy()
    key_fn: KeyFn = key_for
    reject: RejectFn[R] = reject_with_result  # type: ignore[assignment]
    _pipeline: G.Compiled[FinalResultNode] = field(
        default_factory=lambda: G.graph(FinalResultNode),
        init=False,
        repr=False,
        compare=False,
    )

    def invoke[P, E](
        self,
        request: OperationRequest[P],
        operation: Operation[OperationRequest[P], R, E],
    ) -> LazyCoroResult[R, StoreUnavailableError | E]:
        """
        Run operation at most once per (name, type, seq).

        Ok(response): executed, replayed, bypassed (blank seq), or the
            duplicate-rejection response built by `reject`.
        Error(e): the operation's own error, unchanged, or a
            StoreUnavailableError.
        Exceptions raised by the operation propagate unchanged.
        """
        key = None if is_blank(request.seq) else self.key_fn(request)
        spec = InterceptionSpec(
            request=request,
            key=key,
            operation=operation,
            store=self.store,
            policy=self.policy,
            codec=self.codec,
            reject=self.reject,
        )
        pipeline = self._pipeline

        async def execute() -> Result[R, StoreUnavailableError | E]:
            with structlog.contextvars.bound_contextvars(**{SEQ_CONTEXT_KEY: request.seq}):
                node = await pipeline(spec)
                return node.to_result()

        return LazyCoroResult(execute)

    def wrap[P, E](
        self,
        operation: Operation[OperationRequest[P], R, E],
    ) -> Callable[[OperationRequest[P]], LazyCoroResult[R, StoreUnavailableError | E]]:
        """
        Bind an operation once, call it many times.

        Example:
            add_points = interceptor.wrap(ledger.add_points)
            result = await add_points(request)
        """

        def wrapped(
            request: OperationRequest[P],
        ) -> LazyCoroResult[R, StoreUnavailableError | E]:
            return self.invoke(request, operation)

        wrapped.__name__ = getattr(operation, "__name__", "wrapped")
        wrapped.__doc__ = getattr(operation, "__doc__", None)
        return wrapped

    async def invalidate(
        self, request: OperationRequest[Any]
    ) -> Result[bool, StoreUnavailableError]:
        """
        Forget lock and committed response for request.

        Use to clear a lock left behind by a failed operation.

        Ok(True): something was forgotten. Ok(False): nothing stored, or
            blank seq. Error: the store call failed.
        """
        if is_blank(request.seq):
            return Ok(False)
        return await self.store.forget(self.key_fn(request))


# ═══════════════════════════════════════════════════════════════════════════════
# Intercept Builder
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True, frozen=True)
class Intercept[R]:
    """
    Fluent interceptor builder.
    """

    _store: Store | None
    _codec: Codec[R] | None
    _policy: Policy
    _key_fn: KeyFn
    _reject: RejectFn[R] | None

    def store(self, s: Store) -> Intercept[R]:
        """Set storage backend."""
        return Intercept(
            _store=s,
            _codec=self._codec,
            _policy=self._policy,
            _key_fn=self._key_fn,
            _reject=self._reject,
        )

    def response[R2](self, response_type: type[R2] | Any) -> Intercept[R2]:
        """Set response type; stored responses are JSON via pydantic."""
        return Intercept(
            _store=self._store,
            _codec=JsonCodec(response_type),
            _policy=self._policy,
            _key_fn=self._key_fn,
            _reject=None,
        )

    def codec[R2](self, c: Codec[R2]) -> Intercept[R2]:
        """Set a custom codec."""
        return Intercept(
            _store=self._store,
            _codec=c,
            _policy=self._policy,
            _key_fn=self._key_fn,
            _reject=None,
        )

    def policy(self, p: Policy) -> Intercept[R]:
        """Set idempotency policy."""
        return Intercept(
            _store=self._store,
            _codec=self._codec,
            _policy=p,
            _key_fn=self._key_fn,
            _reject=self._reject,
        )

    def key(self, fn: KeyFn) -> Intercept[R]:
        """Override key derivation."""
        return Intercept(
            _store=self._store,
            _codec=self._codec,
            _policy=self._policy,
            _key_fn=fn,
            _reject=self._reject,
        )

    def reject(self, fn: RejectFn[R]) -> Intercept[R]:
        """Set factory for duplicate-rejection responses."""
        return Intercept(
            _store=self._store,
            _codec=self._codec,
            _policy=self._policy,
            _key_fn=self._key_fn,
            _reject=fn,
        )

    def build(self) -> Interceptor[R]:
        """
        Build interceptor.

        Defaults: MemoryStore, reject_with_result, and a codec for
        OperationResult[Any]. Without .response(...) or .codec(...) the
        replayed data is plain JSON (dicts), not the type the operation
        returned on its first run.
        """
        store: Store = self._store if self._store is not None else MemoryStore()
        codec: Codec[Any] = (
            self._codec if self._codec is not None else JsonCodec(OperationResult[Any])
        )
        reject: RejectFn[Any] = (
            self._reject if self._reject is not None else reject_with_result
        )
        return Interceptor(
            store=store,
            codec=codec,
            policy=self._policy,
            key_fn=self._key_fn,
            reject=reject,
        )


def intercept(store: Store | None = None) -> Intercept[OperationResult[Any]]:
    """
    Create interceptor builder.

    Call .response(type) so replays decode into the same type the
    operation returned; otherwise replayed data comes back as plain JSON.

    Example:
        interceptor = (
            I.intercept(I.MemoryStore())
            .response(OperationResult[PointsBalance])
            .policy(I.Policy().with_lock_ttl(minutes=5))
            .build()
        )
    """
    return Intercept(
        _store=store,
        _codec=None,
        _policy=Policy(),
        _key_fn=key_for,
        _reject=None,
    )


__all__ = (
    "RejectFn",
    "reject_with_result",
    "Interceptor",
    "Intercept",
    "intercept",
)
