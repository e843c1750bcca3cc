"""
Graph runner — sugar over nodnod.

Auto-discovers nodes from the target, type-keyed injection.
"""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, cast

from nodnod import EventLoopAgent, Node, Scope, Value


# ═══════════════════════════════════════════════════════════════════════════════
# TypedScope
# ═══════════════════════════════════════════════════════════════════════════════


class TypedScope:
    """Type-safe wrapper around nodnod.Scope."""

    __slots__ = ("_scope",)

    def __init__(self, scope: Scope | None = None, detail: str = "scope") -> None:
        self._scope = scope if scope is not None else Scope(detail=detail)

    @property
    def inner(self) -> Scope:
        return self._scope

    def inject[T](self, typ: type[T], value: T) -> TypedScope:
        self._scope.push(Value(typ, value))
        return self

    def get[T](self, typ: type[T]) -> T:
        result = self._scope.get(typ)
        if result is None:
            raise KeyError(f"{typ.__name__} not found in scope")
        return cast(T, result.value)

    async def __aenter__(self) -> TypedScope:
        await self._scope.__aenter__()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self._scope.__aexit__(*args)


async def execute[T](
    agent: EventLoopAgent,
    target: type[T],
    injections: tuple[tuple[type[Any], Any], ...],
    detail: str,
) -> T:
    """Run a built agent in a fresh scope and pull the target out of it."""
    async with TypedScope(detail=detail) as scope:
        for typ, value in injections:
            scope.inject(typ, value)

        run_method = cast(
            Callable[[Scope, dict[type[Any], Scope]], Coroutine[Any, Any, None]],
            getattr(agent, "run"),
        )
        await run_method(scope.inner, {})

        return scope.get(target)


def build_agent(target: type[Any]) -> EventLoopAgent:
    """nodnod discovers every dependency reachable from target."""
    all_nodes: set[type[Node[Any, Any]]] = {cast(type[Node[Any, Any]], target)}
    return EventLoopAgent.build(all_nodes)


# ═══════════════════════════════════════════════════════════════════════════════
# Run — one-shot awaitable builder
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class Run[T]:
    """
    One-shot runner for a node.

    Example:
        node = await run(FinalResultNode).inject(spec)
    """

    _target: type[T]
    _injections: tuple[tuple[type[Any], Any], ...]

    def inject(self, value: object) -> Run[T]:
        """Inject a value. Type is inferred from runtime type."""
        value_type = cast(type[Any], type(value))
        return Run(
            _target=self._target,
            _injections=(*self._injections, (value_type, value)),
        )

    def __await__(self) -> Any:
        return self._execute().__await__()

    async def _execute(self) -> T:
        return await execute(
            build_agent(self._target), self._target, self._injections, "run"
        )


def run[T](target: type[T]) -> Run[T]:
    """Run a node, building its graph on the spot."""
    return Run(_target=target, _injections=())


__all__ = ("TypedScope", "Run", "run", "execute", "build_agent")
