"""
Compiled graph — for repeated execution.

Pre-compile once, run many times.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, cast

from nodnod import EventLoopAgent

from encore.graph._run import build_agent, execute


@dataclass(slots=True, frozen=True)
class Compiled[T]:
    """
    Pre-compiled graph.

    Note: the agent is immutable once built, so one Compiled may be
    awaited from many tasks at once; each call gets its own scope.

    Example:
        pipeline = graph(FinalResultNode)
        node = await pipeline(spec)
    """

    _target: type[T]
    _agent: EventLoopAgent

    async def __call__(self, *inputs: object) -> T:
        injections = tuple((cast(type[Any], type(v)), v) for v in inputs)
        return await execute(self._agent, self._target, injections, "compiled_run")


def graph[T](target: type[T]) -> Compiled[T]:
    """Pre-compile a graph for target."""
    return Compiled(_target=target, _agent=build_agent(target))


__all__ = ("Compiled", "graph")
