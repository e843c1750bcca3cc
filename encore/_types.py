"""
Core types for encore.

Re-exports from kungfu + custom type aliases.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

# Re-export from kungfu
from kungfu import Result, Ok, Error, Option, Some, Nothing, LazyCoroResult

# ═══════════════════════════════════════════════════════════════════════════════
# Lazy Computation Aliases
# ═══════════════════════════════════════════════════════════════════════════════

type Lazy[T, E] = LazyCoroResult[T, E]
"""Lazy async computation that may fail."""

type Operation[I, T, E] = Callable[[I], Awaitable[Result[T, E]]]
"""
A side-effecting service call.

Anything awaitable that yields a Result fits: a function returning
LazyCoroResult, or a plain `async def` returning Ok/Error.
"""

# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from kungfu
    "Result",
    "Ok",
    "Error",
    "Option",
    "Some",
    "Nothing",
    "LazyCoroResult",
    # Type aliases
    "Lazy",
    "Operation",
)
