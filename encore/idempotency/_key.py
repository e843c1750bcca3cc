"""
Dedup key derivation.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from encore.idempotency._types import InvalidInputError, OperationRequest

SEPARATOR = "-"

type KeyFn = Callable[[OperationRequest[Any]], str]


def is_blank(value: str | None) -> bool:
    """None, empty and whitespace-only strings are blank."""
    return value is None or not value.strip()


def build_key(
    name: str | None,
    type: str | None,
    seq: str | None,
    *,
    separator: str = SEPARATOR,
) -> str:
    """
    Compose a dedup key from name, type and seq.

    Blank name/type are dropped along with their separator; seq is
    mandatory and always last.

    Example:
        build_key("addPoints", "gift", "abc123")  # "addPoints-gift-abc123"
        build_key("redeem", "", "xyz")             # "redeem-xyz"
    """
    if seq is None or is_blank(seq):
        raise InvalidInputError("seq is required to build an idempotency key")
    parts = [part for part in (name, type) if part is not None and not is_blank(part)]
    return separator.join((*parts, seq))


def key_for(request: OperationRequest[Any]) -> str:
    """Default key function: build_key over the request's identity fields."""
    return build_key(request.name, request.type, request.seq)


__all__ = (
    "SEPARATOR",
    "KeyFn",
    "is_blank",
    "build_key",
    "key_for",
)
