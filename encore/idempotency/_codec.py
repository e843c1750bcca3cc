"""
Response codecs — how committed responses are stored.
"""

from __future__ import annotations

from typing import Any, Protocol

from pydantic import TypeAdapter


class Codec[R](Protocol):
    """Serializes responses for the store."""

    def encode(self, response: R) -> str: ...

    def decode(self, raw: str) -> R: ...


class JsonCodec[R]:
    """
    JSON codec driven by the response type.

    Note: the type is explicit — replayed responses come back as the
    same class the operation returned, nested dataclasses included.

    Example:
        codec = JsonCodec(OperationResult[PointsBalance])
    """

    __slots__ = ("_adapter", "_response_type")

    def __init__(self, response_type: Any) -> None:
        self._response_type = response_type
        self._adapter: TypeAdapter[R] = TypeAdapter(response_type)

    @property
    def response_type(self) -> Any:
        return self._response_type

    def encode(self, response: R) -> str:
        return self._adapter.dump_json(response).decode()

    def decode(self, raw: str) -> R:
        return self._adapter.validate_json(raw)


__all__ = ("Codec", "JsonCodec")
