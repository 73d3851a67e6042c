"""Payload definition for the protocol layer.

A payload is the only unit that crosses the wire. Calls and their
acknowledgments share the same shape; acknowledgments are calls to the
reserved pseudo-methods ``__resolve__`` and ``__reject__``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ..errors import PayloadError

RESOLVE = "__resolve__"
REJECT = "__reject__"

# Methods starting with this prefix are internal and never acknowledged.
INTERNAL_PREFIX = "_"

RESERVED_METHODS = frozenset({RESOLVE, REJECT})


def is_internal(method: str) -> bool:
    """Check if a method name belongs to the internal namespace."""
    return method.startswith(INTERNAL_PREFIX)


class Payload(BaseModel):
    """A method call travelling between two peers.

    Each payload:
    - Has an ``id`` unique per sender and strictly increasing
    - Has a ``method`` naming the function to run on the receiving side
    - Has ``args``, the positional arguments (possibly serialized)

    Example (call):
        {"id": 0, "method": "hello", "args": [2, 3]}

    Example (acknowledgment of call 0, sent with the responder's own id):
        {"id": 7, "method": "__resolve__", "args": [0, 5]}

    ``args`` is typed loosely on purpose: a configured serializer may turn the
    argument list into any representation the transport understands.
    """

    id: int
    method: str
    args: Any = Field(default_factory=list)

    @property
    def internal(self) -> bool:
        """True for ``__resolve__``/``__reject__`` and other internal calls."""
        return is_internal(self.method)

    @classmethod
    def call(cls, call_id: int, method: str, args: list[Any] | tuple[Any, ...]) -> Payload:
        """Factory for an ordinary call payload."""
        return cls(id=call_id, method=method, args=list(args))

    @classmethod
    def resolve(cls, reply_id: int, call_id: int, result: Any) -> Payload:
        """Factory for a successful acknowledgment of ``call_id``."""
        return cls(id=reply_id, method=RESOLVE, args=[call_id, result])

    @classmethod
    def reject(cls, reply_id: int, call_id: int, message: str) -> Payload:
        """Factory for a failed acknowledgment of ``call_id``."""
        return cls(id=reply_id, method=REJECT, args=[call_id, message])

    @classmethod
    def coerce(cls, data: Payload | Mapping[str, Any]) -> Payload:
        """Accept either a Payload or a mapping with the same keys.

        Raises:
            PayloadError: If the data does not describe a payload
        """
        if isinstance(data, Payload):
            return data
        if not isinstance(data, Mapping):
            raise PayloadError(f"Expected a payload mapping, got {type(data).__name__}")
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise PayloadError(f"Invalid payload: {e}") from e
