"""Transport-agnostic protocol layer.

Defines the payload that both peers exchange and the JSON codecs used
by stream transports.

Key concepts:
- Payload: {id, method, args}, the only unit on the wire
- Acknowledgments: calls to the reserved __resolve__/__reject__ methods,
  with the original call id in args[0]
"""

from .codecs import decode_payload, encode_payload, json_deserializer, json_serializer
from .payload import INTERNAL_PREFIX, REJECT, RESERVED_METHODS, RESOLVE, Payload, is_internal

__all__ = [
    "Payload",
    "RESOLVE",
    "REJECT",
    "RESERVED_METHODS",
    "INTERNAL_PREFIX",
    "is_internal",
    "json_serializer",
    "json_deserializer",
    "encode_payload",
    "decode_payload",
]
