"""JSON codecs.

Two levels:
- Argument hooks (``json_serializer``/``json_deserializer``) plug into an
  agent's ``serializer``/``deserializer`` and only touch ``args``.
- Line codecs (``encode_payload``/``decode_payload``) frame a whole payload
  as one UTF-8 JSON line for stream transports.

Wire format (newline-delimited JSON, UTF-8, LF only):
    {"id":0,"method":"hello","args":[2,3]}
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from ..errors import PayloadError
from .payload import Payload

ENCODING = "utf-8"
NEWLINE = "\n"


def json_serializer(args: Any) -> str:
    """Serialize an argument list to JSON text."""
    return json.dumps(args, ensure_ascii=False, separators=(",", ":"))


def json_deserializer(data: Any) -> Any:
    """Deserialize JSON text back to an argument list.

    Already-structured data passes through untouched, so a peer using these
    hooks can still talk to one that does not.
    """
    if isinstance(data, bytes | bytearray):
        data = data.decode(ENCODING)
    if isinstance(data, str):
        return json.loads(data)
    return data


def encode_payload(payload: Payload) -> bytes:
    """Encode a payload as one JSON line."""
    return (payload.model_dump_json() + NEWLINE).encode(ENCODING)


def decode_payload(line: bytes | str) -> Payload:
    """Decode one JSON line into a payload.

    Accepts LF or CRLF endings and a leading UTF-8 BOM.

    Raises:
        PayloadError: If the line is not a JSON payload
    """
    if isinstance(line, bytes | bytearray):
        line = line.decode(ENCODING, errors="replace")
    line = line.strip()
    if line.startswith("\ufeff"):
        line = line[1:]
    if not line:
        raise PayloadError("Empty payload line")
    try:
        return Payload.model_validate_json(line)
    except ValidationError as e:
        raise PayloadError(f"Invalid payload: {e}") from e
