"""Ready-made transport adapters.

The core never depends on these; each one only uses the public contract
(``local.send`` out, ``local.receive`` in):

- memory: direct wiring (``link``) and queue-backed channels for tests
- stdio: newline-delimited JSON over byte streams
- subprocess: a child peer process over its stdin/stdout
- websocket: ``websockets`` connections and Starlette endpoints
"""

from .base import Channel, ChannelState
from .memory import MemoryChannel, link
from .stdio import StdioChannel, StdioConfig
from .subprocess import SubprocessChannel, SubprocessConfig

# Note: websocket is imported separately to keep starlette optional at import time
# Use: from alice_bob.transport.websocket import WebSocketChannel, websocket_endpoint

__all__ = [
    "Channel",
    "ChannelState",
    "MemoryChannel",
    "link",
    "StdioChannel",
    "StdioConfig",
    "SubprocessChannel",
    "SubprocessConfig",
]
