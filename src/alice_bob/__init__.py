"""alice-bob: transport-agnostic RPC between two named peers.

Public API:
- AliceBob, Alice, Bob: the call/response correlation engine
- LocalAgent, RemoteAgent, AgentOptions: the two agents and their overrides
- Payload: the wire unit {id, method, args}
- Errors: AliceBobError and subclasses

Example:
    rpc = Alice(send=transport_send)
    alice, bob = rpc.agents({"debug": True})
    transport.on_message(alice.receive)

    alice.register("hiya", lambda who: f"hiya {who}")
    print(await bob.hello(2, 3))
"""

from .agent import AgentOptions, LocalAgent, RemoteAgent
from .core import Alice, AliceBob, Bob
from .errors import (
    AliceBobError,
    DuplicateCallIdError,
    MissingTransportError,
    PayloadError,
    RemoteError,
    ReservedMethodError,
    UnsupportedMethodError,
)
from .protocol import REJECT, RESOLVE, Payload, json_deserializer, json_serializer

__all__ = [
    "AliceBob",
    "Alice",
    "Bob",
    "AgentOptions",
    "LocalAgent",
    "RemoteAgent",
    "Payload",
    "RESOLVE",
    "REJECT",
    "json_serializer",
    "json_deserializer",
    "AliceBobError",
    "DuplicateCallIdError",
    "MissingTransportError",
    "PayloadError",
    "RemoteError",
    "ReservedMethodError",
    "UnsupportedMethodError",
]

__version__ = "0.1.0"
