"""Exception hierarchy for alice-bob.

Local-process errors (unsupported method, missing transport, malformed
payloads) are raised where they happen and never cross the wire.
Remote application failures arrive as message text only and surface
at the caller as RemoteError.
"""

from __future__ import annotations


class AliceBobError(Exception):
    """Base class for all alice-bob errors."""


class UnsupportedMethodError(AliceBobError, TypeError):
    """Inbound payload names a method that is not callable on this side.

    Raised to whatever invoked ``receive`` (the transport adapter). It signals
    a protocol or version mismatch, so it is never sent back to the remote.
    """

    def __init__(self, method: str, found: object):
        self.method = method
        self.found_type = type(found).__name__ if found is not None else "undefined"
        super().__init__(
            f'Agent method "{method}" is not a function. Instead found: {self.found_type}'
        )


class MissingTransportError(AliceBobError, TypeError):
    """Neither ``send`` nor ``deferred_send`` is configured on the local agent."""

    def __init__(self, agent_name: str):
        self.agent_name = agent_name
        super().__init__(f"{agent_name}.send(payload) method must be provided.")


class RemoteError(AliceBobError):
    """A remote method failed.

    Carries only the message text the remote side sent back. The original
    exception type and traceback stay on the remote side.
    """

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PayloadError(AliceBobError, ValueError):
    """Inbound data could not be read as a payload."""


class DuplicateCallIdError(AliceBobError, KeyError):
    """A call id was registered twice in the correlation table."""

    def __init__(self, call_id: int):
        self.call_id = call_id
        super().__init__(call_id)

    def __str__(self) -> str:
        return f"Call id {self.call_id} is already pending"


class ReservedMethodError(AliceBobError, ValueError):
    """Attempt to register a method under a reserved or private name."""
