"""The bidirectional call/response correlation engine.

Flow of one call from alice to bob:

    alice: await bob.hello(2, 3)
        -> id 0 allocated, pending result registered under 0
        -> send {"id": 0, "method": "hello", "args": [2, 3]}
    bob: receive(...)
        -> hello(2, 3) == 5
        -> send {"id": <bob's next id>, "method": "__resolve__", "args": [0, 5]}
    alice: receive(...)
        -> __resolve__(0, 5) pops pending result 0 and settles it with 5

The engine never touches the transport: the host supplies ``send`` and
feeds every inbound payload to ``receive``.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Iterator, Mapping
from typing import Any

from .agent import AgentOptions, Handler, LocalAgent, RemoteAgent, SendFn, assign
from .correlation import CorrelationTable, IdAllocator
from .errors import MissingTransportError, RemoteError, ReservedMethodError
from .protocol.payload import REJECT, RESOLVE, Payload, is_internal

logger = logging.getLogger(__name__)

Overrides = AgentOptions | Mapping[str, Any] | None


async def _invoke(fn: Handler, args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class AliceBob:
    """One side of a two-peer RPC link.

    Owns the id counter and the correlation table, and exposes a ``local``
    and a ``remote`` agent to the host.

    Example:
        rpc = AliceBob(send=lambda payload: channel.write(payload))
        local, remote = rpc.agents({"debug": True})
        channel.on_message(local.receive)

        local.register("ping", lambda: "pong")
        result = await remote.hello(2, 3)
    """

    local_name = "local"
    remote_name = "remote"

    def __init__(self, send: SendFn | None = None, target: Any = None):
        """Initialize the engine.

        Args:
            send: Transport send, called with every outgoing Payload. May be
                assigned later as ``local.send`` or replaced by
                ``local.deferred_send``.
            target: Optional object whose public callables the remote may
                invoke, in addition to registered methods.
        """
        self._ids = IdAllocator()
        self._callbacks = CorrelationTable()

        self.local = LocalAgent(self.receive, name=self.local_name, send=send, target=target)
        self.local._register_internal(RESOLVE, self._resolve)
        self.local._register_internal(REJECT, self._reject)

        self.remote = RemoteAgent(self.call, name=self.remote_name)

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} local={self.local.name!r} "
            f"remote={self.remote.name!r} pending={self.pending}>"
        )

    def __iter__(self) -> Iterator[LocalAgent | RemoteAgent]:
        yield self.local
        yield self.remote

    @property
    def pending(self) -> int:
        """Number of outgoing calls still waiting for an acknowledgment."""
        return len(self._callbacks)

    @property
    def last_id(self) -> int:
        """Most recently allocated payload id (-1 before any send)."""
        return self._ids.current

    def agents(
        self, local: Overrides = None, remote: Overrides = None
    ) -> tuple[LocalAgent, RemoteAgent]:
        """Apply overrides and return the ``(local, remote)`` agents.

        Example:
            alice, bob = Alice().agents()

            # enable debugging on alice
            alice, bob = Alice().agents({"debug": True})

            # different names
            server, client = AliceBob().agents(
                {"name": "server", "debug": True},
                {"name": "client"},
            )

        Args:
            local: Overrides for the local agent
            remote: Overrides for the remote agent
        """
        assign(self.local, local)
        assign(self.remote, remote)
        return self.local, self.remote

    # ------------------------------------------------------------------
    # Outgoing
    # ------------------------------------------------------------------

    async def call(self, method: str, *args: Any) -> Any:
        """Call ``method`` on the remote peer and wait for its result.

        This is what every remote stub forwards to; use it directly when the
        method name is only known at runtime.

        Raises:
            RemoteError: The remote method failed (message text only)
            MissingTransportError: No transport is configured
            ReservedMethodError: ``method`` is an internal name
        """
        if is_internal(method):
            raise ReservedMethodError(f"Cannot call internal method {method!r}")

        call_id = self._ids.next()
        pending = self._callbacks.register(call_id)
        try:
            await self._send(Payload.call(call_id, method, args))
            return await pending
        except RemoteError as e:
            # Fresh error: nothing from the transport path leaks into the traceback
            raise RemoteError(e.message) from None
        except BaseException:
            self._callbacks.discard(call_id)
            pending.cancel()
            raise

    async def _send(self, payload: Payload) -> None:
        local = self.local
        if local.debug:
            local.log(
                " ├> SEND ├>",
                f"{payload.id} {local.name}".ljust(12),
                "│",
                payload.method,
                payload.args,
            )

        transport = local.transport()
        if transport is None:
            raise MissingTransportError(local.name)

        outgoing = payload.model_copy(update={"args": local.serializer(payload.args)})
        result = transport(outgoing)
        if inspect.isawaitable(result):
            await result

    # ------------------------------------------------------------------
    # Incoming
    # ------------------------------------------------------------------

    async def receive(self, data: Payload | Mapping[str, Any]) -> Any:
        """Handle one inbound payload. The transport adapter calls this.

        Ordinary calls are acknowledged with ``__resolve__`` or
        ``__reject__``; the pseudo-methods themselves are not.

        Returns:
            The local method's result (None if it failed)

        Raises:
            PayloadError: ``data`` is not a payload
            UnsupportedMethodError: The method is not callable on this side.
                Raised here, to the adapter, and never sent to the remote.
        """
        payload = Payload.coerce(data)
        local = self.local

        if local.debug:
            local.log(
                "<┤  RECV │",
                f"{self.remote.name} {payload.id}".rjust(12),
                "<┤",
                payload.method,
                payload.args,
            )

        fn = local.lookup(payload.method)

        if payload.internal:
            return await _invoke(fn, local.deserializer(payload.args))

        try:
            result = await _invoke(fn, local.deserializer(payload.args))
            # An acknowledgment that cannot be sent (e.g. unserializable result)
            # is reported to the caller as a rejection
            await self._send(Payload.resolve(self._ids.next(), payload.id, result))
        except Exception as e:
            # The failure belongs to the remote caller; only its text goes back
            if local.debug:
                local.log(e)
            await self._send(Payload.reject(self._ids.next(), payload.id, str(e)))
            return None

        return result

    def _resolve(self, call_id: int, result: Any = None) -> None:
        if not isinstance(call_id, int):
            logger.warning(f"Ignoring {RESOLVE} with malformed call id {call_id!r}")
            return
        self._callbacks.settle(call_id, value=result)

    def _reject(self, call_id: int, message: Any = "") -> None:
        if not isinstance(call_id, int):
            logger.warning(f"Ignoring {REJECT} with malformed call id {call_id!r}")
            return
        self._callbacks.settle(call_id, error=RemoteError(str(message)))


class Alice(AliceBob):
    """AliceBob with agents named ``alice`` (local) and ``bob`` (remote)."""

    local_name = "alice"
    remote_name = "bob"


class Bob(AliceBob):
    """AliceBob with agents named ``bob`` (local) and ``alice`` (remote)."""

    local_name = "bob"
    remote_name = "alice"
