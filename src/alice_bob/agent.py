"""Local and remote agents.

An AliceBob instance owns exactly one of each:

- LocalAgent: "this side". Holds configuration (name, debug, transport,
  serializer hooks, log sink), the registry of methods the remote may
  call, and the ``receive`` entry point the transport feeds.
- RemoteAgent: stand-in for "the other side". Any public attribute that
  was not assigned explicitly is an async call stub for the remote method
  of the same name.

Both are mutated in place by the host: assign ``send``, flip ``debug``,
register methods. They are never replaced.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, fields
from typing import Any

from .errors import ReservedMethodError, UnsupportedMethodError
from .protocol.payload import RESERVED_METHODS, Payload, is_internal

logger = logging.getLogger(__name__)

# Transport send: plain function or coroutine function taking a Payload
SendFn = Callable[[Payload], Awaitable[Any] | Any]
ReceiveFn = Callable[[Payload | Mapping[str, Any]], Awaitable[Any]]
CallFn = Callable[..., Awaitable[Any]]
Handler = Callable[..., Any]


def identity(data: Any) -> Any:
    """Default serializer and deserializer."""
    return data


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AgentOptions:
    """Override bundle for one agent.

    Only fields that are not None are applied, so a bundle can be merged
    onto an agent that was already configured.

    Example:
        rpc.agents(AgentOptions(name="server", debug=True), {"name": "client"})
    """

    name: str | None = None
    debug: bool | None = None
    send: SendFn | None = None
    deferred_send: Callable[[], SendFn] | None = None
    serializer: Callable[[Any], Any] | None = None
    deserializer: Callable[[Any], Any] | None = None
    log: Callable[..., None] | None = None

    @classmethod
    def coerce(cls, options: AgentOptions | Mapping[str, Any] | None) -> AgentOptions:
        """Accept an AgentOptions, a mapping of its fields, or None.

        Raises:
            TypeError: If the mapping has keys that are not option fields
        """
        if options is None:
            return cls()
        if isinstance(options, AgentOptions):
            return options
        return cls(**options)

    @classmethod
    def from_env(cls, prefix: str = "ALICE_BOB_") -> AgentOptions:
        """Read ``<prefix>NAME`` and ``<prefix>DEBUG`` from the environment."""
        name = os.environ.get(f"{prefix}NAME") or None
        debug_raw = os.environ.get(f"{prefix}DEBUG")
        debug = _env_flag(debug_raw) if debug_raw is not None else None
        return cls(name=name, debug=debug)

    def items(self) -> list[tuple[str, Any]]:
        """(field, value) pairs for every field that is set."""
        return [
            (f.name, getattr(self, f.name))
            for f in fields(self)
            if getattr(self, f.name) is not None
        ]


class LocalAgent:
    """The peer-local agent.

    Methods become remotely invocable in two ways:
    - explicitly, via ``register(name, handler)``, the ``method`` decorator,
      or plain assignment of a callable (``alice.hiya = fn``)
    - structurally, as public callables of the receiver ``target`` object

    Assignment registers only for public names that are neither configuration
    (``name``, ``debug``, ``send``, ...) nor defined on the class; everything
    else is a plain attribute.

    Usage:
        rpc = Alice(send=channel.send)
        alice, bob = rpc.agents()

        @alice.method
        async def hiya(sender: dict) -> None:
            alice.log(sender["from"], "says: hiya!")

        alice.hello = lambda a, b: a + b
    """

    # Attributes that configure the agent rather than name a method
    CONFIG_ATTRIBUTES = frozenset(
        {f.name for f in fields(AgentOptions)} | {"target", "receive"}
    )

    def __init__(
        self,
        receive: ReceiveFn,
        name: str = "local",
        send: SendFn | None = None,
        target: Any = None,
    ):
        self.name = name
        self.debug = False
        self.send: SendFn | None = send
        self.deferred_send: Callable[[], SendFn] | None = None
        self.serializer: Callable[[Any], Any] = identity
        self.deserializer: Callable[[Any], Any] = identity
        self.target = target
        self.receive = receive
        self._methods: dict[str, Handler] = {}

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self.CONFIG_ATTRIBUTES or is_internal(name) or hasattr(type(self), name):
            object.__setattr__(self, name, value)
            return
        if callable(value):
            self.__dict__.pop(name, None)
            self.register(name, value)
            return
        # A non-callable replaces any method of the same name
        self.unregister(name)
        object.__setattr__(self, name, value)

    def __getattr__(self, name: str) -> Handler:
        # Only reached for attributes that do not exist; assigned methods live
        # in the registry
        methods = self.__dict__.get("_methods", {})
        if not is_internal(name) and name in methods:
            return methods[name]
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __repr__(self) -> str:
        return f"<LocalAgent name={self.name!r} methods={sorted(self.methods)!r}>"

    def log(self, *args: Any) -> None:
        """Diagnostic sink. Prefixes the agent name, like ``     alice: ...``.

        Writes to the ``alice_bob.agent`` logger at INFO. Assign a callable to
        ``agent.log`` to send diagnostics elsewhere.
        """
        logger.info(f"{self.name:>10}: " + " ".join(str(arg) for arg in args))

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def transport(self) -> SendFn | None:
        """Resolve the transport send for this moment.

        ``send`` wins; otherwise ``deferred_send()`` is asked again on every
        call, so a reconnected channel is picked up automatically.
        """
        if self.send is not None:
            return self.send
        if self.deferred_send is not None:
            return self.deferred_send()
        return None

    # ------------------------------------------------------------------
    # Method registry
    # ------------------------------------------------------------------

    @property
    def methods(self) -> dict[str, Handler]:
        """Public registered methods (a copy)."""
        return {name: fn for name, fn in self._methods.items() if not is_internal(name)}

    def register(self, name: str, handler: Handler) -> Handler:
        """Make ``handler`` callable by the remote peer as ``name``.

        Re-registering a name replaces the previous handler.

        Raises:
            ReservedMethodError: If ``name`` is reserved or starts with "_"
            TypeError: If ``handler`` is not callable
        """
        if name in RESERVED_METHODS or is_internal(name):
            raise ReservedMethodError(f"Method name {name!r} is reserved for internal use")
        if not callable(handler):
            raise TypeError(f"Handler for {name!r} must be callable, got {type(handler).__name__}")
        self._methods[name] = handler
        return handler

    def unregister(self, name: str) -> None:
        """Remove a registered method. Unknown names are ignored."""
        if not is_internal(name):
            self._methods.pop(name, None)

    def method(
        self, fn: Handler | None = None, *, name: str | None = None
    ) -> Handler | Callable[[Handler], Handler]:
        """Decorator form of ``register``.

        Usage:
            @alice.method
            async def hello(a, b): ...

            @alice.method(name="hello.v2")
            async def hello_v2(a, b): ...
        """

        def decorator(handler: Handler) -> Handler:
            self.register(name or handler.__name__, handler)
            return handler

        if fn is not None:
            return decorator(fn)
        return decorator

    def _register_internal(self, name: str, handler: Handler) -> None:
        self._methods[name] = handler

    def lookup(self, method: str) -> Handler:
        """Resolve a method name to something callable.

        Registry first, then public attributes of ``target``. Internal names
        are only ever resolved from the registry.

        Raises:
            UnsupportedMethodError: If nothing callable is found
        """
        fn = self._methods.get(method)
        if fn is None and self.target is not None and not is_internal(method):
            fn = getattr(self.target, method, None)
        if not callable(fn):
            raise UnsupportedMethodError(method, fn)
        return fn

    def apply(self, options: AgentOptions | Mapping[str, Any] | None) -> None:
        """Apply an override bundle in place."""
        for key, value in AgentOptions.coerce(options).items():
            setattr(self, key, value)


class RemoteAgent:
    """Dynamic stand-in for the remote peer.

    Only ``name`` and explicitly assigned attributes are concrete; every
    other public attribute is an async stub:

        result = await bob.hello(2, 3)

    Assigning an attribute masks the stub of the same name from then on.
    The class defines no public methods; every public name belongs to the
    remote side.
    """

    def __init__(self, call: CallFn, name: str = "remote"):
        self._call = call
        self.name = name

    def __repr__(self) -> str:
        return f"<RemoteAgent name={self.name!r}>"

    def __getattr__(self, method: str) -> Callable[..., Awaitable[Any]]:
        # Only reached for attributes that do not exist
        if is_internal(method):
            raise AttributeError(method)
        call = self._call

        async def stub(*args: Any) -> Any:
            return await call(method, *args)

        stub.__name__ = method
        stub.__qualname__ = f"{self.name}.{method}"
        return stub


def assign(agent: LocalAgent | RemoteAgent, options: AgentOptions | Mapping[str, Any] | None) -> None:
    """Merge an override bundle onto either agent."""
    if isinstance(agent, LocalAgent):
        agent.apply(options)
        return
    for key, value in AgentOptions.coerce(options).items():
        setattr(agent, key, value)
