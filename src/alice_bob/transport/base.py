"""Channel abstraction shared by the bundled transport adapters.

The core engine only needs a ``send(payload)`` function and someone who
calls ``receive(payload)`` for every inbound payload. A Channel provides
both for a concrete medium:

- ``attach(engine)`` installs ``channel.send`` as the engine's transport
- a background reader task feeds each inbound payload to the engine

Every inbound payload is dispatched in its own task. A handler that calls
back into the other peer (bob.hello awaiting alice.hiya) must not block the
reader, or the acknowledgment it waits for could never be read.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..protocol.payload import Payload

if TYPE_CHECKING:
    from ..core import AliceBob

logger = logging.getLogger(__name__)


class ChannelState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class Channel(ABC):
    """Base class for channels.

    Provides:
    - State management
    - Background reader task
    - Concurrent dispatch of inbound payloads to the attached engine

    Subclasses implement ``_do_connect``, ``_do_disconnect``, ``_do_send``
    and ``_receive_payloads``.
    """

    def __init__(self) -> None:
        self._state = ChannelState.DISCONNECTED
        self._engine: AliceBob | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._dispatch_tasks: set[asyncio.Task[Any]] = set()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ChannelState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if the channel is connected."""
        return self._state == ChannelState.CONNECTED

    def attach(self, engine: AliceBob) -> AliceBob:
        """Route ``engine``'s outgoing payloads through this channel and
        its inbound payloads into ``engine.receive``."""
        self._engine = engine
        engine.local.send = self.send
        return engine

    async def start(self) -> None:
        """Connect and start reading."""
        async with self._lock:
            if self._state == ChannelState.CONNECTED:
                return

            self._state = ChannelState.CONNECTING
            try:
                await self._do_connect()
            except Exception as e:
                self._state = ChannelState.DISCONNECTED
                raise ConnectionError(f"Failed to connect: {e}") from e

            self._state = ChannelState.CONNECTED
            self._reader_task = asyncio.create_task(self._read_loop())
            logger.info(f"{self.__class__.__name__} connected")

    async def close(self) -> None:
        """Stop reading and close the medium."""
        async with self._lock:
            if self._state == ChannelState.CLOSED:
                return
            if self._state == ChannelState.DISCONNECTED and self._reader_task is None:
                return

            self._state = ChannelState.CLOSED

            if self._reader_task and self._reader_task is not asyncio.current_task():
                self._reader_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._reader_task
            self._reader_task = None

            current = asyncio.current_task()
            for task in list(self._dispatch_tasks):
                if task is not current:
                    task.cancel()
            self._dispatch_tasks.clear()

            await self._do_disconnect()
            logger.info(f"{self.__class__.__name__} closed")

    async def wait_closed(self) -> None:
        """Wait until the remote end closes the medium (reader hits EOF)."""
        if self._reader_task:
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task

    async def send(self, payload: Payload) -> None:
        """Send one payload. Installed as the engine's transport by ``attach``."""
        if not self.is_connected:
            raise ConnectionError(f"{self.__class__.__name__} not connected")
        await self._do_send(payload)

    async def _read_loop(self) -> None:
        """Background task reading payloads and dispatching them."""
        try:
            async for payload in self._receive_payloads():
                self._dispatch(payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Read loop error: {e}")
        finally:
            if self._state == ChannelState.CONNECTED:
                self._state = ChannelState.DISCONNECTED
                logger.info(f"{self.__class__.__name__} reached end of stream")

    def _dispatch(self, payload: Payload) -> None:
        task = asyncio.create_task(self._deliver(payload))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

    async def _deliver(self, payload: Payload) -> None:
        if self._engine is None:
            logger.warning(f"Dropping payload {payload.id} ({payload.method}): no engine attached")
            return
        try:
            await self._engine.local.receive(payload)
        except Exception:
            # Unsupported methods and transport failures stop here; they are
            # local problems and are not reported to the remote peer.
            logger.exception(f"Failed to handle payload {payload.id} ({payload.method})")

    # Abstract methods for subclasses
    @abstractmethod
    async def _do_connect(self) -> None:
        """Implementation-specific connection logic."""
        ...

    @abstractmethod
    async def _do_disconnect(self) -> None:
        """Implementation-specific disconnection logic."""
        ...

    @abstractmethod
    async def _do_send(self, payload: Payload) -> None:
        """Implementation-specific send logic."""
        ...

    @abstractmethod
    def _receive_payloads(self) -> AsyncIterator[Payload]:
        """Implementation-specific receive logic. Must be an async generator."""
        ...

    async def __aenter__(self) -> Channel:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
