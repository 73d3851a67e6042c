"""In-memory transports.

Two flavours:
- ``link(a, b)``: direct wiring, ``a.local.send = b.local.receive`` and back.
  Every call runs to completion inside the caller's await, and errors raised
  by the far side's ``receive`` propagate straight to the caller.
- ``MemoryChannel.pair()``: two queue-backed channels. Delivery happens on
  reader tasks, like a real socket, and every payload is recorded.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from ..core import AliceBob
from ..protocol.payload import Payload
from .base import Channel

# Sentinel closing a MemoryChannel inbox
_EOF = None


def link(a: AliceBob, b: AliceBob) -> tuple[AliceBob, AliceBob]:
    """Wire two engines directly to each other."""
    a.local.send = b.local.receive
    b.local.send = a.local.receive
    return a, b


class MemoryChannel(Channel):
    """One end of an in-memory duplex pipe.

    Usage:
        left, right = MemoryChannel.pair()
        left.attach(Alice())
        right.attach(Bob())
        await left.start()
        await right.start()
    """

    def __init__(self) -> None:
        super().__init__()
        self.peer: MemoryChannel | None = None
        self._inbox: asyncio.Queue[Payload | None] = asyncio.Queue()
        self._sent: list[Payload] = []

    @classmethod
    def pair(cls) -> tuple[MemoryChannel, MemoryChannel]:
        """Create two connected ends."""
        left, right = cls(), cls()
        left.peer, right.peer = right, left
        return left, right

    @property
    def sent(self) -> list[Payload]:
        """Every payload sent through this end (a copy)."""
        return self._sent.copy()

    async def _do_connect(self) -> None:
        if self.peer is None:
            raise ConnectionError("MemoryChannel has no peer; use MemoryChannel.pair()")

    async def _do_disconnect(self) -> None:
        if self.peer is not None:
            self.peer._inbox.put_nowait(_EOF)

    async def _do_send(self, payload: Payload) -> None:
        if self.peer is None:
            raise ConnectionError("MemoryChannel has no peer; use MemoryChannel.pair()")
        self._sent.append(payload)
        await self.peer._inbox.put(payload)

    async def _receive_payloads(self) -> AsyncIterator[Payload]:
        while True:
            payload = await self._inbox.get()
            if payload is _EOF:
                break
            yield payload
