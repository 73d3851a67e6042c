"""WebSocket channels.

One payload per text frame, encoded as JSON:
    {"id":0,"method":"hello","args":[2,3]}

- WebSocketChannel wraps a ``websockets`` connection. It either dials
  ``config.url`` itself or adopts a connection handed to a server handler.
- StarletteWebSocketChannel wraps a Starlette WebSocket on the server side;
  ``websocket_endpoint`` turns an engine factory into a route endpoint.

Example (server):
    def make_peer() -> AliceBob:
        rpc = Bob()
        rpc.local.register("hello", lambda a, b: a + b)
        return rpc

    app = Starlette(routes=[WebSocketRoute("/rpc", websocket_endpoint(make_peer))])

Example (client):
    rpc = Alice()
    alice, bob = rpc.agents()
    channel = WebSocketChannel(WebSocketConfig(url="ws://localhost:4096/rpc"))
    channel.attach(rpc)
    async with channel:
        assert await bob.hello(2, 3) == 5
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from ..core import AliceBob
from ..errors import PayloadError
from ..protocol.codecs import decode_payload
from ..protocol.payload import Payload
from .base import Channel

logger = logging.getLogger(__name__)


@dataclass
class WebSocketConfig:
    """Configuration for a dialing WebSocket channel."""

    url: str = "ws://localhost:4096/rpc"
    ping_interval: float | None = 30
    ping_timeout: float | None = 10
    open_timeout: float | None = 10


def _decode_frame(data: str | bytes) -> Payload | None:
    try:
        return decode_payload(data)
    except PayloadError as e:
        logger.warning(f"Invalid WebSocket payload: {e}")
        return None


class WebSocketChannel(Channel):
    """Channel over a ``websockets`` connection."""

    def __init__(self, config: WebSocketConfig | None = None, connection: Any = None):
        super().__init__()
        self.config = config or WebSocketConfig()
        self._ws: Any = connection  # websockets ClientConnection / ServerConnection
        self._owns_connection = connection is None

    async def _do_connect(self) -> None:
        """Dial ``config.url`` unless a connection was adopted."""
        if self._ws is not None:
            return

        try:
            import websockets
        except ImportError as e:
            raise ImportError(
                "websockets package required. Install with: pip install websockets"
            ) from e

        self._ws = await websockets.connect(
            self.config.url,
            ping_interval=self.config.ping_interval,
            ping_timeout=self.config.ping_timeout,
            open_timeout=self.config.open_timeout,
        )
        logger.info(f"WebSocket connected to {self.config.url}")

    async def _do_disconnect(self) -> None:
        """Close the connection if this channel opened it."""
        if self._ws is not None and self._owns_connection:
            await self._ws.close()
            self._ws = None

    async def _do_send(self, payload: Payload) -> None:
        if self._ws is None:
            raise ConnectionError("WebSocket not connected")
        await self._ws.send(payload.model_dump_json())

    async def _receive_payloads(self) -> AsyncIterator[Payload]:
        if self._ws is None:
            raise ConnectionError("WebSocket not connected")

        try:
            async for data in self._ws:
                payload = _decode_frame(data)
                if payload is not None:
                    yield payload
        except Exception as e:
            logger.error(f"WebSocket receive error: {e}")


class StarletteWebSocketChannel(Channel):
    """Server-side channel over a Starlette WebSocket."""

    def __init__(self, websocket: WebSocket):
        super().__init__()
        self._websocket = websocket

    async def _do_connect(self) -> None:
        """Accept the WebSocket connection if still pending."""
        if self._websocket.application_state == WebSocketState.CONNECTING:
            await self._websocket.accept()

    async def _do_disconnect(self) -> None:
        """Close the WebSocket connection if the client is still there."""
        if (
            self._websocket.application_state == WebSocketState.CONNECTED
            and self._websocket.client_state == WebSocketState.CONNECTED
        ):
            await self._websocket.close()

    async def _do_send(self, payload: Payload) -> None:
        await self._websocket.send_text(payload.model_dump_json())

    async def _receive_payloads(self) -> AsyncIterator[Payload]:
        while True:
            try:
                data = await self._websocket.receive_text()
            except WebSocketDisconnect:
                break
            payload = _decode_frame(data)
            if payload is not None:
                yield payload


def websocket_endpoint(
    factory: Callable[[], AliceBob],
    on_connect: Callable[[AliceBob], Awaitable[Any] | Any] | None = None,
) -> Callable[[WebSocket], Awaitable[None]]:
    """Build a Starlette WebSocket endpoint serving one engine per connection.

    Args:
        factory: Creates a fresh engine (with its methods registered) for
            every connection
        on_connect: Optional hook run alongside the connection once the
            channel is reading; it may call the client right away through
            ``engine.remote``. Cancelled if the client disconnects first.

    Returns:
        An endpoint for ``WebSocketRoute``
    """

    async def endpoint(websocket: WebSocket) -> None:
        engine = factory()
        channel = StarletteWebSocketChannel(websocket)
        channel.attach(engine)
        await channel.start()

        hook: asyncio.Task[None] | None = None
        try:
            if on_connect is not None:
                hook = asyncio.create_task(_run_hook(on_connect, engine))
            await channel.wait_closed()
        finally:
            if hook is not None:
                hook.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await hook
            await channel.close()

    return endpoint


async def _run_hook(hook: Callable[[AliceBob], Awaitable[Any] | Any], engine: AliceBob) -> None:
    try:
        result = hook(engine)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("on_connect hook failed")
