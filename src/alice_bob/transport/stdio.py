"""stdio channel.

Newline-delimited JSON payloads over a pair of byte streams. Used for:
- a peer running as a subprocess, talking over its stdin/stdout
- pipe-based IPC between two processes

Wire format (UTF-8, one payload per line, LF endings):
    → {"id":0,"method":"hello","args":["there",{"iam":"alice"}]}
    ← {"id":0,"method":"hiya","args":[{"from":"bob"}]}
    → {"id":1,"method":"__resolve__","args":[0,null]}
    ← {"id":1,"method":"__resolve__","args":[0,"hi alice"]}

Lines that are not valid payloads are logged and skipped. Anything the
process writes to stdout outside this channel corrupts the stream, so logs
belong on stderr.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

from ..errors import PayloadError
from ..protocol.codecs import decode_payload, encode_payload
from ..protocol.payload import Payload
from .base import Channel

logger = logging.getLogger(__name__)

# Lines longer than this are rejected by the reader
DEFAULT_LINE_LIMIT = 2**20


class ByteWriter(Protocol):
    """The part of asyncio.StreamWriter a StdioChannel needs."""

    def write(self, data: bytes) -> Any: ...

    async def drain(self) -> None: ...


@dataclass
class StdioConfig:
    """Configuration for the stdio channel."""

    line_limit: int = DEFAULT_LINE_LIMIT
    close_writer: bool = True


class StdioChannel(Channel):
    """Bidirectional JSON-lines channel over byte streams.

    Pass an existing ``asyncio.StreamReader`` and writer (e.g. a
    subprocess's pipes), or nothing to use this process's own stdin and
    stdout.

    Example:
        rpc = Bob()
        channel = StdioChannel()
        channel.attach(rpc)
        await channel.start()
        await channel.wait_closed()  # until stdin closes
    """

    def __init__(
        self,
        reader: asyncio.StreamReader | None = None,
        writer: ByteWriter | None = None,
        config: StdioConfig | None = None,
    ):
        super().__init__()
        self.config = config or StdioConfig()
        self._reader = reader
        self._writer = writer
        self._write_lock = asyncio.Lock()

    async def _do_connect(self) -> None:
        """Attach to this process's stdin/stdout unless streams were given."""
        loop = asyncio.get_running_loop()

        if self._reader is None:
            self._reader = asyncio.StreamReader(limit=self.config.line_limit)
            protocol = asyncio.StreamReaderProtocol(self._reader)
            await loop.connect_read_pipe(lambda: protocol, sys.stdin)

        if self._writer is None:
            transport, proto = await loop.connect_write_pipe(
                asyncio.streams.FlowControlMixin,
                sys.stdout,
            )
            self._writer = asyncio.StreamWriter(transport, proto, None, loop)

    async def _do_disconnect(self) -> None:
        writer = self._writer
        if writer is None or not self.config.close_writer:
            return
        close = getattr(writer, "close", None)
        if close is not None:
            close()
            wait_closed = getattr(writer, "wait_closed", None)
            if wait_closed is not None:
                try:
                    await wait_closed()
                except (ConnectionError, BrokenPipeError) as e:
                    logger.debug(f"Writer closed with error: {e}")

    async def _do_send(self, payload: Payload) -> None:
        """Write the payload as one JSON line."""
        if self._writer is None:
            raise ConnectionError("stdio channel has no writer")

        async with self._write_lock:
            self._writer.write(encode_payload(payload))
            await self._writer.drain()

    async def _receive_payloads(self) -> AsyncIterator[Payload]:
        """Read payload lines until EOF."""
        if self._reader is None:
            raise ConnectionError("stdio channel has no reader")

        while True:
            line = await self._reader.readline()
            if not line:
                # EOF
                break
            if not line.strip():
                continue

            try:
                payload = decode_payload(line)
            except PayloadError as e:
                logger.warning(f"Skipping invalid payload line: {e} (line: {line[:50]!r})")
                continue
            yield payload
