"""Subprocess channel.

Launches a peer program and talks to it over its stdin/stdout with the
stdio wire format. The child's stderr is read in the background and
forwarded to logging.

Example:
    rpc = Alice()
    alice, bob = rpc.agents()
    channel = SubprocessChannel.for_command([sys.executable, "-m", "alice_bob", "serve", "operator"])
    channel.attach(rpc)
    async with channel:
        print(await bob.add(2, 3))
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from .stdio import DEFAULT_LINE_LIMIT, StdioChannel, StdioConfig

logger = logging.getLogger(__name__)


@dataclass
class SubprocessConfig:
    """Configuration for a subprocess peer."""

    command: list[str] = field(default_factory=list)
    working_directory: str | None = None
    env: dict[str, str] | None = None
    line_limit: int = DEFAULT_LINE_LIMIT
    # Seconds to wait for a clean exit after stdin is closed
    shutdown_timeout: float = 5.0


class SubprocessChannel(StdioChannel):
    """Channel to a child process speaking JSON lines on stdin/stdout."""

    def __init__(self, config: SubprocessConfig):
        if not config.command:
            raise ValueError("SubprocessConfig.command must not be empty")
        super().__init__(config=StdioConfig(line_limit=config.line_limit))
        self.subprocess_config = config
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None

    @classmethod
    def for_command(cls, command: list[str], **kwargs: Any) -> SubprocessChannel:
        """Shortcut for ``SubprocessChannel(SubprocessConfig(command=...))``."""
        return cls(SubprocessConfig(command=list(command), **kwargs))

    @property
    def pid(self) -> int | None:
        """Child process id, once launched."""
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        """Child exit status, once it has exited."""
        return self._process.returncode if self._process else None

    async def _do_connect(self) -> None:
        """Launch the child and take over its pipes."""
        cfg = self.subprocess_config

        env = None
        if cfg.env:
            env = {**os.environ, **cfg.env}

        self._process = await asyncio.create_subprocess_exec(
            *cfg.command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cfg.working_directory,
            env=env,
            limit=cfg.line_limit,
        )
        self._reader = self._process.stdout
        self._writer = self._process.stdin

        self._stderr_task = asyncio.create_task(self._read_stderr())

        logger.info(f"Launched subprocess: {' '.join(cfg.command)} (pid={self._process.pid})")

    async def _do_disconnect(self) -> None:
        """Close the child's stdin, then wait for it (terminate if it hangs)."""
        await super()._do_disconnect()

        if self._process:
            try:
                await asyncio.wait_for(
                    self._process.wait(), timeout=self.subprocess_config.shutdown_timeout
                )
            except TimeoutError:
                self._process.terminate()
                try:
                    await asyncio.wait_for(self._process.wait(), timeout=5.0)
                except TimeoutError:
                    self._process.kill()
                    await self._process.wait()
            logger.info(
                f"Subprocess exited (pid={self._process.pid}, returncode={self._process.returncode})"
            )

        if self._stderr_task:
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task
            self._stderr_task = None

    async def _read_stderr(self) -> None:
        """Read and log stderr output."""
        if not self._process or not self._process.stderr:
            return

        try:
            while True:
                line = await self._process.stderr.readline()
                if not line:
                    break
                logger.debug(f"[peer stderr] {line.decode('utf-8', errors='replace').rstrip()}")
        except asyncio.CancelledError:
            pass
