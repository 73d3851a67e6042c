"""The alice/bob fork demo.

alice launches bob as a child process and talks to it over bob's
stdin/stdout:

    alice -> bob.hello("there", {"iam": "alice"})
             bob -> alice.hiya({"from": "bob"})
             bob <- None
    alice <- "hi alice"

Both sides run with debug tracing on, so every payload shows up in the logs
(bob's through alice's stderr forwarding).
"""

from __future__ import annotations

import logging
import sys
from typing import Any

from .core import Alice, Bob
from .transport.stdio import StdioChannel
from .transport.subprocess import SubprocessChannel

logger = logging.getLogger(__name__)


def bob_command() -> list[str]:
    """Command line that starts the bob side of the demo."""
    return [sys.executable, "-m", "alice_bob", "-v", "demo", "--role", "bob"]


async def run_bob() -> None:
    """Serve bob over this process's stdin/stdout until stdin closes."""
    rpc = Bob()
    bob, alice = rpc.agents({"debug": True})

    @bob.method
    async def hello(message: str, data: dict[str, Any]) -> str:
        iam = data["iam"]
        bob.log(f"{iam} says: hello {message}")

        # bob may call alice while alice is still waiting on hello
        await alice.hiya({"from": "bob"})

        # raising here makes alice's await raise RemoteError with this message
        return f"hi {iam}"

    channel = StdioChannel()
    channel.attach(rpc)
    await channel.start()
    try:
        await channel.wait_closed()
    finally:
        await channel.close()


async def run_alice(command: list[str] | None = None) -> str:
    """Start bob, say hello, and return bob's answer."""
    rpc = Alice()
    alice, bob = rpc.agents()

    # debug can be switched on at any time
    alice.debug = True

    @alice.method
    async def hiya(sender: dict[str, Any]) -> None:
        alice.log(sender["from"], "says: hiya!")

    channel = SubprocessChannel.for_command(command or bob_command())
    channel.attach(rpc)
    async with channel:
        result = await bob.hello("there", {"iam": alice.name})
        alice.log("bob responded with:", result)

    return result
