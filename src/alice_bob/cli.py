"""alice-bob command line.

Usage:
    alice-bob serve operator                       # expose a module over stdio
    alice-bob serve mypkg.api:service --debug      # expose an object's methods
    alice-bob call -m add -a 2 -a 3 -- alice-bob serve operator
    alice-bob demo                                 # alice spawns bob and says hello

stdout belongs to the protocol when serving; all logging goes to stderr.
"""

from __future__ import annotations

import asyncio
import importlib
import json
import logging
import sys
from typing import Any

import click

from . import __version__
from .agent import AgentOptions
from .core import AliceBob
from .errors import AliceBobError, RemoteError
from .transport.stdio import StdioChannel
from .transport.subprocess import SubprocessChannel

logger = logging.getLogger(__name__)


def configure_logging(verbose: int) -> None:
    """Log to stderr; each -v lowers the threshold one level."""
    level = max(logging.DEBUG, logging.WARNING - 10 * verbose)
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr,
    )


def load_target(target: str) -> Any:
    """Import ``module`` or ``module:attribute``."""
    module_name, _, attr = target.partition(":")
    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(f"Cannot import {module_name!r}: {e}") from e
    for part in filter(None, attr.split(".")):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise click.BadParameter(f"{target!r} has no attribute {part!r}") from e
    return obj


def parse_arg(raw: str) -> Any:
    """Decode a JSON argument; anything that is not JSON is taken as a string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@click.group()
@click.option("-v", "--verbose", count=True, help="More logging on stderr (repeatable)")
@click.version_option(__version__, prog_name="alice-bob")
def main(verbose: int) -> None:
    """alice-bob - RPC between two peers over any channel."""
    configure_logging(verbose)


@main.command()
@click.argument("target")
@click.option("--name", default="bob", show_default=True, help="Name of this peer")
@click.option("--remote-name", default="alice", show_default=True, help="Name of the caller")
@click.option("--debug", is_flag=True, help="Trace every payload on stderr")
def serve(target: str, name: str, remote_name: str, debug: bool) -> None:
    """Expose TARGET's public callables over stdin/stdout.

    TARGET is ``module`` or ``module:attribute``.
    """
    obj = load_target(target)
    local = AgentOptions.from_env()
    if name and local.name is None:
        local.name = name
    if debug:
        local.debug = True
        logging.getLogger("alice_bob.agent").setLevel(logging.INFO)

    asyncio.run(_serve(obj, local, AgentOptions(name=remote_name)))


async def _serve(target: Any, local: AgentOptions, remote: AgentOptions) -> None:
    rpc = AliceBob(target=target)
    rpc.agents(local, remote)

    channel = StdioChannel()
    channel.attach(rpc)
    await channel.start()
    logger.info(f"Serving {target!r} as {rpc.local.name!r}")
    try:
        await channel.wait_closed()
    finally:
        await channel.close()


@main.command()
@click.option("-m", "--method", required=True, help="Remote method name")
@click.option("-a", "--arg", "args", multiple=True, help="Positional argument, JSON-decoded")
@click.option("--timeout", default=30.0, show_default=True, help="Seconds to wait for the result")
@click.option("--debug", is_flag=True, help="Trace every payload on stderr")
@click.argument("command", nargs=-1, required=True)
def call(method: str, args: tuple[str, ...], timeout: float, debug: bool, command: tuple[str, ...]) -> None:
    """Start COMMAND as a peer, call one method, print the JSON result."""
    if debug:
        logging.getLogger("alice_bob.agent").setLevel(logging.INFO)
    params = [parse_arg(raw) for raw in args]

    try:
        result = asyncio.run(_call(list(command), method, params, timeout, debug))
    except RemoteError as e:
        raise click.ClickException(f"{method} failed remotely: {e}") from e
    except TimeoutError as e:
        raise click.ClickException(f"{method} timed out after {timeout}s") from e
    except (AliceBobError, ConnectionError) as e:
        raise click.ClickException(str(e)) from e

    click.echo(json.dumps(result))


async def _call(
    command: list[str], method: str, params: list[Any], timeout: float, debug: bool
) -> Any:
    rpc = AliceBob()
    rpc.agents({"name": "cli", "debug": debug}, {"name": command[0]})

    channel = SubprocessChannel.for_command(command)
    channel.attach(rpc)
    async with channel:
        return await asyncio.wait_for(rpc.call(method, *params), timeout)


@main.command()
@click.option(
    "--role",
    type=click.Choice(["alice", "bob"]),
    default="alice",
    show_default=True,
    help="Which side of the demo to run",
)
def demo(role: str) -> None:
    """Run the alice/bob fork demo."""
    from .demo import run_alice, run_bob

    logging.getLogger("alice_bob.agent").setLevel(logging.INFO)
    if role == "bob":
        asyncio.run(run_bob())
        return

    result = asyncio.run(run_alice())
    click.echo(json.dumps(result))


if __name__ == "__main__":
    main()
