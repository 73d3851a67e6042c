"""Unit tests for the AliceBob correlation engine.

Most tests wire two engines directly (``link``), so a whole call and its
acknowledgment complete inside one await.
"""

import asyncio
import json
import logging
from unittest.mock import MagicMock

import pytest

from alice_bob import (
    Alice,
    AliceBob,
    Bob,
    LocalAgent,
    MissingTransportError,
    Payload,
    RemoteAgent,
    RemoteError,
    ReservedMethodError,
    UnsupportedMethodError,
    json_deserializer,
    json_serializer,
)
from alice_bob.transport.memory import link

# =============================================================================
# Helpers
# =============================================================================


def drop(payload):
    """Transport that loses every payload."""


def make_pair() -> tuple[Alice, Bob]:
    """Two directly linked engines."""
    alice, bob = Alice(), Bob()
    link(alice, bob)
    return alice, bob


class Calculator:
    def add(self, a, b):
        return a + b


# =============================================================================
# Tests: Construction
# =============================================================================


class TestConstruction:
    """Test engine construction and agent overrides."""

    def test_default_names(self):
        """AliceBob uses local/remote; Alice and Bob swap names."""
        assert [a.name for a in AliceBob()] == ["local", "remote"]
        assert [a.name for a in Alice()] == ["alice", "bob"]
        assert [a.name for a in Bob()] == ["bob", "alice"]

    def test_agents_types(self):
        """agents() returns the local and remote agent."""
        local, remote = Alice().agents()

        assert isinstance(local, LocalAgent)
        assert isinstance(remote, RemoteAgent)

    def test_agents_are_stable(self):
        """Agents are mutated in place, never replaced."""
        rpc = Alice()
        first = rpc.agents()

        assert rpc.agents({"debug": True}) == first
        assert first[0].debug is True

    def test_agents_overrides(self):
        """Both agents accept overrides."""
        server, client = AliceBob().agents(
            {"name": "server", "debug": True},
            {"name": "client"},
        )

        assert server.name == "server"
        assert server.debug is True
        assert client.name == "client"

    def test_send_in_constructor(self):
        """send can be given at construction time."""
        send = MagicMock()

        assert Alice(send=send).local.send is send

    def test_initial_state(self):
        """No call is pending and no id is allocated."""
        rpc = Alice()

        assert rpc.pending == 0
        assert rpc.last_id == -1
        assert "pending=0" in repr(rpc)


# =============================================================================
# Tests: Outgoing calls
# =============================================================================


class TestOutgoing:
    """Test what a call puts on the transport."""

    @pytest.mark.asyncio
    async def test_payload_passed_to_send(self):
        """The stub sends {id, method, args} and waits for the acknowledgment."""
        rpc = Alice()
        sent = []

        async def send(payload):
            sent.append(payload)
            await rpc.local.receive(Payload.resolve(0, payload.id, "ok"))

        rpc.local.send = send
        result = await rpc.remote.hello("there")

        assert result == "ok"
        assert sent == [Payload(id=0, method="hello", args=["there"])]

    @pytest.mark.asyncio
    async def test_sync_send(self):
        """A plain (non-async) send function works too."""
        rpc = Alice()
        sent = []
        rpc.local.send = sent.append

        task = asyncio.create_task(rpc.remote.hello(1))
        await asyncio.sleep(0)

        assert sent == [Payload(id=0, method="hello", args=[1])]
        await rpc.local.receive(Payload.resolve(0, 0, None))
        assert await task is None

    @pytest.mark.asyncio
    async def test_missing_send(self):
        """Without a transport the call fails naming the local agent."""
        alice, bob = Alice().agents()

        with pytest.raises(MissingTransportError, match=r"alice\.send\(payload\) method must be provided"):
            await bob.hello()

    @pytest.mark.asyncio
    async def test_missing_send_nothing_pending(self):
        """A failed send discards its correlation entry."""
        rpc = Alice()

        with pytest.raises(MissingTransportError):
            await rpc.remote.hello()

        assert rpc.pending == 0

    @pytest.mark.asyncio
    async def test_deferred_send(self):
        """deferred_send supplies the transport lazily."""
        alice, bob = make_pair()
        send = alice.local.send
        alice.local.send = None
        alice.local.deferred_send = lambda: send
        bob.local.register("hello", lambda a, b: a + b)

        assert await alice.remote.hello(2, 3) == 5

    @pytest.mark.asyncio
    async def test_call_by_name(self):
        """call() takes the method name at runtime."""
        alice, bob = make_pair()
        bob.local.register("hello", lambda a, b: a * b)

        assert await alice.call("hello", 4, 5) == 20

    @pytest.mark.asyncio
    async def test_call_internal_name(self):
        """Internal methods cannot be called remotely."""
        alice, _ = make_pair()

        with pytest.raises(ReservedMethodError):
            await alice.call("__resolve__", 0, 1)

        assert alice.last_id == -1


# =============================================================================
# Tests: Round trips
# =============================================================================


class TestRoundTrip:
    """Test calls between two linked engines."""

    @pytest.mark.asyncio
    async def test_hello(self):
        """hello(2, 3) returns 5."""
        alice, bob = make_pair()
        bob.local.register("hello", lambda a, b: a + b)

        assert await alice.remote.hello(2, 3) == 5
        assert alice.pending == 0

    @pytest.mark.asyncio
    async def test_async_method(self):
        """Async handlers are awaited before acknowledging."""
        alice, bob = make_pair()

        @bob.local.method
        async def hello(a, b):
            await asyncio.sleep(0.01)
            return a + b

        assert await alice.remote.hello(2, 3) == 5

    @pytest.mark.asyncio
    async def test_none_result(self):
        """A handler returning nothing resolves with None."""
        alice, bob = make_pair()
        bob.local.register("noop", lambda: None)

        assert await alice.remote.noop() is None

    @pytest.mark.asyncio
    async def test_exception_passed_back(self):
        """A failing handler rejects the caller with the message only."""
        alice, bob = make_pair()

        def hello():
            raise ValueError("hello failed")

        bob.local.register("hello", hello)

        with pytest.raises(RemoteError, match="hello failed") as exc_info:
            await alice.remote.hello()

        assert exc_info.value.message == "hello failed"
        assert exc_info.value.__cause__ is None
        assert alice.pending == 0

    @pytest.mark.asyncio
    async def test_unregistered_method(self):
        """An unknown method fails with an error naming it."""
        alice, bob = make_pair()

        with pytest.raises(UnsupportedMethodError, match='Agent method "hello" is not a function'):
            await alice.remote.hello()

        assert alice.pending == 0

    @pytest.mark.asyncio
    async def test_callback_during_call(self):
        """The callee may call back into the caller before answering."""
        alice, bob = make_pair()
        seen = []

        @alice.local.method
        async def hiya(sender):
            seen.append(sender["from"])

        @bob.local.method
        async def hello(message, data):
            await bob.remote.hiya({"from": "bob"})
            return f"hi {data['iam']}"

        result = await alice.remote.hello("there", {"iam": "alice"})

        assert result == "hi alice"
        assert seen == ["bob"]

    @pytest.mark.asyncio
    async def test_target_object(self):
        """Public methods of a target object are callable remotely."""
        caller = Alice()
        server = AliceBob(target=Calculator())
        link(caller, server)

        assert await caller.remote.add(2, 3) == 5

    @pytest.mark.asyncio
    async def test_concurrent_calls(self):
        """Outstanding calls are answered independently."""
        alice, bob = make_pair()

        @bob.local.method
        async def slow(value, delay):
            await asyncio.sleep(delay)
            return value

        results = await asyncio.gather(
            alice.remote.slow("a", 0.03),
            alice.remote.slow("b", 0.01),
            alice.remote.slow("c", 0.02),
        )

        assert results == ["a", "b", "c"]
        assert alice.pending == 0


# =============================================================================
# Tests: Incoming payloads
# =============================================================================


class TestIncoming:
    """Test receive() directly."""

    @pytest.mark.asyncio
    async def test_acknowledges_with_own_id(self):
        """The resolve carries the responder's id and the caller's id in args."""
        sent = []
        rpc = Bob(send=sent.append)
        rpc.local.register("hello", lambda a, b: a + b)

        result = await rpc.local.receive({"id": 7, "method": "hello", "args": [2, 3]})

        assert result == 5
        assert sent == [Payload(id=0, method="__resolve__", args=[7, 5])]

    @pytest.mark.asyncio
    async def test_rejects_with_message(self):
        """A failing handler is answered with __reject__ and the message."""
        sent = []
        rpc = Bob(send=sent.append)

        def hello():
            raise RuntimeError("nope")

        rpc.local.register("hello", hello)

        assert await rpc.local.receive(Payload(id=3, method="hello")) is None
        assert sent == [Payload(id=0, method="__reject__", args=[3, "nope"])]

    @pytest.mark.asyncio
    async def test_no_deduplication(self):
        """The same payload received twice runs twice and is acknowledged twice."""
        sent = []
        handler = MagicMock(return_value="ok")
        rpc = Bob(send=sent.append)
        rpc.local.register("hello", handler)
        payload = Payload(id=0, method="hello", args=[1])

        await rpc.local.receive(payload)
        await rpc.local.receive(payload)

        assert handler.call_count == 2
        assert [p.id for p in sent] == [0, 1]
        assert all(p.args == [0, "ok"] for p in sent)

    @pytest.mark.asyncio
    async def test_acknowledgment_not_acknowledged(self):
        """__resolve__ and __reject__ never produce a reply."""
        sent = []
        rpc = Alice(send=sent.append)

        await rpc.local.receive(Payload.resolve(0, 0, 1))
        await rpc.local.receive(Payload.reject(1, 0, "x"))

        assert sent == []

    @pytest.mark.asyncio
    async def test_unknown_call_id(self, caplog):
        """An acknowledgment for an unknown call is logged and ignored."""
        rpc = Alice(send=drop)

        with caplog.at_level(logging.WARNING):
            assert await rpc.local.receive(Payload.resolve(0, 99, "late")) is None

        assert "unknown call id 99" in caplog.text

    @pytest.mark.asyncio
    async def test_malformed_call_id(self, caplog):
        """A non-integer call id in an acknowledgment is ignored."""
        rpc = Alice(send=drop)

        with caplog.at_level(logging.WARNING):
            await rpc.local.receive({"id": 0, "method": "__reject__", "args": ["x", "boom"]})

        assert "malformed call id" in caplog.text

    @pytest.mark.asyncio
    async def test_unsupported_method_not_sent(self):
        """An unknown method raises to the adapter and sends nothing back."""
        sent = []
        rpc = Bob(send=sent.append)

        with pytest.raises(UnsupportedMethodError):
            await rpc.local.receive(Payload(id=0, method="hello"))

        assert sent == []

    @pytest.mark.asyncio
    async def test_internal_method_not_in_target(self):
        """Underscore methods are never looked up on the target."""
        rpc = AliceBob(send=drop, target=Calculator())

        with pytest.raises(UnsupportedMethodError):
            await rpc.local.receive(Payload(id=0, method="__init__"))

    @pytest.mark.asyncio
    async def test_ids_shared_between_calls_and_acks(self):
        """Acknowledgments consume ids from the same counter as calls."""
        alice, bob = make_pair()
        bob.local.register("hello", lambda: None)
        alice.local.register("hiya", lambda: None)

        await alice.remote.hello()
        await alice.remote.hello()
        await bob.remote.hiya()

        # alice: calls 0, 1 then ack 2; bob: acks 0, 1 then call 2
        assert alice.last_id == 2
        assert bob.last_id == 2

    @pytest.mark.asyncio
    async def test_unserializable_result_rejected(self):
        """A result the serializer cannot encode is answered with __reject__."""
        sent = []
        rpc = Bob(send=sent.append)
        rpc.agents({"serializer": json_serializer, "deserializer": json_deserializer})
        rpc.local.register("hello", lambda: object())

        assert await rpc.local.receive(Payload(id=4, method="hello", args="[]")) is None

        # id 0 went to the resolve that could not be sent
        assert len(sent) == 1
        assert sent[0].id == 1
        assert sent[0].method == "__reject__"
        call_id, message = json.loads(sent[0].args)
        assert call_id == 4
        assert "not JSON serializable" in message

    @pytest.mark.asyncio
    async def test_unserializable_result_reaches_caller(self):
        """The caller gets a RemoteError instead of waiting forever."""
        alice, bob = make_pair()
        hooks = {"serializer": json_serializer, "deserializer": json_deserializer}
        alice.agents(hooks)
        bob.agents(hooks)
        bob.local.register("hello", lambda: object())

        with pytest.raises(RemoteError, match="not JSON serializable"):
            await asyncio.wait_for(alice.remote.hello(), timeout=1)

        assert alice.pending == 0

    @pytest.mark.asyncio
    async def test_assigned_method_callable_remotely(self):
        """A callable assigned on the local agent is served like a registered one."""
        alice, bob = make_pair()
        bob.local.hello = lambda a, b: a + b

        assert await alice.remote.hello(2, 3) == 5


# =============================================================================
# Tests: Cancellation
# =============================================================================


class TestCancellation:
    """Test callers giving up on a call."""

    @pytest.mark.asyncio
    async def test_timeout_discards_entry(self):
        """A call abandoned by wait_for leaves nothing pending."""
        rpc = Alice(send=drop)

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(rpc.remote.hello(), timeout=0.01)

        assert rpc.pending == 0

    @pytest.mark.asyncio
    async def test_late_acknowledgment_ignored(self):
        """An acknowledgment arriving after cancellation is harmless."""
        rpc = Alice(send=drop)

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(rpc.remote.hello(), timeout=0.01)

        assert await rpc.local.receive(Payload.resolve(0, 0, "late")) is None


# =============================================================================
# Tests: Debug logging
# =============================================================================


class TestDebugLogging:
    """Test the per-payload debug trace."""

    @pytest.mark.asyncio
    async def test_send_and_receive_lines(self):
        """One line per payload sent and per payload received."""
        alice, bob = make_pair()
        log = MagicMock()
        alice.agents({"debug": True, "log": log})
        bob.local.register("hello", lambda a, b: a + b)

        await alice.remote.hello(2, 3)

        assert log.call_count == 2
        send_line, recv_line = log.call_args_list
        assert send_line.args == (" ├> SEND ├>", "0 alice     ", "│", "hello", [2, 3])
        assert recv_line.args == ("<┤  RECV │", "       bob 0", "<┤", "__resolve__", [0, 5])

    @pytest.mark.asyncio
    async def test_no_lines_without_debug(self):
        """Nothing is logged when debug is off."""
        alice, bob = make_pair()
        log = MagicMock()
        alice.agents({"log": log})
        bob.local.register("hello", lambda: None)

        await alice.remote.hello()

        log.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_logged(self):
        """A failing handler is logged on the callee before rejecting."""
        alice, bob = make_pair()
        log = MagicMock()
        bob.agents({"debug": True, "log": log})
        error = ValueError("boom")

        def hello():
            raise error

        bob.local.register("hello", hello)

        with pytest.raises(RemoteError):
            await alice.remote.hello()

        logged = [call.args for call in log.call_args_list]
        assert (error,) in logged
        assert logged[-1][0] == " ├> SEND ├>"
        assert logged[-1][3] == "__reject__"


# =============================================================================
# Tests: Serializer hooks
# =============================================================================


class TestSerializers:
    """Test serializer/deserializer hooks."""

    @pytest.mark.asyncio
    async def test_json_round_trip(self):
        """Args travel as JSON text and are decoded on the other side."""
        alice, bob = make_pair()
        hooks = {"serializer": json_serializer, "deserializer": json_deserializer}
        alice.agents(hooks)
        bob.agents(hooks)

        wire = []
        forward = alice.local.send

        async def record(payload):
            wire.append(payload)
            await forward(payload)

        alice.local.send = record

        @bob.local.method
        async def hello(message, data):
            return f"hi {data['iam']} ({message})"

        result = await alice.remote.hello("there", {"iam": "alice"})

        assert result == "hi alice (there)"
        assert wire[0].args == '["there",{"iam":"alice"}]'

    @pytest.mark.asyncio
    async def test_serializer_applied_to_acknowledgments(self):
        """Acknowledgments are serialized like calls."""
        sent = []
        rpc = Bob(send=sent.append)
        rpc.agents({"serializer": json_serializer, "deserializer": json_deserializer})
        rpc.local.register("hello", lambda a, b: a + b)

        await rpc.local.receive(Payload(id=4, method="hello", args="[2,3]"))

        assert sent == [Payload(id=0, method="__resolve__", args="[4,5]")]
