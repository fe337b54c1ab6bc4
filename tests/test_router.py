"""Tests for per-frame routing decisions."""

import json

import pytest

from signal_relay.config import RelayConfig
from signal_relay.server.frames import Frame, FrameKind
from signal_relay.server.router import Router
from signal_relay.server.session import Session


# ── helpers ──────────────────────────────────────────────────────────────────


async def open_session(registry, connection_id):
    """Create a session, register it and subscribe to its sink."""
    session = Session.open(connection_id)
    subscription = session.sink.subscribe()
    await registry.register(connection_id, session.sink)
    return session, subscription


def drain(session):
    """Frames waiting in a session's outbound queue, without blocking."""
    frames = []
    while session.outbound.qsize():
        frames.append(session.outbound._queue.get_nowait())
    return frames


def drain_sub(subscription):
    frames = []
    while not subscription._queue.empty():
        frames.append(subscription._queue.get_nowait())
    return frames


def text(payload):
    return Frame.text(json.dumps(payload))


@pytest.fixture
def router(registry):
    return Router(registry, RelayConfig())


# ── register ─────────────────────────────────────────────────────────────────


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_binds_custom_id_and_acknowledges(self, registry, router):
        a, _ = await open_session(registry, "u1")

        assert await router.dispatch(a, text({"type": "register", "connectionId": "alice"}))

        assert await registry.lookup("alice") is a.sink
        assert await registry.lookup("u1") is a.sink
        assert a.identifiers == ["u1", "alice"]
        [ack] = drain(a)
        assert json.loads(ack.data) == {"type": "registered", "id": "alice"}

    @pytest.mark.asyncio
    async def test_register_does_not_relay_even_with_target(self, registry, router):
        a, _ = await open_session(registry, "u1")
        b, b_sub = await open_session(registry, "u2")

        await router.dispatch(
            a, text({"type": "register", "connectionId": "alice", "target_id": "u2"})
        )

        assert drain_sub(b_sub) == []
        assert a.binary_target is None

    @pytest.mark.asyncio
    async def test_register_without_id_is_ignored(self, registry, router):
        a, _ = await open_session(registry, "u1")
        await router.dispatch(a, text({"type": "register"}))
        assert drain(a) == []
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_release_original_id_policy(self, registry):
        router = Router(registry, RelayConfig(retain_original_id=False))
        a, _ = await open_session(registry, "u1")

        await router.dispatch(a, text({"type": "register", "connectionId": "alice"}))

        assert not await registry.contains("u1")
        assert await registry.lookup("alice") is a.sink
        assert a.identifiers == ["alice"]

    @pytest.mark.asyncio
    async def test_confirmation_can_be_disabled(self, registry):
        router = Router(registry, RelayConfig(confirm_registration=False))
        a, _ = await open_session(registry, "u1")
        await router.dispatch(a, text({"type": "register", "connectionId": "alice"}))
        assert drain(a) == []


# ── check-recipient / receiver-ready ─────────────────────────────────────────


class TestCheckRecipient:
    @pytest.mark.asyncio
    async def test_is_observational_only(self, registry, router):
        a, _ = await open_session(registry, "u1")
        b, b_sub = await open_session(registry, "u2")

        await router.dispatch(a, text({"type": "check-recipient", "connectionId": "u2"}))
        await router.dispatch(a, text({"type": "check-recipient", "connectionId": "nobody"}))

        assert drain(a) == []
        assert drain_sub(b_sub) == []
        assert len(registry) == 2


class TestReceiverReady:
    @pytest.mark.asyncio
    async def test_forwards_verbatim_to_sender(self, registry, router):
        sender, sender_sub = await open_session(registry, "sender")
        receiver, _ = await open_session(registry, "receiver")
        raw = '{"type": "receiver-ready", "senderId": "sender", "target_id": "sender", "receiverId": "receiver"}'

        await router.dispatch(receiver, Frame.text(raw))

        assert drain_sub(sender_sub) == [Frame.text(raw)]
        assert receiver.binary_target is None

    @pytest.mark.asyncio
    async def test_unknown_sender_is_silent(self, registry, router):
        receiver, _ = await open_session(registry, "receiver")
        await router.dispatch(receiver, text({"type": "receiver-ready", "senderId": "gone"}))
        assert drain(receiver) == []


# ── generic relay ────────────────────────────────────────────────────────────


class TestTextRelay:
    @pytest.mark.asyncio
    async def test_relays_verbatim_to_target_only(self, registry, router):
        a, a_sub = await open_session(registry, "u1")
        b, b_sub = await open_session(registry, "u2")
        c, c_sub = await open_session(registry, "u3")
        raw = '{"target_id":"u2","msg":"hi"}'

        await router.dispatch(a, Frame.text(raw))

        assert drain_sub(b_sub) == [Frame.text(raw)]
        assert drain_sub(a_sub) == []
        assert drain_sub(c_sub) == []
        assert drain(a) == []

    @pytest.mark.asyncio
    async def test_sets_binary_target(self, registry, router):
        a, _ = await open_session(registry, "u1")
        await open_session(registry, "u2")

        await router.dispatch(a, text({"target_id": "u2", "type": "file-info"}))

        assert a.target_map == {"u1": "u2"}

    @pytest.mark.asyncio
    async def test_unknown_target_yields_one_error(self, registry, router):
        a, _ = await open_session(registry, "u1")
        b, b_sub = await open_session(registry, "u2")

        await router.dispatch(a, text({"target_id": "nope", "msg": "hi"}))

        [error] = drain(a)
        assert json.loads(error.data) == {"type": "error", "message": "Target nope not found"}
        assert drain_sub(b_sub) == []
        # Target is recorded even when it does not resolve
        assert a.binary_target == "nope"

    @pytest.mark.asyncio
    async def test_target_without_listener_is_dropped_silently(self, registry, router):
        a, _ = await open_session(registry, "u1")
        b = Session.open("u2")
        await registry.register("u2", b.sink)

        await router.dispatch(a, text({"target_id": "u2"}))

        assert drain(a) == []

    @pytest.mark.asyncio
    async def test_relay_to_custom_id(self, registry, router):
        a, _ = await open_session(registry, "u1")
        b, b_sub = await open_session(registry, "u2")
        await router.dispatch(b, text({"type": "register", "connectionId": "bob"}))

        await router.dispatch(a, text({"target_id": "bob", "msg": "hi"}))

        assert [json.loads(f.data) for f in drain_sub(b_sub)] == [{"target_id": "bob", "msg": "hi"}]


class TestIgnoredText:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["not json", "[1,2]", '{"type": "ping"}', '{"target_id": 5}'])
    async def test_no_reply_no_relay(self, registry, router, raw):
        a, _ = await open_session(registry, "u1")
        b, b_sub = await open_session(registry, "u2")

        assert await router.dispatch(a, Frame.text(raw))

        assert drain(a) == []
        assert drain_sub(b_sub) == []


# ── binary ───────────────────────────────────────────────────────────────────


class TestBinary:
    @pytest.mark.asyncio
    async def test_follows_last_text_target(self, registry, router):
        a, _ = await open_session(registry, "u1")
        b, b_sub = await open_session(registry, "u2")
        c, c_sub = await open_session(registry, "u3")

        await router.dispatch(a, text({"target_id": "u2"}))
        await router.dispatch(a, Frame.binary(b"\xde\xad\xbe\xef"))
        await router.dispatch(a, text({"target_id": "u3"}))
        await router.dispatch(a, Frame.binary(b"\x01"))

        assert drain_sub(b_sub)[-1] == Frame.binary(b"\xde\xad\xbe\xef")
        assert drain_sub(c_sub)[-1] == Frame.binary(b"\x01")

    @pytest.mark.asyncio
    async def test_no_target_yields_error_by_default(self, registry, router):
        a, _ = await open_session(registry, "u1")
        b, b_sub = await open_session(registry, "u2")

        await router.dispatch(a, Frame.binary(b"orphan"))

        [error] = drain(a)
        assert json.loads(error.data) == {
            "type": "error",
            "message": "No target set for binary transfer",
        }
        assert drain_sub(b_sub) == []

    @pytest.mark.asyncio
    async def test_no_target_drop_policy(self, registry):
        router = Router(registry, RelayConfig(binary_without_target="drop"))
        a, _ = await open_session(registry, "u1")

        await router.dispatch(a, Frame.binary(b"orphan"))

        assert drain(a) == []

    @pytest.mark.asyncio
    async def test_gone_target_is_dropped(self, registry, router):
        a, _ = await open_session(registry, "u1")
        await open_session(registry, "u2")
        await router.dispatch(a, text({"target_id": "u2"}))
        await registry.unregister("u2")

        await router.dispatch(a, Frame.binary(b"late"))

        assert drain(a) == []


# ── control frames ───────────────────────────────────────────────────────────


class TestControlFrames:
    @pytest.mark.asyncio
    async def test_close_stops_reader(self, registry, router):
        a, _ = await open_session(registry, "u1")
        assert await router.dispatch(a, Frame.close()) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("frame", [Frame.pong(b"p"), Frame.ping(b"q"), Frame(FrameKind.OTHER, b"?")])
    async def test_other_frames_pass_through(self, registry, router, frame):
        a, _ = await open_session(registry, "u1")
        assert await router.dispatch(a, frame) is True
        assert drain(a) == [frame]
