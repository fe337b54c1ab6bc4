"""Shared test helpers for signal-relay."""

import asyncio
import json

import pytest

from signal_relay.config import RelayConfig
from signal_relay.server.frames import Frame, FrameKind
from signal_relay.server.registry import ConnectionRegistry
from signal_relay.server.transport import TransportError


class FakeTransport:
    """In-memory stand-in for a WebSocket connection.

    Frames pushed with ``feed`` are returned by ``receive``; frames the
    session writes are collected in ``sent`` and in an awaitable outbox.
    """

    def __init__(self):
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[Frame] = []
        self.closed = False
        self.fail_send = False

    def feed(self, item) -> None:
        """Queue a Frame, or an exception to raise from ``receive``."""
        self.inbound.put_nowait(item)

    def feed_text(self, text: str) -> None:
        self.feed(Frame.text(text))

    def feed_json(self, payload: dict) -> None:
        self.feed_text(json.dumps(payload))

    def feed_binary(self, data: bytes) -> None:
        self.feed(Frame.binary(data))

    def feed_close(self) -> None:
        self.feed(Frame.close())

    def feed_error(self) -> None:
        self.feed(TransportError("connection reset"))

    async def receive(self) -> Frame:
        item = await self.inbound.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, frame: Frame) -> None:
        if self.fail_send:
            raise TransportError("broken pipe")
        self.sent.append(frame)
        self.outbox.put_nowait(frame)

    async def close(self) -> None:
        self.closed = True

    async def next_sent(self, timeout: float = 1.0, skip_pings: bool = True) -> Frame:
        while True:
            frame = await asyncio.wait_for(self.outbox.get(), timeout=timeout)
            if skip_pings and frame.kind is FrameKind.PING:
                continue
            return frame

    async def next_json(self, timeout: float = 1.0) -> dict:
        frame = await self.next_sent(timeout=timeout)
        assert frame.kind is FrameKind.TEXT, f"expected text frame, got {frame!r}"
        return json.loads(frame.data)

    def non_ping_sent(self) -> list[Frame]:
        return [f for f in self.sent if f.kind is not FrameKind.PING]


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll an (optionally async) predicate until it returns truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return result
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def relay_config():
    """Config with a long ping interval so pings do not interleave with assertions."""
    return RelayConfig(ping_interval=60.0)
