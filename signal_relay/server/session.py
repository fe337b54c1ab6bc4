"""Per-connection session state."""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Optional

from signal_relay.server.frames import Frame
from signal_relay.server.sink import Sink


class QueueClosedError(Exception):
    """Raised when using an outbound queue after it was closed."""


class OutboundQueue:
    """Bounded FIFO funnel in front of a connection's single writer.

    Any number of producers may ``put``; exactly one consumer ``get``s.
    ``close`` rejects further use and wakes every blocked producer and the
    consumer with ``QueueClosedError``.
    """

    def __init__(self, maxsize: int = 100):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._waiters: set[asyncio.Future] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def _wait(self, coro):
        if self._closed:
            coro.close()
            raise QueueClosedError()
        waiter = asyncio.ensure_future(coro)
        self._waiters.add(waiter)
        try:
            return await waiter
        except asyncio.CancelledError:
            if self._closed:
                raise QueueClosedError() from None
            raise
        finally:
            self._waiters.discard(waiter)
            waiter.cancel()

    async def put(self, frame: Frame) -> None:
        await self._wait(self._queue.put(frame))

    async def get(self) -> Frame:
        return await self._wait(self._queue.get())

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for waiter in list(self._waiters):
            waiter.cancel()


def new_connection_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Session:
    """State owned by one connection for its lifetime.

    Attributes:
        connection_id: Identifier assigned when the connection was accepted.
        sink: Handle other connections use to reach this one.
        outbound: Queue drained by this connection's writer.
        identifiers: Every identifier registered to ``sink`` by this session,
            in registration order. Starts with ``connection_id``.
        target_map: Last explicit relay target, keyed by connection id. Binary
            frames carry no address and go to this target.
    """

    connection_id: str
    sink: Sink
    outbound: OutboundQueue
    identifiers: list[str] = field(default_factory=list)
    target_map: dict[str, str] = field(default_factory=dict)

    @classmethod
    def open(
        cls,
        connection_id: Optional[str] = None,
        queue_size: int = 100,
        broadcast_capacity: int = 100,
    ) -> "Session":
        """Create a session with a fresh identifier, sink and outbound queue."""
        connection_id = connection_id or new_connection_id()
        return cls(
            connection_id=connection_id,
            sink=Sink(capacity=broadcast_capacity, name=connection_id),
            outbound=OutboundQueue(maxsize=queue_size),
            identifiers=[connection_id],
        )

    def add_identifier(self, identifier: str) -> None:
        if identifier not in self.identifiers:
            self.identifiers.append(identifier)

    def discard_identifier(self, identifier: str) -> None:
        if identifier in self.identifiers:
            self.identifiers.remove(identifier)

    @property
    def binary_target(self) -> Optional[str]:
        return self.target_map.get(self.connection_id)

    def set_binary_target(self, target_id: str) -> None:
        self.target_map[self.connection_id] = target_id

    async def reply(self, frame: Frame) -> None:
        """Queue a frame for this session's own socket."""
        await self.outbound.put(frame)
