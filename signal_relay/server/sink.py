"""Broadcast sink through which other connections reach a session.

A ``Sink`` is the handle stored in the registry. Sending never blocks: each
live ``Subscription`` has a bounded queue, and a frame that does not fit is
dropped for that subscriber only.
"""

import asyncio
from typing import Optional

from loguru import logger

from signal_relay.server.frames import Frame


class SinkSendError(RuntimeError):
    """Raised when a frame could not be handed to any subscriber."""


class SubscriptionClosed(Exception):
    """Raised by ``Subscription.recv`` after the subscription was closed."""


class Subscription:
    """One reader of a ``Sink``.

    Attributes:
        sink: The sink this subscription reads from.
        dropped: Number of frames dropped because the queue was full.
    """

    def __init__(self, sink: "Sink", capacity: int):
        self.sink = sink
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._closed = False
        self._waiters: set[asyncio.Future] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, frame: Frame) -> bool:
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    async def recv(self) -> Frame:
        """Wait for the next frame.

        Raises:
            SubscriptionClosed: If the subscription is (or becomes) closed.
        """
        if self._closed:
            raise SubscriptionClosed()
        if not self._queue.empty():
            return self._queue.get_nowait()

        getter = asyncio.ensure_future(self._queue.get())
        self._waiters.add(getter)
        try:
            return await getter
        except asyncio.CancelledError:
            if self._closed:
                raise SubscriptionClosed() from None
            raise
        finally:
            self._waiters.discard(getter)
            getter.cancel()

    def close(self) -> None:
        """Detach from the sink and wake any pending ``recv``."""
        if self._closed:
            return
        self._closed = True
        self.sink._unsubscribe(self)
        for waiter in list(self._waiters):
            waiter.cancel()

    def __aiter__(self):
        return self

    async def __anext__(self) -> Frame:
        try:
            return await self.recv()
        except SubscriptionClosed:
            raise StopAsyncIteration from None


class Sink:
    """Many-reader broadcast channel writer handle.

    Args:
        capacity: Queue capacity of each subscription created from this sink.
        name: Label used in log messages (usually the owning connection id).
    """

    def __init__(self, capacity: int = 100, name: Optional[str] = None):
        self.capacity = capacity
        self.name = name
        self._subscribers: list[Subscription] = []

    @property
    def receiver_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self.capacity)
        self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def send(self, frame: Frame) -> int:
        """Hand a frame to every live subscriber without waiting.

        Args:
            frame: Frame to broadcast.

        Returns:
            Number of subscribers that accepted the frame.

        Raises:
            SinkSendError: If there are no subscribers or none had room.
        """
        if not self._subscribers:
            raise SinkSendError(f"Sink {self.name} has no active subscribers")

        accepted = 0
        for subscription in self._subscribers:
            if subscription._offer(frame):
                accepted += 1
            else:
                logger.warning(f"Subscriber queue full on sink {self.name}, dropping {frame!r}")

        if accepted == 0:
            raise SinkSendError(f"All subscribers of sink {self.name} are full")
        return accepted

    def close(self) -> None:
        """Close every subscription of this sink."""
        for subscription in list(self._subscribers):
            subscription.close()

    def __repr__(self) -> str:
        return f"Sink({self.name!r}, receivers={self.receiver_count})"
