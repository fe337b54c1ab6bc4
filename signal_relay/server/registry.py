"""Process-wide routing table from connection identifiers to sinks."""

import asyncio
from enum import Enum
from typing import Optional

from loguru import logger

from signal_relay.server.frames import Frame
from signal_relay.server.sink import Sink, SinkSendError


class RelayOutcome(Enum):
    """Result of ``ConnectionRegistry.relay``."""

    DELIVERED = "delivered"
    NOT_FOUND = "not_found"
    DROPPED = "dropped"


class ConnectionRegistry:
    """Mapping of identifier -> Sink guarded by a single lock.

    Every method is one critical section and never suspends while holding
    the lock, so one slow connection cannot stall another's registry access.
    Sinks stay usable after their entry is removed.
    """

    def __init__(self):
        self._connections: dict[str, Sink] = {}
        self._lock = asyncio.Lock()

    async def register(self, identifier: str, sink: Sink) -> None:
        """Insert or overwrite the entry for ``identifier``."""
        async with self._lock:
            previous = self._connections.get(identifier)
            self._connections[identifier] = sink
        if previous is not None and previous is not sink:
            logger.info(f"Identifier {identifier} rebound to a new connection")

    async def lookup(self, identifier: str) -> Optional[Sink]:
        async with self._lock:
            return self._connections.get(identifier)

    async def contains(self, identifier: str) -> bool:
        async with self._lock:
            return identifier in self._connections

    async def unregister(self, identifier: str, sink: Optional[Sink] = None) -> bool:
        """Remove the entry for ``identifier`` if present.

        Args:
            identifier: Identifier to remove.
            sink: If given, only remove the entry while it still points to
                this sink. An identifier taken over by another connection is
                left alone.

        Returns:
            True if an entry was removed.
        """
        async with self._lock:
            current = self._connections.get(identifier)
            if current is None:
                return False
            if sink is not None and current is not sink:
                return False
            del self._connections[identifier]
            return True

    async def relay(self, identifier: str, frame: Frame) -> RelayOutcome:
        """Look up ``identifier`` and hand ``frame`` to its sink.

        Lookup and send happen under one acquisition of the lock. The send is
        non-blocking, so the lock is never held across a suspension point.
        """
        async with self._lock:
            sink = self._connections.get(identifier)
            if sink is None:
                return RelayOutcome.NOT_FOUND
            try:
                sink.send(frame)
            except SinkSendError as e:
                logger.warning(f"Relay of {frame!r} to {identifier} dropped: {e}")
                return RelayOutcome.DROPPED
        return RelayOutcome.DELIVERED

    async def identifiers(self) -> list[str]:
        async with self._lock:
            return list(self._connections)

    def __len__(self) -> int:
        return len(self._connections)

    def __repr__(self) -> str:
        return f"ConnectionRegistry({len(self._connections)} connections)"
