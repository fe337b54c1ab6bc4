"""Adapter between a websockets connection and the relay's frame model."""

import asyncio
from typing import Optional, Protocol

from loguru import logger
from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from signal_relay.server.frames import Frame, FrameKind


class TransportError(ConnectionError):
    """Raised when reading from or writing to the socket fails."""


class Transport(Protocol):
    """Duplex frame transport consumed by a session."""

    async def receive(self) -> Frame: ...

    async def send(self, frame: Frame) -> None: ...

    async def close(self) -> None: ...


class WebSocketTransport:
    """Frame transport over a ``websockets`` server connection.

    Ping/pong replies to the peer are handled by the websockets library, so
    ``receive`` only ever yields text, binary and close frames.
    """

    def __init__(self, websocket: ServerConnection):
        self.websocket = websocket
        self._pong_waiter: Optional[asyncio.Future] = None

    @property
    def remote_address(self):
        return self.websocket.remote_address

    async def receive(self) -> Frame:
        """Read the next frame.

        Returns:
            A text or binary frame, or a close frame once the peer closed the
            connection cleanly.

        Raises:
            TransportError: If the connection was lost abnormally.
        """
        try:
            message = await self.websocket.recv()
        except ConnectionClosedOK:
            return Frame.close()
        except ConnectionClosed as e:
            raise TransportError(f"Connection lost: {e}") from e

        if isinstance(message, str):
            return Frame.text(message)
        return Frame.binary(message)

    async def send(self, frame: Frame) -> None:
        """Write one frame to the socket.

        Raises:
            TransportError: If the connection is closed.
        """
        try:
            if frame.kind in (FrameKind.TEXT, FrameKind.BINARY):
                await self.websocket.send(frame.data)
            elif frame.kind is FrameKind.PING:
                await self._ping(frame.data)
            elif frame.kind is FrameKind.PONG:
                await self.websocket.pong(frame.data)
            elif frame.kind is FrameKind.CLOSE:
                await self.websocket.close()
            else:
                logger.debug(f"Not sending unsupported {frame!r}")
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed: {e}") from e

    async def _ping(self, data: bytes) -> None:
        """Send a keepalive ping without waiting for its pong.

        At most one keepalive ping stays pending: if the previous one was never
        answered, it is dropped from the connection's pending pings first.
        An empty payload gets a random one so pending pings never collide.
        """
        stale = self._pong_waiter
        if stale is not None and not stale.done():
            pending = self.websocket.pending_pings
            for ping_id, (waiter, _) in list(pending.items()):
                if waiter is stale:
                    del pending[ping_id]
            stale.cancel()
            logger.debug(f"Previous keepalive to {self.remote_address} went unanswered")
        self._pong_waiter = await self.websocket.ping(data or None)

    async def close(self) -> None:
        await self.websocket.close()
