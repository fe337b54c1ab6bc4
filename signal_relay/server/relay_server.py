"""WebSocket server exposing the relay at a single endpoint."""

import asyncio
from http import HTTPStatus
from typing import Optional
from urllib.parse import urlsplit

from loguru import logger
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.http11 import Request

from signal_relay.config import RelayConfig
from signal_relay.server.registry import ConnectionRegistry
from signal_relay.server.router import Router
from signal_relay.server.tasks import SessionSupervisor
from signal_relay.server.transport import WebSocketTransport


class RelayServer:
    """Accepts WebSocket upgrades on ``config.path`` and runs a session per connection.

    This server:
    - Rejects requests for any other path with HTTP 404
    - Creates a session per connection, registered under a random UUID
    - Shares one ``ConnectionRegistry`` across all sessions

    Args:
        config: Relay settings. Defaults to ``RelayConfig()``.
        registry: Registry to route through. A fresh one is created if omitted.
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        registry: Optional[ConnectionRegistry] = None,
    ):
        self.config = config or RelayConfig()
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.router = Router(self.registry, self.config)

        self.server: Optional[Server] = None
        self.supervisors: set[SessionSupervisor] = set()

    @property
    def port(self) -> Optional[int]:
        """Port actually bound (useful when configured with port 0)."""
        if self.server is None:
            return None
        for sock in self.server.sockets:
            return sock.getsockname()[1]
        return None

    @property
    def url(self) -> str:
        return f"ws://{self.config.host}:{self.port}{self.config.path}"

    def _process_request(self, connection: ServerConnection, request: Request):
        if urlsplit(request.path).path != self.config.path:
            logger.debug(f"Rejecting upgrade for unknown path {request.path}")
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        supervisor = SessionSupervisor(
            WebSocketTransport(websocket),
            self.registry,
            config=self.config,
            router=self.router,
        )
        logger.debug(f"Accepted {websocket.remote_address} as {supervisor.connection_id}")
        self.supervisors.add(supervisor)
        try:
            await supervisor.run()
        finally:
            self.supervisors.discard(supervisor)

    async def start(self) -> str:
        """Bind the listening socket and start accepting connections.

        Returns:
            WebSocket URL of the relay endpoint.
        """
        self.server = await serve(
            self._handle_connection,
            self.config.host,
            self.config.port,
            process_request=self._process_request,
            # Keepalive pings are sent by each session's own duty
            ping_interval=None,
            max_size=self.config.max_message_size,
        )
        logger.info(f"Relay server running at {self.url}")
        return self.url

    async def stop(self) -> None:
        """Stop accepting connections and end every live session."""
        if self.server is None:
            return
        self.server.close()
        await asyncio.gather(
            *(supervisor.shutdown() for supervisor in list(self.supervisors)),
            return_exceptions=True,
        )
        await self.server.wait_closed()
        self.server = None
        logger.info("Relay server stopped")

    async def serve_forever(self) -> None:
        """Start the server and run until cancelled."""
        await self.start()
        try:
            await asyncio.Future()  # Run forever
        finally:
            await self.stop()

    async def __aenter__(self) -> "RelayServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
