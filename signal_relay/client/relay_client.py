"""WebSocket client for talking to a signal-relay server."""

import asyncio
import json
from typing import Any, Optional, Union

from loguru import logger
from websockets.asyncio.client import ClientConnection, connect

from signal_relay.config import DEFAULT_MAX_MESSAGE_SIZE
from signal_relay.protocol import (
    FIELD_CONNECTION_ID,
    FIELD_TARGET_ID,
    FIELD_TYPE,
    MSG_ERROR,
    MSG_REGISTER,
    MSG_REGISTERED,
    parse_envelope,
)

REGISTER_TIMEOUT = 10.0  # seconds


class RelayClient:
    """Client connection to the relay.

    Usage:
        async with RelayClient("ws://127.0.0.1:3000/ws") as client:
            await client.register("alice")
            await client.send_to("bob", {"type": "offer", "sdp": "..."})

    Attributes:
        url: Relay endpoint URL.
        connection_id: Identifier registered with ``register``, if any.
        websocket: Underlying websockets connection once connected.
    """

    def __init__(self, url: str, max_size: int = DEFAULT_MAX_MESSAGE_SIZE):
        self.url = url
        self.max_size = max_size
        self.connection_id: Optional[str] = None
        self.websocket: Optional[ClientConnection] = None

    async def connect(self) -> None:
        logger.info(f"Connecting to relay at {self.url}")
        self.websocket = await connect(self.url, max_size=self.max_size)

    async def close(self) -> None:
        if self.websocket is not None:
            await self.websocket.close()
            self.websocket = None

    async def __aenter__(self) -> "RelayClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _require_connection(self) -> ClientConnection:
        if self.websocket is None:
            raise RuntimeError("Not connected to relay")
        return self.websocket

    async def send_json(self, payload: dict[str, Any]) -> None:
        await self._require_connection().send(json.dumps(payload))

    async def send_to(self, target_id: str, payload: dict[str, Any]) -> None:
        """Send an envelope routed to ``target_id``.

        This also makes ``target_id`` the destination of later binary frames.
        """
        await self.send_json({FIELD_TARGET_ID: target_id, **payload})

    async def send_binary(self, data: bytes) -> None:
        await self._require_connection().send(data)

    async def recv(self, timeout: Optional[float] = None) -> Union[str, bytes]:
        """Receive the next text or binary message.

        Raises:
            asyncio.TimeoutError: If nothing arrives within ``timeout`` seconds.
        """
        return await asyncio.wait_for(self._require_connection().recv(), timeout=timeout)

    async def recv_json(self, timeout: Optional[float] = None) -> dict[str, Any]:
        """Receive the next text message as an envelope, skipping binary frames."""
        while True:
            message = await self.recv(timeout=timeout)
            if isinstance(message, str):
                return parse_envelope(message)
            logger.debug(f"Skipping {len(message)}-byte binary message while waiting for JSON")

    async def register(self, connection_id: str, timeout: float = REGISTER_TIMEOUT) -> str:
        """Register ``connection_id`` and wait for the relay's acknowledgment.

        Returns:
            The identifier confirmed by the relay.

        Raises:
            RuntimeError: If the relay replies with an error envelope.
            asyncio.TimeoutError: If no acknowledgment arrives in time.
        """
        await self.send_json({FIELD_TYPE: MSG_REGISTER, FIELD_CONNECTION_ID: connection_id})
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            envelope = await self.recv_json(timeout=max(0.0, deadline - loop.time()))
            msg_type = envelope.get(FIELD_TYPE)
            if msg_type == MSG_REGISTERED and envelope.get("id") == connection_id:
                self.connection_id = connection_id
                logger.info(f"Registered with relay as {connection_id}")
                return connection_id
            if msg_type == MSG_ERROR:
                raise RuntimeError(f"Relay rejected registration: {envelope.get('message')}")
            logger.debug(f"Ignoring {msg_type} while waiting for registration")
