"""Entry points behind the signal-relay CLI commands."""

import asyncio
import uuid
from pathlib import Path
from typing import Optional

from loguru import logger

from signal_relay.client.file_transfer import receive_file, send_file
from signal_relay.client.relay_client import RelayClient
from signal_relay.config import RelayConfig
from signal_relay.server.relay_server import RelayServer


def run_relay_server(config: RelayConfig) -> None:
    """Run the relay server until interrupted.

    Args:
        config: Fully resolved relay settings.
    """
    server = RelayServer(config)
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        logger.info("Server stopped")


async def _send(url, file_path, connection_id, chunk_size, timeout) -> str:
    async with RelayClient(url) as client:
        await client.register(connection_id)
        return await send_file(client, file_path, chunk_size=chunk_size, timeout=timeout)


async def _receive(url, sender_id, output_dir, timeout) -> Path:
    async with RelayClient(url) as client:
        await client.register(str(uuid.uuid4()))
        return await receive_file(client, sender_id, output_dir=output_dir, timeout=timeout)


def run_send(
    url: str,
    file_path: str,
    connection_id: Optional[str] = None,
    chunk_size: int = 5 * 1024 * 1024,
    timeout: float = 300.0,
) -> str:
    """Register with the relay and send ``file_path`` to the first receiver.

    Returns:
        Identifier of the receiver.
    """
    connection_id = connection_id or str(uuid.uuid4())
    logger.info(f"Sending as {connection_id}")
    return asyncio.run(_send(url, file_path, connection_id, chunk_size, timeout))


def run_receive(url: str, sender_id: str, output_dir: str = ".", timeout: float = 300.0) -> Path:
    """Connect to the relay and receive one file from ``sender_id``.

    Returns:
        Path of the saved file.
    """
    return asyncio.run(_receive(url, sender_id, output_dir, timeout))
