"""File transfer between two relay clients.

The relay only routes; both ends of a transfer speak this protocol:

Sender                                   Receiver
  register(sender_id)
                                           register(receiver_id)
                                   <-----  receiver-ready {senderId, receiverId}
                                           (repeated until file-info arrives)
  file-info {name, size, mimeType} ----->
  file-chunk {chunkNumber}         ----->
  <binary chunk>                   ----->  (routed to the sender's last target)
  ...
  file-transfer-complete {chunkCount} -->
                                   <-----  transfer-complete {success, size}
"""

import asyncio
import mimetypes
from pathlib import Path
from typing import Callable, Optional

from loguru import logger
from websockets.exceptions import ConnectionClosed

from signal_relay.client.relay_client import RelayClient
from signal_relay.protocol import (
    FIELD_RECEIVER_ID,
    FIELD_SENDER_ID,
    FIELD_TARGET_ID,
    FIELD_TYPE,
    MSG_ERROR,
    MSG_FILE_CHUNK,
    MSG_FILE_INFO,
    MSG_FILE_TRANSFER_COMPLETE,
    MSG_RECEIVER_READY,
    MSG_TRANSFER_COMPLETE,
    MSG_TRANSFER_ERROR,
    parse_envelope,
)

DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024  # 5 MB
TRANSFER_TIMEOUT = 300.0  # seconds
DEFAULT_MIME_TYPE = "application/octet-stream"
FALLBACK_FILE_NAME = "received.bin"
READY_INTERVAL = 1.0  # seconds between receiver-ready announcements


async def wait_for_receiver(client: RelayClient, timeout: float = TRANSFER_TIMEOUT) -> str:
    """Wait for a receiver-ready envelope and return the receiver's id.

    Raises:
        RuntimeError: If the envelope carries no receiverId or the relay
            reports an error.
        asyncio.TimeoutError: If no receiver shows up in time.
    """
    logger.info(f"Waiting for a receiver to connect to {client.connection_id}...")
    while True:
        envelope = await client.recv_json(timeout=timeout)
        msg_type = envelope.get(FIELD_TYPE)
        if msg_type == MSG_RECEIVER_READY:
            receiver_id = envelope.get(FIELD_RECEIVER_ID)
            if not isinstance(receiver_id, str):
                raise RuntimeError("receiver-ready envelope has no receiverId")
            logger.info(f"Receiver {receiver_id} is ready")
            return receiver_id
        if msg_type == MSG_ERROR:
            raise RuntimeError(f"Relay error: {envelope.get('message')}")
        logger.debug(f"Ignoring {msg_type} while waiting for receiver")


async def send_file(
    client: RelayClient,
    file_path: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    timeout: float = TRANSFER_TIMEOUT,
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> str:
    """Send a file to the first receiver that announces itself.

    The client must already be registered; receivers address it by that id.

    Args:
        client: Connected and registered relay client.
        file_path: Local file to send.
        chunk_size: Bytes per binary frame.
        timeout: Seconds to wait for the receiver and for its confirmation.
        on_progress: Optional callable(bytes_sent, total_bytes) per chunk.

    Returns:
        Identifier of the receiver that got the file.

    Raises:
        RuntimeError: If the receiver reports a failure or the relay replies
            with an error envelope.
        asyncio.TimeoutError: If the receiver does not respond in time.
    """
    path = Path(file_path)
    total_bytes = path.stat().st_size
    mime_type = mimetypes.guess_type(path.name)[0] or DEFAULT_MIME_TYPE

    receiver_id = await wait_for_receiver(client, timeout=timeout)

    await client.send_to(
        receiver_id,
        {FIELD_TYPE: MSG_FILE_INFO, "name": path.name, "size": total_bytes, "mimeType": mime_type},
    )

    logger.info(f"Sending {path.name} ({total_bytes} bytes) to {receiver_id}")
    sent = 0
    chunk_count = 0
    with open(path, "rb") as fh:
        while chunk := fh.read(chunk_size):
            await client.send_to(
                receiver_id,
                {FIELD_TYPE: MSG_FILE_CHUNK, "chunkNumber": chunk_count, "size": len(chunk)},
            )
            await client.send_binary(chunk)
            sent += len(chunk)
            chunk_count += 1
            if on_progress:
                on_progress(sent, total_bytes)

    await client.send_to(
        receiver_id, {FIELD_TYPE: MSG_FILE_TRANSFER_COMPLETE, "chunkCount": chunk_count}
    )

    while True:
        envelope = await client.recv_json(timeout=timeout)
        msg_type = envelope.get(FIELD_TYPE)
        if msg_type == MSG_TRANSFER_COMPLETE:
            logger.info(f"Receiver {receiver_id} confirmed {envelope.get('size', sent)} bytes")
            return receiver_id
        if msg_type == MSG_TRANSFER_ERROR:
            raise RuntimeError(f"Receiver reported transfer error: {envelope.get('error')}")
        if msg_type == MSG_ERROR:
            raise RuntimeError(f"Relay error: {envelope.get('message')}")
        # Receivers may repeat receiver-ready; nothing else is expected here
        logger.debug(f"Ignoring {msg_type} while waiting for confirmation")


async def _announce_ready(client: RelayClient, envelope: dict, interval: float) -> None:
    """Repeat receiver-ready every ``interval`` seconds until cancelled.

    The relay drops receiver-ready silently while the sender is not yet
    registered, so a single announcement can be lost.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await client.send_json(envelope)
        except ConnectionClosed:
            # The receive loop reports the closed connection
            return
        logger.debug(f"Repeated receiver-ready to {envelope[FIELD_SENDER_ID]}")


def _safe_file_name(name) -> str:
    """Strip directory components from a peer-supplied file name."""
    name = Path(str(name or "")).name
    if name in ("", ".", ".."):
        return FALLBACK_FILE_NAME
    return name


async def receive_file(
    client: RelayClient,
    sender_id: str,
    output_dir: str = ".",
    timeout: float = TRANSFER_TIMEOUT,
    ready_interval: float = READY_INTERVAL,
) -> Path:
    """Announce readiness to ``sender_id`` and receive one file.

    Readiness is re-announced every ``ready_interval`` seconds until the
    sender's file-info arrives, so the receiver may start first.

    Args:
        client: Connected and registered relay client.
        sender_id: Identifier the sender registered with the relay.
        output_dir: Directory the file is written into.
        timeout: Seconds to wait for each message from the sender.
        ready_interval: Seconds between receiver-ready announcements.

    Returns:
        Path of the written file.

    Raises:
        RuntimeError: On protocol violations, size mismatches or relay errors.
            The sender is notified with a transfer-error envelope first when
            the failure is on our side. A partially written file is removed.
        asyncio.TimeoutError: If the sender goes quiet for ``timeout`` seconds.
    """
    if client.connection_id is None:
        raise RuntimeError("Client must be registered before receiving")

    ready = {
        FIELD_TYPE: MSG_RECEIVER_READY,
        FIELD_SENDER_ID: sender_id,
        FIELD_TARGET_ID: sender_id,
        FIELD_RECEIVER_ID: client.connection_id,
    }
    await client.send_json(ready)

    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    announcer = asyncio.create_task(_announce_ready(client, ready, ready_interval))
    dest: Optional[Path] = None
    expected_size = None
    received = 0
    chunk_count = 0
    fh = None
    saved = False
    try:
        while True:
            message = await client.recv(timeout=timeout)
            if isinstance(message, bytes):
                if fh is None:
                    raise RuntimeError("Received file data before file-info")
                fh.write(message)
                received += len(message)
                chunk_count += 1
                continue

            envelope = parse_envelope(message)
            msg_type = envelope.get(FIELD_TYPE)
            if msg_type == MSG_FILE_INFO:
                announcer.cancel()
                if fh is not None:
                    logger.warning(f"{sender_id} restarted the transfer, discarding {dest.name}")
                    fh.close()
                    dest.unlink(missing_ok=True)
                name = _safe_file_name(envelope.get("name"))
                expected_size = envelope.get("size")
                received = 0
                chunk_count = 0
                dest = out_dir / name
                fh = open(dest, "wb")
                logger.info(f"Receiving {name} ({expected_size} bytes) from {sender_id}")
            elif msg_type == MSG_FILE_CHUNK:
                logger.debug(f"Chunk {envelope.get('chunkNumber')} announced")
            elif msg_type == MSG_FILE_TRANSFER_COMPLETE:
                break
            elif msg_type == MSG_ERROR:
                raise RuntimeError(f"Relay error: {envelope.get('message')}")
            else:
                logger.debug(f"Ignoring {msg_type} during transfer")

        if dest is None:
            raise RuntimeError("Transfer completed without file-info")
        fh.close()

        if isinstance(expected_size, int) and received != expected_size:
            reason = f"Expected {expected_size} bytes, received {received}"
            await client.send_to(sender_id, {FIELD_TYPE: MSG_TRANSFER_ERROR, "error": reason})
            raise RuntimeError(reason)
        saved = True
    finally:
        announcer.cancel()
        try:
            await announcer
        except asyncio.CancelledError:
            pass
        if fh is not None:
            fh.close()
        if dest is not None and not saved:
            dest.unlink(missing_ok=True)
            logger.info(f"Removed incomplete {dest}")

    await client.send_to(
        sender_id,
        {
            FIELD_TYPE: MSG_TRANSFER_COMPLETE,
            "success": True,
            "size": received,
            "receivedChunks": chunk_count,
        },
    )
    logger.info(f"Saved {dest} ({received} bytes)")
    return dest
