"""Per-frame dispatch of inbound traffic.

The router decides, for every frame read from a connection, whether it
changes the registry, goes to another connection's sink, or is answered on
the connection's own outbound queue.
"""

from typing import Optional

from loguru import logger

from signal_relay.config import BINARY_POLICY_ERROR, RelayConfig
from signal_relay.protocol import (
    ERROR_NO_BINARY_TARGET,
    EnvelopeKind,
    classify_envelope,
    decode_envelope,
    format_error,
    format_registered,
    format_target_not_found,
    get_connection_id,
    get_sender_id,
    get_target_id,
)
from signal_relay.server.frames import Frame, FrameKind
from signal_relay.server.registry import ConnectionRegistry, RelayOutcome
from signal_relay.server.session import Session


class Router:
    """Routes inbound frames between sessions.

    Args:
        registry: Shared connection registry.
        config: Relay settings; only the routing policies are used here.
    """

    def __init__(self, registry: ConnectionRegistry, config: Optional[RelayConfig] = None):
        self.registry = registry
        self.config = config or RelayConfig()

    async def dispatch(self, session: Session, frame: Frame) -> bool:
        """Handle one inbound frame.

        Args:
            session: Session the frame was read from.
            frame: The frame.

        Returns:
            False if the reader should stop (the client closed), True otherwise.
        """
        if frame.kind is FrameKind.TEXT:
            await self.handle_text(session, frame)
        elif frame.kind is FrameKind.BINARY:
            await self.handle_binary(session, frame)
        elif frame.kind is FrameKind.CLOSE:
            logger.info(f"Close message received from {session.connection_id}")
            return False
        else:
            # Control frames go back out untouched
            await session.reply(frame)
        return True

    async def handle_text(self, session: Session, frame: Frame) -> None:
        conn_id = session.connection_id
        logger.debug(f"Received text message from {conn_id}: {frame.data}")

        envelope = decode_envelope(frame.data)
        if envelope is None:
            logger.debug(f"Ignoring undecodable text message from {conn_id}")
            return

        kind = classify_envelope(envelope)
        if kind is EnvelopeKind.REGISTER:
            await self._register(session, get_connection_id(envelope))
        elif kind is EnvelopeKind.CHECK_RECIPIENT:
            await self._check_recipient(session, get_connection_id(envelope))
        elif kind is EnvelopeKind.RECEIVER_READY:
            await self._receiver_ready(session, get_sender_id(envelope), frame)
        elif kind is EnvelopeKind.RELAY:
            await self._relay_text(session, get_target_id(envelope), frame)
        else:
            logger.debug(f"Ignoring text message from {conn_id} with no route")

    async def _register(self, session: Session, identifier) -> None:
        if identifier is None:
            logger.debug(f"Register from {session.connection_id} without connectionId")
            return

        logger.info(f"Registering connection {session.connection_id} with custom ID: {identifier}")
        await self.registry.register(identifier, session.sink)
        session.add_identifier(identifier)

        if not self.config.retain_original_id and identifier != session.connection_id:
            await self.registry.unregister(session.connection_id, session.sink)
            session.discard_identifier(session.connection_id)
            logger.debug(f"Released original ID {session.connection_id}")

        if self.config.confirm_registration:
            await session.reply(Frame.text(format_registered(identifier)))

    async def _check_recipient(self, session: Session, identifier) -> None:
        if identifier is None:
            return
        if await self.registry.contains(identifier):
            logger.info(f"Client {session.connection_id} checked {identifier}: registered")
        else:
            logger.info(f"Client {session.connection_id} checked {identifier}: not found")

    async def _receiver_ready(self, session: Session, sender_id, frame: Frame) -> None:
        if sender_id is None:
            return
        outcome = await self.registry.relay(sender_id, frame)
        if outcome is RelayOutcome.DELIVERED:
            logger.info(f"Receiver-ready from {session.connection_id} forwarded to {sender_id}")
        elif outcome is RelayOutcome.NOT_FOUND:
            logger.info(f"Sender {sender_id} not found for receiver-ready from {session.connection_id}")

    async def _relay_text(self, session: Session, target_id: str, frame: Frame) -> None:
        logger.debug(f"Connection {session.connection_id} targeting {target_id}")
        session.set_binary_target(target_id)

        outcome = await self.registry.relay(target_id, frame)
        if outcome is RelayOutcome.NOT_FOUND:
            logger.info(f"Target {target_id} not found for {session.connection_id}")
            await session.reply(Frame.text(format_target_not_found(target_id)))
        elif outcome is RelayOutcome.DELIVERED:
            logger.debug(f"Message forwarded to {target_id}")

    async def handle_binary(self, session: Session, frame: Frame) -> None:
        target_id = session.binary_target
        if target_id is None:
            logger.info(f"No target set for binary transfer from {session.connection_id}")
            if self.config.binary_without_target == BINARY_POLICY_ERROR:
                await session.reply(Frame.text(format_error(ERROR_NO_BINARY_TARGET)))
            return

        outcome = await self.registry.relay(target_id, frame)
        if outcome is RelayOutcome.DELIVERED:
            logger.debug(f"Binary data from {session.connection_id} forwarded to {target_id}")
        elif outcome is RelayOutcome.NOT_FOUND:
            logger.info(f"Binary target {target_id} of {session.connection_id} is gone, dropping")
