"""Per-connection duties and the supervisor that races them.

Each accepted connection runs four duties concurrently:

- writer: the only code that writes to the socket, draining the outbound queue
- keepalive: queues a ping every ``ping_interval`` seconds
- forwarder: moves frames other connections sent to our sink into the
  outbound queue
- reader: reads frames from the socket and hands them to the router

Whichever duty finishes first ends the session. The supervisor then closes the
outbound queue and sink subscription, cancels the remaining duties, removes
the session's identifiers from the registry and closes the transport.
"""

import asyncio
from typing import Optional

from loguru import logger

from signal_relay.config import RelayConfig
from signal_relay.server.frames import Frame
from signal_relay.server.registry import ConnectionRegistry
from signal_relay.server.router import Router
from signal_relay.server.session import QueueClosedError, Session
from signal_relay.server.sink import Subscription
from signal_relay.server.transport import Transport, TransportError


async def write_outbound(session: Session, transport: Transport) -> None:
    """Drain the outbound queue into the socket in FIFO order."""
    while True:
        try:
            frame = await session.outbound.get()
        except QueueClosedError:
            return
        try:
            await transport.send(frame)
        except TransportError as e:
            logger.info(f"Error sending message to client {session.connection_id}: {e}")
            return


async def send_keepalive(session: Session, interval: float) -> None:
    """Queue a ping frame every ``interval`` seconds."""
    while True:
        await asyncio.sleep(interval)
        try:
            await session.outbound.put(Frame.ping())
        except QueueClosedError:
            return


async def forward_broadcasts(session: Session, subscription: Subscription) -> None:
    """Forward frames routed to this session's sink into its outbound queue."""
    async for frame in subscription:
        logger.debug(f"Connection {session.connection_id} received broadcast {frame!r}")
        try:
            await session.outbound.put(frame)
        except QueueClosedError:
            logger.debug(f"Outbound queue closed, dropping broadcast for {session.connection_id}")
            return


async def read_inbound(session: Session, transport: Transport, router: Router) -> None:
    """Read frames from the socket and dispatch them until close or error."""
    while True:
        try:
            frame = await transport.receive()
        except TransportError as e:
            logger.info(f"Read error on {session.connection_id}: {e}")
            return
        try:
            if not await router.dispatch(session, frame):
                return
        except QueueClosedError:
            return


class SessionSupervisor:
    """Owns one connection's session and its duties.

    Args:
        transport: Connected frame transport.
        registry: Shared connection registry.
        config: Relay settings. Defaults to ``RelayConfig()``.
        router: Router to dispatch inbound frames. Defaults to a router over
            ``registry`` and ``config``.
        connection_id: Fixed identifier instead of a random UUID.
    """

    def __init__(
        self,
        transport: Transport,
        registry: ConnectionRegistry,
        config: Optional[RelayConfig] = None,
        router: Optional[Router] = None,
        connection_id: Optional[str] = None,
    ):
        self.transport = transport
        self.registry = registry
        self.config = config or RelayConfig()
        self.router = router or Router(registry, self.config)
        self.session = Session.open(
            connection_id,
            queue_size=self.config.queue_size,
            broadcast_capacity=self.config.broadcast_capacity,
        )

        self.tasks: dict[asyncio.Task, str] = {}
        self._subscription: Optional[Subscription] = None
        self._closed = False

    @property
    def connection_id(self) -> str:
        return self.session.connection_id

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.create_task(coro, name=f"{name}-{self.connection_id}")
        self.tasks[task] = name

    async def run(self) -> Optional[str]:
        """Run the session until its first duty finishes, then tear it down.

        Returns:
            Name of the duty that ended the session, or None if the
            supervisor was cancelled.
        """
        # Subscribe before registering so nothing routed to us is lost
        self._subscription = self.session.sink.subscribe()
        await self.registry.register(self.connection_id, self.session.sink)
        logger.info(f"New connection: {self.connection_id}")

        self._spawn(write_outbound(self.session, self.transport), "sender")
        self._spawn(forward_broadcasts(self.session, self._subscription), "broadcast")
        self._spawn(send_keepalive(self.session, self.config.ping_interval), "ping")
        self._spawn(read_inbound(self.session, self.transport, self.router), "receive")

        first = None
        try:
            done, _ = await asyncio.wait(self.tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                name = self.tasks[task]
                first = first or name
                if not task.cancelled() and task.exception() is not None:
                    logger.opt(exception=task.exception()).error(
                        f"{name.capitalize()} task failed for {self.connection_id}"
                    )
                else:
                    logger.info(f"{name.capitalize()} task ended for {self.connection_id}")
        finally:
            await self.shutdown()
        return first

    async def shutdown(self) -> None:
        """Stop every duty and release the session's registry entries.

        Safe to call more than once; only the first call does anything.
        """
        if self._closed:
            return
        self._closed = True

        self.session.outbound.close()
        if self._subscription is not None and self._subscription.dropped:
            logger.warning(
                f"{self.connection_id} dropped {self._subscription.dropped} "
                f"relayed frames on a full queue"
            )
        self.session.sink.close()

        for task in self.tasks:
            task.cancel()
        results = await asyncio.gather(*self.tasks, return_exceptions=True)
        for task, result in zip(self.tasks, results):
            if isinstance(result, Exception):
                logger.opt(exception=result).debug(
                    f"{self.tasks[task].capitalize()} task raised during shutdown"
                )

        for identifier in list(self.session.identifiers):
            await self.registry.unregister(identifier, self.session.sink)

        await self.transport.close()
        logger.info(f"Connection closed: {self.connection_id}")


async def serve_connection(
    transport: Transport,
    registry: ConnectionRegistry,
    config: Optional[RelayConfig] = None,
    router: Optional[Router] = None,
    connection_id: Optional[str] = None,
) -> Optional[str]:
    """Run one connection to completion. See ``SessionSupervisor``."""
    supervisor = SessionSupervisor(transport, registry, config, router, connection_id)
    return await supervisor.run()
