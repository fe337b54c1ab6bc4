"""Relay server: registry, sessions, routing and the WebSocket endpoint.

This package provides:
- frames: transport-neutral frame model
- sink: broadcast sinks other connections route into
- registry: identifier -> sink routing table
- session: per-connection state and outbound queue
- router: per-frame dispatch
- tasks: per-connection duties and their supervisor
- transport: websockets adapter
- relay_server: the listening WebSocket server
"""

from signal_relay.server.frames import Frame, FrameKind
from signal_relay.server.registry import ConnectionRegistry, RelayOutcome
from signal_relay.server.relay_server import RelayServer
from signal_relay.server.router import Router
from signal_relay.server.session import OutboundQueue, QueueClosedError, Session
from signal_relay.server.sink import Sink, SinkSendError, Subscription
from signal_relay.server.tasks import SessionSupervisor, serve_connection
from signal_relay.server.transport import Transport, TransportError, WebSocketTransport

__all__ = [
    "Frame",
    "FrameKind",
    "ConnectionRegistry",
    "RelayOutcome",
    "RelayServer",
    "Router",
    "OutboundQueue",
    "QueueClosedError",
    "Session",
    "Sink",
    "SinkSendError",
    "Subscription",
    "SessionSupervisor",
    "serve_connection",
    "Transport",
    "TransportError",
    "WebSocketTransport",
]
