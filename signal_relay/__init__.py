"""signal-relay: WebSocket signaling relay for bootstrapping peer-to-peer sessions."""

__version__ = "0.1.0"
