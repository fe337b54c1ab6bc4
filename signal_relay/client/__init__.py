"""Client-side helpers for talking to a signal-relay server.

This package provides:
- relay_client: WebSocket client with register/send/receive helpers
- file_transfer: sender and receiver ends of the file transfer protocol
"""

from signal_relay.client.file_transfer import receive_file, send_file, wait_for_receiver
from signal_relay.client.relay_client import RelayClient

__all__ = [
    "RelayClient",
    "receive_file",
    "send_file",
    "wait_for_receiver",
]
