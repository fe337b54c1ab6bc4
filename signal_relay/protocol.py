"""Control envelope protocol for signal-relay.

This module defines the JSON envelopes exchanged between clients and the relay
over WebSocket text frames. The relay only looks at a handful of routing
fields; everything else in an envelope is opaque and forwarded verbatim.

Envelope Types
--------------

### Client → Relay (routing)

**register**
    Purpose: Bind a caller-chosen identifier to this connection
    Format: {"type": "register", "connectionId": "<id>"}

**check-recipient**
    Purpose: Ask whether an identifier is currently registered (logged only)
    Format: {"type": "check-recipient", "connectionId": "<id>"}

**receiver-ready**
    Purpose: Receiver announces itself to a sender
    Format: {"type": "receiver-ready", "senderId": "<id>", ...}
    Note: Forwarded verbatim to ``senderId``. Does not set the binary target.

**generic relay**
    Purpose: Forward an arbitrary payload to another connection
    Format: {"target_id": "<id>", ...}
    Note: Also records ``target_id`` as the destination of later binary frames.

### Relay → Client

**registered**
    Format: {"type": "registered", "id": "<id>"}

**error**
    Format: {"type": "error", "message": "<description>"}

### Client ↔ Client (file transfer, opaque to the relay)

**file-info**, **file-chunk**, **file-transfer-complete**,
**transfer-complete**, **transfer-error**: all carry ``target_id`` and are
routed as generic relay envelopes. Chunk payloads travel as binary frames
following their ``file-chunk`` envelope.

Message Flow Example
--------------------

1. Sender → Relay: {"type": "register", "connectionId": "abc"}
2. Relay → Sender: {"type": "registered", "id": "abc"}
3. Receiver → Relay: {"type": "receiver-ready", "senderId": "abc", "receiverId": "r1", ...}
4. Relay → Sender: (the receiver-ready envelope, verbatim)
5. Sender → Relay: {"target_id": "r1", "type": "file-info", ...}
6. Sender → Relay: <binary chunk>, routed to "r1"
"""

import json
from enum import Enum
from typing import Any, Optional

# Routing envelope types
MSG_REGISTER = "register"
MSG_CHECK_RECIPIENT = "check-recipient"
MSG_RECEIVER_READY = "receiver-ready"

# Relay replies
MSG_REGISTERED = "registered"
MSG_ERROR = "error"

# File transfer envelope types (client side only)
MSG_FILE_INFO = "file-info"
MSG_FILE_CHUNK = "file-chunk"
MSG_FILE_TRANSFER_COMPLETE = "file-transfer-complete"
MSG_TRANSFER_COMPLETE = "transfer-complete"
MSG_TRANSFER_ERROR = "transfer-error"

# Envelope field names
FIELD_TYPE = "type"
FIELD_CONNECTION_ID = "connectionId"
FIELD_SENDER_ID = "senderId"
FIELD_RECEIVER_ID = "receiverId"
FIELD_TARGET_ID = "target_id"

# Error messages sent back to the originating connection
ERROR_TARGET_NOT_FOUND = "Target {target_id} not found"
ERROR_NO_BINARY_TARGET = "No target set for binary transfer"


class EnvelopeError(ValueError):
    """Raised when a text frame is not a JSON object."""


class EnvelopeKind(Enum):
    """Routing classification of a decoded envelope."""

    REGISTER = "register"
    CHECK_RECIPIENT = "check-recipient"
    RECEIVER_READY = "receiver-ready"
    RELAY = "relay"
    UNKNOWN = "unknown"


def parse_envelope(text: str) -> dict[str, Any]:
    """Parse a text frame into an envelope.

    Args:
        text: Raw text frame payload.

    Returns:
        The decoded JSON object.

    Raises:
        EnvelopeError: If the text is not valid JSON or not a JSON object.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise EnvelopeError(f"Invalid envelope JSON: {e}") from e
    if not isinstance(data, dict):
        raise EnvelopeError(f"Envelope must be a JSON object, got {type(data).__name__}")
    return data


def decode_envelope(text: str) -> Optional[dict[str, Any]]:
    """Lenient variant of ``parse_envelope`` returning None on failure."""
    try:
        return parse_envelope(text)
    except EnvelopeError:
        return None


def _str_field(envelope: dict[str, Any], name: str) -> Optional[str]:
    value = envelope.get(name)
    return value if isinstance(value, str) else None


def classify_envelope(envelope: dict[str, Any]) -> EnvelopeKind:
    """Classify an envelope by the routing rule that applies to it.

    The ``type`` field wins over ``target_id``: a ``receiver-ready`` envelope
    that also carries ``target_id`` is still a receiver-ready envelope.

    Examples:
        >>> classify_envelope({"type": "register", "connectionId": "a"})
        <EnvelopeKind.REGISTER: 'register'>

        >>> classify_envelope({"type": "offer", "target_id": "b"})
        <EnvelopeKind.RELAY: 'relay'>

        >>> classify_envelope({"type": "ping"})
        <EnvelopeKind.UNKNOWN: 'unknown'>
    """
    msg_type = envelope.get(FIELD_TYPE)
    if msg_type == MSG_REGISTER:
        return EnvelopeKind.REGISTER
    if msg_type == MSG_CHECK_RECIPIENT:
        return EnvelopeKind.CHECK_RECIPIENT
    if msg_type == MSG_RECEIVER_READY:
        return EnvelopeKind.RECEIVER_READY
    if _str_field(envelope, FIELD_TARGET_ID) is not None:
        return EnvelopeKind.RELAY
    return EnvelopeKind.UNKNOWN


def get_connection_id(envelope: dict[str, Any]) -> Optional[str]:
    return _str_field(envelope, FIELD_CONNECTION_ID)


def get_sender_id(envelope: dict[str, Any]) -> Optional[str]:
    return _str_field(envelope, FIELD_SENDER_ID)


def get_target_id(envelope: dict[str, Any]) -> Optional[str]:
    return _str_field(envelope, FIELD_TARGET_ID)


def format_registered(connection_id: str) -> str:
    """Format the registration acknowledgment.

    Examples:
        >>> format_registered("abc")
        '{"type": "registered", "id": "abc"}'
    """
    return json.dumps({FIELD_TYPE: MSG_REGISTERED, "id": connection_id})


def format_error(message: str) -> str:
    """Format an error envelope sent back to the originating connection.

    Examples:
        >>> format_error("No target set for binary transfer")
        '{"type": "error", "message": "No target set for binary transfer"}'
    """
    return json.dumps({FIELD_TYPE: MSG_ERROR, "message": message})


def format_target_not_found(target_id: str) -> str:
    return format_error(ERROR_TARGET_NOT_FOUND.format(target_id=target_id))
