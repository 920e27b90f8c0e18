from __future__ import annotations

from enum import Enum
from typing import Set


class MessageType(str, Enum):
    """Relay protocol message types (the ``type`` discriminator of every frame)."""

    # Client -> server
    REGISTER = "register"              # Bind an identity to this connection
    MESSAGE = "message"                # Direct application message, routed by "to"
    WEBRTC_SIGNAL = "webrtc-signal"    # Call-setup payload, routed by "to"

    # Server -> client
    REGISTERED = "registered"          # Registration confirmation
    ERROR = "error"                    # Registration rejected
    PING = "ping"                      # One-way keepalive

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if string is a valid message type."""
        try:
            cls(value)
            return True
        except ValueError:
            return False


class LivenessState(str, Enum):
    """Channel state as reported in registry snapshots."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


# Message types a client may send
INBOUND_MESSAGES: Set[MessageType] = {
    MessageType.REGISTER,
    MessageType.MESSAGE,
    MessageType.WEBRTC_SIGNAL,
}

