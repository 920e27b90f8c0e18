from __future__ import annotations

import itertools
import time
from typing import Any, Dict, Optional

import websockets
from websockets.protocol import State

from server.core.MessageTypes import LivenessState
from shared.envelope import to_json
from shared.log import get_logger

logger = get_logger(__name__)

_connection_ids = itertools.count(1)

_STATE_NAMES = {
    State.CONNECTING: LivenessState.CONNECTING,
    State.OPEN: LivenessState.OPEN,
    State.CLOSING: LivenessState.CLOSING,
    State.CLOSED: LivenessState.CLOSED,
}


class ConnectionLink:
    """Wrapper around a WebSocket connection with relay metadata"""

    def __init__(self, websocket: websockets.ServerConnection | websockets.ClientConnection):
        self.websocket = websocket
        self.connection_id = next(_connection_ids)
        self.identity: Optional[str] = None   # bound on successful registration
        self.opened_at: float = time.monotonic()
        self.last_seen: float = self.opened_at

    def __repr__(self) -> str:
        return f"<ConnectionLink #{self.connection_id} identity={self.identity!r} state={self.liveness_state.value}>"

    @property
    def remote_address(self) -> Any:
        return getattr(self.websocket, "remote_address", None)

    @property
    def liveness_state(self) -> LivenessState:
        return _STATE_NAMES.get(getattr(self.websocket, "state", State.CLOSED), LivenessState.CLOSED)

    def is_open(self) -> bool:
        return self.liveness_state is LivenessState.OPEN

    @property
    def is_registered(self) -> bool:
        # "" is a legal identity, so compare against None
        return self.identity is not None

    async def send_envelope(self, envelope: Dict[str, Any]) -> bool:
        """
        Send an envelope as JSON. Fire-and-forget: no delivery confirmation,
        and a channel fault is logged here rather than raised to the router.

        Returns True if the frame was handed to the transport.
        """
        try:
            await self.websocket.send(to_json(envelope))
            logger.debug("Sent %s to %s", envelope.get("type"), self.identity,
                         extra={"connection_id": self.connection_id})
            return True
        except websockets.exceptions.ConnectionClosed:
            logger.warning("Connection closed while sending %s", envelope.get("type"),
                           extra={"connection_id": self.connection_id})
        except Exception as e:
            logger.error(f"Error sending message: {e}", extra={"connection_id": self.connection_id})
        return False

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        """Close the WebSocket connection"""
        try:
            await self.websocket.close(code=code, reason=reason or "")
        except Exception as e:
            logger.error(f"Error closing connection: {e}")
