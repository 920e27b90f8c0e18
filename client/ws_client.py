from __future__ import annotations
import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets

from shared.envelope import to_json
from shared.log import get_logger

logger = get_logger(__name__)


MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class RegistrationError(Exception):
    """Raised when the relay rejects a register request."""
    pass


class ClientSession:
    """
    Relay client session: one WebSocket, one identity.

    Inbound frames are plain dicts; handlers are looked up by their ``type``.
    """

    def __init__(self, user_id: str, server_ws_url: str, tailscale_ip: Optional[str] = None) -> None:
        self.user_id = user_id
        self.server_ws_url = server_ws_url
        self.tailscale_ip = tailscale_ip
        self.websocket: Optional[websockets.ClientConnection] = None
        self.handlers: Dict[str, MessageHandler] = {}

    async def connect(self) -> None:
        self.websocket = await websockets.connect(self.server_ws_url)

    async def send(self, envelope: Dict[str, Any]) -> None:
        assert self.websocket is not None
        await self.websocket.send(to_json(envelope))

    async def recv(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Next decoded frame, skipping keepalive pings"""
        assert self.websocket is not None
        while True:
            raw = await asyncio.wait_for(self.websocket.recv(), timeout=timeout)
            frame = json.loads(raw)
            if frame.get("type") != "ping":
                return frame

    async def register(self, timeout: float = 5.0) -> Dict[str, Any]:
        """Send register and wait for the reply. Raises RegistrationError on rejection."""
        envelope: Dict[str, Any] = {"type": "register", "userId": self.user_id}
        if self.tailscale_ip is not None:
            envelope["tailscaleIP"] = self.tailscale_ip
        await self.send(envelope)

        reply = await self.recv(timeout=timeout)
        if reply.get("type") == "error":
            raise RegistrationError(reply.get("message", "registration rejected"))
        if reply.get("type") != "registered":
            raise RegistrationError(f"Unexpected reply to register: {reply}")
        logger.info("Registered as %s (tailscaleIp=%s)", reply.get("userId"), reply.get("tailscaleIp"))
        return reply

    async def send_message(self, to: str, message: Any, timestamp: Optional[int] = None) -> None:
        if timestamp is None:
            timestamp = int(time.time() * 1000)
        await self.send({
            "type": "message",
            "from": self.user_id,
            "to": to,
            "message": message,
            "timestamp": timestamp,
        })

    async def send_signal(self, to: str, data: Dict[str, Any]) -> None:
        await self.send({"type": "webrtc-signal", "from": self.user_id, "to": to, "data": data})

    def on(self, msg_type: str, handler: MessageHandler) -> None:
        self.handlers[msg_type] = handler

    async def recv_loop(self, default_handler: Optional[MessageHandler] = None) -> None:
        assert self.websocket is not None
        async for raw in self.websocket:
            try:
                frame = json.loads(raw)
                handler = self.handlers.get(frame.get("type"), default_handler)
                if handler:
                    await handler(frame)
            except Exception as e:
                logger.error("Failed to parse/process inbound frame: %s", e)

    async def close(self) -> None:
        if self.websocket:
            await self.websocket.close(code=1000)

    async def __aenter__(self) -> "ClientSession":
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
