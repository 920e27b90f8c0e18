#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import time
from typing import Any, Dict, Optional

import websockets

from server.config import RelayConfig
from server.core.ConnectionLink import ConnectionLink
from server.core.ConnectionRegistry import ConnectionRegistry
from server.core.MessageHandlers import EnvelopeRouter
from server.http_routes import HttpSurface
from shared.log import configure_root_logging, get_logger

logger = get_logger(__name__)


class RelayServer:
    """
    Owns the connection registry for the lifetime of the process and drives
    one ConnectionLink per accepted WebSocket.
    """

    def __init__(self, config: Optional[RelayConfig] = None, registry: Optional[ConnectionRegistry] = None):
        self.config = config or RelayConfig()
        self.registry = registry if registry is not None else ConnectionRegistry(ping_interval=self.config.ping_interval)
        self.router = EnvelopeRouter(self.registry)
        self.http = HttpSurface(ping_timeout=self.config.ping_probe_timeout)
        self.ready = asyncio.Event()
        self._server: Optional[websockets.Server] = None

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def port(self) -> int:
        return self.config.port

    async def start_server(self) -> None:
        """Start the WebSocket server and run until cancelled"""
        logger.info(f"Starting relay server on {self.host}:{self.port}")

        async with websockets.serve(
            self.handle_connection,
            self.host,
            self.port,
            process_request=self.http.process_request if self.config.http_enabled else None,
            ping_interval=self.config.transport_ping_interval,
            ping_timeout=self.config.transport_ping_timeout,
        ) as server:
            self._server = server
            logger.info(f"Relay server listening on ws://{self.host}:{self.port}")
            self.ready.set()
            try:
                await asyncio.Future()  # Run forever
            except asyncio.CancelledError:
                logger.info("Server task cancelled")
                raise
            finally:
                self.ready.clear()
                self.registry.close()
                self._server = None

    async def handle_connection(self, websocket: websockets.ServerConnection) -> None:
        """
        Handle one WebSocket from open to close. Frames are processed strictly
        in arrival order; teardown always runs, whatever ended the loop.
        """
        connection = ConnectionLink(websocket)
        remote_addr = connection.remote_address
        logger.info(f"New connection from {remote_addr}", extra={"connection_id": connection.connection_id})

        try:
            async for message in websocket:
                await self.process_message(connection, message)
        except websockets.exceptions.ConnectionClosed as e:
            logger.info(f"Connection {remote_addr} closed: {e}", extra={"connection_id": connection.connection_id})
        except Exception as e:
            logger.error(f"WebSocket error for user {connection.identity if connection.is_registered else 'unknown'}: {e}",
                         extra={"connection_id": connection.connection_id})
        finally:
            await self.cleanup_connection(connection)

    async def process_message(self, connection: ConnectionLink, message: str | bytes) -> None:
        """Route one inbound frame; a failing handler never takes the connection down."""
        connection.last_seen = time.monotonic()
        try:
            await self.router.dispatch(connection, message)
        except Exception as e:
            logger.error(f"Error processing message: {e}", exc_info=True,
                         extra={"connection_id": connection.connection_id})

    async def cleanup_connection(self, connection: ConnectionLink) -> None:
        """Clean up when connection closes: stop the probe, drop exactly this record"""
        identity = self.registry.release(connection)
        if identity is not None:
            logger.info(f"Disconnected: {identity}", extra={"connection_id": connection.connection_id})
            self.registry.log_connected_users()
        await connection.close()

    def get_status(self) -> Dict[str, Any]:
        """Expose internal status for health/diagnostics."""
        return {
            "listening": self._server is not None,
            "host": self.host,
            "port": self.port,
            "ping_interval": self.registry.ping_interval,
            "connected_users": [
                {"userId": identity, "tailscaleIp": aux, "state": state.value}
                for identity, aux, state in self.registry.snapshot()
            ],
        }


async def main(config: Optional[RelayConfig] = None) -> None:
    """Main entry point"""
    config = config or RelayConfig()
    configure_root_logging(config.log_level)
    server = RelayServer(config)
    await server.start_server()

if __name__ == "__main__":
    asyncio.run(main())
