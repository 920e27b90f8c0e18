"""
Plain-HTTP helper routes served on the relay port.

The WebSocket server hands every handshake request to ``HttpSurface.process_request``
first. WebSocket upgrades pass through untouched; any other GET is answered
here. These routes are stateless and never touch the connection registry.

    GET /          liveness text
    GET /get-ip    host's non-loopback IPv4 addresses + caller's apparent address
    GET /ping?ip=  one ICMP echo from the host to ``ip``
"""

from __future__ import annotations

import asyncio
import ipaddress
import json
import socket
import sys
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

import psutil
from websockets.datastructures import Headers
from websockets.http11 import Request, Response

from shared.log import get_logger
from shared.utils import is_probe_target, normalize_client_ip

logger = get_logger(__name__)

ROOT_TEXT = "WebSocket signaling server is running!"

RouteHandler = Callable[[Any, Request, Dict[str, List[str]]], Awaitable[Response]]


def build_response(status: HTTPStatus, body: Any, content_type: str = "application/json") -> Response:
    if content_type == "application/json":
        data = json.dumps(body, separators=(",", ":")).encode()
    else:
        data = str(body).encode()
    headers = Headers([
        ("Content-Type", f"{content_type}; charset=utf-8"),
        ("Content-Length", str(len(data))),
        ("Access-Control-Allow-Origin", "*"),
        ("Connection", "close"),
    ])
    return Response(status.value, status.phrase, headers, data)


def _candidate_addresses() -> List[Tuple[str, str]]:
    """(interface, address) pairs for every IPv4 address bound on this host"""
    return [
        (name, addr.address)
        for name, addrs in psutil.net_if_addrs().items()
        for addr in addrs
        if addr.family == socket.AF_INET
    ]


def get_server_ips() -> List[Dict[str, str]]:
    """Non-loopback IPv4 addresses of this host, first interface wins on duplicates"""
    ips: List[Dict[str, str]] = []
    seen = set()
    for name, address in _candidate_addresses():
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            continue
        if ip.version != 4 or ip.is_loopback or address in seen:
            continue
        seen.add(address)
        ips.append({"interface": name, "address": address})
    return ips


def ping_command(ip: str, platform: str = sys.platform) -> List[str]:
    if platform.startswith("win"):
        return ["ping", "-n", "1", ip]
    return ["ping", "-c", "1", ip]


async def run_ping(ip: str, timeout: float) -> Tuple[bool, str]:
    """Run one platform ping as an argv (no shell). Returns (ok, stderr-or-reason)."""
    try:
        process = await asyncio.create_subprocess_exec(
            *ping_command(ip),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return False, str(e)

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return False, f"timed out after {timeout}s"

    if process.returncode != 0:
        return False, (stderr or stdout).decode(errors="replace").strip()
    return True, ""


class HttpSurface:
    """Route table for non-upgrade requests on the relay port."""

    def __init__(self, ping_timeout: float = 5.0):
        self.ping_timeout = ping_timeout
        self.routes: Dict[str, RouteHandler] = {
            "/": self.handle_root,
            "/get-ip": self.handle_get_ip,
            "/ping": self.handle_ping,
        }

    async def process_request(self, connection: Any, request: Request) -> Optional[Response]:
        """``websockets.serve(process_request=...)`` hook; None lets the upgrade proceed."""
        if request.headers.get("Upgrade", "").lower() == "websocket":
            return None

        url = urlsplit(request.path)
        handler = self.routes.get(url.path)
        if handler is None:
            return build_response(HTTPStatus.NOT_FOUND, "Not Found", content_type="text/plain")
        return await handler(connection, request, parse_qs(url.query))

    async def handle_root(self, connection: Any, request: Request, query: Dict[str, List[str]]) -> Response:
        return build_response(HTTPStatus.OK, ROOT_TEXT, content_type="text/plain")

    async def handle_get_ip(self, connection: Any, request: Request, query: Dict[str, List[str]]) -> Response:
        peer = getattr(connection, "remote_address", None)
        peer_ip = peer[0] if peer else None
        client_ip = normalize_client_ip(request.headers.get("X-Forwarded-For"), peer_ip)
        return build_response(HTTPStatus.OK, {"serverIps": get_server_ips(), "clientIp": client_ip})

    async def handle_ping(self, connection: Any, request: Request, query: Dict[str, List[str]]) -> Response:
        ip = (query.get("ip") or [""])[0]
        if not ip:
            return build_response(HTTPStatus.BAD_REQUEST, {"success": False, "message": "Missing IP address"})
        if not is_probe_target(ip):
            return build_response(HTTPStatus.BAD_REQUEST, {"success": False, "message": "Invalid IP address"})

        ok, error = await run_ping(ip, self.ping_timeout)
        if not ok:
            logger.error(f"Ping failed: {error}")
            return build_response(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                {"success": False, "message": "Ping failed", "error": error},
            )
        return build_response(HTTPStatus.OK, {"success": True, "message": "Ping successful", "ip": ip})
