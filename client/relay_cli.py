#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import json
import os
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table

from shared.log import get_logger
from .ws_client import ClientSession, RegistrationError

app = typer.Typer(help="Relay test client", add_completion=False)
console = Console()
logger = get_logger(__name__)


def _default_server() -> str:
    return os.getenv("RELAY_SERVER", "ws://localhost:5050")


def render_frame(frame: Dict[str, Any]) -> None:
    kind = frame.get("type")
    if kind == "message":
        console.print(f"[bold cyan]{frame.get('from')}[/] -> {frame.get('to')}: {frame.get('message')}")
    elif kind == "webrtc-signal":
        data = frame.get("data") or {}
        console.print(f"[bold magenta]signal[/] {data.get('type')} from {frame.get('from')}")
        console.print_json(json.dumps(data))
    else:
        console.print_json(json.dumps(frame))


async def _registered_session(user_id: str, server: str, tailscale_ip: Optional[str]) -> ClientSession:
    session = ClientSession(user_id, server, tailscale_ip=tailscale_ip)
    await session.connect()
    try:
        await session.register()
    except (RegistrationError, asyncio.TimeoutError):
        await session.close()
        raise
    return session


@app.command()
def listen(
    user_id: str = typer.Argument(..., help="Identity to register"),
    server: str = typer.Option(_default_server(), help="WebSocket URL of the relay"),
    tailscale_ip: Optional[str] = typer.Option(None, help="Auxiliary address to advertise"),
):
    """Register and print every envelope delivered to this identity."""

    async def main_loop() -> None:
        session = await _registered_session(user_id, server, tailscale_ip)
        console.print(f"[bold green]Listening[/] as {user_id} on {server}")

        async def show(frame: Dict[str, Any]) -> None:
            render_frame(frame)

        async def ignore(frame: Dict[str, Any]) -> None:
            logger.debug("keepalive ping")

        session.on("ping", ignore)
        try:
            await session.recv_loop(default_handler=show)
        finally:
            await session.close()

    try:
        asyncio.run(main_loop())
    except RegistrationError as e:
        console.print(f"[red]Registration failed:[/] {e}")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        pass


@app.command()
def send(
    sender: str = typer.Argument(..., help="Identity to register as"),
    recipient: str = typer.Argument(..., help="Destination identity"),
    message: str = typer.Argument(..., help="Message text"),
    server: str = typer.Option(_default_server(), help="WebSocket URL of the relay"),
):
    """Register as SENDER, send one message to RECIPIENT and exit."""

    async def run() -> None:
        session = await _registered_session(sender, server, None)
        try:
            await session.send_message(recipient, message)
        finally:
            await session.close()

    try:
        asyncio.run(run())
    except RegistrationError as e:
        console.print(f"[red]Registration failed:[/] {e}")
        raise typer.Exit(code=1)
    # The relay never confirms delivery
    console.print(f"Sent to {recipient} (delivery is best-effort)")


@app.command()
def signal(
    sender: str = typer.Argument(..., help="Identity to register as"),
    recipient: str = typer.Argument(..., help="Destination identity"),
    signal_type: str = typer.Argument(..., help="offer, answer, candidate, ..."),
    payload: str = typer.Option("{}", help="Extra JSON fields merged into the signal data"),
    server: str = typer.Option(_default_server(), help="WebSocket URL of the relay"),
):
    """Relay one call-setup envelope to RECIPIENT."""
    try:
        extra = json.loads(payload)
    except json.JSONDecodeError as e:
        console.print(f"[red]--payload is not JSON:[/] {e}")
        raise typer.Exit(code=2)
    if not isinstance(extra, dict):
        console.print("[red]--payload must be a JSON object[/]")
        raise typer.Exit(code=2)
    data = {**extra, "type": signal_type}

    async def run() -> None:
        session = await _registered_session(sender, server, None)
        try:
            await session.send_signal(recipient, data)
        finally:
            await session.close()

    try:
        asyncio.run(run())
    except RegistrationError as e:
        console.print(f"[red]Registration failed:[/] {e}")
        raise typer.Exit(code=1)

    table = Table(title="Signal sent")
    table.add_column("from")
    table.add_column("to")
    table.add_column("type")
    table.add_row(sender, recipient, signal_type)
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
