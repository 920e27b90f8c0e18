#!/usr/bin/env python3

from __future__ import annotations
import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from server.config import load_config
from server.server import main as run_server

app = typer.Typer(help="WebSocket relay and signaling server", add_completion=False)
console = Console()


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Interface to bind (default 0.0.0.0)"),
    port: Optional[int] = typer.Option(None, help="Port for WebSocket and HTTP (default 5050 or $PORT)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config file"),
    ping_interval: Optional[float] = typer.Option(None, help="Seconds between keepalive pings to registered clients"),
    log_level: Optional[str] = typer.Option(None, help="DEBUG, INFO, WARNING or ERROR"),
    no_http: bool = typer.Option(False, "--no-http", help="Disable the /get-ip and /ping helper routes"),
):
    """Run the relay until interrupted."""
    try:
        cfg = load_config(config)
        overrides = {
            "host": host,
            "port": port,
            "ping_interval": ping_interval,
            "log_level": log_level,
        }
        cfg = replace(cfg, **{k: v for k, v in overrides.items() if v is not None})
        if no_http:
            cfg = replace(cfg, http_enabled=False)
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        raise typer.Exit(code=2)

    console.print(f"[bold green]Relay server[/] listening on [cyan]ws://{cfg.host}:{cfg.port}[/]")
    if cfg.http_enabled:
        console.print(f"HTTP helpers: http://{cfg.host}:{cfg.port}/get-ip, /ping?ip=<addr>")
    try:
        asyncio.run(run_server(cfg))
    except KeyboardInterrupt:
        console.print("[yellow]Shutting down[/]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
