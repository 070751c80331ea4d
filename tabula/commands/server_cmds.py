from __future__ import annotations

import logging
import socket

import typer
from rich import print

from ..config import TabulaConfig
from ..server import TabulaServer


def _port_open(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(0.2)
        try:
            return sock.connect_ex((host, port)) == 0
        except OSError:
            return False


def serve_cmd(
    *,
    config: TabulaConfig,
    host: str | None,
    port: int | None,
    data_dir: str | None,
) -> None:
    """Run the tab server in the foreground until interrupted."""

    if host:
        config.server_host = host
    if port:
        config.server_port = port
    if data_dir:
        config.data_dir = data_dir
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if _port_open(config.server_host, config.server_port):
        print(
            f"[yellow]Something is already listening on "
            f"{config.server_host}:{config.server_port}[/yellow]"
        )
        raise typer.Exit(code=1)
    server = TabulaServer(config)
    try:
        server.bind()
    except OSError as exc:
        print(f"[red]Failed to bind {config.server_host}:{config.server_port}: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    print(
        f"[green]Tabula listening on http://{config.server_host}:{config.server_port}[/green] "
        f"(data: {config.data_path})"
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\n[yellow]Stopped[/yellow]")
