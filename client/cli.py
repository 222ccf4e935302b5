#!/usr/bin/env python3

from __future__ import annotations
import sys
import threading
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shared.config import ConnectionOptions, load_options
from shared.errors import ConfigError
from shared.log import configure_root_logging, get_logger
from shared.utils import format_hostport
from .client import connect_client, touch_client, update_client
from .state import ClientContext, ServerSession, run_client

app = typer.Typer(help="BarTender status bar client")
console = Console()
logger = get_logger(__name__)

_HOST = typer.Option(None, "--host", help="Status bar server host [env: BARTENDER_HOST]")
_PORT = typer.Option(None, "--port", help="Status bar server port [env: BARTENDER_PORT]")
_RETRIES = typer.Option(None, "--retries", min=0, help="Handshake attempts [env: BARTENDER_RETRIES]")
_TIMEOUT = typer.Option(None, "--timeout", min=1, help="Seconds per handshake attempt [env: BARTENDER_TIMEOUT]")
_CONFIG = typer.Option(None, "--config", help="YAML config file [env: BARTENDER_CONFIG]")
_LOG_LEVEL = typer.Option("WARNING", "--log-level", help="DEBUG, INFO, WARNING or ERROR")


def _options(
    host: Optional[str],
    port: Optional[str],
    retries: Optional[int],
    timeout: Optional[int],
    config: Optional[Path],
) -> ConnectionOptions:
    try:
        return load_options(config).replace(host=host, port=port, retries=retries, timeout=timeout)
    except ConfigError as e:
        console.print(f"[red]Invalid configuration[/]: {escape(str(e))}")
        raise typer.Exit(code=2)


def _connect(ctx: ClientContext, options: ConnectionOptions) -> None:
    if not connect_client(ctx, options):
        console.print(f"[red]Not connected[/]: {escape(str(ctx.last_error))}")
        raise typer.Exit(code=1)


def _session_table(ctx: ClientContext, session: ServerSession) -> Table:
    table = Table(title=f"Session for {ctx.name}")
    table.add_column("Server")
    table.add_column("Session ID", justify="right")
    table.add_column("Heartbeat (s)", justify="right")
    table.add_column("Protocol", justify="right")
    peer = format_hostport(ctx.options.host, ctx.options.port) if ctx.options else str(session.connection.peer)
    table.add_row(peer, str(session.session_id), str(session.heartbeat_interval), str(session.protocol_version))
    return table


@app.command()
def connect(
    name: str = typer.Argument(..., help="Client name shown by the status bar"),
    host: Optional[str] = _HOST,
    port: Optional[str] = _PORT,
    retries: Optional[int] = _RETRIES,
    timeout: Optional[int] = _TIMEOUT,
    config: Optional[Path] = _CONFIG,
    log_level: str = _LOG_LEVEL,
):
    """Perform the handshake, print the session and exit."""
    configure_root_logging(log_level)
    options = _options(host, port, retries, timeout, config)
    with run_client(name) as ctx:
        _connect(ctx, options)
        console.print(_session_table(ctx, ctx.session))


@app.command()
def update(
    name: str = typer.Argument(..., help="Client name shown by the status bar"),
    content: str = typer.Argument(..., help="Status text to push"),
    host: Optional[str] = _HOST,
    port: Optional[str] = _PORT,
    retries: Optional[int] = _RETRIES,
    timeout: Optional[int] = _TIMEOUT,
    config: Optional[Path] = _CONFIG,
    log_level: str = _LOG_LEVEL,
):
    """Connect, push a single status update and exit."""
    configure_root_logging(log_level)
    options = _options(host, port, retries, timeout, config)
    with run_client(name) as ctx:
        _connect(ctx, options)
        if not update_client(ctx, content):
            console.print(f"[red]Update failed[/]: {escape(str(ctx.last_error))}")
            raise typer.Exit(code=1)
        console.print(f"[bold green]Sent[/] update for {name} (session {ctx.session.session_id})")


@app.command()
def run(
    name: str = typer.Argument(..., help="Client name shown by the status bar"),
    host: Optional[str] = _HOST,
    port: Optional[str] = _PORT,
    retries: Optional[int] = _RETRIES,
    timeout: Optional[int] = _TIMEOUT,
    config: Optional[Path] = _CONFIG,
    interval: Optional[float] = typer.Option(None, "--interval", min=0.05, help="Heartbeat period; defaults to the server's"),
    log_level: str = _LOG_LEVEL,
):
    """Connect, then send each stdin line as an update while heartbeating until EOF."""
    configure_root_logging(log_level)
    options = _options(host, port, retries, timeout, config)
    with run_client(name) as ctx:
        _connect(ctx, options)
        period = interval if interval is not None else max(ctx.session.heartbeat_interval, 1)
        console.print(
            f"[bold green]BarTender client[/] {name} connected as session "
            f"{ctx.session.session_id}, heartbeat every {period}s"
        )

        # Heartbeats and updates share the context
        lock = threading.Lock()
        stop = threading.Event()

        def heartbeat_loop() -> None:
            while not stop.wait(period):
                with lock:
                    if not touch_client(ctx):
                        console.print(f"[red]Heartbeat failed[/]: {escape(str(ctx.last_error))}")

        heartbeat = threading.Thread(target=heartbeat_loop, name="bartender-heartbeat", daemon=True)
        heartbeat.start()
        failures = 0
        try:
            for line in sys.stdin:
                content = line.rstrip("\n")
                if not content:
                    continue
                with lock:
                    ok = update_client(ctx, content)
                if not ok:
                    failures += 1
                    console.print(f"[red]Update failed[/]: {escape(str(ctx.last_error))}")
        finally:
            stop.set()
            heartbeat.join()
            logger.info(f"Input closed; ending session {ctx.session.session_id}", extra={"client": name})
        if failures:
            raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
