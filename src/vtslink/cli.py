"""Typer CLI entrypoint for vtslink.

Commands:
  setup         — write ~/.vtslink/config.json (endpoint, plugin identity, icon)
  call          — connect, authenticate, send one request, print the response
  status        — show configuration, token state and (optionally) probe the API
  forget-token  — drop the stored authentication token
  serve         — run the local HTTP bridge in the foreground
"""

from __future__ import annotations

import asyncio
import base64
import json
import signal
import sys
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from . import log_setup
from .auth import TOKEN_KEY
from .config import CONFIG_FILE, Config, load_config, save_config
from .connection import PluginConnection
from .models import EndpointConfig, StatusReport
from .requester import RequestRunner
from .token_store import FileTokenStore

app = typer.Typer(
    name="vtslink",
    help="Shared VTube Studio API connection.",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)

_CLI_CALLER_ID = "cli"


def _print_status(report: StatusReport) -> None:
    err_console.print(f"[{report.fill}]●[/{report.fill}] {report.text}")


# ---------------------------------------------------------------------------
# setup
# ---------------------------------------------------------------------------

@app.command()
def setup(
    endpoint: str = typer.Option(
        None, "--endpoint", "-e", help="API WebSocket URL (e.g. ws://localhost:8001)"
    ),
    name: str = typer.Option(None, "--name", "-n", help="Plugin name shown in the app"),
    developer: str = typer.Option(None, "--developer", "-d", help="Plugin developer"),
    icon: Path = typer.Option(
        None, "--icon", help="128x128 PNG shown in the permission dialog", exists=True
    ),
    store: str = typer.Option(None, "--store", help="Token scope name"),
    port: int = typer.Option(None, "--port", "-p", help="HTTP bridge port"),
) -> None:
    """Write the endpoint and plugin identity to the config file."""
    existing = load_config()
    current = existing.endpoint

    if endpoint is None:
        endpoint = typer.prompt("API WebSocket URL", default=current.address)
    if name is None:
        name = typer.prompt("Plugin name", default=current.plugin_name)
    if developer is None:
        developer = typer.prompt("Plugin developer", default=current.plugin_developer)

    plugin_icon = current.plugin_icon
    if icon is not None:
        plugin_icon = base64.b64encode(icon.read_bytes()).decode("ascii")

    config = existing.model_copy(
        update={
            "endpoint": EndpointConfig(
                address=endpoint,
                plugin_name=name,
                plugin_developer=developer,
                plugin_icon=plugin_icon,
                store=store or current.store,
            ),
            "http_port": port or existing.http_port,
        }
    )
    path = save_config(config)
    console.print(f"[green]Config saved to[/green] {path}")
    console.print(f"  endpoint : [bold]{config.endpoint.address}[/bold]")
    console.print(f"  plugin   : [bold]{name}[/bold] by {developer}")
    console.print(f"  store    : [bold]{config.endpoint.store}[/bold]")
    console.print(f"  icon     : {'yes' if plugin_icon else 'no'}")


# ---------------------------------------------------------------------------
# call
# ---------------------------------------------------------------------------

@app.command()
def call(
    request: str = typer.Argument(..., help="messageType, e.g. CurrentModelRequest"),
    data: str = typer.Option(None, "--data", "-D", help="JSON object sent as data"),
    timeout: float = typer.Option(None, "--timeout", "-t", help="Response timeout (s)"),
    wait: float = typer.Option(
        60.0, "--wait", "-w", help="How long to wait for authentication (s)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Authenticate (approving the plugin in the app if asked) and send one request."""
    payload: Any = None
    if data is not None:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as exc:
            err_console.print(f"[red]--data is not valid JSON: {exc}[/red]")
            raise typer.Exit(2)

    config = load_config()
    log_setup.init_from_config(config, "cli", verbose=verbose, foreground=verbose)
    code = asyncio.run(_call(config, request, payload, timeout, wait))
    raise typer.Exit(code)


async def _call(
    config: Config, request: str, payload: Any, timeout: float | None, wait: float
) -> int:
    async with PluginConnection(
        config.endpoint, FileTokenStore(), timings=config.timings
    ) as conn:
        runner = RequestRunner(
            conn,
            request,
            payload,
            caller_id=_CLI_CALLER_ID,
            on_status=_print_status,
            timeout=timeout,
        )
        async with runner:
            if not await conn.wait_until_ready(wait):
                err_console.print(
                    f"[red]Not ready after {wait:.0f}s ({conn.status.text}).[/red]"
                )
                return 1
            ok, err = await runner.handle({})

    if ok is not None:
        console.print_json(data=ok["payload"])
        return 0
    err_console.print(f"[red]{err['topic']}[/red]")
    console.print_json(data=err["payload"])
    return 3 if err["topic"] == "ClientError" else 4


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------

@app.command()
def status(
    probe: bool = typer.Option(
        False, "--probe", help="Connect and report how far the handshake gets"
    ),
    wait: float = typer.Option(10.0, "--wait", "-w", help="Probe duration (s)"),
) -> None:
    """Show configuration and stored-token state."""
    config = load_config()
    store = FileTokenStore()
    token = asyncio.run(store.get(TOKEN_KEY, config.endpoint.store))

    table = Table(title="vtslink status", show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Config file", str(CONFIG_FILE) if CONFIG_FILE.exists() else "— (defaults)")
    table.add_row("Endpoint", config.endpoint.address)
    table.add_row("Plugin", f"{config.endpoint.plugin_name} by {config.endpoint.plugin_developer}")
    table.add_row("Token scope", config.endpoint.store)
    table.add_row(
        "Token stored",
        "[green]yes[/green]" if token else "[yellow]no[/yellow]",
    )
    table.add_row("HTTP bridge", f"http://{config.http_host}:{config.http_port}")

    if probe:
        report = asyncio.run(_probe(config, wait))
        table.add_row("Probe", f"[{report.fill}]{report.text}[/{report.fill}]")

    console.print(table)


async def _probe(config: Config, wait: float) -> StatusReport:
    async with PluginConnection(
        config.endpoint, FileTokenStore(), timings=config.timings
    ) as conn:
        await conn.attach(_CLI_CALLER_ID)
        await conn.wait_until_ready(wait)
        return conn.status


# ---------------------------------------------------------------------------
# forget-token
# ---------------------------------------------------------------------------

@app.command("forget-token")
def forget_token() -> None:
    """Delete the stored token; the next connection asks for approval again."""
    config = load_config()
    asyncio.run(FileTokenStore().set(TOKEN_KEY, None, config.endpoint.store))
    console.print(f"[green]Token removed[/green] for scope '{config.endpoint.store}'.")


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------

@app.command()
def serve(
    host: str = typer.Option(None, "--host", "-H", help="Bind host"),
    port: int = typer.Option(None, "--port", "-p", help="Bind port"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Hold the API connection open and expose it over local HTTP."""
    config = load_config()
    if host:
        config.http_host = host
    if port:
        config.http_port = port
    log_file = log_setup.init_from_config(config, "serve", verbose=verbose)
    console.print(
        f"[cyan]Serving[/cyan] http://{config.http_host}:{config.http_port} "
        f"→ {config.endpoint.address} [dim](log: {log_file})[/dim]"
    )
    asyncio.run(_serve(config))


async def _serve(config: Config) -> None:
    from .server import run_http_server

    stop_event = asyncio.Event()

    def _shutdown(*_: object) -> None:
        stop_event.set()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _shutdown)
    else:
        signal.signal(signal.SIGTERM, _shutdown)
        signal.signal(signal.SIGINT, _shutdown)

    async with PluginConnection(
        config.endpoint, FileTokenStore(), timings=config.timings
    ) as conn:
        await run_http_server(config, conn, stop_event)


if __name__ == "__main__":
    app()
