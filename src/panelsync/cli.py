"""panelsync CLI - Main entry point."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from panelsync import __version__
from panelsync.config import configure_logging, get_settings

app = typer.Typer(
    name="panelsync",
    help="Keep remote surfaces in step with a live-coding primary.",
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold cyan]panelsync[/bold cyan] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
):
    """panelsync - panel state relay.

    [bold]Quick Start:[/bold]

        panelsync relay      Run the relay server
        panelsync primary    Run a headless primary
        panelsync remote     Watch panels from a terminal
    """
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"[bold cyan]panelsync[/bold cyan] version {__version__}")


@app.command()
def relay(
    host: str = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int = typer.Option(None, "--port", "-p", help="Port"),
):
    """Run the relay server."""
    import uvicorn

    from panelsync.relay.app import create_app

    settings = get_settings()
    host = host or settings.host
    port = port or settings.port

    console.print(f"[cyan]Relay on[/cyan] ws://{host}:{port}{settings.ws_path}")
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


@app.command()
def primary(
    url: str = typer.Option(None, "--url", "-u", help="Relay WebSocket URL"),
    state_file: Path = typer.Option(None, "--state-file", "-s", help="Panel state JSON file"),
):
    """Run a headless primary without audio."""
    from panelsync.authority import JsonPanelStore, SilentEvaluator, StateAuthority
    from panelsync.client import PrimaryClient, RelayConnection

    settings = get_settings()
    store = JsonPanelStore(state_file or settings.state_file)

    async def run():
        authority = StateAuthority.from_settings(
            settings,
            SilentEvaluator(),
            store=store,
            on_error=lambda panel_id, error: console.print(
                f"[red]{panel_id}:[/red] {error.message}"
            ),
        )
        count = authority.load()
        await authority.evaluate_master()
        console.print(f"[green]Loaded[/green] {count} panels from {store.path}")

        connection = RelayConnection(
            url or settings.relay_url,
            "main",
            reconnect_delay=settings.reconnect_delay_seconds,
        )
        client = PrimaryClient(authority, connection)
        try:
            await client.run()
        finally:
            await client.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("[dim]Stopped[/dim]")


def render_view(view) -> Table:
    """Rich table of a remote view."""
    table = Table(title=f"Panels ({view.status.value})")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("State")
    table.add_column("Sliders")

    for panel in view.panels.values():
        if panel.stale:
            state = "[yellow]stale[/yellow]"
        elif panel.playing:
            state = "[green]playing[/green]"
        else:
            state = "[dim]paused[/dim]"
        sliders = ", ".join(f"{s.label}={s.value:g}" for s in panel.sliders.values()) or "-"
        table.add_row(panel.id, panel.title, state, sliders)

    if view.master_sliders:
        master = ", ".join(f"{s.label}={s.value:g}" for s in view.master_sliders.values())
        table.caption = f"master: {master}"
    return table


@app.command()
def remote(
    url: str = typer.Option(None, "--url", "-u", help="Relay WebSocket URL"),
):
    """Connect as a remote and print the panel list on every change."""
    from panelsync.authority.resync import RemoteView
    from panelsync.client import RelayConnection, RemoteClient

    settings = get_settings()

    async def run():
        view = RemoteView()
        view.add_change_callback(lambda v: console.print(render_view(v)))
        connection = RelayConnection(
            url or settings.relay_url,
            "remote",
            reconnect_delay=settings.reconnect_delay_seconds,
        )
        client = RemoteClient(connection, view)
        try:
            await client.run()
        finally:
            await client.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("[dim]Stopped[/dim]")


if __name__ == "__main__":
    app()
