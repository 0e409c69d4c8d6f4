"""Entry-point for the Pi media player."""

from __future__ import annotations

import logging
import os
import threading
import time
import webbrowser
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from media_player.bootstrap import initialize_app
from media_player.logging_utils import build_default_handlers, configure_logging
from media_player.services.bluetooth import BluetoothController, BluetoothError
from media_player.services.library import LibraryAccessError, LibraryPathError, MusicLibrary
from media_player.services.playlists import PlaylistStore, PlaylistStoreError
from media_player.ui.modern import ModernUI
from media_player.web.server import create_app


LOGGER = logging.getLogger("media_player.cli")


cli = typer.Typer(add_completion=False, help="Pi media player management commands")


DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000


def _prepare_logging(storage_root: Path) -> None:
    configure_logging(handlers=build_default_handlers(storage_root))


def _default_port() -> int:
    raw = os.environ.get("PORT", "").strip()
    if not raw:
        return DEFAULT_PORT
    try:
        return int(raw)
    except ValueError:
        LOGGER.warning("Ignoring invalid PORT value %r", raw)
        return DEFAULT_PORT


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(
            serve,
            host=DEFAULT_HOST,
            port=_default_port(),
            root_path=os.environ.get("MEDIA_PLAYER_ROOT_PATH"),
            open_browser=False,
        )


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, envvar="PORT", help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="MEDIA_PLAYER_ROOT_PATH",
    ),
    open_browser: bool = typer.Option(
        False,
        "--open-browser/--no-open-browser",
        help="Open the player in the default browser once the server is up",
    ),
) -> None:
    """Run the FastAPI-powered player."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    store = PlaylistStore(app_config.playlists_file)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(store, config=app_config, root_path=normalized_root)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server

    browser_host = host
    if not browser_host or browser_host in {"0.0.0.0", "::"}:
        browser_host = "127.0.0.1"
    url_path = f"{normalized_root}/" if normalized_root else "/"
    url = f"http://{browser_host}:{port}{url_path}"
    LOGGER.info("Media player available at %s", url)

    if open_browser:

        def _open_browser_later() -> None:
            time.sleep(1.0)
            if not webbrowser.open(url, new=2, autoraise=True):
                LOGGER.warning("Could not open a browser for %s", url)

        threading.Thread(target=_open_browser_later, daemon=True).start()

    server.run()


@cli.command()
def scan(
    path: Path = typer.Argument(..., help="Folder to search for audio files"),
    playlist: Optional[str] = typer.Option(
        None,
        "--playlist",
        "-p",
        help="Save the files found as a playlist with this name",
    ),
) -> None:
    """List the audio files below PATH, optionally saving them as a playlist."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    library = MusicLibrary(config)
    try:
        directory, tracks = library.scan(str(path))
    except (LibraryAccessError, LibraryPathError) as error:
        typer.echo(f"Cannot scan {path}: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(f"Found {len(tracks)} audio file(s) in {directory}")
    for track in tracks:
        typer.echo(f"  {track.artist} - {track.title} ({track.path})")

    if playlist is None:
        return
    if not tracks:
        typer.echo("Nothing to save; no playlist created.")
        raise typer.Exit(code=1)

    store = PlaylistStore(config.playlists_file)
    try:
        record = store.create(playlist, [track.to_payload() for track in tracks])
    except (ValueError, PlaylistStoreError) as error:
        typer.echo(f"Could not create playlist: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(f"Created playlist '{record['name']}' ({record['id']})")


@cli.command()
def playlists() -> None:
    """Print the stored playlists."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    store = PlaylistStore(config.playlists_file)
    try:
        records = store.list_playlists()
    except PlaylistStoreError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error

    if not records:
        typer.echo("No playlists yet.")
        return
    for record in records:
        count = len(record.get("tracks") or [])
        typer.echo(f"{record['id']}  {record['name']}  ({count} track{'s' if count != 1 else ''})")


@cli.command()
def bluetooth() -> None:
    """Print the adapter state and paired devices."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    controller = BluetoothController(config.bluetooth)
    state = controller.state()
    typer.echo(f"Adapter: {state['state']}")
    if state["state"] in {"unsupported", "unavailable"}:
        return

    try:
        devices = controller.paired_devices()
    except BluetoothError as error:
        typer.echo(f"Could not list paired devices: {error}")
        raise typer.Exit(code=1) from error
    if not devices:
        typer.echo("No paired devices.")
        return
    connected = {device.mac for device in controller.connected_devices()}
    for device in devices:
        marker = " (connected)" if device.mac in connected else ""
        typer.echo(f"  {device.mac}  {device.name}{marker}")


@cli.command()
def overview(
    include_bluetooth: bool = typer.Option(
        True,
        "--bluetooth/--no-bluetooth",
        help="Query the Bluetooth adapter for its state and paired speakers",
    ),
) -> None:
    """Render an overview of playlists, music folders and speakers."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    store = PlaylistStore(config.playlists_file)
    controller = BluetoothController(config.bluetooth) if include_bluetooth else None
    try:
        ModernUI(store, music_roots=config.music_roots, bluetooth=controller).run()
    except PlaylistStoreError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error


if __name__ == "__main__":
    cli()
