"""A Rich-powered console overview of playlists, music folders and speakers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from rich import box
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from ..services.bluetooth import BluetoothController, BluetoothDevice, BluetoothError
from ..services.playlists import PlaylistStore


MAX_TRACKS_PER_PLAYLIST = 8

STATE_LABELS: Dict[str, str] = {
    "poweredOn": "🔵 On",
    "poweredOff": "⚪ Off",
    "unavailable": "No adapter",
    "unsupported": "bluetoothctl missing",
    "skipped": "Not checked",
}


@dataclass
class PlaylistOverview:
    playlist_id: str
    name: str
    tracks: List[Dict[str, Any]]


@dataclass
class OverviewSnapshot:
    playlists: List[PlaylistOverview]
    track_count: int
    music_roots: List[Path]
    available_roots: int
    bluetooth_state: str
    paired_devices: List[BluetoothDevice]


class ModernUI:
    """Render the player's state using Rich widgets."""

    def __init__(
        self,
        store: PlaylistStore,
        *,
        music_roots: Iterable[Path] = (),
        bluetooth: Optional[BluetoothController] = None,
        console: Optional[Console] = None,
    ) -> None:
        self._store = store
        self._music_roots = list(music_roots)
        self._bluetooth = bluetooth
        self._console = console or Console()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run(self) -> None:
        snapshot = self._collect_snapshot()
        console = self._console

        console.rule("[bold magenta]Pi Media Player")

        if not snapshot.playlists:
            playlists_panel = Panel(
                "No playlists yet.\n"
                "Use [bold]python run.py scan PATH --playlist NAME[/bold] "
                "or the web UI to create one.",
                title="Playlists",
                border_style="yellow",
                box=box.ROUNDED,
            )
        else:
            playlists_panel = Panel(
                self._build_tree(snapshot.playlists),
                title="Playlists",
                border_style="cyan",
                box=box.ROUNDED,
            )

        console.print(
            Columns([playlists_panel, self._build_stats_panel(snapshot)], expand=True, equal=True)
        )

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------
    def _build_tree(self, playlists: Iterable[PlaylistOverview]) -> Tree:
        tree = Tree("[bold cyan]Playlists", guide_style="cyan")

        for overview in playlists:
            label = Text(overview.name, style="bold")
            label.append(f"  ({len(overview.tracks)})", style="dim")
            node = tree.add(label)
            if not overview.tracks:
                node.add("[dim]No tracks yet")
                continue

            for track in overview.tracks[:MAX_TRACKS_PER_PLAYLIST]:
                node.add(self._build_track_label(track))
            hidden = len(overview.tracks) - MAX_TRACKS_PER_PLAYLIST
            if hidden > 0:
                node.add(f"[dim]… and {hidden} more")

        return tree

    @staticmethod
    def _build_track_label(track: Dict[str, Any]) -> Text:
        title = track.get("title") or Path(str(track.get("path", ""))).stem or "Untitled"
        label = Text(str(title), style="white")
        artist = track.get("artist")
        if artist:
            label.append(f"  {artist}", style="green")
        return label

    def _build_stats_panel(self, snapshot: OverviewSnapshot) -> Panel:
        metrics = Table.grid(expand=True, padding=(0, 1))
        metrics.add_column(style="dim")
        metrics.add_column(justify="right", style="bold")
        metrics.add_row("Playlists", str(len(snapshot.playlists)))
        metrics.add_row("Tracks", str(snapshot.track_count))
        metrics.add_row(
            "Music folders",
            f"{snapshot.available_roots}/{len(snapshot.music_roots)}",
        )

        speakers = Table.grid(expand=True, padding=(0, 1))
        speakers.add_column(style="dim")
        speakers.add_column(justify="right", style="bold")
        speakers.add_row(
            "Bluetooth",
            STATE_LABELS.get(snapshot.bluetooth_state, snapshot.bluetooth_state),
        )
        for device in snapshot.paired_devices:
            speakers.add_row(device.name, "connected" if device.connected else "paired")

        body = Group(metrics, Rule(style="magenta"), speakers)
        return Panel(body, title="At a glance", border_style="magenta", box=box.ROUNDED)

    # ------------------------------------------------------------------
    # Data aggregation
    # ------------------------------------------------------------------
    def _collect_snapshot(self) -> OverviewSnapshot:
        playlists: List[PlaylistOverview] = []
        track_count = 0
        for record in self._store.list_playlists():
            tracks = [track for track in record.get("tracks") or [] if isinstance(track, dict)]
            track_count += len(tracks)
            playlists.append(
                PlaylistOverview(
                    playlist_id=str(record.get("id")),
                    name=str(record.get("name") or "Untitled"),
                    tracks=tracks,
                )
            )

        bluetooth_state = "skipped"
        paired: List[BluetoothDevice] = []
        if self._bluetooth is not None:
            bluetooth_state = self._bluetooth.state()["state"]
            if bluetooth_state == "poweredOn":
                paired = self._collect_paired_devices()

        return OverviewSnapshot(
            playlists=playlists,
            track_count=track_count,
            music_roots=self._music_roots,
            available_roots=sum(1 for root in self._music_roots if root.is_dir()),
            bluetooth_state=bluetooth_state,
            paired_devices=paired,
        )

    def _collect_paired_devices(self) -> List[BluetoothDevice]:
        assert self._bluetooth is not None
        try:
            paired = self._bluetooth.paired_devices()
            connected = {device.mac for device in self._bluetooth.connected_devices()}
        except BluetoothError:
            return []
        for device in paired:
            device.connected = device.mac in connected
        return paired


__all__ = ["ModernUI"]
