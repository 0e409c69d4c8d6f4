"""Playlist persistence backed by a single JSON document."""

from __future__ import annotations

import contextlib
import copy
import json
import logging
import os
import tempfile
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional


LOGGER = logging.getLogger(__name__)

Playlist = Dict[str, Any]
Track = Dict[str, Any]


class PlaylistStoreError(RuntimeError):
    """Raised when the playlist document cannot be read or written."""


class PlaylistNotFoundError(LookupError):
    """Raised when a playlist identifier is unknown."""

    def __init__(self, playlist_id: str) -> None:
        super().__init__(f"Playlist {playlist_id!r} not found")
        self.playlist_id = playlist_id


class TrackIndexError(IndexError):
    """Raised when a track index falls outside a playlist."""


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class PlaylistStore:
    """CRUD helpers over ``{"playlists": [...]}`` stored on disk.

    Every mutation re-reads the document, applies the change and writes the
    whole file back through a temporary file, so a crash never leaves a
    half-written store behind. A process-wide lock serialises writers.
    """

    def __init__(
        self,
        path: Path,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()
        self._event_emitter = event_emitter
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._path

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting store events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_event(self, action: str, **context: Any) -> Iterator[Dict[str, Any]]:
        if self._event_emitter is None:
            yield context
            return

        start = time.perf_counter()
        event_context: Dict[str, Any] = dict(context)
        try:
            yield event_context
        except Exception as exc:
            event_context.setdefault("status", "error")
            event_context.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        else:
            event_context.setdefault("status", "ok")
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            self._event_emitter(action, context=event_context, duration_ms=duration_ms)

    # ------------------------------------------------------------------
    # Document IO
    # ------------------------------------------------------------------
    def _read_document(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {"playlists": []}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
            raise PlaylistStoreError(f"Could not read playlists from {self._path}: {error}") from error
        if not isinstance(payload, dict):
            raise PlaylistStoreError(f"Playlist store {self._path} is not a JSON object")
        playlists = payload.get("playlists")
        if playlists is None:
            payload["playlists"] = []
        elif not isinstance(playlists, list):
            raise PlaylistStoreError(f"Playlist store {self._path} has a malformed 'playlists' entry")
        return payload

    def _write_document(self, document: Mapping[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        descriptor, temp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(descriptor, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
            os.replace(temp_name, self._path)
        except OSError as error:
            with contextlib.suppress(OSError):
                os.unlink(temp_name)
            raise PlaylistStoreError(f"Could not write playlists to {self._path}: {error}") from error

    @staticmethod
    def _locate(document: Mapping[str, Any], playlist_id: str) -> int:
        for index, playlist in enumerate(document["playlists"]):
            if isinstance(playlist, dict) and str(playlist.get("id")) == playlist_id:
                return index
        raise PlaylistNotFoundError(playlist_id)

    @staticmethod
    def _tracks_of(playlist: Playlist) -> List[Track]:
        tracks = playlist.get("tracks")
        if not isinstance(tracks, list):
            tracks = playlist["tracks"] = []
        return tracks

    def _next_id(self, document: Mapping[str, Any]) -> str:
        existing = {str(item.get("id")) for item in document["playlists"] if isinstance(item, dict)}
        candidate = int(self._clock() * 1000)
        while str(candidate) in existing:
            candidate += 1
        return str(candidate)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_playlists(self) -> List[Playlist]:
        with self._lock, self._track_event("List playlists") as event:
            document = self._read_document()
            playlists = [item for item in document["playlists"] if isinstance(item, dict)]
            event["count"] = len(playlists)
            return copy.deepcopy(playlists)

    def get(self, playlist_id: str) -> Playlist:
        with self._lock, self._track_event("Get playlist", playlist_id=playlist_id):
            document = self._read_document()
            index = self._locate(document, playlist_id)
            return copy.deepcopy(document["playlists"][index])

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create(self, name: str, tracks: Optional[List[Track]] = None) -> Playlist:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValueError("Playlist name is required")

        with self._lock, self._track_event("Create playlist", name=cleaned) as event:
            document = self._read_document()
            playlist: Playlist = {
                "id": self._next_id(document),
                "name": cleaned,
                "tracks": list(tracks or []),
                "createdAt": _utc_timestamp(),
            }
            document["playlists"].append(playlist)
            self._write_document(document)
            event["playlist_id"] = playlist["id"]
            event["track_count"] = len(playlist["tracks"])
            LOGGER.info("Created playlist %s (%s)", playlist["id"], cleaned)
            return copy.deepcopy(playlist)

    def update(
        self,
        playlist_id: str,
        *,
        name: Optional[str] = None,
        tracks: Optional[List[Track]] = None,
    ) -> Playlist:
        with self._lock, self._track_event("Update playlist", playlist_id=playlist_id):
            document = self._read_document()
            playlist = document["playlists"][self._locate(document, playlist_id)]
            if name is not None and name.strip():
                playlist["name"] = name.strip()
            if tracks is not None:
                playlist["tracks"] = list(tracks)
            playlist["updatedAt"] = _utc_timestamp()
            self._write_document(document)
            return copy.deepcopy(playlist)

    def add_track(self, playlist_id: str, track: Track) -> Playlist:
        path = track.get("path") if isinstance(track, dict) else None
        if not path:
            raise ValueError("Valid track object with path is required")

        with self._lock, self._track_event("Add track", playlist_id=playlist_id, path=path) as event:
            document = self._read_document()
            playlist = document["playlists"][self._locate(document, playlist_id)]
            tracks = self._tracks_of(playlist)
            if any(isinstance(item, dict) and item.get("path") == path for item in tracks):
                event["added"] = False
                return copy.deepcopy(playlist)
            tracks.append(dict(track))
            playlist["updatedAt"] = _utc_timestamp()
            self._write_document(document)
            event["added"] = True
            return copy.deepcopy(playlist)

    def remove_track(self, playlist_id: str, index: int) -> Playlist:
        with self._lock, self._track_event("Remove track", playlist_id=playlist_id, index=index):
            document = self._read_document()
            playlist = document["playlists"][self._locate(document, playlist_id)]
            tracks = self._tracks_of(playlist)
            if index < 0 or index >= len(tracks):
                raise TrackIndexError(f"Track index {index} is out of range")
            del tracks[index]
            playlist["updatedAt"] = _utc_timestamp()
            self._write_document(document)
            return copy.deepcopy(playlist)

    def delete(self, playlist_id: str) -> None:
        with self._lock, self._track_event("Delete playlist", playlist_id=playlist_id):
            document = self._read_document()
            del document["playlists"][self._locate(document, playlist_id)]
            self._write_document(document)
            LOGGER.info("Deleted playlist %s", playlist_id)


__all__ = [
    "Playlist",
    "PlaylistNotFoundError",
    "PlaylistStore",
    "PlaylistStoreError",
    "Track",
    "TrackIndexError",
]
