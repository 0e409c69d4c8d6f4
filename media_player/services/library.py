"""Filesystem browsing and audio metadata helpers."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import mutagen

from ..config import AppConfig


LOGGER = logging.getLogger(__name__)

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"

_YEAR_PATTERN = re.compile(r"(\d{4})")


class LibraryPathError(FileNotFoundError):
    """Raised when a requested file or directory does not exist."""


class LibraryAccessError(PermissionError):
    """Raised when a path resolves outside the configured music roots."""


@dataclass
class DirectoryEntry:
    name: str
    path: str
    is_directory: bool
    is_audio: bool
    size: int
    modified: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "isDirectory": self.is_directory,
            "isAudio": self.is_audio,
            "size": self.size,
            "modified": self.modified,
        }


@dataclass
class TrackMetadata:
    path: str
    title: str
    artist: str = UNKNOWN_ARTIST
    album: str = UNKNOWN_ALBUM
    year: Optional[int] = None
    duration: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)


def _first_tag(tags: Any, key: str) -> Optional[str]:
    if tags is None:
        return None
    try:
        value = tags.get(key)
    except (KeyError, ValueError):
        return None
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_year(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    match = _YEAR_PATTERN.search(value)
    return int(match.group(1)) if match else None


def _format_mtime(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class MusicLibrary:
    """Read-only view over the music folders named in :class:`AppConfig`."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._extensions = tuple(extension.lower() for extension in config.audio_extensions)

    @property
    def roots(self) -> Tuple[Path, ...]:
        return self._config.music_roots

    def is_audio_file(self, path: Path | str) -> bool:
        return Path(path).suffix.lower() in self._extensions

    # ------------------------------------------------------------------
    # Path policy
    # ------------------------------------------------------------------
    def _resolve(self, raw_path: Path | str) -> Path:
        text = str(raw_path).strip()
        if not text:
            raise LibraryPathError("A path is required")
        candidate = Path(text).expanduser()
        try:
            resolved = candidate.resolve()
        except (OSError, RuntimeError) as error:
            raise LibraryPathError(f"Cannot resolve path '{text}': {error}") from error

        if self._config.restrict_to_music_roots and not self._within_roots(resolved):
            raise LibraryAccessError(f"Path '{text}' is outside the music folders")
        return resolved

    def _within_roots(self, resolved: Path) -> bool:
        for root in self.roots:
            try:
                root_resolved = root.resolve()
            except (OSError, RuntimeError):
                continue
            if resolved == root_resolved or root_resolved in resolved.parents:
                return True
        return False

    # ------------------------------------------------------------------
    # Directory listing
    # ------------------------------------------------------------------
    def list_directories(self) -> List[str]:
        """Return the configured music roots that currently exist."""

        return [str(root) for root in self.roots if root.is_dir()]

    def default_directory(self) -> Optional[Path]:
        for root in self.roots:
            if root.is_dir():
                return root
        return None

    def browse(self, raw_path: Optional[str] = None) -> Tuple[Path, List[DirectoryEntry]]:
        """List *raw_path* with directories first, then case-insensitive names."""

        if raw_path is None or not str(raw_path).strip():
            directory = self.default_directory()
            if directory is None:
                raise LibraryPathError("No music folder is available")
        else:
            directory = self._resolve(raw_path)

        if not directory.exists():
            raise LibraryPathError(f"Directory '{directory}' not found")
        if not directory.is_dir():
            raise NotADirectoryError(f"'{directory}' is not a directory")

        entries: List[DirectoryEntry] = []
        with os.scandir(directory) as iterator:
            for item in iterator:
                try:
                    stats = item.stat()
                    is_directory = item.is_dir()
                except OSError as error:
                    LOGGER.warning("Skipping unreadable entry %s: %s", item.path, error)
                    continue
                entries.append(
                    DirectoryEntry(
                        name=item.name,
                        path=str(directory / item.name),
                        is_directory=is_directory,
                        is_audio=(not is_directory) and self.is_audio_file(item.name),
                        size=stats.st_size,
                        modified=_format_mtime(stats.st_mtime),
                    )
                )

        entries.sort(key=lambda entry: (not entry.is_directory, entry.name.casefold(), entry.name))
        return directory, entries

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------
    def read_track(self, path: Path) -> TrackMetadata:
        """Return tag information for *path*, falling back to file-name defaults."""

        metadata = TrackMetadata(path=str(path), title=path.stem or path.name)
        try:
            audio = mutagen.File(str(path), easy=True)
        except (mutagen.MutagenError, OSError, ValueError) as error:
            LOGGER.warning("Could not read tags from %s: %s", path, error)
            return metadata

        if audio is None:
            return metadata

        tags = getattr(audio, "tags", None)
        metadata.title = _first_tag(tags, "title") or metadata.title
        metadata.artist = _first_tag(tags, "artist") or UNKNOWN_ARTIST
        metadata.album = _first_tag(tags, "album") or UNKNOWN_ALBUM
        metadata.year = _parse_year(_first_tag(tags, "date"))

        info = getattr(audio, "info", None)
        length = getattr(info, "length", None)
        if isinstance(length, (int, float)) and length > 0:
            metadata.duration = float(length)
        return metadata

    def metadata(self, raw_path: str) -> TrackMetadata:
        target = self.resolve_audio_file(raw_path)
        return self.read_track(target)

    def resolve_audio_file(self, raw_path: Optional[str]) -> Path:
        """Return the resolved file behind *raw_path* or raise ``LibraryPathError``."""

        if raw_path is None:
            raise LibraryPathError("A path is required")
        target = self._resolve(raw_path)
        if not target.is_file():
            raise LibraryPathError(f"File '{target}' not found")
        return target

    # ------------------------------------------------------------------
    # Recursive scan
    # ------------------------------------------------------------------
    def iter_audio_files(self, directory: Path) -> Iterable[Path]:
        for current, dirnames, filenames in os.walk(directory, followlinks=False):
            dirnames.sort(key=str.casefold)
            for filename in sorted(filenames, key=str.casefold):
                if self.is_audio_file(filename):
                    yield Path(current) / filename

    def scan(self, raw_path: Optional[str] = None) -> Tuple[Path, List[TrackMetadata]]:
        """Collect metadata for every audio file below *raw_path*."""

        if raw_path is None or not str(raw_path).strip():
            directory = self.default_directory()
            if directory is None:
                raise LibraryPathError("No music folder is available")
        else:
            directory = self._resolve(raw_path)
        if not directory.is_dir():
            raise LibraryPathError(f"Directory '{directory}' not found")

        tracks = [self.read_track(path) for path in self.iter_audio_files(directory)]
        LOGGER.info("Scanned %s: %s audio file(s)", directory, len(tracks))
        return directory, tracks


def serialize_tracks(tracks: Sequence[TrackMetadata]) -> List[Dict[str, Any]]:
    return [track.to_payload() for track in tracks]


__all__ = [
    "DirectoryEntry",
    "LibraryAccessError",
    "LibraryPathError",
    "MusicLibrary",
    "TrackMetadata",
    "UNKNOWN_ALBUM",
    "UNKNOWN_ARTIST",
    "serialize_tracks",
]
