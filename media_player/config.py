"""Configuration loading utilities for the media player."""

from __future__ import annotations

import contextlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".media_player_write_check"

DEFAULT_MUSIC_ROOTS: Tuple[str, ...] = ("/media", "/home/pi/Music")
DEFAULT_AUDIO_EXTENSIONS: Tuple[str, ...] = (".mp3", ".flac", ".ogg", ".oga", ".m4a", ".wav")

_DEFAULTS: Dict[str, Any] = {
    "storage_root": "data",
    "playlists_file": "data/playlists.json",
    "local_music_root": "music",
    "music_roots": list(DEFAULT_MUSIC_ROOTS),
    "audio_extensions": list(DEFAULT_AUDIO_EXTENSIONS),
    "restrict_to_music_roots": True,
    "bluetooth": {},
}


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins and the flag reports whether a fallback
    was used. When nothing can be prepared the original ``preferred`` path is
    returned so that later steps can report a meaningful error.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _normalize_extension(value: Any) -> Optional[str]:
    text = str(value or "").strip().lower()
    if not text:
        return None
    if not text.startswith("."):
        text = f".{text}"
    return text


@dataclass(frozen=True)
class BluetoothSettings:
    """Options for the ``bluetoothctl`` wrapper."""

    command: str = "bluetoothctl"
    scan_seconds: int = 20
    command_timeout: float = 15.0
    use_rfkill: bool = True

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "BluetoothSettings":
        mapping = mapping or {}
        defaults = cls()
        command = str(mapping.get("command") or defaults.command).strip() or defaults.command
        try:
            scan_seconds = max(1, int(mapping.get("scan_seconds", defaults.scan_seconds)))
        except (TypeError, ValueError):
            scan_seconds = defaults.scan_seconds
        try:
            command_timeout = float(mapping.get("command_timeout", defaults.command_timeout))
        except (TypeError, ValueError):
            command_timeout = defaults.command_timeout
        if command_timeout <= 0:
            command_timeout = defaults.command_timeout
        use_rfkill = bool(mapping.get("use_rfkill", defaults.use_rfkill))
        return cls(
            command=command,
            scan_seconds=scan_seconds,
            command_timeout=command_timeout,
            use_rfkill=use_rfkill,
        )


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and options for the application."""

    storage_root: Path
    playlists_file: Path
    local_music_root: Path
    external_music_roots: Tuple[Path, ...] = ()
    audio_extensions: Tuple[str, ...] = DEFAULT_AUDIO_EXTENSIONS
    restrict_to_music_roots: bool = True
    bluetooth: BluetoothSettings = field(default_factory=BluetoothSettings)

    @property
    def music_roots(self) -> Tuple[Path, ...]:
        """External roots followed by the local music folder, without duplicates."""

        roots: list[Path] = []
        for candidate in (*self.external_music_roots, self.local_music_root):
            if candidate not in roots:
                roots.append(candidate)
        return tuple(roots)

    @property
    def settings_file(self) -> Path:
        return (self.storage_root / "settings.json").resolve()

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], *, base_path: Path) -> "AppConfig":
        merged: Dict[str, Any] = {**_DEFAULTS, **dict(mapping)}

        preferred_storage = (base_path / merged["storage_root"]).resolve()
        storage_fallback = Path.home() / ".pi_media_player" / "storage"
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        playlists_file = (base_path / merged["playlists_file"]).resolve()
        if storage_fallback_used:
            try:
                relative_playlists = playlists_file.relative_to(preferred_storage)
            except ValueError:
                relative_playlists = None
            if relative_playlists is not None:
                relocated = (storage_root / relative_playlists).resolve()
                LOGGER.warning(
                    "Preferred playlists location '%s' is not writable; using fallback '%s'.",
                    playlists_file,
                    relocated,
                )
                playlists_file = relocated

        local_music_root = (base_path / merged["local_music_root"]).resolve()
        external_roots = tuple(
            (base_path / str(entry)).resolve()
            for entry in merged.get("music_roots") or ()
            if str(entry).strip()
        )

        extensions = tuple(
            extension
            for extension in (
                _normalize_extension(item) for item in merged.get("audio_extensions") or ()
            )
            if extension
        ) or DEFAULT_AUDIO_EXTENSIONS

        return cls(
            storage_root=storage_root,
            playlists_file=playlists_file,
            local_music_root=local_music_root,
            external_music_roots=external_roots,
            audio_extensions=extensions,
            restrict_to_music_roots=bool(merged.get("restrict_to_music_roots", True)),
            bluetooth=BluetoothSettings.from_mapping(merged.get("bluetooth")),
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "BluetoothSettings", "load_config"]
