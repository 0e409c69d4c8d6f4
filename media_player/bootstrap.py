"""Bootstrap logic that prepares runtime directories and the playlist store."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config

LOGGER = logging.getLogger(__name__)


EMPTY_PLAYLISTS_DOCUMENT = {"playlists": []}


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        self._ensure_playlists_file()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_directories(self) -> None:
        storage_root = self._config.storage_root
        if not config_module._ensure_writable_directory(storage_root):
            raise BootstrapError(f"Storage directory '{storage_root}' is not writable")
        LOGGER.debug("Ensured directory exists: %s", storage_root)

        playlists_parent = self._config.playlists_file.parent
        if not config_module._ensure_writable_directory(playlists_parent):
            raise BootstrapError(f"Playlist directory '{playlists_parent}' is not writable")

        local_music = self._config.local_music_root
        try:
            local_music.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            # The player still works from the external roots.
            LOGGER.warning("Could not create local music folder %s: %s", local_music, error)
        else:
            LOGGER.debug("Ensured directory exists: %s", local_music)

    def _ensure_playlists_file(self) -> None:
        path = self._config.playlists_file
        if not path.exists():
            self._write_empty_document(path)
            LOGGER.info("Created playlist store at %s", path)
            return

        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
            LOGGER.warning("Playlist store %s is unreadable: %s", path, error)
            payload = None

        if isinstance(payload, dict) and isinstance(payload.get("playlists"), list):
            return

        backup = path.with_name(f"{path.name}.corrupt-{time.strftime('%Y%m%d-%H%M%S')}")
        try:
            path.replace(backup)
        except OSError as error:
            raise BootstrapError(f"Could not move aside corrupt playlist store {path}: {error}") from error
        LOGGER.warning("Moved corrupt playlist store to %s", backup)
        self._write_empty_document(path)

    @staticmethod
    def _write_empty_document(path: Path) -> None:
        try:
            path.write_text(json.dumps(EMPTY_PLAYLISTS_DOCUMENT, indent=2), encoding="utf-8")
        except OSError as error:
            raise BootstrapError(f"Could not create playlist store {path}: {error}") from error


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "EMPTY_PLAYLISTS_DOCUMENT", "initialize_app"]
