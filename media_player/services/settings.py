"""Persistence helpers for user interface settings."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Literal, Mapping

from ..config import AppConfig


LOGGER = logging.getLogger(__name__)

ThemeName = Literal["dark", "light", "system"]
VisualizerName = Literal["bars", "wave", "circle"]

THEME_OPTIONS = ("dark", "light", "system")
VISUALIZER_OPTIONS = ("bars", "wave", "circle")

DEFAULT_THEME: ThemeName = "dark"
DEFAULT_VISUALIZER: VisualizerName = "bars"
DEFAULT_VOLUME = 80
DEFAULT_PLAYBACK_RATE = 1.0


def normalize_theme(value: Any) -> ThemeName:
    text = str(value or "").strip().lower()
    return text if text in THEME_OPTIONS else DEFAULT_THEME  # type: ignore[return-value]


def normalize_visualizer(value: Any) -> VisualizerName:
    text = str(value or "").strip().lower()
    return text if text in VISUALIZER_OPTIONS else DEFAULT_VISUALIZER  # type: ignore[return-value]


def normalize_volume(value: Any) -> int:
    try:
        volume = int(round(float(value)))
    except (TypeError, ValueError):
        return DEFAULT_VOLUME
    return max(0, min(100, volume))


def normalize_playback_rate(value: Any) -> float:
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return DEFAULT_PLAYBACK_RATE
    if rate != rate:  # NaN
        return DEFAULT_PLAYBACK_RATE
    return round(max(0.5, min(2.0, rate)), 2)


_NORMALIZERS = {
    "theme": normalize_theme,
    "visualizer": normalize_visualizer,
    "volume": normalize_volume,
    "playback_rate": normalize_playback_rate,
}


@dataclass
class UISettings:
    """Container for customisable UI options."""

    theme: ThemeName = DEFAULT_THEME
    visualizer: VisualizerName = DEFAULT_VISUALIZER
    volume: int = DEFAULT_VOLUME
    playback_rate: float = DEFAULT_PLAYBACK_RATE

    def apply(self, updates: Mapping[str, Any]) -> "UISettings":
        """Copy known, normalised values from *updates* onto this instance."""

        for field_info in fields(self):
            if field_info.name in updates and updates[field_info.name] is not None:
                normalizer = _NORMALIZERS[field_info.name]
                setattr(self, field_info.name, normalizer(updates[field_info.name]))
        return self


class SettingsStore:
    """Load and store :class:`UISettings` next to the playlist store."""

    def __init__(self, config: AppConfig) -> None:
        self._path = config.settings_file

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> UISettings:
        if not self._path.exists():
            return UISettings()

        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            LOGGER.warning("Ignoring unreadable settings file %s: %s", self._path, error)
            return UISettings()

        if not isinstance(payload, dict):
            return UISettings()
        return UISettings().apply(payload)

    def save(self, settings: UISettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(asdict(settings), indent=2), encoding="utf-8")

    def update(self, updates: Mapping[str, Any]) -> UISettings:
        settings = self.load().apply(updates)
        self.save(settings)
        return settings


__all__ = [
    "DEFAULT_PLAYBACK_RATE",
    "DEFAULT_THEME",
    "DEFAULT_VISUALIZER",
    "DEFAULT_VOLUME",
    "SettingsStore",
    "THEME_OPTIONS",
    "ThemeName",
    "UISettings",
    "VISUALIZER_OPTIONS",
    "VisualizerName",
    "normalize_playback_rate",
    "normalize_theme",
    "normalize_visualizer",
    "normalize_volume",
]
