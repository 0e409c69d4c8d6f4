import json

from media_player.services.settings import SettingsStore, UISettings


def test_load_returns_defaults_when_missing(temp_config) -> None:
    settings = SettingsStore(temp_config).load()

    assert settings == UISettings()


def test_update_normalises_and_persists(temp_config) -> None:
    store = SettingsStore(temp_config)

    settings = store.update(
        {"theme": "LIGHT", "visualizer": "spiral", "volume": 140, "playback_rate": 0.1}
    )

    assert settings.theme == "light"
    assert settings.visualizer == "bars"
    assert settings.volume == 100
    assert settings.playback_rate == 0.5

    stored = json.loads(store.path.read_text(encoding="utf-8"))
    assert stored == {"theme": "light", "visualizer": "bars", "volume": 100, "playback_rate": 0.5}


def test_partial_update_keeps_previous_values(temp_config) -> None:
    store = SettingsStore(temp_config)
    store.update({"theme": "system", "volume": 35})

    settings = store.update({"visualizer": "circle", "theme": None})

    assert settings.theme == "system"
    assert settings.visualizer == "circle"
    assert settings.volume == 35


def test_unreadable_file_falls_back_to_defaults(temp_config) -> None:
    store = SettingsStore(temp_config)
    store.path.write_text("{broken", encoding="utf-8")

    assert store.load() == UISettings()
