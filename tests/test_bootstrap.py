import json
from pathlib import Path

import pytest

import media_player.config as config_module
from media_player.bootstrap import BootstrapError, Bootstrapper
from media_player.config import AppConfig


def _config(tmp_path: Path) -> AppConfig:
    storage_root = tmp_path / "storage"
    return AppConfig(
        storage_root=storage_root,
        playlists_file=storage_root / "playlists.json",
        local_music_root=tmp_path / "music",
    )


def test_bootstrapper_raises_when_storage_directory_unwritable(
    tmp_path: Path, monkeypatch
) -> None:
    config = _config(tmp_path)

    original_ensure = config_module._ensure_writable_directory

    def fake_ensure(path: Path) -> bool:
        if path.resolve() == config.storage_root.resolve():
            return False
        return original_ensure(path)

    monkeypatch.setattr(config_module, "_ensure_writable_directory", fake_ensure)

    with pytest.raises(BootstrapError) as excinfo:
        Bootstrapper(config).initialize()

    assert "storage" in str(excinfo.value).lower()


def test_bootstrapper_seeds_playlist_store_and_music_folder(tmp_path: Path) -> None:
    config = _config(tmp_path)

    Bootstrapper(config).initialize()

    assert json.loads(config.playlists_file.read_text(encoding="utf-8")) == {"playlists": []}
    assert config.local_music_root.is_dir()


def test_bootstrapper_keeps_existing_playlists(tmp_path: Path) -> None:
    config = _config(tmp_path)
    config.storage_root.mkdir(parents=True)
    document = {"playlists": [{"id": "1", "name": "Road trip", "tracks": []}]}
    config.playlists_file.write_text(json.dumps(document), encoding="utf-8")

    Bootstrapper(config).initialize()

    assert json.loads(config.playlists_file.read_text(encoding="utf-8")) == document


def test_bootstrapper_moves_corrupt_store_aside(tmp_path: Path) -> None:
    config = _config(tmp_path)
    config.storage_root.mkdir(parents=True)
    config.playlists_file.write_text("{not json", encoding="utf-8")

    Bootstrapper(config).initialize()

    assert json.loads(config.playlists_file.read_text(encoding="utf-8")) == {"playlists": []}
    backups = list(config.storage_root.glob("playlists.json.corrupt-*"))
    assert len(backups) == 1
    assert backups[0].read_text(encoding="utf-8") == "{not json"
