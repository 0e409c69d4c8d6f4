import os
import wave
from pathlib import Path

import pytest

from media_player.config import AppConfig
from media_player.services.library import (
    LibraryAccessError,
    LibraryPathError,
    MusicLibrary,
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    serialize_tracks,
)


def _write_wav(path: Path, seconds: float = 1.0, rate: int = 8000) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(path), "wb") as handle:
        handle.setnchannels(1)
        handle.setsampwidth(2)
        handle.setframerate(rate)
        handle.writeframes(b"\x00\x00" * int(rate * seconds))
    return path


@pytest.fixture()
def library(temp_config: AppConfig) -> MusicLibrary:
    return MusicLibrary(temp_config)


def test_list_directories_returns_existing_roots(temp_config: AppConfig, library: MusicLibrary) -> None:
    assert library.list_directories() == [str(temp_config.local_music_root)]


def test_browse_sorts_directories_first_case_insensitively(
    temp_config: AppConfig, library: MusicLibrary
) -> None:
    root = temp_config.local_music_root
    (root / "beta").mkdir()
    (root / "Alpha").mkdir()
    (root / "b-side.mp3").write_bytes(b"data")
    (root / "A-side.flac").write_bytes(b"data")
    (root / "cover.jpg").write_bytes(b"jpg")

    directory, entries = library.browse(str(root))

    assert directory == root
    assert [entry.name for entry in entries] == ["Alpha", "beta", "A-side.flac", "b-side.mp3", "cover.jpg"]
    payload = {entry.name: entry.to_payload() for entry in entries}
    assert payload["Alpha"]["isDirectory"] is True
    assert payload["b-side.mp3"]["isAudio"] is True
    assert payload["cover.jpg"]["isAudio"] is False
    assert payload["b-side.mp3"]["size"] == 4
    assert payload["b-side.mp3"]["path"] == str(root / "b-side.mp3")


def test_browse_without_path_uses_first_root(temp_config: AppConfig, library: MusicLibrary) -> None:
    directory, entries = library.browse()

    assert directory == temp_config.local_music_root
    assert entries == []


def test_browse_skips_broken_symlinks(temp_config: AppConfig, library: MusicLibrary) -> None:
    root = temp_config.local_music_root
    (root / "ok.mp3").write_bytes(b"data")
    try:
        os.symlink(root / "missing.mp3", root / "dangling.mp3")
    except (OSError, NotImplementedError):
        pytest.skip("Symlinks are not supported on this platform")

    _, entries = library.browse(str(root))

    assert [entry.name for entry in entries] == ["ok.mp3"]


def test_browse_rejects_paths_outside_roots(tmp_path: Path, library: MusicLibrary) -> None:
    outside = tmp_path / "elsewhere"
    outside.mkdir()

    with pytest.raises(LibraryAccessError):
        library.browse(str(outside))

    with pytest.raises(LibraryAccessError):
        library.browse(str(tmp_path / "music" / ".." / "elsewhere"))


def test_browse_reports_missing_and_non_directory(temp_config: AppConfig, library: MusicLibrary) -> None:
    root = temp_config.local_music_root
    (root / "track.mp3").write_bytes(b"data")

    with pytest.raises(LibraryPathError):
        library.browse(str(root / "missing"))
    with pytest.raises(NotADirectoryError):
        library.browse(str(root / "track.mp3"))


def test_unrestricted_library_allows_any_directory(tmp_path: Path) -> None:
    config = AppConfig(
        storage_root=tmp_path / "storage",
        playlists_file=tmp_path / "storage" / "playlists.json",
        local_music_root=tmp_path / "music",
        restrict_to_music_roots=False,
    )
    other = tmp_path / "other"
    other.mkdir()
    (other / "song.ogg").write_bytes(b"data")

    _, entries = MusicLibrary(config).browse(str(other))

    assert [entry.name for entry in entries] == ["song.ogg"]


def test_metadata_reads_duration_from_wav(temp_config: AppConfig, library: MusicLibrary) -> None:
    path = _write_wav(temp_config.local_music_root / "tone.wav")

    metadata = library.metadata(str(path))

    assert metadata.title == "tone"
    assert metadata.artist == UNKNOWN_ARTIST
    assert metadata.album == UNKNOWN_ALBUM
    assert metadata.duration == pytest.approx(1.0, abs=0.01)


def test_metadata_falls_back_for_unreadable_audio(temp_config: AppConfig, library: MusicLibrary) -> None:
    path = temp_config.local_music_root / "broken.mp3"
    path.write_bytes(b"not really audio")

    payload = library.metadata(str(path)).to_payload()

    assert payload == {
        "path": str(path),
        "title": "broken",
        "artist": UNKNOWN_ARTIST,
        "album": UNKNOWN_ALBUM,
        "year": None,
        "duration": None,
    }


def test_metadata_missing_file(temp_config: AppConfig, library: MusicLibrary) -> None:
    with pytest.raises(LibraryPathError):
        library.metadata(str(temp_config.local_music_root / "ghost.mp3"))
    with pytest.raises(LibraryPathError):
        library.resolve_audio_file(None)


def test_scan_walks_recursively_in_order(temp_config: AppConfig, library: MusicLibrary) -> None:
    root = temp_config.local_music_root
    _write_wav(root / "b.wav")
    _write_wav(root / "Album" / "a.wav")
    (root / "Album" / "notes.txt").write_text("liner notes", encoding="utf-8")

    directory, tracks = library.scan(str(root))

    assert directory == root
    assert [Path(track.path).name for track in tracks] == ["b.wav", "a.wav"]
    assert all(item["duration"] for item in serialize_tracks(tracks))


def test_scan_does_not_follow_directory_symlinks(
    tmp_path: Path, temp_config: AppConfig, library: MusicLibrary
) -> None:
    root = temp_config.local_music_root
    linked = tmp_path / "linked"
    _write_wav(linked / "hidden.wav")
    try:
        os.symlink(linked, root / "link", target_is_directory=True)
    except (OSError, NotImplementedError):
        pytest.skip("Symlinks are not supported on this platform")

    _, tracks = library.scan(str(root))

    assert tracks == []


def test_scan_missing_directory(temp_config: AppConfig, library: MusicLibrary) -> None:
    with pytest.raises(LibraryPathError):
        library.scan(str(temp_config.local_music_root / "nope"))
