import json
from pathlib import Path

import pytest

from media_player.services.playlists import (
    PlaylistNotFoundError,
    PlaylistStore,
    PlaylistStoreError,
    TrackIndexError,
)


class FixedClock:
    def __init__(self, value: float = 1_700_000_000.0) -> None:
        self.value = value

    def __call__(self) -> float:
        return self.value


@pytest.fixture()
def store(tmp_path: Path) -> PlaylistStore:
    path = tmp_path / "playlists.json"
    path.write_text(json.dumps({"playlists": []}), encoding="utf-8")
    return PlaylistStore(path, clock=FixedClock())


def _track(path: str, title: str = "Song") -> dict:
    return {"path": path, "title": title, "artist": "Unknown Artist"}


def test_create_assigns_millisecond_id_and_persists(store: PlaylistStore) -> None:
    playlist = store.create("  Morning  ")

    assert playlist["id"] == "1700000000000"
    assert playlist["name"] == "Morning"
    assert playlist["tracks"] == []
    assert playlist["createdAt"].endswith("Z")

    document = json.loads(store.path.read_text(encoding="utf-8"))
    assert document["playlists"][0]["name"] == "Morning"


def test_create_avoids_identifier_collisions(store: PlaylistStore) -> None:
    first = store.create("One")
    second = store.create("Two")

    assert first["id"] != second["id"]
    assert int(second["id"]) == int(first["id"]) + 1


def test_create_requires_a_name(store: PlaylistStore) -> None:
    with pytest.raises(ValueError, match="Playlist name is required"):
        store.create("   ")


def test_create_with_initial_tracks(store: PlaylistStore) -> None:
    playlist = store.create("Scan", tracks=[_track("/music/a.mp3"), _track("/music/b.mp3")])

    assert [track["path"] for track in store.get(playlist["id"])["tracks"]] == [
        "/music/a.mp3",
        "/music/b.mp3",
    ]


def test_get_unknown_playlist_raises(store: PlaylistStore) -> None:
    with pytest.raises(PlaylistNotFoundError):
        store.get("missing")


def test_update_renames_and_replaces_tracks(store: PlaylistStore) -> None:
    playlist = store.create("Draft")

    updated = store.update(playlist["id"], name="Final", tracks=[_track("/music/c.mp3")])

    assert updated["name"] == "Final"
    assert updated["tracks"][0]["path"] == "/music/c.mp3"
    assert "updatedAt" in updated


def test_update_ignores_blank_name(store: PlaylistStore) -> None:
    playlist = store.create("Keep")

    assert store.update(playlist["id"], name="  ")["name"] == "Keep"


def test_add_track_skips_duplicate_paths(store: PlaylistStore) -> None:
    playlist = store.create("Mix")

    store.add_track(playlist["id"], _track("/music/a.mp3"))
    result = store.add_track(playlist["id"], _track("/music/a.mp3", title="Again"))

    assert len(result["tracks"]) == 1
    assert result["tracks"][0]["title"] == "Song"


def test_add_track_requires_path(store: PlaylistStore) -> None:
    playlist = store.create("Mix")

    with pytest.raises(ValueError, match="Valid track object with path is required"):
        store.add_track(playlist["id"], {"title": "No path"})


def test_remove_track_by_index(store: PlaylistStore) -> None:
    playlist = store.create("Mix", tracks=[_track("/music/a.mp3"), _track("/music/b.mp3")])

    result = store.remove_track(playlist["id"], 0)

    assert [track["path"] for track in result["tracks"]] == ["/music/b.mp3"]
    with pytest.raises(TrackIndexError):
        store.remove_track(playlist["id"], 5)


def test_delete_removes_playlist(store: PlaylistStore) -> None:
    keep = store.create("Keep")
    drop = store.create("Drop")

    store.delete(drop["id"])

    assert [item["id"] for item in store.list_playlists()] == [keep["id"]]
    with pytest.raises(PlaylistNotFoundError):
        store.delete(drop["id"])


def test_returned_playlists_are_copies(store: PlaylistStore) -> None:
    playlist = store.create("Copy")
    listed = store.list_playlists()
    listed[0]["name"] = "Changed"

    assert store.get(playlist["id"])["name"] == "Copy"


def test_missing_file_reads_as_empty(tmp_path: Path) -> None:
    store = PlaylistStore(tmp_path / "absent.json")

    assert store.list_playlists() == []


def test_malformed_document_raises_store_error(tmp_path: Path) -> None:
    path = tmp_path / "playlists.json"
    path.write_text(json.dumps({"playlists": "oops"}), encoding="utf-8")

    with pytest.raises(PlaylistStoreError):
        PlaylistStore(path).list_playlists()


def test_null_track_list_is_treated_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "playlists.json"
    path.write_text(json.dumps({"playlists": [{"id": "1", "name": "Old", "tracks": None}]}), encoding="utf-8")
    store = PlaylistStore(path)

    with pytest.raises(TrackIndexError):
        store.remove_track("1", 0)
    added = store.add_track("1", _track("/music/a.mp3"))

    assert [track["path"] for track in added["tracks"]] == ["/music/a.mp3"]
    stored = json.loads(path.read_text(encoding="utf-8"))
    assert stored["playlists"][0]["tracks"] == [_track("/music/a.mp3")]


def test_event_emitter_receives_status_and_duration(store: PlaylistStore) -> None:
    events = []
    store.configure_event_emitter(
        lambda action, *, context, duration_ms: events.append((action, context, duration_ms))
    )

    playlist = store.create("Events")
    with pytest.raises(PlaylistNotFoundError):
        store.get("missing")

    assert events[0][0] == "Create playlist"
    assert events[0][1]["status"] == "ok"
    assert events[0][1]["playlist_id"] == playlist["id"]
    assert events[0][2] >= 0
    assert events[1][0] == "Get playlist"
    assert events[1][1]["status"] == "error"
    assert "PlaylistNotFoundError" in events[1][1]["error"]
