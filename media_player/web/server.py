"""FastAPI application powering the media player web UI."""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import mimetypes
import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, TypeVar

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..services.bluetooth import (
    BluetoothController,
    BluetoothError,
    BluetoothUnavailableError,
    normalize_mac,
)
from ..services.events import (
    COMMAND_EVENT,
    emit_command_event,
    emit_file_event,
    emit_store_event,
    emit_structured_event,
)
from ..services.library import (
    LibraryAccessError,
    LibraryPathError,
    MusicLibrary,
    serialize_tracks,
)
from ..services.playlists import (
    PlaylistNotFoundError,
    PlaylistStore,
    PlaylistStoreError,
    TrackIndexError,
)
from ..services.settings import SettingsStore
from .debug_log import DebugLogHandler


T = TypeVar("T")

_PACKAGE_ROOT = Path(__file__).resolve().parent
_STATIC_ROOT = _PACKAGE_ROOT / "static"
_TEMPLATE_PATH = _PACKAGE_ROOT / "templates" / "index.html"

_DEFAULT_AUDIO_MEDIA_TYPE = "audio/mpeg"

_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "media_player_request_id",
    default=None,
)

mimetypes.add_type("audio/flac", ".flac")
mimetypes.add_type("audio/ogg", ".oga")
mimetypes.add_type("audio/mp4", ".m4a")


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = str(request_id)
    return context


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        token = _REQUEST_ID_VAR.set(request_id)
        try:
            await self.app(scope, receive, send)
        finally:
            _REQUEST_ID_VAR.reset(token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        for key, value in _collect_correlation_context().items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("media_player.events"), {})


def _log_event(message: str, **context: Any) -> None:
    emit_structured_event(
        "APP_EVENT",
        message,
        context=context,
        correlation=_collect_correlation_context(),
        logger=EVENT_LOGGER,
    )


def _store_event_emitter(action: str, **kwargs: Any) -> None:
    emit_store_event(action, correlation=_collect_correlation_context(), logger=EVENT_LOGGER, **kwargs)


def _command_event_emitter(action: str, **kwargs: Any) -> None:
    emit_command_event(action, correlation=_collect_correlation_context(), logger=EVENT_LOGGER, **kwargs)


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


class ScanRequest(BaseModel):
    path: Optional[str] = None


class PlaylistCreatePayload(BaseModel):
    name: Optional[str] = None
    tracks: Optional[List[Dict[str, Any]]] = None


class PlaylistUpdatePayload(BaseModel):
    name: Optional[str] = None
    tracks: Optional[List[Dict[str, Any]]] = None


class TrackAddPayload(BaseModel):
    track: Optional[Dict[str, Any]] = None


class DevicePayload(BaseModel):
    mac: Optional[str] = None
    id: Optional[str] = None

    def address(self) -> Optional[str]:
        return self.mac or self.id


class BluetoothTogglePayload(BaseModel):
    enabled: Optional[bool] = None


class SettingsPayload(BaseModel):
    theme: Optional[str] = None
    visualizer: Optional[str] = None
    volume: Optional[float] = None
    playback_rate: Optional[float] = None


def create_app(
    store: PlaylistStore,
    *,
    config: AppConfig,
    library: MusicLibrary | None = None,
    bluetooth: BluetoothController | None = None,
    settings: SettingsStore | None = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    normalized_root = _normalize_root_path(root_path)
    library = library or MusicLibrary(config)
    bluetooth = bluetooth or BluetoothController(config.bluetooth)
    settings_store = settings or SettingsStore(config)

    store.configure_event_emitter(_store_event_emitter)
    bluetooth.configure_event_emitter(_command_event_emitter)

    @contextlib.asynccontextmanager
    async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        if bluetooth.stop_scan():
            LOGGER.info("Stopped Bluetooth scan during shutdown")

    app = FastAPI(
        title="Pi Media Player",
        description="Play local music and manage Bluetooth speakers from any device",
        root_path=normalized_root,
        lifespan=_lifespan,
    )
    app.state.server = None
    app.state.library = library
    app.state.bluetooth = bluetooth
    app.state.playlist_store = store

    root_logger = logging.getLogger()
    debug_handler = next(
        (handler for handler in root_logger.handlers if isinstance(handler, DebugLogHandler)),
        None,
    )
    if debug_handler is None:
        debug_handler = DebugLogHandler()
        root_logger.addHandler(debug_handler)
    app.state.debug_log_handler = debug_handler

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.mount(
        "/static",
        StaticFiles(directory=_STATIC_ROOT, check_dir=False),
        name="assets",
    )

    index_html = _TEMPLATE_PATH.read_text(encoding="utf-8")

    def _render_index_html(request: Request | None = None) -> str:
        candidates: List[str] = []
        if request is not None:
            scope_root = request.scope.get("root_path")
            if isinstance(scope_root, str):
                candidates.append(scope_root)
        if normalized_root:
            candidates.append(normalized_root)

        resolved = ""
        for candidate in candidates:
            normalized = _normalize_root_path(candidate)
            if normalized:
                resolved = normalized
                break
        static_base = f"{resolved}/static" if resolved else "/static"
        rendered = index_html.replace("__MEDIA_PLAYER_STATIC__", static_base)
        if not resolved:
            return rendered
        return rendered.replace('"__MEDIA_PLAYER_ROOT_PATH__"', json.dumps(resolved))

    def _bluetooth_call(operation: Callable[[], T]) -> T:
        try:
            return operation()
        except BluetoothUnavailableError as error:
            raise HTTPException(status_code=503, detail=str(error)) from error
        except BluetoothError as error:
            LOGGER.warning("Bluetooth command failed: %s", error)
            raise HTTPException(status_code=500, detail=str(error)) from error

    def _require_mac(payload: DevicePayload) -> str:
        raw = payload.address()
        if not raw:
            raise HTTPException(status_code=400, detail="Device address is required")
        try:
            return normalize_mac(raw)
        except ValueError as error:
            raise HTTPException(status_code=400, detail=str(error)) from error

    def _playlist_or_404(operation: Callable[[], T]) -> T:
        try:
            return operation()
        except PlaylistNotFoundError as error:
            raise HTTPException(status_code=404, detail="Playlist not found") from error
        except PlaylistStoreError as error:
            LOGGER.exception("Playlist store failure")
            raise HTTPException(status_code=500, detail=str(error)) from error

    # ------------------------------------------------------------------
    # UI
    # ------------------------------------------------------------------
    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request) -> HTMLResponse:
        return HTMLResponse(_render_index_html(request))

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------
    @app.get("/api/files/directories")
    def list_directories() -> Dict[str, Any]:
        directories = library.list_directories()
        _log_event("Listing music folders", count=len(directories))
        return {"directories": directories}

    @app.get("/api/files/browse")
    def browse_directory(path: Optional[str] = None) -> Dict[str, Any]:
        try:
            directory, entries = library.browse(path)
        except LibraryAccessError as error:
            raise HTTPException(status_code=403, detail=str(error)) from error
        except LibraryPathError as error:
            raise HTTPException(status_code=404, detail="Directory not found") from error
        except NotADirectoryError as error:
            raise HTTPException(status_code=400, detail="Path is not a directory") from error
        except PermissionError as error:
            raise HTTPException(status_code=403, detail=f"Cannot read directory: {error}") from error

        emit_file_event(
            "Browse directory",
            context={"path": str(directory), "count": len(entries)},
            correlation=_collect_correlation_context(),
            logger=EVENT_LOGGER,
        )
        return {"path": str(directory), "items": [entry.to_payload() for entry in entries]}

    @app.get("/api/files/metadata")
    def get_metadata(path: Optional[str] = None) -> Dict[str, Any]:
        if not path:
            raise HTTPException(status_code=400, detail="File path is required")
        try:
            metadata = library.metadata(path)
        except LibraryAccessError as error:
            raise HTTPException(status_code=403, detail=str(error)) from error
        except LibraryPathError as error:
            raise HTTPException(status_code=404, detail="File not found") from error
        return metadata.to_payload()

    @app.post("/api/files/scan")
    def scan_directory(payload: ScanRequest) -> Dict[str, Any]:
        try:
            directory, tracks = library.scan(payload.path)
        except LibraryAccessError as error:
            raise HTTPException(status_code=403, detail=str(error)) from error
        except LibraryPathError as error:
            raise HTTPException(status_code=404, detail="Directory not found") from error

        emit_file_event(
            "Scan directory",
            context={"path": str(directory), "count": len(tracks)},
            correlation=_collect_correlation_context(),
            logger=EVENT_LOGGER,
        )
        return {"directory": str(directory), "files": serialize_tracks(tracks)}

    @app.get("/api/files/stream")
    def stream_file(path: Optional[str] = None) -> FileResponse:
        if not path:
            raise HTTPException(status_code=400, detail="File path is required")
        try:
            target = library.resolve_audio_file(path)
        except LibraryAccessError as error:
            raise HTTPException(status_code=403, detail=str(error)) from error
        except LibraryPathError as error:
            raise HTTPException(status_code=404, detail="File not found") from error

        media_type, _ = mimetypes.guess_type(target.name)
        _log_event("Streaming file", path=str(target))
        return FileResponse(target, media_type=media_type or _DEFAULT_AUDIO_MEDIA_TYPE)

    # ------------------------------------------------------------------
    # Playlists
    # ------------------------------------------------------------------
    @app.get("/api/playlists")
    def list_playlists() -> Dict[str, Any]:
        return {"playlists": _playlist_or_404(store.list_playlists)}

    @app.get("/api/playlists/{playlist_id}")
    def get_playlist(playlist_id: str) -> Dict[str, Any]:
        return _playlist_or_404(lambda: store.get(playlist_id))

    @app.post("/api/playlists", status_code=status.HTTP_201_CREATED)
    def create_playlist(payload: PlaylistCreatePayload) -> Dict[str, Any]:
        name = (payload.name or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Playlist name is required")
        playlist = _playlist_or_404(lambda: store.create(name, payload.tracks))
        _log_event("Created playlist", playlist_id=playlist["id"])
        return playlist

    @app.put("/api/playlists/{playlist_id}")
    def update_playlist(playlist_id: str, payload: PlaylistUpdatePayload) -> Dict[str, Any]:
        return _playlist_or_404(
            lambda: store.update(playlist_id, name=payload.name, tracks=payload.tracks)
        )

    @app.post("/api/playlists/{playlist_id}/tracks")
    def add_track(playlist_id: str, payload: TrackAddPayload) -> Dict[str, Any]:
        track = payload.track
        if not isinstance(track, dict) or not track.get("path"):
            raise HTTPException(status_code=400, detail="Valid track object with path is required")
        return _playlist_or_404(lambda: store.add_track(playlist_id, track))

    @app.delete("/api/playlists/{playlist_id}/tracks/{track_index}")
    def remove_track(playlist_id: str, track_index: str) -> Dict[str, Any]:
        try:
            index = int(track_index)
        except ValueError as error:
            raise HTTPException(status_code=400, detail="Invalid track index") from error
        try:
            return _playlist_or_404(lambda: store.remove_track(playlist_id, index))
        except TrackIndexError as error:
            raise HTTPException(status_code=404, detail="Track not found") from error

    @app.delete("/api/playlists/{playlist_id}")
    def delete_playlist(playlist_id: str) -> Dict[str, Any]:
        _playlist_or_404(lambda: store.delete(playlist_id))
        _log_event("Deleted playlist", playlist_id=playlist_id)
        return {"success": True}

    # ------------------------------------------------------------------
    # Bluetooth
    # ------------------------------------------------------------------
    @app.get("/api/bluetooth/state")
    def bluetooth_state() -> Dict[str, Any]:
        return _bluetooth_call(bluetooth.state)

    @app.get("/api/bluetooth/paired")
    def bluetooth_paired() -> Dict[str, Any]:
        devices = _bluetooth_call(bluetooth.paired_devices)
        return {"devices": [device.to_payload() for device in devices]}

    @app.get("/api/bluetooth/connected")
    def bluetooth_connected() -> Dict[str, Any]:
        devices = _bluetooth_call(bluetooth.connected_devices)
        return {"devices": [device.to_payload() for device in devices]}

    @app.get("/api/bluetooth/available")
    def bluetooth_available() -> Dict[str, Any]:
        devices = _bluetooth_call(bluetooth.available_devices)
        return {"devices": [device.to_payload() for device in devices]}

    @app.post("/api/bluetooth/scan")
    def bluetooth_scan() -> Dict[str, Any]:
        outcome = _bluetooth_call(bluetooth.start_scan)
        if outcome == "adapter-off":
            return {
                "success": False,
                "message": "Bluetooth is not powered on",
                "isScanning": False,
            }
        if outcome == "already-scanning":
            return {"success": True, "message": "Scan already in progress", "isScanning": True}
        emit_structured_event(
            COMMAND_EVENT,
            "Scan started",
            context={"seconds": bluetooth.settings.scan_seconds},
            correlation=_collect_correlation_context(),
            logger=EVENT_LOGGER,
        )
        return {"success": True, "message": "Scan started", "isScanning": True}

    @app.post("/api/bluetooth/scan/stop")
    def bluetooth_stop_scan() -> Dict[str, Any]:
        stopped = _bluetooth_call(bluetooth.stop_scan)
        return {
            "success": True,
            "message": "Scan stopped" if stopped else "No scan in progress",
        }

    @app.post("/api/bluetooth/connect")
    def bluetooth_connect(payload: DevicePayload) -> Dict[str, Any]:
        mac = _require_mac(payload)
        device = _bluetooth_call(lambda: bluetooth.connect(mac))
        _log_event("Connected Bluetooth device", mac=mac)
        return {
            "success": True,
            "message": f"Connected to {device.name}",
            "device": device.to_payload(),
        }

    @app.post("/api/bluetooth/disconnect")
    def bluetooth_disconnect(payload: DevicePayload) -> Dict[str, Any]:
        mac = _require_mac(payload)
        device = _bluetooth_call(lambda: bluetooth.disconnect(mac))
        _log_event("Disconnected Bluetooth device", mac=mac)
        return {
            "success": True,
            "message": f"Disconnected from {device.name}",
            "device": device.to_payload(),
        }

    @app.delete("/api/bluetooth/paired/{mac}")
    def bluetooth_remove(mac: str) -> Dict[str, Any]:
        address = _require_mac(DevicePayload(mac=mac))
        _bluetooth_call(lambda: bluetooth.remove(address))
        return {"success": True, "message": f"Removed {address}"}

    @app.post("/api/bluetooth/toggle")
    def bluetooth_toggle(payload: BluetoothTogglePayload) -> Dict[str, Any]:
        if payload.enabled is None:
            raise HTTPException(status_code=400, detail="Enabled status is required")
        enabled = payload.enabled
        result = _bluetooth_call(lambda: bluetooth.set_powered(enabled))
        _log_event("Toggled Bluetooth", enabled=enabled, state=result["state"])
        return {"success": True, "enabled": result["enabled"], "state": result["state"]}

    # ------------------------------------------------------------------
    # Settings and diagnostics
    # ------------------------------------------------------------------
    @app.get("/api/settings")
    def get_settings() -> Dict[str, Any]:
        return {"settings": asdict(settings_store.load())}

    @app.put("/api/settings")
    def update_settings(payload: SettingsPayload) -> Dict[str, Any]:
        updates = payload.model_dump(exclude_none=True)
        try:
            updated = settings_store.update(updates)
        except OSError as error:
            LOGGER.exception("Could not save settings")
            raise HTTPException(status_code=500, detail=f"Could not save settings: {error}") from error
        _log_event("Updated settings", fields=sorted(updates))
        return {"settings": asdict(updated)}

    @app.get("/api/debug/logs")
    async def get_debug_logs(after: Optional[int] = None) -> Dict[str, Any]:
        handler: DebugLogHandler = app.state.debug_log_handler
        entries = handler.collect(after)
        next_marker = handler.last_id if entries else (after or handler.last_id)
        return {"logs": entries, "next": next_marker}

    @app.get("/api/debug/logs/download", response_class=PlainTextResponse)
    async def download_debug_logs() -> PlainTextResponse:
        handler: DebugLogHandler = app.state.debug_log_handler
        filename = datetime.now(timezone.utc).strftime("media-player-%Y%m%d-%H%M%S.log")
        return PlainTextResponse(
            handler.export_text(),
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.post("/api/system/shutdown", status_code=status.HTTP_202_ACCEPTED)
    async def shutdown_application() -> Dict[str, str]:
        server = getattr(app.state, "server", None)
        if server is None:
            raise HTTPException(status_code=503, detail="Shutdown is unavailable.")
        server.should_exit = True
        _log_event("Shutdown initiated")
        return {"status": "shutting_down"}

    @app.get("/{requested_path:path}", response_class=HTMLResponse)
    async def spa_fallback(request: Request, requested_path: str) -> HTMLResponse:
        """Serve the UI for non-API paths when the app lives under a prefix."""

        normalized = requested_path.lstrip("/")
        if normalized == "api" or normalized.startswith("api/"):
            raise HTTPException(status_code=404, detail="Not Found")
        return HTMLResponse(_render_index_html(request))

    return app


__all__ = ["create_app"]
