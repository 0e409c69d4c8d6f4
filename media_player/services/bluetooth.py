"""Bluetooth adapter control through the ``bluetoothctl`` command line tool.

BlueZ does the real work; this module only runs ``bluetoothctl`` (and
optionally ``rfkill``) and parses their text output. Parsing lives in pure
functions so it can be exercised against captured output.
"""

from __future__ import annotations

import logging
import re
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence, Tuple

from ..config import BluetoothSettings


LOGGER = logging.getLogger(__name__)

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]|\x01|\x02")
_PROMPT_PATTERN = re.compile(r"^\s*\[[^\]]*\][#>]\s*")
_MAC_PATTERN = re.compile(r"^[0-9A-F]{2}(?::[0-9A-F]{2}){5}$")
_DEVICE_PATTERN = re.compile(r"Device\s+([0-9A-Fa-f]{2}(?::[0-9A-Fa-f]{2}){5})\b\s*(.*)$")
_CONTROLLER_PATTERN = re.compile(r"^Controller\s+([0-9A-Fa-f]{2}(?::[0-9A-Fa-f]{2}){5})")
_PROPERTY_PATTERN = re.compile(r"^([A-Za-z][A-Za-z0-9 ]*):\s*(.*)$")
_NAME_IS_ADDRESS = re.compile(r"^[0-9A-Fa-f]{2}(?:[-:][0-9A-Fa-f]{2}){5}$")
_FAILURE_PATTERN = re.compile(
    r"Failed|not available|org\.bluez\.Error|No default controller",
    re.IGNORECASE,
)
_UNSUPPORTED_FILTER_PATTERN = re.compile(
    r"^(?:Invalid command|Too many arguments|Invalid argument|Unknown command)", re.IGNORECASE
)

PowerState = Literal["poweredOn", "poweredOff", "unavailable", "unsupported"]
ScanStart = Literal["started", "already-scanning", "adapter-off"]


class BluetoothError(RuntimeError):
    """Raised when ``bluetoothctl`` reports a failure."""


class BluetoothUnavailableError(BluetoothError):
    """Raised when the ``bluetoothctl`` executable cannot be started."""


@dataclass
class CommandResult:
    args: Tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        combined = "\n".join(part for part in (self.stdout, self.stderr) if part)
        return strip_ansi(combined)


@dataclass
class BluetoothDevice:
    mac: str
    name: str
    paired: bool = False
    connected: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.mac,
            "mac": self.mac,
            "name": self.name,
            "paired": self.paired,
            "connected": self.connected,
        }


@dataclass
class ControllerInfo:
    mac: str
    alias: str
    powered: bool
    discovering: bool

    def to_payload(self) -> Dict[str, Any]:
        return {
            "mac": self.mac,
            "alias": self.alias,
            "powered": self.powered,
            "discovering": self.discovering,
        }


Runner = Callable[[Sequence[str], float], CommandResult]
ProcessFactory = Callable[[Sequence[str]], "subprocess.Popen[bytes]"]


# ----------------------------------------------------------------------
# Parsing helpers
# ----------------------------------------------------------------------
def strip_ansi(text: str) -> str:
    """Remove colour codes and interactive prompts from ``bluetoothctl`` output."""

    lines = []
    for line in _ANSI_PATTERN.sub("", text or "").replace("\r", "").splitlines():
        lines.append(_PROMPT_PATTERN.sub("", line))
    return "\n".join(lines)


def normalize_mac(value: str) -> str:
    """Return *value* as an upper-case, colon separated MAC or raise ``ValueError``."""

    candidate = str(value or "").strip().upper().replace("-", ":")
    if not _MAC_PATTERN.match(candidate):
        raise ValueError(f"Invalid Bluetooth address: {value!r}")
    return candidate


def _is_yes(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "yes"


def parse_devices(text: str) -> List[BluetoothDevice]:
    """Parse ``Device <MAC> <name>`` lines, keeping the first entry per address."""

    devices: List[BluetoothDevice] = []
    seen: set[str] = set()
    for raw_line in strip_ansi(text).splitlines():
        line = raw_line.strip()
        if line.startswith("[CHG]") or line.startswith("[DEL]"):
            continue
        match = _DEVICE_PATTERN.search(line)
        if match is None:
            continue
        mac = match.group(1).upper()
        if mac in seen:
            continue
        seen.add(mac)
        name = match.group(2).strip()
        if not name or _NAME_IS_ADDRESS.match(name):
            name = mac
        devices.append(BluetoothDevice(mac=mac, name=name))
    return devices


def parse_properties(text: str) -> Dict[str, str]:
    """Parse the indented ``Key: value`` lines printed by ``show`` and ``info``."""

    properties: Dict[str, str] = {}
    for raw_line in strip_ansi(text).splitlines():
        if not raw_line[:1].isspace():
            continue
        match = _PROPERTY_PATTERN.match(raw_line.strip())
        if match is None:
            continue
        key, value = match.group(1).strip(), match.group(2).strip()
        properties.setdefault(key, value)
    return properties


def parse_controller(text: str) -> Optional[ControllerInfo]:
    """Parse ``bluetoothctl show``; ``None`` when no controller is listed."""

    cleaned = strip_ansi(text)
    mac: Optional[str] = None
    for line in cleaned.splitlines():
        match = _CONTROLLER_PATTERN.match(line.strip())
        if match:
            mac = match.group(1).upper()
            break
    if mac is None:
        return None
    properties = parse_properties(cleaned)
    return ControllerInfo(
        mac=mac,
        alias=properties.get("Alias") or properties.get("Name") or mac,
        powered=_is_yes(properties.get("Powered")),
        discovering=_is_yes(properties.get("Discovering")),
    )


def parse_info(text: str) -> Dict[str, Any]:
    """Parse ``bluetoothctl info <MAC>`` into the fields the player needs."""

    properties = parse_properties(text)
    return {
        "name": properties.get("Alias") or properties.get("Name"),
        "paired": _is_yes(properties.get("Paired")),
        "trusted": _is_yes(properties.get("Trusted")),
        "connected": _is_yes(properties.get("Connected")),
    }


def run_command(args: Sequence[str], timeout: float) -> CommandResult:
    """Run *args* and capture its text output."""

    completed = subprocess.run(
        list(args),
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,
    )
    return CommandResult(
        args=tuple(args),
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )


def _spawn_scan_process(args: Sequence[str]) -> "subprocess.Popen[bytes]":
    return subprocess.Popen(
        list(args),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )


# ----------------------------------------------------------------------
# Controller
# ----------------------------------------------------------------------
class BluetoothController:
    """High level operations on the default Bluetooth adapter."""

    def __init__(
        self,
        settings: BluetoothSettings | None = None,
        *,
        runner: Optional[Runner] = None,
        process_factory: Optional[ProcessFactory] = None,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._settings = settings or BluetoothSettings()
        self._runner: Runner = runner or run_command
        self._process_factory: ProcessFactory = process_factory or _spawn_scan_process
        self._event_emitter = event_emitter
        self._scan_lock = threading.Lock()
        self._scan_process: Optional["subprocess.Popen[bytes]"] = None

    @property
    def settings(self) -> BluetoothSettings:
        return self._settings

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        self._event_emitter = emitter

    # ------------------------------------------------------------------
    # Command plumbing
    # ------------------------------------------------------------------
    def _execute(
        self,
        args: Sequence[str],
        *,
        action: str,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        effective_timeout = timeout or self._settings.command_timeout
        start = time.perf_counter()
        context: Dict[str, Any] = {"command": " ".join(args)}
        try:
            result = self._runner(args, effective_timeout)
        except FileNotFoundError as error:
            context["status"] = "missing"
            self._emit(action, context, start)
            raise BluetoothUnavailableError(f"'{args[0]}' is not installed") from error
        except subprocess.TimeoutExpired as error:
            context["status"] = "timeout"
            self._emit(action, context, start)
            raise BluetoothError(f"'{' '.join(args)}' timed out after {effective_timeout:g}s") from error
        except OSError as error:
            context["status"] = "error"
            self._emit(action, context, start)
            raise BluetoothError(f"Could not run '{args[0]}': {error}") from error

        context["returncode"] = result.returncode
        self._emit(action, context, start)
        return result

    def _emit(self, action: str, context: Dict[str, Any], start: float) -> None:
        duration_ms = (time.perf_counter() - start) * 1000.0
        if self._event_emitter is None:
            LOGGER.debug("%s: %s (%.1f ms)", action, context, duration_ms)
            return
        self._event_emitter(action, context=context, duration_ms=duration_ms)

    def _bluetoothctl(
        self,
        *arguments: str,
        action: str,
        check: bool = True,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        args = (self._settings.command, *arguments)
        result = self._execute(args, action=action, timeout=timeout)
        if check:
            output = result.output
            match = _FAILURE_PATTERN.search(output)
            if result.returncode != 0 or match is not None:
                message = _failure_message(output) or f"exit status {result.returncode}"
                raise BluetoothError(f"{action} failed: {message}")
        return result

    def _rfkill(self, verb: str) -> None:
        try:
            result = self._execute(("rfkill", verb, "bluetooth"), action=f"rfkill {verb}")
        except BluetoothUnavailableError:
            LOGGER.warning("rfkill is not installed; skipping '%s'", verb)
            return
        if result.returncode != 0:
            LOGGER.warning("rfkill %s bluetooth failed: %s", verb, result.output.strip())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def controller(self) -> Optional[ControllerInfo]:
        result = self._bluetoothctl("show", action="Query adapter", check=False)
        return parse_controller(result.output)

    def state(self) -> Dict[str, Any]:
        try:
            controller = self.controller()
        except BluetoothUnavailableError:
            return {
                "state": "unsupported",
                "enabled": False,
                "isScanning": False,
                "controller": None,
            }

        if controller is None:
            power_state: PowerState = "unavailable"
        else:
            power_state = "poweredOn" if controller.powered else "poweredOff"
        return {
            "state": power_state,
            "enabled": power_state == "poweredOn",
            "isScanning": self.is_scanning,
            "controller": controller.to_payload() if controller else None,
        }

    def known_devices(self) -> List[BluetoothDevice]:
        result = self._bluetoothctl("devices", action="List devices", check=False)
        return parse_devices(result.output)

    def _filtered_devices(self, flag: str, legacy_command: Optional[str]) -> Optional[List[BluetoothDevice]]:
        result = self._bluetoothctl("devices", flag, action=f"List {flag.lower()} devices", check=False)
        output = result.output
        if result.returncode == 0 and not _filter_unsupported(output):
            return parse_devices(output)
        if legacy_command is not None:
            legacy = self._bluetoothctl(legacy_command, action=f"List {flag.lower()} devices", check=False)
            return parse_devices(legacy.output)
        return None

    def paired_devices(self) -> List[BluetoothDevice]:
        devices = self._filtered_devices("Paired", "paired-devices") or []
        for device in devices:
            device.paired = True
        return devices

    def connected_devices(self) -> List[BluetoothDevice]:
        devices = self._filtered_devices("Connected", None)
        if devices is None:
            devices = []
            for device in self.known_devices():
                info = self.device_info(device.mac)
                if info["connected"]:
                    device.paired = info["paired"]
                    devices.append(device)
        for device in devices:
            device.connected = True
        return devices

    def available_devices(self) -> List[BluetoothDevice]:
        paired = {device.mac for device in self.paired_devices()}
        connected = {device.mac for device in self.connected_devices()}
        devices = self.known_devices()
        for device in devices:
            device.paired = device.mac in paired
            device.connected = device.mac in connected
        return devices

    def device_info(self, mac: str) -> Dict[str, Any]:
        address = normalize_mac(mac)
        result = self._bluetoothctl("info", address, action="Device info", check=False)
        info = parse_info(result.output)
        info["mac"] = address
        return info

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------
    @property
    def is_scanning(self) -> bool:
        with self._scan_lock:
            process = self._scan_process
            if process is None:
                return False
            if process.poll() is None:
                return True
            self._scan_process = None
            return False

    def start_scan(self) -> ScanStart:
        if self.is_scanning:
            return "already-scanning"
        controller = self.controller()
        if controller is None or not controller.powered:
            return "adapter-off"

        args = (
            self._settings.command,
            "--timeout",
            str(self._settings.scan_seconds),
            "scan",
            "on",
        )
        with self._scan_lock:
            if self._scan_process is not None and self._scan_process.poll() is None:
                return "already-scanning"
            try:
                self._scan_process = self._process_factory(args)
            except FileNotFoundError as error:
                raise BluetoothUnavailableError(f"'{args[0]}' is not installed") from error
            except OSError as error:
                raise BluetoothError(f"Could not start scan: {error}") from error
        LOGGER.info("Started Bluetooth scan for %ss", self._settings.scan_seconds)
        return "started"

    def stop_scan(self) -> bool:
        """Stop a running scan; returns ``True`` when one was running."""

        with self._scan_lock:
            process = self._scan_process
            self._scan_process = None
        if process is None or process.poll() is not None:
            return False

        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait(timeout=5)
        try:
            self._bluetoothctl("scan", "off", action="Stop discovery", check=False)
        except BluetoothUnavailableError:
            pass
        LOGGER.info("Stopped Bluetooth scan")
        return True

    # ------------------------------------------------------------------
    # Device actions
    # ------------------------------------------------------------------
    def connect(self, mac: str) -> BluetoothDevice:
        info = self.device_info(mac)
        address = info["mac"]
        if not info["paired"]:
            pair_timeout = max(self._settings.command_timeout, 30.0)
            self._bluetoothctl("pair", address, action="Pair device", timeout=pair_timeout)
            self._bluetoothctl("trust", address, action="Trust device")
        self._bluetoothctl("connect", address, action="Connect device")
        return BluetoothDevice(
            mac=address,
            name=info["name"] or address,
            paired=True,
            connected=True,
        )

    def disconnect(self, mac: str) -> BluetoothDevice:
        info = self.device_info(mac)
        address = info["mac"]
        self._bluetoothctl("disconnect", address, action="Disconnect device")
        return BluetoothDevice(
            mac=address,
            name=info["name"] or address,
            paired=info["paired"],
            connected=False,
        )

    def remove(self, mac: str) -> None:
        address = normalize_mac(mac)
        self._bluetoothctl("remove", address, action="Remove device")

    def set_powered(self, enabled: bool) -> Dict[str, Any]:
        if enabled:
            if self._settings.use_rfkill:
                self._rfkill("unblock")
            self._bluetoothctl("power", "on", action="Power on")
            return self.state()

        self.stop_scan()
        for device in self.connected_devices():
            try:
                self._bluetoothctl("disconnect", device.mac, action="Disconnect device")
            except BluetoothError as error:
                LOGGER.warning("Could not disconnect %s: %s", device.mac, error)
        self._bluetoothctl("power", "off", action="Power off")
        if self._settings.use_rfkill:
            self._rfkill("block")
        return {
            "state": "poweredOff",
            "enabled": False,
            "isScanning": False,
            "controller": None,
        }


def _filter_unsupported(output: str) -> bool:
    for line in output.splitlines():
        line = line.strip()
        if _DEVICE_PATTERN.search(line):
            continue
        if _UNSUPPORTED_FILTER_PATTERN.match(line):
            return True
    return False


def _failure_message(output: str) -> str:
    for line in output.splitlines():
        if _FAILURE_PATTERN.search(line):
            return line.strip()
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    return lines[-1] if lines else ""


__all__ = [
    "BluetoothController",
    "BluetoothDevice",
    "BluetoothError",
    "BluetoothUnavailableError",
    "CommandResult",
    "ControllerInfo",
    "normalize_mac",
    "parse_controller",
    "parse_devices",
    "parse_info",
    "parse_properties",
    "run_command",
    "strip_ansi",
]
