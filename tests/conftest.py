from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from media_player.bootstrap import Bootstrapper
from media_player.config import AppConfig, BluetoothSettings
from media_player.services.bluetooth import BluetoothController, CommandResult


SHOW_POWERED_ON = """Controller DC:A6:32:01:02:03 (public)
\tName: raspberrypi
\tAlias: Living Room Pi
\tClass: 0x006c0000
\tPowered: yes
\tDiscoverable: no
\tPairable: yes
\tDiscovering: no
"""

SHOW_POWERED_OFF = SHOW_POWERED_ON.replace("Powered: yes", "Powered: no")

DEVICES_OUTPUT = """Device 00:1A:7D:DA:71:13 JBL Flip 5
Device 40:EF:4C:8A:12:34 40-EF-4C-8A-12-34
"""

PAIRED_OUTPUT = "Device 00:1A:7D:DA:71:13 JBL Flip 5\n"

INFO_PAIRED = """Device 00:1A:7D:DA:71:13 (public)
\tName: JBL Flip 5
\tAlias: JBL Flip 5
\tClass: 0x00240414
\tPaired: yes
\tTrusted: yes
\tBlocked: no
\tConnected: no
"""

INFO_UNPAIRED = """Device 40:EF:4C:8A:12:34 (random)
\tName: Kitchen Speaker
\tAlias: Kitchen Speaker
\tPaired: no
\tTrusted: no
\tBlocked: no
\tConnected: no
"""

Response = Union[Tuple[int, str], BaseException]


class FakeRunner:
    """Stand-in for :func:`run_command` keyed on the arguments after the executable."""

    def __init__(self, responses: Optional[Dict[Tuple[str, ...], Response]] = None) -> None:
        self.responses: Dict[Tuple[str, ...], Response] = dict(responses or {})
        self.calls: List[Tuple[str, ...]] = []

    def __call__(self, args: Sequence[str], timeout: float) -> CommandResult:
        key = tuple(args[1:])
        self.calls.append(tuple(args))
        response = self.responses.get(key, (0, ""))
        if isinstance(response, BaseException):
            raise response
        returncode, stdout = response
        return CommandResult(args=tuple(args), returncode=returncode, stdout=stdout)

    def invoked(self, *arguments: str) -> bool:
        return any(call[1:] == arguments for call in self.calls)


class FakeProcess:
    def __init__(self, args: Sequence[str]) -> None:
        self.args = list(args)
        self.returncode: Optional[int] = None
        self.terminated = False

    def poll(self) -> Optional[int]:
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15

    def kill(self) -> None:
        self.returncode = -9

    def wait(self, timeout: Optional[float] = None) -> int:
        if self.returncode is None:
            raise subprocess.TimeoutExpired(self.args, timeout or 0)
        return self.returncode


class FakeProcessFactory:
    def __init__(self) -> None:
        self.processes: List[FakeProcess] = []

    def __call__(self, args: Sequence[str]) -> FakeProcess:
        process = FakeProcess(args)
        self.processes.append(process)
        return process


def default_responses() -> Dict[Tuple[str, ...], Response]:
    return {
        ("show",): (0, SHOW_POWERED_ON),
        ("devices",): (0, DEVICES_OUTPUT),
        ("devices", "Paired"): (0, PAIRED_OUTPUT),
        ("devices", "Connected"): (0, ""),
        ("info", "00:1A:7D:DA:71:13"): (0, INFO_PAIRED),
        ("info", "40:EF:4C:8A:12:34"): (0, INFO_UNPAIRED),
    }


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "playlists_file": "storage/playlists.json",
            "local_music_root": "music",
            "music_roots": [],
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def fake_runner() -> FakeRunner:
    return FakeRunner(default_responses())


@pytest.fixture()
def fake_processes() -> FakeProcessFactory:
    return FakeProcessFactory()


@pytest.fixture()
def bluetooth_controller(fake_runner: FakeRunner, fake_processes: FakeProcessFactory) -> BluetoothController:
    return BluetoothController(
        BluetoothSettings(scan_seconds=5, use_rfkill=True),
        runner=fake_runner,
        process_factory=fake_processes,
    )
