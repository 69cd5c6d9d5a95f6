"""Tests for the install uuid file and machine id lookup."""

from __future__ import annotations

import json
import stat
import sys
from collections.abc import Sequence
from pathlib import Path

import pytest

from trustgate.security.device_id import DeviceIdResolver, DeviceIdUnavailableError
from trustgate.security.install_identity import InstallIdentity


def test_creates_file_on_first_use(tmp_path: Path) -> None:
    path = tmp_path / "state" / "install.json"
    identity = InstallIdentity(path, uuid_factory=lambda: "uuid-1")

    assert identity.resolve() == "uuid-1"
    assert json.loads(path.read_text()) == {"version": 1, "installUuid": "uuid-1"}


@pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX permissions")
def test_file_is_owner_only(tmp_path: Path) -> None:
    path = tmp_path / "install.json"
    InstallIdentity(path).resolve()
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_stable_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "install.json"
    first = InstallIdentity(path).resolve()
    second = InstallIdentity(path, uuid_factory=lambda: "never-used").resolve()
    assert first == second


def test_corrupt_file_is_regenerated(tmp_path: Path) -> None:
    path = tmp_path / "install.json"
    path.write_text("{not json")
    assert InstallIdentity(path, uuid_factory=lambda: "fresh").resolve() == "fresh"
    assert json.loads(path.read_text())["installUuid"] == "fresh"


def test_blank_uuid_is_regenerated(tmp_path: Path) -> None:
    path = tmp_path / "install.json"
    path.write_text(json.dumps({"version": 1, "installUuid": "  "}))
    assert InstallIdentity(path, uuid_factory=lambda: "fresh").resolve() == "fresh"


def test_override_skips_the_file(tmp_path: Path) -> None:
    path = tmp_path / "install.json"
    assert InstallIdentity(path, override=" pinned ").resolve() == "pinned"
    assert not path.exists()


def test_resolved_value_is_cached(tmp_path: Path) -> None:
    path = tmp_path / "install.json"
    identity = InstallIdentity(path, uuid_factory=lambda: "first")
    identity.resolve()
    path.write_text(json.dumps({"version": 1, "installUuid": "changed"}))
    assert identity.resolve() == "first"


class TestDeviceId:
    def test_linux_reads_first_machine_id_file(self, tmp_path: Path) -> None:
        missing = tmp_path / "missing"
        empty = tmp_path / "empty"
        empty.write_text("\n")
        present = tmp_path / "machine-id"
        present.write_text("abc123\n")
        resolver = DeviceIdResolver("linux", linux_paths=[missing, empty, present])
        assert resolver.resolve() == "abc123"

    def test_linux_without_files_is_unavailable(self, tmp_path: Path) -> None:
        resolver = DeviceIdResolver("linux", linux_paths=[tmp_path / "nope"])
        with pytest.raises(DeviceIdUnavailableError):
            resolver.resolve()

    def test_darwin_parses_ioreg(self) -> None:
        output = '  "IOPlatformUUID" = "1234-ABCD"\n'
        calls: list[Sequence[str]] = []

        def run(argv: Sequence[str]) -> str:
            calls.append(argv)
            return output

        resolver = DeviceIdResolver("darwin", run_command=run)
        assert resolver.resolve() == "1234-ABCD"
        assert resolver.resolve() == "1234-ABCD"
        assert len(calls) == 1
        assert calls[0][0] == "ioreg"

    def test_windows_parses_registry(self) -> None:
        output = "    MachineGuid    REG_SZ    9f1c-77aa\r\n"
        resolver = DeviceIdResolver("win32", run_command=lambda argv: output)
        assert resolver.resolve() == "9f1c-77aa"

    def test_command_failure_is_unavailable(self) -> None:
        def run(argv: Sequence[str]) -> str:
            raise OSError("not found")

        with pytest.raises(DeviceIdUnavailableError):
            DeviceIdResolver("darwin", run_command=run).resolve()

    def test_override_wins(self) -> None:
        assert DeviceIdResolver("darwin", override="pinned").resolve() == "pinned"
