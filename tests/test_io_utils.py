"""Tests for the private state file helpers."""

from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import pytest

from trustgate.io_utils import read_text_or_none, write_json_atomic, write_text_atomic


@pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX permissions")
def test_replaces_loose_permissions(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("old")
    path.chmod(0o644)
    write_json_atomic(path, {"version": 1})
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert read_text_or_none(path) == '{\n  "version": 1\n}\n'


def test_chmod_failure_propagates(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(*_args: object, **_kwargs: object) -> None:
        raise PermissionError("chmod refused")

    monkeypatch.setattr(os, "chmod", refuse)
    path = tmp_path / "state.json"
    with pytest.raises(PermissionError):
        write_text_atomic(path, "secret")
    assert not path.exists()
    assert list(tmp_path.iterdir()) == []


def test_read_missing_file(tmp_path: Path) -> None:
    assert read_text_or_none(tmp_path / "absent.json") is None
