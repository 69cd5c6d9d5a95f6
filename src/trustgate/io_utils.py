"""Shared file helpers for private state files."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any
from uuid import uuid4

PRIVATE_FILE_MODE = 0o600
PRIVATE_DIR_MODE = 0o700


def ensure_private_dir(path: Path) -> None:
    """Create *path* (and parents) with owner-only permissions."""
    path.mkdir(parents=True, exist_ok=True, mode=PRIVATE_DIR_MODE)


def write_text_atomic(path: Path, text: str, *, file_mode: int = PRIVATE_FILE_MODE) -> None:
    """Atomically replace *path* with *text* using explicit mode bits."""
    ensure_private_dir(path.parent)
    temp_path = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, file_mode)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(text.encode("utf-8"))
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(temp_path, file_mode)
        os.replace(temp_path, path)
        os.chmod(path, file_mode)
    finally:
        if temp_path.exists():
            temp_path.unlink()


def dump_json(payload: Any) -> str:
    """Serialize *payload* the way every state file is written."""
    return json.dumps(payload, indent=2, ensure_ascii=True) + "\n"


def write_json_atomic(path: Path, payload: Any, *, file_mode: int = PRIVATE_FILE_MODE) -> None:
    write_text_atomic(path, dump_json(payload), file_mode=file_mode)


def read_text_or_none(path: Path) -> str | None:
    """Return file contents, or ``None`` when the file does not exist."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
