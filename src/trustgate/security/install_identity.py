"""Stable per-install identifier used to scope derived encryption keys.

The uuid lives in ``<state dir>/install.json`` and is created lazily on first
use. Once written it never changes; a corrupt file is regenerated.

Dependencies: io_utils
Wired in: runtime.py → build_runtime(), vault/store.py → EncryptedVault
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

from trustgate.io_utils import read_text_or_none, write_json_atomic

_log = logging.getLogger(__name__)

INSTALL_FILE_VERSION = 1


class InstallIdentityError(RuntimeError):
    """Raised when the install uuid cannot be persisted."""


def _coerce_install_uuid(raw: Any) -> str | None:
    if not isinstance(raw, dict):
        return None
    value = raw.get("installUuid")
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


class InstallIdentity:
    """Resolve, and create on first use, the install uuid."""

    def __init__(
        self,
        path: Path,
        *,
        override: str | None = None,
        uuid_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._path = path
        self._override = override.strip() if override else None
        self._uuid_factory = uuid_factory
        self._cached: str | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def resolve(self) -> str:
        if self._override:
            return self._override
        with self._lock:
            if self._cached is None:
                self._cached = self._load_or_create()
            return self._cached

    def _load_or_create(self) -> str:
        raw = read_text_or_none(self._path)
        if raw is not None:
            try:
                existing = _coerce_install_uuid(json.loads(raw))
            except json.JSONDecodeError:
                existing = None
            if existing:
                return existing
            _log.warning("Install identity file %s is unreadable; regenerating", self._path)

        install_uuid = self._uuid_factory()
        payload = {"version": INSTALL_FILE_VERSION, "installUuid": install_uuid}
        try:
            write_json_atomic(self._path, payload)
        except OSError as exc:
            raise InstallIdentityError(f"Failed to persist install uuid: {exc}") from exc
        _log.info("Created install identity at %s", self._path)
        return install_uuid
