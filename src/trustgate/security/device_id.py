"""Platform-specific lookup of a stable machine identifier.

The identifier is the key material the storage cipher stretches with scrypt,
so ciphertext copied to another machine will not decrypt there.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import threading
from collections.abc import Callable, Sequence
from pathlib import Path

from trustgate.security.sensitive_env import scrub_inherited_sensitive_env

_log = logging.getLogger(__name__)

_LINUX_MACHINE_ID_PATHS = (Path("/etc/machine-id"), Path("/var/lib/dbus/machine-id"))
_IOREG_UUID_RE = re.compile(r'"IOPlatformUUID"\s*=\s*"([^"]+)"')
_REG_GUID_RE = re.compile(r"MachineGuid\s+REG_SZ\s+(\S+)")
_COMMAND_TIMEOUT_SECONDS = 5

CommandRunner = Callable[[Sequence[str]], str]


class DeviceIdUnavailableError(RuntimeError):
    """Raised when no machine identifier can be determined."""


def _run_command(argv: Sequence[str]) -> str:
    completed = subprocess.run(
        list(argv),
        capture_output=True,
        text=True,
        check=True,
        timeout=_COMMAND_TIMEOUT_SECONDS,
        env=scrub_inherited_sensitive_env(os.environ),
    )
    return completed.stdout


class DeviceIdResolver:
    """Resolve the machine id once and cache it for the life of the resolver."""

    def __init__(
        self,
        platform: str,
        *,
        override: str | None = None,
        linux_paths: Sequence[Path] = _LINUX_MACHINE_ID_PATHS,
        run_command: CommandRunner = _run_command,
    ) -> None:
        self._platform = platform
        self._override = override.strip() if override else None
        self._linux_paths = tuple(linux_paths)
        self._run_command = run_command
        self._cached: str | None = None
        self._lock = threading.Lock()

    def resolve(self) -> str:
        if self._override:
            return self._override
        with self._lock:
            if self._cached is None:
                self._cached = self._lookup()
            return self._cached

    def _lookup(self) -> str:
        if self._platform == "darwin":
            value = self._from_ioreg()
        elif self._platform.startswith("win"):
            value = self._from_registry()
        else:
            value = self._from_machine_id_files()
        if not value:
            raise DeviceIdUnavailableError(
                f"Could not determine a machine identifier on platform '{self._platform}'."
            )
        return value

    def _from_machine_id_files(self) -> str | None:
        for path in self._linux_paths:
            try:
                value = path.read_text(encoding="utf-8").strip()
            except OSError:
                continue
            if value:
                return value
        return None

    def _from_ioreg(self) -> str | None:
        try:
            output = self._run_command(["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"])
        except (OSError, subprocess.SubprocessError) as exc:
            _log.warning("ioreg lookup failed: %s", exc)
            return None
        match = _IOREG_UUID_RE.search(output)
        return match.group(1).strip() if match else None

    def _from_registry(self) -> str | None:
        try:
            output = self._run_command(
                [
                    "reg",
                    "query",
                    r"HKLM\SOFTWARE\Microsoft\Cryptography",
                    "/v",
                    "MachineGuid",
                ]
            )
        except (OSError, subprocess.SubprocessError) as exc:
            _log.warning("Registry lookup failed: %s", exc)
            return None
        match = _REG_GUID_RE.search(output)
        return match.group(1).strip() if match else None
