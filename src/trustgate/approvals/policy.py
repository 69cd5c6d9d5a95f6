"""Approval policy modes and path canonicalization for gated tools."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from trustgate.approvals.patterns import root_glob
from trustgate.config import DEFAULT_APPROVAL_TIMEOUT_MS, ToolApprovalsSettings

_UNICODE_SPACES_RE = re.compile("[\u00a0\u2000-\u200a\u202f\u205f\u3000]")


class FileApprovalMode(StrEnum):
    OFF = "off"
    ON_NEW_PATH = "on-new-path"
    ALWAYS = "always"


class BrowserApprovalMode(StrEnum):
    OFF = "off"
    PER_SESSION = "per-session"
    ALWAYS = "always"


@dataclass(frozen=True)
class ToolApprovalsPolicy:
    """Resolved policy. Disabled means every gate is a no-op."""

    enabled: bool = False
    timeout_ms: int = DEFAULT_APPROVAL_TIMEOUT_MS
    file_mode: FileApprovalMode = FileApprovalMode.OFF
    browser_mode: BrowserApprovalMode = BrowserApprovalMode.OFF

    @classmethod
    def from_settings(cls, settings: ToolApprovalsSettings) -> ToolApprovalsPolicy:
        return cls(
            enabled=settings.enabled,
            timeout_ms=max(1, settings.timeout_ms),
            file_mode=FileApprovalMode(settings.file_mode),
            browser_mode=BrowserApprovalMode(settings.browser_mode),
        )

    @property
    def gates_files(self) -> bool:
        return self.enabled and self.file_mode is not FileApprovalMode.OFF

    @property
    def gates_browser(self) -> bool:
        return self.enabled and self.browser_mode is not BrowserApprovalMode.OFF


def _expand_home(file_path: str, home: str | None) -> str:
    normalized = _UNICODE_SPACES_RE.sub(" ", file_path)
    home_dir = home if home is not None else str(Path.home())
    if normalized == "~":
        return home_dir
    if normalized.startswith("~/"):
        return home_dir + normalized[1:]
    return normalized


def _try_realpath(value: str) -> str | None:
    try:
        return os.path.realpath(value, strict=True)
    except OSError:
        return None


def canonicalize_path(file_path: str, cwd: str, *, home: str | None = None) -> str:
    """Absolute, symlink-resolved form of *file_path* as the tool would see it.

    A leaf that does not exist yet keeps its name under its parent's real path.
    """
    expanded = _expand_home(file_path, home)
    if os.path.isabs(expanded):
        resolved = os.path.normpath(expanded)
    else:
        resolved = os.path.normpath(os.path.join(os.path.abspath(cwd), expanded))
    real = _try_realpath(resolved)
    if real:
        return real
    parent = os.path.dirname(resolved)
    parent_real = _try_realpath(parent) if parent else None
    if parent_real:
        return os.path.join(parent_real, os.path.basename(resolved))
    return resolved


def sandbox_root_glob(root: str, *, home: str | None = None) -> str:
    return root_glob(canonicalize_path(root, os.getcwd(), home=home))
