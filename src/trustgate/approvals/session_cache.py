"""Short-lived per-session approval memory.

File groups remember granted glob patterns; browser groups remember a single
yes. Entries slide on every access and are pruned on access when older than
``max_age_ms`` or when more than ``max_sessions`` exist (oldest first).
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from trustgate.approvals.patterns import matches_pattern
from trustgate.approvals.types import BROWSER_TOOL_GROUPS, FILE_TOOL_GROUPS

MAX_SESSIONS = 500
MAX_AGE_MS = 6 * 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


def _empty_file_grants() -> dict[str, set[str]]:
    return {group: set() for group in FILE_TOOL_GROUPS}


def _empty_browser_grants() -> dict[str, bool]:
    return dict.fromkeys(BROWSER_TOOL_GROUPS, False)


@dataclass
class _SessionGrants:
    updated_at_ms: int
    files: dict[str, set[str]] = field(default_factory=_empty_file_grants)
    browser: dict[str, bool] = field(default_factory=_empty_browser_grants)


class SessionApprovalCache:
    def __init__(
        self,
        *,
        max_sessions: int = MAX_SESSIONS,
        max_age_ms: int = MAX_AGE_MS,
        now_ms: Callable[[], int] = _now_ms,
        home: str | None = None,
    ) -> None:
        self._sessions: dict[str, _SessionGrants] = {}
        self._max_sessions = max_sessions
        self._max_age_ms = max_age_ms
        self._now_ms = now_ms
        self._home = home
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def has_approval(
        self,
        session_key: str | None,
        tool_group: str,
        target: str | None = None,
    ) -> bool:
        key = (session_key or "").strip()
        if not key:
            return False
        with self._lock:
            entry = self._sessions.get(key)
            if entry is None:
                return False
            now = self._now_ms()
            if now - entry.updated_at_ms > self._max_age_ms:
                del self._sessions[key]
                return False
            entry.updated_at_ms = now
            if tool_group in BROWSER_TOOL_GROUPS:
                return entry.browser[tool_group]
            candidate = (target or "").strip()
            if not candidate or tool_group not in FILE_TOOL_GROUPS:
                return False
            patterns = list(entry.files[tool_group])
        return any(matches_pattern(p, candidate, home=self._home) for p in patterns)

    def record_approval(
        self,
        session_key: str | None,
        tool_group: str,
        pattern: str | None = None,
    ) -> None:
        key = (session_key or "").strip()
        if not key:
            return
        with self._lock:
            entry = self._ensure(key)
            if tool_group in BROWSER_TOOL_GROUPS:
                entry.browser[tool_group] = True
                return
            value = (pattern or "").strip()
            if value and tool_group in FILE_TOOL_GROUPS:
                entry.files[tool_group].add(value)

    def clear(self, session_key: str | None = None) -> None:
        with self._lock:
            if session_key is None:
                self._sessions.clear()
            else:
                self._sessions.pop(session_key.strip(), None)

    def _ensure(self, key: str) -> _SessionGrants:
        now = self._now_ms()
        existing = self._sessions.get(key)
        if existing is not None:
            existing.updated_at_ms = now
            self._prune()
            return existing
        self._prune(reserve=1)
        created = _SessionGrants(updated_at_ms=now)
        self._sessions[key] = created
        return created

    def _prune(self, reserve: int = 0) -> None:
        if not self._sessions:
            return
        now = self._now_ms()
        expired = [k for k, v in self._sessions.items() if now - v.updated_at_ms > self._max_age_ms]
        for key in expired:
            del self._sessions[key]
        overflow = len(self._sessions) + reserve - self._max_sessions
        if overflow <= 0:
            return
        oldest = sorted(self._sessions.items(), key=lambda item: item[1].updated_at_ms)
        for key, _ in oldest[:overflow]:
            del self._sessions[key]
