"""Persisted allow-always grants in ``tool-approvals.json``.

Readers never lock. Writers that replace the whole file present the hash of
the contents they read; a mismatch means someone else wrote in between and the
write is rejected (``ToolApprovalsConflictError``) leaving the file untouched.

Dependencies: approvals.types, approvals.patterns, io_utils
Wired in: runtime.py → build_runtime(), approvals/gate.py, server/methods.py
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, cast

from trustgate.approvals.patterns import matches_pattern
from trustgate.approvals.types import (
    TOOL_APPROVALS_VERSION,
    ToolApprovalsConflictError,
    ToolApprovalsEntry,
    ToolApprovalsFile,
    ToolApprovalsSnapshot,
    ToolGroup,
    is_tool_group,
)
from trustgate.io_utils import dump_json, read_text_or_none, write_text_atomic

_log = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def hash_raw(raw: str | None) -> str:
    return hashlib.sha256((raw or "").encode("utf-8")).hexdigest()


def _positive_number(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return int(value)


def normalize_entry(raw: object) -> ToolApprovalsEntry | None:
    """Coerce one raw entry; ``None`` drops it. A missing id stays empty here."""
    if not isinstance(raw, dict):
        return None
    record = cast(dict[str, Any], raw)
    raw_id = record.get("id")
    entry_id = raw_id.strip() if isinstance(raw_id, str) else ""
    group = record.get("toolGroup")
    raw_pattern = record.get("pattern")
    pattern = raw_pattern.strip() if isinstance(raw_pattern, str) else ""
    created_at_ms = _positive_number(record.get("createdAtMs"))
    if not is_tool_group(group) or not pattern or created_at_ms is None:
        return None
    last_example = record.get("lastExample")
    return ToolApprovalsEntry(
        id=entry_id,
        tool_group=cast(ToolGroup, group),
        pattern=pattern,
        created_at_ms=created_at_ms,
        last_used_at_ms=_positive_number(record.get("lastUsedAtMs")),
        last_example=last_example if isinstance(last_example, str) and last_example else None,
    )


def normalize_file(
    raw: object,
    *,
    id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> ToolApprovalsFile:
    """Drop invalid entries and fill missing ids. Unknown versions load as empty."""
    if not isinstance(raw, dict) or raw.get("version") != TOOL_APPROVALS_VERSION:
        return ToolApprovalsFile()
    entries_raw = raw.get("entries")
    entries: list[ToolApprovalsEntry] = []
    for item in entries_raw if isinstance(entries_raw, list) else []:
        entry = normalize_entry(item)
        if entry is None:
            continue
        if not entry.id:
            entry = ToolApprovalsEntry(
                id=id_factory(),
                tool_group=entry.tool_group,
                pattern=entry.pattern,
                created_at_ms=entry.created_at_ms,
                last_used_at_ms=entry.last_used_at_ms,
                last_example=entry.last_example,
            )
        entries.append(entry)
    return ToolApprovalsFile(entries=tuple(entries))


def find_match(
    file: ToolApprovalsFile,
    tool_group: str,
    target: str,
    *,
    home: str | None = None,
) -> ToolApprovalsEntry | None:
    for entry in file.entries:
        if entry.tool_group != tool_group:
            continue
        if matches_pattern(entry.pattern, target, home=home):
            return entry
    return None


def record_use(
    file: ToolApprovalsFile,
    entry_ids: Iterable[str],
    *,
    now_ms: int,
    last_example: str | None = None,
) -> ToolApprovalsFile:
    wanted = set(entry_ids)
    if not wanted or not file.entries:
        return file
    entries = tuple(
        ToolApprovalsEntry(
            id=entry.id,
            tool_group=entry.tool_group,
            pattern=entry.pattern,
            created_at_ms=entry.created_at_ms,
            last_used_at_ms=now_ms,
            last_example=last_example or entry.last_example,
        )
        if entry.id in wanted
        else entry
        for entry in file.entries
    )
    return ToolApprovalsFile(version=file.version, entries=entries)


def add_entry(
    file: ToolApprovalsFile,
    tool_group: ToolGroup,
    pattern: str,
    *,
    now_ms: int,
    last_example: str | None = None,
    id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> ToolApprovalsFile:
    """Append a grant unless ``(tool_group, pattern)`` already exists."""
    pattern = pattern.strip()
    if not pattern:
        return file
    if any(e.tool_group == tool_group and e.pattern == pattern for e in file.entries):
        return file
    entry = ToolApprovalsEntry(
        id=id_factory(),
        tool_group=tool_group,
        pattern=pattern,
        created_at_ms=now_ms,
        last_used_at_ms=now_ms,
        last_example=last_example or None,
    )
    return ToolApprovalsFile(version=file.version, entries=(*file.entries, entry))


class ToolApprovalsStore:
    """File-backed grant store with base-hash guarded writes."""

    def __init__(
        self,
        path: Path,
        *,
        now_ms: Callable[[], int] = _now_ms,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        home: str | None = None,
    ) -> None:
        self._path = path
        self._now_ms = now_ms
        self._id_factory = id_factory
        self._home = home
        self._write_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def now_ms(self) -> int:
        return self._now_ms()

    def read_snapshot(self) -> ToolApprovalsSnapshot:
        raw = read_text_or_none(self._path)
        if raw is None:
            return ToolApprovalsSnapshot(
                path=str(self._path),
                exists=False,
                raw=None,
                file=ToolApprovalsFile(),
                hash=hash_raw(None),
            )
        try:
            parsed: object = json.loads(raw)
        except json.JSONDecodeError:
            _log.warning("Tool approvals file %s is not valid JSON; ignoring entries", self._path)
            parsed = None
        return ToolApprovalsSnapshot(
            path=str(self._path),
            exists=True,
            raw=raw,
            file=normalize_file(parsed, id_factory=self._id_factory),
            hash=hash_raw(raw),
        )

    def load(self) -> ToolApprovalsFile:
        try:
            return self.read_snapshot().file
        except OSError as exc:
            _log.warning("Failed to read tool approvals file %s: %s", self._path, exc)
            return ToolApprovalsFile()

    def ensure(self) -> ToolApprovalsSnapshot:
        """Normalize the file on disk, creating it if absent."""
        with self._write_lock:
            file = self.load()
            self._write(file)
            return self.read_snapshot()

    def get(self) -> ToolApprovalsSnapshot:
        return self.ensure()

    def set(self, file_data: object, base_hash: str | None = None) -> ToolApprovalsSnapshot:
        """Replace the file wholesale, guarded by *base_hash*."""
        with self._write_lock:
            self._check_base_hash(base_hash)
            file = normalize_file(file_data, id_factory=self._id_factory)
            self._write(file)
            return self.read_snapshot()

    def replace_if_unchanged(
        self,
        file: ToolApprovalsFile,
        base_hash: str,
    ) -> ToolApprovalsSnapshot:
        """Write an already-normalized *file* if the on-disk hash still equals *base_hash*."""
        with self._write_lock:
            current = self.read_snapshot()
            if current.hash != base_hash:
                raise ToolApprovalsConflictError(
                    "stale_base_hash",
                    "tool approvals changed since last load; re-run tool.approvals.get and retry",
                )
            self._write(file)
            return self.read_snapshot()

    def remove_entry(self, entry_id: str, base_hash: str | None = None) -> bool:
        with self._write_lock:
            snapshot = self._check_base_hash(base_hash) if base_hash else self.read_snapshot()
            remaining = tuple(e for e in snapshot.file.entries if e.id != entry_id)
            if len(remaining) == len(snapshot.file.entries):
                return False
            self._write(ToolApprovalsFile(version=snapshot.file.version, entries=remaining))
            _log.info("Revoked tool approval entry %s", entry_id)
            return True

    def find_match(
        self,
        file: ToolApprovalsFile,
        tool_group: str,
        target: str,
    ) -> ToolApprovalsEntry | None:
        return find_match(file, tool_group, target, home=self._home)

    def add_entry(
        self,
        file: ToolApprovalsFile,
        tool_group: ToolGroup,
        pattern: str,
        last_example: str | None = None,
    ) -> ToolApprovalsFile:
        return add_entry(
            file,
            tool_group,
            pattern,
            now_ms=self._now_ms(),
            last_example=last_example,
            id_factory=self._id_factory,
        )

    def record_use(
        self,
        file: ToolApprovalsFile,
        entry_ids: Iterable[str],
        last_example: str | None = None,
    ) -> ToolApprovalsFile:
        return record_use(file, entry_ids, now_ms=self._now_ms(), last_example=last_example)

    def _check_base_hash(self, base_hash: str | None) -> ToolApprovalsSnapshot:
        snapshot = self.read_snapshot()
        if not snapshot.exists:
            return snapshot
        if not base_hash:
            raise ToolApprovalsConflictError(
                "base_hash_required",
                "tool approvals base hash required; re-run tool.approvals.get and retry",
            )
        if base_hash != snapshot.hash:
            raise ToolApprovalsConflictError(
                "stale_base_hash",
                "tool approvals changed since last load; re-run tool.approvals.get and retry",
            )
        return snapshot

    def _write(self, file: ToolApprovalsFile) -> None:
        write_text_atomic(self._path, dump_json(file.to_dict()))
