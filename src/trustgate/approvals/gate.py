"""Pre-execution gate for sensitive file and browser tools.

A tool calls ``ensure_file_tool_approval`` or ``ensure_browser_tool_approval``
before it runs. The call returns an ``ApprovalOutcome`` when the tool may
proceed and raises ``ToolApprovalDeniedError`` otherwise. Lookup order for
file tools: session cache, then persisted grants, then one batched prompt for
whatever is left.

Dependencies: approvals.policy, approvals.store, approvals.session_cache,
    approvals.events, approvals.patterns
Wired in: runtime.py → build_runtime()
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import NoReturn, Protocol

from trustgate.approvals.events import SystemEventQueue
from trustgate.approvals.patterns import dir_glob
from trustgate.approvals.policy import (
    BrowserApprovalMode,
    FileApprovalMode,
    ToolApprovalsPolicy,
    canonicalize_path,
    sandbox_root_glob,
)
from trustgate.approvals.session_cache import SessionApprovalCache
from trustgate.approvals.store import ToolApprovalsStore
from trustgate.approvals.types import (
    Decision,
    DenyReason,
    PersistOutcome,
    ToolApprovalDeniedError,
    ToolApprovalRequest,
    ToolApprovalsConflictError,
    ToolApprovalsEntry,
    ToolApprovalsFile,
    ToolApprovalsSnapshot,
    ToolGroup,
)

_log = logging.getLogger(__name__)

MAX_PERSIST_ATTEMPTS = 3
BROWSER_TOOL_NAME = "browser"


class ApprovalRequester(Protocol):
    """Delivers a request to a human and returns ``(approval id, decision)``."""

    async def request(
        self,
        request: ToolApprovalRequest,
        timeout_ms: int,
    ) -> tuple[str, Decision | None]: ...


def _empty_patterns() -> tuple[str, ...]:
    return ()


@dataclass(frozen=True)
class ApprovalOutcome:
    """Why a gated tool was allowed to run.

    ``decision is None`` means no prompt was needed (policy off, session
    cache, or a persisted grant).
    """

    approved: bool = True
    decision: Decision | None = None
    approval_id: str | None = None
    patterns: tuple[str, ...] = field(default_factory=_empty_patterns)
    bookkeeping: PersistOutcome | None = None
    persisted: PersistOutcome | None = None


class ToolApprovalGate:
    def __init__(
        self,
        policy: ToolApprovalsPolicy,
        store: ToolApprovalsStore,
        session_cache: SessionApprovalCache,
        requester: ApprovalRequester,
        events: SystemEventQueue,
        *,
        home: str | None = None,
    ) -> None:
        self._policy = policy
        self._store = store
        self._session_cache = session_cache
        self._requester = requester
        self._events = events
        self._home = home

    @property
    def policy(self) -> ToolApprovalsPolicy:
        return self._policy

    async def ensure_file_tool_approval(
        self,
        *,
        tool_name: str,
        tool_group: ToolGroup,
        cwd: str,
        paths: Sequence[str],
        summary: str,
        session_key: str | None = None,
        agent_id: str | None = None,
        sandbox_root: str | None = None,
    ) -> ApprovalOutcome:
        if not self._policy.gates_files:
            return ApprovalOutcome()

        base = cwd or os.getcwd()
        raw_paths = [p for p in paths if isinstance(p, str) and p.strip()]
        targets = list(
            dict.fromkeys(canonicalize_path(p, base, home=self._home) for p in raw_paths)
        )
        if not targets:
            return ApprovalOutcome()

        always = self._policy.file_mode is FileApprovalMode.ALWAYS
        snapshot = None if always else self._load_grants()
        needs_approval: list[str] = []
        matched: list[ToolApprovalsEntry] = []
        for target in targets:
            if always:
                needs_approval.append(target)
                continue
            if self._session_cache.has_approval(session_key, tool_group, target):
                continue
            match = self._store.find_match(snapshot.file, tool_group, target) if snapshot else None
            if match is None:
                needs_approval.append(target)
            elif match not in matched:
                matched.append(match)

        bookkeeping = None
        if matched and snapshot is not None:
            bookkeeping = self._record_grant_use(snapshot.hash, snapshot.file, matched, summary)

        if not needs_approval:
            return ApprovalOutcome(bookkeeping=bookkeeping)

        request = ToolApprovalRequest(
            tool_name=tool_name,
            tool_group=tool_group,
            summary=summary,
            cwd=base,
            agent_id=agent_id,
            session_key=session_key,
            target=needs_approval[0] if len(needs_approval) == 1 else None,
            targets=tuple(needs_approval) if len(needs_approval) > 1 else None,
            allow_always=True,
        )
        approval_id, decision = await self._request_decision(request)

        if sandbox_root and sandbox_root.strip():
            # NOTE: an allow for one target here covers the entire sandbox root.
            patterns = [sandbox_root_glob(sandbox_root, home=self._home)]
        else:
            patterns = [dir_glob(target, home=self._home) for target in needs_approval]
        unique_patterns = tuple(dict.fromkeys(p for p in patterns if p.strip()))
        for pattern in unique_patterns:
            self._session_cache.record_approval(session_key, tool_group, pattern)

        persisted = None
        if decision == "allow-always":
            persisted = self._persist_grants(tool_group, unique_patterns, summary)

        return ApprovalOutcome(
            decision=decision,
            approval_id=approval_id,
            patterns=unique_patterns,
            bookkeeping=bookkeeping,
            persisted=persisted,
        )

    async def ensure_browser_tool_approval(
        self,
        *,
        tool_group: ToolGroup,
        summary: str,
        cwd: str | None = None,
        session_key: str | None = None,
        agent_id: str | None = None,
        always_ask: bool = False,
    ) -> ApprovalOutcome:
        """Gate a browser action; ``always_ask`` bypasses the session cache entirely."""
        if not self._policy.gates_browser:
            return ApprovalOutcome()

        skip_cache = always_ask or self._policy.browser_mode is BrowserApprovalMode.ALWAYS
        if not skip_cache and self._session_cache.has_approval(session_key, tool_group):
            return ApprovalOutcome()

        request = ToolApprovalRequest(
            tool_name=BROWSER_TOOL_NAME,
            tool_group=tool_group,
            summary=summary,
            cwd=cwd,
            agent_id=agent_id,
            session_key=session_key,
            allow_always=False,
        )
        approval_id, decision = await self._request_decision(request)
        if not skip_cache:
            self._session_cache.record_approval(session_key, tool_group)
        return ApprovalOutcome(decision=decision, approval_id=approval_id)

    async def _request_decision(self, request: ToolApprovalRequest) -> tuple[str, Decision]:
        try:
            approval_id, decision = await self._requester.request(
                request, self._policy.timeout_ms
            )
        except Exception as exc:
            _log.warning("Tool approval request for %s failed: %s", request.tool_name, exc)
            self._deny(request, None, "approval-request-failed", cause=exc)
        if decision == "deny":
            self._deny(request, approval_id, "user-denied")
        if decision is None:
            self._deny(request, approval_id, "approval-timeout")
        return approval_id, decision

    def _deny(
        self,
        request: ToolApprovalRequest,
        approval_id: str | None,
        reason: DenyReason,
        *,
        cause: Exception | None = None,
    ) -> NoReturn:
        if request.session_key:
            self._events.enqueue(
                f"Tool denied (id={approval_id or 'unknown'}, {reason}): {request.summary}",
                session_key=request.session_key,
                context_key=f"tool:{request.tool_name}",
            )
        _log.info("Tool %s denied (%s)", request.tool_name, reason)
        raise ToolApprovalDeniedError(request.tool_name, reason, approval_id) from cause

    def _load_grants(self) -> ToolApprovalsSnapshot | None:
        try:
            return self._store.read_snapshot()
        except OSError as exc:
            _log.warning("Tool approvals file unreadable, prompting instead: %s", exc)
            return None

    def _record_grant_use(
        self,
        base_hash: str,
        file: ToolApprovalsFile,
        matched: list[ToolApprovalsEntry],
        summary: str,
    ) -> PersistOutcome:
        try:
            updated = self._store.record_use(file, [e.id for e in matched], last_example=summary)
            self._store.replace_if_unchanged(updated, base_hash)
        except ToolApprovalsConflictError:
            return PersistOutcome.failed("conflict")
        except OSError as exc:
            _log.warning("Failed to record tool approval use: %s", exc)
            return PersistOutcome.failed(str(exc))
        return PersistOutcome.success()

    def _persist_grants(
        self,
        tool_group: ToolGroup,
        patterns: Sequence[str],
        summary: str,
    ) -> PersistOutcome:
        for _ in range(MAX_PERSIST_ATTEMPTS):
            try:
                snapshot = self._store.read_snapshot()
                file = snapshot.file
                for pattern in patterns:
                    file = self._store.add_entry(file, tool_group, pattern, last_example=summary)
                if file == snapshot.file:
                    return PersistOutcome.success()
                self._store.replace_if_unchanged(file, snapshot.hash)
            except ToolApprovalsConflictError:
                continue
            except OSError as exc:
                _log.warning("Failed to persist allow-always grant: %s", exc)
                return PersistOutcome.failed(str(exc))
            return PersistOutcome.success()
        _log.warning("Allow-always grant not persisted after %d conflicts", MAX_PERSIST_ATTEMPTS)
        return PersistOutcome.failed("conflict")
