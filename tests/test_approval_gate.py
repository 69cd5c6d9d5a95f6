"""Tests for the pre-execution tool approval gate."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest

from trustgate.approvals.events import SystemEventQueue
from trustgate.approvals.gate import ToolApprovalGate
from trustgate.approvals.policy import BrowserApprovalMode, FileApprovalMode, ToolApprovalsPolicy
from trustgate.approvals.session_cache import SessionApprovalCache
from trustgate.approvals.store import ToolApprovalsStore
from trustgate.approvals.types import (
    PersistOutcome,
    ToolApprovalDeniedError,
    ToolApprovalRequest,
    ToolApprovalsConflictError,
    ToolApprovalsFile,
    ToolApprovalsSnapshot,
)
from conftest import FakeClock


class ScriptedRequester:
    """Answers approval requests from a list of decisions."""

    def __init__(self, *decisions: Any) -> None:
        self.decisions = list(decisions)
        self.requests: list[ToolApprovalRequest] = []

    async def request(self, request: ToolApprovalRequest, timeout_ms: int) -> tuple[str, Any]:
        self.requests.append(request)
        decision = self.decisions.pop(0)
        if isinstance(decision, Exception):
            raise decision
        return f"approval-{len(self.requests)}", decision


class ConflictingStore(ToolApprovalsStore):
    def replace_if_unchanged(
        self, file: ToolApprovalsFile, base_hash: str
    ) -> ToolApprovalsSnapshot:
        raise ToolApprovalsConflictError("stale_base_hash", "changed")


@pytest.fixture()
def workdir(tmp_path: Path) -> Path:
    root = tmp_path.resolve() / "work"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.py").write_text("print('hi')\n")
    (root / "docs").mkdir()
    (root / "docs" / "readme.md").write_text("# hi\n")
    return root


@pytest.fixture()
def store(state_dir: Path, clock: FakeClock) -> ToolApprovalsStore:
    return ToolApprovalsStore(state_dir / "tool-approvals.json", now_ms=clock)


@pytest.fixture()
def events() -> SystemEventQueue:
    return SystemEventQueue()


def _policy(
    file_mode: FileApprovalMode = FileApprovalMode.ON_NEW_PATH,
    browser_mode: BrowserApprovalMode = BrowserApprovalMode.PER_SESSION,
    enabled: bool = True,
) -> ToolApprovalsPolicy:
    return ToolApprovalsPolicy(
        enabled=enabled, timeout_ms=1_000, file_mode=file_mode, browser_mode=browser_mode
    )


def _gate(
    requester: ScriptedRequester,
    store: ToolApprovalsStore,
    events: SystemEventQueue,
    policy: ToolApprovalsPolicy | None = None,
) -> ToolApprovalGate:
    return ToolApprovalGate(
        policy or _policy(),
        store,
        SessionApprovalCache(),
        requester,
        events,
        home=str(store.path.parent),
    )


async def _read(
    gate: ToolApprovalGate, workdir: Path, *paths: str, session_key: str | None = "s1"
) -> Any:
    return await gate.ensure_file_tool_approval(
        tool_name="read_file",
        tool_group="fs.read",
        cwd=str(workdir),
        paths=list(paths),
        summary=f"Read {', '.join(paths)}",
        session_key=session_key,
    )


class TestFileTools:
    @pytest.mark.asyncio()
    async def test_disabled_policy_never_prompts(
        self, workdir: Path, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        requester = ScriptedRequester()
        gate = _gate(requester, store, events, _policy(enabled=False))
        outcome = await _read(gate, workdir, "src/main.py")
        assert outcome.approved is True
        assert outcome.decision is None
        assert requester.requests == []

    @pytest.mark.asyncio()
    async def test_session_cache_reduces_prompts(
        self, workdir: Path, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        requester = ScriptedRequester("allow-once", "allow-once")
        gate = _gate(requester, store, events)

        first = await _read(gate, workdir, "src/main.py")
        assert first.decision == "allow-once"
        assert first.approval_id == "approval-1"
        assert first.patterns == (f"{workdir / 'src'}{os.sep}**",)
        assert requester.requests[0].target == str(workdir / "src" / "main.py")
        assert requester.requests[0].allow_always is True

        second = await _read(gate, workdir, "src/other.py")
        assert second.decision is None
        assert len(requester.requests) == 1

        await _read(gate, workdir, "src/main.py", session_key="s2")
        assert len(requester.requests) == 2

    @pytest.mark.asyncio()
    async def test_allow_always_persists_across_sessions(
        self, workdir: Path, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        requester = ScriptedRequester("allow-always")
        gate = _gate(requester, store, events)

        outcome = await _read(gate, workdir, "docs/readme.md", session_key="s1")
        assert outcome.persisted == PersistOutcome.success()
        entries = store.load().entries
        assert [e.pattern for e in entries] == [f"{workdir / 'docs'}{os.sep}**"]

        later = await _read(gate, workdir, "docs/readme.md", session_key="fresh")
        assert later.decision is None
        assert later.bookkeeping == PersistOutcome.success()
        assert len(requester.requests) == 1
        assert store.load().entries[0].last_example == "Read docs/readme.md"

    @pytest.mark.asyncio()
    async def test_missing_targets_are_batched(
        self, workdir: Path, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        requester = ScriptedRequester("allow-once")
        gate = _gate(requester, store, events)
        outcome = await _read(gate, workdir, "src/main.py", "docs/readme.md", "src/main.py")

        request = requester.requests[0]
        assert request.target is None
        assert request.targets == (
            str(workdir / "src" / "main.py"),
            str(workdir / "docs" / "readme.md"),
        )
        assert len(outcome.patterns) == 2

    @pytest.mark.asyncio()
    async def test_always_mode_prompts_despite_grants(
        self, workdir: Path, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        snapshot = store.get()
        store.replace_if_unchanged(
            store.add_entry(snapshot.file, "fs.read", f"{workdir}/**"), snapshot.hash
        )
        requester = ScriptedRequester("allow-once", "allow-once")
        gate = _gate(requester, store, events, _policy(file_mode=FileApprovalMode.ALWAYS))
        await _read(gate, workdir, "src/main.py")
        await _read(gate, workdir, "src/main.py")
        assert len(requester.requests) == 2

    @pytest.mark.asyncio()
    async def test_sandbox_root_grant_covers_whole_root(
        self, workdir: Path, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        requester = ScriptedRequester("allow-once")
        gate = _gate(requester, store, events)
        outcome = await gate.ensure_file_tool_approval(
            tool_name="write_file",
            tool_group="fs.write",
            cwd=str(workdir),
            paths=["src/main.py"],
            summary="Write main.py",
            session_key="s1",
            sandbox_root=str(workdir),
        )
        assert outcome.patterns == (f"{workdir}{os.sep}**",)

    @pytest.mark.asyncio()
    async def test_empty_paths_need_no_approval(
        self, workdir: Path, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        requester = ScriptedRequester()
        outcome = await _read(_gate(requester, store, events), workdir, "  ")
        assert outcome.decision is None
        assert requester.requests == []

    @pytest.mark.asyncio()
    async def test_persist_conflict_does_not_unwind_approval(
        self, workdir: Path, state_dir: Path, events: SystemEventQueue
    ) -> None:
        store = ConflictingStore(state_dir / "tool-approvals.json")
        gate = _gate(ScriptedRequester("allow-always"), store, events)
        outcome = await _read(gate, workdir, "src/main.py")
        assert outcome.approved is True
        assert outcome.persisted == PersistOutcome.failed("conflict")


class TestDenials:
    @pytest.mark.asyncio()
    async def test_user_denied(
        self, workdir: Path, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        gate = _gate(ScriptedRequester("deny"), store, events)
        with pytest.raises(ToolApprovalDeniedError) as exc_info:
            await _read(gate, workdir, "src/main.py")

        assert exc_info.value.reason == "user-denied"
        assert exc_info.value.approval_id == "approval-1"
        assert str(exc_info.value) == "Tool denied: read_file"
        [event] = events.drain("s1")
        assert event.text == "Tool denied (id=approval-1, user-denied): Read src/main.py"
        assert event.context_key == "tool:read_file"

    @pytest.mark.asyncio()
    async def test_timeout_is_a_denial(
        self, workdir: Path, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        gate = _gate(ScriptedRequester(None), store, events)
        with pytest.raises(ToolApprovalDeniedError) as exc_info:
            await _read(gate, workdir, "src/main.py")
        assert exc_info.value.reason == "approval-timeout"
        assert str(exc_info.value) == "Tool denied (approval-timeout): read_file"

    @pytest.mark.asyncio()
    async def test_requester_failure_is_a_denial(
        self, workdir: Path, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        gate = _gate(ScriptedRequester(ConnectionError("no ui")), store, events)
        with pytest.raises(ToolApprovalDeniedError) as exc_info:
            await _read(gate, workdir, "src/main.py")
        assert exc_info.value.reason == "approval-request-failed"
        assert exc_info.value.approval_id is None
        [event] = events.drain("s1")
        assert event.text.startswith("Tool denied (id=unknown, approval-request-failed)")

    @pytest.mark.asyncio()
    async def test_denial_without_session_enqueues_nothing(
        self, workdir: Path, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        gate = _gate(ScriptedRequester("deny"), store, events)
        with pytest.raises(ToolApprovalDeniedError):
            await _read(gate, workdir, "src/main.py", session_key=None)
        assert events.peek("s1") == []

    @pytest.mark.asyncio()
    async def test_denied_target_is_not_cached(
        self, workdir: Path, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        requester = ScriptedRequester("deny", "allow-once")
        gate = _gate(requester, store, events)
        with pytest.raises(ToolApprovalDeniedError):
            await _read(gate, workdir, "src/main.py")
        await _read(gate, workdir, "src/main.py")
        assert len(requester.requests) == 2


class TestBrowserTools:
    @pytest.mark.asyncio()
    async def test_per_session_caches_group(
        self, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        requester = ScriptedRequester("allow-once")
        gate = _gate(requester, store, events)
        first = await gate.ensure_browser_tool_approval(
            tool_group="browser.read", summary="Open example.com", session_key="s1"
        )
        second = await gate.ensure_browser_tool_approval(
            tool_group="browser.read", summary="Open example.org", session_key="s1"
        )
        assert first.decision == "allow-once"
        assert second.decision is None
        request = requester.requests[0]
        assert request.tool_name == "browser"
        assert request.allow_always is False

    @pytest.mark.asyncio()
    async def test_always_ask_bypasses_cache(
        self, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        requester = ScriptedRequester("allow-once", "allow-once", "allow-once")
        gate = _gate(requester, store, events)
        for _ in range(2):
            await gate.ensure_browser_tool_approval(
                tool_group="browser.control",
                summary="Submit form",
                session_key="s1",
                always_ask=True,
            )
        assert len(requester.requests) == 2
        await gate.ensure_browser_tool_approval(
            tool_group="browser.control", summary="Click", session_key="s1"
        )
        assert len(requester.requests) == 3

    @pytest.mark.asyncio()
    async def test_browser_off_never_prompts(
        self, store: ToolApprovalsStore, events: SystemEventQueue
    ) -> None:
        requester = ScriptedRequester()
        gate = _gate(requester, store, events, _policy(browser_mode=BrowserApprovalMode.OFF))
        outcome = await gate.ensure_browser_tool_approval(
            tool_group="browser.read", summary="Open", session_key="s1"
        )
        assert outcome.decision is None
        assert requester.requests == []
