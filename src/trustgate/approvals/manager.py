"""Pending approval records and their single-assignment decisions.

Every record owns one ``asyncio.Future`` and one loop timer. ``resolve`` and
the timer both run on the event loop and both check the future first, so
whichever fires first decides and the other is a no-op.

Dependencies: approvals.types, approvals.events
Wired in: runtime.py → build_runtime(), server/methods.py → tool.approval.*
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from trustgate.approvals.events import TOOL_APPROVAL_REQUESTED, EventSink
from trustgate.approvals.types import (
    Decision,
    DuplicateApprovalIdError,
    ToolApprovalRecord,
    ToolApprovalRequest,
)

_log = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class _PendingApproval:
    record: ToolApprovalRecord
    future: asyncio.Future[Decision | None]
    timer: asyncio.TimerHandle


class ToolApprovalManager:
    def __init__(
        self,
        *,
        now_ms: Callable[[], int] = _now_ms,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._pending: dict[str, _PendingApproval] = {}
        self._now_ms = now_ms
        self._id_factory = id_factory

    def create(
        self,
        request: ToolApprovalRequest,
        timeout_ms: int,
        approval_id: str | None = None,
    ) -> ToolApprovalRecord:
        """Register a pending record; the expiry timer starts now.

        Must be called from the running event loop.
        """
        explicit = approval_id.strip() if approval_id else ""
        if explicit and explicit in self._pending:
            raise DuplicateApprovalIdError(explicit)
        record_id = explicit or self._id_factory()
        loop = asyncio.get_running_loop()
        now = self._now_ms()
        record = ToolApprovalRecord(
            id=record_id,
            request=request,
            created_at_ms=now,
            expires_at_ms=now + timeout_ms,
        )
        self._pending[record_id] = _PendingApproval(
            record=record,
            future=loop.create_future(),
            timer=loop.call_later(timeout_ms / 1000, self._expire, record_id),
        )
        _log.info("Tool approval %s created for %s", record_id, request.tool_group)
        return record

    async def await_decision(
        self,
        record: ToolApprovalRecord,
        timeout_ms: int | None = None,
    ) -> Decision | None:
        """Wait for ``resolve`` or expiry. ``None`` means no decision (deny).

        A *timeout_ms* re-arms the expiry timer from now.
        """
        pending = self._pending.get(record.id)
        if pending is None or pending.record is not record:
            return record.decision
        if timeout_ms is not None:
            pending.timer.cancel()
            loop = asyncio.get_running_loop()
            pending.timer = loop.call_later(timeout_ms / 1000, self._expire, record.id)
            record.expires_at_ms = self._now_ms() + timeout_ms
        # shield: an abandoned waiter leaves the record to expire on its own
        return await asyncio.shield(pending.future)

    def resolve(self, approval_id: str, decision: Decision, resolved_by: str | None = None) -> bool:
        pending = self._pending.pop(approval_id, None)
        if pending is None or pending.future.done():
            return False
        pending.timer.cancel()
        pending.record.resolved_at_ms = self._now_ms()
        pending.record.decision = decision
        pending.record.resolved_by = resolved_by
        pending.future.set_result(decision)
        _log.info("Tool approval %s resolved: %s", approval_id, decision)
        return True

    def get_snapshot(self, approval_id: str) -> ToolApprovalRecord | None:
        pending = self._pending.get(approval_id)
        return pending.record if pending is not None else None

    def pending_records(self) -> list[ToolApprovalRecord]:
        return [pending.record for pending in self._pending.values()]

    async def submit(
        self,
        request: ToolApprovalRequest,
        timeout_ms: int,
        sink: EventSink,
        approval_id: str | None = None,
    ) -> tuple[ToolApprovalRecord, Decision | None]:
        """Create, announce to observers, and wait for the decision."""
        record = self.create(request, timeout_ms, approval_id)
        try:
            await sink.broadcast(
                TOOL_APPROVAL_REQUESTED,
                {
                    "id": record.id,
                    "request": request.to_dict(),
                    "createdAtMs": record.created_at_ms,
                    "expiresAtMs": record.expires_at_ms,
                },
                drop_if_slow=True,
            )
        except Exception:
            self._expire(record.id)
            raise
        return record, await self.await_decision(record)

    def _expire(self, approval_id: str) -> None:
        pending = self._pending.pop(approval_id, None)
        if pending is None or pending.future.done():
            return
        pending.future.set_result(None)
        _log.info("Tool approval %s expired without a decision", approval_id)


class ManagerApprovalRequester:
    """In-process requester: the gate talks straight to the manager."""

    def __init__(self, manager: ToolApprovalManager, sink: EventSink) -> None:
        self._manager = manager
        self._sink = sink

    async def request(
        self,
        request: ToolApprovalRequest,
        timeout_ms: int,
    ) -> tuple[str, Decision | None]:
        record, decision = await self._manager.submit(request, timeout_ms, self._sink)
        return record.id, decision
