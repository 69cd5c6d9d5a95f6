"""Session notifications and the broadcast seam used by the approval engine."""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

MAX_EVENTS_PER_SESSION = 20
MAX_SESSIONS = 500

TOOL_APPROVAL_REQUESTED = "tool.approval.requested"
TOOL_APPROVAL_RESOLVED = "tool.approval.resolved"


class EventSink(Protocol):
    """Fan-out to connected observers (UI, CLI)."""

    async def broadcast(
        self,
        event: str,
        payload: dict[str, Any],
        *,
        drop_if_slow: bool = True,
    ) -> None: ...


@dataclass(frozen=True)
class SystemEvent:
    text: str
    context_key: str | None
    ts_ms: int


class SystemEventQueue:
    """Bounded per-session queue of notices surfaced to the agent's next turn.

    At most ``max_sessions`` queues are held; enqueueing for a new session past
    that drops the queue whose last event is oldest.
    """

    def __init__(
        self,
        *,
        max_events: int = MAX_EVENTS_PER_SESSION,
        max_sessions: int = MAX_SESSIONS,
        now_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ) -> None:
        self._queues: dict[str, deque[SystemEvent]] = {}
        self._max_events = max_events
        self._max_sessions = max_sessions
        self._now_ms = now_ms
        self._lock = threading.Lock()

    def enqueue(self, text: str, *, session_key: str, context_key: str | None = None) -> None:
        key = session_key.strip()
        if not key or not text:
            return
        with self._lock:
            queue = self._queues.get(key)
            if queue is None:
                self._evict_oldest(reserve=1)
                queue = self._queues[key] = deque(maxlen=self._max_events)
            queue.append(SystemEvent(text=text, context_key=context_key, ts_ms=self._now_ms()))

    def peek(self, session_key: str) -> list[SystemEvent]:
        with self._lock:
            return list(self._queues.get(session_key.strip(), ()))

    def drain(self, session_key: str) -> list[SystemEvent]:
        with self._lock:
            queue = self._queues.pop(session_key.strip(), None)
        return list(queue) if queue else []

    def _evict_oldest(self, reserve: int = 0) -> None:
        overflow = len(self._queues) + reserve - self._max_sessions
        if overflow <= 0:
            return
        oldest = sorted(self._queues.items(), key=lambda item: item[1][-1].ts_ms)
        for key, _ in oldest[:overflow]:
            del self._queues[key]
