"""Tests for per-session approval memory."""

from __future__ import annotations

import pytest

from trustgate.approvals.events import SystemEventQueue
from trustgate.approvals.session_cache import SessionApprovalCache
from conftest import FakeClock


@pytest.fixture()
def cache(clock: FakeClock) -> SessionApprovalCache:
    return SessionApprovalCache(max_sessions=3, max_age_ms=10_000, now_ms=clock)


def test_file_pattern_covers_targets_below_it(cache: SessionApprovalCache) -> None:
    cache.record_approval("s1", "fs.read", "/proj/**")
    assert cache.has_approval("s1", "fs.read", "/proj/src/a.py")
    assert not cache.has_approval("s1", "fs.read", "/elsewhere/a.py")
    assert not cache.has_approval("s1", "fs.write", "/proj/src/a.py")


def test_sessions_are_isolated(cache: SessionApprovalCache) -> None:
    cache.record_approval("s1", "fs.write", "/proj/**")
    assert not cache.has_approval("s2", "fs.write", "/proj/a")


def test_blank_session_key_never_caches(cache: SessionApprovalCache) -> None:
    cache.record_approval("  ", "fs.read", "/proj/**")
    cache.record_approval(None, "browser.read")
    assert len(cache) == 0
    assert not cache.has_approval(None, "browser.read")


def test_browser_grants_are_per_group(cache: SessionApprovalCache) -> None:
    cache.record_approval("s1", "browser.read")
    assert cache.has_approval("s1", "browser.read")
    assert not cache.has_approval("s1", "browser.control")


def test_file_lookup_without_target_is_false(cache: SessionApprovalCache) -> None:
    cache.record_approval("s1", "fs.read", "/proj/**")
    assert not cache.has_approval("s1", "fs.read")


def test_idle_sessions_expire(cache: SessionApprovalCache, clock: FakeClock) -> None:
    cache.record_approval("old", "browser.read")
    clock.advance(10_001)
    cache.record_approval("new", "browser.read")
    assert not cache.has_approval("old", "browser.read")
    assert cache.has_approval("new", "browser.read")


def test_idle_session_is_not_revived_by_lookup(
    cache: SessionApprovalCache, clock: FakeClock
) -> None:
    cache.record_approval("s1", "fs.read", "/proj/**")
    clock.advance(10_001)
    assert not cache.has_approval("s1", "fs.read", "/proj/a.txt")
    assert len(cache) == 0


def test_least_recently_used_session_is_evicted(
    cache: SessionApprovalCache, clock: FakeClock
) -> None:
    for key in ("a", "b", "c"):
        cache.record_approval(key, "browser.read")
        clock.advance(1)
    cache.has_approval("a", "browser.read")  # touch
    clock.advance(1)
    cache.record_approval("d", "browser.read")
    cache.record_approval("e", "browser.read")

    assert len(cache) == 3
    assert cache.has_approval("a", "browser.read")
    assert not cache.has_approval("b", "browser.read")


def test_clear(cache: SessionApprovalCache) -> None:
    cache.record_approval("s1", "browser.read")
    cache.record_approval("s2", "browser.read")
    cache.clear("s1")
    assert not cache.has_approval("s1", "browser.read")
    cache.clear()
    assert len(cache) == 0


class TestSystemEventQueue:
    def test_drain_returns_events_once(self, clock: FakeClock) -> None:
        queue = SystemEventQueue(now_ms=clock)
        queue.enqueue("denied", session_key="s1", context_key="tool:read")
        assert [e.text for e in queue.peek("s1")] == ["denied"]
        events = queue.drain("s1")
        assert events[0].context_key == "tool:read"
        assert events[0].ts_ms == clock.now
        assert queue.drain("s1") == []

    def test_queue_is_bounded(self) -> None:
        queue = SystemEventQueue(max_events=2)
        for i in range(5):
            queue.enqueue(f"event {i}", session_key="s1")
        assert [e.text for e in queue.drain("s1")] == ["event 3", "event 4"]

    def test_oldest_session_queue_is_dropped(self, clock: FakeClock) -> None:
        queue = SystemEventQueue(max_sessions=2, now_ms=clock)
        for key in ("s1", "s2"):
            queue.enqueue("denied", session_key=key)
            clock.advance(1)
        queue.enqueue("denied again", session_key="s1")
        clock.advance(1)
        queue.enqueue("denied", session_key="s3")

        assert queue.peek("s2") == []
        assert [e.text for e in queue.drain("s1")] == ["denied", "denied again"]
        assert len(queue.drain("s3")) == 1
