from __future__ import annotations

import logging
from typing import Any

import pytest

from pm_agent.store.cache import InMemoryKeyValueStore, WriteBehindQueue


def test_queue_drops_oldest_write_when_full(caplog: pytest.LogCaptureFixture) -> None:
    ran: list[str] = []
    queue = WriteBehindQueue(max_size=2)

    with caplog.at_level(logging.WARNING, logger="pm_agent.store.cache"):
        for name in ("first", "second", "third"):
            queue.submit(name, lambda name=name: ran.append(name))

    assert len(queue) == 2
    assert queue.dropped == 1
    assert "dropping oldest write: first" in caplog.text
    assert queue.drain() == 2
    assert ran == ["second", "third"]


def test_write_is_retried_with_backoff_then_succeeds() -> None:
    sleeps: list[float] = []
    attempts: list[int] = []

    def flaky() -> None:
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("cache offline")

    queue = WriteBehindQueue(max_attempts=3, retry_delay_s=0.5, sleep=sleeps.append)
    queue.submit("cache.set x", flaky)

    assert queue.drain() == 1
    assert len(attempts) == 3
    assert sleeps == [0.5, 1.0]
    assert queue.failed == []


def test_exhausted_write_is_logged_and_discarded(caplog: pytest.LogCaptureFixture) -> None:
    def broken() -> None:
        raise ConnectionError("cache offline")

    queue = WriteBehindQueue(max_attempts=2, sleep=lambda _: None)
    queue.submit("cache.publish pm:events:tasks", broken)

    with caplog.at_level(logging.ERROR, logger="pm_agent.store.cache"):
        assert queue.drain() == 0

    assert queue.failed == ["cache.publish pm:events:tasks"]
    assert "Write failed after 2 attempts" in caplog.text
    assert len(queue) == 0


def test_background_worker_flushes_on_stop() -> None:
    ran: list[int] = []
    queue = WriteBehindQueue()
    queue.start()
    for value in range(5):
        queue.submit(f"write {value}", lambda value=value: ran.append(value))
    queue.stop()

    assert sorted(ran) == [0, 1, 2, 3, 4]
    assert len(queue) == 0


def test_queue_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError, match="max_size must be >= 1"):
        WriteBehindQueue(max_size=0)


def test_store_ttl_and_pattern_invalidation() -> None:
    now = [100.0]
    store = InMemoryKeyValueStore(clock=lambda: now[0])
    store.set("pm:tasks:all", [1])
    store.set("pm:tasks:p1", [2])
    store.set("pm:task:1", {"id": 1}, ttl_s=10)

    assert store.invalidate("pm:tasks:*") == 2
    assert store.get("pm:tasks:all") is None
    assert store.get("pm:task:1") == {"id": 1}

    now[0] += 10
    assert store.get("pm:task:1") is None


def test_store_publish_reaches_subscribers() -> None:
    store = InMemoryKeyValueStore()
    received: list[tuple[str, Any]] = []
    store.subscribe(
        "pm:events:tasks", lambda channel, message: received.append((channel, message))
    )

    store.publish("pm:events:tasks", {"type": "task_created"})
    store.publish("pm:events:other", {"type": "ignored"})

    assert received == [("pm:events:tasks", {"type": "task_created"})]
    assert len(store.published) == 2
