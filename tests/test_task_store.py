from __future__ import annotations

import pytest

from pm_agent.db.db import AgentDB
from pm_agent.models.task_contracts import Task, priority_rank
from pm_agent.orchestration.task_store import TASK_EVENTS_CHANNEL, TaskStore
from pm_agent.store.cache import InMemoryKeyValueStore, WriteBehindQueue


def _store() -> tuple[TaskStore, InMemoryKeyValueStore, WriteBehindQueue]:
    cache = InMemoryKeyValueStore()
    writes = WriteBehindQueue()
    return TaskStore(AgentDB(), cache, writes), cache, writes


def _task(
    title: str, priority: str = "medium", generated_at: int = 1000, **fields: object
) -> Task:
    return Task(
        project_id="p1", title=title, priority=priority, generated_at=generated_at, **fields
    )


def test_next_executable_prefers_priority_then_oldest() -> None:
    store, _, _ = _store()
    store.create(_task("old medium", "medium", 1000, status="approved"))
    store.create(_task("new critical", "critical", 3000, status="approved"))
    store.create(
        _task("old critical", "critical", 2000, status="approved", kanban_status="backlog")
    )
    store.create(_task("pending high", "high", 500))

    chosen = store.find_next_executable()

    assert chosen is not None
    assert chosen.title == "old critical"


def test_next_executable_ignores_tasks_already_moving_on_the_board() -> None:
    store, _, _ = _store()
    store.create(_task("running", "critical", status="approved", kanban_status="in_progress"))
    store.create(_task("finished", "critical", status="approved", kanban_status="done"))
    store.create(_task("in review", "high", status="approved", kanban_status="review"))
    store.create(_task("rejected", "critical", status="rejected"))

    assert store.find_next_executable() is None
    assert not any(task.is_executable for task in store.list())

    ready = store.create(_task("ready", "low", status="approved"))
    assert ready.is_executable
    assert store.find_next_executable().title == "ready"


def test_list_orders_by_priority_then_newest() -> None:
    store, _, _ = _store()
    store.create(_task("low", "low", 5000))
    store.create(_task("medium older", "medium", 1000))
    store.create(_task("medium newer", "medium", 2000))
    store.create(_task("critical", "critical", 100))

    assert [task.title for task in store.list()] == [
        "critical",
        "medium newer",
        "medium older",
        "low",
    ]


def test_list_filters_by_project_and_axes() -> None:
    store, _, _ = _store()
    store.create(_task("a", status="approved"))
    store.create(Task(project_id="p2", title="b", status="approved"))
    store.create(_task("c", kanban_status="backlog"))

    assert [task.title for task in store.list(project_id="p2")] == ["b"]
    assert {task.title for task in store.list(status="approved")} == {"a", "b"}
    assert [task.title for task in store.list(kanban_status="backlog")] == ["c"]


def test_update_unknown_task_raises() -> None:
    store, _, _ = _store()
    with pytest.raises(ValueError, match="unknown_task"):
        store.update("task-missing", status="approved")


def test_update_rejects_immutable_fields() -> None:
    store, _, _ = _store()
    task = store.create(_task("fix login"))
    with pytest.raises(ValueError, match="immutable_field:project_id"):
        store.update(task.id, project_id="p9")


def test_update_validates_status_values() -> None:
    store, _, _ = _store()
    task = store.create(_task("fix login"))
    with pytest.raises(ValueError):
        store.set_status(task.id, "archived")
    assert store.get(task.id).status == "pending"


def test_status_and_kanban_move_independently() -> None:
    store, _, _ = _store()
    task = store.create(_task("write docs"))

    store.reject(task.id)
    updated = store.set_kanban_status(task.id, "done")

    assert updated.status == "rejected"
    assert updated.kanban_status == "done"


def test_approve_records_who_approved() -> None:
    store, _, _ = _store()
    task = store.create(_task("ship it"))
    approved = store.approve(task.id, approved_by="telegram")
    assert approved.status == "approved"
    assert store.get(task.id).approved_by == "telegram"


def test_writes_invalidate_cache_and_publish_through_queue() -> None:
    store, cache, writes = _store()
    cache.set("pm:tasks:all", ["stale"])
    task = store.create(_task("cache me"))
    cache.set(f"pm:task:{task.id}", "stale")
    store.set_status(task.id, "approved")

    assert cache.published == []
    writes.drain()

    assert cache.get("pm:tasks:all") is None
    assert cache.get(f"pm:task:{task.id}") is None
    messages = [message for channel, message in cache.published if channel == TASK_EVENTS_CHANNEL]
    assert [message["type"] for message in messages] == ["task_created", "task_updated"]
    assert messages[-1]["status"] == "approved"


def test_priority_rank_puts_unknown_last() -> None:
    assert priority_rank("critical") < priority_rank("high") < priority_rank("low")
    assert priority_rank("someday") == 5
