"""Task persistence with priority-ordered queries and cache invalidation."""

from __future__ import annotations

import logging
from typing import Any

from pm_agent.db.db import AgentDB
from pm_agent.models.task_contracts import Task
from pm_agent.store.cache import KeyValueStore, WriteBehindQueue

logger = logging.getLogger(__name__)

TASK_EVENTS_CHANNEL = "pm:events:tasks"
TASK_KEY_PREFIX = "pm:task:"
TASK_LIST_PATTERN = "pm:tasks:*"

_IMMUTABLE_FIELDS = {"id", "project_id", "generated_at", "generated_by"}


class TaskStore:
    """Tasks are never deleted; ``status`` and ``kanban_status`` move independently."""

    def __init__(self, db: AgentDB, cache: KeyValueStore, writes: WriteBehindQueue) -> None:
        self.db = db
        self.cache = cache
        self.writes = writes

    def _after_write(self, task: Task, event_type: str) -> None:
        task_key = f"{TASK_KEY_PREFIX}{task.id}"
        message = {"type": event_type, "taskId": task.id, "status": task.status}
        self.writes.submit(f"cache.delete {task_key}", lambda: self.cache.delete(task_key))
        self.writes.submit(
            f"cache.invalidate {TASK_LIST_PATTERN}",
            lambda: self.cache.invalidate(TASK_LIST_PATTERN),
        )
        self.writes.submit(
            f"cache.publish {TASK_EVENTS_CHANNEL} {event_type}",
            lambda: self.cache.publish(TASK_EVENTS_CHANNEL, message),
        )

    def create(self, task: Task) -> Task:
        self.db.upsert_task(task)
        self._after_write(task, "task_created")
        logger.info("Task created: %s [%s] %s", task.id, task.priority, task.title)
        return task

    def get(self, task_id: str) -> Task | None:
        return self.db.get_task(task_id)

    def list(self, project_id: str = "", status: str = "", kanban_status: str = "") -> list[Task]:
        return self.db.list_tasks(
            project_id=project_id, status=status, kanban_status=kanban_status
        )

    def find_next_executable(self) -> Task | None:
        return self.db.next_executable_task()

    def update(self, task_id: str, **fields: Any) -> Task:
        task = self.db.get_task(task_id)
        if task is None:
            raise ValueError("unknown_task")
        blocked = _IMMUTABLE_FIELDS.intersection(fields)
        if blocked:
            raise ValueError(f"immutable_field:{sorted(blocked)[0]}")
        updated = task.model_copy(update={})
        for name, value in fields.items():
            setattr(updated, name, value)
        self.db.upsert_task(updated)
        self._after_write(updated, "task_updated")
        return updated

    def set_status(self, task_id: str, status: str, **fields: Any) -> Task:
        return self.update(task_id, status=status, **fields)

    def set_kanban_status(self, task_id: str, kanban_status: str) -> Task:
        return self.update(task_id, kanban_status=kanban_status)

    def approve(self, task_id: str, approved_by: str = "web") -> Task:
        return self.update(task_id, status="approved", approved_by=approved_by)

    def reject(self, task_id: str) -> Task:
        return self.update(task_id, status="rejected")
