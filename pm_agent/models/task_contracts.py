"""Pydantic contracts for tasks and approval-gated pending actions."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pm_agent.shared.clock import new_id, now_ms

TaskType = Literal[
    "development",
    "review",
    "planning",
    "maintenance",
    "investigation",
    "notification",
    "documentation",
    "security",
    "improvement",
]
Priority = Literal["critical", "high", "medium", "low"]
TaskStatus = Literal["pending", "approved", "rejected", "in_progress", "completed", "failed"]
KanbanStatus = Literal["not_started", "backlog", "in_progress", "review", "done"]
GeneratedBy = Literal["manual", "health_check", "deep_analysis", "chat", "plan_sync"]
ActionStatus = Literal["pending", "approved", "rejected", "expired"]
ActionType = Literal[
    "create_issue",
    "comment_issue",
    "create_repo",
    "create_pr",
    "merge_pr",
    "close_issue",
    "notify",
    "custom",
]

PRIORITY_RANK: dict[str, int] = {"critical": 1, "high": 2, "medium": 3, "low": 4}
UNRANKED_PRIORITY = 5
EXECUTABLE_KANBAN_STATUSES = ("backlog", "not_started")


def priority_rank(priority: str) -> int:
    return PRIORITY_RANK.get(priority, UNRANKED_PRIORITY)


class SuggestedAction(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: ActionType
    description: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)


class Task(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: str = Field(default_factory=lambda: new_id("task"))
    project_id: str = Field(min_length=1)
    type: TaskType = "development"
    priority: Priority = "medium"
    title: str = Field(min_length=1)
    description: str = ""
    context: str = ""
    suggested_actions: list[SuggestedAction] = Field(default_factory=list)
    related_issues: list[str] = Field(default_factory=list)
    related_prs: list[str] = Field(default_factory=list)
    status: TaskStatus = "pending"
    kanban_status: KanbanStatus = "not_started"
    generated_at: int = Field(default_factory=now_ms)
    completed_at: int | None = None
    approved_by: Literal["telegram", "web", "auto"] | None = None
    generated_by: GeneratedBy = "manual"

    @property
    def is_executable(self) -> bool:
        return self.status == "approved" and self.kanban_status in EXECUTABLE_KANBAN_STATUSES


class PendingAction(BaseModel):
    """A proposed side effect awaiting a human decision.

    ``expires_at`` is fixed when the record is created and never extended.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: new_id("action"))
    task_id: str = "manual"
    action: SuggestedAction
    created_at: int = Field(default_factory=now_ms)
    expires_at: int
    status: ActionStatus = "pending"
    telegram_message_id: int | None = None

    @model_validator(mode="after")
    def _expiry_after_creation(self) -> "PendingAction":
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    def is_expired(self, now: int) -> bool:
        return self.expires_at < now
