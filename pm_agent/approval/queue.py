"""Approval gate for side-effecting actions: enqueue, decide, expire, execute."""

from __future__ import annotations

import logging
from typing import Any, Callable

from pm_agent.db.db import AgentDB
from pm_agent.events import EventBus
from pm_agent.integrations.commands import CommandError
from pm_agent.integrations.github_connector import GitHubConnector, WriteRequest
from pm_agent.integrations.notifications import LogNotifier, Notifier
from pm_agent.models.task_contracts import PendingAction, SuggestedAction
from pm_agent.models.tool_contracts import ToolResult
from pm_agent.orchestration.task_store import TaskStore
from pm_agent.shared.clock import now_ms

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MINUTES = 60
MANUAL_TASK_ID = "manual"

TERMINAL_STATUSES = {"approved", "rejected", "expired"}
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"approved", "rejected", "expired"},
    "approved": set(),
    "rejected": set(),
    "expired": set(),
}


def assert_transition(from_status: str, to_status: str) -> None:
    if from_status in TERMINAL_STATUSES:
        raise ValueError("invalid_transition:terminal_state")
    if to_status not in ALLOWED_TRANSITIONS.get(from_status, set()):
        raise ValueError("invalid_transition:not_allowed")


class ApprovalQueue:
    def __init__(
        self,
        db: AgentDB,
        connector: GitHubConnector,
        events: EventBus,
        tasks: TaskStore,
        notifier: Notifier | None = None,
        timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.db = db
        self.connector = connector
        self.events = events
        self.tasks = tasks
        self.notifier = notifier or LogNotifier()
        self.timeout_minutes = timeout_minutes
        self.clock = clock

    def enqueue(
        self,
        action: SuggestedAction,
        task_id: str | None = None,
        timeout_minutes: int | None = None,
    ) -> str:
        ttl_minutes = timeout_minutes if timeout_minutes is not None else self.timeout_minutes
        created_at = self.clock()
        pending = PendingAction(
            task_id=task_id or MANUAL_TASK_ID,
            action=action,
            created_at=created_at,
            expires_at=created_at + max(1, ttl_minutes) * 60 * 1000,
        )
        self.db.create_pending_action(pending)
        self.db.append_audit_event(
            "action_enqueued",
            {"action_id": pending.id, "type": action.type, "task_id": pending.task_id},
        )
        self.events.broadcast(
            "action_pending",
            {
                "actionId": pending.id,
                "action": action.model_dump(),
                "expiresAt": pending.expires_at,
            },
        )
        message_id = self.notifier.request_approval(pending)
        if message_id is not None:
            self.set_telegram_message_id(pending.id, message_id)
        logger.info("Action %s queued for approval: %s", pending.id, action.description)
        return pending.id

    def get(self, action_id: str) -> PendingAction | None:
        return self.db.get_pending_action(action_id)

    def list_pending(self) -> list[PendingAction]:
        self.expire_old()
        return self.db.list_pending_actions(status="pending")

    def list_all(self) -> list[PendingAction]:
        return self.db.list_pending_actions()

    def _transition(self, action: PendingAction, to_status: str) -> bool:
        """Compare-and-swap from the observed status; False when another decision won."""

        assert_transition(action.status, to_status)
        changed = self.db.compare_and_set_action_status(action.id, action.status, to_status)
        if changed:
            self.db.append_audit_event(
                f"action_{to_status}", {"action_id": action.id, "from_status": action.status}
            )
        return changed

    def _lost_race(self, action_id: str) -> ToolResult:
        current = self.db.get_pending_action(action_id)
        status = current.status if current is not None else "missing"
        return ToolResult.fail(f"action_already_{status}")

    def approve(self, action_id: str, approved_by: str = "web") -> ToolResult:
        action = self.db.get_pending_action(action_id)
        if action is None:
            return ToolResult.fail("action_not_found")
        if action.status != "pending":
            return ToolResult.fail(f"action_already_{action.status}")
        if action.is_expired(self.clock()):
            self._transition(action, "expired")
            return ToolResult.fail("action_expired")
        if not self._transition(action, "approved"):
            return self._lost_race(action_id)

        result = self.execute_approved_action(action.action.type, action.action.payload)
        if not result.success:
            logger.error("Approved action %s failed to execute: %s", action_id, result.error)

        if action.task_id != MANUAL_TASK_ID and result.success:
            if self.tasks.get(action.task_id) is not None:
                self.tasks.update(
                    action.task_id,
                    status="completed",
                    completed_at=self.clock(),
                    approved_by=approved_by,
                )

        self.events.broadcast(
            "action_approved", {"actionId": action_id, "result": result.to_wire()}
        )
        return result

    def reject(self, action_id: str, reason: str = "") -> ToolResult:
        action = self.db.get_pending_action(action_id)
        if action is None:
            return ToolResult.fail("action_not_found")
        if action.status != "pending":
            return ToolResult.fail(f"action_already_{action.status}")
        if not self._transition(action, "rejected"):
            return self._lost_race(action_id)

        if action.task_id != MANUAL_TASK_ID and self.tasks.get(action.task_id) is not None:
            self.tasks.update(action.task_id, status="rejected")

        self.events.broadcast("action_rejected", {"actionId": action_id, "reason": reason})
        return ToolResult.ok({"actionId": action_id})

    def expire_old(self, now: int | None = None) -> int:
        expired = self.db.expire_pending_actions(self.clock() if now is None else now)
        if expired:
            logger.info("Expired %d pending action(s)", expired)
        return expired

    def set_telegram_message_id(self, action_id: str, message_id: int) -> None:
        self.db.set_action_telegram_message_id(action_id, message_id)

    def execute_approved_action(self, action_type: str, payload: dict[str, Any]) -> ToolResult:
        try:
            if action_type in {"create_issue", "comment_issue"}:
                data = self.connector.execute_write(
                    WriteRequest(
                        operation=action_type, repo=str(payload["repo"]), payload=dict(payload)
                    )
                )
                return ToolResult.ok(data)
            if action_type == "create_repo":
                return self._create_repo(payload)
        except (CommandError, KeyError, ValueError) as exc:
            return ToolResult.fail(str(exc))
        return ToolResult.fail(f"unknown_action_type:{action_type}")

    def _create_repo(self, payload: dict[str, Any]) -> ToolResult:
        repo_name = str(payload["repoName"])
        data = self.connector.execute_write(
            WriteRequest(
                operation="create_repo",
                repo=repo_name,
                payload={
                    "description": payload.get("description", ""),
                    "private": bool(payload.get("isPrivate", False)),
                },
            )
        )
        idea_id = str(payload.get("ideaId") or "")
        idea = self.db.get_idea(idea_id) if idea_id else None
        if idea is not None:
            self.db.upsert_idea(
                idea.model_copy(
                    update={
                        "repo_name": repo_name,
                        "repo_url": data.get("url"),
                        "updated_at": self.clock(),
                    }
                )
            )
            self.events.broadcast(
                "idea_updated", {"ideaId": idea.id, "repoUrl": data.get("url")}
            )
        return ToolResult.ok(data)
