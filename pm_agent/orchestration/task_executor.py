"""Execute approved backlog tasks against a project's working copy."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from pm_agent.db.db import AgentDB
from pm_agent.events import EventBus
from pm_agent.integrations.code_generation import CodeGenerator
from pm_agent.integrations.commands import CommandRunner, run_command, run_git
from pm_agent.models.project_contracts import Project
from pm_agent.models.task_contracts import Task
from pm_agent.orchestration.task_store import TaskStore
from pm_agent.shared.clock import now_ms

logger = logging.getLogger(__name__)

TASK_TIMEOUT_S = 900.0
SUMMARY_LIMIT = 500
_FILE_MENTION = re.compile(
    r"(?:created|modified|updated|edited|wrote|added)\s+[`'\"]?([\w./-]+\.\w+)[`'\"]?",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class TaskExecutionResult:
    success: bool
    summary: str
    files_modified: list[str] = field(default_factory=list)
    error: str = ""


def build_task_prompt(task: Task, project: Project) -> str:
    lines = [
        f"You are working on the project {project.name} ({project.repo}).",
        "",
        f"Task: {task.title}",
        f"Type: {task.type}",
        f"Priority: {task.priority}",
        "",
        "Description:",
        task.description or task.title,
    ]
    if task.context:
        lines.extend(["", "Context:", task.context])
    if task.suggested_actions:
        lines.extend(["", "Suggested actions:"])
        lines.extend(f"- {action.description or action.type}" for action in task.suggested_actions)
    lines.extend(
        [
            "",
            "Implement the task in this repository. Keep changes focused on the task, "
            "follow the existing code style, and finish with a short summary of what changed.",
        ]
    )
    return "\n".join(lines)


def extract_summary(output: str) -> str:
    paragraphs = [part.strip() for part in re.split(r"\n\s*\n", output) if part.strip()]
    if not paragraphs:
        return "No summary provided"
    return paragraphs[-1][:SUMMARY_LIMIT]


def extract_files_modified(output: str) -> list[str]:
    seen: list[str] = []
    for match in _FILE_MENTION.finditer(output):
        path = match.group(1)
        if path not in seen:
            seen.append(path)
    return seen


def build_commit_message(task: Task, result: TaskExecutionResult) -> str:
    lines = [f"task({task.id}): {task.title}", "", result.summary]
    if result.files_modified:
        lines.extend(["", "Files:"])
        lines.extend(f"- {path}" for path in result.files_modified)
    lines.extend(["", f"Priority: {task.priority}", f"Type: {task.type}"])
    return "\n".join(lines)


class TaskExecutor:
    """One task per call; overlapping calls are not prevented here."""

    def __init__(
        self,
        db: AgentDB,
        tasks: TaskStore,
        code_generator: CodeGenerator,
        events: EventBus,
        repos_dir: Path,
        runner: CommandRunner = run_command,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.db = db
        self.tasks = tasks
        self.code_generator = code_generator
        self.events = events
        self.repos_dir = Path(repos_dir)
        self.runner = runner
        self.clock = clock

    def resolve_working_copy(self, project: Project) -> Path:
        if project.local_path:
            return Path(project.local_path)
        return self.repos_dir / project.repo.split("/")[-1]

    def execute_next_task(self) -> bool:
        task = self.tasks.find_next_executable()
        if task is None:
            logger.debug("No executable task in backlog")
            return False

        previous_kanban = task.kanban_status
        task = self.tasks.update(task.id, status="in_progress", kanban_status="in_progress")
        self.events.broadcast("task_updated", {"taskId": task.id, "status": task.status})
        logger.info("Executing task %s: %s", task.id, task.title)

        try:
            result = self._execute(task)
        except Exception as exc:
            logger.exception("Task %s raised during execution", task.id)
            result = TaskExecutionResult(
                success=False, summary="", error=str(exc) or exc.__class__.__name__
            )

        if result.success:
            task = self.tasks.update(
                task.id,
                status="completed",
                kanban_status="done",
                completed_at=self.clock(),
            )
            logger.info("Task %s completed: %s", task.id, result.summary)
        else:
            task = self.tasks.update(task.id, status="failed", kanban_status=previous_kanban)
            logger.error("Task %s failed: %s", task.id, result.error)
        self.db.append_audit_event(
            "task_executed",
            {"task_id": task.id, "success": result.success, "error": result.error},
        )
        self.events.broadcast(
            "task_updated",
            {"taskId": task.id, "status": task.status, "summary": result.summary},
        )
        return True

    def _execute(self, task: Task) -> TaskExecutionResult:
        project = self.db.get_project(task.project_id)
        if project is None:
            raise ValueError(f"unknown_project:{task.project_id}")
        work_dir = self.resolve_working_copy(project)
        if not work_dir.is_dir():
            raise ValueError(f"missing_working_copy:{work_dir}")

        generated = self.code_generator.run(
            work_dir, build_task_prompt(task, project), timeout_s=TASK_TIMEOUT_S
        )
        if not generated.success:
            return TaskExecutionResult(
                success=False,
                summary="",
                error=generated.error or "code generation failed",
            )

        result = TaskExecutionResult(
            success=True,
            summary=extract_summary(generated.output),
            files_modified=extract_files_modified(generated.output),
        )
        self._commit(work_dir, task, result)
        return result

    def _commit(self, work_dir: Path, task: Task, result: TaskExecutionResult) -> None:
        status = run_git(work_dir, ["status", "--porcelain"], runner=self.runner)
        if not status.strip():
            logger.info("Task %s produced no changes to commit", task.id)
            return
        run_git(work_dir, ["add", "-A"], runner=self.runner)
        run_git(
            work_dir, ["commit", "-m", build_commit_message(task, result)], runner=self.runner
        )
