"""Health checks, deep analysis, and manual prompts run through the agent loop."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from pm_agent.agent.extractor import ParseError, extract_report, extract_tasks_from_text
from pm_agent.agent.loop import AgentLoop, AgentLoopResult
from pm_agent.db.db import AgentDB
from pm_agent.events import EventBus
from pm_agent.integrations.notifications import LogNotifier, Notifier
from pm_agent.models.project_contracts import Project
from pm_agent.models.report_contracts import AnalysisReport, Finding, ProjectReport
from pm_agent.models.task_contracts import Task
from pm_agent.orchestration.task_store import TaskStore
from pm_agent.shared.clock import now_ms
from pm_agent.store.cache import KeyValueStore, WriteBehindQueue

logger = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT_S = 180.0
DEEP_ANALYSIS_TIMEOUT_S = 300.0
SUMMARY_LIMIT = 500
TOOL_HEALTH_ERROR_THRESHOLD = 50
LAST_HEALTH_CHECK_KEY = "pm:state:last_health_check"
LAST_DEEP_ANALYSIS_KEY = "pm:state:last_deep_analysis"

HEALTH_CHECK_PROMPT = """Run a quick health check of every project listed above.

For each project with a GitHub repository, check:
1. CI/CD status
2. Critical or blocking issues
3. Stale pull requests
4. Anything else that needs urgent attention

Use repo_status, list_issues, list_prs, and run_status to gather data.

Return the result as JSON:
{
  "summary": "Short overall status",
  "findings": [
    {"project": "name", "status": "healthy|warning|critical", "issues": ["problem 1", "problem 2"]}
  ]
}"""

DEEP_ANALYSIS_PROMPT = """Run a comprehensive analysis of every project listed above.

For each project:
1. Gather repository data with repo_status, list_issues, list_prs, and run_status
2. Review open issues and pull requests
3. Check CI/CD status and recent failures
4. Assess progress toward the project goals
5. Identify risks and blockers
6. Propose prioritized tasks

Return the result as JSON:
{
  "summary": "Overall summary across projects",
  "projects": [
    {
      "name": "project name",
      "healthScore": 85,
      "openIssues": 5,
      "openPRs": 2,
      "ciStatus": "passing|failing",
      "risks": ["risk 1"],
      "recommendedTasks": [
        {"title": "Task title", "priority": "high|medium|low", "description": "Details"}
      ]
    }
  ]
}"""


@dataclass
class AnalysisOutcome:
    response: str
    tasks: list[Task] = field(default_factory=list)
    report: AnalysisReport | None = None


def build_user_message(prompt: str, projects: list[Project]) -> str:
    context = json.dumps([project.context() for project in projects], indent=2)
    return (
        "## Current Projects\n"
        f"{context}\n\n"
        "## Task\n"
        f"{prompt}\n\n"
        "Analyze the projects and provide actionable insights. "
        "For any actions that modify data, use the appropriate tools."
    )


class AnalysisService:
    def __init__(
        self,
        db: AgentDB,
        loop: AgentLoop,
        tasks: TaskStore,
        events: EventBus,
        cache: KeyValueStore,
        writes: WriteBehindQueue,
        notifier: Notifier | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.db = db
        self.loop = loop
        self.tasks = tasks
        self.events = events
        self.cache = cache
        self.writes = writes
        self.notifier = notifier or LogNotifier()
        self.clock = clock

    def _tool_findings(self, result: AgentLoopResult, projects: list[Project]) -> list[Finding]:
        by_repo = {project.repo.lower(): project.id for project in projects}
        findings: list[Finding] = []
        for exchange in result.exchanges:
            data: Any = exchange.result.data
            if not exchange.result.success or not isinstance(data, dict):
                continue
            score = data.get("healthScore")
            if isinstance(score, (int, float)) and score < TOOL_HEALTH_ERROR_THRESHOLD:
                findings.append(
                    Finding(
                        severity="error",
                        category="health",
                        title="Low health score",
                        description=f"Project health score is {int(score)}/100",
                        project_id=by_repo.get(str(data.get("repo", "")).lower(), "unknown"),
                    )
                )
        return findings

    def run_agent(
        self,
        prompt: str,
        analysis_type: str = "manual",
        projects: list[Project] | None = None,
        timeout_s: float | None = None,
    ) -> AnalysisOutcome:
        selected = self.db.list_projects() if projects is None else projects
        report = AnalysisReport(
            type=analysis_type,
            project_ids=[project.id for project in selected],
            started_at=self.clock(),
        )
        self.events.broadcast("analysis_started", {"reportId": report.id, "type": analysis_type})

        result = self.loop.run(build_user_message(prompt, selected), timeout_s=timeout_s)

        findings = self._tool_findings(result, selected)
        project_reports: list[ProjectReport] | None = None
        parsed = extract_report(result.response, selected, generated_by=analysis_type)
        if isinstance(parsed, ParseError):
            logger.info("No structured report in %s output: %s", analysis_type, parsed.reason)
            candidates = extract_tasks_from_text(result.response, selected, analysis_type)
            summary = result.response[:SUMMARY_LIMIT]
        else:
            findings.extend(parsed.findings)
            project_reports = parsed.project_reports or None
            candidates = parsed.tasks or extract_tasks_from_text(
                result.response, selected, analysis_type
            )
            summary = parsed.summary or result.response[:SUMMARY_LIMIT]

        created: list[Task] = []
        for task in candidates:
            self.tasks.create(task)
            created.append(task)
            self.events.broadcast("task_created", {"task": task.model_dump()})

        report = report.model_copy(
            update={
                "completed_at": self.clock(),
                "summary": summary,
                "findings": findings,
                "generated_tasks": [task.id for task in created],
                "project_reports": project_reports,
            }
        )
        self.db.upsert_report(report)
        self.events.broadcast("analysis_completed", {"reportId": report.id})
        return AnalysisOutcome(response=result.response, tasks=created, report=report)

    def _record_last_run(self, key: str) -> None:
        stamp = self.clock()
        self.db.set_state(key, stamp)
        self.writes.submit(f"cache.set {key}", lambda: self.cache.set(key, stamp))

    def _run_scheduled(
        self, analysis_type: str, prompt: str, timeout_s: float, state_key: str, label: str
    ) -> AnalysisReport | None:
        projects = self.db.list_projects()
        if not projects:
            logger.info("No projects configured for %s", label.lower())
            return None
        try:
            outcome = self.run_agent(prompt, analysis_type, projects=projects, timeout_s=timeout_s)
        except Exception as exc:
            failed = AnalysisReport(
                type=analysis_type,
                project_ids=[project.id for project in projects],
                started_at=self.clock(),
                completed_at=self.clock(),
                summary=f"{label} failed: {exc}",
            )
            self.db.upsert_report(failed)
            self._record_last_run(state_key)
            raise
        self._record_last_run(state_key)
        return outcome.report

    def run_health_check(self) -> AnalysisReport | None:
        return self._run_scheduled(
            "health_check",
            HEALTH_CHECK_PROMPT,
            HEALTH_CHECK_TIMEOUT_S,
            LAST_HEALTH_CHECK_KEY,
            "Health check",
        )

    def run_deep_analysis(self) -> AnalysisReport | None:
        return self._run_scheduled(
            "deep_analysis",
            DEEP_ANALYSIS_PROMPT,
            DEEP_ANALYSIS_TIMEOUT_S,
            LAST_DEEP_ANALYSIS_KEY,
            "Deep analysis",
        )

    def _last_run(self, key: str) -> int | None:
        cached = self.cache.get(key)
        return self.db.get_state(key) if cached is None else cached

    def last_runs(self) -> dict[str, int | None]:
        """Last completion times, read through the cache from the database."""

        return {
            "health_check": self._last_run(LAST_HEALTH_CHECK_KEY),
            "deep_analysis": self._last_run(LAST_DEEP_ANALYSIS_KEY),
        }

    def check_alert_thresholds(self, report: AnalysisReport) -> list[str]:
        """Notify once per project whose snapshot crosses its configured thresholds."""

        sent: list[str] = []
        for snapshot in report.project_reports or []:
            project = self.db.get_project(snapshot.project_id)
            if project is None:
                continue
            alerts: list[str] = []
            if (
                project.alert_threshold_health_score is not None
                and snapshot.health_score < project.alert_threshold_health_score
            ):
                alerts.append(
                    f"Health score is {snapshot.health_score}, below threshold of "
                    f"{project.alert_threshold_health_score}"
                )
            if (
                project.alert_threshold_open_issues is not None
                and snapshot.open_issues > project.alert_threshold_open_issues
            ):
                alerts.append(
                    f"Open issues: {snapshot.open_issues}, exceeds threshold of "
                    f"{project.alert_threshold_open_issues}"
                )
            if project.alert_on_ci_failure and snapshot.ci_status == "failing":
                alerts.append("CI/CD is failing")
            if not alerts:
                continue
            message = (
                f"*Alert: {project.name}*\n\n"
                + "\n".join(alerts)
                + f"\n\nHealth Score: {snapshot.health_score}\n"
                f"Open Issues: {snapshot.open_issues}\n"
                f"CI Status: {snapshot.ci_status}"
            )
            self.notifier.send_message(message)
            sent.append(message)
        return sent
