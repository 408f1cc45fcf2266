"""Turn free-form model output into findings, project snapshots, and candidate tasks.

Extraction never raises: a response without a usable JSON object produces a
``ParseError`` value and callers branch on it with ``isinstance``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from pm_agent.models.project_contracts import Project
from pm_agent.models.report_contracts import Finding, ProjectReport
from pm_agent.models.task_contracts import PRIORITY_RANK, Task

_FENCED_JSON = re.compile(r"```json\n?([\s\S]*?)\n?```")
_BARE_OBJECT = re.compile(r"(\{[\s\S]*\})")
_TASK_PATTERNS = (
    re.compile(r"(?:task|action|todo|recommendation):\s*(.+?)(?:\n|$)", re.IGNORECASE),
    re.compile(
        r"(?:\d+\.|-|\*)\s*(?:should|need to|must|recommend)\s+(.+?)(?:\n|$)", re.IGNORECASE
    ),
)
_SEVERITY_BY_STATUS = {"critical": "critical", "warning": "warning", "healthy": "info"}
_CI_STATUSES = {"passing", "failing", "unknown", "in_progress"}
LOW_HEALTH_THRESHOLD = 70
ERROR_HEALTH_THRESHOLD = 50


@dataclass(frozen=True)
class ParsedReport:
    summary: str | None = None
    findings: list[Finding] = field(default_factory=list)
    project_reports: list[ProjectReport] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)


@dataclass(frozen=True)
class ParseError:
    reason: str
    detail: str = ""


def map_status(status: Any) -> str:
    return _SEVERITY_BY_STATUS.get(str(status or "").lower(), "info")


def determine_priority(text: str) -> str:
    lowered = text.lower()
    if any(word in lowered for word in ("critical", "urgent", "security")):
        return "critical"
    if "important" in lowered or "high priority" in lowered:
        return "high"
    if "low" in lowered or "minor" in lowered:
        return "low"
    return "medium"


def _find_project(projects: list[Project], name: Any) -> Project | None:
    wanted = str(name or "").lower()
    if not wanted:
        return None
    for project in projects:
        if project.name.lower() == wanted:
            return project
    return None


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _json_candidate(text: str) -> str | None:
    match = _FENCED_JSON.search(text) or _BARE_OBJECT.search(text)
    return match.group(1) if match else None


def extract_report(
    text: str, projects: list[Project], generated_by: str = "manual"
) -> ParsedReport | ParseError:
    candidate = _json_candidate(text)
    if candidate is None:
        return ParseError(reason="no_json_candidate")
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        return ParseError(reason="invalid_json", detail=str(exc))
    if not isinstance(parsed, dict):
        return ParseError(reason="not_an_object")

    findings: list[Finding] = []
    project_reports: list[ProjectReport] = []
    tasks: list[Task] = []

    for entry in parsed.get("findings") or []:
        if not isinstance(entry, dict):
            continue
        project = _find_project(projects, entry.get("project"))
        issues = entry.get("issues")
        description = (
            ", ".join(str(issue) for issue in issues)
            if isinstance(issues, list) and issues
            else str(entry.get("description") or "")
        )
        findings.append(
            Finding(
                severity=map_status(entry.get("status")),
                category="health",
                title=str(entry.get("project") or "Unknown"),
                description=description,
                project_id=project.id if project else "unknown",
            )
        )

    for entry in parsed.get("projects") or []:
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name") or "")
        project = _find_project(projects, name)
        project_id = project.id if project else "unknown"
        risks = [str(risk) for risk in entry.get("risks") or []]
        ci_status = str(entry.get("ciStatus") or "unknown")
        project_reports.append(
            ProjectReport(
                project_id=project_id,
                project_name=name,
                health_score=_as_int(entry.get("healthScore")),
                open_issues=_as_int(entry.get("openIssues")),
                open_prs=_as_int(entry.get("openPRs")),
                ci_status=ci_status if ci_status in _CI_STATUSES else "unknown",
                risks=risks,
            )
        )

        for risk in risks:
            findings.append(
                Finding(
                    severity="warning",
                    category="risk",
                    title=risk,
                    description=f"Risk identified for {name}",
                    project_id=project_id,
                )
            )

        if entry.get("healthScore") is not None:
            score = _as_int(entry.get("healthScore"))
            if score < LOW_HEALTH_THRESHOLD:
                findings.append(
                    Finding(
                        severity="error" if score < ERROR_HEALTH_THRESHOLD else "warning",
                        category="health",
                        title=f"Low health score: {score}",
                        description=f"{name} has a health score of {score}/100",
                        project_id=project_id,
                    )
                )

        if ci_status == "failing":
            findings.append(
                Finding(
                    severity="error",
                    category="ci-cd",
                    title="CI/CD Failing",
                    description=f"{name} has failing CI/CD pipelines",
                    project_id=project_id,
                )
            )

        for recommended in entry.get("recommendedTasks") or []:
            if not isinstance(recommended, dict) or not str(recommended.get("title") or "").strip():
                continue
            title = str(recommended["title"]).strip()
            priority = str(recommended.get("priority") or "medium")
            owner = project or (projects[0] if projects else None)
            tasks.append(
                Task(
                    project_id=owner.id if owner else "unknown",
                    priority=priority if priority in PRIORITY_RANK else "medium",
                    title=title,
                    description=str(recommended.get("description") or title),
                    context=f"Generated from {generated_by.replace('_', ' ')}",
                    generated_by=generated_by,
                )
            )

    summary = parsed.get("summary")
    return ParsedReport(
        summary=str(summary) if summary else None,
        findings=findings,
        project_reports=project_reports,
        tasks=tasks,
    )


def extract_tasks_from_text(
    text: str, projects: list[Project], generated_by: str = "manual"
) -> list[Task]:
    """Heuristic task candidates from prose: ``task:`` lines and "should/must" bullets."""

    lowered = text.lower()
    related = next(
        (
            project
            for project in projects
            if project.name.lower() in lowered or project.repo.lower() in lowered
        ),
        projects[0] if projects else None,
    )
    tasks: list[Task] = []
    for pattern in _TASK_PATTERNS:
        for match in pattern.finditer(text):
            description = match.group(1).strip()
            if not 10 < len(description) < 500:
                continue
            tasks.append(
                Task(
                    project_id=related.id if related else "unknown",
                    priority=determine_priority(description),
                    title=description[:100],
                    description=description,
                    context="Generated from agent analysis",
                    generated_by=generated_by,
                )
            )
    return tasks
