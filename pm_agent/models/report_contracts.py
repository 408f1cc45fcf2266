"""Pydantic contracts for analysis output: findings, project snapshots, reports."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from pm_agent.shared.clock import new_id, now_ms

Severity = Literal["info", "warning", "error", "critical"]
AnalysisType = Literal["health_check", "deep_analysis", "manual"]
CiStatus = Literal["passing", "failing", "unknown", "in_progress"]


class Finding(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    severity: Severity
    category: str
    title: str
    description: str = ""
    project_id: str = "unknown"


class ProjectReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    project_id: str = "unknown"
    project_name: str = ""
    health_score: int = 0
    open_issues: int = 0
    open_prs: int = 0
    ci_status: CiStatus = "unknown"
    risks: list[str] = Field(default_factory=list)


class AnalysisReport(BaseModel):
    """Outcome of one agent run. Only the completion fields change after creation."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: new_id("report"))
    type: AnalysisType = "manual"
    project_ids: list[str] = Field(default_factory=list)
    started_at: int = Field(default_factory=now_ms)
    completed_at: int | None = None
    summary: str = ""
    findings: list[Finding] = Field(default_factory=list)
    generated_tasks: list[str] = Field(default_factory=list)
    project_reports: list[ProjectReport] | None = None

    def count(self, severity: Severity) -> int:
        return sum(1 for finding in self.findings if finding.severity == severity)
