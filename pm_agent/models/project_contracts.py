"""Pydantic contracts for monitored projects and ideas."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from pm_agent.shared.clock import now_ms

ProjectPhase = Literal["idea", "planning", "mvp", "beta", "launch", "growth", "maintenance"]
IdeaStatus = Literal[
    "submitted",
    "planning",
    "plan_ready",
    "approved",
    "creating_repo",
    "generating",
    "completed",
    "failed",
]


class Project(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    repo: str = Field(min_length=3)
    phase: ProjectPhase = "mvp"
    monitoring_level: Literal["minimal", "standard", "intensive"] = "standard"
    goals: list[str] = Field(default_factory=list)
    focus_areas: list[str] = Field(default_factory=list)
    local_path: str | None = None
    alert_threshold_health_score: int | None = None
    alert_threshold_open_issues: int | None = None
    alert_on_ci_failure: bool = True
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    def context(self) -> dict[str, Any]:
        """Subset of fields shared with the model in analysis prompts."""

        return {
            "id": self.id,
            "name": self.name,
            "repo": self.repo,
            "phase": self.phase,
            "goals": self.goals,
            "focusAreas": self.focus_areas,
        }


class PlannedFeature(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""
    priority: str = "important"


class ProjectStructureEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: str
    type: Literal["file", "directory"] = "file"
    description: str = ""


class IdeaPlan(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    summary: str = ""
    tech_stack: list[str] = Field(default_factory=list, alias="techStack")
    structure: list[ProjectStructureEntry] = Field(default_factory=list)
    features: list[PlannedFeature] = Field(default_factory=list)
    estimated_files: int = Field(default=0, alias="estimatedFiles")
    repo_name_suggestion: str = Field(default="", alias="repoNameSuggestion")


class Idea(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = ""
    status: IdeaStatus = "submitted"
    plan: IdeaPlan | None = None
    project_id: str | None = None
    repo_name: str | None = None
    repo_url: str | None = None
    error: str | None = None
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
