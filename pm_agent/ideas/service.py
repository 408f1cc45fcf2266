"""Idea lifecycle: planning, code generation, and launching as a monitored project."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Callable

from pm_agent.db.db import AgentDB
from pm_agent.events import EventBus
from pm_agent.integrations.code_generation import CodeGenerator, build_project_prompt
from pm_agent.integrations.commands import CommandError, CommandRunner, run_command, run_git
from pm_agent.integrations.github_connector import GitHubConnector, WriteRequest
from pm_agent.models.project_contracts import Idea, IdeaPlan, Project
from pm_agent.shared.clock import new_id, now_ms

logger = logging.getLogger(__name__)

PLANNING_TIMEOUT_S = 300.0
GENERATION_TIMEOUT_S = 900.0
_OWNER_FROM_URL = re.compile(r"github\.com[/:]([^/]+)/")


def slugify(title: str) -> str:
    return re.sub(r"\s+", "-", title.strip().lower())


def build_planning_prompt(title: str, description: str, tech_stack: list[str]) -> str:
    stack = ", ".join(tech_stack) if tech_stack else "choose the most suitable stack"
    return (
        "Analyze the following product idea and produce an implementation plan.\n\n"
        f"Title: {title}\n"
        f"Description: {description}\n"
        f"Preferred tech stack: {stack}\n\n"
        "Return JSON with keys: summary, techStack, structure (path, type, description), "
        "features (name, description, priority: core|important|nice-to-have), "
        "estimatedFiles, repoNameSuggestion."
    )


class IdeaNotFound(ValueError):
    def __init__(self, idea_id: str) -> None:
        super().__init__(f"Idea not found: {idea_id}")
        self.idea_id = idea_id


class IdeaService:
    def __init__(
        self,
        db: AgentDB,
        events: EventBus,
        code_generator: CodeGenerator,
        connector: GitHubConnector,
        repos_dir: Path,
        runner: CommandRunner = run_command,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.db = db
        self.events = events
        self.code_generator = code_generator
        self.connector = connector
        self.repos_dir = Path(repos_dir)
        self.runner = runner
        self.clock = clock

    def _require(self, idea_id: str) -> Idea:
        idea = self.db.get_idea(idea_id)
        if idea is None:
            raise IdeaNotFound(idea_id)
        return idea

    def _save(self, idea: Idea, **changes: Any) -> Idea:
        updated = idea.model_copy(update={**changes, "updated_at": self.clock()})
        self.db.upsert_idea(updated)
        return updated

    def _set_status(self, idea: Idea, status: str, **changes: Any) -> Idea:
        updated = self._save(idea, status=status, **changes)
        self.events.broadcast("idea_updated", {"ideaId": idea.id, "status": status})
        return updated

    def submit(self, title: str, description: str = "", idea_id: str | None = None) -> Idea:
        idea = Idea(id=idea_id or new_id("idea"), title=title, description=description)
        self.db.upsert_idea(idea)
        return idea

    def get(self, idea_id: str) -> Idea | None:
        return self.db.get_idea(idea_id)

    def analyze(
        self, idea_id: str, title: str, description: str, tech_stack: list[str] | None = None
    ) -> str:
        """Ask the code-generation collaborator for a plan; returns its raw text."""

        idea = self.db.get_idea(idea_id) or self.submit(title, description, idea_id=idea_id)
        idea = self._set_status(idea, "planning")
        self.repos_dir.mkdir(parents=True, exist_ok=True)
        result = self.code_generator.run(
            self.repos_dir,
            build_planning_prompt(title, description, list(tech_stack or [])),
            timeout_s=PLANNING_TIMEOUT_S,
            allow_edits=False,
        )
        if not result.success:
            self._set_status(idea, "failed", error=result.error or "planning failed")
            raise RuntimeError(result.error or "planning failed")
        return result.output

    def save_plan(self, idea_id: str, plan: dict[str, Any] | IdeaPlan) -> Idea:
        idea = self._require(idea_id)
        parsed = plan if isinstance(plan, IdeaPlan) else IdeaPlan.model_validate(plan)
        updated = self._save(idea, plan=parsed, status="plan_ready", error=None)
        self.events.broadcast(
            "idea_plan_ready",
            {"ideaId": idea_id, "plan": parsed.model_dump(by_alias=True)},
        )
        return updated

    def generate_code(self, idea_id: str, repo_path: Path | str, prompt: str) -> str:
        idea = self._require(idea_id)
        idea = self._set_status(idea, "generating")
        result = self.code_generator.run(repo_path, prompt, timeout_s=GENERATION_TIMEOUT_S)
        if not result.success:
            self._set_status(idea, "failed", error=result.error or "code generation failed")
            raise RuntimeError(result.error or "code generation failed")
        self.events.broadcast(
            "idea_updated", {"ideaId": idea_id, "status": "generating", "codeGenerated": True}
        )
        return result.output

    def launch(self, idea_id: str, repo_name: str | None = None, private: bool = False) -> Project:
        """Create the repository, generate the project, push, and start monitoring it.

        Steps already completed are kept when a later step fails; the idea is
        marked ``failed`` with the error and the exception is re-raised.
        """

        idea = self._require(idea_id)
        if idea.plan is None:
            raise ValueError("idea_has_no_plan")
        plan = idea.plan
        final_name = repo_name or plan.repo_name_suggestion or slugify(idea.title)
        logger.info("Launching idea %s as %s", idea.title, final_name)

        try:
            idea = self._set_status(idea, "creating_repo")
            created = self.connector.execute_write(
                WriteRequest(
                    operation="create_repo",
                    repo=final_name,
                    payload={"description": plan.summary[:250], "private": private},
                )
            )
            repo_url = str(created.get("url") or "")
            idea = self._save(idea, repo_name=final_name, repo_url=repo_url)

            idea = self._set_status(idea, "generating")
            repo_path = self.repos_dir / final_name
            repo_path.mkdir(parents=True, exist_ok=True)
            result = self.code_generator.run(
                repo_path,
                build_project_prompt(idea.title, idea.description, plan.tech_stack, plan.features),
                timeout_s=GENERATION_TIMEOUT_S,
            )
            if not result.success:
                raise RuntimeError(f"Code generation failed: {result.output or result.error}")

            self._commit_and_push(repo_path, repo_url, idea.title)

            match = _OWNER_FROM_URL.search(repo_url)
            owner = match.group(1) if match else "unknown"
            now = self.clock()
            project = Project(
                id=new_id("project"),
                name=idea.title,
                repo=f"{owner}/{final_name}",
                phase="idea",
                goals=[feature.name for feature in plan.features if feature.priority == "core"],
                focus_areas=["ci-cd", "issues", "prs"],
                local_path=str(repo_path),
                created_at=now,
                updated_at=now,
            )
            self.db.upsert_project(project)
            self._save(idea, status="completed", project_id=project.id)
        except Exception as exc:
            logger.error("Launch of idea %s failed: %s", idea_id, exc)
            self._save(idea, status="failed", error=str(exc))
            raise

        self.events.broadcast(
            "idea_launched", {"ideaId": idea_id, "projectId": project.id, "repoUrl": repo_url}
        )
        return project

    def _commit_and_push(self, repo_path: Path, repo_url: str, title: str) -> None:
        try:
            if not (repo_path / ".git").exists():
                run_git(repo_path, ["init", "-b", "main"], runner=self.runner)
            run_git(repo_path, ["add", "."], runner=self.runner)
            run_git(
                repo_path,
                ["commit", "-m", f"Initial project setup\n\nGenerated from idea: {title}"],
                runner=self.runner,
            )
            if repo_url:
                run_git(repo_path, ["remote", "add", "origin", repo_url], runner=self.runner)
            run_git(repo_path, ["push", "-u", "origin", "main"], runner=self.runner)
        except CommandError as exc:
            # generated code stays in the local working copy
            logger.warning("Git push failed for %s: %s", repo_path, exc)
