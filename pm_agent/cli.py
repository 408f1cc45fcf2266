"""pm-agent CLI."""

from __future__ import annotations

import json
import time
from typing import Any

import typer

from pm_agent.app import AgentApp, create_app
from pm_agent.models.project_contracts import Project
from pm_agent.models.report_contracts import AnalysisReport
from pm_agent.models.task_contracts import Task
from pm_agent.shared.clock import new_id
from pm_agent.shared.logging import configure_logging
from pm_agent.shared.settings import AgentSettings

app = typer.Typer(add_completion=False, help="pm-agent: autonomous project manager")


def _build() -> AgentApp:
    settings = AgentSettings.from_env()
    configure_logging(settings.log_level)
    agent_app = create_app(settings)
    agent_app.seed_projects()
    return agent_app


def _emit(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _report_summary(report: AnalysisReport | None) -> dict[str, Any]:
    if report is None:
        return {"status": "skipped", "reason": "no_projects"}
    return {
        "report_id": report.id,
        "summary": report.summary,
        "findings": len(report.findings),
        "critical": report.count("critical"),
        "errors": report.count("error"),
        "generated_tasks": report.generated_tasks,
    }


def _task_row(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "project_id": task.project_id,
        "priority": task.priority,
        "status": task.status,
        "kanban_status": task.kanban_status,
        "title": task.title,
    }


@app.command()
def status() -> None:
    """Print project, approval, and last-run counters."""
    agent_app = _build()
    _emit(agent_app.status())


@app.command("add-project")
def add_project(
    repo: str = typer.Argument(..., help="owner/repo"),
    name: str = typer.Option("", "--name"),
    phase: str = typer.Option("mvp", "--phase"),
    local_path: str = typer.Option("", "--local-path"),
) -> None:
    """Register a project to monitor."""
    if repo.count("/") != 1:
        raise typer.BadParameter("Expected owner/repo", param_hint="repo")
    agent_app = _build()
    project = Project(
        id=new_id("project"),
        name=name or repo.split("/")[1],
        repo=repo,
        phase=phase,
        local_path=local_path or None,
    )
    agent_app.db.upsert_project(project)
    _emit({"id": project.id, "name": project.name, "repo": project.repo})


@app.command("health-check")
def health_check() -> None:
    """Run one health check now."""
    agent_app = _build()
    report = agent_app.analysis.run_health_check()
    agent_app.flush()
    _emit(_report_summary(report))


@app.command("deep-analysis")
def deep_analysis() -> None:
    """Run one deep analysis now."""
    agent_app = _build()
    report = agent_app.analysis.run_deep_analysis()
    agent_app.flush()
    _emit(_report_summary(report))


@app.command()
def ask(prompt: str) -> None:
    """Run a manual prompt through the agent with every project as context."""
    agent_app = _build()
    outcome = agent_app.analysis.run_agent(prompt)
    agent_app.flush()
    typer.echo(outcome.response)
    if outcome.tasks:
        _emit({"generated_tasks": [task.id for task in outcome.tasks]})


@app.command()
def tasks(
    project_id: str = typer.Option("", "--project"),
    task_status: str = typer.Option("", "--status"),
    kanban_status: str = typer.Option("", "--kanban"),
) -> None:
    """List tasks in priority order."""
    agent_app = _build()
    rows = agent_app.tasks.list(
        project_id=project_id, status=task_status, kanban_status=kanban_status
    )
    _emit([_task_row(task) for task in rows])


@app.command("approve-task")
def approve_task(task_id: str, approved_by: str = typer.Option("web", "--by")) -> None:
    """Approve a generated task so the executor can pick it up."""
    agent_app = _build()
    try:
        task = agent_app.tasks.approve(task_id, approved_by=approved_by)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    agent_app.flush()
    _emit(_task_row(task))


@app.command("reject-task")
def reject_task(task_id: str) -> None:
    agent_app = _build()
    try:
        task = agent_app.tasks.reject(task_id)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    agent_app.flush()
    _emit(_task_row(task))


@app.command("execute-next")
def execute_next() -> None:
    """Execute the highest-priority approved backlog task."""
    agent_app = _build()
    executed = agent_app.executor.execute_next_task()
    agent_app.flush()
    _emit({"executed": executed})


@app.command()
def pending() -> None:
    """List pending actions awaiting a decision."""
    agent_app = _build()
    _emit(
        [
            {
                "id": action.id,
                "task_id": action.task_id,
                "type": action.action.type,
                "description": action.action.description,
                "expires_at": action.expires_at,
            }
            for action in agent_app.approvals.list_pending()
        ]
    )


@app.command()
def approve(action_id: str) -> None:
    """Approve a pending action and execute it."""
    agent_app = _build()
    result = agent_app.approvals.approve(action_id, approved_by="web")
    agent_app.flush()
    _emit(result.to_wire())
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def reject(action_id: str, reason: str = typer.Option("", "--reason")) -> None:
    """Reject a pending action."""
    agent_app = _build()
    result = agent_app.approvals.reject(action_id, reason=reason)
    agent_app.flush()
    _emit(result.to_wire())
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def expire() -> None:
    """Expire pending actions past their deadline."""
    agent_app = _build()
    _emit({"expired": agent_app.approvals.expire_old()})


@app.command("submit-idea")
def submit_idea(title: str, description: str = typer.Option("", "--description")) -> None:
    agent_app = _build()
    idea = agent_app.ideas.submit(title, description)
    _emit({"id": idea.id, "status": idea.status})


@app.command("launch-idea")
def launch_idea(
    idea_id: str,
    repo_name: str = typer.Option("", "--repo-name"),
    private: bool = typer.Option(False, "--private"),
) -> None:
    """Create the repository, generate code, and register the project for a planned idea."""
    agent_app = _build()
    try:
        project = agent_app.ideas.launch(idea_id, repo_name=repo_name or None, private=private)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    _emit({"project_id": project.id, "repo": project.repo})


@app.command()
def run() -> None:
    """Start the scheduler and block until interrupted."""
    agent_app = _build()
    agent_app.writes.start()
    agent_app.scheduler.start()
    _emit(agent_app.scheduler.schedule_info())
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        typer.echo("Stopping")
    finally:
        agent_app.scheduler.stop()
        agent_app.writes.stop()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
