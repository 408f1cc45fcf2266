"""GitHub tools exposed to the agent: read queries and approval-gated writes."""

from __future__ import annotations

import logging
from typing import Any

from pm_agent.approval.queue import ApprovalQueue
from pm_agent.integrations.commands import CommandError
from pm_agent.integrations.github_connector import GitHubConnector
from pm_agent.models.task_contracts import SuggestedAction
from pm_agent.models.tool_contracts import ToolResult
from pm_agent.tools.registry import ToolSpec, object_schema

logger = logging.getLogger(__name__)

_REPO_PROPERTY = {"type": "string", "description": "Repository in owner/repo format"}


def ci_status_from_runs(runs: list[dict[str, Any]]) -> str:
    if not runs:
        return "unknown"
    latest = runs[0]
    if latest.get("status") != "completed":
        return "in_progress"
    return "passing" if latest.get("conclusion") == "success" else "failing"


def compute_health_score(ci_status: str, open_issues: int, open_prs: int) -> int:
    score = 100
    if ci_status == "failing":
        score -= 30
    if open_issues > 50:
        score -= 20
    if open_prs > 20:
        score -= 10
    return max(0, score)


def _valid_repo(repo: str) -> bool:
    owner, _, name = repo.partition("/")
    return bool(owner and name)


def _login(value: Any) -> str | None:
    return value.get("login") if isinstance(value, dict) else None


def _limit(raw: Any, default: int) -> int:
    try:
        return max(1, int(raw))
    except (TypeError, ValueError):
        return default


def _labels(raw: Any) -> list[str]:
    """Accept a label list or a comma-separated string."""
    if not raw:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    return [str(label).strip() for label in raw if str(label).strip()]


class GitHubTools:
    def __init__(self, connector: GitHubConnector, approvals: ApprovalQueue) -> None:
        self.connector = connector
        self.approvals = approvals

    def repo_status(self, tool_input: dict[str, Any]) -> ToolResult:
        repo = str(tool_input["repo"])
        if not _valid_repo(repo):
            return ToolResult.fail("invalid_repo_format:expected_owner/repo")
        repo_info = self.connector.view_repo(repo)
        issues = self.connector.list_issues(repo, state="open", limit=100)
        prs = self.connector.list_pull_requests(repo, state="open", limit=100)
        try:
            ci_status = ci_status_from_runs(self.connector.list_runs(repo, limit=1))
        except CommandError as exc:
            logger.debug("No workflow runs for %s: %s", repo, exc)
            ci_status = "unknown"
        return ToolResult.ok(
            {
                "repo": repo,
                "name": repo_info.get("name"),
                "description": repo_info.get("description"),
                "stars": repo_info.get("stargazerCount"),
                "forks": repo_info.get("forkCount"),
                "isArchived": repo_info.get("isArchived"),
                "openIssues": len(issues),
                "openPRs": len(prs),
                "ciStatus": ci_status,
                "healthScore": compute_health_score(ci_status, len(issues), len(prs)),
            }
        )

    def list_issues(self, tool_input: dict[str, Any]) -> ToolResult:
        repo = str(tool_input["repo"])
        state = str(tool_input.get("state") or "open")
        labels = ",".join(_labels(tool_input.get("labels")))
        issues = self.connector.list_issues(
            repo, state=state, labels=labels, limit=_limit(tool_input.get("limit"), 10)
        )
        return ToolResult.ok(
            {
                "repo": repo,
                "state": state,
                "count": len(issues),
                "issues": [
                    {
                        "number": issue.get("number"),
                        "title": issue.get("title"),
                        "state": issue.get("state"),
                        "labels": [label.get("name") for label in issue.get("labels") or []],
                        "createdAt": issue.get("createdAt"),
                        "author": _login(issue.get("author")),
                    }
                    for issue in issues
                ],
            }
        )

    def list_prs(self, tool_input: dict[str, Any]) -> ToolResult:
        repo = str(tool_input["repo"])
        state = str(tool_input.get("state") or "open")
        prs = self.connector.list_pull_requests(
            repo, state=state, limit=_limit(tool_input.get("limit"), 10)
        )
        return ToolResult.ok(
            {
                "repo": repo,
                "state": state,
                "count": len(prs),
                "prs": [
                    {
                        "number": pr.get("number"),
                        "title": pr.get("title"),
                        "state": pr.get("state"),
                        "isDraft": pr.get("isDraft"),
                        "createdAt": pr.get("createdAt"),
                        "author": _login(pr.get("author")),
                        "reviewDecision": pr.get("reviewDecision"),
                    }
                    for pr in prs
                ],
            }
        )

    def run_status(self, tool_input: dict[str, Any]) -> ToolResult:
        repo = str(tool_input["repo"])
        runs = self.connector.list_runs(repo, limit=_limit(tool_input.get("limit"), 5))
        return ToolResult.ok(
            {
                "repo": repo,
                "count": len(runs),
                "runs": [
                    {
                        "id": run.get("databaseId"),
                        "name": run.get("name"),
                        "status": run.get("status"),
                        "conclusion": run.get("conclusion"),
                        "createdAt": run.get("createdAt"),
                        "branch": run.get("headBranch"),
                    }
                    for run in runs
                ],
            }
        )

    def create_issue(self, tool_input: dict[str, Any]) -> ToolResult:
        repo = str(tool_input["repo"])
        title = str(tool_input["title"])
        action_id = self.approvals.enqueue(
            SuggestedAction(
                type="create_issue",
                description=f'Create issue "{title}" in {repo}',
                payload={
                    "repo": repo,
                    "title": title,
                    "body": str(tool_input["body"]),
                    "labels": _labels(tool_input.get("labels")),
                },
            )
        )
        return ToolResult.pending(
            action_id, f"Issue creation queued for approval. Action ID: {action_id}"
        )

    def comment_issue(self, tool_input: dict[str, Any]) -> ToolResult:
        repo = str(tool_input["repo"])
        issue_number = int(tool_input["issue_number"])
        action_id = self.approvals.enqueue(
            SuggestedAction(
                type="comment_issue",
                description=f"Comment on issue #{issue_number} in {repo}",
                payload={
                    "repo": repo,
                    "issue_number": issue_number,
                    "body": str(tool_input["body"]),
                },
            )
        )
        return ToolResult.pending(action_id, f"Comment queued for approval. Action ID: {action_id}")

    def specs(self) -> list[ToolSpec]:
        limit = {"type": "number", "description": "Maximum number of results to return"}
        return [
            ToolSpec(
                name="repo_status",
                description=(
                    "Get repository status including open issue and PR counts, CI status, "
                    "and a health score"
                ),
                input_schema=object_schema({"repo": _REPO_PROPERTY}, ["repo"]),
                effect="read_only",
                handler=self.repo_status,
            ),
            ToolSpec(
                name="list_issues",
                description="List issues in a repository with optional filters",
                input_schema=object_schema(
                    {
                        "repo": _REPO_PROPERTY,
                        "state": {"type": "string", "enum": ["open", "closed", "all"]},
                        "labels": {"type": "string", "description": "Comma-separated labels"},
                        "limit": limit,
                    },
                    ["repo"],
                ),
                effect="read_only",
                handler=self.list_issues,
            ),
            ToolSpec(
                name="list_prs",
                description="List pull requests in a repository",
                input_schema=object_schema(
                    {
                        "repo": _REPO_PROPERTY,
                        "state": {"type": "string", "enum": ["open", "closed", "merged", "all"]},
                        "limit": limit,
                    },
                    ["repo"],
                ),
                effect="read_only",
                handler=self.list_prs,
            ),
            ToolSpec(
                name="run_status",
                description="Check CI/CD workflow run status",
                input_schema=object_schema({"repo": _REPO_PROPERTY, "limit": limit}, ["repo"]),
                effect="read_only",
                handler=self.run_status,
            ),
            ToolSpec(
                name="create_issue",
                description="Propose creating a new GitHub issue (requires user approval)",
                input_schema=object_schema(
                    {
                        "repo": _REPO_PROPERTY,
                        "title": {"type": "string"},
                        "body": {"type": "string"},
                        "labels": {"type": "array", "items": {"type": "string"}},
                    },
                    ["repo", "title", "body"],
                ),
                effect="approval_gated",
                handler=self.create_issue,
            ),
            ToolSpec(
                name="comment_issue",
                description="Propose adding a comment to an issue (requires user approval)",
                input_schema=object_schema(
                    {
                        "repo": _REPO_PROPERTY,
                        "issue_number": {"type": "number"},
                        "body": {"type": "string"},
                    },
                    ["repo", "issue_number", "body"],
                ),
                effect="approval_gated",
                handler=self.comment_issue,
            ),
        ]
