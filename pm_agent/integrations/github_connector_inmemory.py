"""In-memory GitHub connector for deterministic tests."""

from __future__ import annotations

from typing import Any

from pm_agent.integrations.commands import CommandError
from pm_agent.integrations.github_connector import WriteRequest, assert_write_operation


class InMemoryGitHubConnector:
    def __init__(self) -> None:
        self.repos: dict[str, dict[str, Any]] = {}
        self.issues: dict[str, list[dict[str, Any]]] = {}
        self.pull_requests: dict[str, list[dict[str, Any]]] = {}
        self.runs: dict[str, list[dict[str, Any]]] = {}
        self.comments: dict[tuple[str, int], list[str]] = {}
        self.executed_writes: list[WriteRequest] = []
        self.failing_operations: set[str] = set()

    def seed_repo(
        self,
        repo: str,
        *,
        issues: list[dict[str, Any]] | None = None,
        pull_requests: list[dict[str, Any]] | None = None,
        runs: list[dict[str, Any]] | None = None,
        description: str = "",
    ) -> None:
        self.repos[repo] = {
            "name": repo.split("/")[-1],
            "description": description,
            "stargazerCount": 0,
            "forkCount": 0,
            "isArchived": False,
        }
        self.issues[repo] = list(issues or [])
        self.pull_requests[repo] = list(pull_requests or [])
        self.runs[repo] = list(runs or [])

    def _require_repo(self, repo: str) -> None:
        if repo not in self.repos:
            raise CommandError(
                ["gh"], 1, f"Could not resolve to a Repository with the name '{repo}'"
            )

    def view_repo(self, repo: str) -> dict[str, Any]:
        self._require_repo(repo)
        return dict(self.repos[repo])

    def list_issues(
        self, repo: str, state: str = "open", labels: str = "", limit: int = 10
    ) -> list[dict[str, Any]]:
        self._require_repo(repo)
        wanted = {label.strip() for label in labels.split(",") if label.strip()}
        rows = []
        for issue in self.issues[repo]:
            if state != "all" and str(issue.get("state", "open")).lower() != state:
                continue
            names = {label.get("name", "") for label in issue.get("labels", [])}
            if wanted and not wanted.issubset(names):
                continue
            rows.append(issue)
        return rows[:limit]

    def list_pull_requests(
        self, repo: str, state: str = "open", limit: int = 10
    ) -> list[dict[str, Any]]:
        self._require_repo(repo)
        rows = [
            pr
            for pr in self.pull_requests[repo]
            if state == "all" or str(pr.get("state", "open")).lower() == state
        ]
        return rows[:limit]

    def list_runs(self, repo: str, limit: int = 5) -> list[dict[str, Any]]:
        self._require_repo(repo)
        return self.runs[repo][:limit]

    def execute_write(self, request: WriteRequest) -> dict[str, Any]:
        assert_write_operation(request.operation)
        if request.operation in self.failing_operations:
            raise CommandError(["gh"], 1, f"{request.operation} failed")
        self.executed_writes.append(request)

        if request.operation == "create_issue":
            self._require_repo(request.repo)
            number = len(self.issues[request.repo]) + 1
            self.issues[request.repo].append(
                {
                    "number": number,
                    "title": request.payload.get("title", ""),
                    "state": "open",
                    "labels": [{"name": label} for label in request.payload.get("labels") or []],
                }
            )
            return {
                "message": "Issue created",
                "url": f"https://github.com/{request.repo}/issues/{number}",
            }

        if request.operation == "comment_issue":
            self._require_repo(request.repo)
            number = int(request.payload.get("issue_number", request.payload.get("issueNumber", 0)))
            self.comments.setdefault((request.repo, number), []).append(
                str(request.payload.get("body", ""))
            )
            return {"message": "Comment added"}

        self.seed_repo(request.repo, description=str(request.payload.get("description") or ""))
        return {"message": "Repository created", "url": f"https://github.com/{request.repo}"}
