"""GitHub connector backed by the ``gh`` command-line client."""

from __future__ import annotations

import json
import logging
from typing import Any

from pm_agent.integrations.commands import CommandRunner, run_command
from pm_agent.integrations.github_connector import WriteRequest, assert_write_operation

logger = logging.getLogger(__name__)

_ISSUE_FIELDS = "number,title,state,labels,createdAt,updatedAt,author"
_PR_FIELDS = "number,title,state,isDraft,createdAt,author,reviewDecision"
_RUN_FIELDS = "databaseId,name,status,conclusion,createdAt,headBranch"
_REPO_FIELDS = "name,description,stargazerCount,forkCount,isArchived,defaultBranchRef"


class GhCliConnector:
    def __init__(self, runner: CommandRunner = run_command, timeout_s: float = 60.0) -> None:
        self.runner = runner
        self.timeout_s = timeout_s

    def _gh(self, args: list[str]) -> str:
        return self.runner(["gh", *args], timeout_s=self.timeout_s)

    def _gh_json(self, args: list[str]) -> Any:
        output = self._gh(args).strip()
        return json.loads(output) if output else []

    def view_repo(self, repo: str) -> dict[str, Any]:
        data = self._gh_json(["repo", "view", repo, "--json", _REPO_FIELDS])
        return data if isinstance(data, dict) else {}

    def list_issues(
        self, repo: str, state: str = "open", labels: str = "", limit: int = 10
    ) -> list[dict[str, Any]]:
        args = [
            "issue",
            "list",
            "-R",
            repo,
            "--state",
            state,
            "--json",
            _ISSUE_FIELDS,
            "--limit",
            str(limit),
        ]
        if labels:
            args.extend(["--label", labels])
        return list(self._gh_json(args))

    def list_pull_requests(
        self, repo: str, state: str = "open", limit: int = 10
    ) -> list[dict[str, Any]]:
        return list(
            self._gh_json(
                [
                    "pr",
                    "list",
                    "-R",
                    repo,
                    "--state",
                    state,
                    "--json",
                    _PR_FIELDS,
                    "--limit",
                    str(limit),
                ]
            )
        )

    def list_runs(self, repo: str, limit: int = 5) -> list[dict[str, Any]]:
        return list(
            self._gh_json(["run", "list", "-R", repo, "--json", _RUN_FIELDS, "--limit", str(limit)])
        )

    def execute_write(self, request: WriteRequest) -> dict[str, Any]:
        assert_write_operation(request.operation)
        payload = request.payload
        logger.info("Executing GitHub write %s on %s", request.operation, request.repo)

        if request.operation == "create_issue":
            args = [
                "issue",
                "create",
                "-R",
                request.repo,
                "--title",
                str(payload.get("title", "")),
                "--body",
                str(payload.get("body", "")),
            ]
            for label in payload.get("labels") or []:
                args.extend(["--label", str(label)])
            url = self._gh(args).strip()
            return {"message": "Issue created", "url": url}

        if request.operation == "comment_issue":
            number = payload.get("issue_number", payload.get("issueNumber"))
            self._gh(
                [
                    "issue",
                    "comment",
                    str(number),
                    "-R",
                    request.repo,
                    "--body",
                    str(payload.get("body", "")),
                ]
            )
            return {"message": "Comment added"}

        visibility = "--private" if payload.get("private") else "--public"
        args = ["repo", "create", request.repo, visibility]
        description = str(payload.get("description") or "")
        if description:
            args.extend(["--description", description])
        url = self._gh(args).strip()
        return {"message": "Repository created", "url": url or f"https://github.com/{request.repo}"}
