from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from pm_agent.integrations.commands import CommandError, run_command
from pm_agent.integrations.github_connector import (
    WriteRequest,
    assert_write_operation,
    build_connector_from_env,
)
from pm_agent.integrations.github_connector_gh import GhCliConnector
from pm_agent.integrations.github_connector_inmemory import InMemoryGitHubConnector


class RecordingRunner:
    def __init__(self, output: str = "") -> None:
        self.output = output
        self.calls: list[list[str]] = []

    def __call__(
        self,
        args: list[str],
        *,
        cwd: Path | str | None = None,
        input_text: str | None = None,
        timeout_s: float | None = None,
    ) -> str:
        self.calls.append(list(args))
        return self.output


def test_factory_selects_connector() -> None:
    assert isinstance(
        build_connector_from_env({"PM_AGENT_GITHUB_CONNECTOR": "in_memory"}),
        InMemoryGitHubConnector,
    )
    assert isinstance(build_connector_from_env({}), GhCliConnector)
    runner = RecordingRunner()
    connector = build_connector_from_env({"PM_AGENT_GITHUB_CONNECTOR": "gh"}, runner=runner)
    assert connector.runner is runner


def test_gh_issue_listing_passes_filters() -> None:
    rows: list[dict[str, Any]] = [{"number": 1, "title": "Crash on start"}]
    runner = RecordingRunner(json.dumps(rows))

    issues = GhCliConnector(runner=runner).list_issues(
        "acme/api", state="closed", labels="bug", limit=5
    )

    assert issues == rows
    args = runner.calls[0]
    assert args[:5] == ["gh", "issue", "list", "-R", "acme/api"]
    assert args[args.index("--state") + 1] == "closed"
    assert args[args.index("--limit") + 1] == "5"
    assert args[-2:] == ["--label", "bug"]


def test_gh_empty_output_is_an_empty_list() -> None:
    assert GhCliConnector(runner=RecordingRunner("  \n")).list_runs("acme/api") == []


def test_gh_create_issue_returns_url() -> None:
    runner = RecordingRunner("https://github.com/acme/api/issues/9\n")

    result = GhCliConnector(runner=runner).execute_write(
        WriteRequest(
            operation="create_issue",
            repo="acme/api",
            payload={"title": "Flaky CI", "body": "Fails nightly", "labels": ["ci", "bug"]},
        )
    )

    assert result == {"message": "Issue created", "url": "https://github.com/acme/api/issues/9"}
    assert runner.calls[0].count("--label") == 2


def test_gh_comment_and_create_repo() -> None:
    runner = RecordingRunner()
    connector = GhCliConnector(runner=runner)

    connector.execute_write(
        WriteRequest(
            operation="comment_issue", repo="acme/api", payload={"issueNumber": 7, "body": "ok"}
        )
    )
    created = connector.execute_write(
        WriteRequest(operation="create_repo", repo="habits", payload={"private": True})
    )

    assert runner.calls[0][:4] == ["gh", "issue", "comment", "7"]
    assert runner.calls[1] == ["gh", "repo", "create", "habits", "--private"]
    assert created["url"] == "https://github.com/habits"


def test_unsupported_write_is_rejected() -> None:
    with pytest.raises(ValueError, match="unsupported_write_operation:delete_repo"):
        assert_write_operation("delete_repo")
    with pytest.raises(ValueError):
        InMemoryGitHubConnector().execute_write(WriteRequest(operation="merge_pr", repo="a/b"))


def test_in_memory_unknown_repo_raises_command_error() -> None:
    with pytest.raises(CommandError, match="Could not resolve to a Repository"):
        InMemoryGitHubConnector().view_repo("acme/ghost")


def test_run_command_reports_missing_executable() -> None:
    with pytest.raises(CommandError) as excinfo:
        run_command(["pm-agent-definitely-missing-binary"])
    assert excinfo.value.returncode == 127
