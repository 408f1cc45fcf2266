"""GitHub collaborator contract, write request shape, and factory helper."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Protocol

from pm_agent.integrations.commands import CommandError, CommandRunner

WRITE_OPERATIONS = {"create_issue", "comment_issue", "create_repo"}


@dataclass(frozen=True)
class WriteRequest:
    operation: str
    repo: str
    payload: dict[str, Any] = field(default_factory=dict)


class GitHubConnector(Protocol):
    """Read queries run immediately; writes only run for approved actions."""

    def view_repo(self, repo: str) -> dict[str, Any]: ...

    def list_issues(
        self, repo: str, state: str = "open", labels: str = "", limit: int = 10
    ) -> list[dict[str, Any]]: ...

    def list_pull_requests(
        self, repo: str, state: str = "open", limit: int = 10
    ) -> list[dict[str, Any]]: ...

    def list_runs(self, repo: str, limit: int = 5) -> list[dict[str, Any]]: ...

    def execute_write(self, request: WriteRequest) -> dict[str, Any]: ...


def assert_write_operation(operation: str) -> None:
    if operation not in WRITE_OPERATIONS:
        raise ValueError(f"unsupported_write_operation:{operation}")


def build_connector_from_env(
    env: dict[str, str] | None = None,
    runner: CommandRunner | None = None,
) -> GitHubConnector:
    env_map = os.environ if env is None else env
    connector_type = (env_map.get("PM_AGENT_GITHUB_CONNECTOR") or "gh").strip().lower()

    if connector_type == "in_memory":
        from pm_agent.integrations.github_connector_inmemory import InMemoryGitHubConnector

        return InMemoryGitHubConnector()

    from pm_agent.integrations.github_connector_gh import GhCliConnector

    if runner is None:
        return GhCliConnector()
    return GhCliConnector(runner=runner)


__all__ = [
    "CommandError",
    "GitHubConnector",
    "WRITE_OPERATIONS",
    "WriteRequest",
    "assert_write_operation",
    "build_connector_from_env",
]
