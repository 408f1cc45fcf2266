"""Shared runtime settings for the PM agent, read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from pm_agent.models.project_contracts import Project

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(value: str | None, default: bool = False) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class StorageSettings:
    """Filesystem and SQLite locations used by local-first deployments."""

    data_dir: Path
    sqlite_path: Path
    repos_dir: Path

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "StorageSettings":
        source = os.environ if env is None else env
        data_dir = Path(source.get("PM_AGENT_DATA_DIR", "./data"))
        sqlite_path = Path(
            source.get("PM_AGENT_SQLITE_PATH", str(data_dir / "pm_agent.sqlite"))
        )
        repos_dir = Path(source.get("PM_AGENT_REPOS_DIR", str(data_dir / "repos")))
        return cls(data_dir=data_dir, sqlite_path=sqlite_path, repos_dir=repos_dir)

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        self.repos_dir.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class ScheduleSettings:
    """Operator-facing cadence strings; parsed by the scheduler, never here."""

    health_check_interval: str = "4h"
    deep_analysis_time: str = "09:00"
    timezone: str = "Europe/Moscow"
    task_executor_enabled: bool = False
    task_executor_interval: str = "5m"
    news_crawl_enabled: bool = False
    news_crawl_time: str = "08:00"
    universal_crawler_enabled: bool = False

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "ScheduleSettings":
        source = os.environ if env is None else env
        return cls(
            health_check_interval=source.get("HEALTH_CHECK_INTERVAL") or "4h",
            deep_analysis_time=source.get("DEEP_ANALYSIS_TIME") or "09:00",
            timezone=source.get("TIMEZONE") or "Europe/Moscow",
            task_executor_enabled=_flag(source.get("TASK_EXECUTOR_ENABLED")),
            task_executor_interval=source.get("TASK_EXECUTOR_INTERVAL") or "5m",
            news_crawl_enabled=_flag(source.get("NEWS_CRAWL_ENABLED")),
            news_crawl_time=source.get("NEWS_CRAWL_TIME") or "08:00",
            universal_crawler_enabled=_flag(source.get("UNIVERSAL_CRAWLER_ENABLED")),
        )


@dataclass(frozen=True)
class AgentSettings:
    storage: StorageSettings
    schedule: ScheduleSettings
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    approval_timeout_minutes: int = 60
    log_level: str = "INFO"
    github_connector: str = "gh"
    projects_file: Path | None = None
    telegram_bot_token: str = ""
    telegram_admin_chat_id: str = ""

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "AgentSettings":
        source = os.environ if env is None else env
        projects_file = (source.get("PM_AGENT_PROJECTS_FILE") or "").strip()
        try:
            approval_timeout = int(source.get("APPROVAL_TIMEOUT_MINUTES") or 60)
        except ValueError:
            approval_timeout = 60
        return cls(
            storage=StorageSettings.from_env(source),
            schedule=ScheduleSettings.from_env(source),
            model=source.get("PM_AGENT_MODEL") or "claude-sonnet-4-20250514",
            approval_timeout_minutes=max(1, approval_timeout),
            log_level=(source.get("PM_AGENT_LOG_LEVEL") or "INFO").upper(),
            github_connector=(source.get("PM_AGENT_GITHUB_CONNECTOR") or "gh").strip().lower(),
            projects_file=Path(projects_file) if projects_file else None,
            telegram_bot_token=(source.get("TELEGRAM_BOT_TOKEN") or "").strip(),
            telegram_admin_chat_id=(source.get("TELEGRAM_ADMIN_CHAT_ID") or "").strip(),
        )


def load_projects_file(path: Path) -> list[Project]:
    """Load the seed project list from a YAML file with a top-level ``projects`` key."""

    raw = yaml.safe_load(path.read_text()) or {}
    rows = raw.get("projects", []) if isinstance(raw, dict) else raw
    projects: list[Project] = []
    for row in rows or []:
        if isinstance(row, dict):
            projects.append(Project.model_validate(row))
    return projects
