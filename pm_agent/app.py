"""Wires storage, collaborators, and services into one application object."""

from __future__ import annotations

import logging
from typing import Any

from pm_agent.agent.analysis import AnalysisService
from pm_agent.agent.loop import AgentLoop
from pm_agent.approval.queue import ApprovalQueue
from pm_agent.crawler.service import CrawlEngine, CrawlerService, NewsCrawler
from pm_agent.db.db import AgentDB
from pm_agent.events import EventBus
from pm_agent.ideas.service import IdeaService
from pm_agent.integrations.code_generation import ClaudeCliGenerator, CodeGenerator
from pm_agent.integrations.github_connector import GitHubConnector, build_connector_from_env
from pm_agent.integrations.notifications import Notifier, build_notifier
from pm_agent.llm.providers import AnthropicProvider, LLMProvider
from pm_agent.orchestration.scheduler import AgentScheduler
from pm_agent.orchestration.task_executor import TaskExecutor
from pm_agent.orchestration.task_store import TaskStore
from pm_agent.shared.settings import AgentSettings, load_projects_file
from pm_agent.store.cache import InMemoryKeyValueStore, KeyValueStore, WriteBehindQueue
from pm_agent.tools.github_tools import GitHubTools
from pm_agent.tools.idea_tools import IdeaTools
from pm_agent.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class AgentApp:
    """Every collaborator can be replaced; defaults come from ``settings``."""

    def __init__(
        self,
        settings: AgentSettings,
        db: AgentDB | None = None,
        provider: LLMProvider | None = None,
        connector: GitHubConnector | None = None,
        code_generator: CodeGenerator | None = None,
        notifier: Notifier | None = None,
        cache: KeyValueStore | None = None,
        crawl_engine: CrawlEngine | None = None,
        news_crawler: NewsCrawler | None = None,
    ) -> None:
        self.settings = settings
        if db is None:
            settings.storage.ensure_directories()
            db = AgentDB(settings.storage.sqlite_path)
        self.db = db
        self.events = EventBus()
        self.cache = cache or InMemoryKeyValueStore()
        self.writes = WriteBehindQueue()
        self.notifier = notifier or build_notifier(
            settings.telegram_bot_token, settings.telegram_admin_chat_id
        )
        self.connector = connector or build_connector_from_env(
            {"PM_AGENT_GITHUB_CONNECTOR": settings.github_connector}
        )
        self.code_generator = code_generator or ClaudeCliGenerator()
        self.provider = provider or AnthropicProvider(
            model=settings.model,
            max_tokens=settings.max_tokens,
            on_retry=self._on_model_retry,
        )

        self.tasks = TaskStore(self.db, self.cache, self.writes)
        self.approvals = ApprovalQueue(
            self.db,
            self.connector,
            self.events,
            self.tasks,
            notifier=self.notifier,
            timeout_minutes=settings.approval_timeout_minutes,
        )
        self.ideas = IdeaService(
            self.db,
            self.events,
            self.code_generator,
            self.connector,
            repos_dir=settings.storage.repos_dir,
        )
        self.registry = ToolRegistry()
        self.registry.extend(GitHubTools(self.connector, self.approvals).specs())
        self.registry.extend(IdeaTools(self.ideas, self.approvals).specs())
        self.loop = AgentLoop(self.provider, self.registry, self.events)
        self.analysis = AnalysisService(
            self.db,
            self.loop,
            self.tasks,
            self.events,
            self.cache,
            self.writes,
            notifier=self.notifier,
        )
        self.executor = TaskExecutor(
            self.db,
            self.tasks,
            self.code_generator,
            self.events,
            repos_dir=settings.storage.repos_dir,
        )
        self.crawler = (
            CrawlerService(self.db, crawl_engine, self.events, news_crawler=news_crawler)
            if crawl_engine is not None
            else None
        )
        self.scheduler = AgentScheduler(
            settings.schedule,
            self.analysis,
            executor=self.executor,
            crawler=self.crawler,
            notifier=self.notifier,
        )

    def _on_model_retry(self, attempt: int, exc: Exception, delay_s: float) -> None:
        self.events.broadcast(
            "agent_log",
            {"text": f"Model call failed, retry {attempt} in {delay_s:.1f}s: {exc}"},
        )

    def seed_projects(self) -> int:
        if self.settings.projects_file is None:
            return 0
        projects = load_projects_file(self.settings.projects_file)
        for project in projects:
            self.db.upsert_project(project)
        logger.info("Seeded %d project(s) from %s", len(projects), self.settings.projects_file)
        return len(projects)

    def flush(self) -> int:
        """Run queued cache writes inline; used by one-shot commands."""

        return self.writes.drain()

    def status(self) -> dict[str, Any]:
        return {
            "projects": len(self.db.list_projects()),
            "pending_actions": len(self.approvals.list_pending()),
            "approved_tasks": len(self.tasks.list(status="approved")),
            "last_runs": self.analysis.last_runs(),
            "tools": self.registry.names(),
        }


def create_app(settings: AgentSettings | None = None, **overrides: Any) -> AgentApp:
    return AgentApp(settings or AgentSettings.from_env(), **overrides)
