"""Crawl configured sources on their own intervals, one crawl per source at a time."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from pm_agent.db.db import AgentDB
from pm_agent.events import EventBus
from pm_agent.shared.clock import now_ms

logger = logging.getLogger(__name__)


class CrawlAlreadyRunning(RuntimeError):
    def __init__(self, source_id: str) -> None:
        super().__init__(f"Crawl already running for source: {source_id}")
        self.source_id = source_id


class CrawlEngine(Protocol):
    def crawl_url(self, url: str) -> list[dict[str, Any]]:
        """Fetch ``url`` and return the extracted items."""


class NewsCrawler(Protocol):
    def run_crawl(self) -> dict[str, Any]:
        """Run the full news crawl and return its summary counters."""


@dataclass(frozen=True)
class CrawlResult:
    source_id: str
    success: bool
    item_count: int = 0
    error: str = ""


class CrawlerService:
    def __init__(
        self,
        db: AgentDB,
        engine: CrawlEngine,
        events: EventBus,
        news_crawler: NewsCrawler | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.db = db
        self.engine = engine
        self.events = events
        self.news_crawler = news_crawler
        self.clock = clock
        self._running: set[str] = set()
        self._lock = threading.Lock()

    def is_running(self, source_id: str) -> bool:
        with self._lock:
            return source_id in self._running

    def crawl_source(self, source_id: str) -> CrawlResult:
        source = self.db.get_crawl_source(source_id)
        if source is None:
            raise ValueError(f"unknown_crawl_source:{source_id}")
        with self._lock:
            if source_id in self._running:
                raise CrawlAlreadyRunning(source_id)
            self._running.add(source_id)

        try:
            self.events.broadcast(
                "news_crawl_started", {"sourceId": source_id, "name": source["name"]}
            )
            try:
                items = self.engine.crawl_url(source["url"])
            except Exception as exc:
                logger.error("Crawl of %s failed: %s", source_id, exc)
                self.db.mark_crawl_source_crawled(
                    source_id, self.clock(), status="error", error=str(exc)
                )
                return CrawlResult(source_id=source_id, success=False, error=str(exc))

            self.db.mark_crawl_source_crawled(
                source_id, self.clock(), status="success", item_count=len(items)
            )
            self.events.broadcast(
                "news_updated", {"sourceId": source_id, "itemCount": len(items)}
            )
            logger.info("Crawled %s: %d item(s)", source_id, len(items))
            return CrawlResult(source_id=source_id, success=True, item_count=len(items))
        finally:
            with self._lock:
                self._running.discard(source_id)

    def run_due_sources(self, now: int | None = None) -> list[CrawlResult]:
        due = self.db.list_due_crawl_sources(self.clock() if now is None else now)
        results: list[CrawlResult] = []
        for source in due:
            try:
                results.append(self.crawl_source(source["source_id"]))
            except CrawlAlreadyRunning as exc:
                logger.info("%s", exc)
            except Exception as exc:
                logger.error("Crawl of %s failed: %s", source["source_id"], exc)
                results.append(
                    CrawlResult(source_id=source["source_id"], success=False, error=str(exc))
                )
        failed = sum(1 for result in results if not result.success)
        logger.info("Crawled %d due source(s), %d failed", len(results), failed)
        return results

    def run_news_crawl(self) -> dict[str, Any]:
        if self.news_crawler is None:
            logger.info("No news crawler configured")
            return {}
        self.events.broadcast("news_crawl_started", {})
        summary = self.news_crawler.run_crawl()
        self.events.broadcast("news_updated", dict(summary))
        return summary
