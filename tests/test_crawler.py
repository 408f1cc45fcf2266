from __future__ import annotations

import threading
from typing import Any

import pytest

from pm_agent.crawler.service import CrawlAlreadyRunning, CrawlerService
from pm_agent.db.db import AgentDB
from pm_agent.events import EventBus

NOW = 10_000_000


class ListEngine:
    def __init__(
        self, items: list[dict[str, Any]] | None = None, error: Exception | None = None
    ) -> None:
        self.items = items or []
        self.error = error
        self.urls: list[str] = []

    def crawl_url(self, url: str) -> list[dict[str, Any]]:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return list(self.items)


class BlockingEngine:
    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()

    def crawl_url(self, url: str) -> list[dict[str, Any]]:
        self.started.set()
        self.release.wait(timeout=5)
        return [{"title": "late"}]


class StaticNewsCrawler:
    def run_crawl(self) -> dict[str, Any]:
        return {"totalItems": 12, "newItems": 3}


def _service(engine: Any, news_crawler: Any = None) -> tuple[CrawlerService, AgentDB, EventBus]:
    db = AgentDB()
    events = EventBus()
    db.upsert_crawl_source("hn", "Hacker News", url="https://news.ycombinator.com")
    return CrawlerService(db, engine, events, news_crawler, clock=lambda: NOW), db, events


def test_crawl_source_records_success() -> None:
    engine = ListEngine(items=[{"title": "a"}, {"title": "b"}, {"title": "c"}])
    service, db, events = _service(engine)

    result = service.crawl_source("hn")

    assert result.success is True
    assert result.item_count == 3
    assert engine.urls == ["https://news.ycombinator.com"]
    source = db.get_crawl_source("hn")
    assert source["last_status"] == "success"
    assert source["last_item_count"] == 3
    assert source["last_crawled_at"] == NOW
    assert events.events_of("news_crawl_started")[0].data["sourceId"] == "hn"
    assert events.events_of("news_updated")[0].data["itemCount"] == 3


def test_engine_failure_is_recorded_and_flag_cleared() -> None:
    service, db, _ = _service(ListEngine(error=RuntimeError("403 Forbidden")))

    result = service.crawl_source("hn")

    assert result.success is False
    assert result.error == "403 Forbidden"
    source = db.get_crawl_source("hn")
    assert source["last_status"] == "error"
    assert source["last_error"] == "403 Forbidden"
    assert service.is_running("hn") is False


def test_concurrent_crawl_of_same_source_is_refused() -> None:
    engine = BlockingEngine()
    service, _, _ = _service(engine)
    results: list[Any] = []
    worker = threading.Thread(target=lambda: results.append(service.crawl_source("hn")))
    worker.start()
    assert engine.started.wait(timeout=5)

    with pytest.raises(CrawlAlreadyRunning, match="Crawl already running for source: hn"):
        service.crawl_source("hn")

    engine.release.set()
    worker.join(timeout=5)
    assert results[0].success is True
    assert service.is_running("hn") is False


def test_unknown_source_raises() -> None:
    service, _, _ = _service(ListEngine())
    with pytest.raises(ValueError, match="unknown_crawl_source:nope"):
        service.crawl_source("nope")


def test_run_due_sources_skips_fresh_and_disabled_sources() -> None:
    engine = ListEngine(items=[{"title": "x"}])
    service, db, _ = _service(engine)
    db.upsert_crawl_source("blog", "Blog", url="https://blog.example", interval_minutes=60)
    db.mark_crawl_source_crawled("blog", NOW - 30 * 60 * 1000)
    db.upsert_crawl_source("off", "Disabled", url="https://off.example", enabled=False)
    db.upsert_crawl_source("stale", "Stale", url="https://stale.example", interval_minutes=10)
    db.mark_crawl_source_crawled("stale", NOW - 11 * 60 * 1000)

    results = service.run_due_sources()

    assert sorted(result.source_id for result in results) == ["hn", "stale"]
    assert sorted(engine.urls) == ["https://news.ycombinator.com", "https://stale.example"]


def test_run_due_sources_counts_failures_without_raising() -> None:
    service, _, _ = _service(ListEngine(error=ConnectionError("reset")))
    results = service.run_due_sources(now=NOW)
    assert [(result.source_id, result.success) for result in results] == [("hn", False)]


def test_news_crawl_delegates_to_collaborator() -> None:
    service, _, events = _service(ListEngine(), news_crawler=StaticNewsCrawler())
    assert service.run_news_crawl() == {"totalItems": 12, "newItems": 3}
    assert events.events_of("news_updated")[0].data["newItems"] == 3


def test_news_crawl_without_collaborator_is_a_no_op() -> None:
    service, _, events = _service(ListEngine())
    assert service.run_news_crawl() == {}
    assert events.events_of("news_crawl_started") == []
