from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta

import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from pm_agent.integrations.notifications import LogNotifier
from pm_agent.models.report_contracts import AnalysisReport, Finding
from pm_agent.orchestration.scheduler import (
    AgentScheduler,
    daily_cron,
    deep_analysis_cron,
    guarded_job,
    health_check_cron,
    parse_interval,
    parse_time,
)
from pm_agent.shared.settings import ScheduleSettings


@dataclass
class FakeAnalysis:
    health_report: AnalysisReport | None = None
    deep_report: AnalysisReport | None = None
    error: Exception | None = None
    checked: list[str] = field(default_factory=list)

    def run_health_check(self) -> AnalysisReport | None:
        if self.error is not None:
            raise self.error
        return self.health_report

    def run_deep_analysis(self) -> AnalysisReport | None:
        if self.error is not None:
            raise self.error
        return self.deep_report

    def check_alert_thresholds(self, report: AnalysisReport) -> list[str]:
        self.checked.append(report.id)
        return []


@dataclass
class FakeExecutor:
    runs: int = 0

    def execute_next_task(self) -> bool:
        self.runs += 1
        return False


@dataclass
class FakeCrawler:
    calls: list[str] = field(default_factory=list)

    def run_news_crawl(self) -> dict:
        self.calls.append("news")
        return {}

    def run_due_sources(self) -> list:
        self.calls.append("due")
        return []


def _finding(severity: str) -> Finding:
    return Finding(severity=severity, category="health", title="t", description="d")


def test_parse_interval_units() -> None:
    assert parse_interval("30m") == 30 * 60 * 1000
    assert parse_interval("4h") == 14_400_000
    assert parse_interval("1d") == 86_400_000


@pytest.mark.parametrize("value", ["", "4", "h4", "4 h", "1w", "-1h", "0m"])
def test_parse_interval_defaults_to_four_hours(
    value: str, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING, logger="pm_agent.orchestration.scheduler"):
        assert parse_interval(value) == 14_400_000
    assert "Invalid interval format" in caplog.text


def test_parse_time_defaults() -> None:
    assert parse_time("09:00") == (9, 0)
    assert parse_time("17:45") == (17, 45)
    assert parse_time("") == (9, 0)
    assert parse_time("7") == (7, 0)
    assert parse_time("xx:yy") == (9, 0)
    assert parse_time("00:30") == (0, 30)


@pytest.mark.parametrize("value", ["25:00", "12:75", "24:00"])
def test_out_of_range_time_falls_back_to_nine(
    value: str, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING, logger="pm_agent.orchestration.scheduler"):
        assert parse_time(value) == (9, 0)
    assert "Invalid time of day" in caplog.text
    assert deep_analysis_cron(value) == "0 9 * * 1-5"


def test_cron_expressions() -> None:
    assert health_check_cron("4h") == "0 */4 * * *"
    assert health_check_cron("30m") == "0 */1 * * *"
    assert health_check_cron("garbage") == "0 */4 * * *"
    assert deep_analysis_cron("09:30") == "30 9 * * 1-5"
    assert daily_cron("08:00") == "0 8 * * *"
    assert health_check_cron("23h") == "0 */23 * * *"
    assert health_check_cron("1d") is None
    assert health_check_cron("36h") is None


def test_guarded_job_swallows_and_notifies(caplog: pytest.LogCaptureFixture) -> None:
    notifier = LogNotifier()

    def boom() -> None:
        raise RuntimeError("provider down")

    job = guarded_job("health_check", boom, notifier, "Health Check")
    with caplog.at_level(logging.ERROR, logger="pm_agent.orchestration.scheduler"):
        job()

    assert notifier.messages == ["*Health Check Failed*\n\nprovider down"]
    assert "Scheduled job health_check failed" in caplog.text


def test_guarded_job_without_notifier_only_logs() -> None:
    calls: list[int] = []

    def flaky() -> None:
        calls.append(1)
        raise ValueError("nope")

    job = guarded_job("news_crawl", flaky)
    job()
    job()
    assert calls == [1, 1]


def test_default_jobs_are_the_two_analyses() -> None:
    scheduler = AgentScheduler(
        ScheduleSettings(), FakeAnalysis(), executor=FakeExecutor(), crawler=FakeCrawler()
    )
    jobs = {job.job_id: job.describe() for job in scheduler.jobs()}
    assert jobs == {"health_check": "0 */4 * * *", "deep_analysis": "0 9 * * 1-5"}


def test_feature_flags_enable_optional_jobs() -> None:
    settings = ScheduleSettings(
        task_executor_enabled=True,
        task_executor_interval="10m",
        news_crawl_enabled=True,
        news_crawl_time="07:15",
        universal_crawler_enabled=True,
    )
    scheduler = AgentScheduler(
        settings, FakeAnalysis(), executor=FakeExecutor(), crawler=FakeCrawler()
    )

    jobs = {job.job_id: job for job in scheduler.jobs()}

    assert jobs["task_executor"].cron is None
    assert jobs["task_executor"].interval_ms == 10 * 60 * 1000
    assert jobs["news_crawl"].cron == "15 7 * * *"
    assert jobs["universal_crawler"].cron == "0 * * * *"


def test_task_executor_runs_on_a_fixed_interval() -> None:
    background = BackgroundScheduler(timezone="UTC")
    settings = ScheduleSettings(
        timezone="UTC", task_executor_enabled=True, task_executor_interval="2h"
    )
    AgentScheduler(
        settings, FakeAnalysis(), executor=FakeExecutor(), scheduler=background
    ).register()

    trigger = background.get_job("task_executor").trigger

    assert isinstance(trigger, IntervalTrigger)
    assert trigger.interval == timedelta(hours=2)


@pytest.mark.parametrize(
    "interval, expected", [("1d", timedelta(days=1)), ("36h", timedelta(hours=36))]
)
def test_day_scale_health_check_uses_interval_trigger(
    interval: str, expected: timedelta
) -> None:
    background = BackgroundScheduler(timezone="UTC")
    scheduler = AgentScheduler(
        ScheduleSettings(timezone="UTC", health_check_interval=interval),
        FakeAnalysis(),
        scheduler=background,
    )

    scheduler.register()

    health = background.get_job("health_check").trigger
    assert isinstance(health, IntervalTrigger)
    assert health.interval == expected
    assert isinstance(background.get_job("deep_analysis").trigger, CronTrigger)


def test_hourly_health_check_keeps_cron_trigger() -> None:
    background = BackgroundScheduler(timezone="UTC")
    AgentScheduler(
        ScheduleSettings(timezone="UTC", health_check_interval="6h", deep_analysis_time="25:00"),
        FakeAnalysis(),
        scheduler=background,
    ).register()

    assert isinstance(background.get_job("health_check").trigger, CronTrigger)
    assert background.get_job("deep_analysis") is not None


def test_register_adds_jobs_to_apscheduler() -> None:
    background = BackgroundScheduler(timezone="UTC")
    scheduler = AgentScheduler(
        ScheduleSettings(timezone="UTC", task_executor_enabled=True),
        FakeAnalysis(),
        executor=FakeExecutor(),
        scheduler=background,
    )

    scheduler.register()
    scheduler.register()

    assert sorted(job.id for job in background.get_jobs()) == [
        "deep_analysis",
        "health_check",
        "task_executor",
    ]
    assert set(scheduler.schedule_info()) == {"deep_analysis", "health_check", "task_executor"}


def test_health_check_job_alerts_on_critical_findings() -> None:
    report = AnalysisReport(
        type="health_check",
        summary="API is down",
        findings=[_finding("critical"), _finding("error"), _finding("warning")],
    )
    analysis = FakeAnalysis(health_report=report)
    notifier = LogNotifier()
    scheduler = AgentScheduler(ScheduleSettings(), analysis, notifier=notifier)

    jobs = {job.job_id: job.func for job in scheduler.jobs()}
    jobs["health_check"]()

    assert len(notifier.messages) == 1
    assert "Found 1 critical and 1 error findings." in notifier.messages[0]
    assert analysis.checked == [report.id]


def test_quiet_health_check_sends_nothing() -> None:
    analysis = FakeAnalysis(health_report=AnalysisReport(findings=[_finding("warning")]))
    notifier = LogNotifier()
    scheduler = AgentScheduler(ScheduleSettings(), analysis, notifier=notifier)

    {job.job_id: job.func for job in scheduler.jobs()}["health_check"]()

    assert notifier.messages == []


def test_deep_analysis_job_sends_digest() -> None:
    report = AnalysisReport(
        type="deep_analysis",
        project_ids=["p1", "p2"],
        summary="Two projects reviewed",
        generated_tasks=["task-1"],
    )
    notifier = LogNotifier()
    scheduler = AgentScheduler(
        ScheduleSettings(), FakeAnalysis(deep_report=report), notifier=notifier
    )

    {job.job_id: job.func for job in scheduler.jobs()}["deep_analysis"]()

    assert "Projects analyzed: 2" in notifier.messages[0]
    assert "Tasks generated: 1" in notifier.messages[0]


def test_failing_analysis_job_notifies_and_does_not_raise() -> None:
    notifier = LogNotifier()
    scheduler = AgentScheduler(
        ScheduleSettings(), FakeAnalysis(error=RuntimeError("timeout")), notifier=notifier
    )

    jobs = {job.job_id: job.func for job in scheduler.jobs()}
    jobs["deep_analysis"]()
    jobs["health_check"]()

    assert notifier.messages == [
        "*Deep Analysis Failed*\n\ntimeout",
        "*Health Check Failed*\n\ntimeout",
    ]


def test_optional_jobs_call_their_collaborators() -> None:
    executor = FakeExecutor()
    crawler = FakeCrawler()
    settings = ScheduleSettings(
        task_executor_enabled=True, news_crawl_enabled=True, universal_crawler_enabled=True
    )
    scheduler = AgentScheduler(settings, FakeAnalysis(), executor=executor, crawler=crawler)

    for job in scheduler.jobs():
        if job.job_id in {"task_executor", "news_crawl", "universal_crawler"}:
            job.func()

    assert executor.runs == 1
    assert sorted(crawler.calls) == ["due", "news"]
