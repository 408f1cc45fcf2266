"""Cron and interval job scheduling for analyses, crawls, and backlog execution."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from pm_agent.agent.analysis import AnalysisService
from pm_agent.crawler.service import CrawlerService
from pm_agent.integrations.notifications import LogNotifier, Notifier
from pm_agent.models.report_contracts import AnalysisReport
from pm_agent.orchestration.task_executor import TaskExecutor
from pm_agent.shared.settings import ScheduleSettings

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 4 * 60 * 60 * 1000
DEFAULT_TIME = (9, 0)
UNIVERSAL_CRAWLER_CRON = "0 * * * *"
_INTERVAL = re.compile(r"^(\d+)([hmd])$")
_UNIT_MS = {"m": 60 * 1000, "h": 60 * 60 * 1000, "d": 24 * 60 * 60 * 1000}
# cron hour steps stop at 23; longer cadences use an interval trigger
MAX_CRON_HOUR_STEP = 23

HEALTH_CHECK_JOB = "health_check"
DEEP_ANALYSIS_JOB = "deep_analysis"
NEWS_CRAWL_JOB = "news_crawl"
UNIVERSAL_CRAWLER_JOB = "universal_crawler"
TASK_EXECUTOR_JOB = "task_executor"


def parse_interval(interval: str) -> int:
    """Milliseconds for ``<N>m``, ``<N>h`` or ``<N>d``; 4h for anything else."""

    match = _INTERVAL.match((interval or "").strip())
    if not match or int(match.group(1)) == 0:
        logger.warning("Invalid interval format: %r, defaulting to 4h", interval)
        return DEFAULT_INTERVAL_MS
    return int(match.group(1)) * _UNIT_MS[match.group(2)]


def parse_time(value: str) -> tuple[int, int]:
    """``HH:MM`` as ``(hour, minute)``; missing parts default to 9 and 0.

    Out-of-range values fall back to 09:00 with a warning.
    """

    parts = (value or "").strip().split(":")
    hour = int(parts[0]) if parts[0].isdigit() else DEFAULT_TIME[0]
    minute = int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else DEFAULT_TIME[1]
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        logger.warning("Invalid time of day: %r, defaulting to 09:00", value)
        return DEFAULT_TIME
    return hour, minute


def health_check_cron(interval: str) -> str | None:
    """Hourly-step cron for the interval, or None once it reaches a day."""

    hours = max(1, round(parse_interval(interval) / _UNIT_MS["h"]))
    if hours > MAX_CRON_HOUR_STEP:
        return None
    return f"0 */{hours} * * *"


def deep_analysis_cron(time_of_day: str) -> str:
    hour, minute = parse_time(time_of_day)
    return f"{minute} {hour} * * 1-5"


def daily_cron(time_of_day: str) -> str:
    hour, minute = parse_time(time_of_day)
    return f"{minute} {hour} * * *"


def guarded_job(
    name: str,
    fn: Callable[[], Any],
    notifier: Notifier | None = None,
    failure_title: str = "",
) -> Callable[[], None]:
    """Wrap a job body so no exception escapes into the scheduler thread."""

    def _run() -> None:
        logger.info("Running scheduled job %s", name)
        try:
            fn()
        except Exception as exc:
            logger.exception("Scheduled job %s failed", name)
            if notifier is not None and failure_title:
                try:
                    notifier.send_message(f"*{failure_title} Failed*\n\n{exc}")
                except Exception as notify_exc:
                    logger.error("Failure notification for %s not sent: %s", name, notify_exc)
            return
        logger.info("Scheduled job %s completed", name)

    _run.__name__ = f"guarded_{name}"
    return _run


def health_check_alert(report: AnalysisReport) -> str | None:
    critical = sum(1 for finding in report.findings if finding.severity == "critical")
    errors = sum(1 for finding in report.findings if finding.severity == "error")
    if not critical and not errors:
        return None
    return (
        "*Health Check Alert*\n\n"
        f"Found {critical} critical and {errors} error findings.\n\n"
        f"Summary: {report.summary[:200]}..."
    )


def deep_analysis_digest(report: AnalysisReport) -> str:
    return (
        "*Daily Analysis Complete*\n\n"
        f"Projects analyzed: {len(report.project_ids)}\n"
        f"Findings: {len(report.findings)}\n"
        f"Tasks generated: {len(report.generated_tasks)}\n\n"
        f"Summary: {report.summary[:300]}..."
    )


@dataclass(frozen=True)
class ScheduledJob:
    """Fires on ``cron`` when set, otherwise every ``interval_ms``."""

    job_id: str
    func: Callable[[], None]
    cron: str | None = None
    interval_ms: int | None = None

    def trigger(self, timezone: str) -> BaseTrigger:
        if self.cron is not None:
            return CronTrigger.from_crontab(self.cron, timezone=timezone)
        seconds = (self.interval_ms or DEFAULT_INTERVAL_MS) / 1000
        return IntervalTrigger(seconds=seconds, timezone=timezone)

    def describe(self) -> str:
        if self.cron is not None:
            return self.cron
        return f"every {(self.interval_ms or DEFAULT_INTERVAL_MS) // 1000}s"


class AgentScheduler:
    def __init__(
        self,
        settings: ScheduleSettings,
        analysis: AnalysisService,
        executor: TaskExecutor | None = None,
        crawler: CrawlerService | None = None,
        notifier: Notifier | None = None,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        self.settings = settings
        self.analysis = analysis
        self.executor = executor
        self.crawler = crawler
        self.notifier = notifier or LogNotifier()
        self.scheduler = scheduler or BackgroundScheduler(timezone=settings.timezone)
        self._registered = False

    def _health_check(self) -> None:
        report = self.analysis.run_health_check()
        if report is None:
            return
        alert = health_check_alert(report)
        if alert:
            self.notifier.send_message(alert)
        self.analysis.check_alert_thresholds(report)

    def _deep_analysis(self) -> None:
        report = self.analysis.run_deep_analysis()
        if report is not None:
            self.notifier.send_message(deep_analysis_digest(report))
            self.analysis.check_alert_thresholds(report)

    def _news_crawl(self) -> None:
        if self.crawler is not None:
            self.crawler.run_news_crawl()

    def _universal_crawl(self) -> None:
        if self.crawler is not None:
            self.crawler.run_due_sources()

    def _execute_task(self) -> None:
        if self.executor is not None:
            self.executor.execute_next_task()

    def _health_check_job(self) -> ScheduledJob:
        func = guarded_job(HEALTH_CHECK_JOB, self._health_check, self.notifier, "Health Check")
        interval = self.settings.health_check_interval
        cron = health_check_cron(interval)
        if cron is None:
            return ScheduledJob(HEALTH_CHECK_JOB, func, interval_ms=parse_interval(interval))
        return ScheduledJob(HEALTH_CHECK_JOB, func, cron=cron)

    def jobs(self) -> list[ScheduledJob]:
        settings = self.settings
        jobs = [
            self._health_check_job(),
            ScheduledJob(
                DEEP_ANALYSIS_JOB,
                guarded_job(
                    DEEP_ANALYSIS_JOB, self._deep_analysis, self.notifier, "Deep Analysis"
                ),
                cron=deep_analysis_cron(settings.deep_analysis_time),
            ),
        ]
        if settings.news_crawl_enabled and self.crawler is not None:
            jobs.append(
                ScheduledJob(
                    NEWS_CRAWL_JOB,
                    guarded_job(NEWS_CRAWL_JOB, self._news_crawl),
                    cron=daily_cron(settings.news_crawl_time),
                )
            )
        if settings.universal_crawler_enabled and self.crawler is not None:
            jobs.append(
                ScheduledJob(
                    UNIVERSAL_CRAWLER_JOB,
                    guarded_job(UNIVERSAL_CRAWLER_JOB, self._universal_crawl),
                    cron=UNIVERSAL_CRAWLER_CRON,
                )
            )
        if settings.task_executor_enabled and self.executor is not None:
            jobs.append(
                ScheduledJob(
                    TASK_EXECUTOR_JOB,
                    guarded_job(TASK_EXECUTOR_JOB, self._execute_task),
                    interval_ms=parse_interval(settings.task_executor_interval),
                )
            )
        return jobs

    def register(self) -> list[ScheduledJob]:
        jobs = self.jobs()
        if self._registered:
            return jobs
        timezone = self.settings.timezone
        for job in jobs:
            self.scheduler.add_job(
                job.func,
                job.trigger(timezone),
                id=job.job_id,
                name=job.job_id,
                replace_existing=True,
            )
            logger.info("Scheduled %s: %s (%s)", job.job_id, job.describe(), timezone)
        self._registered = True
        return jobs

    def start(self) -> None:
        self.register()
        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    def schedule_info(self) -> dict[str, Any]:
        info: dict[str, Any] = {}
        for job in self.scheduler.get_jobs():
            info[job.id] = getattr(job, "next_run_time", None)
        return info
