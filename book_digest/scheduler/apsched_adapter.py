"""Background scheduling of source runs and the periodic summary drain."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import ScheduleConfig, ScheduleType, SourceConfig
from ..logging_conf import configure_logging

SOURCE_JOB_PREFIX = "source::"
SUMMARY_DRAIN_JOB_ID = "summaries::drain"


def source_job_id(source_name: str) -> str:
    return f"{SOURCE_JOB_PREFIX}{source_name}"


def build_trigger(schedule: ScheduleConfig) -> BaseTrigger:
    """Translate a ``ScheduleConfig`` into an APScheduler trigger.

    ``once`` without a value means "as soon as the scheduler starts"; naive
    ISO datetimes are read as UTC.
    """

    if schedule.type is ScheduleType.CRON:
        return CronTrigger.from_crontab(str(schedule.value), timezone=timezone.utc)
    if schedule.type is ScheduleType.INTERVAL:
        if isinstance(schedule.value, dict):
            return IntervalTrigger(**schedule.value)
        if isinstance(schedule.value, (int, float)) and not isinstance(schedule.value, bool):
            return IntervalTrigger(seconds=float(schedule.value))
        raise ValueError(f"interval schedule needs seconds or trigger kwargs, got {schedule.value!r}")
    if schedule.type is ScheduleType.ONCE:
        if not schedule.value:
            return DateTrigger(run_date=datetime.now(timezone.utc))
        run_date = datetime.fromisoformat(str(schedule.value))
        if run_date.tzinfo is None:
            run_date = run_date.replace(tzinfo=timezone.utc)
        return DateTrigger(run_date=run_date)
    raise ValueError(f"Unknown schedule type: {schedule.type}")


class APSchedulerAdapter:
    """Own a ``BackgroundScheduler`` holding one job per source plus the summary drain."""

    def __init__(self, scheduler: BackgroundScheduler | None = None) -> None:
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        self.logger = configure_logging().bind(component="scheduler")
        self.started = False

    def start(self) -> None:
        if self.started:
            return
        self.scheduler.start()
        self.started = True
        self.logger.info("scheduler_started", jobs=len(self.scheduler.get_jobs()))

    def shutdown(self) -> None:
        if not self.started:
            return
        self.scheduler.shutdown(wait=False)
        self.started = False
        self.logger.info("scheduler_stopped")

    # ------------------------------------------------------------------
    def schedule_source(self, source: SourceConfig, callback: Callable[[SourceConfig], Any]) -> str:
        job_id = source_job_id(source.source_name)
        self._add(job_id, callback, build_trigger(source.schedule), args=[source])
        self.logger.info(
            "source_scheduled",
            source=source.source_name,
            provider=source.provider.value,
            schedule=source.schedule.type.value,
        )
        return job_id

    def schedule_sources(
        self, sources: Iterable[SourceConfig], callback: Callable[[SourceConfig], Any]
    ) -> list[str]:
        return [self.schedule_source(source, callback) for source in sources]

    def schedule_summary_drain(self, interval_seconds: float, callback: Callable[[], Any]) -> str:
        self._add(SUMMARY_DRAIN_JOB_ID, callback, IntervalTrigger(seconds=float(interval_seconds)), args=[])
        self.logger.info("summary_drain_scheduled", interval_seconds=interval_seconds)
        return SUMMARY_DRAIN_JOB_ID

    def remove_source(self, source_name: str) -> bool:
        try:
            self.scheduler.remove_job(source_job_id(source_name))
        except (JobLookupError, KeyError):
            self.logger.warning("source_not_scheduled", source=source_name)
            return False
        return True

    def list_jobs(self) -> list[dict]:
        jobs = [
            {
                "id": job.id,
                "next_run_time": getattr(job, "next_run_time", None),
                "trigger": str(job.trigger),
            }
            for job in self.scheduler.get_jobs()
        ]
        return sorted(jobs, key=lambda job: job["id"])

    def _add(self, job_id: str, callback: Callable[..., Any], trigger: BaseTrigger, args: list) -> None:
        self.scheduler.add_job(callback, trigger=trigger, id=job_id, args=args, replace_existing=True)


__all__ = [
    "APSchedulerAdapter",
    "SOURCE_JOB_PREFIX",
    "SUMMARY_DRAIN_JOB_ID",
    "build_trigger",
    "source_job_id",
]
