"""
In-process scheduler for background jobs.

Each job gets its own JobScheduler owning its trigger, rate-limit guard and
last-run state. Schedulers run as asyncio tasks inside the API process (or
the CLI); the same Job classes can be driven by an external cron through
run_once.

Guarantees:
- A job never overlaps itself: run_once skips while a run is in progress
- Two runs of a job are at least min_interval apart; dry runs neither
  respect nor reset the guard since they change nothing
- A job that raises is logged and recorded as a failed summary; the
  scheduler keeps ticking
"""

import asyncio
import enum
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from backend.src.jobs.base import Job, JobSummary
from backend.src.services.exceptions import NotFoundError
from backend.src.utils.instants import as_aware_utc, to_naive_utc, utc_now
from backend.src.utils.logging_config import get_logger


logger = get_logger("jobs")


class Trigger(ABC):
    """Decides when a scheduler fires next."""

    @abstractmethod
    def next_fire(self, after: datetime) -> datetime:
        """Return the next fire time strictly after `after` (both aware UTC)."""

    @abstractmethod
    def describe(self) -> str:
        """Short human-readable description."""


class IntervalTrigger(Trigger):
    """Fires every `seconds` seconds."""

    def __init__(self, seconds: float):
        if seconds <= 0:
            raise ValueError("Interval must be positive")
        self.seconds = seconds

    def next_fire(self, after: datetime) -> datetime:
        return after + timedelta(seconds=self.seconds)

    def describe(self) -> str:
        return f"every {timedelta(seconds=self.seconds)}"


class DailyTrigger(Trigger):
    """Fires once a day at hour:minute local time in `tz`."""

    def __init__(self, hour: int = 0, minute: int = 0, tz: str = "UTC"):
        if not 0 <= hour <= 23 or not 0 <= minute <= 59:
            raise ValueError("Invalid time of day")
        self.hour = hour
        self.minute = minute
        self.zone = ZoneInfo(tz)

    def next_fire(self, after: datetime) -> datetime:
        local = after.astimezone(self.zone)
        candidate = local.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= local:
            candidate = (candidate + timedelta(days=1)).replace(hour=self.hour, minute=self.minute)
        return candidate.astimezone(timezone.utc)

    def describe(self) -> str:
        return f"daily at {self.hour:02d}:{self.minute:02d} {self.zone.key}"


class JobState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class JobScheduler:
    """
    Drives one Job on a trigger with a min-interval guard.

    Attributes:
        job: Job to run
        trigger: When to fire
        min_interval: Minimum gap between two non-dry runs
        dry_run: Default dry-run flag for scheduled runs
        run_immediately: Run once when started, before the first tick
        state: idle or running
        last_run_at: Start of the last non-dry run (naive UTC)
        last_summary: Summary of the last run attempt
    """

    def __init__(
        self,
        job: Job,
        session_factory: Callable[[], Session],
        trigger: Trigger,
        min_interval: timedelta = timedelta(0),
        dry_run: bool = False,
        run_immediately: bool = True,
    ):
        self.job = job
        self.trigger = trigger
        self.min_interval = min_interval
        self.dry_run = dry_run
        self.run_immediately = run_immediately
        self.state = JobState.IDLE
        self.last_run_at: Optional[datetime] = None
        self.last_summary: Optional[JobSummary] = None

        self._session_factory = session_factory
        self._shutdown_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return self.job.name

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: Optional[datetime] = None, dry_run: Optional[bool] = None) -> JobSummary:
        """
        Run the job once, honoring the running flag and min-interval guard.

        Never raises: failures are returned as a summary with failed=True.

        Args:
            now: Reference time, naive UTC (defaults to current time)
            dry_run: Override the scheduler's default dry-run flag

        Returns:
            JobSummary (skipped=True when the guard prevented the run)
        """
        now = to_naive_utc(now) if now else utc_now()
        dry_run = self.dry_run if dry_run is None else dry_run

        if self.state == JobState.RUNNING:
            return self._skip(now, dry_run, "already running")

        if not dry_run and self.last_run_at is not None and now - self.last_run_at < self.min_interval:
            minutes = int((now - self.last_run_at).total_seconds() // 60)
            return self._skip(now, dry_run, f"too soon since last run ({minutes} minutes ago)")

        self.state = JobState.RUNNING
        if not dry_run:
            self.last_run_at = now

        logger.info(f"Job {self.name} started", extra={"job_name": self.name, "dry_run": dry_run})
        started = time.monotonic()
        db = None
        try:
            db = self._session_factory()
            summary = await self.job.run(db, now, dry_run)
        except Exception as e:
            logger.error(
                f"Job {self.name} failed: {e}",
                exc_info=True,
                extra={"job_name": self.name}
            )
            if db is not None:
                db.rollback()
            summary = JobSummary(job_name=self.name, dry_run=dry_run, failed=True)
            summary.add_error(None, e)
        finally:
            if db is not None:
                db.close()
            self.state = JobState.IDLE

        summary.finish(now, time.monotonic() - started)
        self.last_summary = summary

        logger.info(
            f"Job {self.name} finished",
            extra={
                "job_name": self.name,
                "dry_run": dry_run,
                "processed": summary.processed,
                "succeeded": summary.succeeded,
                "errors": len(summary.errors),
                "failed": summary.failed,
                "duration_ms": summary.duration_ms,
            }
        )
        return summary

    def _skip(self, now: datetime, dry_run: bool, reason: str) -> JobSummary:
        logger.info(f"Skipping job {self.name}: {reason}", extra={"job_name": self.name})
        summary = JobSummary(job_name=self.name, dry_run=dry_run, skipped=True, skip_reason=reason)
        return summary.finish(now, 0)

    def next_run_at(self, now: Optional[datetime] = None) -> datetime:
        """Next trigger fire time after now (naive UTC)."""
        after = as_aware_utc(now) if now else datetime.now(timezone.utc)
        return to_naive_utc(self.trigger.next_fire(after))

    def start(self) -> None:
        """Start the scheduling loop as an asyncio task on the running loop."""
        if self.is_started:
            return
        self._shutdown_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(
            f"Scheduler for {self.name} started ({self.trigger.describe()})",
            extra={"job_name": self.name}
        )

    async def stop(self) -> None:
        """Stop the scheduling loop and wait for it to exit."""
        if self._task is None:
            return
        self._shutdown_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Scheduler for {self.name} stopped", extra={"job_name": self.name})

    async def _loop(self) -> None:
        if self.run_immediately:
            await self.run_once()

        while not self._shutdown_event.is_set():
            now = datetime.now(timezone.utc)
            delay = (self.trigger.next_fire(now) - now).total_seconds()
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=max(delay, 0))
            except asyncio.TimeoutError:
                await self.run_once()


class JobRegistry:
    """Schedulers keyed by job name."""

    def __init__(self):
        self._schedulers: Dict[str, JobScheduler] = {}

    def register(self, scheduler: JobScheduler) -> JobScheduler:
        if scheduler.name in self._schedulers:
            raise ValueError(f"Job {scheduler.name} is already registered")
        self._schedulers[scheduler.name] = scheduler
        return scheduler

    def get(self, name: str) -> JobScheduler:
        """
        Raises:
            NotFoundError: If no job with that name is registered
        """
        try:
            return self._schedulers[name]
        except KeyError:
            raise NotFoundError("Job", name)

    def names(self) -> List[str]:
        return list(self._schedulers)

    def all(self) -> List[JobScheduler]:
        return list(self._schedulers.values())

    def start_all(self) -> None:
        for scheduler in self._schedulers.values():
            scheduler.start()

    async def stop_all(self) -> None:
        for scheduler in self._schedulers.values():
            await scheduler.stop()
