"""
Shared building blocks for background jobs.

A job is a class with a name and an async run(db, now, dry_run) method that
returns a JobSummary. Jobs never raise for a single bad item: per-item
failures are appended to summary.errors and the batch continues. Anything
that escapes run() is absorbed by the JobScheduler.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, ClassVar, Dict, List, Optional

from sqlalchemy.orm import Session


@dataclass
class JobSummary:
    """
    Result of one job run.

    Attributes:
        job_name: Job that produced the summary
        dry_run: Whether actions were only planned
        processed: Items examined
        succeeded: Items whose action was applied (or would be, in dry-run)
        skipped: The scheduler skipped the run (rate limit or already running)
        failed: The job body raised; see errors
        actions: Human-readable applied or planned actions
        errors: One {"item", "type", "error"} entry per failure
        started_at: Run start (naive UTC)
        finished_at: Run end (naive UTC)
        duration_ms: Wall-clock duration
        skip_reason: Why the run was skipped
    """
    job_name: str
    dry_run: bool = False
    processed: int = 0
    succeeded: int = 0
    skipped: bool = False
    failed: bool = False
    actions: List[str] = field(default_factory=list)
    errors: List[Dict[str, Optional[str]]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: int = 0
    skip_reason: Optional[str] = None

    def add_error(self, item: Optional[str], error: Any) -> None:
        """Record a failure for one item (or for the whole run when item is None)."""
        self.errors.append({
            "item": item,
            "type": type(error).__name__ if isinstance(error, BaseException) else "Error",
            "error": str(error),
        })

    def add_action(self, action: str) -> None:
        prefix = "[dry-run] " if self.dry_run else ""
        self.actions.append(f"{prefix}{action}")

    def finish(self, started_at: datetime, elapsed_seconds: float) -> "JobSummary":
        self.started_at = started_at
        self.duration_ms = int(elapsed_seconds * 1000)
        self.finished_at = started_at + timedelta(milliseconds=self.duration_ms)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_name": self.job_name,
            "dry_run": self.dry_run,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "actions": list(self.actions),
            "errors": [dict(e) for e in self.errors],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "skip_reason": self.skip_reason,
        }


class Job(ABC):
    """Base class for background jobs."""

    name: ClassVar[str]

    @abstractmethod
    async def run(self, db: Session, now: datetime, dry_run: bool) -> JobSummary:
        """
        Execute one pass of the job.

        Args:
            db: Session owned by the caller for the duration of the run
            now: Reference time, naive UTC
            dry_run: Report intended actions without mutating state
        """
