"""
Pydantic schemas for the background job admin surface.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer

from backend.src.jobs import JobScheduler, JobSummary


class JobSummaryResponse(BaseModel):
    """Result of one job run."""

    job_name: str
    dry_run: bool
    processed: int
    succeeded: int
    skipped: bool
    failed: bool
    skip_reason: Optional[str] = None
    actions: List[str] = Field(default_factory=list)
    errors: List[Dict[str, Optional[str]]] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: int = 0

    @field_serializer("started_at", "finished_at")
    @classmethod
    def serialize_datetime_utc(cls, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return v.isoformat() + "Z" if v else None

    @classmethod
    def from_summary(cls, summary: JobSummary) -> "JobSummaryResponse":
        return cls(
            job_name=summary.job_name,
            dry_run=summary.dry_run,
            processed=summary.processed,
            succeeded=summary.succeeded,
            skipped=summary.skipped,
            failed=summary.failed,
            skip_reason=summary.skip_reason,
            actions=summary.actions,
            errors=summary.errors,
            started_at=summary.started_at,
            finished_at=summary.finished_at,
            duration_ms=summary.duration_ms,
        )


class JobStatusResponse(BaseModel):
    """Scheduler state for one job."""

    name: str
    state: str
    trigger: str
    started: bool
    dry_run_default: bool
    min_interval_seconds: int
    last_run_at: Optional[datetime] = None
    last_summary: Optional[JobSummaryResponse] = None

    @field_serializer("last_run_at")
    @classmethod
    def serialize_datetime_utc(cls, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return v.isoformat() + "Z" if v else None

    @classmethod
    def from_scheduler(cls, scheduler: JobScheduler) -> "JobStatusResponse":
        return cls(
            name=scheduler.name,
            state=scheduler.state.value,
            trigger=scheduler.trigger.describe(),
            started=scheduler.is_started,
            dry_run_default=scheduler.dry_run,
            min_interval_seconds=int(scheduler.min_interval.total_seconds()),
            last_run_at=scheduler.last_run_at,
            last_summary=(
                JobSummaryResponse.from_summary(scheduler.last_summary)
                if scheduler.last_summary else None
            ),
        )
