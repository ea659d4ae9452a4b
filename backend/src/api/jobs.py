"""
Admin endpoints for background jobs.

Provides endpoints for:
- Listing job schedulers and their last run
- Triggering a run on demand (optionally as a dry run)
- Restoring an archived user
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from backend.src.api.dependencies import get_job_registry
from backend.src.db.database import get_db
from backend.src.jobs import JobRegistry, restore_archived_user
from backend.src.schemas.jobs import JobStatusResponse, JobSummaryResponse
from backend.src.services.exceptions import ConflictError, NotFoundError
from backend.src.utils.logging_config import get_logger


logger = get_logger("api")

router = APIRouter(
    prefix="/jobs",
    tags=["Jobs"],
)


@router.get(
    "",
    response_model=List[JobStatusResponse],
    summary="List jobs",
)
async def list_jobs(
    registry: JobRegistry = Depends(get_job_registry),
) -> List[JobStatusResponse]:
    """List every registered job with its trigger and last run."""
    return [JobStatusResponse.from_scheduler(s) for s in registry.all()]


@router.get(
    "/{name}",
    response_model=JobStatusResponse,
    summary="Get job",
)
async def get_job(
    name: str,
    registry: JobRegistry = Depends(get_job_registry),
) -> JobStatusResponse:
    try:
        return JobStatusResponse.from_scheduler(registry.get(name))
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {name} not found",
        )


@router.post(
    "/{name}/run",
    response_model=JobSummaryResponse,
    summary="Run job now",
)
async def run_job(
    name: str,
    dry_run: bool = Query(False, description="Report actions without applying them"),
    registry: JobRegistry = Depends(get_job_registry),
) -> JobSummaryResponse:
    """
    Run a job immediately.

    The min-interval guard still applies to non-dry runs; a guarded run
    comes back with skipped=true and the reason.

    Raises:
        404: Unknown job
    """
    try:
        scheduler = registry.get(name)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {name} not found",
        )

    logger.info(f"Manual run of {name}", extra={"job_name": name, "dry_run": dry_run})
    summary = await scheduler.run_once(dry_run=dry_run)
    return JobSummaryResponse.from_summary(summary)


@router.post(
    "/archived-users/{guid}/restore",
    summary="Restore archived user",
)
async def restore_user(
    guid: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """
    Re-create a user from its archive snapshot.

    Raises:
        404: Archive not found
        409: Already restored, or user exists again
    """
    try:
        user = restore_archived_user(db, guid)
        return user.to_snapshot()
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Archive {guid} not found",
        )
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
