"""
Events API endpoints for recurring event templates and their instances.

Provides endpoints for:
- Creating a recurring template (materializes the first window)
- Reading a template and its recurrence pattern
- Editing the pattern (reconciles future instances)
- Ending a series
- Listing, reading and cancelling instances

Design:
- Uses dependency injection for services
- Template identifiers are GUIDs (tpl_xxx); instances accept either their
  deterministic instance_id or their GUID (ins_xxx)
- Only the organizer may change a template or cancel its instances
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from backend.src.api.dependencies import get_current_user_id, get_event_service
from backend.src.schemas.event import (
    CancelInstanceResponse,
    EndSeriesResponse,
    EventInstanceResponse,
    EventTemplateCreate,
    EventTemplateResponse,
    InstanceListResponse,
    MaterializationSummary,
    PatternUpdate,
    TemplateWriteResponse,
)
from backend.src.services.event_service import EventService
from backend.src.services.exceptions import (
    InvalidPatternError,
    NotFoundError,
    PermissionDeniedError,
    SeriesEditConflictError,
    ValidationError,
)
from backend.src.services.instance_service import MaterializationResult
from backend.src.utils.instants import to_naive_utc, utc_now
from backend.src.utils.logging_config import get_logger


logger = get_logger("api")

router = APIRouter(
    prefix="/events",
    tags=["Events"],
)


def _summary(result: MaterializationResult) -> MaterializationSummary:
    return MaterializationSummary.model_validate(result)


def _invalid_pattern(e: InvalidPatternError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"message": e.message, "errors": e.errors},
    )


# ============================================================================
# Instance Endpoints
# ============================================================================


@router.get(
    "/instances/{instance_id}",
    response_model=EventInstanceResponse,
    summary="Get instance",
)
async def get_instance(
    instance_id: str,
    event_service: EventService = Depends(get_event_service),
) -> EventInstanceResponse:
    """
    Get a single instance with its derived status and remaining seats.

    Args:
        instance_id: Deterministic instance id or ins_ GUID

    Raises:
        404: Instance not found
    """
    try:
        instance = event_service.instances.get_instance(instance_id)
        return EventInstanceResponse.from_instance(instance, utc_now())
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Instance {instance_id} not found",
        )


@router.post(
    "/instances/{instance_id}/cancel",
    response_model=CancelInstanceResponse,
    summary="Cancel instance",
)
async def cancel_instance(
    instance_id: str,
    user_id: str = Depends(get_current_user_id),
    event_service: EventService = Depends(get_event_service),
) -> CancelInstanceResponse:
    """
    Cancel one instance; its active registrations are cancelled and their
    seats released. Cancelling twice is a no-op.

    Raises:
        403: Caller is not the organizer
        404: Instance not found
    """
    try:
        instance, affected = event_service.cancel_instance(instance_id, user_id)
        logger.info(
            f"Cancelled instance {instance.instance_id}",
            extra={"instance_id": instance.instance_id, "registrations_cancelled": affected}
        )
        return CancelInstanceResponse(
            instance=EventInstanceResponse.from_instance(instance, utc_now()),
            registrations_cancelled=affected,
        )
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Instance {instance_id} not found",
        )
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)


# ============================================================================
# Template Endpoints
# ============================================================================


@router.post(
    "",
    response_model=TemplateWriteResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create recurring event",
)
async def create_template(
    request: EventTemplateCreate,
    user_id: str = Depends(get_current_user_id),
    event_service: EventService = Depends(get_event_service),
) -> TemplateWriteResponse:
    """
    Create a recurring event template owned by the caller.

    Instances inside the lookahead window are materialized immediately.

    Example:
        POST /api/events
        {
            "title": "Morning Yoga",
            "ticket_price": 0,
            "max_attendees": 20,
            "recurrence_pattern": {
                "type": "weekly",
                "days_of_week": [1, 3],
                "start_date": "2026-03-02",
                "start_time": "10:00"
            }
        }

    Raises:
        400: Invalid pattern (every problem is listed)
    """
    try:
        template, result = event_service.create_template(
            organizer_id=user_id,
            title=request.title,
            pattern=request.recurrence_pattern.to_pattern_dict(),
            description=request.description,
            location=request.location,
            category=request.category,
            ticket_price=request.ticket_price,
            currency=request.currency,
            max_attendees=request.max_attendees,
            allow_bulk_registrations=request.allow_bulk_registrations,
        )
        return TemplateWriteResponse(
            template=EventTemplateResponse.from_template(template, utc_now().date()),
            materialization=_summary(result),
        )
    except InvalidPatternError as e:
        raise _invalid_pattern(e)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


@router.get(
    "/{guid}",
    response_model=EventTemplateResponse,
    summary="Get recurring event",
)
async def get_template(
    guid: str,
    event_service: EventService = Depends(get_event_service),
) -> EventTemplateResponse:
    """
    Get a template with its pattern and human-readable schedule.

    Raises:
        404: Template not found
    """
    try:
        template = event_service.get_template(guid)
        return EventTemplateResponse.from_template(template, utc_now().date())
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {guid} not found",
        )


@router.get(
    "/{guid}/pattern",
    summary="Get recurrence pattern",
)
async def get_pattern(
    guid: str,
    event_service: EventService = Depends(get_event_service),
) -> Dict[str, Any]:
    """Get the raw recurrence pattern of a template."""
    try:
        return event_service.get_pattern(guid).to_dict()
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.put(
    "/{guid}/pattern",
    response_model=TemplateWriteResponse,
    summary="Update recurrence pattern",
)
async def update_pattern(
    guid: str,
    request: PatternUpdate,
    user_id: str = Depends(get_current_user_id),
    event_service: EventService = Depends(get_event_service),
) -> TemplateWriteResponse:
    """
    Replace the recurrence pattern and reconcile future instances.

    Future instances that the new pattern drops are deleted. If any of them
    hold active registrations the request fails with 409 listing them,
    unless cancel_affected is true, in which case they are cancelled.

    Raises:
        400: Invalid pattern
        403: Caller is not the organizer
        404: Template not found
        409: Registered instances would be dropped
    """
    try:
        template, result = event_service.update_pattern(
            guid,
            request.recurrence_pattern.to_pattern_dict(),
            organizer_id=user_id,
            cancel_affected=request.cancel_affected,
        )
        return TemplateWriteResponse(
            template=EventTemplateResponse.from_template(template, utc_now().date()),
            materialization=_summary(result),
        )
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {guid} not found",
        )
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
    except InvalidPatternError as e:
        raise _invalid_pattern(e)
    except SeriesEditConflictError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": e.message, "instance_ids": e.instance_ids},
        )


@router.post(
    "/{guid}/end",
    response_model=EndSeriesResponse,
    summary="End recurring series",
)
async def end_series(
    guid: str,
    user_id: str = Depends(get_current_user_id),
    event_service: EventService = Depends(get_event_service),
) -> EndSeriesResponse:
    """
    End the series today. Later instances are cancelled, or deleted when
    nobody registered; the number of affected registrations is returned.

    Raises:
        400: Template does not recur
        403: Caller is not the organizer
        404: Template not found
    """
    try:
        outcome = event_service.end_series(guid, organizer_id=user_id)
        return EndSeriesResponse(
            template=EventTemplateResponse.from_template(outcome.template, outcome.end_date),
            end_date=outcome.end_date,
            affected_registrations=outcome.affected_registrations,
            materialization=_summary(outcome.materialization),
        )
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {guid} not found",
        )
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


@router.get(
    "/{guid}/instances",
    response_model=InstanceListResponse,
    summary="List instances",
)
async def list_instances(
    guid: str,
    start: Optional[datetime] = Query(None, description="Lower bound (defaults to now)"),
    end: Optional[datetime] = Query(None, description="Upper bound (defaults to now + lookahead)"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    include_cancelled: bool = Query(True),
    event_service: EventService = Depends(get_event_service),
) -> InstanceListResponse:
    """
    List a template's instances in date order.

    Raises:
        400: end before start
        404: Template not found
    """
    try:
        template = event_service.get_template(guid)
        result = event_service.instances.list_upcoming(
            template,
            start=to_naive_utc(start) if start else None,
            end=to_naive_utc(end) if end else None,
            page=page,
            page_size=page_size,
            include_cancelled=include_cancelled,
        )
        now = utc_now()
        return InstanceListResponse(
            items=[EventInstanceResponse.from_instance(i, now) for i in result.items],
            total=result.total,
            page=result.page,
            page_size=result.page_size,
            has_more=result.has_more,
        )
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {guid} not found",
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
