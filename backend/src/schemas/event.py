"""
Pydantic schemas for recurring event API request/response validation.

Provides data validation and serialization for:
- Template creation and pattern updates
- Template, pattern and instance responses
- Materialization and series-end summaries

Design:
- Request schemas only check shapes; pattern rules (weekly needs days,
  monthly needs a day of month, ...) are enforced by the recurrence
  evaluator so every problem is reported together
- GUIDs are exposed, never internal IDs
- Datetimes are stored as naive UTC and serialized with an explicit "Z"
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, field_serializer

from backend.src.models import EventInstance, EventTemplate, InstanceStatus, PatternType
from backend.src.services.recurrence import format_recurrence_display, is_series_active


def _utc_iso(v: Optional[datetime]) -> Optional[str]:
    return v.isoformat() + "Z" if v else None


# ============================================================================
# Request Schemas
# ============================================================================


class RecurrencePatternSchema(BaseModel):
    """
    Recurrence pattern as sent by clients.

    days_of_week uses 0 = Sunday ... 6 = Saturday.
    """

    type: PatternType
    frequency: int = Field(default=1)
    days_of_week: List[int] = Field(default_factory=list)
    day_of_month: Optional[int] = Field(default=None)
    timezone: Optional[str] = Field(default=None, max_length=64)
    start_date: date
    start_time: str = Field(..., description='Local start time, "HH:MM"')
    end_date: Optional[date] = Field(default=None)
    excluded_dates: List[date] = Field(default_factory=list)

    def to_pattern_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    model_config = {
        "json_schema_extra": {
            "example": {
                "type": "weekly",
                "frequency": 1,
                "days_of_week": [1, 3],
                "timezone": "Africa/Johannesburg",
                "start_date": "2026-03-02",
                "start_time": "10:00",
                "end_date": None,
                "excluded_dates": ["2026-03-18"],
            }
        }
    }


class EventTemplateCreate(BaseModel):
    """
    Schema for creating a recurring event template.

    Required:
        title: Event title
        recurrence_pattern: How the event repeats

    Optional:
        ticket_price: Price per seat in major units (0 = free)
        max_attendees: Capacity per instance (0 = unlimited)
        allow_bulk_registrations: Allow multi-seat bookings
    """

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None)
    location: Optional[str] = Field(default=None, max_length=255)
    category: Optional[str] = Field(default=None, max_length=100)
    ticket_price: Decimal = Field(default=Decimal("0"), ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    max_attendees: int = Field(default=0)
    allow_bulk_registrations: bool = Field(default=False)
    recurrence_pattern: RecurrencePatternSchema

    @field_validator("title")
    @classmethod
    def validate_title_not_whitespace(cls, v: str) -> str:
        """Ensure title is not just whitespace."""
        if not v.strip():
            raise ValueError("Title cannot be empty or whitespace")
        return v.strip()


class PatternUpdate(BaseModel):
    """
    Schema for replacing a template's recurrence pattern.

    cancel_affected confirms that future instances holding registrations
    which the new pattern drops should be cancelled.
    """

    recurrence_pattern: RecurrencePatternSchema
    cancel_affected: bool = Field(default=False)


# ============================================================================
# Response Schemas
# ============================================================================


class MaterializationSummary(BaseModel):
    """Counts from a materialization run."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0
    removed: int = 0
    cancelled: int = 0
    errors: List[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class EventTemplateResponse(BaseModel):
    """Schema for template API responses."""

    guid: str = Field(..., description="Template GUID (tpl_xxx)")
    organizer_id: str
    title: str
    description: Optional[str]
    location: Optional[str]
    category: Optional[str]
    ticket_price: Decimal
    currency: str
    max_attendees: int
    allow_bulk_registrations: bool
    is_recurring: bool
    recurrence_pattern: Optional[Dict[str, Any]] = None
    recurrence_display: Optional[str] = None
    is_series_active: bool = False
    created_at: datetime
    updated_at: datetime

    @field_serializer("created_at", "updated_at")
    @classmethod
    def serialize_datetime_utc(cls, v: datetime) -> str:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return _utc_iso(v)

    @classmethod
    def from_template(cls, template: EventTemplate, today: date) -> "EventTemplateResponse":
        pattern = template.pattern
        return cls(
            guid=template.guid,
            organizer_id=template.organizer_id,
            title=template.title,
            description=template.description,
            location=template.location,
            category=template.category,
            ticket_price=template.ticket_price,
            currency=template.currency,
            max_attendees=template.max_attendees,
            allow_bulk_registrations=template.allow_bulk_registrations,
            is_recurring=template.is_recurring,
            recurrence_pattern=pattern.to_dict() if pattern else None,
            recurrence_display=format_recurrence_display(pattern) if pattern else None,
            is_series_active=is_series_active(pattern, today) if pattern else False,
            created_at=template.created_at,
            updated_at=template.updated_at,
        )


class TemplateWriteResponse(BaseModel):
    """Template plus the materialization run its change triggered."""

    template: EventTemplateResponse
    materialization: MaterializationSummary


class EventInstanceResponse(BaseModel):
    """Schema for instance API responses."""

    guid: str = Field(..., description="Instance GUID (ins_xxx)")
    instance_id: str = Field(..., description="Deterministic occurrence key")
    template_guid: str
    event_date: datetime = Field(..., description="Occurrence instant (UTC)")
    local_date: date
    local_time_formatted: str
    timezone: str
    timezone_abbr: str
    day_of_week: str
    max_attendees: int
    attendee_count: int
    remaining: Optional[int] = Field(default=None, description="Seats left (null = unlimited)")
    is_cancelled: bool
    cancelled_at: Optional[datetime] = None
    status: InstanceStatus

    @field_serializer("event_date", "cancelled_at")
    @classmethod
    def serialize_datetime_utc(cls, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return _utc_iso(v)

    @classmethod
    def from_instance(cls, instance: EventInstance, now: datetime) -> "EventInstanceResponse":
        return cls(
            guid=instance.guid,
            instance_id=instance.instance_id,
            template_guid=instance.template.guid,
            event_date=instance.event_date,
            local_date=instance.local_date,
            local_time_formatted=instance.local_time_formatted,
            timezone=instance.timezone,
            timezone_abbr=instance.timezone_abbr,
            day_of_week=instance.day_of_week,
            max_attendees=instance.max_attendees,
            attendee_count=instance.attendee_count,
            remaining=instance.remaining,
            is_cancelled=instance.is_cancelled,
            cancelled_at=instance.cancelled_at,
            status=instance.status_at(now),
        )


class InstanceListResponse(BaseModel):
    """Paginated instance list."""

    items: List[EventInstanceResponse]
    total: int
    page: int
    page_size: int
    has_more: bool


class EndSeriesResponse(BaseModel):
    """Outcome of ending a series."""

    template: EventTemplateResponse
    end_date: date
    affected_registrations: int
    materialization: MaterializationSummary


class CancelInstanceResponse(BaseModel):
    """Outcome of cancelling an instance."""

    instance: EventInstanceResponse
    registrations_cancelled: int
