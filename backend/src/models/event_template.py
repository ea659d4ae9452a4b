"""
EventTemplate model for organizer-authored (optionally recurring) events.

An EventTemplate holds everything shared by its occurrences: title, pricing,
capacity, and for recurring events the recurrence pattern. Bookable
occurrences are materialized as EventInstance rows inside a rolling
lookahead window.

Design Rationale:
- The recurrence pattern is stored as typed columns rather than a JSON blob,
  so invalid shapes are rejected at the service boundary and queries can
  filter on pattern_type and end_date
- pattern_type is a tagged variant: days_of_week is only set for weekly
  patterns and day_of_month only for monthly ones
- ticket_price of 0 means the event is free and registrations skip payment
"""

import enum
from datetime import date as date_type
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, Time, Text, Numeric,
    Enum,
)
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin
from backend.src.models.types import JSONBType
from backend.src.utils.instants import utc_now

if TYPE_CHECKING:
    from backend.src.services.recurrence import RecurrencePattern


class PatternType(str, enum.Enum):
    """Recurrence pattern type."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class EventTemplate(Base, GuidMixin):
    """
    Organizer-authored event template.

    Attributes:
        id: Primary key (internal, never exposed)
        uuid: UUIDv7 for external identification (inherited from GuidMixin)
        guid: GUID string property (tpl_xxx, inherited from GuidMixin)
        organizer_id: External user id of the organizer
        title: Event title
        description: Event description
        location: Free-text venue
        category: Free-text category tag
        ticket_price: Price per seat in major units (0 = free)
        currency: ISO currency code
        max_attendees: Default capacity per instance (<= 0 = unlimited)
        allow_bulk_registrations: Whether bulk (multi-seat) bookings are allowed
        is_recurring: Whether the pattern columns are populated
        pattern_type: Daily, weekly or monthly
        frequency: Every N days / weeks / months
        days_of_week: Weekday indices (0 = Sunday), weekly only
        day_of_month: Day 1-31, monthly only
        timezone: IANA timezone of the pattern
        start_date: First possible occurrence date
        start_time: Local start time
        end_date: Last possible occurrence date (None = open-ended)
        excluded_dates: ISO dates skipped by the pattern
        created_at: Creation timestamp
        updated_at: Last update timestamp

    Relationships:
        instances: Materialized occurrences (one-to-many, CASCADE on delete)
    """

    __tablename__ = "event_templates"

    GUID_PREFIX = "tpl"

    id = Column(Integer, primary_key=True, autoincrement=True)

    organizer_id = Column(String(128), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    category = Column(String(100), nullable=True)

    ticket_price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="ZAR")
    max_attendees = Column(Integer, nullable=False, default=0)
    allow_bulk_registrations = Column(Boolean, nullable=False, default=False)

    # Recurrence pattern
    is_recurring = Column(Boolean, nullable=False, default=False, index=True)
    pattern_type = Column(
        Enum(PatternType, name="pattern_type", native_enum=False,
             values_callable=lambda e: [m.value for m in e]),
        nullable=True,
    )
    frequency = Column(Integer, nullable=False, default=1)
    days_of_week = Column(JSONBType, nullable=True)
    day_of_month = Column(Integer, nullable=True)
    timezone = Column(String(64), nullable=False, default="Africa/Johannesburg")
    start_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_date = Column(Date, nullable=True)
    excluded_dates = Column(JSONBType, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    instances = relationship(
        "EventInstance",
        back_populates="template",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def is_free(self) -> bool:
        return not self.ticket_price or self.ticket_price <= 0

    @property
    def is_unlimited(self) -> bool:
        return self.max_attendees is None or self.max_attendees <= 0

    @property
    def pattern(self) -> Optional["RecurrencePattern"]:
        """Recurrence pattern assembled from the pattern columns."""
        from backend.src.services.recurrence import RecurrencePattern

        if not self.is_recurring or self.pattern_type is None:
            return None
        return RecurrencePattern(
            type=PatternType(self.pattern_type),
            start_date=self.start_date,
            start_time=self.start_time,
            timezone=self.timezone,
            frequency=self.frequency,
            days_of_week=frozenset(self.days_of_week or []),
            day_of_month=self.day_of_month,
            end_date=self.end_date,
            excluded_dates=frozenset(
                date_type.fromisoformat(d) for d in (self.excluded_dates or [])
            ),
        )

    def apply_pattern(self, pattern: "RecurrencePattern") -> None:
        """Copy a validated pattern onto the template columns."""
        self.is_recurring = True
        self.pattern_type = pattern.type
        self.frequency = pattern.frequency
        self.days_of_week = sorted(pattern.days_of_week) if pattern.type == PatternType.WEEKLY else None
        self.day_of_month = pattern.day_of_month if pattern.type == PatternType.MONTHLY else None
        self.timezone = pattern.timezone
        self.start_date = pattern.start_date
        self.start_time = pattern.start_time
        self.end_date = pattern.end_date
        self.excluded_dates = self._iso_dates(pattern.excluded_dates)

    @staticmethod
    def _iso_dates(dates) -> List[str]:
        return sorted(d.isoformat() for d in dates)

    def __repr__(self) -> str:
        return (
            f"<EventTemplate("
            f"id={self.id}, "
            f"title='{self.title}', "
            f"pattern_type={self.pattern_type}"
            f")>"
        )

    def __str__(self) -> str:
        return self.title
