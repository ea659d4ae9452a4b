"""
EventInstance model for materialized occurrences of a recurring template.

Each row is one bookable occurrence. Rows are created by the instance
materializer and mutated by registration flows; only the past cleanup job
deletes them.

Design Rationale:
- instance_id is deterministic ({template_guid}_{YYYY-MM-DD}) and unique, so
  re-running materialization can never create a duplicate occurrence
- attendee_count is only changed through conditional UPDATE statements in
  RegistrationService, never by read-modify-write on the ORM object
- Display fields (local_time_formatted, timezone_abbr, day_of_week) are
  derived from the pattern and refreshed on every materialization run
- Status is not stored; it is derived at read time from now, is_cancelled
  and the attendee count
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, ForeignKey,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin
from backend.src.utils.instants import utc_now


class InstanceStatus(str, enum.Enum):
    """Read-time status of an event instance."""
    AVAILABLE = "available"
    FULL = "full"
    PAST = "past"
    CANCELLED = "cancelled"


class EventInstance(Base, GuidMixin):
    """
    Materialized occurrence of an event template.

    Attributes:
        id: Primary key (internal, never exposed)
        uuid: UUIDv7 (inherited from GuidMixin)
        guid: GUID string property (ins_xxx, inherited from GuidMixin)
        template_id: Parent template
        instance_id: Deterministic occurrence key, unique
        event_date: Occurrence instant (naive UTC)
        local_date: Occurrence date in the template timezone
        local_time_formatted: Local start time, e.g. "10:00 AM"
        timezone: IANA timezone used to compute the occurrence
        timezone_abbr: Zone abbreviation at event_date, e.g. "SAST"
        day_of_week: Weekday name, e.g. "Monday"
        max_attendees: Capacity (<= 0 = unlimited)
        attendee_count: Seats currently held by counted registrations
        is_cancelled: Cancelled by the organizer
        cancelled_at: When the instance was cancelled
        created_at: Creation timestamp
        updated_at: Last update timestamp

    Relationships:
        template: Parent template (many-to-one)
        registrations: Registrations against this occurrence

    Constraints:
        - instance_id is unique
        - attendee_count <= max_attendees unless unlimited
    """

    __tablename__ = "event_instances"

    GUID_PREFIX = "ins"

    id = Column(Integer, primary_key=True, autoincrement=True)

    template_id = Column(
        Integer,
        ForeignKey("event_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    instance_id = Column(String(80), nullable=False)

    event_date = Column(DateTime, nullable=False)
    local_date = Column(Date, nullable=False)
    local_time_formatted = Column(String(16), nullable=False)
    timezone = Column(String(64), nullable=False)
    timezone_abbr = Column(String(16), nullable=False)
    day_of_week = Column(String(16), nullable=False)

    max_attendees = Column(Integer, nullable=False, default=0)
    attendee_count = Column(Integer, nullable=False, default=0)

    is_cancelled = Column(Boolean, nullable=False, default=False)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    template = relationship("EventTemplate", back_populates="instances")
    registrations = relationship(
        "Registration",
        back_populates="instance",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("instance_id", name="uq_event_instances_instance_id"),
        Index("ix_event_instances_template_date", "template_id", "event_date"),
    )

    @property
    def is_unlimited(self) -> bool:
        return self.max_attendees is None or self.max_attendees <= 0

    @property
    def remaining(self):
        """Seats left, or None when unlimited."""
        if self.is_unlimited:
            return None
        return max(self.max_attendees - self.attendee_count, 0)

    def status_at(self, now: datetime) -> InstanceStatus:
        """
        Derive the instance status at a point in time.

        Precedence: cancelled, then past, then full, then available.
        """
        if self.is_cancelled:
            return InstanceStatus.CANCELLED
        if self.event_date < now:
            return InstanceStatus.PAST
        if not self.is_unlimited and self.attendee_count >= self.max_attendees:
            return InstanceStatus.FULL
        return InstanceStatus.AVAILABLE

    def __repr__(self) -> str:
        return (
            f"<EventInstance("
            f"instance_id='{self.instance_id}', "
            f"event_date={self.event_date}, "
            f"attendees={self.attendee_count}/{self.max_attendees}"
            f")>"
        )
