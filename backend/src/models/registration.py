"""
Registration model for seat bookings against an event instance.

State machine:
    pending_payment -> registered | abandoned | cancelled
    registered      -> cancelled
    abandoned       -> registered (payment verified after abandonment)

is_counted records whether the registration's quantity is currently included
in the instance's attendee_count. Seats are reserved when the registration is
created (free or paid) and released exactly once when it is cancelled or
abandoned, so re-delivered payment confirmations never double count.
"""

import enum

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Enum, Index, text,
)
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin
from backend.src.models.types import JSONBType
from backend.src.utils.instants import utc_now


class RegistrationStatus(str, enum.Enum):
    """Registration lifecycle status."""
    PENDING_PAYMENT = "pending_payment"
    REGISTERED = "registered"
    CANCELLED = "cancelled"
    ABANDONED = "abandoned"


ACTIVE_REGISTRATION_STATUSES = (RegistrationStatus.PENDING_PAYMENT, RegistrationStatus.REGISTERED)

# One active booking per user and instance, enforced by a partial unique index
_ACTIVE_ONLY = text("status IN ('pending_payment', 'registered')")


class Registration(Base, GuidMixin):
    """
    Booking of one or more seats on an event instance.

    Attributes:
        id: Primary key (internal, never exposed)
        guid: GUID string property (reg_xxx, inherited from GuidMixin)
        instance_pk: Booked instance
        user_id: External user id of the booker
        email: Contact email handed to the payment gateway
        quantity: Seats booked (1 for single, 2-50 for bulk)
        status: Lifecycle status
        is_counted: Whether quantity is included in the instance attendee_count
        payment_reference: Gateway reference for paid bookings (unique)
        payment_amount: Amount in minor units (cents / kobo)
        payment_url: Gateway checkout URL
        attendee_details: Per-attendee details for bulk bookings
        initiated_at: When the booking was started
        completed_at: When the booking reached registered
        cancelled_at: When the booking was cancelled or abandoned
    """

    __tablename__ = "registrations"

    GUID_PREFIX = "reg"

    id = Column(Integer, primary_key=True, autoincrement=True)

    instance_pk = Column(
        Integer,
        ForeignKey("event_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id = Column(String(128), nullable=False, index=True)
    email = Column(String(255), nullable=True)

    quantity = Column(Integer, nullable=False, default=1)
    status = Column(
        Enum(RegistrationStatus, name="registration_status", native_enum=False,
             values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RegistrationStatus.REGISTERED,
        index=True,
    )
    is_counted = Column(Boolean, nullable=False, default=False)

    payment_reference = Column(String(100), nullable=True, unique=True)
    payment_amount = Column(Integer, nullable=True)
    payment_url = Column(String(500), nullable=True)

    attendee_details = Column(JSONBType, nullable=True)

    initiated_at = Column(DateTime, default=utc_now, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    instance = relationship("EventInstance", back_populates="registrations")

    __table_args__ = (
        Index("ix_registrations_instance_user", "instance_pk", "user_id"),
        Index(
            "uq_registrations_active_user",
            "instance_pk",
            "user_id",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_REGISTRATION_STATUSES

    @property
    def is_bulk(self) -> bool:
        return self.quantity > 1

    def __repr__(self) -> str:
        return (
            f"<Registration("
            f"id={self.id}, "
            f"user_id='{self.user_id}', "
            f"quantity={self.quantity}, "
            f"status={self.status}"
            f")>"
        )
