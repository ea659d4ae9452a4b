"""
Pydantic schemas for registration API request/response validation.

Provides data validation and serialization for:
- Single and bulk registration requests
- Payment confirmation callbacks
- Registration responses
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer

from backend.src.models import Registration, RegistrationStatus


# ============================================================================
# Request Schemas
# ============================================================================


class AttendeeDetail(BaseModel):
    """One attendee of a bulk booking."""

    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=32)

    model_config = {"extra": "allow"}


class RegisterRequest(BaseModel):
    """Schema for a single-seat registration."""

    email: Optional[str] = Field(default=None, description="Payer email for paid events")


class BulkRegisterRequest(BaseModel):
    """
    Schema for a bulk registration.

    attendee_details must contain exactly `quantity` entries.
    """

    quantity: int = Field(..., description="Seats to book (2-50)")
    attendee_details: List[AttendeeDetail]
    email: Optional[str] = Field(default=None, description="Payer email for paid events")

    model_config = {
        "json_schema_extra": {
            "example": {
                "quantity": 2,
                "attendee_details": [
                    {"name": "Thandi Nkosi", "email": "thandi@example.com"},
                    {"name": "Pieter Botha", "email": "pieter@example.com"},
                ],
                "email": "thandi@example.com",
            }
        }
    }


class PaymentConfirmRequest(BaseModel):
    """Payment confirmation delivered by the callback handler."""

    reference: str = Field(..., min_length=1, max_length=100)


# ============================================================================
# Response Schemas
# ============================================================================


class RegistrationResponse(BaseModel):
    """Schema for registration API responses."""

    guid: str = Field(..., description="Registration GUID (reg_xxx)")
    instance_id: str
    user_id: str
    quantity: int
    status: RegistrationStatus
    payment_reference: Optional[str] = None
    payment_amount: Optional[int] = Field(default=None, description="Minor units")
    payment_url: Optional[str] = None
    requires_payment: bool = False
    initiated_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @field_serializer("initiated_at", "completed_at", "cancelled_at")
    @classmethod
    def serialize_datetime_utc(cls, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return v.isoformat() + "Z" if v else None

    @classmethod
    def from_registration(cls, registration: Registration) -> "RegistrationResponse":
        return cls(
            guid=registration.guid,
            instance_id=registration.instance.instance_id,
            user_id=registration.user_id,
            quantity=registration.quantity,
            status=registration.status,
            payment_reference=registration.payment_reference,
            payment_amount=registration.payment_amount,
            payment_url=registration.payment_url,
            requires_payment=registration.status == RegistrationStatus.PENDING_PAYMENT,
            initiated_at=registration.initiated_at,
            completed_at=registration.completed_at,
            cancelled_at=registration.cancelled_at,
        )
