"""
Pydantic schemas for API request/response validation.

This module exports all schema classes for use in API endpoints.
"""

from backend.src.schemas.event import (
    RecurrencePatternSchema,
    EventTemplateCreate,
    PatternUpdate,
    MaterializationSummary,
    EventTemplateResponse,
    TemplateWriteResponse,
    EventInstanceResponse,
    InstanceListResponse,
    EndSeriesResponse,
    CancelInstanceResponse,
)
from backend.src.schemas.registration import (
    AttendeeDetail,
    RegisterRequest,
    BulkRegisterRequest,
    PaymentConfirmRequest,
    RegistrationResponse,
)
from backend.src.schemas.jobs import JobSummaryResponse, JobStatusResponse

__all__ = [
    "RecurrencePatternSchema",
    "EventTemplateCreate",
    "PatternUpdate",
    "MaterializationSummary",
    "EventTemplateResponse",
    "TemplateWriteResponse",
    "EventInstanceResponse",
    "InstanceListResponse",
    "EndSeriesResponse",
    "CancelInstanceResponse",
    "AttendeeDetail",
    "RegisterRequest",
    "BulkRegisterRequest",
    "PaymentConfirmRequest",
    "RegistrationResponse",
    "JobSummaryResponse",
    "JobStatusResponse",
]
