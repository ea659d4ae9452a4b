"""
Shared FastAPI dependencies.

Caller identity arrives in the X-User-Id header, set by the upstream
gateway after it has authenticated the request. Long-lived collaborators
(payment gateway, job registry) live on app.state and are created by the
application lifespan.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.db.database import get_db
from backend.src.jobs import JobRegistry
from backend.src.services.event_service import EventService
from backend.src.services.payment_gateway import PaymentGateway
from backend.src.services.registration_service import RegistrationService


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """
    Resolve the authenticated caller.

    Raises:
        HTTPException 401: If the X-User-Id header is missing or blank
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()


def get_app_settings() -> AppSettings:
    return get_settings()


def get_payment_gateway(request: Request) -> Optional[PaymentGateway]:
    """Payment gateway created at startup (None when Paystack is not configured)."""
    return getattr(request.app.state, "payment_gateway", None)


def get_job_registry(request: Request) -> JobRegistry:
    registry = getattr(request.app.state, "job_registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Background jobs are not initialized",
        )
    return registry


def get_event_service(
    db: Session = Depends(get_db),
    settings: AppSettings = Depends(get_app_settings),
) -> EventService:
    """Create EventService instance with database session."""
    return EventService(db=db, settings=settings)


def get_registration_service(
    db: Session = Depends(get_db),
    gateway: Optional[PaymentGateway] = Depends(get_payment_gateway),
    settings: AppSettings = Depends(get_app_settings),
) -> RegistrationService:
    """Create RegistrationService instance with database session and gateway."""
    return RegistrationService(db=db, gateway=gateway, settings=settings)
