"""
Registration API endpoints.

Provides endpoints for:
- Registering for an instance (single seat or bulk)
- Confirming a payment by reference
- Reading and cancelling registrations

Paid bookings return a payment_url; the seats stay reserved until the
payment is confirmed, fails, or is abandoned.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from backend.src.api.dependencies import get_current_user_id, get_registration_service
from backend.src.schemas.registration import (
    BulkRegisterRequest,
    PaymentConfirmRequest,
    RegisterRequest,
    RegistrationResponse,
)
from backend.src.services.exceptions import (
    AlreadyRegisteredError,
    CapacityExceededError,
    ExternalVerificationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from backend.src.services.registration_service import RegistrationResult, RegistrationService
from backend.src.utils.logging_config import get_logger


logger = get_logger("api")

router = APIRouter(tags=["Registrations"])


def _booking_response(result: RegistrationResult) -> RegistrationResponse:
    response = RegistrationResponse.from_registration(result.registration)
    if result.payment_url:
        response.payment_url = result.payment_url
    return response


def _booking_error(e: Exception, instance_id: str) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Instance {instance_id} not found",
        )
    if isinstance(e, CapacityExceededError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": e.message, "remaining": e.remaining},
        )
    if isinstance(e, AlreadyRegisteredError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": e.message, "registration_guid": e.registration_guid},
        )
    if isinstance(e, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    logger.error(
        f"Payment gateway error: {e}",
        extra={"instance_id": instance_id, "provider": e.provider}
    )
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="Payment could not be started. Please try again later.",
    )


@router.post(
    "/events/instances/{instance_id}/registrations",
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register for an instance",
)
async def register(
    instance_id: str,
    request: RegisterRequest,
    user_id: str = Depends(get_current_user_id),
    service: RegistrationService = Depends(get_registration_service),
) -> RegistrationResponse:
    """
    Book one seat.

    Free events return status "registered". Paid events return
    "pending_payment" with a payment_url to redirect the user to.

    Raises:
        400: Instance cancelled or past
        404: Instance not found
        409: Full, or already registered
        502: Payment gateway failure
    """
    try:
        result = await service.register(instance_id, user_id, email=request.email)
        return _booking_response(result)
    except (
        NotFoundError,
        ValidationError,
        CapacityExceededError,
        AlreadyRegisteredError,
        ExternalVerificationError,
    ) as e:
        raise _booking_error(e, instance_id)


@router.post(
    "/events/instances/{instance_id}/registrations/bulk",
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Bulk register for an instance",
)
async def register_bulk(
    instance_id: str,
    request: BulkRegisterRequest,
    user_id: str = Depends(get_current_user_id),
    service: RegistrationService = Depends(get_registration_service),
) -> RegistrationResponse:
    """
    Book several seats at once. Either all seats are reserved or none.

    Raises:
        400: Bulk disabled, quantity out of range, attendee list mismatch
        404: Instance not found
        409: Not enough seats, or already registered
        502: Payment gateway failure
    """
    try:
        result = await service.register_bulk(
            instance_id,
            user_id,
            quantity=request.quantity,
            attendee_details=[a.model_dump(exclude_none=True) for a in request.attendee_details],
            email=request.email,
        )
        return _booking_response(result)
    except (
        NotFoundError,
        ValidationError,
        CapacityExceededError,
        AlreadyRegisteredError,
        ExternalVerificationError,
    ) as e:
        raise _booking_error(e, instance_id)


@router.delete(
    "/events/instances/{instance_id}/registrations",
    response_model=RegistrationResponse,
    summary="Unregister from an instance",
)
async def unregister(
    instance_id: str,
    user_id: str = Depends(get_current_user_id),
    service: RegistrationService = Depends(get_registration_service),
) -> RegistrationResponse:
    """
    Cancel the caller's active registration on an instance.

    Raises:
        404: Instance or active registration not found
    """
    try:
        registration = service.unregister(instance_id, user_id)
        return RegistrationResponse.from_registration(registration)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post(
    "/registrations/confirm",
    response_model=RegistrationResponse,
    summary="Confirm payment",
)
async def confirm_payment(
    request: PaymentConfirmRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> RegistrationResponse:
    """
    Verify a payment with the gateway and settle the registration.

    Safe to call repeatedly with the same reference.

    Raises:
        404: No registration carries the reference
        409: Late payment whose seats are gone or whose user booked again (refund)
        502: Gateway could not be reached
    """
    try:
        registration = await service.confirm_payment(request.reference)
        return RegistrationResponse.from_registration(registration)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No registration for reference {request.reference}",
        )
    except (CapacityExceededError, AlreadyRegisteredError) as e:
        logger.warning(
            f"Late payment could not be settled: {e}",
            extra={"reference": request.reference}
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": e.message, "reference": request.reference},
        )
    except ExternalVerificationError as e:
        logger.error(
            f"Payment verification failed: {e}",
            extra={"reference": request.reference, "provider": e.provider}
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment could not be verified. Please try again later.",
        )


@router.get(
    "/registrations/{guid}",
    response_model=RegistrationResponse,
    summary="Get registration",
)
async def get_registration(
    guid: str,
    user_id: str = Depends(get_current_user_id),
    service: RegistrationService = Depends(get_registration_service),
) -> RegistrationResponse:
    """
    Get one of the caller's registrations.

    Raises:
        404: Not found, or owned by someone else
    """
    try:
        registration = service.get_registration(guid)
    except NotFoundError:
        registration = None
    if registration is None or registration.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Registration {guid} not found",
        )
    return RegistrationResponse.from_registration(registration)


@router.delete(
    "/registrations/{guid}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Cancel registration",
)
async def cancel_registration(
    guid: str,
    user_id: str = Depends(get_current_user_id),
    service: RegistrationService = Depends(get_registration_service),
) -> None:
    """
    Cancel a registration and release its seats. Idempotent.

    Raises:
        403: Registration belongs to another user
        404: Registration not found
    """
    try:
        service.cancel(guid, user_id=user_id)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Registration {guid} not found",
        )
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
