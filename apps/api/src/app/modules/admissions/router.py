"""
Admissions Candidate Router

API endpoints a candidate uses on their own account.

Endpoints:
- POST /admissions/me/register - Create the caller's candidate account
- GET /admissions/me - Get the caller's account with applications
- PUT /admissions/me/profile/{section} - Save one profile section
- POST /admissions/me/profile/lock - Lock the profile (declaration required)
- POST /admissions/me/profile/unlock - Unlock the profile
- POST /admissions/me/applications - Apply for a course (Idempotency-Key aware)
- POST /admissions/me/applications/{id}/payment-order - Open a payment order
- POST /admissions/me/applications/{id}/payment - Payment completion callback
- POST /admissions/me/applications/{id}/appointment - Book an appointment slot
- POST /admissions/me/applications/{id}/documents - Upload a document
- GET /admissions/slots - List published appointment slots

Security:
- Every endpoint except the slot list requires a bearer token
- Candidates can only act on their own account
- Errors name the violated rule in a structured response
"""

import logging
from uuid import UUID

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    UploadFile,
    status,
)
from redis.asyncio import Redis

from app.core import idempotency
from app.core.auth import CallerIdentity, get_caller_identity
from app.core.config import settings
from app.core.payments import PaymentGateway, get_payment_gateway
from app.core.redis import get_redis

from .dependencies import get_admissions_service, get_current_actor
from .exceptions import AdmissionsError
from .models import ProfileSection
from .permissions import Actor
from .schemas import (
    AccountResponse,
    AppliedCourseEntry,
    ApplyForCourseRequest,
    BookAppointmentRequest,
    LockProfileRequest,
    PaymentOrderResponse,
    ProfileSectionUpdate,
    RecordPaymentRequest,
    RegisterCandidateRequest,
    SlotListResponse,
)
from .service import AdmissionsService

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================
# Helper Functions
# ============================================


def _handle_service_error(e: AdmissionsError) -> None:
    """Convert service errors to HTTPExceptions."""
    raise HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.error_code,
            "message": e.message,
        },
    ) from e


def _internal_error(e: Exception, context: str) -> HTTPException:
    logger.exception(f"Error {context}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )


# ============================================
# Account & Profile
# ============================================


@router.post(
    "/me/register",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register Candidate Account",
    responses={
        403: {"description": "Token is not a candidate token"},
        409: {"description": "Email already belongs to another account"},
    },
)
async def register_candidate(
    data: RegisterCandidateRequest,
    identity: CallerIdentity = Depends(get_caller_identity),
    service: AdmissionsService = Depends(get_admissions_service),
) -> AccountResponse:
    """
    Create the candidate account for the authenticated caller.

    Calling this again returns the existing account.
    """
    try:
        account = await service.register_candidate(identity, data.email)
        return AccountResponse.model_validate(account)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "registering candidate") from e


@router.get("/me", response_model=AccountResponse, summary="Get My Account")
async def get_my_account(
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> AccountResponse:
    """Get the caller's profile, lock state and applied courses."""
    try:
        account = await service.get_my_account(actor)
        return AccountResponse.model_validate(account)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "getting account") from e


@router.put(
    "/me/profile/{section}",
    response_model=AccountResponse,
    summary="Save Profile Section",
    responses={423: {"description": "Profile is locked"}},
)
async def save_profile_section(
    section: ProfileSection,
    data: ProfileSectionUpdate,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> AccountResponse:
    """
    Save one section of the multi-step profile form.

    **Sections:** primary, address, parent, category, qualification,
    training, additional, bank, work_experience
    """
    try:
        account = await service.save_profile_section(actor, section, data.data)
        return AccountResponse.model_validate(account)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "saving profile section") from e


@router.post(
    "/me/profile/lock",
    response_model=AccountResponse,
    summary="Lock Profile",
    responses={422: {"description": "Declaration not accepted or sections missing"}},
)
async def lock_profile(
    data: LockProfileRequest,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> AccountResponse:
    """Lock the profile. Locking an already-locked profile succeeds."""
    try:
        account = await service.lock_profile(actor, data.declaration)
        return AccountResponse.model_validate(account)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "locking profile") from e


@router.post("/me/profile/unlock", response_model=AccountResponse, summary="Unlock Profile")
async def unlock_profile(
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> AccountResponse:
    """Unlock the profile for editing."""
    try:
        account = await service.unlock_profile(actor)
        return AccountResponse.model_validate(account)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "unlocking profile") from e


# ============================================
# Applications
# ============================================


@router.post(
    "/me/applications",
    response_model=AppliedCourseEntry,
    status_code=status.HTTP_201_CREATED,
    summary="Apply for a Course",
    responses={409: {"description": "A request with the same Idempotency-Key is in progress"}},
)
async def apply_for_course(
    data: ApplyForCourseRequest,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key", max_length=100),
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
    redis: Redis | None = Depends(get_redis),
) -> AppliedCourseEntry:
    """
    Apply for a course. The new application starts pending and unpaid.

    Send an `Idempotency-Key` header to make retries safe: a repeated key
    returns the application created by the first request.
    """
    scope = f"apply:{actor.account_id}"

    if idempotency_key:
        try:
            existing_id = await idempotency.claim(redis, scope, idempotency_key)
        except idempotency.IdempotencyKeyInProgressError as e:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"error": "IDEMPOTENCY_KEY_IN_PROGRESS", "message": str(e)},
            ) from e

        if existing_id is not None:
            logger.info(f"Replaying application {existing_id} for idempotency key")
            try:
                account = await service.get_my_account(actor)
                return account.get_course(UUID(existing_id))
            except AdmissionsError as e:
                _handle_service_error(e)

    try:
        course = await service.apply_for_course(actor, data)
    except AdmissionsError as e:
        if idempotency_key:
            await idempotency.release(redis, scope, idempotency_key)
        _handle_service_error(e)
    except Exception as e:
        if idempotency_key:
            await idempotency.release(redis, scope, idempotency_key)
        raise _internal_error(e, "applying for course") from e

    if idempotency_key:
        await idempotency.complete(redis, scope, idempotency_key, str(course.id))
    return course


@router.post(
    "/me/applications/{course_id}/payment-order",
    response_model=PaymentOrderResponse,
    summary="Create Payment Order",
    responses={503: {"description": "Payment gateway unavailable"}},
)
async def create_payment_order(
    course_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentOrderResponse:
    """Open a payment-gateway order for the application fee."""
    try:
        course = await service.create_payment_order(actor, course_id, gateway)
        return PaymentOrderResponse(
            course_id=course.id,
            application_id=course.application_id,
            order_ref=course.payment_order_ref,
            amount=course.amount,
        )
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "creating payment order") from e


@router.post(
    "/me/applications/{course_id}/payment",
    response_model=AppliedCourseEntry,
    summary="Record Payment",
    responses={409: {"description": "A different payment was already recorded"}},
)
async def record_payment(
    course_id: UUID,
    data: RecordPaymentRequest,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> AppliedCourseEntry:
    """
    Payment-gateway completion callback.

    Re-sending the same payment reference is a no-op success.
    """
    try:
        return await service.record_payment(
            actor, course_id, data.payment_reference, data.order_ref
        )
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "recording payment") from e


@router.post(
    "/me/applications/{course_id}/appointment",
    response_model=AppliedCourseEntry,
    summary="Book Appointment",
    responses={
        402: {"description": "Application fee not paid"},
        409: {"description": "Slot not published, or booking not allowed in current status"},
        422: {"description": "No slot chosen, or required documents missing"},
    },
)
async def book_appointment(
    course_id: UUID,
    data: BookAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> AppliedCourseEntry:
    """
    Book a published slot, e.g. `2025-01-10/AM`.

    Also used to re-book after staff request a refill.
    """
    try:
        return await service.book_appointment(actor, course_id, data.slot)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "booking appointment") from e


@router.post(
    "/me/applications/{course_id}/documents",
    response_model=AppliedCourseEntry,
    summary="Upload Document",
    responses={
        402: {"description": "Application fee not paid"},
        413: {"description": "File too large"},
        422: {"description": "Unknown document type"},
    },
)
async def upload_document(
    course_id: UUID,
    label: str = Form(..., description="Document type, e.g. aadhaar, ssc, photo"),
    file: UploadFile = File(...),
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> AppliedCourseEntry:
    """Attach a document, or replace a pending one or one flagged for refill."""
    data = await file.read()
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={
                "error": "FILE_TOO_LARGE",
                "message": f"Files must be at most {settings.max_upload_bytes} bytes.",
            },
        )

    try:
        return await service.upload_document(
            actor,
            course_id,
            label,
            data,
            file.content_type or "application/octet-stream",
        )
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "uploading document") from e


# ============================================
# Appointment Slots
# ============================================


@router.get("/slots", response_model=SlotListResponse, summary="List Appointment Slots")
async def list_slots(
    service: AdmissionsService = Depends(get_admissions_service),
) -> SlotListResponse:
    """List the published appointment slots candidates can book."""
    try:
        return SlotListResponse(slots=await service.list_slots())
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "listing slots") from e
