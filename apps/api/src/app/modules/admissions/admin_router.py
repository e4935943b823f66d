"""
Admissions Admin Router

API endpoints for staff and administrators.

Endpoints:
- GET /admin/admissions/dashboard - Headline counts
- GET /admin/admissions/requests - List applied courses (filter by status)
- GET /admin/admissions/students - List candidate accounts
- DELETE /admin/admissions/students/{id} - Delete a candidate account
- GET /admin/admissions/documents - List documents across accounts (filter by status)
- GET /admin/admissions/accounts/{id} - Get a candidate account
- POST /admin/admissions/accounts/{id}/applications/{cid}/status - Decide an application
- POST /admin/admissions/accounts/{id}/applications/{cid}/documents/{did}/status - Review a document
- DELETE /admin/admissions/accounts/{id}/applications/{cid} - Delete an application
- POST /admin/admissions/slots - Publish an appointment slot
- DELETE /admin/admissions/slots/{key} - Withdraw an appointment slot
- POST /admin/admissions/staff - Create a staff account (admin only)
- PUT /admin/admissions/staff/{id}/permissions - Replace staff capabilities (admin only)

Security:
- Every endpoint requires a bearer token; capabilities are checked per operation
- Admins pass every check; staff need the stored capability
- Rate limiting on decision endpoints
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.core.rate_limit import enforce_rate_limit

from .dependencies import get_admissions_service, get_current_actor
from .exceptions import AdmissionsError
from .models import CourseStatus, DocumentStatus
from .permissions import Actor
from .schemas import (
    AccountResponse,
    AppliedCourseEntry,
    CreateStaffRequest,
    DashboardStats,
    DocumentListResponse,
    PublishSlotRequest,
    RequestListItem,
    RequestListResponse,
    SlotEntry,
    StudentListResponse,
    UpdateCourseStatusRequest,
    UpdateDocumentStatusRequest,
    UpdatePermissionsRequest,
)
from .service import AdmissionsService

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================
# Rate Limiting Configuration
# ============================================

RATE_LIMIT_COURSE_DECISION = (30, 60)  # 30 decisions per minute
RATE_LIMIT_DOCUMENT_DECISION = (120, 60)  # 120 document reviews per minute
RATE_LIMIT_DELETE = (10, 60)  # 10 deletions per minute


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
# Request Queue
# ============================================


@router.get(
    "/requests",
    response_model=RequestListResponse,
    summary="List Applied Courses",
    responses={403: {"description": "Missing the 'requests' capability"}},
)
async def list_requests(
    status_filter: CourseStatus | None = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> RequestListResponse:
    """
    List applied courses, newest first.

    **Access:** `requests` capability
    """
    try:
        items, total = await service.list_requests(actor, status_filter, skip, limit)
        return RequestListResponse(
            items=[RequestListItem(account_id=a, course=c) for a, c in items],
            total=total,
            skip=skip,
            limit=limit,
        )
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "listing requests") from e


@router.get(
    "/accounts/{account_id}",
    response_model=AccountResponse,
    summary="Get Account",
    responses={403: {"description": "Missing the 'students' capability"}},
)
async def get_account(
    account_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> AccountResponse:
    """
    Get a candidate's profile and applied courses.

    **Access:** `students` capability
    """
    try:
        account = await service.get_account(actor, account_id)
        return AccountResponse.model_validate(account)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "getting account") from e


# ============================================
# Dashboard, Students and Documents
# ============================================


@router.get(
    "/dashboard",
    response_model=DashboardStats,
    summary="Dashboard Counts",
    responses={403: {"description": "Missing the 'dashboard' capability"}},
)
async def get_dashboard(
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> DashboardStats:
    """
    Number of students and staff, and of pending, approved and rejected
    applications.

    **Access:** `dashboard` capability
    """
    try:
        return await service.get_dashboard_stats(actor)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "loading dashboard") from e


@router.get(
    "/students",
    response_model=StudentListResponse,
    summary="List Students",
    responses={403: {"description": "Missing the 'students' capability"}},
)
async def list_students(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> StudentListResponse:
    """
    List candidate accounts, newest first.

    **Access:** `students` capability
    """
    try:
        items, total = await service.list_students(actor, skip, limit)
        return StudentListResponse(items=items, total=total, skip=skip, limit=limit)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "listing students") from e


@router.delete(
    "/students/{account_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Student",
    responses={
        403: {"description": "Missing the 'students' capability"},
        422: {"description": "Not a candidate account"},
    },
)
async def delete_student(
    account_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> None:
    """
    Permanently remove a candidate account, its applications and uploads.

    **Access:** `students` capability
    """
    await enforce_rate_limit(actor.account_id, "delete_student", *RATE_LIMIT_DELETE)

    try:
        await service.delete_student(actor, account_id)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "deleting student") from e


@router.get(
    "/documents",
    response_model=DocumentListResponse,
    summary="List Documents",
    responses={403: {"description": "Missing the 'documents' capability"}},
)
async def list_documents(
    status_filter: DocumentStatus | None = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> DocumentListResponse:
    """
    List documents of every application, newest application first.

    **Access:** `documents` capability
    """
    try:
        items, total = await service.list_documents(actor, status_filter, skip, limit)
        return DocumentListResponse(items=items, total=total, skip=skip, limit=limit)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "listing documents") from e


# ============================================
# Decisions
# ============================================


@router.post(
    "/accounts/{account_id}/applications/{course_id}/status",
    response_model=AppliedCourseEntry,
    summary="Update Application Status",
    responses={
        403: {"description": "Missing the 'requests' capability"},
        409: {
            "description": (
                "Transition not allowed, documents not all verified, "
                "or the application changed since it was reviewed"
            )
        },
    },
)
async def update_course_status(
    account_id: UUID,
    course_id: UUID,
    data: UpdateCourseStatusRequest,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> AppliedCourseEntry:
    """
    Approve (`verified`), reject (`rejected`) or request a refill
    (`refill_required`) for an application with a booked appointment.

    Approval requires every document to be verified. Pass
    `expected_version` to refuse the decision if the application changed
    after it was loaded.

    **Access:** `requests` capability
    """
    await enforce_rate_limit(actor.account_id, "course_status", *RATE_LIMIT_COURSE_DECISION)

    try:
        return await service.update_course_status(
            actor,
            account_id,
            course_id,
            data.status,
            reason=data.reason,
            expected_version=data.expected_version,
        )
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "updating application status") from e


@router.post(
    "/accounts/{account_id}/applications/{course_id}/documents/{document_id}/status",
    response_model=AppliedCourseEntry,
    summary="Update Document Status",
    responses={
        403: {"description": "Missing the 'requests' capability"},
        409: {"description": "Document already reviewed"},
    },
)
async def update_document_status(
    account_id: UUID,
    course_id: UUID,
    document_id: UUID,
    data: UpdateDocumentStatusRequest,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> AppliedCourseEntry:
    """
    Verify, reject or flag a pending document for re-upload.

    **Access:** `requests` capability
    """
    await enforce_rate_limit(actor.account_id, "document_status", *RATE_LIMIT_DOCUMENT_DECISION)

    try:
        return await service.update_document_status(
            actor, account_id, course_id, document_id, data.status, data.remark
        )
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "updating document status") from e


@router.delete(
    "/accounts/{account_id}/applications/{course_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Application",
    responses={403: {"description": "Missing the 'requests' capability"}},
)
async def delete_application(
    account_id: UUID,
    course_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> None:
    """
    Permanently remove an application and its uploaded documents.

    **Access:** `requests` capability
    """
    await enforce_rate_limit(actor.account_id, "delete_application", *RATE_LIMIT_DELETE)

    try:
        await service.delete_application(actor, account_id, course_id)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "deleting application") from e


# ============================================
# Appointment Slots
# ============================================


@router.post(
    "/slots",
    response_model=SlotEntry,
    status_code=status.HTTP_201_CREATED,
    summary="Publish Appointment Slot",
    responses={403: {"description": "Missing the 'settings' capability"}},
)
async def publish_slot(
    data: PublishSlotRequest,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> SlotEntry:
    """**Access:** `settings` capability"""
    try:
        return await service.publish_slot(actor, data.slot_date, data.period)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "publishing slot") from e


@router.delete(
    "/slots/{key:path}",
    response_model=SlotEntry,
    summary="Withdraw Appointment Slot",
    responses={404: {"description": "Slot not found"}},
)
async def withdraw_slot(
    key: str,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> SlotEntry:
    """
    Stop offering a slot, e.g. `2025-01-10/AM`. Existing bookings are kept.

    **Access:** `settings` capability
    """
    try:
        return await service.withdraw_slot(actor, key)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "withdrawing slot") from e


# ============================================
# Staff Accounts
# ============================================


@router.post(
    "/staff",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Staff Account",
    responses={
        403: {"description": "Admin only"},
        409: {"description": "Email already registered"},
    },
)
async def create_staff_account(
    data: CreateStaffRequest,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> AccountResponse:
    """**Access:** admin only"""
    try:
        account = await service.create_staff_account(
            actor, data.email, data.role, data.permissions
        )
        return AccountResponse.model_validate(account)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "creating staff account") from e


@router.put(
    "/staff/{account_id}/permissions",
    response_model=AccountResponse,
    summary="Update Staff Permissions",
    responses={403: {"description": "Admin only"}},
)
async def update_staff_permissions(
    account_id: UUID,
    data: UpdatePermissionsRequest,
    actor: Actor = Depends(get_current_actor),
    service: AdmissionsService = Depends(get_admissions_service),
) -> AccountResponse:
    """
    Replace a staff member's capability map. Missing capabilities are denied.

    **Access:** admin only
    """
    try:
        account = await service.update_staff_permissions(actor, account_id, data.permissions)
        return AccountResponse.model_validate(account)
    except AdmissionsError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "updating staff permissions") from e
