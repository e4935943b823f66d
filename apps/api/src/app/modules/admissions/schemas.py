"""
Admissions Schemas

Pydantic models for the account aggregate snapshot (what the store reads and
the orchestrator mutates) and for request validation / response serialization.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.modules.admissions.exceptions import CourseNotFoundError, DocumentNotFoundError
from app.modules.admissions.helpers import format_slot_key
from app.modules.admissions.models import (
    Capability,
    CourseStatus,
    DocumentStatus,
    DocumentType,
    PaymentStatus,
    Role,
)

# ============================================
# Aggregate Snapshot
# ============================================


class DocumentEntry(BaseModel):
    """A document attached to an applied course."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    label: DocumentType
    url: str | None = None
    status: DocumentStatus = DocumentStatus.PENDING
    uploaded_at: datetime | None = None
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    remark: str | None = None

    @property
    def is_present(self) -> bool:
        """Uploaded and not flagged for re-upload."""
        return self.url is not None and self.status != DocumentStatus.REFILL_REQUIRED


class AppliedCourseEntry(BaseModel):
    """One course application inside an account aggregate."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    application_id: str
    position: int = 0
    course_type: str | None = None
    course_category: str
    course_year: int | None = None
    amount: Decimal = Decimal("0")

    status: CourseStatus = CourseStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_reference: str | None = None
    payment_order_ref: str | None = None
    paid_at: datetime | None = None

    appointment_date: date | None = None
    appointment_slot: str | None = None

    documents: list[DocumentEntry] = Field(default_factory=list)

    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    decision_reason: str | None = None

    version: int = 1
    created_at: datetime | None = None

    def get_document(self, document_id: UUID) -> DocumentEntry:
        for document in self.documents:
            if document.id == document_id:
                return document
        raise DocumentNotFoundError(document_id)

    def find_document(self, label: DocumentType) -> DocumentEntry | None:
        for document in self.documents:
            if document.label == label:
                return document
        return None


class AccountAggregate(BaseModel):
    """
    The stored aggregate: an account with its profile and applied courses.

    `version` guards account-level fields; each course carries its own.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    email: str | None = None
    role: Role = Role.CANDIDATE
    permissions: dict[str, bool] = Field(default_factory=dict)

    profile: dict[str, Any] = Field(default_factory=dict)
    profile_locked: bool = False
    profile_completion: int = Field(default=0, ge=0, le=100)
    declaration_accepted: bool = False

    version: int = 1
    applied_courses: list[AppliedCourseEntry] = Field(default_factory=list)

    def get_course(self, course_id: UUID) -> AppliedCourseEntry:
        for course in self.applied_courses:
            if course.id == course_id:
                return course
        raise CourseNotFoundError(course_id)


class SlotEntry(BaseModel):
    """An appointment slot; `key` is the booking form, e.g. 2025-01-10/AM."""

    model_config = ConfigDict(from_attributes=True)

    slot_date: date
    period: str = Field(..., min_length=1, max_length=50)
    published: bool = True

    @field_validator("period")
    @classmethod
    def period_has_no_separator(cls, value: str) -> str:
        value = value.strip()
        if "/" in value:
            raise ValueError("period must not contain '/'")
        return value

    @property
    def key(self) -> str:
        return format_slot_key(self.slot_date, self.period)


# ============================================
# Candidate Requests
# ============================================


class RegisterCandidateRequest(BaseModel):
    """Request to create the caller's candidate account."""

    email: EmailStr | None = None


class ProfileSectionUpdate(BaseModel):
    """Payload for one profile section."""

    data: dict[str, Any] = Field(default_factory=dict)


class LockProfileRequest(BaseModel):
    """Request to lock the profile; the declaration must be accepted."""

    declaration: bool = False


class ApplyForCourseRequest(BaseModel):
    """Request body for POST /admissions/me/applications."""

    course_type: str | None = Field(None, max_length=100)
    course_category: str = Field(..., min_length=1, max_length=200)
    course_year: int | None = Field(None, ge=1900, le=2100)
    amount: Decimal = Field(Decimal("0"), ge=0)


class RecordPaymentRequest(BaseModel):
    """Payment-gateway completion callback payload."""

    payment_reference: str = Field(..., min_length=1, max_length=100)
    order_ref: str | None = Field(None, max_length=100)


class BookAppointmentRequest(BaseModel):
    """Request to book (or re-book) an appointment slot."""

    slot: str | None = Field(None, max_length=80, examples=["2025-01-10/AM"])


class PaymentOrderResponse(BaseModel):
    """Payment order created for an applied course."""

    course_id: UUID
    application_id: str
    order_ref: str
    amount: Decimal


# ============================================
# Staff Requests
# ============================================


class UpdateCourseStatusRequest(BaseModel):
    """Staff decision on an applied course."""

    status: CourseStatus
    reason: str | None = Field(None, max_length=2000)
    expected_version: int | None = Field(
        None, ge=1, description="Version the reviewer saw; rejects the decision if it changed"
    )


class UpdateDocumentStatusRequest(BaseModel):
    """Staff verification decision on one document."""

    status: DocumentStatus
    remark: str | None = Field(None, max_length=1000)


class PublishSlotRequest(BaseModel):
    """Request to publish an appointment slot."""

    slot_date: date
    period: str = Field(..., min_length=1, max_length=50)


class CreateStaffRequest(BaseModel):
    """Request to create a staff (or admin) account."""

    email: EmailStr
    role: Role = Role.STAFF
    permissions: dict[Capability, bool] = Field(default_factory=dict)

    @field_validator("role")
    @classmethod
    def role_is_not_candidate(cls, value: Role) -> Role:
        if value == Role.CANDIDATE:
            raise ValueError("role must be staff or admin")
        return value


class UpdatePermissionsRequest(BaseModel):
    """Replacement capability map for a staff account."""

    permissions: dict[Capability, bool]


# ============================================
# Responses
# ============================================


class AccountResponse(BaseModel):
    """Account aggregate as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str | None = None
    role: Role
    permissions: dict[str, bool]
    profile: dict[str, Any]
    profile_locked: bool
    profile_completion: int
    declaration_accepted: bool
    version: int
    applied_courses: list[AppliedCourseEntry]


class RequestListItem(BaseModel):
    """Applied course with its owning account, for the staff queue."""

    account_id: UUID
    course: AppliedCourseEntry


class RequestListResponse(BaseModel):
    """Paginated staff request queue."""

    items: list[RequestListItem]
    total: int
    skip: int
    limit: int


class SlotListResponse(BaseModel):
    """Published appointment slots."""

    slots: list[SlotEntry]


class AccountSummary(BaseModel):
    """One row of the student listing; applied courses are not loaded."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str | None = None
    role: Role
    name: str | None = None
    profile_locked: bool = False
    profile_completion: int = 0
    created_at: datetime | None = None


class StudentListResponse(BaseModel):
    """Paginated candidate accounts."""

    items: list[AccountSummary]
    total: int
    skip: int
    limit: int


class DocumentListItem(BaseModel):
    """An uploaded document with the application it belongs to."""

    account_id: UUID
    course_id: UUID
    application_id: str
    document: DocumentEntry


class DocumentListResponse(BaseModel):
    """Paginated documents across every account."""

    items: list[DocumentListItem]
    total: int
    skip: int
    limit: int


class DashboardStats(BaseModel):
    """Headline counts for the admin dashboard."""

    students: int = 0
    staff: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
