"""
Admissions Models

Status enums and database tables for candidate accounts, their course
applications and the published appointment slots.

The aggregate (account + courses + documents) is split across rows keyed by
stable ids: one row per account, one row per applied course. A course's
documents live in a JSON column on the course row, so a document change
rewrites only that course's document list. Every mutable row carries a
`version` counter used for conditional writes.
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class Role(str, enum.Enum):
    """Role of an authenticated account."""

    CANDIDATE = "candidate"
    STAFF = "staff"
    ADMIN = "admin"


class Capability(str, enum.Enum):
    """Named admin-surface capabilities a staff account may hold."""

    DASHBOARD = "dashboard"
    REQUESTS = "requests"
    PAGES = "pages"
    STUDENTS = "students"
    STAFF = "staff"
    DOCUMENTS = "documents"
    FORMS = "forms"
    USERS_ROLES = "users-roles"
    SETTINGS = "settings"
    AUDIT_LOGS = "audit-logs"


class CourseStatus(str, enum.Enum):
    """Status of an applied course."""

    PENDING = "pending"
    APPOINTMENT_BOOKED = "appointment_booked"
    VERIFIED = "verified"
    REJECTED = "rejected"
    REFILL_REQUIRED = "refill_required"


class PaymentStatus(str, enum.Enum):
    """Fee payment status of an applied course."""

    PENDING = "pending"
    PAID = "paid"


class DocumentStatus(str, enum.Enum):
    """Verification status of an uploaded document."""

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    REFILL_REQUIRED = "refill_required"


class DocumentType(str, enum.Enum):
    """Catalogue of documents a candidate can upload."""

    AADHAAR = "aadhaar"
    PAN = "pan"
    SSC = "ssc"
    HSC = "hsc"
    TC = "tc"
    PHOTO = "photo"
    SIGNATURE = "signature"


DOCUMENT_TYPE_LABELS: dict[DocumentType, str] = {
    DocumentType.AADHAAR: "Aadhaar Card",
    DocumentType.PAN: "PAN Card",
    DocumentType.SSC: "10th Marksheet",
    DocumentType.HSC: "12th Marksheet",
    DocumentType.TC: "Transfer Certificate",
    DocumentType.PHOTO: "Passport Photo",
    DocumentType.SIGNATURE: "Signature",
}


class ProfileSection(str, enum.Enum):
    """Sections of the multi-step candidate profile, in form order."""

    PRIMARY = "primary"
    ADDRESS = "address"
    PARENT = "parent"
    CATEGORY = "category"
    QUALIFICATION = "qualification"
    TRAINING = "training"
    ADDITIONAL = "additional"
    BANK = "bank"
    WORK_EXPERIENCE = "work_experience"


class Account(Base):
    """
    Account of an authenticated actor.

    Candidates own their profile and applied courses. Staff permissions are
    stored as a map of capability name to bool; admins ignore the map.
    """

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    role: Mapped[Role] = mapped_column(
        Enum(Role, name="account_role"), nullable=False, default=Role.CANDIDATE
    )
    permissions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Candidate profile, keyed by ProfileSection value
    profile: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    profile_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    profile_completion: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    declaration_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, role={self.role.value})>"


class AppliedCourse(Base):
    """
    One course application filed by a candidate.

    Documents are stored as a JSON list of objects:
    [{id, label, url, status, uploaded_at, reviewed_by, reviewed_at, remark}, ...]
    """

    __tablename__ = "applied_courses"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    application_id: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    course_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    course_category: Mapped[str] = mapped_column(String(200), nullable=False)
    course_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    status: Mapped[CourseStatus] = mapped_column(
        Enum(CourseStatus, name="course_status"),
        nullable=False,
        default=CourseStatus.PENDING,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_order_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    appointment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    appointment_slot: Mapped[str | None] = mapped_column(String(50), nullable=True)

    documents: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    reviewed_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decision_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("account_id", "application_id", name="uq_applied_courses_application_id"),
        Index("ix_applied_courses_account_id", "account_id"),
        Index("ix_applied_courses_status", "status"),
    )


class AppointmentSlot(Base):
    """An admin-published (date, period) pair available for booking."""

    __tablename__ = "appointment_slots"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slot_date: Mapped[date] = mapped_column(Date, nullable=False)
    period: Mapped[str] = mapped_column(String(50), nullable=False)
    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (UniqueConstraint("slot_date", "period", name="uq_appointment_slots_key"),)
