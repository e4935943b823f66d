"""
Fixtures for admissions tests.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from app.modules.admissions.concurrency import ConcurrencyGuard
from app.modules.admissions.models import (
    Capability,
    CourseStatus,
    DocumentStatus,
    DocumentType,
    PaymentStatus,
    ProfileSection,
    Role,
)
from app.modules.admissions.permissions import Actor
from app.modules.admissions.repository import InMemoryAggregateStore
from app.modules.admissions.schemas import (
    AccountAggregate,
    AppliedCourseEntry,
    ApplyForCourseRequest,
    DocumentEntry,
    SlotEntry,
)
from app.modules.admissions.service import AdmissionsService

SLOT_DATE = date(2025, 1, 10)
SLOT_KEY = "2025-01-10/AM"


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.execute = AsyncMock()
    db.scalar = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def store():
    """In-memory aggregate store."""
    return InMemoryAggregateStore()


@pytest.fixture
def guard(store):
    """Concurrency guard without retry delays."""
    return ConcurrencyGuard(store, max_attempts=3, backoff_seconds=0)


@pytest.fixture
def blob_storage():
    """Blob storage double that hands out sequential urls."""
    storage = MagicMock()
    counter = iter(range(1, 1000))

    async def put_object(data: bytes, content_type: str) -> str:
        return f"/media/{next(counter)}.pdf"

    storage.put_object = AsyncMock(side_effect=put_object)
    storage.delete_object = AsyncMock()
    return storage


@pytest.fixture
def service(store, guard, blob_storage):
    """Admissions service over the in-memory store."""
    return AdmissionsService(
        store,
        guard=guard,
        blob_storage=blob_storage,
        required_documents=(),
        application_id_prefix="202509C329110/CC",
    )


@pytest.fixture
def candidate_id():
    return uuid4()


@pytest.fixture
def candidate(candidate_id):
    """Candidate actor acting on their own account."""
    return Actor(account_id=candidate_id, role=Role.CANDIDATE)


@pytest.fixture
def admin():
    return Actor(account_id=uuid4(), role=Role.ADMIN)


@pytest.fixture
def reviewer():
    """Staff actor holding the requests capability."""
    return Actor(
        account_id=uuid4(),
        role=Role.STAFF,
        permissions=frozenset({Capability.REQUESTS, Capability.STUDENTS}),
    )


@pytest.fixture
def other_reviewer():
    return Actor(
        account_id=uuid4(),
        role=Role.STAFF,
        permissions=frozenset({Capability.REQUESTS}),
    )


@pytest.fixture
def staff_without_requests():
    """Staff actor with capabilities other than requests."""
    return Actor(
        account_id=uuid4(),
        role=Role.STAFF,
        permissions=frozenset({Capability.DASHBOARD, Capability.STUDENTS}),
    )


@pytest.fixture
def complete_profile():
    """A payload for every profile section."""
    return {section.value: {"filled": True} for section in ProfileSection}


@pytest.fixture
def course_request():
    return ApplyForCourseRequest(
        course_type="Diploma",
        course_category="Computer Science",
        course_year=2025,
        amount=Decimal("500.00"),
    )


@pytest.fixture
def seed_account(store, candidate_id):
    """Returns an async helper storing a candidate account."""

    async def _seed(**fields) -> AccountAggregate:
        account = AccountAggregate(id=candidate_id, role=Role.CANDIDATE, **fields)
        return await store.create_account(account)

    return _seed


@pytest.fixture
def publish(store):
    """Returns an async helper publishing a slot."""

    async def _publish(slot_date: date = SLOT_DATE, period: str = "AM") -> SlotEntry:
        return await store.save_slot(SlotEntry(slot_date=slot_date, period=period))

    return _publish


def make_course(
    status: CourseStatus = CourseStatus.PENDING,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
    documents: list[DocumentEntry] | None = None,
    **fields,
) -> AppliedCourseEntry:
    return AppliedCourseEntry(
        application_id=fields.pop("application_id", "202509C329110/CC/2025/01"),
        course_category=fields.pop("course_category", "Computer Science"),
        status=status,
        payment_status=payment_status,
        documents=documents or [],
        **fields,
    )


def make_document(
    label: DocumentType = DocumentType.AADHAAR,
    status: DocumentStatus = DocumentStatus.PENDING,
    url: str | None = "/media/doc.pdf",
) -> DocumentEntry:
    return DocumentEntry(label=label, status=status, url=url)


@pytest.fixture
def course_factory():
    return make_course


@pytest.fixture
def document_factory():
    return make_document


@pytest.fixture
def booked_course(store, seed_account, document_factory):
    """
    Returns an async helper storing an account with one paid, booked course
    carrying the given documents (three pending documents by default).
    """

    async def _booked(documents: list[DocumentEntry] | None = None) -> AppliedCourseEntry:
        account = await seed_account()
        if documents is None:
            documents = [
                document_factory(DocumentType.AADHAAR, url="/media/a.pdf"),
                document_factory(DocumentType.SSC, url="/media/b.pdf"),
                document_factory(DocumentType.PHOTO, url="/media/c.pdf"),
            ]
        course = make_course(
            status=CourseStatus.APPOINTMENT_BOOKED,
            payment_status=PaymentStatus.PAID,
            payment_reference="pay_1",
            appointment_date=SLOT_DATE,
            appointment_slot="AM",
            documents=documents,
            position=1,
        )
        return await store.append_course(account.id, course)

    return _booked
