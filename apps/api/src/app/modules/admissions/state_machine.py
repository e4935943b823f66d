"""
Admissions Status State Machine

Pure decision logic for applied-course and document statuses. Nothing here
reads or writes storage: callers pass the freshly read records and apply the
returned decisions themselves.

Course lifecycle:
    pending --book--> appointment_booked --approve--> verified
                                         --reject---> rejected
                                         --refill---> refill_required --book--> appointment_booked

Document lifecycle:
    pending --review--> verified | rejected | refill_required
    refill_required --candidate re-upload--> pending
"""

import enum
from collections.abc import Collection, Iterable
from datetime import date

from app.modules.admissions.exceptions import (
    DocumentsIncompleteError,
    InvalidTransitionError,
    PaymentRequiredError,
    RequiredDocumentsMissingError,
    SlotRequiredError,
    SlotUnavailableError,
)
from app.modules.admissions.helpers import format_slot_key, parse_slot_key
from app.modules.admissions.models import (
    CourseStatus,
    DocumentStatus,
    DocumentType,
    PaymentStatus,
)
from app.modules.admissions.schemas import AppliedCourseEntry, DocumentEntry


class CourseEvent(str, enum.Enum):
    """Events that move an applied course between statuses."""

    BOOK_APPOINTMENT = "book_appointment"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_REFILL = "request_refill"


COURSE_TRANSITIONS: dict[CourseStatus, dict[CourseEvent, CourseStatus]] = {
    CourseStatus.PENDING: {
        CourseEvent.BOOK_APPOINTMENT: CourseStatus.APPOINTMENT_BOOKED,
    },
    CourseStatus.APPOINTMENT_BOOKED: {
        CourseEvent.APPROVE: CourseStatus.VERIFIED,
        CourseEvent.REJECT: CourseStatus.REJECTED,
        CourseEvent.REQUEST_REFILL: CourseStatus.REFILL_REQUIRED,
    },
    CourseStatus.REFILL_REQUIRED: {
        CourseEvent.BOOK_APPOINTMENT: CourseStatus.APPOINTMENT_BOOKED,
    },
    # Terminal states - no transitions allowed
    CourseStatus.VERIFIED: {},
    CourseStatus.REJECTED: {},
}

VALID_COURSE_TRANSITIONS: dict[CourseStatus, set[CourseStatus]] = {
    status: set(events.values()) for status, events in COURSE_TRANSITIONS.items()
}

TERMINAL_COURSE_STATUSES = frozenset(
    status for status, events in COURSE_TRANSITIONS.items() if not events
)

# Decisions staff may request through UpdateCourseStatus
STAFF_COURSE_EVENTS: dict[CourseStatus, CourseEvent] = {
    CourseStatus.VERIFIED: CourseEvent.APPROVE,
    CourseStatus.REJECTED: CourseEvent.REJECT,
    CourseStatus.REFILL_REQUIRED: CourseEvent.REQUEST_REFILL,
}

DOCUMENT_REVIEW_TRANSITIONS: dict[DocumentStatus, set[DocumentStatus]] = {
    DocumentStatus.PENDING: {
        DocumentStatus.VERIFIED,
        DocumentStatus.REJECTED,
        DocumentStatus.REFILL_REQUIRED,
    },
    DocumentStatus.VERIFIED: set(),
    DocumentStatus.REJECTED: set(),
    # Leaves only through a candidate re-upload
    DocumentStatus.REFILL_REQUIRED: set(),
}

REPLACEABLE_DOCUMENT_STATUSES = frozenset({DocumentStatus.PENDING, DocumentStatus.REFILL_REQUIRED})

_EVENT_TARGETS: dict[CourseEvent, str] = {
    CourseEvent.BOOK_APPOINTMENT: CourseStatus.APPOINTMENT_BOOKED.value,
    CourseEvent.APPROVE: CourseStatus.VERIFIED.value,
    CourseEvent.REJECT: CourseStatus.REJECTED.value,
    CourseEvent.REQUEST_REFILL: CourseStatus.REFILL_REQUIRED.value,
}


def next_course_status(current: CourseStatus, event: CourseEvent) -> CourseStatus:
    """
    Resolve the status an event leads to.

    Raises:
        InvalidTransitionError: If the event is not allowed from `current`
    """
    target = COURSE_TRANSITIONS.get(current, {}).get(event)
    if target is None:
        attempted = _EVENT_TARGETS.get(event, event.value)
        raise InvalidTransitionError(
            current.value,
            attempted,
            (s.value for s in VALID_COURSE_TRANSITIONS.get(current, set())),
        )
    return target


def staff_event_for(current: CourseStatus, target: CourseStatus) -> CourseEvent:
    """
    Map a staff-requested target status to its event and validate it.

    Booking is a candidate event, so a staff request for appointment_booked
    (or pending) is rejected like any other illegal pair.

    Raises:
        InvalidTransitionError: If staff cannot move `current` to `target`
    """
    event = STAFF_COURSE_EVENTS.get(target)
    valid_for_staff = {
        s.value
        for s in VALID_COURSE_TRANSITIONS.get(current, set())
        if s in STAFF_COURSE_EVENTS
    }
    if event is None or target not in VALID_COURSE_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(current.value, target.value, valid_for_staff)
    return event


def check_booking(
    course: AppliedCourseEntry,
    slot: str | None,
    published_slots: Collection[str],
    required_documents: Iterable[DocumentType] = (),
) -> tuple[date, str]:
    """
    Validate an appointment booking against the course's current state.

    Guards are checked in order: transition legality, payment, slot chosen,
    slot published, required documents present.

    Returns:
        The (date, period) of the chosen slot

    Raises:
        InvalidTransitionError, PaymentRequiredError, SlotRequiredError,
        SlotUnavailableError, RequiredDocumentsMissingError
    """
    next_course_status(course.status, CourseEvent.BOOK_APPOINTMENT)

    if course.payment_status != PaymentStatus.PAID:
        raise PaymentRequiredError(course.application_id)

    if slot is None or not slot.strip():
        raise SlotRequiredError()

    slot = slot.strip()
    try:
        slot_date, period = parse_slot_key(slot)
    except ValueError as e:
        raise SlotUnavailableError(slot) from e

    if format_slot_key(slot_date, period) not in published_slots:
        raise SlotUnavailableError(slot)

    present = {document.label for document in course.documents if document.is_present}
    missing = [doc_type.value for doc_type in required_documents if doc_type not in present]
    if missing:
        raise RequiredDocumentsMissingError(missing)

    return slot_date, period


def documents_after_rebooking(documents: list[DocumentEntry]) -> list[DocumentEntry]:
    """
    Reset documents still flagged refill_required to awaiting re-upload.

    They become pending with no url, so they cannot be verified until the
    candidate uploads a replacement.
    """
    result = []
    for document in documents:
        if document.status == DocumentStatus.REFILL_REQUIRED:
            document = document.model_copy(
                update={
                    "status": DocumentStatus.PENDING,
                    "url": None,
                    "uploaded_at": None,
                    "reviewed_by": None,
                    "reviewed_at": None,
                }
            )
        result.append(document)
    return result


def check_approval(course: AppliedCourseEntry) -> None:
    """
    Ensure every document of the course is verified.

    Raises:
        DocumentsIncompleteError: If any document is not verified
    """
    unverified = [
        document.label.value
        for document in course.documents
        if document.status != DocumentStatus.VERIFIED or document.url is None
    ]
    if unverified:
        raise DocumentsIncompleteError(unverified)


def check_document_review(current: DocumentStatus, target: DocumentStatus) -> None:
    """
    Validate a staff document decision.

    Raises:
        InvalidTransitionError: If the document cannot move to `target`
    """
    valid = DOCUMENT_REVIEW_TRANSITIONS.get(current, set())
    if target not in valid:
        raise InvalidTransitionError(current.value, target.value, (s.value for s in valid))


def check_document_upload(course: AppliedCourseEntry, existing: DocumentEntry | None) -> None:
    """
    Validate that a candidate may attach or replace a document.

    Raises:
        InvalidTransitionError: If the course is terminal or the existing
            document was already decided
        PaymentRequiredError: If the course fee is unpaid
    """
    if course.status in TERMINAL_COURSE_STATUSES:
        raise InvalidTransitionError(
            course.status.value,
            course.status.value,
            reason="Documents cannot be changed once the application is decided.",
        )

    if course.payment_status != PaymentStatus.PAID:
        raise PaymentRequiredError(course.application_id)

    if existing is not None and existing.status not in REPLACEABLE_DOCUMENT_STATUSES:
        raise InvalidTransitionError(
            existing.status.value,
            DocumentStatus.PENDING.value,
            reason=f"Document '{existing.label.value}' can no longer be replaced.",
        )


def check_payment(course: AppliedCourseEntry, payment_reference: str) -> bool:
    """
    Validate a payment record.

    Returns:
        True if the payment should be recorded, False if this exact payment
        was already recorded (a retried callback)

    Raises:
        InvalidTransitionError: If a different payment was already recorded
    """
    if course.payment_status == PaymentStatus.PENDING:
        return True

    if course.payment_reference == payment_reference:
        return False

    raise InvalidTransitionError(
        course.payment_status.value,
        PaymentStatus.PAID.value,
        reason="A different payment has already been recorded for this application.",
    )
