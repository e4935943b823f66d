"""
Admissions Errors

Every rejected operation raises a typed error naming the violated rule, so
the HTTP layer (and the UI behind it) can explain the failure. Only
StoreUnavailableError and ConflictError are retryable.
"""

from collections.abc import Iterable
from uuid import UUID


class AdmissionsError(Exception):
    """Base exception for admissions errors."""

    retryable = False

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class ForbiddenError(AdmissionsError):
    """Raised when the actor lacks the requirement for an operation."""

    def __init__(self, action: str, requirement: str):
        self.action = action
        self.requirement = requirement
        super().__init__(
            message=f"Not permitted to {action}: requires '{requirement}'.",
            error_code="FORBIDDEN",
            status_code=403,
        )


class InvalidTransitionError(AdmissionsError):
    """Raised when a status change is not allowed from the current status."""

    def __init__(
        self,
        current_status: str,
        new_status: str,
        valid: Iterable[str] = (),
        reason: str | None = None,
    ):
        self.current_status = current_status
        self.new_status = new_status
        self.valid = sorted(valid)
        message = f"Invalid status transition: {current_status} -> {new_status}."
        if reason:
            message = f"{message} {reason}"
        message = f"{message} Valid transitions: {self.valid}"
        super().__init__(
            message=message,
            error_code="INVALID_TRANSITION",
            status_code=409,
        )


class SlotRequiredError(AdmissionsError):
    """Raised when an appointment is booked without choosing a slot."""

    def __init__(self):
        super().__init__(
            message="Please select an appointment date and time slot.",
            error_code="SLOT_REQUIRED",
            status_code=422,
        )


class SlotUnavailableError(AdmissionsError):
    """Raised when the chosen slot is not in the published set."""

    def __init__(self, slot: str):
        self.slot = slot
        super().__init__(
            message=f"Appointment slot '{slot}' is not available.",
            error_code="SLOT_UNAVAILABLE",
            status_code=409,
        )


class PaymentRequiredError(AdmissionsError):
    """Raised when an operation requires the course fee to be paid."""

    def __init__(self, application_id: str):
        super().__init__(
            message=f"Payment for application {application_id} has not been completed.",
            error_code="PAYMENT_REQUIRED",
            status_code=402,
        )


class RequiredDocumentsMissingError(AdmissionsError):
    """Raised when booking while required document types are not uploaded."""

    def __init__(self, missing: Iterable[str]):
        self.missing = sorted(missing)
        super().__init__(
            message=f"Required documents are missing: {', '.join(self.missing)}.",
            error_code="REQUIRED_DOCUMENTS_MISSING",
            status_code=422,
        )


class DocumentsIncompleteError(AdmissionsError):
    """Raised when approving a course whose documents are not all verified."""

    def __init__(self, unverified: Iterable[str]):
        self.unverified = list(unverified)
        super().__init__(
            message=(
                "All documents must be verified before the application can be approved. "
                f"Not verified: {', '.join(self.unverified)}."
            ),
            error_code="DOCUMENTS_INCOMPLETE",
            status_code=409,
        )


class ProfileLockedError(AdmissionsError):
    """Raised when editing a locked profile."""

    def __init__(self):
        super().__init__(
            message="Your profile is locked and cannot be edited. Unlock it to make changes.",
            error_code="PROFILE_LOCKED",
            status_code=423,
        )


class ProfileIncompleteError(AdmissionsError):
    """Raised when locking a profile with missing sections."""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(
            message=f"Profile sections are incomplete: {', '.join(self.missing)}.",
            error_code="PROFILE_INCOMPLETE",
            status_code=422,
        )


class DeclarationRequiredError(AdmissionsError):
    """Raised when locking a profile without accepting the declaration."""

    def __init__(self):
        super().__init__(
            message="You must accept the declaration before locking your profile.",
            error_code="DECLARATION_REQUIRED",
            status_code=422,
        )


class UnknownDocumentTypeError(AdmissionsError):
    """Raised when uploading a document type outside the catalogue."""

    def __init__(self, label: str):
        super().__init__(
            message=f"Unknown document type: {label}.",
            error_code="UNKNOWN_DOCUMENT_TYPE",
            status_code=422,
        )


class NotFoundError(AdmissionsError):
    """Base class for unknown ids."""

    def __init__(self, message: str, error_code: str):
        super().__init__(message=message, error_code=error_code, status_code=404)


class AccountNotFoundError(NotFoundError):
    """Raised when an account is not found."""

    def __init__(self, account_id: UUID):
        super().__init__(f"Account {account_id} not found", "ACCOUNT_NOT_FOUND")


class CourseNotFoundError(NotFoundError):
    """Raised when an applied course is not found in the account."""

    def __init__(self, course_id: UUID):
        super().__init__(f"Application {course_id} not found", "APPLICATION_NOT_FOUND")


class DocumentNotFoundError(NotFoundError):
    """Raised when a document is not found in the applied course."""

    def __init__(self, document_id: UUID):
        super().__init__(f"Document {document_id} not found", "DOCUMENT_NOT_FOUND")


class SlotNotFoundError(NotFoundError):
    """Raised when an appointment slot is not found."""

    def __init__(self, slot: str):
        super().__init__(f"Appointment slot {slot} not found", "SLOT_NOT_FOUND")


class StoreUnavailableError(AdmissionsError):
    """Raised when the store cannot be reached. Safe to retry."""

    retryable = True

    def __init__(self, message: str = "The data store is temporarily unavailable."):
        super().__init__(
            message=message,
            error_code="STORE_UNAVAILABLE",
            status_code=503,
        )


class ConflictError(AdmissionsError):
    """Raised when a conditional write finds the record changed. Retry after re-reading."""

    retryable = True

    def __init__(self, message: str = "The record was changed by another request."):
        super().__init__(
            message=message,
            error_code="CONFLICT",
            status_code=409,
        )


class StaleVersionError(ConflictError):
    """Raised when the caller decided on a version that is no longer current."""

    retryable = False

    def __init__(self, expected_version: int, current_version: int):
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"The application changed since it was reviewed "
            f"(expected version {expected_version}, found {current_version}). Reload and retry."
        )


class DuplicateAccountError(AdmissionsError):
    """Raised when creating an account whose id or email is already taken."""

    def __init__(self, email: str | None = None):
        detail = f" for {email}" if email else ""
        super().__init__(
            message=f"An account already exists{detail}.",
            error_code="ACCOUNT_EXISTS",
            status_code=409,
        )


class NotStaffAccountError(AdmissionsError):
    """Raised when editing capabilities of an account that is not staff."""

    def __init__(self, account_id: UUID):
        super().__init__(
            message=f"Account {account_id} is not a staff account; capabilities apply only to staff.",
            error_code="NOT_STAFF_ACCOUNT",
            status_code=422,
        )


class NotCandidateAccountError(AdmissionsError):
    """Raised when a student operation targets a staff or admin account."""

    def __init__(self, account_id: UUID):
        super().__init__(
            message=f"Account {account_id} is not a candidate account.",
            error_code="NOT_CANDIDATE_ACCOUNT",
            status_code=422,
        )
