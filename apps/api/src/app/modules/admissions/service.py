"""
Admissions Service Layer

Entry points for every admissions operation. Each one:
1. Authorizes the actor (before any read of mutable state)
2. Re-reads the aggregate through the ConcurrencyGuard
3. Validates the change against the fresh copy with the state machine
4. Writes back only the affected record, conditional on its version

Operations:
- Candidate: register, profile sections, lock/unlock, apply, payment order,
  record payment, book appointment, upload document
- Staff: dashboard counts, request queue, student and document listings,
  account lookup, course and document decisions, application and student
  deletion, appointment slots
- Admin: staff accounts and their capabilities

Blob side effects are ordered around the write: a new object is stored
before the write and removed again if the write is refused; replaced or
deleted objects are removed only after the write succeeded.
"""

import logging
from collections.abc import Iterable
from datetime import UTC, date, datetime
from uuid import UUID

from app.core.auth import CallerIdentity
from app.core.config import settings
from app.core.payments import PaymentGateway
from app.core.storage import BlobStorage

from .concurrency import ConcurrencyGuard
from .exceptions import (
    AccountNotFoundError,
    ConflictError,
    DeclarationRequiredError,
    DuplicateAccountError,
    ForbiddenError,
    InvalidTransitionError,
    NotCandidateAccountError,
    NotStaffAccountError,
    ProfileIncompleteError,
    ProfileLockedError,
    SlotNotFoundError,
    UnknownDocumentTypeError,
)
from .helpers import (
    missing_profile_sections,
    next_application_id,
    parse_slot_key,
    profile_completion,
)
from .models import (
    Capability,
    CourseStatus,
    DocumentStatus,
    DocumentType,
    PaymentStatus,
    ProfileSection,
    Role,
)
from .permissions import AccessRule, Actor, authorize, authorize_any
from .repository import AggregateStore
from .schemas import (
    AccountAggregate,
    AccountSummary,
    AppliedCourseEntry,
    ApplyForCourseRequest,
    DashboardStats,
    DocumentEntry,
    DocumentListItem,
    SlotEntry,
)
from .state_machine import (
    CourseEvent,
    check_approval,
    check_booking,
    check_document_review,
    check_document_upload,
    check_payment,
    documents_after_rebooking,
    staff_event_for,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_required_documents(names: Iterable[str]) -> tuple[DocumentType, ...]:
    required = []
    for name in names:
        try:
            required.append(DocumentType(name))
        except ValueError:
            logger.warning(f"Ignoring unknown required document type: {name!r}")
    return tuple(required)


class AdmissionsService:
    """
    Orchestrates the application and document lifecycle.

    Args:
        store: Aggregate store
        guard: Concurrency guard (defaults to one over `store`)
        blob_storage: Storage for uploaded documents
        required_documents: Document types that must be present to book
        application_id_prefix: Prefix of generated application ids
    """

    def __init__(
        self,
        store: AggregateStore,
        *,
        guard: ConcurrencyGuard | None = None,
        blob_storage: BlobStorage | None = None,
        required_documents: Iterable[str] | None = None,
        application_id_prefix: str | None = None,
    ):
        self.store = store
        self.guard = guard or ConcurrencyGuard(store)
        self.blob_storage = blob_storage
        self.required_documents = _parse_required_documents(
            settings.required_documents if required_documents is None else required_documents
        )
        self.application_id_prefix = application_id_prefix or settings.application_id_prefix

    # ============================================
    # Accounts
    # ============================================

    async def register_candidate(
        self, identity: CallerIdentity, email: str | None = None
    ) -> AccountAggregate:
        """
        Create the caller's candidate account.

        Registering again returns the existing account.

        Raises:
            ForbiddenError: If the identity is not a candidate
            DuplicateAccountError: If the email belongs to another account
        """
        if identity.role != Role.CANDIDATE.value:
            raise ForbiddenError("register as a candidate", Role.CANDIDATE.value)

        account = AccountAggregate(
            id=identity.account_id,
            email=email or identity.email,
            role=Role.CANDIDATE,
        )
        try:
            created = await self.store.create_account(account)
        except ConflictError as e:
            try:
                return await self.store.read_aggregate(identity.account_id)
            except AccountNotFoundError:
                raise DuplicateAccountError(account.email) from e

        logger.info(f"Registered candidate account {created.id}")
        return created

    async def get_my_account(self, actor: Actor) -> AccountAggregate:
        authorize(actor, AccessRule.SELF, action="view account", owner_id=actor.account_id)
        return await self.guard.run(
            "get_my_account", lambda: self.store.read_aggregate(actor.account_id)
        )

    async def get_account(self, actor: Actor, account_id: UUID) -> AccountAggregate:
        """Read an account; the owner or staff with the `students` capability."""
        authorize_any(
            actor,
            (AccessRule.SELF, Capability.STUDENTS),
            action="view account",
            owner_id=account_id,
        )
        return await self.guard.run("get_account", lambda: self.store.read_aggregate(account_id))

    async def create_staff_account(
        self,
        actor: Actor,
        email: str,
        role: Role = Role.STAFF,
        permissions: dict[Capability, bool] | None = None,
    ) -> AccountAggregate:
        """Create a staff or admin account (admin only)."""
        authorize(actor, AccessRule.ADMIN, action="create staff accounts")

        account = AccountAggregate(
            email=email,
            role=role,
            permissions={c.value: enabled for c, enabled in (permissions or {}).items()},
        )
        try:
            created = await self.store.create_account(account)
        except ConflictError as e:
            raise DuplicateAccountError(email) from e

        logger.info(f"{actor} created {role.value} account {created.id}")
        return created

    async def update_staff_permissions(
        self, actor: Actor, account_id: UUID, permissions: dict[Capability, bool]
    ) -> AccountAggregate:
        """Replace a staff account's capability map (admin only)."""
        authorize(actor, AccessRule.ADMIN, action="edit staff permissions")

        stored = {c.value: enabled for c, enabled in permissions.items()}

        def mutate(account: AccountAggregate) -> dict | None:
            if account.role != Role.STAFF:
                raise NotStaffAccountError(account.id)
            if account.permissions == stored:
                return None
            return {"permissions": stored}

        updated = await self.guard.mutate_account(
            "update_staff_permissions", account_id, mutate
        )
        granted = sorted(name for name, enabled in stored.items() if enabled)
        logger.info(f"{actor} set capabilities of staff {account_id} to {granted}")
        return updated

    # ============================================
    # Profile
    # ============================================

    async def save_profile_section(
        self, actor: Actor, section: ProfileSection, data: dict
    ) -> AccountAggregate:
        """
        Store one profile section and recompute profile completion.

        Raises:
            ProfileLockedError: If the profile is locked
        """
        authorize(actor, AccessRule.SELF, action="edit profile", owner_id=actor.account_id)

        def mutate(account: AccountAggregate) -> dict:
            if account.profile_locked:
                raise ProfileLockedError()
            profile = {**account.profile, section.value: data}
            return {"profile": profile, "profile_completion": profile_completion(profile)}

        updated = await self.guard.mutate_account(
            "save_profile_section", actor.account_id, mutate
        )
        logger.info(
            f"Account {actor.account_id} saved profile section '{section.value}' "
            f"({updated.profile_completion}% complete)"
        )
        return updated

    async def lock_profile(self, actor: Actor, declaration: bool) -> AccountAggregate:
        """
        Lock the profile after the declaration is accepted.

        Locking an already-locked profile succeeds without changes.

        Raises:
            DeclarationRequiredError: If the declaration was not accepted
            ProfileIncompleteError: If required sections are missing
        """
        authorize(actor, AccessRule.SELF, action="lock profile", owner_id=actor.account_id)

        def mutate(account: AccountAggregate) -> dict | None:
            if account.profile_locked:
                return None
            if not declaration:
                raise DeclarationRequiredError()
            missing = missing_profile_sections(account.profile)
            if missing:
                raise ProfileIncompleteError(missing)
            return {
                "profile_locked": True,
                "declaration_accepted": True,
                "profile_completion": 100,
            }

        updated = await self.guard.mutate_account("lock_profile", actor.account_id, mutate)
        logger.info(f"Account {actor.account_id} profile locked")
        return updated

    async def unlock_profile(self, actor: Actor) -> AccountAggregate:
        """Unlock the profile; unlocking an unlocked profile is a no-op."""
        authorize(actor, AccessRule.SELF, action="unlock profile", owner_id=actor.account_id)

        def mutate(account: AccountAggregate) -> dict | None:
            if not account.profile_locked:
                return None
            return {"profile_locked": False, "declaration_accepted": False}

        updated = await self.guard.mutate_account("unlock_profile", actor.account_id, mutate)
        logger.info(f"Account {actor.account_id} profile unlocked")
        return updated

    # ============================================
    # Candidate Application Lifecycle
    # ============================================

    async def apply_for_course(
        self, actor: Actor, data: ApplyForCourseRequest
    ) -> AppliedCourseEntry:
        """
        Append a new pending, unpaid course application.

        Not idempotent: each call creates a new application. The HTTP layer
        deduplicates retries with an idempotency key.
        """
        authorize(actor, AccessRule.SELF, action="apply for a course", owner_id=actor.account_id)

        def build(account: AccountAggregate) -> AppliedCourseEntry:
            now = _utcnow()
            existing = [course.application_id for course in account.applied_courses]
            position = max((c.position for c in account.applied_courses), default=0) + 1
            return AppliedCourseEntry(
                application_id=next_application_id(self.application_id_prefix, now.year, existing),
                position=position,
                course_type=data.course_type,
                course_category=data.course_category,
                course_year=data.course_year,
                amount=data.amount,
                created_at=now,
            )

        course = await self.guard.append_course("apply_for_course", actor.account_id, build)
        logger.info(
            f"Account {actor.account_id} applied for '{course.course_category}' "
            f"as {course.application_id}"
        )
        return course

    async def create_payment_order(
        self, actor: Actor, course_id: UUID, gateway: PaymentGateway
    ) -> AppliedCourseEntry:
        """
        Open a payment-gateway order for the course fee.

        Raises:
            InvalidTransitionError: If the course is already paid
        """
        authorize(actor, AccessRule.SELF, action="pay for an application", owner_id=actor.account_id)

        def ensure_unpaid(course: AppliedCourseEntry) -> None:
            if course.payment_status != PaymentStatus.PENDING:
                raise InvalidTransitionError(
                    course.payment_status.value,
                    PaymentStatus.PAID.value,
                    reason="The application fee has already been paid.",
                )

        account = await self.guard.run(
            "create_payment_order", lambda: self.store.read_aggregate(actor.account_id)
        )
        current = account.get_course(course_id)
        ensure_unpaid(current)

        order_ref = await gateway.create_order(current.amount, current.application_id)

        def mutate(account: AccountAggregate, course: AppliedCourseEntry) -> dict:
            ensure_unpaid(course)
            return {"payment_order_ref": order_ref}

        course = await self.guard.mutate_course(
            "create_payment_order", actor.account_id, course_id, mutate
        )
        logger.info(f"Payment order {order_ref} opened for {course.application_id}")
        return course

    async def record_payment(
        self,
        actor: Actor,
        course_id: UUID,
        payment_reference: str,
        order_ref: str | None = None,
    ) -> AppliedCourseEntry:
        """
        Mark the course fee as paid (payment-gateway completion callback).

        Recording the same payment reference again is a no-op.

        Raises:
            InvalidTransitionError: If a different payment was already recorded
        """
        authorize(actor, AccessRule.SELF, action="record a payment", owner_id=actor.account_id)

        def mutate(account: AccountAggregate, course: AppliedCourseEntry) -> dict | None:
            if not check_payment(course, payment_reference):
                return None
            fields = {
                "payment_status": PaymentStatus.PAID,
                "payment_reference": payment_reference,
                "paid_at": _utcnow(),
            }
            if order_ref and not course.payment_order_ref:
                fields["payment_order_ref"] = order_ref
            return fields

        course = await self.guard.mutate_course(
            "record_payment", actor.account_id, course_id, mutate
        )
        logger.info(f"Payment recorded for {course.application_id}")
        return course

    async def book_appointment(
        self, actor: Actor, course_id: UUID, slot: str | None
    ) -> AppliedCourseEntry:
        """
        Book (or re-book after a refill request) an appointment slot.

        Raises:
            InvalidTransitionError, PaymentRequiredError, SlotRequiredError,
            SlotUnavailableError, RequiredDocumentsMissingError
        """
        authorize(actor, AccessRule.SELF, action="book an appointment", owner_id=actor.account_id)

        published = await self.guard.run(
            "list_slots", lambda: self.store.list_slots(published_only=True)
        )
        published_keys = {s.key for s in published}
        previous: dict[str, CourseStatus] = {}
        cleared: dict[str, list[str]] = {}

        def mutate(account: AccountAggregate, course: AppliedCourseEntry) -> dict:
            slot_date, period = check_booking(
                course, slot, published_keys, self.required_documents
            )
            previous["status"] = course.status
            cleared["urls"] = []
            fields = {
                "status": CourseStatus.APPOINTMENT_BOOKED,
                "appointment_date": slot_date,
                "appointment_slot": period,
            }
            if course.status == CourseStatus.REFILL_REQUIRED:
                cleared["urls"] = [
                    d.url
                    for d in course.documents
                    if d.status == DocumentStatus.REFILL_REQUIRED and d.url
                ]
                fields["documents"] = documents_after_rebooking(course.documents)
            return fields

        course = await self.guard.mutate_course(
            "book_appointment", actor.account_id, course_id, mutate
        )
        # Flagged uploads lost their url above; drop the blobs once committed
        for url in cleared.get("urls", []):
            await self._discard_blob(url)
        logger.info(
            f"{course.application_id}: {previous['status'].value} -> {course.status.value} "
            f"(slot {course.appointment_date}/{course.appointment_slot})"
        )
        return course

    async def upload_document(
        self,
        actor: Actor,
        course_id: UUID,
        label: str,
        data: bytes,
        content_type: str,
    ) -> AppliedCourseEntry:
        """
        Attach a document to a paid course, or replace a pending one.

        Re-uploading a document flagged for refill resets it to pending.

        Raises:
            UnknownDocumentTypeError: If `label` is not in the catalogue
            PaymentRequiredError: If the course fee is unpaid
            InvalidTransitionError: If the course is decided or the document
                was already verified/rejected
        """
        authorize(actor, AccessRule.SELF, action="upload a document", owner_id=actor.account_id)

        try:
            doc_type = DocumentType(label)
        except ValueError as e:
            raise UnknownDocumentTypeError(label) from e

        if self.blob_storage is None:
            raise RuntimeError("Blob storage is not configured")

        # Fail fast before storing anything
        account = await self.guard.run(
            "upload_document", lambda: self.store.read_aggregate(actor.account_id)
        )
        course = account.get_course(course_id)
        check_document_upload(course, course.find_document(doc_type))

        url = await self.blob_storage.put_object(data, content_type)
        replaced: dict[str, str | None] = {}

        def mutate(account: AccountAggregate, course: AppliedCourseEntry) -> dict:
            existing = course.find_document(doc_type)
            check_document_upload(course, existing)

            now = _utcnow()
            replaced["url"] = existing.url if existing else None
            if existing is None:
                added = DocumentEntry(label=doc_type, url=url, uploaded_at=now)
                documents = [*course.documents, added]
            else:
                renewed = existing.model_copy(
                    update={
                        "url": url,
                        "status": DocumentStatus.PENDING,
                        "uploaded_at": now,
                        "reviewed_by": None,
                        "reviewed_at": None,
                        "remark": None,
                    }
                )
                documents = [renewed if d.id == existing.id else d for d in course.documents]
            return {"documents": documents}

        try:
            course = await self.guard.mutate_course(
                "upload_document", actor.account_id, course_id, mutate
            )
        except Exception:
            await self._discard_blob(url)
            raise

        if replaced.get("url"):
            await self._discard_blob(replaced["url"])

        logger.info(f"{course.application_id}: document '{doc_type.value}' uploaded")
        return course

    # ============================================
    # Staff Decisions
    # ============================================

    async def list_requests(
        self,
        actor: Actor,
        status: CourseStatus | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[tuple[UUID, AppliedCourseEntry]], int]:
        """Page through applied courses, optionally filtered by status."""
        authorize(actor, Capability.REQUESTS, action="list requests")
        return await self.guard.run(
            "list_requests",
            lambda: self.store.list_courses(status=status, skip=skip, limit=limit),
        )

    async def update_course_status(
        self,
        actor: Actor,
        account_id: UUID,
        course_id: UUID,
        status: CourseStatus,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> AppliedCourseEntry:
        """
        Approve, reject or request a refill for an applied course.

        The decision is validated against the freshly read course on every
        attempt. Passing `expected_version` refuses the decision if the
        course changed after the reviewer loaded it.

        Raises:
            ForbiddenError: Without the `requests` capability
            InvalidTransitionError: If the course cannot move to `status`
            DocumentsIncompleteError: When approving with unverified documents
            StaleVersionError: If `expected_version` is no longer current
        """
        authorize(actor, Capability.REQUESTS, action="update application status")

        previous: dict[str, CourseStatus] = {}

        def mutate(account: AccountAggregate, course: AppliedCourseEntry) -> dict:
            event = staff_event_for(course.status, status)
            if event == CourseEvent.APPROVE:
                check_approval(course)
            previous["status"] = course.status
            return {
                "status": status,
                "reviewed_by": actor.account_id,
                "reviewed_at": _utcnow(),
                "decision_reason": reason,
            }

        course = await self.guard.mutate_course(
            "update_course_status",
            account_id,
            course_id,
            mutate,
            expected_version=expected_version,
        )
        logger.info(
            f"{actor} moved {course.application_id} "
            f"{previous['status'].value} -> {course.status.value}"
        )
        return course

    async def update_document_status(
        self,
        actor: Actor,
        account_id: UUID,
        course_id: UUID,
        document_id: UUID,
        status: DocumentStatus,
        remark: str | None = None,
    ) -> AppliedCourseEntry:
        """
        Verify, reject or flag one document for re-upload.

        Only the course's document list is rewritten.
        """
        authorize(actor, Capability.REQUESTS, action="update document status")

        previous: dict[str, DocumentEntry] = {}

        def mutate(account: AccountAggregate, course: AppliedCourseEntry) -> dict:
            document = course.get_document(document_id)
            check_document_review(document.status, status)
            previous["document"] = document
            reviewed = document.model_copy(
                update={
                    "status": status,
                    "reviewed_by": actor.account_id,
                    "reviewed_at": _utcnow(),
                    "remark": remark,
                }
            )
            return {
                "documents": [reviewed if d.id == document_id else d for d in course.documents]
            }

        course = await self.guard.mutate_course(
            "update_document_status", account_id, course_id, mutate
        )
        document = previous["document"]
        logger.info(
            f"{actor} moved document '{document.label.value}' of {course.application_id} "
            f"{document.status.value} -> {status.value}"
        )
        return course

    async def delete_application(self, actor: Actor, account_id: UUID, course_id: UUID) -> None:
        """Remove an applied course permanently, then its stored documents."""
        authorize(actor, Capability.REQUESTS, action="delete applications")

        removed = await self.guard.remove_course("delete_application", account_id, course_id)
        logger.info(f"{actor} deleted application {removed.application_id} of account {account_id}")

        for document in removed.documents:
            if document.url:
                await self._discard_blob(document.url)

    # ============================================
    # Admin Views
    # ============================================

    async def get_dashboard_stats(self, actor: Actor) -> DashboardStats:
        """Counts of candidates, staff and pending / approved / rejected applications."""
        authorize(actor, Capability.DASHBOARD, action="view the dashboard")

        accounts = await self.guard.run("dashboard_accounts", self.store.count_accounts)
        courses = await self.guard.run("dashboard_courses", self.store.count_courses)
        return DashboardStats(
            students=accounts.get(Role.CANDIDATE, 0),
            staff=accounts.get(Role.STAFF, 0),
            pending=courses.get(CourseStatus.PENDING, 0),
            approved=courses.get(CourseStatus.VERIFIED, 0),
            rejected=courses.get(CourseStatus.REJECTED, 0),
        )

    async def list_students(
        self, actor: Actor, skip: int = 0, limit: int = 20
    ) -> tuple[list[AccountSummary], int]:
        """Page through candidate accounts, newest first."""
        authorize(actor, Capability.STUDENTS, action="list students")
        return await self.guard.run(
            "list_students",
            lambda: self.store.list_accounts(role=Role.CANDIDATE, skip=skip, limit=limit),
        )

    async def delete_student(self, actor: Actor, account_id: UUID) -> None:
        """
        Permanently remove a candidate account with its applications, then
        the stored documents.

        Raises:
            NotCandidateAccountError: If the account is staff or admin
        """
        authorize(actor, Capability.STUDENTS, action="delete students")

        async def attempt() -> AccountAggregate:
            account = await self.store.read_aggregate(account_id)
            if account.role != Role.CANDIDATE:
                raise NotCandidateAccountError(account_id)
            await self.store.delete_account(account_id, expected_version=account.version)
            return account

        removed = await self.guard.run("delete_student", attempt)
        logger.info(
            f"{actor} deleted student account {account_id} "
            f"with {len(removed.applied_courses)} application(s)"
        )

        for course in removed.applied_courses:
            for document in course.documents:
                if document.url:
                    await self._discard_blob(document.url)

    async def list_documents(
        self,
        actor: Actor,
        status: DocumentStatus | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[DocumentListItem], int]:
        """Page through documents of every application, optionally by status."""
        authorize(actor, Capability.DOCUMENTS, action="list documents")
        return await self.guard.run(
            "list_documents",
            lambda: self.store.list_documents(status=status, skip=skip, limit=limit),
        )

    # ============================================
    # Appointment Slots
    # ============================================

    async def list_slots(self) -> list[SlotEntry]:
        """Published slots, in date order."""
        return await self.guard.run(
            "list_slots", lambda: self.store.list_slots(published_only=True)
        )

    async def publish_slot(self, actor: Actor, slot_date: date, period: str) -> SlotEntry:
        authorize(actor, Capability.SETTINGS, action="publish appointment slots")

        slot = SlotEntry(slot_date=slot_date, period=period, published=True)
        saved = await self.guard.run("publish_slot", lambda: self.store.save_slot(slot))
        logger.info(f"{actor} published appointment slot {saved.key}")
        return saved

    async def withdraw_slot(self, actor: Actor, key: str) -> SlotEntry:
        """
        Stop offering a slot. Existing bookings on it are kept.

        Raises:
            SlotNotFoundError: If the slot was never published
        """
        authorize(actor, Capability.SETTINGS, action="withdraw appointment slots")

        try:
            slot_date, period = parse_slot_key(key)
        except ValueError as e:
            raise SlotNotFoundError(key) from e

        slots = await self.guard.run(
            "withdraw_slot", lambda: self.store.list_slots(published_only=False)
        )
        if not any(s.slot_date == slot_date and s.period == period for s in slots):
            raise SlotNotFoundError(key)

        slot = SlotEntry(slot_date=slot_date, period=period, published=False)
        saved = await self.guard.run("withdraw_slot", lambda: self.store.save_slot(slot))
        logger.info(f"{actor} withdrew appointment slot {saved.key}")
        return saved

    # ============================================
    # Internal
    # ============================================

    async def _discard_blob(self, url: str) -> None:
        if self.blob_storage is None:
            return
        try:
            await self.blob_storage.delete_object(url)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to delete stored document: {e}")
