"""
Unit tests for the admissions service layer.

These run against the in-memory store, so every assertion about "stored
state" re-reads the aggregate.
"""

from datetime import date
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from app.core.auth import CallerIdentity
from app.modules.admissions.exceptions import (
    AccountNotFoundError,
    CourseNotFoundError,
    DeclarationRequiredError,
    DocumentNotFoundError,
    DocumentsIncompleteError,
    DuplicateAccountError,
    ForbiddenError,
    InvalidTransitionError,
    NotCandidateAccountError,
    NotStaffAccountError,
    PaymentRequiredError,
    ProfileIncompleteError,
    ProfileLockedError,
    RequiredDocumentsMissingError,
    SlotNotFoundError,
    SlotRequiredError,
    SlotUnavailableError,
    UnknownDocumentTypeError,
)
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
from app.modules.admissions.service import AdmissionsService

from .conftest import SLOT_KEY
from .test_state_machine import ILLEGAL_COURSE_PAIRS


async def _paid_course(service, candidate, course_request):
    course = await service.apply_for_course(candidate, course_request)
    return await service.record_payment(candidate, course.id, "pay_123")


# ============================================
# Accounts
# ============================================


class TestRegistration:
    """Tests for candidate registration and staff accounts."""

    @pytest.mark.asyncio
    async def test_register_candidate(self, service, candidate_id):
        identity = CallerIdentity(account_id=candidate_id, role="candidate", email="c@example.com")

        account = await service.register_candidate(identity)

        assert account.id == candidate_id
        assert account.role == Role.CANDIDATE
        assert account.email == "c@example.com"
        assert account.profile_locked is False

    @pytest.mark.asyncio
    async def test_register_twice_returns_existing_account(self, service, candidate_id):
        identity = CallerIdentity(account_id=candidate_id, role="candidate")
        first = await service.register_candidate(identity, "c@example.com")

        second = await service.register_candidate(identity, "c@example.com")

        assert second.id == first.id

    @pytest.mark.asyncio
    async def test_register_with_taken_email(self, service):
        await service.register_candidate(
            CallerIdentity(account_id=uuid4(), role="candidate"), "same@example.com"
        )
        with pytest.raises(DuplicateAccountError):
            await service.register_candidate(
                CallerIdentity(account_id=uuid4(), role="candidate"), "same@example.com"
            )

    @pytest.mark.asyncio
    async def test_staff_identity_cannot_register_as_candidate(self, service):
        with pytest.raises(ForbiddenError):
            await service.register_candidate(CallerIdentity(account_id=uuid4(), role="staff"))

    @pytest.mark.asyncio
    async def test_admin_creates_staff_with_capabilities(self, service, admin, store):
        account = await service.create_staff_account(
            admin, "staff@example.com", Role.STAFF, {Capability.REQUESTS: True}
        )

        stored = await store.read_aggregate(account.id)
        assert stored.role == Role.STAFF
        assert stored.permissions == {"requests": True}

    @pytest.mark.asyncio
    async def test_staff_cannot_create_staff(self, service, reviewer):
        with pytest.raises(ForbiddenError):
            await service.create_staff_account(reviewer, "x@example.com")

    @pytest.mark.asyncio
    async def test_admin_replaces_staff_permissions(self, service, admin, store):
        account = await service.create_staff_account(
            admin, "staff@example.com", Role.STAFF, {Capability.REQUESTS: True}
        )

        await service.update_staff_permissions(
            admin, account.id, {Capability.REQUESTS: False, Capability.SETTINGS: True}
        )

        stored = await store.read_aggregate(account.id)
        actor = Actor.from_account(stored.id, stored.role, stored.permissions)
        assert actor.permissions == {Capability.SETTINGS}

    @pytest.mark.asyncio
    async def test_permissions_only_apply_to_staff(self, service, admin, seed_account):
        account = await seed_account()
        with pytest.raises(NotStaffAccountError):
            await service.update_staff_permissions(admin, account.id, {Capability.REQUESTS: True})

    @pytest.mark.asyncio
    async def test_get_account_requires_students_capability(
        self, service, seed_account, reviewer, other_reviewer, candidate
    ):
        account = await seed_account()

        assert (await service.get_account(reviewer, account.id)).id == account.id
        assert (await service.get_account(candidate, account.id)).id == account.id
        with pytest.raises(ForbiddenError):
            await service.get_account(other_reviewer, account.id)

    @pytest.mark.asyncio
    async def test_unknown_account(self, service, admin):
        with pytest.raises(AccountNotFoundError):
            await service.get_account(admin, uuid4())


# ============================================
# Profile
# ============================================


class TestProfileLock:
    """Tests for profile editing and the lock workflow."""

    @pytest.mark.asyncio
    async def test_save_section_updates_completion(self, service, seed_account, candidate):
        await seed_account()

        account = await service.save_profile_section(
            candidate, ProfileSection.PRIMARY, {"first_name": "Asha"}
        )

        assert account.profile["primary"] == {"first_name": "Asha"}
        assert account.profile_completion == 11

    @pytest.mark.asyncio
    async def test_lock_requires_declaration(self, service, seed_account, candidate, complete_profile):
        await seed_account(profile=complete_profile)
        with pytest.raises(DeclarationRequiredError):
            await service.lock_profile(candidate, declaration=False)

    @pytest.mark.asyncio
    async def test_lock_requires_complete_profile(self, service, seed_account, candidate):
        await seed_account(profile={"primary": {}})
        with pytest.raises(ProfileIncompleteError) as exc_info:
            await service.lock_profile(candidate, declaration=True)
        assert "address" in exc_info.value.missing
        assert "primary" not in exc_info.value.missing

    @pytest.mark.asyncio
    async def test_lock_is_idempotent(self, service, store, seed_account, candidate, complete_profile):
        await seed_account(profile=complete_profile)

        first = await service.lock_profile(candidate, declaration=True)
        second = await service.lock_profile(candidate, declaration=True)

        assert first.profile_locked and second.profile_locked
        assert second.version == first.version
        stored = await store.read_aggregate(candidate.account_id)
        assert stored.model_dump() == first.model_dump()
        assert stored.declaration_accepted is True
        assert stored.profile_completion == 100

    @pytest.mark.asyncio
    async def test_locked_profile_refuses_edits(
        self, service, seed_account, candidate, complete_profile
    ):
        await seed_account(profile=complete_profile)
        await service.lock_profile(candidate, declaration=True)

        with pytest.raises(ProfileLockedError):
            await service.save_profile_section(candidate, ProfileSection.BANK, {"ifsc": "X"})

    @pytest.mark.asyncio
    async def test_unlock_allows_edits_again(
        self, service, seed_account, candidate, complete_profile
    ):
        await seed_account(profile=complete_profile)
        await service.lock_profile(candidate, declaration=True)

        account = await service.unlock_profile(candidate)
        assert account.profile_locked is False
        await service.save_profile_section(candidate, ProfileSection.BANK, {"ifsc": "X"})

    @pytest.mark.asyncio
    async def test_unlock_is_idempotent(self, service, seed_account, candidate):
        account = await seed_account()
        unlocked = await service.unlock_profile(candidate)
        assert unlocked.version == account.version

    @pytest.mark.asyncio
    async def test_staff_cannot_force_unlock(self, service, reviewer):
        with pytest.raises(ForbiddenError):
            await service.unlock_profile(reviewer)

    @pytest.mark.asyncio
    async def test_lock_does_not_block_applications(
        self, service, seed_account, candidate, complete_profile, course_request
    ):
        await seed_account(profile=complete_profile)
        await service.lock_profile(candidate, declaration=True)

        course = await _paid_course(service, candidate, course_request)

        assert course.payment_status == PaymentStatus.PAID
        assert (await service.get_my_account(candidate)).profile_locked is True


# ============================================
# Candidate lifecycle
# ============================================


class TestApplyAndPay:
    """Tests for applying, payment orders and payment recording."""

    @pytest.mark.asyncio
    async def test_apply_appends_pending_course(
        self, service, store, seed_account, candidate, course_request
    ):
        await seed_account()

        first = await service.apply_for_course(candidate, course_request)
        second = await service.apply_for_course(candidate, course_request)

        assert first.status == CourseStatus.PENDING
        assert first.payment_status == PaymentStatus.PENDING
        assert first.application_id.endswith("/01")
        assert second.application_id.endswith("/02")
        stored = await store.read_aggregate(candidate.account_id)
        assert [c.id for c in stored.applied_courses] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_application_ids_are_not_reused_after_delete(
        self, service, seed_account, candidate, admin, course_request
    ):
        await seed_account()
        first = await service.apply_for_course(candidate, course_request)
        second = await service.apply_for_course(candidate, course_request)
        await service.delete_application(admin, candidate.account_id, first.id)

        third = await service.apply_for_course(candidate, course_request)

        assert third.application_id.endswith("/03")
        assert second.application_id != third.application_id

    @pytest.mark.asyncio
    async def test_candidate_cannot_apply_without_account(self, service, candidate, course_request):
        with pytest.raises(AccountNotFoundError):
            await service.apply_for_course(candidate, course_request)

    @pytest.mark.asyncio
    async def test_payment_order_is_stored(self, service, seed_account, candidate, course_request):
        await seed_account()
        course = await service.apply_for_course(candidate, course_request)
        gateway = MagicMock()
        gateway.create_order = AsyncMock(return_value="order_abc")

        updated = await service.create_payment_order(candidate, course.id, gateway)

        gateway.create_order.assert_awaited_once_with(course.amount, course.application_id)
        assert updated.payment_order_ref == "order_abc"
        assert updated.payment_status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_paid_course_refuses_new_order(
        self, service, seed_account, candidate, course_request
    ):
        await seed_account()
        course = await _paid_course(service, candidate, course_request)
        with pytest.raises(InvalidTransitionError):
            await service.create_payment_order(candidate, course.id, object())

    @pytest.mark.asyncio
    async def test_record_payment(self, service, seed_account, candidate, course_request):
        await seed_account()
        course = await _paid_course(service, candidate, course_request)

        assert course.payment_status == PaymentStatus.PAID
        assert course.payment_reference == "pay_123"
        assert course.paid_at is not None

    @pytest.mark.asyncio
    async def test_repeated_payment_callback_is_a_no_op(
        self, service, seed_account, candidate, course_request
    ):
        await seed_account()
        course = await _paid_course(service, candidate, course_request)

        again = await service.record_payment(candidate, course.id, "pay_123")

        assert again.version == course.version
        with pytest.raises(InvalidTransitionError):
            await service.record_payment(candidate, course.id, "pay_other")

    @pytest.mark.asyncio
    async def test_candidate_cannot_touch_another_account(
        self, service, seed_account, course_request
    ):
        await seed_account()
        stranger = Actor(account_id=uuid4(), role=Role.CANDIDATE)
        with pytest.raises(AccountNotFoundError):
            await service.apply_for_course(stranger, course_request)


class TestBookAppointment:
    """Tests for appointment booking guards."""

    @pytest.mark.asyncio
    async def test_unpaid_course_requires_payment(
        self, service, seed_account, publish, candidate, course_request
    ):
        await seed_account()
        await publish()
        course = await service.apply_for_course(candidate, course_request)

        with pytest.raises(PaymentRequiredError):
            await service.book_appointment(candidate, course.id, SLOT_KEY)

    @pytest.mark.asyncio
    async def test_missing_slot(self, service, seed_account, publish, candidate, course_request):
        await seed_account()
        await publish()
        course = await _paid_course(service, candidate, course_request)

        with pytest.raises(SlotRequiredError):
            await service.book_appointment(candidate, course.id, None)

    @pytest.mark.asyncio
    async def test_unpublished_slot(self, service, seed_account, publish, candidate, course_request):
        await seed_account()
        await publish()
        course = await _paid_course(service, candidate, course_request)

        with pytest.raises(SlotUnavailableError):
            await service.book_appointment(candidate, course.id, "2025-01-10/PM")

    @pytest.mark.asyncio
    async def test_withdrawn_slot_cannot_be_booked(
        self, service, seed_account, publish, candidate, admin, course_request
    ):
        await seed_account()
        await publish()
        await service.withdraw_slot(admin, SLOT_KEY)
        course = await _paid_course(service, candidate, course_request)

        with pytest.raises(SlotUnavailableError):
            await service.book_appointment(candidate, course.id, SLOT_KEY)

    @pytest.mark.asyncio
    async def test_booking_succeeds_when_all_guards_hold(
        self, service, store, seed_account, publish, candidate, course_request
    ):
        await seed_account()
        await publish()
        course = await _paid_course(service, candidate, course_request)

        booked = await service.book_appointment(candidate, course.id, SLOT_KEY)

        assert booked.status == CourseStatus.APPOINTMENT_BOOKED
        assert booked.appointment_date == date(2025, 1, 10)
        assert booked.appointment_slot == "AM"
        stored = (await store.read_aggregate(candidate.account_id)).get_course(course.id)
        assert stored.status == CourseStatus.APPOINTMENT_BOOKED

    @pytest.mark.asyncio
    async def test_required_documents_are_enforced(
        self, store, guard, blob_storage, seed_account, publish, candidate, course_request
    ):
        service = AdmissionsService(
            store, guard=guard, blob_storage=blob_storage, required_documents=["photo"]
        )
        await seed_account()
        await publish()
        course = await _paid_course(service, candidate, course_request)

        with pytest.raises(RequiredDocumentsMissingError):
            await service.book_appointment(candidate, course.id, SLOT_KEY)

        await service.upload_document(candidate, course.id, "photo", b"img", "image/png")
        booked = await service.book_appointment(candidate, course.id, SLOT_KEY)
        assert booked.status == CourseStatus.APPOINTMENT_BOOKED

    @pytest.mark.asyncio
    async def test_booked_course_cannot_be_booked_again(
        self, service, seed_account, publish, candidate, course_request
    ):
        await seed_account()
        await publish()
        course = await _paid_course(service, candidate, course_request)
        await service.book_appointment(candidate, course.id, SLOT_KEY)

        with pytest.raises(InvalidTransitionError):
            await service.book_appointment(candidate, course.id, SLOT_KEY)

    @pytest.mark.asyncio
    async def test_rebooking_discards_flagged_uploads(
        self,
        service,
        store,
        booked_course,
        document_factory,
        publish,
        candidate,
        candidate_id,
        blob_storage,
    ):
        await publish()
        course = await booked_course(
            documents=[
                document_factory(DocumentType.SSC, url="/media/ssc.pdf"),
                document_factory(
                    DocumentType.PHOTO, DocumentStatus.REFILL_REQUIRED, url="/media/old.png"
                ),
            ]
        )
        await store.write_course_fields(
            candidate_id, course.id, {"status": CourseStatus.REFILL_REQUIRED}, None
        )

        booked = await service.book_appointment(candidate, course.id, SLOT_KEY)

        blob_storage.delete_object.assert_awaited_once_with("/media/old.png")
        photo = booked.find_document(DocumentType.PHOTO)
        assert photo.status == DocumentStatus.PENDING
        assert photo.url is None
        assert booked.find_document(DocumentType.SSC).url == "/media/ssc.pdf"

    @pytest.mark.asyncio
    async def test_first_booking_deletes_nothing(
        self, service, seed_account, publish, candidate, course_request, blob_storage
    ):
        await seed_account()
        await publish()
        course = await _paid_course(service, candidate, course_request)

        await service.book_appointment(candidate, course.id, SLOT_KEY)

        blob_storage.delete_object.assert_not_awaited()


class TestUploadDocument:
    """Tests for candidate document uploads."""

    @pytest.mark.asyncio
    async def test_upload_requires_payment(
        self, service, seed_account, candidate, course_request, blob_storage
    ):
        await seed_account()
        course = await service.apply_for_course(candidate, course_request)

        with pytest.raises(PaymentRequiredError):
            await service.upload_document(candidate, course.id, "aadhaar", b"x", "application/pdf")

        blob_storage.put_object.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_document_type(self, service, seed_account, candidate, course_request):
        await seed_account()
        course = await _paid_course(service, candidate, course_request)

        with pytest.raises(UnknownDocumentTypeError):
            await service.upload_document(candidate, course.id, "passport", b"x", "image/png")

    @pytest.mark.asyncio
    async def test_replacing_pending_document_deletes_old_blob(
        self, service, seed_account, candidate, course_request, blob_storage
    ):
        await seed_account()
        course = await _paid_course(service, candidate, course_request)

        first = await service.upload_document(candidate, course.id, "ssc", b"1", "application/pdf")
        second = await service.upload_document(candidate, course.id, "ssc", b"2", "application/pdf")

        assert len(second.documents) == 1
        assert second.documents[0].id == first.documents[0].id
        assert second.documents[0].url != first.documents[0].url
        assert second.documents[0].status == DocumentStatus.PENDING
        blob_storage.delete_object.assert_awaited_once_with(first.documents[0].url)

    @pytest.mark.asyncio
    async def test_verified_document_cannot_be_replaced(
        self, service, seed_account, candidate, reviewer, course_request, blob_storage
    ):
        await seed_account()
        course = await _paid_course(service, candidate, course_request)
        course = await service.upload_document(candidate, course.id, "ssc", b"1", "application/pdf")
        await service.update_document_status(
            reviewer,
            candidate.account_id,
            course.id,
            course.documents[0].id,
            DocumentStatus.VERIFIED,
        )

        with pytest.raises(InvalidTransitionError):
            await service.upload_document(candidate, course.id, "ssc", b"2", "application/pdf")

        blob_storage.delete_object.assert_not_awaited()


# ============================================
# Staff decisions
# ============================================


class TestStaffDecisions:
    """Tests for course and document decisions."""

    @pytest.mark.asyncio
    async def test_staff_without_requests_is_forbidden_for_every_target(
        self, service, store, booked_course, staff_without_requests, candidate_id
    ):
        course = await booked_course()

        for target in CourseStatus:
            with pytest.raises(ForbiddenError):
                await service.update_course_status(
                    staff_without_requests, candidate_id, course.id, target
                )

        stored = (await store.read_aggregate(candidate_id)).get_course(course.id)
        assert stored.version == course.version

    @pytest.mark.asyncio
    async def test_forbidden_before_any_read(self, service, staff_without_requests):
        """Denial does not depend on the target existing."""
        with pytest.raises(ForbiddenError):
            await service.update_course_status(
                staff_without_requests, uuid4(), uuid4(), CourseStatus.VERIFIED
            )

    @pytest.mark.asyncio
    async def test_admin_is_never_forbidden(self, service, booked_course, admin, candidate_id):
        course = await booked_course()

        for document in course.documents:
            await service.update_document_status(
                admin, candidate_id, course.id, document.id, DocumentStatus.VERIFIED
            )
        approved = await service.update_course_status(
            admin, candidate_id, course.id, CourseStatus.VERIFIED
        )

        assert approved.status == CourseStatus.VERIFIED
        assert approved.reviewed_by == admin.account_id

    @pytest.mark.asyncio
    async def test_approval_with_pending_documents_fails(
        self, service, store, booked_course, reviewer, candidate_id
    ):
        course = await booked_course()
        await service.update_document_status(
            reviewer, candidate_id, course.id, course.documents[0].id, DocumentStatus.VERIFIED
        )

        with pytest.raises(DocumentsIncompleteError) as exc_info:
            await service.update_course_status(
                reviewer, candidate_id, course.id, CourseStatus.VERIFIED
            )

        assert exc_info.value.unverified == ["ssc", "photo"]
        stored = (await store.read_aggregate(candidate_id)).get_course(course.id)
        assert stored.status == CourseStatus.APPOINTMENT_BOOKED

    @pytest.mark.asyncio
    async def test_reject_records_reason(self, service, booked_course, reviewer, candidate_id):
        course = await booked_course()

        rejected = await service.update_course_status(
            reviewer, candidate_id, course.id, CourseStatus.REJECTED, reason="Ineligible"
        )

        assert rejected.status == CourseStatus.REJECTED
        assert rejected.decision_reason == "Ineligible"
        assert rejected.reviewed_at is not None

    @pytest.mark.parametrize(("current", "target"), ILLEGAL_COURSE_PAIRS)
    @pytest.mark.asyncio
    async def test_illegal_pairs_leave_stored_status_unchanged(
        self,
        current,
        target,
        service,
        store,
        seed_account,
        publish,
        candidate,
        admin,
        course_factory,
        document_factory,
    ):
        account = await seed_account()
        await publish()
        course = await store.append_course(
            account.id,
            course_factory(
                status=current,
                payment_status=PaymentStatus.PAID,
                documents=[document_factory(status=DocumentStatus.VERIFIED)],
            ),
        )

        with pytest.raises(InvalidTransitionError):
            if target == CourseStatus.APPOINTMENT_BOOKED:
                await service.book_appointment(candidate, course.id, SLOT_KEY)
            else:
                await service.update_course_status(admin, account.id, course.id, target)

        stored = (await store.read_aggregate(account.id)).get_course(course.id)
        assert stored.status == current
        assert stored.version == course.version

    @pytest.mark.asyncio
    async def test_document_review_is_one_shot(
        self, service, booked_course, reviewer, candidate_id
    ):
        course = await booked_course()
        document_id = course.documents[0].id
        await service.update_document_status(
            reviewer, candidate_id, course.id, document_id, DocumentStatus.REJECTED, "Blurred"
        )

        with pytest.raises(InvalidTransitionError):
            await service.update_document_status(
                reviewer, candidate_id, course.id, document_id, DocumentStatus.VERIFIED
            )

    @pytest.mark.asyncio
    async def test_unknown_ids(self, service, booked_course, reviewer, candidate_id):
        course = await booked_course()

        with pytest.raises(DocumentNotFoundError):
            await service.update_document_status(
                reviewer, candidate_id, course.id, uuid4(), DocumentStatus.VERIFIED
            )
        with pytest.raises(CourseNotFoundError):
            await service.update_course_status(
                reviewer, candidate_id, uuid4(), CourseStatus.REJECTED
            )

    @pytest.mark.asyncio
    async def test_delete_application_removes_course_and_blobs(
        self, service, store, booked_course, reviewer, candidate_id, blob_storage
    ):
        course = await booked_course()

        await service.delete_application(reviewer, candidate_id, course.id)

        stored = await store.read_aggregate(candidate_id)
        assert stored.applied_courses == []
        assert blob_storage.delete_object.await_count == 3
        with pytest.raises(CourseNotFoundError):
            await service.delete_application(reviewer, candidate_id, course.id)

    @pytest.mark.asyncio
    async def test_list_requests_filters_by_status(
        self, service, booked_course, reviewer, staff_without_requests
    ):
        course = await booked_course()

        items, total = await service.list_requests(reviewer, CourseStatus.APPOINTMENT_BOOKED)
        assert total == 1
        assert items[0][1].id == course.id

        _, total = await service.list_requests(reviewer, CourseStatus.PENDING)
        assert total == 0

        with pytest.raises(ForbiddenError):
            await service.list_requests(staff_without_requests)

# ============================================
# Admin Views
# ============================================


class TestAdminViews:
    """Tests for the dashboard counts and the student and document listings."""

    @pytest.mark.asyncio
    async def test_dashboard_counts(
        self,
        service,
        store,
        booked_course,
        course_factory,
        candidate_id,
        admin,
        staff_without_requests,
    ):
        await booked_course()
        await store.append_course(candidate_id, course_factory(application_id="A/2025/02"))
        await store.append_course(
            candidate_id,
            course_factory(CourseStatus.VERIFIED, application_id="A/2025/03"),
        )
        await service.create_staff_account(admin, "staff@example.com")

        stats = await service.get_dashboard_stats(staff_without_requests)

        assert stats.students == 1
        assert stats.staff == 1
        assert stats.pending == 1
        assert stats.approved == 1
        assert stats.rejected == 0

    @pytest.mark.asyncio
    async def test_dashboard_requires_capability(self, service, reviewer):
        with pytest.raises(ForbiddenError):
            await service.get_dashboard_stats(reviewer)

    @pytest.mark.asyncio
    async def test_list_students_excludes_staff(self, service, seed_account, admin, reviewer):
        account = await seed_account()
        await service.create_staff_account(admin, "staff@example.com")

        items, total = await service.list_students(reviewer)

        assert total == 1
        assert items[0].id == account.id

    @pytest.mark.asyncio
    async def test_list_students_requires_capability(self, service, other_reviewer):
        with pytest.raises(ForbiddenError):
            await service.list_students(other_reviewer)

    @pytest.mark.asyncio
    async def test_delete_student_removes_account_and_blobs(
        self, service, store, booked_course, reviewer, candidate_id, blob_storage
    ):
        await booked_course()

        await service.delete_student(reviewer, candidate_id)

        with pytest.raises(AccountNotFoundError):
            await store.read_aggregate(candidate_id)
        assert blob_storage.delete_object.await_count == 3

    @pytest.mark.asyncio
    async def test_delete_student_refuses_staff_accounts(self, service, store, admin, reviewer):
        staff = await service.create_staff_account(admin, "staff@example.com")

        with pytest.raises(NotCandidateAccountError):
            await service.delete_student(reviewer, staff.id)

        assert (await store.read_aggregate(staff.id)).role == Role.STAFF

    @pytest.mark.asyncio
    async def test_delete_student_requires_capability(
        self, service, seed_account, other_reviewer, candidate_id
    ):
        await seed_account()

        with pytest.raises(ForbiddenError):
            await service.delete_student(other_reviewer, candidate_id)

    @pytest.mark.asyncio
    async def test_list_documents_across_accounts(
        self, service, booked_course, admin, reviewer, candidate_id
    ):
        course = await booked_course()

        items, total = await service.list_documents(admin)
        assert total == 3
        assert {item.course_id for item in items} == {course.id}
        assert {item.account_id for item in items} == {candidate_id}

        _, total = await service.list_documents(admin, DocumentStatus.VERIFIED)
        assert total == 0

        with pytest.raises(ForbiddenError):
            await service.list_documents(reviewer)


class TestSlots:
    """Tests for publishing and withdrawing appointment slots."""

    @pytest.mark.asyncio
    async def test_publish_requires_settings(self, service, reviewer):
        with pytest.raises(ForbiddenError):
            await service.publish_slot(reviewer, date(2025, 1, 10), "AM")

    @pytest.mark.asyncio
    async def test_publish_and_list(self, service, admin):
        await service.publish_slot(admin, date(2025, 1, 11), "PM")
        await service.publish_slot(admin, date(2025, 1, 10), "AM")

        slots = await service.list_slots()

        assert [s.key for s in slots] == ["2025-01-10/AM", "2025-01-11/PM"]

    @pytest.mark.asyncio
    async def test_withdraw_unknown_slot(self, service, admin):
        with pytest.raises(SlotNotFoundError):
            await service.withdraw_slot(admin, "2025-01-10/AM")
        with pytest.raises(SlotNotFoundError):
            await service.withdraw_slot(admin, "not-a-slot")
