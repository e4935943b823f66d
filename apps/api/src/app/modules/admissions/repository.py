"""
Admissions Repository

Storage for account aggregates and appointment slots.

The store is addressed by stable ids, never by list position: an account
row plus one row per applied course. Every write is conditional on the
version the caller read, and a stale write raises ConflictError instead of
overwriting a concurrent change. Writes touch only the fields passed in.

Two implementations share the AggregateStore protocol:
- SqlAlchemyAggregateStore: PostgreSQL via an AsyncSession
- InMemoryAggregateStore: process-local, for development and tests
"""

import asyncio
import copy
import logging
from collections import Counter
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import (
    AccountNotFoundError,
    ConflictError,
    CourseNotFoundError,
    StoreUnavailableError,
)
from .helpers import display_name
from .models import Account, AppliedCourse, AppointmentSlot, CourseStatus, DocumentStatus, Role
from .schemas import (
    AccountAggregate,
    AccountSummary,
    AppliedCourseEntry,
    DocumentEntry,
    DocumentListItem,
    SlotEntry,
)

logger = logging.getLogger(__name__)

ACCOUNT_FIELDS = frozenset(
    {
        "email",
        "role",
        "permissions",
        "profile",
        "profile_locked",
        "profile_completion",
        "declaration_accepted",
    }
)

COURSE_FIELDS = frozenset(
    {
        "course_type",
        "course_category",
        "course_year",
        "amount",
        "status",
        "payment_status",
        "payment_reference",
        "payment_order_ref",
        "paid_at",
        "appointment_date",
        "appointment_slot",
        "documents",
        "reviewed_by",
        "reviewed_at",
        "decision_reason",
    }
)


class AggregateStore(Protocol):
    """Conditional-write storage for account aggregates and slots."""

    async def read_aggregate(self, account_id: UUID) -> AccountAggregate: ...

    async def create_account(self, account: AccountAggregate) -> AccountAggregate: ...

    async def write_account_fields(
        self, account_id: UUID, fields: Mapping[str, Any], expected_version: int | None
    ) -> int: ...

    async def append_course(
        self, account_id: UUID, course: AppliedCourseEntry
    ) -> AppliedCourseEntry: ...

    async def write_course_fields(
        self,
        account_id: UUID,
        course_id: UUID,
        fields: Mapping[str, Any],
        expected_version: int | None,
    ) -> int: ...

    async def remove_course(
        self, account_id: UUID, course_id: UUID, expected_version: int | None
    ) -> None: ...

    async def list_courses(
        self, *, status: CourseStatus | None = None, skip: int = 0, limit: int = 20
    ) -> tuple[list[tuple[UUID, AppliedCourseEntry]], int]: ...

    async def delete_account(self, account_id: UUID, expected_version: int | None) -> None: ...

    async def list_accounts(
        self, *, role: Role | None = None, skip: int = 0, limit: int = 20
    ) -> tuple[list[AccountSummary], int]: ...

    async def list_documents(
        self, *, status: DocumentStatus | None = None, skip: int = 0, limit: int = 20
    ) -> tuple[list[DocumentListItem], int]: ...

    async def count_accounts(self) -> dict[Role, int]: ...

    async def count_courses(self) -> dict[CourseStatus, int]: ...

    async def list_slots(self, *, published_only: bool = True) -> list[SlotEntry]: ...

    async def save_slot(self, slot: SlotEntry) -> SlotEntry: ...


def _check_fields(fields: Mapping[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Fields cannot be written: {sorted(unknown)}")


def _column_values(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Convert aggregate values to column values (documents become JSON objects)."""
    values = dict(fields)
    if "documents" in values:
        values["documents"] = [
            document.model_dump(mode="json") if isinstance(document, BaseModel) else document
            for document in values["documents"]
        ]
    return values


def _account_summary(account: Any) -> AccountSummary:
    """Listing row for an Account row or an AccountAggregate."""
    return AccountSummary(
        id=account.id,
        email=account.email,
        role=account.role,
        name=display_name(account.profile or {}),
        profile_locked=account.profile_locked,
        profile_completion=account.profile_completion,
        created_at=getattr(account, "created_at", None),
    )


def _page_documents(
    courses: Iterable[tuple[UUID, UUID, str, list]],
    status: DocumentStatus | None,
    skip: int,
    limit: int,
) -> tuple[list[DocumentListItem], int]:
    """Flatten (account_id, course_id, application_id, documents) rows and page them."""
    matches = []
    for account_id, course_id, application_id, documents in courses:
        for document in documents:
            entry = DocumentEntry.model_validate(document)
            if status is not None and entry.status != status:
                continue
            matches.append(
                DocumentListItem(
                    account_id=account_id,
                    course_id=course_id,
                    application_id=application_id,
                    document=entry,
                )
            )
    return matches[skip : skip + limit], len(matches)


# ============================================
# PostgreSQL Store
# ============================================


class SqlAlchemyAggregateStore:
    """AggregateStore backed by the accounts / applied_courses tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _translate_errors(self) -> AsyncIterator[None]:
        """Map driver failures onto the admissions error types."""
        try:
            yield
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Write rejected by constraint: {e.orig}")
            raise ConflictError("The record conflicts with an existing one.") from e
        except (OperationalError, InterfaceError, OSError, TimeoutError) as e:
            await self._rollback_quietly()
            logger.error(f"Database unavailable: {e}")
            raise StoreUnavailableError() from e

    async def _rollback_quietly(self) -> None:
        try:
            await self.db.rollback()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Rollback after store failure also failed: {e}")

    async def read_aggregate(self, account_id: UUID) -> AccountAggregate:
        async with self._translate_errors():
            account = (
                await self.db.execute(
                    select(Account)
                    .where(Account.id == account_id)
                    .execution_options(populate_existing=True)
                )
            ).scalar_one_or_none()
            if account is None:
                raise AccountNotFoundError(account_id)

            rows = (
                await self.db.execute(
                    select(AppliedCourse)
                    .where(AppliedCourse.account_id == account_id)
                    .order_by(AppliedCourse.position)
                    .execution_options(populate_existing=True)
                )
            ).scalars().all()

        return AccountAggregate(
            id=account.id,
            email=account.email,
            role=account.role,
            permissions=account.permissions or {},
            profile=account.profile or {},
            profile_locked=account.profile_locked,
            profile_completion=account.profile_completion,
            declaration_accepted=account.declaration_accepted,
            version=account.version,
            applied_courses=[AppliedCourseEntry.model_validate(row) for row in rows],
        )

    async def create_account(self, account: AccountAggregate) -> AccountAggregate:
        row = Account(
            id=account.id,
            email=account.email,
            role=account.role,
            permissions=dict(account.permissions),
            profile=dict(account.profile),
            profile_locked=account.profile_locked,
            profile_completion=account.profile_completion,
            declaration_accepted=account.declaration_accepted,
            version=1,
        )
        async with self._translate_errors():
            self.db.add(row)
            await self.db.commit()

        logger.info(f"Account {account.id} created with role {account.role.value}")
        return account.model_copy(update={"version": 1, "applied_courses": []})

    async def write_account_fields(
        self, account_id: UUID, fields: Mapping[str, Any], expected_version: int | None
    ) -> int:
        _check_fields(fields, ACCOUNT_FIELDS)

        stmt = update(Account).where(Account.id == account_id)
        if expected_version is not None:
            stmt = stmt.where(Account.version == expected_version)
        stmt = stmt.values(**_column_values(fields), version=Account.version + 1).returning(
            Account.version
        )

        async with self._translate_errors():
            new_version = (await self.db.execute(stmt)).scalar_one_or_none()
            if new_version is None:
                await self.db.rollback()
                await self._raise_missing_or_conflict(account_id)
            await self.db.commit()

        return new_version

    async def append_course(
        self, account_id: UUID, course: AppliedCourseEntry
    ) -> AppliedCourseEntry:
        row = AppliedCourse(
            id=course.id,
            account_id=account_id,
            application_id=course.application_id,
            position=course.position,
            version=1,
            **_column_values({name: getattr(course, name) for name in COURSE_FIELDS}),
        )
        async with self._translate_errors():
            self.db.add(row)
            await self.db.commit()

        return course.model_copy(update={"version": 1})

    async def write_course_fields(
        self,
        account_id: UUID,
        course_id: UUID,
        fields: Mapping[str, Any],
        expected_version: int | None,
    ) -> int:
        _check_fields(fields, COURSE_FIELDS)

        stmt = update(AppliedCourse).where(
            AppliedCourse.id == course_id, AppliedCourse.account_id == account_id
        )
        if expected_version is not None:
            stmt = stmt.where(AppliedCourse.version == expected_version)
        stmt = stmt.values(
            **_column_values(fields), version=AppliedCourse.version + 1
        ).returning(AppliedCourse.version)

        async with self._translate_errors():
            new_version = (await self.db.execute(stmt)).scalar_one_or_none()
            if new_version is None:
                await self.db.rollback()
                await self._raise_missing_or_conflict(account_id, course_id)
            await self.db.commit()

        return new_version

    async def remove_course(
        self, account_id: UUID, course_id: UUID, expected_version: int | None
    ) -> None:
        stmt = delete(AppliedCourse).where(
            AppliedCourse.id == course_id, AppliedCourse.account_id == account_id
        )
        if expected_version is not None:
            stmt = stmt.where(AppliedCourse.version == expected_version)

        async with self._translate_errors():
            result = await self.db.execute(stmt)
            if result.rowcount == 0:
                await self.db.rollback()
                await self._raise_missing_or_conflict(account_id, course_id)
            await self.db.commit()

    async def _raise_missing_or_conflict(
        self, account_id: UUID, course_id: UUID | None = None
    ) -> None:
        """A conditional write matched no row: tell a missing record from a stale one."""
        if course_id is None:
            exists = await self.db.scalar(
                select(func.count()).select_from(Account).where(Account.id == account_id)
            )
            if not exists:
                raise AccountNotFoundError(account_id)
        else:
            exists = await self.db.scalar(
                select(func.count())
                .select_from(AppliedCourse)
                .where(AppliedCourse.id == course_id, AppliedCourse.account_id == account_id)
            )
            if not exists:
                raise CourseNotFoundError(course_id)
        raise ConflictError()

    async def list_courses(
        self, *, status: CourseStatus | None = None, skip: int = 0, limit: int = 20
    ) -> tuple[list[tuple[UUID, AppliedCourseEntry]], int]:
        query = select(AppliedCourse)
        count_query = select(func.count()).select_from(AppliedCourse)
        if status is not None:
            query = query.where(AppliedCourse.status == status)
            count_query = count_query.where(AppliedCourse.status == status)

        query = query.order_by(AppliedCourse.created_at.desc()).offset(skip).limit(limit)

        async with self._translate_errors():
            total = await self.db.scalar(count_query) or 0
            rows = (
                await self.db.execute(query.execution_options(populate_existing=True))
            ).scalars().all()

        return [(row.account_id, AppliedCourseEntry.model_validate(row)) for row in rows], total

    async def delete_account(self, account_id: UUID, expected_version: int | None) -> None:
        """Delete an account row; its applied_courses rows cascade with it."""
        stmt = delete(Account).where(Account.id == account_id)
        if expected_version is not None:
            stmt = stmt.where(Account.version == expected_version)

        async with self._translate_errors():
            result = await self.db.execute(stmt)
            if result.rowcount == 0:
                await self.db.rollback()
                await self._raise_missing_or_conflict(account_id)
            await self.db.commit()

    async def list_accounts(
        self, *, role: Role | None = None, skip: int = 0, limit: int = 20
    ) -> tuple[list[AccountSummary], int]:
        query = select(Account)
        count_query = select(func.count()).select_from(Account)
        if role is not None:
            query = query.where(Account.role == role)
            count_query = count_query.where(Account.role == role)

        query = query.order_by(Account.created_at.desc()).offset(skip).limit(limit)

        async with self._translate_errors():
            total = await self.db.scalar(count_query) or 0
            rows = (
                await self.db.execute(query.execution_options(populate_existing=True))
            ).scalars().all()

        return [_account_summary(row) for row in rows], total

    async def list_documents(
        self, *, status: DocumentStatus | None = None, skip: int = 0, limit: int = 20
    ) -> tuple[list[DocumentListItem], int]:
        # documents is a JSON column; filtered and paged in Python
        query = select(
            AppliedCourse.account_id,
            AppliedCourse.id,
            AppliedCourse.application_id,
            AppliedCourse.documents,
        ).order_by(AppliedCourse.created_at.desc())

        async with self._translate_errors():
            rows = (await self.db.execute(query)).all()

        return _page_documents(
            ((row[0], row[1], row[2], row[3] or []) for row in rows), status, skip, limit
        )

    async def count_accounts(self) -> dict[Role, int]:
        query = select(Account.role, func.count()).group_by(Account.role)
        async with self._translate_errors():
            rows = (await self.db.execute(query)).all()
        return {role: count for role, count in rows}

    async def count_courses(self) -> dict[CourseStatus, int]:
        query = select(AppliedCourse.status, func.count()).group_by(AppliedCourse.status)
        async with self._translate_errors():
            rows = (await self.db.execute(query)).all()
        return {course_status: count for course_status, count in rows}

    async def list_slots(self, *, published_only: bool = True) -> list[SlotEntry]:
        query = select(AppointmentSlot).order_by(AppointmentSlot.slot_date, AppointmentSlot.period)
        if published_only:
            query = query.where(AppointmentSlot.published.is_(True))

        async with self._translate_errors():
            rows = (
                await self.db.execute(query.execution_options(populate_existing=True))
            ).scalars().all()

        return [SlotEntry.model_validate(row) for row in rows]

    async def save_slot(self, slot: SlotEntry) -> SlotEntry:
        async with self._translate_errors():
            row = (
                await self.db.execute(
                    select(AppointmentSlot).where(
                        AppointmentSlot.slot_date == slot.slot_date,
                        AppointmentSlot.period == slot.period,
                    )
                )
            ).scalar_one_or_none()
            if row is None:
                self.db.add(
                    AppointmentSlot(
                        slot_date=slot.slot_date, period=slot.period, published=slot.published
                    )
                )
            else:
                row.published = slot.published
            await self.db.commit()

        return slot


# ============================================
# In-Memory Store
# ============================================


_NEVER = datetime.min.replace(tzinfo=UTC)


def _created_at(course: AppliedCourseEntry) -> datetime:
    return course.created_at or _NEVER


class InMemoryAggregateStore:
    """
    Process-local AggregateStore.

    Each call yields to the event loop before touching state, so concurrent
    operations interleave between read and write the way they would against
    a real database. Records are deep-copied in and out.

    Setting `unavailable_for` makes the next N calls raise StoreUnavailableError.
    """

    def __init__(self):
        self._accounts: dict[UUID, AccountAggregate] = {}
        self._slots: dict[str, SlotEntry] = {}
        self.unavailable_for = 0
        self.writes = 0

    async def _enter(self) -> None:
        await asyncio.sleep(0)
        if self.unavailable_for > 0:
            self.unavailable_for -= 1
            raise StoreUnavailableError()

    def _account(self, account_id: UUID) -> AccountAggregate:
        account = self._accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def _course_index(self, account: AccountAggregate, course_id: UUID) -> int:
        for index, course in enumerate(account.applied_courses):
            if course.id == course_id:
                return index
        raise CourseNotFoundError(course_id)

    async def read_aggregate(self, account_id: UUID) -> AccountAggregate:
        await self._enter()
        return self._account(account_id).model_copy(deep=True)

    async def create_account(self, account: AccountAggregate) -> AccountAggregate:
        await self._enter()
        if account.id in self._accounts:
            raise ConflictError("The record conflicts with an existing one.")
        if account.email and any(a.email == account.email for a in self._accounts.values()):
            raise ConflictError("The record conflicts with an existing one.")

        stored = account.model_copy(update={"version": 1, "applied_courses": []}, deep=True)
        self._accounts[account.id] = stored
        self.writes += 1
        return stored.model_copy(deep=True)

    async def write_account_fields(
        self, account_id: UUID, fields: Mapping[str, Any], expected_version: int | None
    ) -> int:
        _check_fields(fields, ACCOUNT_FIELDS)
        await self._enter()

        account = self._account(account_id)
        if expected_version is not None and account.version != expected_version:
            raise ConflictError()

        new_version = account.version + 1
        self._accounts[account_id] = account.model_copy(
            update={**copy.deepcopy(dict(fields)), "version": new_version}
        )
        self.writes += 1
        return new_version

    async def append_course(
        self, account_id: UUID, course: AppliedCourseEntry
    ) -> AppliedCourseEntry:
        await self._enter()

        account = self._account(account_id)
        if any(c.application_id == course.application_id for c in account.applied_courses):
            raise ConflictError("The record conflicts with an existing one.")

        stored = course.model_copy(update={"version": 1}, deep=True)
        account.applied_courses.append(stored)
        self.writes += 1
        return stored.model_copy(deep=True)

    async def write_course_fields(
        self,
        account_id: UUID,
        course_id: UUID,
        fields: Mapping[str, Any],
        expected_version: int | None,
    ) -> int:
        _check_fields(fields, COURSE_FIELDS)
        await self._enter()

        account = self._account(account_id)
        index = self._course_index(account, course_id)
        course = account.applied_courses[index]
        if expected_version is not None and course.version != expected_version:
            raise ConflictError()

        new_version = course.version + 1
        account.applied_courses[index] = course.model_copy(
            update={**copy.deepcopy(dict(fields)), "version": new_version}
        )
        self.writes += 1
        return new_version

    async def remove_course(
        self, account_id: UUID, course_id: UUID, expected_version: int | None
    ) -> None:
        await self._enter()

        account = self._account(account_id)
        index = self._course_index(account, course_id)
        if expected_version is not None and account.applied_courses[index].version != expected_version:
            raise ConflictError()

        del account.applied_courses[index]
        self.writes += 1

    async def list_courses(
        self, *, status: CourseStatus | None = None, skip: int = 0, limit: int = 20
    ) -> tuple[list[tuple[UUID, AppliedCourseEntry]], int]:
        await self._enter()

        matches = sorted(
            (
                (account.id, course)
                for account in self._accounts.values()
                for course in account.applied_courses
                if status is None or course.status == status
            ),
            key=lambda match: _created_at(match[1]),
            reverse=True,
        )
        page = matches[skip : skip + limit]
        return [(account_id, course.model_copy(deep=True)) for account_id, course in page], len(
            matches
        )

    async def delete_account(self, account_id: UUID, expected_version: int | None) -> None:
        await self._enter()

        account = self._account(account_id)
        if expected_version is not None and account.version != expected_version:
            raise ConflictError()

        del self._accounts[account_id]
        self.writes += 1

    async def list_accounts(
        self, *, role: Role | None = None, skip: int = 0, limit: int = 20
    ) -> tuple[list[AccountSummary], int]:
        await self._enter()

        # Newest first
        matches = [
            account
            for account in reversed(self._accounts.values())
            if role is None or account.role == role
        ]
        return [_account_summary(a) for a in matches[skip : skip + limit]], len(matches)

    async def list_documents(
        self, *, status: DocumentStatus | None = None, skip: int = 0, limit: int = 20
    ) -> tuple[list[DocumentListItem], int]:
        await self._enter()

        courses = sorted(
            (
                (account.id, course)
                for account in self._accounts.values()
                for course in account.applied_courses
            ),
            key=lambda match: _created_at(match[1]),
            reverse=True,
        )
        return _page_documents(
            (
                (account_id, course.id, course.application_id, copy.deepcopy(course.documents))
                for account_id, course in courses
            ),
            status,
            skip,
            limit,
        )

    async def count_accounts(self) -> dict[Role, int]:
        await self._enter()
        return dict(Counter(account.role for account in self._accounts.values()))

    async def count_courses(self) -> dict[CourseStatus, int]:
        await self._enter()
        return dict(
            Counter(
                course.status
                for account in self._accounts.values()
                for course in account.applied_courses
            )
        )

    async def list_slots(self, *, published_only: bool = True) -> list[SlotEntry]:
        await self._enter()

        slots = sorted(self._slots.values(), key=lambda s: (s.slot_date, s.period))
        return [s.model_copy() for s in slots if s.published or not published_only]

    async def save_slot(self, slot: SlotEntry) -> SlotEntry:
        await self._enter()

        self._slots[slot.key] = slot.model_copy()
        self.writes += 1
        return slot
