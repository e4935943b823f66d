"""
Concurrency Guard

Read-validate-write with bounded retries.

Every mutation re-reads the aggregate, lets the caller validate against the
fresh snapshot and compute the fields to change, then writes only those
fields conditionally on the version it read. If another request committed
in between, the store raises ConflictError and the whole cycle runs again,
so both changes survive. Validation errors from the callback are never
retried.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar
from uuid import UUID

from app.core.config import settings

from .exceptions import AdmissionsError, StaleVersionError
from .repository import AggregateStore
from .schemas import AccountAggregate, AppliedCourseEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

Fields = Mapping[str, Any] | None
CourseMutation = Callable[[AccountAggregate, AppliedCourseEntry], Fields]
AccountMutation = Callable[[AccountAggregate], Fields]


class ConcurrencyGuard:
    """
    Runs aggregate mutations against a store with optimistic retries.

    Args:
        store: The aggregate store
        max_attempts: Total attempts for a retryable failure (default from settings)
        backoff_seconds: Base delay between attempts, multiplied by the attempt number
    """

    def __init__(
        self,
        store: AggregateStore,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
    ):
        self.store = store
        self.max_attempts = max_attempts or settings.store_max_attempts
        self.backoff_seconds = (
            settings.store_retry_backoff_seconds if backoff_seconds is None else backoff_seconds
        )

    async def run(self, operation: str, attempt: Callable[[], Awaitable[T]]) -> T:
        """
        Run `attempt` until it succeeds, retrying Conflict and StoreUnavailable.

        Raises:
            The last retryable error once attempts are exhausted, or any
            non-retryable error immediately
        """
        for attempt_number in range(1, self.max_attempts + 1):
            try:
                return await attempt()
            except AdmissionsError as e:
                if not e.retryable:
                    raise
                if attempt_number == self.max_attempts:
                    logger.error(
                        f"{operation} failed after {attempt_number} attempts: {e.error_code}"
                    )
                    raise
                logger.warning(
                    f"{operation} attempt {attempt_number} hit {e.error_code}, retrying"
                )
                if self.backoff_seconds:
                    await asyncio.sleep(self.backoff_seconds * attempt_number)

        raise RuntimeError("max_attempts must be at least 1")

    async def mutate_account(
        self, operation: str, account_id: UUID, mutate: AccountMutation
    ) -> AccountAggregate:
        """
        Apply an account-level change.

        `mutate` receives a fresh snapshot and returns the fields to write, or
        None when nothing needs to change. Returns the updated aggregate.
        """

        async def attempt() -> AccountAggregate:
            account = await self.store.read_aggregate(account_id)
            fields = mutate(account)
            if not fields:
                return account
            new_version = await self.store.write_account_fields(
                account_id, fields, expected_version=account.version
            )
            return account.model_copy(update={**fields, "version": new_version})

        return await self.run(operation, attempt)

    async def mutate_course(
        self,
        operation: str,
        account_id: UUID,
        course_id: UUID,
        mutate: CourseMutation,
        *,
        expected_version: int | None = None,
    ) -> AppliedCourseEntry:
        """
        Apply a change to one applied course.

        Args:
            expected_version: Version the caller based its decision on; if the
                course has moved past it the change is refused with
                StaleVersionError instead of being re-applied

        Returns:
            The updated course
        """

        async def attempt() -> AppliedCourseEntry:
            account = await self.store.read_aggregate(account_id)
            course = account.get_course(course_id)
            if expected_version is not None and course.version != expected_version:
                raise StaleVersionError(expected_version, course.version)

            fields = mutate(account, course)
            if not fields:
                return course
            new_version = await self.store.write_course_fields(
                account_id, course_id, fields, expected_version=course.version
            )
            return course.model_copy(update={**fields, "version": new_version})

        return await self.run(operation, attempt)

    async def append_course(
        self,
        operation: str,
        account_id: UUID,
        build: Callable[[AccountAggregate], AppliedCourseEntry],
    ) -> AppliedCourseEntry:
        """Add a course built from a fresh snapshot; a taken application id triggers a rebuild."""

        async def attempt() -> AppliedCourseEntry:
            account = await self.store.read_aggregate(account_id)
            return await self.store.append_course(account_id, build(account))

        return await self.run(operation, attempt)

    async def remove_course(
        self,
        operation: str,
        account_id: UUID,
        course_id: UUID,
        check: Callable[[AccountAggregate, AppliedCourseEntry], None] | None = None,
    ) -> AppliedCourseEntry:
        """Remove one course, optionally validating it first. Returns the removed course."""

        async def attempt() -> AppliedCourseEntry:
            account = await self.store.read_aggregate(account_id)
            course = account.get_course(course_id)
            if check is not None:
                check(account, course)
            await self.store.remove_course(account_id, course_id, expected_version=course.version)
            return course

        return await self.run(operation, attempt)
