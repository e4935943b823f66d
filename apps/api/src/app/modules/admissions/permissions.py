"""
Permission Gate

Role-based access control for admissions operations.

- admin: every requirement is satisfied; the stored permission map is never read
- staff: a capability is granted only if its stored flag is true (missing = false)
- candidate: no capabilities; may act only on their own account (SELF)

Checks use only the actor resolved at identity lookup, so a denial happens
before any mutable state is read.
"""

import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from uuid import UUID

from app.modules.admissions.exceptions import ForbiddenError
from app.modules.admissions.models import Capability, Role

logger = logging.getLogger(__name__)


class AccessRule(str, enum.Enum):
    """Requirements that are not capabilities."""

    SELF = "self"
    ADMIN = "admin"


Requirement = Capability | AccessRule


@dataclass(frozen=True)
class Actor:
    """
    The resolved caller of an operation.

    Attributes:
        account_id: The caller's own account
        role: Stored role of the account
        permissions: Granted capabilities (meaningful only for staff)
    """

    account_id: UUID
    role: Role
    permissions: frozenset[Capability] = field(default_factory=frozenset)

    @classmethod
    def from_account(
        cls, account_id: UUID, role: Role, stored_permissions: Mapping[str, bool] | None = None
    ) -> "Actor":
        """Build an actor, parsing a stored permission map for staff accounts."""
        if role != Role.STAFF:
            return cls(account_id=account_id, role=role)
        return cls(
            account_id=account_id,
            role=role,
            permissions=parse_permissions(stored_permissions or {}),
        )

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def __str__(self) -> str:
        return f"{self.role.value}:{self.account_id}"


def parse_permissions(stored: Mapping[str, bool]) -> frozenset[Capability]:
    """Turn a stored capability map into the set of granted capabilities."""
    granted = set()
    for name, enabled in stored.items():
        try:
            capability = Capability(name)
        except ValueError:
            logger.warning(f"Ignoring unknown capability in stored permissions: {name!r}")
            continue
        if enabled is True:
            granted.add(capability)
    return frozenset(granted)


def is_allowed(actor: Actor, requirement: Requirement, owner_id: UUID | None = None) -> bool:
    """
    Decide whether an actor satisfies a requirement.

    Args:
        actor: The caller
        requirement: Capability, AccessRule.SELF or AccessRule.ADMIN
        owner_id: Account that owns the target data (for SELF)
    """
    if actor.is_admin:
        return True

    if requirement is AccessRule.ADMIN:
        return False

    if requirement is AccessRule.SELF:
        return actor.role == Role.CANDIDATE and owner_id is not None and owner_id == actor.account_id

    if actor.role == Role.STAFF:
        return requirement in actor.permissions

    return False


def authorize(
    actor: Actor,
    requirement: Requirement,
    *,
    action: str,
    owner_id: UUID | None = None,
) -> None:
    """
    Require an actor to satisfy a requirement.

    Raises:
        ForbiddenError: Naming the action and the missing requirement
    """
    if is_allowed(actor, requirement, owner_id):
        return

    logger.warning(f"Access denied: {actor} cannot {action} (requires '{requirement.value}')")
    raise ForbiddenError(action, requirement.value)


def authorize_any(
    actor: Actor,
    requirements: tuple[Requirement, ...],
    *,
    action: str,
    owner_id: UUID | None = None,
) -> None:
    """Require at least one of several requirements (e.g. SELF or students)."""
    if any(is_allowed(actor, requirement, owner_id) for requirement in requirements):
        return

    names = " or ".join(requirement.value for requirement in requirements)
    logger.warning(f"Access denied: {actor} cannot {action} (requires '{names}')")
    raise ForbiddenError(action, names)
