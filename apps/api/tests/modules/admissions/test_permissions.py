"""
Unit tests for the permission gate.
"""

from uuid import uuid4

import pytest

from app.modules.admissions.exceptions import ForbiddenError
from app.modules.admissions.models import Capability, Role
from app.modules.admissions.permissions import (
    AccessRule,
    Actor,
    authorize,
    authorize_any,
    is_allowed,
    parse_permissions,
)


class TestParsePermissions:
    """Tests for reading stored capability maps."""

    def test_only_true_flags_are_granted(self):
        granted = parse_permissions({"requests": True, "students": False, "settings": True})
        assert granted == {Capability.REQUESTS, Capability.SETTINGS}

    def test_unknown_names_are_ignored(self):
        assert parse_permissions({"billing": True}) == frozenset()

    def test_truthy_non_bool_values_do_not_grant(self):
        assert parse_permissions({"requests": "yes", "staff": 1}) == frozenset()

    def test_hyphenated_capabilities(self):
        granted = parse_permissions({"users-roles": True, "audit-logs": True})
        assert granted == {Capability.USERS_ROLES, Capability.AUDIT_LOGS}


class TestActor:
    """Tests for building actors from stored accounts."""

    def test_staff_permissions_are_parsed(self):
        actor = Actor.from_account(uuid4(), Role.STAFF, {"requests": True})
        assert actor.permissions == {Capability.REQUESTS}

    def test_admin_permission_map_is_not_read(self):
        actor = Actor.from_account(uuid4(), Role.ADMIN, {"requests": False})
        assert actor.permissions == frozenset()
        assert actor.is_admin

    def test_candidate_has_no_capabilities(self):
        actor = Actor.from_account(uuid4(), Role.CANDIDATE, {"requests": True})
        assert actor.permissions == frozenset()


class TestIsAllowed:
    """Tests for the permission decision."""

    @pytest.mark.parametrize(
        "requirement", [*Capability, AccessRule.SELF, AccessRule.ADMIN]
    )
    def test_admin_satisfies_every_requirement(self, admin, requirement):
        assert is_allowed(admin, requirement, owner_id=uuid4())

    def test_staff_needs_the_stored_capability(self, reviewer, staff_without_requests):
        assert is_allowed(reviewer, Capability.REQUESTS)
        assert not is_allowed(staff_without_requests, Capability.REQUESTS)

    def test_staff_missing_capability_defaults_to_denied(self):
        actor = Actor.from_account(uuid4(), Role.STAFF, {})
        for capability in Capability:
            assert not is_allowed(actor, capability)

    def test_staff_is_never_self(self, reviewer):
        assert not is_allowed(reviewer, AccessRule.SELF, owner_id=reviewer.account_id)

    def test_staff_is_never_admin(self):
        actor = Actor(account_id=uuid4(), role=Role.STAFF, permissions=frozenset(Capability))
        assert not is_allowed(actor, AccessRule.ADMIN)

    def test_candidate_is_self_only_for_own_account(self, candidate):
        assert is_allowed(candidate, AccessRule.SELF, owner_id=candidate.account_id)
        assert not is_allowed(candidate, AccessRule.SELF, owner_id=uuid4())
        assert not is_allowed(candidate, AccessRule.SELF)

    @pytest.mark.parametrize("capability", list(Capability))
    def test_candidate_has_no_admin_capabilities(self, candidate, capability):
        assert not is_allowed(candidate, capability)


class TestAuthorize:
    """Tests for authorize / authorize_any."""

    def test_denial_names_the_requirement(self, staff_without_requests):
        with pytest.raises(ForbiddenError) as exc_info:
            authorize(staff_without_requests, Capability.REQUESTS, action="update status")
        assert exc_info.value.requirement == "requests"
        assert exc_info.value.status_code == 403
        assert "requests" in exc_info.value.message

    def test_authorize_passes_silently(self, reviewer):
        authorize(reviewer, Capability.REQUESTS, action="update status")

    def test_authorize_any_accepts_either(self, candidate, reviewer, staff_without_requests):
        requirements = (AccessRule.SELF, Capability.STUDENTS)
        owner = candidate.account_id
        authorize_any(candidate, requirements, action="view", owner_id=owner)
        authorize_any(reviewer, requirements, action="view", owner_id=owner)
        authorize_any(staff_without_requests, requirements, action="view", owner_id=owner)

    def test_authorize_any_denies_when_none_match(self, other_reviewer):
        with pytest.raises(ForbiddenError) as exc_info:
            authorize_any(
                other_reviewer,
                (AccessRule.SELF, Capability.STUDENTS),
                action="view",
                owner_id=uuid4(),
            )
        assert exc_info.value.requirement == "self or students"
