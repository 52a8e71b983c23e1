from __future__ import annotations

import uuid

from civiportal.core.auth import (
    ADMIN_ROLES,
    VIEW_ROLES,
    EffectiveRoleAssignment,
    RequestUserContext,
    has_city_access,
    has_role,
)
from civiportal.models.entities import UserRole


def _context(*assignments: tuple[UserRole, uuid.UUID | None]) -> RequestUserContext:
    return RequestUserContext(
        user_id=uuid.uuid4(),
        auth_subject="sub-1",
        email="user@test.local",
        display_name="User",
        status="active",
        roles=tuple(
            EffectiveRoleAssignment(role=role, city_id=city_id, assignment_id=uuid.uuid4())
            for role, city_id in assignments
        ),
    )


def test_has_role_matches_expected_roles() -> None:
    context = _context((UserRole.VIEWER, uuid.uuid4()))

    assert has_role(context, VIEW_ROLES) is True
    assert has_role(context, ADMIN_ROLES) is False


def test_city_ids_are_unique_and_ordered() -> None:
    first = uuid.uuid4()
    second = uuid.uuid4()
    context = _context((UserRole.ADMIN, first), (UserRole.VIEWER, second), (UserRole.VIEWER, first))

    assert context.city_ids == (first, second)
    assert context.role_names == (UserRole.ADMIN, UserRole.VIEWER)
    assert context.is_super_admin is False


def test_has_city_access_for_scoped_role() -> None:
    city_id = uuid.uuid4()
    context = _context((UserRole.VIEWER, city_id))

    assert has_city_access(context, city_id=city_id) is True
    assert has_city_access(context, city_id=city_id, allowed_roles=VIEW_ROLES) is True
    assert has_city_access(context, city_id=city_id, allowed_roles=ADMIN_ROLES) is False
    assert has_city_access(context, city_id=uuid.uuid4()) is False


def test_has_city_access_for_super_admin_depends_on_allowed_roles() -> None:
    context = _context((UserRole.SUPER_ADMIN, None))

    assert context.is_super_admin is True
    assert has_city_access(context, city_id=uuid.uuid4()) is True
    assert has_city_access(context, city_id=uuid.uuid4(), allowed_roles=ADMIN_ROLES) is True
    assert has_city_access(context, city_id=uuid.uuid4(), allowed_roles={UserRole.VIEWER}) is False
