"""Administration endpoints for cities, users and role assignments."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from civiportal.core.auth import (
    ADMIN_ROLES,
    RequestUserContext,
    ensure_city_exists,
    require_roles,
)
from civiportal.db.dependencies import get_db_session
from civiportal.models.entities import City, RoleAssignment, User, UserRole
from civiportal.repositories.portal_repository import PortalRepository
from civiportal.services.portal_context import default_portal_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


class CityCreate(BaseModel):
    slug: str = Field(min_length=1, max_length=64, pattern=SLUG_PATTERN)
    name: str = Field(min_length=1, max_length=255)
    active: bool = True


class UserInvite(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    role: UserRole
    city_slug: str | None = Field(default=None, max_length=64)
    display_name: str | None = Field(default=None, max_length=255)


class UserDelete(BaseModel):
    user_id: UUID


class UserSetRole(BaseModel):
    user_id: UUID
    # None removes every role from the user.
    role: UserRole | None
    city_slug: str | None = Field(default=None, max_length=64)


def _serialize_city(city: City) -> dict[str, object]:
    return {
        "id": str(city.id),
        "slug": city.slug,
        "name": city.name,
        "active": city.active,
        "created_at": city.created_at.isoformat(),
        "updated_at": city.updated_at.isoformat(),
    }


def _serialize_user(user: User, assignments: list[RoleAssignment], cities_by_id: dict[UUID, City]) -> dict[str, object]:
    return {
        "id": str(user.id),
        "email": user.email,
        "display_name": user.display_name,
        "status": user.status,
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
        "created_at": user.created_at.isoformat(),
        "roles": [
            {
                "role": assignment.role.value,
                "city_id": str(assignment.city_id) if assignment.city_id else None,
                "city_slug": (
                    cities_by_id[assignment.city_id].slug
                    if assignment.city_id is not None and assignment.city_id in cities_by_id
                    else None
                ),
            }
            for assignment in assignments
        ],
    }


def _validate_email(value: str) -> str:
    normalized = value.strip().lower()
    if "@" not in normalized or normalized.startswith("@") or normalized.endswith("@"):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="email must be a valid email address.",
        )
    return normalized


def _resolve_role_scope(db: Session, role: UserRole, city_slug: str | None) -> UUID | None:
    if role is UserRole.SUPER_ADMIN:
        if city_slug:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="super_admin role must not include city_slug.",
            )
        return None
    if not city_slug:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Scoped roles require city_slug.",
        )
    return ensure_city_exists(db, city_slug).id


def _new_assignment(user_id: UUID, role: UserRole, city_id: UUID | None) -> RoleAssignment:
    now = datetime.utcnow()
    return RoleAssignment(
        user_id=user_id,
        city_id=city_id,
        role=role,
        active=True,
        created_at=now,
        updated_at=now,
    )


# ---------- Cities ----------
@router.get("/cities")
def list_cities(
    context: RequestUserContext = Depends(require_roles(UserRole.SUPER_ADMIN, UserRole.ADMIN, UserRole.VIEWER)),
    db: Session = Depends(get_db_session),
) -> dict[str, list[object]]:
    """List cities visible to the caller (all for super admin, assigned ones otherwise)."""

    cities = PortalRepository(db).list_cities()
    if not context.is_super_admin:
        cities = [city for city in cities if city.id in context.city_ids]
    return {"items": [_serialize_city(city) for city in cities]}


@router.post("/cities", status_code=status.HTTP_201_CREATED)
def create_city(
    payload: CityCreate,
    context: RequestUserContext = Depends(require_roles(UserRole.SUPER_ADMIN)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    """Create a city tenant with unpublished default portal settings (super admin only)."""

    repo = PortalRepository(db)
    now = datetime.utcnow()
    city = City(
        slug=payload.slug.strip().lower(),
        name=payload.name.strip(),
        active=payload.active,
        created_at=now,
        updated_at=now,
    )
    try:
        repo.add_city(city)
        repo.add_portal_settings(default_portal_settings(city))
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="City slug already exists.",
        ) from exc

    db.refresh(city)
    logger.info("city created slug=%s by=%s", city.slug, context.email)
    return _serialize_city(city)


# ---------- Users ----------
@router.get("/users")
def list_users(
    context: RequestUserContext = Depends(require_roles(*ADMIN_ROLES)),
    db: Session = Depends(get_db_session),
) -> dict[str, list[object]]:
    """List users with roles (global for super admin, own cities for city admins)."""

    repo = PortalRepository(db)
    cities_by_id = {city.id: city for city in repo.list_cities()}
    assignments_by_user: dict[UUID, list[RoleAssignment]] = {}
    for assignment in repo.list_role_assignments():
        assignments_by_user.setdefault(assignment.user_id, []).append(assignment)

    items = []
    for user in repo.list_users():
        assignments = assignments_by_user.get(user.id, [])
        if not context.is_super_admin:
            assignments = [item for item in assignments if item.city_id in context.city_ids]
            if not assignments:
                continue
        items.append(_serialize_user(user, assignments, cities_by_id))
    return {"items": items}


@router.post("/users/invite", status_code=status.HTTP_201_CREATED)
def invite_user(
    payload: UserInvite,
    context: RequestUserContext = Depends(require_roles(UserRole.SUPER_ADMIN)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    """Invite a user by email as admin or viewer of one city (super admin only).

    The invited account is claimed by email on its first sign-in.
    """

    if payload.role is UserRole.SUPER_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invited users must be admin or viewer; promote with set-role.",
        )
    email = _validate_email(payload.email)
    city_id = _resolve_role_scope(db, payload.role, payload.city_slug)

    repo = PortalRepository(db)
    now = datetime.utcnow()
    user = repo.get_user_by_email(email)
    if user is None:
        user = repo.add_user(
            User(
                auth_subject=None,
                email=email,
                display_name=(payload.display_name or "").strip() or email,
                status="invited",
                last_login_at=None,
                created_at=now,
                updated_at=now,
            )
        )

    try:
        repo.add_role_assignment(_new_assignment(user.id, payload.role, city_id))
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User already holds this role for the city.",
        ) from exc

    db.refresh(user)
    logger.info("user invited email=%s role=%s city=%s by=%s", email, payload.role.value, payload.city_slug, context.email)
    cities_by_id = {city.id: city for city in repo.list_cities()}
    return _serialize_user(user, repo.list_role_assignments(user.id), cities_by_id)


@router.post("/users/delete")
def delete_user(
    payload: UserDelete,
    context: RequestUserContext = Depends(require_roles(UserRole.SUPER_ADMIN)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    """Delete a user and their role assignments (super admin only)."""

    if payload.user_id == context.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot delete your own account.",
        )

    repo = PortalRepository(db)
    user = repo.get_user(payload.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")

    is_super_admin = any(item.role is UserRole.SUPER_ADMIN for item in repo.list_role_assignments(user.id))
    if is_super_admin and repo.count_super_admins() <= 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot remove the last super admin.",
        )

    email = user.email
    repo.delete_user(user)
    db.commit()
    logger.info("user deleted email=%s by=%s", email, context.email)
    return {"success": True, "user_id": str(payload.user_id)}


@router.post("/users/set-role")
def set_user_role(
    payload: UserSetRole,
    context: RequestUserContext = Depends(require_roles(UserRole.SUPER_ADMIN)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    """Replace a user's roles with a single role, or remove all roles (super admin only)."""

    repo = PortalRepository(db)
    user = repo.get_user(payload.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")

    if payload.user_id == context.user_id and payload.role is not UserRole.SUPER_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot change your own role.",
        )

    current = repo.list_role_assignments(user.id)
    is_super_admin = any(item.role is UserRole.SUPER_ADMIN for item in current)
    if is_super_admin and payload.role is not UserRole.SUPER_ADMIN and repo.count_super_admins() <= 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot remove the last super admin.",
        )

    city_id = _resolve_role_scope(db, payload.role, payload.city_slug) if payload.role is not None else None
    repo.delete_role_assignments(user.id)
    if payload.role is not None:
        repo.add_role_assignment(_new_assignment(user.id, payload.role, city_id))
    user.updated_at = datetime.utcnow()
    db.commit()

    logger.info(
        "user role set email=%s role=%s city=%s by=%s",
        user.email,
        payload.role.value if payload.role else None,
        payload.city_slug,
        context.email,
    )
    cities_by_id = {city.id: city for city in repo.list_cities()}
    return _serialize_user(user, repo.list_role_assignments(user.id), cities_by_id)
