"""Authentication context extraction and RBAC guard utilities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from civiportal.core.config import get_settings
from civiportal.db.dependencies import get_db_session
from civiportal.models.entities import City, RoleAssignment, User, UserRole

ADMIN_ROLES = {UserRole.SUPER_ADMIN, UserRole.ADMIN}
VIEW_ROLES = {UserRole.SUPER_ADMIN, UserRole.ADMIN, UserRole.VIEWER}


@dataclass(frozen=True)
class EffectiveRoleAssignment:
    """Effective role assignment resolved for request context."""

    role: UserRole
    city_id: UUID | None
    assignment_id: UUID


@dataclass(frozen=True)
class RequestUserContext:
    """Authenticated request actor resolved from headers and DB state."""

    user_id: UUID
    auth_subject: str | None
    email: str
    display_name: str
    status: str
    roles: tuple[EffectiveRoleAssignment, ...]

    @property
    def role_names(self) -> tuple[UserRole, ...]:
        """Unique role names assigned to this user."""

        return tuple(dict.fromkeys(assignment.role for assignment in self.roles))

    @property
    def city_ids(self) -> tuple[UUID, ...]:
        """City IDs where the user has an explicit assignment."""

        scoped: list[UUID] = []
        for assignment in self.roles:
            if assignment.city_id is not None and assignment.city_id not in scoped:
                scoped.append(assignment.city_id)
        return tuple(scoped)

    @property
    def is_super_admin(self) -> bool:
        return UserRole.SUPER_ADMIN in self.role_names


@dataclass(frozen=True)
class CityAccess:
    """A city resolved from the path together with the actor allowed to act on it."""

    city: City
    context: RequestUserContext


def _require_identity_headers(
    x_auth_subject: str | None,
    x_auth_email: str | None,
    x_auth_display_name: str | None,
) -> tuple[str, str, str]:
    if not x_auth_subject or not x_auth_email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=(
                "Missing identity headers. Expected X-Auth-Subject and X-Auth-Email "
                "or enable development principal fallback."
            ),
        )

    display_name = x_auth_display_name or x_auth_email
    return x_auth_subject.strip(), x_auth_email.strip().lower(), display_name.strip()


def _resolve_identity(
    x_auth_subject: str | None,
    x_auth_email: str | None,
    x_auth_display_name: str | None,
) -> tuple[str, str, str]:
    settings = get_settings()
    if x_auth_subject and x_auth_email:
        return _require_identity_headers(x_auth_subject, x_auth_email, x_auth_display_name)

    if settings.auth_allow_dev_principal:
        return (
            settings.auth_dev_subject.strip(),
            settings.auth_dev_email.strip().lower(),
            settings.auth_dev_display_name.strip(),
        )

    return _require_identity_headers(x_auth_subject, x_auth_email, x_auth_display_name)


def _upsert_user(db: Session, *, auth_subject: str, email: str, display_name: str) -> User:
    user = db.scalar(select(User).where(User.auth_subject == auth_subject))
    now = datetime.utcnow()

    if user is None:
        # An invited user signs in for the first time: claim the row by email.
        user = db.scalar(select(User).where(and_(User.email == email, User.auth_subject.is_(None))))
        if user is not None:
            user.auth_subject = auth_subject
            user.display_name = display_name or user.display_name
            user.status = "active"
            user.last_login_at = now
            user.updated_at = now
            db.flush()
            return user

        user = User(
            auth_subject=auth_subject,
            email=email,
            display_name=display_name,
            status="active",
            last_login_at=now,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        db.flush()
        return user

    changed = False
    if user.email != email:
        user.email = email
        changed = True
    if user.display_name != display_name:
        user.display_name = display_name
        changed = True

    user.last_login_at = now
    if changed:
        user.updated_at = now
    db.flush()
    return user


def ensure_user_principal(
    db: Session,
    *,
    auth_subject: str,
    email: str,
    display_name: str,
) -> User:
    """Ensure user exists and return persisted row.

    Utility exported for tests and seed helpers.
    """

    normalized_subject = auth_subject.strip()
    normalized_email = email.strip().lower()
    normalized_display_name = display_name.strip() or normalized_email

    user = _upsert_user(
        db,
        auth_subject=normalized_subject,
        email=normalized_email,
        display_name=normalized_display_name,
    )
    db.commit()
    db.refresh(user)
    return user


def _load_effective_roles(db: Session, *, user_id: UUID) -> tuple[EffectiveRoleAssignment, ...]:
    assignments = db.scalars(
        select(RoleAssignment).where(
            and_(RoleAssignment.user_id == user_id, RoleAssignment.active.is_(True))
        )
    ).all()

    return tuple(
        EffectiveRoleAssignment(
            role=assignment.role,
            city_id=assignment.city_id,
            assignment_id=assignment.id,
        )
        for assignment in assignments
    )


def get_current_user_context(
    x_auth_subject: str | None = Header(default=None, alias="X-Auth-Subject"),
    x_auth_email: str | None = Header(default=None, alias="X-Auth-Email"),
    x_auth_display_name: str | None = Header(default=None, alias="X-Auth-Display-Name"),
    db: Session = Depends(get_db_session),
) -> RequestUserContext:
    """Resolve current request user and effective role assignments.

    Identity arrives as trusted headers set by the authenticating proxy in
    front of the API (or by test clients).
    """

    auth_subject, email, display_name = _resolve_identity(x_auth_subject, x_auth_email, x_auth_display_name)
    user = _upsert_user(db, auth_subject=auth_subject, email=email, display_name=display_name)
    roles = _load_effective_roles(db, user_id=user.id)
    db.commit()

    return RequestUserContext(
        user_id=user.id,
        auth_subject=user.auth_subject,
        email=user.email,
        display_name=user.display_name,
        status=user.status,
        roles=roles,
    )


def has_role(context: RequestUserContext, allowed_roles: set[UserRole]) -> bool:
    """Check whether user has any of the allowed roles."""

    return any(role in allowed_roles for role in context.role_names)


def has_city_access(
    context: RequestUserContext,
    *,
    city_id: UUID,
    allowed_roles: set[UserRole] | None = None,
) -> bool:
    """Check city-scoped access optionally constrained by allowed roles."""

    if context.is_super_admin:
        if allowed_roles is None:
            return True
        return UserRole.SUPER_ADMIN in allowed_roles

    for assignment in context.roles:
        if assignment.city_id != city_id:
            continue
        if allowed_roles is None or assignment.role in allowed_roles:
            return True
    return False


def require_roles(*roles: UserRole):
    """Dependency factory requiring at least one provided role."""

    allowed = set(roles)

    def dependency(context: RequestUserContext = Depends(get_current_user_context)) -> RequestUserContext:
        if not has_role(context, allowed):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role permissions for this operation.",
            )
        return context

    return dependency


def ensure_city_exists(db: Session, city_slug: str) -> City:
    """Resolve city by slug or raise 404."""

    city = db.scalar(select(City).where(City.slug == city_slug.strip().lower()))
    if city is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="City not found.",
        )
    return city


def require_city_roles(*roles: UserRole):
    """Dependency factory requiring a role within the city named by ``city_slug``.

    The city slug is read from the path. Callers holding no role at all are
    rejected before the city lookup; unknown cities are 404.
    """

    allowed = set(roles)

    def dependency(
        city_slug: str,
        context: RequestUserContext = Depends(get_current_user_context),
        db: Session = Depends(get_db_session),
    ) -> CityAccess:
        if not context.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role permissions for this operation.",
            )
        city = ensure_city_exists(db, city_slug)
        if not has_city_access(context, city_id=city.id, allowed_roles=allowed):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient city scope permissions for this operation.",
            )
        return CityAccess(city=city, context=context)

    return dependency
