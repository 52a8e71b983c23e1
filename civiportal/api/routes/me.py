"""Current user endpoint."""

from fastapi import APIRouter, Depends

from civiportal.core.auth import RequestUserContext, get_current_user_context

router = APIRouter(prefix="/me", tags=["me"])


def _serialize_assignment(role_name: str, city_id: object) -> dict[str, object]:
    return {
        "role": role_name,
        "city_id": str(city_id) if city_id is not None else None,
    }


@router.get("")
def get_me(context: RequestUserContext = Depends(get_current_user_context)) -> dict[str, object]:
    """Return current authenticated user profile and roles."""

    return {
        "id": str(context.user_id),
        "auth_subject": context.auth_subject,
        "email": context.email,
        "display_name": context.display_name,
        "status": context.status,
        "is_super_admin": context.is_super_admin,
        "roles": [
            _serialize_assignment(assignment.role.value, assignment.city_id)
            for assignment in context.roles
        ],
    }
