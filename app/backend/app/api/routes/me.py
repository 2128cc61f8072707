"""Current user endpoint."""

from fastapi import APIRouter, Depends

from app.core.auth import RequestUserContext, get_current_user_context

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me")
def get_me(context: RequestUserContext = Depends(get_current_user_context)) -> dict[str, object]:
    """Return the resolved employee, role and capabilities."""

    return {
        "id": str(context.employee_id),
        "employee_code": context.employee_code,
        "ldap_username": context.ldap_username,
        "full_name": context.full_name,
        "email": context.email,
        "role": context.role.value,
        "capabilities": sorted(capability.value for capability in context.capabilities),
    }
