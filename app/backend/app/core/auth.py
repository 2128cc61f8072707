"""Authentication context extraction and capability guard utilities."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.errors import AppError, ServiceError
from app.db.dependencies import get_db_session
from app.models.entities import Employee, EmployeeRole, EmployeeStatus


class AppRole(str, Enum):
    """Application role names as exposed to API callers."""

    EMPLOYEE = "employee"
    PROJECT_MANAGER = "project_manager"
    HR_EXECUTIVE = "hr_executive"


class Capability(str, Enum):
    VIEW_OWN_ALLOCATIONS = "view_own_allocations"
    VIEW_PROJECT_ALLOCATIONS = "view_project_allocations"
    VIEW_ALL_ALLOCATIONS = "view_all_allocations"
    MANAGE_ALLOCATIONS = "manage_allocations"
    VIEW_AUDIT_LOG = "view_audit_log"


EMPLOYEE_ROLE_TO_APP_ROLE: dict[EmployeeRole, AppRole] = {
    EmployeeRole.EMP: AppRole.EMPLOYEE,
    EmployeeRole.PM: AppRole.PROJECT_MANAGER,
    EmployeeRole.HR: AppRole.HR_EXECUTIVE,
}


ROLE_CAPABILITIES: dict[AppRole, frozenset[Capability]] = {
    AppRole.EMPLOYEE: frozenset({Capability.VIEW_OWN_ALLOCATIONS}),
    AppRole.PROJECT_MANAGER: frozenset(
        {Capability.VIEW_OWN_ALLOCATIONS, Capability.VIEW_PROJECT_ALLOCATIONS}
    ),
    AppRole.HR_EXECUTIVE: frozenset(
        {
            Capability.VIEW_OWN_ALLOCATIONS,
            Capability.VIEW_PROJECT_ALLOCATIONS,
            Capability.VIEW_ALL_ALLOCATIONS,
            Capability.MANAGE_ALLOCATIONS,
            Capability.VIEW_AUDIT_LOG,
        }
    ),
}


@dataclass(frozen=True)
class RequestUserContext:
    """Authenticated request actor resolved from headers and DB state."""

    employee_id: UUID
    employee_code: str
    ldap_username: str
    full_name: str
    email: str
    role: AppRole

    @property
    def capabilities(self) -> frozenset[Capability]:
        return ROLE_CAPABILITIES[self.role]


def _resolve_username(x_ldap_username: str | None) -> str:
    if x_ldap_username and x_ldap_username.strip():
        return x_ldap_username.strip().lower()

    settings = get_settings()
    if settings.auth_allow_dev_principal:
        return settings.auth_dev_ldap_username.strip().lower()

    raise AppError(ServiceError.unauthenticated())


def build_user_context(employee: Employee) -> RequestUserContext:
    return RequestUserContext(
        employee_id=employee.id,
        employee_code=employee.employee_code,
        ldap_username=employee.ldap_username,
        full_name=employee.full_name,
        email=employee.email,
        role=EMPLOYEE_ROLE_TO_APP_ROLE[employee.employee_role],
    )


def get_current_user_context(
    x_ldap_username: str | None = Header(default=None, alias="X-LDAP-USERNAME"),
    db: Session = Depends(get_db_session),
) -> RequestUserContext:
    """Resolve current request actor.

    Header strategy:
    - Current phase: trusted header set by the authenticating proxy.
    - Exited or unknown employees are rejected as unauthenticated.
    """

    username = _resolve_username(x_ldap_username)
    employee = db.scalar(select(Employee).where(Employee.ldap_username == username))
    if employee is None or employee.status is not EmployeeStatus.ACTIVE:
        raise AppError(ServiceError.unauthenticated())
    return build_user_context(employee)


def has_capability(context: RequestUserContext, capability: Capability) -> bool:
    """Check whether the actor's role grants ``capability``."""

    return capability in context.capabilities


def require_capability(capability: Capability):
    """Dependency factory requiring the given capability."""

    def dependency(context: RequestUserContext = Depends(get_current_user_context)) -> RequestUserContext:
        if not has_capability(context, capability):
            raise AppError(ServiceError.access_denied())
        return context

    return dependency
