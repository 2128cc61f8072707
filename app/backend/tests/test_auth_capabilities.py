from __future__ import annotations

import uuid

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.auth import (
    EMPLOYEE_ROLE_TO_APP_ROLE,
    AppRole,
    Capability,
    RequestUserContext,
    has_capability,
)
from app.core.config import get_settings
from app.models.entities import EmployeeRole, EmployeeStatus
from conftest import Staff, create_employee, headers


def _context(role: AppRole) -> RequestUserContext:
    return RequestUserContext(
        employee_id=uuid.uuid4(),
        employee_code="E-1",
        ldap_username="user",
        full_name="User",
        email="user@test.local",
        role=role,
    )


def test_every_employee_role_maps_to_a_distinct_app_role() -> None:
    assert set(EMPLOYEE_ROLE_TO_APP_ROLE) == set(EmployeeRole)
    assert set(EMPLOYEE_ROLE_TO_APP_ROLE.values()) == set(AppRole)


def test_only_hr_manages_allocations_and_reads_audit() -> None:
    hr = _context(AppRole.HR_EXECUTIVE)
    pm = _context(AppRole.PROJECT_MANAGER)
    employee = _context(AppRole.EMPLOYEE)

    assert has_capability(hr, Capability.MANAGE_ALLOCATIONS) is True
    assert has_capability(hr, Capability.VIEW_AUDIT_LOG) is True
    assert has_capability(hr, Capability.VIEW_ALL_ALLOCATIONS) is True
    assert has_capability(pm, Capability.MANAGE_ALLOCATIONS) is False
    assert has_capability(pm, Capability.VIEW_PROJECT_ALLOCATIONS) is True
    assert has_capability(pm, Capability.VIEW_ALL_ALLOCATIONS) is False
    assert has_capability(employee, Capability.VIEW_OWN_ALLOCATIONS) is True
    assert has_capability(employee, Capability.VIEW_PROJECT_ALLOCATIONS) is False
    assert has_capability(employee, Capability.VIEW_AUDIT_LOG) is False


def test_me_resolves_employee_from_header(client: TestClient, staff: Staff) -> None:
    response = client.get("/api/auth/me", headers=headers("PAT.Manager"))

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == str(staff.pm.id)
    assert body["employee_code"] == "E-PM"
    assert body["role"] == "project_manager"
    assert body["capabilities"] == ["view_own_allocations", "view_project_allocations"]


def test_me_falls_back_to_dev_principal(client: TestClient, staff: Staff) -> None:
    response = client.get("/api/auth/me")

    assert response.status_code == 200
    assert response.json()["ldap_username"] == get_settings().auth_dev_ldap_username
    assert response.json()["role"] == "hr_executive"


def test_unknown_or_exited_employee_is_unauthorized(client: TestClient, db_session: Session, staff: Staff) -> None:
    create_employee(db_session, code="E-OLD", username="gone.user", status=EmployeeStatus.EXITED)

    unknown = client.get("/api/auth/me", headers=headers("nobody.here"))
    exited = client.get("/api/auth/me", headers=headers("gone.user"))

    assert unknown.status_code == 401
    assert unknown.json() == {"error": "Unauthorized"}
    assert exited.status_code == 401


def test_missing_header_without_dev_principal_is_unauthorized(
    client: TestClient,
    staff: Staff,
    monkeypatch,
) -> None:
    monkeypatch.setattr(get_settings(), "auth_allow_dev_principal", False)

    response = client.get("/api/auth/me")

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
