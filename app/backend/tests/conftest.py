from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.dependencies import get_db_session
import app.models.entities  # noqa: F401
from app.main import create_app
from app.models.entities import (
    Allocation,
    AuditLog,
    Employee,
    EmployeeRole,
    EmployeeStatus,
    Project,
    ProjectStatus,
)

TEST_TABLES = [
    Employee.__table__,
    Project.__table__,
    Allocation.__table__,
    AuditLog.__table__,
]


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine, tables=TEST_TABLES)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine, tables=TEST_TABLES)


@pytest.fixture()
def file_sessionmaker(tmp_path: Path) -> Generator[sessionmaker[Session], None, None]:
    """Sessions on a file-backed database, for tests needing two connections."""

    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(bind=engine, tables=TEST_TABLES)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    engine.dispose()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    app = create_app()

    def override_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db_session] = override_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@dataclass(frozen=True)
class Staff:
    hr: Employee
    pm: Employee
    employee: Employee
    other_employee: Employee
    project_a: Project
    project_b: Project


def create_employee(
    db: Session,
    *,
    code: str,
    username: str,
    role: EmployeeRole = EmployeeRole.EMP,
    status: EmployeeStatus = EmployeeStatus.ACTIVE,
) -> Employee:
    now = datetime.utcnow()
    row = Employee(
        employee_code=code,
        ldap_username=username,
        full_name=username.replace(".", " ").title(),
        email=f"{username}@test.local",
        employee_role=role,
        status=status,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def create_project(db: Session, *, code: str, manager: Employee | None = None) -> Project:
    now = datetime.utcnow()
    row = Project(
        project_code=code,
        project_name=f"Project {code}",
        project_manager_id=manager.id if manager is not None else None,
        status=ProjectStatus.ACTIVE,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def create_allocation(
    db: Session,
    *,
    employee: Employee,
    project: Project,
    percentage: str,
    start: str,
    end: str | None,
    role: str = "Developer",
    billability: bool = True,
) -> Allocation:
    now = datetime.utcnow()
    row = Allocation(
        emp_id=employee.id,
        project_id=project.id,
        role=role,
        allocation_percentage=Decimal(percentage),
        start_date=date.fromisoformat(start),
        end_date=date.fromisoformat(end) if end is not None else None,
        billability=billability,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def seed_staff(db: Session) -> Staff:
    hr = create_employee(db, code="E-HR", username="dev.hr", role=EmployeeRole.HR)
    pm = create_employee(db, code="E-PM", username="pat.manager", role=EmployeeRole.PM)
    employee = create_employee(db, code="E-001", username="alice.dev")
    other_employee = create_employee(db, code="E-002", username="bob.dev")
    project_a = create_project(db, code="PRJ-A", manager=pm)
    project_b = create_project(db, code="PRJ-B")
    return Staff(
        hr=hr,
        pm=pm,
        employee=employee,
        other_employee=other_employee,
        project_a=project_a,
        project_b=project_b,
    )


@pytest.fixture()
def staff(db_session: Session) -> Staff:
    return seed_staff(db_session)


def headers(username: str) -> dict[str, str]:
    return {"X-LDAP-USERNAME": username}
