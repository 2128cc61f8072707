from __future__ import annotations

import logging
import uuid
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.core.auth import build_user_context
from app.db.dependencies import get_db_session
from app.main import create_app
from app.models.entities import Allocation, AuditLog, AuditOperation
from app.services.allocation_ledger import AllocationLedger
from app.services.audit_trail import SessionAuditSink
from app.services.transfer_service import TransferRequest, TransferService
from conftest import Staff, create_allocation, headers, seed_staff

TRANSFER_URL = "/api/allocations/transfer"


def _source(db: Session, staff: Staff, **overrides) -> Allocation:
    values = {
        "employee": staff.employee,
        "project": staff.project_a,
        "percentage": "50",
        "start": "2024-01-01",
        "end": "2024-12-31",
    }
    values.update(overrides)
    return create_allocation(db, **values)


def _payload(allocation_id: object, project_id: object, transfer_date: str) -> dict[str, str]:
    return {
        "allocation_id": str(allocation_id),
        "new_project_id": str(project_id),
        "transfer_date": transfer_date,
    }


def _allocation_count(db: Session) -> int:
    return db.scalar(select(func.count()).select_from(Allocation))


def _audit_count(db: Session) -> int:
    return db.scalar(select(func.count()).select_from(AuditLog))


def test_transfer_closes_source_and_opens_successor(client: TestClient, db_session: Session, staff: Staff) -> None:
    source = _source(db_session, staff)

    response = client.post(
        TRANSFER_URL,
        headers=headers("dev.hr"),
        json=_payload(source.id, staff.project_b.id, "2024-06-15"),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["old_allocation"] == {"id": str(source.id), "end_date": "2024-06-15"}
    new_allocation = body["new_allocation"]
    assert set(new_allocation) == {
        "id",
        "emp_id",
        "project_id",
        "role",
        "allocation_percentage",
        "start_date",
        "end_date",
        "billability",
        "assigned_by",
    }
    assert new_allocation["emp_id"] == str(staff.employee.id)
    assert new_allocation["project_id"] == str(staff.project_b.id)
    assert new_allocation["start_date"] == "2024-06-15"
    assert new_allocation["end_date"] == "2024-12-31"
    assert new_allocation["allocation_percentage"] == "50.00"
    assert new_allocation["assigned_by"] == str(staff.hr.id)

    db_session.expire_all()
    closed = db_session.get(Allocation, source.id)
    assert closed.end_date == date(2024, 6, 15)
    assert str(closed.transferred_to_id) == new_allocation["id"]
    assert _allocation_count(db_session) == 2


def test_transfer_preserves_role_percentage_and_billability(
    client: TestClient,
    db_session: Session,
    staff: Staff,
) -> None:
    source = _source(db_session, staff, percentage="37.5", role="Tech Lead", billability=False, end=None)

    response = client.post(
        TRANSFER_URL,
        headers=headers("dev.hr"),
        json=_payload(source.id, staff.project_b.id, "2024-03-01"),
    )

    assert response.status_code == 200
    new_allocation = response.json()["new_allocation"]
    assert new_allocation["role"] == "Tech Lead"
    assert new_allocation["allocation_percentage"] == "37.50"
    assert new_allocation["billability"] is False
    assert new_allocation["end_date"] is None


def test_transfer_writes_update_and_insert_audit_entries(
    client: TestClient,
    db_session: Session,
    staff: Staff,
) -> None:
    source = _source(db_session, staff)

    response = client.post(
        TRANSFER_URL,
        headers=headers("dev.hr"),
        json=_payload(source.id, staff.project_b.id, "2024-06-15"),
    )
    new_id = uuid.UUID(response.json()["new_allocation"]["id"])

    entries = db_session.scalars(select(AuditLog)).all()
    by_operation = {entry.operation: entry for entry in entries}
    assert len(entries) == 2
    assert by_operation[AuditOperation.UPDATE].entity_id == source.id
    assert by_operation[AuditOperation.UPDATE].entity_type == "PROJECT_ALLOCATION"
    assert by_operation[AuditOperation.UPDATE].changed_fields == {
        "end_date": {"old": "2024-12-31", "new": "2024-06-15"}
    }
    assert by_operation[AuditOperation.INSERT].entity_id == new_id
    assert by_operation[AuditOperation.INSERT].changed_fields["project_id"] == str(staff.project_b.id)
    assert {entry.changed_by for entry in entries} == {staff.hr.id}


def test_transfer_outside_window_is_rejected_without_changes(
    client: TestClient,
    db_session: Session,
    staff: Staff,
) -> None:
    source = _source(db_session, staff)

    response = client.post(
        TRANSFER_URL,
        headers=headers("dev.hr"),
        json=_payload(source.id, staff.project_b.id, "2025-01-01"),
    )

    assert response.status_code == 400
    assert response.json() == {"error": "transfer_date must be between start_date and end_date"}
    db_session.expire_all()
    assert db_session.get(Allocation, source.id).end_date == date(2024, 12, 31)
    assert _allocation_count(db_session) == 1
    assert _audit_count(db_session) == 0


def test_transfer_by_non_hr_is_denied(client: TestClient, db_session: Session, staff: Staff) -> None:
    source = _source(db_session, staff)

    for username in ("alice.dev", "pat.manager"):
        response = client.post(
            TRANSFER_URL,
            headers=headers(username),
            json=_payload(source.id, staff.project_b.id, "2024-06-15"),
        )
        assert response.status_code == 403
        assert response.json() == {"error": "Access denied"}

    db_session.expire_all()
    assert db_session.get(Allocation, source.id).end_date == date(2024, 12, 31)
    assert _allocation_count(db_session) == 1
    assert _audit_count(db_session) == 0


def test_transfer_of_unknown_allocation_is_not_found(client: TestClient, staff: Staff) -> None:
    response = client.post(
        TRANSFER_URL,
        headers=headers("dev.hr"),
        json=_payload(uuid.uuid4(), staff.project_b.id, "2024-06-15"),
    )
    malformed = client.post(
        TRANSFER_URL,
        headers=headers("dev.hr"),
        json=_payload("not-a-uuid", staff.project_b.id, "2024-06-15"),
    )

    assert response.status_code == 404
    assert response.json() == {"error": "Allocation not found"}
    assert malformed.status_code == 404


def test_transfer_to_unknown_project_is_not_found(client: TestClient, db_session: Session, staff: Staff) -> None:
    source = _source(db_session, staff)

    response = client.post(
        TRANSFER_URL,
        headers=headers("dev.hr"),
        json=_payload(source.id, uuid.uuid4(), "2024-06-15"),
    )

    assert response.status_code == 404
    assert response.json() == {"error": "Project not found"}


def test_transfer_with_missing_fields_is_rejected(client: TestClient, db_session: Session, staff: Staff) -> None:
    source = _source(db_session, staff)

    missing = client.post(
        TRANSFER_URL,
        headers=headers("dev.hr"),
        json={"allocation_id": str(source.id), "new_project_id": str(staff.project_b.id)},
    )
    blank = client.post(
        TRANSFER_URL,
        headers=headers("dev.hr"),
        json=_payload(source.id, staff.project_b.id, "  "),
    )

    assert missing.status_code == 400
    assert missing.json() == {"error": "Missing required fields"}
    assert blank.status_code == 400
    assert blank.json() == {"error": "Missing required fields"}


def test_transfer_with_unparseable_date_is_rejected(client: TestClient, db_session: Session, staff: Staff) -> None:
    source = _source(db_session, staff)

    response = client.post(
        TRANSFER_URL,
        headers=headers("dev.hr"),
        json=_payload(source.id, staff.project_b.id, "15/06/2024"),
    )

    assert response.status_code == 400
    assert response.json() == {"error": "transfer_date must be a valid date"}


def test_unknown_allocation_with_unparseable_date_is_not_found(client: TestClient, staff: Staff) -> None:
    response = client.post(
        TRANSFER_URL,
        headers=headers("dev.hr"),
        json=_payload(uuid.uuid4(), staff.project_b.id, "15/06/2024"),
    )

    assert response.status_code == 404
    assert response.json() == {"error": "Allocation not found"}


def test_repeated_transfer_is_a_conflict(client: TestClient, db_session: Session, staff: Staff) -> None:
    source = _source(db_session, staff)
    payload = _payload(source.id, staff.project_b.id, "2024-06-15")

    first = client.post(TRANSFER_URL, headers=headers("dev.hr"), json=payload)
    second = client.post(TRANSFER_URL, headers=headers("dev.hr"), json=payload)
    later = client.post(
        TRANSFER_URL,
        headers=headers("dev.hr"),
        json=_payload(source.id, staff.project_b.id, "2024-09-01"),
    )

    assert first.status_code == 200
    assert second.status_code == 409
    assert second.json() == {"error": "Allocation has already been transferred"}
    assert later.status_code == 400
    assert _allocation_count(db_session) == 2


def test_concurrent_transfer_loser_sees_closed_source(file_sessionmaker: sessionmaker[Session]) -> None:
    setup = file_sessionmaker()
    staff = seed_staff(setup)
    source_id = _source(setup, staff).id
    hr_context = build_user_context(staff.hr)
    project_b_id = staff.project_b.id
    setup.close()

    request = TransferRequest(
        allocation_id=str(source_id),
        new_project_id=str(project_b_id),
        transfer_date="2024-06-15",
    )
    loser_db = file_sessionmaker()
    winner_db = file_sessionmaker()
    loser = TransferService(loser_db)
    run_unit_of_work = loser._run_unit_of_work
    winner_results = []

    def race_then_run(**kwargs):
        # The winner commits after the loser's pre-checks but before its locked re-read.
        winner_results.append(TransferService(winner_db).transfer(context=hr_context, request=request))
        return run_unit_of_work(**kwargs)

    loser._run_unit_of_work = race_then_run
    try:
        loser_result = loser.transfer(context=hr_context, request=request)

        assert winner_results[0].is_success is True
        assert loser_result.is_success is False
        assert loser_result.error.status_code == 409
        assert loser_result.error.retryable is True
        assert _allocation_count(loser_db) == 2
        assert _audit_count(loser_db) == 2
    finally:
        loser_db.close()
        winner_db.close()


def test_version_conflict_is_reported_as_retryable(db_session: Session, staff: Staff, monkeypatch) -> None:
    source = _source(db_session, staff)
    service = TransferService(db_session)

    def stale_close(*args, **kwargs):
        raise StaleDataError("UPDATE statement on table 'project_allocation' expected to update 1 row(s)")

    monkeypatch.setattr(service.ledger, "close", stale_close)
    result = service.transfer(
        context=build_user_context(staff.hr),
        request=TransferRequest(str(source.id), str(staff.project_b.id), "2024-06-15"),
    )

    assert result.error.status_code == 409
    assert result.error.message == "Allocation was modified concurrently; retry the transfer"
    assert _allocation_count(db_session) == 1
    assert _audit_count(db_session) == 0


def test_failure_after_first_write_rolls_back_both(db_session: Session, staff: Staff, monkeypatch) -> None:
    source = _source(db_session, staff)
    service = TransferService(db_session)

    def broken_close(*args, **kwargs):
        raise OperationalError("UPDATE project_allocation", {}, Exception("connection lost"))

    monkeypatch.setattr(service.ledger, "close", broken_close)
    with pytest.raises(OperationalError):
        service.transfer(
            context=build_user_context(staff.hr),
            request=TransferRequest(str(source.id), str(staff.project_b.id), "2024-06-15"),
        )

    db_session.expire_all()
    assert db_session.get(Allocation, source.id).end_date == date(2024, 12, 31)
    assert _allocation_count(db_session) == 1
    assert _audit_count(db_session) == 0
    assert service.audit.staged == ()


def test_unhandled_failure_returns_internal_error(db_session: Session, staff: Staff, monkeypatch) -> None:
    source = _source(db_session, staff)

    def broken_close(self, *args, **kwargs):
        raise OperationalError("UPDATE project_allocation", {}, Exception("connection lost"))

    monkeypatch.setattr(AllocationLedger, "close", broken_close)
    app = create_app()
    app.dependency_overrides[get_db_session] = lambda: db_session
    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.post(
            TRANSFER_URL,
            headers=headers("dev.hr"),
            json=_payload(source.id, staff.project_b.id, "2024-06-15"),
        )

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    db_session.expire_all()
    assert db_session.get(Allocation, source.id).end_date == date(2024, 12, 31)
    assert _allocation_count(db_session) == 1


def test_audit_failure_does_not_fail_committed_transfer(
    client: TestClient,
    db_session: Session,
    staff: Staff,
    monkeypatch,
    caplog,
) -> None:
    source = _source(db_session, staff)

    def broken_write(self, entries):
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("audit store down"))

    monkeypatch.setattr(SessionAuditSink, "write", broken_write)
    with caplog.at_level(logging.ERROR, logger="app.services.audit_trail"):
        response = client.post(
            TRANSFER_URL,
            headers=headers("dev.hr"),
            json=_payload(source.id, staff.project_b.id, "2024-06-15"),
        )

    assert response.status_code == 200
    db_session.expire_all()
    assert db_session.get(Allocation, source.id).end_date == date(2024, 6, 15)
    assert _allocation_count(db_session) == 2
    assert _audit_count(db_session) == 0
    assert any(record.getMessage() == "Audit publication failed; entries dropped" for record in caplog.records)
