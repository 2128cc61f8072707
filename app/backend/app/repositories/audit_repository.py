"""Read-side queries over the audit log."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.entities import AuditLog, AuditOperation, Employee


class AuditRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def list_entries(
        self,
        *,
        entity_type: str | None = None,
        entity_id: UUID | None = None,
        operation: AuditOperation | None = None,
        changed_by: UUID | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[tuple[AuditLog, str | None]], int]:
        conditions: list[object] = []
        if entity_type is not None:
            conditions.append(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            conditions.append(AuditLog.entity_id == entity_id)
        if operation is not None:
            conditions.append(AuditLog.operation == operation)
        if changed_by is not None:
            conditions.append(AuditLog.changed_by == changed_by)
        if start_date is not None:
            conditions.append(AuditLog.changed_at >= datetime.combine(start_date, time.min))
        if end_date is not None:
            # Inclusive on the calendar day.
            conditions.append(AuditLog.changed_at < datetime.combine(end_date + timedelta(days=1), time.min))

        statement = (
            select(AuditLog, Employee.full_name)
            .outerjoin(Employee, Employee.id == AuditLog.changed_by)
            .where(*conditions)
        )
        total = self.db.scalar(select(func.count()).select_from(statement.subquery())) or 0
        rows = self.db.execute(
            statement.order_by(AuditLog.changed_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit)
        ).all()
        return [tuple(row) for row in rows], total
