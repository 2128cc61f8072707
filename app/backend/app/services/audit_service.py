"""Audit log browsing for HR."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.auth import Capability, RequestUserContext, has_capability
from app.core.errors import OperationResult, ServiceError
from app.models.entities import AuditLog, AuditOperation
from app.repositories.audit_repository import AuditRepository
from app.services.pagination import PageRequest


class AuditService:
    def __init__(self, db: Session) -> None:
        self.repo = AuditRepository(db)

    @staticmethod
    def serialize_entry(entry: AuditLog, changed_by_name: str | None) -> dict[str, object]:
        return {
            "id": str(entry.id),
            "entity_type": entry.entity_type,
            "entity_id": str(entry.entity_id),
            "operation": entry.operation.value,
            "changed_by": str(entry.changed_by),
            "changed_by_name": changed_by_name,
            "changed_at": entry.changed_at.isoformat(),
            "changed_fields": entry.changed_fields,
        }

    def list_entries(
        self,
        *,
        context: RequestUserContext,
        page: PageRequest,
        entity_type: str | None = None,
        entity_id: UUID | None = None,
        operation: AuditOperation | None = None,
        changed_by: UUID | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> OperationResult[dict[str, object]]:
        if not has_capability(context, Capability.VIEW_AUDIT_LOG):
            return OperationResult.failure(ServiceError.access_denied())
        if start_date is not None and end_date is not None and end_date < start_date:
            return OperationResult.failure(ServiceError.validation("end_date must be on or after start_date"))

        rows, total = self.repo.list_entries(
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            changed_by=changed_by,
            start_date=start_date,
            end_date=end_date,
            offset=page.offset,
            limit=page.limit,
        )
        return OperationResult.success(
            {
                "audits": [self.serialize_entry(entry, name) for entry, name in rows],
                "total": total,
                "page": page.page,
                "limit": page.limit,
            }
        )
