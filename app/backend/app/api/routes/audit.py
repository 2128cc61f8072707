"""Audit log endpoint."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.auth import Capability, RequestUserContext, require_capability
from app.db.dependencies import get_db_session
from app.models.entities import AuditOperation
from app.services.audit_service import AuditService
from app.services.pagination import resolve_page

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("")
def list_audit_entries(
    entity_type: str | None = Query(default=None, max_length=64),
    entity_id: UUID | None = Query(default=None),
    operation: AuditOperation | None = Query(default=None),
    changed_by: UUID | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    page: int | None = Query(default=None, ge=1),
    limit: int | None = Query(default=None, ge=1),
    context: RequestUserContext = Depends(require_capability(Capability.VIEW_AUDIT_LOG)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    """Newest-first audit entries with the actor's name."""

    return AuditService(db).list_entries(
        context=context,
        page=resolve_page(page, limit),
        entity_type=entity_type,
        entity_id=entity_id,
        operation=operation,
        changed_by=changed_by,
        start_date=start_date,
        end_date=end_date,
    ).unwrap()
