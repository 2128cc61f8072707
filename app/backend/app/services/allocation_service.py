"""Application service for allocation creation, edits and role-scoped reads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.auth import Capability, RequestUserContext, has_capability
from app.core.config import get_settings
from app.core.errors import OperationResult, ServiceError
from app.core.logging import get_logger
from app.models.entities import Allocation, AuditOperation, EmployeeStatus
from app.repositories.allocation_repository import AllocationRepository
from app.services.allocation_ledger import (
    AllocationEditData,
    AllocationLedger,
    AllocationOpenData,
    allocation_row,
    serialize_allocation,
)
from app.services.audit_trail import ALLOCATION_ENTITY, AuditEntry, AuditTrail, SessionAuditSink
from app.services.pagination import PageRequest

logger = get_logger(__name__)


@dataclass(slots=True)
class AllocationCreateData:
    employee_id: UUID | None
    project_id: UUID | None
    role: str | None
    allocation_percentage: Decimal | None
    start_date: date | None
    end_date: date | None
    billability: bool | None


def _audit_value(value: object) -> object:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


class AllocationService:
    """Allocation lifecycle outside transfers: create, edit, list, read."""

    def __init__(
        self,
        db: Session,
        *,
        ledger: AllocationLedger | None = None,
        audit: AuditTrail | None = None,
    ) -> None:
        self.db = db
        self.repo = AllocationRepository(db)
        self.ledger = ledger or AllocationLedger(
            self.repo,
            capacity_limit=get_settings().allocation_capacity_limit,
        )
        self.audit = audit or AuditTrail(SessionAuditSink(db))

    # ---------- Serialization ----------
    @staticmethod
    def serialize_detail(allocation: Allocation) -> dict[str, object]:
        payload = serialize_allocation(allocation)
        payload.update(
            {
                "transferred_to_id": str(allocation.transferred_to_id) if allocation.transferred_to_id else None,
                "created_at": allocation.created_at.isoformat(),
                "updated_at": allocation.updated_at.isoformat(),
            }
        )
        return payload

    @classmethod
    def serialize_listing_row(cls, row: tuple[Allocation, str, str, str, str]) -> dict[str, object]:
        allocation, employee_code, employee_name, project_code, project_name = row
        payload = cls.serialize_detail(allocation)
        payload.update(
            {
                "employee_code": employee_code,
                "employee_name": employee_name,
                "project_code": project_code,
                "project_name": project_name,
            }
        )
        return payload

    # ---------- Scope ----------
    def _visibility(self, context: RequestUserContext) -> tuple[UUID | None, list[UUID] | None]:
        """Rows visible to the actor as ``(own employee id, managed project ids)``.

        Project managers see the rows of projects they manage, not their own.

        ``(None, None)`` means unrestricted.
        """

        if has_capability(context, Capability.VIEW_ALL_ALLOCATIONS):
            return None, None
        if has_capability(context, Capability.VIEW_PROJECT_ALLOCATIONS):
            return None, self.repo.list_managed_project_ids(context.employee_id)
        return context.employee_id, None

    # ---------- Reads ----------
    def list_allocations(
        self,
        *,
        context: RequestUserContext,
        page: PageRequest,
        employee_id: UUID | None = None,
        project_id: UUID | None = None,
        active_only: bool = False,
    ) -> dict[str, object]:
        visible_employee_id, visible_project_ids = self._visibility(context)
        rows, total = self.repo.list_allocations(
            employee_id=employee_id,
            project_id=project_id,
            active_on=date.today() if active_only else None,
            visible_employee_id=visible_employee_id,
            visible_project_ids=visible_project_ids,
            offset=page.offset,
            limit=page.limit,
        )
        return {
            "allocations": [self.serialize_listing_row(row) for row in rows],
            "total": total,
            "page": page.page,
            "limit": page.limit,
        }

    def get_allocation(self, *, context: RequestUserContext, allocation_id: UUID) -> OperationResult[dict[str, object]]:
        visible_employee_id, visible_project_ids = self._visibility(context)
        row = self.repo.get_listing_row(
            allocation_id,
            visible_employee_id=visible_employee_id,
            visible_project_ids=visible_project_ids,
        )
        if row is None:
            return OperationResult.failure(ServiceError.not_found("Allocation"))
        return OperationResult.success(self.serialize_listing_row(row))

    # ---------- Writes ----------
    def create_allocation(
        self,
        *,
        context: RequestUserContext,
        data: AllocationCreateData,
    ) -> OperationResult[Allocation]:
        if not has_capability(context, Capability.MANAGE_ALLOCATIONS):
            return OperationResult.failure(ServiceError.access_denied())

        required = (
            data.employee_id,
            data.project_id,
            data.role,
            data.allocation_percentage,
            data.start_date,
            data.billability,
        )
        if any(value is None for value in required) or not data.role.strip():
            return OperationResult.failure(ServiceError.missing_fields())

        employee = self.repo.get_employee(data.employee_id)
        if employee is None or employee.status is not EmployeeStatus.ACTIVE:
            return OperationResult.failure(ServiceError.not_found("Employee"))
        if self.repo.get_project(data.project_id) is None:
            return OperationResult.failure(ServiceError.not_found("Project"))

        def unit_of_work() -> OperationResult[Allocation]:
            opened = self.ledger.open(
                AllocationOpenData(
                    emp_id=data.employee_id,
                    project_id=data.project_id,
                    role=data.role,
                    allocation_percentage=data.allocation_percentage,
                    start_date=data.start_date,
                    end_date=data.end_date,
                    billability=data.billability,
                    assigned_by=context.employee_id,
                )
            )
            if opened.is_success:
                self.audit.stage(
                    AuditEntry(
                        entity_type=ALLOCATION_ENTITY,
                        entity_id=opened.value.id,
                        operation=AuditOperation.INSERT,
                        changed_by=context.employee_id,
                        changed_fields=allocation_row(opened.value),
                    )
                )
            return opened

        result = self._commit(unit_of_work)
        if result.is_success:
            logger.info(
                "Allocation created",
                extra={"allocation_id": str(result.value.id), "changed_by": str(context.employee_id)},
            )
        return result

    def update_allocation(
        self,
        *,
        context: RequestUserContext,
        allocation_id: UUID,
        data: AllocationEditData,
    ) -> OperationResult[Allocation]:
        if not has_capability(context, Capability.MANAGE_ALLOCATIONS):
            return OperationResult.failure(ServiceError.access_denied())

        if self.repo.get_allocation(allocation_id) is None:
            return OperationResult.failure(ServiceError.not_found("Allocation"))

        def unit_of_work() -> OperationResult[Allocation]:
            locked = self.ledger.get(allocation_id, for_update=True)
            if not locked.is_success:
                return locked
            edited = self.ledger.edit(locked.value, data)
            if not edited.is_success:
                return OperationResult.failure(edited.error)
            if edited.value:
                self.audit.stage(
                    AuditEntry(
                        entity_type=ALLOCATION_ENTITY,
                        entity_id=allocation_id,
                        operation=AuditOperation.UPDATE,
                        changed_by=context.employee_id,
                        changed_fields={
                            field: {"old": _audit_value(old), "new": _audit_value(new)}
                            for field, (old, new) in edited.value.items()
                        },
                    )
                )
            return OperationResult.success(locked.value)

        result = self._commit(unit_of_work)
        if result.is_success:
            logger.info(
                "Allocation updated",
                extra={"allocation_id": str(allocation_id), "changed_by": str(context.employee_id)},
            )
        return result

    def _commit(self, unit_of_work) -> OperationResult[Allocation]:
        """Run ``unit_of_work`` in one transaction, then publish staged audit entries."""

        try:
            result = unit_of_work()
            if not result.is_success:
                self.db.rollback()
                self.audit.discard()
                return result
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            self.audit.discard()
            logger.warning("Allocation write lost a concurrent update race")
            return OperationResult.failure(
                ServiceError.conflict("Allocation was modified concurrently; retry the operation")
            )
        except SQLAlchemyError:
            self.db.rollback()
            self.audit.discard()
            raise

        self.audit.publish()
        return result
