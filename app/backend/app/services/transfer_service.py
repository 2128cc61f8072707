"""Transfer of an employee allocation from one project to another."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.auth import Capability, RequestUserContext, has_capability
from app.core.config import get_settings
from app.core.errors import OperationResult, ServiceError
from app.core.logging import get_logger
from app.models.entities import Allocation, AuditOperation
from app.repositories.allocation_repository import AllocationRepository
from app.services.allocation_ledger import (
    AllocationLedger,
    AllocationOpenData,
    allocation_row,
    serialize_allocation,
)
from app.services.audit_trail import ALLOCATION_ENTITY, AuditEntry, AuditTrail, SessionAuditSink
from app.services.inputs import is_missing, parse_date, parse_uuid

logger = get_logger(__name__)

ALREADY_TRANSFERRED_MESSAGE = "Allocation has already been transferred"
CONCURRENT_UPDATE_MESSAGE = "Allocation was modified concurrently; retry the transfer"


@dataclass(slots=True)
class TransferRequest:
    allocation_id: str | None
    new_project_id: str | None
    transfer_date: str | None


@dataclass(frozen=True, slots=True)
class TransferOutcome:
    closed: Allocation
    opened: Allocation

    def to_response(self) -> dict[str, object]:
        return {
            "old_allocation": {
                "id": str(self.closed.id),
                "end_date": self.closed.end_date.isoformat() if self.closed.end_date else None,
            },
            "new_allocation": serialize_allocation(self.opened),
        }


class TransferService:
    """Closes a source allocation and opens its successor in one unit of work.

    Role, percentage and billability carry over unchanged; the successor
    starts on the transfer date and inherits the source's original end date.
    Audit entries are published only after the commit.
    """

    def __init__(
        self,
        db: Session,
        *,
        ledger: AllocationLedger | None = None,
        audit: AuditTrail | None = None,
    ) -> None:
        self.db = db
        self.ledger = ledger or AllocationLedger(
            AllocationRepository(db),
            capacity_limit=get_settings().allocation_capacity_limit,
        )
        self.audit = audit or AuditTrail(SessionAuditSink(db))

    def transfer(self, *, context: RequestUserContext, request: TransferRequest) -> OperationResult[TransferOutcome]:
        if not has_capability(context, Capability.MANAGE_ALLOCATIONS):
            return OperationResult.failure(ServiceError.access_denied())

        if (
            is_missing(request.allocation_id)
            or is_missing(request.new_project_id)
            or is_missing(request.transfer_date)
        ):
            return OperationResult.failure(ServiceError.missing_fields())

        allocation_id = parse_uuid(request.allocation_id)
        if allocation_id is None:
            return OperationResult.failure(ServiceError.not_found("Allocation"))

        # Fail fast before any write.
        source = self.ledger.get(allocation_id)
        if not source.is_success:
            return OperationResult.failure(source.error)
        transfer_date = parse_date(request.transfer_date)
        if transfer_date is None:
            return OperationResult.failure(ServiceError.validation("transfer_date must be a valid date"))
        window = self.ledger.validate_within_window(source.value, transfer_date)
        if not window.is_success:
            return OperationResult.failure(window.error)
        if source.value.transferred_to_id is not None:
            return OperationResult.failure(ServiceError.conflict(ALREADY_TRANSFERRED_MESSAGE))

        new_project_id = parse_uuid(request.new_project_id)
        if new_project_id is None or self.ledger.repo.get_project(new_project_id) is None:
            return OperationResult.failure(ServiceError.not_found("Project"))

        return self._run_unit_of_work(
            context=context,
            allocation_id=allocation_id,
            new_project_id=new_project_id,
            transfer_date=transfer_date,
        )

    def _run_unit_of_work(
        self,
        *,
        context: RequestUserContext,
        allocation_id: UUID,
        new_project_id: UUID,
        transfer_date: date,
    ) -> OperationResult[TransferOutcome]:
        try:
            result = self._transfer_locked(
                context=context,
                allocation_id=allocation_id,
                new_project_id=new_project_id,
                transfer_date=transfer_date,
            )
            if not result.is_success:
                self.db.rollback()
                self.audit.discard()
                return result
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            self.audit.discard()
            logger.warning(
                "Transfer lost a concurrent update race",
                extra={"allocation_id": str(allocation_id)},
            )
            return OperationResult.failure(ServiceError.conflict(CONCURRENT_UPDATE_MESSAGE))
        except SQLAlchemyError:
            self.db.rollback()
            self.audit.discard()
            raise

        self.audit.publish()
        logger.info(
            "Allocation transferred",
            extra={
                "allocation_id": str(allocation_id),
                "new_allocation_id": str(result.value.opened.id),
                "new_project_id": str(new_project_id),
                "transfer_date": transfer_date.isoformat(),
                "changed_by": str(context.employee_id),
            },
        )
        return result

    def _transfer_locked(
        self,
        *,
        context: RequestUserContext,
        allocation_id: UUID,
        new_project_id: UUID,
        transfer_date: date,
    ) -> OperationResult[TransferOutcome]:
        # Re-read under the row lock: a concurrent transfer may have closed it.
        locked = self.ledger.get(allocation_id, for_update=True)
        if not locked.is_success:
            return locked
        source = locked.value
        if source.transferred_to_id is not None:
            return OperationResult.failure(ServiceError.conflict(ALREADY_TRANSFERRED_MESSAGE))
        window = self.ledger.validate_within_window(source, transfer_date)
        if not window.is_success:
            return OperationResult.failure(window.error)

        original_end = source.end_date
        opened = self.ledger.open(
            AllocationOpenData(
                emp_id=source.emp_id,
                project_id=new_project_id,
                role=source.role,
                allocation_percentage=source.allocation_percentage,
                start_date=transfer_date,
                end_date=original_end,
                billability=source.billability,
                assigned_by=context.employee_id,
            ),
            exclude_ids=[source.id],
        )
        if not opened.is_success:
            return OperationResult.failure(opened.error)

        closed = self.ledger.close(source, transfer_date, successor_id=opened.value.id)
        if not closed.is_success:
            return OperationResult.failure(closed.error)

        self.audit.stage(
            AuditEntry(
                entity_type=ALLOCATION_ENTITY,
                entity_id=source.id,
                operation=AuditOperation.UPDATE,
                changed_by=context.employee_id,
                changed_fields={
                    "end_date": {
                        "old": original_end.isoformat() if original_end else None,
                        "new": transfer_date.isoformat(),
                    }
                },
            )
        )
        self.audit.stage(
            AuditEntry(
                entity_type=ALLOCATION_ENTITY,
                entity_id=opened.value.id,
                operation=AuditOperation.INSERT,
                changed_by=context.employee_id,
                changed_fields=allocation_row(opened.value),
            )
        )
        return OperationResult.success(TransferOutcome(closed=closed.value, opened=opened.value))
