"""Allocation ledger: lookups, window checks and capacity-guarded writes.

Every write goes through a capacity check taken under the employee row lock,
so for any employee the summed ``allocation_percentage`` of allocations
active on one calendar day never exceeds the configured limit. The ledger
only flushes; committing, rolling back and auditing belong to the caller's
unit of work.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from app.core.errors import OperationResult, ServiceError
from app.core.logging import get_logger
from app.models.entities import Allocation
from app.repositories.allocation_repository import AllocationRepository
from app.services.capacity import CapacitySpan, capacity_span, peak_load

logger = get_logger(__name__)

Q2 = Decimal("0.01")
MAX_PERCENTAGE = Decimal("100.00")
TRANSFER_WINDOW_MESSAGE = "transfer_date must be between start_date and end_date"


def _q2(value: Decimal) -> Decimal:
    return value.quantize(Q2)


@dataclass(slots=True)
class AllocationOpenData:
    emp_id: UUID
    project_id: UUID
    role: str
    allocation_percentage: Decimal
    start_date: date
    end_date: date | None
    billability: bool
    assigned_by: UUID | None


@dataclass(slots=True)
class AllocationEditData:
    role: str | None = None
    allocation_percentage: Decimal | None = None
    end_date: date | None = None
    clear_end_date: bool = False
    billability: bool | None = None


def serialize_allocation(allocation: Allocation) -> dict[str, object]:
    return {
        "id": str(allocation.id),
        "emp_id": str(allocation.emp_id),
        "project_id": str(allocation.project_id),
        "role": allocation.role,
        "allocation_percentage": str(allocation.allocation_percentage),
        "start_date": allocation.start_date.isoformat(),
        "end_date": allocation.end_date.isoformat() if allocation.end_date else None,
        "billability": allocation.billability,
        "assigned_by": str(allocation.assigned_by) if allocation.assigned_by else None,
    }


def allocation_row(allocation: Allocation) -> dict[str, object]:
    """Full column snapshot, as recorded for inserts in the audit log."""

    row = serialize_allocation(allocation)
    row.update(
        {
            "transferred_to_id": str(allocation.transferred_to_id) if allocation.transferred_to_id else None,
            "version": allocation.version,
            "created_at": allocation.created_at.isoformat(),
            "updated_at": allocation.updated_at.isoformat(),
        }
    )
    return row


def validate_percentage(value: Decimal) -> OperationResult[Decimal]:
    """Range-check both the raw value and its stored two-decimal form."""

    error = ServiceError.validation("allocation_percentage must be greater than 0 and at most 100")
    if value <= 0 or value > MAX_PERCENTAGE:
        return OperationResult.failure(error)
    stored = _q2(value)
    if stored <= 0 or stored > MAX_PERCENTAGE:
        return OperationResult.failure(error)
    return OperationResult.success(stored)


def validate_role(value: str) -> OperationResult[str]:
    role = value.strip()
    if not role:
        return OperationResult.failure(ServiceError.validation("role must not be blank"))
    return OperationResult.success(role)


def validate_date_order(start_date: date, end_date: date | None) -> OperationResult[None]:
    if end_date is not None and end_date < start_date:
        return OperationResult.failure(ServiceError.validation("end_date must be on or after start_date"))
    return OperationResult.success(None)


class AllocationLedger:
    """Owns allocation records and enforces the per-day capacity limit."""

    def __init__(self, repo: AllocationRepository, *, capacity_limit: int = 100) -> None:
        self.repo = repo
        self.capacity_limit = Decimal(capacity_limit)

    def get(self, allocation_id: UUID, *, for_update: bool = False) -> OperationResult[Allocation]:
        allocation = self.repo.get_allocation(allocation_id, for_update=for_update)
        if allocation is None:
            return OperationResult.failure(ServiceError.not_found("Allocation"))
        return OperationResult.success(allocation)

    @staticmethod
    def validate_within_window(allocation: Allocation, candidate_date: date) -> OperationResult[date]:
        """Accept ``candidate_date`` inside ``[start_date, end_date]``; open end is unbounded."""

        if candidate_date < allocation.start_date:
            return OperationResult.failure(ServiceError.validation(TRANSFER_WINDOW_MESSAGE))
        if allocation.end_date is not None and candidate_date > allocation.end_date:
            return OperationResult.failure(ServiceError.validation(TRANSFER_WINDOW_MESSAGE))
        return OperationResult.success(candidate_date)

    def check_capacity(
        self,
        employee_id: UUID,
        candidate: CapacitySpan,
        *,
        exclude_ids: Iterable[UUID] = (),
    ) -> OperationResult[Decimal]:
        """Return the peak daily load the candidate would produce, or a rejection."""

        self.repo.lock_employee(employee_id)
        overlapping = self.repo.list_overlapping_for_employee(
            employee_id,
            window_start=candidate.start,
            window_end=candidate.end,
            exclude_ids=exclude_ids,
        )
        spans = [span for span in (capacity_span(row) for row in overlapping) if span is not None]
        current = peak_load(spans, window_start=candidate.start, window_end=candidate.end)

        if current + candidate.percentage > self.capacity_limit:
            logger.warning(
                "Allocation rejected by capacity check",
                extra={
                    "employee_id": str(employee_id),
                    "current_allocation": str(current),
                    "requested_allocation": str(candidate.percentage),
                },
            )
            return OperationResult.failure(
                ServiceError.validation(
                    f"Allocation exceeds {self.capacity_limit:.0f}% capacity",
                    current_allocation=str(current),
                    requested_allocation=str(candidate.percentage),
                )
            )
        return OperationResult.success(current + candidate.percentage)

    def open(
        self,
        data: AllocationOpenData,
        *,
        exclude_ids: Iterable[UUID] = (),
    ) -> OperationResult[Allocation]:
        """Insert a new allocation after validating it against the capacity limit."""

        role = validate_role(data.role)
        if not role.is_success:
            return OperationResult.failure(role.error)
        percentage = validate_percentage(data.allocation_percentage)
        if not percentage.is_success:
            return OperationResult.failure(percentage.error)
        order = validate_date_order(data.start_date, data.end_date)
        if not order.is_success:
            return OperationResult.failure(order.error)

        capacity = self.check_capacity(
            data.emp_id,
            CapacitySpan(start=data.start_date, end=data.end_date, percentage=percentage.value),
            exclude_ids=exclude_ids,
        )
        if not capacity.is_success:
            return OperationResult.failure(capacity.error)

        now = datetime.utcnow()
        allocation = Allocation(
            emp_id=data.emp_id,
            project_id=data.project_id,
            role=role.value,
            allocation_percentage=percentage.value,
            start_date=data.start_date,
            end_date=data.end_date,
            billability=data.billability,
            assigned_by=data.assigned_by,
            created_at=now,
            updated_at=now,
        )
        return OperationResult.success(self.repo.add_allocation(allocation))

    def close(
        self,
        allocation: Allocation,
        end_date: date,
        *,
        successor_id: UUID | None = None,
    ) -> OperationResult[Allocation]:
        """Set ``end_date`` (and the transfer successor, if any).

        Shortening never raises the load on any day, so no capacity check.
        """

        order = validate_date_order(allocation.start_date, end_date)
        if not order.is_success:
            return OperationResult.failure(order.error)

        allocation.end_date = end_date
        if successor_id is not None:
            allocation.transferred_to_id = successor_id
        allocation.updated_at = datetime.utcnow()
        self.repo.db.flush()
        return OperationResult.success(allocation)

    def edit(
        self,
        allocation: Allocation,
        data: AllocationEditData,
    ) -> OperationResult[dict[str, tuple[object, object]]]:
        """Apply edits and return ``{field: (old, new)}`` for changed fields."""

        target_role = allocation.role
        if data.role is not None:
            role = validate_role(data.role)
            if not role.is_success:
                return OperationResult.failure(role.error)
            target_role = role.value

        target_percentage = allocation.allocation_percentage
        if data.allocation_percentage is not None:
            percentage = validate_percentage(data.allocation_percentage)
            if not percentage.is_success:
                return OperationResult.failure(percentage.error)
            target_percentage = percentage.value

        target_end = allocation.end_date
        if data.clear_end_date:
            target_end = None
        elif data.end_date is not None:
            target_end = data.end_date

        if target_end != allocation.end_date and allocation.transferred_to_id is not None:
            return OperationResult.failure(ServiceError.conflict("Allocation has already been transferred"))

        order = validate_date_order(allocation.start_date, target_end)
        if not order.is_success:
            return OperationResult.failure(order.error)

        if target_percentage != allocation.allocation_percentage or target_end != allocation.end_date:
            span = capacity_span(allocation)
            if span is not None:
                span = replace(span, percentage=target_percentage)
                if allocation.transferred_to_id is None:
                    span = replace(span, end=target_end)
                capacity = self.check_capacity(allocation.emp_id, span, exclude_ids=[allocation.id])
                if not capacity.is_success:
                    return OperationResult.failure(capacity.error)

        changes: dict[str, tuple[object, object]] = {}
        if target_percentage != allocation.allocation_percentage:
            changes["allocation_percentage"] = (allocation.allocation_percentage, target_percentage)
            allocation.allocation_percentage = target_percentage
        if target_end != allocation.end_date:
            changes["end_date"] = (allocation.end_date, target_end)
            allocation.end_date = target_end
        if data.billability is not None and data.billability != allocation.billability:
            changes["billability"] = (allocation.billability, data.billability)
            allocation.billability = data.billability
        if target_role != allocation.role:
            changes["role"] = (allocation.role, target_role)
            allocation.role = target_role

        if changes:
            allocation.updated_at = datetime.utcnow()
            self.repo.db.flush()
        return OperationResult.success(changes)
