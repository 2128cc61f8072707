"""Allocation ledger endpoints: transfer, create, edit and scoped reads."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.auth import Capability, RequestUserContext, require_capability
from app.db.dependencies import get_db_session
from app.services.allocation_ledger import AllocationEditData
from app.services.allocation_service import AllocationCreateData, AllocationService
from app.services.pagination import resolve_page
from app.services.transfer_service import TransferRequest, TransferService

router = APIRouter(prefix="/allocations", tags=["allocations"])


class TransferPayload(BaseModel):
    allocation_id: str | None = None
    new_project_id: str | None = None
    transfer_date: str | None = None


class AllocationCreatePayload(BaseModel):
    employee_id: UUID | None = None
    project_id: UUID | None = None
    role: str | None = Field(default=None, max_length=100)
    allocation_percentage: Decimal | None = None
    start_date: date | None = None
    end_date: date | None = None
    billability: bool | None = None


class AllocationUpdatePayload(BaseModel):
    role: str | None = Field(default=None, min_length=1, max_length=100)
    allocation_percentage: Decimal | None = None
    end_date: date | None = None
    billability: bool | None = None


@router.post("/transfer")
def transfer_allocation(
    payload: TransferPayload,
    context: RequestUserContext = Depends(require_capability(Capability.MANAGE_ALLOCATIONS)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    """Close an allocation on ``transfer_date`` and open its successor on another project."""

    result = TransferService(db).transfer(
        context=context,
        request=TransferRequest(
            allocation_id=payload.allocation_id,
            new_project_id=payload.new_project_id,
            transfer_date=payload.transfer_date,
        ),
    )
    return result.unwrap().to_response()


@router.get("")
def list_allocations(
    employee_id: UUID | None = Query(default=None),
    project_id: UUID | None = Query(default=None),
    active_only: bool = Query(default=False),
    page: int | None = Query(default=None, ge=1),
    limit: int | None = Query(default=None, ge=1),
    context: RequestUserContext = Depends(require_capability(Capability.VIEW_OWN_ALLOCATIONS)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return AllocationService(db).list_allocations(
        context=context,
        page=resolve_page(page, limit),
        employee_id=employee_id,
        project_id=project_id,
        active_only=active_only,
    )


@router.post("", status_code=status.HTTP_201_CREATED)
def create_allocation(
    payload: AllocationCreatePayload,
    context: RequestUserContext = Depends(require_capability(Capability.MANAGE_ALLOCATIONS)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = AllocationService(db)
    allocation = service.create_allocation(
        context=context,
        data=AllocationCreateData(
            employee_id=payload.employee_id,
            project_id=payload.project_id,
            role=payload.role,
            allocation_percentage=payload.allocation_percentage,
            start_date=payload.start_date,
            end_date=payload.end_date,
            billability=payload.billability,
        ),
    ).unwrap()
    return service.serialize_detail(allocation)


@router.get("/{allocation_id}")
def get_allocation(
    allocation_id: UUID,
    context: RequestUserContext = Depends(require_capability(Capability.VIEW_OWN_ALLOCATIONS)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return AllocationService(db).get_allocation(context=context, allocation_id=allocation_id).unwrap()


@router.put("/{allocation_id}")
def update_allocation(
    allocation_id: UUID,
    payload: AllocationUpdatePayload,
    context: RequestUserContext = Depends(require_capability(Capability.MANAGE_ALLOCATIONS)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    """Edit an allocation; an explicit ``"end_date": null`` reopens its end."""

    service = AllocationService(db)
    allocation = service.update_allocation(
        context=context,
        allocation_id=allocation_id,
        data=AllocationEditData(
            role=payload.role,
            allocation_percentage=payload.allocation_percentage,
            end_date=payload.end_date,
            clear_end_date="end_date" in payload.model_fields_set and payload.end_date is None,
            billability=payload.billability,
        ),
    ).unwrap()
    return service.serialize_detail(allocation)
