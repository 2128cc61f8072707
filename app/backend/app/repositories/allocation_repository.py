"""Repository helpers for allocations and their employee/project collaborators."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from uuid import UUID

from sqlalchemy import Select, and_, false, func, or_, select
from sqlalchemy.orm import Session

from app.models.entities import Allocation, Employee, Project


class AllocationRepository:
    """Persistence operations used by the allocation ledger and services."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # ---------- Collaborators ----------
    def get_employee(self, employee_id: UUID) -> Employee | None:
        return self.db.scalar(select(Employee).where(Employee.id == employee_id))

    def lock_employee(self, employee_id: UUID) -> Employee | None:
        """Take the per-employee row lock serializing capacity checks."""

        return self.db.scalar(select(Employee).where(Employee.id == employee_id).with_for_update())

    def get_project(self, project_id: UUID) -> Project | None:
        return self.db.scalar(select(Project).where(Project.id == project_id))

    def list_managed_project_ids(self, manager_id: UUID) -> list[UUID]:
        return self.db.scalars(select(Project.id).where(Project.project_manager_id == manager_id)).all()

    # ---------- Allocations ----------
    def get_allocation(self, allocation_id: UUID, *, for_update: bool = False) -> Allocation | None:
        statement = select(Allocation).where(Allocation.id == allocation_id)
        if for_update:
            # Locked reads must observe the committed row, not the identity map copy.
            statement = statement.with_for_update().execution_options(populate_existing=True)
        return self.db.scalar(statement)

    def list_overlapping_for_employee(
        self,
        employee_id: UUID,
        *,
        window_start: date,
        window_end: date | None,
        exclude_ids: Iterable[UUID] = (),
    ) -> list[Allocation]:
        conditions = [
            Allocation.emp_id == employee_id,
            or_(Allocation.end_date.is_(None), Allocation.end_date >= window_start),
        ]
        if window_end is not None:
            conditions.append(Allocation.start_date <= window_end)
        excluded = list(exclude_ids)
        if excluded:
            conditions.append(Allocation.id.not_in(excluded))

        return self.db.scalars(
            select(Allocation).where(and_(*conditions)).order_by(Allocation.start_date.asc())
        ).all()

    def add_allocation(self, allocation: Allocation) -> Allocation:
        self.db.add(allocation)
        self.db.flush()
        return allocation

    # ---------- Listing ----------
    @staticmethod
    def _listing_conditions(
        *,
        employee_id: UUID | None,
        project_id: UUID | None,
        active_on: date | None,
        visible_employee_id: UUID | None,
        visible_project_ids: list[UUID] | None,
    ) -> list[object]:
        conditions: list[object] = []
        if employee_id is not None:
            conditions.append(Allocation.emp_id == employee_id)
        if project_id is not None:
            conditions.append(Allocation.project_id == project_id)
        if active_on is not None:
            conditions.append(Allocation.start_date <= active_on)
            conditions.append(or_(Allocation.end_date.is_(None), Allocation.end_date >= active_on))

        # Scope restriction: own rows and/or rows of managed projects.
        scope: list[object] = []
        if visible_employee_id is not None:
            scope.append(Allocation.emp_id == visible_employee_id)
        if visible_project_ids is not None:
            if visible_project_ids:
                scope.append(Allocation.project_id.in_(visible_project_ids))
        if visible_employee_id is not None or visible_project_ids is not None:
            conditions.append(or_(*scope) if scope else false())
        return conditions

    def _listing_statement(self, conditions: list[object]) -> Select:
        return (
            select(
                Allocation,
                Employee.employee_code,
                Employee.full_name,
                Project.project_code,
                Project.project_name,
            )
            .join(Employee, Employee.id == Allocation.emp_id)
            .join(Project, Project.id == Allocation.project_id)
            .where(*conditions)
        )

    def list_allocations(
        self,
        *,
        employee_id: UUID | None = None,
        project_id: UUID | None = None,
        active_on: date | None = None,
        visible_employee_id: UUID | None = None,
        visible_project_ids: list[UUID] | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[tuple[Allocation, str, str, str, str]], int]:
        conditions = self._listing_conditions(
            employee_id=employee_id,
            project_id=project_id,
            active_on=active_on,
            visible_employee_id=visible_employee_id,
            visible_project_ids=visible_project_ids,
        )
        statement = self._listing_statement(conditions)

        total = self.db.scalar(select(func.count()).select_from(statement.subquery())) or 0
        rows = self.db.execute(
            statement.order_by(Allocation.start_date.desc(), Allocation.created_at.desc())
            .offset(offset)
            .limit(limit)
        ).all()
        return [tuple(row) for row in rows], total

    def get_listing_row(
        self,
        allocation_id: UUID,
        *,
        visible_employee_id: UUID | None = None,
        visible_project_ids: list[UUID] | None = None,
    ) -> tuple[Allocation, str, str, str, str] | None:
        conditions = self._listing_conditions(
            employee_id=None,
            project_id=None,
            active_on=None,
            visible_employee_id=visible_employee_id,
            visible_project_ids=visible_project_ids,
        )
        conditions.append(Allocation.id == allocation_id)
        row = self.db.execute(self._listing_statement(conditions)).first()
        return tuple(row) if row is not None else None
