"""ORM model package."""

from app.models.entities import (
    Allocation,
    AuditLog,
    AuditOperation,
    Employee,
    EmployeeRole,
    EmployeeStatus,
    Project,
    ProjectStatus,
)

__all__ = [
    "Allocation",
    "AuditLog",
    "AuditOperation",
    "Employee",
    "EmployeeRole",
    "EmployeeStatus",
    "Project",
    "ProjectStatus",
]
