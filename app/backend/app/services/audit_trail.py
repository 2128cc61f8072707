"""Append-only audit trail published after a unit of work commits."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.models.entities import AuditLog, AuditOperation

logger = get_logger(__name__)

ALLOCATION_ENTITY = "PROJECT_ALLOCATION"


@dataclass(frozen=True)
class AuditEntry:
    entity_type: str
    entity_id: UUID
    operation: AuditOperation
    changed_by: UUID
    changed_fields: dict[str, Any]
    changed_at: datetime = field(default_factory=datetime.utcnow)


class AuditSink(Protocol):
    def write(self, entries: Sequence[AuditEntry]) -> None: ...


class SessionAuditSink:
    """Writes entries in a transaction of their own on ``db``."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def write(self, entries: Sequence[AuditEntry]) -> None:
        self.db.add_all(
            [
                AuditLog(
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    operation=entry.operation,
                    changed_by=entry.changed_by,
                    changed_at=entry.changed_at,
                    changed_fields=entry.changed_fields,
                )
                for entry in entries
            ]
        )
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise


class AuditTrail:
    """Collects entries during a unit of work and publishes them after commit.

    ``publish`` never raises: a failing sink is logged and the entries are
    dropped, so the already committed mutation stands.
    """

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink
        self._staged: list[AuditEntry] = []

    @property
    def staged(self) -> tuple[AuditEntry, ...]:
        return tuple(self._staged)

    def stage(self, entry: AuditEntry) -> None:
        self._staged.append(entry)

    def discard(self) -> None:
        self._staged.clear()

    def publish(self) -> None:
        entries, self._staged = tuple(self._staged), []
        if not entries:
            return
        try:
            self._sink.write(entries)
        except Exception:
            logger.exception(
                "Audit publication failed; entries dropped",
                extra={
                    "entity_ids": [str(entry.entity_id) for entry in entries],
                    "operations": [entry.operation.value for entry in entries],
                },
            )
