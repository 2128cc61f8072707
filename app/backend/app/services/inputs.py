"""Lenient parsing of identifier and date fields received as raw strings."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID


def is_missing(value: object) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(value.strip())
    except ValueError:
        return None


def parse_date(value: str) -> date | None:
    """Accept ``YYYY-MM-DD`` or a full ISO timestamp (date part is kept)."""

    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None
