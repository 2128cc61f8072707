"""Page/limit resolution shared by list endpoints."""

from __future__ import annotations

from dataclasses import dataclass

from app.core.config import get_settings


@dataclass(frozen=True, slots=True)
class PageRequest:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def resolve_page(page: int | None, limit: int | None) -> PageRequest:
    """Apply defaults and clamp ``limit`` to the configured maximum."""

    settings = get_settings()
    resolved_limit = limit or settings.pagination_default_limit
    return PageRequest(
        page=max(page or 1, 1),
        limit=max(min(resolved_limit, settings.pagination_max_limit), 1),
    )
