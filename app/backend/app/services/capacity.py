"""Daily capacity arithmetic over inclusive allocation date ranges."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from app.models.entities import Allocation

ZERO = Decimal("0.00")


@dataclass(frozen=True, slots=True)
class CapacitySpan:
    """Days on which a percentage counts against an employee's capacity."""

    start: date
    end: date | None
    percentage: Decimal

    def covers(self, day: date) -> bool:
        if day < self.start:
            return False
        return self.end is None or day <= self.end


def capacity_span(allocation: Allocation) -> CapacitySpan | None:
    """Span an allocation occupies, or ``None`` when it occupies no day.

    A transferred allocation shares its closing day with its successor; that
    day is counted once, on the successor.
    """

    end = allocation.end_date
    if allocation.transferred_to_id is not None and end is not None:
        end = end - timedelta(days=1)
        if end < allocation.start_date:
            return None
    return CapacitySpan(start=allocation.start_date, end=end, percentage=allocation.allocation_percentage)


def peak_load(spans: Iterable[CapacitySpan], *, window_start: date, window_end: date | None) -> Decimal:
    """Highest summed percentage on any single day of the window.

    The daily sum only rises where a span starts, so it is enough to sample
    the window start and every span start inside the window.
    """

    spans = list(spans)
    sample_days = {window_start}
    for span in spans:
        if span.start > window_start and (window_end is None or span.start <= window_end):
            sample_days.add(span.start)

    peak = ZERO
    for day in sample_days:
        load = sum((span.percentage for span in spans if span.covers(day)), ZERO)
        peak = max(peak, load)
    return peak

