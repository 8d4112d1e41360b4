# Overview: Composable, parameterized query predicates shared by the listing services.

"""
Listing filters are built as lists of SQLAlchemy predicates and applied in
one place. Caller-supplied values only ever travel as bound parameters.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from ..errors import ValidationError
from ..time_utils import DATE_RANGE_PRESETS, day_bounds, preset_window_start


@dataclass(frozen=True)
class DateWindow:
    """Either a named preset or an inclusive custom [start_date, end_date]."""
    preset: str | None = None
    start_date: date | None = None
    end_date: date | None = None

    def predicates(self, column) -> list:
        if self.preset:
            start = preset_window_start(self.preset)
            return [column >= start] if start is not None else []
        if self.start_date and self.end_date:
            lower, upper = day_bounds(self.start_date, self.end_date)
            return [column >= lower, column < upper]
        return []


def build_date_window(preset: str | None, start_date: date | None, end_date: date | None) -> DateWindow:
    """
    Validate date filter inputs.

    A preset wins over a custom range, matching the listing endpoints.
    Unknown presets are rejected rather than silently ignored.
    """
    if preset:
        if preset not in DATE_RANGE_PRESETS:
            raise ValidationError(
                f"date_range must be one of: {', '.join(DATE_RANGE_PRESETS)}"
            )
        return DateWindow(preset=preset)
    if start_date and end_date:
        if end_date < start_date:
            raise ValidationError("end_date must not be before start_date")
        return DateWindow(start_date=start_date, end_date=end_date)
    return DateWindow()


def apply_predicates(query, predicates):
    """Apply a list of predicates with AND semantics."""
    for predicate in predicates:
        query = query.filter(predicate)
    return query
