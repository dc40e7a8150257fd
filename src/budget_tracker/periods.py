"""Calendar-month periods used for aggregation and comparison."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, date, timedelta

from budget_tracker.errors import ValidationError


@dataclass(frozen=True)
class Period:
    """An inclusive date range ``[start, end]``."""

    start: date
    end: date

    @property
    def label(self) -> str:
        """``YYYY-MM`` of the first month in the range."""
        return f"{self.start.year:04d}-{self.start.month:02d}"


def _add_months(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    new_year, new_month = index // 12, index % 12 + 1
    if not MINYEAR <= new_year <= MAXYEAR:
        raise ValidationError(
            f"Month {new_year:04d}-{new_month:02d} is outside the supported years "
            f"{MINYEAR}-{MAXYEAR}."
        )
    return new_year, new_month


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year, 12, 31)
    return date(year, month + 1, 1) - timedelta(days=1)


def month_period(month: str) -> Period:
    """Return the calendar month named by a ``YYYY-MM`` string.

    Raises:
        ValidationError: If *month* is malformed or out of range.
    """
    if not re.fullmatch(r"\d{4}-\d{2}", month or ""):
        raise ValidationError(
            f"Invalid month format: {month!r}. Expected YYYY-MM (e.g. 2026-01)."
        )
    year, mon = (int(part) for part in month.split("-"))
    if mon < 1 or mon > 12:
        raise ValidationError(f"Invalid month: {month!r}. Month must be between 01 and 12.")
    if year < MINYEAR:
        raise ValidationError(f"Invalid month: {month!r}. Year must be {MINYEAR:04d} or later.")
    return Period(date(year, mon, 1), _month_end(year, mon))


def period_containing(day: date) -> Period:
    """Return the calendar month that contains *day*."""
    return Period(date(day.year, day.month, 1), _month_end(day.year, day.month))


def shift(period: Period, months: int) -> Period:
    """Return the calendar month *months* away from the start of *period*.

    Raises:
        ValidationError: If the result falls outside the years :class:`date` supports.
    """
    year, month = _add_months(period.start.year, period.start.month, months)
    return Period(date(year, month, 1), _month_end(year, month))


def trailing_window(period: Period, months: int) -> Period:
    """Return the *months* full calendar months immediately before *period*.

    The window is a single inclusive range ending the day before
    ``period.start``; the current period is never part of it.
    """
    if months < 1:
        raise ValueError("months must be at least 1")
    first = shift(period, -months)
    return Period(first.start, period.start - timedelta(days=1))
