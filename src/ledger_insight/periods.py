# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Period helpers for Ledger Insight.

This module defines a Period value object (inclusive on both ends) and
helpers to derive:
- reporting periods from the fiscal year and CLI arguments (fiscal year,
  YTD, MTD, last month, last fiscal year, custom range),
- calendar months and quarters,
- comparison periods (preceding period of equal length, same period of
  the previous year).
"""

from calendar import monthrange
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

import pandas as pd

from .config import FiscalYear
from .errors import InputValidationError


@dataclass(frozen=True)
class Period:
    """Represents a reporting period with a human-readable label."""

    start: date
    end: date
    label: str = ""

    @property
    def days(self) -> int:
        """Number of calendar days, both ends included."""
        return (self.end - self.start).days + 1


def validate_period(period: Period) -> Period:
    """Return the period unchanged, or raise if it is inverted."""
    if period.end < period.start:
        raise InputValidationError(
            f"Invalid period {period.label or ''}: end date {period.end} "
            f"is before start date {period.start}."
        )
    return period


def _today() -> date:
    """Return today's date as a date object (isolated for easier testing)."""
    return datetime.today().date()


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def month_period(year: int, month: int) -> Period:
    """Full calendar month."""
    if not 1 <= month <= 12:
        raise InputValidationError(f"Invalid month number: {month}")
    last_day = monthrange(year, month)[1]
    return Period(
        start=date(year, month, 1),
        end=date(year, month, last_day),
        label=f"{year}-{month:02d}",
    )


def quarter_period(year: int, quarter: int) -> Period:
    """Full calendar quarter (Q1 = January to March)."""
    if not 1 <= quarter <= 4:
        raise InputValidationError(f"Invalid quarter number: {quarter}")
    first_month = 3 * (quarter - 1) + 1
    start = date(year, first_month, 1)
    end = month_period(year, first_month + 2).end
    return Period(start=start, end=end, label=f"Q{quarter} {year}")


def quarter_periods(year: int) -> list[Period]:
    return [quarter_period(year, q) for q in range(1, 5)]


def year_period(year: int) -> Period:
    return Period(start=date(year, 1, 1), end=date(year, 12, 31), label=str(year))


def add_months(d: date, months: int) -> date:
    """Shift a date by a number of months, clamping the day to the month end."""
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    return date(year, month, min(d.day, monthrange(year, month)[1]))


def iter_months(start: date, end: date) -> Iterator[Period]:
    """Yield the calendar months touched by [start, end], in order."""
    current = date(start.year, start.month, 1)
    while current <= end:
        yield month_period(current.year, current.month)
        current = add_months(current, 1)


def preceding_period(period: Period) -> Period:
    """
    Period of equal length ending the day before ``period`` starts.

    The comparison end is start - 1 day and the comparison start is that end
    minus (end - start), so both periods have the same number of days.
    """
    validate_period(period)
    end = period.start - timedelta(days=1)
    start = end - (period.end - period.start)
    return Period(start=start, end=end, label=f"Before {period.label}".strip())


def same_period_previous_year(period: Period) -> Period:
    """Same calendar window one year earlier (Feb-29 clamps to Feb-28)."""
    return Period(
        start=add_months(period.start, -12),
        end=add_months(period.end, -12),
        label=f"{period.label} (previous year)".strip(),
    )


# ---------------------------------------------------------------------------
# Fiscal presets
# ---------------------------------------------------------------------------


def period_fy(fy: FiscalYear) -> Period:
    """Full current fiscal year."""
    return Period(
        start=fy.start_date,
        end=fy.end_date,
        label=f"Fiscal year {fy.start_date.year}",
    )


def period_ytd(fy: FiscalYear) -> Period:
    """Year-to-date within the fiscal year."""
    today = _today()
    end = min(max(today, fy.start_date), fy.end_date)
    return Period(start=fy.start_date, end=end, label="Year to date")


def period_mtd(fy: FiscalYear) -> Period:
    """Month-to-date within the fiscal year."""
    today = _today()

    # Outside the fiscal year: fall back to the whole fiscal year.
    if today < fy.start_date or today > fy.end_date:
        return period_fy(fy)

    return Period(start=today.replace(day=1), end=today, label="Month to date")


def period_last_month(fy: FiscalYear) -> Period:
    """Full previous calendar month, clamped to the fiscal year if needed."""
    previous = add_months(_today().replace(day=1), -1)
    month = month_period(previous.year, previous.month)

    if month.end < fy.start_date or month.start > fy.end_date:
        return period_fy(fy)

    return Period(
        start=max(month.start, fy.start_date),
        end=min(month.end, fy.end_date),
        label="Last month",
    )


def period_last_fy(fy: FiscalYear) -> Period:
    """Previous fiscal year, with the same boundaries shifted by one year."""
    start = add_months(fy.start_date, -12)
    end = add_months(fy.end_date, -12)
    return Period(start=start, end=end, label=f"Previous fiscal year ({start.year})")


def determine_period_from_args(args, fy: FiscalYear) -> Period:
    """
    Determine the reporting period to use based on CLI args and the fiscal year.

    Priority (highest to lowest):

        1. args.period (fy, ytd, mtd, last-month, last-fy)
        2. args.from_date / args.to_date (custom period)
        3. fiscal year by default
    """
    if getattr(args, "period", None):
        p = args.period
        if p == "fy":
            return period_fy(fy)
        if p == "ytd":
            return period_ytd(fy)
        if p == "mtd":
            return period_mtd(fy)
        if p == "last-month":
            return period_last_month(fy)
        if p == "last-fy":
            return period_last_fy(fy)
        raise ValueError(f"Unknown period: {p!r}")

    from_raw: Optional[str] = getattr(args, "from_date", None)
    to_raw: Optional[str] = getattr(args, "to_date", None)

    if from_raw or to_raw:
        start = date.fromisoformat(from_raw) if from_raw else fy.start_date
        end = date.fromisoformat(to_raw) if to_raw else fy.end_date
        return validate_period(
            Period(start=start, end=end, label=f"Custom period ({start} → {end})")
        )

    return period_fy(fy)


def filter_entries_by_period(entries: pd.DataFrame, period: Period) -> pd.DataFrame:
    """
    Filter a ledger DataFrame to keep only entries within the period.

    The ``entries`` DataFrame is expected to contain a 'date' column of type
    datetime64[ns] (as produced by ``db.scan_entries``).
    """
    mask = (entries["date"] >= pd.Timestamp(period.start)) & (
        entries["date"] <= pd.Timestamp(period.end)
    )
    return entries.loc[mask].copy()
