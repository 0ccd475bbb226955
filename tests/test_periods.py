from datetime import date
from types import SimpleNamespace

import pandas as pd
import pytest

import ledger_insight.periods as periods
from ledger_insight.config import FiscalYear
from ledger_insight.errors import InputValidationError

FY_2025 = FiscalYear(start_date=date(2025, 1, 1), end_date=date(2025, 12, 31))


def test_filter_entries_by_period_inclusive_bounds() -> None:
    """filter_entries_by_period should keep entries with dates in [start, end]."""
    df = pd.DataFrame(
        {
            "date": pd.to_datetime(
                ["2025-01-01", "2025-02-15", "2025-03-10", "2025-04-01", "2025-05-01"]
            ),
            "code": ["58.01", "58.01", "66.01", "66.01", "58.01"],
            "credit": [10, 20, 0, 0, 30],
        }
    )

    p = periods.Period(
        start=date(2025, 2, 1),
        end=date(2025, 4, 1),
        label="Test period",
    )

    filtered = periods.filter_entries_by_period(df, p)

    assert len(filtered) == 3
    assert filtered["date"].min() == pd.Timestamp("2025-02-15")
    assert filtered["date"].max() == pd.Timestamp("2025-04-01")


def test_period_days_counts_both_ends() -> None:
    assert periods.month_period(2024, 2).days == 29
    assert periods.year_period(2025).days == 365


def test_validate_period_rejects_inverted_range() -> None:
    inverted = periods.Period(date(2025, 3, 1), date(2025, 2, 1))

    with pytest.raises(InputValidationError):
        periods.validate_period(inverted)

    # InputValidationError is also a ValueError for callers outside the package.
    with pytest.raises(ValueError):
        periods.preceding_period(inverted)


def test_month_and_quarter_periods_labels() -> None:
    march = periods.month_period(2025, 3)
    q4 = periods.quarter_period(2025, 4)

    assert (march.start, march.end, march.label) == (
        date(2025, 3, 1),
        date(2025, 3, 31),
        "2025-03",
    )
    assert (q4.start, q4.end, q4.label) == (
        date(2025, 10, 1),
        date(2025, 12, 31),
        "Q4 2025",
    )
    assert [q.label for q in periods.quarter_periods(2024)] == [
        "Q1 2024",
        "Q2 2024",
        "Q3 2024",
        "Q4 2024",
    ]

    with pytest.raises(InputValidationError):
        periods.month_period(2025, 13)


def test_add_months_clamps_day() -> None:
    assert periods.add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
    assert periods.add_months(date(2025, 3, 15), -12) == date(2024, 3, 15)
    assert periods.add_months(date(2025, 1, 1), -1) == date(2024, 12, 1)


def test_iter_months_touches_partial_months() -> None:
    months = periods.iter_months(date(2024, 11, 20), date(2025, 2, 3))
    labels = [p.label for p in months]

    assert labels == ["2024-11", "2024-12", "2025-01", "2025-02"]


def test_preceding_period_has_equal_length() -> None:
    """The comparison period ends the day before and spans the same days."""
    p = periods.Period(date(2025, 3, 1), date(2025, 3, 31), "March")

    before = periods.preceding_period(p)

    assert before.end == date(2025, 2, 28)
    assert before.start == date(2025, 1, 29)
    assert before.days == p.days


def test_same_period_previous_year_handles_leap_day() -> None:
    p = periods.Period(date(2024, 2, 1), date(2024, 2, 29))

    previous = periods.same_period_previous_year(p)

    assert previous.start == date(2023, 2, 1)
    assert previous.end == date(2023, 2, 28)


def test_determine_period_priority(monkeypatch) -> None:
    """--period wins over --from-date/--to-date, which win over the FY."""
    monkeypatch.setattr(periods, "_today", lambda: date(2025, 6, 15))

    ytd = periods.determine_period_from_args(
        SimpleNamespace(period="ytd", from_date="2025-02-01", to_date=None), FY_2025
    )
    assert (ytd.start, ytd.end) == (date(2025, 1, 1), date(2025, 6, 15))

    custom = periods.determine_period_from_args(
        SimpleNamespace(period=None, from_date="2025-02-01", to_date=None), FY_2025
    )
    assert (custom.start, custom.end) == (date(2025, 2, 1), date(2025, 12, 31))

    default = periods.determine_period_from_args(SimpleNamespace(), FY_2025)
    assert (default.start, default.end) == (date(2025, 1, 1), date(2025, 12, 31))


def test_last_month_and_mtd(monkeypatch) -> None:
    monkeypatch.setattr(periods, "_today", lambda: date(2025, 6, 15))

    last_month = periods.period_last_month(FY_2025)
    mtd = periods.period_mtd(FY_2025)
    last_fy = periods.period_last_fy(FY_2025)

    assert (last_month.start, last_month.end) == (date(2025, 5, 1), date(2025, 5, 31))
    assert (mtd.start, mtd.end) == (date(2025, 6, 1), date(2025, 6, 15))
    assert (last_fy.start, last_fy.end) == (date(2024, 1, 1), date(2024, 12, 31))


def test_determine_period_rejects_inverted_custom_range() -> None:
    args = SimpleNamespace(period=None, from_date="2025-05-01", to_date="2025-04-01")

    with pytest.raises(InputValidationError):
        periods.determine_period_from_args(args, FY_2025)
