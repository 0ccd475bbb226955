# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Growth analysis for Ledger Insight.

This module builds time series from the ledger and derives growth figures:

- ``monthly_series``: one row per calendar month with revenue, costs,
  margin and transaction counts, plus month-over-month and year-over-year
  deltas;
- ``quarterly_series`` / ``annual_series``: the monthly rows summed per
  quarter / year, with ratios and deltas recomputed at that granularity;
- ``compute_cagr``: compound growth rate between the first month with
  positive revenue and the last month of a series;
- ``growth_indices``: all of the above for a rolling window;
- ``seasonality``: monthly and quarterly shares of an annual total and a
  seasonality index.

Percentage deltas follow one convention everywhere (``growth_delta``): when
the comparison value is strictly positive the delta is the usual relative
change; otherwise it is 100 if the current value is positive, else 0.

Monthly figures come from grouped aggregator queries (one query per
measure), never from per-month loops over the store.
"""

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

import pandas as pd

from . import categories as cat
from .aggregator import SignExpr
from .context import AnalyticsContext
from .errors import LedgerInsightError
from .periods import Period, add_months, iter_months, validate_period

logger = logging.getLogger(__name__)

MONTHLY_COLUMNS: list[str] = [
    "month",
    "revenue",
    "costs",
    "margin",
    "sales_transactions",
    "purchase_transactions",
    "avg_transaction_value",
    "margin_pct",
    "revenue_mom",
    "costs_mom",
    "margin_mom",
    "transactions_mom",
    "revenue_yoy",
]

INSUFFICIENT_DATA = "insufficient data"


# ---------------------------------------------------------------------------
# Deltas
# ---------------------------------------------------------------------------


def growth_delta(current: float, previous: Optional[float]) -> float:
    """
    Percentage change with the growth-from-nothing convention.

    (current - previous) / previous × 100 when previous > 0; otherwise 100
    if current > 0, else 0.
    """
    if previous is not None and previous > 0:
        return (current - previous) / previous * 100
    return 100.0 if current > 0 else 0.0


def margin_delta(current: float, previous: Optional[float]) -> float:
    """
    Percentage change of a value that may be negative (e.g. a margin).

    The change is relative to |previous|. Without a comparison value the
    delta is 100, -100 or 0 depending on the sign of ``current``.
    """
    if previous is not None and previous != 0:
        return (current - previous) / abs(previous) * 100
    if current > 0:
        return 100.0
    if current < 0:
        return -100.0
    return 0.0


def _deltas(values: pd.Series, lag: int = 1, func=growth_delta) -> list[float]:
    out: list[float] = []
    items = values.tolist()
    for i, value in enumerate(items):
        previous = items[i - lag] if i >= lag else None
        out.append(round(func(value, previous), 2))
    return out


# ---------------------------------------------------------------------------
# Series
# ---------------------------------------------------------------------------


def _empty_monthly() -> pd.DataFrame:
    return pd.DataFrame(columns=MONTHLY_COLUMNS)


def _monthly_frame(ctx: AnalyticsContext, history: Period) -> pd.DataFrame:
    months = [p.label for p in iter_months(history.start, history.end)]
    agg = ctx.aggregator
    revenue_pred = ctx.predicate(*cat.OPERATING_REVENUE)
    cost_pred = ctx.predicate(*cat.OPERATING_COST_SERIES)

    revenue = agg.monthly(revenue_pred, history, SignExpr.CREDIT_MINUS_DEBIT)
    costs = agg.monthly(cost_pred, history, SignExpr.DEBIT_MINUS_CREDIT)
    sales_tx = agg.monthly_count_distinct(revenue_pred, history, "protocol")
    purchase_tx = agg.monthly_count_distinct(cost_pred, history, "protocol")

    df = pd.DataFrame({"month": months})
    df["revenue"] = revenue.reindex(months, fill_value=0.0).to_numpy(dtype=float)
    df["costs"] = costs.reindex(months, fill_value=0.0).to_numpy(dtype=float)
    df["margin"] = df["revenue"] - df["costs"]
    df["sales_transactions"] = sales_tx.reindex(months, fill_value=0).to_numpy(
        dtype=int
    )
    df["purchase_transactions"] = purchase_tx.reindex(months, fill_value=0).to_numpy(
        dtype=int
    )
    df["has_revenue_rows"] = [m in revenue.index for m in months]
    return df


def _add_ratios(df: pd.DataFrame) -> pd.DataFrame:
    tx = df["sales_transactions"]
    df["avg_transaction_value"] = [
        round(r / t, 2) if t > 0 else 0.0 for r, t in zip(df["revenue"], tx)
    ]
    df["margin_pct"] = [
        round(m / r * 100, 2) if r > 0 else 0.0
        for m, r in zip(df["margin"], df["revenue"])
    ]
    return df


def monthly_series(ctx: AnalyticsContext, start: date, end: date) -> pd.DataFrame:
    """
    Monthly revenue / cost / margin series over [start, end].

    Args:
        ctx: Analytics context.
        start: Any date of the first month of the window.
        end: Last date of the window.

    Returns:
        A DataFrame with the columns of ``MONTHLY_COLUMNS``, one row per
        calendar month. ``revenue_yoy`` is None when the ledger has no
        revenue rows 12 months earlier. An empty DataFrame is returned (and
        the error logged) if the window is invalid or the store fails.
    """
    try:
        window = validate_period(Period(date(start.year, start.month, 1), end))
        history = Period(add_months(window.start, -12), window.end)
        df = _monthly_frame(ctx, history)
    except LedgerInsightError as exc:
        logger.error("monthly_series failed for %s → %s: %s", start, end, exc)
        return _empty_monthly()

    df = _add_ratios(df)
    df["revenue_mom"] = _deltas(df["revenue"])
    df["costs_mom"] = _deltas(df["costs"])
    df["margin_mom"] = _deltas(df["margin"], func=margin_delta)
    df["transactions_mom"] = _deltas(df["sales_transactions"])

    yoy: list[Optional[float]] = []
    for i, value in enumerate(df["revenue"]):
        if i >= 12 and df["has_revenue_rows"].iloc[i - 12]:
            yoy.append(round(growth_delta(value, df["revenue"].iloc[i - 12]), 2))
        else:
            yoy.append(None)
    df["revenue_yoy"] = pd.Series(yoy, dtype=object)

    # The 12 leading months only feed the deltas.
    df = df.iloc[12:].reset_index(drop=True)
    for col in ("revenue", "costs", "margin"):
        df[col] = df[col].round(2)
    return df[MONTHLY_COLUMNS]


def _quarter_label(month: str) -> str:
    year, mon = month.split("-")
    return f"Q{(int(mon) - 1) // 3 + 1} {year}"


def _rollup(monthly: pd.DataFrame, key: str, keys: list[str]) -> pd.DataFrame:
    sums = ["revenue", "costs", "margin", "sales_transactions", "purchase_transactions"]
    if monthly.empty:
        return pd.DataFrame(
            columns=[key, *sums, "avg_transaction_value", "margin_pct"]
            + ["revenue_growth", "margin_growth", "revenue_share_pct"]
        )

    df = monthly.assign(**{key: keys}).groupby(key, sort=False)[sums].sum()
    df = _add_ratios(df.reset_index())
    df["revenue_growth"] = _deltas(df["revenue"])
    df["margin_growth"] = _deltas(df["margin"], func=margin_delta)
    total = df["revenue"].sum()
    df["revenue_share_pct"] = [
        round(r / total * 100, 2) if total > 0 else 0.0 for r in df["revenue"]
    ]
    for col in ("revenue", "costs", "margin"):
        df[col] = df[col].round(2)
    return df


def quarterly_series(monthly: pd.DataFrame) -> pd.DataFrame:
    """Sum a monthly series per calendar quarter ('Qn YYYY')."""
    keys = [_quarter_label(m) for m in monthly.get("month", [])]
    return _rollup(monthly, "quarter", keys)


def annual_series(monthly: pd.DataFrame) -> pd.DataFrame:
    """Sum a monthly series per calendar year."""
    keys = [str(m)[:4] for m in monthly.get("month", [])]
    return _rollup(monthly, "year", keys)


# ---------------------------------------------------------------------------
# CAGR
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CagrResult:
    """
    Compound growth rate over a series.

    ``value`` is None (and ``note`` set to 'insufficient data') when fewer
    than one period elapsed between the anchor and the last point, or when
    the last value is not positive.
    """

    value: Optional[float]
    periods: int
    start_label: Optional[str] = None
    end_label: Optional[str] = None
    note: Optional[str] = None


def compute_cagr(series: pd.Series) -> CagrResult:
    """
    CAGR of a series, anchored at its first strictly positive value.

    CAGR = ((last / first) ** (1 / N) - 1) × 100, where N is the number of
    elapsed periods between the anchor and the last point.
    """
    values = [float(v) for v in series.tolist()]
    labels = [str(i) for i in series.index]
    anchor = next((i for i, v in enumerate(values) if v > 0), None)
    if anchor is None:
        return CagrResult(value=None, periods=0, note=INSUFFICIENT_DATA)

    n = len(values) - 1 - anchor
    first, last = values[anchor], values[-1]
    if n < 1 or last <= 0:
        return CagrResult(
            value=None,
            periods=max(n, 0),
            start_label=labels[anchor],
            end_label=labels[-1],
            note=INSUFFICIENT_DATA,
        )

    value = ((last / first) ** (1 / n) - 1) * 100
    return CagrResult(
        value=round(value, 2),
        periods=n,
        start_label=labels[anchor],
        end_label=labels[-1],
    )


# ---------------------------------------------------------------------------
# Growth report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GrowthReport:
    """Growth series and indicators of a rolling window."""

    start: date
    end: date
    monthly: pd.DataFrame
    quarterly: pd.DataFrame
    annual: pd.DataFrame
    revenue_cagr: CagrResult
    margin_cagr: CagrResult
    avg_revenue_mom: float = 0.0
    avg_margin_mom: float = 0.0
    last_quarter_trend: float = 0.0
    initial_margin_pct: float = 0.0
    final_margin_pct: float = 0.0
    margin_pct_change: float = 0.0
    error: Optional[str] = None


def _mean(values) -> float:
    values = [float(v) for v in values]
    return round(sum(values) / len(values), 2) if values else 0.0


def growth_indices(
    ctx: AnalyticsContext, end: date, months: int = 12
) -> GrowthReport:
    """
    Growth indicators over the ``months`` calendar months ending at ``end``.

    The report carries the monthly, quarterly and annual series, revenue
    and margin CAGR, the average month-over-month changes, the trend of the
    last three months and the change of margin % between the first and the
    last month.
    """
    start = add_months(date(end.year, end.month, 1), -(max(months, 1) - 1))
    monthly = monthly_series(ctx, start, end)
    if monthly.empty:
        empty = CagrResult(value=None, periods=0, note=INSUFFICIENT_DATA)
        return GrowthReport(
            start=start,
            end=end,
            monthly=monthly,
            quarterly=quarterly_series(monthly),
            annual=annual_series(monthly),
            revenue_cagr=empty,
            margin_cagr=empty,
            error=f"No monthly data between {start} and {end}.",
        )

    indexed = monthly.set_index("month")
    initial = float(monthly["margin_pct"].iloc[0])
    final = float(monthly["margin_pct"].iloc[-1])
    return GrowthReport(
        start=start,
        end=end,
        monthly=monthly,
        quarterly=quarterly_series(monthly),
        annual=annual_series(monthly),
        revenue_cagr=compute_cagr(indexed["revenue"]),
        margin_cagr=compute_cagr(indexed["margin"]),
        avg_revenue_mom=_mean(monthly["revenue_mom"]),
        avg_margin_mom=_mean(monthly["margin_mom"]),
        last_quarter_trend=_mean(monthly["revenue_mom"].tail(3)),
        initial_margin_pct=initial,
        final_margin_pct=final,
        margin_pct_change=round(final - initial, 2),
    )


# ---------------------------------------------------------------------------
# Seasonality
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SeasonalityReport:
    """
    Seasonality of one calendar year.

    Attributes
    ----------
    months:
        One row per month: month, month_name, revenue, costs,
        sales_transactions, purchase_transactions, previous_revenue,
        revenue_variation_pct, revenue_share_pct, costs_share_pct.
    quarters:
        One row per quarter: quarter, revenue, costs, revenue_share_pct.
    seasonality_index:
        Population standard deviation of the monthly revenue shares.
    trough_month, trough_quarter:
        Month and quarter with the lowest strictly positive revenue.
    peak_trough_ratio:
        Revenue of the peak month / revenue of the trough month.
    """

    year: int
    months: pd.DataFrame
    quarters: pd.DataFrame
    total_revenue: float = 0.0
    total_costs: float = 0.0
    peak_month: Optional[str] = None
    trough_month: Optional[str] = None
    peak_quarter: Optional[str] = None
    trough_quarter: Optional[str] = None
    seasonality_index: float = 0.0
    peak_trough_ratio: float = 0.0
    error: Optional[str] = None


def _monthly_values(series: pd.Series, months: list[str]) -> list[float]:
    return series.reindex(months, fill_value=0).to_numpy(dtype=float).tolist()


def seasonality(ctx: AnalyticsContext, year: int) -> SeasonalityReport:
    """
    Seasonality analysis of a calendar year.

    Transactions are counted as distinct booking dates on receivables and
    cash-receipt accounts (sales) and on payables (purchases). The index is
    0 for a perfectly flat year and grows with concentration.
    """
    current = Period(date(year, 1, 1), date(year, 12, 31), label=str(year))
    previous = Period(date(year - 1, 1, 1), date(year - 1, 12, 31))
    labels = [p.label for p in iter_months(current.start, current.end)]
    prev_labels = [p.label for p in iter_months(previous.start, previous.end)]

    agg = ctx.aggregator
    revenue_pred = ctx.predicate(*cat.OPERATING_REVENUE)
    try:
        revenue = _monthly_values(
            agg.monthly(revenue_pred, current, SignExpr.CREDIT_MINUS_DEBIT), labels
        )
        costs = _monthly_values(
            agg.monthly(
                ctx.predicate(*cat.OPERATING_COST_SERIES),
                current,
                SignExpr.DEBIT_MINUS_CREDIT,
            ),
            labels,
        )
        previous_revenue = _monthly_values(
            agg.monthly(revenue_pred, previous, SignExpr.CREDIT_MINUS_DEBIT),
            prev_labels,
        )
        sales_tx = _monthly_values(
            agg.monthly_count_distinct(
                ctx.predicate(cat.TRADE_RECEIVABLES, cat.CASH_RECEIPTS),
                current,
                "date",
            ),
            labels,
        )
        purchase_tx = _monthly_values(
            agg.monthly_count_distinct(
                ctx.predicate(cat.TRADE_PAYABLES), current, "date"
            ),
            labels,
        )
    except LedgerInsightError as exc:
        logger.error("seasonality failed for %s: %s", year, exc)
        return SeasonalityReport(
            year=year, months=pd.DataFrame(), quarters=pd.DataFrame(), error=str(exc)
        )

    total_revenue = sum(revenue)
    total_costs = sum(costs)
    revenue_share = [
        r / total_revenue * 100 if total_revenue > 0 else 0.0 for r in revenue
    ]
    costs_share = [c / total_costs * 100 if total_costs > 0 else 0.0 for c in costs]

    months = pd.DataFrame(
        {
            "month": list(range(1, 13)),
            "month_name": [calendar.month_name[m] for m in range(1, 13)],
            "revenue": [round(v, 2) for v in revenue],
            "costs": [round(v, 2) for v in costs],
            "sales_transactions": [int(v) for v in sales_tx],
            "purchase_transactions": [int(v) for v in purchase_tx],
            "previous_revenue": [round(v, 2) for v in previous_revenue],
            "revenue_variation_pct": [
                round(growth_delta(r, p), 2) for r, p in zip(revenue, previous_revenue)
            ],
            "revenue_share_pct": [round(s, 2) for s in revenue_share],
            "costs_share_pct": [round(s, 2) for s in costs_share],
        }
    )

    quarter_revenue = [sum(revenue[3 * q : 3 * q + 3]) for q in range(4)]
    quarters = pd.DataFrame(
        {
            "quarter": [f"Q{q}" for q in range(1, 5)],
            "revenue": [round(v, 2) for v in quarter_revenue],
            "costs": [round(sum(costs[3 * q : 3 * q + 3]), 2) for q in range(4)],
            "revenue_share_pct": [
                round(v / total_revenue * 100, 2) if total_revenue > 0 else 0.0
                for v in quarter_revenue
            ],
        }
    )

    if total_revenue <= 0:
        logger.info("No revenue in %s: seasonality not computable", year)
        return SeasonalityReport(
            year=year,
            months=months,
            quarters=quarters,
            total_costs=round(total_costs, 2),
        )

    peak = max(range(12), key=lambda i: revenue_share[i])
    # Months and quarters without revenue are not troughs.
    trough = min(
        (i for i in range(12) if revenue[i] > 0), key=lambda i: revenue_share[i]
    )
    peak_q = max(range(4), key=lambda i: quarter_revenue[i])
    trough_q = min(
        (i for i in range(4) if quarter_revenue[i] > 0),
        key=lambda i: quarter_revenue[i],
    )
    index = float(pd.Series(revenue_share).std(ddof=0))
    ratio = revenue[peak] / revenue[trough]

    return SeasonalityReport(
        year=year,
        months=months,
        quarters=quarters,
        total_revenue=round(total_revenue, 2),
        total_costs=round(total_costs, 2),
        peak_month=calendar.month_name[peak + 1],
        trough_month=calendar.month_name[trough + 1],
        peak_quarter=f"Q{peak_q + 1}",
        trough_quarter=f"Q{trough_q + 1}",
        seasonality_index=round(index, 2),
        peak_trough_ratio=round(ratio, 2),
    )
