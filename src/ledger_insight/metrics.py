# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Financial metrics computed from the ledger for Ledger Insight.

Every metric is a pure function of an AnalyticsContext and a Period. It
composes one or more Period Aggregator calls; nothing is mutated and the
only caching is the aggregator's request-scoped cache.

1. Flow metrics
   ------------
   Revenue and cost totals (and their sub-categories) are summed over the
   period with opening and closing carry-forward rows excluded. Revenue
   accounts are read credit - debit, cost accounts debit - credit, so that
   both come out positive for a well-formed ledger. A negative result is
   logged as a probable sign error and returned as is.

   The direct / indirect cost split uses the cost-nature axis of the
   account-pattern registry, not category membership.

2. Balance metrics
   ---------------
   Capital, receivables, payables, liquidity and inventory are balances:
   they are aggregated cumulatively up to the period end, excluding only
   closing rows.

3. Ratios
   ------
   Margins, break-even, ROI / ROE / ROS, liquidity ratios, leverage, overhead,
   DSO / DPO. Zero or negative denominators return 0 and are logged; they
   never raise.

4. Breakdowns and reports
   ----------------------
   Revenue centers and cost centers (with a consistency check against the
   totals), the operating-efficiency report (current vs comparison period)
   and ``compute_kpis`` which gathers every ratio into KpiResult objects.
   Custom KPIs can be added through a TOML rules file whose formulas are
   evaluated by a restricted AST evaluator over the computed values.

Error handling
--------------
Public functions catch LedgerInsightError (invalid period, store failure),
log it and return 0.0 (or a structured result whose ``error`` field is
set). Monetary results are rounded to 2 decimals once, at the end; the
private helpers work on unrounded values.
"""

import ast
import functools
import logging
import operator
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Optional

from . import categories as cat
from .aggregator import SignExpr
from .context import AnalyticsContext
from .errors import LedgerInsightError
from .growth import growth_delta
from .periods import Period, preceding_period, validate_period

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30.44

# Denominators with an absolute value below this are treated as zero.
LIABILITIES_EPSILON = 0.01

KPI_CATEGORIES: tuple[str, ...] = (
    "profitability",
    "liquidity",
    "leverage",
    "efficiency",
    "custom",
)


@dataclass(frozen=True)
class KpiResult:
    """
    Computed KPI as returned by ``compute_kpis``.

    Attributes:
        key: Internal identifier (e.g. 'gross_margin_pct').
        label: Human-readable label for display.
        value: Numeric value, or None if a custom formula is not computable.
        unit: Unit hint ('amount', 'percent', 'ratio', 'days').
        category: 'profitability', 'liquidity', 'leverage', 'efficiency'
            or 'custom'.
    """

    key: str
    label: str
    value: Optional[float]
    unit: str
    category: str


# ---------------------------------------------------------------------------
# Guards and raw aggregation helpers
# ---------------------------------------------------------------------------


def _describe(period: Any) -> str:
    if isinstance(period, Period):
        return f"{period.start} → {period.end}"
    return str(period)


def kpi(func):
    """Catch analytics errors, log them and return 0.0; round the result."""

    @functools.wraps(func)
    def wrapper(ctx: AnalyticsContext, period: Period, *args, **kwargs) -> float:
        try:
            value = func(ctx, period, *args, **kwargs)
        except LedgerInsightError as exc:
            logger.error("%s failed for %s: %s", func.__name__, _describe(period), exc)
            return 0.0
        return round(float(value), 2)

    return wrapper


def _ratio(numerator: float, denominator: float, name: str) -> float:
    """numerator / denominator, or 0.0 (logged) when denominator <= 0."""
    if denominator <= 0:
        logger.debug("%s: denominator %.2f <= 0, returning 0", name, denominator)
        return 0.0
    return numerator / denominator


def _checked(value: float, name: str) -> float:
    if value < 0:
        logger.warning("%s is negative (%.2f): check account signs", name, value)
    return value


def _flow(ctx: AnalyticsContext, period: Period, names, sign: SignExpr) -> float:
    return ctx.aggregator.aggregate(ctx.predicate(*names), period, sign)


def _credit_flow(ctx: AnalyticsContext, period: Period, *names: str) -> float:
    return _flow(ctx, period, names, SignExpr.CREDIT_MINUS_DEBIT)


def _debit_flow(ctx: AnalyticsContext, period: Period, *names: str) -> float:
    return _flow(ctx, period, names, SignExpr.DEBIT_MINUS_CREDIT)


def _nature_flow(ctx: AnalyticsContext, period: Period, nature: str) -> float:
    return ctx.aggregator.aggregate(
        ctx.nature(nature), period, SignExpr.DEBIT_MINUS_CREDIT
    )


def _balance(
    ctx: AnalyticsContext,
    end: date,
    names,
    sign: SignExpr,
    since: Optional[date] = None,
) -> float:
    return ctx.aggregator.cumulative(ctx.predicate(*names), end, sign, since=since)


# ---------------------------------------------------------------------------
# Raw figures (unrounded)
# ---------------------------------------------------------------------------


def _revenue(ctx: AnalyticsContext, period: Period) -> float:
    return _checked(_credit_flow(ctx, period, *cat.REVENUE), "revenue")


def _operating_revenue(ctx: AnalyticsContext, period: Period) -> float:
    return _checked(_credit_flow(ctx, period, *cat.OPERATING_REVENUE), "revenue")


def _total_costs(ctx: AnalyticsContext, period: Period) -> float:
    return _checked(_debit_flow(ctx, period, *cat.TOTAL_COST), "total costs")


def _direct_costs(ctx: AnalyticsContext, period: Period) -> float:
    return _nature_flow(ctx, period, cat.DIRECT)


def _indirect_costs(ctx: AnalyticsContext, period: Period) -> float:
    return _nature_flow(ctx, period, cat.INDIRECT)


def _personnel_costs(ctx: AnalyticsContext, period: Period) -> float:
    return _debit_flow(ctx, period, cat.PERSONNEL_COSTS, cat.SOCIAL_CHARGES)


def _operating_costs(ctx: AnalyticsContext, period: Period) -> float:
    return (
        _direct_costs(ctx, period)
        + _indirect_costs(ctx, period)
        + _personnel_costs(ctx, period)
    )


def _financial_charges(ctx: AnalyticsContext, period: Period) -> float:
    return _flow(
        ctx, period, (cat.FINANCIAL_CHARGES,), SignExpr.ABS_DEBIT_MINUS_CREDIT
    )


def _opening_inventory(ctx: AnalyticsContext, period: Period) -> float:
    since = date(period.start.year, 1, 1)
    return _balance(
        ctx, period.start, (cat.OPENING_INVENTORY,), SignExpr.DEBIT_MINUS_CREDIT, since
    )


def _closing_inventory(ctx: AnalyticsContext, period: Period) -> float:
    since = date(period.end.year, 1, 1)
    return _balance(
        ctx, period.end, (cat.CLOSING_INVENTORY,), SignExpr.CREDIT_MINUS_DEBIT, since
    )


def _cogs(ctx: AnalyticsContext, period: Period) -> float:
    return (
        _opening_inventory(ctx, period)
        + _direct_costs(ctx, period)
        - _closing_inventory(ctx, period)
    )


def _pre_tax_result(ctx: AnalyticsContext, period: Period) -> float:
    """Revenue minus all costs except financial charges and taxes."""
    non_operating = _debit_flow(ctx, period, cat.FINANCIAL_CHARGES, cat.TAXES)
    return _revenue(ctx, period) - (_total_costs(ctx, period) - non_operating)


def _net_income(ctx: AnalyticsContext, period: Period) -> float:
    margin = _pre_tax_result(ctx, period)
    charges = _financial_charges(ctx, period)
    tax = max(0.0, (margin - charges) * ctx.settings.tax_rate)
    return margin - charges - tax


def _share_capital(ctx: AnalyticsContext, period: Period) -> float:
    ledger_capital = _balance(
        ctx, period.end, (cat.SHARE_CAPITAL,), SignExpr.CREDIT_MINUS_DEBIT
    )
    if ledger_capital > 0:
        return ledger_capital
    logger.debug(
        "No positive share capital in the ledger for tenant %s, using %.2f",
        ctx.tenant,
        ctx.company.share_capital,
    )
    return float(ctx.company.share_capital)


def _equity(ctx: AnalyticsContext, period: Period) -> float:
    reserves = _balance(
        ctx, period.end, (cat.EQUITY_RESERVES,), SignExpr.CREDIT_MINUS_DEBIT
    )
    return _share_capital(ctx, period) + reserves


def _current_liabilities(ctx: AnalyticsContext, period: Period) -> float:
    return _balance(
        ctx, period.end, cat.CURRENT_LIABILITIES, SignExpr.CREDIT_MINUS_DEBIT
    )


# ---------------------------------------------------------------------------
# Revenue
# ---------------------------------------------------------------------------


@kpi
def revenue_total(ctx: AnalyticsContext, period: Period) -> float:
    """Total revenue: sales, services, cash receipts, gains and extraordinary."""
    return _revenue(ctx, period)


@kpi
def sales_revenue(ctx: AnalyticsContext, period: Period) -> float:
    return _credit_flow(ctx, period, cat.SALES_REVENUE)


@kpi
def service_revenue(ctx: AnalyticsContext, period: Period) -> float:
    return _credit_flow(ctx, period, cat.SERVICE_REVENUE)


@kpi
def cash_receipts(ctx: AnalyticsContext, period: Period) -> float:
    return _credit_flow(ctx, period, cat.CASH_RECEIPTS)


@kpi
def gains_on_disposal(ctx: AnalyticsContext, period: Period) -> float:
    return _credit_flow(ctx, period, cat.GAINS_ON_DISPOSAL)


@kpi
def other_gains(ctx: AnalyticsContext, period: Period) -> float:
    return _credit_flow(ctx, period, cat.OTHER_GAINS)


@kpi
def extraordinary_income(ctx: AnalyticsContext, period: Period) -> float:
    return _credit_flow(ctx, period, cat.EXTRAORDINARY_INCOME)


# ---------------------------------------------------------------------------
# Costs
# ---------------------------------------------------------------------------


@kpi
def total_costs(ctx: AnalyticsContext, period: Period) -> float:
    """All cost categories, operating and non-operating."""
    return _total_costs(ctx, period)


@kpi
def direct_costs(ctx: AnalyticsContext, period: Period) -> float:
    """Costs whose accounts carry the 'direct' cost nature."""
    return _direct_costs(ctx, period)


@kpi
def indirect_costs(ctx: AnalyticsContext, period: Period) -> float:
    """Costs whose accounts carry the 'indirect' cost nature."""
    return _indirect_costs(ctx, period)


@kpi
def operating_costs(ctx: AnalyticsContext, period: Period) -> float:
    """Direct + indirect nature costs + personnel and social charges."""
    return _operating_costs(ctx, period)


@kpi
def supplier_purchases(ctx: AnalyticsContext, period: Period) -> float:
    return _direct_costs(ctx, period) + _indirect_costs(ctx, period)


@kpi
def personnel_costs(ctx: AnalyticsContext, period: Period) -> float:
    return _personnel_costs(ctx, period)


@kpi
def production_costs(ctx: AnalyticsContext, period: Period) -> float:
    return _debit_flow(ctx, period, *cat.COST_CENTERS["production"])


@kpi
def it_software_costs(ctx: AnalyticsContext, period: Period) -> float:
    return _debit_flow(ctx, period, cat.IT_SOFTWARE_COSTS)


@kpi
def marketing_costs(ctx: AnalyticsContext, period: Period) -> float:
    return _debit_flow(ctx, period, cat.MARKETING_COSTS)


@kpi
def administrative_costs(ctx: AnalyticsContext, period: Period) -> float:
    return _debit_flow(ctx, period, *cat.COST_CENTERS["administrative"])


@kpi
def rent_utilities_costs(ctx: AnalyticsContext, period: Period) -> float:
    return _debit_flow(ctx, period, cat.RENT_UTILITIES_COSTS)


@kpi
def financial_charges(ctx: AnalyticsContext, period: Period) -> float:
    """Financial charges, summed as |debit - credit| row by row."""
    return _financial_charges(ctx, period)


@kpi
def financial_charges_center(ctx: AnalyticsContext, period: Period) -> float:
    """Financial charges as debit - credit, as used by the cost centers."""
    return _debit_flow(ctx, period, cat.FINANCIAL_CHARGES)


@kpi
def taxes(ctx: AnalyticsContext, period: Period) -> float:
    return _debit_flow(ctx, period, cat.TAXES)


@kpi
def depreciation(ctx: AnalyticsContext, period: Period) -> float:
    return _debit_flow(ctx, period, cat.DEPRECIATION)


@kpi
def other_costs(ctx: AnalyticsContext, period: Period) -> float:
    return _debit_flow(ctx, period, *cat.COST_CENTERS["other"])


# ---------------------------------------------------------------------------
# Margins
# ---------------------------------------------------------------------------


@kpi
def opening_inventory(ctx: AnalyticsContext, period: Period) -> float:
    return _opening_inventory(ctx, period)


@kpi
def closing_inventory(ctx: AnalyticsContext, period: Period) -> float:
    return _closing_inventory(ctx, period)


@kpi
def cost_of_goods_sold(ctx: AnalyticsContext, period: Period) -> float:
    """Opening inventory + direct-cost purchases - closing inventory."""
    return _cogs(ctx, period)


@kpi
def gross_margin(ctx: AnalyticsContext, period: Period) -> float:
    return _revenue(ctx, period) - _cogs(ctx, period)


@kpi
def gross_margin_pct(ctx: AnalyticsContext, period: Period) -> float:
    revenue = _revenue(ctx, period)
    margin = revenue - _cogs(ctx, period)
    return _ratio(margin, revenue, "gross_margin_pct") * 100


@kpi
def ebitda(ctx: AnalyticsContext, period: Period) -> float:
    """Revenue minus operating costs (no depreciation, taxes or financials)."""
    return _revenue(ctx, period) - _operating_costs(ctx, period)


@kpi
def ebitda_margin_pct(ctx: AnalyticsContext, period: Period) -> float:
    revenue = _revenue(ctx, period)
    value = revenue - _operating_costs(ctx, period)
    return _ratio(value, revenue, "ebitda_margin_pct") * 100


@kpi
def net_margin(ctx: AnalyticsContext, period: Period) -> float:
    """Revenue minus all costs, operating and non-operating."""
    return _revenue(ctx, period) - _total_costs(ctx, period)


@kpi
def net_margin_pct(ctx: AnalyticsContext, period: Period) -> float:
    revenue = _revenue(ctx, period)
    value = revenue - _total_costs(ctx, period)
    return _ratio(value, revenue, "net_margin_pct") * 100


@kpi
def break_even_point(ctx: AnalyticsContext, period: Period) -> float:
    """
    Revenue needed to cover fixed costs.

    Variable costs are the cost of goods sold, fixed costs the indirect
    costs: BEP = fixed / (1 - variable / revenue). Returns 0 when revenue is
    not positive, when variable costs reach revenue, or when the contribution
    margin is not positive.
    """
    revenue = _revenue(ctx, period)
    if revenue <= 0:
        logger.debug("break_even_point: revenue <= 0, returning 0")
        return 0.0

    variable = _cogs(ctx, period)
    fixed = _indirect_costs(ctx, period)
    if variable >= revenue:
        logger.debug("break_even_point: variable costs >= revenue, returning 0")
        return 0.0

    contribution = 1 - variable / revenue
    if contribution <= 0:
        return 0.0
    return fixed / contribution


# ---------------------------------------------------------------------------
# Returns
# ---------------------------------------------------------------------------


@kpi
def net_income_estimate(ctx: AnalyticsContext, period: Period) -> float:
    """
    Estimated net income.

    Pre-tax result (revenue minus costs other than financial charges and
    taxes), minus financial charges, minus max(0, taxable × tax_rate).
    """
    return _net_income(ctx, period)


@kpi
def invested_capital(ctx: AnalyticsContext, period: Period) -> float:
    """Fixed assets, receivables, inventory and liquidity at period end."""
    capital = _balance(
        ctx, period.end, cat.INVESTED_CAPITAL, SignExpr.DEBIT_MINUS_CREDIT
    )
    return abs(capital)


@kpi
def roi(ctx: AnalyticsContext, period: Period) -> float:
    """Return on investment (%): net income / invested capital."""
    if _revenue(ctx, period) <= 0:
        logger.debug("roi: revenue <= 0, returning 0")
        return 0.0
    capital = abs(
        _balance(ctx, period.end, cat.INVESTED_CAPITAL, SignExpr.DEBIT_MINUS_CREDIT)
    )
    return _ratio(_net_income(ctx, period), capital, "roi") * 100


@kpi
def ros(ctx: AnalyticsContext, period: Period) -> float:
    """Return on sales (%): (revenue - total costs) / revenue."""
    revenue = _revenue(ctx, period)
    return _ratio(revenue - _total_costs(ctx, period), revenue, "ros") * 100


@kpi
def effective_share_capital(ctx: AnalyticsContext, period: Period) -> float:
    """Ledger share-capital credit balance if positive, else the configured one."""
    return _share_capital(ctx, period)


@kpi
def equity(ctx: AnalyticsContext, period: Period) -> float:
    """Effective share capital + reserves balance at period end."""
    return _equity(ctx, period)


@kpi
def roe(ctx: AnalyticsContext, period: Period) -> float:
    """Return on equity (%): net income / equity."""
    if _revenue(ctx, period) <= 0:
        logger.debug("roe: revenue <= 0, returning 0")
        return 0.0
    return _ratio(_net_income(ctx, period), _equity(ctx, period), "roe") * 100


# ---------------------------------------------------------------------------
# Liquidity and leverage
# ---------------------------------------------------------------------------


@kpi
def current_assets(ctx: AnalyticsContext, period: Period) -> float:
    return _balance(ctx, period.end, cat.CURRENT_ASSETS, SignExpr.DEBIT_MINUS_CREDIT)


@kpi
def liquid_assets(ctx: AnalyticsContext, period: Period) -> float:
    return _balance(ctx, period.end, cat.LIQUID_ASSETS, SignExpr.DEBIT_MINUS_CREDIT)


@kpi
def current_liabilities(ctx: AnalyticsContext, period: Period) -> float:
    return _current_liabilities(ctx, period)


def _liquidity_ratio(ctx: AnalyticsContext, period: Period, names, label: str) -> float:
    liabilities = abs(_current_liabilities(ctx, period))
    if liabilities <= LIABILITIES_EPSILON:
        logger.debug("%s: no current liabilities, returning 0", label)
        return 0.0
    assets = _balance(ctx, period.end, names, SignExpr.DEBIT_MINUS_CREDIT)
    return assets / liabilities


@kpi
def current_ratio(ctx: AnalyticsContext, period: Period) -> float:
    """Current assets / |current liabilities|."""
    return _liquidity_ratio(ctx, period, cat.CURRENT_ASSETS, "current_ratio")


@kpi
def quick_ratio(ctx: AnalyticsContext, period: Period) -> float:
    """(Liquidity + receivables) / |current liabilities|."""
    return _liquidity_ratio(ctx, period, cat.LIQUID_ASSETS, "quick_ratio")


@kpi
def total_debts(ctx: AnalyticsContext, period: Period) -> float:
    return _balance(ctx, period.end, cat.TOTAL_DEBTS, SignExpr.CREDIT_MINUS_DEBIT)


@kpi
def debt_ratio(ctx: AnalyticsContext, period: Period) -> float:
    """Total liabilities / equity."""
    debts = _balance(ctx, period.end, cat.TOTAL_DEBTS, SignExpr.CREDIT_MINUS_DEBIT)
    return _ratio(debts, _equity(ctx, period), "debt_ratio")


# ---------------------------------------------------------------------------
# Efficiency
# ---------------------------------------------------------------------------


@kpi
def overhead_ratio(ctx: AnalyticsContext, period: Period) -> float:
    """Indirect costs as a percentage of revenue."""
    revenue = _revenue(ctx, period)
    return _ratio(_indirect_costs(ctx, period), revenue, "overhead_ratio") * 100


def _annualized(amount: float, period: Period) -> float:
    return amount / period.days * 365


@kpi
def dso(ctx: AnalyticsContext, period: Period) -> float:
    """
    Days sales outstanding.

    Trade receivables at period end divided by the annualized operating
    revenue, times 365. The period length counts both ends.
    """
    validate_period(period)
    receivables = _checked(
        _balance(
            ctx, period.end, (cat.TRADE_RECEIVABLES,), SignExpr.DEBIT_MINUS_CREDIT
        ),
        "trade receivables",
    )
    annual = _annualized(_operating_revenue(ctx, period), period)
    return _ratio(receivables, annual, "dso") * 365


@kpi
def dpo(ctx: AnalyticsContext, period: Period) -> float:
    """Days payables outstanding: trade payables / annualized purchases × 365."""
    validate_period(period)
    payables = _checked(
        _balance(ctx, period.end, (cat.TRADE_PAYABLES,), SignExpr.CREDIT_MINUS_DEBIT),
        "trade payables",
    )
    purchases = _debit_flow(ctx, period, *cat.PURCHASES)
    return _ratio(payables, _annualized(purchases, period), "dpo") * 365


# ---------------------------------------------------------------------------
# Center breakdowns
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CenterValue:
    """One revenue or cost center."""

    key: str
    label: str
    value: float
    pct: float


@dataclass(frozen=True)
class CenterBreakdown:
    """
    Revenue or cost centers of a period, checked against the total.

    Attributes
    ----------
    centers:
        Center key → CenterValue, in display order.
    sum_of_centers, total:
        Sum of the centers and the independently computed total.
    discrepancy:
        |sum_of_centers - total|.
    consistent:
        True when the discrepancy is within the configured tolerance.
    error:
        Message of the failure that produced an empty breakdown, if any.
    """

    period: Period
    centers: dict[str, CenterValue]
    sum_of_centers: float
    total: float
    discrepancy: float
    consistent: bool
    error: Optional[str] = None


REVENUE_CENTER_LABELS: dict[str, str] = {
    "sales": "Sales revenue",
    "cash_receipts": "Cash receipts",
    "services": "Services revenue",
    "gains_on_disposal": "Gains on disposal",
    "other_gains": "Other gains",
    "extraordinary_income": "Extraordinary income",
}

COST_CENTER_LABELS: dict[str, str] = {
    "personnel": "Personnel",
    "production": "Production",
    "it_software": "IT & software",
    "marketing": "Marketing",
    "administrative": "Services & consulting",
    "rent_utilities": "Rent & utilities",
    "financial_charges": "Financial charges",
    "taxes": "Taxes",
    "other": "Other costs",
}


def _breakdown(
    ctx: AnalyticsContext,
    period: Period,
    groups: Mapping[str, tuple[str, ...]],
    labels: Mapping[str, str],
    sign: SignExpr,
    total: float,
    kind: str,
) -> CenterBreakdown:
    values = {key: _flow(ctx, period, names, sign) for key, names in groups.items()}
    sum_of_centers = sum(values.values())
    discrepancy = abs(sum_of_centers - total)
    consistent = discrepancy <= ctx.settings.center_tolerance
    if not consistent:
        logger.warning(
            "%s centers do not add up for %s: sum %.2f vs total %.2f (diff %.2f)",
            kind,
            _describe(period),
            sum_of_centers,
            total,
            discrepancy,
        )

    centers = {
        key: CenterValue(
            key=key,
            label=labels.get(key, key),
            value=round(value, 2),
            pct=round(value / total * 100, 2) if total > 0 else 0.0,
        )
        for key, value in values.items()
    }
    return CenterBreakdown(
        period=period,
        centers=centers,
        sum_of_centers=round(sum_of_centers, 2),
        total=round(total, 2),
        discrepancy=round(discrepancy, 2),
        consistent=consistent,
    )


def _empty_breakdown(period: Period, exc: Exception) -> CenterBreakdown:
    return CenterBreakdown(
        period=period,
        centers={},
        sum_of_centers=0.0,
        total=0.0,
        discrepancy=0.0,
        consistent=True,
        error=str(exc),
    )


def revenue_centers(ctx: AnalyticsContext, period: Period) -> CenterBreakdown:
    """Revenue split by center, with a consistency check against the total."""
    try:
        return _breakdown(
            ctx,
            period,
            cat.REVENUE_CENTERS,
            REVENUE_CENTER_LABELS,
            SignExpr.CREDIT_MINUS_DEBIT,
            _revenue(ctx, period),
            "Revenue",
        )
    except LedgerInsightError as exc:
        logger.error("revenue_centers failed for %s: %s", _describe(period), exc)
        return _empty_breakdown(period, exc)


def cost_centers(ctx: AnalyticsContext, period: Period) -> CenterBreakdown:
    """Costs split by center, with a consistency check against the total."""
    try:
        return _breakdown(
            ctx,
            period,
            cat.COST_CENTERS,
            COST_CENTER_LABELS,
            SignExpr.DEBIT_MINUS_CREDIT,
            _total_costs(ctx, period),
            "Cost",
        )
    except LedgerInsightError as exc:
        logger.error("cost_centers failed for %s: %s", _describe(period), exc)
        return _empty_breakdown(period, exc)


def active_centers(breakdown: CenterBreakdown) -> dict[str, CenterValue]:
    """Centers with a strictly positive value (for charts and tables)."""
    return {k: c for k, c in breakdown.centers.items() if c.value > 0}


# ---------------------------------------------------------------------------
# Operating efficiency
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EfficiencyReport:
    """
    Operating-efficiency metrics of a period against a comparison period.

    ``current`` and ``previous`` map metric keys to values; ``variations``
    holds the percentage change of each metric and ``ratings`` the
    qualitative ratings of the current period.
    """

    period: Period
    comparison: Period
    current: dict[str, float] = field(default_factory=dict)
    previous: dict[str, float] = field(default_factory=dict)
    variations: dict[str, float] = field(default_factory=dict)
    ratings: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None


def _efficiency_metrics(ctx: AnalyticsContext, period: Period) -> dict[str, float]:
    revenue = _revenue(ctx, period)
    costs = _total_costs(ctx, period)
    personnel = _personnel_costs(ctx, period)
    sales_tx = ctx.aggregator.count_distinct(
        ctx.predicate(*cat.OPERATING_REVENUE), period, "registration_number"
    )
    purchase_tx = ctx.aggregator.count_distinct(
        ctx.predicate(*cat.PURCHASES), period, "registration_number"
    )
    margin = revenue - costs
    # Elapsed days, start excluded.
    days = (period.end - period.start).days
    headcount = ctx.settings.headcount

    metrics = {
        "revenue": revenue,
        "total_costs": costs,
        "direct_costs": _direct_costs(ctx, period),
        "indirect_costs": _indirect_costs(ctx, period),
        "personnel_costs": personnel,
        "operating_margin": margin,
        "margin_pct": margin / revenue * 100 if revenue > 0 else 0.0,
        "sales_transactions": float(sales_tx),
        "purchase_transactions": float(purchase_tx),
        "revenue_per_employee": revenue / headcount if headcount > 0 else 0.0,
        "revenue_per_day": revenue / days if days > 0 else 0.0,
        "revenue_per_month": revenue / (days / DAYS_PER_MONTH) if days > 0 else 0.0,
        "cost_per_transaction": costs / sales_tx if sales_tx > 0 else 0.0,
        "avg_transaction_value": revenue / sales_tx if sales_tx > 0 else 0.0,
        "cost_revenue_pct": costs / revenue * 100 if revenue > 0 else 0.0,
        "personnel_share_pct": personnel / costs * 100 if costs > 0 else 0.0,
    }
    return {k: round(v, 2) for k, v in metrics.items()}


def _rate_cost_revenue(pct: float, revenue: float) -> str:
    if revenue <= 0:
        return "n/a"
    if pct < 70:
        return "excellent"
    if pct < 80:
        return "good"
    if pct < 90:
        return "fair"
    return "critical"


def _rate_revenue_per_employee(value: float) -> str:
    if value > 200_000:
        return "excellent"
    if value > 150_000:
        return "good"
    if value > 100_000:
        return "fair"
    return "needs improvement"


def _rate_margin(pct: float) -> str:
    if pct > 20:
        return "excellent"
    if pct > 15:
        return "good"
    if pct > 10:
        return "fair"
    return "critical"


def operating_efficiency(
    ctx: AnalyticsContext,
    period: Period,
    comparison: Optional[Period] = None,
) -> EfficiencyReport:
    """
    Operating-efficiency report.

    Args:
        ctx: Analytics context.
        period: Analysed period.
        comparison: Comparison period; defaults to the preceding period of
            equal length.

    Returns:
        An EfficiencyReport. On failure, the report has empty metric maps
        and ``error`` set.
    """
    try:
        validate_period(period)
        comparison = comparison or preceding_period(period)
        current = _efficiency_metrics(ctx, period)
        previous = _efficiency_metrics(ctx, comparison)
    except LedgerInsightError as exc:
        logger.error("operating_efficiency failed for %s: %s", _describe(period), exc)
        return EfficiencyReport(
            period=period, comparison=comparison or period, error=str(exc)
        )

    variations = {
        key: round(growth_delta(value, previous.get(key)), 2)
        for key, value in current.items()
    }
    ratings = {
        "cost_revenue": _rate_cost_revenue(
            current["cost_revenue_pct"], current["revenue"]
        ),
        "revenue_per_employee": _rate_revenue_per_employee(
            current["revenue_per_employee"]
        ),
        "margin": _rate_margin(current["margin_pct"]),
    }
    return EfficiencyReport(
        period=period,
        comparison=comparison,
        current=current,
        previous=previous,
        variations=variations,
        ratings=ratings,
    )


# ---------------------------------------------------------------------------
# KPI dashboard and custom KPI rules
# ---------------------------------------------------------------------------

# key → (function, label, unit, category)
KPI_DEFINITIONS: dict[str, tuple[Any, str, str, str]] = {
    "revenue": (revenue_total, "Revenue", "amount", "profitability"),
    "total_costs": (total_costs, "Total costs", "amount", "profitability"),
    "direct_costs": (direct_costs, "Direct costs", "amount", "profitability"),
    "indirect_costs": (indirect_costs, "Indirect costs", "amount", "profitability"),
    "cost_of_goods_sold": (
        cost_of_goods_sold,
        "Cost of goods sold",
        "amount",
        "profitability",
    ),
    "gross_margin": (gross_margin, "Gross margin", "amount", "profitability"),
    "gross_margin_pct": (
        gross_margin_pct,
        "Gross margin (%)",
        "percent",
        "profitability",
    ),
    "ebitda": (ebitda, "EBITDA", "amount", "profitability"),
    "ebitda_margin_pct": (
        ebitda_margin_pct,
        "EBITDA margin (%)",
        "percent",
        "profitability",
    ),
    "net_margin": (net_margin, "Net margin", "amount", "profitability"),
    "net_margin_pct": (net_margin_pct, "Net margin (%)", "percent", "profitability"),
    "break_even_point": (
        break_even_point,
        "Break-even revenue",
        "amount",
        "profitability",
    ),
    "net_income": (
        net_income_estimate,
        "Net income (estimated)",
        "amount",
        "profitability",
    ),
    "roi": (roi, "ROI (%)", "percent", "profitability"),
    "roe": (roe, "ROE (%)", "percent", "profitability"),
    "ros": (ros, "ROS (%)", "percent", "profitability"),
    "current_ratio": (current_ratio, "Current ratio", "ratio", "liquidity"),
    "quick_ratio": (quick_ratio, "Quick ratio", "ratio", "liquidity"),
    "dso": (dso, "Days sales outstanding", "days", "liquidity"),
    "dpo": (dpo, "Days payables outstanding", "days", "liquidity"),
    "equity": (equity, "Equity", "amount", "leverage"),
    "invested_capital": (invested_capital, "Invested capital", "amount", "leverage"),
    "debt_ratio": (debt_ratio, "Debt ratio", "ratio", "leverage"),
    "overhead_ratio": (overhead_ratio, "Overhead ratio (%)", "percent", "efficiency"),
}


def compute_kpis(
    ctx: AnalyticsContext,
    period: Period,
    rules_file: Optional[Path] = None,
) -> list[KpiResult]:
    """
    Compute every built-in KPI for a period, plus optional custom KPIs.

    Args:
        ctx: Analytics context.
        period: Analysed period.
        rules_file: TOML file of custom KPIs (see ``compute_custom_kpis``).
            Defaults to ``ctx.settings.kpi_rules_file``.

    Returns:
        KpiResult objects in definition order, custom KPIs last. A missing
        or unreadable rules file is logged and only drops the custom KPIs.
    """
    results: list[KpiResult] = []
    for key, (func, label, unit, category) in KPI_DEFINITIONS.items():
        results.append(
            KpiResult(
                key=key,
                label=label,
                value=func(ctx, period),
                unit=unit,
                category=category,
            )
        )

    rules_file = rules_file or ctx.settings.kpi_rules_file
    if rules_file is not None:
        values = {r.key: r.value for r in results if r.value is not None}
        try:
            results.extend(compute_custom_kpis(values, rules_file))
        except (FileNotFoundError, ValueError) as exc:
            logger.error("Custom KPIs skipped: %s", exc)
    return results


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed or is not a table.
    """
    if not path.is_file():
        raise FileNotFoundError(f"KPI rules file not found: {path}")

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Failed to parse TOML KPI rules file: {path}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Invalid TOML root type in {path}, expected a table.")

    return data


_ALLOWED_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.USub: operator.neg,
    ast.Pow: operator.pow,
}


def _safe_eval_expr(expr: str, variables: Mapping[str, float]) -> float:
    """
    Safely evaluate a simple arithmetic expression using the given variables.

    Supported: numeric literals, variable names, + - * / **, unary minus and
    parentheses.

    Raises:
        ValueError: if the expression contains unsupported constructs or
            unknown variables.
        ZeroDivisionError: on division by zero.
    """
    try:
        tree = ast.parse(expr, mode="eval")
    except SyntaxError as exc:
        raise ValueError(f"Invalid expression syntax: {expr!r}") from exc

    def _eval(node: ast.AST) -> float:
        if isinstance(node, ast.Expression):
            return _eval(node.body)

        if isinstance(node, ast.Constant):
            if isinstance(node.value, (int, float)) and not isinstance(
                node.value, bool
            ):
                return float(node.value)
            raise ValueError(f"Unsupported constant in expression: {node.value!r}")

        if isinstance(node, ast.Name):
            if node.id not in variables:
                raise ValueError(f"Unknown variable in expression: {node.id!r}")
            return float(variables[node.id])

        if isinstance(node, ast.BinOp):
            op_func = _ALLOWED_OPERATORS.get(type(node.op))
            if op_func is None:
                raise ValueError(f"Unsupported operator in expression: {node.op!r}")
            return float(op_func(_eval(node.left), _eval(node.right)))

        if isinstance(node, ast.UnaryOp):
            op_func = _ALLOWED_OPERATORS.get(type(node.op))
            if op_func is None:
                raise ValueError(f"Unsupported unary operator: {node.op!r}")
            return float(op_func(_eval(node.operand)))

        raise ValueError(f"Unsupported expression node: {type(node).__name__}")

    return _eval(tree)


def compute_custom_kpis(
    values: Mapping[str, float], rules_file: Path
) -> list[KpiResult]:
    """
    Evaluate custom KPIs defined in a TOML rules file.

    Each ``[kpis.<key>]`` table defines ``formula`` (an arithmetic
    expression over built-in KPI keys and previously defined custom KPIs),
    and optionally ``label`` and ``unit``. KPIs whose formula cannot be
    evaluated get value=None; the failure is logged.
    """
    data = _load_toml(Path(rules_file))
    section = data.get("kpis") or {}
    if not isinstance(section, Mapping):
        return []

    known = dict(values)
    results: list[KpiResult] = []
    for key, cfg in section.items():
        if not isinstance(cfg, Mapping):
            continue

        formula = str(cfg.get("formula") or "")
        value: Optional[float]
        try:
            value = round(_safe_eval_expr(formula, known), 2)
        except (ValueError, ZeroDivisionError) as exc:
            logger.warning("Custom KPI %s not computable: %s", key, exc)
            value = None

        if value is not None:
            known[str(key)] = value
        results.append(
            KpiResult(
                key=str(key),
                label=str(cfg.get("label", key)),
                value=value,
                unit=str(cfg.get("unit", "amount")),
                category="custom",
            )
        )
    return results
