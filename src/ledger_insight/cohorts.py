# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Customer and supplier cohort analysis for Ledger Insight.

Counterparties are not stored in the ledger as such. A business document
(one invoice) is a set of rows sharing the same ``protocol``: the revenue
(or cost) rows carry the amounts, while the receivable (or payable) row
carries the counterparty name in its annotation. This module rebuilds
per-entity figures from that structure:

1. Entity aggregates
   -----------------
   Revenue (or purchase) rows with a protocol are scanned once for the
   period. Each protocol's counterparty is resolved from the annotation of
   its receivable (payable) row, in batched lookups. Protocols without a
   resolvable counterparty are dropped and counted. Every movement is then
   classified by sign: a credit (debit for purchases) is an invoice, the
   opposite side a credit note. Entities are keyed by their cohort key, so
   that spelling variants of the same name merge; entities with net <= 0
   are left out.

2. Classification
   --------------
   ABC (Pareto) tiers on the running share of the period total, and trend
   labels (new / growing / stable / declining) against a comparison period.

3. Retention
   ---------
   Cohort-key sets of two periods: retained, new and churned counterparties
   and the retention rate |retained| / |prior| × 100. Monthly retention
   compares each month with the previous one; quarterly retention compares
   each quarter with the same quarter of the previous year.

Public functions never raise: invalid periods and store failures give an
empty result whose ``error`` field is set.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Literal, Optional

import pandas as pd

from . import categories as cat
from .context import AnalyticsContext
from .entities import UNKNOWN_CUSTOMER, UNKNOWN_SUPPLIER, normalize_counterparty
from .errors import LedgerInsightError
from .growth import growth_delta
from .periods import (
    Period,
    filter_entries_by_period,
    month_period,
    preceding_period,
    quarter_periods,
    validate_period,
    year_period,
)

logger = logging.getLogger(__name__)

Side = Literal["customers", "suppliers"]

TIERS: tuple[str, ...] = ("A", "B", "C")


@dataclass(frozen=True)
class _SideRules:
    flow: tuple[str, ...]
    counterpart: tuple[str, ...]
    unknown: str
    # +1: amounts read credit - debit; -1: debit - credit.
    direction: int


_SIDES: dict[str, _SideRules] = {
    "customers": _SideRules(
        flow=cat.INVOICED_REVENUE,
        counterpart=(cat.TRADE_RECEIVABLES,),
        unknown=UNKNOWN_CUSTOMER,
        direction=1,
    ),
    "suppliers": _SideRules(
        flow=cat.PURCHASES,
        counterpart=(cat.TRADE_PAYABLES,),
        unknown=UNKNOWN_SUPPLIER,
        direction=-1,
    ),
}


def _side_rules(side: str) -> _SideRules:
    try:
        return _SIDES[side]
    except KeyError:
        raise ValueError(
            f"Unknown side {side!r}, expected 'customers' or 'suppliers'."
        ) from None


# ---------------------------------------------------------------------------
# Entity aggregates
# ---------------------------------------------------------------------------


@dataclass
class EntityAggregate:
    """
    Figures of one counterparty over one period.

    Built fresh for each period and never persisted. ``name`` is the first
    cleaned display name met for the entity, ``key`` its cohort key.
    """

    key: str
    name: str
    gross_amount: float = 0.0
    credit_note_amount: float = 0.0
    invoice_count: int = 0
    credit_note_count: int = 0
    first_date: Optional[date] = None
    last_date: Optional[date] = None
    invoice_protocols: list[str] = field(default_factory=list)
    credit_note_protocols: list[str] = field(default_factory=list)

    @property
    def net_amount(self) -> float:
        return round(self.gross_amount - self.credit_note_amount, 2)

    def add(self, protocol: str, amount: float, when: date) -> None:
        """Book one movement: positive amounts are invoices, others credit notes."""
        if amount > 0:
            self.gross_amount += amount
            self.invoice_count += 1
            if protocol not in self.invoice_protocols:
                self.invoice_protocols.append(protocol)
        else:
            self.credit_note_amount += -amount
            self.credit_note_count += 1
            if protocol not in self.credit_note_protocols:
                self.credit_note_protocols.append(protocol)
        if self.first_date is None or when < self.first_date:
            self.first_date = when
        if self.last_date is None or when > self.last_date:
            self.last_date = when


def _movements(rows: pd.DataFrame, direction: int) -> pd.DataFrame:
    """
    Signed amount of every row carrying a protocol, in booking order.

    Amounts are oriented by ``direction`` so that invoices are positive and
    credit notes (reversed or negative bookings) are negative.
    """
    rows = rows[rows["protocol"].fillna("").astype(str).str.strip() != ""].copy()
    if rows.empty:
        return pd.DataFrame(columns=["protocol", "amount", "date"])

    rows["amount"] = ((rows["credit"] - rows["debit"]) * direction).round(2)
    rows = rows[rows["amount"] != 0]
    return rows.sort_values(["date", "protocol"], kind="stable")[
        ["protocol", "amount", "date"]
    ]


def _aggregate_rows(
    ctx: AnalyticsContext, rows: pd.DataFrame, rules: _SideRules
) -> list[EntityAggregate]:
    movements = _movements(rows, rules.direction)
    if movements.empty:
        return []

    protocols = sorted(set(movements["protocol"]))
    annotations = ctx.aggregator.counterparty_annotations(
        protocols, ctx.predicate(*rules.counterpart)
    )

    entities: dict[str, EntityAggregate] = {}
    dropped = {p for p in protocols if not annotations.get(p)}
    for protocol, amount, when in movements.itertuples(index=False):
        text = annotations.get(protocol)
        if not text:
            continue

        name = normalize_counterparty(text, rules.unknown)
        entity = entities.get(name.key)
        if entity is None:
            entity = EntityAggregate(key=name.key, name=name.display)
            entities[name.key] = entity
        entity.add(protocol, float(amount), pd.Timestamp(when).date())

    if dropped:
        logger.info(
            "%d protocol(s) without a resolvable counterparty dropped", len(dropped)
        )

    qualifying = [e for e in entities.values() if e.net_amount > 0]
    return sorted(qualifying, key=lambda e: (-e.net_amount, e.key))


def build_entity_aggregates(
    ctx: AnalyticsContext, period: Period, side: Side = "customers"
) -> list[EntityAggregate]:
    """
    Per-counterparty figures of a period, sorted by net amount (descending).

    Args:
        ctx: Analytics context.
        period: Analysed period.
        side: 'customers' (sales and services revenue, receivables) or
            'suppliers' (purchases, payables).

    Raises:
        InputValidationError: if the period is inverted.
        StoreError: if a query fails.
    """
    rules = _side_rules(side)
    validate_period(period)
    rows = ctx.aggregator.scan(ctx.predicate(*rules.flow), period)
    return _aggregate_rows(ctx, rows, rules)


def _aggregates_pair(
    ctx: AnalyticsContext, period: Period, comparison: Period, side: Side
) -> tuple[list[EntityAggregate], list[EntityAggregate]]:
    """Aggregates of two periods from a single scan of their union."""
    rules = _side_rules(side)
    validate_period(period)
    validate_period(comparison)
    union = Period(
        min(period.start, comparison.start), max(period.end, comparison.end)
    )
    rows = ctx.aggregator.scan(ctx.predicate(*rules.flow), union)
    current = _aggregate_rows(ctx, filter_entries_by_period(rows, period), rules)
    previous = _aggregate_rows(ctx, filter_entries_by_period(rows, comparison), rules)
    return current, previous


# ---------------------------------------------------------------------------
# ABC and trend classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TieredEntity:
    """An entity with its share of the total and its ABC tier."""

    entity: EntityAggregate
    tier: str
    share_pct: float
    cumulative_pct: float


@dataclass(frozen=True)
class CohortResult:
    """
    ABC classification of the entities of one period.

    Attributes
    ----------
    tiers:
        'A' / 'B' / 'C' → tiered entities, in descending net order.
    total:
        Sum of the net amounts of all classified entities.
    tier_totals, tier_shares:
        Net amount and share (%) of each tier.
    """

    period: Optional[Period]
    tiers: dict[str, list[TieredEntity]]
    total: float
    tier_totals: dict[str, float]
    tier_shares: dict[str, float]
    error: Optional[str] = None

    @property
    def tier_counts(self) -> dict[str, int]:
        return {tier: len(items) for tier, items in self.tiers.items()}

    def all_entities(self) -> list[TieredEntity]:
        return [t for tier in TIERS for t in self.tiers.get(tier, [])]


def _empty_cohort(period: Optional[Period], error: Optional[str] = None):
    return CohortResult(
        period=period,
        tiers={tier: [] for tier in TIERS},
        total=0.0,
        tier_totals={tier: 0.0 for tier in TIERS},
        tier_shares={tier: 0.0 for tier in TIERS},
        error=error,
    )


def classify_abc(
    entities: list[EntityAggregate],
    a_threshold: float = 80.0,
    b_threshold: float = 95.0,
    period: Optional[Period] = None,
) -> CohortResult:
    """
    Pareto (ABC) tiers on the running share of the total.

    Entities are sorted by net amount (descending). Each entity's share is
    added to a running total: tier A while the running share is <= a, B
    while <= b, C afterwards. Entities with net <= 0 are ignored.
    """
    ranked = sorted(
        (e for e in entities if e.net_amount > 0), key=lambda e: (-e.net_amount, e.key)
    )
    total = sum(e.net_amount for e in ranked)
    if total <= 0:
        return _empty_cohort(period)

    tiers: dict[str, list[TieredEntity]] = {tier: [] for tier in TIERS}
    cumulative = 0.0
    for entity in ranked:
        share = entity.net_amount / total * 100
        cumulative += share
        if cumulative <= a_threshold:
            tier = "A"
        elif cumulative <= b_threshold:
            tier = "B"
        else:
            tier = "C"
        tiers[tier].append(
            TieredEntity(
                entity=entity,
                tier=tier,
                share_pct=round(share, 2),
                cumulative_pct=round(cumulative, 2),
            )
        )

    tier_totals = {
        tier: round(sum(t.entity.net_amount for t in items), 2)
        for tier, items in tiers.items()
    }
    return CohortResult(
        period=period,
        tiers=tiers,
        total=round(total, 2),
        tier_totals=tier_totals,
        tier_shares={
            tier: round(v / total * 100, 2) for tier, v in tier_totals.items()
        },
    )


def classify_trend(
    current: list[EntityAggregate],
    previous: list[EntityAggregate],
    threshold: float = 10.0,
) -> dict[str, str]:
    """
    Trend label of each current entity against the comparison period.

    'new' when the entity is absent from ``previous``; otherwise 'growing'
    above +threshold %, 'declining' below -threshold %, else 'stable'.
    """
    before = {e.key: e.net_amount for e in previous}
    trends: dict[str, str] = {}
    for entity in current:
        if entity.key not in before:
            trends[entity.key] = "new"
            continue
        delta = growth_delta(entity.net_amount, before[entity.key])
        if delta > threshold:
            trends[entity.key] = "growing"
        elif delta < -threshold:
            trends[entity.key] = "declining"
        else:
            trends[entity.key] = "stable"
    return trends


# ---------------------------------------------------------------------------
# Customer profitability
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CustomerRow:
    key: str
    name: str
    net_amount: float
    gross_amount: float
    credit_note_amount: float
    invoice_count: int
    credit_note_count: int
    share_pct: float
    previous_amount: float
    variation_pct: float
    trend: str


@dataclass(frozen=True)
class CustomerProfitability:
    """Top customers of a period compared with a comparison period."""

    period: Period
    comparison: Optional[Period]
    customers: list[CustomerRow]
    total_revenue: float = 0.0
    previous_total: float = 0.0
    total_variation_pct: float = 0.0
    active_customers: int = 0
    error: Optional[str] = None


def customer_profitability(
    ctx: AnalyticsContext,
    period: Period,
    comparison: Optional[Period] = None,
    limit: Optional[int] = None,
) -> CustomerProfitability:
    """
    Rank customers by net revenue and label their trend.

    Args:
        ctx: Analytics context.
        period: Analysed period.
        comparison: Comparison period; defaults to the preceding period of
            equal length.
        limit: Maximum number of customers listed; defaults to
            ``settings.customer_limit``. Totals always cover every customer.
    """
    limit = ctx.settings.customer_limit if limit is None else limit
    try:
        comparison = comparison or preceding_period(period)
        current, previous = _aggregates_pair(ctx, period, comparison, "customers")
    except LedgerInsightError as exc:
        logger.error("customer_profitability failed: %s", exc)
        return CustomerProfitability(
            period=period, comparison=comparison, customers=[], error=str(exc)
        )

    total = sum(e.net_amount for e in current)
    previous_total = sum(e.net_amount for e in previous)
    before = {e.key: e.net_amount for e in previous}
    trends = classify_trend(current, previous, ctx.settings.trend_threshold_pct)

    rows = [
        CustomerRow(
            key=e.key,
            name=e.name,
            net_amount=e.net_amount,
            gross_amount=round(e.gross_amount, 2),
            credit_note_amount=round(e.credit_note_amount, 2),
            invoice_count=e.invoice_count,
            credit_note_count=e.credit_note_count,
            share_pct=round(e.net_amount / total * 100, 2) if total > 0 else 0.0,
            previous_amount=before.get(e.key, 0.0),
            variation_pct=round(growth_delta(e.net_amount, before.get(e.key)), 2),
            trend=trends[e.key],
        )
        for e in current[:limit]
    ]
    return CustomerProfitability(
        period=period,
        comparison=comparison,
        customers=rows,
        total_revenue=round(total, 2),
        previous_total=round(previous_total, 2),
        total_variation_pct=round(growth_delta(total, previous_total), 2),
        active_customers=len(current),
    )


# ---------------------------------------------------------------------------
# Supplier ABC
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SupplierAbc:
    """ABC tiers of suppliers, with trend figures against a comparison period."""

    period: Period
    comparison: Optional[Period]
    cohort: CohortResult
    trends: dict[str, str] = field(default_factory=dict)
    new_suppliers: list[str] = field(default_factory=list)
    growing_count: int = 0
    growing_pct: float = 0.0
    growing_spend: float = 0.0
    error: Optional[str] = None


def supplier_abc(
    ctx: AnalyticsContext,
    period: Period,
    comparison: Optional[Period] = None,
) -> SupplierAbc:
    """Classify suppliers by spend and flag new and growing ones."""
    try:
        comparison = comparison or preceding_period(period)
        current, previous = _aggregates_pair(ctx, period, comparison, "suppliers")
    except LedgerInsightError as exc:
        logger.error("supplier_abc failed: %s", exc)
        return SupplierAbc(
            period=period,
            comparison=comparison,
            cohort=_empty_cohort(period, str(exc)),
            error=str(exc),
        )

    settings = ctx.settings
    cohort = classify_abc(
        current, settings.abc_a_threshold, settings.abc_b_threshold, period=period
    )
    trends = classify_trend(current, previous, settings.trend_threshold_pct)
    growing = [e for e in current if trends[e.key] == "growing"]
    return SupplierAbc(
        period=period,
        comparison=comparison,
        cohort=cohort,
        trends=trends,
        new_suppliers=[e.name for e in current if trends[e.key] == "new"],
        growing_count=len(growing),
        growing_pct=round(len(growing) / len(current) * 100, 2) if current else 0.0,
        growing_spend=round(sum(e.net_amount for e in growing), 2),
    )


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetentionResult:
    """
    Counterparty retention between a prior period and a current period.

    ``retained``, ``new`` and ``churned`` are sorted cohort keys; ``names``
    maps every key seen to a display name.
    """

    period: Period
    prior: Period
    retained: list[str]
    new: list[str]
    churned: list[str]
    current_count: int
    prior_count: int
    retention_rate: float
    names: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None


def _cohort_frame(ctx: AnalyticsContext, period: Period, side: Side) -> pd.DataFrame:
    """
    Invoice-side rows of a period with their counterparty key and name.

    The counterparty comes from the receivable (payable) row of the same
    protocol, or from the row's own annotation when there is none.
    """
    rules = _side_rules(side)
    validate_period(period)
    rows = ctx.aggregator.scan(ctx.predicate(*rules.flow), period)
    rows = rows[(rows["credit"] - rows["debit"]) * rules.direction > 0]
    if rows.empty:
        return pd.DataFrame(columns=["date", "key", "name"])

    protocols = [p for p in rows["protocol"].tolist() if p]
    resolved = ctx.aggregator.counterparty_annotations(
        protocols, ctx.predicate(*rules.counterpart)
    )

    records = []
    for when, protocol, annotation in zip(
        rows["date"], rows["protocol"], rows["annotation"]
    ):
        text = resolved.get(protocol) if protocol else None
        text = text or (annotation or "").strip()
        if not text:
            continue
        name = normalize_counterparty(text, rules.unknown)
        records.append({"date": when, "key": name.key, "name": name.display})
    return pd.DataFrame(records, columns=["date", "key", "name"])


def _keys_in(frame: pd.DataFrame, period: Period) -> dict[str, str]:
    subset = filter_entries_by_period(frame, period) if not frame.empty else frame
    keys: dict[str, str] = {}
    for key, name in zip(subset["key"], subset["name"]):
        keys.setdefault(key, name)
    return keys


def _compare(
    current: dict[str, str], prior: dict[str, str], period: Period, before: Period
) -> RetentionResult:
    retained = sorted(current.keys() & prior.keys())
    rate = len(retained) / len(prior) * 100 if prior else 0.0
    return RetentionResult(
        period=period,
        prior=before,
        retained=retained,
        new=sorted(current.keys() - prior.keys()),
        churned=sorted(prior.keys() - current.keys()),
        current_count=len(current),
        prior_count=len(prior),
        retention_rate=round(rate, 2),
        names={**prior, **current},
    )


def _failed_retention(period: Period, prior: Period, exc: Exception):
    return RetentionResult(
        period=period,
        prior=prior,
        retained=[],
        new=[],
        churned=[],
        current_count=0,
        prior_count=0,
        retention_rate=0.0,
        error=str(exc),
    )


def retention(
    ctx: AnalyticsContext,
    current: Period,
    prior: Optional[Period] = None,
    side: Side = "customers",
) -> RetentionResult:
    """
    Retained, new and churned counterparties of ``current`` against ``prior``.

    ``prior`` defaults to the preceding period of equal length. The
    retention rate is 0 when the prior cohort is empty.
    """
    try:
        validate_period(current)
        prior = prior or preceding_period(current)
        validate_period(prior)
        union = Period(min(current.start, prior.start), max(current.end, prior.end))
        frame = _cohort_frame(ctx, union, side)
    except LedgerInsightError as exc:
        logger.error("retention failed: %s", exc)
        return _failed_retention(current, prior or current, exc)

    return _compare(_keys_in(frame, current), _keys_in(frame, prior), current, prior)


def preceding_month(period: Period) -> Period:
    """Calendar month before the month ``period`` starts in."""
    start = period.start
    if start.month == 1:
        return month_period(start.year - 1, 12)
    return month_period(start.year, start.month - 1)


@dataclass(frozen=True)
class MonthlyRetention:
    """Month-over-month retention of a year."""

    year: int
    months: list[RetentionResult]
    average_rate: float = 0.0
    error: Optional[str] = None


def monthly_retention(
    ctx: AnalyticsContext,
    year: int,
    first_month: int = 1,
    last_month: int = 12,
    side: Side = "customers",
) -> MonthlyRetention:
    """
    Retention of each month against the previous month.

    The average rate is taken over the months whose prior cohort is not
    empty.
    """
    try:
        periods = [month_period(year, m) for m in range(first_month, last_month + 1)]
        if not periods:
            raise ValueError(f"Empty month range {first_month}..{last_month}")
        priors = [preceding_month(p) for p in periods]
        frame = _cohort_frame(ctx, Period(priors[0].start, periods[-1].end), side)
    except (LedgerInsightError, ValueError) as exc:
        logger.error("monthly_retention failed for %s: %s", year, exc)
        return MonthlyRetention(year=year, months=[], error=str(exc))

    results = [
        _compare(_keys_in(frame, p), _keys_in(frame, b), p, b)
        for p, b in zip(periods, priors)
    ]
    rated = [r.retention_rate for r in results if r.prior_count > 0]
    average = sum(rated) / len(rated) if rated else 0.0
    return MonthlyRetention(year=year, months=results, average_rate=round(average, 2))


@dataclass(frozen=True)
class QuarterlyRetention:
    """
    Retention of each quarter against the same quarter of the previous year.

    ``retention_rate`` is the average over quarters with a non-empty prior
    cohort, or the annual rate when the previous year's cohort is larger
    than the sum of the quarterly prior cohorts.
    """

    year: int
    quarters: list[RetentionResult]
    annual: Optional[RetentionResult]
    average_rate: float = 0.0
    retention_rate: float = 0.0
    total_new: int = 0
    total_lost: int = 0
    error: Optional[str] = None


def quarterly_retention(
    ctx: AnalyticsContext, year: int, side: Side = "customers"
) -> QuarterlyRetention:
    """Quarter-by-quarter and annual retention of ``year``."""
    this_year, last_year = year_period(year), year_period(year - 1)
    try:
        frame = _cohort_frame(ctx, Period(last_year.start, this_year.end), side)
    except LedgerInsightError as exc:
        logger.error("quarterly_retention failed for %s: %s", year, exc)
        return QuarterlyRetention(year=year, quarters=[], annual=None, error=str(exc))

    quarters = [
        _compare(_keys_in(frame, q), _keys_in(frame, b), q, b)
        for q, b in zip(quarter_periods(year), quarter_periods(year - 1))
    ]
    annual = _compare(
        _keys_in(frame, this_year), _keys_in(frame, last_year), this_year, last_year
    )

    rated = [q.retention_rate for q in quarters if q.prior_count > 0]
    average = sum(rated) / len(rated) if rated else 0.0
    rate = average
    if annual.prior_count > sum(q.prior_count for q in quarters):
        rate = annual.retention_rate

    return QuarterlyRetention(
        year=year,
        quarters=quarters,
        annual=annual,
        average_rate=round(average, 2),
        retention_rate=round(rate, 2),
        total_new=max(sum(len(q.new) for q in quarters), len(annual.new)),
        total_lost=max(sum(len(q.churned) for q in quarters), len(annual.churned)),
    )
