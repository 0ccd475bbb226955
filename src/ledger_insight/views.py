# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
View utilities for Ledger Insight.

The analytics modules return dataclasses (KpiResult, CenterBreakdown,
EfficiencyReport, CustomerProfitability, CohortResult, RetentionResult...).
This module turns them into pandas DataFrames with a stable column order,
ready to be printed as tables or exported as CSV by the CLI.

No computation happens here beyond rounding and ordering.
"""

from typing import Iterable, Optional

import pandas as pd

from .cohorts import (
    CohortResult,
    CustomerProfitability,
    EntityAggregate,
    RetentionResult,
    SupplierAbc,
)
from .metrics import (
    KPI_CATEGORIES,
    CenterBreakdown,
    EfficiencyReport,
    KpiResult,
    active_centers,
)

KPI_COLUMNS = ["key", "label", "value", "unit", "category"]
CENTER_COLUMNS = ["key", "label", "value", "pct"]
EFFICIENCY_COLUMNS = ["metric", "current", "previous", "variation_pct"]
CUSTOMER_COLUMNS = [
    "rank",
    "name",
    "net_amount",
    "share_pct",
    "invoice_count",
    "credit_note_count",
    "previous_amount",
    "variation_pct",
    "trend",
]
ENTITY_COLUMNS = [
    "key",
    "name",
    "gross_amount",
    "credit_note_amount",
    "net_amount",
    "invoice_count",
    "credit_note_count",
    "first_date",
    "last_date",
]
TIER_COLUMNS = [
    "tier",
    "name",
    "net_amount",
    "share_pct",
    "cumulative_pct",
    "invoice_count",
    "trend",
]
RETENTION_COLUMNS = [
    "period",
    "prior",
    "current_count",
    "prior_count",
    "retained",
    "new",
    "churned",
    "retention_rate",
]


def kpis_to_dataframe(kpis: list[KpiResult], decimals: int) -> pd.DataFrame:
    """
    Convert a list of KpiResult objects into a pandas DataFrame.

    The resulting DataFrame has the columns key, label, value, unit and
    category. Values are rounded to ``decimals``; KPIs that could not be
    computed get NaN. Rows are grouped by category (profitability,
    liquidity, leverage, efficiency, custom) and keep their computation
    order inside a category.
    """
    if not kpis:
        return pd.DataFrame(columns=KPI_COLUMNS)

    order = {name: i for i, name in enumerate(KPI_CATEGORIES)}
    rows: list[dict[str, object]] = []
    for k in kpis:
        value = float("nan") if k.value is None else round(k.value, decimals)
        rows.append(
            {
                "key": k.key,
                "label": k.label,
                "value": value,
                "unit": k.unit,
                "category": k.category,
            }
        )

    df = pd.DataFrame(rows)
    df["__category_order__"] = df["category"].map(lambda c: order.get(c, 99))
    df = df.sort_values("__category_order__", kind="stable").drop(
        columns=["__category_order__"]
    )
    return df[KPI_COLUMNS].reset_index(drop=True)


def centers_to_dataframe(
    breakdown: CenterBreakdown, active_only: bool = False
) -> pd.DataFrame:
    """One row per center; ``active_only`` drops centers with no value."""
    centers = active_centers(breakdown) if active_only else breakdown.centers
    rows = [
        {"key": c.key, "label": c.label, "value": c.value, "pct": c.pct}
        for c in centers.values()
    ]
    return pd.DataFrame(rows, columns=CENTER_COLUMNS)


def efficiency_to_dataframe(report: EfficiencyReport) -> pd.DataFrame:
    rows = [
        {
            "metric": key,
            "current": value,
            "previous": report.previous.get(key, 0.0),
            "variation_pct": report.variations.get(key, 0.0),
        }
        for key, value in report.current.items()
    ]
    return pd.DataFrame(rows, columns=EFFICIENCY_COLUMNS)


def customers_to_dataframe(result: CustomerProfitability) -> pd.DataFrame:
    """Ranked customers with their share of revenue and trend."""
    rows = [
        {
            "rank": i,
            "name": c.name,
            "net_amount": c.net_amount,
            "share_pct": c.share_pct,
            "invoice_count": c.invoice_count,
            "credit_note_count": c.credit_note_count,
            "previous_amount": c.previous_amount,
            "variation_pct": c.variation_pct,
            "trend": c.trend,
        }
        for i, c in enumerate(result.customers, start=1)
    ]
    return pd.DataFrame(rows, columns=CUSTOMER_COLUMNS)


def entities_to_dataframe(entities: Iterable[EntityAggregate]) -> pd.DataFrame:
    rows = [
        {
            "key": e.key,
            "name": e.name,
            "gross_amount": round(e.gross_amount, 2),
            "credit_note_amount": round(e.credit_note_amount, 2),
            "net_amount": e.net_amount,
            "invoice_count": e.invoice_count,
            "credit_note_count": e.credit_note_count,
            "first_date": e.first_date,
            "last_date": e.last_date,
        }
        for e in entities
    ]
    return pd.DataFrame(rows, columns=ENTITY_COLUMNS)


def tiers_to_dataframe(
    cohort: CohortResult, trends: Optional[dict[str, str]] = None
) -> pd.DataFrame:
    """Entities of an ABC classification, tier A first."""
    trends = trends or {}
    rows = [
        {
            "tier": t.tier,
            "name": t.entity.name,
            "net_amount": t.entity.net_amount,
            "share_pct": t.share_pct,
            "cumulative_pct": t.cumulative_pct,
            "invoice_count": t.entity.invoice_count,
            "trend": trends.get(t.entity.key, ""),
        }
        for t in cohort.all_entities()
    ]
    return pd.DataFrame(rows, columns=TIER_COLUMNS)


def suppliers_to_dataframe(result: SupplierAbc) -> pd.DataFrame:
    return tiers_to_dataframe(result.cohort, result.trends)


def retention_to_dataframe(results: Iterable[RetentionResult]) -> pd.DataFrame:
    """One row per compared period pair, with set sizes and the rate."""
    rows = [
        {
            "period": r.period.label or f"{r.period.start} → {r.period.end}",
            "prior": r.prior.label or f"{r.prior.start} → {r.prior.end}",
            "current_count": r.current_count,
            "prior_count": r.prior_count,
            "retained": len(r.retained),
            "new": len(r.new),
            "churned": len(r.churned),
            "retention_rate": r.retention_rate,
        }
        for r in results
    ]
    return pd.DataFrame(rows, columns=RETENTION_COLUMNS)
