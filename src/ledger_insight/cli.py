# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-Line Interface (CLI) for Ledger Insight.

This module wires together the main building blocks of Ledger Insight:

- global configuration (fiscal year, database, company, analytics settings),
- the account-pattern registry (category → account-code patterns),
- ledger import & database access,
- the analytics context (Period Aggregator + registry + tenant),
- metrics, cohort and growth analyzers,
- view helpers (tabular rendering).

The CLI is intentionally thin: it does not implement any financial logic
itself. It orchestrates the underlying modules based on command-line
arguments and configuration files.


High-level pipeline
-------------------

1) Load the main TOML configuration (``ledger_insight_config.toml`` by
   default, or ``--config PATH``).

2) Initialize the SQLite ledger store and, with ``--import CSV``, import a
   ledger export. Opening / closing carry-forward rows are flagged at import
   time using the tenant's balance keywords.

3) Build the analytics context for the tenant (``--tenant``, default from
   ``[analytics].default_tenant``). Categories without any account pattern
   are reported (or rejected when ``require_all_categories`` is set).

4) Determine the reporting period (``--period`` preset or
   ``--from-date`` / ``--to-date``; the fiscal year by default).

5) Compute the requested scope and render it as console tables and/or CSV
   files.


Scopes
------

- ``kpis`` (default): every financial KPI of the period (plus custom KPIs
  when ``[analytics].kpi_rules_file`` is set).
- ``revenue-centers`` / ``cost-centers``: breakdown by center with the
  consistency check against the totals.
- ``efficiency``: operating-efficiency report against the preceding period.
- ``customers``: top customers with trend.
- ``suppliers``: supplier ABC classification.
- ``retention``: quarterly and monthly customer retention of the year of
  the period end.
- ``growth``: monthly / quarterly / annual series ending at the period end,
  with CAGR.
- ``seasonality``: seasonality of the year of the period end.
- ``all``: all of the above.


Display modes and output
------------------------

``display.mode`` in the configuration (``table`` | ``csv`` | ``both``) can
be overridden with ``--display-mode``. CSV files are written to
``--output DIR`` (``data/output`` by default) with timestamp-based names,
e.g. ``kpis_YYYY-MM-DD-HH-MM-SS.csv``.


Examples
--------

    ledger-insight --import data/ledger_2024.csv --scope kpis
    ledger-insight --period last-fy --scope all --display-mode both
    ledger-insight --tenant acme --from-date 2024-01-01 --to-date 2024-06-30 \\
        --scope customers --log-level INFO
"""

import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import pandas as pd

from . import __version__
from .cohorts import (
    customer_profitability,
    monthly_retention,
    quarterly_retention,
    supplier_abc,
)
from .config import AppConfig, load_app_config
from .context import AnalyticsContext, build_context
from .db import has_entries, import_entries, init_database
from .errors import ConfigurationGap, LedgerInsightError
from .growth import growth_indices, seasonality
from .io import read_ledger_entries
from .metrics import compute_kpis, cost_centers, operating_efficiency, revenue_centers
from .periods import Period, determine_period_from_args
from .views import (
    centers_to_dataframe,
    customers_to_dataframe,
    efficiency_to_dataframe,
    kpis_to_dataframe,
    retention_to_dataframe,
    suppliers_to_dataframe,
)

logger = logging.getLogger(__name__)

SCOPES: tuple[str, ...] = (
    "kpis",
    "revenue-centers",
    "cost-centers",
    "efficiency",
    "customers",
    "suppliers",
    "retention",
    "growth",
    "seasonality",
)

# (title, file stem, table)
Section = tuple[str, str, pd.DataFrame]


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="ledger-insight",
        description=(
            "Ledger Insight - Financial KPI analytics engine for double-entry "
            "ledgers. Imports ledger exports, computes profitability, "
            "liquidity, efficiency, growth and customer/supplier analytics."
        ),
    )

    ap.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version of ledger_insight and exit.",
    )

    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the main TOML configuration file. If omitted, "
            "'ledger_insight_config.toml' in the current directory is used."
        ),
    )

    ap.add_argument(
        "--import",
        dest="import_path",
        metavar="CSV_PATH",
        help="Import ledger entries from the given CSV file before the analysis.",
    )

    ap.add_argument(
        "--tenant",
        help=(
            "Tenant whose account patterns and company settings are used. "
            "Defaults to [analytics].default_tenant."
        ),
    )

    # Period selection
    ap.add_argument(
        "--period",
        choices=["fy", "ytd", "mtd", "last-month", "last-fy"],
        help=(
            "Predefined reporting period. "
            "If not provided, the full fiscal year from config is used."
        ),
    )
    ap.add_argument(
        "--from-date",
        dest="from_date",
        help=(
            "Custom period start date (YYYY-MM-DD). If provided without "
            "--to-date, the fiscal year end_date from config is used."
        ),
    )
    ap.add_argument(
        "--to-date",
        dest="to_date",
        help=(
            "Custom period end date (YYYY-MM-DD). If provided without "
            "--from-date, the fiscal year start_date from config is used."
        ),
    )

    ap.add_argument(
        "--scope",
        choices=[*SCOPES, "all"],
        default="kpis",
        help="Select what to compute and render (default: kpis).",
    )

    # Display options
    ap.add_argument(
        "--display-mode",
        dest="display_mode",
        choices=["table", "csv", "both"],
        help=(
            "Override the display.mode setting from the configuration file. "
            "'table' prints results to stdout, "
            "'csv' writes CSV files only, "
            "'both' does both."
        ),
    )
    ap.add_argument(
        "--output",
        dest="output_dir",
        help=(
            "Output directory where CSV files will be written when display "
            "mode includes 'csv'. If omitted, 'data/output' is used."
        ),
    )

    ap.add_argument(
        "--log-level",
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level (default: WARNING).",
    )
    return ap


# ---------------------------------------------------------------------------
# Scope builders
# ---------------------------------------------------------------------------


def _kpi_sections(ctx: AnalyticsContext, period: Period, config: AppConfig):
    kpis = compute_kpis(ctx, period)
    return [("Financial KPIs", "kpis", kpis_to_dataframe(kpis, config.decimals))]


def _center_sections(ctx: AnalyticsContext, period: Period, kind: str):
    if kind == "revenue":
        breakdown, title = revenue_centers(ctx, period), "Revenue centers"
    else:
        breakdown, title = cost_centers(ctx, period), "Cost centers"

    if not breakdown.consistent:
        print(
            f"Warning: {title.lower()} sum to {breakdown.sum_of_centers:.2f} "
            f"but the total is {breakdown.total:.2f} "
            f"(discrepancy {breakdown.discrepancy:.2f})."
        )
    return [(title, f"{kind}_centers", centers_to_dataframe(breakdown))]


def _efficiency_sections(ctx: AnalyticsContext, period: Period):
    report = operating_efficiency(ctx, period)
    if report.ratings:
        ratings = ", ".join(f"{k}: {v}" for k, v in report.ratings.items())
        print(f"Efficiency ratings: {ratings}")
    return [("Operating efficiency", "efficiency", efficiency_to_dataframe(report))]


def _customer_sections(ctx: AnalyticsContext, period: Period):
    result = customer_profitability(ctx, period)
    print(
        f"Active customers: {result.active_customers}, "
        f"revenue {result.total_revenue:.2f} "
        f"({result.total_variation_pct:+.2f}% vs previous period)"
    )
    return [("Top customers", "customers", customers_to_dataframe(result))]


def _supplier_sections(ctx: AnalyticsContext, period: Period):
    result = supplier_abc(ctx, period)
    counts = result.cohort.tier_counts
    print(
        "Suppliers per tier: "
        + ", ".join(f"{t}={counts.get(t, 0)}" for t in ("A", "B", "C"))
        + f"; new: {len(result.new_suppliers)}, growing: {result.growing_count}"
    )
    return [("Supplier ABC", "suppliers", suppliers_to_dataframe(result))]


def _retention_sections(ctx: AnalyticsContext, period: Period):
    year = period.end.year
    quarterly = quarterly_retention(ctx, year)
    monthly = monthly_retention(ctx, year, 1, period.end.month)
    print(
        f"Customer retention {year}: {quarterly.retention_rate:.2f}% "
        f"(monthly average {monthly.average_rate:.2f}%)"
    )
    rows = list(quarterly.quarters)
    if quarterly.annual is not None:
        rows.append(quarterly.annual)
    return [
        ("Quarterly retention", "retention_quarterly", retention_to_dataframe(rows)),
        (
            "Monthly retention",
            "retention_monthly",
            retention_to_dataframe(monthly.months),
        ),
    ]


def _growth_sections(ctx: AnalyticsContext, period: Period, config: AppConfig):
    report = growth_indices(ctx, period.end, config.analytics.growth_months)
    cagr = report.revenue_cagr
    cagr_text = f"{cagr.value:.2f}%" if cagr.value is not None else cagr.note
    print(
        f"Revenue CAGR: {cagr_text}; average MoM {report.avg_revenue_mom:.2f}%; "
        f"last quarter trend {report.last_quarter_trend:.2f}%"
    )
    return [
        ("Monthly growth", "growth_monthly", report.monthly),
        ("Quarterly growth", "growth_quarterly", report.quarterly),
        ("Annual growth", "growth_annual", report.annual),
    ]


def _seasonality_sections(ctx: AnalyticsContext, period: Period):
    report = seasonality(ctx, period.end.year)
    if report.peak_month:
        print(
            f"Seasonality {report.year}: peak {report.peak_month}, "
            f"trough {report.trough_month}, peak quarter {report.peak_quarter}, "
            f"trough quarter {report.trough_quarter}, "
            f"index {report.seasonality_index:.2f}"
        )
    return [
        ("Seasonality by month", "seasonality_months", report.months),
        ("Seasonality by quarter", "seasonality_quarters", report.quarters),
    ]


def _compute_scope(
    scope: str, ctx: AnalyticsContext, period: Period, config: AppConfig
) -> list[Section]:
    if scope == "kpis":
        return _kpi_sections(ctx, period, config)
    if scope == "revenue-centers":
        return _center_sections(ctx, period, "revenue")
    if scope == "cost-centers":
        return _center_sections(ctx, period, "cost")
    if scope == "efficiency":
        return _efficiency_sections(ctx, period)
    if scope == "customers":
        return _customer_sections(ctx, period)
    if scope == "suppliers":
        return _supplier_sections(ctx, period)
    if scope == "retention":
        return _retention_sections(ctx, period)
    if scope == "growth":
        return _growth_sections(ctx, period, config)
    if scope == "seasonality":
        return _seasonality_sections(ctx, period)
    raise ValueError(f"Unknown scope: {scope!r}")


def _render(
    sections: list[Section], display_mode: str, output_dir: Optional[str]
) -> None:
    if display_mode in {"table", "both"}:
        for title, _, df in sections:
            print()
            print(f"=== {title} ===")
            print(df.to_string(index=False) if not df.empty else "(no data)")

    if display_mode in {"csv", "both"}:
        out = Path(output_dir) if output_dir else Path("data/output")
        out.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y-%m-%d-%H-%M-%S")
        for _, stem, df in sections:
            path = out / f"{stem}_{timestamp}.csv"
            df.to_csv(path, index=False)
            print(f"Wrote {path} ({len(df)} rows)")


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for the Ledger Insight CLI."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # --version: short-circuit and exit early.
    if args.version:
        print(f"ledger_insight version {__version__}")
        return

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # 1) Load application configuration
    try:
        if args.config_path:
            config = load_app_config(args.config_path)
        else:
            config = load_app_config()
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))

    tenant = args.tenant or config.analytics.default_tenant

    # 2) Initialize the database and optionally import a CSV ledger
    init_database(config.database)

    if args.import_path:
        csv_path = Path(args.import_path)
        if not csv_path.is_file():
            parser.error(f"CSV file for --import not found: {csv_path}")

        print(f"Importing ledger entries from {csv_path} into the database...")
        keywords = config.keywords_for(tenant)
        try:
            stats = import_entries(
                read_ledger_entries(csv_path),
                config.database,
                source_type="csv",
                source_label=str(csv_path),
                opening_keyword=keywords.opening,
                closing_keyword=keywords.closing,
            )
        except (ValueError, LedgerInsightError) as exc:
            parser.error(f"Import failed: {exc}")
        print(
            f"Imported batch #{stats.batch_id}: {stats.rows_inserted} entries "
            f"({stats.opening_rows} opening, {stats.closing_rows} closing rows)."
        )
    elif not has_entries(config.database):
        print("Warning: database is empty; use --import to load ledger entries.")

    # 3) Analytics context for the tenant
    try:
        ctx = build_context(config, tenant)
    except (ConfigurationGap, FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))

    # 4) Reporting period
    try:
        period = determine_period_from_args(args, config.fiscal_year)
    except (ValueError, LedgerInsightError) as exc:
        parser.error(str(exc))

    print(
        f"Tenant: {ctx.tenant}, period: {period.label} "
        f"({period.start.isoformat()} → {period.end.isoformat()})"
    )

    # 5) Compute and render
    scopes = SCOPES if args.scope == "all" else (args.scope,)
    sections: list[Section] = []
    for scope in scopes:
        sections.extend(_compute_scope(scope, ctx, period, config))

    info = ctx.aggregator.cache_info()
    logger.info(
        "Aggregation cache: %d hits, %d misses, %d entries",
        info.hits,
        info.misses,
        info.size,
    )

    _render(sections, args.display_mode or config.display_mode, args.output_dir)


if __name__ == "__main__":
    main()
