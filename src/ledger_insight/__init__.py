# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Ledger Insight
--------------

A financial KPI analytics engine for double-entry accounting ledgers.

Main capabilities:
- a SQLite ledger store fed from CSV exports (debit/credit or signed amounts),
- a per-tenant account-pattern registry mapping categories and cost natures
  to account codes, with disjointness checks at load time,
- a cached Period Aggregator (flow and cumulative-to-date sums),
- profitability, liquidity, leverage and efficiency metrics,
- revenue and cost center breakdowns,
- customer / supplier attribution from ledger annotations, ABC tiers,
  trends and retention,
- monthly / quarterly / annual growth series, CAGR and seasonality,
- a command-line interface rendering tables and CSV files.

Usage:
    ledger-insight --help
"""

__all__ = ["aggregator", "metrics", "cohorts", "growth", "views"]

__version__ = "0.1.0"
