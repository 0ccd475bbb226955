# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Period aggregation engine for Ledger Insight.

The Period Aggregator is the single entry point through which every
calculator reads the ledger. It evaluates signed sums over the rows that
match an account predicate, fall within a period and survive a
balance-exclusion mode:

    aggregate(predicate, period, sign, exclusion) -> amount

where ``sign`` is one of:
    - debit - credit    (cost and asset accounts)
    - credit - debit    (revenue, liability and equity accounts)
    - |debit - credit|  (summed row by row)

Two flavours exist:

1. Flow aggregation (``aggregate``)
   -------------------------------
   Sums over [start, end]. The default exclusion is BOTH: opening and
   closing carry-forward rows are left out of revenue/cost figures.

2. Cumulative-to-date aggregation (``cumulative``)
   ----------------------------------------------
   Sums from the ledger inception (or a caller-supplied lower bound) up to
   ``end``, excluding only closing rows. This is used for balance-sheet
   style figures: capital, receivables, payables, inventories.

Each call is pushed to the store as one aggregate query. Results are cached
for the lifetime of the aggregator, keyed on (predicate, start, end,
exclusion, sign). An aggregator is meant to serve one request (one report,
one CLI run); create a new one, or call ``clear_cache()``, to observe new
ledger rows.

An empty predicate returns 0 (or an empty result) without querying the
store. An inverted period raises InputValidationError; store failures
surface as StoreError. Callers in the metrics layer turn both into logged
zero results.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Literal, Optional

import pandas as pd

from . import db
from .db import DatabaseConfig, ExclusionMode, SignExpr
from .errors import InputValidationError
from .periods import Period, validate_period
from .predicates import AccountPredicate

__all__ = ["CacheInfo", "ExclusionMode", "PeriodAggregator", "SignExpr"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheInfo:
    """Hit / miss counters of the aggregation cache."""

    hits: int
    misses: int
    size: int


class PeriodAggregator:
    """Evaluate signed sums over the ledger store, with a request-scoped cache."""

    def __init__(self, db_config: DatabaseConfig):
        self.db_config = db_config
        self._cache: dict[tuple, Any] = {}
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _cached(self, key: tuple, compute):
        if key in self._cache:
            self._hits += 1
            return self._cache[key]
        self._misses += 1
        value = compute()
        self._cache[key] = value
        return value

    def cache_info(self) -> CacheInfo:
        return CacheInfo(hits=self._hits, misses=self._misses, size=len(self._cache))

    def clear_cache(self) -> None:
        self._cache.clear()
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Sums
    # ------------------------------------------------------------------

    def aggregate(
        self,
        predicate: AccountPredicate,
        period: Period,
        sign: SignExpr,
        exclusion: ExclusionMode = ExclusionMode.BOTH,
    ) -> float:
        """
        Sum ``sign`` over the rows matching ``predicate`` within ``period``.

        Args:
            predicate: Accounts to include. Empty → 0.0 without a query.
            period: Inclusive date range.
            sign: Signed expression to sum.
            exclusion: Carry-forward rows to leave out (default: both).

        Returns:
            The raw (unrounded) sum in currency units.

        Raises:
            InputValidationError: if the period is inverted.
            StoreError: if the query fails.
        """
        validate_period(period)
        if predicate.is_empty:
            return 0.0

        key = ("sum", predicate, period.start, period.end, exclusion, sign)
        return self._cached(
            key,
            lambda: db.sum_amounts(
                self.db_config, predicate, period.start, period.end, sign, exclusion
            ),
        )

    def cumulative(
        self,
        predicate: AccountPredicate,
        end: date,
        sign: SignExpr,
        since: Optional[date] = None,
    ) -> float:
        """
        Balance of ``predicate`` from ``since`` (default: inception) to ``end``.

        Only closing carry-forward rows are excluded.
        """
        if since is not None and end < since:
            raise InputValidationError(
                f"Invalid cumulative range: {end} is before {since}."
            )
        if predicate.is_empty:
            return 0.0

        key = ("sum", predicate, since, end, ExclusionMode.CLOSING, sign)
        return self._cached(
            key,
            lambda: db.sum_amounts(
                self.db_config, predicate, since, end, sign, ExclusionMode.CLOSING
            ),
        )

    def monthly(
        self,
        predicate: AccountPredicate,
        period: Period,
        sign: SignExpr,
        exclusion: ExclusionMode = ExclusionMode.BOTH,
    ) -> pd.Series:
        """
        Monthly sums over ``period`` as a Series indexed by 'YYYY-MM'.

        Months without matching rows are absent from the index.
        """
        validate_period(period)
        key = ("monthly", predicate, period.start, period.end, exclusion, sign)

        def _compute() -> pd.Series:
            df = db.monthly_amounts(
                self.db_config, predicate, period.start, period.end, sign, exclusion
            )
            return pd.Series(
                df["amount"].to_numpy(dtype=float), index=df["month"].astype(str)
            )

        return self._cached(key, _compute).copy()

    # ------------------------------------------------------------------
    # Counts and scans
    # ------------------------------------------------------------------

    def count_distinct(
        self,
        predicate: AccountPredicate,
        period: Period,
        column: Literal["protocol", "registration_number", "date"],
        side: Optional[Literal["debit", "credit"]] = None,
        exclusion: ExclusionMode = ExclusionMode.BOTH,
    ) -> int:
        """Number of distinct ``column`` values over the matching rows."""
        validate_period(period)
        key = ("count", predicate, period.start, period.end, exclusion, column, side)
        return self._cached(
            key,
            lambda: db.count_distinct(
                self.db_config,
                predicate,
                period.start,
                period.end,
                column,
                side=side,
                exclusion=exclusion,
            ),
        )

    def monthly_count_distinct(
        self,
        predicate: AccountPredicate,
        period: Period,
        column: Literal["protocol", "registration_number", "date"],
        side: Optional[Literal["debit", "credit"]] = None,
        exclusion: ExclusionMode = ExclusionMode.BOTH,
    ) -> pd.Series:
        """Distinct counts per month as a Series indexed by 'YYYY-MM'."""
        validate_period(period)
        key = ("mcount", predicate, period.start, period.end, exclusion, column, side)

        def _compute() -> pd.Series:
            df = db.count_distinct(
                self.db_config,
                predicate,
                period.start,
                period.end,
                column,
                side=side,
                exclusion=exclusion,
                by_month=True,
            )
            return pd.Series(
                df["count"].to_numpy(dtype=int), index=df["month"].astype(str)
            )

        return self._cached(key, _compute).copy()

    def scan(
        self,
        predicate: AccountPredicate,
        period: Period,
        exclusion: ExclusionMode = ExclusionMode.BOTH,
    ) -> pd.DataFrame:
        """Ledger rows matching ``predicate`` within ``period`` (not cached)."""
        validate_period(period)
        return db.scan_entries(
            self.db_config, predicate, period.start, period.end, exclusion
        )

    def counterparty_annotations(
        self, protocols, predicate: AccountPredicate
    ) -> dict[str, str]:
        """First non-empty annotation per protocol on ``predicate`` rows."""
        return db.annotations_by_protocol(self.db_config, protocols, predicate)
