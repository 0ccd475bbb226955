# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Exception hierarchy for Ledger Insight.

The analytics layer distinguishes three failure families:

- input validation problems (inverted or malformed periods),
- ledger store failures (SQLite errors),
- configuration gaps (categories without any account pattern).

Public calculators in ``metrics``, ``cohorts`` and ``growth`` catch these
exceptions, log them and return a zero or empty result. They are raised
freely by the lower layers (``db``, ``aggregator``, ``predicates``).
"""


class LedgerInsightError(Exception):
    """Base class for all errors raised by Ledger Insight."""


class InputValidationError(LedgerInsightError, ValueError):
    """Raised when a period or another caller-supplied argument is invalid."""


class StoreError(LedgerInsightError, RuntimeError):
    """Raised when the ledger store fails to execute a query."""


class ConfigurationGap(LedgerInsightError, LookupError):
    """Raised when required categories have no account pattern mapped."""

    def __init__(self, tenant: str, categories: list[str]):
        self.tenant = tenant
        self.categories = list(categories)
        joined = ", ".join(self.categories)
        super().__init__(
            f"No account patterns mapped for tenant {tenant!r}: {joined}"
        )


class PatternOverlapError(LedgerInsightError, ValueError):
    """Raised when two categories (or cost natures) share account codes."""
