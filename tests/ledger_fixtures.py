"""Shared helpers to build small ledgers for the analytics tests."""

from datetime import date
from pathlib import Path
from typing import Optional

import pandas as pd

from ledger_insight.aggregator import PeriodAggregator
from ledger_insight.config import AnalyticsSettings, CompanyConfig
from ledger_insight.context import AnalyticsContext
from ledger_insight.db import DatabaseConfig, import_entries, init_database
from ledger_insight.predicates import AccountPatternRegistry, load_pattern_registry

PATTERNS_FILE = Path(__file__).resolve().parents[1] / "config" / "account_patterns.csv"

# Account codes matching config/account_patterns.csv
SALES = "58.01.001"
SERVICES = "58.05.001"
CASH_RECEIPTS = "58.10.001"
GAINS = "64.01.001"
DIRECT = "66.01.001"
INDIRECT = "66.05.001"
RAW_MATERIALS = "66.10.001"
SERVICE_COSTS = "68.01.001"
IT_SOFTWARE = "68.10.001"
PERSONNEL = "72.01.001"
SOCIAL = "72.05.001"
DEPRECIATION = "76.01.001"
FINANCIAL = "80.01.001"
TAXES = "82.01.001"
FIXED_ASSETS = "04.01.001"
OPENING_INVENTORY = "10.01.001"
CLOSING_INVENTORY = "10.05.001"
RECEIVABLES = "14.01.001"
BANK = "18.01.001"
SHARE_CAPITAL = "28.01.001"
RESERVES = "28.05.001"
PAYABLES = "40.01.001"
BANK_DEBT = "42.01.001"


def make_tmp_db_cfg(tmp_path) -> DatabaseConfig:
    """Helper to build a DatabaseConfig pointing to a temporary SQLite file."""
    db_path = tmp_path / "test_ledger.sqlite"
    return DatabaseConfig(engine="sqlite", path=db_path)


def entry(
    day: date,
    code: str,
    debit: float = 0.0,
    credit: float = 0.0,
    protocol: Optional[str] = None,
    annotation: Optional[str] = None,
    description: str = "",
    registration_number: Optional[str] = None,
) -> dict:
    return {
        "date": day,
        "code": code,
        "debit": debit,
        "credit": credit,
        "protocol": protocol,
        "annotation": annotation,
        "description": description,
        "registration_number": registration_number,
    }


def sale(
    day: date,
    protocol: str,
    customer: str,
    amount: float,
    code: str = SALES,
) -> list[dict]:
    """An invoice: revenue credit + receivable debit sharing one protocol.

    A negative amount books a credit note.
    """
    revenue = entry(day, code, credit=amount, protocol=protocol)
    if amount < 0:
        revenue = entry(day, code, debit=-amount, protocol=protocol)
    receivable = entry(
        day,
        RECEIVABLES,
        debit=max(amount, 0.0),
        credit=max(-amount, 0.0),
        protocol=protocol,
        annotation=customer,
    )
    return [revenue, receivable]


def purchase(
    day: date, protocol: str, supplier: str, amount: float, code: str = DIRECT
) -> list[dict]:
    """A supplier invoice: cost debit + payable credit sharing one protocol."""
    return [
        entry(day, code, debit=amount, protocol=protocol),
        entry(day, PAYABLES, credit=amount, protocol=protocol, annotation=supplier),
    ]


def load_registry() -> AccountPatternRegistry:
    return load_pattern_registry(str(PATTERNS_FILE))


def make_context(
    tmp_path,
    rows: list[dict],
    company: Optional[CompanyConfig] = None,
    **settings,
) -> AnalyticsContext:
    """Import ``rows`` into a temporary ledger and return a context on it."""
    cfg = make_tmp_db_cfg(tmp_path)
    init_database(cfg)
    if rows:
        import_entries(pd.DataFrame(rows), cfg, source_label="fixture")
    return AnalyticsContext(
        aggregator=PeriodAggregator(cfg),
        registry=load_registry(),
        tenant="default",
        company=company or CompanyConfig(name="Test Srl", city="Milano"),
        settings=AnalyticsSettings(**settings),
    )
