from datetime import date, datetime

import pandas as pd
import pytest

from ledger_fixtures import PAYABLES, RECEIVABLES, SALES, entry, make_tmp_db_cfg

from ledger_insight.db import (
    ExclusionMode,
    SignExpr,
    annotations_by_protocol,
    count_distinct,
    flag_balance_rows,
    has_entries,
    import_entries,
    init_database,
    list_import_batches,
    load_entries,
    monthly_amounts,
    sum_amounts,
)
from ledger_insight.errors import StoreError
from ledger_insight.predicates import AccountPredicate


def _import(cfg, rows, **kwargs):
    return import_entries(pd.DataFrame(rows), cfg, source_label="test.csv", **kwargs)


def test_init_database_creates_file_and_schema(tmp_path):
    """init_database should create the SQLite file and an empty schema."""
    cfg = make_tmp_db_cfg(tmp_path)

    assert not cfg.path.exists()
    init_database(cfg)
    assert cfg.path.exists()

    # A freshly initialized database should not contain any entries.
    assert has_entries(cfg) is False


def test_import_and_load_entries_basic_flow(tmp_path):
    """Basic round-trip: import entries, then load them for a period."""
    cfg = make_tmp_db_cfg(tmp_path)

    stats = _import(
        cfg,
        [
            entry(date(2025, 1, 10), SALES, credit=1000.0, protocol="F1"),
            entry(date(2025, 1, 10), RECEIVABLES, debit=1000.0, protocol="F1"),
            entry(date(2025, 2, 3), SALES, credit=250.5, protocol="F2"),
        ],
        imported_at=datetime(2025, 3, 1, 12, 0, 0),
    )
    assert stats.rows_inserted == 3
    assert stats.opening_rows == 0
    assert has_entries(cfg) is True

    df = load_entries(cfg, date(2025, 1, 1), date(2025, 1, 31))
    assert len(df) == 2
    assert float(df.loc[df["code"] == SALES, "credit"].iloc[0]) == 1000.0
    assert float(df.loc[df["code"] == RECEIVABLES, "debit"].iloc[0]) == 1000.0

    batches = list_import_batches(cfg)
    assert len(batches) == 1
    assert batches.iloc[0]["created_at"] == "2025-03-01T12:00:00"
    assert batches.iloc[0]["rows_inserted"] == 3


def test_import_requires_amount_columns(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    df = pd.DataFrame([{"date": date(2025, 1, 1), "code": SALES, "debit": 1.0}])

    with pytest.raises(ValueError):
        import_entries(df, cfg, source_label="broken.csv")


def test_flag_balance_rows_uses_keyword_and_date():
    """Opening needs the keyword and Jan-1; closing the keyword and Dec-31."""
    df = pd.DataFrame(
        [
            entry(date(2025, 1, 1), RECEIVABLES, debit=10, description="Apertura"),
            entry(date(2025, 1, 2), RECEIVABLES, debit=10, description="APERTURA"),
            entry(date(2025, 12, 31), PAYABLES, credit=10, description="Chiusura"),
            entry(date(2025, 12, 31), PAYABLES, credit=10, description="Rettifica"),
        ]
    )

    flagged = flag_balance_rows(df)

    assert flagged["is_opening"].tolist() == [True, False, False, False]
    assert flagged["is_closing"].tolist() == [False, False, True, False]


def test_explicit_balance_flags_override_heuristic():
    df = pd.DataFrame(
        [
            {**entry(date(2025, 3, 1), SALES, credit=5), "is_opening": "1"},
            {
                **entry(date(2025, 1, 1), SALES, credit=5, description="apertura"),
                "is_opening": "0",
            },
        ]
    )

    flagged = flag_balance_rows(df)

    assert flagged["is_opening"].tolist() == [True, False]


def test_sum_amounts_signs_and_exclusions(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    _import(
        cfg,
        [
            entry(date(2025, 1, 1), RECEIVABLES, debit=500, description="APERTURA"),
            entry(date(2025, 3, 1), RECEIVABLES, debit=200),
            entry(date(2025, 4, 1), RECEIVABLES, credit=50),
            entry(date(2025, 12, 31), RECEIVABLES, credit=650, description="CHIUSURA"),
        ],
    )
    pred = AccountPredicate.of("14.01*")
    start, end = date(2025, 1, 1), date(2025, 12, 31)

    both = sum_amounts(
        cfg, pred, start, end, SignExpr.DEBIT_MINUS_CREDIT, ExclusionMode.BOTH
    )
    closing_only = sum_amounts(
        cfg, pred, None, end, SignExpr.DEBIT_MINUS_CREDIT, ExclusionMode.CLOSING
    )
    everything = sum_amounts(
        cfg, pred, start, end, SignExpr.CREDIT_MINUS_DEBIT, ExclusionMode.NONE
    )
    absolute = sum_amounts(
        cfg, pred, start, end, SignExpr.ABS_DEBIT_MINUS_CREDIT, ExclusionMode.BOTH
    )

    assert both == 150.0
    assert closing_only == 650.0
    assert everything == 0.0
    assert absolute == 250.0


def test_sum_amounts_empty_predicate_is_zero(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)

    value = sum_amounts(
        cfg,
        AccountPredicate.of(),
        date(2025, 1, 1),
        date(2025, 12, 31),
        SignExpr.CREDIT_MINUS_DEBIT,
        ExclusionMode.BOTH,
    )

    assert value == 0.0


def test_monthly_amounts_grouped_by_month(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    _import(
        cfg,
        [
            entry(date(2025, 1, 5), SALES, credit=100),
            entry(date(2025, 1, 20), SALES, credit=50),
            entry(date(2025, 3, 2), SALES, credit=70),
        ],
    )

    df = monthly_amounts(
        cfg,
        AccountPredicate.of("58.01*"),
        date(2025, 1, 1),
        date(2025, 3, 31),
        SignExpr.CREDIT_MINUS_DEBIT,
        ExclusionMode.BOTH,
    )

    assert df["month"].tolist() == ["2025-01", "2025-03"]
    assert df["amount"].tolist() == [150.0, 70.0]


def test_count_distinct_ignores_empty_values_and_filters_side(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    _import(
        cfg,
        [
            entry(date(2025, 1, 5), SALES, credit=100, registration_number="R1"),
            entry(date(2025, 1, 6), SALES, credit=100, registration_number="R1"),
            entry(date(2025, 2, 7), SALES, credit=100, registration_number="R2"),
            entry(date(2025, 2, 8), SALES, debit=30, registration_number="R3"),
            entry(date(2025, 2, 9), SALES, credit=10),
        ],
    )
    pred = AccountPredicate.of("58.01*")
    start, end = date(2025, 1, 1), date(2025, 12, 31)

    assert count_distinct(cfg, pred, start, end, "registration_number") == 3
    assert (
        count_distinct(cfg, pred, start, end, "registration_number", side="credit")
        == 2
    )

    monthly = count_distinct(cfg, pred, start, end, "date", by_month=True)
    assert monthly["month"].tolist() == ["2025-01", "2025-02"]
    assert monthly["count"].tolist() == [2, 3]

    with pytest.raises(ValueError):
        count_distinct(cfg, pred, start, end, "annotation")


def test_annotations_by_protocol_takes_earliest_counterpart_row(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    _import(
        cfg,
        [
            entry(date(2025, 1, 5), SALES, credit=100, protocol="F1", annotation="x"),
            entry(
                date(2025, 1, 5),
                RECEIVABLES,
                debit=100,
                protocol="F1",
                annotation="ACME Srl",
            ),
            entry(
                date(2025, 1, 9),
                RECEIVABLES,
                credit=100,
                protocol="F1",
                annotation="Incasso ACME",
            ),
            entry(
                date(2025, 1, 6), RECEIVABLES, debit=50, protocol="F2", annotation=" "
            ),
        ],
    )

    resolved = annotations_by_protocol(
        cfg, ["F1", "F2", "F3", ""], AccountPredicate.of("14.01*")
    )

    assert resolved == {"F1": "ACME Srl"}


def test_queries_on_missing_schema_raise_store_error(tmp_path):
    """A file without the ledger tables surfaces as StoreError."""
    cfg = make_tmp_db_cfg(tmp_path)

    with pytest.raises(StoreError):
        sum_amounts(
            cfg,
            AccountPredicate.of("58*"),
            date(2025, 1, 1),
            date(2025, 1, 31),
            SignExpr.CREDIT_MINUS_DEBIT,
            ExclusionMode.BOTH,
        )
