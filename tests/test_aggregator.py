from datetime import date

import pytest

from ledger_fixtures import RECEIVABLES, SALES, SERVICES, entry, make_context

from ledger_insight.aggregator import ExclusionMode, SignExpr
from ledger_insight.errors import InputValidationError
from ledger_insight.periods import Period, year_period
from ledger_insight.predicates import AccountPredicate

YEAR = year_period(2025)


@pytest.fixture
def ctx(tmp_path):
    rows = [
        entry(date(2025, 1, 1), RECEIVABLES, debit=400, description="APERTURA"),
        entry(date(2025, 1, 15), SALES, credit=1000, protocol="F1"),
        entry(date(2025, 2, 15), SALES, credit=500, protocol="F2"),
        entry(date(2025, 2, 20), SERVICES, credit=200, protocol="F3"),
        entry(date(2025, 3, 1), SALES, debit=100, protocol="NC1"),
        entry(date(2025, 3, 5), RECEIVABLES, debit=1600),
        entry(date(2025, 12, 31), RECEIVABLES, credit=2000, description="CHIUSURA"),
    ]
    return make_context(tmp_path, rows)


def test_aggregate_signed_flow(ctx) -> None:
    agg = ctx.aggregator
    revenue = ctx.predicate("SALES_REVENUE", "SERVICE_REVENUE")

    assert agg.aggregate(revenue, YEAR, SignExpr.CREDIT_MINUS_DEBIT) == 1600.0
    assert agg.aggregate(revenue, YEAR, SignExpr.DEBIT_MINUS_CREDIT) == -1600.0
    assert agg.aggregate(revenue, YEAR, SignExpr.ABS_DEBIT_MINUS_CREDIT) == 1800.0


def test_aggregate_excludes_carry_forward_rows_by_default(ctx) -> None:
    agg = ctx.aggregator
    receivables = ctx.predicate("TRADE_RECEIVABLES")

    flow = agg.aggregate(receivables, YEAR, SignExpr.DEBIT_MINUS_CREDIT)
    with_all = agg.aggregate(
        receivables, YEAR, SignExpr.DEBIT_MINUS_CREDIT, ExclusionMode.NONE
    )

    assert flow == 1600.0
    assert with_all == 0.0


def test_cumulative_excludes_only_closing_rows(ctx) -> None:
    agg = ctx.aggregator
    receivables = ctx.predicate("TRADE_RECEIVABLES")

    assert (
        agg.cumulative(receivables, date(2025, 12, 31), SignExpr.DEBIT_MINUS_CREDIT)
        == 2000.0
    )
    assert (
        agg.cumulative(
            receivables,
            date(2025, 12, 31),
            SignExpr.DEBIT_MINUS_CREDIT,
            since=date(2025, 2, 1),
        )
        == 1600.0
    )

    with pytest.raises(InputValidationError):
        agg.cumulative(
            receivables, date(2025, 1, 1), SignExpr.DEBIT_MINUS_CREDIT, date(2025, 2, 1)
        )


def test_repeated_queries_hit_the_cache(ctx) -> None:
    """Identical (predicate, period, sign, exclusion) tuples query once."""
    agg = ctx.aggregator
    pred = ctx.predicate("SALES_REVENUE")

    first = agg.aggregate(pred, YEAR, SignExpr.CREDIT_MINUS_DEBIT)
    second = agg.aggregate(pred, YEAR, SignExpr.CREDIT_MINUS_DEBIT)
    agg.aggregate(pred, YEAR, SignExpr.DEBIT_MINUS_CREDIT)

    info = agg.cache_info()
    assert first == second == 1400.0
    assert (info.hits, info.misses, info.size) == (1, 2, 2)

    agg.clear_cache()
    assert agg.cache_info().size == 0


def test_empty_predicate_is_zero_without_query(ctx) -> None:
    agg = ctx.aggregator

    value = agg.aggregate(AccountPredicate.of(), YEAR, SignExpr.CREDIT_MINUS_DEBIT)

    assert value == 0.0
    assert agg.cache_info().misses == 0


def test_inverted_period_raises(ctx) -> None:
    inverted = Period(date(2025, 12, 31), date(2025, 1, 1))

    with pytest.raises(InputValidationError):
        ctx.aggregator.aggregate(
            ctx.predicate("SALES_REVENUE"), inverted, SignExpr.CREDIT_MINUS_DEBIT
        )


def test_monthly_series_and_counts(ctx) -> None:
    agg = ctx.aggregator
    revenue = ctx.predicate("SALES_REVENUE", "SERVICE_REVENUE")

    monthly = agg.monthly(revenue, YEAR, SignExpr.CREDIT_MINUS_DEBIT)
    counts = agg.monthly_count_distinct(revenue, YEAR, "protocol")

    assert monthly.to_dict() == {
        "2025-01": 1000.0,
        "2025-02": 700.0,
        "2025-03": -100.0,
    }
    assert counts.to_dict() == {"2025-01": 1, "2025-02": 2, "2025-03": 1}
    assert agg.count_distinct(revenue, YEAR, "protocol", side="credit") == 3


def test_scan_returns_matching_rows(ctx) -> None:
    rows = ctx.aggregator.scan(ctx.predicate("SALES_REVENUE"), YEAR)

    assert rows["protocol"].tolist() == ["F1", "F2", "NC1"]
    assert set(rows["code"]) == {SALES}
