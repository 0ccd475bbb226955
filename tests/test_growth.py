from datetime import date

import pandas as pd
import pytest

from ledger_fixtures import PERSONNEL, entry, make_context, purchase, sale

import ledger_insight.growth as growth


@pytest.fixture
def ctx(tmp_path):
    rows = (
        sale(date(2024, 1, 20), "P24-1", "ACME Srl", 1000)
        + sale(date(2025, 1, 10), "P25-1", "ACME Srl", 1000)
        + sale(date(2025, 2, 10), "P25-2", "Beta Srl", 2000)
        + purchase(date(2025, 2, 15), "A25-1", "Alfa Spa", 500)
        + sale(date(2025, 3, 10), "P25-3", "ACME Srl", 4000)
    )
    return make_context(tmp_path, rows)


def hand_made_monthly() -> pd.DataFrame:
    """Six months: a flat first quarter, revenue doubling in the second."""
    revenue = [100.0, 100.0, 100.0, 200.0, 200.0, 200.0]
    return pd.DataFrame(
        {
            "month": [f"2025-0{m}" for m in range(1, 7)],
            "revenue": revenue,
            "costs": [50.0] * 6,
            "margin": [r - 50.0 for r in revenue],
            "sales_transactions": [1] * 6,
            "purchase_transactions": [1] * 6,
        }
    )


# ---------------------------------------------------------------------------
# Deltas
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "current, previous, expected",
    [
        (150.0, 100.0, 50.0),
        (50.0, 100.0, -50.0),
        (100.0, 0.0, 100.0),
        (100.0, None, 100.0),
        (0.0, 0.0, 0.0),
        (-20.0, -10.0, 0.0),
    ],
)
def test_growth_delta_convention(current, previous, expected) -> None:
    assert growth.growth_delta(current, previous) == expected


def test_margin_delta_uses_absolute_previous() -> None:
    assert growth.margin_delta(-50.0, -100.0) == 50.0
    assert growth.margin_delta(50.0, -100.0) == 150.0
    assert growth.margin_delta(-10.0, 0.0) == -100.0
    assert growth.margin_delta(0.0, None) == 0.0


# ---------------------------------------------------------------------------
# Series
# ---------------------------------------------------------------------------


def test_monthly_series_columns_and_values(ctx) -> None:
    df = growth.monthly_series(ctx, date(2025, 1, 1), date(2025, 3, 31))

    assert list(df.columns) == growth.MONTHLY_COLUMNS
    assert df["month"].tolist() == ["2025-01", "2025-02", "2025-03"]
    assert df["revenue"].tolist() == [1000.0, 2000.0, 4000.0]
    assert df["costs"].tolist() == [0.0, 500.0, 0.0]
    assert df["margin"].tolist() == [1000.0, 1500.0, 4000.0]
    assert df["margin_pct"].tolist() == [100.0, 75.0, 100.0]
    assert df["sales_transactions"].tolist() == [1, 1, 1]
    assert df["purchase_transactions"].tolist() == [0, 1, 0]
    assert df["avg_transaction_value"].tolist() == [1000.0, 2000.0, 4000.0]


def test_monthly_series_deltas(ctx) -> None:
    """MoM deltas look back into the month before the window."""
    df = growth.monthly_series(ctx, date(2025, 1, 1), date(2025, 3, 31))

    assert df["revenue_mom"].tolist() == [100.0, 100.0, 100.0]
    assert df["costs_mom"].tolist() == [0.0, 100.0, -100.0]
    assert df["margin_mom"].tolist() == [100.0, 50.0, 166.67]
    assert df["transactions_mom"].tolist() == [100.0, 0.0, 0.0]


def test_purchase_transactions_follow_the_cost_series(tmp_path) -> None:
    """Every cost counted in ``costs`` also counts as a transaction."""
    rows = purchase(date(2025, 1, 5), "A1", "Alfa Spa", 300) + [
        entry(date(2025, 1, 27), PERSONNEL, debit=800, protocol="PAY1")
    ]
    ctx = make_context(tmp_path, rows)

    df = growth.monthly_series(ctx, date(2025, 1, 1), date(2025, 1, 31))

    assert df["costs"].tolist() == [1100.0]
    assert df["purchase_transactions"].tolist() == [2]


def test_monthly_series_yoy_needs_revenue_rows_a_year_back(ctx) -> None:
    df = growth.monthly_series(ctx, date(2025, 1, 1), date(2025, 3, 31))

    assert df["revenue_yoy"].tolist() == [0.0, None, None]


def test_monthly_series_invalid_window_is_empty(ctx, caplog) -> None:
    df = growth.monthly_series(ctx, date(2025, 3, 1), date(2025, 1, 31))

    assert df.empty
    assert list(df.columns) == growth.MONTHLY_COLUMNS
    assert "monthly_series failed" in caplog.text


def test_quarterly_series_rollup() -> None:
    q = growth.quarterly_series(hand_made_monthly())

    assert q["quarter"].tolist() == ["Q1 2025", "Q2 2025"]
    assert q["revenue"].tolist() == [300.0, 600.0]
    assert q["margin"].tolist() == [150.0, 450.0]
    assert q["sales_transactions"].tolist() == [3, 3]
    assert q["avg_transaction_value"].tolist() == [100.0, 200.0]
    assert q["margin_pct"].tolist() == [50.0, 75.0]
    assert q["revenue_growth"].tolist() == [100.0, 100.0]
    assert q["margin_growth"].tolist() == [100.0, 200.0]
    assert q["revenue_share_pct"].tolist() == [33.33, 66.67]


def test_annual_series_rollup() -> None:
    a = growth.annual_series(hand_made_monthly())

    assert a["year"].tolist() == ["2025"]
    assert a["revenue"].tolist() == [900.0]
    assert a["costs"].tolist() == [300.0]
    assert a["revenue_share_pct"].tolist() == [100.0]


def test_rollups_of_an_empty_series() -> None:
    q = growth.quarterly_series(pd.DataFrame(columns=growth.MONTHLY_COLUMNS))

    assert q.empty
    assert "revenue_share_pct" in q.columns


# ---------------------------------------------------------------------------
# CAGR
# ---------------------------------------------------------------------------


def test_compute_cagr() -> None:
    series = pd.Series([100.0, 110.0, 121.0], index=["2023", "2024", "2025"])

    result = growth.compute_cagr(series)

    assert result.value == 10.0
    assert result.periods == 2
    assert (result.start_label, result.end_label) == ("2023", "2025")
    assert result.note is None


def test_compute_cagr_anchors_on_first_positive_value() -> None:
    result = growth.compute_cagr(pd.Series([0.0, 0.0, 100.0, 121.0]))

    assert result.value == 21.0
    assert result.periods == 1
    assert result.start_label == "2"


@pytest.mark.parametrize(
    "values",
    [
        [0.0, 0.0],
        [100.0],
        [100.0, 50.0, -10.0],
    ],
)
def test_compute_cagr_insufficient_data(values) -> None:
    result = growth.compute_cagr(pd.Series(values))

    assert result.value is None
    assert result.note == growth.INSUFFICIENT_DATA


def test_growth_indices(ctx) -> None:
    report = growth.growth_indices(ctx, date(2025, 3, 31), months=3)

    assert report.error is None
    assert report.start == date(2025, 1, 1)
    assert len(report.monthly) == 3
    assert report.quarterly["quarter"].tolist() == ["Q1 2025"]
    assert report.revenue_cagr.value == 100.0
    assert report.margin_cagr.value == 100.0
    assert report.avg_revenue_mom == 100.0
    assert report.avg_margin_mom == 105.56
    assert report.last_quarter_trend == 100.0
    assert (report.initial_margin_pct, report.final_margin_pct) == (100.0, 100.0)
    assert report.margin_pct_change == 0.0


# ---------------------------------------------------------------------------
# Seasonality
# ---------------------------------------------------------------------------


def test_flat_year_has_zero_seasonality(tmp_path) -> None:
    rows: list[dict] = []
    for m in range(1, 13):
        rows += sale(date(2025, m, 5), f"S{m}", "ACME Srl", 1200)
    ctx = make_context(tmp_path, rows)

    report = growth.seasonality(ctx, 2025)

    assert report.total_revenue == 14400.0
    assert report.seasonality_index == 0.0
    assert report.peak_trough_ratio == 1.0
    assert set(report.months["revenue_share_pct"]) == {8.33}
    assert report.quarters["revenue_share_pct"].tolist() == [25.0] * 4


def test_concentrated_year(tmp_path) -> None:
    rows = (
        sale(date(2024, 1, 10), "S0", "ACME Srl", 200)
        + sale(date(2025, 1, 10), "S1", "ACME Srl", 100)
        + sale(date(2025, 7, 10), "S2", "Beta Srl", 300)
    )
    ctx = make_context(tmp_path, rows)

    report = growth.seasonality(ctx, 2025)

    assert report.peak_month == "July"
    # Months without revenue are never the trough.
    assert report.trough_month == "January"
    assert report.peak_quarter == "Q3"
    assert report.trough_quarter == "Q1"
    assert report.peak_trough_ratio == 3.0
    assert report.seasonality_index == pytest.approx(21.25, abs=0.01)

    january = report.months.iloc[0]
    assert january["previous_revenue"] == 200.0
    assert january["revenue_variation_pct"] == -50.0
    assert january["sales_transactions"] == 1
    assert report.quarters["revenue"].tolist() == [100.0, 0.0, 300.0, 0.0]


def test_seasonality_of_a_year_without_revenue(ctx, caplog) -> None:
    caplog.set_level("INFO")

    report = growth.seasonality(ctx, 2023)

    assert report.total_revenue == 0.0
    assert report.peak_month is None
    assert len(report.months) == 12
    assert "seasonality not computable" in caplog.text
