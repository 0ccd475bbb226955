import pytest

from ledger_fixtures import PATTERNS_FILE, load_registry

import ledger_insight.categories as cat
from ledger_insight.errors import PatternOverlapError
from ledger_insight.predicates import (
    AccountPattern,
    AccountPatternRegistry,
    AccountPredicate,
    PatternRule,
    load_pattern_registry,
    parse_pattern,
)


def test_parse_pattern_prefix_and_exact() -> None:
    """A trailing '*' makes a prefix pattern, anything else is exact."""
    assert parse_pattern("70*") == AccountPattern("70", is_prefix=True)
    assert parse_pattern(" 62201 ") == AccountPattern("62201", is_prefix=False)
    assert parse_pattern("4011", is_prefix=True).is_prefix is True

    with pytest.raises(ValueError):
        parse_pattern("*")


def test_predicate_matches_prefix_and_exact_codes() -> None:
    pred = AccountPredicate.of("70*;71*", "6201")

    assert pred.matches("70100")
    assert pred.matches("71")
    assert pred.matches("6201")
    assert not pred.matches("62010")
    assert not pred.matches("60")


def test_empty_predicate_matches_nothing() -> None:
    pred = AccountPredicate.of()

    assert pred.is_empty
    assert not pred.matches("70")
    assert pred.to_sql() == ("0", [])


def test_to_sql_is_parameterized_and_keeps_pattern_order() -> None:
    """Pattern text only ever reaches the bound parameters."""
    clause, params = AccountPredicate.of("70*", "6201").to_sql()

    assert clause == "(code LIKE ? ESCAPE '\\' OR code = ?)"
    assert params == ["70%", "6201"]


def test_to_sql_escapes_like_wildcards() -> None:
    """'%' and '_' inside a prefix must not act as LIKE wildcards."""
    _, params = AccountPredicate.of("58_01*", "10%*").to_sql()

    assert params == ["58\\_01%", "10\\%%"]


def test_union_deduplicates_patterns() -> None:
    a = AccountPredicate.of("70*", "71*")
    b = AccountPredicate.of("71*", "72*")

    merged = a.union(b)

    assert [str(p) for p in merged.patterns] == ["70*", "71*", "72*"]


def test_pattern_overlap_rules() -> None:
    prefix_70 = AccountPattern("70", is_prefix=True)
    prefix_701 = AccountPattern("701", is_prefix=True)
    exact_7011 = AccountPattern("7011")
    exact_60 = AccountPattern("60")

    assert prefix_70.overlaps(prefix_701)
    assert prefix_701.overlaps(prefix_70)
    assert prefix_70.overlaps(exact_7011)
    assert not prefix_70.overlaps(exact_60)
    assert not exact_7011.overlaps(AccountPattern("7012"))


def test_registry_rejects_overlapping_categories() -> None:
    """Two categories may not claim the same account codes."""
    rules = [
        PatternRule("default", "SALES_REVENUE", parse_pattern("70*")),
        PatternRule("default", "SERVICE_REVENUE", parse_pattern("7011")),
    ]

    with pytest.raises(PatternOverlapError):
        AccountPatternRegistry(rules)


def test_registry_allows_overlap_across_tenants() -> None:
    rules = [
        PatternRule("a", "SALES_REVENUE", parse_pattern("70*")),
        PatternRule("b", "SERVICE_REVENUE", parse_pattern("70*")),
    ]

    registry = AccountPatternRegistry(rules)

    assert registry.tenants() == ["a", "b"]
    assert registry.patterns_for_category("a", "SALES_REVENUE").matches("701")
    assert registry.patterns_for_category("a", "SERVICE_REVENUE").is_empty


def test_registry_rejects_overlapping_cost_natures() -> None:
    rules = [
        PatternRule("default", "DIRECT_COSTS", parse_pattern("60*"), "direct"),
        PatternRule("default", "", parse_pattern("601*"), "indirect"),
    ]

    with pytest.raises(PatternOverlapError):
        AccountPatternRegistry(rules)


def test_missing_categories_are_reported() -> None:
    registry = AccountPatternRegistry(
        [PatternRule("default", "SALES_REVENUE", parse_pattern("70*"))]
    )

    missing = registry.missing_categories("default", cat.REQUIRED)

    assert "SALES_REVENUE" not in missing
    assert "TRADE_RECEIVABLES" in missing


def test_load_pattern_registry_from_csv(tmp_path) -> None:
    """Inactive rows are skipped and ';' separates several patterns."""
    csv_path = tmp_path / "patterns.csv"
    csv_path.write_text(
        "tenant,category,pattern,cost_nature,active\n"
        "default,sales_revenue,70*;71*,,1\n"
        "default,DIRECT_COSTS,60*,direct,1\n"
        "default,INDIRECT_COSTS,61*,indirect,0\n"
        ",TRADE_RECEIVABLES,4011,,\n",
        encoding="utf-8",
    )

    registry = load_pattern_registry(str(csv_path))

    assert registry.categories("default") == [
        "DIRECT_COSTS",
        "SALES_REVENUE",
        "TRADE_RECEIVABLES",
    ]
    assert registry.predicate_for("default", "SALES_REVENUE").matches("7150")
    assert registry.patterns_for_cost_nature("default", "direct").matches("6001")
    assert registry.patterns_for_cost_nature("default", "indirect").is_empty
    assert not registry.predicate_for("default", "TRADE_RECEIVABLES").matches("40110")


def test_load_pattern_registry_rejects_unknown_cost_nature(tmp_path) -> None:
    csv_path = tmp_path / "patterns.csv"
    csv_path.write_text(
        "category,pattern,cost_nature\nDIRECT_COSTS,60*,variable\n",
        encoding="utf-8",
    )

    with pytest.raises(ValueError):
        load_pattern_registry(str(csv_path))


def test_shipped_registry_maps_every_required_category() -> None:
    """The default pattern file is complete and free of overlaps."""
    assert PATTERNS_FILE.is_file()

    registry = load_registry()

    assert registry.missing_categories("default", cat.REQUIRED) == []
    assert not registry.patterns_for_cost_nature("default", cat.DIRECT).is_empty
    assert not registry.patterns_for_cost_nature("default", cat.INDIRECT).is_empty
