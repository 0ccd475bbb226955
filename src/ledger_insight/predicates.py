# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Account predicates and the account-pattern registry.

This module defines the structures used to decide which ledger rows belong
to a semantic category (e.g. "SALES_REVENUE", "TRADE_RECEIVABLES") or to a
cost nature ("direct" / "indirect").

A pattern is a rule over the account code:
- '70*'   matches any account starting with '70' (prefix match),
- '62201' matches only the exact code '62201'.

Predicates are plain, hashable data. They are compiled to parameterized SQL
by ``AccountPredicate.to_sql`` and can be evaluated in memory with
``AccountPredicate.matches``. Configuration data never reaches the SQL text
itself, only the bound parameters.

The registry (``AccountPatternRegistry``) is the Account Predicate Source:
it is loaded from a CSV file with one row per pattern and answers lookups
per tenant. At load time it enforces that patterns of different categories
(and of different cost natures) are disjoint, so that unions of categories
never count the same ledger row twice.

This module exposes:
- AccountPattern:         a single exact or prefix rule.
- AccountPredicate:       an ordered, OR-combined set of patterns.
- AccountPatternRegistry: per-tenant category / cost-nature lookups.
- load_pattern_registry:  CSV loader.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd

from .errors import PatternOverlapError

logger = logging.getLogger(__name__)

DEFAULT_TENANT = "default"

COST_NATURES: tuple[str, ...] = ("direct", "indirect")


@dataclass(frozen=True, order=True)
class AccountPattern:
    """A single account-code rule.

    Attributes:
        pattern: Account code or code prefix, without the trailing '*'.
        is_prefix: True for a prefix match, False for an exact match.
    """

    pattern: str
    is_prefix: bool = False

    def matches(self, code: str) -> bool:
        code = str(code).strip()
        if self.is_prefix:
            return code.startswith(self.pattern)
        return code == self.pattern

    def overlaps(self, other: "AccountPattern") -> bool:
        """Return True if some account code could match both patterns."""
        if self.is_prefix and other.is_prefix:
            return self.pattern.startswith(other.pattern) or other.pattern.startswith(
                self.pattern
            )
        if self.is_prefix:
            return other.pattern.startswith(self.pattern)
        if other.is_prefix:
            return self.pattern.startswith(other.pattern)
        return self.pattern == other.pattern

    def __str__(self) -> str:
        return f"{self.pattern}*" if self.is_prefix else self.pattern


def parse_pattern(raw: str, is_prefix: Optional[bool] = None) -> AccountPattern:
    """Build an AccountPattern from its textual form.

    Examples:
        "70*"   → AccountPattern("70", is_prefix=True)
        "62201" → AccountPattern("62201", is_prefix=False)

    Args:
        raw: Pattern text, optionally ending with '*'.
        is_prefix: Explicit prefix flag. When None, the trailing '*' decides.

    Raises:
        ValueError: if the pattern is empty.
    """
    text = str(raw).strip()
    star = text.endswith("*")
    text = text.rstrip("*").strip()
    if not text:
        raise ValueError(f"Empty account pattern: {raw!r}")
    if is_prefix is None:
        is_prefix = star
    return AccountPattern(pattern=text, is_prefix=bool(is_prefix or star))


def _to_patterns(s: Optional[str]) -> list[str]:
    """Convert a semicolon-separated pattern string into a list.

    Examples:
        "70*;71*" → ["70*", "71*"]
        None or "" → []
    """
    if s is None or str(s).strip() == "":
        return []
    return [p.strip() for p in str(s).split(";") if p.strip()]


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(frozen=True)
class AccountPredicate:
    """Ordered set of account patterns combined with OR.

    An empty predicate matches nothing.
    """

    patterns: tuple[AccountPattern, ...] = field(default_factory=tuple)

    @classmethod
    def of(cls, *raw: str) -> "AccountPredicate":
        """Build a predicate from textual patterns ('70*', '4011', '60*;61*')."""
        parsed: list[AccountPattern] = []
        for item in raw:
            for text in _to_patterns(item):
                parsed.append(parse_pattern(text))
        return cls(patterns=_dedupe(parsed))

    @property
    def is_empty(self) -> bool:
        return not self.patterns

    def matches(self, code: str) -> bool:
        return any(p.matches(code) for p in self.patterns)

    def union(self, *others: "AccountPredicate") -> "AccountPredicate":
        """Return a predicate matching any code matched by self or others."""
        merged = list(self.patterns)
        for other in others:
            merged.extend(other.patterns)
        return AccountPredicate(patterns=_dedupe(merged))

    def to_sql(self, column: str = "code") -> tuple[str, list[str]]:
        """Compile the predicate to a parameterized SQL boolean expression.

        Returns:
            A (clause, params) tuple. The clause uses '?' placeholders only;
            the empty predicate compiles to a clause that is always false.
        """
        if not self.patterns:
            return "0", []

        parts: list[str] = []
        params: list[str] = []
        for p in self.patterns:
            if p.is_prefix:
                parts.append(f"{column} LIKE ? ESCAPE '\\'")
                params.append(_escape_like(p.pattern) + "%")
            else:
                parts.append(f"{column} = ?")
                params.append(p.pattern)
        return "(" + " OR ".join(parts) + ")", params

    def __str__(self) -> str:
        return ";".join(str(p) for p in self.patterns) or "<empty>"


def _dedupe(patterns: Iterable[AccountPattern]) -> tuple[AccountPattern, ...]:
    seen: set[AccountPattern] = set()
    out: list[AccountPattern] = []
    for p in patterns:
        if p not in seen:
            seen.add(p)
            out.append(p)
    return tuple(out)


EMPTY_PREDICATE = AccountPredicate()


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PatternRule:
    """One row of the account-pattern registry."""

    tenant: str
    category: str
    pattern: AccountPattern
    cost_nature: str = ""
    priority: int = 0


class AccountPatternRegistry:
    """Per-tenant lookup of account predicates by category or cost nature.

    The registry is immutable once built. Construction validates that:
      - patterns of two different categories never overlap,
      - patterns of two different cost natures never overlap,
    within the same tenant. Overlaps raise PatternOverlapError.
    """

    def __init__(self, rules: Iterable[PatternRule]):
        ordered = sorted(
            rules, key=lambda r: (r.tenant, -r.priority, r.pattern.pattern)
        )
        self._by_category: dict[tuple[str, str], list[AccountPattern]] = defaultdict(
            list
        )
        self._by_nature: dict[tuple[str, str], list[AccountPattern]] = defaultdict(
            list
        )
        for rule in ordered:
            if rule.category:
                self._by_category[(rule.tenant, rule.category)].append(rule.pattern)
            if rule.cost_nature:
                self._by_nature[(rule.tenant, rule.cost_nature)].append(rule.pattern)

        self._check_disjoint(self._by_category, "category")
        self._check_disjoint(self._by_nature, "cost nature")

    @staticmethod
    def _check_disjoint(
        groups: dict[tuple[str, str], list[AccountPattern]], axis: str
    ) -> None:
        by_tenant: dict[str, list[tuple[str, AccountPattern]]] = defaultdict(list)
        for (tenant, name), patterns in groups.items():
            for p in patterns:
                by_tenant[tenant].append((name, p))

        for tenant, items in by_tenant.items():
            for i, (name_a, pat_a) in enumerate(items):
                for name_b, pat_b in items[i + 1 :]:
                    if name_a != name_b and pat_a.overlaps(pat_b):
                        raise PatternOverlapError(
                            f"Overlapping account patterns for tenant {tenant!r}: "
                            f"{axis} {name_a!r} ({pat_a}) and "
                            f"{axis} {name_b!r} ({pat_b})."
                        )

    def patterns_for_category(self, tenant: str, name: str) -> AccountPredicate:
        patterns = self._by_category.get((tenant, name), [])
        if not patterns:
            logger.debug(
                "No account patterns for category %s (tenant %s)", name, tenant
            )
        return AccountPredicate(patterns=tuple(patterns))

    def patterns_for_cost_nature(self, tenant: str, nature: str) -> AccountPredicate:
        patterns = self._by_nature.get((tenant, nature), [])
        if not patterns:
            logger.debug(
                "No account patterns for cost nature %s (tenant %s)", nature, tenant
            )
        return AccountPredicate(patterns=tuple(patterns))

    def predicate_for(self, tenant: str, *categories: str) -> AccountPredicate:
        """Return the union of the predicates of several categories."""
        return EMPTY_PREDICATE.union(
            *(self.patterns_for_category(tenant, c) for c in categories)
        )

    def categories(self, tenant: str) -> list[str]:
        return sorted(name for (t, name) in self._by_category if t == tenant)

    def tenants(self) -> list[str]:
        tenants = {t for (t, _) in self._by_category}
        tenants.update(t for (t, _) in self._by_nature)
        return sorted(tenants)

    def missing_categories(self, tenant: str, required: Iterable[str]) -> list[str]:
        """Return the required categories that have no pattern for the tenant."""
        return [c for c in required if not self._by_category.get((tenant, c))]


def _cell(row: pd.Series, column: str, default: str = "") -> str:
    value = row.get(column, default)
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return default
    return str(value).strip()


def load_pattern_registry(path: str) -> AccountPatternRegistry:
    """Load the account-pattern registry from a CSV file.

    Expected structure
    ------------------
    Required columns: 'category' and 'pattern'. Optional columns:
        - tenant       (default: "default")
        - cost_nature  ("direct", "indirect" or empty)
        - is_prefix    (1/0, overrides the trailing '*' convention)
        - priority     (int, higher first; default 0)
        - active       (1/0; inactive rows are skipped; default 1)

    A row may carry a cost_nature with an empty category: it then only feeds
    the cost-nature axis. The 'pattern' cell may hold several patterns
    separated by ';'.

    Raises:
        ValueError: if required columns are missing or a cost nature is unknown.
        PatternOverlapError: if categories or cost natures overlap.
    """
    df = pd.read_csv(path, dtype=str)
    df.columns = [str(c).strip().lower() for c in df.columns]

    missing = {"category", "pattern"}.difference(df.columns)
    if missing:
        cols = ", ".join(sorted(missing))
        raise ValueError(f"Pattern registry {path} is missing column(s): {cols}")

    rules: list[PatternRule] = []
    for _, row in df.iterrows():
        if _cell(row, "active", "1") in {"0", "false", "no"}:
            continue

        nature = _cell(row, "cost_nature").lower()
        if nature and nature not in COST_NATURES:
            raise ValueError(f"Unknown cost nature {nature!r} in {path}")

        raw_prefix = _cell(row, "is_prefix")
        is_prefix: Optional[bool] = None
        if raw_prefix:
            is_prefix = raw_prefix.lower() in {"1", "true", "yes"}

        try:
            priority = int(_cell(row, "priority", "0") or 0)
        except ValueError:
            priority = 0

        for text in _to_patterns(_cell(row, "pattern")):
            rules.append(
                PatternRule(
                    tenant=_cell(row, "tenant") or DEFAULT_TENANT,
                    category=_cell(row, "category").upper(),
                    pattern=parse_pattern(text, is_prefix),
                    cost_nature=nature,
                    priority=priority,
                )
            )

    logger.info("Loaded %d account pattern rule(s) from %s", len(rules), path)
    return AccountPatternRegistry(rules)
