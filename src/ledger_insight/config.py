# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for Ledger Insight.

This module is responsible for:
- loading the main application configuration from a TOML file,
- exposing typed dataclasses used by the rest of the application,
- answering per-tenant lookups for company metadata and the keywords used
  to flag opening/closing balance rows at ingestion time.
"""

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Optional

from .db import DatabaseConfig
from .predicates import DEFAULT_TENANT

DEFAULT_OPENING_KEYWORD = "APERTURA"
DEFAULT_CLOSING_KEYWORD = "CHIUSURA"
DEFAULT_COUNTRY = "Italia"


@dataclass(frozen=True)
class FiscalYear:
    """Represents a fiscal year with a start and end date."""

    start_date: date
    end_date: date


@dataclass(frozen=True)
class CompanyConfig:
    """Company metadata used by reports and by the equity fallback."""

    name: str = ""
    city: str = ""
    country: str = DEFAULT_COUNTRY
    share_capital: float = 0.0


@dataclass(frozen=True)
class BalanceKeywords:
    """Keywords identifying opening (Jan-1) and closing (Dec-31) rows."""

    opening: str = DEFAULT_OPENING_KEYWORD
    closing: str = DEFAULT_CLOSING_KEYWORD


@dataclass(frozen=True)
class AnalyticsSettings:
    """
    Tunable parameters of the calculators.

    Attributes
    ----------
    default_tenant:
        Tenant used when the caller does not pass one explicitly.
    tax_rate:
        Estimated tax rate applied to compute net income (ROI / ROE).
    headcount:
        Number of employees, used by revenue-per-employee.
    customer_limit:
        Number of customers returned by the profitability ranking.
    growth_months:
        Default window of the growth analysis.
    trend_threshold_pct:
        Variation (in %) above which an entity is growing / declining.
    abc_a_threshold, abc_b_threshold:
        Cumulative-share limits of ABC tiers A and B.
    center_tolerance:
        Accepted difference between the sum of centers and the total.
    require_all_categories:
        When true, building a context fails if a required category is
        unmapped instead of silently contributing zero.
    kpi_rules_file:
        Optional TOML file with custom KPI formulas.
    """

    default_tenant: str = DEFAULT_TENANT
    tax_rate: float = 0.24
    headcount: float = 1.0
    customer_limit: int = 20
    growth_months: int = 12
    trend_threshold_pct: float = 10.0
    abc_a_threshold: float = 80.0
    abc_b_threshold: float = 95.0
    center_tolerance: float = 1.0
    require_all_categories: bool = False
    kpi_rules_file: Optional[Path] = None


@dataclass(frozen=True)
class AppConfig:
    """
    Application-wide configuration for Ledger Insight.

    This aggregates:
    - the fiscal year definition and the presentation currency,
    - the database configuration (where ledger entries are stored),
    - the account-pattern registry location,
    - company metadata and balance keywords, with per-tenant overrides,
    - calculator settings and display options.
    """

    fiscal_year: FiscalYear
    currency: str
    database: DatabaseConfig
    patterns_file: Optional[Path]
    company: CompanyConfig
    keywords: BalanceKeywords
    analytics: AnalyticsSettings
    display_mode: str
    decimals: int
    tenant_companies: dict[str, CompanyConfig] = field(default_factory=dict)
    tenant_keywords: dict[str, BalanceKeywords] = field(default_factory=dict)

    def company_for(self, tenant: Optional[str] = None) -> CompanyConfig:
        """Return the company metadata of a tenant (default company if none)."""
        if tenant is None:
            tenant = self.analytics.default_tenant
        return self.tenant_companies.get(tenant, self.company)

    def keywords_for(self, tenant: Optional[str] = None) -> BalanceKeywords:
        """Return the opening/closing keywords of a tenant."""
        if tenant is None:
            tenant = self.analytics.default_tenant
        return self.tenant_keywords.get(tenant, self.keywords)


def company_territory(company: CompanyConfig) -> str:
    """Return 'City, Country', or only the country when no city is set."""
    country = company.country or DEFAULT_COUNTRY
    if company.city:
        return f"{company.city}, {country}".strip()
    return country.strip()


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed or is not a table.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Invalid TOML root type in {path}, expected a table.")

    return data


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        return {}
    return value


def _parse_fiscal_year(config_data: Mapping[str, Any]) -> FiscalYear:
    """
    Extract and validate the fiscal year from raw TOML configuration data.

    A missing [fiscal_year] table defaults to the current calendar year.

    Raises:
        ValueError: if the dates are missing or invalid.
    """
    fiscal_data = config_data.get("fiscal_year")
    if fiscal_data is None:
        year = date.today().year
        return FiscalYear(start_date=date(year, 1, 1), end_date=date(year, 12, 31))
    if not isinstance(fiscal_data, Mapping):
        raise ValueError("Invalid [fiscal_year] table in config file.")

    try:
        start_raw = fiscal_data["start_date"]
        end_raw = fiscal_data["end_date"]
    except KeyError as exc:
        raise ValueError(
            "Config file is missing [fiscal_year].start_date or end_date."
        ) from exc

    try:
        start = date.fromisoformat(str(start_raw))
        end = date.fromisoformat(str(end_raw))
    except Exception as exc:  # noqa: BLE001
        raise ValueError(
            "Invalid fiscal year dates, expected YYYY-MM-DD format."
        ) from exc

    if end < start:
        raise ValueError("Fiscal year end_date cannot be before start_date.")

    return FiscalYear(start_date=start, end_date=end)


def _parse_company(
    section: Mapping[str, Any], base: Optional[CompanyConfig] = None
) -> CompanyConfig:
    base = base or CompanyConfig()
    try:
        share_capital = float(section.get("share_capital", base.share_capital))
    except (TypeError, ValueError) as exc:
        raise ValueError(
            "Invalid value for 'company.share_capital'. Expected a number."
        ) from exc

    return CompanyConfig(
        name=str(section.get("name", base.name)),
        city=str(section.get("city", base.city)),
        country=str(section.get("country", base.country) or DEFAULT_COUNTRY),
        share_capital=share_capital,
    )


def _parse_keywords(
    section: Mapping[str, Any], base: Optional[BalanceKeywords] = None
) -> BalanceKeywords:
    base = base or BalanceKeywords()
    opening = str(section.get("opening_keyword") or base.opening)
    closing = str(section.get("closing_keyword") or base.closing)
    return BalanceKeywords(opening=opening, closing=closing)


def _parse_analytics(section: Mapping[str, Any], base_dir: Path) -> AnalyticsSettings:
    defaults = AnalyticsSettings()

    def _number(key: str, cast, default):
        raw = section.get(key)
        if raw is None:
            return default
        try:
            return cast(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"Invalid value for 'analytics.{key}' in the configuration."
            ) from exc

    rules_raw = section.get("kpi_rules_file")
    rules_file = (base_dir / str(rules_raw)).resolve() if rules_raw else None

    settings = AnalyticsSettings(
        default_tenant=str(section.get("default_tenant") or defaults.default_tenant),
        tax_rate=_number("tax_rate", float, defaults.tax_rate),
        headcount=_number("headcount", float, defaults.headcount),
        customer_limit=_number("customer_limit", int, defaults.customer_limit),
        growth_months=_number("growth_months", int, defaults.growth_months),
        trend_threshold_pct=_number(
            "trend_threshold_pct", float, defaults.trend_threshold_pct
        ),
        abc_a_threshold=_number("abc_a_threshold", float, defaults.abc_a_threshold),
        abc_b_threshold=_number("abc_b_threshold", float, defaults.abc_b_threshold),
        center_tolerance=_number(
            "center_tolerance", float, defaults.center_tolerance
        ),
        require_all_categories=bool(section.get("require_all_categories", False)),
        kpi_rules_file=rules_file,
    )

    if not 0 < settings.abc_a_threshold <= settings.abc_b_threshold <= 100:
        raise ValueError(
            "ABC thresholds must satisfy 0 < abc_a_threshold <= abc_b_threshold <= 100."
        )
    if settings.growth_months < 1:
        raise ValueError("'analytics.growth_months' must be at least 1.")

    return settings


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the Ledger Insight application configuration from a TOML file.

    Expected top-level sections in the TOML file
    --------------------------------------------
    [fiscal_year]
        start_date / end_date (YYYY-MM-DD).

    [accounting]
        Presentation currency.

    [database]
        Database engine and SQLite file path.

    [accounts]
        patterns_file: CSV file of the account-pattern registry.

    [company]
        name, city, country and the fallback share capital used when the
        ledger does not carry a positive share-capital balance.

    [ledger]
        opening_keyword / closing_keyword used to flag carry-forward rows.

    [analytics]
        Calculator settings (see AnalyticsSettings).

    [display]
        Display options for the CLI.

    [tenants.<id>.company] / [tenants.<id>.ledger]
        Optional per-tenant overrides of [company] and [ledger].

    Notes
    -----
    All file paths in the TOML are resolved relative to the directory of
    the TOML file itself.

    Parameters
    ----------
    config_path : str, optional
        Path to the TOML configuration file. Defaults to
        'ledger_insight_config.toml' in the current directory.

    Returns
    -------
    AppConfig
        Parsed and validated application configuration.
    """
    if config_path is None:
        config_file = Path("ledger_insight_config.toml").resolve()
    else:
        config_file = Path(config_path).resolve()

    raw = _load_toml(config_file)
    base_dir = config_file.parent

    # 1) Fiscal year and currency
    fiscal_year = _parse_fiscal_year(raw)
    currency = str(_section(raw, "accounting").get("currency") or "EUR")

    # 2) Database section
    database_section = _section(raw, "database")
    db_engine = str(database_section.get("engine") or "sqlite")
    db_path_raw = database_section.get("path") or "data/db/ledger_insight.sqlite"
    database_config = DatabaseConfig(
        engine=db_engine, path=(base_dir / str(db_path_raw)).resolve()
    )

    # 3) Account-pattern registry
    patterns_raw = _section(raw, "accounts").get("patterns_file")
    patterns_file = (base_dir / str(patterns_raw)).resolve() if patterns_raw else None

    # 4) Company metadata, keywords, and per-tenant overrides
    company = _parse_company(_section(raw, "company"))
    keywords = _parse_keywords(_section(raw, "ledger"))

    tenant_companies: dict[str, CompanyConfig] = {}
    tenant_keywords: dict[str, BalanceKeywords] = {}
    for tenant, tenant_section in _section(raw, "tenants").items():
        if not isinstance(tenant_section, Mapping):
            continue
        if "company" in tenant_section:
            tenant_companies[str(tenant)] = _parse_company(
                _section(tenant_section, "company"), company
            )
        if "ledger" in tenant_section:
            tenant_keywords[str(tenant)] = _parse_keywords(
                _section(tenant_section, "ledger"), keywords
            )

    # 5) Analytics settings
    analytics = _parse_analytics(_section(raw, "analytics"), base_dir)

    # 6) Display options
    display_section = _section(raw, "display")
    display_mode = str(display_section.get("mode", "table"))
    try:
        decimals = int(display_section.get("decimals", 2))
    except (TypeError, ValueError):
        decimals = 2

    return AppConfig(
        fiscal_year=fiscal_year,
        currency=currency,
        database=database_config,
        patterns_file=patterns_file,
        company=company,
        keywords=keywords,
        analytics=analytics,
        display_mode=display_mode,
        decimals=decimals,
        tenant_companies=tenant_companies,
        tenant_keywords=tenant_keywords,
    )
