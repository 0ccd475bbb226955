# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Analytics context: everything a calculator needs for one tenant.

A context bundles the Period Aggregator (and its cache), the account-pattern
registry, the explicit tenant identifier and the tenant's company metadata
and settings. Calculators receive it as their first argument, so that no
tenant or configuration is ever taken from global state.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from . import categories
from .aggregator import PeriodAggregator
from .config import AnalyticsSettings, AppConfig, CompanyConfig
from .errors import ConfigurationGap
from .predicates import AccountPatternRegistry, AccountPredicate, load_pattern_registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalyticsContext:
    """Request-scoped inputs shared by all calculators."""

    aggregator: PeriodAggregator
    registry: AccountPatternRegistry
    tenant: str
    company: CompanyConfig
    settings: AnalyticsSettings

    def predicate(self, *names: str) -> AccountPredicate:
        """Union of the account predicates of the given categories."""
        return self.registry.predicate_for(self.tenant, *names)

    def nature(self, nature: str) -> AccountPredicate:
        """Account predicate of a cost nature ('direct' / 'indirect')."""
        return self.registry.patterns_for_cost_nature(self.tenant, nature)


def build_context(
    config: AppConfig,
    tenant: Optional[str] = None,
    registry: Optional[AccountPatternRegistry] = None,
) -> AnalyticsContext:
    """
    Wire configuration, registry and aggregator into an AnalyticsContext.

    Args:
        config: Application configuration.
        tenant: Tenant identifier; defaults to analytics.default_tenant.
        registry: Pre-built registry. When None it is loaded from
            ``config.patterns_file``.

    Raises:
        ValueError: if no registry is given and no patterns file is configured.
        ConfigurationGap: if ``require_all_categories`` is enabled and some
            required category has no pattern for the tenant.
    """
    tenant = tenant or config.analytics.default_tenant

    if registry is None:
        if config.patterns_file is None:
            raise ValueError(
                "No account pattern registry configured. "
                "Set [accounts].patterns_file in the configuration."
            )
        registry = load_pattern_registry(str(config.patterns_file))

    missing = registry.missing_categories(tenant, categories.REQUIRED)
    if missing:
        if config.analytics.require_all_categories:
            raise ConfigurationGap(tenant, missing)
        logger.warning(
            "Categories without account patterns for tenant %s (counted as zero): %s",
            tenant,
            ", ".join(missing),
        )

    return AnalyticsContext(
        aggregator=PeriodAggregator(config.database),
        registry=registry,
        tenant=tenant,
        company=config.company_for(tenant),
        settings=config.analytics,
    )
