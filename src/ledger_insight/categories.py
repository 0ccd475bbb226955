# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Semantic account categories used by the analytics layer.

Each name below is looked up in the account-pattern registry. The tuples
group categories into the unions consumed by the calculators (total revenue,
total cost, invested capital, ...). Names are upper-case identifiers and
must match the 'category' column of the registry CSV.
"""

# Revenue
SALES_REVENUE = "SALES_REVENUE"
SERVICE_REVENUE = "SERVICE_REVENUE"
CASH_RECEIPTS = "CASH_RECEIPTS"
GAINS_ON_DISPOSAL = "GAINS_ON_DISPOSAL"
OTHER_GAINS = "OTHER_GAINS"
EXTRAORDINARY_INCOME = "EXTRAORDINARY_INCOME"

# Costs
DIRECT_COSTS = "DIRECT_COSTS"
INDIRECT_COSTS = "INDIRECT_COSTS"
RAW_MATERIALS = "RAW_MATERIALS"
PROCESSING_COSTS = "PROCESSING_COSTS"
SERVICE_COSTS = "SERVICE_COSTS"
PERSONNEL_COSTS = "PERSONNEL_COSTS"
SOCIAL_CHARGES = "SOCIAL_CHARGES"
SUNDRY_CHARGES = "SUNDRY_CHARGES"
DEPRECIATION = "DEPRECIATION"
WRITE_DOWNS = "WRITE_DOWNS"
LOSSES_ON_DISPOSAL = "LOSSES_ON_DISPOSAL"
OTHER_LOSSES = "OTHER_LOSSES"
EXTRAORDINARY_EXPENSES = "EXTRAORDINARY_EXPENSES"
TAXES = "TAXES"
FINANCIAL_CHARGES = "FINANCIAL_CHARGES"
IT_SOFTWARE_COSTS = "IT_SOFTWARE_COSTS"
MARKETING_COSTS = "MARKETING_COSTS"
RENT_UTILITIES_COSTS = "RENT_UTILITIES_COSTS"

# Balance sheet: assets
FIXED_ASSETS = "FIXED_ASSETS"
TRADE_RECEIVABLES = "TRADE_RECEIVABLES"
SHAREHOLDER_RECEIVABLES = "SHAREHOLDER_RECEIVABLES"
TAX_RECEIVABLES = "TAX_RECEIVABLES"
OTHER_RECEIVABLES = "OTHER_RECEIVABLES"
OPENING_INVENTORY = "OPENING_INVENTORY"
CLOSING_INVENTORY = "CLOSING_INVENTORY"
BANK_BALANCES = "BANK_BALANCES"
CASH_ON_HAND = "CASH_ON_HAND"
ACCRUED_INCOME = "ACCRUED_INCOME"
PREPAID_EXPENSES = "PREPAID_EXPENSES"

# Balance sheet: liabilities and equity
TRADE_PAYABLES = "TRADE_PAYABLES"
BANK_DEBT = "BANK_DEBT"
SHAREHOLDER_LOANS = "SHAREHOLDER_LOANS"
OTHER_PAYABLES = "OTHER_PAYABLES"
ACCRUED_LIABILITIES = "ACCRUED_LIABILITIES"
DEFERRED_INCOME = "DEFERRED_INCOME"
SHARE_CAPITAL = "SHARE_CAPITAL"
EQUITY_RESERVES = "EQUITY_RESERVES"

# Cost natures (orthogonal axis)
DIRECT = "direct"
INDIRECT = "indirect"

# ---------------------------------------------------------------------------
# Unions
# ---------------------------------------------------------------------------

OPERATING_REVENUE: tuple[str, ...] = (SALES_REVENUE, SERVICE_REVENUE, CASH_RECEIPTS)

REVENUE: tuple[str, ...] = OPERATING_REVENUE + (
    GAINS_ON_DISPOSAL,
    OTHER_GAINS,
    EXTRAORDINARY_INCOME,
)

# Revenue used for customer attribution (documents with a counterparty).
INVOICED_REVENUE: tuple[str, ...] = (SALES_REVENUE, SERVICE_REVENUE)

TOTAL_COST: tuple[str, ...] = (
    DIRECT_COSTS,
    INDIRECT_COSTS,
    RAW_MATERIALS,
    PROCESSING_COSTS,
    SERVICE_COSTS,
    PERSONNEL_COSTS,
    SOCIAL_CHARGES,
    SUNDRY_CHARGES,
    DEPRECIATION,
    WRITE_DOWNS,
    LOSSES_ON_DISPOSAL,
    OTHER_LOSSES,
    EXTRAORDINARY_EXPENSES,
    TAXES,
    FINANCIAL_CHARGES,
    IT_SOFTWARE_COSTS,
    MARKETING_COSTS,
    RENT_UTILITIES_COSTS,
)

PURCHASES: tuple[str, ...] = (
    DIRECT_COSTS,
    INDIRECT_COSTS,
    RAW_MATERIALS,
    PROCESSING_COSTS,
    SERVICE_COSTS,
)

# Costs of the monthly growth and seasonality series.
OPERATING_COST_SERIES: tuple[str, ...] = PURCHASES + (
    PERSONNEL_COSTS,
    SOCIAL_CHARGES,
    SUNDRY_CHARGES,
)

INVESTED_CAPITAL: tuple[str, ...] = (
    FIXED_ASSETS,
    TRADE_RECEIVABLES,
    SHAREHOLDER_RECEIVABLES,
    TAX_RECEIVABLES,
    OTHER_RECEIVABLES,
    CLOSING_INVENTORY,
    BANK_BALANCES,
    CASH_ON_HAND,
    ACCRUED_INCOME,
    PREPAID_EXPENSES,
)

LIQUID_ASSETS: tuple[str, ...] = (
    BANK_BALANCES,
    CASH_ON_HAND,
    TRADE_RECEIVABLES,
    TAX_RECEIVABLES,
    OTHER_RECEIVABLES,
)

CURRENT_ASSETS: tuple[str, ...] = LIQUID_ASSETS + (ACCRUED_INCOME, PREPAID_EXPENSES)

CURRENT_LIABILITIES: tuple[str, ...] = (
    TRADE_PAYABLES,
    OTHER_PAYABLES,
    ACCRUED_LIABILITIES,
    DEFERRED_INCOME,
)

TOTAL_DEBTS: tuple[str, ...] = (
    TRADE_PAYABLES,
    BANK_DEBT,
    SHAREHOLDER_LOANS,
    FINANCIAL_CHARGES,
    ACCRUED_LIABILITIES,
    DEFERRED_INCOME,
)

# Cost centers. Together they cover TOTAL_COST exactly once.
COST_CENTERS: dict[str, tuple[str, ...]] = {
    "personnel": (PERSONNEL_COSTS, SOCIAL_CHARGES),
    "production": (DIRECT_COSTS, RAW_MATERIALS, PROCESSING_COSTS),
    "it_software": (IT_SOFTWARE_COSTS,),
    "marketing": (MARKETING_COSTS,),
    "administrative": (INDIRECT_COSTS, SERVICE_COSTS),
    "rent_utilities": (RENT_UTILITIES_COSTS,),
    "financial_charges": (FINANCIAL_CHARGES,),
    "taxes": (TAXES,),
    "other": (
        DEPRECIATION,
        WRITE_DOWNS,
        LOSSES_ON_DISPOSAL,
        OTHER_LOSSES,
        SUNDRY_CHARGES,
        EXTRAORDINARY_EXPENSES,
    ),
}

REVENUE_CENTERS: dict[str, tuple[str, ...]] = {
    "sales": (SALES_REVENUE,),
    "cash_receipts": (CASH_RECEIPTS,),
    "services": (SERVICE_REVENUE,),
    "gains_on_disposal": (GAINS_ON_DISPOSAL,),
    "other_gains": (OTHER_GAINS,),
    "extraordinary_income": (EXTRAORDINARY_INCOME,),
}

# Categories every complete setup is expected to map.
REQUIRED: tuple[str, ...] = (
    SALES_REVENUE,
    SERVICE_REVENUE,
    DIRECT_COSTS,
    INDIRECT_COSTS,
    PERSONNEL_COSTS,
    TRADE_RECEIVABLES,
    TRADE_PAYABLES,
    BANK_BALANCES,
)
