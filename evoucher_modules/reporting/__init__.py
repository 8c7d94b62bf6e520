"""
Financial Reporting Module (``evoucher_modules.reporting``).

Read-only roll-up of the external ledger's cached account balances into
an income statement and a balance sheet.  Does not post entries.
"""

from evoucher_modules.reporting.config import ReportingConfig
from evoucher_modules.reporting.models import (
    Account,
    AccountLine,
    AccountType,
    BalanceSheet,
    FinancialReport,
    IncomeStatement,
    ReportMetadata,
    ReportSection,
)
from evoucher_modules.reporting.service import ReportingService
from evoucher_modules.reporting.statements import (
    build_balance_sheet,
    build_income_statement,
    compute_financial_report,
    partition_accounts,
)

__all__ = [
    "Account",
    "AccountLine",
    "AccountType",
    "BalanceSheet",
    "FinancialReport",
    "IncomeStatement",
    "ReportMetadata",
    "ReportSection",
    "ReportingConfig",
    "ReportingService",
    "build_balance_sheet",
    "build_income_statement",
    "compute_financial_report",
    "partition_accounts",
]
