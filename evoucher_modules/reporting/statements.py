"""
Pure financial statement functions (Balance Aggregation Engine).

These functions roll a flat chart-of-accounts list up into typed totals.
ZERO I/O. ZERO side effects.  Same inputs always produce the same report.

Net income is folded into equity as an implicit retained-earnings line;
it is never an account of its own.  An out-of-balance input is reported
through ``BalanceSheet.discrepancy`` and ``is_balanced``, never masked.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from evoucher_engines.tracer import traced_engine
from evoucher_kernel.domain.amounts import (
    AMOUNT_TOLERANCE,
    amounts_equal,
    safe_ratio,
    sum_amounts,
)
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


def partition_accounts(accounts: Iterable[Account]) -> dict[AccountType, list[Account]]:
    """Group leaf accounts by type.  Folders are dropped."""
    groups: dict[AccountType, list[Account]] = {t: [] for t in AccountType}
    for account in accounts:
        if account.is_folder:
            continue
        groups[account.account_type].append(account)
    return groups


def _make_section(label: str, accounts: list[Account]) -> ReportSection:
    lines = tuple(
        AccountLine(
            account_id=a.id,
            code=a.code,
            name=a.name,
            balance=a.balance,
        )
        for a in sorted(accounts, key=lambda a: a.code)
    )
    return ReportSection(
        label=label,
        lines=lines,
        total=sum_amounts(line.balance for line in lines),
    )


def build_income_statement(groups: dict[AccountType, list[Account]]) -> IncomeStatement:
    revenue = _make_section("Revenue", groups[AccountType.INCOME])
    expenses = _make_section("Expenses", groups[AccountType.EXPENSE])
    net_income = revenue.total - expenses.total
    return IncomeStatement(
        revenue=revenue,
        expenses=expenses,
        total_revenue=revenue.total,
        total_expenses=expenses.total,
        net_income=net_income,
        profit_margin=safe_ratio(net_income, revenue.total),
        expense_ratio=safe_ratio(expenses.total, revenue.total),
    )


def build_balance_sheet(
    groups: dict[AccountType, list[Account]],
    net_income: Decimal,
    tolerance: Decimal = AMOUNT_TOLERANCE,
) -> BalanceSheet:
    assets = _make_section("Assets", groups[AccountType.ASSET])
    liabilities = _make_section("Liabilities", groups[AccountType.LIABILITY])
    equity = _make_section("Equity", groups[AccountType.EQUITY])

    total_equity = equity.total + net_income
    total_l_and_e = liabilities.total + total_equity
    discrepancy = assets.total - total_l_and_e

    return BalanceSheet(
        assets=assets,
        liabilities=liabilities,
        equity=equity,
        total_assets=assets.total,
        total_liabilities=liabilities.total,
        total_equity=total_equity,
        retained_earnings=net_income,
        total_liabilities_and_equity=total_l_and_e,
        discrepancy=discrepancy,
        is_balanced=amounts_equal(assets.total, total_l_and_e, tolerance),
    )


@traced_engine("financial_report", "1.0")
def compute_financial_report(
    accounts: Iterable[Account],
    metadata: ReportMetadata | None = None,
    tolerance: Decimal = AMOUNT_TOLERANCE,
) -> FinancialReport:
    """Income statement and balance sheet over one account list."""
    groups = partition_accounts(accounts)
    income_statement = build_income_statement(groups)
    balance_sheet = build_balance_sheet(groups, income_statement.net_income, tolerance)
    return FinancialReport(
        income_statement=income_statement,
        balance_sheet=balance_sheet,
        metadata=metadata,
    )
