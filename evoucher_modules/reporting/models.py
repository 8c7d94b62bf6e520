"""
Financial Reporting Domain Models (``evoucher_modules.reporting.models``).

Responsibility
--------------
The read-only ``Account`` projection consumed from the external ledger,
and the frozen report value objects produced from it: income statement,
balance sheet and the combined financial report.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* Monetary fields are ``Decimal``, never ``float``.
* ``Account.balance`` is non-negative; sign is implied by ``account_type``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from evoucher_kernel.domain.amounts import ZERO, to_amount


class AccountType(str, Enum):
    """Chart-of-accounts classification (values match the ledger)."""

    ASSET = "Asset"
    LIABILITY = "Liability"
    EQUITY = "Equity"
    INCOME = "Income"
    EXPENSE = "Expense"


@dataclass(frozen=True)
class Account:
    """Ledger account projection.  Folders are organizational only."""

    id: str
    code: str
    name: str
    account_type: AccountType
    balance: Decimal = ZERO
    is_folder: bool = False
    parent_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "account_type", AccountType(self.account_type))
        object.__setattr__(self, "balance", to_amount(self.balance))
        if self.balance < ZERO:
            raise ValueError(
                f"Account {self.code} balance cannot be negative; "
                "sign is implied by account type"
            )


@dataclass(frozen=True)
class ReportMetadata:
    """Metadata attached to every financial report."""

    entity_name: str
    currency: str
    generated_at: str


@dataclass(frozen=True)
class AccountLine:
    """One account's contribution to a report section."""

    account_id: str
    code: str
    name: str
    balance: Decimal


@dataclass(frozen=True)
class ReportSection:
    label: str
    lines: tuple[AccountLine, ...]
    total: Decimal


@dataclass(frozen=True)
class IncomeStatement:
    """Single-step income statement: revenue - expenses = net income."""

    revenue: ReportSection
    expenses: ReportSection
    total_revenue: Decimal
    total_expenses: Decimal
    net_income: Decimal
    profit_margin: Decimal
    expense_ratio: Decimal


@dataclass(frozen=True)
class BalanceSheet:
    """
    Balance sheet with net income folded into equity.

    ``discrepancy`` is assets - (liabilities + equity); a non-zero value
    means the ledger feeding the report is out of balance.
    """

    assets: ReportSection
    liabilities: ReportSection
    equity: ReportSection
    total_assets: Decimal
    total_liabilities: Decimal
    total_equity: Decimal
    retained_earnings: Decimal
    total_liabilities_and_equity: Decimal
    discrepancy: Decimal
    is_balanced: bool


@dataclass(frozen=True)
class FinancialReport:
    income_statement: IncomeStatement
    balance_sheet: BalanceSheet
    metadata: ReportMetadata | None = None

    @property
    def is_balanced(self) -> bool:
        return self.balance_sheet.is_balanced
