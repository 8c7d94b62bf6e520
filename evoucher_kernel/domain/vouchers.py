"""
Voucher value objects (``evoucher_kernel.domain.vouchers``).

Responsibility
--------------
The universal transaction record.  Expenses, budget requests, cash
advances, billings and collections are all one ``Voucher`` type tagged by
``transaction_type``; per-type rules live in the required-field dispatch
table (``evoucher_modules.vouchers.validation``), not in subclasses.

Architecture position
---------------------
**Kernel domain layer** -- frozen dataclasses, ZERO I/O.  Engines, modules
and stores all exchange these objects.

Invariants enforced
-------------------
* Line item amounts are Decimal cents and never negative.
* ``transaction_type`` is fixed at creation (stores reject patches to it).
* ``remaining_balance`` is derived: a billing with no recorded payment
  (``amount_paid is None``) has its full ``total_amount`` outstanding.
* ``expected_total`` is the sum of line items, except for a collection
  created by statement linking, where it is the sum of linked billings.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from evoucher_kernel.domain.amounts import (
    DEFAULT_CURRENCY,
    ZERO,
    amounts_equal,
    sum_amounts,
    to_amount,
)


class TransactionType(str, Enum):
    EXPENSE = "expense"
    BUDGET_REQUEST = "budget_request"
    CASH_ADVANCE = "cash_advance"
    BILLING = "billing"
    COLLECTION = "collection"


class TransactionSubtype(str, Enum):
    REGULAR_EXPENSE = "regular_expense"
    BILLABLE_EXPENSE = "billable_expense"


class VoucherStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    POSTED = "posted"
    DISBURSED = "disbursed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class BillingStatus(str, Enum):
    UNBILLED = "unbilled"
    BILLED = "billed"


class PaymentMethod(str, Enum):
    CASH = "Cash"
    BANK_TRANSFER = "Bank Transfer"
    ONLINE_PAYMENT = "Online Payment"
    CASH_DEPOSIT = "Cash Deposit"
    CHECK_DEPOSIT = "Check Deposit"
    MANAGERS_CHECK = "Manager's Check"
    E_WALLETS = "E-Wallets"


class CreditTerms(str, Enum):
    NONE = "None"
    NET7 = "Net7"
    NET15 = "Net15"
    NET30 = "Net30"

    @property
    def days(self) -> int | None:
        if self is CreditTerms.NONE:
            return None
        return int(self.value[3:])


# Types whose payouts leave the company and can therefore be disbursed.
DISBURSABLE_TYPES = frozenset({
    TransactionType.EXPENSE,
    TransactionType.BUDGET_REQUEST,
    TransactionType.CASH_ADVANCE,
})

# Types whose category comes from the revenue table.
REVENUE_TYPES = frozenset({TransactionType.BILLING, TransactionType.COLLECTION})


@dataclass(frozen=True)
class LineItem:
    """One particular on a voucher."""

    id: str
    particular: str = ""
    description: str = ""
    amount: Decimal = ZERO

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_amount(self.amount))
        if self.amount < ZERO:
            raise ValueError(f"Line item {self.id} amount cannot be negative")

    @property
    def is_valid(self) -> bool:
        """Counts toward submittability: a particular and a positive amount."""
        return bool(self.particular and self.particular.strip()) and self.amount > ZERO


@dataclass(frozen=True)
class LinkedBilling:
    """A collection's claim against one billing voucher."""

    billing_voucher_id: str
    amount: Decimal
    reference: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_amount(self.amount))
        if self.amount < ZERO:
            raise ValueError(
                f"Linked amount for billing {self.billing_voucher_id} cannot be negative"
            )


@dataclass(frozen=True)
class HistoryEntry:
    """One audit entry.  ``reference`` names a related record (e.g. the
    collection that paid a billing)."""

    status: VoucherStatus
    action: str
    actor_name: str
    at: datetime
    remarks: str | None = None
    reference: str | None = None


@dataclass(frozen=True)
class Voucher:
    """
    The universal transaction record.

    ``version`` is owned by the store and bumped on every write; callers
    pass it back as ``expected_version`` for compare-and-set updates.
    """

    id: str
    voucher_number: str
    transaction_type: TransactionType
    status: VoucherStatus
    requestor_name: str
    line_items: tuple[LineItem, ...] = ()
    total_amount: Decimal = ZERO
    transaction_subtype: TransactionSubtype | None = None
    category: str | None = None
    sub_category: str | None = None
    counterparty: str | None = None
    project_reference: str | None = None
    source_account_id: str | None = None
    linked_billings: tuple[LinkedBilling, ...] = ()

    purpose: str | None = None
    description: str | None = None
    currency: str = DEFAULT_CURRENCY
    payment_method: PaymentMethod | None = None
    credit_terms: CreditTerms | None = None
    request_date: date | None = None
    due_date: date | None = None
    notes: str | None = None
    booking_id: str | None = None
    source_module: str | None = None
    is_billable: bool = False

    billing_status: BillingStatus | None = None
    statement_reference: str | None = None
    amount_paid: Decimal | None = None
    invoice_number: str | None = None

    approver_name: str | None = None
    approved_at: datetime | None = None
    posted_by_name: str | None = None
    posted_at: datetime | None = None
    rejection_reason: str | None = None
    history: tuple[HistoryEntry, ...] = ()

    created_at: datetime | None = None
    version: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "total_amount", to_amount(self.total_amount))
        if self.amount_paid is not None:
            object.__setattr__(self, "amount_paid", to_amount(self.amount_paid))

    @property
    def line_item_total(self) -> Decimal:
        return sum_amounts(item.amount for item in self.line_items)

    @property
    def linked_total(self) -> Decimal:
        return sum_amounts(link.amount for link in self.linked_billings)

    @property
    def is_statement_collection(self) -> bool:
        return (
            self.transaction_type == TransactionType.COLLECTION
            and bool(self.linked_billings)
        )

    @property
    def expected_total(self) -> Decimal:
        if self.is_statement_collection:
            return self.linked_total
        return self.line_item_total

    @property
    def is_total_consistent(self) -> bool:
        return amounts_equal(self.total_amount, self.expected_total)

    @property
    def remaining_balance(self) -> Decimal:
        if self.amount_paid is None:
            return self.total_amount
        return self.total_amount - self.amount_paid

    def with_changes(self, **changes: Any) -> Voucher:
        return replace(self, **changes)


def valid_line_items(items: tuple[LineItem, ...]) -> tuple[LineItem, ...]:
    return tuple(item for item in items if item.is_valid)
