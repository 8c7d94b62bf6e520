"""
Voucher Domain Models (``evoucher_modules.vouchers.models``).

Responsibility
--------------
``VoucherForm`` is the raw input a requestor fills in: amounts may arrive
as strings, dates as ISO strings, enums as their display values.  The
builder normalizes it into the kernel ``Voucher``.  The voucher value
objects themselves are re-exported here so callers of this module have a
single import surface.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping, Sequence

from evoucher_kernel.domain.vouchers import (
    BillingStatus,
    CreditTerms,
    HistoryEntry,
    LineItem,
    LinkedBilling,
    PaymentMethod,
    TransactionSubtype,
    TransactionType,
    Voucher,
    VoucherStatus,
)

LineItemInput = LineItem | Mapping[str, Any]
LinkedBillingInput = LinkedBilling | Mapping[str, Any]


@dataclass(frozen=True)
class VoucherForm:
    """
    Form state for one voucher.

    Every field is optional at this level; which ones are required depends
    on the transaction type and on whether the voucher is being saved as a
    draft or submitted.
    """

    transaction_type: TransactionType | str | None = None
    transaction_subtype: TransactionSubtype | str | None = None
    purpose: str | None = None
    category: str | None = None
    sub_category: str | None = None
    counterparty: str | None = None
    line_items: Sequence[LineItemInput] = ()
    linked_billings: Sequence[LinkedBillingInput] = ()
    statement_reference: str | None = None
    project_reference: str | None = None
    booking_id: str | None = None
    source_account_id: str | None = None
    description: str | None = None
    currency: str | None = None
    payment_method: PaymentMethod | str | None = None
    credit_terms: CreditTerms | str | None = None
    request_date: date | str | None = None
    due_date: date | str | None = None
    notes: str | None = None
    is_billable: bool = False


__all__ = [
    "BillingStatus",
    "CreditTerms",
    "HistoryEntry",
    "LineItem",
    "LineItemInput",
    "LinkedBilling",
    "LinkedBillingInput",
    "PaymentMethod",
    "TransactionSubtype",
    "TransactionType",
    "Voucher",
    "VoucherForm",
    "VoucherStatus",
]
