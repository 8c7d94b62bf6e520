"""
evoucher_engines.payments -- Billing projection and payment math.

Responsibility:
    Centralize every derived billing figure (amount due, payment status,
    overdue) as pure functions over the canonical fields (total amount,
    amount paid, due date, as-of date), so that no caller stores or
    recomputes them ad hoc.  Also applies a payment to a billing and
    distributes a received amount across open billings.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The as-of date is always
    passed in; nothing here reads the clock.

Invariants enforced:
    - amount_due == total_amount - amount_paid, and record_payment never
      lets it go below zero.
    - payment_status is PAID iff amount_paid >= total_amount.
    - OVERDUE iff not paid, a balance above one currency unit remains and
      the due date is before the as-of date.
    - Allocation never assigns a billing more than its amount due; what
      cannot be applied is reported as unapplied credit.

Failure modes:
    - InvalidPaymentAmountError for a zero or negative payment.
    - OverpaymentError when a payment exceeds the amount due.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Sequence

from evoucher_engines.tracer import traced_engine
from evoucher_kernel.domain.amounts import (
    AMOUNT_TOLERANCE,
    ZERO,
    sum_amounts,
    to_amount,
)
from evoucher_kernel.domain.vouchers import (
    CreditTerms,
    LinkedBilling,
    TransactionType,
    Voucher,
)
from evoucher_kernel.exceptions import (
    InvalidPaymentAmountError,
    OverpaymentError,
)

DEFAULT_CREDIT_DAYS = 30


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


def calculate_due_date(
    start: date,
    credit_terms: CreditTerms | str | None = None,
    default_days: int = DEFAULT_CREDIT_DAYS,
) -> date:
    """Due date from credit terms: ``NetN`` adds N days, anything else the default."""
    days = None
    if credit_terms:
        try:
            days = CreditTerms(credit_terms).days
        except ValueError:
            days = None
    return start + timedelta(days=days if days is not None else default_days)


def is_overdue(
    total_amount: Decimal,
    amount_paid: Decimal,
    due_date: date | None,
    as_of: date,
) -> bool:
    if amount_paid >= total_amount:
        return False
    if total_amount - amount_paid <= AMOUNT_TOLERANCE:
        return False
    if due_date is None:
        return False
    return due_date < as_of


def payment_status(
    total_amount: Decimal,
    amount_paid: Decimal,
    due_date: date | None,
    as_of: date,
) -> PaymentStatus:
    if amount_paid >= total_amount:
        return PaymentStatus.PAID
    if is_overdue(total_amount, amount_paid, due_date, as_of):
        return PaymentStatus.OVERDUE
    if amount_paid > ZERO:
        return PaymentStatus.PARTIAL
    return PaymentStatus.UNPAID


@dataclass(frozen=True)
class Billing:
    """
    Read projection of a billing voucher.

    ``amount_due``, ``payment_status`` and ``is_overdue`` are computed on
    every access from the canonical fields and ``as_of``.
    """

    id: str
    invoice_number: str | None
    customer_name: str | None
    total_amount: Decimal
    amount_paid: Decimal
    due_date: date | None
    as_of: date
    statement_reference: str | None = None
    voucher_number: str | None = None

    @property
    def amount_due(self) -> Decimal:
        return self.total_amount - self.amount_paid

    @property
    def payment_status(self) -> PaymentStatus:
        return payment_status(self.total_amount, self.amount_paid, self.due_date, self.as_of)

    @property
    def is_overdue(self) -> bool:
        return is_overdue(self.total_amount, self.amount_paid, self.due_date, self.as_of)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID


def effective_due_date(
    voucher: Voucher,
    default_days: int = DEFAULT_CREDIT_DAYS,
) -> date | None:
    """The voucher's due date, or request date plus the default term."""
    if voucher.due_date is not None:
        return voucher.due_date
    if voucher.request_date is not None:
        return voucher.request_date + timedelta(days=default_days)
    return None


def project_billing(
    voucher: Voucher,
    as_of: date,
    default_days: int = DEFAULT_CREDIT_DAYS,
) -> Billing:
    """Derive the Billing projection of a billing voucher."""
    if voucher.transaction_type != TransactionType.BILLING:
        raise ValueError(
            f"Voucher {voucher.id} is a {voucher.transaction_type.value}, not a billing"
        )
    return Billing(
        id=voucher.id,
        invoice_number=voucher.invoice_number,
        customer_name=voucher.counterparty,
        total_amount=voucher.total_amount,
        amount_paid=voucher.amount_paid if voucher.amount_paid is not None else ZERO,
        due_date=effective_due_date(voucher, default_days),
        as_of=as_of,
        statement_reference=voucher.statement_reference,
        voucher_number=voucher.voucher_number,
    )


def record_payment(billing: Billing, amount: Decimal | int | str) -> Billing:
    """
    Apply a payment to a billing.

    Preconditions:
        0 < amount <= billing.amount_due.
    Postconditions:
        amount_paid' = amount_paid + amount; the input is not modified.
    """
    amount = to_amount(amount)
    if amount <= ZERO:
        raise InvalidPaymentAmountError(billing.id, amount)
    if amount > billing.amount_due:
        raise OverpaymentError(billing.id, amount, billing.amount_due)
    return replace(billing, amount_paid=billing.amount_paid + amount)


@dataclass(frozen=True)
class CollectionAllocation:
    """Result of spreading a received amount across open billings."""

    amount_received: Decimal
    allocations: tuple[LinkedBilling, ...]
    unapplied_credit: Decimal

    @property
    def applied_total(self) -> Decimal:
        return sum_amounts(a.amount for a in self.allocations)


def _oldest_first(billing: Billing) -> tuple[int, date]:
    # Billings without a due date sort after every dated one.
    if billing.due_date is None:
        return (1, date.max)
    return (0, billing.due_date)


@traced_engine("collection_allocation", "1.0")
def allocate_collection(
    amount_received: Decimal | int | str,
    open_billings: Sequence[Billing],
) -> CollectionAllocation:
    """
    Allocate a received amount to open billings, oldest due date first.

    Each billing receives ``min(remaining, amount_due)``; fully paid
    billings are skipped.  The excess is returned as unapplied credit.
    """
    received = to_amount(amount_received)
    if received < ZERO:
        raise ValueError("Amount received cannot be negative")

    remaining = received
    allocations: list[LinkedBilling] = []
    for billing in sorted(open_billings, key=_oldest_first):
        if remaining <= ZERO:
            break
        due = billing.amount_due
        if due <= ZERO:
            continue
        applied = to_amount(min(remaining, due))
        allocations.append(
            LinkedBilling(
                billing_voucher_id=billing.id,
                amount=applied,
                reference=billing.invoice_number or billing.voucher_number,
            )
        )
        remaining -= applied

    return CollectionAllocation(
        amount_received=received,
        allocations=tuple(allocations),
        unapplied_credit=remaining,
    )
