"""
Billing Domain Models (``evoucher_modules.billing.models``).

Responsibility
--------------
Results returned by ``BillingService``: a recorded payment, the outcome of
applying a collection, and the follow-up reconciliation read that detects
a collection whose linked billings were not all updated.  The billing
projection itself (``Billing``, ``PaymentStatus``) is computed by
``evoucher_engines.payments`` and re-exported here.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from evoucher_engines.payments import Billing, CollectionAllocation, PaymentStatus
from evoucher_engines.statements import Statement, StatementLink

# History action recorded on a billing when a payment is applied.
PAYMENT_ACTION = "payment"
STATEMENT_ACTION = "statement"


@dataclass(frozen=True)
class PaymentRecord:
    """A payment applied to one billing."""

    billing: Billing
    amount: Decimal
    previous_amount_paid: Decimal
    collection_id: str | None = None


@dataclass(frozen=True)
class CollectionReconciliation:
    """
    Follow-up read over a posted collection.

    ``missing_billing_ids`` lists linked billings with no payment entry
    referencing the collection; a non-empty list means the collection was
    only partly applied.
    """

    collection_id: str
    expected_total: Decimal
    applied_billing_ids: tuple[str, ...]
    missing_billing_ids: tuple[str, ...]

    @property
    def is_complete(self) -> bool:
        return not self.missing_billing_ids


__all__ = [
    "Billing",
    "CollectionAllocation",
    "CollectionReconciliation",
    "PAYMENT_ACTION",
    "PaymentRecord",
    "PaymentStatus",
    "STATEMENT_ACTION",
    "Statement",
    "StatementLink",
]
