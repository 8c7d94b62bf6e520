"""
Billing Module.

Billing projections, statements of account and collection reconciliation.
Arithmetic comes from ``evoucher_engines.statements`` and
``evoucher_engines.payments``.
"""

from evoucher_modules.billing.models import (
    PAYMENT_ACTION,
    STATEMENT_ACTION,
    Billing,
    CollectionAllocation,
    CollectionReconciliation,
    PaymentRecord,
    PaymentStatus,
    Statement,
    StatementLink,
)

__all__ = [
    "PAYMENT_ACTION",
    "STATEMENT_ACTION",
    "Billing",
    "CollectionAllocation",
    "CollectionReconciliation",
    "PaymentRecord",
    "PaymentStatus",
    "Statement",
    "StatementLink",
]
