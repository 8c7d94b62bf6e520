"""
Module: evoucher_engines
Responsibility:
    Pure calculation engines: category taxonomy, reference numbering,
    statement reconciliation and billing payment math.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import evoucher_kernel.domain (and sibling engine modules).
    MUST NOT import evoucher_services or evoucher_modules.

Invariants enforced:
    - Engines never read the clock; dates are passed in by services.
    - Decimal-only arithmetic for monetary amounts.
"""

from evoucher_engines.numbering import (
    generate_statement_ref,
    generate_voucher_number,
    next_invoice_number,
)
from evoucher_engines.payments import (
    Billing,
    CollectionAllocation,
    PaymentStatus,
    allocate_collection,
    calculate_due_date,
    is_overdue,
    payment_status,
    project_billing,
    record_payment,
)
from evoucher_engines.statements import (
    COLLECTIBLE_THRESHOLD,
    Statement,
    StatementLink,
    compute_open_statements,
    is_collectible,
    is_statement_member,
    link_statement_to_collection,
)
from evoucher_engines.taxonomy import (
    EXPENSE_CATEGORIES,
    REVENUE_CATEGORIES,
    SubCategory,
    sub_categories_for,
)

__all__ = [
    "Billing",
    "COLLECTIBLE_THRESHOLD",
    "CollectionAllocation",
    "EXPENSE_CATEGORIES",
    "PaymentStatus",
    "REVENUE_CATEGORIES",
    "Statement",
    "StatementLink",
    "SubCategory",
    "allocate_collection",
    "calculate_due_date",
    "compute_open_statements",
    "generate_statement_ref",
    "generate_voucher_number",
    "is_collectible",
    "is_overdue",
    "is_statement_member",
    "link_statement_to_collection",
    "next_invoice_number",
    "payment_status",
    "project_billing",
    "record_payment",
    "sub_categories_for",
]
