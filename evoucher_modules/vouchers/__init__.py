"""
Vouchers Module.

One polymorphic record for every money movement (expense, budget request,
cash advance, billing, collection), its required-field matrix and its
approval lifecycle.

The lifecycle service lives in ``evoucher_modules.vouchers.service`` and
is imported from there; it depends on the billing module.
"""

from evoucher_modules.vouchers.builder import BILLABLE_PREFIX, build_voucher
from evoucher_modules.vouchers.config import VoucherConfig
from evoucher_modules.vouchers.models import (
    BillingStatus,
    CreditTerms,
    HistoryEntry,
    LineItem,
    LinkedBilling,
    PaymentMethod,
    TransactionSubtype,
    TransactionType,
    Voucher,
    VoucherForm,
    VoucherStatus,
)
from evoucher_modules.vouchers.validation import (
    REQUIRED_FIELDS,
    is_submittable,
    validate_for_draft,
    validate_for_submit,
)
from evoucher_modules.vouchers.workflows import LEDGER_VISIBLE_STATUSES, VOUCHER_WORKFLOW

__all__ = [
    "BILLABLE_PREFIX",
    "BillingStatus",
    "CreditTerms",
    "HistoryEntry",
    "LEDGER_VISIBLE_STATUSES",
    "LineItem",
    "LinkedBilling",
    "PaymentMethod",
    "REQUIRED_FIELDS",
    "TransactionSubtype",
    "TransactionType",
    "VOUCHER_WORKFLOW",
    "Voucher",
    "VoucherConfig",
    "VoucherForm",
    "VoucherStatus",
    "build_voucher",
    "is_submittable",
    "validate_for_draft",
    "validate_for_submit",
]
