"""
Required-field matrix (``evoucher_modules.vouchers.validation``).

The per-type submission rules are data: ``REQUIRED_FIELDS`` maps each
transaction type to the checks a voucher of that type must pass.  The
same table drives lifecycle submission and form-level validation, and can
be inspected or tested without a store.

    type                                 required beyond line items
    expense / budget_request /           category (expense), counterparty
      cash_advance
    billing                              category (revenue), counterparty
    collection                           linked billings (from a selected
                                         statement) OR line items,
                                         counterparty

A statement reference on its own does not satisfy the collection rule: a
selected statement always arrives with its linked billings.

Revenue categories have no sub-category table, and an unknown expense
category has none either; in both cases the sub-category is optional.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from evoucher_engines.taxonomy import (
    is_expense_category,
    is_revenue_category,
    is_valid_sub_category,
)
from evoucher_kernel.domain.vouchers import (
    TransactionType,
    Voucher,
    valid_line_items,
)
from evoucher_kernel.exceptions import VoucherValidationError


@dataclass(frozen=True)
class FieldCheck:
    """One required-field rule: the voucher passes when ``passes`` is True."""

    field: str
    message: str
    passes: Callable[[Voucher], bool]


def _present(value: str | None) -> bool:
    return bool(value and value.strip())


def _has_valid_line_item(v: Voucher) -> bool:
    return bool(valid_line_items(v.line_items))


def _has_links_or_line_items(v: Voucher) -> bool:
    if any(link.amount > 0 for link in v.linked_billings):
        return True
    return _has_valid_line_item(v)


def _revenue_category_if_given(v: Voucher) -> bool:
    return not _present(v.category) or is_revenue_category(v.category)


COUNTERPARTY = FieldCheck(
    "counterparty", "Payee / client name is required",
    lambda v: _present(v.counterparty),
)
LINE_ITEMS = FieldCheck(
    "line_items", "At least one line item with a particular and an amount is required",
    _has_valid_line_item,
)
EXPENSE_CATEGORY = FieldCheck(
    "category", "An expense category is required",
    lambda v: _present(v.category) and is_expense_category(v.category),
)
SUB_CATEGORY = FieldCheck(
    "sub_category", "Sub-category is not valid for the selected category",
    lambda v: is_valid_sub_category(v.category, v.sub_category),
)
REVENUE_CATEGORY = FieldCheck(
    "category", "A revenue category is required",
    lambda v: _present(v.category) and is_revenue_category(v.category),
)
OPTIONAL_REVENUE_CATEGORY = FieldCheck(
    "category", "Category must be a revenue category",
    _revenue_category_if_given,
)
STATEMENT_OR_LINE_ITEMS = FieldCheck(
    "line_items", "Select a statement or enter at least one line item",
    _has_links_or_line_items,
)

_EXPENSE_LIKE = (EXPENSE_CATEGORY, SUB_CATEGORY, COUNTERPARTY, LINE_ITEMS)

REQUIRED_FIELDS: dict[TransactionType, tuple[FieldCheck, ...]] = {
    TransactionType.EXPENSE: _EXPENSE_LIKE,
    TransactionType.BUDGET_REQUEST: _EXPENSE_LIKE,
    TransactionType.CASH_ADVANCE: _EXPENSE_LIKE,
    TransactionType.BILLING: (REVENUE_CATEGORY, COUNTERPARTY, LINE_ITEMS),
    TransactionType.COLLECTION: (
        OPTIONAL_REVENUE_CATEGORY, STATEMENT_OR_LINE_ITEMS, COUNTERPARTY,
    ),
}


def submit_errors(voucher: Voucher) -> list[dict[str, str]]:
    """Field errors that block submission (empty when submittable)."""
    errors: list[dict[str, str]] = []
    seen: set[str] = set()
    for check in REQUIRED_FIELDS[voucher.transaction_type]:
        if check.field in seen:
            continue
        if not check.passes(voucher):
            errors.append({"field": check.field, "message": check.message})
            seen.add(check.field)
    if not voucher.is_total_consistent:
        errors.append({
            "field": "total_amount",
            "message": (
                f"Total {voucher.total_amount} does not match "
                f"{voucher.expected_total}"
            ),
        })
    return errors


def draft_errors(voucher: Voucher) -> list[dict[str, str]]:
    """A draft only needs a transaction type and a requestor."""
    errors: list[dict[str, str]] = []
    if not _present(voucher.requestor_name):
        errors.append({"field": "requestor_name", "message": "Requestor is required"})
    return errors


def is_submittable(voucher: Voucher) -> bool:
    return not submit_errors(voucher)


def validate_for_submit(voucher: Voucher) -> None:
    errors = submit_errors(voucher)
    if errors:
        raise VoucherValidationError(errors, stage="submit")


def validate_for_draft(voucher: Voucher) -> None:
    errors = draft_errors(voucher)
    if errors:
        raise VoucherValidationError(errors, stage="draft")
