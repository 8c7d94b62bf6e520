"""
Voucher construction (``evoucher_modules.vouchers.builder``).

Responsibility
--------------
``build_voucher`` turns a ``VoucherForm`` into a ``Voucher``: it coerces
amounts to Decimal cents, parses dates to ``date`` (stores persist them as
ISO strings), reconciles the billable flag with the transaction type and
computes ``total_amount``.

Architecture position
---------------------
**Modules layer** -- pure construction, ZERO I/O.  Identifiers, the
voucher number, the requestor and the current date are all passed in;
persistence belongs to the lifecycle service.

Invariants enforced
-------------------
* ``total_amount`` is the sum of line items, or of linked billings for a
  collection created from a statement.
* Only an expense can be billable; a billable flag on any other type is
  an ``InconsistentBillableFlagError``.
* A billable expense's description carries the ``[BILLABLE] `` prefix.

Failure modes
-------------
* ``VoucherValidationError`` (stage ``draft``) for a missing or unknown
  transaction type, missing requestor, or unparseable field values.
* ``InconsistentBillableFlagError`` as above.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Mapping
from uuid import uuid4

from evoucher_kernel.domain.amounts import DEFAULT_CURRENCY, sum_amounts, to_amount
from evoucher_kernel.domain.vouchers import (
    BillingStatus,
    CreditTerms,
    LineItem,
    LinkedBilling,
    PaymentMethod,
    TransactionSubtype,
    TransactionType,
    Voucher,
    VoucherStatus,
)
from evoucher_kernel.exceptions import (
    InconsistentBillableFlagError,
    VoucherValidationError,
)
from evoucher_kernel.logging_config import get_logger
from evoucher_modules.vouchers.models import VoucherForm
from evoucher_modules.vouchers.validation import validate_for_draft

logger = get_logger("modules.vouchers.builder")

BILLABLE_PREFIX = "[BILLABLE] "


class _FieldErrors:
    """Collects field errors while normalizing one form."""

    def __init__(self) -> None:
        self.errors: list[dict[str, str]] = []

    def add(self, field: str, message: str) -> None:
        self.errors.append({"field": field, "message": message})

    def raise_if_any(self) -> None:
        if self.errors:
            raise VoucherValidationError(self.errors, stage="draft")


def parse_date(value: date | datetime | str | None) -> date | None:
    """Normalize a form date (``date``, ``datetime`` or ISO string)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def _coerce_enum(enum_cls, value, field: str, errors: _FieldErrors):
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        errors.add(field, f"Unknown {field.replace('_', ' ')}: {value}")
        return None


def _line_item(raw: LineItem | Mapping[str, Any], index: int, errors: _FieldErrors) -> LineItem | None:
    if isinstance(raw, LineItem):
        return raw
    try:
        return LineItem(
            id=str(raw.get("id") or uuid4()),
            particular=(raw.get("particular") or "").strip(),
            description=(raw.get("description") or "").strip(),
            amount=raw.get("amount"),
        )
    except ValueError as exc:
        errors.add("line_items", f"Line {index + 1}: {exc}")
        return None


def _linked_billing(raw: LinkedBilling | Mapping[str, Any], errors: _FieldErrors) -> LinkedBilling | None:
    if isinstance(raw, LinkedBilling):
        return raw
    try:
        return LinkedBilling(
            billing_voucher_id=str(raw["billing_voucher_id"]),
            amount=raw.get("amount"),
            reference=raw.get("reference"),
        )
    except (KeyError, ValueError) as exc:
        errors.add("linked_billings", f"Invalid linked billing: {exc}")
        return None


def _is_blank_row(item: LineItem) -> bool:
    return not item.particular and not item.description and item.amount == 0


def _resolve_billable(
    transaction_type: TransactionType,
    subtype: TransactionSubtype | None,
    is_billable: bool,
) -> tuple[TransactionSubtype | None, bool]:
    billable_requested = is_billable or subtype == TransactionSubtype.BILLABLE_EXPENSE
    if transaction_type != TransactionType.EXPENSE:
        if billable_requested:
            raise InconsistentBillableFlagError(transaction_type.value)
        return None, False
    if is_billable and subtype == TransactionSubtype.REGULAR_EXPENSE:
        raise InconsistentBillableFlagError(
            f"{transaction_type.value} ({subtype.value})"
        )
    if billable_requested:
        return TransactionSubtype.BILLABLE_EXPENSE, True
    return subtype or TransactionSubtype.REGULAR_EXPENSE, False


def _billable_description(description: str | None, purpose: str | None) -> str:
    text = (description or purpose or "").strip()
    if text.startswith(BILLABLE_PREFIX.strip()):
        return text
    return f"{BILLABLE_PREFIX}{text}".rstrip() if text else BILLABLE_PREFIX.strip()


def build_voucher(
    form: VoucherForm,
    *,
    voucher_number: str,
    requestor_name: str,
    today: date,
    voucher_id: str | None = None,
    source_module: str | None = None,
    default_currency: str = DEFAULT_CURRENCY,
) -> Voucher:
    """
    Construct a draft ``Voucher`` from form state.

    Only draft-level validation runs here; submission rules are applied by
    the lifecycle service through the required-field matrix.
    """
    errors = _FieldErrors()

    transaction_type = None
    if not form.transaction_type:
        errors.add("transaction_type", "Transaction type is required")
    else:
        transaction_type = _coerce_enum(
            TransactionType, form.transaction_type, "transaction_type", errors,
        )
    if not requestor_name or not requestor_name.strip():
        errors.add("requestor_name", "Requestor is required")

    subtype = _coerce_enum(
        TransactionSubtype, form.transaction_subtype, "transaction_subtype", errors,
    )
    payment_method = _coerce_enum(PaymentMethod, form.payment_method, "payment_method", errors)
    credit_terms = _coerce_enum(CreditTerms, form.credit_terms, "credit_terms", errors)

    dates: dict[str, date | None] = {}
    for name in ("request_date", "due_date"):
        try:
            dates[name] = parse_date(getattr(form, name))
        except ValueError:
            errors.add(name, f"Not an ISO date: {getattr(form, name)}")
            dates[name] = None

    line_items = []
    for index, raw in enumerate(form.line_items):
        item = _line_item(raw, index, errors)
        if item is not None and not _is_blank_row(item):
            line_items.append(item)

    linked = [
        link for link in (_linked_billing(raw, errors) for raw in form.linked_billings)
        if link is not None
    ]

    errors.raise_if_any()
    assert transaction_type is not None

    if linked and transaction_type != TransactionType.COLLECTION:
        raise VoucherValidationError(
            [{"field": "linked_billings", "message": "Only collections link billings"}],
            stage="draft",
        )

    subtype, is_billable = _resolve_billable(transaction_type, subtype, form.is_billable)

    description = form.description
    if is_billable:
        description = _billable_description(form.description, form.purpose)

    if linked:
        total = sum_amounts(link.amount for link in linked)
    else:
        total = sum_amounts(item.amount for item in line_items)

    voucher = Voucher(
        id=voucher_id or str(uuid4()),
        voucher_number=voucher_number,
        transaction_type=transaction_type,
        status=VoucherStatus.DRAFT,
        requestor_name=requestor_name.strip(),
        line_items=tuple(line_items),
        total_amount=to_amount(total),
        transaction_subtype=subtype,
        category=form.category or None,
        sub_category=form.sub_category or None,
        counterparty=(form.counterparty or "").strip() or None,
        project_reference=form.project_reference or None,
        source_account_id=form.source_account_id or None,
        linked_billings=tuple(linked),
        purpose=form.purpose,
        description=description,
        currency=form.currency or default_currency,
        payment_method=payment_method,
        credit_terms=credit_terms,
        request_date=dates["request_date"] or today,
        due_date=dates["due_date"],
        notes=form.notes,
        booking_id=form.booking_id or None,
        source_module=source_module,
        is_billable=is_billable,
        billing_status=(
            BillingStatus.UNBILLED if transaction_type == TransactionType.BILLING else None
        ),
        statement_reference=form.statement_reference or None,
    )
    validate_for_draft(voucher)

    logger.debug(
        "voucher_built",
        extra={
            "voucher_number": voucher.voucher_number,
            "transaction_type": voucher.transaction_type.value,
            "total_amount": voucher.total_amount,
            "line_item_count": len(voucher.line_items),
            "linked_billing_count": len(voucher.linked_billings),
        },
    )
    return voucher
