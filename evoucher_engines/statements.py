"""
evoucher_engines.statements -- Statement Reconciliation Engine.

Responsibility:
    Derive virtual statements from billed billing vouchers that share a
    statement reference, and turn one statement into the line item and
    linked-billing entries of a collection voucher.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import evoucher_kernel.domain.

Invariants enforced:
    - Only posted billing vouchers with ``billing_status = billed`` and a
      statement reference take part (``is_statement_member``).  A billing
      that is billed but not yet posted is not a recognized receivable.
    - A member's outstanding amount is its ``remaining_balance``, which is
      the full total when no payment has been recorded.
    - A statement is collectible only when its remaining balance is
      strictly greater than the threshold (``is_collectible``); statements
      at or below it are rounding dust and never returned.
    - Linking preserves the balance: the linked amounts sum to the
      statement's remaining balance within one currency unit (0.01).

Failure modes:
    - StatementNotCollectibleError when linking a statement at or below
      the threshold.

Usage:
    from evoucher_engines.statements import (
        compute_open_statements, link_statement_to_collection,
    )

    statements = compute_open_statements(vouchers, project_filter="BKG-1")
    link = link_statement_to_collection(statements[0])
    link.line_item.amount        # == statements[0].remaining_balance
    link.linked_billings         # one entry per member billing
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import uuid4

from evoucher_engines.tracer import traced_engine
from evoucher_kernel.domain.amounts import sum_amounts, to_amount
from evoucher_kernel.domain.vouchers import (
    BillingStatus,
    LineItem,
    LinkedBilling,
    TransactionType,
    Voucher,
    VoucherStatus,
)
from evoucher_kernel.exceptions import StatementNotCollectibleError
from evoucher_kernel.logging_config import get_logger

logger = get_logger("engines.statements")

# Remaining balances at or below one currency unit are rounding dust.
COLLECTIBLE_THRESHOLD = Decimal("1")


@dataclass(frozen=True)
class Statement:
    """
    A derived grouping of billed billing vouchers.

    Contract:
        Never persisted; recomputed from vouchers on every read.
    Guarantees:
        - ``total_amount`` is the sum of member totals.
        - ``remaining_balance`` is the sum of member remaining balances.
    """

    ref: str
    items: tuple[Voucher, ...]
    total_amount: Decimal
    remaining_balance: Decimal

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def customer_name(self) -> str | None:
        return self.items[0].counterparty if self.items else None


@dataclass(frozen=True)
class StatementLink:
    """The collection-side entries produced by linking one statement."""

    statement_ref: str
    line_item: LineItem
    linked_billings: tuple[LinkedBilling, ...]

    @property
    def total_amount(self) -> Decimal:
        return sum_amounts(link.amount for link in self.linked_billings)


def is_statement_member(voucher: Voucher, project_filter: str | None = None) -> bool:
    """
    Eligibility filter for statement grouping.

    A voucher takes part when it is a posted billing, has been billed,
    carries a statement reference and (when a filter is given) belongs to
    the project.
    """
    if voucher.transaction_type != TransactionType.BILLING:
        return False
    if voucher.status != VoucherStatus.POSTED:
        return False
    if voucher.billing_status != BillingStatus.BILLED:
        return False
    if not voucher.statement_reference:
        return False
    if project_filter is not None and voucher.project_reference != project_filter:
        return False
    return True


def is_collectible(
    remaining_balance: Decimal,
    threshold: Decimal = COLLECTIBLE_THRESHOLD,
) -> bool:
    """True when a remaining balance is large enough to collect against."""
    return remaining_balance > threshold


def group_by_statement(vouchers: Iterable[Voucher]) -> dict[str, list[Voucher]]:
    """Group vouchers by statement reference, preserving input order."""
    groups: dict[str, list[Voucher]] = defaultdict(list)
    for voucher in vouchers:
        if voucher.statement_reference:
            groups[voucher.statement_reference].append(voucher)
    return dict(groups)


def fold_statement(ref: str, members: Sequence[Voucher]) -> Statement:
    """Accumulate totals for one statement group."""
    return Statement(
        ref=ref,
        items=tuple(members),
        total_amount=sum_amounts(m.total_amount for m in members),
        remaining_balance=sum_amounts(m.remaining_balance for m in members),
    )


@traced_engine("open_statements", "1.0", fingerprint_fields=("project_filter",))
def compute_open_statements(
    vouchers: Iterable[Voucher],
    project_filter: str | None = None,
    threshold: Decimal = COLLECTIBLE_THRESHOLD,
) -> list[Statement]:
    """
    Open (collectible) statements over a flat voucher list.

    The result carries no ordering guarantee; callers sort when they need one.
    """
    members = [v for v in vouchers if is_statement_member(v, project_filter)]
    statements = [
        fold_statement(ref, group)
        for ref, group in group_by_statement(members).items()
    ]
    open_statements = [s for s in statements if is_collectible(s.remaining_balance, threshold)]

    logger.debug(
        "open_statements_computed",
        extra={
            "member_count": len(members),
            "statement_count": len(statements),
            "open_count": len(open_statements),
            "project_filter": project_filter,
        },
    )
    return open_statements


def link_statement_to_collection(
    statement: Statement,
    threshold: Decimal = COLLECTIBLE_THRESHOLD,
    line_item_id: str | None = None,
) -> StatementLink:
    """
    Build a collection's line item and linked billings from a statement.

    Each member is linked at its own remaining balance, so the split
    follows the per-invoice balances rather than an even division.
    """
    if not is_collectible(statement.remaining_balance, threshold):
        raise StatementNotCollectibleError(statement.ref, statement.remaining_balance)

    linked = tuple(
        LinkedBilling(
            billing_voucher_id=member.id,
            amount=to_amount(member.remaining_balance),
            reference=member.invoice_number or member.voucher_number,
        )
        for member in statement.items
    )
    count = len(linked)
    line_item = LineItem(
        id=line_item_id or str(uuid4()),
        particular=f"Collection for {statement.ref}",
        description=f"Linked {count} billing item{'s' if count != 1 else ''}",
        amount=statement.remaining_balance,
    )
    return StatementLink(
        statement_ref=statement.ref,
        line_item=line_item,
        linked_billings=linked,
    )
