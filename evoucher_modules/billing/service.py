"""
Billing Module Service (``evoucher_modules.billing.service``).

Responsibility
--------------
Statement generation, open-statement reads, statement-to-collection
linking, payment recording and collection application.  All arithmetic
lives in ``evoucher_engines.statements`` and ``evoucher_engines.payments``;
this service reads and writes vouchers through the ``VoucherStore``.

Invariants enforced
-------------------
* Payment preconditions (``0 < amount <= amount_due``) are checked
  against the billing as stored at write time, never against a value read
  earlier.  A payment that was valid when the caller observed the billing
  but no longer fits fails with ``ConcurrentModificationError``; the
  billing write itself is compare-and-set on the voucher version.
* Statement generation tags every selected billing or none of them.
* Only posted billings are receivable: statements, links and payments
  never reach a billing that has not been posted.
* Collection links are checked against the stored billings before the
  collection is written (``validate_collection_links``).

Failure modes
-------------
* ``InvalidPaymentAmountError`` / ``OverpaymentError`` before any write.
* ``VoucherValidationError`` for a link to a missing, non-billing or
  unposted voucher.
* ``ConcurrentModificationError`` for stale reads.
* ``StatementNotCollectibleError`` when linking a settled statement.
"""

from __future__ import annotations

import random
from dataclasses import replace
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable

from evoucher_engines.numbering import generate_statement_ref
from evoucher_engines.payments import (
    Billing,
    CollectionAllocation,
    allocate_collection,
    project_billing,
    record_payment as apply_payment,
)
from evoucher_engines.statements import (
    Statement,
    StatementLink,
    compute_open_statements,
    fold_statement,
    is_statement_member,
    link_statement_to_collection,
)
from evoucher_kernel.domain.amounts import ZERO, sum_amounts, to_amount
from evoucher_kernel.domain.clock import Clock, SystemClock
from evoucher_kernel.domain.identity import Actor
from evoucher_kernel.domain.vouchers import (
    BillingStatus,
    HistoryEntry,
    TransactionType,
    Voucher,
    VoucherStatus,
)
from evoucher_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidPaymentAmountError,
    InvalidTransitionError,
    OverpaymentError,
    PersistenceError,
    VoucherNotFoundError,
    VoucherValidationError,
)
from evoucher_kernel.logging_config import LogContext, get_logger
from evoucher_modules.billing.models import (
    PAYMENT_ACTION,
    STATEMENT_ACTION,
    CollectionReconciliation,
    PaymentRecord,
)
from evoucher_modules.vouchers.config import VoucherConfig
from evoucher_modules.vouchers.models import VoucherForm
from evoucher_services.stores import VoucherFilter

if TYPE_CHECKING:
    from evoucher_services.stores import VoucherStore

logger = get_logger("modules.billing.service")

_CLOSED_STATUSES = (VoucherStatus.REJECTED, VoucherStatus.CANCELLED)

# Collection form fields owned by statement linking.
_LINKING_FIELDS = frozenset({
    "transaction_type", "statement_reference", "line_items", "linked_billings",
})


def is_receivable(voucher: Voucher) -> bool:
    """A billing that can be collected against: posted to the ledger."""
    return (
        voucher.transaction_type == TransactionType.BILLING
        and voucher.status == VoucherStatus.POSTED
    )


class BillingService:
    """
    Reconciles collections against billings.

    Contract
    --------
    * Reads return projections computed from the stored vouchers on every
      call; nothing derived is stored.
    * ``apply_collection`` performs several writes and does not open a
      transaction itself; callers wrap it in ``store.atomic()``.
    """

    def __init__(
        self,
        store: VoucherStore,
        clock: Clock | None = None,
        config: VoucherConfig | None = None,
        rng: random.Random | None = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._config = config or VoucherConfig.with_defaults()
        self._rng = rng

    # =========================================================================
    # Reads
    # =========================================================================

    def _project(self, voucher: Voucher) -> Billing:
        return project_billing(voucher, self._clock.today(), self._config.default_credit_days)

    def _billing_vouchers(self) -> list[Voucher]:
        return [
            v for v in self._store.list(VoucherFilter(transaction_type=TransactionType.BILLING))
            if v.status not in _CLOSED_STATUSES
        ]

    def get_billing(self, billing_id: str) -> Billing:
        voucher = self._store.get(billing_id)
        self._require_billing(voucher)
        return self._project(voucher)

    def list_billings(
        self,
        customer_name: str | None = None,
        open_only: bool = False,
    ) -> list[Billing]:
        billings = [
            self._project(v) for v in self._billing_vouchers()
            if is_receivable(v)
            and (customer_name is None or v.counterparty == customer_name)
        ]
        if open_only:
            billings = [b for b in billings if b.amount_due > ZERO]
        return billings

    def open_statements(self, project_filter: str | None = None) -> list[Statement]:
        """Collectible statements, optionally for one project."""
        return compute_open_statements(
            self._billing_vouchers(),
            project_filter=project_filter,
            threshold=self._config.collectible_threshold,
        )

    def statement_billings(self, ref: str) -> list[Voucher]:
        """Every open billing tagged with ``ref``, posted or not."""
        return [
            v for v in self._store.list(VoucherFilter(
                transaction_type=TransactionType.BILLING,
                billing_status=BillingStatus.BILLED,
                statement_reference=ref,
            ))
            if v.status not in _CLOSED_STATUSES
        ]

    def get_statement(self, ref: str) -> Statement:
        """The collectible part of a statement: its posted billings."""
        members = [v for v in self.statement_billings(ref) if is_statement_member(v)]
        if not members:
            raise VoucherValidationError(
                [{"field": "statement_reference", "message": f"No posted billings carry {ref}"}],
                stage="collection",
            )
        return fold_statement(ref, members)

    # =========================================================================
    # Statements
    # =========================================================================

    def generate_statement(self, billing_ids: Iterable[str], actor: Actor) -> str:
        """
        Tag unbilled billings with a fresh statement reference.

        Returns the reference.  Every selected billing is marked billed, or
        (on any failure) none is.  Drafts are refused; submitted and
        approved billings may be billed and are posted later by
        finalizing the statement.
        """
        ids = list(dict.fromkeys(billing_ids))
        if not ids:
            raise VoucherValidationError(
                [{"field": "billing_ids", "message": "Select at least one billing"}],
                stage="statement",
            )

        logger.info(
            "generate_statement_started",
            extra={"billing_count": len(ids), "actor_name": actor.display_name},
        )
        with self._store.atomic():
            vouchers = [self._store.get(i) for i in ids]
            for voucher in vouchers:
                self._require_billing(voucher)
                if voucher.status in _CLOSED_STATUSES or voucher.status == VoucherStatus.DRAFT:
                    raise InvalidTransitionError(voucher.id, voucher.status.value, "generate_statement")
                if voucher.billing_status == BillingStatus.BILLED:
                    raise InvalidTransitionError(
                        voucher.id, BillingStatus.BILLED.value, "generate_statement",
                    )

            ref = self._unused_statement_ref()
            now = self._clock.now()
            for voucher in vouchers:
                entry = HistoryEntry(
                    status=voucher.status,
                    action=STATEMENT_ACTION,
                    actor_name=actor.display_name,
                    at=now,
                    remarks=f"Billed on statement {ref}",
                    reference=ref,
                )
                self._store.update(
                    voucher.id,
                    {
                        "statement_reference": ref,
                        "billing_status": BillingStatus.BILLED,
                        "history": voucher.history + (entry,),
                    },
                    expected_version=voucher.version,
                )

        logger.info(
            "generate_statement_completed",
            extra={
                "statement_ref": ref,
                "billing_count": len(ids),
                "total_amount": sum_amounts(v.total_amount for v in vouchers),
            },
        )
        return ref

    def _unused_statement_ref(self) -> str:
        attempts = 1 + self._config.number_collision_retries
        for _ in range(attempts):
            ref = generate_statement_ref(
                self._clock.today(), self._rng, self._config.statement_prefix,
            )
            if not self._store.list(VoucherFilter(statement_reference=ref)):
                return ref
            logger.warning("statement_ref_collision", extra={"statement_ref": ref})
        raise PersistenceError(
            "generate_statement", "no unused statement reference after retries",
        )

    def link_statement(self, ref: str) -> StatementLink:
        statement = self.get_statement(ref)
        return link_statement_to_collection(statement, self._config.collectible_threshold)

    def collection_form_for_statement(self, ref: str, **overrides: Any) -> VoucherForm:
        """
        Collection form pre-filled from a statement.

        The single line item and the linked billings come from linking;
        ``overrides`` fill the remaining form fields (payment method etc.).
        Fields that carry the link itself cannot be overridden.
        """
        locked = sorted(_LINKING_FIELDS.intersection(overrides))
        if locked:
            raise ValueError(f"Cannot override statement link fields: {', '.join(locked)}")

        with LogContext.bind(statement_ref=ref):
            statement = self.get_statement(ref)
            link = link_statement_to_collection(statement, self._config.collectible_threshold)
            logger.info(
                "statement_linked",
                extra={
                    "remaining_balance": statement.remaining_balance,
                    "linked_count": len(link.linked_billings),
                },
            )
        form = VoucherForm(
            transaction_type=TransactionType.COLLECTION,
            counterparty=statement.customer_name,
            statement_reference=ref,
            project_reference=statement.items[0].project_reference,
            line_items=(link.line_item,),
            linked_billings=link.linked_billings,
            currency=statement.items[0].currency,
        )
        return replace(form, **overrides)

    def validate_collection_links(self, collection: Voucher) -> None:
        """
        Check a collection's linked billings against the stored billings.

        Every link must name an existing, posted billing, at most once, for
        no more than that billing's remaining balance.  Runs before the
        collection is written, so a bad link never reaches the store.
        """
        errors: list[dict[str, str]] = []
        linked: list[tuple[Voucher, Decimal]] = []
        seen: set[str] = set()
        for link in collection.linked_billings:
            billing_id = link.billing_voucher_id
            if billing_id in seen:
                errors.append({
                    "field": "linked_billings",
                    "message": f"Billing {billing_id} is linked more than once",
                })
                continue
            seen.add(billing_id)
            try:
                billing = self._store.get(billing_id)
            except VoucherNotFoundError:
                errors.append({
                    "field": "linked_billings",
                    "message": f"Linked billing {billing_id} does not exist",
                })
                continue
            if billing.transaction_type != TransactionType.BILLING:
                errors.append({
                    "field": "linked_billings",
                    "message": f"{billing.voucher_number} is a "
                               f"{billing.transaction_type.value}, not a billing",
                })
            elif not is_receivable(billing):
                errors.append({
                    "field": "linked_billings",
                    "message": f"{billing.voucher_number} is {billing.status.value}, "
                               f"not posted",
                })
            else:
                linked.append((billing, link.amount))

        if errors:
            logger.warning(
                "collection_links_rejected",
                extra={"voucher_id": collection.id, "error_count": len(errors)},
            )
            raise VoucherValidationError(errors, stage="collection")

        for billing, amount in linked:
            if amount > billing.remaining_balance:
                logger.warning(
                    "collection_link_overpays",
                    extra={
                        "billing_id": billing.id,
                        "amount": amount,
                        "remaining_balance": billing.remaining_balance,
                    },
                )
                raise OverpaymentError(billing.id, amount, billing.remaining_balance)

    # =========================================================================
    # Payments
    # =========================================================================

    def record_payment(
        self,
        billing_id: str,
        amount: Decimal | int | str,
        actor: Actor,
        expected_amount_due: Decimal | None = None,
        collection_id: str | None = None,
    ) -> PaymentRecord:
        """
        Apply a payment to one billing.

        ``expected_amount_due`` is the amount due the caller saw when it
        chose ``amount``.  If the stored amount due has since dropped below
        ``amount``, the failure is a ``ConcurrentModificationError`` rather
        than an overpayment.
        """
        amount = to_amount(amount)
        if amount <= ZERO:
            raise InvalidPaymentAmountError(billing_id, amount)

        with LogContext.bind(voucher_id=billing_id, actor_name=actor.display_name):
            logger.info(
                "record_payment_started",
                extra={"amount": amount, "collection_id": collection_id},
            )
            voucher = self._store.get(billing_id)
            self._require_billing(voucher)
            if not is_receivable(voucher):
                raise InvalidTransitionError(voucher.id, voucher.status.value, "record_payment")

            billing = self._project(voucher)
            if (
                amount > billing.amount_due
                and expected_amount_due is not None
                and amount <= to_amount(expected_amount_due)
            ):
                logger.warning(
                    "record_payment_stale",
                    extra={
                        "amount": amount,
                        "expected_amount_due": expected_amount_due,
                        "amount_due": billing.amount_due,
                    },
                )
                raise ConcurrentModificationError(
                    "billing",
                    billing_id,
                    f"amount due changed from {to_amount(expected_amount_due)} "
                    f"to {billing.amount_due}",
                )

            updated = apply_payment(billing, amount)

            entry = HistoryEntry(
                status=voucher.status,
                action=PAYMENT_ACTION,
                actor_name=actor.display_name,
                at=self._clock.now(),
                remarks=f"Payment of {amount} recorded",
                reference=collection_id,
            )
            self._store.update(
                billing_id,
                {"amount_paid": updated.amount_paid, "history": voucher.history + (entry,)},
                expected_version=voucher.version,
            )

            logger.info(
                "record_payment_completed",
                extra={
                    "amount_paid": updated.amount_paid,
                    "amount_due": updated.amount_due,
                    "payment_status": updated.payment_status.value,
                },
            )
            return PaymentRecord(
                billing=updated,
                amount=amount,
                previous_amount_paid=billing.amount_paid,
                collection_id=collection_id,
            )

    def apply_collection(self, collection: Voucher, actor: Actor) -> tuple[PaymentRecord, ...]:
        """
        Record the payment each linked billing receives from a collection.

        Each link amount was at most the billing's remaining balance when
        it was linked, so a link that no longer fits is a stale read.
        """
        if collection.transaction_type != TransactionType.COLLECTION:
            raise VoucherValidationError(
                [{"field": "transaction_type", "message": "Not a collection"}],
                stage="post",
            )
        records = []
        for link in collection.linked_billings:
            if link.amount <= ZERO:
                continue
            records.append(self.record_payment(
                link.billing_voucher_id,
                link.amount,
                actor,
                expected_amount_due=link.amount,
                collection_id=collection.id,
            ))
        return tuple(records)

    def allocate_collection(
        self,
        amount_received: Decimal | int | str,
        customer_name: str | None = None,
    ) -> CollectionAllocation:
        """Spread a received amount over a customer's open billings, oldest first."""
        billings = self.list_billings(customer_name=customer_name, open_only=True)
        allocation = allocate_collection(amount_received, billings)
        logger.info(
            "collection_allocated",
            extra={
                "amount_received": allocation.amount_received,
                "applied_total": allocation.applied_total,
                "unapplied_credit": allocation.unapplied_credit,
                "allocation_count": len(allocation.allocations),
            },
        )
        return allocation

    def verify_collection_applied(self, collection_id: str) -> CollectionReconciliation:
        """
        Follow-up read: did every linked billing receive this collection?

        A billing that was deleted since counts as missing.
        """
        collection = self._store.get(collection_id)
        applied: list[str] = []
        missing: list[str] = []
        for link in collection.linked_billings:
            if link.amount <= ZERO:
                continue
            try:
                billing = self._store.get(link.billing_voucher_id)
            except VoucherNotFoundError:
                missing.append(link.billing_voucher_id)
                continue
            if any(
                h.action == PAYMENT_ACTION and h.reference == collection_id
                for h in billing.history
            ):
                applied.append(billing.id)
            else:
                missing.append(billing.id)

        result = CollectionReconciliation(
            collection_id=collection_id,
            expected_total=collection.linked_total,
            applied_billing_ids=tuple(applied),
            missing_billing_ids=tuple(missing),
        )
        if not result.is_complete:
            logger.warning(
                "collection_partially_applied",
                extra={"collection_id": collection_id, "missing": list(missing)},
            )
        return result

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _require_billing(voucher: Voucher) -> None:
        if voucher.transaction_type != TransactionType.BILLING:
            raise VoucherValidationError(
                [{
                    "field": "billing_id",
                    "message": f"{voucher.voucher_number} is a "
                               f"{voucher.transaction_type.value}, not a billing",
                }],
                stage="billing",
            )
