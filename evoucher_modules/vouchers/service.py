"""
Voucher Lifecycle Service (``evoucher_modules.vouchers.service``).

Responsibility
--------------
Drives vouchers through ``VOUCHER_WORKFLOW``: create draft, submit,
auto-approve, approve, reject, post, disburse, cancel and delete, plus
statement finalization.  Every
status change is resolved through the workflow table and appended to the
voucher's history.

Architecture position
---------------------
**Modules layer** -- thin glue over the builder, the required-field
matrix, the billing service and the ``VoucherStore``.

Invariants enforced
-------------------
* Validation runs before any store call.
* Each operation is a single store write, or a single ``store.atomic()``
  block when it touches several vouchers (posting a collection).
* Updates are compare-and-set on the voucher version read by the
  operation.
* A voucher-number collision regenerates the number and retries
  (``number_collision_retries`` times), then raises.
* Deleting a posted, disbursed or paid voucher requires ``force=True``
  and the ``force_delete`` capability; a billing with any payment on it
  cannot be cancelled.
* Collection links are checked against the stored billings before the
  collection is written.
* Finalizing a statement posts all of its pending billings or none.

Failure modes
-------------
* ``VoucherValidationError`` / ``InconsistentBillableFlagError`` for bad
  input.
* ``InvalidTransitionError`` for an action not legal from the status.
* ``CapabilityRequiredError`` when the actor lacks the capability.
* ``PartialApplicationError`` when auto-approval created and approved the
  voucher but posting it failed; ``record_id`` names the voucher so only
  the post needs retrying.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import fields, replace
from typing import TYPE_CHECKING, Any

from evoucher_engines.numbering import generate_voucher_number, next_invoice_number
from evoucher_engines.payments import calculate_due_date
from evoucher_kernel.domain.clock import Clock, SystemClock
from evoucher_kernel.domain.identity import Actor, Capability
from evoucher_kernel.domain.vouchers import (
    DISBURSABLE_TYPES,
    HistoryEntry,
    TransactionType,
    Voucher,
    VoucherStatus,
)
from evoucher_kernel.exceptions import (
    CapabilityRequiredError,
    DuplicateVoucherNumberError,
    EVoucherError,
    ForceDeleteRequiredError,
    ImmutableFieldError,
    InvalidTransitionError,
    PartialApplicationError,
    VoucherValidationError,
)
from evoucher_kernel.logging_config import LogContext, get_logger
from evoucher_modules.billing.service import BillingService
from evoucher_modules.vouchers.builder import build_voucher
from evoucher_modules.vouchers.config import VoucherConfig
from evoucher_modules.vouchers.models import VoucherForm
from evoucher_modules.vouchers.validation import validate_for_submit
from evoucher_modules.vouchers.workflows import (
    APPROVE,
    CANCEL,
    DISBURSE,
    LEDGER_VISIBLE_STATUSES,
    POST,
    REJECT,
    SUBMIT,
    VOUCHER_WORKFLOW,
)
from evoucher_services.stores import VoucherFilter

if TYPE_CHECKING:
    from evoucher_services.stores import VoucherStore

logger = get_logger("modules.vouchers.service")

CREATE = "create"
FINALIZE_STATEMENT = "finalize_statement"

# Fields a draft edit may not touch; they belong to the store or workflow.
_WORKFLOW_FIELDS = frozenset({
    "id", "voucher_number", "transaction_type", "status", "requestor_name",
    "history", "version", "created_at", "source_module",
})


def _log_fields(voucher: Voucher) -> dict[str, Any]:
    return {
        "voucher_id": voucher.id,
        "voucher_number": voucher.voucher_number,
        "transaction_type": voucher.transaction_type.value,
        "status": voucher.status.value,
        "total_amount": voucher.total_amount,
    }


def _diff(before: Voucher, after: Voucher, skip: frozenset[str] = frozenset()) -> dict[str, Any]:
    patch = {}
    for f in fields(Voucher):
        if f.name in skip or f.name == "version":
            continue
        value = getattr(after, f.name)
        if value != getattr(before, f.name):
            patch[f.name] = value
    return patch


class VoucherLifecycleService:
    """
    Orchestrates the voucher lifecycle.

    Contract
    --------
    * Every mutating method takes the acting ``Actor`` explicitly; nothing
      is read from ambient state.
    * Every mutating method returns the voucher as stored after the write.

    Non-goals
    ---------
    * Does not serialize concurrent calls for the same voucher id; callers
      hold at most one in-flight mutation per voucher.  A conflicting write
      surfaces as ``ConcurrentModificationError``.
    """

    def __init__(
        self,
        store: VoucherStore,
        clock: Clock | None = None,
        config: VoucherConfig | None = None,
        rng: random.Random | None = None,
        billing: BillingService | None = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._config = config or VoucherConfig.with_defaults()
        self._rng = rng
        self._billing = billing or BillingService(store, self._clock, self._config, rng)

    @property
    def billing(self) -> BillingService:
        return self._billing

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, voucher_id: str) -> Voucher:
        return self._store.get(voucher_id)

    def list(self, voucher_filter: VoucherFilter | None = None) -> list[Voucher]:
        return self._store.list(voucher_filter)

    # =========================================================================
    # Internal helpers
    # =========================================================================

    @contextmanager
    def _operation(self, name: str, actor: Actor, **extra: Any) -> Iterator[None]:
        with LogContext.bind(actor_name=actor.display_name, **extra):
            logger.info(f"{name}_started")
            try:
                yield
            except EVoucherError as exc:
                logger.warning(
                    f"{name}_failed",
                    extra={"error_code": exc.code, "error": str(exc)},
                )
                raise

    @staticmethod
    def _require(actor: Actor, capability: Capability) -> None:
        if not actor.has(capability):
            raise CapabilityRequiredError(actor.display_name, capability.value)

    def _with_default_type(self, form: VoucherForm, actor: Actor) -> VoucherForm:
        if form.transaction_type:
            return form
        default = self._config.default_transaction_type(actor.context)
        if default is None:
            return form
        return replace(form, transaction_type=default)

    def _history(self, status: VoucherStatus, action: str, actor: Actor, remarks: str | None = None) -> HistoryEntry:
        return HistoryEntry(
            status=status,
            action=action,
            actor_name=actor.display_name,
            at=self._clock.now(),
            remarks=remarks,
        )

    def _advance(
        self,
        voucher: Voucher,
        action: str,
        actor: Actor,
        remarks: str | None = None,
        **changes: Any,
    ) -> Voucher:
        """Apply one workflow transition in memory (no store call)."""
        transition = VOUCHER_WORKFLOW.transition_for(voucher.status.value, action)
        if transition is None:
            raise InvalidTransitionError(voucher.id, voucher.status.value, action)
        status = VoucherStatus(transition.to_state)
        entry = self._history(status, action, actor, remarks)
        return voucher.with_changes(
            status=status,
            history=voucher.history + (entry,),
            **changes,
        )

    def _persist(self, before: Voucher, after: Voucher) -> Voucher:
        return self._store.update(before.id, _diff(before, after), expected_version=before.version)

    def _create_unique(
        self,
        form: VoucherForm,
        actor: Actor,
        prepare: Callable[[Voucher], Voucher],
    ) -> Voucher:
        """
        Build, prepare and insert a voucher, regenerating the number on a
        collision.  ``prepare`` validates and advances the draft; it runs
        before the store is touched.
        """
        form = self._with_default_type(form, actor)
        attempts = 1 + self._config.number_collision_retries
        last_error: DuplicateVoucherNumberError | None = None
        for attempt in range(1, attempts + 1):
            number = generate_voucher_number(
                self._clock.today(), self._rng, self._config.voucher_number_prefix,
            )
            draft = build_voucher(
                form,
                voucher_number=number,
                requestor_name=actor.display_name,
                today=self._clock.today(),
                source_module=actor.context,
                default_currency=self._config.currency,
            )
            draft = draft.with_changes(
                created_at=self._clock.now(),
                history=(self._history(VoucherStatus.DRAFT, CREATE, actor),),
            )
            voucher = prepare(draft)
            try:
                return self._store.create(voucher)
            except DuplicateVoucherNumberError as exc:
                last_error = exc
                logger.warning(
                    "voucher_number_collision",
                    extra={"voucher_number": number, "attempt": attempt},
                )
        logger.error(
            "voucher_number_retries_exhausted",
            extra={"attempts": attempts},
        )
        assert last_error is not None
        raise last_error

    def _check_links(self, voucher: Voucher) -> Voucher:
        if voucher.transaction_type == TransactionType.COLLECTION and voucher.linked_billings:
            self._billing.validate_collection_links(voucher)
        return voucher

    def _approve_changes(self, actor: Actor) -> dict[str, Any]:
        return {"approver_name": actor.display_name, "approved_at": self._clock.now()}

    # =========================================================================
    # Create / submit
    # =========================================================================

    def create_draft(self, form: VoucherForm, actor: Actor) -> Voucher:
        """Save a possibly incomplete voucher as a draft."""
        with self._operation("create_draft", actor):
            voucher = self._create_unique(form, actor, self._check_links)
            logger.info("create_draft_completed", extra=_log_fields(voucher))
            return voucher

    def update_draft(self, voucher_id: str, form: VoucherForm, actor: Actor) -> Voucher:
        """Replace a draft's form content.  The transaction type is fixed."""
        with self._operation("update_draft", actor, voucher_id=voucher_id):
            current = self._store.get(voucher_id)
            if current.status != VoucherStatus.DRAFT:
                raise InvalidTransitionError(voucher_id, current.status.value, "edit")
            if form.transaction_type and TransactionType(form.transaction_type) != current.transaction_type:
                raise ImmutableFieldError(voucher_id, "transaction_type")

            rebuilt = build_voucher(
                replace(form, transaction_type=current.transaction_type),
                voucher_number=current.voucher_number,
                requestor_name=current.requestor_name,
                today=self._clock.today(),
                voucher_id=current.id,
                source_module=current.source_module,
                default_currency=self._config.currency,
            )
            self._check_links(rebuilt)
            patch = _diff(current, rebuilt, skip=_WORKFLOW_FIELDS)
            updated = self._store.update(voucher_id, patch, expected_version=current.version)
            logger.info(
                "update_draft_completed",
                extra={**_log_fields(updated), "changed_fields": sorted(patch)},
            )
            return updated

    def submit_for_approval(self, source: VoucherForm | str, actor: Actor) -> Voucher:
        """
        Submit a new voucher (from a form) or an existing draft (by id).

        A new voucher is inserted directly in ``submitted`` status, so the
        submission is a single store write.
        """
        with self._operation("submit_for_approval", actor):
            if isinstance(source, VoucherForm):
                def prepare(draft: Voucher) -> Voucher:
                    validate_for_submit(draft)
                    self._check_links(draft)
                    return self._advance(draft, SUBMIT, actor)

                voucher = self._create_unique(source, actor, prepare)
            else:
                current = self._store.get(source)
                after = self._advance(current, SUBMIT, actor)
                validate_for_submit(after)
                self._check_links(after)
                voucher = self._persist(current, after)

            logger.info("submit_for_approval_completed", extra=_log_fields(voucher))
            return voucher

    def auto_approve(self, source: VoucherForm | str, actor: Actor) -> Voucher:
        """
        Submit and approve in one user action; post too when configured and
        the actor may post.

        Requires the ``auto_approve`` capability.  Creating and approving is
        one write; posting is a second step.  If the post fails the voucher
        stays approved and ``PartialApplicationError`` is raised.
        """
        self._require(actor, Capability.AUTO_APPROVE)

        with self._operation("auto_approve", actor):
            def approve_path(draft: Voucher) -> Voucher:
                validate_for_submit(draft)
                self._check_links(draft)
                submitted = draft
                if draft.status == VoucherStatus.DRAFT:
                    submitted = self._advance(draft, SUBMIT, actor)
                return self._advance(
                    submitted, APPROVE, actor,
                    remarks="Auto-approved",
                    **self._approve_changes(actor),
                )

            if isinstance(source, VoucherForm):
                approved = self._create_unique(source, actor, approve_path)
            else:
                current = self._store.get(source)
                approved = self._persist(current, approve_path(current))

            logger.info("auto_approve_approved", extra=_log_fields(approved))

            if not (self._config.auto_approve_posts and actor.has(Capability.POST)):
                return approved

            try:
                posted = self.post(approved.id, actor)
            except EVoucherError as exc:
                logger.error(
                    "auto_approve_partially_applied",
                    extra={**_log_fields(approved), "error_code": exc.code},
                )
                raise PartialApplicationError(
                    "auto_approve",
                    completed_steps=(SUBMIT, APPROVE),
                    failed_step=POST,
                    record_id=approved.id,
                    cause=exc,
                ) from exc

            logger.info("auto_approve_completed", extra=_log_fields(posted))
            return posted

    # =========================================================================
    # Approval
    # =========================================================================

    def approve(self, voucher_id: str, actor: Actor) -> Voucher:
        self._require(actor, Capability.APPROVE)
        with self._operation("approve", actor, voucher_id=voucher_id):
            current = self._store.get(voucher_id)
            after = self._advance(current, APPROVE, actor, **self._approve_changes(actor))
            voucher = self._persist(current, after)
            logger.info("approve_completed", extra=_log_fields(voucher))
            return voucher

    def reject(self, voucher_id: str, actor: Actor, reason: str) -> Voucher:
        self._require(actor, Capability.APPROVE)
        with self._operation("reject", actor, voucher_id=voucher_id):
            if not reason or not reason.strip():
                raise VoucherValidationError(
                    [{"field": "rejection_reason", "message": "A reason is required"}],
                    stage="reject",
                )
            current = self._store.get(voucher_id)
            after = self._advance(
                current, REJECT, actor,
                remarks=reason.strip(),
                rejection_reason=reason.strip(),
            )
            voucher = self._persist(current, after)
            logger.info("reject_completed", extra=_log_fields(voucher))
            return voucher

    # =========================================================================
    # Posting
    # =========================================================================

    def post(self, voucher_id: str, actor: Actor) -> Voucher:
        """
        Approved -> posted.

        A billing gets its invoice number and, when missing, a due date from
        its credit terms.  A collection records a payment on every linked
        billing; the collection and all billings are written atomically.
        """
        self._require(actor, Capability.POST)
        with self._operation("post", actor, voucher_id=voucher_id):
            with self._store.atomic():
                current = self._store.get(voucher_id)
                changes: dict[str, Any] = {
                    "posted_by_name": actor.display_name,
                    "posted_at": self._clock.now(),
                }
                if current.transaction_type == TransactionType.BILLING:
                    changes.update(self._billing_posting_fields(current))

                after = self._advance(current, POST, actor, **changes)
                validate_for_submit(after)

                payments = ()
                if current.transaction_type == TransactionType.COLLECTION:
                    payments = self._billing.apply_collection(current, actor)
                voucher = self._persist(current, after)

            logger.info(
                "post_completed",
                extra={
                    **_log_fields(voucher),
                    "invoice_number": voucher.invoice_number,
                    "payments_applied": len(payments),
                },
            )
            return voucher

    def _billing_posting_fields(self, voucher: Voucher) -> dict[str, Any]:
        today = self._clock.today()
        changes: dict[str, Any] = {}
        if not voucher.invoice_number:
            existing = [
                v.invoice_number
                for v in self._store.list(VoucherFilter(transaction_type=TransactionType.BILLING))
            ]
            changes["invoice_number"] = next_invoice_number(
                today.year, existing, self._config.invoice_prefix,
            )
        if voucher.due_date is None:
            changes["due_date"] = calculate_due_date(
                voucher.request_date or today,
                voucher.credit_terms,
                self._config.default_credit_days,
            )
        return changes

    def disburse(self, voucher_id: str, actor: Actor) -> Voucher:
        """Posted -> disbursed, for types that pay money out."""
        self._require(actor, Capability.POST)
        with self._operation("disburse", actor, voucher_id=voucher_id):
            current = self._store.get(voucher_id)
            if current.transaction_type not in DISBURSABLE_TYPES:
                raise InvalidTransitionError(voucher_id, current.status.value, DISBURSE)
            voucher = self._persist(current, self._advance(current, DISBURSE, actor))
            logger.info("disburse_completed", extra=_log_fields(voucher))
            return voucher

    def cancel(self, voucher_id: str, actor: Actor, reason: str | None = None) -> Voucher:
        """Draft, submitted or approved -> cancelled.  A billing that has
        received a payment is never cancelled."""
        with self._operation("cancel", actor, voucher_id=voucher_id):
            current = self._store.get(voucher_id)
            if _has_payments(current):
                raise InvalidTransitionError(voucher_id, _payment_label(current), CANCEL)
            voucher = self._persist(current, self._advance(current, CANCEL, actor, remarks=reason))
            logger.info("cancel_completed", extra=_log_fields(voucher))
            return voucher

    # =========================================================================
    # Statements
    # =========================================================================

    def finalize_statement(self, ref: str, actor: Actor) -> list[Voucher]:
        """
        Post every billing on a statement in one action.

        Members already posted are left as they are; every other member
        must be approved.  Either all pending members are posted or, on
        any failure, none is.  Returns the statement's billings as stored.
        """
        self._require(actor, Capability.POST)
        with self._operation("finalize_statement", actor, statement_ref=ref):
            with self._store.atomic():
                members = self._billing.statement_billings(ref)
                if not members:
                    raise VoucherValidationError(
                        [{"field": "statement_reference", "message": f"No billings carry {ref}"}],
                        stage="statement",
                    )
                pending = [m for m in members if m.status != VoucherStatus.POSTED]
                for member in pending:
                    if member.status != VoucherStatus.APPROVED:
                        raise InvalidTransitionError(
                            member.id, member.status.value, FINALIZE_STATEMENT,
                        )
                for member in pending:
                    self.post(member.id, actor)
                finalized = [self._store.get(m.id) for m in members]

            logger.info(
                "finalize_statement_completed",
                extra={"billing_count": len(members), "posted_count": len(pending)},
            )
            return finalized

    # =========================================================================
    # Deletion
    # =========================================================================

    @staticmethod
    def requires_force_delete(voucher: Voucher) -> bool:
        """Posted, disbursed and paid vouchers may be referenced downstream."""
        if voucher.status in LEDGER_VISIBLE_STATUSES:
            return True
        return _has_payments(voucher)

    def delete_voucher(self, voucher_id: str, actor: Actor, force: bool = False) -> None:
        """
        Delete a voucher.

        Without ``force`` a posted, disbursed or (partly) paid voucher is refused and
        the store is left untouched.  With ``force`` the deletion goes ahead
        (the caller has shown the warning) and is logged as a warning,
        since downstream ledger entries can be left dangling.
        """
        with self._operation("delete_voucher", actor, voucher_id=voucher_id):
            current = self._store.get(voucher_id)
            if self.requires_force_delete(current):
                status = _payment_label(current) if _has_payments(current) else current.status.value
                if not force:
                    raise ForceDeleteRequiredError(voucher_id, status)
                self._require(actor, Capability.FORCE_DELETE)
                logger.warning("voucher_force_deleted", extra=_log_fields(current))

            self._store.delete(voucher_id)
            logger.info("delete_voucher_completed", extra=_log_fields(current))


def _has_payments(voucher: Voucher) -> bool:
    return (
        voucher.transaction_type == TransactionType.BILLING
        and voucher.amount_paid is not None
        and voucher.amount_paid > 0
    )


def _payment_label(voucher: Voucher) -> str:
    if voucher.amount_paid is not None and voucher.amount_paid >= voucher.total_amount:
        return "paid"
    return "partially_paid"
