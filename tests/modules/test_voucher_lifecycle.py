"""
Tests for the voucher lifecycle service.

Covers each workflow action and its capability checks, voucher-number
collision retries, auto-approval (including a post that fails after the
approval was written), and force-delete rules.
"""

from datetime import date
from decimal import Decimal

import pytest

from evoucher_kernel.domain.vouchers import (
    BillingStatus,
    TransactionType,
    VoucherStatus,
)
from evoucher_kernel.exceptions import (
    CapabilityRequiredError,
    DuplicateVoucherNumberError,
    ForceDeleteRequiredError,
    ImmutableFieldError,
    InvalidTransitionError,
    PartialApplicationError,
    PersistenceError,
    VoucherNotFoundError,
    VoucherValidationError,
)
from evoucher_modules.vouchers.config import VoucherConfig
from evoucher_modules.vouchers.models import VoucherForm
from evoucher_modules.vouchers.service import VoucherLifecycleService
from evoucher_services.stores import InMemoryVoucherStore, VoucherFilter


class _CollidingStore(InMemoryVoucherStore):
    """Rejects the first ``collisions`` inserts as duplicate numbers."""

    def __init__(self, collisions: int):
        super().__init__()
        self.collisions = collisions
        self.attempted: list[str] = []

    def create(self, voucher):
        self.attempted.append(voucher.voucher_number)
        if self.collisions > 0:
            self.collisions -= 1
            raise DuplicateVoucherNumberError(voucher.voucher_number)
        return super().create(voucher)


class _UpdateFailingStore(InMemoryVoucherStore):
    """Accepts inserts; every update fails as if the backend went away."""

    def update(self, voucher_id, patch, expected_version=None):
        raise PersistenceError("update", "connection lost")


def _actions(voucher):
    return [entry.action for entry in voucher.history]


# =============================================================================
# Create and edit
# =============================================================================


class TestCreateDraft:

    def test_draft_attributed_to_actor(self, lifecycle, expense_form, operations_actor, clock):
        voucher = lifecycle.create_draft(expense_form(), operations_actor)

        assert voucher.status == VoucherStatus.DRAFT
        assert voucher.requestor_name == "Ben Cruz"
        assert voucher.source_module == "operations"
        assert voucher.created_at == clock.now()
        assert voucher.version == 1
        assert _actions(voucher) == ["create"]
        assert voucher.voucher_number.startswith("EVRN20250115-")

    def test_incomplete_form_saved_as_draft(self, lifecycle, operations_actor):
        voucher = lifecycle.create_draft(VoucherForm(purpose="Half done"), operations_actor)
        assert voucher.transaction_type == TransactionType.EXPENSE
        assert voucher.total_amount == Decimal("0.00")

    def test_type_defaults_from_actor_context(self, lifecycle, bd_actor):
        voucher = lifecycle.create_draft(VoucherForm(purpose="Trade show"), bd_actor)
        assert voucher.transaction_type == TransactionType.BUDGET_REQUEST

    def test_unknown_context_without_type_rejected(self, lifecycle, config):
        stranger = config.actor_for("Dee", "warehouse")
        with pytest.raises(VoucherValidationError) as exc_info:
            lifecycle.create_draft(VoucherForm(), stranger)
        assert exc_info.value.fields == ("transaction_type",)

    def test_started_and_completed_logged(self, lifecycle, expense_form, operations_actor, captured_logs):
        lifecycle.create_draft(expense_form(), operations_actor)

        messages = [r["message"] for r in captured_logs()]
        assert "create_draft_started" in messages
        assert "create_draft_completed" in messages


class TestVoucherNumberCollision:

    def test_collision_regenerates_number(self, clock, config, rng, expense_form, operations_actor, captured_logs):
        store = _CollidingStore(collisions=1)
        service = VoucherLifecycleService(store, clock, config, rng)

        voucher = service.create_draft(expense_form(), operations_actor)

        assert len(store.attempted) == 2
        assert voucher.voucher_number == store.attempted[1]
        assert any(r["message"] == "voucher_number_collision" for r in captured_logs())

    def test_retries_exhausted(self, clock, rng, expense_form, operations_actor, captured_logs):
        store = _CollidingStore(collisions=3)
        service = VoucherLifecycleService(store, clock, VoucherConfig(number_collision_retries=2), rng)

        with pytest.raises(DuplicateVoucherNumberError):
            service.create_draft(expense_form(), operations_actor)

        assert len(store.attempted) == 3
        assert store.list() == []
        assert any(r["message"] == "voucher_number_retries_exhausted" for r in captured_logs())


class TestUpdateDraft:

    def test_edit_replaces_form_content(self, lifecycle, expense_form, operations_actor):
        draft = lifecycle.create_draft(expense_form(), operations_actor)

        updated = lifecycle.update_draft(
            draft.id, expense_form(counterparty="Subic Port Services"), operations_actor,
        )

        assert updated.counterparty == "Subic Port Services"
        assert updated.voucher_number == draft.voucher_number
        assert updated.version == 2
        assert _actions(updated) == ["create"]

    def test_type_change_rejected(self, lifecycle, expense_form, operations_actor):
        draft = lifecycle.create_draft(expense_form(), operations_actor)

        with pytest.raises(ImmutableFieldError) as exc_info:
            lifecycle.update_draft(draft.id, expense_form(transaction_type="cash_advance"), operations_actor)

        assert exc_info.value.field_name == "transaction_type"

    def test_submitted_voucher_not_editable(self, lifecycle, expense_form, operations_actor):
        submitted = lifecycle.submit_for_approval(expense_form(), operations_actor)
        with pytest.raises(InvalidTransitionError):
            lifecycle.update_draft(submitted.id, expense_form(), operations_actor)


# =============================================================================
# Submit, approve, reject
# =============================================================================


class TestSubmit:

    def test_new_form_inserted_as_submitted(self, lifecycle, expense_form, operations_actor):
        voucher = lifecycle.submit_for_approval(expense_form(), operations_actor)

        assert voucher.status == VoucherStatus.SUBMITTED
        assert voucher.version == 1
        assert _actions(voucher) == ["create", "submit"]

    def test_existing_draft_submitted(self, lifecycle, expense_form, operations_actor):
        draft = lifecycle.create_draft(expense_form(), operations_actor)

        voucher = lifecycle.submit_for_approval(draft.id, operations_actor)

        assert voucher.status == VoucherStatus.SUBMITTED
        assert voucher.version == 2

    def test_invalid_form_never_reaches_store(self, lifecycle, store, expense_form, operations_actor):
        with pytest.raises(VoucherValidationError) as exc_info:
            lifecycle.submit_for_approval(expense_form(counterparty=""), operations_actor)

        assert exc_info.value.fields == ("counterparty",)
        assert store.list() == []

    def test_incomplete_draft_stays_draft(self, lifecycle, store, operations_actor):
        draft = lifecycle.create_draft(VoucherForm(purpose="Half done"), operations_actor)

        with pytest.raises(VoucherValidationError):
            lifecycle.submit_for_approval(draft.id, operations_actor)

        assert store.get(draft.id).status == VoucherStatus.DRAFT

    def test_submit_twice_rejected(self, lifecycle, expense_form, operations_actor):
        submitted = lifecycle.submit_for_approval(expense_form(), operations_actor)
        with pytest.raises(InvalidTransitionError) as exc_info:
            lifecycle.submit_for_approval(submitted.id, operations_actor)
        assert exc_info.value.from_status == "submitted"

    def test_unknown_id(self, lifecycle, operations_actor):
        with pytest.raises(VoucherNotFoundError):
            lifecycle.submit_for_approval("missing", operations_actor)


class TestApproveAndReject:

    @pytest.fixture
    def submitted(self, lifecycle, expense_form, operations_actor):
        return lifecycle.submit_for_approval(expense_form(), operations_actor)

    def test_approve(self, lifecycle, submitted, accounting_actor, clock):
        voucher = lifecycle.approve(submitted.id, accounting_actor)

        assert voucher.status == VoucherStatus.APPROVED
        assert voucher.approver_name == "Ana Reyes"
        assert voucher.approved_at == clock.now()

    def test_approve_requires_capability(self, lifecycle, submitted, operations_actor):
        with pytest.raises(CapabilityRequiredError) as exc_info:
            lifecycle.approve(submitted.id, operations_actor)
        assert exc_info.value.capability == "approve"

    def test_reject_records_reason(self, lifecycle, submitted, accounting_actor):
        voucher = lifecycle.reject(submitted.id, accounting_actor, "  Missing receipts ")

        assert voucher.status == VoucherStatus.REJECTED
        assert voucher.rejection_reason == "Missing receipts"
        assert voucher.history[-1].remarks == "Missing receipts"

    def test_reject_requires_reason(self, lifecycle, submitted, accounting_actor, store):
        with pytest.raises(VoucherValidationError) as exc_info:
            lifecycle.reject(submitted.id, accounting_actor, " ")

        assert exc_info.value.stage == "reject"
        assert store.get(submitted.id).status == VoucherStatus.SUBMITTED

    def test_approved_voucher_cannot_be_rejected(self, lifecycle, submitted, accounting_actor):
        lifecycle.approve(submitted.id, accounting_actor)
        with pytest.raises(InvalidTransitionError):
            lifecycle.reject(submitted.id, accounting_actor, "Too late")

    def test_failure_logged_with_error_code(self, lifecycle, submitted, accounting_actor, captured_logs):
        lifecycle.approve(submitted.id, accounting_actor)
        with pytest.raises(InvalidTransitionError):
            lifecycle.approve(submitted.id, accounting_actor)

        failed = next(r for r in captured_logs() if r["message"] == "approve_failed")
        assert failed["error_code"] == "INVALID_TRANSITION"
        assert failed["voucher_id"] == submitted.id


# =============================================================================
# Post, disburse, cancel
# =============================================================================


class TestPostAndDisburse:

    def _approved(self, lifecycle, form, operations_actor, accounting_actor):
        submitted = lifecycle.submit_for_approval(form, operations_actor)
        return lifecycle.approve(submitted.id, accounting_actor)

    def test_post_expense(self, lifecycle, expense_form, operations_actor, accounting_actor, clock):
        approved = self._approved(lifecycle, expense_form(), operations_actor, accounting_actor)

        posted = lifecycle.post(approved.id, accounting_actor)

        assert posted.status == VoucherStatus.POSTED
        assert posted.posted_by_name == "Ana Reyes"
        assert posted.posted_at == clock.now()
        assert posted.invoice_number is None

    def test_post_draft_rejected(self, lifecycle, expense_form, operations_actor, accounting_actor):
        draft = lifecycle.create_draft(expense_form(), operations_actor)
        with pytest.raises(InvalidTransitionError):
            lifecycle.post(draft.id, accounting_actor)

    def test_post_requires_capability(self, lifecycle, expense_form, operations_actor, accounting_actor):
        approved = self._approved(lifecycle, expense_form(), operations_actor, accounting_actor)
        with pytest.raises(CapabilityRequiredError):
            lifecycle.post(approved.id, operations_actor)

    def test_billing_gets_invoice_number_and_due_date(
        self, lifecycle, billing_form, operations_actor, accounting_actor,
    ):
        first = self._approved(lifecycle, billing_form(), operations_actor, accounting_actor)
        second = self._approved(lifecycle, billing_form(), operations_actor, accounting_actor)

        first = lifecycle.post(first.id, accounting_actor)
        second = lifecycle.post(second.id, accounting_actor)

        assert first.invoice_number == "INV-2025-001"
        assert second.invoice_number == "INV-2025-002"
        assert first.due_date == date(2025, 1, 30)
        assert first.billing_status == BillingStatus.UNBILLED

    def test_explicit_due_date_kept(self, lifecycle, billing_form, operations_actor, accounting_actor):
        approved = self._approved(
            lifecycle, billing_form(due_date="2025-03-01"), operations_actor, accounting_actor,
        )
        assert lifecycle.post(approved.id, accounting_actor).due_date == date(2025, 3, 1)

    def test_disburse_expense(self, lifecycle, expense_form, operations_actor, accounting_actor):
        approved = self._approved(lifecycle, expense_form(), operations_actor, accounting_actor)
        lifecycle.post(approved.id, accounting_actor)

        voucher = lifecycle.disburse(approved.id, accounting_actor)

        assert voucher.status == VoucherStatus.DISBURSED
        assert _actions(voucher) == ["create", "submit", "approve", "post", "disburse"]

    def test_billing_cannot_be_disbursed(self, lifecycle, billing_form, operations_actor, accounting_actor):
        approved = self._approved(lifecycle, billing_form(), operations_actor, accounting_actor)
        lifecycle.post(approved.id, accounting_actor)
        with pytest.raises(InvalidTransitionError):
            lifecycle.disburse(approved.id, accounting_actor)


class TestCancel:

    @pytest.mark.parametrize("stage", ["draft", "submitted", "approved"])
    def test_cancel_before_posting(self, lifecycle, expense_form, operations_actor, accounting_actor, stage):
        voucher = lifecycle.create_draft(expense_form(), operations_actor)
        if stage in ("submitted", "approved"):
            voucher = lifecycle.submit_for_approval(voucher.id, operations_actor)
        if stage == "approved":
            voucher = lifecycle.approve(voucher.id, accounting_actor)

        cancelled = lifecycle.cancel(voucher.id, operations_actor, reason="Duplicate request")

        assert cancelled.status == VoucherStatus.CANCELLED
        assert cancelled.history[-1].remarks == "Duplicate request"

    def test_posted_cannot_be_cancelled(self, lifecycle, expense_form, accounting_actor):
        posted = lifecycle.auto_approve(expense_form(), accounting_actor)
        with pytest.raises(InvalidTransitionError):
            lifecycle.cancel(posted.id, accounting_actor)

    @pytest.mark.parametrize("amount_paid, label", [("250", "partially_paid"), ("1000", "paid")])
    def test_billing_with_payment_cannot_be_cancelled(
        self, lifecycle, store, make_voucher, accounting_actor, amount_paid, label,
    ):
        billing = store.create(make_voucher(status=VoucherStatus.APPROVED, amount_paid=amount_paid))

        with pytest.raises(InvalidTransitionError) as exc_info:
            lifecycle.cancel(billing.id, accounting_actor)

        assert exc_info.value.from_status == label
        assert store.get(billing.id).status == VoucherStatus.APPROVED


# =============================================================================
# Auto-approval
# =============================================================================


class TestAutoApprove:

    def test_creates_approves_and_posts(self, lifecycle, expense_form, accounting_actor):
        voucher = lifecycle.auto_approve(expense_form(), accounting_actor)

        assert voucher.status == VoucherStatus.POSTED
        assert voucher.approver_name == "Ana Reyes"
        assert _actions(voucher) == ["create", "submit", "approve", "post"]
        assert voucher.history[2].remarks == "Auto-approved"

    def test_existing_draft(self, lifecycle, expense_form, accounting_actor):
        draft = lifecycle.create_draft(expense_form(), accounting_actor)
        assert lifecycle.auto_approve(draft.id, accounting_actor).status == VoucherStatus.POSTED

    def test_requires_capability(self, lifecycle, store, expense_form, operations_actor):
        with pytest.raises(CapabilityRequiredError) as exc_info:
            lifecycle.auto_approve(expense_form(), operations_actor)

        assert exc_info.value.capability == "auto_approve"
        assert store.list() == []

    def test_stops_at_approved_when_posting_disabled(
        self, store, clock, rng, expense_form, accounting_actor,
    ):
        service = VoucherLifecycleService(store, clock, VoucherConfig(auto_approve_posts=False), rng)
        assert service.auto_approve(expense_form(), accounting_actor).status == VoucherStatus.APPROVED

    def test_stops_at_approved_without_post_capability(self, lifecycle, expense_form):
        actor = VoucherConfig(
            context_capabilities={"manager": ("auto_approve", "approve")},
        ).actor_for("Eve Santos", "manager")
        voucher = lifecycle.auto_approve(expense_form(transaction_type="expense"), actor)
        assert voucher.status == VoucherStatus.APPROVED

    def test_failed_post_is_partial_application(
        self, clock, config, rng, expense_form, accounting_actor, captured_logs,
    ):
        store = _UpdateFailingStore()
        service = VoucherLifecycleService(store, clock, config, rng)

        with pytest.raises(PartialApplicationError) as exc_info:
            service.auto_approve(expense_form(), accounting_actor)

        error = exc_info.value
        assert error.completed_steps == ("submit", "approve")
        assert error.failed_step == "post"
        assert isinstance(error.cause, PersistenceError)
        assert store.get(error.record_id).status == VoucherStatus.APPROVED
        assert any(r["message"] == "auto_approve_partially_applied" for r in captured_logs())

    def test_retry_of_failed_post(self, store, clock, config, rng, expense_form, accounting_actor):
        failing = _UpdateFailingStore()
        with pytest.raises(PartialApplicationError) as exc_info:
            VoucherLifecycleService(failing, clock, config, rng).auto_approve(expense_form(), accounting_actor)

        approved = failing.get(exc_info.value.record_id)
        store.create(approved)
        posted = VoucherLifecycleService(store, clock, config, rng).post(approved.id, accounting_actor)

        assert posted.status == VoucherStatus.POSTED


# =============================================================================
# Deletion
# =============================================================================


class TestDeleteVoucher:

    def test_draft_deleted(self, lifecycle, store, expense_form, operations_actor):
        draft = lifecycle.create_draft(expense_form(), operations_actor)
        lifecycle.delete_voucher(draft.id, operations_actor)
        assert store.list() == []

    def test_posted_requires_force(self, lifecycle, store, expense_form, accounting_actor):
        posted = lifecycle.auto_approve(expense_form(), accounting_actor)

        with pytest.raises(ForceDeleteRequiredError) as exc_info:
            lifecycle.delete_voucher(posted.id, accounting_actor)

        assert exc_info.value.status == "posted"
        assert store.get(posted.id).status == VoucherStatus.POSTED

    def test_force_delete_logged_as_warning(self, lifecycle, store, expense_form, accounting_actor, captured_logs):
        posted = lifecycle.auto_approve(expense_form(), accounting_actor)

        lifecycle.delete_voucher(posted.id, accounting_actor, force=True)

        assert store.list() == []
        warning = next(r for r in captured_logs() if r["message"] == "voucher_force_deleted")
        assert warning["level"] == "WARNING"
        assert warning["voucher_number"] == posted.voucher_number

    def test_force_requires_capability(self, lifecycle, expense_form, accounting_actor, operations_actor):
        posted = lifecycle.auto_approve(expense_form(), accounting_actor)
        with pytest.raises(CapabilityRequiredError):
            lifecycle.delete_voucher(posted.id, operations_actor, force=True)

    def test_paid_billing_requires_force(self, lifecycle, store, make_voucher, accounting_actor):
        paid = store.create(make_voucher(status=VoucherStatus.APPROVED, amount_paid="1000"))

        with pytest.raises(ForceDeleteRequiredError) as exc_info:
            lifecycle.delete_voucher(paid.id, accounting_actor)

        assert exc_info.value.status == "paid"

    def test_partly_paid_billing_requires_force(self, lifecycle, store, make_voucher, accounting_actor):
        billing = store.create(make_voucher(status=VoucherStatus.APPROVED, amount_paid="0.01"))

        with pytest.raises(ForceDeleteRequiredError) as exc_info:
            lifecycle.delete_voucher(billing.id, accounting_actor)

        assert exc_info.value.status == "partially_paid"
        assert store.get(billing.id).amount_paid == Decimal("0.01")

    @pytest.mark.parametrize(
        "status, amount_paid, expected",
        [
            (VoucherStatus.DRAFT, None, False),
            (VoucherStatus.APPROVED, "0", False),
            (VoucherStatus.APPROVED, "999.99", True),
            (VoucherStatus.APPROVED, "1000", True),
            (VoucherStatus.POSTED, None, True),
            (VoucherStatus.DISBURSED, None, True),
            (VoucherStatus.CANCELLED, None, False),
        ],
    )
    def test_requires_force_delete(self, make_voucher, status, amount_paid, expected):
        voucher = make_voucher(status=status, amount_paid=amount_paid)
        assert VoucherLifecycleService.requires_force_delete(voucher) is expected

    def test_unknown_id(self, lifecycle, accounting_actor):
        with pytest.raises(VoucherNotFoundError):
            lifecycle.delete_voucher("missing", accounting_actor)


class TestReads:

    def test_list_with_filter(self, lifecycle, expense_form, billing_form, operations_actor):
        lifecycle.create_draft(expense_form(), operations_actor)
        billing = lifecycle.create_draft(billing_form(), operations_actor)

        billings = lifecycle.list(VoucherFilter(transaction_type=TransactionType.BILLING))

        assert [v.id for v in billings] == [billing.id]
        assert len(lifecycle.list()) == 2
