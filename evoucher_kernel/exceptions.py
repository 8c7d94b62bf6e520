"""
Typed Exception Hierarchy for the E-Voucher engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failure the engine can produce is reported to a person exactly once,
at the point of the user action.  To do that the caller must know WHAT kind
of failure happened without parsing message strings:

  - A validation failure never reached the store: fix the form and resubmit.
  - A concurrent modification means the data moved underneath the caller:
    reload and try again.
  - A persistence failure means the store is unavailable or rejected the
    write: the underlying cause is preserved for logging.
  - A partial application means some writes succeeded: retry only the
    failed sub-step.

Every class has a ``code`` class attribute (machine-readable) and stores its
context as attributes (structured data for logs and API responses).

Example:
    try:
        service.record_payment(billing_id, Decimal("700"), actor)
    except OverpaymentError as e:
        notify(f"Payment {e.amount} exceeds amount due {e.amount_due}")
    except ConcurrentModificationError as e:
        reload(e.entity_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    EVoucherError (base)
    |
    +-- ValidationError
    |   +-- VoucherValidationError
    |   +-- OverpaymentError
    |   +-- InvalidPaymentAmountError
    |   +-- InconsistentBillableFlagError
    |   +-- StatementNotCollectibleError
    |
    +-- LifecycleError
    |   +-- InvalidTransitionError
    |   +-- ForceDeleteRequiredError
    |   +-- CapabilityRequiredError
    |   +-- ImmutableFieldError
    |
    +-- ConcurrentModificationError
    |
    +-- PersistenceError
    |   +-- DuplicateVoucherNumberError
    |   +-- PartialApplicationError
    |
    +-- NotFoundError
        +-- VoucherNotFoundError
        +-- AccountNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|--------------------------------------
Validation   | VOUCHER_VALIDATION_FAILED   | Required fields missing / invalid
             | OVERPAYMENT                 | Payment exceeds amount due
             | INVALID_PAYMENT_AMOUNT      | Payment amount is zero or negative
             | INCONSISTENT_BILLABLE_FLAG  | Billable flag on a non-expense voucher
             | STATEMENT_NOT_COLLECTIBLE   | Statement balance at or below threshold
-------------|-----------------------------|--------------------------------------
Lifecycle    | INVALID_TRANSITION          | Action not legal from current status
             | FORCE_DELETE_REQUIRED       | Deleting a posted/paid voucher
             | CAPABILITY_REQUIRED         | Actor lacks a capability (auto-approve)
             | IMMUTABLE_FIELD             | Patch touches an immutable field
-------------|-----------------------------|--------------------------------------
Concurrency  | CONCURRENT_MODIFICATION     | Stale read at write time
-------------|-----------------------------|--------------------------------------
Persistence  | PERSISTENCE_ERROR           | Store unavailable / rejected write
             | DUPLICATE_VOUCHER_NUMBER    | Voucher number already taken
             | PARTIAL_APPLICATION         | Multi-write action partly applied
-------------|-----------------------------|--------------------------------------
Not found    | VOUCHER_NOT_FOUND           | Voucher id does not exist
             | ACCOUNT_NOT_FOUND           | Account id does not exist

===============================================================================
"""

from __future__ import annotations

from decimal import Decimal


class EVoucherError(Exception):
    """
    Base exception for all e-voucher engine errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "EVOUCHER_ERROR"


# Validation exceptions


class ValidationError(EVoucherError):
    """Bad input.  Raised before any store call."""

    code: str = "VALIDATION_ERROR"


class VoucherValidationError(ValidationError):
    """One or more voucher fields failed validation."""

    code: str = "VOUCHER_VALIDATION_FAILED"

    def __init__(self, field_errors: list[dict[str, str]], stage: str = "submit"):
        self.field_errors = field_errors
        self.stage = stage
        detail = "; ".join(f"{e['field']}: {e['message']}" for e in field_errors)
        super().__init__(f"Voucher validation failed ({stage}): {detail}")

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(e["field"] for e in self.field_errors)


class OverpaymentError(ValidationError):
    """Payment amount exceeds the billing's amount due."""

    code: str = "OVERPAYMENT"

    def __init__(self, billing_id: str, amount: Decimal, amount_due: Decimal):
        self.billing_id = billing_id
        self.amount = amount
        self.amount_due = amount_due
        super().__init__(
            f"Payment amount cannot exceed amount due: "
            f"billing {billing_id} amount={amount} due={amount_due}"
        )


class InvalidPaymentAmountError(ValidationError):
    """Payment amount is zero or negative."""

    code: str = "INVALID_PAYMENT_AMOUNT"

    def __init__(self, billing_id: str, amount: Decimal):
        self.billing_id = billing_id
        self.amount = amount
        super().__init__(
            f"Please enter a valid payment amount: billing {billing_id} amount={amount}"
        )


class InconsistentBillableFlagError(ValidationError):
    """Billable subtype set on a transaction type that cannot be billed."""

    code: str = "INCONSISTENT_BILLABLE_FLAG"

    def __init__(self, transaction_type: str):
        self.transaction_type = transaction_type
        super().__init__(
            f"Transaction type '{transaction_type}' cannot be a billable expense"
        )


class StatementNotCollectibleError(ValidationError):
    """Statement remaining balance is at or below the collectible threshold."""

    code: str = "STATEMENT_NOT_COLLECTIBLE"

    def __init__(self, statement_ref: str, remaining_balance: Decimal):
        self.statement_ref = statement_ref
        self.remaining_balance = remaining_balance
        super().__init__(
            f"Statement {statement_ref} is not collectible "
            f"(remaining balance {remaining_balance})"
        )


# Lifecycle exceptions


class LifecycleError(EVoucherError):
    """Base exception for lifecycle state machine errors."""

    code: str = "LIFECYCLE_ERROR"


class InvalidTransitionError(LifecycleError):
    """Action is not legal from the voucher's current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, voucher_id: str, from_status: str, action: str):
        self.voucher_id = voucher_id
        self.from_status = from_status
        self.action = action
        super().__init__(
            f"Cannot {action} voucher {voucher_id} in status '{from_status}'"
        )


class ForceDeleteRequiredError(LifecycleError):
    """
    Deleting a posted or paid voucher requires an explicit force flag.

    Downstream ledger entries may already reference the voucher; the caller
    must have shown the force-delete warning before retrying with force.
    """

    code: str = "FORCE_DELETE_REQUIRED"

    def __init__(self, voucher_id: str, status: str):
        self.voucher_id = voucher_id
        self.status = status
        super().__init__(
            f"Voucher {voucher_id} is {status}; deleting it can desynchronize "
            "downstream ledger entries and requires force=True"
        )


class CapabilityRequiredError(LifecycleError):
    """Actor does not hold the capability the operation requires."""

    code: str = "CAPABILITY_REQUIRED"

    def __init__(self, actor_name: str, capability: str):
        self.actor_name = actor_name
        self.capability = capability
        super().__init__(
            f"Actor '{actor_name}' lacks required capability '{capability}'"
        )


class ImmutableFieldError(LifecycleError):
    """An update attempted to change a field fixed at creation."""

    code: str = "IMMUTABLE_FIELD"

    def __init__(self, voucher_id: str, field_name: str):
        self.voucher_id = voucher_id
        self.field_name = field_name
        super().__init__(
            f"Field '{field_name}' of voucher {voucher_id} is immutable"
        )


# Concurrency exceptions


class ConcurrentModificationError(EVoucherError):
    """
    Write-time precondition no longer holds (stale read).

    Raised instead of silently overpaying or writing a stale value.
    """

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: {reason}"
        )


# Persistence exceptions


class PersistenceError(EVoucherError):
    """Store unavailable or rejected the write.  Cause is preserved."""

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, message: str, cause: BaseException | None = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {message}")


class DuplicateVoucherNumberError(PersistenceError):
    """Voucher number already exists in the store.  Retryable."""

    code: str = "DUPLICATE_VOUCHER_NUMBER"

    def __init__(self, voucher_number: str, cause: BaseException | None = None):
        self.voucher_number = voucher_number
        super().__init__(
            "create",
            f"voucher number {voucher_number} already exists",
            cause,
        )


class PartialApplicationError(PersistenceError):
    """
    A multi-write user action was only partly applied.

    ``completed_steps`` lists what succeeded, ``failed_step`` what did not,
    and ``record_id`` identifies the record that now exists so the caller
    can retry just the failed sub-step.
    """

    code: str = "PARTIAL_APPLICATION"

    def __init__(
        self,
        operation: str,
        completed_steps: tuple[str, ...],
        failed_step: str,
        record_id: str | None = None,
        cause: BaseException | None = None,
    ):
        self.completed_steps = completed_steps
        self.failed_step = failed_step
        self.record_id = record_id
        super().__init__(
            operation,
            f"partially applied (completed: {', '.join(completed_steps) or 'none'}; "
            f"failed: {failed_step})",
            cause,
        )


# Not-found exceptions


class NotFoundError(EVoucherError):
    """Operating on an id that no longer exists."""

    code: str = "NOT_FOUND"


class VoucherNotFoundError(NotFoundError):
    """Voucher with given id was not found."""

    code: str = "VOUCHER_NOT_FOUND"

    def __init__(self, voucher_id: str):
        self.voucher_id = voucher_id
        super().__init__(f"Voucher not found: {voucher_id}")


class AccountNotFoundError(NotFoundError):
    """Account with given id was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")
