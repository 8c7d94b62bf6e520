"""
Voucher Lifecycle Workflow.

    draft --submit--> submitted --approve--> approved --post--> posted --disburse--> disbursed
                          |
                          +--reject--> rejected

    draft / submitted / approved --cancel--> cancelled

Posted and disbursed are the success terminals, rejected and cancelled
the failure terminals.  Posted still allows ``disburse`` for the types
that pay out, so only disbursed, rejected and cancelled are terminal in
the state-machine sense.
"""

from evoucher_kernel.domain.vouchers import VoucherStatus
from evoucher_kernel.domain.workflow import Guard, Transition, Workflow
from evoucher_kernel.logging_config import get_logger

logger = get_logger("modules.vouchers.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

SUBMIT_FIELDS_PRESENT = Guard(
    name="submit_fields_present",
    description="Required-field matrix passes for the transaction type",
)

REASON_PROVIDED = Guard(
    name="reason_provided",
    description="A rejection reason is given",
)

DISBURSABLE_TYPE = Guard(
    name="disbursable_type",
    description="Expense, budget request or cash advance",
)

logger.debug(
    "voucher_workflow_guards_defined",
    extra={
        "guards": [
            SUBMIT_FIELDS_PRESENT.name,
            REASON_PROVIDED.name,
            DISBURSABLE_TYPE.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Actions
# -----------------------------------------------------------------------------

SUBMIT = "submit"
APPROVE = "approve"
REJECT = "reject"
POST = "post"
DISBURSE = "disburse"
CANCEL = "cancel"

_D = VoucherStatus.DRAFT.value
_S = VoucherStatus.SUBMITTED.value
_A = VoucherStatus.APPROVED.value
_P = VoucherStatus.POSTED.value
_X = VoucherStatus.DISBURSED.value
_R = VoucherStatus.REJECTED.value
_C = VoucherStatus.CANCELLED.value


VOUCHER_WORKFLOW = Workflow(
    name="evoucher",
    description="Universal voucher approval and posting lifecycle",
    initial_state=_D,
    states=(_D, _S, _A, _P, _X, _R, _C),
    transitions=(
        Transition(_D, _S, action=SUBMIT, guard=SUBMIT_FIELDS_PRESENT),
        Transition(_S, _A, action=APPROVE),
        Transition(_S, _R, action=REJECT, guard=REASON_PROVIDED),
        Transition(_A, _P, action=POST, posts_entry=True),
        Transition(_P, _X, action=DISBURSE, guard=DISBURSABLE_TYPE),
        Transition(_D, _C, action=CANCEL),
        Transition(_S, _C, action=CANCEL),
        Transition(_A, _C, action=CANCEL),
    ),
    terminal_states=(_X, _R, _C),
)

# Statuses after which downstream ledger entries may reference the voucher.
LEDGER_VISIBLE_STATUSES = frozenset({VoucherStatus.POSTED, VoucherStatus.DISBURSED})

logger.debug(
    "voucher_workflow_defined",
    extra={
        "workflow": VOUCHER_WORKFLOW.name,
        "states": list(VOUCHER_WORKFLOW.states),
        "transition_count": len(VOUCHER_WORKFLOW.transitions),
    },
)
