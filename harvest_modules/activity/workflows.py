"""
Activity Workflows.

Approval state machine for work activities.  Each transition names the
stock-ledger action the activity service applies in the same transaction
as the status write.
"""

from harvest_kernel.domain.status import ActivityStatus
from harvest_kernel.domain.workflow import Guard, LedgerAction, Transition, Workflow
from harvest_kernel.logging_config import get_logger

logger = get_logger("modules.activity.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

STOCK_AVAILABLE = Guard(
    name="stock_available",
    description="Every input has on-hand stock for the activity's usage lines",
)

logger.info(
    "activity_workflow_guards_defined",
    extra={"guards": [STOCK_AVAILABLE.name]},
)


# -----------------------------------------------------------------------------
# Approval Workflow
# -----------------------------------------------------------------------------

_PENDING = ActivityStatus.PENDING.value
_APPROVED = ActivityStatus.APPROVED.value
_REJECTED = ActivityStatus.REJECTED.value

ACTIVITY_WORKFLOW = Workflow(
    name="activity_approval",
    description="Supervisor approval of recorded field work",
    initial_state=_PENDING,
    states=(_PENDING, _APPROVED, _REJECTED),
    transitions=(
        Transition(
            _PENDING, _APPROVED, action="approve",
            guard=STOCK_AVAILABLE, ledger_action=LedgerAction.DEBIT,
        ),
        Transition(_PENDING, _REJECTED, action="reject"),
        Transition(_APPROVED, _PENDING, action="reopen", ledger_action=LedgerAction.CREDIT),
        Transition(_APPROVED, _REJECTED, action="revoke", ledger_action=LedgerAction.CREDIT),
        Transition(
            _REJECTED, _APPROVED, action="reapprove",
            guard=STOCK_AVAILABLE, ledger_action=LedgerAction.DEBIT,
        ),
        Transition(_REJECTED, _PENDING, action="resubmit"),
    ),
)

logger.info(
    "activity_approval_workflow_registered",
    extra={
        "workflow_name": ACTIVITY_WORKFLOW.name,
        "state_count": len(ACTIVITY_WORKFLOW.states),
        "transition_count": len(ACTIVITY_WORKFLOW.transitions),
        "initial_state": ACTIVITY_WORKFLOW.initial_state,
    },
)
