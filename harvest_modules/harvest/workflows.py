"""
Harvest Lot Workflows.

Lifecycle of a harvest lot.  Classification is the only human-driven
transition; the move to SOLD_OUT is derived by the harvest-lot ledger
whenever an allocation empties the lot.
"""

from harvest_kernel.domain.status import HarvestLotStatus
from harvest_kernel.domain.workflow import Guard, Transition, Workflow
from harvest_kernel.logging_config import get_logger

logger = get_logger("modules.harvest.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

NET_WITHIN_GROSS = Guard(
    name="net_within_gross",
    description="Net weight is positive and does not exceed gross weight",
)

STOCK_EXHAUSTED = Guard(
    name="stock_exhausted",
    description="Remaining net weight has reached zero",
)

logger.info(
    "harvest_lot_workflow_guards_defined",
    extra={"guards": [NET_WITHIN_GROSS.name, STOCK_EXHAUSTED.name]},
)


# -----------------------------------------------------------------------------
# Lot Workflow
# -----------------------------------------------------------------------------

HARVEST_LOT_WORKFLOW = Workflow(
    name="harvest_lot",
    description="Harvest lot from weighing to sold out",
    initial_state=HarvestLotStatus.PENDING_CLASSIFICATION.value,
    states=(
        HarvestLotStatus.PENDING_CLASSIFICATION.value,
        HarvestLotStatus.IN_STOCK.value,
        HarvestLotStatus.SOLD_OUT.value,
    ),
    transitions=(
        Transition(
            HarvestLotStatus.PENDING_CLASSIFICATION.value,
            HarvestLotStatus.IN_STOCK.value,
            action="classify",
            guard=NET_WITHIN_GROSS,
        ),
        Transition(
            HarvestLotStatus.IN_STOCK.value,
            HarvestLotStatus.SOLD_OUT.value,
            action="allocate_last",
            guard=STOCK_EXHAUSTED,
        ),
    ),
    terminal_states=(HarvestLotStatus.SOLD_OUT.value,),
)

logger.info(
    "harvest_lot_workflow_registered",
    extra={
        "workflow_name": HARVEST_LOT_WORKFLOW.name,
        "state_count": len(HARVEST_LOT_WORKFLOW.states),
        "transition_count": len(HARVEST_LOT_WORKFLOW.transitions),
        "initial_state": HARVEST_LOT_WORKFLOW.initial_state,
    },
)
