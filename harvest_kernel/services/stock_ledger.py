"""
StockLedger -- consumable-input on-hand quantities.

Responsibility:
    The only writer of ConsumableInput.on_hand_quantity and unit_cost.
    Three operations: ``debit`` (activity approved), ``credit`` (approval
    reversed) and ``receive`` (goods receipt, with weighted-average cost).

Architecture position:
    Kernel > Services.  Flush-only; the calling module service commits.

Invariants enforced:
    - on_hand_quantity never goes negative.
    - debit is all-or-nothing: every input is locked and checked against
      the aggregated requirement before any row is changed.
    - Input rows are locked (SELECT ... FOR UPDATE) in id order, so two
      transactions debiting overlapping inputs cannot deadlock.

Failure modes:
    - NotFoundError if a movement references a missing input.
    - InsufficientStockError on debit when on-hand < requested.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from harvest_kernel.db.immutability import ledger_write_scope
from harvest_kernel.domain.dtos import StockMovement
from harvest_kernel.domain.quantities import DEFAULT_PLACES, quantize, weighted_average_cost
from harvest_kernel.exceptions import InsufficientStockError, NotFoundError
from harvest_kernel.logging_config import get_logger
from harvest_kernel.models.consumable_input import ConsumableInput
from harvest_kernel.services.base import BaseService

logger = get_logger("services.stock_ledger")

COST_PLACES = 4


def aggregate_movements(movements: Iterable[StockMovement]) -> dict[UUID, Decimal]:
    """Sum quantities per input, preserving first-seen order."""
    totals: dict[UUID, Decimal] = {}
    for movement in movements:
        totals[movement.input_id] = totals.get(movement.input_id, Decimal("0")) + movement.quantity
    return totals


class StockLedger(BaseService[ConsumableInput]):
    """
    Debit/credit/receive against consumable-input stock.

    Contract:
        Every method locks the affected rows, mutates them inside
        ``ledger_write_scope`` and flushes before returning.

    Non-goals:
        - Does not decide WHEN to debit or credit; the activity workflow
          does.
    """

    def __init__(self, session, places: int = DEFAULT_PLACES):
        super().__init__(session)
        self._places = places

    def lock_inputs(self, input_ids: Iterable[UUID]) -> dict[UUID, ConsumableInput]:
        """Load and lock inputs in id order; NotFoundError on the first missing one."""
        wanted = sorted(set(input_ids), key=str)
        if not wanted:
            return {}
        rows = self.session.execute(
            select(ConsumableInput)
            .where(ConsumableInput.id.in_(wanted))
            .order_by(ConsumableInput.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        found = {row.id: row for row in rows}
        for input_id in wanted:
            if input_id not in found:
                raise NotFoundError("ConsumableInput", str(input_id))
        return found

    def debit(self, movements: Iterable[StockMovement]) -> dict[UUID, Decimal]:
        """
        Subtract each movement from on-hand stock.

        Returns:
            New on-hand quantity per input.

        Raises:
            InsufficientStockError: first input whose on-hand cannot cover
                the aggregated requirement.  Nothing is applied.
        """
        required = aggregate_movements(movements)
        if not required:
            return {}
        inputs = self.lock_inputs(required)

        for input_id, quantity in required.items():
            row = inputs[input_id]
            if row.on_hand_quantity < quantity:
                raise InsufficientStockError(
                    resource_type="ConsumableInput",
                    resource_id=str(input_id),
                    available=row.on_hand_quantity,
                    requested=quantity,
                )

        balances: dict[UUID, Decimal] = {}
        with ledger_write_scope(self.session):
            for input_id, quantity in required.items():
                row = inputs[input_id]
                row.on_hand_quantity = quantize(row.on_hand_quantity - quantity, self._places)
                balances[input_id] = row.on_hand_quantity
            self.session.flush()

        logger.info(
            "stock_debited",
            extra={"inputs": {str(k): str(v) for k, v in required.items()}},
        )
        return balances

    def credit(self, movements: Iterable[StockMovement]) -> dict[UUID, Decimal]:
        """
        Return each movement to on-hand stock.  No upper bound.

        Returns:
            New on-hand quantity per input.
        """
        returned = aggregate_movements(movements)
        if not returned:
            return {}
        inputs = self.lock_inputs(returned)

        balances: dict[UUID, Decimal] = {}
        with ledger_write_scope(self.session):
            for input_id, quantity in returned.items():
                row = inputs[input_id]
                row.on_hand_quantity = quantize(row.on_hand_quantity + quantity, self._places)
                balances[input_id] = row.on_hand_quantity
            self.session.flush()

        logger.info(
            "stock_credited",
            extra={"inputs": {str(k): str(v) for k, v in returned.items()}},
        )
        return balances

    def receive(self, input_id: UUID, quantity: Decimal, unit_cost: Decimal) -> ConsumableInput:
        """
        Add purchased stock and blend its cost into the input's unit cost.
        """
        row = self.lock_inputs([input_id])[input_id]
        new_cost = weighted_average_cost(row.on_hand_quantity, row.unit_cost, quantity, unit_cost)

        with ledger_write_scope(self.session):
            row.unit_cost = quantize(new_cost, COST_PLACES)
            row.on_hand_quantity = quantize(row.on_hand_quantity + quantity, self._places)
            self.session.flush()

        logger.info(
            "stock_received",
            extra={
                "input_id": str(input_id),
                "quantity": str(quantity),
                "unit_cost": str(row.unit_cost),
                "on_hand_quantity": str(row.on_hand_quantity),
            },
        )
        return row
