"""
HarvestLotLedger -- remaining net weight per harvest lot.

Responsibility:
    The only writer of HarvestLot.remaining_net_weight_kg and
    HarvestLot.status.  ``open_balance`` starts the ledger at
    classification; ``draw`` takes weight out for an allocation.

Architecture position:
    Kernel > Services.  Flush-only; the calling module service commits.

Invariants enforced:
    - 0 <= remaining_net_weight_kg <= net_weight_kg.
    - Every draw is rounded to the configured precision, so the remaining
      weight is always exactly net minus the sum of allocations.
    - Lot status is re-derived after every mutation (SOLD_OUT exactly when
      nothing remains).

Failure modes:
    - NotFoundError on a missing lot.
    - InsufficientStockError if a draw exceeds the remaining weight.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from harvest_kernel.db.immutability import ledger_write_scope
from harvest_kernel.domain.quantities import DEFAULT_PLACES, quantize
from harvest_kernel.domain.status import HarvestLotStatus, derive_lot_status
from harvest_kernel.exceptions import InsufficientStockError, NotFoundError
from harvest_kernel.logging_config import get_logger
from harvest_kernel.models.harvest_lot import HarvestLot
from harvest_kernel.services.base import BaseService

logger = get_logger("services.lot_ledger")


class HarvestLotLedger(BaseService[HarvestLot]):
    """
    Open and draw down harvest-lot balances.

    Contract:
        ``draw`` expects the lot to have been locked by ``lock_lots`` in the
        current transaction.
    """

    def __init__(self, session, places: int = DEFAULT_PLACES):
        super().__init__(session)
        self._places = places

    def lock_lots(self, lot_ids: Iterable[UUID]) -> dict[UUID, HarvestLot]:
        """Load and lock lots in id order.  Missing ids are simply absent."""
        wanted = sorted(set(lot_ids), key=str)
        if not wanted:
            return {}
        rows = self.session.execute(
            select(HarvestLot)
            .where(HarvestLot.id.in_(wanted))
            .order_by(HarvestLot.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        return {row.id: row for row in rows}

    def lock_lot(self, lot_id: UUID) -> HarvestLot:
        lot = self.lock_lots([lot_id]).get(lot_id)
        if lot is None:
            raise NotFoundError("HarvestLot", str(lot_id))
        return lot

    def open_balance(self, lot: HarvestLot, net_weight_kg: Decimal) -> HarvestLot:
        """
        Start the lot's ledger: remaining = net, status IN_STOCK.
        """
        with ledger_write_scope(self.session):
            lot.remaining_net_weight_kg = quantize(net_weight_kg, self._places)
            lot.status = HarvestLotStatus.IN_STOCK
            self.session.flush()

        logger.info(
            "lot_balance_opened",
            extra={
                "lot_id": str(lot.id),
                "lot_code": lot.lot_code,
                "remaining_net_weight_kg": str(lot.remaining_net_weight_kg),
            },
        )
        return lot

    def draw(self, lot: HarvestLot, quantity_kg: Decimal) -> Decimal:
        """
        Take ``quantity_kg`` out of the lot.

        Returns:
            The new remaining net weight.
        """
        remaining = lot.remaining_net_weight_kg or Decimal("0")
        if quantity_kg > remaining:
            raise InsufficientStockError(
                resource_type="HarvestLot",
                resource_id=str(lot.id),
                available=remaining,
                requested=quantity_kg,
            )

        new_remaining = quantize(remaining - quantity_kg, self._places)
        if new_remaining < 0:
            new_remaining = quantize(Decimal("0"), self._places)

        with ledger_write_scope(self.session):
            lot.remaining_net_weight_kg = new_remaining
            lot.status = derive_lot_status(lot.status, new_remaining)
            self.session.flush()

        logger.debug(
            "lot_drawn",
            extra={
                "lot_id": str(lot.id),
                "quantity_kg": str(quantity_kg),
                "remaining_net_weight_kg": str(new_remaining),
                "status": lot.status,
            },
        )
        return new_remaining
