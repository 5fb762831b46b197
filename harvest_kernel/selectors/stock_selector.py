"""
Module: harvest_kernel.selectors.stock_selector
Responsibility: Reconcile the stored ledger balances against the allocation
    records they are derived from.
Architecture position: Kernel > Selectors.  Read-only.

Invariants verified:
    - Lot: net_weight_kg - remaining_net_weight_kg == sum(quantity_taken_kg)
      over the lot's allocation records, and 0 <= remaining <= net.
    - Line: quantity_shipped == sum(quantity_taken_kg) over the line's
      allocation records, and quantity_shipped <= quantity_kg.

Sums are computed in Python over Decimal column values, not with SQL SUM,
so the comparison is exact on every backend.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from harvest_kernel.domain.quantities import quantize
from harvest_kernel.exceptions import NotFoundError
from harvest_kernel.models.harvest_lot import HarvestLot
from harvest_kernel.models.sales_order import SalesOrderDetail
from harvest_kernel.models.shipment import ShipmentLotDetail
from harvest_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class LotReconciliation:
    """Stored lot balance versus the allocations drawn from it."""

    lot_id: UUID
    lot_code: str
    net_weight_kg: Decimal | None
    remaining_net_weight_kg: Decimal | None
    allocated_kg: Decimal
    allocation_count: int

    @property
    def is_consistent(self) -> bool:
        if self.net_weight_kg is None:
            return self.allocation_count == 0 and self.remaining_net_weight_kg is None
        remaining = self.remaining_net_weight_kg or Decimal("0")
        return (
            Decimal("0") <= remaining <= self.net_weight_kg
            and quantize(self.net_weight_kg - remaining) == quantize(self.allocated_kg)
        )


@dataclass(frozen=True)
class LineReconciliation:
    """Stored shipped quantity versus the allocations recorded for the line."""

    line_id: UUID
    quantity_kg: Decimal
    quantity_shipped: Decimal
    allocated_kg: Decimal
    allocation_count: int

    @property
    def is_consistent(self) -> bool:
        return (
            quantize(self.quantity_shipped) == quantize(self.allocated_kg)
            and self.quantity_shipped <= self.quantity_kg
        )


class StockSelector(BaseSelector[ShipmentLotDetail]):
    """Ledger-versus-allocation reconciliation reports."""

    def _allocations(self, column, entity_id: UUID) -> list[Decimal]:
        return list(
            self.session.execute(
                select(ShipmentLotDetail.quantity_taken_kg).where(column == entity_id)
            ).scalars()
        )

    def reconcile_lot(self, lot_id: UUID) -> LotReconciliation:
        lot = self.session.get(HarvestLot, lot_id)
        if lot is None:
            raise NotFoundError("HarvestLot", str(lot_id))
        taken = self._allocations(ShipmentLotDetail.harvest_lot_id, lot_id)
        return LotReconciliation(
            lot_id=lot.id,
            lot_code=lot.lot_code,
            net_weight_kg=lot.net_weight_kg,
            remaining_net_weight_kg=lot.remaining_net_weight_kg,
            allocated_kg=sum(taken, Decimal("0")),
            allocation_count=len(taken),
        )

    def reconcile_line(self, line_id: UUID) -> LineReconciliation:
        line = self.session.get(SalesOrderDetail, line_id)
        if line is None:
            raise NotFoundError("SalesOrderDetail", str(line_id))
        taken = self._allocations(ShipmentLotDetail.sales_order_detail_id, line_id)
        return LineReconciliation(
            line_id=line.id,
            quantity_kg=line.quantity_kg,
            quantity_shipped=line.quantity_shipped,
            allocated_kg=sum(taken, Decimal("0")),
            allocation_count=len(taken),
        )

    def inconsistent_lots(self) -> list[LotReconciliation]:
        """Every classified lot whose stored balance disagrees with its allocations."""
        lot_ids = self.session.execute(
            select(HarvestLot.id).where(HarvestLot.net_weight_kg.is_not(None))
        ).scalars().all()
        reports = [self.reconcile_lot(lot_id) for lot_id in lot_ids]
        return [r for r in reports if not r.is_consistent]
