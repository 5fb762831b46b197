"""
Traceability selector.

Reconstructs the chain lot -> allocation -> demand line -> order -> customer
for a single allocation record, and the forward view of everywhere a lot
went.  Joins data the ledgers already keep consistent; never mutates it.

DTOs are defined inline following the selector convention.  Plots and
customers live outside this kernel, so the report carries their ids only.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from harvest_kernel.exceptions import NotFoundError
from harvest_kernel.models.harvest_lot import HarvestLot
from harvest_kernel.models.sales_order import SalesOrder, SalesOrderDetail
from harvest_kernel.models.shipment import Shipment, ShipmentLotDetail
from harvest_kernel.selectors.base import BaseSelector


# ============================================================================
# DTOs
# ============================================================================


@dataclass(frozen=True)
class LotSnapshot:
    """Agricultural side: the lot the goods came from. Source: harvest_lots."""

    lot_id: UUID
    lot_code: str
    plot_id: UUID
    harvest_date: date
    variety_name: str | None
    caliber: str | None
    gross_weight_kg: Decimal
    net_weight_kg: Decimal | None
    remaining_net_weight_kg: Decimal | None
    yield_percentage: Decimal | None
    status: str


@dataclass(frozen=True)
class AllocationSnapshot:
    """The allocation record itself. Source: shipment_lot_details."""

    allocation_id: UUID
    shipment_id: UUID
    harvest_lot_id: UUID
    sales_order_detail_id: UUID
    quantity_taken_kg: Decimal
    created_at: datetime


@dataclass(frozen=True)
class DemandLineSnapshot:
    """Source: sales_order_details."""

    line_id: UUID
    caliber: str
    variety: str
    quantity_kg: Decimal
    quantity_shipped: Decimal
    unit_price: Decimal
    status: str


@dataclass(frozen=True)
class ShipmentSnapshot:
    """Source: shipments."""

    shipment_id: UUID
    shipment_date: datetime
    tracking_number: str | None
    notes: str | None


@dataclass(frozen=True)
class OrderSnapshot:
    """Commercial side: the order and its customer. Source: sales_orders."""

    sales_order_id: UUID
    customer_id: UUID
    status: str
    total_amount: Decimal


@dataclass(frozen=True)
class TraceReport:
    """Complete backward trace for one allocation record."""

    allocation: AllocationSnapshot
    lot: LotSnapshot
    demand_line: DemandLineSnapshot
    shipment: ShipmentSnapshot
    order: OrderSnapshot


@dataclass(frozen=True)
class LotDestination:
    """One place a lot's weight went (forward trace)."""

    allocation_id: UUID
    shipment_id: UUID
    shipment_date: datetime
    sales_order_id: UUID
    customer_id: UUID
    quantity_taken_kg: Decimal


# ============================================================================
# Selector
# ============================================================================


def _status(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


class TraceSelector(BaseSelector[ShipmentLotDetail]):
    """
    Read-only traceability queries.

    Contract:
        trace_allocation() raises NotFoundError when the allocation or any
        record it points at is missing; it never returns a partial report.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def _get(self, model, entity_id: UUID):
        row = self.session.get(model, entity_id)
        if row is None:
            raise NotFoundError(model.__name__, str(entity_id))
        return row

    def trace_allocation(self, allocation_id: UUID) -> TraceReport:
        detail = self._get(ShipmentLotDetail, allocation_id)
        lot = self._get(HarvestLot, detail.harvest_lot_id)
        line = self._get(SalesOrderDetail, detail.sales_order_detail_id)
        shipment = self._get(Shipment, detail.shipment_id)
        order = self._get(SalesOrder, shipment.sales_order_id)

        return TraceReport(
            allocation=AllocationSnapshot(
                allocation_id=detail.id,
                shipment_id=detail.shipment_id,
                harvest_lot_id=detail.harvest_lot_id,
                sales_order_detail_id=detail.sales_order_detail_id,
                quantity_taken_kg=detail.quantity_taken_kg,
                created_at=detail.created_at,
            ),
            lot=LotSnapshot(
                lot_id=lot.id,
                lot_code=lot.lot_code,
                plot_id=lot.plot_id,
                harvest_date=lot.harvest_date,
                variety_name=lot.variety_name,
                caliber=lot.caliber,
                gross_weight_kg=lot.gross_weight_kg,
                net_weight_kg=lot.net_weight_kg,
                remaining_net_weight_kg=lot.remaining_net_weight_kg,
                yield_percentage=lot.yield_percentage,
                status=_status(lot.status),
            ),
            demand_line=DemandLineSnapshot(
                line_id=line.id,
                caliber=line.caliber,
                variety=line.variety,
                quantity_kg=line.quantity_kg,
                quantity_shipped=line.quantity_shipped,
                unit_price=line.unit_price,
                status=_status(line.status),
            ),
            shipment=ShipmentSnapshot(
                shipment_id=shipment.id,
                shipment_date=shipment.shipment_date,
                tracking_number=shipment.tracking_number,
                notes=shipment.notes,
            ),
            order=OrderSnapshot(
                sales_order_id=order.id,
                customer_id=order.customer_id,
                status=_status(order.status),
                total_amount=order.total_amount,
            ),
        )

    def lot_destinations(self, lot_id: UUID) -> list[LotDestination]:
        """Every allocation drawn from a lot, oldest shipment first."""
        self._get(HarvestLot, lot_id)
        rows = self.session.execute(
            select(ShipmentLotDetail, Shipment, SalesOrder)
            .join(Shipment, ShipmentLotDetail.shipment_id == Shipment.id)
            .join(SalesOrder, Shipment.sales_order_id == SalesOrder.id)
            .where(ShipmentLotDetail.harvest_lot_id == lot_id)
            .order_by(Shipment.shipment_date, ShipmentLotDetail.sequence)
        ).all()
        return [
            LotDestination(
                allocation_id=detail.id,
                shipment_id=shipment.id,
                shipment_date=shipment.shipment_date,
                sales_order_id=order.id,
                customer_id=order.customer_id,
                quantity_taken_kg=detail.quantity_taken_kg,
            )
            for detail, shipment, order in rows
        ]
