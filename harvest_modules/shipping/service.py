"""
Shipment Module Service (``harvest_modules.shipping.service``).

Responsibility
--------------
The shipment allocation engine.  Given a sales order and a list of
(lot, demand line, quantity) requests, it validates compatibility and
availability, writes one immutable ``ShipmentLotDetail`` per request,
draws the lots down through ``HarvestLotLedger``, records the shipped
quantity through ``DemandLedger``, and re-derives the order status.

Architecture
------------
Layer: **Modules** -- stateful orchestration wrapper.

1. Shape checks (non-empty, quantities positive after rounding to the
   weight precision) before storage is touched.
2. Locks: order header, then every involved lot, then every involved
   demand line, each set in id order.
3. Per request, in caller order: lot checks, match checks, demand check,
   allocation record, lot draw, line fulfilment.
4. Order status re-aggregation, commit, reload.

Invariants
----------
- All-or-nothing: any failure rolls back the header, every allocation and
  every ledger movement of the request.
- net_weight_kg - remaining_net_weight_kg == sum of the lot's allocations.
- quantity_shipped == sum of the line's allocations <= quantity_kg.
- Requests are never re-ordered or merged.

Failure Modes
-------------
- ``InvalidRequestError``: empty request list, non-positive quantity.
- ``NotFoundError``: order or lot missing.
- ``InvalidStateError``: order not shippable, lot not IN_STOCK.
- ``InvalidReferenceError``: line not part of the order.
- ``IncompleteClassificationError``: lot lacks variety, caliber or net weight.
- ``InsufficientStockError``: lot remaining or line pending too small.
- ``VarietyMismatchError`` / ``CaliberMismatchError``.

Audit Relevance
---------------
Allocation records are append-only facts.  Together they reproduce every
lot balance and every shipped quantity; see ``StockSelector``.

Usage::

    service = ShipmentService(session, clock)
    shipment = service.create_shipment(
        sales_order_id=order.id,
        lot_details=[LotAllocationRequest(lot.id, line.id, Decimal("400"))],
        actor_id=actor_id,
    )
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from harvest_config.schema import HarvestConfiguration
from harvest_kernel.domain.clock import Clock, SystemClock
from harvest_kernel.domain.dtos import LotAllocationRequest
from harvest_kernel.domain.quantities import quantize
from harvest_kernel.domain.status import HarvestLotStatus, status_value
from harvest_kernel.exceptions import (
    CaliberMismatchError,
    IncompleteClassificationError,
    InsufficientStockError,
    InvalidReferenceError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    VarietyMismatchError,
)
from harvest_kernel.logging_config import LogContext, get_logger
from harvest_kernel.models.harvest_lot import HarvestLot
from harvest_kernel.models.sales_order import SalesOrder, SalesOrderDetail
from harvest_kernel.models.shipment import Shipment, ShipmentLotDetail
from harvest_kernel.services.demand_ledger import DemandLedger
from harvest_kernel.services.lot_ledger import HarvestLotLedger

logger = get_logger("modules.shipping.service")

AllocationInput = LotAllocationRequest | Mapping[str, Any]


def _coerce_request(raw: AllocationInput) -> LotAllocationRequest:
    if isinstance(raw, LotAllocationRequest):
        return raw
    try:
        return LotAllocationRequest(**raw)
    except TypeError as exc:
        raise InvalidRequestError(f"malformed allocation request: {exc}") from exc


class ShipmentService:
    """
    Allocates harvest-lot stock to sales-order demand.

    Contract
    --------
    ``create_shipment`` either returns a committed shipment whose lot
    details, lots, demand lines and order are loaded, or raises with
    nothing written.

    Guarantees
    ----------
    - Concurrent shipments touching the same lot or line serialize on the
      row locks; the loser re-reads the winner's balances.
    - Quantities are rounded to the configured weight precision before
      they are compared or recorded.

    Non-goals
    ---------
    - Choosing lots.  The caller names the lot for every request.
    - Reversing shipments.  Allocation records are permanent.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: HarvestConfiguration | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or HarvestConfiguration()
        self._places = self._config.quantities.weight_places
        self._lots = HarvestLotLedger(session, places=self._places)
        self._demand = DemandLedger(session, places=self._places)
        self._shippable = tuple(
            status_value(s) for s in self._config.shipping.shippable_order_statuses
        )

    def create_shipment(
        self,
        sales_order_id: UUID,
        lot_details: Sequence[AllocationInput],
        actor_id: UUID,
        tracking_number: str | None = None,
        notes: str | None = None,
    ) -> Shipment:
        """
        Ship ``lot_details`` against ``sales_order_id`` in one transaction.

        Preconditions:
            - At least one request; every quantity_taken_kg > 0.
            - The order is in a shippable status (APPROVED or
              PARTIALLY_SHIPPED by default).

        Postconditions:
            - One ShipmentLotDetail per request, in request order.
            - Each lot's remaining weight is reduced; SOLD_OUT at zero.
            - Each line's quantity shipped and status are updated, and the
              order status is re-derived from all of its lines.
        """
        requests = [_coerce_request(raw) for raw in lot_details]
        if not requests:
            raise InvalidRequestError("a shipment needs at least one lot detail")
        requests = [self._round_request(request) for request in requests]

        with LogContext.bind(
            actor_id=str(actor_id),
            operation="create_shipment",
            entity_id=str(sales_order_id),
        ):
            try:
                order = self._lock_shippable_order(sales_order_id)
                self._require_order_lines(order, requests)

                lots = self._lots.lock_lots(r.harvest_lot_id for r in requests)
                lines = self._demand.lock_lines(r.sales_order_detail_id for r in requests)

                shipment = Shipment(
                    sales_order_id=order.id,
                    shipment_date=self._clock.now(),
                    tracking_number=tracking_number,
                    notes=notes,
                    created_by_id=actor_id,
                )
                self._session.add(shipment)
                self._session.flush()

                for sequence, request in enumerate(requests):
                    self._allocate(
                        shipment,
                        sequence,
                        request,
                        lots.get(request.harvest_lot_id),
                        lines[request.sales_order_detail_id],
                        actor_id,
                    )

                self._demand.refresh_order_status(order)
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "shipment_created",
                extra={
                    "shipment_id": str(shipment.id),
                    "sales_order_id": str(sales_order_id),
                    "allocation_count": len(requests),
                    "order_status": status_value(order.status),
                },
            )
        return self._reload(shipment.id)

    # =========================================================================
    # Internals
    # =========================================================================

    def _round_request(self, request: LotAllocationRequest) -> LotAllocationRequest:
        raw = request.quantity_taken_kg
        quantity = None if raw is None else quantize(raw, self._places)
        if quantity is None or quantity <= 0:
            raise InvalidRequestError(
                f"quantity taken from lot {request.harvest_lot_id} must be positive"
            )
        return replace(request, quantity_taken_kg=quantity)

    def _lock_shippable_order(self, sales_order_id: UUID) -> SalesOrder:
        order = self._demand.lock_order(sales_order_id)
        if order is None:
            raise NotFoundError("SalesOrder", str(sales_order_id))
        if status_value(order.status) not in self._shippable:
            raise InvalidStateError(
                entity_type="SalesOrder",
                entity_id=str(sales_order_id),
                current_status=status_value(order.status),
                operation="ship",
            )
        return order

    @staticmethod
    def _require_order_lines(order: SalesOrder, requests: list[LotAllocationRequest]) -> None:
        line_ids = {line.id for line in order.lines}
        for request in requests:
            if request.sales_order_detail_id not in line_ids:
                raise InvalidReferenceError(
                    entity_type="SalesOrderDetail",
                    entity_id=str(request.sales_order_detail_id),
                    parent_type="SalesOrder",
                    parent_id=str(order.id),
                )

    def _allocate(
        self,
        shipment: Shipment,
        sequence: int,
        request: LotAllocationRequest,
        lot: HarvestLot | None,
        line: SalesOrderDetail,
        actor_id: UUID,
    ) -> ShipmentLotDetail:
        if lot is None:
            raise NotFoundError("HarvestLot", str(request.harvest_lot_id))
        if status_value(lot.status) != HarvestLotStatus.IN_STOCK.value:
            raise InvalidStateError(
                entity_type="HarvestLot",
                entity_id=str(lot.id),
                current_status=status_value(lot.status),
                operation="allocate from",
            )
        missing = lot.missing_classification
        if missing or lot.remaining_net_weight_kg is None:
            raise IncompleteClassificationError(
                lot_id=str(lot.id),
                missing_fields=missing or ["remaining_net_weight_kg"],
            )

        quantity = request.quantity_taken_kg
        if quantity > lot.remaining_net_weight_kg:
            raise InsufficientStockError(
                resource_type="HarvestLot",
                resource_id=str(lot.id),
                available=lot.remaining_net_weight_kg,
                requested=quantity,
            )
        if lot.variety_name.lower() != line.variety.lower():
            raise VarietyMismatchError(
                lot_id=str(lot.id),
                lot_variety=lot.variety_name,
                line_variety=line.variety,
            )
        if lot.caliber != line.caliber:
            raise CaliberMismatchError(
                lot_id=str(lot.id),
                lot_caliber=lot.caliber,
                line_caliber=line.caliber,
            )
        pending = line.quantity_kg - line.quantity_shipped
        if quantity > pending:
            raise InsufficientStockError(
                resource_type="SalesOrderDetail",
                resource_id=str(line.id),
                available=pending,
                requested=quantity,
            )

        detail = ShipmentLotDetail(
            shipment_id=shipment.id,
            harvest_lot_id=lot.id,
            sales_order_detail_id=line.id,
            sequence=sequence,
            quantity_taken_kg=quantity,
            created_by_id=actor_id,
        )
        self._session.add(detail)
        self._lots.draw(lot, quantity)
        self._demand.fulfil(line, quantity)

        logger.debug(
            "lot_allocated",
            extra={
                "shipment_id": str(shipment.id),
                "lot_id": str(lot.id),
                "line_id": str(line.id),
                "quantity_kg": str(quantity),
            },
        )
        return detail

    def _reload(self, shipment_id: UUID) -> Shipment:
        return self._session.execute(
            select(Shipment)
            .where(Shipment.id == shipment_id)
            .options(
                selectinload(Shipment.lot_details).selectinload(ShipmentLotDetail.harvest_lot),
                selectinload(Shipment.lot_details).selectinload(
                    ShipmentLotDetail.sales_order_detail
                ),
                selectinload(Shipment.sales_order).selectinload(SalesOrder.lines),
            )
            .execution_options(populate_existing=True)
        ).scalar_one()
