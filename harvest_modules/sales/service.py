"""
Sales Order Module Service (``harvest_modules.sales.service``).

Responsibility
--------------
Creates sales orders and revises their demand lines.  Keeps the order
total equal to the sum of line subtotals and re-derives line and order
status after every revision.  Never writes quantity shipped; that column
belongs to the shipment allocation engine.

Invariants
----------
- Each public method owns its transaction boundary (commit / rollback).
- total_amount == sum(quantity_kg * unit_price) over the current lines.
- A line that has allocations is never removed, never re-specified
  (caliber/variety), and never shrunk below its quantity shipped.

Failure Modes
-------------
- ``DerivedFieldError`` when the caller supplies quantity_shipped.
- ``InvalidStateError`` when revising a FULLY_SHIPPED or CANCELLED order or
  when a revision would contradict existing allocations.
- ``InvalidReferenceError`` when a revised line id belongs to another order.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from harvest_config.schema import HarvestConfiguration
from harvest_kernel.domain.dtos import SalesOrderLineRequest
from harvest_kernel.domain.quantities import quantize
from harvest_kernel.domain.status import (
    DemandLineStatus,
    SalesOrderStatus,
    status_value,
)
from harvest_kernel.exceptions import (
    DerivedFieldError,
    InvalidReferenceError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
)
from harvest_kernel.logging_config import LogContext, get_logger
from harvest_kernel.models.sales_order import SalesOrder, SalesOrderDetail
from harvest_kernel.models.shipment import ShipmentLotDetail
from harvest_kernel.services.demand_ledger import DemandLedger

logger = get_logger("modules.sales.service")

_CREATABLE_STATUSES = (SalesOrderStatus.PENDING, SalesOrderStatus.APPROVED)
_FROZEN_ORDER_STATUSES = (SalesOrderStatus.FULLY_SHIPPED, SalesOrderStatus.CANCELLED)

LineInput = SalesOrderLineRequest | Mapping[str, Any]


def _coerce_line(raw: LineInput, places: int) -> SalesOrderLineRequest:
    """Accept a request DTO or a plain mapping; refuse derived fields.  Weights are rounded."""
    if isinstance(raw, SalesOrderLineRequest):
        line = raw
    else:
        if "quantity_shipped" in raw:
            raise DerivedFieldError(
                entity_type="SalesOrderDetail",
                entity_id=str(raw.get("line_id") or "new"),
                field="quantity_shipped",
            )
        try:
            line = SalesOrderLineRequest(**raw)
        except TypeError as exc:
            raise InvalidRequestError(f"malformed order line: {exc}") from exc

    if not line.caliber or not line.variety:
        raise InvalidRequestError("order lines need a caliber and a variety")
    if line.quantity_kg is None or quantize(line.quantity_kg, places) <= 0:
        raise InvalidRequestError("order line quantity must be positive")
    if line.unit_price is None or line.unit_price < 0:
        raise InvalidRequestError("order line unit price cannot be negative")
    return replace(line, quantity_kg=quantize(line.quantity_kg, places))


class SalesOrderService:
    """
    Orchestrates sales orders and their demand lines.

    Non-goals
    ---------
    - Shipping.  See ``harvest_modules.shipping``.
    - Administrative status overrides.
    """

    def __init__(self, session: Session, config: HarvestConfiguration | None = None):
        self._session = session
        self._config = config or HarvestConfiguration()
        self._demand = DemandLedger(session, places=self._config.quantities.weight_places)

    def create_order(
        self,
        customer_id: UUID,
        lines: Sequence[LineInput],
        actor_id: UUID,
        status: SalesOrderStatus | str = SalesOrderStatus.APPROVED,
    ) -> SalesOrder:
        """
        Create an order with at least one demand line.

        Lines start OPEN with nothing shipped; the total is computed here.
        """
        requests = [_coerce_line(raw, self._config.quantities.weight_places) for raw in lines]
        if not requests:
            raise InvalidRequestError("a sales order needs at least one line")
        try:
            status = SalesOrderStatus(status_value(status))
        except ValueError:
            raise InvalidRequestError(f"unknown sales order status {status!r}") from None
        if status not in _CREATABLE_STATUSES:
            raise InvalidRequestError(f"sales orders cannot be created as {status.value}")

        with LogContext.bind(actor_id=str(actor_id), operation="create_order"):
            try:
                order = SalesOrder(
                    customer_id=customer_id,
                    status=status,
                    created_by_id=actor_id,
                )
                order.lines = [
                    self._new_line(request, number, actor_id)
                    for number, request in enumerate(requests, start=1)
                ]
                order.total_amount = sum((line.subtotal for line in order.lines), Decimal("0"))
                self._session.add(order)
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "sales_order_created",
                extra={
                    "sales_order_id": str(order.id),
                    "customer_id": str(customer_id),
                    "line_count": len(order.lines),
                    "total_amount": str(order.total_amount),
                },
            )
        return order

    def revise_order(
        self,
        order_id: UUID,
        lines: Sequence[LineInput],
        actor_id: UUID,
    ) -> SalesOrder:
        """
        Replace the order's line set.

        Lines carrying a ``line_id`` edit that line; lines without one are
        added; existing lines missing from ``lines`` are removed.

        Raises:
            NotFoundError: no such order.
            InvalidStateError: the order is FULLY_SHIPPED or CANCELLED, or a
                change would contradict allocations already recorded.
            InvalidReferenceError: a line id belongs to another order.
        """
        requests = [_coerce_line(raw, self._config.quantities.weight_places) for raw in lines]
        if not requests:
            raise InvalidRequestError("a sales order needs at least one line")

        with LogContext.bind(
            actor_id=str(actor_id), operation="revise_order", entity_id=str(order_id)
        ):
            try:
                order = self._demand.lock_order(order_id)
                if order is None:
                    raise NotFoundError("SalesOrder", str(order_id))
                current = SalesOrderStatus(status_value(order.status))
                if current in _FROZEN_ORDER_STATUSES:
                    raise InvalidStateError(
                        entity_type="SalesOrder",
                        entity_id=str(order_id),
                        current_status=current.value,
                        operation="revise",
                    )

                existing = self._demand.lock_lines(line.id for line in order.lines)
                kept: set[UUID] = set()
                next_number = max((line.line_number for line in order.lines), default=0) + 1

                for request in requests:
                    if request.line_id is None:
                        order.lines.append(self._new_line(request, next_number, actor_id))
                        next_number += 1
                        continue
                    line = existing.get(request.line_id)
                    if line is None or line.sales_order_id != order.id:
                        raise InvalidReferenceError(
                            entity_type="SalesOrderDetail",
                            entity_id=str(request.line_id),
                            parent_type="SalesOrder",
                            parent_id=str(order_id),
                        )
                    self._edit_line(line, request, actor_id)
                    kept.add(line.id)

                for line_id, line in existing.items():
                    if line_id not in kept:
                        self._remove_line(order, line)

                self._session.flush()
                for line in order.lines:
                    self._demand.rederive_line(line)
                order.total_amount = sum((line.subtotal for line in order.lines), Decimal("0"))
                order.updated_by_id = actor_id
                self._demand.refresh_order_status(order)
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "sales_order_revised",
                extra={
                    "sales_order_id": str(order_id),
                    "line_count": len(order.lines),
                    "total_amount": str(order.total_amount),
                    "status": status_value(order.status),
                },
            )
        return order

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _new_line(
        request: SalesOrderLineRequest,
        line_number: int,
        actor_id: UUID,
    ) -> SalesOrderDetail:
        return SalesOrderDetail(
            line_number=line_number,
            caliber=request.caliber,
            variety=request.variety,
            quantity_kg=request.quantity_kg,
            unit_price=request.unit_price,
            quantity_shipped=Decimal("0"),
            status=DemandLineStatus.OPEN,
            created_by_id=actor_id,
        )

    def _edit_line(
        self,
        line: SalesOrderDetail,
        request: SalesOrderLineRequest,
        actor_id: UUID,
    ) -> None:
        if line.quantity_shipped > 0:
            respecified = (
                request.caliber != line.caliber
                or request.variety.lower() != line.variety.lower()
            )
            if respecified:
                raise InvalidStateError(
                    entity_type="SalesOrderDetail",
                    entity_id=str(line.id),
                    current_status=status_value(line.status),
                    operation="change caliber or variety of",
                )
            if request.quantity_kg < line.quantity_shipped:
                raise InvalidStateError(
                    entity_type="SalesOrderDetail",
                    entity_id=str(line.id),
                    current_status=status_value(line.status),
                    operation=f"reduce below shipped quantity {line.quantity_shipped}",
                )

        line.caliber = request.caliber
        line.variety = request.variety
        line.quantity_kg = request.quantity_kg
        line.unit_price = request.unit_price
        line.updated_by_id = actor_id

    def _remove_line(self, order: SalesOrder, line: SalesOrderDetail) -> None:
        allocation_count = self._session.execute(
            select(func.count(ShipmentLotDetail.id)).where(
                ShipmentLotDetail.sales_order_detail_id == line.id
            )
        ).scalar_one()
        if allocation_count or line.quantity_shipped > 0:
            raise InvalidStateError(
                entity_type="SalesOrderDetail",
                entity_id=str(line.id),
                current_status=status_value(line.status),
                operation="remove",
            )
        order.lines.remove(line)
