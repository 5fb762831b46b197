"""
Procurement Module Service (``harvest_modules.procurement.service``).

Responsibility
--------------
Purchase orders for consumable inputs and the goods receipts recorded
against them.  A receipt is the only way stock enters the consumable-input
ledger besides an approval reversal; it blends the purchase price into the
input's unit cost (weighted average).

Invariants
----------
- Each public method owns its transaction boundary (commit / rollback).
- 0 <= quantity_received <= quantity on every purchase line.
- Receipt lines are append-only (db/immutability.py); their sum per
  purchase line equals quantity_received.
- Purchase-order status is re-derived from its lines after every receipt.

Failure Modes
-------------
- ``InvalidStateError`` when the purchase order is not receivable.
- ``InvalidReferenceError`` when a receipt line names another order's line.
- ``OverReceiptError`` when a receipt exceeds the quantity still open.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from harvest_config.schema import HarvestConfiguration
from harvest_kernel.domain.clock import Clock, SystemClock
from harvest_kernel.domain.dtos import GoodsReceiptLineRequest, PurchaseOrderLineRequest
from harvest_kernel.domain.quantities import quantize
from harvest_kernel.domain.status import (
    PurchaseOrderStatus,
    derive_purchase_order_status,
    status_value,
)
from harvest_kernel.exceptions import (
    InvalidReferenceError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    OverReceiptError,
)
from harvest_kernel.logging_config import LogContext, get_logger
from harvest_kernel.models.consumable_input import ConsumableInput
from harvest_kernel.models.purchase_order import (
    GoodsReceipt,
    GoodsReceiptDetail,
    PurchaseOrder,
    PurchaseOrderDetail,
)
from harvest_kernel.services.stock_ledger import StockLedger

logger = get_logger("modules.procurement.service")


class GoodsReceiptService:
    """
    Orchestrates purchase orders and goods receipts.

    Contract
    --------
    ``receive_goods`` writes the receipt, the received quantities, the
    stock movements and the new PO status together or not at all.
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
        self._stock = StockLedger(session, places=self._places)
        self._receivable = tuple(
            status_value(s) for s in self._config.procurement.receivable_order_statuses
        )

    # =========================================================================
    # Purchase orders
    # =========================================================================

    def create_purchase_order(
        self,
        supplier_id: UUID,
        lines: Sequence[PurchaseOrderLineRequest],
        actor_id: UUID,
    ) -> PurchaseOrder:
        """Place a PENDING purchase order."""
        if not lines:
            raise InvalidRequestError("a purchase order needs at least one line")
        for line in lines:
            if line.quantity is None or quantize(line.quantity, self._places) <= 0:
                raise InvalidRequestError("purchase quantity must be positive")
            if line.unit_price is None or line.unit_price < 0:
                raise InvalidRequestError("purchase unit price cannot be negative")

        with LogContext.bind(actor_id=str(actor_id), operation="create_purchase_order"):
            try:
                for input_id in dict.fromkeys(line.input_id for line in lines):
                    if self._session.get(ConsumableInput, input_id) is None:
                        raise NotFoundError("ConsumableInput", str(input_id))

                order = PurchaseOrder(
                    supplier_id=supplier_id,
                    status=PurchaseOrderStatus.PENDING,
                    created_by_id=actor_id,
                )
                order.lines = [
                    PurchaseOrderDetail(
                        input_id=line.input_id,
                        quantity=quantize(line.quantity, self._places),
                        unit_price=line.unit_price,
                        quantity_received=Decimal("0"),
                        created_by_id=actor_id,
                    )
                    for line in lines
                ]
                order.total_amount = sum(
                    (line.quantity * line.unit_price for line in order.lines), Decimal("0")
                )
                self._session.add(order)
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "purchase_order_created",
                extra={
                    "purchase_order_id": str(order.id),
                    "supplier_id": str(supplier_id),
                    "line_count": len(order.lines),
                    "total_amount": str(order.total_amount),
                },
            )
        return order

    def approve_purchase_order(self, purchase_order_id: UUID, actor_id: UUID) -> PurchaseOrder:
        """PENDING -> APPROVED."""
        try:
            order = self._lock_order(purchase_order_id)
            if status_value(order.status) != PurchaseOrderStatus.PENDING.value:
                raise InvalidStateError(
                    entity_type="PurchaseOrder",
                    entity_id=str(purchase_order_id),
                    current_status=status_value(order.status),
                    operation="approve",
                )
            order.status = PurchaseOrderStatus.APPROVED
            order.updated_by_id = actor_id
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "purchase_order_approved",
            extra={"purchase_order_id": str(purchase_order_id)},
        )
        return order

    # =========================================================================
    # Goods receipts
    # =========================================================================

    def receive_goods(
        self,
        purchase_order_id: UUID,
        lines: Sequence[GoodsReceiptLineRequest],
        actor_id: UUID,
        notes: str | None = None,
    ) -> GoodsReceipt:
        """
        Record goods arriving against a purchase order.

        Postconditions:
            - Each input's on-hand quantity grows by the received quantity
              and its unit cost becomes
              (on_hand * cost + received * price) / (on_hand + received).
            - Purchase-order status is RECEIVED once every line is complete,
              PARTIALLY_RECEIVED otherwise.

        Raises:
            OverReceiptError: a line would receive more than is still open.
                Requests naming the same line are summed first.
        """
        if not lines:
            raise InvalidRequestError("a goods receipt needs at least one line")
        for line in lines:
            if line.quantity is None or quantize(line.quantity, self._places) <= 0:
                raise InvalidRequestError("received quantity must be positive")

        with LogContext.bind(
            actor_id=str(actor_id),
            operation="receive_goods",
            entity_id=str(purchase_order_id),
        ):
            try:
                order = self._lock_order(purchase_order_id)
                if status_value(order.status) not in self._receivable:
                    raise InvalidStateError(
                        entity_type="PurchaseOrder",
                        entity_id=str(purchase_order_id),
                        current_status=status_value(order.status),
                        operation="receive goods for",
                    )

                order_lines = self._lock_lines(order, [line.purchase_order_detail_id for line in lines])

                requested: dict[UUID, Decimal] = {}
                for line in lines:
                    quantity = quantize(line.quantity, self._places)
                    requested[line.purchase_order_detail_id] = (
                        requested.get(line.purchase_order_detail_id, Decimal("0")) + quantity
                    )
                for line_id, quantity in requested.items():
                    remaining = order_lines[line_id].quantity_remaining
                    if quantity > remaining:
                        raise OverReceiptError(
                            purchase_order_detail_id=str(line_id),
                            remaining=remaining,
                            received=quantity,
                        )

                receipt = GoodsReceipt(
                    purchase_order_id=order.id,
                    received_at=self._clock.now(),
                    notes=notes,
                    created_by_id=actor_id,
                )
                self._session.add(receipt)
                self._session.flush()

                for line in lines:
                    po_line = order_lines[line.purchase_order_detail_id]
                    quantity = quantize(line.quantity, self._places)
                    self._session.add(
                        GoodsReceiptDetail(
                            goods_receipt_id=receipt.id,
                            purchase_order_detail_id=po_line.id,
                            input_id=po_line.input_id,
                            quantity_received=quantity,
                            unit_cost=po_line.unit_price,
                            created_by_id=actor_id,
                        )
                    )
                    po_line.quantity_received = po_line.quantity_received + quantity
                    po_line.updated_by_id = actor_id
                    self._stock.receive(po_line.input_id, quantity, po_line.unit_price)

                order.status = derive_purchase_order_status(
                    order.status,
                    [(po_line.quantity, po_line.quantity_received) for po_line in order.lines],
                )
                order.updated_by_id = actor_id
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "goods_received",
                extra={
                    "goods_receipt_id": str(receipt.id),
                    "purchase_order_id": str(purchase_order_id),
                    "line_count": len(lines),
                    "order_status": status_value(order.status),
                },
            )
        return receipt

    # =========================================================================
    # Internals
    # =========================================================================

    def _lock_order(self, purchase_order_id: UUID) -> PurchaseOrder:
        order = self._session.execute(
            select(PurchaseOrder)
            .where(PurchaseOrder.id == purchase_order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise NotFoundError("PurchaseOrder", str(purchase_order_id))
        return order

    def _lock_lines(
        self,
        order: PurchaseOrder,
        line_ids: list[UUID],
    ) -> dict[UUID, PurchaseOrderDetail]:
        wanted = sorted(set(line_ids), key=str)
        rows = self._session.execute(
            select(PurchaseOrderDetail)
            .where(PurchaseOrderDetail.id.in_(wanted))
            .order_by(PurchaseOrderDetail.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        found = {row.id: row for row in rows}
        for line_id in wanted:
            row = found.get(line_id)
            if row is None or row.purchase_order_id != order.id:
                raise InvalidReferenceError(
                    entity_type="PurchaseOrderDetail",
                    entity_id=str(line_id),
                    parent_type="PurchaseOrder",
                    parent_id=str(order.id),
                )
        return found
