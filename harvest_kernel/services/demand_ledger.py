"""
DemandLedger -- quantity shipped per sales-order line.

Responsibility:
    The only writer of SalesOrderDetail.quantity_shipped and the derived
    line status, and the place order status is re-aggregated from its lines.

Architecture position:
    Kernel > Services.  Flush-only; the calling module service commits.

Invariants enforced:
    - 0 <= quantity_shipped <= quantity_kg.
    - Line status is recomputed from quantities after every change; order
      status is recomputed from all lines (never incrementally).

Failure modes:
    - InsufficientStockError if a fulfilment exceeds the line's pending
      quantity.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from harvest_kernel.db.immutability import ledger_write_scope
from harvest_kernel.domain.quantities import DEFAULT_PLACES, quantize
from harvest_kernel.domain.status import derive_line_status, derive_order_status
from harvest_kernel.exceptions import InsufficientStockError
from harvest_kernel.logging_config import get_logger
from harvest_kernel.models.sales_order import SalesOrder, SalesOrderDetail
from harvest_kernel.services.base import BaseService

logger = get_logger("services.demand_ledger")


class DemandLedger(BaseService[SalesOrderDetail]):
    """
    Record shipped quantities against demand lines and cascade status.
    """

    def __init__(self, session, places: int = DEFAULT_PLACES):
        super().__init__(session)
        self._places = places

    def lock_order(self, order_id: UUID) -> SalesOrder | None:
        """Load and lock the order header."""
        return self.session.execute(
            select(SalesOrder)
            .where(SalesOrder.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def lock_lines(self, line_ids: Iterable[UUID]) -> dict[UUID, SalesOrderDetail]:
        """Load and lock demand lines in id order."""
        wanted = sorted(set(line_ids), key=str)
        if not wanted:
            return {}
        rows = self.session.execute(
            select(SalesOrderDetail)
            .where(SalesOrderDetail.id.in_(wanted))
            .order_by(SalesOrderDetail.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        return {row.id: row for row in rows}

    def fulfil(self, line: SalesOrderDetail, quantity_kg: Decimal) -> Decimal:
        """
        Add ``quantity_kg`` to the line's shipped quantity.

        Returns:
            The new quantity shipped.
        """
        pending = line.quantity_kg - line.quantity_shipped
        if quantity_kg > pending:
            raise InsufficientStockError(
                resource_type="SalesOrderDetail",
                resource_id=str(line.id),
                available=pending,
                requested=quantity_kg,
            )

        with ledger_write_scope(self.session):
            line.quantity_shipped = quantize(line.quantity_shipped + quantity_kg, self._places)
            line.status = derive_line_status(line.quantity_kg, line.quantity_shipped)
            self.session.flush()
        return line.quantity_shipped

    def rederive_line(self, line: SalesOrderDetail) -> None:
        """Recompute a line's status after its ordered quantity changed."""
        new_status = derive_line_status(line.quantity_kg, line.quantity_shipped)
        if new_status != line.status:
            with ledger_write_scope(self.session):
                line.status = new_status
                self.session.flush()

    def refresh_order_status(self, order: SalesOrder) -> SalesOrder:
        """Re-aggregate order status from every line."""
        previous = order.status
        order.status = derive_order_status(order.status, [line.status for line in order.lines])
        self.session.flush()
        if order.status != previous:
            logger.info(
                "sales_order_status_derived",
                extra={
                    "sales_order_id": str(order.id),
                    "from_status": previous,
                    "to_status": order.status,
                },
            )
        return order
