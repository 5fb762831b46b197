"""
Module: harvest_kernel.models.sales_order
Responsibility: ORM models for sales orders and their demand lines.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - total_amount == sum(quantity_kg * unit_price) over the lines
      (recomputed by the sales order service on every edit).
    - 0 <= quantity_shipped <= quantity_kg (CHECK constraints).
    - quantity_shipped and line status are written only by the shipment
      allocation engine (db/immutability.py ledger write guard).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from harvest_kernel.db.base import TrackedBase, UUIDString
from harvest_kernel.domain.status import DemandLineStatus, SalesOrderStatus


class SalesOrder(TrackedBase):
    """A customer order made of caliber/variety demand lines."""

    __tablename__ = "sales_orders"

    __table_args__ = (
        Index("idx_sales_order_customer", "customer_id"),
        Index("idx_sales_order_status", "status"),
    )

    # Customer lives outside this kernel (no FK)
    customer_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[SalesOrderStatus] = mapped_column(
        String(30),
        nullable=False,
        default=SalesOrderStatus.APPROVED,
    )
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    lines: Mapped[list["SalesOrderDetail"]] = relationship(
        back_populates="sales_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SalesOrderDetail.line_number",
    )

    def __repr__(self) -> str:
        return f"<SalesOrder {self.id} status={self.status} total={self.total_amount}>"


class SalesOrderDetail(TrackedBase):
    """One demand line: how much of a caliber/variety the customer wants."""

    __tablename__ = "sales_order_details"

    __table_args__ = (
        CheckConstraint("quantity_kg > 0", name="ck_sales_line_quantity"),
        CheckConstraint("quantity_shipped >= 0", name="ck_sales_line_shipped_nonneg"),
        CheckConstraint(
            "quantity_shipped <= quantity_kg", name="ck_sales_line_shipped_le_ordered"
        ),
        Index("idx_sales_line_order", "sales_order_id"),
    )

    sales_order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales_orders.id"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False, default=1)
    caliber: Mapped[str] = mapped_column(String(20), nullable=False)
    variety: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity_kg: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    quantity_shipped: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[DemandLineStatus] = mapped_column(
        String(30),
        nullable=False,
        default=DemandLineStatus.OPEN,
    )

    sales_order: Mapped[SalesOrder] = relationship(back_populates="lines")

    @property
    def subtotal(self) -> Decimal:
        return self.quantity_kg * self.unit_price

    @property
    def quantity_pending(self) -> Decimal:
        return self.quantity_kg - self.quantity_shipped

    def __repr__(self) -> str:
        return (
            f"<SalesOrderDetail {self.id} {self.variety}/{self.caliber} "
            f"{self.quantity_shipped}/{self.quantity_kg} status={self.status}>"
        )
