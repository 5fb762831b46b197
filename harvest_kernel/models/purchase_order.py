"""
Module: harvest_kernel.models.purchase_order
Responsibility: ORM models for purchase orders of consumable inputs and the
    goods receipts recorded against them.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - 0 <= quantity_received <= quantity on every purchase line.
    - GoodsReceiptDetail is append-only (db/immutability.py): the sum of
      receipt lines per purchase line equals quantity_received.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from harvest_kernel.db.base import TrackedBase, UUIDString
from harvest_kernel.domain.status import PurchaseOrderStatus
from harvest_kernel.models.consumable_input import ConsumableInput


class PurchaseOrder(TrackedBase):
    """An order placed with a supplier for consumable inputs."""

    __tablename__ = "purchase_orders"

    __table_args__ = (
        Index("idx_purchase_order_supplier", "supplier_id"),
        Index("idx_purchase_order_status", "status"),
    )

    # Supplier lives outside this kernel (no FK)
    supplier_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        String(30),
        nullable=False,
        default=PurchaseOrderStatus.PENDING,
    )
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    lines: Mapped[list["PurchaseOrderDetail"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<PurchaseOrder {self.id} status={self.status}>"


class PurchaseOrderDetail(TrackedBase):
    """One ordered input with its price and received-so-far quantity."""

    __tablename__ = "purchase_order_details"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_purchase_line_quantity"),
        CheckConstraint(
            "quantity_received >= 0 AND quantity_received <= quantity",
            name="ck_purchase_line_received",
        ),
        Index("idx_purchase_line_order", "purchase_order_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("purchase_orders.id"),
        nullable=False,
    )
    input_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("consumable_inputs.id"),
        nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    quantity_received: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    purchase_order: Mapped[PurchaseOrder] = relationship(back_populates="lines")
    consumable_input: Mapped[ConsumableInput] = relationship()

    @property
    def quantity_remaining(self) -> Decimal:
        return self.quantity - self.quantity_received


class GoodsReceipt(TrackedBase):
    """Arrival of goods against a purchase order."""

    __tablename__ = "goods_receipts"

    __table_args__ = (
        Index("idx_goods_receipt_order", "purchase_order_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("purchase_orders.id"),
        nullable=False,
    )
    received_at: Mapped[datetime] = mapped_column(nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["GoodsReceiptDetail"]] = relationship(
        back_populates="goods_receipt",
        lazy="selectin",
    )


class GoodsReceiptDetail(TrackedBase):
    """Immutable record of a quantity received for one purchase line."""

    __tablename__ = "goods_receipt_details"

    __table_args__ = (
        CheckConstraint("quantity_received > 0", name="ck_goods_receipt_quantity"),
        Index("idx_goods_receipt_line_receipt", "goods_receipt_id"),
    )

    goods_receipt_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("goods_receipts.id"),
        nullable=False,
    )
    purchase_order_detail_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("purchase_order_details.id"),
        nullable=False,
    )
    input_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("consumable_inputs.id"),
        nullable=False,
    )
    quantity_received: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)

    goods_receipt: Mapped[GoodsReceipt] = relationship(back_populates="lines")
