"""
Module: harvest_kernel.models.shipment
Responsibility: ORM models for shipments and their allocation records.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - ShipmentLotDetail is an append-only fact: never updated, never deleted
      (db/immutability.py).  It is the sole record of how much of which lot
      went to which order line.
    - quantity_taken_kg > 0 (CHECK constraint).

Audit relevance:
    Summing quantity_taken_kg per lot and per demand line reproduces the
    lot remaining weight and the line quantity shipped exactly.  See
    selectors/stock_selector.py.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from harvest_kernel.db.base import TrackedBase, UUIDString
from harvest_kernel.models.harvest_lot import HarvestLot
from harvest_kernel.models.sales_order import SalesOrder, SalesOrderDetail


class Shipment(TrackedBase):
    """A dated container for one or more allocation records."""

    __tablename__ = "shipments"

    __table_args__ = (
        Index("idx_shipment_order", "sales_order_id"),
        Index("idx_shipment_date", "shipment_date"),
    )

    sales_order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales_orders.id"),
        nullable=False,
    )
    shipment_date: Mapped[datetime] = mapped_column(nullable=False)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    sales_order: Mapped[SalesOrder] = relationship()

    lot_details: Mapped[list["ShipmentLotDetail"]] = relationship(
        back_populates="shipment",
        lazy="selectin",
        order_by="ShipmentLotDetail.sequence",
    )

    def __repr__(self) -> str:
        return f"<Shipment {self.id} order={self.sales_order_id} date={self.shipment_date}>"


class ShipmentLotDetail(TrackedBase):
    """Immutable record: quantity of a lot that satisfied a demand line."""

    __tablename__ = "shipment_lot_details"

    __table_args__ = (
        CheckConstraint("quantity_taken_kg > 0", name="ck_shipment_detail_quantity"),
        Index("idx_shipment_detail_shipment", "shipment_id"),
        Index("idx_shipment_detail_lot", "harvest_lot_id"),
        Index("idx_shipment_detail_line", "sales_order_detail_id"),
    )

    shipment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("shipments.id"),
        nullable=False,
    )
    harvest_lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("harvest_lots.id"),
        nullable=False,
    )
    sales_order_detail_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales_order_details.id"),
        nullable=False,
    )
    # Position within the shipment request, preserves caller order
    sequence: Mapped[int] = mapped_column(nullable=False, default=0)
    quantity_taken_kg: Mapped[Decimal] = mapped_column(nullable=False)

    shipment: Mapped[Shipment] = relationship(back_populates="lot_details")
    harvest_lot: Mapped[HarvestLot] = relationship()
    sales_order_detail: Mapped[SalesOrderDetail] = relationship()

    def __repr__(self) -> str:
        return (
            f"<ShipmentLotDetail lot={self.harvest_lot_id} "
            f"line={self.sales_order_detail_id} qty={self.quantity_taken_kg}>"
        )
