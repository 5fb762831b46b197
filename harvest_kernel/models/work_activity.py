"""
Module: harvest_kernel.models.work_activity
Responsibility: ORM models for work orders, the field activities recorded
    against them, and the consumable inputs each activity draws.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - WorkActivity.status is one of ActivityStatus.
    - While an activity is APPROVED, each of its usage quantities has been
      debited exactly once from the referenced input (maintained by the
      activity service through the stock ledger).
    - Usage lines are replaceable only while the owning activity is PENDING
      (db/immutability.py).
    - WorkActivityInputUsage.quantity > 0.

Failure modes:
    - IntegrityError on a usage line that references a missing input or
      activity (FK constraints).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from harvest_kernel.db.base import TrackedBase, UUIDString
from harvest_kernel.domain.status import ActivityStatus, WorkOrderStatus
from harvest_kernel.models.consumable_input import ConsumableInput


class WorkOrder(TrackedBase):
    """A unit of planned field work that groups activities."""

    __tablename__ = "work_orders"

    __table_args__ = (
        Index("idx_work_order_status", "status"),
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[WorkOrderStatus] = mapped_column(
        String(20),
        nullable=False,
        default=WorkOrderStatus.PENDING,
    )
    # Plot lives outside this kernel (no FK)
    plot_id: Mapped[UUID | None] = mapped_column(nullable=True)

    activities: Mapped[list["WorkActivity"]] = relationship(
        back_populates="work_order",
        order_by="WorkActivity.created_at",
    )

    def __repr__(self) -> str:
        return f"<WorkOrder {self.id} {self.title!r} status={self.status}>"


class WorkActivity(TrackedBase):
    """
    A recorded unit of field work, subject to approval.

    Guarantees:
        - input_usage is loaded eagerly (selectin) and owned by the activity
          (delete-orphan), so replacing the collection replaces the lines.
    """

    __tablename__ = "work_activities"

    __table_args__ = (
        Index("idx_work_activity_order", "work_order_id"),
        Index("idx_work_activity_status", "status"),
    )

    work_order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("work_orders.id"),
        nullable=False,
    )
    activity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    execution_date: Mapped[datetime] = mapped_column(nullable=False)
    hours_worked: Mapped[Decimal | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ActivityStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ActivityStatus.PENDING,
    )

    work_order: Mapped[WorkOrder] = relationship(back_populates="activities")

    input_usage: Mapped[list["WorkActivityInputUsage"]] = relationship(
        back_populates="activity",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<WorkActivity {self.id} {self.activity_type} status={self.status}>"


class WorkActivityInputUsage(TrackedBase):
    """One consumable input drawn by an activity."""

    __tablename__ = "work_activity_input_usage"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_input_usage_quantity"),
        Index("idx_input_usage_activity", "activity_id"),
        Index("idx_input_usage_input", "input_id"),
    )

    activity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("work_activities.id"),
        nullable=False,
    )
    input_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("consumable_inputs.id"),
        nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    activity: Mapped[WorkActivity] = relationship(back_populates="input_usage")
    consumable_input: Mapped[ConsumableInput] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<WorkActivityInputUsage input={self.input_id} qty={self.quantity}>"
