"""
Module: harvest_kernel.models.harvest_lot
Responsibility: ORM model for harvested lots and their remaining net weight.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - lot_code is unique.
    - 0 <= remaining_net_weight_kg <= net_weight_kg once classified
      (CHECK constraints plus the harvest-lot ledger).
    - Classification fields (variety, caliber, gross/net weight, yield) are
      frozen once the lot leaves PENDING_CLASSIFICATION (db/immutability.py).
    - remaining_net_weight_kg and status change only through the harvest-lot
      ledger (db/immutability.py ledger write guard).

Failure modes:
    - IntegrityError on duplicate lot_code.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from harvest_kernel.db.base import TrackedBase
from harvest_kernel.domain.status import HarvestLotStatus

# Frozen once the lot is classified
CLASSIFICATION_FIELDS = (
    "variety_name",
    "caliber",
    "gross_weight_kg",
    "net_weight_kg",
    "yield_percentage",
)


class HarvestLot(TrackedBase):
    """
    A physically harvested batch with a finite remaining weight.

    Guarantees:
        - net_weight_kg, remaining_net_weight_kg and yield_percentage are
          None until classification.
        - missing_classification lists the fields still unset.
    """

    __tablename__ = "harvest_lots"

    __table_args__ = (
        UniqueConstraint("lot_code", name="uq_harvest_lot_code"),
        CheckConstraint("gross_weight_kg > 0", name="ck_harvest_lot_gross"),
        CheckConstraint(
            "remaining_net_weight_kg IS NULL OR remaining_net_weight_kg >= 0",
            name="ck_harvest_lot_remaining_nonneg",
        ),
        CheckConstraint(
            "remaining_net_weight_kg IS NULL OR remaining_net_weight_kg <= net_weight_kg",
            name="ck_harvest_lot_remaining_le_net",
        ),
        Index("idx_harvest_lot_status", "status"),
        Index("idx_harvest_lot_plot", "plot_id"),
    )

    # Plot lives outside this kernel (no FK)
    plot_id: Mapped[UUID] = mapped_column(nullable=False)
    harvest_date: Mapped[date] = mapped_column(nullable=False)
    lot_code: Mapped[str] = mapped_column(String(50), nullable=False)
    variety_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    caliber: Mapped[str | None] = mapped_column(String(20), nullable=True)
    gross_weight_kg: Mapped[Decimal] = mapped_column(nullable=False)
    net_weight_kg: Mapped[Decimal | None] = mapped_column(nullable=True)
    remaining_net_weight_kg: Mapped[Decimal | None] = mapped_column(nullable=True)
    yield_percentage: Mapped[Decimal | None] = mapped_column(nullable=True)
    status: Mapped[HarvestLotStatus] = mapped_column(
        String(30),
        nullable=False,
        default=HarvestLotStatus.PENDING_CLASSIFICATION,
    )

    allocations: Mapped[list["ShipmentLotDetail"]] = relationship(  # noqa: F821
        viewonly=True,
        order_by="ShipmentLotDetail.created_at",
    )

    @property
    def missing_classification(self) -> list[str]:
        missing = []
        if not self.variety_name:
            missing.append("variety_name")
        if not self.caliber:
            missing.append("caliber")
        if self.net_weight_kg is None:
            missing.append("net_weight_kg")
        return missing

    def __repr__(self) -> str:
        return (
            f"<HarvestLot {self.lot_code} remaining={self.remaining_net_weight_kg} "
            f"status={self.status}>"
        )
