"""
Module: harvest_kernel.models.consumable_input
Responsibility: ORM model for consumable inputs (fertilizers, agrochemicals,
    packaging) and their authoritative on-hand quantity.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - on_hand_quantity >= 0 (CHECK constraint; the stock ledger refuses to
      overdraw before the database ever sees the value).
    - on_hand_quantity and unit_cost change only through the stock ledger
      (db/immutability.py ledger write guard).
    - Rows referenced by usage lines are never hard-deleted; retirement sets
      deleted_at.

Failure modes:
    - IntegrityError on duplicate name or on a negative on-hand value.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from harvest_kernel.db.base import TrackedBase


class ConsumableInput(TrackedBase):
    """
    A stock-keeping consumable with a single authoritative on-hand row.

    Guarantees:
        - Quantities are Decimal (Numeric(38,9)).
        - is_retired is True once soft-deleted.
    """

    __tablename__ = "consumable_inputs"

    __table_args__ = (
        UniqueConstraint("name", name="uq_consumable_input_name"),
        CheckConstraint("on_hand_quantity >= 0", name="ck_consumable_input_on_hand"),
        Index("idx_consumable_input_deleted", "deleted_at"),
    )

    name: Mapped[str] = mapped_column(String(150), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    on_hand_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_retired(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<ConsumableInput {self.name} on_hand={self.on_hand_quantity} {self.unit}>"
