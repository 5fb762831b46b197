"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable request structures handed to the module services by the
    request layer, and the stock movements the activity service hands to
    the stock ledger.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  No ORM imports.

Invariants enforced:
    - Frozen: a request cannot change between validation and application.
    - Shape only.  Business validation (positive quantities, ownership,
      availability) happens in the services, against storage.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class UsageLineRequest:
    """One consumable input drawn by a work activity."""

    input_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class StockMovement:
    """A signed-by-operation quantity against one consumable input."""

    input_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class LotAllocationRequest:
    """Take ``quantity_taken_kg`` from a harvest lot for one demand line."""

    harvest_lot_id: UUID
    sales_order_detail_id: UUID
    quantity_taken_kg: Decimal


@dataclass(frozen=True)
class SalesOrderLineRequest:
    """
    A demand line as submitted by the caller.

    ``line_id`` identifies an existing line on revision; None adds a line.
    """

    caliber: str
    variety: str
    quantity_kg: Decimal
    unit_price: Decimal
    line_id: UUID | None = None


@dataclass(frozen=True)
class GoodsReceiptLineRequest:
    """Quantity arriving against one purchase-order line."""

    purchase_order_detail_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class PurchaseOrderLineRequest:
    """One input ordered from a supplier."""

    input_id: UUID
    quantity: Decimal
    unit_price: Decimal
