"""
Status vocabularies and the status aggregator.

Responsibility:
    Defines every status enum the kernel persists and the pure functions
    that derive demand-line, sales-order, harvest-lot and purchase-order
    status from the current aggregate.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Models import the
    enums from here; services call the derive_* functions after every
    ledger mutation.

Invariants enforced:
    - Derived statuses are recomputed in full from current quantities on
      every mutation, never patched incrementally.
    - Sales-order and purchase-order status only advance.  An aggregate
      with no progress keeps its current status.
    - A lot awaiting classification is never advanced by stock arithmetic.

Failure modes:
    - ValueError from the enum constructors when handed an unknown status.

Audit relevance:
    Status is what operators read; these functions are the single place
    that maps ledger quantities onto it.
"""

from collections.abc import Iterable
from decimal import Decimal
from enum import Enum


class ActivityStatus(str, Enum):
    """Approval status of a work activity."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WorkOrderStatus(str, Enum):
    """Lifecycle of the work order an activity belongs to."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    UNDER_REVIEW = "under_review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ActorRole(str, Enum):
    """Role of the actor submitting an activity."""

    WORKER = "worker"
    SUPERVISOR = "supervisor"
    ADMIN = "admin"


class HarvestLotStatus(str, Enum):
    """Lifecycle of a harvest lot."""

    PENDING_CLASSIFICATION = "pending_classification"
    IN_STOCK = "in_stock"
    SOLD_OUT = "sold_out"


class SalesOrderStatus(str, Enum):
    """Lifecycle of a sales order."""

    PENDING = "pending"
    APPROVED = "approved"
    PARTIALLY_SHIPPED = "partially_shipped"
    FULLY_SHIPPED = "fully_shipped"
    CANCELLED = "cancelled"


class DemandLineStatus(str, Enum):
    """Fill status of a sales-order line."""

    OPEN = "open"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"


class PurchaseOrderStatus(str, Enum):
    """Lifecycle of a purchase order."""

    PENDING = "pending"
    APPROVED = "approved"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED = "received"
    CANCELLED = "cancelled"


def status_value(status: str | Enum) -> str:
    """Plain string form of a status, whether it came from an enum or a row."""
    if isinstance(status, Enum):
        return status.value
    return str(status)


def derive_line_status(quantity_ordered: Decimal, quantity_shipped: Decimal) -> DemandLineStatus:
    """FILLED once shipped covers ordered, PARTIALLY_FILLED once anything shipped."""
    if quantity_shipped >= quantity_ordered:
        return DemandLineStatus.FILLED
    if quantity_shipped > 0:
        return DemandLineStatus.PARTIALLY_FILLED
    return DemandLineStatus.OPEN


def derive_order_status(
    current: str | SalesOrderStatus,
    line_statuses: Iterable[str | DemandLineStatus],
) -> SalesOrderStatus:
    """
    Aggregate demand-line statuses into the order status.

    Every line FILLED gives FULLY_SHIPPED; any line with progress gives
    PARTIALLY_SHIPPED; otherwise the current status is kept.
    """
    current = SalesOrderStatus(status_value(current))
    statuses = [DemandLineStatus(status_value(s)) for s in line_statuses]
    if not statuses:
        return current
    if all(s == DemandLineStatus.FILLED for s in statuses):
        return SalesOrderStatus.FULLY_SHIPPED
    if any(s != DemandLineStatus.OPEN for s in statuses):
        return SalesOrderStatus.PARTIALLY_SHIPPED
    return current


def derive_lot_status(
    current: str | HarvestLotStatus,
    remaining_net_weight_kg: Decimal | None,
) -> HarvestLotStatus:
    """SOLD_OUT exactly when nothing remains; lots awaiting classification stay put."""
    current = HarvestLotStatus(status_value(current))
    if current == HarvestLotStatus.PENDING_CLASSIFICATION or remaining_net_weight_kg is None:
        return current
    if remaining_net_weight_kg <= 0:
        return HarvestLotStatus.SOLD_OUT
    return HarvestLotStatus.IN_STOCK


def derive_purchase_order_status(
    current: str | PurchaseOrderStatus,
    lines: Iterable[tuple[Decimal, Decimal]],
) -> PurchaseOrderStatus:
    """
    Aggregate (quantity_ordered, quantity_received) pairs into the PO status.
    """
    current = PurchaseOrderStatus(status_value(current))
    pairs = list(lines)
    if not pairs:
        return current
    if all(received >= ordered for ordered, received in pairs):
        return PurchaseOrderStatus.RECEIVED
    if any(received > 0 for _, received in pairs):
        return PurchaseOrderStatus.PARTIALLY_RECEIVED
    return current
