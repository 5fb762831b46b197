"""
Pure domain layer.

Status vocabularies, the status aggregator, workflow value objects,
quantity arithmetic and request DTOs.  Nothing here touches the ORM,
the database or the clock (SystemClock excepted).
"""

from harvest_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from harvest_kernel.domain.dtos import (
    GoodsReceiptLineRequest,
    LotAllocationRequest,
    PurchaseOrderLineRequest,
    SalesOrderLineRequest,
    StockMovement,
    UsageLineRequest,
)
from harvest_kernel.domain.status import (
    ActivityStatus,
    ActorRole,
    DemandLineStatus,
    HarvestLotStatus,
    PurchaseOrderStatus,
    SalesOrderStatus,
    WorkOrderStatus,
    derive_line_status,
    derive_lot_status,
    derive_order_status,
    derive_purchase_order_status,
)
from harvest_kernel.domain.workflow import Guard, LedgerAction, Transition, Workflow

__all__ = [
    "ActivityStatus",
    "ActorRole",
    "Clock",
    "DemandLineStatus",
    "DeterministicClock",
    "GoodsReceiptLineRequest",
    "Guard",
    "HarvestLotStatus",
    "LedgerAction",
    "LotAllocationRequest",
    "PurchaseOrderLineRequest",
    "PurchaseOrderStatus",
    "SalesOrderLineRequest",
    "SalesOrderStatus",
    "StockMovement",
    "SystemClock",
    "Transition",
    "UsageLineRequest",
    "WorkOrderStatus",
    "Workflow",
    "derive_line_status",
    "derive_lot_status",
    "derive_order_status",
    "derive_purchase_order_status",
]
