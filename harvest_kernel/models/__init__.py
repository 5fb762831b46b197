"""ORM models for the harvest kernel."""

from harvest_kernel.models.consumable_input import ConsumableInput
from harvest_kernel.models.harvest_lot import CLASSIFICATION_FIELDS, HarvestLot
from harvest_kernel.models.purchase_order import (
    GoodsReceipt,
    GoodsReceiptDetail,
    PurchaseOrder,
    PurchaseOrderDetail,
)
from harvest_kernel.models.sales_order import SalesOrder, SalesOrderDetail
from harvest_kernel.models.shipment import Shipment, ShipmentLotDetail
from harvest_kernel.models.work_activity import (
    WorkActivity,
    WorkActivityInputUsage,
    WorkOrder,
)

__all__ = [
    "CLASSIFICATION_FIELDS",
    "ConsumableInput",
    "GoodsReceipt",
    "GoodsReceiptDetail",
    "HarvestLot",
    "PurchaseOrder",
    "PurchaseOrderDetail",
    "SalesOrder",
    "SalesOrderDetail",
    "Shipment",
    "ShipmentLotDetail",
    "WorkActivity",
    "WorkActivityInputUsage",
    "WorkOrder",
    "import_all_models",
]


def import_all_models() -> list[type]:
    """Return every mapped model; importing this package registers them on Base.metadata."""
    return [
        ConsumableInput,
        WorkOrder,
        WorkActivity,
        WorkActivityInputUsage,
        HarvestLot,
        SalesOrder,
        SalesOrderDetail,
        Shipment,
        ShipmentLotDetail,
        PurchaseOrder,
        PurchaseOrderDetail,
        GoodsReceipt,
        GoodsReceiptDetail,
    ]
