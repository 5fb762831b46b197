"""Ledger services for the harvest kernel (write side, flush-only)."""

from harvest_kernel.services.demand_ledger import DemandLedger
from harvest_kernel.services.lot_ledger import HarvestLotLedger
from harvest_kernel.services.stock_ledger import StockLedger

__all__ = [
    "DemandLedger",
    "HarvestLotLedger",
    "StockLedger",
]
