"""Read-only selectors for the harvest kernel."""

from harvest_kernel.selectors.stock_selector import (
    LineReconciliation,
    LotReconciliation,
    StockSelector,
)
from harvest_kernel.selectors.trace_selector import TraceReport, TraceSelector

__all__ = [
    "LineReconciliation",
    "LotReconciliation",
    "StockSelector",
    "TraceReport",
    "TraceSelector",
]
