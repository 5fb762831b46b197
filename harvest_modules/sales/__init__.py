"""
Sales Module (``harvest_modules.sales``).

Sales orders and their caliber/variety demand lines.
"""

from harvest_modules.sales.service import SalesOrderService

__all__ = ["SalesOrderService"]
