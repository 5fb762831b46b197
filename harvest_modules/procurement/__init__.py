"""
Procurement Module (``harvest_modules.procurement``).

Purchase orders for consumable inputs and the goods receipts that bring
stock (and cost) into the consumable-input ledger.
"""

from harvest_modules.procurement.service import GoodsReceiptService

__all__ = ["GoodsReceiptService"]
