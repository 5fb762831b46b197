"""
Harvest Module (``harvest_modules.harvest``).

Registration, amendment and one-time classification of harvest lots.
Classification opens the lot's balance in the harvest-lot ledger.
"""

from harvest_modules.harvest.service import HarvestLotService
from harvest_modules.harvest.workflows import HARVEST_LOT_WORKFLOW

__all__ = ["HARVEST_LOT_WORKFLOW", "HarvestLotService"]
