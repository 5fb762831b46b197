"""
Activity Module (``harvest_modules.activity``).

Work activities recorded against work orders, their consumable-input usage
lines, and the approval state machine that debits and credits the stock
ledger.
"""

from harvest_modules.activity.service import ActivityService
from harvest_modules.activity.workflows import ACTIVITY_WORKFLOW

__all__ = ["ACTIVITY_WORKFLOW", "ActivityService"]
