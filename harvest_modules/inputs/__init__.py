"""
Inputs Module (``harvest_modules.inputs``).

Consumable-input catalogue: registration with an opening balance and
retirement (soft delete).
"""

from harvest_modules.inputs.service import InputService

__all__ = ["InputService"]
