"""
Shipping Module (``harvest_modules.shipping``).

The shipment allocation engine: draws harvest-lot stock against
sales-order demand through immutable allocation records.
"""

from harvest_modules.shipping.service import ShipmentService

__all__ = ["ShipmentService"]
