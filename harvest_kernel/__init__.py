"""
Harvest Kernel - inventory and fulfillment consistency engine.

A transactional stock ledger for farm operations with:
- Approval-driven debit/credit of consumable inputs
- Allocation of classified harvest lots against sales-order demand
- Immutable, append-only allocation records
- Derived line, order and lot statuses
"""

__version__ = "0.1.0"
