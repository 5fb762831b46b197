"""
Harvest Modules (``harvest_modules``).

Responsibility
--------------
Stateful orchestration around the kernel ledgers: one service per business
area (activities, harvest lots, sales orders, shipments, goods receipts,
consumable inputs).  Each public service method is one unit of work and
owns its transaction boundary.

Architecture
------------
Layer: **Modules**.  Imports from ``harvest_kernel`` and ``harvest_config``;
never the reverse.
"""
