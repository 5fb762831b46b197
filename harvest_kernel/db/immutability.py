"""
ORM-Level Persistence Guards for the stock ledgers.

===============================================================================
WHY THIS EXISTS
===============================================================================

The ledgers are consistent only because a handful of rows and columns never
change outside the code paths that maintain them:

  - An allocation record (ShipmentLotDetail) is a permanent fact.  Lot
    remaining weight and line quantity shipped are both reproducible from
    the allocation records alone, so editing or deleting one silently
    breaks both ledgers.
  - A classified lot's variety, caliber and weights are what shipments were
    matched against.
  - Usage lines of an approved activity are what was debited.  Editing them
    afterwards would make the eventual credit return a different quantity.
  - On-hand quantity, remaining weight and quantity shipped are ledger
    balances.  Only the ledger services may write them.

These listeners are the second line of enforcement.  The services check the
same rules first and raise the same typed errors.

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_flush]  --> usage-line and input-deletion checks (persisted status)
         |
         v
    [before_insert / before_update / before_delete]
         |              --> append-only, classification and ledger-column checks
         v
    SQL sent to database (only if checks pass)

A failing check raises and the flush is aborted; nothing reaches the
database.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                      | Rule
----------------------------|-------------------------------------------------
ShipmentLotDetail           | ALWAYS immutable, never deleted
GoodsReceiptDetail          | ALWAYS immutable, never deleted
HarvestLot                  | Classification fields frozen once classified
WorkActivityInputUsage      | Frozen while owning activity is not PENDING
ConsumableInput             | on_hand_quantity/unit_cost: ledger scope only;
                            | no hard delete while referenced
HarvestLot                  | remaining_net_weight_kg/status: ledger scope only
SalesOrderDetail            | quantity_shipped/status: ledger scope only

===============================================================================
DESIGN DECISIONS
===============================================================================

1. updated_at/updated_by_id may always change.  They are audit metadata.

2. Usage-line and deletion checks run in SessionEvents.before_flush, before
   the flush plan is fixed, and read the activity status as persisted in the
   database.  Mapper events would see parent updates already applied.

3. The ledger write scope is a counter in ``session.info``.  The ledger
   services enter it and flush inside it; any other flush that touches a
   ledger column is rejected.

===============================================================================
USAGE
===============================================================================

    from harvest_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

    with ledger_write_scope(session):
        lot.remaining_net_weight_kg = new_remaining
        session.flush()

===============================================================================
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import event, func, inspect, select
from sqlalchemy.orm import Session, object_session
from sqlalchemy.orm.attributes import get_history

from harvest_kernel.domain.status import (
    ActivityStatus,
    HarvestLotStatus,
    status_value,
)
from harvest_kernel.exceptions import (
    DerivedFieldError,
    ImmutabilityViolationError,
    ImmutableActivityError,
    InputReferencedError,
)
from harvest_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_LEDGER_SCOPE_KEY = "ledger_write_depth"
_AUDIT_FIELDS = ("updated_at", "updated_by_id")

# Columns only the ledger services may write, per model name
LEDGER_COLUMNS: dict[str, tuple[str, ...]] = {
    "ConsumableInput": ("on_hand_quantity", "unit_cost"),
    "HarvestLot": ("remaining_net_weight_kg", "status"),
    "SalesOrderDetail": ("quantity_shipped", "status"),
}

# Frozen on a lot once it has left PENDING_CLASSIFICATION
_FROZEN_LOT_FIELDS = (
    "plot_id",
    "harvest_date",
    "lot_code",
    "variety_name",
    "caliber",
    "gross_weight_kg",
    "net_weight_kg",
    "yield_percentage",
)


# =============================================================================
# Ledger write scope
# =============================================================================


@contextmanager
def ledger_write_scope(session: Session) -> Iterator[Session]:
    """
    Allow ledger columns to be flushed for the duration of the block.

    Nestable.  Callers must flush before leaving the block.
    """
    session.info[_LEDGER_SCOPE_KEY] = session.info.get(_LEDGER_SCOPE_KEY, 0) + 1
    try:
        yield session
    finally:
        session.info[_LEDGER_SCOPE_KEY] -= 1


def in_ledger_write_scope(session: Session | None) -> bool:
    if session is None:
        return False
    return session.info.get(_LEDGER_SCOPE_KEY, 0) > 0


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **fields) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
            **fields,
        },
    )


def _check_ledger_columns(mapper, connection, target):
    """
    Reject writes to ledger balance columns outside ledger_write_scope.
    """
    entity_type = type(target).__name__
    columns = LEDGER_COLUMNS.get(entity_type)
    if not columns:
        return
    if in_ledger_write_scope(object_session(target)):
        return

    for column in columns:
        if get_history(target, column).has_changes():
            _blocked(entity_type, target.id, "UPDATE", "ledger_column_outside_scope", field=column)
            raise DerivedFieldError(
                entity_type=entity_type,
                entity_id=str(target.id),
                field=column,
            )


def _check_sales_line_insert(mapper, connection, target):
    """A new demand line starts with nothing shipped."""
    if in_ledger_write_scope(object_session(target)):
        return
    if target.quantity_shipped is not None and target.quantity_shipped != 0:
        _blocked("SalesOrderDetail", target.id, "INSERT", "shipped_quantity_preset")
        raise DerivedFieldError(
            entity_type="SalesOrderDetail",
            entity_id=str(target.id),
            field="quantity_shipped",
        )


# =============================================================================
# Append-only records
# =============================================================================


def _reject_any_change(mapper, connection, target):
    """
    Block every field change on an append-only record (audit fields aside).
    """
    entity_type = type(target).__name__
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            _blocked(entity_type, target.id, "UPDATE", "append_only_record", field=attr.key)
            raise ImmutabilityViolationError(
                entity_type=entity_type,
                entity_id=str(target.id),
                reason=f"Cannot modify field '{attr.key}' on an append-only record",
            )


def _reject_delete(mapper, connection, target):
    entity_type = type(target).__name__
    _blocked(entity_type, target.id, "DELETE", "append_only_record")
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason="Append-only records cannot be deleted",
    )


# =============================================================================
# HarvestLot classification
# =============================================================================


def _check_harvest_lot_immutability(mapper, connection, target):
    """
    Freeze classification fields once the lot has been classified.

    The classification flush itself (PENDING_CLASSIFICATION -> IN_STOCK) is
    allowed because the persisted status is still PENDING_CLASSIFICATION.
    """
    status_history = get_history(target, "status")
    if status_history.deleted:
        persisted = status_value(status_history.deleted[0])
    else:
        persisted = status_value(target.status)

    if persisted == HarvestLotStatus.PENDING_CLASSIFICATION.value:
        return

    if status_history.added and status_value(status_history.added[0]) == (
        HarvestLotStatus.PENDING_CLASSIFICATION.value
    ):
        _blocked("HarvestLot", target.id, "UPDATE", "declassification")
        raise ImmutabilityViolationError(
            entity_type="HarvestLot",
            entity_id=str(target.id),
            reason="A classified lot cannot return to pending classification",
        )

    for field in _FROZEN_LOT_FIELDS:
        if get_history(target, field).has_changes():
            _blocked("HarvestLot", target.id, "UPDATE", "classified_lot_field", field=field)
            raise ImmutabilityViolationError(
                entity_type="HarvestLot",
                entity_id=str(target.id),
                reason=f"Cannot modify field '{field}' on a classified lot",
            )


# =============================================================================
# Session-level checks (before_flush)
# =============================================================================


def _usage_activity_id(usage):
    if usage.activity_id is not None:
        return usage.activity_id
    if usage.activity is not None:
        return usage.activity.id
    return None


def _check_input_usage_before_flush(session, flush_context, instances):
    """
    Usage lines may be inserted, changed or removed only while the owning
    activity is PENDING in the database.
    """
    from harvest_kernel.models.work_activity import WorkActivity, WorkActivityInputUsage

    touched = [o for o in session.new if isinstance(o, WorkActivityInputUsage)]
    touched += [o for o in session.deleted if isinstance(o, WorkActivityInputUsage)]
    touched += [
        o for o in session.dirty
        if isinstance(o, WorkActivityInputUsage) and session.is_modified(o)
    ]
    if not touched:
        return

    with session.no_autoflush:
        checked: set = set()
        for usage in touched:
            activity_id = _usage_activity_id(usage)
            if activity_id is None or activity_id in checked:
                continue
            checked.add(activity_id)
            persisted = session.execute(
                select(WorkActivity.status).where(WorkActivity.id == activity_id)
            ).scalar_one_or_none()
            if persisted is None or status_value(persisted) == ActivityStatus.PENDING.value:
                continue
            _blocked(
                "WorkActivityInputUsage", usage.id, "FLUSH", "activity_not_pending",
                activity_id=str(activity_id),
            )
            raise ImmutableActivityError(
                activity_id=str(activity_id),
                status=status_value(persisted),
            )


def _check_input_deletion_before_flush(session, flush_context, instances):
    """
    A consumable input referenced by usage lines cannot be hard-deleted.
    """
    from harvest_kernel.models.consumable_input import ConsumableInput
    from harvest_kernel.models.work_activity import WorkActivityInputUsage

    for obj in list(session.deleted):
        if not isinstance(obj, ConsumableInput):
            continue
        with session.no_autoflush:
            usage_count = session.execute(
                select(func.count(WorkActivityInputUsage.id)).where(
                    WorkActivityInputUsage.input_id == obj.id
                )
            ).scalar_one()
        if usage_count:
            _blocked("ConsumableInput", obj.id, "DELETE", "input_has_usage_references")
            raise InputReferencedError(input_id=str(obj.id), usage_count=usage_count)


# =============================================================================
# Registration
# =============================================================================


def _listener_table():
    from harvest_kernel.models.consumable_input import ConsumableInput
    from harvest_kernel.models.harvest_lot import HarvestLot
    from harvest_kernel.models.purchase_order import GoodsReceiptDetail
    from harvest_kernel.models.sales_order import SalesOrderDetail
    from harvest_kernel.models.shipment import ShipmentLotDetail

    return (
        (Session, "before_flush", _check_input_usage_before_flush),
        (Session, "before_flush", _check_input_deletion_before_flush),
        (ShipmentLotDetail, "before_update", _reject_any_change),
        (ShipmentLotDetail, "before_delete", _reject_delete),
        (GoodsReceiptDetail, "before_update", _reject_any_change),
        (GoodsReceiptDetail, "before_delete", _reject_delete),
        (HarvestLot, "before_update", _check_harvest_lot_immutability),
        (HarvestLot, "before_update", _check_ledger_columns),
        (ConsumableInput, "before_update", _check_ledger_columns),
        (SalesOrderDetail, "before_update", _check_ledger_columns),
        (SalesOrderDetail, "before_insert", _check_sales_line_insert),
    )


def register_immutability_listeners():
    """
    Register all persistence guard listeners (idempotent).
    """
    registered = 0
    for target, event_name, fn in _listener_table():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)
            registered += 1
    logger.info("immutability_listeners_registered", extra={"count": registered})


def _safe_remove_listener(target, event_name, listener_fn):
    """
    Remove an event listener if it is registered.
    """
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove all persistence guard listeners.

    WARNING: FOR TESTS ONLY.
    """
    for target, event_name, fn in _listener_table():
        _safe_remove_listener(target, event_name, fn)
