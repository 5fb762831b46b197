"""
Activity Module Service (``harvest_modules.activity.service``).

Responsibility
--------------
Records work activities and their consumable-input usage, and drives the
approval state machine.  Every status transition that the workflow marks
with a ledger action debits or credits the stock ledger in the same
transaction as the status write.

Architecture
------------
Layer: **Modules** -- stateful orchestration wrapper.

1. Looks up the transition in ``ACTIVITY_WORKFLOW``.
2. Calls ``StockLedger.debit`` / ``StockLedger.credit`` for its ledger action.
3. Writes the new status and commits.

Invariants
----------
- Each public method owns its transaction boundary.  The stock ledger
  flushes only; this service calls ``session.commit()`` on success and
  ``session.rollback()`` on failure.
- While an activity is APPROVED its usage quantities have been debited
  exactly once; while PENDING or REJECTED, none of them has.
- Usage lines are replaced only while the persisted status is PENDING.

Failure Modes
-------------
- ``NotFoundError`` for a missing activity, work order or input.
- ``InvalidStateError`` when the work order is not IN_PROGRESS for creation
  or usage edits, when an input is retired, or when REJECTED is requested
  at creation.
- ``ImmutableActivityError`` when usage lines of an APPROVED or REJECTED
  activity are replaced.
- ``InsufficientStockError`` from the stock ledger on approval.
- Any exception triggers ``session.rollback()`` before re-raise.

Audit Relevance
---------------
Approval reversals are compensating credits, so on-hand stock always equals
receipts minus the usage of currently APPROVED activities.

Usage::

    service = ActivityService(session, clock)
    activity = service.create_activity(
        work_order_id=order.id, activity_type="fertilization",
        actor_id=actor_id, role=ActorRole.WORKER,
        input_usage=[UsageLineRequest(input_id, Decimal("30"))],
    )
    service.update_activity(activity.id, actor_id, status=ActivityStatus.APPROVED)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from harvest_config.schema import HarvestConfiguration
from harvest_kernel.domain.clock import Clock, SystemClock
from harvest_kernel.domain.dtos import StockMovement, UsageLineRequest
from harvest_kernel.domain.quantities import quantize
from harvest_kernel.domain.status import (
    ActivityStatus,
    ActorRole,
    WorkOrderStatus,
    status_value,
)
from harvest_kernel.domain.workflow import LedgerAction
from harvest_kernel.exceptions import (
    ImmutableActivityError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
)
from harvest_kernel.logging_config import LogContext, get_logger
from harvest_kernel.models.consumable_input import ConsumableInput
from harvest_kernel.models.work_activity import (
    WorkActivity,
    WorkActivityInputUsage,
    WorkOrder,
)
from harvest_kernel.services.stock_ledger import StockLedger
from harvest_modules.activity.workflows import ACTIVITY_WORKFLOW

logger = get_logger("modules.activity.service")

_TERMINAL_WORK_ORDER_STATUSES = (WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED)


def _parse_status(value: ActivityStatus | str) -> ActivityStatus:
    try:
        return ActivityStatus(status_value(value))
    except ValueError:
        raise InvalidRequestError(f"unknown activity status {value!r}") from None


def _validate_usage(lines: Sequence[UsageLineRequest], places: int) -> list[UsageLineRequest]:
    """Round each quantity to ledger precision; the rounded value must be positive."""
    validated = []
    for line in lines:
        quantity = None if line.quantity is None else quantize(line.quantity, places)
        if quantity is None or quantity <= 0:
            raise InvalidRequestError(
                f"usage quantity for input {line.input_id} must be positive"
            )
        validated.append(replace(line, quantity=quantity))
    return validated


class ActivityService:
    """
    Orchestrates work activities and the stock ledger.

    Contract
    --------
    Every public method either commits all of its writes (activity row,
    usage lines, stock movements) or none of them.

    Guarantees
    ----------
    - Ledger actions come from the workflow transition, never from ad hoc
      status comparisons.
    - A same-status update is a no-op for the ledger.
    - When a request both replaces usage lines and changes status, the
      lines are replaced first and the ledger action uses the new lines.

    Non-goals
    ---------
    - Role-based visibility of activities.  The caller's role matters only
      for the initial status at creation.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: HarvestConfiguration | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or HarvestConfiguration()
        self._stock = StockLedger(session, places=self._config.quantities.weight_places)

    # =========================================================================
    # Work orders
    # =========================================================================

    def create_work_order(
        self,
        title: str,
        actor_id: UUID,
        plot_id: UUID | None = None,
        status: WorkOrderStatus | str = WorkOrderStatus.PENDING,
    ) -> WorkOrder:
        """Open a work order that activities can be recorded against."""
        if not title:
            raise InvalidRequestError("work order title is required")
        try:
            status = WorkOrderStatus(status_value(status))
        except ValueError:
            raise InvalidRequestError(f"unknown work order status {status!r}") from None

        try:
            work_order = WorkOrder(
                title=title,
                plot_id=plot_id,
                status=status,
                created_by_id=actor_id,
            )
            self._session.add(work_order)
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "work_order_created",
            extra={"work_order_id": str(work_order.id), "status": status.value},
        )
        return work_order

    def set_work_order_status(
        self,
        work_order_id: UUID,
        status: WorkOrderStatus | str,
        actor_id: UUID,
    ) -> WorkOrder:
        """Move a work order to a new status.  COMPLETED and CANCELLED are final."""
        try:
            target = WorkOrderStatus(status_value(status))
        except ValueError:
            raise InvalidRequestError(f"unknown work order status {status!r}") from None

        try:
            work_order = self._session.get(WorkOrder, work_order_id)
            if work_order is None:
                raise NotFoundError("WorkOrder", str(work_order_id))
            current = WorkOrderStatus(status_value(work_order.status))
            if current in _TERMINAL_WORK_ORDER_STATUSES and target != current:
                raise InvalidStateError(
                    entity_type="WorkOrder",
                    entity_id=str(work_order_id),
                    current_status=current.value,
                    operation=f"move to {target.value}",
                )
            work_order.status = target
            work_order.updated_by_id = actor_id
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "work_order_status_changed",
            extra={
                "work_order_id": str(work_order_id),
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return work_order

    # =========================================================================
    # Activities
    # =========================================================================

    def create_activity(
        self,
        work_order_id: UUID,
        activity_type: str,
        actor_id: UUID,
        role: ActorRole | str = ActorRole.WORKER,
        status: ActivityStatus | str | None = None,
        input_usage: Sequence[UsageLineRequest] = (),
        execution_date: datetime | None = None,
        hours_worked: Decimal | None = None,
        notes: str | None = None,
    ) -> WorkActivity:
        """
        Record an activity with its usage lines.

        Preconditions:
            - The work order exists and (by default) is IN_PROGRESS.
            - Usage quantities are positive and reference live inputs.

        Postconditions:
            - A worker's activity is always PENDING.  A supervisor or admin
              may create it APPROVED (the configured default) or PENDING; an
              APPROVED activity debits its usage immediately.

        Raises:
            InvalidStateError: REJECTED requested at creation, work order
                not IN_PROGRESS, or an input is retired.
            InsufficientStockError: created APPROVED without enough stock.
        """
        if not activity_type:
            raise InvalidRequestError("activity type is required")
        input_usage = _validate_usage(input_usage, self._config.quantities.weight_places)
        try:
            role = ActorRole(status_value(role))
        except ValueError:
            raise InvalidRequestError(f"unknown actor role {role!r}") from None
        initial = self._initial_status(role, status)

        with LogContext.bind(actor_id=str(actor_id), operation="create_activity"):
            try:
                self._require_open_work_order(work_order_id, "record activity on")
                self._require_live_inputs(line.input_id for line in input_usage)

                activity = WorkActivity(
                    work_order_id=work_order_id,
                    activity_type=activity_type,
                    execution_date=execution_date or self._clock.now(),
                    hours_worked=hours_worked,
                    notes=notes,
                    status=initial,
                    created_by_id=actor_id,
                )
                activity.input_usage = [
                    WorkActivityInputUsage(
                        input_id=line.input_id,
                        quantity=line.quantity,
                        created_by_id=actor_id,
                    )
                    for line in input_usage
                ]
                self._session.add(activity)
                self._session.flush()

                if initial == ActivityStatus.APPROVED:
                    self._stock.debit(self._movements(activity))

                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "activity_created",
                extra={
                    "activity_id": str(activity.id),
                    "work_order_id": str(work_order_id),
                    "status": initial.value,
                    "usage_line_count": len(activity.input_usage),
                },
            )
        return activity

    def update_activity(
        self,
        activity_id: UUID,
        actor_id: UUID,
        status: ActivityStatus | str | None = None,
        input_usage: Sequence[UsageLineRequest] | None = None,
        hours_worked: Decimal | None = None,
        notes: str | None = None,
    ) -> WorkActivity:
        """
        Replace usage lines and/or change status.

        ``input_usage=None`` leaves the lines alone; an empty sequence
        removes them all.

        Raises:
            ImmutableActivityError: lines replaced while the persisted status
                is not PENDING.
            InvalidStateError: lines replaced while the work order is not
                IN_PROGRESS.
            InsufficientStockError: approval without enough stock.  Nothing
                is written.
        """
        target = _parse_status(status) if status is not None else None
        if input_usage is not None:
            input_usage = _validate_usage(input_usage, self._config.quantities.weight_places)

        with LogContext.bind(
            actor_id=str(actor_id),
            operation="update_activity",
            entity_id=str(activity_id),
        ):
            try:
                activity = self._lock_activity(activity_id)
                previous = _parse_status(activity.status)

                if input_usage is not None:
                    self._replace_usage(activity, previous, input_usage, actor_id)

                if hours_worked is not None:
                    activity.hours_worked = hours_worked
                if notes is not None:
                    activity.notes = notes

                ledger_action = LedgerAction.NONE
                if target is not None and target != previous:
                    ledger_action = self._transition(activity, previous, target)

                activity.updated_by_id = actor_id
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "activity_updated",
                extra={
                    "activity_id": str(activity_id),
                    "from_status": previous.value,
                    "to_status": status_value(activity.status),
                    "ledger_action": ledger_action.value,
                    "usage_replaced": input_usage is not None,
                },
            )
        return activity

    # =========================================================================
    # Internals
    # =========================================================================

    def _initial_status(
        self,
        role: ActorRole,
        requested: ActivityStatus | str | None,
    ) -> ActivityStatus:
        if role == ActorRole.WORKER:
            return ActivityStatus.PENDING
        if requested is None:
            return ActivityStatus(status_value(self._config.activity.supervisor_default_status))
        initial = _parse_status(requested)
        if initial == ActivityStatus.REJECTED:
            raise InvalidStateError(
                entity_type="WorkActivity",
                entity_id="new",
                current_status=initial.value,
                operation="create",
            )
        return initial

    def _require_open_work_order(self, work_order_id: UUID, operation: str) -> WorkOrder:
        work_order = self._session.get(WorkOrder, work_order_id)
        if work_order is None:
            raise NotFoundError("WorkOrder", str(work_order_id))
        if (
            self._config.activity.require_work_order_in_progress
            and status_value(work_order.status) != WorkOrderStatus.IN_PROGRESS.value
        ):
            raise InvalidStateError(
                entity_type="WorkOrder",
                entity_id=str(work_order_id),
                current_status=status_value(work_order.status),
                operation=operation,
            )
        return work_order

    def _require_live_inputs(self, input_ids) -> None:
        for input_id in dict.fromkeys(input_ids):
            consumable = self._session.get(ConsumableInput, input_id)
            if consumable is None:
                raise NotFoundError("ConsumableInput", str(input_id))
            if consumable.is_retired:
                raise InvalidStateError(
                    entity_type="ConsumableInput",
                    entity_id=str(input_id),
                    current_status="retired",
                    operation="record usage of",
                )

    def _lock_activity(self, activity_id: UUID) -> WorkActivity:
        activity = self._session.execute(
            select(WorkActivity)
            .where(WorkActivity.id == activity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if activity is None:
            raise NotFoundError("WorkActivity", str(activity_id))
        return activity

    def _replace_usage(
        self,
        activity: WorkActivity,
        persisted: ActivityStatus,
        input_usage: Sequence[UsageLineRequest],
        actor_id: UUID,
    ) -> None:
        if persisted != ActivityStatus.PENDING:
            raise ImmutableActivityError(activity_id=str(activity.id), status=persisted.value)
        self._require_open_work_order(activity.work_order_id, "edit usage of activity on")
        self._require_live_inputs(line.input_id for line in input_usage)

        activity.input_usage = [
            WorkActivityInputUsage(
                input_id=line.input_id,
                quantity=line.quantity,
                created_by_id=actor_id,
            )
            for line in input_usage
        ]
        self._session.flush()

        logger.info(
            "activity_usage_replaced",
            extra={
                "activity_id": str(activity.id),
                "usage_line_count": len(input_usage),
            },
        )

    def _transition(
        self,
        activity: WorkActivity,
        previous: ActivityStatus,
        target: ActivityStatus,
    ) -> LedgerAction:
        transition = ACTIVITY_WORKFLOW.find_transition(previous.value, target.value)
        if transition is None:
            raise InvalidStateError(
                entity_type="WorkActivity",
                entity_id=str(activity.id),
                current_status=previous.value,
                operation=f"move to {target.value}",
            )

        movements = self._movements(activity)
        if movements:
            if transition.ledger_action == LedgerAction.DEBIT:
                self._stock.debit(movements)
            elif transition.ledger_action == LedgerAction.CREDIT:
                self._stock.credit(movements)

        activity.status = target
        return transition.ledger_action if movements else LedgerAction.NONE

    @staticmethod
    def _movements(activity: WorkActivity) -> list[StockMovement]:
        return [
            StockMovement(input_id=usage.input_id, quantity=usage.quantity)
            for usage in activity.input_usage
        ]
