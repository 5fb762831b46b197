"""
Consumable Input Module Service (``harvest_modules.inputs.service``).

Registers consumable inputs and retires them.  An opening balance is
booked through ``StockLedger.receive`` so that on-hand quantity and unit
cost are only ever written by the ledger.  Retirement is a soft delete;
an input that usage lines reference is kept as is.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from harvest_config.schema import HarvestConfiguration
from harvest_kernel.domain.clock import Clock, SystemClock
from harvest_kernel.exceptions import (
    DuplicateInputNameError,
    InputReferencedError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
)
from harvest_kernel.logging_config import LogContext, get_logger
from harvest_kernel.models.consumable_input import ConsumableInput
from harvest_kernel.models.work_activity import WorkActivityInputUsage
from harvest_kernel.services.stock_ledger import StockLedger

logger = get_logger("modules.inputs.service")


class InputService:
    """Consumable-input catalogue maintenance."""

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

    def register_input(
        self,
        name: str,
        unit: str,
        actor_id: UUID,
        opening_quantity: Decimal = Decimal("0"),
        unit_cost: Decimal = Decimal("0"),
    ) -> ConsumableInput:
        """
        Create an input, optionally with stock already on hand.

        Raises:
            DuplicateInputNameError: another input (retired or not) has the name.
        """
        if not name or not name.strip():
            raise InvalidRequestError("input name is required")
        if not unit or not unit.strip():
            raise InvalidRequestError("input unit of measure is required")
        if opening_quantity < 0:
            raise InvalidRequestError("opening quantity cannot be negative")
        if unit_cost < 0:
            raise InvalidRequestError("unit cost cannot be negative")
        name = name.strip()

        with LogContext.bind(actor_id=str(actor_id), operation="register_input"):
            try:
                existing = self._session.execute(
                    select(ConsumableInput.id).where(ConsumableInput.name == name)
                ).scalar_one_or_none()
                if existing is not None:
                    raise DuplicateInputNameError(name)

                consumable = ConsumableInput(
                    name=name,
                    unit=unit.strip(),
                    on_hand_quantity=Decimal("0"),
                    unit_cost=Decimal("0"),
                    created_by_id=actor_id,
                )
                self._session.add(consumable)
                self._session.flush()

                if opening_quantity > 0:
                    self._stock.receive(consumable.id, opening_quantity, unit_cost)

                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "consumable_input_registered",
                extra={
                    "input_id": str(consumable.id),
                    "input_name": name,
                    "on_hand_quantity": str(consumable.on_hand_quantity),
                },
            )
        return consumable

    def retire_input(self, input_id: UUID, actor_id: UUID) -> ConsumableInput:
        """
        Soft-delete an input that no usage line references.

        Raises:
            NotFoundError: no such input.
            InvalidStateError: already retired.
            InputReferencedError: usage lines reference the input.
        """
        with LogContext.bind(
            actor_id=str(actor_id), operation="retire_input", entity_id=str(input_id)
        ):
            try:
                consumable = self._stock.lock_inputs([input_id])[input_id]
                if consumable.is_retired:
                    raise InvalidStateError(
                        entity_type="ConsumableInput",
                        entity_id=str(input_id),
                        current_status="retired",
                        operation="retire",
                    )
                usage_count = self._session.execute(
                    select(func.count(WorkActivityInputUsage.id)).where(
                        WorkActivityInputUsage.input_id == input_id
                    )
                ).scalar_one()
                if usage_count:
                    raise InputReferencedError(input_id=str(input_id), usage_count=usage_count)

                consumable.deleted_at = self._clock.now()
                consumable.updated_by_id = actor_id
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info("consumable_input_retired", extra={"input_id": str(input_id)})
        return consumable

    def get_input(self, input_id: UUID) -> ConsumableInput:
        consumable = self._session.get(ConsumableInput, input_id)
        if consumable is None:
            raise NotFoundError("ConsumableInput", str(input_id))
        return consumable
