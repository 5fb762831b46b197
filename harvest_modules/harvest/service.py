"""
Harvest Lot Module Service (``harvest_modules.harvest.service``).

Responsibility
--------------
Registers harvested lots, lets them be corrected while they wait for the
packing line, and classifies them exactly once.  Classification fixes
variety, caliber and net weight, derives the yield, and opens the lot's
balance in ``HarvestLotLedger``.

Invariants
----------
- Each public method owns its transaction boundary (commit / rollback).
- lot_code is unique across all lots.
- net_weight_kg <= gross_weight_kg; yield = net / gross * 100.
- After classification the lot's identity and weights never change
  (enforced again by db/immutability.py).

Failure Modes
-------------
- ``DuplicateLotCodeError`` on a lot code already in use.
- ``InvalidStateError`` when amending or classifying a lot that has left
  PENDING_CLASSIFICATION.
- ``InvalidClassificationError`` when net weight exceeds gross weight.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from harvest_config.schema import HarvestConfiguration
from harvest_kernel.domain.quantities import percentage, quantize
from harvest_kernel.domain.status import HarvestLotStatus, status_value
from harvest_kernel.exceptions import (
    DuplicateLotCodeError,
    InvalidClassificationError,
    InvalidRequestError,
    InvalidStateError,
)
from harvest_kernel.logging_config import LogContext, get_logger
from harvest_kernel.models.harvest_lot import HarvestLot
from harvest_kernel.services.lot_ledger import HarvestLotLedger
from harvest_modules.harvest.workflows import HARVEST_LOT_WORKFLOW

logger = get_logger("modules.harvest.service")


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise InvalidRequestError(f"{field} is required")
    return value.strip()


def _require_positive(value: Decimal | None, field: str, places: int) -> Decimal:
    """Round to ledger precision; the rounded value must be positive."""
    if value is None or quantize(value, places) <= 0:
        raise InvalidRequestError(f"{field} must be positive")
    return quantize(value, places)


class HarvestLotService:
    """
    Orchestrates the harvest-lot lifecycle up to classification.

    Contract
    --------
    After ``classify_lot`` returns, the lot is IN_STOCK with
    remaining_net_weight_kg == net_weight_kg.  From then on only the
    shipment allocation engine changes it.
    """

    def __init__(
        self,
        session: Session,
        config: HarvestConfiguration | None = None,
    ):
        self._session = session
        self._config = config or HarvestConfiguration()
        self._places = self._config.quantities.weight_places
        self._lots = HarvestLotLedger(session, places=self._places)

    def register_lot(
        self,
        plot_id: UUID,
        harvest_date: date,
        lot_code: str,
        gross_weight_kg: Decimal,
        actor_id: UUID,
        variety_name: str | None = None,
        caliber: str | None = None,
    ) -> HarvestLot:
        """Create a lot in PENDING_CLASSIFICATION with only its gross weight known."""
        lot_code = _require_text(lot_code, "lot_code")
        gross_weight_kg = _require_positive(gross_weight_kg, "gross_weight_kg", self._places)

        with LogContext.bind(actor_id=str(actor_id), operation="register_lot"):
            try:
                self._require_unused_code(lot_code)
                lot = HarvestLot(
                    plot_id=plot_id,
                    harvest_date=harvest_date,
                    lot_code=lot_code,
                    gross_weight_kg=quantize(gross_weight_kg, self._places),
                    variety_name=variety_name,
                    caliber=caliber,
                    status=HarvestLotStatus.PENDING_CLASSIFICATION,
                    created_by_id=actor_id,
                )
                self._session.add(lot)
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "harvest_lot_registered",
                extra={
                    "lot_id": str(lot.id),
                    "lot_code": lot_code,
                    "gross_weight_kg": str(lot.gross_weight_kg),
                },
            )
        return lot

    def amend_lot(
        self,
        lot_id: UUID,
        actor_id: UUID,
        *,
        plot_id: UUID | None = None,
        harvest_date: date | None = None,
        lot_code: str | None = None,
        variety_name: str | None = None,
        caliber: str | None = None,
        gross_weight_kg: Decimal | None = None,
    ) -> HarvestLot:
        """
        Correct a lot that has not been classified yet.  Arguments left as
        None are not changed.
        """
        if gross_weight_kg is not None:
            _require_positive(gross_weight_kg, "gross_weight_kg", self._places)
        if lot_code is not None:
            lot_code = _require_text(lot_code, "lot_code")

        with LogContext.bind(
            actor_id=str(actor_id), operation="amend_lot", entity_id=str(lot_id)
        ):
            try:
                lot = self._lots.lock_lot(lot_id)
                self._require_pending(lot, "amend")

                if lot_code is not None and lot_code != lot.lot_code:
                    self._require_unused_code(lot_code)
                    lot.lot_code = lot_code
                if plot_id is not None:
                    lot.plot_id = plot_id
                if harvest_date is not None:
                    lot.harvest_date = harvest_date
                if variety_name is not None:
                    lot.variety_name = variety_name
                if caliber is not None:
                    lot.caliber = caliber
                if gross_weight_kg is not None:
                    lot.gross_weight_kg = quantize(gross_weight_kg, self._places)

                lot.updated_by_id = actor_id
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info("harvest_lot_amended", extra={"lot_id": str(lot_id)})
        return lot

    def classify_lot(
        self,
        lot_id: UUID,
        variety: str,
        caliber: str,
        net_weight_kg: Decimal,
        actor_id: UUID,
        lot_code: str | None = None,
    ) -> HarvestLot:
        """
        One-time classification: PENDING_CLASSIFICATION -> IN_STOCK.

        Postconditions:
            - variety_name, caliber and net_weight_kg are set.
            - yield_percentage = net / gross * 100, rounded to the weight
              precision.
            - remaining_net_weight_kg == net_weight_kg.

        Raises:
            NotFoundError: no such lot.
            InvalidStateError: the lot was already classified.
            InvalidClassificationError: net weight exceeds gross weight.
            DuplicateLotCodeError: the new lot code is taken.
        """
        variety = _require_text(variety, "variety")
        caliber = _require_text(caliber, "caliber")
        net_weight_kg = _require_positive(net_weight_kg, "net_weight_kg", self._places)
        if lot_code is not None:
            lot_code = _require_text(lot_code, "lot_code")

        with LogContext.bind(
            actor_id=str(actor_id), operation="classify_lot", entity_id=str(lot_id)
        ):
            try:
                lot = self._lots.lock_lot(lot_id)
                transition = HARVEST_LOT_WORKFLOW.find_transition(
                    status_value(lot.status), HarvestLotStatus.IN_STOCK.value
                )
                if transition is None:
                    raise InvalidStateError(
                        entity_type="HarvestLot",
                        entity_id=str(lot.id),
                        current_status=status_value(lot.status),
                        operation="classify",
                    )

                net = quantize(net_weight_kg, self._places)
                if net > lot.gross_weight_kg:
                    raise InvalidClassificationError(
                        lot_id=str(lot_id),
                        reason=(
                            f"net weight {net} kg exceeds gross weight "
                            f"{lot.gross_weight_kg} kg"
                        ),
                    )
                if lot_code is not None and lot_code != lot.lot_code:
                    self._require_unused_code(lot_code)
                    lot.lot_code = lot_code

                lot.variety_name = variety
                lot.caliber = caliber
                lot.net_weight_kg = net
                lot.yield_percentage = percentage(net, lot.gross_weight_kg, self._places)
                lot.updated_by_id = actor_id
                self._lots.open_balance(lot, net)

                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "harvest_lot_classified",
                extra={
                    "lot_id": str(lot_id),
                    "lot_code": lot.lot_code,
                    "variety": variety,
                    "caliber": caliber,
                    "net_weight_kg": str(net),
                    "yield_percentage": str(lot.yield_percentage),
                },
            )
        return lot

    def _require_pending(self, lot: HarvestLot, operation: str) -> None:
        if status_value(lot.status) != HarvestLotStatus.PENDING_CLASSIFICATION.value:
            raise InvalidStateError(
                entity_type="HarvestLot",
                entity_id=str(lot.id),
                current_status=status_value(lot.status),
                operation=operation,
            )

    def _require_unused_code(self, lot_code: str) -> None:
        existing = self._session.execute(
            select(HarvestLot.id).where(HarvestLot.lot_code == lot_code)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateLotCodeError(lot_code)
