"""
Tests for HarvestLotService (``harvest_modules.harvest.service``).

Validates registration, pre-classification amendments and the one-time
classification that opens the lot's ledger balance.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from harvest_kernel.domain.status import HarvestLotStatus
from harvest_kernel.exceptions import (
    DuplicateLotCodeError,
    ImmutabilityViolationError,
    InvalidClassificationError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
)


class TestRegisterLot:

    def test_registered_lot_awaits_classification(self, create_lot):
        lot = create_lot(net_weight_kg=None)

        assert lot.status == HarvestLotStatus.PENDING_CLASSIFICATION
        assert lot.gross_weight_kg == Decimal("1200")
        assert lot.net_weight_kg is None
        assert lot.remaining_net_weight_kg is None
        assert lot.missing_classification == ["variety_name", "caliber", "net_weight_kg"]

    def test_duplicate_lot_code(self, harvest_service, create_lot, test_actor_id):
        create_lot(net_weight_kg=None, lot_code="LOT-A")
        with pytest.raises(DuplicateLotCodeError) as exc_info:
            harvest_service.register_lot(
                plot_id=uuid4(),
                harvest_date=date(2024, 3, 16),
                lot_code="LOT-A",
                gross_weight_kg=Decimal("900"),
                actor_id=test_actor_id,
            )
        assert exc_info.value.lot_code == "LOT-A"

    @pytest.mark.parametrize("gross", [Decimal("0"), Decimal("-5"), Decimal("0.004")])
    def test_gross_must_be_positive(self, harvest_service, test_actor_id, gross):
        with pytest.raises(InvalidRequestError):
            harvest_service.register_lot(
                plot_id=uuid4(),
                harvest_date=date(2024, 3, 16),
                lot_code="LOT-X",
                gross_weight_kg=gross,
                actor_id=test_actor_id,
            )

    def test_lot_code_required(self, harvest_service, test_actor_id):
        with pytest.raises(InvalidRequestError):
            harvest_service.register_lot(
                plot_id=uuid4(),
                harvest_date=date(2024, 3, 16),
                lot_code="  ",
                gross_weight_kg=Decimal("10"),
                actor_id=test_actor_id,
            )


class TestAmendLot:

    def test_amend_before_classification(self, harvest_service, create_lot, test_actor_id):
        lot = create_lot(net_weight_kg=None)
        amended = harvest_service.amend_lot(
            lot.id,
            test_actor_id,
            gross_weight_kg=Decimal("1250.555"),
            variety_name="Hass",
        )
        assert amended.gross_weight_kg == Decimal("1250.56")
        assert amended.variety_name == "Hass"

    def test_amend_after_classification_refused(self, harvest_service, create_lot, test_actor_id):
        lot = create_lot()
        with pytest.raises(InvalidStateError):
            harvest_service.amend_lot(lot.id, test_actor_id, gross_weight_kg=Decimal("1300"))

    def test_amend_to_taken_code(self, harvest_service, create_lot, test_actor_id):
        create_lot(net_weight_kg=None, lot_code="LOT-A")
        lot = create_lot(net_weight_kg=None, lot_code="LOT-B")
        with pytest.raises(DuplicateLotCodeError):
            harvest_service.amend_lot(lot.id, test_actor_id, lot_code="LOT-A")

    def test_amend_unknown_lot(self, harvest_service, test_actor_id):
        with pytest.raises(NotFoundError):
            harvest_service.amend_lot(uuid4(), test_actor_id, caliber="20")


class TestClassifyLot:

    def test_classification_opens_balance(self, create_lot, captured_logs):
        lot = create_lot(net_weight_kg=Decimal("1000"), gross_weight_kg=Decimal("1200"))

        assert lot.status == HarvestLotStatus.IN_STOCK
        assert lot.variety_name == "Hass"
        assert lot.caliber == "18"
        assert lot.net_weight_kg == Decimal("1000")
        assert lot.remaining_net_weight_kg == Decimal("1000")
        assert lot.yield_percentage == Decimal("83.33")
        assert lot.missing_classification == []

        messages = [r["message"] for r in captured_logs()]
        assert "lot_balance_opened" in messages
        assert "harvest_lot_classified" in messages

    def test_net_equal_to_gross_allowed(self, create_lot):
        lot = create_lot(net_weight_kg=Decimal("500"), gross_weight_kg=Decimal("500"))
        assert lot.yield_percentage == Decimal("100")

    def test_net_above_gross_refused(self, session, harvest_service, create_lot, test_actor_id):
        lot = create_lot(net_weight_kg=None, gross_weight_kg=Decimal("500"))

        with pytest.raises(InvalidClassificationError):
            harvest_service.classify_lot(
                lot.id, variety="Hass", caliber="18",
                net_weight_kg=Decimal("500.01"), actor_id=test_actor_id,
            )

        session.refresh(lot)
        assert lot.status == HarvestLotStatus.PENDING_CLASSIFICATION
        assert lot.net_weight_kg is None

    def test_classification_happens_once(self, harvest_service, create_lot, test_actor_id):
        lot = create_lot()
        with pytest.raises(InvalidStateError) as exc_info:
            harvest_service.classify_lot(
                lot.id, variety="Fuerte", caliber="20",
                net_weight_kg=Decimal("900"), actor_id=test_actor_id,
            )
        assert exc_info.value.operation == "classify"

    @pytest.mark.parametrize(
        "variety, caliber, net",
        [
            ("", "18", Decimal("100")),
            ("Hass", " ", Decimal("100")),
            ("Hass", "18", Decimal("0")),
            ("Hass", "18", Decimal("0.004")),
        ],
    )
    def test_incomplete_classification_refused(
        self, harvest_service, create_lot, test_actor_id, variety, caliber, net,
    ):
        lot = create_lot(net_weight_kg=None)
        with pytest.raises(InvalidRequestError):
            harvest_service.classify_lot(
                lot.id, variety=variety, caliber=caliber,
                net_weight_kg=net, actor_id=test_actor_id,
            )

    def test_net_weight_rounding_to_zero_leaves_lot_pending(
        self, session, harvest_service, create_lot, test_actor_id,
    ):
        lot = create_lot(net_weight_kg=None)
        with pytest.raises(InvalidRequestError):
            harvest_service.classify_lot(
                lot.id, variety="Hass", caliber="18",
                net_weight_kg=Decimal("0.004"), actor_id=test_actor_id,
            )
        session.refresh(lot)
        assert lot.status == HarvestLotStatus.PENDING_CLASSIFICATION
        assert lot.remaining_net_weight_kg is None

    def test_net_weight_rounded_to_precision(self, create_lot):
        lot = create_lot(net_weight_kg=Decimal("812.345"))
        assert lot.net_weight_kg == Decimal("812.35")
        assert lot.remaining_net_weight_kg == Decimal("812.35")

    def test_classification_may_assign_code(self, harvest_service, create_lot, test_actor_id):
        lot = create_lot(net_weight_kg=None, lot_code="TMP-1")
        classified = harvest_service.classify_lot(
            lot.id, variety="Hass", caliber="16",
            net_weight_kg=Decimal("700"), actor_id=test_actor_id,
            lot_code="LOT-2024-031",
        )
        assert classified.lot_code == "LOT-2024-031"

    def test_classified_fields_frozen_by_guard(self, session, create_lot):
        """Bypassing the service does not get past the persistence guard."""
        lot = create_lot()
        lot.caliber = "22"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
