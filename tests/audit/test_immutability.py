"""
Persistence guard tests (``harvest_kernel.db.immutability``).

The services check every rule first; these tests bypass the services and
write through the session directly to prove the ORM listeners hold the
line on their own:
- Allocation and receipt records are append-only.
- Ledger balance columns change only inside ``ledger_write_scope``.
- A new demand line cannot arrive with a shipped quantity.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from harvest_kernel.db.immutability import (
    LEDGER_COLUMNS,
    in_ledger_write_scope,
    ledger_write_scope,
    register_immutability_listeners,
)
from harvest_kernel.domain.dtos import LotAllocationRequest
from harvest_kernel.domain.status import DemandLineStatus, HarvestLotStatus, SalesOrderStatus
from harvest_kernel.exceptions import DerivedFieldError, ImmutabilityViolationError
from harvest_kernel.models.sales_order import SalesOrder, SalesOrderDetail
from harvest_kernel.models.shipment import ShipmentLotDetail


@pytest.fixture
def allocation(session, create_lot, create_order, shipment_service, test_actor_id):
    lot = create_lot(net_weight_kg=Decimal("1000"))
    order = create_order(("18", "Hass", Decimal("500")))
    shipment = shipment_service.create_shipment(
        order.id,
        [LotAllocationRequest(lot.id, order.lines[0].id, Decimal("400"))],
        test_actor_id,
    )
    return session.execute(
        select(ShipmentLotDetail).where(ShipmentLotDetail.shipment_id == shipment.id)
    ).scalar_one()


class TestAllocationRecords:

    def test_quantity_cannot_change(self, session, allocation):
        allocation.quantity_taken_kg = Decimal("1")
        with pytest.raises(ImmutabilityViolationError, match="quantity_taken_kg"):
            session.flush()
        session.rollback()

    def test_cannot_be_deleted(self, session, allocation):
        session.delete(allocation)
        with pytest.raises(ImmutabilityViolationError, match="cannot be deleted"):
            session.flush()
        session.rollback()

    def test_audit_fields_may_change(self, session, allocation):
        allocation.updated_by_id = uuid4()
        session.flush()

    def test_blocked_write_is_logged(self, session, allocation, captured_logs):
        allocation.quantity_taken_kg = Decimal("1")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["entity_type"] == "ShipmentLotDetail"
        assert blocked[0]["reason"] == "append_only_record"
        assert blocked[0]["level"] == "ERROR"


class TestLedgerColumns:

    def test_registry(self):
        assert LEDGER_COLUMNS["HarvestLot"] == ("remaining_net_weight_kg", "status")
        assert LEDGER_COLUMNS["SalesOrderDetail"] == ("quantity_shipped", "status")
        assert LEDGER_COLUMNS["ConsumableInput"] == ("on_hand_quantity", "unit_cost")

    def test_lot_remaining_outside_scope(self, session, create_lot):
        lot = create_lot()
        lot.remaining_net_weight_kg = Decimal("999")
        with pytest.raises(DerivedFieldError, match="remaining_net_weight_kg"):
            session.flush()
        session.rollback()

    def test_lot_status_outside_scope(self, session, create_lot):
        lot = create_lot()
        lot.status = HarvestLotStatus.SOLD_OUT
        with pytest.raises(DerivedFieldError):
            session.flush()
        session.rollback()

    def test_lot_cannot_be_declassified(self, session, create_lot):
        lot = create_lot()
        with ledger_write_scope(session):
            lot.status = HarvestLotStatus.PENDING_CLASSIFICATION
            with pytest.raises(ImmutabilityViolationError, match="pending classification"):
                session.flush()
        session.rollback()

    def test_line_quantity_shipped_outside_scope(self, session, create_order):
        order = create_order()
        line = order.lines[0]
        line.quantity_shipped = Decimal("10")
        with pytest.raises(DerivedFieldError, match="quantity_shipped"):
            session.flush()
        session.rollback()

    def test_inside_scope_allowed(self, session, create_order):
        order = create_order()
        line = order.lines[0]
        with ledger_write_scope(session):
            line.status = DemandLineStatus.PARTIALLY_FILLED
            session.flush()
        assert line.status == DemandLineStatus.PARTIALLY_FILLED

    def test_scope_nests_and_unwinds(self, session):
        assert not in_ledger_write_scope(session)
        with ledger_write_scope(session):
            with ledger_write_scope(session):
                assert in_ledger_write_scope(session)
            assert in_ledger_write_scope(session)
        assert not in_ledger_write_scope(session)

    def test_scope_unwinds_on_error(self, session):
        with pytest.raises(RuntimeError):
            with ledger_write_scope(session):
                raise RuntimeError("fail")
        assert not in_ledger_write_scope(session)


class TestDemandLineInsert:

    def test_preset_shipped_quantity_rejected(self, session, test_actor_id):
        order = SalesOrder(
            customer_id=uuid4(),
            status=SalesOrderStatus.APPROVED,
            total_amount=Decimal("30"),
            created_by_id=test_actor_id,
        )
        order.lines = [
            SalesOrderDetail(
                line_number=1,
                caliber="18",
                variety="Hass",
                quantity_kg=Decimal("10"),
                unit_price=Decimal("3"),
                quantity_shipped=Decimal("10"),
                status=DemandLineStatus.FILLED,
                created_by_id=test_actor_id,
            )
        ]
        session.add(order)
        with pytest.raises(DerivedFieldError):
            session.flush()
        session.rollback()


class TestRegistration:

    def test_registration_is_idempotent(self, session, captured_logs):
        register_immutability_listeners()
        registered = [r for r in captured_logs() if r["message"] == "immutability_listeners_registered"]
        assert registered[-1]["count"] == 0
