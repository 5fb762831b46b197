"""
Tests for the read-only selectors.

- StockSelector reconciles stored balances against allocation records.
- TraceSelector walks lot -> allocation -> demand line -> order and back.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from harvest_kernel.domain.dtos import LotAllocationRequest
from harvest_kernel.exceptions import NotFoundError
from harvest_kernel.selectors.stock_selector import StockSelector
from harvest_kernel.selectors.trace_selector import TraceSelector


@pytest.fixture
def shipped(create_lot, create_order, shipment_service, test_actor_id, deterministic_clock):
    """Two shipments drawing one lot across two orders."""
    lot = create_lot(net_weight_kg=Decimal("1000"))
    first_order = create_order(("18", "Hass", Decimal("500")))
    second_order = create_order(("18", "Hass", Decimal("300")))

    first = shipment_service.create_shipment(
        first_order.id,
        [LotAllocationRequest(lot.id, first_order.lines[0].id, Decimal("400"))],
        test_actor_id,
        tracking_number="TRK-1",
    )
    deterministic_clock.advance(3600)
    second = shipment_service.create_shipment(
        second_order.id,
        [LotAllocationRequest(lot.id, second_order.lines[0].id, Decimal("300"))],
        test_actor_id,
    )
    return lot, first_order, second_order, first, second


class TestStockSelector:

    def test_lot_reconciles(self, session, shipped):
        lot = shipped[0]
        report = StockSelector(session).reconcile_lot(lot.id)

        assert report.allocated_kg == Decimal("700")
        assert report.allocation_count == 2
        assert report.remaining_net_weight_kg == Decimal("300")
        assert report.is_consistent

    def test_line_reconciles(self, session, shipped):
        first_order = shipped[1]
        report = StockSelector(session).reconcile_line(first_order.lines[0].id)

        assert report.quantity_shipped == Decimal("400")
        assert report.allocated_kg == Decimal("400")
        assert report.is_consistent

    def test_unclassified_lot_is_consistent(self, session, create_lot):
        lot = create_lot(net_weight_kg=None)
        report = StockSelector(session).reconcile_lot(lot.id)
        assert report.allocation_count == 0
        assert report.is_consistent

    def test_no_inconsistent_lots(self, session, shipped):
        assert StockSelector(session).inconsistent_lots() == []

    def test_unknown_lot(self, session):
        with pytest.raises(NotFoundError):
            StockSelector(session).reconcile_lot(uuid4())


class TestTraceSelector:

    def test_backward_trace(self, session, shipped):
        lot, first_order, _, first, _ = shipped
        allocation = first.lot_details[0]

        report = TraceSelector(session).trace_allocation(allocation.id)

        assert report.lot.lot_id == lot.id
        assert report.lot.lot_code == lot.lot_code
        assert report.lot.status == "in_stock"
        assert report.allocation.quantity_taken_kg == Decimal("400")
        assert report.demand_line.line_id == first_order.lines[0].id
        assert report.demand_line.status == "partially_filled"
        assert report.shipment.tracking_number == "TRK-1"
        assert report.order.sales_order_id == first_order.id
        assert report.order.customer_id == first_order.customer_id

    def test_forward_trace(self, session, shipped):
        lot, first_order, second_order, first, second = shipped

        destinations = TraceSelector(session).lot_destinations(lot.id)

        assert [d.sales_order_id for d in destinations] == [first_order.id, second_order.id]
        assert [d.shipment_id for d in destinations] == [first.id, second.id]
        assert sum(d.quantity_taken_kg for d in destinations) == Decimal("700")

    def test_unknown_allocation(self, session):
        with pytest.raises(NotFoundError):
            TraceSelector(session).trace_allocation(uuid4())

    def test_lot_without_shipments(self, session, create_lot):
        lot = create_lot()
        assert TraceSelector(session).lot_destinations(lot.id) == []
