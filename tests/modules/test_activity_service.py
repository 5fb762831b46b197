"""
Tests for ActivityService (``harvest_modules.activity.service``).

Validates:
- Approval debits usage from on-hand stock; leaving APPROVED credits it back.
- A failed approval applies nothing (all-or-nothing across inputs).
- Usage lines are frozen once the activity leaves PENDING.
- Creation rules by role: workers always submit PENDING; supervisors may
  create APPROVED (debiting immediately) but never REJECTED.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from harvest_kernel.domain.dtos import UsageLineRequest
from harvest_kernel.domain.status import ActivityStatus, ActorRole, WorkOrderStatus
from harvest_kernel.exceptions import (
    ImmutableActivityError,
    InsufficientStockError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
)
from harvest_kernel.models.work_activity import WorkActivityInputUsage


class TestApprovalLedger:
    """Status transitions drive debits and credits."""

    def test_approve_debits_and_reject_credits(
        self, session, activity_service, create_input, create_activity, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("100"))
        activity = create_activity((fertilizer, Decimal("30")))

        activity_service.update_activity(activity.id, test_actor_id, status=ActivityStatus.APPROVED)
        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("70")

        activity_service.update_activity(activity.id, test_actor_id, status=ActivityStatus.REJECTED)
        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("100")
        assert activity.status == ActivityStatus.REJECTED

    def test_approve_reject_approve_cycle(
        self, session, activity_service, create_input, create_activity, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("100"))
        activity = create_activity((fertilizer, Decimal("30")))

        balances = []
        for status in (
            ActivityStatus.APPROVED,
            ActivityStatus.REJECTED,
            ActivityStatus.APPROVED,
        ):
            activity_service.update_activity(activity.id, test_actor_id, status=status)
            session.refresh(fertilizer)
            balances.append(fertilizer.on_hand_quantity)

        assert balances == [Decimal("70"), Decimal("100"), Decimal("70")]

    def test_fractional_usage_cycles_return_exact_stock(
        self, session, activity_service, create_input, create_activity, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("100"))
        activity = create_activity((fertilizer, Decimal("0.005")))
        assert activity.input_usage[0].quantity == Decimal("0.01")

        balances = []
        for status in (
            ActivityStatus.APPROVED,
            ActivityStatus.REJECTED,
            ActivityStatus.APPROVED,
            ActivityStatus.REJECTED,
        ):
            activity_service.update_activity(activity.id, test_actor_id, status=status)
            session.refresh(fertilizer)
            balances.append(fertilizer.on_hand_quantity)

        assert balances == [Decimal("99.99"), Decimal("100"), Decimal("99.99"), Decimal("100")]

    def test_reopen_credits(
        self, session, activity_service, create_input, create_activity, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("100"))
        activity = create_activity((fertilizer, Decimal("30")))
        activity_service.update_activity(activity.id, test_actor_id, status="approved")

        activity_service.update_activity(activity.id, test_actor_id, status="pending")

        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("100")
        assert activity.status == ActivityStatus.PENDING

    def test_rejected_to_pending_has_no_ledger_effect(
        self, session, activity_service, create_input, create_activity, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("100"))
        activity = create_activity((fertilizer, Decimal("30")))
        activity_service.update_activity(activity.id, test_actor_id, status="rejected")
        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("100")

        activity_service.update_activity(activity.id, test_actor_id, status="pending")

        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("100")

    def test_same_status_is_ledger_noop(
        self, session, activity_service, create_input, create_activity,
        test_actor_id, captured_logs,
    ):
        fertilizer = create_input(quantity=Decimal("100"))
        activity = create_activity((fertilizer, Decimal("30")))
        activity_service.update_activity(activity.id, test_actor_id, status="approved")

        activity_service.update_activity(activity.id, test_actor_id, status="approved")

        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("70")
        updates = [r for r in captured_logs() if r["message"] == "activity_updated"]
        assert [r["ledger_action"] for r in updates] == ["debit", "none"]

    def test_activity_without_usage_changes_no_stock(
        self, activity_service, create_activity, test_actor_id,
    ):
        activity = create_activity()
        updated = activity_service.update_activity(
            activity.id, test_actor_id, status=ActivityStatus.APPROVED
        )
        assert updated.status == ActivityStatus.APPROVED
        assert updated.input_usage == []

    def test_multiple_inputs_debited_together(
        self, session, activity_service, create_input, create_activity, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("100"))
        fungicide = create_input(quantity=Decimal("20"), unit="l")
        activity = create_activity((fertilizer, Decimal("30")), (fungicide, Decimal("5.5")))

        activity_service.update_activity(activity.id, test_actor_id, status="approved")

        session.refresh(fertilizer)
        session.refresh(fungicide)
        assert fertilizer.on_hand_quantity == Decimal("70")
        assert fungicide.on_hand_quantity == Decimal("14.5")


class TestApprovalFailures:
    """Failed approvals leave activity and stock untouched."""

    def test_insufficient_stock_applies_nothing(
        self, session, activity_service, create_input, create_activity, test_actor_id,
    ):
        plenty = create_input(quantity=Decimal("100"))
        scarce = create_input(quantity=Decimal("10"))
        activity = create_activity((plenty, Decimal("30")), (scarce, Decimal("20")))

        with pytest.raises(InsufficientStockError) as exc_info:
            activity_service.update_activity(activity.id, test_actor_id, status="approved")

        assert exc_info.value.resource_id == str(scarce.id)
        assert exc_info.value.available == Decimal("10")
        assert exc_info.value.requested == Decimal("20")
        session.refresh(plenty)
        session.refresh(scarce)
        session.refresh(activity)
        assert plenty.on_hand_quantity == Decimal("100")
        assert scarce.on_hand_quantity == Decimal("10")
        assert activity.status == ActivityStatus.PENDING

    def test_repeated_input_is_checked_in_aggregate(
        self, session, activity_service, create_input, create_activity, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("50"))
        activity = create_activity((fertilizer, Decimal("30")), (fertilizer, Decimal("30")))

        with pytest.raises(InsufficientStockError):
            activity_service.update_activity(activity.id, test_actor_id, status="approved")

        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("50")

    def test_exact_stock_can_be_consumed(
        self, session, activity_service, create_input, create_activity, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("30"))
        activity = create_activity((fertilizer, Decimal("30")))

        activity_service.update_activity(activity.id, test_actor_id, status="approved")

        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("0")

    def test_unknown_activity(self, activity_service, test_actor_id):
        with pytest.raises(NotFoundError):
            activity_service.update_activity(uuid4(), test_actor_id, status="approved")

    def test_unknown_status(self, activity_service, create_activity, test_actor_id):
        activity = create_activity()
        with pytest.raises(InvalidRequestError):
            activity_service.update_activity(activity.id, test_actor_id, status="done")


class TestUsageLines:
    """Usage lines may only change while the activity is PENDING."""

    def test_replace_usage_while_pending(
        self, session, activity_service, create_input, create_activity, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("100"))
        activity = create_activity((fertilizer, Decimal("30")))

        updated = activity_service.update_activity(
            activity.id,
            test_actor_id,
            input_usage=[UsageLineRequest(fertilizer.id, Decimal("45"))],
        )

        assert [u.quantity for u in updated.input_usage] == [Decimal("45")]
        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("100")

    def test_replace_and_approve_uses_new_lines(
        self, session, activity_service, create_input, create_activity, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("100"))
        activity = create_activity((fertilizer, Decimal("30")))

        activity_service.update_activity(
            activity.id,
            test_actor_id,
            status="approved",
            input_usage=[UsageLineRequest(fertilizer.id, Decimal("40"))],
        )

        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("60")

    def test_approved_usage_is_immutable(
        self, session, activity_service, create_input, create_activity, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("100"))
        activity = create_activity((fertilizer, Decimal("30")))
        activity_service.update_activity(activity.id, test_actor_id, status="approved")

        with pytest.raises(ImmutableActivityError):
            activity_service.update_activity(
                activity.id,
                test_actor_id,
                input_usage=[UsageLineRequest(fertilizer.id, Decimal("10"))],
            )

        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("70")

    def test_rejected_usage_is_immutable(
        self, activity_service, create_input, create_activity, test_actor_id,
    ):
        fertilizer = create_input()
        activity = create_activity((fertilizer, Decimal("30")))
        activity_service.update_activity(activity.id, test_actor_id, status="rejected")

        with pytest.raises(ImmutableActivityError):
            activity_service.update_activity(activity.id, test_actor_id, input_usage=[])

    def test_usage_frozen_when_work_order_closed(
        self, activity_service, create_input, create_activity, open_work_order, test_actor_id,
    ):
        fertilizer = create_input()
        activity = create_activity((fertilizer, Decimal("30")))
        activity_service.set_work_order_status(
            open_work_order.id, WorkOrderStatus.UNDER_REVIEW, test_actor_id
        )

        with pytest.raises(InvalidStateError):
            activity_service.update_activity(
                activity.id,
                test_actor_id,
                input_usage=[UsageLineRequest(fertilizer.id, Decimal("1"))],
            )

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("0.004")])
    def test_non_positive_quantity_rejected(
        self, activity_service, create_input, create_activity, test_actor_id, quantity,
    ):
        fertilizer = create_input()
        activity = create_activity()
        with pytest.raises(InvalidRequestError):
            activity_service.update_activity(
                activity.id,
                test_actor_id,
                input_usage=[UsageLineRequest(fertilizer.id, quantity)],
            )

    def test_sub_precision_quantity_rejected_at_creation(
        self, activity_service, create_input, open_work_order, test_actor_id,
    ):
        fertilizer = create_input()
        with pytest.raises(InvalidRequestError):
            activity_service.create_activity(
                open_work_order.id,
                "fertilization",
                test_actor_id,
                input_usage=[UsageLineRequest(fertilizer.id, Decimal("0.004"))],
            )

    def test_direct_usage_edit_blocked_after_approval(
        self, session, activity_service, create_input, create_activity, test_actor_id,
    ):
        """The persistence guard rejects edits that bypass the service."""
        fertilizer = create_input()
        activity = create_activity((fertilizer, Decimal("30")))
        activity_service.update_activity(activity.id, test_actor_id, status="approved")

        usage = session.query(WorkActivityInputUsage).filter_by(activity_id=activity.id).one()
        usage.quantity = Decimal("1")
        with pytest.raises(ImmutableActivityError):
            session.flush()
        session.rollback()


class TestCreateActivity:
    """Role and work-order rules at creation."""

    def test_worker_activity_is_pending(
        self, session, activity_service, create_input, open_work_order, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("100"))
        activity = activity_service.create_activity(
            work_order_id=open_work_order.id,
            activity_type="fertilization",
            actor_id=test_actor_id,
            role=ActorRole.WORKER,
            status=ActivityStatus.APPROVED,
            input_usage=[UsageLineRequest(fertilizer.id, Decimal("30"))],
        )

        assert activity.status == ActivityStatus.PENDING
        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("100")

    def test_supervisor_default_is_approved_and_debits(
        self, session, activity_service, create_input, open_work_order, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("100"))
        activity = activity_service.create_activity(
            work_order_id=open_work_order.id,
            activity_type="irrigation",
            actor_id=test_actor_id,
            role=ActorRole.SUPERVISOR,
            input_usage=[UsageLineRequest(fertilizer.id, Decimal("25"))],
            hours_worked=Decimal("3.5"),
        )

        assert activity.status == ActivityStatus.APPROVED
        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("75")

    def test_supervisor_may_create_pending(
        self, activity_service, open_work_order, test_actor_id,
    ):
        activity = activity_service.create_activity(
            work_order_id=open_work_order.id,
            activity_type="pruning",
            actor_id=test_actor_id,
            role="supervisor",
            status="pending",
        )
        assert activity.status == ActivityStatus.PENDING

    def test_rejected_at_creation_refused(
        self, activity_service, open_work_order, test_actor_id,
    ):
        with pytest.raises(InvalidStateError):
            activity_service.create_activity(
                work_order_id=open_work_order.id,
                activity_type="pruning",
                actor_id=test_actor_id,
                role=ActorRole.ADMIN,
                status=ActivityStatus.REJECTED,
            )

    def test_supervisor_approval_without_stock_creates_nothing(
        self, session, activity_service, create_input, open_work_order, test_actor_id,
    ):
        fertilizer = create_input(quantity=Decimal("10"))
        with pytest.raises(InsufficientStockError):
            activity_service.create_activity(
                work_order_id=open_work_order.id,
                activity_type="fertilization",
                actor_id=test_actor_id,
                role=ActorRole.SUPERVISOR,
                input_usage=[UsageLineRequest(fertilizer.id, Decimal("30"))],
            )

        session.refresh(open_work_order)
        assert open_work_order.activities == []
        session.refresh(fertilizer)
        assert fertilizer.on_hand_quantity == Decimal("10")

    def test_work_order_must_be_in_progress(self, activity_service, test_actor_id):
        work_order = activity_service.create_work_order("Harvest prep", test_actor_id)
        with pytest.raises(InvalidStateError):
            activity_service.create_activity(
                work_order_id=work_order.id,
                activity_type="pruning",
                actor_id=test_actor_id,
            )

    def test_unknown_work_order(self, activity_service, test_actor_id):
        with pytest.raises(NotFoundError):
            activity_service.create_activity(
                work_order_id=uuid4(), activity_type="pruning", actor_id=test_actor_id,
            )

    def test_unknown_input(self, activity_service, open_work_order, test_actor_id):
        with pytest.raises(NotFoundError):
            activity_service.create_activity(
                work_order_id=open_work_order.id,
                activity_type="fertilization",
                actor_id=test_actor_id,
                input_usage=[UsageLineRequest(uuid4(), Decimal("1"))],
            )

    def test_retired_input_refused(
        self, activity_service, input_service, create_input, open_work_order, test_actor_id,
    ):
        fertilizer = create_input()
        input_service.retire_input(fertilizer.id, test_actor_id)

        with pytest.raises(InvalidStateError):
            activity_service.create_activity(
                work_order_id=open_work_order.id,
                activity_type="fertilization",
                actor_id=test_actor_id,
                input_usage=[UsageLineRequest(fertilizer.id, Decimal("1"))],
            )

    def test_unknown_role(self, activity_service, open_work_order, test_actor_id):
        with pytest.raises(InvalidRequestError):
            activity_service.create_activity(
                work_order_id=open_work_order.id,
                activity_type="pruning",
                actor_id=test_actor_id,
                role="foreman",
            )

    def test_execution_date_defaults_to_clock(
        self, activity_service, open_work_order, test_actor_id, deterministic_clock,
    ):
        activity = activity_service.create_activity(
            work_order_id=open_work_order.id,
            activity_type="pruning",
            actor_id=test_actor_id,
        )
        assert activity.execution_date == deterministic_clock.now()


class TestWorkOrders:

    def test_status_change(self, activity_service, test_actor_id):
        work_order = activity_service.create_work_order("Spray block B", test_actor_id)
        updated = activity_service.set_work_order_status(
            work_order.id, "in_progress", test_actor_id
        )
        assert updated.status == WorkOrderStatus.IN_PROGRESS

    def test_completed_is_final(self, activity_service, test_actor_id):
        work_order = activity_service.create_work_order(
            "Spray block B", test_actor_id, status=WorkOrderStatus.COMPLETED
        )
        with pytest.raises(InvalidStateError):
            activity_service.set_work_order_status(
                work_order.id, WorkOrderStatus.IN_PROGRESS, test_actor_id
            )

    def test_unknown_work_order(self, activity_service, test_actor_id):
        with pytest.raises(NotFoundError):
            activity_service.set_work_order_status(uuid4(), "completed", test_actor_id)
