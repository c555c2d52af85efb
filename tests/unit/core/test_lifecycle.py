"""Tests for the purchase order and approval request lifecycles."""

import pytest

from procurement.core.lifecycle import (
    APPROVAL_REQUEST_LIFECYCLE,
    PO_OPEN_STATES,
    PO_TERMINAL_STATES,
    REQUEST_ACTIVE_STATES,
    REQUEST_TERMINAL_STATES,
    ApprovalRequestAction,
    ApprovalStatus,
    PurchaseOrderAction,
    PurchaseOrderStatus,
    approval_request_machine,
    purchase_order_machine,
)
from procurement.core.statemachine import TransitionInput
from procurement.core.types import Actor


@pytest.fixture
def po_machine(clock, ids):
    return purchase_order_machine(clock=clock, id_generator=ids)


def advance(machine, instance, *actions, **input_kwargs):
    """Apply actions in order, failing the test on the first rejection."""
    for action in actions:
        instance, result = machine.transition(instance, action, TransitionInput(**input_kwargs))
        assert result.success, result.error
    return instance


class TestPurchaseOrderStates:
    """Test purchase order state sets."""

    def test_terminal_states(self):
        """Test closed and cancelled are terminal."""
        assert PO_TERMINAL_STATES == {PurchaseOrderStatus.CLOSED, PurchaseOrderStatus.CANCELLED}

    def test_open_states_exclude_fulfilment(self):
        """Test issued and received orders are not open for cancellation."""
        assert PurchaseOrderStatus.ISSUED not in PO_OPEN_STATES
        assert PurchaseOrderStatus.RECEIVED not in PO_OPEN_STATES
        assert PurchaseOrderStatus.DRAFT in PO_OPEN_STATES

    def test_machine_terminal_states_match(self, po_machine):
        """Test the definition marks the same states terminal."""
        assert {s.id for s in po_machine.terminal_states} == {s.value for s in PO_TERMINAL_STATES}


class TestPurchaseOrderLifecycle:
    """Test purchase order transitions."""

    def test_happy_path(self, po_machine):
        """Test draft through closed with an approval step."""
        buyer = Actor(id="u-buyer", roles=("buyer",))
        instance = advance(
            po_machine, po_machine.create(),
            PurchaseOrderAction.SUBMIT,
            PurchaseOrderAction.REQUIRE_APPROVAL,
            PurchaseOrderAction.APPROVE,
        )
        instance = advance(po_machine, instance, PurchaseOrderAction.ISSUE, actor=buyer)
        instance = advance(po_machine, instance, PurchaseOrderAction.RECEIVE, PurchaseOrderAction.CLOSE)

        assert instance.current_state == PurchaseOrderStatus.CLOSED.value
        assert po_machine.is_terminal(instance)
        assert len(instance.history) == 6

    def test_auto_approve(self, po_machine):
        """Test submitted orders can skip approval."""
        instance = advance(
            po_machine, po_machine.create(), PurchaseOrderAction.SUBMIT, PurchaseOrderAction.AUTO_APPROVE,
        )

        assert instance.current_state == "approved"

    def test_reject_requires_comment(self, po_machine):
        """Test rejecting without a comment is refused."""
        instance = advance(
            po_machine, po_machine.create(), PurchaseOrderAction.SUBMIT, PurchaseOrderAction.REQUIRE_APPROVAL,
        )

        _, result = po_machine.transition(instance, PurchaseOrderAction.REJECT)
        assert not result.success
        assert result.error == "A comment is required to reject"

        rejected, result = po_machine.transition(
            instance, PurchaseOrderAction.REJECT, TransitionInput(payload={"comment": "Wrong vendor"}),
        )
        assert result.success
        assert rejected.current_state == "rejected"

    def test_revise_returns_to_draft(self, po_machine):
        """Test rejected orders can be revised."""
        instance = advance(
            po_machine, po_machine.create(), PurchaseOrderAction.SUBMIT, PurchaseOrderAction.REQUIRE_APPROVAL,
        )
        instance = advance(po_machine, instance, PurchaseOrderAction.REJECT, payload={"comment": "Fix qty"})
        instance = advance(po_machine, instance, PurchaseOrderAction.REVISE)

        assert instance.current_state == "draft"

    def test_issue_requires_role(self, po_machine):
        """Test only buyers and procurement managers may issue."""
        instance = advance(
            po_machine, po_machine.create(), PurchaseOrderAction.SUBMIT, PurchaseOrderAction.AUTO_APPROVE,
        )

        _, result = po_machine.transition(
            instance, PurchaseOrderAction.ISSUE, TransitionInput(actor=Actor(id="u-1", roles=("employee",))),
        )

        assert not result.success
        assert result.error == "Requires one of roles: buyer, procurement_manager"

    @pytest.mark.parametrize("state", sorted(s.value for s in PO_OPEN_STATES))
    def test_cancel_from_open_states(self, po_machine, state):
        """Test every open state can be cancelled."""
        assert po_machine.find_transition(state, PurchaseOrderAction.CANCEL) is not None

    def test_cannot_cancel_issued(self, po_machine):
        """Test issued orders cannot be cancelled."""
        assert po_machine.find_transition(PurchaseOrderStatus.ISSUED, PurchaseOrderAction.CANCEL) is None


class TestApprovalRequestLifecycle:
    """Test request-level status transitions."""

    def test_state_sets(self):
        """Test active and terminal statuses partition the status set."""
        assert REQUEST_ACTIVE_STATES | REQUEST_TERMINAL_STATES == set(ApprovalStatus)
        assert not REQUEST_ACTIVE_STATES & REQUEST_TERMINAL_STATES

    def test_definition_id(self):
        """Test the lifecycle definition id."""
        assert APPROVAL_REQUEST_LIFECYCLE.id == "approval_request"

    @pytest.mark.parametrize("action,target", [
        (ApprovalRequestAction.APPROVE, "approved"),
        (ApprovalRequestAction.REJECT, "rejected"),
        (ApprovalRequestAction.CANCEL, "cancelled"),
        (ApprovalRequestAction.EXPIRE, "expired"),
    ])
    def test_in_progress_to_terminal(self, clock, action, target):
        """Test each finishing action from in_progress."""
        machine = approval_request_machine(clock=clock)
        instance = advance(machine, machine.create(), ApprovalRequestAction.START)

        instance = advance(machine, instance, action)

        assert instance.current_state == target
        assert machine.is_terminal(instance)

    @pytest.mark.parametrize("terminal", ["approved", "rejected", "cancelled", "expired"])
    def test_terminal_states_have_no_exits(self, clock, terminal):
        """Test finished requests cannot change status."""
        machine = approval_request_machine(clock=clock)

        assert machine.get_transitions_from(terminal) == []
