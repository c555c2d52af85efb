"""Document and approval request lifecycles.

Purchase order lifecycle:

    DRAFT ──submit──► SUBMITTED ──require_approval──► PENDING_APPROVAL
                          │                              │      │
                          │ auto_approve          approve│      │reject
                          ▼                              ▼      ▼
                      APPROVED ◄─────────────────────────┘   REJECTED
                          │                                     │
                        issue                                 revise
                          ▼                                     ▼
                       ISSUED ──receive──► RECEIVED ──close──► CLOSED    DRAFT

    Any open state ──cancel──► CANCELLED

Approval request lifecycle:

    PENDING ──start──► IN_PROGRESS ──approve / reject / cancel / expire──► terminal

Both are plain ``StateMachineDefinition`` values run by ``StateMachine``.
"""

from enum import Enum
from typing import Optional, Set

from procurement.core.ports import Clock, IdGenerator
from procurement.core.statemachine import (
    StateDefinition,
    StateMachine,
    StateMachineDefinition,
    TransitionDefinition,
    payload_required_guard,
    role_guard,
)


class PurchaseOrderStatus(str, Enum):
    """States of a purchase order."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    ISSUED = "issued"
    RECEIVED = "received"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class PurchaseOrderAction(str, Enum):
    """Actions that move a purchase order between states."""

    SUBMIT = "submit"                        # DRAFT → SUBMITTED
    REQUIRE_APPROVAL = "require_approval"    # SUBMITTED → PENDING_APPROVAL
    AUTO_APPROVE = "auto_approve"            # SUBMITTED → APPROVED
    APPROVE = "approve"                      # PENDING_APPROVAL → APPROVED
    REJECT = "reject"                        # PENDING_APPROVAL → REJECTED
    REVISE = "revise"                        # REJECTED → DRAFT
    ISSUE = "issue"                          # APPROVED → ISSUED
    RECEIVE = "receive"                      # ISSUED → RECEIVED
    CLOSE = "close"                          # RECEIVED → CLOSED
    CANCEL = "cancel"                        # open states → CANCELLED


class ApprovalStatus(str, Enum):
    """Status of an approval request."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ApprovalRequestAction(str, Enum):
    """Request-level status changes."""

    START = "start"        # PENDING → IN_PROGRESS
    APPROVE = "approve"    # active → APPROVED
    REJECT = "reject"      # active → REJECTED
    CANCEL = "cancel"      # active → CANCELLED
    EXPIRE = "expire"      # active → EXPIRED


# Roles allowed to issue an approved order to the vendor
ISSUE_ROLES = ("buyer", "procurement_manager")

PO_TERMINAL_STATES: Set[PurchaseOrderStatus] = {
    PurchaseOrderStatus.CLOSED,
    PurchaseOrderStatus.CANCELLED,
}

PO_OPEN_STATES: Set[PurchaseOrderStatus] = {
    PurchaseOrderStatus.DRAFT,
    PurchaseOrderStatus.SUBMITTED,
    PurchaseOrderStatus.PENDING_APPROVAL,
    PurchaseOrderStatus.APPROVED,
    PurchaseOrderStatus.REJECTED,
}

REQUEST_TERMINAL_STATES: Set[ApprovalStatus] = {
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
    ApprovalStatus.EXPIRED,
}

REQUEST_ACTIVE_STATES: Set[ApprovalStatus] = {
    ApprovalStatus.PENDING,
    ApprovalStatus.IN_PROGRESS,
}


_PO = PurchaseOrderStatus
_POA = PurchaseOrderAction

PURCHASE_ORDER_LIFECYCLE = StateMachineDefinition(
    id="purchase_order",
    name="Purchase Order Lifecycle",
    initial_state=_PO.DRAFT,
    states=(
        StateDefinition(_PO.DRAFT, "Draft"),
        StateDefinition(_PO.SUBMITTED, "Submitted"),
        StateDefinition(_PO.PENDING_APPROVAL, "Pending Approval"),
        StateDefinition(_PO.APPROVED, "Approved"),
        StateDefinition(_PO.REJECTED, "Rejected"),
        StateDefinition(_PO.ISSUED, "Issued"),
        StateDefinition(_PO.RECEIVED, "Received"),
        StateDefinition(_PO.CLOSED, "Closed", terminal=True),
        StateDefinition(_PO.CANCELLED, "Cancelled", terminal=True),
    ),
    transitions=(
        TransitionDefinition("po-submit", _PO.DRAFT, _PO.SUBMITTED, _POA.SUBMIT, label="Submit"),
        TransitionDefinition(
            "po-require-approval", _PO.SUBMITTED, _PO.PENDING_APPROVAL, _POA.REQUIRE_APPROVAL,
            label="Send for approval",
        ),
        TransitionDefinition(
            "po-auto-approve", _PO.SUBMITTED, _PO.APPROVED, _POA.AUTO_APPROVE, label="Auto-approve",
        ),
        TransitionDefinition("po-approve", _PO.PENDING_APPROVAL, _PO.APPROVED, _POA.APPROVE, label="Approve"),
        TransitionDefinition(
            "po-reject", _PO.PENDING_APPROVAL, _PO.REJECTED, _POA.REJECT,
            label="Reject",
            guard=payload_required_guard("comment", "A comment is required to reject"),
        ),
        TransitionDefinition("po-revise", _PO.REJECTED, _PO.DRAFT, _POA.REVISE, label="Revise"),
        TransitionDefinition(
            "po-issue", _PO.APPROVED, _PO.ISSUED, _POA.ISSUE,
            label="Issue to vendor",
            guard=role_guard(ISSUE_ROLES),
            required_roles=ISSUE_ROLES,
        ),
        TransitionDefinition("po-receive", _PO.ISSUED, _PO.RECEIVED, _POA.RECEIVE, label="Receive"),
        TransitionDefinition("po-close", _PO.RECEIVED, _PO.CLOSED, _POA.CLOSE, label="Close"),
        TransitionDefinition(
            "po-cancel",
            tuple(sorted(s.value for s in PO_OPEN_STATES)),
            _PO.CANCELLED,
            _POA.CANCEL,
            label="Cancel",
        ),
    ),
)


_RS = ApprovalStatus
_RA = ApprovalRequestAction
_ACTIVE = (_RS.PENDING, _RS.IN_PROGRESS)

APPROVAL_REQUEST_LIFECYCLE = StateMachineDefinition(
    id="approval_request",
    name="Approval Request Lifecycle",
    initial_state=_RS.PENDING,
    states=(
        StateDefinition(_RS.PENDING, "Pending"),
        StateDefinition(_RS.IN_PROGRESS, "In Progress"),
        StateDefinition(_RS.APPROVED, "Approved", terminal=True),
        StateDefinition(_RS.REJECTED, "Rejected", terminal=True),
        StateDefinition(_RS.CANCELLED, "Cancelled", terminal=True),
        StateDefinition(_RS.EXPIRED, "Expired", terminal=True),
    ),
    transitions=(
        TransitionDefinition("request-start", _RS.PENDING, _RS.IN_PROGRESS, _RA.START),
        TransitionDefinition("request-approve", _ACTIVE, _RS.APPROVED, _RA.APPROVE),
        TransitionDefinition("request-reject", _ACTIVE, _RS.REJECTED, _RA.REJECT),
        TransitionDefinition("request-cancel", _ACTIVE, _RS.CANCELLED, _RA.CANCEL),
        TransitionDefinition("request-expire", _ACTIVE, _RS.EXPIRED, _RA.EXPIRE),
    ),
)


def purchase_order_machine(
    clock: Optional[Clock] = None, id_generator: Optional[IdGenerator] = None
) -> StateMachine:
    """State machine for the purchase order lifecycle."""
    return StateMachine(PURCHASE_ORDER_LIFECYCLE, clock=clock, id_generator=id_generator)


def approval_request_machine(
    clock: Optional[Clock] = None, id_generator: Optional[IdGenerator] = None
) -> StateMachine:
    """State machine for request-level approval status."""
    return StateMachine(APPROVAL_REQUEST_LIFECYCLE, clock=clock, id_generator=id_generator)
