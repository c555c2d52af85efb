"""Approval notifications.

Handles:
- Pending-approval notices to approvers of newly active steps
- Final outcome notices (approved, rejected, expired) to the requester
- Cancellation notices to approvers still waiting on a step

Delivery goes through a ``NotificationSender``. Failures are logged and
counted, never raised, so a broken channel cannot undo a decision.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from procurement.core.approval.models import ApprovalRequest, ApprovalRequestStep, StepStatus
from procurement.core.lifecycle import ApprovalStatus
from procurement.core.ports import NotificationChannel, NotificationRequest, NotificationSender
from procurement.core.types import Actor

logger = logging.getLogger(__name__)


class ApprovalEventType(str, Enum):
    APPROVAL_PENDING = "approval_pending"
    APPROVAL_APPROVED = "approval_approved"
    APPROVAL_REJECTED = "approval_rejected"
    APPROVAL_EXPIRED = "approval_expired"
    APPROVAL_CANCELLED = "approval_cancelled"


TEMPLATES = {
    ApprovalEventType.APPROVAL_PENDING: {
        "subject": "[Procurement] Approval needed: {object_label}",
        "body": """
Your approval is requested:

Document: {object_label}
Step: {step_name}
Requested By: {requester_name}
Reason: {trigger_reason}
Due: {due_at}
""",
    },
    ApprovalEventType.APPROVAL_APPROVED: {
        "subject": "[Procurement] Approved: {object_label}",
        "body": """
Your request has been approved:

Document: {object_label}
Approved By: {decided_by}
Notes: {notes}
""",
    },
    ApprovalEventType.APPROVAL_REJECTED: {
        "subject": "[Procurement] Rejected: {object_label}",
        "body": """
Your request has been rejected:

Document: {object_label}
Rejected By: {decided_by}
Notes: {notes}
""",
    },
    ApprovalEventType.APPROVAL_EXPIRED: {
        "subject": "[Procurement] Expired: {object_label}",
        "body": """
Your approval request expired before all approvals were received:

Document: {object_label}
""",
    },
    ApprovalEventType.APPROVAL_CANCELLED: {
        "subject": "[Procurement] Cancelled: {object_label}",
        "body": """
An approval request assigned to you was cancelled:

Document: {object_label}
Cancelled By: {decided_by}
Reason: {notes}
""",
    },
}

_OUTCOME_EVENTS = {
    ApprovalStatus.APPROVED: ApprovalEventType.APPROVAL_APPROVED,
    ApprovalStatus.REJECTED: ApprovalEventType.APPROVAL_REJECTED,
    ApprovalStatus.EXPIRED: ApprovalEventType.APPROVAL_EXPIRED,
}


@dataclass
class DeliveryReport:
    """Counts from one notification run."""

    sent: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def _display_name(actor: Optional[Actor]) -> str:
    if actor is None:
        return "-"
    return actor.name or actor.id


class ApprovalNotifier:
    """Builds and sends notifications for approval request changes."""

    def __init__(self, sender: NotificationSender, channel: NotificationChannel = NotificationChannel.EMAIL):
        self.sender = sender
        self.channel = channel

    def _context(self, request: ApprovalRequest) -> Dict[str, Any]:
        return {
            "object_label": request.object_label or f"{request.object_type} {request.object_id}",
            "requester_name": _display_name(request.requester),
            "trigger_reason": request.trigger_reason,
            "decided_by": _display_name(request.final_decision_by),
            "notes": request.final_notes or "-",
        }

    def _build(
        self,
        event_type: ApprovalEventType,
        recipient: Actor,
        request: ApprovalRequest,
        **extra: Any,
    ) -> NotificationRequest:
        template = TEMPLATES[event_type]
        context = {**self._context(request), **extra}
        return NotificationRequest(
            recipient_id=recipient.id,
            recipient_address=recipient.email,
            channel=self.channel,
            subject=template["subject"].format(**context),
            body=template["body"].format(**context).strip(),
            category=event_type.value,
            metadata={"request_id": request.id, "object_id": request.object_id},
        )

    def _deliver(self, notifications: Iterable[NotificationRequest]) -> DeliveryReport:
        report = DeliveryReport()
        for notification in notifications:
            try:
                result = self.sender.send(notification)
            except Exception as e:
                logger.warning("Failed to send %s to %s: %s", notification.category, notification.recipient_id, e)
                report.failed += 1
                report.errors.append(str(e))
                continue
            if result.status == "failed":
                logger.warning(
                    "Sender reported failure for %s to %s: %s",
                    notification.category, notification.recipient_id, result.error,
                )
                report.failed += 1
                report.errors.append(result.error or "failed")
            else:
                report.sent += 1
        return report

    def pending_approvals(
        self,
        request: ApprovalRequest,
        steps: Optional[Iterable[ApprovalRequestStep]] = None,
    ) -> List[NotificationRequest]:
        """Notices for approvers who have not responded on the given (or all active) steps."""
        if steps is None:
            steps = request.active_steps
        notifications = []
        for step in steps:
            if step.status != StepStatus.ACTIVE:
                continue
            for assignment in step.assigned_approvers:
                if assignment.has_responded:
                    continue
                notifications.append(self._build(
                    ApprovalEventType.APPROVAL_PENDING,
                    assignment.actor,
                    request,
                    step_name=step.name,
                    due_at=step.due_at.isoformat() if step.due_at else "-",
                ))
        return notifications

    def notify_created(self, request: ApprovalRequest) -> DeliveryReport:
        return self._deliver(self.pending_approvals(request))

    def notify_updated(self, previous: ApprovalRequest, current: ApprovalRequest) -> DeliveryReport:
        """
        Notify about what changed between two versions of a request.

        Newly activated steps and newly assigned approvers are notified; a
        final outcome notifies the requester; cancellation notifies approvers
        who were still waiting.
        """
        notifications: List[NotificationRequest] = []

        if current.status == ApprovalStatus.CANCELLED and previous.status != ApprovalStatus.CANCELLED:
            waiting: Set[str] = set()
            for step in previous.active_steps:
                for assignment in step.assigned_approvers:
                    if not assignment.has_responded and assignment.actor.id not in waiting:
                        waiting.add(assignment.actor.id)
                        notifications.append(self._build(
                            ApprovalEventType.APPROVAL_CANCELLED, assignment.actor, current,
                        ))
        elif current.status in _OUTCOME_EVENTS and previous.status != current.status:
            notifications.append(self._build(_OUTCOME_EVENTS[current.status], current.requester, current))
        else:
            previously_active = {s.id: s for s in previous.active_steps}
            newly_active = [s for s in current.active_steps if s.id not in previously_active]
            notifications.extend(self.pending_approvals(current, newly_active))
            # Approvers added to a step that was already active (escalation)
            for step in current.active_steps:
                before = previously_active.get(step.id)
                if before is None:
                    continue
                for assignment in step.assigned_approvers:
                    if assignment.has_responded or before.is_approver(assignment.actor.id):
                        continue
                    notifications.append(self._build(
                        ApprovalEventType.APPROVAL_PENDING,
                        assignment.actor,
                        current,
                        step_name=step.name,
                        due_at=step.due_at.isoformat() if step.due_at else "-",
                    ))

        return self._deliver(notifications)
