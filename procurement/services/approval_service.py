"""Approval service for persisted approval workflows.

Loads requests from the database, runs them through the ApprovalEngine and
writes the result back. Writes are guarded by the request's version column,
so two callers acting on the same snapshot cannot both succeed.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import and_
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from procurement.core.approval.capabilities import (
    ApprovalRequestFilter,
    filter_requests,
    get_pending_for_user,
)
from procurement.core.approval.engine import ApprovalEngine, ApproverResolver
from procurement.core.approval.models import (
    ApprovalContext,
    ApprovalDecision,
    ApprovalRequest,
    ApprovalRequestStep,
    AssignedApprover,
    CreateApprovalInput,
    DecisionResult,
    MakeDecisionInput,
    StepDecision,
)
from procurement.core.errors import ConcurrencyConflictError, RequestNotFoundError
from procurement.core.lifecycle import REQUEST_ACTIVE_STATES
from procurement.core.types import Actor, AuditEntry
from procurement.db.models.approval import (
    ApprovalAuditRecord,
    ApprovalRequestRecord,
    ApprovalStepRecord,
    StepDecisionRecord,
)

from .notifications import ApprovalNotifier

logger = logging.getLogger(__name__)

_ACTIVE_STATUS_VALUES = [s.value for s in REQUEST_ACTIVE_STATES]


class ApprovalService:
    """
    High-level service for managing persisted approval requests.

    Handles:
    - Submitting objects for approval when a policy requires it
    - Recording decisions, cancellations and escalations with version checks
    - Querying requests and pending work per user
    - Expiring overdue requests

    The service flushes but does not commit; the caller owns the transaction.
    """

    def __init__(
        self,
        db: Session,
        engine: ApprovalEngine,
        *,
        notifier: Optional[ApprovalNotifier] = None,
    ):
        """
        Initialize the approval service.

        Args:
            db: Database session
            engine: Engine holding the approval policies
            notifier: Optional notifier called after each change
        """
        self.db = db
        self.engine = engine
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def submit(
        self,
        context: ApprovalContext,
        resolve_approvers: ApproverResolver,
        *,
        object_label: Optional[str] = None,
    ) -> Optional[ApprovalRequest]:
        """
        Create a request under the most significant matching policy.

        Returns:
            The new request, or None when no policy requires approval
        """
        check = self.engine.check_approval_required(context)
        if not check.required:
            logger.debug("No approval required for %s %s", context.object_type, context.object_id)
            return None

        policy = check.matching_policies[0]
        return self.create_request(
            CreateApprovalInput(
                policy_id=policy.id,
                object_type=context.object_type,
                object_id=context.object_id,
                requester=context.requester,
                trigger_reason="; ".join(check.reasons),
                object_label=object_label,
                trigger_data={"matching_policies": [p.id for p in check.matching_policies]},
                object_data=context.object_data,
            ),
            resolve_approvers,
        )

    def create_request(
        self,
        request_input: CreateApprovalInput,
        resolve_approvers: ApproverResolver,
    ) -> ApprovalRequest:
        """Create and persist a new approval request."""
        request = self.engine.create_request(request_input, resolve_approvers)
        self.db.add(request_to_record(request))
        self.db.flush()

        if self.notifier:
            self.notifier.notify_created(request)
        return request

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _load(self, request_id: str) -> ApprovalRequestRecord:
        record = self.db.query(ApprovalRequestRecord).filter(
            ApprovalRequestRecord.id == request_id
        ).first()
        if record is None:
            raise RequestNotFoundError(request_id)
        return record

    def get_request(self, request_id: str) -> ApprovalRequest:
        """
        Get an approval request by ID.

        Raises:
            RequestNotFoundError: If no such request exists
        """
        return record_to_request(self._load(request_id))

    def list_requests(self, criteria: Optional[ApprovalRequestFilter] = None) -> List[ApprovalRequest]:
        """List requests matching ``criteria``, oldest first."""
        criteria = criteria or ApprovalRequestFilter()
        query = self.db.query(ApprovalRequestRecord)

        if criteria.statuses:
            query = query.filter(ApprovalRequestRecord.status.in_([s.value for s in criteria.statuses]))
        if criteria.object_type:
            query = query.filter(ApprovalRequestRecord.object_type == criteria.object_type)
        if criteria.object_id:
            query = query.filter(ApprovalRequestRecord.object_id == criteria.object_id)
        if criteria.requester_id:
            query = query.filter(ApprovalRequestRecord.requester_id == criteria.requester_id)

        query = query.order_by(ApprovalRequestRecord.created_at.asc(), ApprovalRequestRecord.id.asc())
        # Step-level criteria are evaluated on the loaded requests
        return filter_requests([record_to_request(r) for r in query.all()], criteria)

    def list_pending_for_user(self, user_id: str) -> List[ApprovalRequest]:
        """Active requests with a step waiting on ``user_id``."""
        records = self.db.query(ApprovalRequestRecord).filter(
            ApprovalRequestRecord.status.in_(_ACTIVE_STATUS_VALUES)
        ).order_by(ApprovalRequestRecord.created_at.asc()).all()
        return get_pending_for_user([record_to_request(r) for r in records], user_id)

    # ------------------------------------------------------------------
    # Changes
    # ------------------------------------------------------------------

    def decide(
        self,
        request_id: str,
        decision_input: MakeDecisionInput,
        expected_version: Optional[int] = None,
    ) -> DecisionResult:
        """
        Record a decision on a persisted request.

        Raises:
            RequestNotFoundError: If no such request exists
            ConcurrencyConflictError: If ``expected_version`` is stale or the row
                changed underneath this session
            ApprovalError: Any precondition failure raised by the engine
        """
        record = self._load(request_id)
        request = record_to_request(record)
        result = self.engine.make_decision(request, decision_input, expected_version=expected_version)
        self._save(record, request, result.request)
        return result

    def cancel(
        self,
        request_id: str,
        actor: Actor,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> ApprovalRequest:
        record = self._load(request_id)
        request = record_to_request(record)
        updated = self.engine.cancel_request(request, actor, reason, expected_version=expected_version)
        self._save(record, request, updated)
        return updated

    def escalate(
        self,
        request_id: str,
        new_approvers: Sequence[Actor],
        *,
        actor: Optional[Actor] = None,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> ApprovalRequest:
        record = self._load(request_id)
        request = record_to_request(record)
        kwargs = {"actor": actor} if actor is not None else {}
        updated = self.engine.escalate_request(
            request, new_approvers, reason=reason, expected_version=expected_version, **kwargs
        )
        self._save(record, request, updated)
        return updated

    def expire_overdue(self, now: Optional[datetime] = None) -> int:
        """
        Apply timeout actions to active requests past ``expires_at``.

        Returns:
            Number of requests expired (or auto-decided)
        """
        now = now or self.engine.clock.now()
        overdue = self.db.query(ApprovalRequestRecord).filter(
            and_(
                ApprovalRequestRecord.status.in_(_ACTIVE_STATUS_VALUES),
                ApprovalRequestRecord.expires_at.isnot(None),
                ApprovalRequestRecord.expires_at < now,
            )
        ).all()

        count = 0
        for record in overdue:
            request = record_to_request(record)
            updated = self.engine.expire_request(request, now=now)
            if updated is request:
                continue
            self._save(record, request, updated)
            count += 1

        if count:
            logger.info("Expired %d overdue approval requests", count)
        return count

    def _save(self, record: ApprovalRequestRecord, previous: ApprovalRequest, current: ApprovalRequest) -> None:
        apply_request(record, current)
        try:
            self.db.flush()
        except StaleDataError as e:
            self.db.rollback()
            actual_version = self._load(current.id).version
            raise ConcurrencyConflictError(current.id, previous.version, actual_version) from e

        if self.notifier:
            self.notifier.notify_updated(previous, current)


# ----------------------------------------------------------------------
# Record mapping
# ----------------------------------------------------------------------


def _actor_to_json(actor: Optional[Actor]):
    return actor.to_dict() if actor is not None else None


def _actor_from_json(data) -> Optional[Actor]:
    return Actor.from_dict(data) if data else None


def _assignments_to_json(assignments: Iterable[AssignedApprover]) -> list:
    return [
        {
            "actor": a.actor.to_dict(),
            "assigned_at": a.assigned_at.isoformat(),
            "has_responded": a.has_responded,
            "notified_at": a.notified_at.isoformat() if a.notified_at else None,
        }
        for a in assignments
    ]


def _assignments_from_json(data: list) -> tuple:
    return tuple(
        AssignedApprover(
            actor=Actor.from_dict(item["actor"]),
            assigned_at=datetime.fromisoformat(item["assigned_at"]),
            has_responded=item.get("has_responded", False),
            notified_at=datetime.fromisoformat(item["notified_at"]) if item.get("notified_at") else None,
        )
        for item in data or []
    )


def _decision_record(decision: StepDecision, position: int) -> StepDecisionRecord:
    return StepDecisionRecord(
        id=decision.id,
        position=position,
        approver_id=decision.approver.id,
        approver=decision.approver.to_dict(),
        decision=decision.decision.value,
        notes=decision.notes,
        attachments=list(decision.attachments),
        decided_at=decision.decided_at,
    )


def _audit_record(entry: AuditEntry, position: int) -> ApprovalAuditRecord:
    return ApprovalAuditRecord(
        id=entry.id,
        position=position,
        action=entry.action,
        actor_id=entry.actor.id,
        actor=entry.actor.to_dict(),
        details=dict(entry.details),
        timestamp=entry.timestamp,
    )


def _step_record(step: ApprovalRequestStep, position: int) -> ApprovalStepRecord:
    return ApprovalStepRecord(
        id=step.id,
        position=position,
        step_definition_id=step.step_definition_id,
        name=step.name,
        step_order=step.order,
        status=step.status.value,
        required_approvals=step.required_approvals,
        assigned_approvers=_assignments_to_json(step.assigned_approvers),
        notes=step.notes,
        activated_at=step.activated_at,
        completed_at=step.completed_at,
        due_at=step.due_at,
        decisions=[_decision_record(d, i) for i, d in enumerate(step.decisions)],
    )


def request_to_record(request: ApprovalRequest) -> ApprovalRequestRecord:
    """Build a new record (with step, decision and audit rows) from a request."""
    record = ApprovalRequestRecord(
        id=request.id,
        steps=[_step_record(s, i) for i, s in enumerate(request.steps)],
        audit_entries=[_audit_record(e, i) for i, e in enumerate(request.audit_log)],
    )
    _apply_scalars(record, request)
    return record


def _apply_scalars(record: ApprovalRequestRecord, request: ApprovalRequest) -> None:
    record.policy_id = request.policy_id
    record.workflow_id = request.workflow_id
    record.object_type = request.object_type
    record.object_id = request.object_id
    record.object_label = request.object_label
    record.status = request.status.value
    record.current_step_index = request.current_step_index
    record.requester_id = request.requester.id
    record.requester = request.requester.to_dict()
    record.trigger_reason = request.trigger_reason
    record.trigger_data = dict(request.trigger_data)
    record.final_decision = request.final_decision.value if request.final_decision else None
    record.final_decision_at = request.final_decision_at
    record.final_decision_by = _actor_to_json(request.final_decision_by)
    record.final_notes = request.final_notes
    record.expires_at = request.expires_at
    record.escalation_count = request.escalation_count
    record.last_escalated_at = request.last_escalated_at
    record.extra_data = dict(request.meta)
    record.version = request.version
    record.created_at = request.created_at
    record.updated_at = request.updated_at


def apply_request(record: ApprovalRequestRecord, request: ApprovalRequest) -> None:
    """Write a new version of a request onto its existing record.

    Steps are updated in place; decisions and audit entries are append-only,
    so only rows not yet stored are added.
    """
    _apply_scalars(record, request)

    step_records = {s.id: s for s in record.steps}
    for position, step in enumerate(request.steps):
        step_record = step_records.get(step.id)
        if step_record is None:
            record.steps.append(_step_record(step, position))
            continue
        step_record.status = step.status.value
        step_record.assigned_approvers = _assignments_to_json(step.assigned_approvers)
        step_record.notes = step.notes
        step_record.activated_at = step.activated_at
        step_record.completed_at = step.completed_at
        step_record.due_at = step.due_at

        stored = {d.id for d in step_record.decisions}
        kept = {d.id for d in step.decisions}
        # Overwritten votes disappear from the step
        for decision_record in [d for d in step_record.decisions if d.id not in kept]:
            step_record.decisions.remove(decision_record)
        for position_in_step, decision in enumerate(step.decisions):
            if decision.id not in stored:
                step_record.decisions.append(_decision_record(decision, position_in_step))

    stored_audit = {e.id for e in record.audit_entries}
    for position, entry in enumerate(request.audit_log):
        if entry.id not in stored_audit:
            record.audit_entries.append(_audit_record(entry, position))


def record_to_request(record: ApprovalRequestRecord) -> ApprovalRequest:
    """Rebuild the immutable request value from its rows."""
    steps = tuple(
        ApprovalRequestStep(
            id=s.id,
            step_definition_id=s.step_definition_id,
            name=s.name,
            order=s.step_order,
            status=s.status,
            assigned_approvers=_assignments_from_json(s.assigned_approvers),
            required_approvals=s.required_approvals,
            decisions=tuple(
                StepDecision(
                    id=d.id,
                    approver=Actor.from_dict(d.approver),
                    decision=ApprovalDecision(d.decision),
                    decided_at=d.decided_at,
                    notes=d.notes,
                    attachments=tuple(d.attachments or ()),
                )
                for d in s.decisions
            ),
            activated_at=s.activated_at,
            completed_at=s.completed_at,
            due_at=s.due_at,
            notes=s.notes,
        )
        for s in record.steps
    )
    audit_log = tuple(
        AuditEntry(
            id=e.id,
            action=e.action,
            actor=Actor.from_dict(e.actor),
            timestamp=e.timestamp,
            details=dict(e.details or {}),
        )
        for e in record.audit_entries
    )
    return ApprovalRequest(
        id=record.id,
        policy_id=record.policy_id,
        workflow_id=record.workflow_id,
        object_type=record.object_type,
        object_id=record.object_id,
        object_label=record.object_label,
        status=record.status,
        requester=Actor.from_dict(record.requester),
        trigger_reason=record.trigger_reason,
        trigger_data=dict(record.trigger_data or {}),
        steps=steps,
        current_step_index=record.current_step_index,
        created_at=record.created_at,
        updated_at=record.updated_at,
        final_decision=ApprovalDecision(record.final_decision) if record.final_decision else None,
        final_decision_at=record.final_decision_at,
        final_decision_by=_actor_from_json(record.final_decision_by),
        final_notes=record.final_notes,
        expires_at=record.expires_at,
        escalation_count=record.escalation_count,
        last_escalated_at=record.last_escalated_at,
        audit_log=audit_log,
        version=record.version,
        meta=dict(record.extra_data or {}),
    )
