"""Approval workflow orchestration.

Creates approval requests from policies and applies decisions, cancellation,
escalation and expiry. Every operation takes a request value and returns a
new one; the input is never modified.
"""

import logging
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from procurement.core.errors import (
    ConcurrencyConflictError,
    DuplicateDecisionError,
    NotAnApproverError,
    PolicyNotFoundError,
    RequestNotActiveError,
    StepNotActiveError,
    StepNotFoundError,
)
from procurement.core.lifecycle import (
    APPROVAL_REQUEST_LIFECYCLE,
    ApprovalRequestAction,
    ApprovalStatus,
    approval_request_machine,
)
from procurement.core.ports import Clock, IdGenerator, SystemClock, UuidIdGenerator
from procurement.core.statemachine import StateMachineInstance, TransitionInput
from procurement.core.types import SYSTEM_ACTOR, Actor, AuditEntry, add_duration

from .matcher import PolicyMatcher
from .models import (
    ApprovalCheckResult,
    ApprovalContext,
    ApprovalDecision,
    ApprovalPolicy,
    ApprovalRequest,
    ApprovalRequestStep,
    ApprovalStep,
    ApproverConfig,
    AssignedApprover,
    CreateApprovalInput,
    DecisionResult,
    ExecutionMode,
    MakeDecisionInput,
    StepDecision,
    StepStatus,
    TimeoutAction,
)
from .triggers import CustomRuleEvaluator

logger = logging.getLogger(__name__)


ApproverResolver = Callable[[ApproverConfig, ApprovalContext], Sequence[Actor]]


class DuplicateDecisionPolicy(str, Enum):
    """What happens when an approver votes twice on the same step."""

    REJECT = "reject"          # raise DuplicateDecisionError
    OVERWRITE = "overwrite"    # replace the approver's earlier vote
    APPEND = "append"          # keep both votes


def resolve_required_approvals(required, approver_count: int) -> int:
    """Resolve ``"all"``, ``"any"`` or a literal count to a concrete count.

    ``"all"`` never resolves below one, so a step with no resolved approvers
    cannot complete without a vote.
    """
    if required == "all":
        return max(approver_count, 1)
    if required == "any":
        return 1
    return int(required)


def evaluate_step_status(step: ApprovalRequestStep) -> StepStatus:
    """
    Decide a step's status from its decisions.

    A single rejection vetoes the step. Otherwise the step is approved once
    quorum is reached, and rejected as soon as quorum can no longer be reached.
    """
    approvals = step.approvals
    if step.rejections > 0:
        return StepStatus.REJECTED
    if approvals >= step.required_approvals:
        return StepStatus.APPROVED
    if approvals + step.remaining_approvers < step.required_approvals:
        return StepStatus.REJECTED
    return StepStatus.ACTIVE


class ApprovalEngine:
    """
    Runs approval workflows for a fixed set of policies.

    Request-level status changes go through ``APPROVAL_REQUEST_LIFECYCLE`` so
    cancelling or expiring a finished request fails the same way everywhere.
    """

    def __init__(
        self,
        policies: Iterable[ApprovalPolicy],
        *,
        custom_evaluators: Optional[Mapping[str, CustomRuleEvaluator]] = None,
        enablement: Optional[Mapping[str, bool]] = None,
        clock: Optional[Clock] = None,
        id_generator: Optional[IdGenerator] = None,
        duplicate_decisions: str = DuplicateDecisionPolicy.REJECT,
    ):
        """
        Initialize the engine.

        Args:
            policies: Approval policies; ids must be unique
            custom_evaluators: Evaluators for custom triggers, keyed by rule id
            enablement: Caller-owned overrides of ``policy.active``
            clock: Time source; defaults to the UTC system clock
            id_generator: Identifier source for requests, steps and decisions
            duplicate_decisions: ``reject``, ``overwrite`` or ``append``
        """
        self.matcher = PolicyMatcher(
            policies, custom_evaluators=custom_evaluators, enablement=enablement
        )
        self.clock = clock or SystemClock()
        self.id_generator = id_generator or UuidIdGenerator()
        self.duplicate_decisions = DuplicateDecisionPolicy(duplicate_decisions)
        self._lifecycle = approval_request_machine(clock=self.clock)

    @classmethod
    def from_settings(cls, policies: Iterable[ApprovalPolicy], settings=None, **kwargs) -> "ApprovalEngine":
        """Build an engine using the configured duplicate-vote policy and cost threshold."""
        from procurement.core.config import get_settings
        from procurement.core.financial.policies import cost_threshold_from_settings
        from procurement.core.financial.rules import default_custom_evaluators

        settings = settings or get_settings()
        evaluators = default_custom_evaluators(cost_threshold_from_settings(settings))
        evaluators.update(kwargs.pop("custom_evaluators", None) or {})
        return cls(
            policies,
            custom_evaluators=evaluators,
            duplicate_decisions=settings.duplicate_decisions,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Policy queries
    # ------------------------------------------------------------------

    def check_approval_required(self, context: ApprovalContext) -> ApprovalCheckResult:
        return self.matcher.check_approval_required(context)

    def get_policy(self, policy_id: str) -> Optional[ApprovalPolicy]:
        return self.matcher.get_policy(policy_id)

    def get_policies(self) -> List[ApprovalPolicy]:
        """Enabled policies, most significant first."""
        policies = [p for p in self.matcher.policies if self.matcher.is_enabled(p)]
        return sorted(policies, key=lambda p: (p.priority, p.id))

    def _require_policy(self, policy_id: str) -> ApprovalPolicy:
        policy = self.matcher.get_policy(policy_id)
        if policy is None:
            raise PolicyNotFoundError(policy_id)
        return policy

    # ------------------------------------------------------------------
    # Request creation
    # ------------------------------------------------------------------

    def create_request(
        self,
        request_input: CreateApprovalInput,
        resolve_approvers: ApproverResolver,
    ) -> ApprovalRequest:
        """
        Create a new approval request from a policy.

        Parallel workflows start with every step active; sequential and
        conditional workflows start with the first step (by order) active.

        A step whose approvers resolve to nobody is still created and
        activated; it is never approved without a vote. It waits for
        ``escalate_request`` to add approvers, or for the workflow timeout.

        Args:
            request_input: Policy id, governed object and requester
            resolve_approvers: Maps each step's approver config to actors

        Returns:
            New request with status ``in_progress`` and version 1

        Raises:
            PolicyNotFoundError: If the policy id is unknown
        """
        policy = self._require_policy(request_input.policy_id)
        workflow = policy.workflow
        now = self.clock.now()
        context = ApprovalContext(
            object_type=request_input.object_type,
            object_id=request_input.object_id,
            requester=request_input.requester,
            object_data=request_input.object_data,
        )

        templates = sorted(workflow.steps, key=lambda s: s.order)
        steps = []
        for index, template in enumerate(templates):
            approvers = self._resolve(template, context, resolve_approvers)
            active = workflow.execution == ExecutionMode.PARALLEL or index == 0
            steps.append(ApprovalRequestStep(
                id=self.id_generator.generate("step"),
                step_definition_id=template.id,
                name=template.name,
                order=template.order,
                status=StepStatus.ACTIVE if active else StepStatus.PENDING,
                assigned_approvers=tuple(
                    AssignedApprover(actor=actor, assigned_at=now) for actor in approvers
                ),
                required_approvals=resolve_required_approvals(
                    template.required_approvals, len(approvers)
                ),
                activated_at=now if active else None,
                due_at=self._due_at(template, now) if active else None,
            ))

        expires_at = None
        if workflow.timeout is not None:
            expires_at = add_duration(now, workflow.timeout.duration, workflow.timeout.unit)

        request_id = self.id_generator.generate("apr")
        request = ApprovalRequest(
            id=request_id,
            policy_id=policy.id,
            workflow_id=workflow.id,
            object_type=request_input.object_type,
            object_id=request_input.object_id,
            object_label=request_input.object_label,
            status=ApprovalStatus.IN_PROGRESS,
            requester=request_input.requester,
            trigger_reason=request_input.trigger_reason,
            trigger_data=dict(request_input.trigger_data),
            steps=tuple(steps),
            current_step_index=0,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
            audit_log=(
                self._audit("created", request_input.requester, now, {
                    "policy_id": policy.id,
                    "trigger_reason": request_input.trigger_reason,
                }),
            ),
        )

        logger.info(
            "Created approval request %s for %s %s under policy %s (%d steps)",
            request.id, request.object_type, request.object_id, policy.id, len(steps),
        )
        return request

    def _resolve(
        self,
        template: ApprovalStep,
        context: ApprovalContext,
        resolve_approvers: ApproverResolver,
    ) -> List[Actor]:
        excluded = set(template.approvers.exclude)
        approvers = []
        seen = set()
        for actor in resolve_approvers(template.approvers, context):
            if actor.id in excluded or actor.id in seen:
                continue
            seen.add(actor.id)
            approvers.append(actor)
        if not approvers:
            logger.warning("No approvers resolved for step %s", template.id)
        return approvers

    @staticmethod
    def _due_at(template: Optional[ApprovalStep], now: datetime) -> Optional[datetime]:
        if template is None or template.timeout is None:
            return None
        return add_duration(now, template.timeout.duration, template.timeout.unit)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def make_decision(
        self,
        request: ApprovalRequest,
        decision_input: MakeDecisionInput,
        *,
        expected_version: Optional[int] = None,
    ) -> DecisionResult:
        """
        Record an approver's decision and evaluate step and workflow completion.

        Args:
            request: Current request (never modified)
            decision_input: Step, approver and vote
            expected_version: Version the caller read; checked when given

        Returns:
            DecisionResult with the new request, whether the workflow completed,
            and the final decision when it did

        Raises:
            RequestNotActiveError: If the request is already finished
            ConcurrencyConflictError: If ``expected_version`` is stale
            PolicyNotFoundError: If the request's policy is unknown
            StepNotFoundError: If the step id is not part of the request
            StepNotActiveError: If the step is not currently active
            NotAnApproverError: If the approver is not assigned to the step
            DuplicateDecisionError: If the approver already voted and duplicates are rejected
        """
        if request.status != ApprovalStatus.IN_PROGRESS:
            raise RequestNotActiveError(request.id, request.status.value)
        self._check_version(request, expected_version)
        policy = self._require_policy(request.policy_id)

        step_index, step = self._find_step(request, decision_input.step_id)
        if step.status != StepStatus.ACTIVE:
            raise StepNotActiveError(step.id, step.status.value)

        approver_id = decision_input.approver.id
        assignment = step.get_assignment(approver_id)
        if assignment is None:
            raise NotAnApproverError(approver_id, step.id)

        decisions = step.decisions
        if assignment.has_responded:
            if self.duplicate_decisions == DuplicateDecisionPolicy.REJECT:
                raise DuplicateDecisionError(approver_id, step.id)
            if self.duplicate_decisions == DuplicateDecisionPolicy.OVERWRITE:
                decisions = tuple(d for d in decisions if d.approver.id != approver_id)

        now = self.clock.now()
        decision = StepDecision(
            id=self.id_generator.generate("dec"),
            approver=decision_input.approver,
            decision=decision_input.decision,
            decided_at=now,
            notes=decision_input.notes,
            attachments=decision_input.attachments,
        )
        step = replace(
            step,
            decisions=decisions + (decision,),
            assigned_approvers=tuple(
                replace(a, has_responded=True) if a.actor.id == approver_id else a
                for a in step.assigned_approvers
            ),
        )
        step_status = evaluate_step_status(step)
        if step_status != StepStatus.ACTIVE:
            step = replace(step, status=step_status, completed_at=now)

        steps = list(request.steps)
        steps[step_index] = step
        current_step_index = request.current_step_index

        final_decision = self._workflow_outcome(steps)
        if final_decision is None and step.is_terminal and policy.workflow.execution != ExecutionMode.PARALLEL:
            next_index = self._next_pending_index(steps)
            if next_index is not None:
                template = self._template(policy, steps[next_index].step_definition_id)
                steps[next_index] = replace(
                    steps[next_index],
                    status=StepStatus.ACTIVE,
                    activated_at=now,
                    due_at=self._due_at(template, now),
                )
                current_step_index = next_index

        audit = self._audit(f"decision_{decision.decision.value}", decision_input.approver, now, {
            "step_id": step.id,
            "step_name": step.name,
            "step_status": step.status.value,
            "notes": decision_input.notes,
        })

        updated = replace(
            request,
            steps=tuple(steps),
            current_step_index=current_step_index,
            updated_at=now,
            audit_log=request.audit_log + (audit,),
            version=request.version + 1,
        )

        if final_decision is not None:
            action = (
                ApprovalRequestAction.APPROVE
                if final_decision == ApprovalDecision.APPROVED
                else ApprovalRequestAction.REJECT
            )
            updated = replace(
                updated,
                status=self._next_status(request, action, decision_input.approver),
                final_decision=final_decision,
                final_decision_at=now,
                final_decision_by=decision_input.approver,
                final_notes=decision_input.notes,
            )
            logger.info("Approval request %s completed: %s", request.id, final_decision.value)
        else:
            logger.debug(
                "Decision %s recorded on %s step %s (step status %s)",
                decision.decision.value, request.id, step.id, step.status.value,
            )

        return DecisionResult(
            request=updated,
            complete=final_decision is not None,
            final_decision=final_decision,
        )

    @staticmethod
    def _workflow_outcome(steps: Sequence[ApprovalRequestStep]) -> Optional[ApprovalDecision]:
        """Final decision once the workflow is complete, else None.

        Any rejected step rejects the request regardless of execution mode.
        """
        if any(s.status == StepStatus.REJECTED for s in steps):
            return ApprovalDecision.REJECTED
        if all(s.is_terminal for s in steps):
            return ApprovalDecision.APPROVED
        return None

    @staticmethod
    def _next_pending_index(steps: Sequence[ApprovalRequestStep]) -> Optional[int]:
        for index, step in enumerate(steps):
            if step.status == StepStatus.PENDING:
                return index
        return None

    @staticmethod
    def _template(policy: ApprovalPolicy, step_definition_id: str) -> Optional[ApprovalStep]:
        for template in policy.workflow.steps:
            if template.id == step_definition_id:
                return template
        return None

    @staticmethod
    def _find_step(request: ApprovalRequest, step_id: str) -> Tuple[int, ApprovalRequestStep]:
        for index, step in enumerate(request.steps):
            if step.id == step_id:
                return index, step
        raise StepNotFoundError(step_id)

    # ------------------------------------------------------------------
    # Request-level status changes
    # ------------------------------------------------------------------

    def cancel_request(
        self,
        request: ApprovalRequest,
        actor: Actor,
        reason: Optional[str] = None,
        *,
        expected_version: Optional[int] = None,
    ) -> ApprovalRequest:
        """
        Cancel an unfinished request.

        Raises:
            RequestNotActiveError: If the request is already finished
            ConcurrencyConflictError: If ``expected_version`` is stale
        """
        self._check_version(request, expected_version)
        status = self._next_status(request, ApprovalRequestAction.CANCEL, actor, reason)
        now = self.clock.now()
        logger.info("Approval request %s cancelled by %s", request.id, actor.id)
        return replace(
            request,
            status=status,
            final_decision_at=now,
            final_decision_by=actor,
            final_notes=reason,
            updated_at=now,
            audit_log=request.audit_log + (self._audit("cancelled", actor, now, {"reason": reason}),),
            version=request.version + 1,
        )

    def escalate_request(
        self,
        request: ApprovalRequest,
        new_approvers: Sequence[Actor],
        *,
        actor: Actor = SYSTEM_ACTOR,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> ApprovalRequest:
        """
        Add approvers to every active step.

        Approvers already assigned to a step are not added twice. Quorum
        counts are not changed.

        Raises:
            RequestNotActiveError: If the request is not in progress
            ConcurrencyConflictError: If ``expected_version`` is stale
        """
        if request.status != ApprovalStatus.IN_PROGRESS:
            raise RequestNotActiveError(request.id, request.status.value)
        self._check_version(request, expected_version)
        now = self.clock.now()

        steps = []
        for step in request.steps:
            if step.status != StepStatus.ACTIVE:
                steps.append(step)
                continue
            added = tuple(
                AssignedApprover(actor=approver, assigned_at=now)
                for approver in new_approvers
                if not step.is_approver(approver.id)
            )
            steps.append(replace(
                step,
                assigned_approvers=step.assigned_approvers + added,
                notes=f"Escalated: {reason}" if reason else step.notes,
            ))

        logger.info(
            "Approval request %s escalated to %s",
            request.id, ", ".join(a.id for a in new_approvers),
        )
        return replace(
            request,
            steps=tuple(steps),
            escalation_count=request.escalation_count + 1,
            last_escalated_at=now,
            updated_at=now,
            audit_log=request.audit_log + (self._audit("escalated", actor, now, {
                "approvers": [a.id for a in new_approvers],
                "reason": reason,
            }),),
            version=request.version + 1,
        )

    def is_expired(self, request: ApprovalRequest, now: Optional[datetime] = None) -> bool:
        """Whether the request's ``expires_at`` has passed."""
        if request.expires_at is None:
            return False
        return (now or self.clock.now()) > request.expires_at

    def expire_request(
        self,
        request: ApprovalRequest,
        *,
        now: Optional[datetime] = None,
    ) -> ApprovalRequest:
        """
        Apply the workflow's timeout action to an overdue request.

        ``expire`` (the default) and ``escalate`` end the request as expired;
        ``escalate`` also records an ``escalation_due`` audit entry so the
        caller can pick new approvers. ``auto_approve`` and ``auto_reject``
        end it with the matching final decision. A request that has not yet
        expired is returned unchanged.

        Raises:
            RequestNotActiveError: If the request is already finished
            PolicyNotFoundError: If the request's policy is unknown
        """
        now = now or self.clock.now()
        if not self.is_expired(request, now):
            return request

        policy = self._require_policy(request.policy_id)
        timeout_action = policy.workflow.timeout_action or TimeoutAction.EXPIRE

        final_decision = None
        audit: Tuple[AuditEntry, ...]
        if timeout_action == TimeoutAction.AUTO_APPROVE:
            action = ApprovalRequestAction.APPROVE
            final_decision = ApprovalDecision.APPROVED
            audit = (self._audit("auto_approved", SYSTEM_ACTOR, now),)
        elif timeout_action == TimeoutAction.AUTO_REJECT:
            action = ApprovalRequestAction.REJECT
            final_decision = ApprovalDecision.REJECTED
            audit = (self._audit("auto_rejected", SYSTEM_ACTOR, now),)
        else:
            action = ApprovalRequestAction.EXPIRE
            audit = (self._audit("expired", SYSTEM_ACTOR, now),)
            if timeout_action == TimeoutAction.ESCALATE:
                audit += (self._audit("escalation_due", SYSTEM_ACTOR, now, {
                    "escalation_count": request.escalation_count,
                }),)

        status = self._next_status(request, action, SYSTEM_ACTOR, "Workflow timed out")
        logger.info(
            "Approval request %s timed out (%s): now %s",
            request.id, timeout_action.value, status.value,
        )
        return replace(
            request,
            status=status,
            final_decision=final_decision,
            final_decision_at=now,
            final_decision_by=SYSTEM_ACTOR,
            updated_at=now,
            audit_log=request.audit_log + audit,
            version=request.version + 1,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _next_status(
        self,
        request: ApprovalRequest,
        action: ApprovalRequestAction,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> ApprovalStatus:
        """Run ``action`` through the request lifecycle and return the new status."""
        instance = StateMachineInstance(
            definition_id=APPROVAL_REQUEST_LIFECYCLE.id,
            current_state=request.status.value,
            created_at=request.created_at,
            updated_at=request.updated_at,
        )
        _, result = self._lifecycle.transition(
            instance, action, TransitionInput(actor=actor, notes=notes)
        )
        if not result.success:
            raise RequestNotActiveError(request.id, request.status.value, result.error)
        return ApprovalStatus(result.current_state)

    @staticmethod
    def _check_version(request: ApprovalRequest, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != request.version:
            raise ConcurrencyConflictError(request.id, expected_version, request.version)

    def _audit(
        self,
        action: str,
        actor: Actor,
        timestamp: datetime,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        return AuditEntry(
            id=self.id_generator.generate("audit"),
            action=action,
            actor=actor,
            timestamp=timestamp,
            details=details or {},
        )
