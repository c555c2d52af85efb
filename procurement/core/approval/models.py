"""Approval policy, workflow and request models.

Policies and workflows are configuration, loaded once and shared. Requests
are immutable values: every engine operation returns a new request and
never modifies the one passed in.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from procurement.core.lifecycle import REQUEST_TERMINAL_STATES, ApprovalStatus
from procurement.core.types import Actor, AuditEntry

from .triggers import TriggerCondition, condition_to_dict


class StepStatus(str, Enum):
    """Status of one step of a request."""

    PENDING = "pending"
    ACTIVE = "active"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


STEP_TERMINAL_STATES = {StepStatus.APPROVED, StepStatus.REJECTED, StepStatus.SKIPPED}


class ApprovalDecision(str, Enum):
    """An approver's vote."""

    APPROVED = "approved"
    REJECTED = "rejected"
    DEFERRED = "deferred"
    ESCALATED = "escalated"


class ExecutionMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"


class ApproverType(str, Enum):
    """How the approvers of a step are selected."""

    USER = "user"
    ROLE = "role"
    MANAGER = "manager"
    DEPARTMENT = "department"
    DYNAMIC = "dynamic"


class TimeoutAction(str, Enum):
    """What happens when a workflow's timeout passes."""

    ESCALATE = "escalate"
    AUTO_APPROVE = "auto_approve"
    AUTO_REJECT = "auto_reject"
    EXPIRE = "expire"


# "all" resolves to the number of assigned approvers, "any" to one
RequiredApprovals = Union[int, str]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApproverConfig:
    """Approver selection for a step; resolved to actors by the caller."""

    type: ApproverType
    value: Union[str, Tuple[str, ...], None] = None
    exclude: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "type", ApproverType(self.type))
        if isinstance(self.value, list):
            object.__setattr__(self, "value", tuple(self.value))
        object.__setattr__(self, "exclude", tuple(self.exclude))


@dataclass(frozen=True)
class StepTimeout:
    duration: float
    unit: str = "hours"
    action: Optional[str] = None  # remind, escalate, skip or reject


@dataclass(frozen=True)
class WorkflowTimeout:
    duration: float
    unit: str = "days"


@dataclass(frozen=True)
class ApprovalStep:
    """Template for one stage of a workflow."""

    id: str
    name: str
    approvers: ApproverConfig
    required_approvals: RequiredApprovals = 1
    order: int = 1
    description: Optional[str] = None
    timeout: Optional[StepTimeout] = None


@dataclass(frozen=True)
class ApprovalWorkflow:
    """Step topology and timeout rules for a policy."""

    id: str
    name: str
    steps: Tuple[ApprovalStep, ...]
    execution: ExecutionMode = ExecutionMode.SEQUENTIAL
    timeout: Optional[WorkflowTimeout] = None
    timeout_action: Optional[TimeoutAction] = None
    description: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "execution", ExecutionMode(self.execution))
        if self.timeout_action is not None:
            object.__setattr__(self, "timeout_action", TimeoutAction(self.timeout_action))


@dataclass(frozen=True)
class ApprovalPolicy:
    """When approval is required for an object type, and which workflow runs."""

    id: str
    name: str
    object_type: str
    triggers: Tuple[TriggerCondition, ...]
    workflow: ApprovalWorkflow
    priority: int = 100
    active: bool = True
    description: Optional[str] = None
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "triggers", tuple(self.triggers))

    def to_dict(self) -> Dict[str, Any]:
        workflow = self.workflow
        return {
            "id": self.id,
            "name": self.name,
            "object_type": self.object_type,
            "priority": self.priority,
            "active": self.active,
            "description": self.description,
            "triggers": [condition_to_dict(t) for t in self.triggers],
            "workflow": {
                "id": workflow.id,
                "name": workflow.name,
                "execution": workflow.execution.value,
                "timeout": to_plain(workflow.timeout),
                "timeout_action": to_plain(workflow.timeout_action),
                "steps": [to_plain(step) for step in workflow.steps],
            },
        }


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalContext:
    """Object snapshot the matcher and approver resolution work on."""

    object_type: str
    object_id: str
    requester: Actor
    object_data: Mapping[str, Any] = field(default_factory=dict)
    current_user: Optional[Actor] = None
    previous_values: Optional[Mapping[str, Any]] = None
    new_values: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class AssignedApprover:
    actor: Actor
    assigned_at: datetime
    has_responded: bool = False
    notified_at: Optional[datetime] = None


@dataclass(frozen=True)
class StepDecision:
    """One approver's vote on a step. Append-only."""

    id: str
    approver: Actor
    decision: ApprovalDecision
    decided_at: datetime
    notes: Optional[str] = None
    attachments: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ApprovalRequestStep:
    """Request-scoped copy of a workflow step.

    ``required_approvals`` is resolved to a concrete count at creation and
    never changes; ``decisions`` only grows.
    """

    id: str
    step_definition_id: str
    name: str
    order: int
    status: StepStatus
    assigned_approvers: Tuple[AssignedApprover, ...]
    required_approvals: int
    decisions: Tuple[StepDecision, ...] = ()
    activated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    due_at: Optional[datetime] = None
    notes: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "status", StepStatus(self.status))
        object.__setattr__(self, "assigned_approvers", tuple(self.assigned_approvers))
        object.__setattr__(self, "decisions", tuple(self.decisions))

    @property
    def is_terminal(self) -> bool:
        return self.status in STEP_TERMINAL_STATES

    @property
    def approvals(self) -> int:
        return sum(1 for d in self.decisions if d.decision == ApprovalDecision.APPROVED)

    @property
    def rejections(self) -> int:
        return sum(1 for d in self.decisions if d.decision == ApprovalDecision.REJECTED)

    @property
    def remaining_approvers(self) -> int:
        """Assigned approvers who have not responded yet."""
        return sum(1 for a in self.assigned_approvers if not a.has_responded)

    def get_assignment(self, actor_id: str) -> Optional[AssignedApprover]:
        for assignment in self.assigned_approvers:
            if assignment.actor.id == actor_id:
                return assignment
        return None

    def is_approver(self, actor_id: str) -> bool:
        return self.get_assignment(actor_id) is not None


@dataclass(frozen=True)
class ApprovalRequest:
    """A single in-flight or completed approval.

    References its policy and workflow by id and owns independent step
    instances, so later changes to configuration never reach it.
    """

    id: str
    policy_id: str
    workflow_id: str
    object_type: str
    object_id: str
    status: ApprovalStatus
    requester: Actor
    trigger_reason: str
    steps: Tuple[ApprovalRequestStep, ...]
    created_at: datetime
    updated_at: datetime
    current_step_index: int = 0
    object_label: Optional[str] = None
    trigger_data: Mapping[str, Any] = field(default_factory=dict)
    final_decision: Optional[ApprovalDecision] = None
    final_decision_at: Optional[datetime] = None
    final_decision_by: Optional[Actor] = None
    final_notes: Optional[str] = None
    expires_at: Optional[datetime] = None
    escalation_count: int = 0
    last_escalated_at: Optional[datetime] = None
    audit_log: Tuple[AuditEntry, ...] = ()
    version: int = 1
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "status", ApprovalStatus(self.status))
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "audit_log", tuple(self.audit_log))

    @property
    def is_terminal(self) -> bool:
        return self.status in REQUEST_TERMINAL_STATES

    @property
    def current_step(self) -> Optional[ApprovalRequestStep]:
        """The first active step, if any."""
        for step in self.steps:
            if step.status == StepStatus.ACTIVE:
                return step
        return None

    @property
    def active_steps(self) -> List[ApprovalRequestStep]:
        return [step for step in self.steps if step.status == StepStatus.ACTIVE]

    def get_step(self, step_id: str) -> Optional[ApprovalRequestStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Plain-value form (strings, numbers, ISO dates, lists, dicts)."""
        return to_plain(self)


# ---------------------------------------------------------------------------
# Operation inputs and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateApprovalInput:
    policy_id: str
    object_type: str
    object_id: str
    requester: Actor
    trigger_reason: str
    object_label: Optional[str] = None
    trigger_data: Mapping[str, Any] = field(default_factory=dict)
    object_data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MakeDecisionInput:
    step_id: str
    approver: Actor
    decision: ApprovalDecision
    notes: Optional[str] = None
    attachments: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "decision", ApprovalDecision(self.decision))
        object.__setattr__(self, "attachments", tuple(self.attachments))


@dataclass(frozen=True)
class DecisionResult:
    request: ApprovalRequest
    complete: bool
    final_decision: Optional[ApprovalDecision] = None


@dataclass(frozen=True)
class ApprovalCheckResult:
    """Which active policies apply to a context, most significant first."""

    required: bool
    matching_policies: Tuple[ApprovalPolicy, ...] = ()
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ApprovalCapabilities:
    """What an actor may do with a request right now."""

    can_approve: bool
    can_reject: bool
    can_defer: bool
    can_escalate: bool
    can_cancel: bool
    is_approver: bool
    is_pending: bool
    current_step: Optional[ApprovalRequestStep] = None


def to_plain(value: Any) -> Any:
    """Convert dataclasses, enums, datetimes and tuples to JSON-ready values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "__dataclass_fields__"):
        return {f.name: to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value
