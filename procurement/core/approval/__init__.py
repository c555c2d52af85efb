"""Approval workflows.

Policy matching, multi-step request orchestration and capability queries.
"""

from .models import (
    ApprovalCapabilities,
    ApprovalCheckResult,
    ApprovalContext,
    ApprovalDecision,
    ApprovalPolicy,
    ApprovalRequest,
    ApprovalRequestStep,
    ApprovalStatus,
    ApprovalStep,
    ApprovalWorkflow,
    ApproverConfig,
    ApproverType,
    AssignedApprover,
    CreateApprovalInput,
    DecisionResult,
    ExecutionMode,
    MakeDecisionInput,
    StepDecision,
    StepStatus,
    StepTimeout,
    TimeoutAction,
    WorkflowTimeout,
)
from .triggers import (
    CategoryCondition,
    ChangeCondition,
    CustomCondition,
    StatusCondition,
    ThresholdCondition,
    ThresholdOperator,
    TriggerResult,
    evaluate_condition,
    parse_condition,
)
from .matcher import PolicyMatcher
from .engine import ApprovalEngine, ApproverResolver, DuplicateDecisionPolicy
from .capabilities import (
    ApprovalRequestFilter,
    ApprovalRequestSort,
    calculate_approval_stats,
    can_user_approve,
    filter_requests,
    get_capabilities,
    get_pending_for_user,
    sort_requests,
)
from .policies import (
    COST_INCREASE_POLICY,
    HIGH_VALUE_PO_POLICY,
    NEW_VENDOR_POLICY,
    get_preset_policies,
)

__all__ = [
    "ApprovalCapabilities",
    "ApprovalCheckResult",
    "ApprovalContext",
    "ApprovalDecision",
    "ApprovalPolicy",
    "ApprovalRequest",
    "ApprovalRequestStep",
    "ApprovalStatus",
    "ApprovalStep",
    "ApprovalWorkflow",
    "ApproverConfig",
    "ApproverType",
    "AssignedApprover",
    "CreateApprovalInput",
    "DecisionResult",
    "ExecutionMode",
    "MakeDecisionInput",
    "StepDecision",
    "StepStatus",
    "StepTimeout",
    "TimeoutAction",
    "WorkflowTimeout",
    "CategoryCondition",
    "ChangeCondition",
    "CustomCondition",
    "StatusCondition",
    "ThresholdCondition",
    "ThresholdOperator",
    "TriggerResult",
    "evaluate_condition",
    "parse_condition",
    "PolicyMatcher",
    "ApprovalEngine",
    "ApproverResolver",
    "DuplicateDecisionPolicy",
    "ApprovalRequestFilter",
    "ApprovalRequestSort",
    "calculate_approval_stats",
    "can_user_approve",
    "filter_requests",
    "get_capabilities",
    "get_pending_for_user",
    "sort_requests",
    "COST_INCREASE_POLICY",
    "HIGH_VALUE_PO_POLICY",
    "NEW_VENDOR_POLICY",
    "get_preset_policies",
]
