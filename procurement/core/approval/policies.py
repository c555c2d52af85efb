"""Policy builders and preset policies for common purchase order approvals."""

from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from procurement.core.financial.rules import COST_DELTA_RULE_ID, NEW_VENDOR_RULE_ID

from .models import (
    ApprovalPolicy,
    ApprovalStep,
    ApprovalWorkflow,
    ApproverConfig,
    ApproverType,
    ExecutionMode,
    RequiredApprovals,
    StepTimeout,
    TimeoutAction,
    WorkflowTimeout,
)
from .triggers import (
    UNSET,
    CategoryCondition,
    ChangeCondition,
    CustomCondition,
    StatusCondition,
    ThresholdCondition,
    ThresholdOperator,
    TriggerCondition,
)

PURCHASE_ORDER = "purchase_order"


# ---------------------------------------------------------------------------
# Policy builders
# ---------------------------------------------------------------------------


def create_policy(
    id: str,
    name: str,
    object_type: str,
    triggers: Iterable[TriggerCondition],
    workflow: ApprovalWorkflow,
    *,
    priority: int = 100,
    active: bool = True,
    description: Optional[str] = None,
) -> ApprovalPolicy:
    return ApprovalPolicy(
        id=id,
        name=name,
        object_type=object_type,
        triggers=tuple(triggers),
        workflow=workflow,
        priority=priority,
        active=active,
        description=description,
    )


def create_workflow(
    id: str,
    name: str,
    steps: Iterable[ApprovalStep],
    *,
    execution: Union[ExecutionMode, str] = ExecutionMode.SEQUENTIAL,
    timeout: Optional[WorkflowTimeout] = None,
    timeout_action: Union[TimeoutAction, str, None] = None,
    description: Optional[str] = None,
) -> ApprovalWorkflow:
    return ApprovalWorkflow(
        id=id,
        name=name,
        steps=tuple(steps),
        execution=execution,
        timeout=timeout,
        timeout_action=timeout_action,
        description=description,
    )


def create_step(
    id: str,
    name: str,
    approvers: ApproverConfig,
    order: int,
    *,
    required_approvals: RequiredApprovals = 1,
    timeout: Optional[StepTimeout] = None,
    description: Optional[str] = None,
) -> ApprovalStep:
    return ApprovalStep(
        id=id,
        name=name,
        approvers=approvers,
        required_approvals=required_approvals,
        order=order,
        timeout=timeout,
        description=description,
    )


# ---------------------------------------------------------------------------
# Trigger builders
# ---------------------------------------------------------------------------


def threshold_trigger(field: str, operator: Union[ThresholdOperator, str], value: float) -> ThresholdCondition:
    return ThresholdCondition(field=field, operator=ThresholdOperator(operator), value=value)


def change_trigger(field: str, from_value: Any = UNSET, to_value: Any = UNSET) -> ChangeCondition:
    return ChangeCondition(field=field, from_value=from_value, to_value=to_value)


def status_trigger(
    to: Union[str, Sequence[str]],
    from_: Union[str, Sequence[str], None] = None,
) -> StatusCondition:
    return StatusCondition(to=to, from_=from_ or ())


def category_trigger(categories: Sequence[str]) -> CategoryCondition:
    return CategoryCondition(categories=tuple(categories))


def custom_trigger(rule_id: str, params: Optional[Mapping[str, Any]] = None) -> CustomCondition:
    return CustomCondition(rule_id=rule_id, params=dict(params or {}))


# ---------------------------------------------------------------------------
# Approver builders
# ---------------------------------------------------------------------------


def user_approvers(user_ids: Sequence[str], exclude: Sequence[str] = ()) -> ApproverConfig:
    return ApproverConfig(type=ApproverType.USER, value=tuple(user_ids), exclude=tuple(exclude))


def role_approvers(roles: Sequence[str], exclude: Sequence[str] = ()) -> ApproverConfig:
    return ApproverConfig(type=ApproverType.ROLE, value=tuple(roles), exclude=tuple(exclude))


def manager_approver(exclude: Sequence[str] = ()) -> ApproverConfig:
    return ApproverConfig(type=ApproverType.MANAGER, value="manager", exclude=tuple(exclude))


def department_approver(exclude: Sequence[str] = ()) -> ApproverConfig:
    return ApproverConfig(type=ApproverType.DEPARTMENT, value="department_head", exclude=tuple(exclude))


# ---------------------------------------------------------------------------
# Preset policies
# ---------------------------------------------------------------------------

# Manager then finance sign-off for orders over $10,000
HIGH_VALUE_PO_POLICY = create_policy(
    id="pol-high-value-po",
    name="High Value Purchase Order",
    description="Requires approval for POs over $10,000",
    object_type=PURCHASE_ORDER,
    triggers=[threshold_trigger("grandTotal", ">", 10000)],
    workflow=create_workflow(
        id="wf-high-value-po",
        name="High Value PO Workflow",
        steps=[
            create_step("step-manager", "Manager Approval", manager_approver(), order=1),
            create_step("step-finance", "Finance Approval", role_approvers(["finance_manager"]), order=2),
        ],
        timeout=WorkflowTimeout(duration=3, unit="days"),
        timeout_action=TimeoutAction.ESCALATE,
    ),
    priority=10,
)

# Buyer review when the total moves by more than 5% or $1,000
COST_INCREASE_POLICY = create_policy(
    id="pol-cost-increase",
    name="Cost Increase",
    description="Requires approval when costs increase significantly",
    object_type=PURCHASE_ORDER,
    triggers=[
        custom_trigger(COST_DELTA_RULE_ID, {"percent_threshold": 0.05, "absolute_threshold": 1000}),
    ],
    workflow=create_workflow(
        id="wf-cost-increase",
        name="Cost Increase Workflow",
        steps=[create_step("step-buyer", "Buyer Review", role_approvers(["buyer"]), order=1)],
        timeout=WorkflowTimeout(duration=1, unit="days"),
    ),
    priority=20,
)

# Procurement and compliance review, in parallel, for first orders with a vendor
NEW_VENDOR_POLICY = create_policy(
    id="pol-new-vendor",
    name="New Vendor",
    description="Requires approval for orders with new vendors",
    object_type=PURCHASE_ORDER,
    triggers=[custom_trigger(NEW_VENDOR_RULE_ID)],
    workflow=create_workflow(
        id="wf-new-vendor",
        name="New Vendor Workflow",
        steps=[
            create_step(
                "step-procurement", "Procurement Review", role_approvers(["procurement_manager"]), order=1,
            ),
            create_step("step-compliance", "Compliance Review", role_approvers(["compliance"]), order=2),
        ],
        execution=ExecutionMode.PARALLEL,
        timeout=WorkflowTimeout(duration=5, unit="days"),
    ),
    priority=15,
)


def get_preset_policies() -> List[ApprovalPolicy]:
    return [HIGH_VALUE_PO_POLICY, COST_INCREASE_POLICY, NEW_VENDOR_POLICY]
