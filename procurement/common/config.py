"""Policy configuration files.

Loads approval policies from YAML. Strings may reference environment
variables (``$VAR`` or ``${VAR}``), which are expanded on load.

Example::

    policies:
      - id: pol-capex
        name: Capital Expenditure
        object_type: purchase_order
        priority: 5
        triggers:
          - type: category
            categories: [capex]
        workflow:
          id: wf-capex
          name: Capex Workflow
          execution: sequential
          timeout: {duration: 2, unit: days}
          timeout_action: expire
          steps:
            - id: step-cfo
              name: CFO Approval
              order: 1
              approvers: {type: role, value: [cfo]}
"""

import os
from pathlib import Path
from typing import Any, Dict, List

import yaml

from procurement.core.approval.models import (
    ApprovalPolicy,
    ApprovalStep,
    ApprovalWorkflow,
    ApproverConfig,
    StepTimeout,
    WorkflowTimeout,
)
from procurement.core.approval.triggers import parse_condition


def parse_approver_config(approver_dict: Dict[str, Any]) -> ApproverConfig:
    """Parse a step's approver configuration dictionary.

    Args:
        approver_dict: Approver configuration dictionary

    Returns:
        ApproverConfig instance
    """
    return ApproverConfig(
        type=approver_dict["type"],
        value=approver_dict.get("value"),
        exclude=tuple(approver_dict.get("exclude") or ()),
    )


def parse_step(step_dict: Dict[str, Any], default_order: int = 1) -> ApprovalStep:
    """Parse a workflow step dictionary.

    Args:
        step_dict: Step configuration dictionary
        default_order: Order used when the step does not declare one

    Returns:
        ApprovalStep instance
    """
    timeout = None
    if step_dict.get("timeout"):
        timeout_dict = step_dict["timeout"]
        timeout = StepTimeout(
            duration=timeout_dict["duration"],
            unit=timeout_dict.get("unit", "hours"),
            action=timeout_dict.get("action"),
        )

    required = step_dict.get("required_approvals", 1)
    if required not in ("all", "any"):
        required = int(required)

    return ApprovalStep(
        id=step_dict["id"],
        name=step_dict.get("name", step_dict["id"]),
        approvers=parse_approver_config(step_dict["approvers"]),
        required_approvals=required,
        order=step_dict.get("order", default_order),
        description=step_dict.get("description"),
        timeout=timeout,
    )


def parse_workflow(workflow_dict: Dict[str, Any]) -> ApprovalWorkflow:
    """Parse a workflow dictionary."""
    timeout = None
    if workflow_dict.get("timeout"):
        timeout = WorkflowTimeout(
            duration=workflow_dict["timeout"]["duration"],
            unit=workflow_dict["timeout"].get("unit", "days"),
        )

    steps = [
        parse_step(step_dict, default_order=index + 1)
        for index, step_dict in enumerate(workflow_dict.get("steps", []))
    ]

    return ApprovalWorkflow(
        id=workflow_dict["id"],
        name=workflow_dict.get("name", workflow_dict["id"]),
        steps=tuple(steps),
        execution=workflow_dict.get("execution", "sequential"),
        timeout=timeout,
        timeout_action=workflow_dict.get("timeout_action"),
        description=workflow_dict.get("description"),
    )


def parse_policy(policy_dict: Dict[str, Any]) -> ApprovalPolicy:
    """Parse a policy dictionary.

    Args:
        policy_dict: Policy configuration dictionary

    Returns:
        ApprovalPolicy instance

    Raises:
        ValueError: If a required key is missing or a value is invalid
    """
    try:
        return ApprovalPolicy(
            id=policy_dict["id"],
            name=policy_dict.get("name", policy_dict["id"]),
            object_type=policy_dict["object_type"],
            triggers=tuple(parse_condition(t) for t in policy_dict.get("triggers", [])),
            workflow=parse_workflow(policy_dict["workflow"]),
            priority=int(policy_dict.get("priority", 100)),
            active=bool(policy_dict.get("active", True)),
            description=policy_dict.get("description"),
            meta=dict(policy_dict.get("meta") or {}),
        )
    except KeyError as e:
        raise ValueError(
            f"Policy {policy_dict.get('id', '<unnamed>')!r} is missing key {e.args[0]!r}"
        ) from None


def parse_policies(config_dict: Dict[str, Any]) -> List[ApprovalPolicy]:
    """Parse the ``policies`` list of a configuration dictionary.

    Raises:
        ValueError: If a policy is invalid or two policies share an id
    """
    policies = []
    seen = set()
    for policy_dict in config_dict.get("policies") or []:
        policy = parse_policy(policy_dict)
        if policy.id in seen:
            raise ValueError(f"Duplicate policy id: {policy.id}")
        seen.add(policy.id)
        policies.append(policy)
    return policies


def load_config(config_path: str) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
        TypeError: If the document root is not a mapping
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r") as f:
        config = yaml.safe_load(f)

    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise TypeError(
            f"Configuration root must be a mapping, got {type(config).__name__}"
        )

    return _expand_env_vars(config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in string values."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


def load_policies(config_path: str) -> List[ApprovalPolicy]:
    """Load and parse the policies declared in a YAML file."""
    return parse_policies(load_config(config_path))


def load_configured_policies(settings=None) -> List[ApprovalPolicy]:
    """Policies selected by settings: the presets and/or ``policy_file``.

    File policies replace presets that share their id.
    """
    from procurement.core.approval.policies import get_preset_policies
    from procurement.core.config import get_settings

    settings = settings or get_settings()
    policies: Dict[str, ApprovalPolicy] = {}
    if settings.use_preset_policies:
        policies.update((p.id, p) for p in get_preset_policies())
    if settings.policy_file:
        policies.update((p.id, p) for p in load_policies(settings.policy_file))
    return list(policies.values())

