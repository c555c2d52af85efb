"""Tests for YAML policy configuration."""

import pytest
import yaml

from procurement.common.config import (
    load_config,
    load_configured_policies,
    load_policies,
    parse_approver_config,
    parse_policies,
    parse_policy,
    parse_step,
    parse_workflow,
)
from procurement.core.approval import (
    HIGH_VALUE_PO_POLICY,
    ApproverType,
    CategoryCondition,
    ExecutionMode,
    TimeoutAction,
    get_preset_policies,
)
from procurement.core.config import Settings


CAPEX_POLICY = {
    "id": "pol-capex",
    "name": "Capital Expenditure",
    "object_type": "purchase_order",
    "priority": 5,
    "triggers": [{"type": "category", "categories": ["capex"]}],
    "workflow": {
        "id": "wf-capex",
        "name": "Capex Workflow",
        "execution": "parallel",
        "timeout": {"duration": 2, "unit": "days"},
        "timeout_action": "auto_reject",
        "steps": [
            {"id": "step-cfo", "name": "CFO Approval", "approvers": {"type": "role", "value": ["cfo"]}},
            {
                "id": "step-board",
                "name": "Board",
                "required_approvals": "all",
                "approvers": {"type": "user", "value": ["u-1", "u-2"], "exclude": ["u-2"]},
                "timeout": {"duration": 12},
            },
        ],
    },
}


class TestApproverConfig:
    """Tests for approver config parsing."""

    def test_parse_role_approvers(self):
        """Test role lists become tuples."""
        config = parse_approver_config({"type": "role", "value": ["cfo", "ceo"]})

        assert config.type == ApproverType.ROLE
        assert config.value == ("cfo", "ceo")
        assert config.exclude == ()

    def test_parse_manager(self):
        """Test approvers without a value."""
        config = parse_approver_config({"type": "manager"})

        assert config.type == ApproverType.MANAGER
        assert config.value is None

    def test_unknown_type(self):
        """Test unknown approver types are rejected."""
        with pytest.raises(ValueError):
            parse_approver_config({"type": "astrologer"})


class TestStepAndWorkflow:
    """Tests for step and workflow parsing."""

    def test_default_order_from_position(self):
        """Test steps without an order use their position."""
        workflow = parse_workflow(CAPEX_POLICY["workflow"])

        assert [s.order for s in workflow.steps] == [1, 2]

    def test_step_timeout_defaults_to_hours(self):
        """Test a step timeout without a unit is in hours."""
        step = parse_step(CAPEX_POLICY["workflow"]["steps"][1])

        assert step.timeout.duration == 12
        assert step.timeout.unit == "hours"
        assert step.required_approvals == "all"

    def test_required_approvals_coerced(self):
        """Test numeric quorum strings become integers."""
        step = parse_step({"id": "s", "approvers": {"type": "manager"}, "required_approvals": "2"})

        assert step.required_approvals == 2
        assert step.name == "s"

    def test_workflow_fields(self):
        """Test workflow execution and timeout parsing."""
        workflow = parse_workflow(CAPEX_POLICY["workflow"])

        assert workflow.execution == ExecutionMode.PARALLEL
        assert workflow.timeout.duration == 2
        assert workflow.timeout.unit == "days"
        assert workflow.timeout_action == TimeoutAction.AUTO_REJECT


class TestPolicyParsing:
    """Tests for policy parsing."""

    def test_parse_policy(self):
        """Test a complete policy dictionary."""
        policy = parse_policy(CAPEX_POLICY)

        assert policy.id == "pol-capex"
        assert policy.priority == 5
        assert policy.active
        assert policy.triggers == (CategoryCondition(("capex",)),)
        assert policy.workflow.steps[1].approvers.exclude == ("u-2",)

    def test_missing_key(self):
        """Test a missing required key raises ValueError naming the key."""
        data = {k: v for k, v in CAPEX_POLICY.items() if k != "object_type"}

        with pytest.raises(ValueError, match="object_type"):
            parse_policy(data)

    def test_invalid_trigger(self):
        """Test an invalid trigger raises ValueError."""
        data = dict(CAPEX_POLICY, triggers=[{"type": "regex"}])

        with pytest.raises(ValueError):
            parse_policy(data)

    def test_duplicate_ids(self):
        """Test duplicate policy ids are rejected."""
        with pytest.raises(ValueError, match="Duplicate policy id"):
            parse_policies({"policies": [CAPEX_POLICY, CAPEX_POLICY]})

    def test_empty_policies(self):
        """Test a null policies list yields nothing."""
        assert parse_policies({"policies": None}) == []

    def test_preset_round_trip(self):
        """Test a preset's dictionary form parses back to an equivalent policy."""
        parsed = parse_policy(HIGH_VALUE_PO_POLICY.to_dict())

        assert parsed.id == HIGH_VALUE_PO_POLICY.id
        assert parsed.triggers == HIGH_VALUE_PO_POLICY.triggers
        assert [s.id for s in parsed.workflow.steps] == ["step-manager", "step-finance"]
        assert parsed.workflow.timeout_action == TimeoutAction.ESCALATE


class TestLoadConfig:
    """Tests for loading YAML files."""

    def test_load_valid_config(self, tmp_path):
        """Test loading a YAML policy file."""
        config_file = tmp_path / "policies.yaml"
        config_file.write_text(yaml.dump({"policies": [CAPEX_POLICY]}))

        policies = load_policies(str(config_file))

        assert [p.id for p in policies] == ["pol-capex"]

    def test_load_nonexistent_file(self):
        """Test loading nonexistent file raises error."""
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/policies.yaml")

    def test_load_empty_file(self, tmp_path):
        """Test an empty file loads as an empty mapping."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        assert load_config(str(config_file)) == {}

    def test_load_non_mapping(self, tmp_path):
        """Test a list document is rejected."""
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- a\n- b\n")

        with pytest.raises(TypeError):
            load_config(str(config_file))

    def test_load_invalid_yaml(self, tmp_path):
        """Test malformed YAML raises a YAML error."""
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("policies: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            load_config(str(config_file))

    def test_env_var_expansion(self, tmp_path, monkeypatch):
        """Test environment variables in string values are expanded."""
        monkeypatch.setenv("CFO_ROLE", "chief_financial_officer")
        config_file = tmp_path / "policies.yaml"
        config_file.write_text(
            "policies:\n"
            "  - id: pol-env\n"
            "    object_type: purchase_order\n"
            "    triggers: []\n"
            "    workflow:\n"
            "      id: wf-env\n"
            "      steps:\n"
            "        - id: s1\n"
            "          approvers: {type: role, value: [\"${CFO_ROLE}\"]}\n"
        )

        policy = load_policies(str(config_file))[0]

        assert policy.workflow.steps[0].approvers.value == ("chief_financial_officer",)


class TestConfiguredPolicies:
    """Tests for settings-driven policy selection."""

    def test_presets_only(self):
        """Test presets are used when no policy file is set."""
        policies = load_configured_policies(Settings(policy_file=None))

        assert [p.id for p in policies] == [p.id for p in get_preset_policies()]

    def test_file_overrides_preset(self, tmp_path):
        """Test a file policy replaces the preset with the same id."""
        override = dict(CAPEX_POLICY, id=HIGH_VALUE_PO_POLICY.id, name="Override")
        config_file = tmp_path / "policies.yaml"
        config_file.write_text(yaml.dump({"policies": [override, CAPEX_POLICY]}))

        policies = load_configured_policies(Settings(policy_file=str(config_file)))
        by_id = {p.id: p for p in policies}

        assert by_id[HIGH_VALUE_PO_POLICY.id].name == "Override"
        assert "pol-capex" in by_id
        assert len(policies) == 4

    def test_file_only(self, tmp_path):
        """Test presets can be disabled."""
        config_file = tmp_path / "policies.yaml"
        config_file.write_text(yaml.dump({"policies": [CAPEX_POLICY]}))

        policies = load_configured_policies(
            Settings(policy_file=str(config_file), use_preset_policies=False)
        )

        assert [p.id for p in policies] == ["pol-capex"]
