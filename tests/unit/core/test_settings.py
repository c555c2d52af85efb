"""Tests for application settings."""

import pydantic
import pytest

from procurement.core.approval import ApprovalContext, ApprovalEngine, DuplicateDecisionPolicy, get_preset_policies
from procurement.core.approval.policies import (
    create_policy,
    create_step,
    create_workflow,
    custom_trigger,
    role_approvers,
)
from procurement.core.config import Settings, get_settings
from procurement.core.financial.rules import COST_DELTA_RULE_ID
from procurement.core.types import Actor


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        """Test default values."""
        settings = Settings()

        assert settings.log_level == "INFO"
        assert settings.duplicate_decisions == "reject"
        assert settings.use_preset_policies
        assert settings.policy_file is None

    def test_env_prefix(self, monkeypatch):
        """Test PROCUREMENT_ environment variables are read."""
        monkeypatch.setenv("PROCUREMENT_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("PROCUREMENT_DUPLICATE_DECISIONS", "overwrite")

        settings = Settings()

        assert settings.log_level == "DEBUG"
        assert settings.duplicate_decisions == "overwrite"

    def test_invalid_duplicate_policy(self):
        """Test unknown duplicate policies are rejected."""
        with pytest.raises(pydantic.ValidationError):
            Settings(duplicate_decisions="ignore")

    def test_get_settings_cached(self):
        """Test get_settings returns one instance."""
        assert get_settings() is get_settings()


class TestEngineFromSettings:
    """Tests for building an engine from settings."""

    def test_duplicate_policy_applied(self):
        """Test the configured duplicate policy reaches the engine."""
        engine = ApprovalEngine.from_settings(get_preset_policies(), Settings(duplicate_decisions="append"))

        assert engine.duplicate_decisions == DuplicateDecisionPolicy.APPEND

    def test_cost_threshold_applied(self):
        """Test the configured cost threshold drives cost triggers without params."""
        policy = create_policy(
            id="pol-cost",
            name="Cost",
            object_type="purchase_order",
            triggers=[custom_trigger(COST_DELTA_RULE_ID)],
            workflow=create_workflow(
                id="wf-cost", name="Cost",
                steps=[create_step("s1", "S1", role_approvers(["buyer"]), order=1)],
            ),
        )
        context = ApprovalContext(
            object_type="purchase_order",
            object_id="PO-1",
            requester=Actor(id="u-1"),
            object_data={"originalTotal": 1000, "grandTotal": 1030},
        )

        strict = ApprovalEngine.from_settings([policy], Settings(cost_percent_threshold=0.01))
        lenient = ApprovalEngine.from_settings([policy], Settings())

        assert strict.check_approval_required(context).required
        assert not lenient.check_approval_required(context).required
