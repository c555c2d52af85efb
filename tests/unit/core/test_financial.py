"""Tests for currency rounding, cost deltas and variances."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from procurement.core.config import Settings
from procurement.core.financial import (
    DEFAULT_COST_THRESHOLD,
    DEFAULT_MATCH_TOLERANCE,
    HIGH_VALUE_COST_THRESHOLD,
    CostThreshold,
    ThresholdMode,
    calculate_cost_delta,
    calculate_variance,
    round_currency,
)
from procurement.core.financial.money import is_amount
from procurement.core.financial.policies import cost_threshold_from_settings
from procurement.core.financial.rules import (
    COST_DELTA_RULE_ID,
    NEW_VENDOR_RULE_ID,
    cost_delta_rule,
    default_custom_evaluators,
    new_vendor_rule,
)


def context(object_data=None, previous_values=None, new_values=None):
    return SimpleNamespace(
        object_id="PO-1",
        object_data=object_data or {},
        previous_values=previous_values,
        new_values=new_values,
    )


class TestRoundCurrency:
    """Test half-up rounding to cents."""

    @pytest.mark.parametrize("value,expected", [
        (2.675, 2.68),
        (1.005, 1.01),
        (10, 10.0),
        (-1.005, -1.01),
        (Decimal("3.14159"), 3.14),
    ])
    def test_round_half_up(self, value, expected):
        """Test values round half away from zero."""
        assert round_currency(value) == expected

    def test_non_numeric_rejected(self):
        """Test non-numeric amounts raise ValueError."""
        with pytest.raises(ValueError):
            round_currency("abc")

    def test_infinity_rejected(self):
        """Test infinite amounts raise ValueError."""
        with pytest.raises(ValueError):
            round_currency(float("inf"))


class TestIsAmount:
    """Test which values count as monetary amounts."""

    @pytest.mark.parametrize("value", [0, 12, 12.5, Decimal("12.50")])
    def test_amounts(self, value):
        """Test finite ints, floats and Decimals are amounts."""
        assert is_amount(value)

    @pytest.mark.parametrize("value", [
        True, "12", None, float("nan"), float("inf"), Decimal("NaN"), Decimal("-Infinity"),
    ])
    def test_not_amounts(self, value):
        """Test bools, strings, None and non-finite numbers are rejected."""
        assert not is_amount(value)


class TestCostDelta:
    """Test cost delta calculation."""

    def test_increase_over_percent(self):
        """Test a 10% increase exceeds the default threshold."""
        delta = calculate_cost_delta(1000, 1100, DEFAULT_COST_THRESHOLD)

        assert delta.delta == 100.0
        assert delta.percent_change == pytest.approx(0.1)
        assert delta.is_increase
        assert delta.exceeds_percent_threshold
        assert not delta.exceeds_absolute_threshold
        assert delta.exceeds_threshold

    def test_boundary_is_not_exceeded(self):
        """Test a delta equal to the limit does not exceed it."""
        delta = calculate_cost_delta(20000, 21000, DEFAULT_COST_THRESHOLD)

        assert delta.delta == 1000.0
        assert not delta.exceeds_absolute_threshold
        assert not delta.exceeds_percent_threshold
        assert not delta.exceeds_threshold

    def test_and_mode_requires_both(self):
        """Test AND mode needs both limits exceeded."""
        delta = calculate_cost_delta(50000, 60000, HIGH_VALUE_COST_THRESHOLD)
        assert not delta.exceeds_threshold

        delta = calculate_cost_delta(50000, 65000, HIGH_VALUE_COST_THRESHOLD)
        assert delta.exceeds_threshold

    def test_zero_original(self):
        """Test a zero original total has no percent change."""
        delta = calculate_cost_delta(0, 500, DEFAULT_COST_THRESHOLD)

        assert delta.percent_change == 0.0
        assert not delta.exceeds_threshold

    def test_decrease_counts(self):
        """Test decreases are measured by magnitude."""
        delta = calculate_cost_delta(10000, 8000, DEFAULT_COST_THRESHOLD)

        assert delta.delta == -2000.0
        assert not delta.is_increase
        assert delta.exceeds_threshold

    def test_mode_normalized(self):
        """Test a string mode is accepted."""
        assert CostThreshold(0.1, 100, "AND").mode == ThresholdMode.AND


class TestVariance:
    """Test expected vs actual variance."""

    def test_within_tolerance(self):
        """Test a small variance is within the default tolerance."""
        variance = calculate_variance("total", 1000, 1004, DEFAULT_MATCH_TOLERANCE)

        assert variance.variance == 4.0
        assert variance.within_tolerance

    def test_outside_tolerance(self):
        """Test a large variance is outside the default tolerance."""
        variance = calculate_variance("total", 1000, 1100, DEFAULT_MATCH_TOLERANCE)

        assert variance.variance_percent == pytest.approx(0.1)
        assert not variance.within_tolerance


class TestCostDeltaRule:
    """Test the cost_delta_exceeded evaluator."""

    def test_reads_original_and_grand_total(self):
        """Test originalTotal and grandTotal from object data."""
        rule = cost_delta_rule()

        assert rule({}, context({"originalTotal": 10000, "grandTotal": 12000}))
        assert not rule({}, context({"originalTotal": 10000, "grandTotal": 10100}))

    def test_falls_back_to_change_set(self):
        """Test previous and new values are used when object data lacks totals."""
        rule = cost_delta_rule()
        ctx = context(previous_values={"grandTotal": 5000}, new_values={"grandTotal": 7000})

        assert rule({}, ctx)

    def test_params_override_threshold(self):
        """Test trigger params replace the default limits."""
        rule = cost_delta_rule()
        ctx = context({"originalTotal": 10000, "grandTotal": 10300})

        assert not rule({}, ctx)
        assert rule({"percent_threshold": 0.01, "absolute_threshold": 100000}, ctx)

    def test_invalid_params_use_default(self):
        """Test malformed params fall back to the default threshold."""
        rule = cost_delta_rule()
        ctx = context({"originalTotal": 10000, "grandTotal": 12000})

        assert rule({"mode": "XOR"}, ctx)

    def test_decimal_totals(self):
        """Test Decimal totals are evaluated like other numbers."""
        rule = cost_delta_rule()

        assert rule({}, context({"originalTotal": Decimal("10000.00"), "grandTotal": Decimal("12000.00")}))
        assert not rule({}, context({"originalTotal": Decimal("10000.00"), "grandTotal": Decimal("10100.00")}))

    @pytest.mark.parametrize("data", [
        {},
        {"originalTotal": Decimal("NaN"), "grandTotal": 12000},
        {"originalTotal": "10000", "grandTotal": 12000},
        {"originalTotal": True, "grandTotal": 12000},
        {"originalTotal": 10000},
    ])
    def test_missing_or_malformed_data(self, data):
        """Test missing or non-numeric totals never fire."""
        assert not cost_delta_rule()({}, context(data))


class TestNewVendorRule:
    """Test the is_new_vendor evaluator."""

    def test_flag_true(self):
        """Test vendor.isNew True fires."""
        assert new_vendor_rule()({}, context({"vendor": {"isNew": True}}))

    @pytest.mark.parametrize("data", [{}, {"vendor": {"isNew": False}}, {"vendor": {"isNew": "yes"}}])
    def test_flag_not_true(self, data):
        """Test anything other than True does not fire."""
        assert not new_vendor_rule()({}, context(data))


class TestThresholdSettings:
    """Test thresholds built from settings."""

    def test_defaults(self):
        """Test default settings match the default threshold."""
        assert cost_threshold_from_settings(Settings()) == DEFAULT_COST_THRESHOLD

    def test_env_override(self, monkeypatch):
        """Test environment variables change the threshold."""
        monkeypatch.setenv("PROCUREMENT_COST_PERCENT_THRESHOLD", "0.2")
        monkeypatch.setenv("PROCUREMENT_COST_THRESHOLD_MODE", "AND")

        threshold = cost_threshold_from_settings(Settings())

        assert threshold.percent_threshold == 0.2
        assert threshold.mode == ThresholdMode.AND

    def test_default_evaluators(self):
        """Test the default evaluator registry covers the preset rule ids."""
        assert set(default_custom_evaluators()) == {COST_DELTA_RULE_ID, NEW_VENDOR_RULE_ID}
