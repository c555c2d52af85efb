"""Custom trigger evaluators backed by financial calculations.

Evaluators take ``(params, context)`` and must never raise: missing or
malformed data means the rule does not fire.
"""

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from procurement.core.types import get_nested_value

from .money import CostThreshold, ThresholdMode, calculate_cost_delta, is_amount
from .policies import DEFAULT_COST_THRESHOLD

logger = logging.getLogger(__name__)

COST_DELTA_RULE_ID = "cost_delta_exceeded"
NEW_VENDOR_RULE_ID = "is_new_vendor"


def _threshold_from_params(params: Mapping[str, Any], default: CostThreshold) -> CostThreshold:
    try:
        return CostThreshold(
            percent_threshold=float(params.get("percent_threshold", default.percent_threshold)),
            absolute_threshold=float(params.get("absolute_threshold", default.absolute_threshold)),
            mode=ThresholdMode(params.get("mode", default.mode)),
        )
    except (TypeError, ValueError):
        logger.warning("Invalid cost threshold params %s, using default", dict(params))
        return default


def cost_delta_rule(
    default_threshold: CostThreshold = DEFAULT_COST_THRESHOLD,
    *,
    original_field: str = "originalTotal",
    current_field: str = "grandTotal",
) -> Callable[[Mapping[str, Any], Any], bool]:
    """
    Build the ``cost_delta_exceeded`` evaluator.

    The original total is read from ``object_data[original_field]``, falling back
    to ``previous_values[current_field]``. The current total is read from
    ``new_values[current_field]``, falling back to ``object_data[current_field]``.
    Trigger params (``percent_threshold``, ``absolute_threshold``, ``mode``)
    override ``default_threshold``.
    """

    def evaluate(params: Mapping[str, Any], context) -> bool:
        object_data = context.object_data or {}
        original = get_nested_value(object_data, params.get("original_field", original_field))
        if original is None:
            original = get_nested_value(context.previous_values or {}, params.get("current_field", current_field))
        current = get_nested_value(context.new_values or {}, params.get("current_field", current_field))
        if current is None:
            current = get_nested_value(object_data, params.get("current_field", current_field))

        if not (is_amount(original) and is_amount(current)):
            return False

        threshold = _threshold_from_params(params, default_threshold)
        try:
            delta = calculate_cost_delta(original, current, threshold)
        except ValueError:
            return False
        logger.debug(
            "Cost delta %s (%.4f) for %s exceeds=%s",
            delta.delta, delta.percent_change, context.object_id, delta.exceeds_threshold,
        )
        return delta.exceeds_threshold

    return evaluate


def new_vendor_rule(field: str = "vendor.isNew") -> Callable[[Mapping[str, Any], Any], bool]:
    """Build the ``is_new_vendor`` evaluator: fires when ``field`` is ``True``."""

    def evaluate(params: Mapping[str, Any], context) -> bool:
        return get_nested_value(context.object_data or {}, params.get("field", field)) is True

    return evaluate


def default_custom_evaluators(
    cost_threshold: Optional[CostThreshold] = None,
) -> Dict[str, Callable[[Mapping[str, Any], Any], bool]]:
    """Evaluators for the custom rule ids used by the preset policies."""
    return {
        COST_DELTA_RULE_ID: cost_delta_rule(cost_threshold or DEFAULT_COST_THRESHOLD),
        NEW_VENDOR_RULE_ID: new_vendor_rule(),
    }
