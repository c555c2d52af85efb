"""Policy trigger conditions.

Triggers decide whether a policy applies to an object snapshot. The set of
condition kinds is closed: threshold, change, status, category and custom.
Evaluation is total; missing or malformed data means "not triggered".
"""

import logging
import operator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Tuple, Union

from procurement.core.financial.money import is_amount, round_currency
from procurement.core.types import get_nested_value

if TYPE_CHECKING:
    from .models import ApprovalContext

logger = logging.getLogger(__name__)


class TriggerType(str, Enum):
    """Kinds of trigger conditions."""

    THRESHOLD = "threshold"
    CHANGE = "change"
    STATUS = "status"
    CATEGORY = "category"
    CUSTOM = "custom"


class ThresholdOperator(str, Enum):
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUAL = ">="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUAL = "<="
    EQUALS = "=="


_COMPARATORS: Dict[ThresholdOperator, Callable[[float, float], bool]] = {
    ThresholdOperator.GREATER_THAN: operator.gt,
    ThresholdOperator.GREATER_THAN_OR_EQUAL: operator.ge,
    ThresholdOperator.LESS_THAN: operator.lt,
    ThresholdOperator.LESS_THAN_OR_EQUAL: operator.le,
    ThresholdOperator.EQUALS: operator.eq,
}


class _Unset:
    """Marks a change condition bound that was not specified (``None`` is a real value)."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def _as_tuple(value: Union[str, Tuple[str, ...], list, None]) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


@dataclass(frozen=True)
class ThresholdCondition:
    """Numeric field compared against a constant, e.g. ``grandTotal > 10000``."""

    field: str
    operator: ThresholdOperator
    value: float
    type: TriggerType = field(default=TriggerType.THRESHOLD, init=False)

    def __post_init__(self):
        object.__setattr__(self, "operator", ThresholdOperator(self.operator))


@dataclass(frozen=True)
class ChangeCondition:
    """A field whose value differs between ``previous_values`` and ``new_values``."""

    field: str
    from_value: Any = UNSET
    to_value: Any = UNSET
    type: TriggerType = field(default=TriggerType.CHANGE, init=False)


@dataclass(frozen=True)
class StatusCondition:
    """``object_data["status"]`` is one of ``to``.

    ``from_`` is kept for documentation of the intended transition; matching
    uses the current status only.
    """

    to: Tuple[str, ...]
    from_: Tuple[str, ...] = ()
    type: TriggerType = field(default=TriggerType.STATUS, init=False)

    def __post_init__(self):
        object.__setattr__(self, "to", _as_tuple(self.to))
        object.__setattr__(self, "from_", _as_tuple(self.from_))


@dataclass(frozen=True)
class CategoryCondition:
    """``object_data["category"]`` is one of ``categories``."""

    categories: Tuple[str, ...]
    type: TriggerType = field(default=TriggerType.CATEGORY, init=False)

    def __post_init__(self):
        object.__setattr__(self, "categories", _as_tuple(self.categories))


@dataclass(frozen=True)
class CustomCondition:
    """Delegates to a caller-registered evaluator keyed by ``rule_id``."""

    rule_id: str
    params: Mapping[str, Any] = field(default_factory=dict)
    type: TriggerType = field(default=TriggerType.CUSTOM, init=False)


TriggerCondition = Union[
    ThresholdCondition,
    ChangeCondition,
    StatusCondition,
    CategoryCondition,
    CustomCondition,
]

CustomRuleEvaluator = Callable[[Mapping[str, Any], "ApprovalContext"], bool]


@dataclass(frozen=True)
class TriggerResult:
    """Result of evaluating one condition."""

    triggered: bool
    reason: str = ""


NOT_TRIGGERED = TriggerResult(triggered=False)


def _format_amount(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def evaluate_threshold(value: float, op: ThresholdOperator, threshold: float) -> bool:
    """Compare ``value`` with ``threshold`` after rounding both to cents."""
    return _COMPARATORS[op](round_currency(value), round_currency(threshold))


def evaluate_condition(
    condition: TriggerCondition,
    context: "ApprovalContext",
    custom_evaluators: Optional[Mapping[str, CustomRuleEvaluator]] = None,
) -> TriggerResult:
    """
    Evaluate a single trigger condition against an approval context.

    Args:
        condition: The condition to evaluate
        context: Object snapshot and change set
        custom_evaluators: Evaluators for ``custom`` conditions, keyed by rule id

    Returns:
        TriggerResult; never raises for missing or malformed data
    """
    object_data = context.object_data or {}

    if isinstance(condition, ThresholdCondition):
        value = get_nested_value(object_data, condition.field)
        if not is_amount(value) or not is_amount(condition.value):
            return NOT_TRIGGERED
        try:
            triggered = evaluate_threshold(value, condition.operator, condition.value)
        except ValueError:
            # inf / nan
            return NOT_TRIGGERED
        if not triggered:
            return NOT_TRIGGERED
        return TriggerResult(
            True,
            f"{condition.field} ({_format_amount(value)}) {condition.operator.value} "
            f"{_format_amount(condition.value)}",
        )

    if isinstance(condition, ChangeCondition):
        old_value = get_nested_value(context.previous_values or {}, condition.field)
        new_value = get_nested_value(context.new_values or {}, condition.field)
        changed = old_value != new_value
        matches_from = condition.from_value is UNSET or old_value == condition.from_value
        matches_to = condition.to_value is UNSET or new_value == condition.to_value
        if changed and matches_from and matches_to:
            return TriggerResult(True, f"{condition.field} changed")
        return NOT_TRIGGERED

    if isinstance(condition, StatusCondition):
        status = object_data.get("status")
        if isinstance(status, str) and status in condition.to:
            return TriggerResult(True, f"Status is {status}")
        return NOT_TRIGGERED

    if isinstance(condition, CategoryCondition):
        category = object_data.get("category")
        if isinstance(category, str) and category in condition.categories:
            return TriggerResult(True, f"Category is {category}")
        return NOT_TRIGGERED

    if isinstance(condition, CustomCondition):
        evaluator = (custom_evaluators or {}).get(condition.rule_id)
        if evaluator is None:
            logger.debug("No evaluator registered for custom rule %s", condition.rule_id)
            return NOT_TRIGGERED
        try:
            triggered = bool(evaluator(condition.params, context))
        except Exception:
            logger.exception("Custom rule %s failed; treating as not triggered", condition.rule_id)
            return NOT_TRIGGERED
        if triggered:
            return TriggerResult(True, f"Custom rule: {condition.rule_id}")
        return NOT_TRIGGERED

    return NOT_TRIGGERED


def parse_condition(data: Mapping[str, Any]) -> TriggerCondition:
    """
    Create a condition from a configuration dictionary.

    Raises:
        ValueError: If the type is unknown or required keys are missing
    """
    try:
        trigger_type = TriggerType(data["type"])
        if trigger_type == TriggerType.THRESHOLD:
            return ThresholdCondition(
                field=data["field"],
                operator=ThresholdOperator(data["operator"]),
                value=float(data["value"]),
            )
        if trigger_type == TriggerType.CHANGE:
            return ChangeCondition(
                field=data["field"],
                from_value=data.get("from_value", UNSET),
                to_value=data.get("to_value", UNSET),
            )
        if trigger_type == TriggerType.STATUS:
            return StatusCondition(to=data["to"], from_=data.get("from", ()))
        if trigger_type == TriggerType.CATEGORY:
            return CategoryCondition(categories=data["categories"])
        return CustomCondition(rule_id=data["rule_id"], params=dict(data.get("params") or {}))
    except KeyError as e:
        raise ValueError(f"Trigger condition missing key {e.args[0]!r}: {dict(data)}") from None
    except TypeError as e:
        raise ValueError(f"Invalid trigger condition {dict(data)}: {e}") from None


def condition_to_dict(condition: TriggerCondition) -> Dict[str, Any]:
    """Convert a condition to a dictionary for serialization."""
    if isinstance(condition, ThresholdCondition):
        return {
            "type": condition.type.value,
            "field": condition.field,
            "operator": condition.operator.value,
            "value": condition.value,
        }
    if isinstance(condition, ChangeCondition):
        data: Dict[str, Any] = {"type": condition.type.value, "field": condition.field}
        if condition.from_value is not UNSET:
            data["from_value"] = condition.from_value
        if condition.to_value is not UNSET:
            data["to_value"] = condition.to_value
        return data
    if isinstance(condition, StatusCondition):
        return {"type": condition.type.value, "to": list(condition.to), "from": list(condition.from_)}
    if isinstance(condition, CategoryCondition):
        return {"type": condition.type.value, "categories": list(condition.categories)}
    return {"type": condition.type.value, "rule_id": condition.rule_id, "params": dict(condition.params)}
