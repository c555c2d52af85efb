"""Currency rounding, cost deltas and variances.

All amounts are rounded to cents with ROUND_HALF_UP before they are compared
against thresholds, so values sitting exactly on a boundary do not flap.
"""

import math
import numbers
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Union

Number = Union[int, float, Decimal]

_CENT = Decimal("0.01")


def is_amount(value: Any) -> bool:
    """Whether ``value`` is a finite monetary amount (bools excluded)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, Decimal):
        return value.is_finite()
    if isinstance(value, numbers.Integral):
        return True
    if isinstance(value, numbers.Real):
        return math.isfinite(value)
    return False


class ThresholdMode(str, Enum):
    """How percentage and absolute checks combine."""

    OR = "OR"
    AND = "AND"


def round_currency(value: Number, decimals: int = 2) -> float:
    """
    Round a monetary amount half-up.

    Floats go through ``repr`` so that ``2.675`` rounds to ``2.68`` instead of
    following its binary approximation down.

    Raises:
        ValueError: If ``value`` is not a finite number
    """
    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, float):
            amount = Decimal(repr(value))
        else:
            amount = Decimal(value)
        quantum = _CENT if decimals == 2 else Decimal(1).scaleb(-decimals)
        return float(amount.quantize(quantum, rounding=ROUND_HALF_UP))
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Cannot round non-numeric amount: {value!r}") from e


@dataclass(frozen=True)
class CostThreshold:
    """When a change in total cost needs attention."""

    percent_threshold: float  # 0.05 == 5%
    absolute_threshold: float
    mode: ThresholdMode = ThresholdMode.OR

    def __post_init__(self):
        object.__setattr__(self, "mode", ThresholdMode(self.mode))


@dataclass(frozen=True)
class CostDelta:
    """Difference between an original and a current total."""

    original_total: float
    current_total: float
    delta: float
    percent_change: float
    exceeds_threshold: bool
    exceeds_percent_threshold: bool
    exceeds_absolute_threshold: bool

    @property
    def is_increase(self) -> bool:
        return self.delta > 0


def calculate_cost_delta(
    original_total: Number,
    current_total: Number,
    threshold: CostThreshold,
) -> CostDelta:
    """
    Calculate a cost delta and whether it breaches ``threshold``.

    Args:
        original_total: Total before the change
        current_total: Total after the change
        threshold: Percentage/absolute limits and how they combine

    Returns:
        CostDelta; breaches are strict (a delta equal to a limit does not exceed it)
    """
    original = round_currency(original_total)
    current = round_currency(current_total)
    delta = round_currency(current - original)
    percent_change = abs(delta / original) if original != 0 else 0.0

    exceeds_percent = percent_change > threshold.percent_threshold
    exceeds_absolute = abs(delta) > round_currency(threshold.absolute_threshold)

    if threshold.mode == ThresholdMode.OR:
        exceeds = exceeds_percent or exceeds_absolute
    else:
        exceeds = exceeds_percent and exceeds_absolute

    return CostDelta(
        original_total=original,
        current_total=current,
        delta=delta,
        percent_change=percent_change,
        exceeds_threshold=exceeds,
        exceeds_percent_threshold=exceeds_percent,
        exceeds_absolute_threshold=exceeds_absolute,
    )


@dataclass(frozen=True)
class MatchTolerance:
    """Acceptable difference between expected and actual amounts."""

    absolute_tolerance: float
    percent_tolerance: float
    mode: ThresholdMode = ThresholdMode.OR

    def __post_init__(self):
        object.__setattr__(self, "mode", ThresholdMode(self.mode))


@dataclass(frozen=True)
class FinancialVariance:
    field: str
    expected: float
    actual: float
    variance: float
    variance_percent: float
    within_tolerance: bool


def calculate_variance(
    field: str,
    expected: Number,
    actual: Number,
    tolerance: MatchTolerance,
) -> FinancialVariance:
    """Compare an expected amount with an actual one (e.g. PO total vs invoice total)."""
    expected_amount = round_currency(expected)
    actual_amount = round_currency(actual)
    variance = round_currency(actual_amount - expected_amount)
    variance_percent = abs(variance / expected_amount) if expected_amount != 0 else 0.0

    within_absolute = abs(variance) <= tolerance.absolute_tolerance
    within_percent = variance_percent <= tolerance.percent_tolerance

    if tolerance.mode == ThresholdMode.OR:
        within = within_absolute or within_percent
    else:
        within = within_absolute and within_percent

    return FinancialVariance(
        field=field,
        expected=expected_amount,
        actual=actual_amount,
        variance=variance,
        variance_percent=variance_percent,
        within_tolerance=within,
    )
