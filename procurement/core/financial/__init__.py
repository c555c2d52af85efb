"""Financial calculations feeding approval triggers."""

from .money import (
    CostDelta,
    CostThreshold,
    FinancialVariance,
    MatchTolerance,
    ThresholdMode,
    calculate_cost_delta,
    calculate_variance,
    is_amount,
    round_currency,
)
from .policies import (
    DEFAULT_COST_THRESHOLD,
    DEFAULT_MATCH_TOLERANCE,
    HIGH_VALUE_COST_THRESHOLD,
    STRICT_MATCH_TOLERANCE,
)

__all__ = [
    "CostDelta",
    "CostThreshold",
    "FinancialVariance",
    "MatchTolerance",
    "ThresholdMode",
    "calculate_cost_delta",
    "calculate_variance",
    "is_amount",
    "round_currency",
    "DEFAULT_COST_THRESHOLD",
    "DEFAULT_MATCH_TOLERANCE",
    "HIGH_VALUE_COST_THRESHOLD",
    "STRICT_MATCH_TOLERANCE",
]
