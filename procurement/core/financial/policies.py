"""Financial thresholds and tolerances.

Centralizes the limits that feed approval triggers and invoice matching.
"""

from .money import CostThreshold, MatchTolerance, ThresholdMode


# Default cost threshold for approval triggers: 5% or $1,000
DEFAULT_COST_THRESHOLD = CostThreshold(
    percent_threshold=0.05,
    absolute_threshold=1000.00,
    mode=ThresholdMode.OR,
)

# High value orders: 10% and $10,000
HIGH_VALUE_COST_THRESHOLD = CostThreshold(
    percent_threshold=0.10,
    absolute_threshold=10000.00,
    mode=ThresholdMode.AND,
)

# Default match tolerance: 2% or $5
DEFAULT_MATCH_TOLERANCE = MatchTolerance(
    absolute_tolerance=5.00,
    percent_tolerance=0.02,
    mode=ThresholdMode.OR,
)

# Effectively exact match
STRICT_MATCH_TOLERANCE = MatchTolerance(
    absolute_tolerance=0.01,
    percent_tolerance=0.0001,
    mode=ThresholdMode.AND,
)


def cost_threshold_from_settings(settings=None) -> CostThreshold:
    """Build the configured cost threshold (``PROCUREMENT_COST_*`` settings)."""
    if settings is None:
        from procurement.core.config import get_settings

        settings = get_settings()
    return CostThreshold(
        percent_threshold=settings.cost_percent_threshold,
        absolute_threshold=settings.cost_absolute_threshold,
        mode=ThresholdMode(settings.cost_threshold_mode),
    )
