"""Policy matching.

Determines which approval policies apply to an object snapshot by
evaluating their trigger conditions.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional

from .models import ApprovalCheckResult, ApprovalContext, ApprovalPolicy
from .triggers import CustomRuleEvaluator, evaluate_condition

logger = logging.getLogger(__name__)


class PolicyMatcher:
    """
    Evaluates policies against approval contexts.

    Every active policy for the context's object type is checked; a policy
    matches when at least one of its triggers fires. All matching policies
    are returned, sorted by ascending priority (lower is more significant),
    then by id.
    """

    def __init__(
        self,
        policies: Iterable[ApprovalPolicy],
        *,
        custom_evaluators: Optional[Mapping[str, CustomRuleEvaluator]] = None,
        enablement: Optional[Mapping[str, bool]] = None,
    ):
        """
        Initialize the matcher.

        Args:
            policies: Policies to evaluate; ids must be unique
            custom_evaluators: Evaluators for custom triggers, keyed by rule id
            enablement: Caller-owned overrides of ``policy.active`` keyed by policy id

        Raises:
            ValueError: If two policies share an id
        """
        self._policies: Dict[str, ApprovalPolicy] = {}
        for policy in policies:
            if policy.id in self._policies:
                raise ValueError(f"Duplicate policy id: {policy.id}")
            self._policies[policy.id] = policy
        self.custom_evaluators: Dict[str, CustomRuleEvaluator] = dict(custom_evaluators or {})
        self.enablement: Dict[str, bool] = dict(enablement or {})

    @property
    def policies(self) -> List[ApprovalPolicy]:
        return list(self._policies.values())

    def get_policy(self, policy_id: str) -> Optional[ApprovalPolicy]:
        return self._policies.get(policy_id)

    def is_enabled(self, policy: ApprovalPolicy) -> bool:
        return self.enablement.get(policy.id, policy.active)

    def get_policies_for_object_type(self, object_type: str) -> List[ApprovalPolicy]:
        """Enabled policies governing ``object_type``, most significant first."""
        policies = [
            p for p in self._policies.values()
            if p.object_type == object_type and self.is_enabled(p)
        ]
        return sorted(policies, key=lambda p: (p.priority, p.id))

    def check_approval_required(self, context: ApprovalContext) -> ApprovalCheckResult:
        """
        Find the policies whose triggers fire for ``context``.

        Never raises for missing or malformed object data.
        """
        matching: List[ApprovalPolicy] = []
        reasons: List[str] = []

        for policy in self.get_policies_for_object_type(context.object_type):
            policy_reasons = []
            for condition in policy.triggers:
                result = evaluate_condition(condition, context, self.custom_evaluators)
                if result.triggered:
                    policy_reasons.append(result.reason)
            if policy_reasons:
                matching.append(policy)
                reasons.extend(f"{policy.name}: {reason}" for reason in policy_reasons)

        logger.debug(
            "%d policies matched %s %s",
            len(matching), context.object_type, context.object_id,
        )
        return ApprovalCheckResult(
            required=bool(matching),
            matching_policies=tuple(matching),
            reasons=tuple(reasons),
        )
