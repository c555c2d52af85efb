"""Reusable transition guards."""

from typing import Any, Callable, Iterable, Mapping, Optional

from .machine import normalize_guard_result
from .types import Guard, GuardResult, TransitionContext


def compose_guards(*guards: Guard) -> Guard:
    """Combine guards; the first rejection wins."""

    def composed(context: TransitionContext) -> GuardResult:
        for guard in guards:
            result = normalize_guard_result(guard(context), "Guard rejected")
            if not result.allowed:
                return result
        return GuardResult(allowed=True)

    return composed


def role_guard(required_roles: Iterable[str]) -> Guard:
    """Allow the transition when the actor holds any of ``required_roles``."""
    roles = tuple(required_roles)

    def guard(context: TransitionContext) -> GuardResult:
        actor_roles = context.actor.roles if context.actor else ()
        if any(role in actor_roles for role in roles):
            return GuardResult(allowed=True)
        return GuardResult(allowed=False, reason=f"Requires one of roles: {', '.join(roles)}")

    return guard


def meta_guard(
    predicate: Callable[[Mapping[str, Any]], bool],
    failure_reason: str = "Condition not met",
) -> Guard:
    """Allow the transition when ``predicate(instance.meta)`` holds."""

    def guard(context: TransitionContext) -> GuardResult:
        if predicate(context.meta):
            return GuardResult(allowed=True)
        return GuardResult(allowed=False, reason=failure_reason)

    return guard


def payload_required_guard(key: str, reason: Optional[str] = None) -> Guard:
    """Require ``payload[key]`` to be present and non-empty (e.g. a rejection comment)."""

    def guard(context: TransitionContext) -> GuardResult:
        payload = context.payload if isinstance(context.payload, Mapping) else {}
        if payload.get(key):
            return GuardResult(allowed=True)
        return GuardResult(allowed=False, reason=reason or f"Transition {context.action} requires {key}")

    return guard
