"""Generic state machine engine.

Guarded transitions over immutable instances, with history tracking.
"""

from .types import (
    AvailableAction,
    GuardResult,
    HookResult,
    StateDefinition,
    StateHistoryEntry,
    StateMachineCapabilities,
    StateMachineDefinition,
    StateMachineInstance,
    TransitionContext,
    TransitionDefinition,
    TransitionInput,
    TransitionResult,
)
from .machine import StateMachine
from .guards import compose_guards, meta_guard, payload_required_guard, role_guard

__all__ = [
    "AvailableAction",
    "GuardResult",
    "HookResult",
    "StateDefinition",
    "StateHistoryEntry",
    "StateMachineCapabilities",
    "StateMachineDefinition",
    "StateMachineInstance",
    "TransitionContext",
    "TransitionDefinition",
    "TransitionInput",
    "TransitionResult",
    "StateMachine",
    "compose_guards",
    "meta_guard",
    "payload_required_guard",
    "role_guard",
]
