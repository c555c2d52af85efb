"""State machine definitions, instances and results.

Definitions are immutable templates; instances are immutable values and
every transition produces a new instance.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Tuple, Union

from procurement.core.types import Actor


def state_key(value: Union[str, Enum]) -> str:
    """Normalize a state or action (plain string or str Enum) to its string value."""
    return value.value if isinstance(value, Enum) else value


@dataclass(frozen=True)
class GuardResult:
    """Outcome of a guard check."""

    allowed: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class HookResult:
    """Outcome of a before/after hook. A hook returning ``None`` counts as success."""

    success: bool
    error: Optional[str] = None
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionContext:
    """Everything a guard or hook may look at."""

    current_state: str
    target_state: str
    action: str
    actor: Optional[Actor] = None
    payload: Any = None
    meta: Mapping[str, Any] = field(default_factory=dict)


Guard = Callable[[TransitionContext], Union[bool, GuardResult]]
Hook = Callable[[TransitionContext], Optional[HookResult]]


@dataclass(frozen=True)
class StateDefinition:
    """A named state."""

    id: str
    label: str
    description: Optional[str] = None
    terminal: bool = False
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "id", state_key(self.id))


@dataclass(frozen=True)
class TransitionDefinition:
    """Maps one or more source states and an action to a destination state."""

    id: str
    from_states: Tuple[str, ...]
    to: str
    action: str
    label: Optional[str] = None
    description: Optional[str] = None
    guard: Optional[Guard] = None
    before_transition: Optional[Hook] = None
    after_transition: Optional[Hook] = None
    required_roles: Tuple[str, ...] = ()
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Accept a single source state, enums, or any iterable of them
        sources = self.from_states
        if isinstance(sources, (str, Enum)):
            sources = (sources,)
        object.__setattr__(self, "from_states", tuple(state_key(s) for s in sources))
        object.__setattr__(self, "to", state_key(self.to))
        object.__setattr__(self, "action", state_key(self.action))
        object.__setattr__(self, "required_roles", tuple(self.required_roles))


@dataclass(frozen=True)
class StateMachineDefinition:
    """Complete, immutable description of a state machine."""

    id: str
    name: str
    initial_state: str
    states: Tuple[StateDefinition, ...]
    transitions: Tuple[TransitionDefinition, ...]
    global_guards: Tuple[Guard, ...] = ()
    description: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "initial_state", state_key(self.initial_state))
        object.__setattr__(self, "states", tuple(self.states))
        object.__setattr__(self, "transitions", tuple(self.transitions))
        object.__setattr__(self, "global_guards", tuple(self.global_guards))


@dataclass(frozen=True)
class StateHistoryEntry:
    """One executed transition. ``duration`` is milliseconds spent in ``from_state``."""

    id: str
    from_state: str
    to_state: str
    action: str
    timestamp: datetime
    actor: Optional[Actor] = None
    notes: Optional[str] = None
    payload: Any = None
    duration: Optional[int] = None


@dataclass(frozen=True)
class StateMachineInstance:
    """Runtime state of one entity tracked by a state machine."""

    definition_id: str
    current_state: str
    created_at: datetime
    updated_at: datetime
    history: Tuple[StateHistoryEntry, ...] = ()
    meta: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionInput:
    """Caller-supplied data for a transition attempt."""

    actor: Optional[Actor] = None
    notes: Optional[str] = None
    payload: Any = None


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of ``StateMachine.transition``."""

    success: bool
    current_state: str
    previous_state: Optional[str] = None
    action: Optional[str] = None
    timestamp: Optional[datetime] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class AvailableAction:
    """An action leaving the current state, enabled or not."""

    action: str
    target_state: str
    enabled: bool
    label: Optional[str] = None
    description: Optional[str] = None
    disabled_reason: Optional[str] = None
    required_roles: Tuple[str, ...] = ()


@dataclass(frozen=True)
class StateMachineCapabilities:
    current_state: str
    current_state_label: str
    is_terminal: bool
    available_actions: Tuple[AvailableAction, ...]

    @property
    def can_transition(self) -> bool:
        return any(action.enabled for action in self.available_actions)
