"""Generic state machine implementation.

Handles guarded transitions, before/after hooks and history tracking over
immutable instances. Expected rejections are returned as results, never raised.
"""

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Union

from procurement.core.ports import Clock, IdGenerator, SystemClock, UuidIdGenerator

from .types import (
    AvailableAction,
    GuardResult,
    StateDefinition,
    StateHistoryEntry,
    StateMachineCapabilities,
    StateMachineDefinition,
    StateMachineInstance,
    TransitionContext,
    TransitionDefinition,
    TransitionInput,
    TransitionResult,
    state_key,
)

logger = logging.getLogger(__name__)


def normalize_guard_result(result: Union[bool, GuardResult, None], default_reason: str) -> GuardResult:
    """Coerce a guard's return value into a ``GuardResult``.

    A bare ``False`` is a rejection without a specific reason.
    """
    if isinstance(result, GuardResult):
        if not result.allowed and not result.reason:
            return GuardResult(allowed=False, reason=default_reason)
        return result
    if result:
        return GuardResult(allowed=True)
    return GuardResult(allowed=False, reason=default_reason)


class StateMachine:
    """
    State machine built from an immutable definition.

    Provides:
    - Lookup of transitions by (state, action)
    - Guard evaluation shared by ``transition`` and ``get_available_actions``
    - History entries with time spent in each state
    - Before hooks that can abort, after hooks for notification only
    """

    def __init__(
        self,
        definition: StateMachineDefinition,
        *,
        clock: Optional[Clock] = None,
        id_generator: Optional[IdGenerator] = None,
    ):
        """
        Initialize the state machine.

        Args:
            definition: States, transitions and global guards
            clock: Time source; defaults to the UTC system clock
            id_generator: Identifier source for history entries

        Raises:
            ValueError: If the definition references undeclared states
        """
        self.definition = definition
        self.clock = clock or SystemClock()
        self.id_generator = id_generator or UuidIdGenerator()

        self._states: Dict[str, StateDefinition] = {s.id: s for s in definition.states}
        self._transitions_by_from: Dict[str, List[TransitionDefinition]] = {}

        self._validate()

        for transition in definition.transitions:
            for source in transition.from_states:
                self._transitions_by_from.setdefault(source, []).append(transition)

    def _validate(self) -> None:
        if self.definition.initial_state not in self._states:
            raise ValueError(
                f"Initial state '{self.definition.initial_state}' is not declared "
                f"in state machine '{self.definition.id}'"
            )
        for transition in self.definition.transitions:
            for state in (*transition.from_states, transition.to):
                if state not in self._states:
                    raise ValueError(
                        f"Transition '{transition.id}' references undeclared state '{state}'"
                    )

    # ------------------------------------------------------------------
    # Definition queries
    # ------------------------------------------------------------------

    def create(self, meta: Optional[dict] = None) -> StateMachineInstance:
        """Create a new instance in the initial state with empty history."""
        now = self.clock.now()
        return StateMachineInstance(
            definition_id=self.definition.id,
            current_state=self.definition.initial_state,
            created_at=now,
            updated_at=now,
            meta=dict(meta or {}),
        )

    def get_state(self, state) -> Optional[StateDefinition]:
        return self._states.get(state_key(state))

    def has_state(self, state) -> bool:
        return state_key(state) in self._states

    def get_all_states(self) -> List[StateDefinition]:
        return list(self.definition.states)

    def get_transitions_from(self, state) -> List[TransitionDefinition]:
        return list(self._transitions_by_from.get(state_key(state), []))

    def find_transition(self, state, action) -> Optional[TransitionDefinition]:
        """Get the transition for a state/action combination."""
        action = state_key(action)
        for transition in self._transitions_by_from.get(state_key(state), []):
            if transition.action == action:
                return transition
        return None

    @property
    def terminal_states(self) -> List[StateDefinition]:
        return [s for s in self.definition.states if s.terminal]

    @property
    def non_terminal_states(self) -> List[StateDefinition]:
        return [s for s in self.definition.states if not s.terminal]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _context(
        self,
        instance: StateMachineInstance,
        transition: TransitionDefinition,
        transition_input: Optional[TransitionInput],
    ) -> TransitionContext:
        transition_input = transition_input or TransitionInput()
        return TransitionContext(
            current_state=instance.current_state,
            target_state=transition.to,
            action=transition.action,
            actor=transition_input.actor,
            payload=transition_input.payload,
            meta=instance.meta,
        )

    def can_transition(
        self,
        instance: StateMachineInstance,
        action,
        transition_input: Optional[TransitionInput] = None,
    ) -> GuardResult:
        """
        Check whether ``action`` may be performed from the instance's current state.

        Global guards run first, in order; the first rejection wins. The
        transition's own guard runs last.
        """
        action = state_key(action)
        transition = self.find_transition(instance.current_state, action)
        if transition is None:
            return GuardResult(
                allowed=False,
                reason=f"No transition '{action}' from state '{instance.current_state}'",
            )

        context = self._context(instance, transition, transition_input)

        for guard in self.definition.global_guards:
            result = normalize_guard_result(guard(context), "Global guard rejected transition")
            if not result.allowed:
                return result

        if transition.guard is not None:
            result = normalize_guard_result(transition.guard(context), "Transition guard rejected")
            if not result.allowed:
                return result

        return GuardResult(allowed=True)

    def transition(
        self,
        instance: StateMachineInstance,
        action,
        transition_input: Optional[TransitionInput] = None,
    ) -> "tuple[StateMachineInstance, TransitionResult]":
        """
        Perform a state transition.

        Args:
            instance: Current instance (never modified)
            action: Action to perform
            transition_input: Actor, notes and payload for guards and history

        Returns:
            ``(instance, result)``. On failure the instance is the one passed in.
        """
        action = state_key(action)
        check = self.can_transition(instance, action, transition_input)
        if not check.allowed:
            logger.debug(
                "Transition %s rejected in %s from %s: %s",
                action, self.definition.id, instance.current_state, check.reason,
            )
            return instance, TransitionResult(
                success=False,
                current_state=instance.current_state,
                action=action,
                error=check.reason,
            )

        transition = self.find_transition(instance.current_state, action)
        context = self._context(instance, transition, transition_input)
        now = self.clock.now()

        if transition.before_transition is not None:
            hook_result = transition.before_transition(context)
            if hook_result is not None and not hook_result.success:
                logger.warning(
                    "Before-transition hook aborted %s in %s: %s",
                    action, self.definition.id, hook_result.error,
                )
                return instance, TransitionResult(
                    success=False,
                    current_state=instance.current_state,
                    action=action,
                    error=hook_result.error or "Before transition hook failed",
                )

        state_started_at = instance.history[-1].timestamp if instance.history else instance.created_at
        duration = int((now - state_started_at).total_seconds() * 1000)

        transition_input = transition_input or TransitionInput()
        entry = StateHistoryEntry(
            id=self.id_generator.generate("sh"),
            from_state=instance.current_state,
            to_state=transition.to,
            action=action,
            timestamp=now,
            actor=transition_input.actor,
            notes=transition_input.notes,
            payload=transition_input.payload,
            duration=duration,
        )

        new_instance = replace(
            instance,
            current_state=transition.to,
            history=instance.history + (entry,),
            updated_at=now,
        )

        if transition.after_transition is not None:
            try:
                transition.after_transition(replace(context, current_state=transition.to))
            except Exception:
                # The state already changed; hook failures are reported only
                logger.exception(
                    "After-transition hook failed for %s in %s", action, self.definition.id
                )

        return new_instance, TransitionResult(
            success=True,
            previous_state=instance.current_state,
            current_state=transition.to,
            action=action,
            timestamp=now,
        )

    def get_available_actions(
        self,
        instance: StateMachineInstance,
        transition_input: Optional[TransitionInput] = None,
    ) -> List[AvailableAction]:
        """List every action leaving the current state with its guard outcome."""
        actions = []
        for transition in self.get_transitions_from(instance.current_state):
            check = self.can_transition(instance, transition.action, transition_input)
            actions.append(AvailableAction(
                action=transition.action,
                target_state=transition.to,
                enabled=check.allowed,
                label=transition.label,
                description=transition.description,
                disabled_reason=check.reason,
                required_roles=transition.required_roles,
            ))
        return actions

    def get_capabilities(
        self,
        instance: StateMachineInstance,
        transition_input: Optional[TransitionInput] = None,
    ) -> StateMachineCapabilities:
        state = self._states.get(instance.current_state)
        return StateMachineCapabilities(
            current_state=instance.current_state,
            current_state_label=state.label if state else instance.current_state,
            is_terminal=state.terminal if state else False,
            available_actions=tuple(self.get_available_actions(instance, transition_input)),
        )

    def is_terminal(self, instance: StateMachineInstance) -> bool:
        """Check if the instance's current state is terminal."""
        state = self._states.get(instance.current_state)
        return state.terminal if state else False

    # ------------------------------------------------------------------
    # History analysis
    # ------------------------------------------------------------------

    def get_history(self, instance: StateMachineInstance) -> List[StateHistoryEntry]:
        return list(instance.history)

    def get_state_time_analysis(self, instance: StateMachineInstance) -> Dict[str, int]:
        """Total milliseconds spent in each state that has been left."""
        time_by_state: Dict[str, int] = {}
        for entry in instance.history:
            if entry.duration:
                time_by_state[entry.from_state] = time_by_state.get(entry.from_state, 0) + entry.duration
        return time_by_state

    def get_transition_counts(self, instance: StateMachineInstance) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for entry in instance.history:
            counts[entry.action] = counts.get(entry.action, 0) + 1
        return counts
