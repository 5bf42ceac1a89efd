import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional


class InvalidTransitionError(Exception):
    """Requested state change is not in the transition table"""

    pass


class StateMachine:
    """
    Guarded state holder driven by an explicit transition table.

    The table maps each state to the set of states reachable from it.
    Terminal states map to an empty set. Transitions are serialized by an
    internal lock so concurrent callers observe each other's changes.
    """

    def __init__(
        self,
        initial_state: Enum,
        transitions: Dict[Enum, FrozenSet[Enum]],
        name: str = "state machine",
    ):
        self.logger = logging.getLogger(__name__)
        self.name = name
        self.transitions = transitions

        self.current_state = initial_state
        self.previous_state: Optional[Enum] = None
        self.state_start_time = time.time()
        self.history: List[Enum] = [initial_state]

        self._lock = threading.RLock()

        # Called with (old_state, new_state) after every transition
        self.on_state_change: Optional[Callable[[Enum, Enum], None]] = None

    @property
    def lock(self) -> threading.RLock:
        """Held while a transition is applied; reentrant"""
        return self._lock

    def get_current_state(self) -> Enum:
        """Get the current state"""
        return self.current_state

    def get_state_duration(self) -> float:
        """Get how long we've been in the current state (seconds)"""
        return time.time() - self.state_start_time

    def can_transition(self, new_state: Enum) -> bool:
        return new_state in self.transitions.get(self.current_state, frozenset())

    def is_terminal(self) -> bool:
        return not self.transitions.get(self.current_state)

    def transition_to(self, new_state: Enum, reason: str = "") -> Enum:
        """
        Move to new_state.

        Returns:
            The state we left

        Raises:
            InvalidTransitionError: new_state not reachable from current state
        """
        with self._lock:
            old_state = self.current_state
            if not self.can_transition(new_state):
                raise InvalidTransitionError(
                    f"{self.name}: {old_state.value} -> {new_state.value} "
                    f"is not allowed"
                )

            self.previous_state = old_state
            self.current_state = new_state
            self.state_start_time = time.time()
            self.history.append(new_state)

        log_msg = f"{self.name}: {old_state.value} -> {new_state.value}"
        if reason:
            log_msg += f" ({reason})"
        self.logger.debug(log_msg)

        if self.on_state_change:
            try:
                self.on_state_change(old_state, new_state)
            except Exception as e:
                self.logger.error(f"Error in state change callback: {e}")

        return old_state

    def transition_if(
        self,
        expected: FrozenSet[Enum],
        new_state: Enum,
        reason: str = "",
    ) -> Optional[Enum]:
        """
        Atomic check-and-set.

        Returns:
            The state we left, or None if current state was not in expected
        """
        with self._lock:
            if self.current_state not in expected:
                return None
            return self.transition_to(new_state, reason)

    def get_status_info(self) -> Dict:
        """Get detailed status information for debugging/monitoring"""
        return {
            "current_state": self.current_state.value,
            "previous_state": (
                self.previous_state.value if self.previous_state else None
            ),
            "state_duration": self.get_state_duration(),
            "history": [state.value for state in self.history],
        }
