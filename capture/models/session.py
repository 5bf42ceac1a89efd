"""
Session Model

One start-to-terminal recording attempt. A controller owns at most one
non-terminal session at a time; a fresh Session is created for every
start().
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

from capture.constants import (
    ACTIVE_STATES,
    SESSION_TRANSITIONS,
    BackendKind,
    SessionState,
)
from capture.interfaces.capture_backend_interface import AcquireHandle
from core.errors import SessionError
from core.state_machine import StateMachine


def _new_session_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Session:
    """
    Recording session state and outputs.

    Attributes:
        backend_kind: Acquisition strategy (fixed per controller)
        id: Opaque identifier attached to every event of this session
        raw_output_path: Allocated once, never reused across sessions
        final_output_path: Set only on COMPLETED
        started_at: When start() created the session
        ended_at: When a terminal state was reached
        last_error: Set only on FAILED (cause kept in __cause__)
        handle: Backend handle while capture is acquired
    """

    backend_kind: BackendKind
    id: str = field(default_factory=_new_session_id)
    raw_output_path: Optional[Path] = None
    final_output_path: Optional[Path] = None
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None
    last_error: Optional[SessionError] = None
    handle: Optional[AcquireHandle] = field(default=None, repr=False)
    state_machine: StateMachine = field(init=False, repr=False)

    def __post_init__(self):
        self.state_machine = StateMachine(
            SessionState.IDLE,
            SESSION_TRANSITIONS,
            name=f"session {self.short_id}",
        )

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @property
    def state(self) -> SessionState:
        return self.state_machine.get_current_state()

    @property
    def state_history(self) -> List[SessionState]:
        return list(self.state_machine.history)

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def duration(self) -> float:
        """Seconds from start to end (or to now while running)"""
        end = self.ended_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def transition_to(self, new_state: SessionState, reason: str = "") -> SessionState:
        """Move to new_state (raises InvalidTransitionError if not allowed)"""
        with self.state_machine.lock:
            if new_state.is_terminal and self.state_machine.can_transition(new_state):
                self.ended_at = datetime.now()
            return self.state_machine.transition_to(new_state, reason)

    def transition_if(
        self,
        expected: FrozenSet[SessionState],
        new_state: SessionState,
        reason: str = "",
    ) -> Optional[SessionState]:
        """Check-and-set; returns the state left, or None if not in expected"""
        with self.state_machine.lock:
            if self.state not in expected:
                return None
            return self.transition_to(new_state, reason)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable summary (status file, logs)"""
        return {
            "id": self.id,
            "state": self.state.value,
            "backend": self.backend_kind.value,
            "raw_output_path": str(self.raw_output_path) if self.raw_output_path else None,
            "final_output_path": (
                str(self.final_output_path) if self.final_output_path else None
            ),
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration": round(self.duration, 1),
            "last_error": self.last_error.describe() if self.last_error else None,
            "history": [state.value for state in self.state_history],
        }
