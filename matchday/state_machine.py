from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from .errors import TransitionError
from .models import MatchStatus, TournamentStatus


@dataclass
class Transition:
    from_state: Enum
    to_state: Enum
    action: str
    guard: Optional[Callable] = None


class StateMachine:
    TRANSITIONS: List[Transition] = []
    ALLOWED_ACTIONS: Dict[Enum, List[str]] = {}
    INITIAL_STATE: Enum = None

    def __init__(self, initial_state: Enum = None):
        self._state = initial_state if initial_state is not None else self.INITIAL_STATE
        self._history: List[tuple] = []

    @property
    def state(self):
        return self._state

    @property
    def allowed_actions(self) -> List[str]:
        return self.ALLOWED_ACTIONS.get(self._state, [])

    def can_transition(self, action: str) -> bool:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                return True
        return False

    def can_perform(self, action: str) -> bool:
        return action in self.allowed_actions

    def transition(self, action: str, guard_context: dict = None):
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                if t.guard and not t.guard(guard_context or {}):
                    raise TransitionError(
                        self._state.value,
                        t.to_state.value,
                        f"Guard condition failed for action '{action}'"
                    )

                old_state = self._state
                self._state = t.to_state
                self._history.append((old_state, action, self._state))
                return self._state

        raise TransitionError(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from state '{self._state.value}'"
        )

    def get_history(self) -> List[tuple]:
        return self._history.copy()


def min_teams_guard(min_count: int = 2):
    def guard(context: dict) -> bool:
        teams = context.get("teams", [])
        return len(teams) >= min_count
    return guard


class MatchStateMachine(StateMachine):
    """
    scheduled -> completed and scheduled -> cancelled; both terminal.

    Re-completing a completed match overwrites the score and stays
    completed. Event entry is allowed in every state.
    """

    TRANSITIONS = [
        Transition(MatchStatus.SCHEDULED, MatchStatus.SCHEDULED, "edit"),
        Transition(MatchStatus.SCHEDULED, MatchStatus.SCHEDULED, "reschedule"),
        Transition(MatchStatus.SCHEDULED, MatchStatus.CANCELLED, "cancel"),
        Transition(MatchStatus.SCHEDULED, MatchStatus.COMPLETED, "complete"),
        Transition(MatchStatus.COMPLETED, MatchStatus.COMPLETED, "complete"),
    ]

    ALLOWED_ACTIONS = {
        MatchStatus.SCHEDULED: [
            "rsvp", "invite", "remove_participant", "move_to_waitlist",
            "move_participant", "edit", "reschedule", "cancel", "complete",
            "add_event",
        ],
        MatchStatus.COMPLETED: ["complete", "add_event", "view"],
        MatchStatus.CANCELLED: ["add_event", "view"],
    }

    INITIAL_STATE = MatchStatus.SCHEDULED

    @classmethod
    def from_state_string(cls, state_str: str) -> "MatchStateMachine":
        try:
            state = MatchStatus(state_str)
        except ValueError:
            state = MatchStatus.SCHEDULED
        return cls(initial_state=state)


class TournamentStateMachine(StateMachine):
    TRANSITIONS = [
        Transition(TournamentStatus.DRAFT, TournamentStatus.PUBLISHED, "publish",
                   guard=min_teams_guard()),
        Transition(TournamentStatus.DRAFT, TournamentStatus.CANCELLED, "cancel"),
        Transition(TournamentStatus.PUBLISHED, TournamentStatus.COMPLETED, "complete"),
        Transition(TournamentStatus.PUBLISHED, TournamentStatus.CANCELLED, "cancel"),
    ]

    ALLOWED_ACTIONS = {
        TournamentStatus.DRAFT: [
            "edit", "manage_teams", "schedule_match", "publish", "cancel",
        ],
        TournamentStatus.PUBLISHED: [
            "edit", "manage_teams", "schedule_match", "record_result",
            "dispute", "complete", "cancel",
        ],
        TournamentStatus.COMPLETED: ["record_result", "dispute", "view"],
        TournamentStatus.CANCELLED: ["view"],
    }

    INITIAL_STATE = TournamentStatus.PUBLISHED

    @classmethod
    def from_state_string(cls, state_str: str) -> "TournamentStateMachine":
        try:
            state = TournamentStatus(state_str)
        except ValueError:
            state = TournamentStatus.DRAFT
        return cls(initial_state=state)
