import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from matchday import access_policy
from matchday.errors import TransitionError
from matchday.events import Event, EventType, tournament_result_event
from matchday.models import (
    DisputeStatus, Team, Tournament, TournamentMatch, TournamentMatchStatus,
    TournamentStatus, User, format_timestamp, new_id, utcnow,
)
from matchday.results import ActionResult, Rejection
from matchday.snapshot import tournament_to_dict
from matchday.standings import StandingRow, standings
from matchday.state_machine import TournamentStateMachine

from .audit import log_action
from .outbox import SyncOutbox
from .store import TournamentStore

logger = logging.getLogger(__name__)

DEFAULT_TEAM_SIZE = 6

_LOCKED_MESSAGES = {
    TournamentStatus.DRAFT: "Tournament is not published yet.",
    TournamentStatus.PUBLISHED: "Tournament is already published.",
    TournamentStatus.COMPLETED: "Tournament is finished. Editing is locked.",
    TournamentStatus.CANCELLED: "Tournament was cancelled. Editing is locked.",
}


class TournamentCoordinator:
    """
    Owns one tournament: teams, fixtures, results and dispute state.

    Same discipline as the match coordinator: access check, state check,
    mutate, save locally, queue the sync event, audit.
    """

    def __init__(
        self,
        tournament: Tournament,
        actors,
        store: TournamentStore,
        outbox: SyncOutbox,
        clock: Callable[[], datetime] = utcnow
    ):
        self.tournament = tournament
        self.actors = actors
        self.store = store
        self.outbox = outbox
        self.clock = clock
        self._lock = threading.RLock()

    @property
    def tournament_id(self) -> str:
        return self.tournament.id

    def _state_machine(self) -> TournamentStateMachine:
        return TournamentStateMachine(initial_state=self.tournament.status)

    def _locked(self) -> ActionResult:
        return ActionResult.rejected(Rejection.MATCH_LOCKED, _LOCKED_MESSAGES[self.tournament.status])

    @staticmethod
    def _denied(actor: Optional[User]) -> ActionResult:
        if actor is None:
            return ActionResult.rejected(Rejection.NOT_SIGNED_IN, "Please sign in first.")
        return ActionResult.permission_denied()

    def _header(self) -> dict:
        t = self.tournament
        return {
            'title': t.title,
            'location': t.location,
            'start_date': format_timestamp(t.start_date),
            'end_date': format_timestamp(t.end_date),
            'format': t.format,
            'max_teams': t.max_teams,
            'status': t.status.value,
        }

    def _event(self, event_type: EventType, actor: User, data: dict = None) -> Event:
        return Event(type=event_type, aggregate_id=self.tournament.id, actor_id=actor.id, data=data)

    def _commit(
        self,
        actor: User,
        action: str,
        event: Event,
        result: ActionResult,
        metadata: Dict[str, str] = None
    ) -> ActionResult:
        self.store.save(self.tournament)

        warning = self.outbox.enqueue(event)
        if warning is not None:
            result.warnings.append(warning)

        log_action(action, actor.id, self.tournament.id, metadata)
        return result

    # -- details -----------------------------------------------------------

    def update_details(
        self,
        title: str,
        location: str,
        start_date: datetime,
        format: str,
        max_teams: int
    ) -> ActionResult:
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_edit_tournament(actor, self.tournament):
                return self._denied(actor)
            if not self._state_machine().can_perform("edit"):
                return self._locked()

            trimmed_title = (title or "").strip()
            if not trimmed_title:
                return ActionResult.rejected(Rejection.INVALID_INPUT, "Enter a valid tournament title.")

            self.tournament.title = trimmed_title
            self.tournament.location = (location or "").strip()
            self.tournament.start_date = start_date
            self.tournament.format = (format or "").strip()
            self.tournament.max_teams = max(int(max_teams), len(self.tournament.teams))

            event = self._event(EventType.TOURNAMENT_UPDATED, actor, {'tournament': self._header()})
            return self._commit(actor, "tournament_updated", event,
                                ActionResult.success("Tournament details updated."))

    def publish(self) -> ActionResult:
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_edit_tournament(actor, self.tournament):
                return self._denied(actor)
            sm = self._state_machine()
            if not sm.can_transition("publish"):
                return self._locked()

            try:
                self.tournament.status = sm.transition("publish", {"teams": self.tournament.teams})
            except TransitionError:
                return ActionResult.rejected(
                    Rejection.INVALID_INPUT, "Add at least 2 teams before publishing."
                )

            event = self._event(EventType.TOURNAMENT_PUBLISHED, actor, {'tournament': self._header()})
            return self._commit(actor, "tournament_published", event,
                                ActionResult.success("Tournament published."))

    # -- teams -------------------------------------------------------------

    def add_team(self, name: str) -> ActionResult:
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_manage_tournament_teams(actor, self.tournament):
                return self._denied(actor)
            if not self._state_machine().can_perform("manage_teams"):
                return self._locked()

            trimmed = (name or "").strip()
            if not trimmed:
                return ActionResult.rejected(Rejection.INVALID_INPUT, "Enter a valid team name.")
            if len(self.tournament.teams) >= self.tournament.max_teams:
                return ActionResult.rejected(Rejection.TOURNAMENT_FULL, "Tournament is already full.")

            team = Team(id=new_id(), name=trimmed, max_players=DEFAULT_TEAM_SIZE)
            self.tournament.teams.append(team)

            event = self._event(EventType.TOURNAMENT_TEAM_ADDED, actor, {'team': team.to_dict()})
            return self._commit(actor, "tournament_team_added", event,
                                ActionResult.success("Team added."), {'team_name': trimmed})

    def remove_team(self, team_id: str) -> ActionResult:
        """Remove a team and every fixture it appears in."""
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_manage_tournament_teams(actor, self.tournament):
                return self._denied(actor)
            if not self._state_machine().can_perform("manage_teams"):
                return self._locked()

            team = self.tournament.team(team_id)
            if team is None:
                return ActionResult.rejected(Rejection.NOT_FOUND, "Team not found.")

            self.tournament.teams.remove(team)
            removed = [m.id for m in self.tournament.matches if m.involves(team_id)]
            self.tournament.matches = [m for m in self.tournament.matches if not m.involves(team_id)]

            event = self._event(EventType.TOURNAMENT_TEAM_REMOVED, actor, {
                'team_id': team_id,
                'removed_match_ids': removed,
            })
            return self._commit(actor, "tournament_team_removed", event,
                                ActionResult.success("Team removed."), {'team_id': team_id})

    # -- fixtures ----------------------------------------------------------

    def create_match(
        self,
        home_team_id: str,
        away_team_id: str,
        start_time: datetime,
        location_name: str = None,
        matchday: int = None
    ) -> ActionResult:
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_create_tournament_match(actor, self.tournament):
                return self._denied(actor)
            if not self._state_machine().can_perform("schedule_match"):
                return self._locked()

            if home_team_id == away_team_id:
                return ActionResult.rejected(Rejection.INVALID_INPUT, "Home and away team must be different.")
            if self.tournament.team(home_team_id) is None or self.tournament.team(away_team_id) is None:
                return ActionResult.rejected(Rejection.NOT_FOUND, "Team not found.")

            pairing = {home_team_id, away_team_id}
            duplicate = any(
                m.matchday == matchday and {m.home_team_id, m.away_team_id} == pairing
                for m in self.tournament.matches
            )
            if duplicate:
                return ActionResult.rejected(Rejection.DUPLICATE, "Fixture already exists for this matchday.")

            fixture = TournamentMatch(
                home_team_id=home_team_id,
                away_team_id=away_team_id,
                start_time=start_time,
                location_name=location_name,
                matchday=matchday,
            )
            self.tournament.matches.append(fixture)
            self.tournament.matches.sort(key=lambda m: m.start_time)

            event = self._event(EventType.TOURNAMENT_MATCH_SCHEDULED, actor, {'match': fixture.to_dict()})
            return self._commit(actor, "tournament_match_scheduled", event,
                                ActionResult.success("Tournament match scheduled."), {'match_id': fixture.id})

    def record_result(self, match_id: str, home_score: int, away_score: int, reason: str = None) -> ActionResult:
        """Correcting an already completed result needs a reason."""
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_enter_tournament_result(actor, self.tournament):
                return self._denied(actor)
            if not self._state_machine().can_perform("record_result"):
                return self._locked()

            fixture = self.tournament.match(match_id)
            if fixture is None:
                return ActionResult.rejected(Rejection.NOT_FOUND, "Fixture not found.")

            reason = (reason or "").strip() or None
            if fixture.status == TournamentMatchStatus.COMPLETED and reason is None:
                return ActionResult.rejected(
                    Rejection.INVALID_INPUT, "Reason is required to edit a completed result."
                )

            fixture.home_score = max(int(home_score), 0)
            fixture.away_score = max(int(away_score), 0)
            fixture.status = TournamentMatchStatus.COMPLETED

            event = tournament_result_event(
                self.tournament.id, actor.id, fixture.id,
                fixture.home_score, fixture.away_score, reason
            )
            metadata = {
                'match_id': fixture.id,
                'home': str(fixture.home_score),
                'away': str(fixture.away_score),
            }
            if reason:
                metadata['reason'] = reason
            return self._commit(actor, "tournament_result_updated", event,
                                ActionResult.success("Tournament result saved."), metadata)

    # -- status ------------------------------------------------------------

    def set_dispute_status(self, status: DisputeStatus) -> ActionResult:
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_edit_tournament(actor, self.tournament):
                return self._denied(actor)
            if not self._state_machine().can_perform("dispute"):
                return self._locked()

            try:
                status = DisputeStatus(status)
            except ValueError:
                return ActionResult.rejected(Rejection.INVALID_INPUT, f"Unknown dispute status: {status}")

            self.tournament.dispute_status = status
            event = self._event(EventType.TOURNAMENT_DISPUTE, actor, {'dispute_status': status.value})
            return self._commit(actor, "tournament_dispute_status_updated", event,
                                ActionResult.success(f"Dispute status updated to {status.value}."),
                                {'status': status.value})

    def complete(self) -> ActionResult:
        """Finish the tournament; fixtures still scheduled are cancelled."""
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_edit_tournament(actor, self.tournament):
                return self._denied(actor)
            sm = self._state_machine()
            if not sm.can_transition("complete"):
                return self._locked()

            self.tournament.status = sm.transition("complete")
            for fixture in self.tournament.matches:
                if fixture.status == TournamentMatchStatus.SCHEDULED:
                    fixture.status = TournamentMatchStatus.CANCELLED

            event = self._event(EventType.TOURNAMENT_COMPLETED, actor, {'tournament': self._header()})
            return self._commit(actor, "tournament_completed", event,
                                ActionResult.success("Tournament marked as completed."))

    # -- reads -------------------------------------------------------------

    def standings(self) -> List[StandingRow]:
        with self._lock:
            return standings(self.tournament)

    def to_dict(self) -> dict:
        with self._lock:
            return tournament_to_dict(self.tournament)
