"""
One match, one coordinator.

Every mutation follows the same path under the match lock: resolve the
actor, check access, check the lifecycle state, mutate, save the snapshot
locally, queue the sync event and any reminder update, then tell observers
and the audit log.
Business-rule failures come back as rejected ActionResults and leave the
match untouched.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from matchday import access_policy
from matchday.errors import RemoteSyncError, ValidationError
from matchday.events import Event, EventType, match_completed_event, rsvp_updated_event
from matchday.models import (
    Match, MatchEvent, MatchEventType, MatchStatus, Participant, PositionGroup,
    RSVPStatus, User, format_timestamp, new_id, utcnow,
)
from matchday.rating import DEFAULT_K_FACTOR, EloCalculator
from matchday.results import ActionResult, Rejection
from matchday.roster import PARTICIPANT_NOT_FOUND_MESSAGE, update_rsvp
from matchday.snapshot import MatchSnapshot
from matchday.state_machine import MatchStateMachine
from matchday.stats import PlayerMatchStats, MatchSummaryRow, aggregate, summary_rows

from .actors import CurrentActorResolver
from .audit import log_action
from .outbox import SyncOutbox
from .remote_sync import RemoteSync
from .reminders import NotificationScheduler
from .store import PersistenceStore

logger = logging.getLogger(__name__)

SIGN_IN_TO_RSVP_MESSAGE = "Please sign in to update RSVP."
SIGN_IN_MESSAGE = "Please sign in first."
MATCH_COMPLETED_LOCKED_MESSAGE = "Match is finished. Editing is locked."
MATCH_CANCELLED_LOCKED_MESSAGE = "Match was cancelled. Editing is locked."


class MatchLifecycleCoordinator:

    def __init__(
        self,
        match: Match,
        actors: CurrentActorResolver,
        store: PersistenceStore,
        outbox: SyncOutbox,
        reminders: NotificationScheduler,
        remote: RemoteSync = None,
        clock: Callable[[], datetime] = utcnow,
        k_factor: int = DEFAULT_K_FACTOR
    ):
        self.match = match
        self.actors = actors
        self.store = store
        self.outbox = outbox
        self.reminders = reminders
        self.remote = remote
        self.clock = clock
        self.elo = EloCalculator(k_factor)
        self.is_deleted = False
        self._lock = threading.RLock()
        self._observers: List[Callable[[MatchSnapshot], None]] = []

    @property
    def match_id(self) -> str:
        return self.match.id

    # -- plumbing ----------------------------------------------------------

    def _state_machine(self) -> MatchStateMachine:
        return MatchStateMachine(initial_state=self.match.status)

    def _locked(self) -> ActionResult:
        if self.match.status == MatchStatus.COMPLETED:
            return ActionResult.rejected(Rejection.MATCH_LOCKED, MATCH_COMPLETED_LOCKED_MESSAGE)
        return ActionResult.rejected(Rejection.MATCH_LOCKED, MATCH_CANCELLED_LOCKED_MESSAGE)

    @staticmethod
    def _denied(actor: Optional[User]) -> ActionResult:
        if actor is None:
            return ActionResult.rejected(Rejection.NOT_SIGNED_IN, SIGN_IN_MESSAGE)
        return ActionResult.permission_denied()

    def _commit(
        self,
        actor: Optional[User],
        action: str,
        event: Event,
        result: ActionResult,
        metadata: Dict[str, str] = None,
        reminder: Optional[Callable[[], None]] = None
    ) -> ActionResult:
        snapshot = self.snapshot()
        self.store.save(self.match.id, snapshot)

        warning = self.outbox.enqueue(event)
        if warning is not None:
            result.warnings.append(warning)
        if reminder is not None:
            self.outbox.defer(reminder)

        self._notify(snapshot)
        log_action(action, actor.id if actor else None, self.match.id, metadata)
        return result

    def _notify(self, snapshot: MatchSnapshot):
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception(f"Observer failed for match {self.match.id}")

    def subscribe(self, callback: Callable[[MatchSnapshot], None]) -> Callable[[], None]:
        """Register an observer; returns a function that removes it."""
        self._observers.append(callback)

        def unsubscribe():
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def _reminder_task(self, user_id: str, effective_status: RSVPStatus) -> Callable[[], None]:
        # Bind the match fields now; the task may run later on the outbox worker.
        match_id, title, start_time = self.match.id, self.match.title, self.match.start_time
        if effective_status == RSVPStatus.GOING:
            return lambda: self.reminders.schedule(match_id, user_id, title, start_time)
        return lambda: self.reminders.cancel(match_id, user_id)

    def _actor_rearm_task(self, actor: Optional[User]) -> Optional[Callable[[], None]]:
        if actor is None:
            return None
        participant = self.match.participant(actor.id)
        if participant is not None and participant.rsvp_status == RSVPStatus.GOING:
            return self._reminder_task(actor.id, RSVPStatus.GOING)
        return None

    def refresh_actor_reminder(self):
        """Bring the current actor's reminder in line with their RSVP."""
        actor = self.actors.current_actor()
        if actor is None:
            return
        with self._lock:
            participant = self.match.participant(actor.id)
            status = participant.rsvp_status if participant else RSVPStatus.INVITED
            task = self._reminder_task(actor.id, status)
        self.outbox.defer(task)

    # -- roster ------------------------------------------------------------

    def set_rsvp(self, user_id: str, desired_status: RSVPStatus) -> ActionResult:
        actor = self.actors.current_actor()
        if actor is None:
            return ActionResult.rejected(Rejection.NOT_SIGNED_IN, SIGN_IN_TO_RSVP_MESSAGE)

        try:
            desired_status = RSVPStatus(desired_status)
        except ValueError:
            return ActionResult.rejected(Rejection.INVALID_INPUT, f"Unknown RSVP status: {desired_status}")

        is_self = actor.id == user_id
        with self._lock:
            if not is_self and not access_policy.can_invite_to_match(actor, self.match):
                return ActionResult.permission_denied()
            if not self._state_machine().can_perform("rsvp"):
                return self._locked()

            now = self.clock()
            if self.match.participant(user_id) is None:
                if not is_self:
                    return ActionResult.rejected(Rejection.NOT_FOUND, PARTICIPANT_NOT_FOUND_MESSAGE)
                self.match.participants.append(Participant(
                    id=actor.id,
                    name=actor.display_name,
                    team_id=None,
                    elo=actor.rating,
                    position_group=PositionGroup.BENCH,
                    rsvp_status=RSVPStatus.INVITED,
                    invited_at=now,
                ))

            outcome = update_rsvp(
                self.match.participants, user_id, desired_status, self.match.max_players, now
            )

            promoted = None
            message = outcome.message
            if outcome.promoted_participant_id:
                promoted = self.match.participant(outcome.promoted_participant_id)
                message = f"{promoted.name} moved from waitlist to going."

            event = rsvp_updated_event(
                self.match.id,
                actor.id,
                self.match.participant(user_id).to_dict(),
                promoted.to_dict() if promoted else None
            )
            result = ActionResult.success(
                message,
                effective_status=outcome.effective_status,
                promoted_participant_id=outcome.promoted_participant_id
            )
            reminder = self._reminder_task(actor.id, outcome.effective_status) if is_self else None
            return self._commit(actor, "match_rsvp_updated", event, result, {
                'target_user_id': user_id,
                'status': desired_status.value,
            }, reminder=reminder)

    def invite_participant(self, name: str, rating: int, to_home_team: bool = True) -> ActionResult:
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_invite_to_match(actor, self.match):
                return self._denied(actor)
            if not self._state_machine().can_perform("invite"):
                return self._locked()

            trimmed = (name or "").strip()
            if not trimmed:
                return ActionResult.rejected(Rejection.INVALID_INPUT, "Enter a player name before inviting.")

            normalized = trimmed.lower()
            if any(p.name.strip().lower() == normalized for p in self.match.participants):
                return ActionResult.rejected(Rejection.DUPLICATE, "This player is already in the match.")

            team = self.match.home_team if to_home_team else self.match.away_team
            participant = Participant(
                id=new_id(),
                name=trimmed,
                team_id=team.id,
                elo=max(int(rating), 0),
                position_group=PositionGroup.BENCH,
                rsvp_status=RSVPStatus.INVITED,
                invited_at=self.clock(),
            )
            self.match.participants.append(participant)

            event = Event(
                type=EventType.PARTICIPANT_INVITED,
                aggregate_id=self.match.id,
                actor_id=actor.id,
                data={'participant': participant.to_dict()}
            )
            result = ActionResult.success(f"Invite sent to {trimmed}.")
            return self._commit(actor, "match_invite_sent", event, result, {'participant_name': trimmed})

    def remove_participant(self, participant_id: str) -> ActionResult:
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_edit_match(actor, self.match):
                return self._denied(actor)
            if not self._state_machine().can_perform("remove_participant"):
                return self._locked()

            participant = self.match.participant(participant_id)
            if participant is None:
                return ActionResult.rejected(Rejection.NOT_FOUND, PARTICIPANT_NOT_FOUND_MESSAGE)

            self.match.participants.remove(participant)

            event = Event(
                type=EventType.PARTICIPANT_REMOVED,
                aggregate_id=self.match.id,
                actor_id=actor.id,
                data={'participant_id': participant_id}
            )
            result = ActionResult.success(f"{participant.name} removed from match.")
            return self._commit(
                actor, "match_participant_removed", event, result, {'participant_id': participant_id},
                reminder=self._reminder_task(participant_id, RSVPStatus.DECLINED)
            )

    def move_to_waitlist(self, participant_id: str) -> ActionResult:
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_edit_match(actor, self.match):
                return self._denied(actor)
            if not self._state_machine().can_perform("move_to_waitlist"):
                return self._locked()

            participant = self.match.participant(participant_id)
            if participant is None:
                return ActionResult.rejected(Rejection.NOT_FOUND, PARTICIPANT_NOT_FOUND_MESSAGE)

            participant.rsvp_status = RSVPStatus.WAITLISTED
            participant.waitlisted_at = self.clock()

            event = Event(
                type=EventType.PARTICIPANT_WAITLISTED,
                aggregate_id=self.match.id,
                actor_id=actor.id,
                data={'participant': participant.to_dict()}
            )
            result = ActionResult.success(
                f"{participant.name} moved to waitlist.",
                effective_status=RSVPStatus.WAITLISTED
            )
            return self._commit(
                actor, "match_participant_waitlisted", event, result, {'participant_id': participant_id},
                reminder=self._reminder_task(participant_id, RSVPStatus.WAITLISTED)
            )

    def can_manage_participant(self, participant_id: str, actor: Optional[User] = None) -> bool:
        actor = actor or self.actors.current_actor()
        if actor is None:
            return False
        if access_policy.can_edit_match(actor, self.match):
            return True
        return actor.id == participant_id

    def move_participant_to_team(self, participant_id: str, team_id: str) -> ActionResult:
        actor = self.actors.current_actor()
        with self._lock:
            if not self.can_manage_participant(participant_id, actor):
                return self._denied(actor)
            if not self._state_machine().can_perform("move_participant"):
                return self._locked()

            if team_id == self.match.home_team.id:
                team = self.match.home_team
            elif team_id == self.match.away_team.id:
                team = self.match.away_team
            else:
                return ActionResult.rejected(Rejection.INVALID_INPUT, "Team is not part of this match.")

            participant = self.match.participant(participant_id)
            if participant is None:
                return ActionResult.rejected(Rejection.NOT_FOUND, PARTICIPANT_NOT_FOUND_MESSAGE)

            participant.team_id = team.id
            event = Event(
                type=EventType.PARTICIPANT_MOVED,
                aggregate_id=self.match.id,
                actor_id=actor.id,
                data={'participant': participant.to_dict()}
            )
            result = ActionResult.success(f"{participant.name} moved to {team.name}.")
            return self._commit(actor, "match_participant_moved", event, result, {
                'participant_id': participant_id,
                'team_id': team.id,
            })

    def update_participant_position(self, participant_id: str, group: PositionGroup) -> ActionResult:
        actor = self.actors.current_actor()
        with self._lock:
            if not self.can_manage_participant(participant_id, actor):
                return self._denied(actor)
            if not self._state_machine().can_perform("move_participant"):
                return self._locked()

            try:
                group = PositionGroup(group)
            except ValueError:
                return ActionResult.rejected(Rejection.INVALID_INPUT, f"Unknown position group: {group}")

            participant = self.match.participant(participant_id)
            if participant is None:
                return ActionResult.rejected(Rejection.NOT_FOUND, PARTICIPANT_NOT_FOUND_MESSAGE)

            participant.position_group = group
            event = Event(
                type=EventType.PARTICIPANT_MOVED,
                aggregate_id=self.match.id,
                actor_id=actor.id,
                data={'participant': participant.to_dict()}
            )
            result = ActionResult.success(f"{participant.name} moved to {group.value}.")
            return self._commit(actor, "match_participant_position_updated", event, result, {
                'participant_id': participant_id,
                'position_group': group.value,
            })

    # -- events ------------------------------------------------------------

    def add_event(self, event_type: MatchEventType, minute: int, player_id: str) -> ActionResult:
        """Record a goal, assist, card or save. Allowed in every match state."""
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_enter_match_result(actor, self.match):
                return self._denied(actor)

            try:
                match_event = MatchEvent(
                    id=new_id(),
                    type=MatchEventType(event_type),
                    minute=int(minute),
                    player_id=player_id,
                    created_by_id=actor.id,
                    created_at=self.clock(),
                )
            except (ValueError, TypeError, ValidationError) as e:
                return ActionResult.rejected(Rejection.INVALID_INPUT, f"Invalid match event: {e}")

            self.match.events.append(match_event)
            # list.sort is stable, so same-minute events keep entry order.
            self.match.events.sort(key=lambda e: e.minute)

            event = Event(
                type=EventType.EVENT_ADDED,
                aggregate_id=self.match.id,
                actor_id=actor.id,
                data={'event': match_event.to_dict()}
            )
            result = ActionResult.success("Event added.")
            return self._commit(actor, "match_event_added", event, result, {
                'type': match_event.type.value,
                'player_id': player_id,
            })

    # -- lifecycle ---------------------------------------------------------

    def update_details(
        self,
        start_time: datetime,
        location: str,
        format: str,
        max_players: int,
        notes: str
    ) -> ActionResult:
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_edit_match(actor, self.match):
                return self._denied(actor)
            sm = self._state_machine()
            if not sm.can_perform("edit"):
                return self._locked()

            self.match.status = sm.transition("edit")
            self.match.start_time = start_time
            self.match.location = (location or "").strip()
            self.match.format = (format or "").strip()
            # Never below the players already confirmed.
            self.match.max_players = max(int(max_players), self.match.going_count, 1)
            self.match.notes = (notes or "").strip()

            event = Event(
                type=EventType.DETAILS_UPDATED,
                aggregate_id=self.match.id,
                actor_id=actor.id,
                data={
                    'start_time': format_timestamp(self.match.start_time),
                    'location': self.match.location,
                    'format': self.match.format,
                    'max_players': self.match.max_players,
                    'notes': self.match.notes,
                }
            )
            result = ActionResult.success("Match details updated.")
            return self._commit(actor, "match_edited", event, result, reminder=self._actor_rearm_task(actor))

    def reschedule(self, start_time: datetime) -> ActionResult:
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_edit_match(actor, self.match):
                return self._denied(actor)
            sm = self._state_machine()
            if not sm.can_perform("reschedule"):
                return self._locked()

            self.match.status = sm.transition("reschedule")
            self.match.start_time = start_time

            event = Event(
                type=EventType.MATCH_RESCHEDULED,
                aggregate_id=self.match.id,
                actor_id=actor.id,
                data={'start_time': format_timestamp(start_time)}
            )
            result = ActionResult.success("Match rescheduled.")
            return self._commit(actor, "match_rescheduled", event, result, reminder=self._actor_rearm_task(actor))

    def cancel(self) -> ActionResult:
        """Cancel the match. Roster and events are wiped and cannot be recovered."""
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_edit_match(actor, self.match):
                return self._denied(actor)
            if self.is_deleted or self.match.status == MatchStatus.CANCELLED:
                return ActionResult.rejected(Rejection.MATCH_LOCKED, "Match is already deleted.")
            sm = self._state_machine()
            if not sm.can_transition("cancel"):
                return self._locked()

            self.match.status = sm.transition("cancel")
            self.is_deleted = True
            self.match.participants = []
            self.match.events = []

            event = Event(type=EventType.MATCH_CANCELLED, aggregate_id=self.match.id, actor_id=actor.id)
            result = ActionResult.success("Match deleted.")
            return self._commit(
                actor, "match_cancelled", event, result,
                reminder=self._reminder_task(actor.id, RSVPStatus.DECLINED)
            )

    def complete(self, final_home: int, final_away: int) -> ActionResult:
        """
        Record the final score and mark the match completed.

        Calling again overwrites the score. Ratings are applied by the
        backing store; the result only carries an advisory preview of the
        actor's own new rating.
        """
        actor = self.actors.current_actor()
        with self._lock:
            if not access_policy.can_enter_match_result(actor, self.match):
                return self._denied(actor)
            sm = self._state_machine()
            if not sm.can_transition("complete"):
                return self._locked()

            home = max(int(final_home), 0)
            away = max(int(final_away), 0)
            self.match.status = sm.transition("complete")
            self.match.final_home_score = home
            self.match.final_away_score = away

            event = match_completed_event(self.match.id, actor.id, home, away, self.match.is_rating_game)
            result = ActionResult.success(
                "Final score saved. Match marked completed.",
                rating_preview=self.rating_preview(actor.id)
            )
            return self._commit(actor, "match_completed", event, result, {
                'home': str(home),
                'away': str(away),
            }, reminder=self._reminder_task(actor.id, RSVPStatus.DECLINED))

    def rating_preview(self, user_id: str) -> Optional[int]:
        """
        New rating for `user_id` from the recorded final score, measured
        against the opposing side's average elo. None when the match is
        unrated, unfinished, or the user is not on a side.
        """
        if not self.match.is_rating_game or self.match.status != MatchStatus.COMPLETED:
            return None
        participant = self.match.participant(user_id)
        if participant is None:
            return None

        home_id = self.match.home_team.id
        away_id = self.match.away_team.id
        if participant.team_id == home_id:
            own, theirs, opponent_team = self.match.final_home_score, self.match.final_away_score, away_id
        elif participant.team_id == away_id:
            own, theirs, opponent_team = self.match.final_away_score, self.match.final_home_score, home_id
        else:
            return None

        opponents = [p.elo for p in self.match.participants if p.team_id == opponent_team]
        if not opponents:
            return None
        opponent_rating = sum(opponents) / len(opponents)

        if own == theirs:
            return self.elo.calculate_draw_rating(participant.elo, opponent_rating)
        return self.elo.calculate_new_rating(participant.elo, opponent_rating, own > theirs)

    # -- reads -------------------------------------------------------------

    def snapshot(self) -> MatchSnapshot:
        with self._lock:
            return MatchSnapshot.from_match(self.match, is_deleted=self.is_deleted)

    def scoreline(self) -> Tuple[int, int]:
        with self._lock:
            match = self.match
            if (match.status == MatchStatus.COMPLETED
                    and match.final_home_score is not None
                    and match.final_away_score is not None):
                return match.final_home_score, match.final_away_score

            teams = {p.id: p.team_id for p in match.participants}
            home = away = 0
            for event in match.events:
                if event.type != MatchEventType.GOAL or event.player_id not in teams:
                    continue
                if teams[event.player_id] == match.home_team.id:
                    home += 1
                elif teams[event.player_id] == match.away_team.id:
                    away += 1
            return home, away

    def stats(self) -> Dict[str, PlayerMatchStats]:
        with self._lock:
            return aggregate(self.match.participants, self.match.events)

    def summary_rows(self) -> List[MatchSummaryRow]:
        with self._lock:
            return summary_rows(self.match.participants, self.match.events)

    def participants_with_status(self, status: RSVPStatus) -> List[Participant]:
        status = RSVPStatus(status)
        with self._lock:
            return sorted(
                (p for p in self.match.participants if p.rsvp_status == status),
                key=lambda p: p.name
            )

    def participants_in(self, team_id: str, group: PositionGroup) -> List[Participant]:
        with self._lock:
            return sorted(
                (p for p in self.match.participants
                 if p.team_id == team_id and p.position_group == group),
                key=lambda p: p.name
            )

    def capabilities(self) -> Dict[str, bool]:
        actor = self.actors.current_actor()
        return {
            'can_edit': access_policy.can_edit_match(actor, self.match),
            'can_invite': access_policy.can_invite_to_match(actor, self.match),
            'can_enter_result': access_policy.can_enter_match_result(actor, self.match),
        }

    # -- loading -----------------------------------------------------------

    def load_persisted(self) -> bool:
        """Overlay the locally stored snapshot, if any. Corrupt payloads raise."""
        snapshot = self.store.load(self.match.id)
        if snapshot is None:
            return False
        with self._lock:
            snapshot.apply_to(self.match)
            self.is_deleted = snapshot.is_deleted
        return True

    def reconcile_remote(self) -> bool:
        """
        Replace local state with the remote copy and save it locally.

        Returns False, keeping local state, when there is no remote side,
        no remote copy, or the pull fails.
        """
        if self.remote is None:
            return False
        try:
            snapshot = self.remote.pull(self.match.id)
        except RemoteSyncError as e:
            logger.warning(f"Could not pull match {self.match.id}; keeping local copy: {e}")
            return False
        if snapshot is None:
            return False

        with self._lock:
            snapshot.apply_to(self.match)
            self.is_deleted = snapshot.is_deleted
            self.store.save(self.match.id, snapshot)
            self._notify(snapshot)
        logger.info(f"Match {self.match.id} replaced by remote copy")
        return True
