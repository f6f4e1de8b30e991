"""
Unit tests for MatchLifecycleCoordinator.
Tests roster operations, lifecycle locks, event entry and sync handling.
"""
import threading
from datetime import timedelta

import pytest
import redis

from clubhouse.coordinator import (
    MATCH_CANCELLED_LOCKED_MESSAGE, MATCH_COMPLETED_LOCKED_MESSAGE,
    MatchLifecycleCoordinator, SIGN_IN_MESSAGE, SIGN_IN_TO_RSVP_MESSAGE,
)
from clubhouse.outbox import SyncOutbox
from clubhouse.reminders import RedisReminderScheduler, reminder_id
from clubhouse.remote_sync import RemoteSync
from matchday.errors import RemoteSyncError
from matchday.events import EventType
from matchday.models import (
    MatchEventType, MatchStatus, PositionGroup, RSVPStatus, User,
)
from matchday.results import PERMISSION_DENIED_MESSAGE, Rejection
from matchday.roster import MATCH_FULL_MESSAGE, PARTICIPANT_NOT_FOUND_MESSAGE
from matchday.snapshot import MatchSnapshot

from tests.conftest import NOW


@pytest.fixture
def roster(sample_match, make_participant):
    """Owner on the home side, two home players and two away players."""
    sample_match.participants = [
        make_participant('owner-1', name='Olivia', team_id='home'),
        make_participant('player-1', name='Pat', team_id='home', invited_offset=1),
        make_participant('p-away-1', name='Ann', team_id='away', invited_offset=2),
        make_participant('p-away-2', name='Ben', team_id='away', invited_offset=3),
    ]
    return sample_match


class TestSetRsvp:
    """Tests for set_rsvp."""

    def test_self_rsvp_creates_participant(self, coordinator, sample_match, reminders):
        """A signed-in user with no roster entry is added on the bench and admitted."""
        result = coordinator.set_rsvp('owner-1', RSVPStatus.GOING)

        assert result.ok
        assert result.effective_status == RSVPStatus.GOING
        participant = sample_match.participant('owner-1')
        assert participant.position_group == PositionGroup.BENCH
        assert participant.team_id is None
        assert participant.elo == 1550
        assert reminder_id('match-1', 'owner-1') in reminders.pending

    def test_signed_out(self, coordinator, actors):
        actors.actor = None
        result = coordinator.set_rsvp('owner-1', RSVPStatus.GOING)
        assert result.rejection == Rejection.NOT_SIGNED_IN
        assert result.message == SIGN_IN_TO_RSVP_MESSAGE

    def test_suspended_actor_is_signed_out(self, coordinator, actors, owner):
        owner.is_suspended = True
        result = coordinator.set_rsvp('owner-1', RSVPStatus.GOING)
        assert result.rejection == Rejection.NOT_SIGNED_IN

    def test_invalid_status(self, coordinator):
        result = coordinator.set_rsvp('owner-1', 'sometimes')
        assert result.rejection == Rejection.INVALID_INPUT

    def test_full_match_waitlists(self, coordinator, roster):
        """With capacity reached, going becomes waitlisted with a message."""
        roster.max_players = 1
        roster.participants[1].rsvp_status = RSVPStatus.GOING

        result = coordinator.set_rsvp('owner-1', RSVPStatus.GOING)

        assert result.ok
        assert result.effective_status == RSVPStatus.WAITLISTED
        assert result.message == MATCH_FULL_MESSAGE

    def test_promotion_message(self, coordinator, roster):
        """Declining promotes the earliest waitlisted player and names them."""
        roster.max_players = 1
        roster.participants[0].rsvp_status = RSVPStatus.GOING
        roster.participants[2].rsvp_status = RSVPStatus.WAITLISTED
        roster.participants[2].waitlisted_at = NOW

        result = coordinator.set_rsvp('owner-1', RSVPStatus.DECLINED)

        assert result.promoted_participant_id == 'p-away-1'
        assert result.message == "Ann moved from waitlist to going."
        assert roster.participant('p-away-1').rsvp_status == RSVPStatus.GOING

    def test_stranger_cannot_set_others(self, coordinator, roster, actors, player):
        actors.actor = player
        result = coordinator.set_rsvp('p-away-1', RSVPStatus.GOING)
        assert result.rejection == Rejection.PERMISSION_DENIED
        assert result.message == PERMISSION_DENIED_MESSAGE

    def test_organiser_sets_others(self, coordinator, roster):
        result = coordinator.set_rsvp('p-away-1', RSVPStatus.MAYBE)
        assert result.ok
        assert roster.participant('p-away-1').rsvp_status == RSVPStatus.MAYBE

    def test_organiser_cannot_create_others(self, coordinator):
        """Only self-RSVP auto-creates a roster entry."""
        result = coordinator.set_rsvp('nobody', RSVPStatus.GOING)
        assert result.rejection == Rejection.NOT_FOUND
        assert result.message == PARTICIPANT_NOT_FOUND_MESSAGE

    def test_completed_match_locked(self, coordinator, roster):
        roster.status = MatchStatus.COMPLETED
        result = coordinator.set_rsvp('owner-1', RSVPStatus.GOING)
        assert result.rejection == Rejection.MATCH_LOCKED
        assert result.message == MATCH_COMPLETED_LOCKED_MESSAGE

    def test_saves_and_pushes(self, coordinator, roster, match_store, remote):
        """A successful change is stored locally and pushed."""
        coordinator.set_rsvp('owner-1', RSVPStatus.GOING)

        stored = match_store.load('match-1')
        assert stored.participants[0].rsvp_status == RSVPStatus.GOING
        assert remote.pushed[-1].type == EventType.RSVP_UPDATED
        assert remote.pushed[-1].data['participant']['id'] == 'owner-1'

    def test_declining_cancels_reminder(self, coordinator, roster, reminders):
        coordinator.set_rsvp('owner-1', RSVPStatus.GOING)
        coordinator.set_rsvp('owner-1', RSVPStatus.DECLINED)
        assert reminders.pending == {}

    def test_past_match_has_no_reminder(self, coordinator, roster, reminders):
        """A reminder whose fire time has passed is not scheduled."""
        roster.start_time = NOW + timedelta(minutes=30)
        coordinator.set_rsvp('owner-1', RSVPStatus.GOING)
        assert reminders.pending == {}


class TestInvite:
    """Tests for invite_participant."""

    def test_invite_home(self, coordinator, sample_match, remote):
        result = coordinator.invite_participant('  Dana  ', 1420)

        assert result.ok
        assert result.message == "Invite sent to Dana."
        invited = sample_match.participants[-1]
        assert invited.name == 'Dana'
        assert invited.team_id == 'home'
        assert invited.rsvp_status == RSVPStatus.INVITED
        assert remote.pushed[-1].type == EventType.PARTICIPANT_INVITED

    def test_invite_away_clamps_rating(self, coordinator, sample_match):
        coordinator.invite_participant('Eve', -20, to_home_team=False)
        invited = sample_match.participants[-1]
        assert invited.team_id == 'away'
        assert invited.elo == 0

    def test_blank_name(self, coordinator):
        result = coordinator.invite_participant('   ', 1500)
        assert result.rejection == Rejection.INVALID_INPUT

    def test_duplicate_name_case_insensitive(self, coordinator, roster):
        result = coordinator.invite_participant(' pat ', 1500)
        assert result.rejection == Rejection.DUPLICATE
        assert len(roster.participants) == 4

    def test_signed_out(self, coordinator, actors):
        actors.actor = None
        result = coordinator.invite_participant('Dana', 1500)
        assert result.rejection == Rejection.NOT_SIGNED_IN
        assert result.message == SIGN_IN_MESSAGE

    def test_permission_checked_before_state(self, coordinator, sample_match, actors, player):
        """A stranger on a cancelled match is denied, not told it is locked."""
        sample_match.status = MatchStatus.CANCELLED
        actors.actor = player
        result = coordinator.invite_participant('Dana', 1500)
        assert result.rejection == Rejection.PERMISSION_DENIED


class TestRosterEdits:
    """Tests for remove, waitlist and team/position moves."""

    def test_remove(self, coordinator, roster, reminders):
        coordinator.set_rsvp('owner-1', RSVPStatus.GOING)
        result = coordinator.remove_participant('owner-1')

        assert result.ok
        assert roster.participant('owner-1') is None
        assert reminders.pending == {}

    def test_remove_does_not_promote(self, coordinator, roster):
        roster.max_players = 1
        roster.participants[0].rsvp_status = RSVPStatus.GOING
        roster.participants[1].rsvp_status = RSVPStatus.WAITLISTED
        coordinator.remove_participant('owner-1')
        assert roster.participant('player-1').rsvp_status == RSVPStatus.WAITLISTED

    def test_remove_unknown(self, coordinator, roster):
        result = coordinator.remove_participant('ghost')
        assert result.rejection == Rejection.NOT_FOUND

    def test_move_to_waitlist(self, coordinator, roster):
        result = coordinator.move_to_waitlist('player-1')
        participant = roster.participant('player-1')

        assert result.effective_status == RSVPStatus.WAITLISTED
        assert participant.rsvp_status == RSVPStatus.WAITLISTED
        assert participant.waitlisted_at == NOW

    def test_move_to_unknown_team(self, coordinator, roster):
        result = coordinator.move_participant_to_team('player-1', 'elsewhere')
        assert result.rejection == Rejection.INVALID_INPUT
        assert result.message == "Team is not part of this match."

    def test_move_to_team(self, coordinator, roster):
        result = coordinator.move_participant_to_team('player-1', 'away')
        assert result.message == "Pat moved to Blues."
        assert roster.participant('player-1').team_id == 'away'

    def test_player_moves_self(self, coordinator, roster, actors, player):
        actors.actor = player
        assert coordinator.can_manage_participant('player-1') is True
        assert coordinator.can_manage_participant('p-away-1') is False
        assert coordinator.move_participant_to_team('player-1', 'away').ok
        assert coordinator.move_participant_to_team('p-away-1', 'home').rejection == Rejection.PERMISSION_DENIED

    def test_update_position(self, coordinator, roster):
        result = coordinator.update_participant_position('player-1', 'GK')
        assert result.ok
        assert roster.participant('player-1').position_group == PositionGroup.GK

    def test_update_position_invalid(self, coordinator, roster):
        result = coordinator.update_participant_position('player-1', 'SWEEPER')
        assert result.rejection == Rejection.INVALID_INPUT


class TestEvents:
    """Tests for add_event."""

    def test_events_sorted_stably(self, coordinator, roster):
        coordinator.add_event(MatchEventType.GOAL, 30, 'owner-1')
        coordinator.add_event(MatchEventType.GOAL, 10, 'player-1')
        coordinator.add_event(MatchEventType.ASSIST, 10, 'owner-1')

        events = roster.events
        assert [e.minute for e in events] == [10, 10, 30]
        assert [e.type for e in events[:2]] == [MatchEventType.GOAL, MatchEventType.ASSIST]
        assert events[0].created_by_id == 'owner-1'

    def test_allowed_after_completion(self, coordinator, roster):
        coordinator.complete(1, 0)
        assert coordinator.add_event('yellow', 80, 'p-away-1').ok

    def test_negative_minute(self, coordinator, roster):
        result = coordinator.add_event(MatchEventType.GOAL, -1, 'owner-1')
        assert result.rejection == Rejection.INVALID_INPUT
        assert roster.events == []

    def test_unknown_type(self, coordinator, roster):
        result = coordinator.add_event('own_goal', 5, 'owner-1')
        assert result.rejection == Rejection.INVALID_INPUT

    def test_stranger_denied(self, coordinator, roster, actors, player):
        actors.actor = player
        result = coordinator.add_event(MatchEventType.GOAL, 5, 'player-1')
        assert result.rejection == Rejection.PERMISSION_DENIED


class TestLifecycle:
    """Tests for details, reschedule, cancel and complete."""

    def test_update_details_clamps_capacity(self, coordinator, roster):
        for participant in roster.participants[:3]:
            participant.rsvp_status = RSVPStatus.GOING

        result = coordinator.update_details(
            NOW + timedelta(days=3), ' North Field ', '7v7', 1, ' bring bibs '
        )

        assert result.ok
        assert roster.max_players == 3
        assert roster.location == 'North Field'
        assert roster.format == '7v7'
        assert roster.notes == 'bring bibs'

    def test_reschedule(self, coordinator, roster, remote):
        new_start = NOW + timedelta(days=5)
        assert coordinator.reschedule(new_start).ok
        assert roster.start_time == new_start
        assert remote.pushed[-1].type == EventType.MATCH_RESCHEDULED

    def test_reschedule_rearms_reminder(self, coordinator, roster, reminders):
        coordinator.set_rsvp('owner-1', RSVPStatus.GOING)
        new_start = NOW + timedelta(days=5)
        coordinator.reschedule(new_start)
        reminder = reminders.pending[reminder_id('match-1', 'owner-1')]
        assert reminder.start_time == new_start

    def test_reschedule_cancelled_locked(self, coordinator, roster):
        roster.status = MatchStatus.CANCELLED
        result = coordinator.reschedule(NOW + timedelta(days=5))
        assert result.rejection == Rejection.MATCH_LOCKED
        assert result.message == MATCH_CANCELLED_LOCKED_MESSAGE

    def test_cancel_wipes_roster(self, coordinator, roster, match_store):
        coordinator.add_event(MatchEventType.GOAL, 3, 'owner-1')
        result = coordinator.cancel()

        assert result.ok
        assert roster.status == MatchStatus.CANCELLED
        assert roster.participants == []
        assert roster.events == []
        assert coordinator.is_deleted is True
        assert match_store.load('match-1').is_deleted is True

    def test_cancel_twice(self, coordinator, roster):
        coordinator.cancel()
        result = coordinator.cancel()
        assert result.rejection == Rejection.MATCH_LOCKED
        assert result.message == "Match is already deleted."

    def test_cannot_cancel_completed(self, coordinator, roster):
        coordinator.complete(2, 2)
        result = coordinator.cancel()
        assert result.message == MATCH_COMPLETED_LOCKED_MESSAGE

    def test_complete_with_rating_preview(self, coordinator, roster, remote):
        """Owner at 1500 beats an away side averaging 1500: preview 1512."""
        result = coordinator.complete(2, 1)

        assert result.ok
        assert result.rating_preview == 1512
        assert roster.status == MatchStatus.COMPLETED
        assert roster.final_home_score == 2
        pushed = remote.pushed[-1]
        assert pushed.type == EventType.MATCH_COMPLETED
        assert pushed.data == {'home_score': 2, 'away_score': 1, 'apply_rating': True}

    def test_complete_draw_preview(self, coordinator, roster):
        assert coordinator.complete(1, 1).rating_preview == 1500

    def test_complete_again_overwrites(self, coordinator, roster):
        coordinator.complete(2, 1)
        result = coordinator.complete(0, 3)
        assert result.ok
        assert coordinator.scoreline() == (0, 3)
        assert result.rating_preview == 1488

    def test_complete_clamps_negative(self, coordinator, roster):
        coordinator.complete(-2, 1)
        assert roster.final_home_score == 0

    def test_unrated_match_has_no_preview(self, coordinator, roster):
        roster.is_rating_game = False
        assert coordinator.complete(2, 1).rating_preview is None

    def test_complete_cancelled_locked(self, coordinator, roster):
        coordinator.cancel()
        assert coordinator.complete(1, 0).rejection == Rejection.MATCH_LOCKED


class TestReads:
    """Tests for scoreline, stats and roster views."""

    def test_scoreline_from_goals(self, coordinator, roster):
        coordinator.add_event(MatchEventType.GOAL, 5, 'owner-1')
        coordinator.add_event(MatchEventType.GOAL, 9, 'p-away-2')
        coordinator.add_event(MatchEventType.GOAL, 15, 'player-1')
        coordinator.add_event(MatchEventType.ASSIST, 15, 'owner-1')
        coordinator.add_event(MatchEventType.GOAL, 20, 'stranger')
        assert coordinator.scoreline() == (2, 1)

    def test_summary_and_stats(self, coordinator, roster):
        coordinator.add_event(MatchEventType.GOAL, 5, 'p-away-2')
        assert coordinator.stats()['p-away-2'].goals == 1
        assert coordinator.summary_rows()[0].id == 'p-away-2'

    def test_participants_with_status(self, coordinator, roster):
        roster.participants[3].rsvp_status = RSVPStatus.GOING
        roster.participants[2].rsvp_status = RSVPStatus.GOING
        going = coordinator.participants_with_status('going')
        assert [p.name for p in going] == ['Ann', 'Ben']

    def test_participants_in(self, coordinator, roster):
        roster.participants[1].position_group = PositionGroup.GK
        assert [p.id for p in coordinator.participants_in('home', PositionGroup.GK)] == ['player-1']
        assert [p.id for p in coordinator.participants_in('home', PositionGroup.BENCH)] == ['owner-1']

    def test_capabilities(self, coordinator, actors, player):
        assert all(coordinator.capabilities().values())
        actors.actor = player
        assert not any(coordinator.capabilities().values())


class TestObservers:

    def test_observer_receives_snapshot(self, coordinator, roster):
        seen = []
        unsubscribe = coordinator.subscribe(seen.append)
        coordinator.set_rsvp('owner-1', RSVPStatus.GOING)
        unsubscribe()
        coordinator.set_rsvp('owner-1', RSVPStatus.MAYBE)

        assert len(seen) == 1
        assert isinstance(seen[0], MatchSnapshot)

    def test_failing_observer_does_not_break_commit(self, coordinator, roster):
        def broken(snapshot):
            raise RuntimeError("boom")

        coordinator.subscribe(broken)
        assert coordinator.set_rsvp('owner-1', RSVPStatus.GOING).ok


class TestSyncFailures:
    """A failed push never undoes the local commit."""

    @pytest.fixture
    def failing_remote(self, mocker):
        remote = mocker.Mock(spec=RemoteSync)
        remote.push.side_effect = RemoteSyncError("Server error (503): down", status=503)
        return remote

    def test_warning_attached_inline(self, sample_match, roster, actors, match_store, reminders, failing_remote):
        coordinator = MatchLifecycleCoordinator(
            sample_match, actors, match_store, SyncOutbox(failing_remote, inline=True),
            reminders, clock=lambda: NOW
        )
        result = coordinator.set_rsvp('owner-1', RSVPStatus.GOING)

        assert result.ok
        assert len(result.warnings) == 1
        assert 'backend sync failed' in result.warnings[0].message
        assert match_store.load('match-1').participants[0].rsvp_status == RSVPStatus.GOING


class TestLoading:
    """Tests for load_persisted and reconcile_remote."""

    def test_load_persisted(self, coordinator, roster, match_store, sample_match):
        snapshot = MatchSnapshot.from_match(sample_match)
        snapshot.participants[0].rsvp_status = RSVPStatus.GOING
        match_store.save('match-1', snapshot)

        assert coordinator.load_persisted() is True
        assert roster.participant('owner-1').rsvp_status == RSVPStatus.GOING

    def test_load_nothing_stored(self, coordinator):
        assert coordinator.load_persisted() is False

    def test_reconcile_replaces_local(self, coordinator, roster, match_store, mocker):
        remote_copy = MatchSnapshot.from_match(roster)
        remote_copy.participants = remote_copy.participants[:1]
        coordinator.remote = mocker.Mock(spec=RemoteSync)
        coordinator.remote.pull.return_value = remote_copy

        assert coordinator.reconcile_remote() is True
        assert [p.id for p in roster.participants] == ['owner-1']
        assert len(match_store.load('match-1').participants) == 1

    def test_reconcile_keeps_local_on_failure(self, coordinator, roster, mocker):
        coordinator.remote = mocker.Mock(spec=RemoteSync)
        coordinator.remote.pull.side_effect = RemoteSyncError("Request to matches failed")

        assert coordinator.reconcile_remote() is False
        assert len(roster.participants) == 4

    def test_reconcile_without_remote_copy(self, coordinator, roster):
        assert coordinator.reconcile_remote() is False

    def test_reconcile_applies_blank_location(self, coordinator, roster, match_store, mocker):
        """Memory and the local store agree after a remote copy clears the location."""
        remote_copy = MatchSnapshot.from_match(roster)
        remote_copy.location = ''
        coordinator.remote = mocker.Mock(spec=RemoteSync)
        coordinator.remote.pull.return_value = remote_copy

        assert coordinator.reconcile_remote() is True
        assert roster.location == ''
        assert match_store.load('match-1').location == ''

    def test_refresh_actor_reminder(self, coordinator, roster, reminders):
        roster.participants[0].rsvp_status = RSVPStatus.GOING
        coordinator.refresh_actor_reminder()
        assert reminder_id('match-1', 'owner-1') in reminders.pending

    def test_refresh_for_unknown_actor_cancels(self, coordinator, actors, reminders):
        actors.actor = User(id='newcomer', display_name='New')
        coordinator.refresh_actor_reminder()
        assert reminders.pending == {}


class TestReminderFailures:
    """A Redis outage in the reminder scheduler never undoes a commit."""

    @pytest.fixture
    def coordinator(self, sample_match, actors, match_store, outbox, remote, mock_redis):
        mock_redis.pipeline.return_value.execute.side_effect = redis.exceptions.ConnectionError('down')
        return MatchLifecycleCoordinator(
            sample_match,
            actors=actors,
            store=match_store,
            outbox=outbox,
            reminders=RedisReminderScheduler(mock_redis, clock=lambda: NOW),
            remote=remote,
            clock=lambda: NOW
        )

    def test_rsvp_is_saved_and_pushed(self, coordinator, roster, match_store, remote):
        result = coordinator.set_rsvp('owner-1', RSVPStatus.GOING)

        assert result.ok
        assert match_store.load('match-1').participants[0].rsvp_status == RSVPStatus.GOING
        assert [e.type for e in remote.pushed] == [EventType.RSVP_UPDATED]

    def test_cancel_is_saved(self, coordinator, roster, match_store):
        assert coordinator.cancel().ok

        stored = match_store.load('match-1')
        assert stored.status == MatchStatus.CANCELLED
        assert stored.participants == []
        assert stored.is_deleted is True

    def test_reminder_runs_after_save(self, sample_match, roster, actors, match_store, outbox, mocker):
        """The scheduler sees the match already saved."""
        calls = []
        reminders = mocker.Mock()
        reminders.schedule.side_effect = lambda *args: calls.append(
            match_store.load('match-1').participants[0].rsvp_status
        )
        coordinator = MatchLifecycleCoordinator(
            sample_match, actors, match_store, outbox, reminders, clock=lambda: NOW
        )

        coordinator.set_rsvp('owner-1', RSVPStatus.GOING)

        assert calls == [RSVPStatus.GOING]


class TestConcurrentRsvp:
    """Concurrent RSVP changes on one coordinator are serialized."""

    @staticmethod
    def _start(coordinator, calls):
        barrier = threading.Barrier(len(calls))
        results = []

        def worker(user_id, status):
            barrier.wait()
            results.append(coordinator.set_rsvp(user_id, status))

        threads = [threading.Thread(target=worker, args=call, daemon=True) for call in calls]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        assert not any(t.is_alive() for t in threads)
        return results

    def test_declines_promote_one_each(self, coordinator, sample_match, make_participant):
        sample_match.max_players = 4
        sample_match.participants = (
            [make_participant(f'g{i}', status=RSVPStatus.GOING, invited_offset=i) for i in range(4)]
            + [make_participant(f'w{i}', status=RSVPStatus.WAITLISTED, invited_offset=10 + i,
                                waitlisted_offset=10 + i) for i in range(4)]
        )

        results = self._start(coordinator, [(f'g{i}', RSVPStatus.DECLINED) for i in range(3)])

        promoted = [r.promoted_participant_id for r in results]
        assert sorted(promoted) == ['w0', 'w1', 'w2']
        assert sample_match.going_count == 4
        assert sample_match.participant('w3').rsvp_status == RSVPStatus.WAITLISTED

    def test_joins_and_declines_never_over_admit(self, coordinator, sample_match, make_participant):
        sample_match.max_players = 4
        sample_match.participants = (
            [make_participant(f'g{i}', status=RSVPStatus.GOING, invited_offset=i) for i in range(4)]
            + [make_participant(f'j{i}', invited_offset=10 + i) for i in range(8)]
        )
        calls = [(f'g{i}', RSVPStatus.DECLINED) for i in range(3)]
        calls += [(f'j{i}', RSVPStatus.GOING) for i in range(8)]

        results = self._start(coordinator, calls)

        assert all(r.ok for r in results)
        assert sample_match.going_count == 4
        # Each freed seat went to exactly one joiner, by promotion or directly.
        promoted = [r.promoted_participant_id for r in results if r.promoted_participant_id]
        direct = [
            r for r in results
            if r.effective_status == RSVPStatus.GOING and r.promoted_participant_id is None
        ]
        assert len(promoted) == len(set(promoted))
        assert len(promoted) + len(direct) == 3
