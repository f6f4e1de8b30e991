"""
Unit tests for the access predicates.
"""
from datetime import timedelta

import pytest

from matchday import access_policy
from matchday.access_policy import CoachSessionTarget, has_admin_or_organiser_access
from matchday.models import User

from tests.conftest import NOW


@pytest.fixture
def coach():
    return User(id='coach-1', display_name='Casey Coach',
                coach_subscription_ends_at=NOW + timedelta(days=30))


@pytest.fixture
def lapsed_coach():
    return User(id='coach-2', display_name='Lee Lapsed',
                coach_subscription_ends_at=NOW - timedelta(days=1))


class TestAdminOrOrganiser:
    """Tests for has_admin_or_organiser_access."""

    def test_no_actor_denied(self):
        assert has_admin_or_organiser_access(None, 'owner-1', []) is False

    def test_owner_allowed(self, owner):
        assert has_admin_or_organiser_access(owner, 'owner-1', []) is True

    def test_organiser_allowed(self, player):
        assert has_admin_or_organiser_access(player, 'owner-1', ['player-1']) is True

    def test_admin_always_allowed(self, admin):
        assert has_admin_or_organiser_access(admin, 'someone-else', []) is True

    def test_stranger_denied(self, player):
        assert has_admin_or_organiser_access(player, 'owner-1', ['organiser-1']) is False


class TestMatchPredicates:
    """Match predicates follow the owner/organiser rule."""

    @pytest.mark.parametrize('predicate', [
        access_policy.can_edit_match,
        access_policy.can_invite_to_match,
        access_policy.can_enter_match_result,
    ])
    def test_owner_and_stranger(self, predicate, sample_match, owner, player):
        assert predicate(owner, sample_match) is True
        assert predicate(player, sample_match) is False
        assert predicate(None, sample_match) is False

    def test_listed_organiser_can_edit(self, sample_match):
        organiser = User(id='organiser-1', display_name='Org')
        assert access_policy.can_edit_match(organiser, sample_match) is True

    def test_any_member_can_create(self, player):
        assert access_policy.can_create_match(player) is True
        assert access_policy.can_create_match(None) is False


class TestTournamentPredicates:

    @pytest.mark.parametrize('predicate', [
        access_policy.can_edit_tournament,
        access_policy.can_manage_tournament_teams,
        access_policy.can_create_tournament_match,
        access_policy.can_enter_tournament_result,
    ])
    def test_owner_admin_stranger(self, predicate, sample_tournament, owner, admin, player):
        assert predicate(owner, sample_tournament) is True
        assert predicate(admin, sample_tournament) is True
        assert predicate(player, sample_tournament) is False

    def test_create_requires_actor(self, player):
        assert access_policy.can_create_tournament(player) is True
        assert access_policy.can_create_tournament(None) is False


class TestCoachPredicates:
    """Coaching features need an active subscription."""

    def test_active_coach_can_create(self, coach):
        assert access_policy.can_create_coach_session(coach, NOW) is True
        assert access_policy.can_search_players_as_coach(coach, NOW) is True

    def test_lapsed_coach_cannot_create(self, lapsed_coach):
        assert access_policy.can_create_coach_session(lapsed_coach, NOW) is False

    def test_paused_coach_cannot_create(self, coach):
        coach.coach_subscription_paused = True
        assert access_policy.can_create_coach_session(coach, NOW) is False

    def test_plain_player_cannot_search(self, player):
        assert access_policy.can_search_players_as_coach(player, NOW) is False

    def test_admin_passes_without_subscription(self, admin):
        assert access_policy.can_create_coach_session(admin, NOW) is True
        target = CoachSessionTarget(owner_id='coach-1')
        assert access_policy.can_edit_coach_session(admin, target, NOW) is True

    def test_coach_edits_own_session_only(self, coach):
        own = CoachSessionTarget(owner_id='coach-1')
        other = CoachSessionTarget(owner_id='coach-9', organiser_ids=['coach-8'])
        assert access_policy.can_edit_coach_session(coach, own, NOW) is True
        assert access_policy.can_edit_coach_session(coach, other, NOW) is False

    def test_lapsed_coach_cannot_edit_own_session(self, lapsed_coach):
        target = CoachSessionTarget(owner_id='coach-2')
        assert access_policy.can_edit_coach_session(lapsed_coach, target, NOW) is False


class TestAdminPredicates:

    def test_only_admins_manage_users(self, admin, player):
        assert access_policy.can_manage_users_as_admin(admin) is True
        assert access_policy.can_manage_users_as_admin(player) is False
        assert access_policy.can_manage_users_as_admin(None) is False
