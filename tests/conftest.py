"""
Pytest configuration and fixtures for clubhouse tests.
"""
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'

from clubhouse.actors import StaticActorResolver
from clubhouse.app import create_app
from clubhouse.coordinator import MatchLifecycleCoordinator
from clubhouse.models import db, UserRecord
from clubhouse.outbox import SyncOutbox
from clubhouse.reminders import NullReminderScheduler
from clubhouse.remote_sync import LocalRemoteSync
from clubhouse.store import InMemoryMatchStore, InMemoryTournamentStore
from clubhouse.tournaments import TournamentCoordinator
from matchday.models import (
    GlobalRole, Match, Participant, PositionGroup, RSVPStatus, Team,
    Tournament, User,
)

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create database session for testing."""
    with app.app_context():
        # Clear all tables before each test
        db.session.remove()

        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture
def user_records(app, db_session):
    """Owner, admin, two players and a suspended account."""
    records = [
        UserRecord(id='owner-1', display_name='Olivia Owner', rating=1550, role='player'),
        UserRecord(id='admin-1', display_name='Adam Admin', rating=1500, role='admin'),
        UserRecord(id='player-1', display_name='Pat Player', rating=1480, role='player'),
        UserRecord(id='player-2', display_name='Quinn Player', rating=1600, role='player'),
        UserRecord(id='suspended-1', display_name='Sam Suspended', role='player',
                   is_suspended=True, suspension_reason='spam'),
    ]
    db.session.add_all(records)
    db.session.commit()
    return {r.id: r for r in records}


@pytest.fixture
def owner():
    return User(id='owner-1', display_name='Olivia Owner', rating=1550)


@pytest.fixture
def admin():
    return User(id='admin-1', display_name='Adam Admin', role=GlobalRole.ADMIN)


@pytest.fixture
def player():
    return User(id='player-1', display_name='Pat Player', rating=1480)


@pytest.fixture
def make_participant():
    """Build a participant with deterministic timestamps."""
    def _make(pid, name=None, status=RSVPStatus.INVITED, team_id='home', elo=1500,
              invited_offset=0, waitlisted_offset=None, group=PositionGroup.BENCH):
        return Participant(
            id=pid,
            name=name or pid.capitalize(),
            team_id=team_id,
            elo=elo,
            position_group=group,
            rsvp_status=status,
            invited_at=NOW + timedelta(seconds=invited_offset),
            waitlisted_at=NOW + timedelta(seconds=waitlisted_offset) if waitlisted_offset is not None else None,
        )
    return _make


@pytest.fixture
def sample_match(owner):
    """A scheduled 5v5 two days out, empty roster."""
    return Match(
        id='match-1',
        home_team=Team(id='home', name='Reds'),
        away_team=Team(id='away', name='Blues'),
        participants=[],
        events=[],
        location='Riverside Pitch',
        start_time=NOW + timedelta(days=2),
        owner_id=owner.id,
        max_players=10,
        organiser_ids=['organiser-1'],
    )


@pytest.fixture
def actors(owner):
    """Actor resolver whose actor tests can swap."""
    return StaticActorResolver(owner)


@pytest.fixture
def match_store():
    return InMemoryMatchStore()


@pytest.fixture
def remote():
    return LocalRemoteSync()


@pytest.fixture
def outbox(remote):
    return SyncOutbox(remote, inline=True)


@pytest.fixture
def reminders():
    return NullReminderScheduler(clock=lambda: NOW)


@pytest.fixture
def coordinator(sample_match, actors, match_store, outbox, reminders, remote):
    """MatchLifecycleCoordinator wired to in-memory collaborators."""
    return MatchLifecycleCoordinator(
        sample_match,
        actors=actors,
        store=match_store,
        outbox=outbox,
        reminders=reminders,
        remote=remote,
        clock=lambda: NOW
    )


@pytest.fixture
def sample_tournament(owner):
    """Published league with three teams and no fixtures."""
    return Tournament(
        id='tournament-1',
        title='Spring League',
        location='Riverside',
        start_date=NOW + timedelta(days=7),
        owner_id=owner.id,
        teams=[
            Team(id='t-lions', name='Lions'),
            Team(id='t-tigers', name='Tigers'),
            Team(id='t-bears', name='Bears'),
        ],
        max_teams=4,
    )


@pytest.fixture
def tournament_store():
    return InMemoryTournamentStore()


@pytest.fixture
def tournament_coordinator(sample_tournament, actors, tournament_store, outbox):
    return TournamentCoordinator(
        sample_tournament,
        actors=actors,
        store=tournament_store,
        outbox=outbox,
        clock=lambda: NOW
    )


@pytest.fixture
def mock_redis(mocker):
    """MagicMock standing in for a redis.Redis client."""
    client = mocker.MagicMock()
    client.pipeline.return_value = mocker.MagicMock()
    return client
