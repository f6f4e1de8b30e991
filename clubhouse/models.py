import json
from datetime import datetime, timezone
from typing import Optional

from flask_sqlalchemy import SQLAlchemy

from matchday.models import GlobalRole, Match, Team, Tournament, User, utcnow
from matchday.snapshot import tournament_from_dict, tournament_to_dict

db = SQLAlchemy()


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class UserRecord(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True)
    display_name = db.Column(db.String(100), nullable=False)
    rating = db.Column(db.Integer, default=1500)
    role = db.Column(db.String(20), nullable=False, default='player')
    is_suspended = db.Column(db.Boolean, default=False)
    suspension_reason = db.Column(db.String(200), nullable=True)
    coach_subscription_ends_at = db.Column(db.DateTime(timezone=True), nullable=True)
    coach_subscription_paused = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_user(self) -> User:
        return User(
            id=self.id,
            display_name=self.display_name,
            rating=self.rating if self.rating is not None else 1500,
            role=GlobalRole(self.role or 'player'),
            is_suspended=bool(self.is_suspended),
            suspension_reason=self.suspension_reason,
            coach_subscription_ends_at=_aware(self.coach_subscription_ends_at),
            coach_subscription_paused=bool(self.coach_subscription_paused),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'display_name': self.display_name,
            'rating': self.rating,
            'role': self.role,
            'is_suspended': self.is_suspended,
        }


class MatchRecord(db.Model):
    """Match header: identity, teams and ownership. Roster state lives in MatchStateRecord."""

    __tablename__ = 'matches'

    id = db.Column(db.String(36), primary_key=True)
    owner_id = db.Column(db.String(36), nullable=False, index=True)
    organiser_ids = db.Column(db.JSON, default=list)
    home_team_id = db.Column(db.String(36), nullable=False)
    home_team_name = db.Column(db.String(100), nullable=False, default='Home')
    away_team_id = db.Column(db.String(36), nullable=False)
    away_team_name = db.Column(db.String(100), nullable=False, default='Away')
    location = db.Column(db.String(200), nullable=False, default='')
    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    format = db.Column(db.String(20), default='5v5')
    max_players = db.Column(db.Integer, default=10)
    notes = db.Column(db.Text, default='')
    is_rating_game = db.Column(db.Boolean, default=True)
    is_field_booked = db.Column(db.Boolean, default=False)
    is_private = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_match(self) -> Match:
        return Match(
            id=self.id,
            home_team=Team(id=self.home_team_id, name=self.home_team_name),
            away_team=Team(id=self.away_team_id, name=self.away_team_name),
            participants=[],
            events=[],
            location=self.location or '',
            start_time=_aware(self.start_time),
            owner_id=self.owner_id,
            max_players=self.max_players or 10,
            format=self.format or '5v5',
            notes=self.notes or '',
            is_rating_game=bool(self.is_rating_game),
            is_field_booked=bool(self.is_field_booked),
            is_private=bool(self.is_private),
            organiser_ids=list(self.organiser_ids or []),
        )

    @staticmethod
    def from_match(match: Match) -> 'MatchRecord':
        return MatchRecord(
            id=match.id,
            owner_id=match.owner_id,
            organiser_ids=list(match.organiser_ids),
            home_team_id=match.home_team.id,
            home_team_name=match.home_team.name,
            away_team_id=match.away_team.id,
            away_team_name=match.away_team.name,
            location=match.location,
            start_time=match.start_time,
            format=match.format,
            max_players=match.max_players,
            notes=match.notes,
            is_rating_game=match.is_rating_game,
            is_field_booked=match.is_field_booked,
            is_private=match.is_private,
        )


class MatchStateRecord(db.Model):
    __tablename__ = 'match_states'

    match_id = db.Column(db.String(36), primary_key=True)
    schema_version = db.Column(db.Integer, nullable=False)
    payload = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def data(self) -> dict:
        return json.loads(self.payload)


class TournamentRecord(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.String(36), primary_key=True)
    owner_id = db.Column(db.String(36), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='published')
    payload = db.Column(db.JSON, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_tournament(self) -> Tournament:
        return tournament_from_dict(self.payload)

    def update_from(self, tournament: Tournament):
        self.owner_id = tournament.owner_id
        self.title = tournament.title
        self.status = tournament.status.value
        self.payload = tournament_to_dict(tournament)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'status': self.status,
            'owner_id': self.owner_id,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
