"""
Versioned snapshot schema for match and tournament state.

Version 1 payloads predate `schema_version` and omit most detail fields;
they are upgraded through an explicit branch that fills defaults. Anything
else that fails to decode is a SnapshotDecodeError: a corrupt snapshot is
never silently replaced by a different shape.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .errors import SnapshotDecodeError, ValidationError
from .models import (
    DisputeStatus, Match, MatchEvent, MatchStatus, Participant, Team,
    Tournament, TournamentMatch, TournamentStatus, format_timestamp,
    parse_timestamp, utcnow,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
DEFAULT_FORMAT = "5v5"


@dataclass
class MatchSnapshot:
    participants: List[Participant]
    events: List[MatchEvent]
    location: Optional[str]
    start_time: datetime
    format: str
    notes: str
    max_players: int
    status: MatchStatus = MatchStatus.SCHEDULED
    final_home_score: Optional[int] = None
    final_away_score: Optional[int] = None
    is_deleted: bool = False

    @classmethod
    def from_match(cls, match: Match, is_deleted: bool = False) -> "MatchSnapshot":
        return cls(
            participants=[Participant.from_dict(p.to_dict()) for p in match.participants],
            events=list(match.events),
            location=match.location,
            start_time=match.start_time,
            format=match.format,
            notes=match.notes,
            max_players=match.max_players,
            status=match.status,
            final_home_score=match.final_home_score,
            final_away_score=match.final_away_score,
            is_deleted=is_deleted,
        )

    def apply_to(self, match: Match):
        """Overwrite the mutable state of `match` with this snapshot."""
        match.participants = [Participant.from_dict(p.to_dict()) for p in self.participants]
        match.events = list(self.events)
        # Version 1 payloads carry no location; the match header keeps its own.
        if self.location is not None:
            match.location = self.location
        match.start_time = self.start_time
        match.format = self.format
        match.notes = self.notes
        match.max_players = self.max_players
        match.status = self.status
        match.final_home_score = self.final_home_score
        match.final_away_score = self.final_away_score

    def to_dict(self) -> dict:
        return {
            'schema_version': SCHEMA_VERSION,
            'participants': [p.to_dict() for p in self.participants],
            'events': [e.to_dict() for e in self.events],
            'location': self.location,
            'start_time': format_timestamp(self.start_time),
            'format': self.format,
            'notes': self.notes,
            'max_players': self.max_players,
            'status': self.status.value,
            'final_home_score': self.final_home_score,
            'final_away_score': self.final_away_score,
            'is_deleted': self.is_deleted,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MatchSnapshot":
        if not isinstance(data, dict):
            raise SnapshotDecodeError(f"Snapshot must be an object, got {type(data).__name__}")

        version = data.get('schema_version', 1)
        if version == 1:
            logger.info("Upgrading version 1 match snapshot with default values")
        elif version != SCHEMA_VERSION:
            raise SnapshotDecodeError(f"Unsupported snapshot schema version: {version}")

        try:
            participants = [Participant.from_dict(p) for p in data['participants']]
            events = [MatchEvent.from_dict(e) for e in data['events']]
            return cls(
                participants=participants,
                events=events,
                location=data.get('location') if version == 1 else (data.get('location') or ""),
                start_time=parse_timestamp(data.get('start_time')) or utcnow(),
                format=data.get('format') or DEFAULT_FORMAT,
                notes=data.get('notes') or "",
                max_players=int(data.get('max_players') or max(len(participants), 1)),
                status=MatchStatus(data.get('status') or MatchStatus.SCHEDULED.value),
                final_home_score=data.get('final_home_score'),
                final_away_score=data.get('final_away_score'),
                is_deleted=bool(data.get('is_deleted', False)),
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise SnapshotDecodeError(f"Malformed match snapshot: {e!r}") from e


def tournament_to_dict(tournament: Tournament) -> dict:
    return {
        'schema_version': SCHEMA_VERSION,
        'id': tournament.id,
        'title': tournament.title,
        'location': tournament.location,
        'start_date': format_timestamp(tournament.start_date),
        'end_date': format_timestamp(tournament.end_date),
        'owner_id': tournament.owner_id,
        'organiser_ids': list(tournament.organiser_ids),
        'teams': [t.to_dict() for t in tournament.teams],
        'max_teams': tournament.max_teams,
        'format': tournament.format,
        'status': tournament.status.value,
        'matches': [m.to_dict() for m in tournament.matches],
        'dispute_status': tournament.dispute_status.value,
        'entry_fee': tournament.entry_fee,
    }


def tournament_from_dict(data: dict) -> Tournament:
    """Team members are not embedded; teams come back with empty rosters."""
    try:
        return Tournament(
            id=data['id'],
            title=data['title'],
            location=data.get('location') or "",
            start_date=parse_timestamp(data['start_date']),
            end_date=parse_timestamp(data.get('end_date')),
            owner_id=data['owner_id'],
            organiser_ids=data.get('organiser_ids') or [],
            teams=[
                Team(id=t['id'], name=t['name'], max_players=t.get('max_players', 6))
                for t in data.get('teams', [])
            ],
            max_teams=int(data.get('max_teams', 8)),
            format=data.get('format') or DEFAULT_FORMAT,
            status=TournamentStatus(data.get('status') or TournamentStatus.PUBLISHED.value),
            matches=[TournamentMatch.from_dict(m) for m in data.get('matches', [])],
            dispute_status=DisputeStatus(data.get('dispute_status') or DisputeStatus.NONE.value),
            entry_fee=float(data.get('entry_fee', 0.0)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SnapshotDecodeError(f"Malformed tournament snapshot: {e!r}") from e
