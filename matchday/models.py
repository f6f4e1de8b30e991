import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional

from .errors import ValidationError


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string; naive values are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def merge_organiser_ids(owner_id: str, organiser_ids: Iterable[str]) -> List[str]:
    """Owner first, then organisers in first-seen order, duplicates dropped."""
    merged = [owner_id]
    seen = {owner_id}
    for organiser_id in organiser_ids or []:
        if organiser_id not in seen:
            seen.add(organiser_id)
            merged.append(organiser_id)
    return merged


class GlobalRole(str, Enum):
    PLAYER = "player"
    ADMIN = "admin"


class CoachStatus(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    EXPIRED = "expired"
    PAUSED = "paused"


class RSVPStatus(str, Enum):
    INVITED = "invited"
    GOING = "going"
    MAYBE = "maybe"
    DECLINED = "declined"
    WAITLISTED = "waitlisted"

    @property
    def title(self) -> str:
        if self is RSVPStatus.WAITLISTED:
            return "Waitlist"
        return self.value.capitalize()


class PositionGroup(str, Enum):
    GK = "GK"
    DEFENDERS = "DEF"
    MIDFIELDERS = "MID"
    FORWARDS = "FWD"
    BENCH = "BENCH"


class MatchEventType(str, Enum):
    GOAL = "goal"
    ASSIST = "assist"
    YELLOW = "yellow"
    RED = "red"
    SAVE = "save"


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TournamentStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TournamentMatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DisputeStatus(str, Enum):
    NONE = "none"
    OPEN = "open"
    RESOLVED = "resolved"


@dataclass
class User:
    id: str
    display_name: str
    rating: int = 1500
    role: GlobalRole = GlobalRole.PLAYER
    is_suspended: bool = False
    suspension_reason: Optional[str] = None
    coach_subscription_ends_at: Optional[datetime] = None
    coach_subscription_paused: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == GlobalRole.ADMIN

    def coach_status(self, now: datetime = None) -> CoachStatus:
        if self.coach_subscription_paused:
            return CoachStatus.PAUSED
        if self.coach_subscription_ends_at is None:
            return CoachStatus.NONE
        now = now or utcnow()
        if self.coach_subscription_ends_at >= now:
            return CoachStatus.ACTIVE
        return CoachStatus.EXPIRED

    def is_coach_active(self, now: datetime = None) -> bool:
        return self.coach_status(now) == CoachStatus.ACTIVE


@dataclass
class Team:
    id: str
    name: str
    members: List[User] = field(default_factory=list)
    max_players: int = 6

    @property
    def spots_left(self) -> int:
        return max(self.max_players - len(self.members), 0)

    @property
    def is_full(self) -> bool:
        return len(self.members) >= self.max_players

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'member_ids': [m.id for m in self.members],
            'max_players': self.max_players,
        }


@dataclass
class Participant:
    id: str
    name: str
    team_id: Optional[str]
    elo: int
    position_group: PositionGroup = PositionGroup.BENCH
    rsvp_status: RSVPStatus = RSVPStatus.INVITED
    invited_at: datetime = field(default_factory=utcnow)
    waitlisted_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'team_id': self.team_id,
            'elo': self.elo,
            'position_group': self.position_group.value,
            'rsvp_status': self.rsvp_status.value,
            'invited_at': format_timestamp(self.invited_at),
            'waitlisted_at': format_timestamp(self.waitlisted_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Participant":
        # Older payloads omit position, status and invite time.
        return cls(
            id=data['id'],
            name=data['name'],
            team_id=data.get('team_id'),
            elo=int(data['elo']),
            position_group=PositionGroup(data.get('position_group') or PositionGroup.BENCH.value),
            rsvp_status=RSVPStatus(data.get('rsvp_status') or RSVPStatus.INVITED.value),
            invited_at=parse_timestamp(data.get('invited_at')) or EPOCH,
            waitlisted_at=parse_timestamp(data.get('waitlisted_at')),
        )


@dataclass(frozen=True)
class MatchEvent:
    id: str
    type: MatchEventType
    minute: int
    player_id: str
    created_by_id: str
    created_at: datetime

    def __post_init__(self):
        if self.minute < 0:
            raise ValidationError(f"Event minute must be non-negative, got {self.minute}")

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'type': self.type.value,
            'minute': self.minute,
            'player_id': self.player_id,
            'created_by_id': self.created_by_id,
            'created_at': format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MatchEvent":
        return cls(
            id=data['id'],
            type=MatchEventType(data['type']),
            minute=int(data['minute']),
            player_id=data['player_id'],
            created_by_id=data['created_by_id'],
            created_at=parse_timestamp(data['created_at']),
        )


@dataclass
class Match:
    id: str
    home_team: Team
    away_team: Team
    participants: List[Participant]
    events: List[MatchEvent]
    location: str
    start_time: datetime
    owner_id: str
    max_players: int = 10
    format: str = "5v5"
    notes: str = ""
    is_rating_game: bool = True
    is_field_booked: bool = False
    is_private: bool = False
    status: MatchStatus = MatchStatus.SCHEDULED
    final_home_score: Optional[int] = None
    final_away_score: Optional[int] = None
    organiser_ids: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.organiser_ids = merge_organiser_ids(self.owner_id, self.organiser_ids)

    @property
    def title(self) -> str:
        return f"{self.home_team.name} vs {self.away_team.name}"

    @property
    def is_terminal(self) -> bool:
        return self.status != MatchStatus.SCHEDULED

    def participant(self, participant_id: str) -> Optional[Participant]:
        for p in self.participants:
            if p.id == participant_id:
                return p
        return None

    @property
    def going_count(self) -> int:
        return sum(1 for p in self.participants if p.rsvp_status == RSVPStatus.GOING)

    @property
    def waitlist_count(self) -> int:
        return sum(1 for p in self.participants if p.rsvp_status == RSVPStatus.WAITLISTED)

    @property
    def spots_left(self) -> int:
        return max(self.max_players - self.going_count, 0)


@dataclass
class TournamentMatch:
    home_team_id: str
    away_team_id: str
    start_time: datetime
    id: str = field(default_factory=new_id)
    location_name: Optional[str] = None
    matchday: Optional[int] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    status: TournamentMatchStatus = TournamentMatchStatus.SCHEDULED

    @property
    def is_completed(self) -> bool:
        return self.status == TournamentMatchStatus.COMPLETED

    def involves(self, team_id: str) -> bool:
        return team_id in (self.home_team_id, self.away_team_id)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'home_team_id': self.home_team_id,
            'away_team_id': self.away_team_id,
            'start_time': format_timestamp(self.start_time),
            'location_name': self.location_name,
            'matchday': self.matchday,
            'home_score': self.home_score,
            'away_score': self.away_score,
            'status': self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TournamentMatch":
        status = data.get('status')
        if status is None:
            # Legacy rows only carried a completion flag.
            status = 'completed' if data.get('is_completed') else 'scheduled'
        return cls(
            id=data['id'],
            home_team_id=data['home_team_id'],
            away_team_id=data['away_team_id'],
            start_time=parse_timestamp(data['start_time']),
            location_name=data.get('location_name'),
            matchday=data.get('matchday'),
            home_score=data.get('home_score'),
            away_score=data.get('away_score'),
            status=TournamentMatchStatus(status),
        )


@dataclass
class Tournament:
    id: str
    title: str
    location: str
    start_date: datetime
    owner_id: str
    teams: List[Team] = field(default_factory=list)
    max_teams: int = 8
    format: str = "5v5"
    organiser_ids: List[str] = field(default_factory=list)
    status: TournamentStatus = TournamentStatus.PUBLISHED
    matches: List[TournamentMatch] = field(default_factory=list)
    dispute_status: DisputeStatus = DisputeStatus.NONE
    entry_fee: float = 0.0
    end_date: Optional[datetime] = None

    def __post_init__(self):
        self.organiser_ids = merge_organiser_ids(self.owner_id, self.organiser_ids)

    @property
    def open_spots(self) -> int:
        return max(self.max_teams - len(self.teams), 0)

    def team(self, team_id: str) -> Optional[Team]:
        for t in self.teams:
            if t.id == team_id:
                return t
        return None

    def match(self, match_id: str) -> Optional[TournamentMatch]:
        for m in self.matches:
            if m.id == match_id:
                return m
        return None
