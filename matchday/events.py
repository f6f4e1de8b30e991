from enum import Enum
from dataclasses import dataclass
from typing import Optional
import json

from .models import format_timestamp, utcnow


class EventType(str, Enum):
    # Match roster
    RSVP_UPDATED = "match.rsvp_updated"
    PARTICIPANT_INVITED = "match.participant_invited"
    PARTICIPANT_REMOVED = "match.participant_removed"
    PARTICIPANT_WAITLISTED = "match.participant_waitlisted"
    PARTICIPANT_MOVED = "match.participant_moved"

    # Match lifecycle
    EVENT_ADDED = "match.event_added"
    DETAILS_UPDATED = "match.details_updated"
    MATCH_RESCHEDULED = "match.rescheduled"
    MATCH_CANCELLED = "match.cancelled"
    MATCH_COMPLETED = "match.completed"

    # Tournaments
    TOURNAMENT_UPDATED = "tournament.updated"
    TOURNAMENT_PUBLISHED = "tournament.published"
    TOURNAMENT_TEAM_ADDED = "tournament.team_added"
    TOURNAMENT_TEAM_REMOVED = "tournament.team_removed"
    TOURNAMENT_MATCH_SCHEDULED = "tournament.match_scheduled"
    TOURNAMENT_RESULT = "tournament.result"
    TOURNAMENT_DISPUTE = "tournament.dispute"
    TOURNAMENT_COMPLETED = "tournament.completed"

    @property
    def is_tournament_event(self) -> bool:
        return self.value.startswith("tournament.")


@dataclass
class Event:
    """A committed local mutation, queued for the backing store and observers."""

    type: EventType
    aggregate_id: str
    actor_id: Optional[str] = None
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = format_timestamp(utcnow())
        if self.data is None:
            self.data = {}

    @property
    def channel(self) -> str:
        prefix = "tournament" if self.type.is_tournament_event else "match"
        return f"{prefix}:{self.aggregate_id}:events"

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "aggregate_id": self.aggregate_id,
            "actor_id": self.actor_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        return cls(
            type=EventType(data["type"]),
            aggregate_id=data["aggregate_id"],
            actor_id=data.get("actor_id"),
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def rsvp_updated_event(match_id: str, actor_id: str, participant: dict,
                       promoted: Optional[dict] = None) -> Event:
    return Event(
        type=EventType.RSVP_UPDATED,
        aggregate_id=match_id,
        actor_id=actor_id,
        data={
            "participant": participant,
            "promoted": promoted
        }
    )


def match_completed_event(match_id: str, actor_id: str, home_score: int, away_score: int,
                          is_rating_game: bool) -> Event:
    return Event(
        type=EventType.MATCH_COMPLETED,
        aggregate_id=match_id,
        actor_id=actor_id,
        data={
            "home_score": home_score,
            "away_score": away_score,
            "apply_rating": is_rating_game
        }
    )


def tournament_result_event(tournament_id: str, actor_id: str, match_id: str,
                            home_score: int, away_score: int, reason: str = None) -> Event:
    return Event(
        type=EventType.TOURNAMENT_RESULT,
        aggregate_id=tournament_id,
        actor_id=actor_id,
        data={
            "match_id": match_id,
            "home_score": home_score,
            "away_score": away_score,
            "reason": reason
        }
    )
