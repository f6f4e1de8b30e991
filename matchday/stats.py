from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .models import MatchEvent, MatchEventType, Participant


@dataclass
class PlayerMatchStats:
    goals: int = 0
    assists: int = 0
    yellow_cards: int = 0
    red_cards: int = 0
    saves: int = 0

    def to_dict(self) -> dict:
        return {
            'goals': self.goals,
            'assists': self.assists,
            'yellow_cards': self.yellow_cards,
            'red_cards': self.red_cards,
            'saves': self.saves,
        }


@dataclass
class MatchSummaryRow:
    participant: Participant
    stats: PlayerMatchStats = field(default_factory=PlayerMatchStats)

    @property
    def id(self) -> str:
        return self.participant.id

    def to_dict(self) -> dict:
        row = {'participant_id': self.participant.id, 'name': self.participant.name}
        row.update(self.stats.to_dict())
        return row


_COUNTERS = {
    MatchEventType.GOAL: 'goals',
    MatchEventType.ASSIST: 'assists',
    MatchEventType.YELLOW: 'yellow_cards',
    MatchEventType.RED: 'red_cards',
    MatchEventType.SAVE: 'saves',
}


def aggregate(
    participants: Iterable[Participant],
    events: Iterable[MatchEvent]
) -> Dict[str, PlayerMatchStats]:
    """
    Per-player counters folded from the event log.

    Every participant gets a record, scoring or not. Events for players
    not on the roster are skipped.
    """
    stats_by_player = {p.id: PlayerMatchStats() for p in participants}

    for event in events:
        stats = stats_by_player.get(event.player_id)
        if stats is None:
            continue
        counter = _COUNTERS[event.type]
        setattr(stats, counter, getattr(stats, counter) + 1)

    return stats_by_player


def summary_rows(
    participants: Iterable[Participant],
    events: Iterable[MatchEvent]
) -> List[MatchSummaryRow]:
    """Goals desc, then assists desc, then name (ordinal) asc."""
    participants = list(participants)
    stats_by_player = aggregate(participants, events)

    rows = [
        MatchSummaryRow(participant=p, stats=stats_by_player.get(p.id, PlayerMatchStats()))
        for p in participants
    ]
    rows.sort(key=lambda r: (-r.stats.goals, -r.stats.assists, r.participant.name))
    return rows
