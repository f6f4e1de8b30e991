from dataclasses import dataclass
from typing import Dict, List

from .models import Tournament

POINTS_FOR_WIN = 3
POINTS_FOR_DRAW = 1


@dataclass
class StandingRow:
    team_id: str
    team_name: str
    played: int = 0
    won: int = 0
    drawn: int = 0
    lost: int = 0
    goals_for: int = 0
    goals_against: int = 0
    rank: int = 0

    @property
    def goal_difference(self) -> int:
        return self.goals_for - self.goals_against

    @property
    def points(self) -> int:
        return self.won * POINTS_FOR_WIN + self.drawn * POINTS_FOR_DRAW

    def to_dict(self) -> dict:
        return {
            'rank': self.rank,
            'team_id': self.team_id,
            'team_name': self.team_name,
            'played': self.played,
            'won': self.won,
            'drawn': self.drawn,
            'lost': self.lost,
            'goals_for': self.goals_for,
            'goals_against': self.goals_against,
            'goal_difference': self.goal_difference,
            'points': self.points,
        }


def standings(tournament: Tournament) -> List[StandingRow]:
    """
    League table for a tournament.

    Only completed fixtures with both scores count. Fixtures that reference
    a team no longer registered are skipped. Every registered team gets a
    row, played or not.
    """
    rows: Dict[str, StandingRow] = {
        team.id: StandingRow(team_id=team.id, team_name=team.name)
        for team in tournament.teams
    }

    for match in tournament.matches:
        if not match.is_completed:
            continue
        if match.home_score is None or match.away_score is None:
            continue
        home = rows.get(match.home_team_id)
        away = rows.get(match.away_team_id)
        if home is None or away is None:
            continue

        home.played += 1
        away.played += 1
        home.goals_for += match.home_score
        home.goals_against += match.away_score
        away.goals_for += match.away_score
        away.goals_against += match.home_score

        if match.home_score > match.away_score:
            home.won += 1
            away.lost += 1
        elif match.home_score < match.away_score:
            away.won += 1
            home.lost += 1
        else:
            home.drawn += 1
            away.drawn += 1

    table = sorted(
        rows.values(),
        key=lambda r: (-r.points, -r.goal_difference, -r.goals_for, r.team_name)
    )
    for i, row in enumerate(table):
        row.rank = i + 1
    return table
