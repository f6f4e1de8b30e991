"""
Access predicates.

Every function is pure and total: a missing actor (no session) is always
denied. Suspension is resolved upstream by the actor resolver, so a
suspended account never reaches these checks as an actor.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from .models import GlobalRole, Match, Tournament, User


@dataclass
class CoachSessionTarget:
    owner_id: str
    organiser_ids: List[str] = field(default_factory=list)


def has_admin_or_organiser_access(
    actor: Optional[User],
    owner_id: str,
    organiser_ids: Iterable[str]
) -> bool:
    if actor is None:
        return False
    if actor.is_admin:
        return True
    return actor.id == owner_id or actor.id in set(organiser_ids)


def _is_member(actor: Optional[User]) -> bool:
    return actor is not None and actor.role in (GlobalRole.PLAYER, GlobalRole.ADMIN)


# Matches

def can_create_match(actor: Optional[User]) -> bool:
    return _is_member(actor)


def can_edit_match(actor: Optional[User], match: Match) -> bool:
    return has_admin_or_organiser_access(actor, match.owner_id, match.organiser_ids)


def can_invite_to_match(actor: Optional[User], match: Match) -> bool:
    return has_admin_or_organiser_access(actor, match.owner_id, match.organiser_ids)


def can_enter_match_result(actor: Optional[User], match: Match) -> bool:
    return has_admin_or_organiser_access(actor, match.owner_id, match.organiser_ids)


# Tournaments

def can_create_tournament(actor: Optional[User]) -> bool:
    return _is_member(actor)


def can_edit_tournament(actor: Optional[User], tournament: Tournament) -> bool:
    return has_admin_or_organiser_access(actor, tournament.owner_id, tournament.organiser_ids)


def can_manage_tournament_teams(actor: Optional[User], tournament: Tournament) -> bool:
    return has_admin_or_organiser_access(actor, tournament.owner_id, tournament.organiser_ids)


def can_create_tournament_match(actor: Optional[User], tournament: Tournament) -> bool:
    return has_admin_or_organiser_access(actor, tournament.owner_id, tournament.organiser_ids)


def can_enter_tournament_result(actor: Optional[User], tournament: Tournament) -> bool:
    return has_admin_or_organiser_access(actor, tournament.owner_id, tournament.organiser_ids)


# Coaching (gated on an active coach subscription)

def can_create_coach_session(actor: Optional[User], now: datetime = None) -> bool:
    if actor is None:
        return False
    return actor.is_admin or actor.is_coach_active(now)


def can_edit_coach_session(
    actor: Optional[User],
    target: CoachSessionTarget,
    now: datetime = None
) -> bool:
    if actor is None:
        return False
    if actor.is_admin:
        return True
    if not actor.is_coach_active(now):
        return False
    return has_admin_or_organiser_access(actor, target.owner_id, target.organiser_ids)


def can_search_players_as_coach(actor: Optional[User], now: datetime = None) -> bool:
    if actor is None:
        return False
    return actor.is_admin or actor.is_coach_active(now)


# Administration

def can_manage_users_as_admin(actor: Optional[User]) -> bool:
    return actor is not None and actor.is_admin
