import logging
import threading
from typing import Callable, Dict, Optional

from matchday.models import Match, Tournament

from .coordinator import MatchLifecycleCoordinator
from .tournaments import TournamentCoordinator

logger = logging.getLogger(__name__)


class MatchRegistry:
    """
    Holds at most one coordinator per match id and per tournament id.

    Callers always go through the registry, so all mutations of one match
    are serialized by that coordinator's lock. Coordinators are built
    lazily: the header comes from `match_loader`, the roster state from
    the persistence store.
    """

    def __init__(
        self,
        actors,
        store,
        tournament_store,
        outbox,
        reminders,
        remote=None,
        match_loader: Callable[[str], Optional[Match]] = None,
        k_factor: int = 24
    ):
        self.actors = actors
        self.store = store
        self.tournament_store = tournament_store
        self.outbox = outbox
        self.reminders = reminders
        self.remote = remote
        self.match_loader = match_loader
        self.k_factor = k_factor
        self._matches: Dict[str, MatchLifecycleCoordinator] = {}
        self._tournaments: Dict[str, TournamentCoordinator] = {}
        self._lock = threading.Lock()

    def _build_match(self, match: Match) -> MatchLifecycleCoordinator:
        return MatchLifecycleCoordinator(
            match,
            actors=self.actors,
            store=self.store,
            outbox=self.outbox,
            reminders=self.reminders,
            remote=self.remote,
            k_factor=self.k_factor
        )

    def register_match(self, match: Match) -> MatchLifecycleCoordinator:
        """Add a newly created match and save its first snapshot."""
        with self._lock:
            if match.id in self._matches:
                return self._matches[match.id]
            coordinator = self._build_match(match)
            self._matches[match.id] = coordinator
        self.store.save(match.id, coordinator.snapshot())
        logger.info(f"Registered match {match.id}")
        return coordinator

    def get_match(self, match_id: str) -> Optional[MatchLifecycleCoordinator]:
        with self._lock:
            coordinator = self._matches.get(match_id)
            if coordinator is not None:
                return coordinator

            match = self.match_loader(match_id) if self.match_loader else None
            if match is None:
                return None

            coordinator = self._build_match(match)
            coordinator.load_persisted()
            self._matches[match_id] = coordinator
            return coordinator

    def register_tournament(self, tournament: Tournament) -> TournamentCoordinator:
        with self._lock:
            if tournament.id in self._tournaments:
                return self._tournaments[tournament.id]
            coordinator = TournamentCoordinator(
                tournament,
                actors=self.actors,
                store=self.tournament_store,
                outbox=self.outbox
            )
            self._tournaments[tournament.id] = coordinator
        self.tournament_store.save(tournament)
        logger.info(f"Registered tournament {tournament.id}")
        return coordinator

    def get_tournament(self, tournament_id: str) -> Optional[TournamentCoordinator]:
        with self._lock:
            coordinator = self._tournaments.get(tournament_id)
            if coordinator is not None:
                return coordinator

            tournament = self.tournament_store.load(tournament_id)
            if tournament is None:
                return None

            coordinator = TournamentCoordinator(
                tournament,
                actors=self.actors,
                store=self.tournament_store,
                outbox=self.outbox
            )
            self._tournaments[tournament_id] = coordinator
            return coordinator

    def evict(self, aggregate_id: str):
        """Drop a cached coordinator so the next lookup reloads it."""
        with self._lock:
            self._matches.pop(aggregate_id, None)
            self._tournaments.pop(aggregate_id, None)

    @property
    def loaded_match_ids(self):
        with self._lock:
            return list(self._matches)
