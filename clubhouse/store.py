"""
Local, authoritative persistence for match and tournament state.

Saves are synchronous. A payload that fails to decode on load raises
SnapshotDecodeError; it is never replaced by an empty snapshot.
"""
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

from matchday.errors import SnapshotDecodeError
from matchday.models import Tournament
from matchday.snapshot import (
    SCHEMA_VERSION, MatchSnapshot, tournament_from_dict, tournament_to_dict,
)

from .models import db, MatchStateRecord, TournamentRecord

logger = logging.getLogger(__name__)


class PersistenceStore(ABC):

    @abstractmethod
    def load(self, match_id: str) -> Optional[MatchSnapshot]:
        pass

    @abstractmethod
    def save(self, match_id: str, snapshot: MatchSnapshot):
        pass

    @abstractmethod
    def delete(self, match_id: str):
        pass


class InMemoryMatchStore(PersistenceStore):
    """Keeps encoded payloads, so loads go through the same decoder as the database store."""

    def __init__(self):
        self._payloads: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, match_id: str) -> Optional[MatchSnapshot]:
        with self._lock:
            payload = self._payloads.get(match_id)
        if payload is None:
            return None
        return MatchSnapshot.from_dict(json.loads(payload))

    def save(self, match_id: str, snapshot: MatchSnapshot):
        payload = json.dumps(snapshot.to_dict())
        with self._lock:
            self._payloads[match_id] = payload

    def delete(self, match_id: str):
        with self._lock:
            self._payloads.pop(match_id, None)

    def put_raw(self, match_id: str, data: dict):
        """Store an already-encoded payload as-is (used for imports)."""
        with self._lock:
            self._payloads[match_id] = json.dumps(data)


class SqlAlchemyMatchStore(PersistenceStore):
    """MatchStateRecord-backed store. Needs an application context."""

    def load(self, match_id: str) -> Optional[MatchSnapshot]:
        record = db.session.get(MatchStateRecord, match_id)
        if record is None:
            return None
        try:
            data = record.data
        except json.JSONDecodeError as e:
            raise SnapshotDecodeError(f"Stored snapshot for match {match_id} is not valid JSON") from e
        return MatchSnapshot.from_dict(data)

    def save(self, match_id: str, snapshot: MatchSnapshot):
        record = db.session.get(MatchStateRecord, match_id)
        if record is None:
            record = MatchStateRecord(match_id=match_id)
            db.session.add(record)

        record.schema_version = SCHEMA_VERSION
        record.payload = json.dumps(snapshot.to_dict())
        db.session.commit()
        logger.debug(f"Saved snapshot for match {match_id}")

    def delete(self, match_id: str):
        record = db.session.get(MatchStateRecord, match_id)
        if record is not None:
            db.session.delete(record)
            db.session.commit()


class TournamentStore(ABC):

    @abstractmethod
    def load(self, tournament_id: str) -> Optional[Tournament]:
        pass

    @abstractmethod
    def save(self, tournament: Tournament):
        pass


class InMemoryTournamentStore(TournamentStore):

    def __init__(self):
        self._payloads: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def load(self, tournament_id: str) -> Optional[Tournament]:
        with self._lock:
            payload = self._payloads.get(tournament_id)
        if payload is None:
            return None
        return tournament_from_dict(payload)

    def save(self, tournament: Tournament):
        payload = tournament_to_dict(tournament)
        with self._lock:
            self._payloads[tournament.id] = payload


class SqlAlchemyTournamentStore(TournamentStore):

    def load(self, tournament_id: str) -> Optional[Tournament]:
        record = db.session.get(TournamentRecord, tournament_id)
        if record is None:
            return None
        return record.to_tournament()

    def save(self, tournament: Tournament):
        record = db.session.get(TournamentRecord, tournament.id)
        if record is None:
            record = TournamentRecord(id=tournament.id)
            db.session.add(record)
        record.update_from(tournament)
        db.session.commit()
