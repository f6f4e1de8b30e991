"""
Best-effort push to, and pull from, the remote backing store.

The store speaks PostgREST: table paths under /rest/v1 and stored
procedures under /rest/v1/rpc. Every method raises RemoteSyncError on
failure; the outbox turns that into a SyncWarning.
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import requests

from matchday.errors import RemoteSyncError
from matchday.events import Event, EventType
from matchday.models import MatchStatus, TournamentMatchStatus
from matchday.snapshot import SCHEMA_VERSION, MatchSnapshot

logger = logging.getLogger(__name__)

MATCH_COLUMNS = (
    "id,owner_id,organiser_ids,location_name,start_at,format,notes,max_players,"
    "is_rating_game,has_court_booked,status,final_home_score,final_away_score,is_deleted"
)
PARTICIPANT_COLUMNS = "user_id,name,match_team_id,elo,position_group,rsvp_status,invited_at,waitlisted_at"
EVENT_COLUMNS = "id,type,minute,player_id,created_by_id,created_at"


class RemoteSync(ABC):

    @abstractmethod
    def push(self, event: Event):
        """Send one committed mutation to the backing store."""

    @abstractmethod
    def pull(self, match_id: str) -> Optional[MatchSnapshot]:
        """Fetch the remote copy of a match, or None if it is missing or deleted."""


class LocalRemoteSync(RemoteSync):
    """Development stand-in: logs pushes and never has a remote copy."""

    def __init__(self):
        self.pushed: List[Event] = []

    def push(self, event: Event):
        self.pushed.append(event)
        logger.info(f"Local mode: {event.type.value} for {event.aggregate_id} not sent to a backend")

    def pull(self, match_id: str) -> Optional[MatchSnapshot]:
        return None


class RestRemoteSync(RemoteSync):

    def __init__(
        self,
        base_url: str,
        api_key: str = '',
        timeout: float = 10,
        session: requests.Session = None
    ):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    # -- transport ---------------------------------------------------------

    def _headers(self, extra: dict = None) -> dict:
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['apikey'] = self.api_key
            headers['Authorization'] = f"Bearer {self.api_key}"
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method: str, path: str, body=None, extra_headers: dict = None):
        url = f"{self.base_url}/rest/v1/{path.lstrip('/')}"
        try:
            resp = self.session.request(
                method,
                url,
                json=body,
                headers=self._headers(extra_headers),
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise RemoteSyncError(f"Request to {path} failed: {e}") from e

        if not resp.ok:
            raise RemoteSyncError(f"Server error ({resp.status_code}): {resp.text}", status=resp.status_code)

        if not resp.content:
            return None
        return resp.json()

    def _rpc(self, function: str, body: dict):
        return self._request('POST', f"rpc/{function}", body)

    def _patch(self, path: str, body: dict):
        return self._request('PATCH', path, body, {'Prefer': 'return=representation'})

    def _upsert(self, table: str, conflict_columns: str, rows: list):
        return self._request(
            'POST',
            f"{table}?on_conflict={conflict_columns}",
            rows,
            {'Prefer': 'resolution=merge-duplicates,return=minimal'}
        )

    # -- push --------------------------------------------------------------

    def push(self, event: Event):
        handler = self._handlers().get(event.type)
        if handler is None:
            logger.warning(f"No remote handler for {event.type.value}; skipping")
            return
        handler(event)

    def _handlers(self) -> dict:
        return {
            EventType.RSVP_UPDATED: self._push_participants,
            EventType.PARTICIPANT_INVITED: self._push_participants,
            EventType.PARTICIPANT_WAITLISTED: self._push_participants,
            EventType.PARTICIPANT_MOVED: self._push_participants,
            EventType.PARTICIPANT_REMOVED: self._push_removal,
            EventType.EVENT_ADDED: self._push_match_event,
            EventType.DETAILS_UPDATED: self._push_match_fields,
            EventType.MATCH_RESCHEDULED: self._push_match_fields,
            EventType.MATCH_CANCELLED: self._push_cancel,
            EventType.MATCH_COMPLETED: self._push_completion,
            EventType.TOURNAMENT_UPDATED: self._push_tournament_fields,
            EventType.TOURNAMENT_PUBLISHED: self._push_tournament_fields,
            EventType.TOURNAMENT_COMPLETED: self._push_tournament_fields,
            EventType.TOURNAMENT_TEAM_ADDED: self._push_team,
            EventType.TOURNAMENT_TEAM_REMOVED: self._push_team_removal,
            EventType.TOURNAMENT_MATCH_SCHEDULED: self._push_fixture,
            EventType.TOURNAMENT_RESULT: self._push_result,
            EventType.TOURNAMENT_DISPUTE: self._push_dispute,
        }

    @staticmethod
    def _participant_row(match_id: str, participant: dict) -> dict:
        return {
            'match_id': match_id,
            'user_id': participant['id'],
            'name': participant['name'],
            'match_team_id': participant.get('team_id'),
            'elo': participant['elo'],
            'position_group': participant['position_group'],
            'rsvp_status': participant['rsvp_status'],
            'invited_at': participant.get('invited_at'),
            'waitlisted_at': participant.get('waitlisted_at'),
        }

    def _push_participants(self, event: Event):
        rows = [self._participant_row(event.aggregate_id, event.data['participant'])]
        promoted = event.data.get('promoted')
        if promoted:
            rows.append(self._participant_row(event.aggregate_id, promoted))
        self._upsert('match_participants', 'match_id,user_id', rows)

    def _push_removal(self, event: Event):
        self._request(
            'DELETE',
            f"match_participants?match_id=eq.{event.aggregate_id}&user_id=eq.{event.data['participant_id']}"
        )

    def _push_match_event(self, event: Event):
        row = dict(event.data['event'])
        row['match_id'] = event.aggregate_id
        self._request('POST', 'match_events', row)

    def _push_match_fields(self, event: Event):
        fields = {
            'start_at': event.data.get('start_time'),
            'location_name': event.data.get('location'),
            'format': event.data.get('format'),
            'max_players': event.data.get('max_players'),
            'notes': event.data.get('notes'),
        }
        body = {k: v for k, v in fields.items() if v is not None}
        self._patch(f"matches?id=eq.{event.aggregate_id}", body)

    def _push_cancel(self, event: Event):
        self._patch(f"matches?id=eq.{event.aggregate_id}", {'status': MatchStatus.CANCELLED.value})

    def _push_completion(self, event: Event):
        """
        Complete the match remotely and let the server apply ratings.

        Falls back to the score-only procedure, then to a plain status
        patch. Reaching the patch still raises, because stats and ratings
        were not updated.
        """
        match_id = event.aggregate_id
        home = event.data['home_score']
        away = event.data['away_score']
        body = {'p_match_id': match_id, 'p_home_score': home, 'p_away_score': away}

        if event.data.get('apply_rating', True):
            try:
                self._rpc('complete_match_and_apply_elo', body)
                return
            except RemoteSyncError as e:
                logger.warning(f"complete_match_and_apply_elo failed for {match_id}, trying score-only: {e}")

        try:
            self._rpc('complete_or_update_match_score', body)
            return
        except RemoteSyncError as e:
            logger.warning(f"complete_or_update_match_score failed for {match_id}, patching status: {e}")

        self._patch(f"matches?id=eq.{match_id}", {
            'status': MatchStatus.COMPLETED.value,
            'final_home_score': home,
            'final_away_score': away,
        })
        raise RemoteSyncError("Match completed without stats update.", status=500)

    def _push_tournament_fields(self, event: Event):
        self._patch(f"tournaments?id=eq.{event.aggregate_id}", event.data['tournament'])

    def _push_team(self, event: Event):
        team = event.data['team']
        self._request('POST', 'tournament_teams', {
            'id': team['id'],
            'tournament_id': event.aggregate_id,
            'name': team['name'],
            'max_players': team['max_players'],
        })

    def _push_team_removal(self, event: Event):
        self._request('DELETE', f"tournament_teams?id=eq.{event.data['team_id']}")

    def _push_fixture(self, event: Event):
        row = dict(event.data['match'])
        row['tournament_id'] = event.aggregate_id
        self._request('POST', 'tournament_matches', row)

    def _push_result(self, event: Event):
        match_id = event.data['match_id']
        body = {
            'home_score': event.data['home_score'],
            'away_score': event.data['away_score'],
            'status': TournamentMatchStatus.COMPLETED.value,
            'is_completed': True,
        }
        try:
            self._patch(f"tournament_matches?id=eq.{match_id}", body)
        except RemoteSyncError as e:
            # Older schemas have no status column.
            logger.info(f"Retrying result for {match_id} without status column: {e}")
            retry = {k: v for k, v in body.items() if k != 'status'}
            self._patch(f"tournament_matches?id=eq.{match_id}", retry)

    def _push_dispute(self, event: Event):
        self._patch(
            f"tournaments?id=eq.{event.aggregate_id}",
            {'dispute_status': event.data['dispute_status']}
        )

    # -- pull --------------------------------------------------------------

    def pull(self, match_id: str) -> Optional[MatchSnapshot]:
        rows = self._request('GET', f"matches?select={MATCH_COLUMNS}&id=eq.{match_id}&limit=1") or []
        if not rows or rows[0].get('is_deleted'):
            return None
        row = rows[0]

        participant_rows = self._request(
            'GET', f"match_participants?select={PARTICIPANT_COLUMNS}&match_id=eq.{match_id}"
        ) or []
        event_rows = self._request(
            'GET', f"match_events?select={EVENT_COLUMNS}&match_id=eq.{match_id}&order=minute.asc"
        ) or []

        return MatchSnapshot.from_dict({
            'schema_version': SCHEMA_VERSION,
            'participants': [
                {
                    'id': p['user_id'],
                    'name': p['name'],
                    'team_id': p.get('match_team_id'),
                    'elo': p['elo'],
                    'position_group': p.get('position_group'),
                    'rsvp_status': p.get('rsvp_status'),
                    'invited_at': p.get('invited_at'),
                    'waitlisted_at': p.get('waitlisted_at'),
                }
                for p in participant_rows
            ],
            'events': event_rows,
            'location': row.get('location_name'),
            'start_time': row.get('start_at'),
            'format': row.get('format'),
            'notes': row.get('notes'),
            'max_players': row.get('max_players'),
            'status': row.get('status'),
            'final_home_score': row.get('final_home_score'),
            'final_away_score': row.get('final_away_score'),
            'is_deleted': False,
        })
