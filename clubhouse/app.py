import logging
import os

import redis
from flask import Flask, jsonify, request

from matchday import access_policy
from matchday.errors import (
    AuthorizationError, RemoteSyncError, SnapshotDecodeError, StateError, ValidationError,
)
from matchday.models import (
    Match, Team, Tournament, TournamentStatus, new_id, parse_timestamp,
)
from matchday.results import ActionResult, Rejection

from .actors import RequestActorResolver
from .config import config
from .models import db, MatchRecord, TournamentRecord
from .outbox import SyncOutbox
from .publisher import EventPublisher, NullPublisher
from .registry import MatchRegistry
from .reminders import NullReminderScheduler, RedisReminderScheduler
from .remote_sync import LocalRemoteSync, RestRemoteSync
from .store import SqlAlchemyMatchStore, SqlAlchemyTournamentStore

logger = logging.getLogger(__name__)

REJECTION_STATUS = {
    Rejection.NOT_SIGNED_IN: 403,
    Rejection.PERMISSION_DENIED: 403,
    Rejection.NOT_FOUND: 404,
    Rejection.MATCH_LOCKED: 409,
    Rejection.DUPLICATE: 409,
    Rejection.TOURNAMENT_FULL: 409,
    Rejection.INVALID_INPUT: 400,
}


def _load_match_header(match_id: str):
    record = db.session.get(MatchRecord, match_id)
    return record.to_match() if record else None


def create_app(
    config_name: str = None,
    remote=None,
    redis_client=None,
    create_tables: bool = None
) -> Flask:
    """
    Application factory for the clubhouse API.

    Tables are created on start unless `create_tables` (or the
    CREATE_TABLES_ON_START setting) turns it off.
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    db.init_app(app)
    if create_tables is None:
        create_tables = app.config['CREATE_TABLES_ON_START']
    if create_tables:
        with app.app_context():
            db.create_all()

    if redis_client is None and app.config['USE_REDIS']:
        redis_client = redis.from_url(
            app.config['REDIS_URL'],
            decode_responses=True,
            socket_connect_timeout=5
        )

    lead_minutes = app.config['REMINDER_LEAD_MINUTES']
    if redis_client is not None:
        publisher = EventPublisher(redis_client=redis_client)
        reminders = RedisReminderScheduler(redis_client, lead_minutes=lead_minutes)
    else:
        publisher = NullPublisher()
        reminders = NullReminderScheduler(lead_minutes=lead_minutes)

    if remote is None:
        if app.config['REMOTE_SYNC_URL']:
            remote = RestRemoteSync(
                app.config['REMOTE_SYNC_URL'],
                api_key=app.config['REMOTE_SYNC_API_KEY'],
                timeout=app.config['REMOTE_SYNC_TIMEOUT']
            )
        else:
            remote = LocalRemoteSync()

    outbox = SyncOutbox(remote, inline=app.config['SYNC_INLINE'], publisher=publisher)
    outbox.add_warning_listener(
        lambda warning: logger.warning(f"{warning.object_id}: {warning.message}")
    )

    actors = RequestActorResolver()
    app.actors = actors
    app.outbox = outbox
    app.reminders = reminders
    app.registry = MatchRegistry(
        actors=actors,
        store=SqlAlchemyMatchStore(),
        tournament_store=SqlAlchemyTournamentStore(),
        outbox=outbox,
        reminders=reminders,
        remote=remote,
        match_loader=_load_match_header,
        k_factor=app.config['RATING_K_FACTOR']
    )

    register_error_handlers(app)
    register_api_routes(app)

    return app


def register_error_handlers(app: Flask):

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({'error': str(e)}), 400

    @app.errorhandler(AuthorizationError)
    def handle_authorization_error(e):
        return jsonify({'error': str(e)}), 403

    @app.errorhandler(StateError)
    def handle_state_error(e):
        return jsonify({'error': str(e)}), 409

    @app.errorhandler(RemoteSyncError)
    def handle_remote_error(e):
        return jsonify({'error': str(e)}), 502

    @app.errorhandler(SnapshotDecodeError)
    def handle_decode_error(e):
        logger.error(f"Corrupt snapshot: {e}")
        return jsonify({'error': 'Stored match state could not be read'}), 500


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _require(data: dict, key: str):
    value = data.get(key)
    if value is None or value == '':
        raise ValidationError(f"{key} is required")
    return value


def _timestamp(data: dict, key: str):
    try:
        return parse_timestamp(_require(data, key))
    except (AttributeError, TypeError, ValueError) as e:
        raise ValidationError(f"{key} must be an ISO-8601 timestamp") from e


def _integer(data: dict, key: str, default: int = None) -> int:
    value = data.get(key, default)
    if value is None:
        raise ValidationError(f"{key} is required")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{key} must be an integer") from e


def _number(data: dict, key: str, default: float = None) -> float:
    value = data.get(key, default)
    if value is None:
        raise ValidationError(f"{key} is required")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{key} must be a number") from e


def _respond(result: ActionResult, payload: dict = None, status: int = 200):
    body = result.to_dict()
    if not result.ok:
        body['error'] = result.message
        return jsonify(body), REJECTION_STATUS.get(result.rejection, 400)
    if payload is not None:
        body.update(payload)
    return jsonify(body), status


def _match_payload(coordinator) -> dict:
    match = coordinator.match
    home, away = coordinator.scoreline()
    payload = coordinator.snapshot().to_dict()
    payload.update({
        'id': match.id,
        'title': match.title,
        'owner_id': match.owner_id,
        'organiser_ids': match.organiser_ids,
        'home_team': match.home_team.to_dict(),
        'away_team': match.away_team.to_dict(),
        'is_rating_game': match.is_rating_game,
        'is_field_booked': match.is_field_booked,
        'is_private': match.is_private,
        'going_count': match.going_count,
        'waitlist_count': match.waitlist_count,
        'spots_left': match.spots_left,
        'scoreline': {'home': home, 'away': away},
        'capabilities': coordinator.capabilities(),
    })
    return payload


def register_api_routes(app: Flask):
    """Register API routes."""

    def get_match_or_404(match_id: str):
        coordinator = app.registry.get_match(match_id)
        if coordinator is None:
            return None, (jsonify({'error': 'Match not found'}), 404)
        return coordinator, None

    def get_tournament_or_404(tournament_id: str):
        coordinator = app.registry.get_tournament(tournament_id)
        if coordinator is None:
            return None, (jsonify({'error': 'Tournament not found'}), 404)
        return coordinator, None

    @app.route('/api/v1/health', methods=['GET'])
    def api_health():
        return jsonify({
            'status': 'ok',
            'loaded_matches': len(app.registry.loaded_match_ids),
        })

    # ===== Matches =====

    @app.route('/api/v1/matches', methods=['POST'])
    def api_create_match():
        actor = app.actors.current_actor()
        if not access_policy.can_create_match(actor):
            return jsonify({'error': "You don't have permission to do that."}), 403

        data = _body()
        match = Match(
            id=new_id(),
            home_team=Team(id=new_id(), name=(data.get('home_team_name') or 'Home').strip()),
            away_team=Team(id=new_id(), name=(data.get('away_team_name') or 'Away').strip()),
            participants=[],
            events=[],
            location=(data.get('location') or '').strip(),
            start_time=_timestamp(data, 'start_time'),
            owner_id=actor.id,
            max_players=max(_integer(data, 'max_players', 10), 1),
            format=(data.get('format') or '5v5').strip(),
            notes=(data.get('notes') or '').strip(),
            is_rating_game=bool(data.get('is_rating_game', True)),
            is_field_booked=bool(data.get('is_field_booked', False)),
            is_private=bool(data.get('is_private', False)),
            organiser_ids=data.get('organiser_ids') or [],
        )
        db.session.add(MatchRecord.from_match(match))
        db.session.commit()

        coordinator = app.registry.register_match(match)
        return jsonify(_match_payload(coordinator)), 201

    @app.route('/api/v1/matches/<match_id>', methods=['GET'])
    def api_get_match(match_id: str):
        coordinator, error = get_match_or_404(match_id)
        if error:
            return error
        return jsonify(_match_payload(coordinator))

    @app.route('/api/v1/matches/<match_id>', methods=['PATCH'])
    def api_update_match(match_id: str):
        coordinator, error = get_match_or_404(match_id)
        if error:
            return error
        data = _body()
        match = coordinator.match
        start_time = _timestamp(data, 'start_time') if 'start_time' in data else match.start_time
        result = coordinator.update_details(
            start_time=start_time,
            location=data.get('location', match.location),
            format=data.get('format', match.format),
            max_players=_integer(data, 'max_players', match.max_players),
            notes=data.get('notes', match.notes)
        )
        return _respond(result, {'match': _match_payload(coordinator)})

    @app.route('/api/v1/matches/<match_id>/rsvp', methods=['POST'])
    def api_set_rsvp(match_id: str):
        coordinator, error = get_match_or_404(match_id)
        if error:
            return error
        data = _body()
        user_id = data.get('user_id') or request.headers.get('X-Actor-Id')
        result = coordinator.set_rsvp(user_id, _require(data, 'status'))
        return _respond(result, {'match': _match_payload(coordinator)})

    @app.route('/api/v1/matches/<match_id>/participants', methods=['POST'])
    def api_invite_participant(match_id: str):
        coordinator, error = get_match_or_404(match_id)
        if error:
            return error
        data = _body()
        result = coordinator.invite_participant(
            data.get('name', ''),
            _integer(data, 'rating', 1500),
            to_home_team=bool(data.get('to_home_team', True))
        )
        return _respond(result, {'match': _match_payload(coordinator)}, status=201)

    @app.route('/api/v1/matches/<match_id>/participants/<participant_id>', methods=['DELETE'])
    def api_remove_participant(match_id: str, participant_id: str):
        coordinator, error = get_match_or_404(match_id)
        if error:
            return error
        result = coordinator.remove_participant(participant_id)
        return _respond(result, {'match': _match_payload(coordinator)})

    @app.route('/api/v1/matches/<match_id>/participants/<participant_id>/waitlist', methods=['POST'])
    def api_move_to_waitlist(match_id: str, participant_id: str):
        coordinator, error = get_match_or_404(match_id)
        if error:
            return error
        result = coordinator.move_to_waitlist(participant_id)
        return _respond(result, {'match': _match_payload(coordinator)})

    @app.route('/api/v1/matches/<match_id>/participants/<participant_id>', methods=['PATCH'])
    def api_update_participant(match_id: str, participant_id: str):
        coordinator, error = get_match_or_404(match_id)
        if error:
            return error
        data = _body()
        if 'team_id' not in data and 'position_group' not in data:
            raise ValidationError("team_id or position_group is required")

        result = None
        if 'team_id' in data:
            result = coordinator.move_participant_to_team(participant_id, data['team_id'])
        if 'position_group' in data and (result is None or result.ok):
            result = coordinator.update_participant_position(participant_id, data['position_group'])
        return _respond(result, {'match': _match_payload(coordinator)})

    @app.route('/api/v1/matches/<match_id>/events', methods=['POST'])
    def api_add_event(match_id: str):
        coordinator, error = get_match_or_404(match_id)
        if error:
            return error
        data = _body()
        result = coordinator.add_event(
            _require(data, 'type'),
            _integer(data, 'minute'),
            _require(data, 'player_id')
        )
        return _respond(result, {'match': _match_payload(coordinator)}, status=201)

    @app.route('/api/v1/matches/<match_id>/reschedule', methods=['POST'])
    def api_reschedule(match_id: str):
        coordinator, error = get_match_or_404(match_id)
        if error:
            return error
        result = coordinator.reschedule(_timestamp(_body(), 'start_time'))
        return _respond(result, {'match': _match_payload(coordinator)})

    @app.route('/api/v1/matches/<match_id>/cancel', methods=['POST'])
    def api_cancel_match(match_id: str):
        coordinator, error = get_match_or_404(match_id)
        if error:
            return error
        result = coordinator.cancel()
        return _respond(result, {'match': _match_payload(coordinator)})

    @app.route('/api/v1/matches/<match_id>/complete', methods=['POST'])
    def api_complete_match(match_id: str):
        coordinator, error = get_match_or_404(match_id)
        if error:
            return error
        data = _body()
        result = coordinator.complete(_integer(data, 'home_score'), _integer(data, 'away_score'))
        return _respond(result, {'match': _match_payload(coordinator)})

    @app.route('/api/v1/matches/<match_id>/stats', methods=['GET'])
    def api_match_stats(match_id: str):
        coordinator, error = get_match_or_404(match_id)
        if error:
            return error
        home, away = coordinator.scoreline()
        return jsonify({
            'match_id': match_id,
            'scoreline': {'home': home, 'away': away},
            'rows': [row.to_dict() for row in coordinator.summary_rows()],
        })

    @app.route('/api/v1/matches/<match_id>/reconcile', methods=['POST'])
    def api_reconcile_match(match_id: str):
        coordinator, error = get_match_or_404(match_id)
        if error:
            return error
        replaced = coordinator.reconcile_remote()
        return jsonify({'replaced': replaced, 'match': _match_payload(coordinator)})

    # ===== Tournaments =====

    @app.route('/api/v1/tournaments', methods=['GET'])
    def api_list_tournaments():
        query = TournamentRecord.query
        status = request.args.get('status')
        if status:
            query = query.filter_by(status=status)
        records = query.order_by(TournamentRecord.updated_at.desc()).all()
        return jsonify({
            'tournaments': [r.to_dict() for r in records],
            'count': len(records)
        })

    @app.route('/api/v1/tournaments', methods=['POST'])
    def api_create_tournament():
        actor = app.actors.current_actor()
        if not access_policy.can_create_tournament(actor):
            return jsonify({'error': "You don't have permission to do that."}), 403

        data = _body()
        title = (data.get('title') or '').strip()
        if not title:
            return jsonify({'error': 'Tournament title is required'}), 400

        status = TournamentStatus.DRAFT if data.get('draft') else TournamentStatus.PUBLISHED
        tournament = Tournament(
            id=new_id(),
            title=title,
            location=(data.get('location') or '').strip(),
            start_date=_timestamp(data, 'start_date'),
            end_date=parse_timestamp(data.get('end_date')),
            owner_id=actor.id,
            max_teams=max(_integer(data, 'max_teams', 8), 2),
            format=(data.get('format') or '5v5').strip(),
            organiser_ids=data.get('organiser_ids') or [],
            status=status,
            entry_fee=_number(data, 'entry_fee', 0.0),
        )
        coordinator = app.registry.register_tournament(tournament)
        return jsonify(coordinator.to_dict()), 201

    @app.route('/api/v1/tournaments/<tournament_id>', methods=['GET'])
    def api_get_tournament(tournament_id: str):
        coordinator, error = get_tournament_or_404(tournament_id)
        if error:
            return error
        return jsonify(coordinator.to_dict())

    @app.route('/api/v1/tournaments/<tournament_id>', methods=['PATCH'])
    def api_update_tournament(tournament_id: str):
        coordinator, error = get_tournament_or_404(tournament_id)
        if error:
            return error
        data = _body()
        t = coordinator.tournament
        result = coordinator.update_details(
            title=data.get('title', t.title),
            location=data.get('location', t.location),
            start_date=_timestamp(data, 'start_date') if 'start_date' in data else t.start_date,
            format=data.get('format', t.format),
            max_teams=_integer(data, 'max_teams', t.max_teams)
        )
        return _respond(result, {'tournament': coordinator.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/publish', methods=['POST'])
    def api_publish_tournament(tournament_id: str):
        coordinator, error = get_tournament_or_404(tournament_id)
        if error:
            return error
        return _respond(coordinator.publish(), {'tournament': coordinator.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/teams', methods=['POST'])
    def api_add_team(tournament_id: str):
        coordinator, error = get_tournament_or_404(tournament_id)
        if error:
            return error
        result = coordinator.add_team(_body().get('name', ''))
        return _respond(result, {'tournament': coordinator.to_dict()}, status=201)

    @app.route('/api/v1/tournaments/<tournament_id>/teams/<team_id>', methods=['DELETE'])
    def api_remove_team(tournament_id: str, team_id: str):
        coordinator, error = get_tournament_or_404(tournament_id)
        if error:
            return error
        return _respond(coordinator.remove_team(team_id), {'tournament': coordinator.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/matches', methods=['POST'])
    def api_create_fixture(tournament_id: str):
        coordinator, error = get_tournament_or_404(tournament_id)
        if error:
            return error
        data = _body()
        result = coordinator.create_match(
            _require(data, 'home_team_id'),
            _require(data, 'away_team_id'),
            _timestamp(data, 'start_time'),
            location_name=data.get('location_name'),
            matchday=_integer(data, 'matchday') if data.get('matchday') is not None else None
        )
        return _respond(result, {'tournament': coordinator.to_dict()}, status=201)

    @app.route('/api/v1/tournaments/<tournament_id>/matches/<match_id>/result', methods=['POST'])
    def api_record_result(tournament_id: str, match_id: str):
        coordinator, error = get_tournament_or_404(tournament_id)
        if error:
            return error
        data = _body()
        result = coordinator.record_result(
            match_id,
            _integer(data, 'home_score'),
            _integer(data, 'away_score'),
            reason=data.get('reason')
        )
        return _respond(result, {'tournament': coordinator.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/dispute', methods=['POST'])
    def api_set_dispute(tournament_id: str):
        coordinator, error = get_tournament_or_404(tournament_id)
        if error:
            return error
        result = coordinator.set_dispute_status(_require(_body(), 'status'))
        return _respond(result, {'tournament': coordinator.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/complete', methods=['POST'])
    def api_complete_tournament(tournament_id: str):
        coordinator, error = get_tournament_or_404(tournament_id)
        if error:
            return error
        return _respond(coordinator.complete(), {'tournament': coordinator.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/standings', methods=['GET'])
    def api_standings(tournament_id: str):
        coordinator, error = get_tournament_or_404(tournament_id)
        if error:
            return error
        return jsonify({
            'tournament_id': tournament_id,
            'standings': [row.to_dict() for row in coordinator.standings()],
        })
