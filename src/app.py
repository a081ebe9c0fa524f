"""
Flask web application for the bracket progression engine.
"""
import os
import time
from flask import Flask, request, jsonify, Response, stream_with_context, session
from core.errors import EngineError
from core.notify import SnapshotBroadcaster
from core.service import BracketEngine, score_from_maps
from core.store import BracketStore

app = Flask(__name__)


BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('TOURNAMENT_DATA_DIR', os.path.join(BASE_DIR, 'data'))
LOCK_TIMEOUT = float(os.environ.get('BRACKET_LOCK_TIMEOUT', '10'))
RESULT_RETRY_ATTEMPTS = int(os.environ.get('RESULT_RETRY_ATTEMPTS', '3'))
STREAM_HEARTBEAT_SECONDS = 15


def _get_or_create_secret_key() -> bytes:
    """Get SECRET_KEY from env, or generate and persist to file."""
    env_key = os.environ.get('SECRET_KEY')
    if env_key:
        return env_key.encode() if isinstance(env_key, str) else env_key
    key_file = os.path.join(DATA_DIR, '.secret_key')
    if os.path.exists(key_file):
        with open(key_file, 'rb') as f:
            return f.read()
    key = os.urandom(24)
    os.makedirs(os.path.dirname(key_file), exist_ok=True)
    with open(key_file, 'wb') as f:
        f.write(key)
    return key


app.secret_key = _get_or_create_secret_key()

broadcaster = SnapshotBroadcaster()
engine = BracketEngine(BracketStore(DATA_DIR, lock_timeout=LOCK_TIMEOUT),
                       notifier=broadcaster, max_attempts=RESULT_RETRY_ATTEMPTS)


def configure_engine(data_dir: str, lock_timeout: float = LOCK_TIMEOUT,
                     max_attempts: int = RESULT_RETRY_ATTEMPTS) -> BracketEngine:
    """Point the app at another data directory (used by tests and scripts)."""
    global engine
    engine = BracketEngine(BracketStore(data_dir, lock_timeout=lock_timeout),
                           notifier=broadcaster, max_attempts=max_attempts)
    return engine


@app.errorhandler(EngineError)
def handle_engine_error(error):
    if error.http_status >= 500:
        app.logger.error(f'{error.kind}: {error}')
    return jsonify(error.to_dict()), error.http_status


def _parse_score(value):
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValueError(f'Not a score: {value}')
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f'Not a whole number: {value}')
    return int(value)


@app.route('/api/matches/<int:match_id>/result', methods=['POST'])
def api_submit_match_result(match_id):
    """Record a match result and advance the bracket."""
    data = request.get_json(silent=True) or {}

    winner_team_id = data.get('winner_team_id')
    maps_data = data.get('maps_data')
    if maps_data is not None and not isinstance(maps_data, list):
        return jsonify({'error': 'maps_data must be a list', 'kind': 'invalid_request'}), 400

    try:
        score1 = _parse_score(data.get('score1'))
        score2 = _parse_score(data.get('score2'))
    except (TypeError, ValueError):
        return jsonify({'error': 'Scores must be integers', 'kind': 'invalid_request'}), 400
    if score1 is None and score2 is None:
        series = score_from_maps(maps_data)
        if series:
            score1, score2 = series

    # Edit rights are resolved here; the engine only sees the boolean
    user = session.get('user')
    tournament = engine.tournament_for_match(match_id)
    can_edit = tournament.can_edit(user)

    snapshot = engine.submit_match_result(
        match_id,
        winner_team_id,
        score1,
        score2,
        maps_data=maps_data,
        requester_has_edit_rights=can_edit,
        requested_by=user,
    )
    app.logger.info(f'Match {match_id} result saved by {user}: winner={winner_team_id} score={score1}:{score2}')

    return jsonify({
        'success': True,
        'match_id': match_id,
        'tournament': snapshot.to_dict(),
    })


@app.route('/api/tournaments/<tournament_id>')
def api_tournament(tournament_id):
    """Tournament snapshot: tournament fields, participants and matches."""
    snapshot = engine.store.snapshot(_tournament_key(tournament_id))
    return jsonify(snapshot.to_dict())


@app.route('/api/tournaments/<tournament_id>/standings')
def api_standings(tournament_id):
    """Final (or current) placements for every participant."""
    standings = engine.get_standings(_tournament_key(tournament_id))
    return jsonify({'success': True, 'standings': standings, 'total': len(standings)})


@app.route('/api/tournaments/<tournament_id>/events')
def api_events(tournament_id):
    """Tournament event log (results applied, corruption reports)."""
    return jsonify({'events': engine.store.events(_tournament_key(tournament_id))})


@app.route('/api/tournaments/<tournament_id>/stream')
def api_tournament_stream(tournament_id):
    """Server-Sent Events stream that notifies clients when the bracket changes."""
    key = _tournament_key(tournament_id)
    engine.store.load_tournament(key)

    def generate():
        """Yield an update event per published snapshot, with a heartbeat in between."""
        # Send immediate connected event so client shows "Live" status right away
        yield "event: connected\ndata: ok\n\n"

        version = broadcaster.version(key)
        while True:
            current = broadcaster.wait_for_update(key, version, timeout=STREAM_HEARTBEAT_SECONDS)
            if current > version:
                version = current
                yield f"event: update\ndata: {time.time()}\n\n"
            else:
                yield ": heartbeat\n\n"

    return Response(
        stream_with_context(generate()),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no',
        },
    )


def _tournament_key(tournament_id: str):
    """Tournament ids are stored as integers when they look like one."""
    return int(tournament_id) if tournament_id.isdigit() else tournament_id


if __name__ == '__main__':
    app.run(debug=True, port=5000)
