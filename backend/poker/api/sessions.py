from flask import Blueprint, jsonify, request, current_app
from poker import socketio
from poker.services.sessions.protocol import SessionProtocol, SessionError, InvalidRequest, StoreFailure


sessions = Blueprint('sessions', __name__)


def _protocol() -> SessionProtocol:
    return SessionProtocol(current_app.extensions['session_store'], log=current_app.logger)


def _payload(record) -> dict:
    payload = record.to_dict()
    # Clients derive the countdown from this plus votingStartTime
    payload['voteDuration'] = int(current_app.config.get('VOTE_DURATION_SEC', 10))
    return payload


def _broadcast(code: str, payload: dict) -> None:
    try:
        socketio.emit('session_update', payload, to=f"session:{code}", namespace='/ws')
    except Exception as exc:
        current_app.logger.warning(f"[push-skip] session={code} error={exc}")


@sessions.errorhandler(SessionError)
def handle_session_error(exc):
    if isinstance(exc, StoreFailure):
        current_app.logger.error(f"[store-failure] {exc.message}: {exc.details}")
    return jsonify(exc.to_dict()), exc.status_code


@sessions.route('/<string:code>', methods=['GET', 'POST', 'OPTIONS'])
def session_endpoint(code):
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200
    code = code.upper()

    if request.method == 'GET':
        record = _protocol().get(code)
        return jsonify(_payload(record))

    data = request.get_json(silent=True, force=True)
    if not isinstance(data, dict):
        raise InvalidRequest('Invalid JSON in request body')

    record, status = _protocol().dispatch(code, data)
    if record is None:
        _broadcast(code, {'id': code, 'deleted': True})
        return jsonify({'deleted': True}), status
    payload = _payload(record)
    _broadcast(code, payload)
    return jsonify(payload), status
