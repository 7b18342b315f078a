from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
from werkzeug.exceptions import HTTPException
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def _allowed_origins(config) -> list[str] | str:
    raw = (config.get('CORS_ORIGINS') or '*').strip()
    if raw == '*':
        return '*'
    return [o.strip() for o in raw.split(',') if o.strip()]


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    origins = _allowed_origins(flask_app.config)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, origins=origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=origins)

    # Session store adapter selected by configuration
    from poker.services.sessions.store import build_store
    flask_app.extensions['session_store'] = build_store(flask_app)

    from poker.api.sessions import sessions
    # Mount session routes under /api to match the client library
    flask_app.register_blueprint(sessions, url_prefix='/api/session')

    from poker.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @flask_app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({'error': exc.description or exc.name}), exc.code

    @flask_app.errorhandler(Exception)
    def handle_unexpected_error(exc):
        flask_app.logger.exception(f"[unhandled] {exc}")
        return jsonify({'error': 'Internal server error'}), 500

    @click.command('store-reset')
    def store_reset_command():
        """Deletes every stored room."""
        with flask_app.app_context():
            if flask_app.config.get('SESSION_STORE') == 'sql':
                db.drop_all()
                db.create_all()
            flask_app.extensions['session_store'].clear()
            print('Session store has been reset!')

    flask_app.cli.add_command(store_reset_command)

    return flask_app
