import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///sprint_poker.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Session store adapter: 'sql' (session_blob table) or 'memory' (process-local)
    SESSION_STORE = os.environ.get('SESSION_STORE', 'sql')
    # Vote collection budget (seconds); enforced by client timers only
    VOTE_DURATION_SEC = int(os.environ.get('VOTE_DURATION_SEC', '10'))
    # Client reconciliation defaults (seconds)
    POLL_INTERVAL_SEC = float(os.environ.get('POLL_INTERVAL_SEC', '1.0'))
    COUNTDOWN_TICK_SEC = float(os.environ.get('COUNTDOWN_TICK_SEC', '0.5'))
    ROOM_CODE_LENGTH = int(os.environ.get('ROOM_CODE_LENGTH', '6'))
    # Comma-separated; '*' allows any origin
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')
