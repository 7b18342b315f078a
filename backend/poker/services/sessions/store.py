import threading
import time
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from poker import db
from poker.models import SessionBlob, SessionRecord
from .protocol import StoreFailure


class SessionStore:
    """Whole-record key-value storage keyed by room code.

    There is no compare-and-swap: callers read, mutate and blindly overwrite,
    so concurrent writers to one code are last-write-wins.
    """

    def get(self, code: str) -> Optional[SessionRecord]:
        raise NotImplementedError

    def set(self, code: str, record: SessionRecord) -> None:
        raise NotImplementedError

    def delete(self, code: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class MemorySessionStore(SessionStore):
    """Process-local store. Values are kept as JSON so reads never alias writes."""

    def __init__(self):
        self._blobs: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, code):
        with self._lock:
            raw = self._blobs.get(code)
        return SessionRecord.from_json(raw) if raw is not None else None

    def set(self, code, record):
        raw = record.to_json()
        with self._lock:
            self._blobs[code] = raw

    def delete(self, code):
        with self._lock:
            self._blobs.pop(code, None)

    def clear(self):
        with self._lock:
            self._blobs.clear()


class SqlSessionStore(SessionStore):
    """One session_blob row per room, overwritten whole on every write."""

    def get(self, code):
        try:
            blob = db.session.get(SessionBlob, code)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreFailure('Failed to retrieve session', details=str(exc)) from exc
        return SessionRecord.from_json(blob.data) if blob else None

    def set(self, code, record):
        try:
            db.session.merge(SessionBlob(code=code, data=record.to_json(), updated_at=time.time()))
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreFailure('Failed to save session', details=str(exc)) from exc

    def delete(self, code):
        try:
            SessionBlob.query.filter_by(code=code).delete()
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreFailure('Failed to delete session', details=str(exc)) from exc

    def clear(self):
        try:
            SessionBlob.query.delete()
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreFailure('Failed to clear sessions', details=str(exc)) from exc


_STORES = {
    'memory': MemorySessionStore,
    'sql': SqlSessionStore,
}


def build_store(app) -> SessionStore:
    kind = (app.config.get('SESSION_STORE') or 'sql').lower()
    if kind not in _STORES:
        raise ValueError(f"Unknown SESSION_STORE {kind!r}; expected one of {sorted(_STORES)}")
    app.logger.info(f"[store] backend={kind}")
    return _STORES[kind]()
