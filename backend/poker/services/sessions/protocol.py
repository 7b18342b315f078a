"""Room state machine and its read-modify-write cycle.

Each named action is a pure transition ``(record, input) -> record``
wrapped by :class:`SessionProtocol`, which loads the record from the
store, applies the transition and writes the whole record back. Nothing
here locks: two concurrent actions on one room can race and the later
write wins. Clients converge by polling.

State machine::

    IDLE --startVoting--> VOTING --finishVoting | timer | quorum--> FINISHED
    FINISHED --resetVoting--> IDLE
    any --leave(host)--> IDLE
"""

import copy
import logging
from typing import Callable, Optional

from poker.models import GameState, Participant, SessionRecord, TShirtSize, now_ms


logger = logging.getLogger(__name__)

ACTIONS = ('create', 'join', 'leave', 'startVoting', 'finishVoting', 'resetVoting', 'vote')


class SessionError(Exception):
    status_code = 400

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {'error': self.message}
        if self.details:
            body['details'] = self.details
        return body


class SessionNotFound(SessionError):
    status_code = 404

    def __init__(self, code: str):
        super().__init__('Session not found')
        self.code = code


class InvalidState(SessionError):
    status_code = 400

    def __init__(self, message: str, state: GameState):
        super().__init__(f"{message}. Current state: {state.value}")
        self.state = state


class InvalidRequest(SessionError):
    status_code = 400


class StoreFailure(SessionError):
    status_code = 500


# ---- Input validation (runs before any store access) ----

def parse_user(data) -> Participant:
    user = (data or {}).get('user')
    if not isinstance(user, dict):
        raise InvalidRequest('Invalid user data')
    uid, name = user.get('id'), user.get('name')
    if not isinstance(uid, str) or not uid.strip() or not isinstance(name, str) or not name.strip():
        raise InvalidRequest('Invalid user data')
    return Participant(id=uid, name=name.strip())


def parse_user_id(data) -> str:
    uid = (data or {}).get('userId')
    if not isinstance(uid, str) or not uid.strip():
        raise InvalidRequest('userId is required')
    return uid


def parse_size(data) -> TShirtSize:
    size = (data or {}).get('size')
    try:
        return TShirtSize(size)
    except (ValueError, TypeError):
        raise InvalidRequest('Invalid vote size', details=f"expected one of XS, S, M, L, XL; got {size!r}") from None


def parse_anchor(data) -> Optional[int]:
    anchor = (data or {}).get('votingStartTime')
    if anchor is None:
        return None
    if isinstance(anchor, bool) or not isinstance(anchor, (int, float)):
        raise InvalidRequest('votingStartTime must be a number')
    return int(anchor)


# ---- Pure transitions ----

def new_session(code: str, user: Participant) -> SessionRecord:
    return SessionRecord(id=code, host_id=user.id, participants=[user])


def apply_join(record: SessionRecord, user: Participant) -> SessionRecord:
    existing = record.find_participant(user.id)
    if existing is not None and existing.name == user.name:
        return record
    updated = copy.deepcopy(record)
    if existing is None:
        updated.participants.append(user)
    else:
        updated.find_participant(user.id).name = user.name
    return updated


def apply_leave(record: SessionRecord, user_id: str) -> Optional[SessionRecord]:
    """Remove a participant. Returns None when the room should be deleted."""
    if record.find_participant(user_id) is None:
        return record
    updated = copy.deepcopy(record)
    updated.participants = [p for p in updated.participants if p.id != user_id]
    updated.votes.pop(user_id, None)
    if not updated.participants:
        return None
    if updated.host_id == user_id:
        updated.host_id = updated.participants[0].id
        _enter_idle(updated)
    elif updated.game_state == GameState.VOTING and updated.has_full_quorum():
        _enter_finished(updated)
    return updated


def apply_start_voting(record: SessionRecord, now: int) -> SessionRecord:
    if record.game_state != GameState.IDLE:
        raise InvalidState('Cannot start voting', record.game_state)
    updated = copy.deepcopy(record)
    updated.game_state = GameState.VOTING
    updated.votes = {}
    updated.voting_start_time = now
    return updated


def apply_finish_voting(record: SessionRecord, anchor: Optional[int] = None) -> SessionRecord:
    # Idle has nothing to finish; a stale anchor belongs to an earlier round
    if record.game_state == GameState.IDLE:
        return record
    if anchor is not None and record.game_state == GameState.VOTING and anchor != record.voting_start_time:
        return record
    updated = copy.deepcopy(record)
    _enter_finished(updated)
    return updated


def apply_reset_voting(record: SessionRecord) -> SessionRecord:
    updated = copy.deepcopy(record)
    _enter_idle(updated)
    return updated


def apply_vote(record: SessionRecord, user_id: str, size: TShirtSize) -> SessionRecord:
    if record.game_state != GameState.VOTING:
        raise InvalidState('Voting is not active', record.game_state)
    if record.find_participant(user_id) is None:
        raise InvalidRequest('Unknown participant', details=user_id)
    updated = copy.deepcopy(record)
    updated.votes[user_id] = size
    return updated


def _enter_idle(record: SessionRecord) -> None:
    record.game_state = GameState.IDLE
    record.votes = {}
    record.voting_start_time = None


def _enter_finished(record: SessionRecord) -> None:
    record.game_state = GameState.FINISHED
    record.voting_start_time = None


# ---- Request-handler cycle ----

class SessionProtocol:
    """Fetch, apply, persist. One instance per request is fine; it holds no state."""

    def __init__(self, store, clock: Callable[[], int] = now_ms, log=None):
        self.store = store
        self.clock = clock
        self.log = log or logger

    def get(self, code: str) -> SessionRecord:
        record = self.store.get(code)
        if record is None:
            raise SessionNotFound(code)
        return record

    def _save(self, code: str, before: SessionRecord, after: SessionRecord) -> SessionRecord:
        if after is not before:
            self.store.set(code, after)
        return after

    def create(self, code: str, user: Participant) -> SessionRecord:
        record = new_session(code, user)
        self.store.set(code, record)
        self.log.info(f"[create] session={code} host={user.id}")
        return record

    def join(self, code: str, user: Participant) -> SessionRecord:
        record = self.get(code)
        updated = self._save(code, record, apply_join(record, user))
        if updated is not record:
            self.log.info(f"[join] session={code} user={user.id} participants={len(updated.participants)}")
        return updated

    def leave(self, code: str, user_id: str) -> Optional[SessionRecord]:
        record = self.get(code)
        updated = apply_leave(record, user_id)
        if updated is None:
            self.store.delete(code)
            self.log.info(f"[leave] session={code} user={user_id} deleted=true")
            return None
        if updated is not record:
            self.store.set(code, updated)
            self.log.info(
                f"[leave] session={code} user={user_id} host={updated.host_id} state={updated.game_state.value}"
            )
        return updated

    def start_voting(self, code: str) -> SessionRecord:
        record = self.get(code)
        updated = self._save(code, record, apply_start_voting(record, self.clock()))
        self.log.info(f"[start] session={code} anchor={updated.voting_start_time}")
        return updated

    def finish_voting(self, code: str, anchor: Optional[int] = None) -> SessionRecord:
        record = self.get(code)
        updated = self._save(code, record, apply_finish_voting(record, anchor))
        if updated is record:
            self.log.debug(f"[finish-skip] session={code} state={record.game_state.value} anchor={anchor}")
        else:
            self.log.info(f"[finish] session={code} votes={len(updated.votes)}")
        return updated

    def reset_voting(self, code: str) -> SessionRecord:
        record = self.get(code)
        updated = self._save(code, record, apply_reset_voting(record))
        self.log.info(f"[reset] session={code}")
        return updated

    def vote(self, code: str, user_id: str, size: TShirtSize) -> SessionRecord:
        record = self.get(code)
        return self._save(code, record, apply_vote(record, user_id, size))

    def dispatch(self, code: str, data: dict):
        """Run one ``{action, ...fields}`` request. Returns ``(record_or_None, status)``."""
        action = (data or {}).get('action')
        if action not in ACTIONS:
            raise InvalidRequest('Unknown action', details=f"expected one of {', '.join(ACTIONS)}")
        if action == 'create':
            return self.create(code, parse_user(data)), 201
        if action == 'join':
            return self.join(code, parse_user(data)), 200
        if action == 'leave':
            return self.leave(code, parse_user_id(data)), 200
        if action == 'startVoting':
            return self.start_voting(code), 200
        if action == 'finishVoting':
            return self.finish_voting(code, parse_anchor(data)), 200
        if action == 'resetVoting':
            return self.reset_voting(code), 200
        user_id, size = parse_user_id(data), parse_size(data)
        return self.vote(code, user_id, size), 200
