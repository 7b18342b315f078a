"""Polling client for a sprint poker room.

:class:`SessionApi` talks to the session endpoint over HTTP.
:class:`RoomClient` keeps a local view of one room in sync by re-fetching
it on a fixed interval, and derives the voting countdown locally from the
server's ``votingStartTime`` anchor. Whichever client sees the countdown
hit zero first asks the server to finish voting; duplicates are harmless.
"""

import logging
import threading
from typing import Callable, Optional

import httpx

from config import Config
from poker.models import GameState, Participant, SessionRecord, TShirtSize, generate_code, now_ms
from poker.services.sessions.results import summarize_votes


logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RoomNotFound(ApiError):
    pass


class NotHost(ApiError):
    pass


class SessionApi:
    def __init__(self, base_url: str = 'http://localhost:5000/api', client: Optional[httpx.Client] = None,
                 timeout: float = 5.0):
        self._http = client or httpx.Client(base_url=base_url, timeout=timeout)
        self.vote_duration: Optional[int] = None

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, code: str, fallback: str, body: Optional[dict] = None) -> httpx.Response:
        try:
            return self._http.request(method, f"/session/{code.upper()}", json=body)
        except httpx.HTTPError as exc:
            raise ApiError(f"{fallback}: {exc}") from exc

    @staticmethod
    def _error_message(response: httpx.Response, fallback: str) -> str:
        try:
            data = response.json()
        except ValueError:
            return fallback
        if isinstance(data, dict) and data.get('error'):
            return f"{data['error']}: {data['details']}" if data.get('details') else data['error']
        return fallback

    def _decode(self, response: httpx.Response, fallback: str) -> SessionRecord:
        if response.status_code == 404:
            raise RoomNotFound('Session not found', status_code=404)
        if response.is_error:
            raise ApiError(self._error_message(response, fallback), status_code=response.status_code)
        data = response.json()
        if data.get('voteDuration') is not None:
            self.vote_duration = int(data['voteDuration'])
        return SessionRecord.from_dict(data)

    def _post(self, code: str, body: dict, fallback: str) -> SessionRecord:
        return self._decode(self._request('POST', code, fallback, body), fallback)

    def get_session(self, code: str) -> SessionRecord:
        return self._decode(self._request('GET', code, 'Failed to get session'), 'Failed to get session')

    def create_session(self, code: str, user: Participant) -> SessionRecord:
        return self._post(code, {'action': 'create', 'user': user.to_dict()}, 'Failed to create session')

    def join_session(self, code: str, user: Participant) -> SessionRecord:
        return self._post(code, {'action': 'join', 'user': user.to_dict()}, 'Failed to join session')

    def start_voting(self, code: str) -> SessionRecord:
        return self._post(code, {'action': 'startVoting'}, 'Failed to start voting')

    def finish_voting(self, code: str, anchor: Optional[int] = None) -> SessionRecord:
        body = {'action': 'finishVoting'}
        if anchor is not None:
            body['votingStartTime'] = anchor
        return self._post(code, body, 'Failed to finish voting')

    def reset_voting(self, code: str) -> SessionRecord:
        return self._post(code, {'action': 'resetVoting'}, 'Failed to reset voting')

    def cast_vote(self, code: str, user_id: str, size: TShirtSize) -> SessionRecord:
        body = {'action': 'vote', 'userId': user_id, 'size': TShirtSize(size).value}
        return self._post(code, body, 'Failed to cast vote')

    def leave_session(self, code: str, user_id: str) -> None:
        response = self._request('POST', code, 'Failed to leave session', {'action': 'leave', 'userId': user_id})
        if response.is_error and response.status_code != 404:
            raise ApiError(self._error_message(response, 'Failed to leave session'), status_code=response.status_code)

    def leave_in_background(self, code: str, user_id: str) -> threading.Thread:
        """Fire-and-forget leave; failures are logged, never raised."""
        def _runner():
            try:
                self.leave_session(code, user_id)
            except ApiError as exc:
                logger.warning(f"[leave-failed] session={code} user={user_id} error={exc}")

        thread = threading.Thread(target=_runner, name=f"leave-{code}", daemon=True)
        thread.start()
        return thread


class RoomClient:
    """Local view of one room, reconciled by polling."""

    def __init__(self, api: SessionApi, code: str, user: Participant, creating: bool = False,
                 vote_duration: Optional[int] = None, poll_interval: Optional[float] = None,
                 tick_interval: Optional[float] = None, clock: Callable[[], int] = now_ms,
                 on_change: Optional[Callable[[SessionRecord], None]] = None, config=Config):
        self.api = api
        self.code = code.upper()
        self.user = user
        self.creating = creating
        self.config = config
        self._vote_duration = vote_duration
        self.poll_interval = poll_interval if poll_interval is not None else float(config.POLL_INTERVAL_SEC)
        self.tick_interval = tick_interval if tick_interval is not None else float(config.COUNTDOWN_TICK_SEC)
        self.clock = clock
        self.on_change = on_change

        self.session: Optional[SessionRecord] = None
        self.error: Optional[str] = None
        self.time_left: float = float(self.vote_duration)
        self._active = False
        self._finish_requested_for: Optional[int] = None
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @classmethod
    def create_new(cls, api: SessionApi, user: Participant, config=Config, start_threads: bool = True,
                   **kwargs) -> 'RoomClient':
        """Pick an unused room code, create the room as host and mount it."""
        length = int(config.ROOM_CODE_LENGTH)
        while True:
            code = generate_code(length)
            try:
                api.get_session(code)
            except RoomNotFound:
                break
        room = cls(api, code, user, creating=True, config=config, **kwargs)
        room.mount(start_threads=start_threads)
        return room

    @property
    def vote_duration(self) -> int:
        if self._vote_duration is not None:
            return self._vote_duration
        return self.api.vote_duration or int(self.config.VOTE_DURATION_SEC)

    # ---- lifecycle ----

    def mount(self, start_threads: bool = True) -> SessionRecord:
        """Load (or create/join) the room, then start polling.

        Raises :class:`RoomNotFound` when joining a room that does not
        exist, and :class:`ApiError` for any other initial load failure;
        polling is not started in either case.
        """
        self._active = True
        self._stop.clear()
        try:
            try:
                record = self.api.get_session(self.code)
            except RoomNotFound:
                if not self.creating:
                    raise
                record = self.api.create_session(self.code, self.user)
            else:
                if record.find_participant(self.user.id) is None:
                    record = self.api.join_session(self.code, self.user)
        except ApiError as exc:
            self._active = False
            self.error = str(exc)
            raise
        self.error = None
        self._replace(record)
        self.tick()
        if start_threads:
            self._threads = [
                self._spawn('poll', self.poll_interval, self.poll_once),
                self._spawn('countdown', self.tick_interval, self.tick),
            ]
        return record

    def unmount(self, timeout: Optional[float] = 2.0) -> Optional[threading.Thread]:
        """Stop ticking and tell the server we left without waiting for it."""
        was_active = self._active
        self._active = False
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        if not was_active or self.session is None:
            return None
        return self.api.leave_in_background(self.code, self.user.id)

    def _spawn(self, name: str, interval: float, step: Callable[[], object]) -> threading.Thread:
        def _loop():
            while not self._stop.wait(interval):
                try:
                    step()
                except Exception:
                    logger.exception(f"[{name}-error] session={self.code}")

        thread = threading.Thread(target=_loop, name=f"{name}-{self.code}", daemon=True)
        thread.start()
        return thread

    def _replace(self, record: SessionRecord) -> None:
        # Results of requests that finish after unmount are dropped
        if not self._active:
            return
        with self._lock:
            self.session = record
        if self.on_change is not None:
            self.on_change(record)

    # ---- reconciliation ----

    def poll_once(self) -> Optional[SessionRecord]:
        if not self._active:
            return None
        try:
            record = self.api.get_session(self.code)
            if not self._active:
                return None
            if record.find_participant(self.user.id) is None:
                # Our join was lost to a concurrent write
                logger.info(f"[rejoin] session={self.code} user={self.user.id}")
                record = self.api.join_session(self.code, self.user)
        except ApiError as exc:
            logger.warning(f"[poll-skip] session={self.code} error={exc}")
            return None
        self._replace(record)
        return record

    def remaining(self, now: Optional[int] = None) -> float:
        record = self.session
        if record is None or record.game_state != GameState.VOTING or record.voting_start_time is None:
            return float(self.vote_duration)
        now = self.clock() if now is None else now
        elapsed = (now - record.voting_start_time) / 1000.0
        return max(0.0, self.vote_duration - elapsed)

    def tick(self) -> float:
        record = self.session
        self.time_left = self.remaining()
        if not self._active or record is None or record.game_state != GameState.VOTING:
            return self.time_left
        anchor = record.voting_start_time
        if self.time_left <= 0 and self._finish_requested_for != anchor and self._active:
            self._finish_requested_for = anchor
            try:
                self._replace(self.api.finish_voting(self.code, anchor=anchor))
            except ApiError as exc:
                logger.warning(f"[finish-retry] session={self.code} error={exc}")
                self._finish_requested_for = None
        return self.time_left

    # ---- user actions ----

    def _require_host(self, action: str) -> None:
        if not self.is_host:
            raise NotHost(f"Only the host may {action}", status_code=403)

    def start_voting(self) -> SessionRecord:
        self._require_host('start voting')
        record = self.api.start_voting(self.code)
        self._replace(record)
        return record

    def finish_voting(self) -> SessionRecord:
        record = self.api.finish_voting(self.code)
        self._replace(record)
        return record

    def reset_voting(self) -> SessionRecord:
        self._require_host('reset voting')
        if self.session.game_state != GameState.FINISHED:
            raise ApiError(f"Cannot reset voting. Current state: {self.session.game_state.value}")
        record = self.api.reset_voting(self.code)
        self._replace(record)
        return record

    def cast_vote(self, size: TShirtSize) -> SessionRecord:
        record = self.api.cast_vote(self.code, self.user.id, size)
        self._replace(record)
        return record

    # ---- derived view ----

    @property
    def is_host(self) -> bool:
        return self.session is not None and self.session.host_id == self.user.id

    @property
    def my_vote(self) -> Optional[TShirtSize]:
        if self.session is None:
            return None
        return self.session.votes.get(self.user.id)

    @property
    def results(self) -> Optional[dict]:
        if self.session is None or self.session.game_state != GameState.FINISHED:
            return None
        return summarize_votes(self.session.participants, self.session.votes)
