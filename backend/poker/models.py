from poker import db
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
import json
import random
import string
import time


class TShirtSize(str, Enum):
    XS = 'XS'
    S = 'S'
    M = 'M'
    L = 'L'
    XL = 'XL'

    @property
    def weight(self) -> int:
        return SIZE_WEIGHTS[self]


# Scale order matters: aggregation ties resolve to the earlier size
SIZES: List[TShirtSize] = [TShirtSize.XS, TShirtSize.S, TShirtSize.M, TShirtSize.L, TShirtSize.XL]

SIZE_WEIGHTS: Dict[TShirtSize, int] = {
    TShirtSize.XS: 1,
    TShirtSize.S: 2,
    TShirtSize.M: 3,
    TShirtSize.L: 5,
    TShirtSize.XL: 8,
}


class GameState(str, Enum):
    IDLE = 'IDLE'
    VOTING = 'VOTING'
    FINISHED = 'FINISHED'


def generate_code(length=6):
    """Generate a short uppercase alphanumeric code (room codes, participant ids)."""
    return ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Participant:
    id: str
    name: str

    def to_dict(self):
        return {'id': self.id, 'name': self.name}

    @classmethod
    def from_dict(cls, data) -> 'Participant':
        return cls(id=str(data['id']), name=str(data['name']))


@dataclass
class SessionRecord:
    """One room. The whole record is the unit of persistence."""
    id: str
    host_id: str
    participants: List[Participant] = field(default_factory=list)
    votes: Dict[str, TShirtSize] = field(default_factory=dict)
    game_state: GameState = GameState.IDLE
    voting_start_time: Optional[int] = None

    def find_participant(self, user_id: str) -> Optional[Participant]:
        for p in self.participants:
            if p.id == user_id:
                return p
        return None

    def has_full_quorum(self) -> bool:
        return bool(self.participants) and len(self.votes) == len(self.participants)

    def to_dict(self):
        return {
            'id': self.id,
            'hostId': self.host_id,
            'participants': [p.to_dict() for p in self.participants],
            'votes': {uid: size.value for uid, size in self.votes.items()},
            'gameState': self.game_state.value,
            'votingStartTime': self.voting_start_time,
        }

    @classmethod
    def from_dict(cls, data) -> 'SessionRecord':
        start = data.get('votingStartTime')
        return cls(
            id=data['id'],
            host_id=data['hostId'],
            participants=[Participant.from_dict(p) for p in data.get('participants') or []],
            votes={uid: TShirtSize(size) for uid, size in (data.get('votes') or {}).items()},
            game_state=GameState(data.get('gameState') or GameState.IDLE.value),
            voting_start_time=int(start) if start is not None else None,
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> 'SessionRecord':
        return cls.from_dict(json.loads(raw))


class SessionBlob(db.Model):
    """Key-value row: one JSON-encoded SessionRecord per room code."""
    __tablename__ = 'session_blob'
    code = db.Column(db.String(16), primary_key=True)
    data = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.Float, nullable=False, default=time.time)
