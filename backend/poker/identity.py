"""Self-asserted participant identity, cached on the caller's machine.

Whoever holds the cached id is that participant; nothing on the server
verifies it. The cache maps a normalized display name to an id so that
rejoining under the same name recovers the same identity.
"""

import json
import logging
import os
from typing import Dict

from poker.models import Participant, generate_code


logger = logging.getLogger(__name__)

USER_ID_LENGTH = 12
DEFAULT_CACHE_PATH = os.path.join(os.path.expanduser('~'), '.sprint-poker', 'user-ids.json')


def normalize_name(name: str) -> str:
    return (name or '').strip().lower()


class IdentityCache:
    def __init__(self, path: str = DEFAULT_CACHE_PATH):
        self.path = path

    def _load(self) -> Dict[str, str]:
        try:
            with open(self.path, encoding='utf-8') as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning(f"[identity] unreadable cache path={self.path} error={exc}")
            return {}
        return data if isinstance(data, dict) else {}

    def _persist(self, ids: Dict[str, str]) -> None:
        try:
            os.makedirs(os.path.dirname(self.path) or '.', exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as fh:
                json.dump(ids, fh)
        except OSError as exc:
            # Identity still works for this process, just not across restarts
            logger.warning(f"[identity] could not persist path={self.path} error={exc}")

    def user_id_for(self, name: str) -> str:
        normalized = normalize_name(name)
        if not normalized:
            return generate_code(USER_ID_LENGTH)
        ids = self._load()
        existing = ids.get(normalized)
        if existing:
            return existing
        new_id = generate_code(USER_ID_LENGTH)
        ids[normalized] = new_id
        self._persist(ids)
        return new_id

    def participant(self, name: str) -> Participant:
        return Participant(id=self.user_id_for(name), name=name.strip())
