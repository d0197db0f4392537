from __future__ import annotations

import threading
import uuid
from typing import Dict, Optional

from apollo.core.errors import ConcurrentActionConflict


class InFlightGuard:
    """
    Keyed mutual exclusion for chain actions.

    Keys look like ``settle:<auction_id>`` or ``withdraw:<address>``.
    Acquiring a held key fails immediately; nothing is queued.
    Release requires the token handed out by acquire, so a stale holder
    can never free someone else's lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._held: Dict[str, str] = {}

    def acquire(self, key: str) -> str:
        with self._lock:
            if key in self._held:
                raise ConcurrentActionConflict(f"An action for {key} is already in progress.")
            token = uuid.uuid4().hex
            self._held[key] = token
            return token

    def release(self, key: str, token: Optional[str]) -> bool:
        with self._lock:
            if token is None or self._held.get(key) != token:
                return False
            del self._held[key]
            return True

    def is_held(self, key: str) -> bool:
        with self._lock:
            return key in self._held
