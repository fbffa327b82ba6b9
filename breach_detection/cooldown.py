from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from cachetools import TTLCache


class AlertCooldownCache:
    """Remembers when an alert was last sent per ``user_id:alert_type`` key.

    Entries live for twice the cooldown window and are then evicted, which
    keeps memory bounded together with ``capacity``.
    """

    def __init__(
        self,
        window: timedelta = timedelta(minutes=5),
        capacity: int = 10_000,
        clock: Callable[[], datetime] | None = None,
    ):
        self.window = window
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: TTLCache = TTLCache(
            maxsize=capacity,
            ttl=(window * 2).total_seconds(),
            timer=lambda: self.clock().timestamp(),
        )
        self._lock = threading.Lock()

    @staticmethod
    def key(user_id: str, alert_type: str) -> str:
        return f"{user_id}:{alert_type}"

    def last_sent(self, key: str) -> Optional[datetime]:
        with self._lock:
            return self._entries.get(key)

    def acquire(self, key: str) -> Optional[datetime]:
        """Claim the slot for ``key``.

        Returns ``None`` and records the send time when no alert went out within
        the window; otherwise returns the time of the previous alert and leaves
        the entry untouched.
        """
        now = self.clock()
        with self._lock:
            previous = self._entries.get(key)
            if previous is not None and now - previous < self.window:
                return previous
            self._entries[key] = now
            return None

    def purge(self) -> int:
        with self._lock:
            return len(self._entries.expire())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
