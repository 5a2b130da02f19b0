"""
Pending analysis registry

Analyses waiting for a reaction, keyed by the chat message handle. The
underlying dict never leaves this object; callers get copies.
"""

import logging
import threading
from datetime import datetime
from typing import Optional

from .models import PendingAnalysis, utcnow

logger = logging.getLogger(__name__)


class PendingRegistry:
    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[str, PendingAnalysis] = {}

    def insert(self, entry: PendingAnalysis) -> None:
        with self._lock:
            self._entries[entry.message_ts] = entry

    def snapshot_and_expire(
        self, max_age_seconds: float, now: Optional[datetime] = None
    ) -> list[PendingAnalysis]:
        """Drop entries older than ``max_age_seconds`` and copy the rest"""
        now = now or utcnow()
        with self._lock:
            expired = [
                key
                for key, entry in self._entries.items()
                if entry.age_seconds(now) > max_age_seconds
            ]
            for key in expired:
                del self._entries[key]
            live = [entry.model_copy() for entry in self._entries.values()]

        if expired:
            logger.info(f"Expired {len(expired)} pending analyses without feedback")
        return live

    def remove(self, message_ts: str) -> Optional[PendingAnalysis]:
        with self._lock:
            return self._entries.pop(message_ts, None)

    def get(self, message_ts: str) -> Optional[PendingAnalysis]:
        with self._lock:
            entry = self._entries.get(message_ts)
            return entry.model_copy() if entry else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
