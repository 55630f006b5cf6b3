"""In-memory correlation store: provider channel id -> pending request context.

Entries are consumed at most once. The store is process-local and lost on
restart.
"""

from __future__ import annotations

import logging
import threading
import time

from src.models import PendingRequest

logger = logging.getLogger(__name__)


class CorrelationStore:
    """Maps channel ids to the request context captured at dispatch time.

    ``ttl_seconds=None`` keeps entries until a matching webhook consumes
    them. With a TTL, stale entries are pruned on ``put`` and ``size``.
    """

    def __init__(self, ttl_seconds: int | None = None) -> None:
        self._ttl_seconds = ttl_seconds
        self._entries: dict[str, tuple[float, PendingRequest]] = {}
        self._lock = threading.Lock()

    def put(self, channel_id: str, pending: PendingRequest) -> None:
        with self._lock:
            self._prune_locked()
            self._entries[channel_id] = (time.monotonic(), pending)

    def take_if_present(self, channel_id: str | None) -> PendingRequest | None:
        """Atomically remove and return the entry for ``channel_id``."""
        if channel_id is None:
            return None
        with self._lock:
            entry = self._entries.pop(channel_id, None)
        if entry is None:
            return None
        stored_at, pending = entry
        if self._is_expired(stored_at, time.monotonic()):
            logger.info("Pending request for channel %s expired before webhook", channel_id)
            return None
        return pending

    def size(self) -> int:
        with self._lock:
            self._prune_locked()
            return len(self._entries)

    def evict_expired(self) -> int:
        """Drop entries older than the TTL. Returns the number removed."""
        with self._lock:
            return self._prune_locked()

    def __contains__(self, channel_id: object) -> bool:
        with self._lock:
            return channel_id in self._entries

    def _is_expired(self, stored_at: float, now: float) -> bool:
        return self._ttl_seconds is not None and now - stored_at > self._ttl_seconds

    def _prune_locked(self) -> int:
        if self._ttl_seconds is None:
            return 0
        now = time.monotonic()
        stale = [
            cid for cid, (stored_at, _) in self._entries.items()
            if self._is_expired(stored_at, now)
        ]
        for cid in stale:
            del self._entries[cid]
        if stale:
            logger.info("Evicted %d expired pending request(s)", len(stale))
        return len(stale)
