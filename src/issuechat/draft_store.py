"""In-memory store of pending drafts, one per conversation thread.

Entries expire lazily: a ``load`` that finds an entry older than the TTL
deletes it and reports nothing pending. There is no background sweep.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections.abc import Callable

from .models import PendingState, ThreadKey

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60


class DraftStore:
    """Thread-safe TTL cache of :class:`PendingState` keyed by :class:`ThreadKey`.

    A single lock guards the whole mapping; operations never nest it. This is a
    cache, not a log: last writer wins and there is no versioning. A TTL of
    zero or less disables expiry.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._items: dict[ThreadKey, PendingState] = {}

    def save(self, state: PendingState) -> None:
        with self._lock:
            self._items[state.thread] = copy.deepcopy(state)

    def load(self, thread: ThreadKey) -> PendingState | None:
        with self._lock:
            state = self._items.get(thread)
            if state is None:
                return None
            if self.ttl_seconds > 0 and self._clock() - state.created_at > self.ttl_seconds:
                del self._items[thread]
                logger.debug("pending draft expired for %s/%s", thread.channel_id, thread.thread_id)
                return None
            return copy.deepcopy(state)

    def delete(self, thread: ThreadKey) -> None:
        with self._lock:
            self._items.pop(thread, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


__all__ = ["DraftStore", "DEFAULT_TTL_SECONDS"]
