from __future__ import annotations

import threading
import time
from typing import Callable, Dict

DEFAULT_TTL_SEC = 6.0


class EchoSuppressor:
    """
    Remembers paths that were just written or deleted on behalf of the peer, so
    the local detector does not report them back as local changes.

    Entries are one-shot: the first matching report consumes them. Entries that
    are never reported (e.g. the watcher missed the event) expire after ttl_sec.
    Shared between the detector thread and whichever thread applies actions.
    """

    def __init__(self, ttl_sec: float = DEFAULT_TTL_SEC, clock: Callable[[], float] = time.monotonic):
        self.ttl_sec = float(ttl_sec)
        self._clock = clock
        self._expiry: Dict[str, float] = {}
        self._guard = threading.Lock()

    def mark(self, path: str) -> None:
        with self._guard:
            self._expiry[path] = self._clock() + self.ttl_sec

    def should_suppress(self, path: str) -> bool:
        now = self._clock()
        with self._guard:
            self._purge(now)
            return self._expiry.pop(path, None) is not None

    def pending(self) -> int:
        with self._guard:
            self._purge(self._clock())
            return len(self._expiry)

    def _purge(self, now: float) -> None:
        stale = [p for p, exp in self._expiry.items() if exp <= now]
        for p in stale:
            del self._expiry[p]

    def forget(self, path: str) -> None:
        """Drop an entry whose mutation never happened."""
        with self._guard:
            self._expiry.pop(path, None)
