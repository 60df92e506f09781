"""Per-client fixed-window request gate.

Counts may reset mid-burst at a window boundary. State is process-local, so several
API instances each enforce the limit independently.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

import structlog

from shelfscore.models.outcomes import Allowed, Denied

logger = structlog.get_logger("pipeline.rate_limit")

DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_MAX_REQUESTS = 5
DEFAULT_PRUNE_EVERY = 256


@dataclass
class _Window:
    count: int
    window_start: float


class RateLimiter:
    """Fixed-window counter keyed by client identity.

    Each key has its own lock so the increment-and-compare for one client is
    atomic while unrelated clients never wait on each other. The registry lock
    is held only long enough to find or create a key's lock. Every
    ``prune_every`` admits, expired windows are dropped so the key map stays
    bounded by the number of clients active within one window.
    """

    def __init__(
        self,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        prune_every: int = DEFAULT_PRUNE_EVERY,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.prune_every = max(prune_every, 1)
        self._admits_since_prune = 0
        self._windows: dict[str, _Window] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @property
    def tracked_keys(self) -> int:
        return len(self._windows)

    def _lock_for(self, client_key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(client_key)
            if lock is None:
                lock = self._locks[client_key] = threading.Lock()
            return lock

    def admit(self, client_key: str, now: float | None = None) -> Allowed | Denied:
        if now is None:
            now = time.monotonic()

        decision = self._admit(client_key, now)
        if self._prune_due():
            dropped = self.prune(now)
            if dropped:
                logger.debug("rate_limit_pruned", dropped=dropped, tracked=self.tracked_keys)
        return decision

    def _prune_due(self) -> bool:
        with self._registry_lock:
            self._admits_since_prune += 1
            if self._admits_since_prune < self.prune_every:
                return False
            self._admits_since_prune = 0
            return True

    def _admit(self, client_key: str, now: float) -> Allowed | Denied:
        while True:
            lock = self._lock_for(client_key)
            with lock:
                # prune may retire the lock between lookup and acquire
                if self._locks.get(client_key) is lock:
                    return self._count(client_key, now)

    def _count(self, client_key: str, now: float) -> Allowed | Denied:
        """Increment-and-compare; the caller holds the key lock."""
        window = self._windows.get(client_key)
        if window is None or now - window.window_start > self.window_seconds:
            self._windows[client_key] = _Window(count=1, window_start=now)
            return Allowed(count=1)

        window.count += 1
        if window.count <= self.max_requests:
            return Allowed(count=window.count)

        retry_after = max(window.window_start + self.window_seconds - now, 0.0)
        logger.info(
            "rate_limit_denied",
            client_key=client_key,
            count=window.count,
            retry_after=round(retry_after, 1),
        )
        return Denied(count=window.count, retry_after=retry_after)

    def prune(self, now: float | None = None) -> int:
        """Forget windows that have already expired. Returns how many were dropped."""
        if now is None:
            now = time.monotonic()
        dropped = 0
        with self._registry_lock:
            for key, window in list(self._windows.items()):
                if now - window.window_start <= self.window_seconds:
                    continue
                lock = self._locks.get(key)
                # A key being admitted right now is left for the next prune.
                if lock is not None and not lock.acquire(blocking=False):
                    continue
                try:
                    self._windows.pop(key, None)
                    self._locks.pop(key, None)
                    dropped += 1
                finally:
                    if lock is not None:
                        lock.release()
        return dropped

    def reset(self) -> None:
        with self._registry_lock:
            self._admits_since_prune = 0
            self._windows.clear()
            self._locks.clear()
