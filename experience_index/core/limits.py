"""Fixed-window counters and dedupe entries for the intake endpoints.

The in-process stores are enough for a single instance. ``experience_index.core.db``
provides the same interface over PostgreSQL for multi-instance deployments.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

SWEEP_INTERVAL_SECONDS = 60.0


class WindowStore(Protocol):
    def hit(self, scope: str, key: str, limit: int, window_seconds: float) -> bool:
        """Count one request; return False when the window is already full."""

    def sweep(self) -> int:
        """Remove expired windows; return how many were removed."""


class DedupeStore(Protocol):
    def lookup(self, fingerprint: str, max_age_seconds: float) -> Optional[str]:
        """Return the lead id recorded for ``fingerprint`` if younger than ``max_age_seconds``."""

    def record(self, fingerprint: str, lead_id: str) -> None:
        ...

    def sweep(self) -> int:
        ...


@dataclass
class _Window:
    count: int
    reset_at: float


class SweepSchedule:
    """Runs ``sweep`` at most once per interval, piggybacking on normal access."""

    def __init__(self, clock: Clock, interval: float) -> None:
        self._clock = clock
        self._interval = interval
        self._next_sweep = clock() + interval

    def due(self) -> bool:
        now = self._clock()
        if now < self._next_sweep:
            return False
        self._next_sweep = now + self._interval
        return True


class InMemoryWindowStore:
    """Thread-safe fixed-window counters keyed by ``(scope, key)``."""

    def __init__(self, clock: Clock = time.monotonic, sweep_interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        self._clock = clock
        self._windows: Dict[Tuple[str, str], _Window] = {}
        self._lock = threading.Lock()
        self._schedule = SweepSchedule(clock, sweep_interval)

    def hit(self, scope: str, key: str, limit: int, window_seconds: float) -> bool:
        with self._lock:
            if self._schedule.due():
                self._sweep_locked()
            now = self._clock()
            window = self._windows.get((scope, key))
            if window is None or now > window.reset_at:
                self._windows[(scope, key)] = _Window(count=1, reset_at=now + window_seconds)
                return True
            if window.count >= limit:
                return False
            window.count += 1
            return True

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked()

    def _sweep_locked(self) -> int:
        now = self._clock()
        expired = [key for key, window in self._windows.items() if now > window.reset_at]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.debug("Swept %d expired rate-limit windows", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


class InMemoryDedupeStore:
    """Thread-safe fingerprint -> lead id map with age-based expiry."""

    def __init__(
        self,
        clock: Clock = time.monotonic,
        retention_seconds: float = 24 * 60 * 60,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._clock = clock
        self._retention = retention_seconds
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._schedule = SweepSchedule(clock, sweep_interval)

    def lookup(self, fingerprint: str, max_age_seconds: float) -> Optional[str]:
        with self._lock:
            if self._schedule.due():
                self._sweep_locked()
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            lead_id, created_at = entry
            if self._clock() - created_at < max_age_seconds:
                return lead_id
            return None

    def record(self, fingerprint: str, lead_id: str) -> None:
        with self._lock:
            self._entries[fingerprint] = (lead_id, self._clock())

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked()

    def _sweep_locked(self) -> int:
        now = self._clock()
        expired = [fp for fp, (_, created_at) in self._entries.items() if now - created_at >= self._retention]
        for fp in expired:
            del self._entries[fp]
        if expired:
            logger.debug("Swept %d expired dedupe entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class KeyedLocks:
    """One lock per key, dropped once no thread holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, Tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock, waiters = self._locks.get(key, (threading.Lock(), 0))
            self._locks[key] = (lock, waiters + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                _, waiters = self._locks[key]
                if waiters <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, waiters - 1)

    def __len__(self) -> int:
        return len(self._locks)
