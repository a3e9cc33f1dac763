"""
Injectable clock and process-local TTL cache.

Used for best-effort cooldowns (stale-location sweep, notification dedup).
State lives in memory and is not shared between processes; a shared cache
can replace ``TTLCache`` later without changing callers.
"""
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Dict, Hashable, Optional


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class TTLCache:
    """Thread-safe key -> expiry map."""

    def __init__(self, ttl: timedelta, clock: Clock = utc_now):
        self.ttl = ttl
        self.clock = clock
        self._lock = Lock()
        self._expiry: Dict[Hashable, datetime] = {}

    def _purge(self, now: datetime) -> None:
        expired = [key for key, expires_at in self._expiry.items() if expires_at <= now]
        for key in expired:
            del self._expiry[key]

    def contains(self, key: Hashable) -> bool:
        now = self.clock()
        with self._lock:
            expires_at = self._expiry.get(key)
            return expires_at is not None and expires_at > now

    def add(self, key: Hashable) -> bool:
        """
        Record ``key`` if it is not already live.

        Returns True when the key was added (caller may proceed), False when
        it is still within its TTL.
        """
        now = self.clock()
        with self._lock:
            self._purge(now)
            if key in self._expiry:
                return False
            self._expiry[key] = now + self.ttl
            return True

    def discard(self, key: Hashable) -> None:
        with self._lock:
            self._expiry.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._expiry.clear()


class CooldownGate:
    """
    Allows an action at most once per ``interval``.

    ``try_acquire`` is atomic within a process; concurrent processes each
    keep their own gate.
    """

    def __init__(self, interval: timedelta, clock: Clock = utc_now):
        self.interval = interval
        self.clock = clock
        self._lock = Lock()
        self.last_run: Optional[datetime] = None

    def try_acquire(self) -> bool:
        now = self.clock()
        with self._lock:
            if self.last_run is not None and now - self.last_run < self.interval:
                return False
            self.last_run = now
            return True

    def reset(self) -> None:
        with self._lock:
            self.last_run = None
