"""
Per-Client Rate Limiter

Fixed-window counters (per-minute and per-hour) keyed by client, held in an
injectable store. The default store is process memory, so limits are not shared
across processes or workers.

Admission order for a client key:
    1. reset the minute window if it has expired, then check its ceiling
    2. reset the hour window if it has expired, then check its ceiling
    3. increment both counts

A rejection never increments either count. Expired entries are evicted
opportunistically on a small fraction of admissions instead of by a background
task; stale entries only cost memory.
"""

import logging
import math
import random
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, Mapping, Optional

from .exceptions import RateLimitError

logger = logging.getLogger(__name__)

MINUTE_MS = 60_000
HOUR_MS = 3_600_000
UNKNOWN_CLIENT_KEY = "unknown"


@dataclass
class RateLimitWindow:
    """Counter for a single fixed-duration window."""

    count: int
    reset_at: float  # epoch milliseconds

    def is_expired(self, now: float) -> bool:
        return now >= self.reset_at


@dataclass
class ClientWindows:
    """Minute and hour windows for one client key."""

    per_minute: RateLimitWindow
    per_hour: RateLimitWindow

    @classmethod
    def fresh(cls, now: float) -> "ClientWindows":
        return cls(
            per_minute=RateLimitWindow(count=0, reset_at=now + MINUTE_MS),
            per_hour=RateLimitWindow(count=0, reset_at=now + HOUR_MS),
        )

    def fully_expired(self, now: float) -> bool:
        return self.per_minute.reset_at < now and self.per_hour.reset_at < now


class RateLimitStore(ABC):
    """
    Key-value storage for client windows.

    Swapping this for a shared backend (e.g. Redis) changes where counters live
    without touching the limiter or its callers.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[ClientWindows]:
        """Return the windows for ``key`` or None."""

    @abstractmethod
    def set(self, key: str, windows: ClientWindows) -> None:
        """Store the windows for ``key``."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    @abstractmethod
    def keys(self) -> Iterable[str]:
        """Snapshot of the stored keys."""


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store backed by a dict."""

    def __init__(self):
        self._entries: Dict[str, ClientWindows] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[ClientWindows]:
        return self._entries.get(key)

    def set(self, key: str, windows: ClientWindows) -> None:
        with self._lock:
            self._entries[key] = windows

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def keys(self) -> Iterable[str]:
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)


def get_client_key(headers: Mapping[str, str]) -> str:
    """
    Derive the rate-limit key for a request.

    Uses the first address of ``x-forwarded-for``, then ``x-real-ip``, then
    ``cf-connecting-ip``. Requests with none of these share the
    ``"unknown"`` key.

    Args:
        headers: Case-insensitive header mapping (e.g. Starlette ``Headers``)
            or a plain dict with lower-case keys
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = headers.get(header)
        if value and value.strip():
            return value.strip()
    return UNKNOWN_CLIENT_KEY


def _now_ms() -> float:
    return time.time() * 1000


class ClientRateLimiter:
    """
    Admits or rejects calls per client key before any external call is made.

    The read-check-increment sequence for a key runs under a per-key lock, so
    the at-most-N-per-window guarantee also holds when called from threads.
    """

    def __init__(
        self,
        requests_per_minute: int = 10,
        requests_per_hour: int = 100,
        store: Optional[RateLimitStore] = None,
        cleanup_probability: float = 0.01,
        clock: Callable[[], float] = _now_ms,
        random_source: Callable[[], float] = random.random
    ):
        """
        Args:
            requests_per_minute: Ceiling for the minute window
            requests_per_hour: Ceiling for the hour window
            store: Window storage; defaults to process memory
            cleanup_probability: Chance that an admission sweeps expired entries
            clock: Current time in epoch milliseconds
            random_source: Uniform [0, 1) generator used for the cleanup draw
        """
        if requests_per_minute < 1 or requests_per_hour < 1:
            raise ValueError("Rate limit ceilings must be at least 1")
        self.requests_per_minute = requests_per_minute
        self.requests_per_hour = requests_per_hour
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.cleanup_probability = cleanup_probability
        self._clock = clock
        self._random = random_source
        self._key_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    @contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        """
        Hold the lock currently registered for ``key``.

        Eviction unregisters a key's lock while holding it, so a waiter that
        wakes up on an unregistered lock retries with the current one.
        """
        while True:
            lock = self._lock_for(key)
            lock.acquire()
            with self._locks_guard:
                current = self._key_locks.get(key) is lock
            if current:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def admit(self, client_key: str) -> None:
        """
        Count one call for ``client_key`` or reject it.

        Raises:
            RateLimitError: If the minute or hour ceiling has been reached
        """
        if self._random() < self.cleanup_probability:
            self.cleanup_expired()

        with self._locked(client_key):
            now = self._clock()
            windows = self.store.get(client_key)
            if windows is None:
                windows = ClientWindows.fresh(now)

            if windows.per_minute.is_expired(now):
                windows.per_minute = RateLimitWindow(count=0, reset_at=now + MINUTE_MS)

            if windows.per_minute.count >= self.requests_per_minute:
                self.store.set(client_key, windows)
                retry_after = math.ceil((windows.per_minute.reset_at - now) / 1000)
                logger.warning(
                    f"🚦 Rate limit hit for {client_key}: {self.requests_per_minute}/minute "
                    f"(resets in {retry_after}s)"
                )
                raise RateLimitError(
                    f"Rate limit exceeded: {self.requests_per_minute} requests per minute. "
                    f"Please try again in {retry_after} seconds.",
                    retry_after_seconds=retry_after,
                    details={"window": "minute", "limit": self.requests_per_minute}
                )

            if windows.per_hour.is_expired(now):
                windows.per_hour = RateLimitWindow(count=0, reset_at=now + HOUR_MS)

            if windows.per_hour.count >= self.requests_per_hour:
                self.store.set(client_key, windows)
                remaining_ms = windows.per_hour.reset_at - now
                retry_after_hours = math.ceil(remaining_ms / HOUR_MS)
                logger.warning(
                    f"🚦 Rate limit hit for {client_key}: {self.requests_per_hour}/hour "
                    f"(resets in {retry_after_hours}h)"
                )
                raise RateLimitError(
                    f"Rate limit exceeded: {self.requests_per_hour} requests per hour. "
                    f"Please try again in {retry_after_hours} hour(s).",
                    retry_after_seconds=math.ceil(remaining_ms / 1000),
                    details={"window": "hour", "limit": self.requests_per_hour}
                )

            windows.per_minute.count += 1
            windows.per_hour.count += 1
            self.store.set(client_key, windows)

    def cleanup_expired(self) -> int:
        """
        Evict entries whose minute and hour windows have both expired.

        Returns:
            Number of evicted client keys
        """
        removed = 0
        for key in self.store.keys():
            with self._locked(key):
                windows = self.store.get(key)
                if windows is None or not windows.fully_expired(self._clock()):
                    continue
                self.store.delete(key)
                with self._locks_guard:
                    self._key_locks.pop(key, None)
                removed += 1
        if removed:
            logger.debug(f"🧹 Rate limiter evicted {removed} expired client entries")
        return removed


# Global rate limiter instance (initialized lazily)
_rate_limiter: Optional[ClientRateLimiter] = None


def get_rate_limiter() -> ClientRateLimiter:
    """
    Get the process-wide rate limiter, creating it from settings on first use.

    Returns:
        ClientRateLimiter: Shared instance
    """
    global _rate_limiter
    if _rate_limiter is None:
        from llm_orchestrator.config import get_settings

        config = get_settings().get_rate_limit_config()
        _rate_limiter = ClientRateLimiter(
            requests_per_minute=config["requests_per_minute"],
            requests_per_hour=config["requests_per_hour"],
            cleanup_probability=config["cleanup_probability"]
        )
        logger.info(
            f"✅ Rate limiter initialized ({config['requests_per_minute']}/min, "
            f"{config['requests_per_hour']}/hour per client)"
        )
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Drop the shared rate limiter so the next access rebuilds it."""
    global _rate_limiter
    _rate_limiter = None
