"""
Cooldown Tracker — prevent alert storms from one ongoing condition.

Keyed by (subject_id, normalized_type). `should_fire` is a single atomic
check-and-set: within a cooldown window exactly one caller sees True.

Two backends:
1. CooldownTracker: process-local, LRU + age bounded, lost on restart
   (a lost entry allows at most one extra alert)
2. RedisCooldownTracker: SET NX PX across instances, falling back to a
   local tracker whenever Redis errors

The tracker only gates alert creation. It never influences danger
classification or severity. A fire whose alert could not be stored
is released so the next event can raise it.
"""

import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Protocol

import structlog

from carewatch.config import settings
from carewatch.services.clock import utcnow

logger = structlog.get_logger(__name__)

CooldownKey = tuple[str, str]


class CooldownGate(Protocol):
    """Protocol for cooldown backends."""

    async def should_fire(
        self,
        key: CooldownKey,
        now: Optional[datetime] = None,
        window: Optional[timedelta] = None,
    ) -> bool:
        ...

    async def release(self, key: CooldownKey, fired_at: datetime) -> None:
        ...


class CooldownTracker:
    """
    Process-local cooldown store.

    Entries are kept in last-fired order so eviction only ever inspects
    the head: anything older than the widest window seen, or beyond
    `max_entries`, is dropped.
    """

    def __init__(
        self,
        default_window: timedelta = timedelta(minutes=2),
        max_entries: int = 10_000,
    ):
        self.default_window = default_window
        self.max_entries = max(1, max_entries)
        self._last_fired: "OrderedDict[CooldownKey, datetime]" = OrderedDict()
        self._retention = default_window
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls) -> "CooldownTracker":
        return cls(
            default_window=timedelta(milliseconds=settings.alert_cooldown_ms),
            max_entries=settings.cooldown_max_entries,
        )

    def check_and_set(
        self,
        key: CooldownKey,
        now: Optional[datetime] = None,
        window: Optional[timedelta] = None,
    ) -> bool:
        now = now or utcnow()
        window = self.default_window if window is None else window

        with self._lock:
            if window > self._retention:
                self._retention = window

            last = self._last_fired.get(key)
            if last is not None and now - last < window:
                logger.debug(
                    "cooldown_active",
                    key=key,
                    elapsed_ms=int((now - last).total_seconds() * 1000),
                    window_ms=int(window.total_seconds() * 1000),
                )
                return False

            self._last_fired[key] = now
            self._last_fired.move_to_end(key)
            self._evict(now)
            return True

    async def should_fire(
        self,
        key: CooldownKey,
        now: Optional[datetime] = None,
        window: Optional[timedelta] = None,
    ) -> bool:
        return self.check_and_set(key, now, window)

    def discard(self, key: CooldownKey, fired_at: datetime) -> bool:
        """Undo the fire recorded at `fired_at`; a newer fire is kept."""
        with self._lock:
            if self._last_fired.get(key) != fired_at:
                return False
            del self._last_fired[key]
            return True

    async def release(self, key: CooldownKey, fired_at: datetime) -> None:
        if self.discard(key, fired_at):
            logger.info("cooldown_released", key=key)

    def last_fired(self, key: CooldownKey) -> Optional[datetime]:
        with self._lock:
            return self._last_fired.get(key)

    def reset(self) -> None:
        with self._lock:
            self._last_fired.clear()
            self._retention = self.default_window

    def __len__(self) -> int:
        return len(self._last_fired)

    def _evict(self, now: datetime) -> None:
        while self._last_fired:
            oldest_key, fired = next(iter(self._last_fired.items()))
            over_capacity = len(self._last_fired) > self.max_entries
            if not over_capacity and now - fired < self._retention:
                break
            self._last_fired.popitem(last=False)


class RedisCooldownTracker:
    """
    Cross-instance cooldown via `SET key ts NX PX window`.

    Redis expiry runs on the server clock, so `now` is stored for
    inspection only. Any Redis failure is logged and the decision falls
    to the local tracker; classification never waits on Redis.
    """

    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[object]],
        fallback: CooldownTracker,
        prefix: str = "carewatch:cooldown",
    ):
        self._redis_factory = redis_factory
        self._fallback = fallback
        self._prefix = prefix

    def _redis_key(self, key: CooldownKey) -> str:
        subject_id, event_type = key
        return f"{self._prefix}:{subject_id}:{event_type}"

    async def should_fire(
        self,
        key: CooldownKey,
        now: Optional[datetime] = None,
        window: Optional[timedelta] = None,
    ) -> bool:
        now = now or utcnow()
        window = self._fallback.default_window if window is None else window
        try:
            client = await self._redis_factory()
            if client is None:
                return self._fallback.check_and_set(key, now, window)
            stored = await client.set(
                self._redis_key(key),
                now.isoformat(),
                nx=True,
                px=max(1, int(window.total_seconds() * 1000)),
            )
            return bool(stored)
        except Exception as e:
            logger.warning("cooldown_backend_unavailable", backend="redis", error=str(e))
            return self._fallback.check_and_set(key, now, window)

    @property
    def default_window(self) -> timedelta:
        return self._fallback.default_window

    async def release(self, key: CooldownKey, fired_at: datetime) -> None:
        """Delete the Redis key only while it still holds this fire's stamp."""
        self._fallback.discard(key, fired_at)
        try:
            client = await self._redis_factory()
            if client is None:
                return
            redis_key = self._redis_key(key)
            stored = await client.get(redis_key)
            if isinstance(stored, bytes):
                stored = stored.decode()
            if stored == fired_at.isoformat():
                await client.delete(redis_key)
                logger.info("cooldown_released", key=key, backend="redis")
        except Exception as e:
            logger.warning("cooldown_release_failed", backend="redis", error=str(e))
