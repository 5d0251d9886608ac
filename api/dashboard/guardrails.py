import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from fastapi import Request

from .schemas import CacheStats, QuotaStatus, RateLimitStatus

UNKNOWN_CLIENT = "unknown"
ENDPOINT_PREFIX = "weather_"

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitConfig:
    window_seconds: float = 60
    general_limit: int = 100
    endpoint_limit: int = 10


@dataclass(frozen=True)
class RateLimitResult:
    limited: bool
    remaining: int
    reset_time: float
    limit: int
    retry_after: int = 0


class SlidingWindowRateLimiter:
    """
    In-memory, per-process sliding window rate limiter.

    Every identity (an IP, or a namespaced IP such as ``weather_<ip>``) owns a
    deque of request instants. Instants at or before ``now - window`` are
    pruned before each decision, so the quota always covers the trailing
    window ending at the current instant.
    """
    def __init__(self, cfg: RateLimitConfig, clock: Clock = time.time):
        self.cfg = cfg
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, q: Deque[float], now: float) -> None:
        window_start = now - self.cfg.window_seconds
        while q and q[0] <= window_start:
            q.popleft()

    def check_and_record(self, identity: str, limit: int, now: Optional[float] = None) -> RateLimitResult:
        if now is None:
            now = self._clock()
        with self._lock:
            q = self._hits.get(identity)
            if q is None:
                q = deque()
                self._hits[identity] = q

            self._prune(q, now)

            # rejected attempts are not recorded
            if len(q) >= limit:
                reset_time = q[0] + self.cfg.window_seconds if q else now + self.cfg.window_seconds
                return RateLimitResult(
                    limited=True,
                    remaining=0,
                    reset_time=reset_time,
                    limit=limit,
                    retry_after=max(0, math.ceil(reset_time - now)),
                )

            q.append(now)
            return RateLimitResult(
                limited=False,
                remaining=limit - len(q),
                reset_time=now + self.cfg.window_seconds,
                limit=limit,
            )

    def check_general(self, ip: str) -> RateLimitResult:
        return self.check_and_record(ip, self.cfg.general_limit)

    def check_endpoint(self, ip: str) -> RateLimitResult:
        return self.check_and_record(ENDPOINT_PREFIX + ip, self.cfg.endpoint_limit)

    def _peek(self, identity: str, limit: int, now: float) -> QuotaStatus:
        with self._lock:
            q = self._hits.get(identity)
            if q is not None:
                self._prune(q, now)
            count = len(q) if q else 0
            if count >= limit and q:
                reset_time = q[0] + self.cfg.window_seconds
            else:
                reset_time = now + self.cfg.window_seconds
        return QuotaStatus(
            limit=limit,
            remaining=max(0, limit - count),
            reset_time=reset_time,
            limited=count >= limit,
        )

    def status(self, ip: str) -> RateLimitStatus:
        """Snapshot of both quotas for ``ip`` without consuming a slot."""
        now = self._clock()
        return RateLimitStatus(
            general=self._peek(ip, self.cfg.general_limit, now),
            weather_api=self._peek(ENDPOINT_PREFIX + ip, self.cfg.endpoint_limit, now),
        )

    def cleanup(self) -> int:
        """Prune every identity and forget the ones left empty."""
        now = self._clock()
        removed = 0
        with self._lock:
            for identity in list(self._hits):
                q = self._hits[identity]
                self._prune(q, now)
                if not q:
                    del self._hits[identity]
                    removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._hits)


class TTLCache:
    """
    Simple in-memory TTL cache.
    Stores JSON-serializable response payloads under string keys.

    Expiry is enforced lazily on read; ``cleanup`` reclaims entries that are
    never read again. There are no per-entry timers, so an unread entry can
    outlive its TTL by up to one sweep interval.
    """
    def __init__(self, default_ttl: float = 5 * 60, clock: Clock = time.time):
        self.default_ttl = default_ttl
        self._clock = clock
        self._store: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            expires_at, value = item
            if now > expires_at:
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        expires_at = self._clock() + ttl
        with self._lock:
            self._store[key] = (expires_at, value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (expires_at, _) in self._store.items() if now > expires_at]
            for key in expired:
                del self._store[key]
        return len(expired)

    def stats(self) -> CacheStats:
        now = self._clock()
        with self._lock:
            total = len(self._store)
            expired = sum(1 for expires_at, _ in self._store.values() if now > expires_at)
        return CacheStats(total_items=total, valid_items=total - expired, expired_items=expired)

    def __len__(self) -> int:
        return len(self._store)


def client_identity(request: Request) -> str:
    """Rate-limit identity for a request; ``"unknown"`` when there is no peer address."""
    client = getattr(request, "client", None)
    host = getattr(client, "host", None) if client else None
    return host or UNKNOWN_CLIENT
