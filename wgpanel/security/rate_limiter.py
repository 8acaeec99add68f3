"""
Login Rate Limiter

Per-client token bucket: each source address may burst up to
`requests` attempts, refilled at `requests / window_seconds` per second.
State is in-process only and resets on restart.

A background task prunes addresses idle for longer than IDLE_TTL so the
table cannot grow without bound.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

PRUNE_INTERVAL_SECONDS = 60
IDLE_TTL_SECONDS = 180


@dataclass
class _Bucket:
    tokens: float
    updated_at: float
    last_seen: float


class RateLimiter:
    """
    Token bucket rate limiter keyed by client address

    Attributes:
        requests: Bucket capacity (burst size)
        window_seconds: Time to refill a full bucket
    """

    def __init__(
        self,
        requests: int = 5,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        if requests <= 0 or window_seconds <= 0:
            raise ValueError("requests and window_seconds must be positive")

        self.requests = requests
        self.window_seconds = window_seconds
        self.rate = requests / window_seconds
        self._clock = clock
        self._buckets: Dict[str, _Bucket] = {}
        self._lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None

    def allow(self, key: str) -> bool:
        """
        Consume one token for a client

        Args:
            key: Client address

        Returns:
            True if the request may proceed
        """
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket(tokens=float(self.requests), updated_at=now, last_seen=now)
                self._buckets[key] = bucket
            else:
                elapsed = now - bucket.updated_at
                bucket.tokens = min(float(self.requests), bucket.tokens + elapsed * self.rate)
                bucket.updated_at = now
                bucket.last_seen = now

            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return True

        logger.warning(f"Rate limit exceeded for {key}")
        return False

    def prune(self, max_idle: float = IDLE_TTL_SECONDS) -> int:
        """
        Drop clients not seen for longer than max_idle seconds

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            stale = [key for key, b in self._buckets.items() if now - b.last_seen > max_idle]
            for key in stale:
                del self._buckets[key]
        if stale:
            logger.debug(f"Pruned {len(stale)} idle rate limiter entries")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    async def start(self) -> None:
        """Start background pruning"""
        if self._task is not None and not self._task.done():
            logger.warning("Rate limiter pruning already running")
            return
        self._task = asyncio.create_task(self._prune_loop())

    async def stop(self) -> None:
        """Stop background pruning"""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _prune_loop(self) -> None:
        while True:
            await asyncio.sleep(PRUNE_INTERVAL_SECONDS)
            self.prune()
