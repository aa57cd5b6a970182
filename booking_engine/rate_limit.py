"""
Sliding-window rate limiting per actor and operation.

Each key keeps a deque of recent request times. Timestamps older than the
window are evicted lazily on every hit, so idle keys cost nothing.
"""

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from booking_engine.config import RateLimitConfig, settings
from booking_engine.errors import Ok, Result, rate_limited

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    """Budget of max_requests per window_seconds for one operation."""
    name: str
    max_requests: int
    window_seconds: int
    message: str = "Too many requests. Please try again later."


def default_rules(config: Optional[RateLimitConfig] = None) -> dict[str, RateLimitRule]:
    config = config or settings.rate_limit
    return {
        "create": RateLimitRule(
            "create", config.create_max_requests, config.create_window_seconds,
            "Too many booking requests. Please try again later.",
        ),
        "state_change": RateLimitRule(
            "state_change", config.state_change_max_requests, config.state_change_window_seconds,
            "Too many status changes. Please slow down.",
        ),
        "update": RateLimitRule(
            "update", config.update_max_requests, config.update_window_seconds,
            "Too many booking updates. Please slow down.",
        ),
    }


class SlidingWindowRateLimiter:
    """Thread-safe sliding-window limiter keyed by (rule, actor)."""

    def __init__(
        self,
        rules: Optional[dict[str, RateLimitRule]] = None,
        clock: Callable[[], float] = time.monotonic,
        enabled: Optional[bool] = None,
    ) -> None:
        self.rules = rules if rules is not None else default_rules()
        self.enabled = settings.rate_limit.enabled if enabled is None else enabled
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
                self._hits[key] = deque()
            return lock

    def acquire(self, rule_name: str, actor_id: str) -> Result[None]:
        """Record one request for the actor, or refuse it with retry-after."""
        if not self.enabled:
            return Ok(None)
        rule = self.rules[rule_name]
        key = f"{rule.name}:{actor_id}"
        with self._lock_for(key):
            now = self._clock()
            hits = self._hits[key]
            while hits and hits[0] <= now - rule.window_seconds:
                hits.popleft()
            if len(hits) >= rule.max_requests:
                retry_after = max(1, math.ceil(hits[0] + rule.window_seconds - now))
                logger.warning(
                    "Rate limit hit: %s for %s (retry in %ds)", rule.name, actor_id, retry_after
                )
                return rate_limited(rule.message, retry_after)
            hits.append(now)
        return Ok(None)

    def reset(self, actor_id: Optional[str] = None) -> None:
        """Forget recorded hits, for one actor or for everyone."""
        with self._registry_lock:
            for key, hits in self._hits.items():
                if actor_id is None or key.endswith(f":{actor_id}"):
                    hits.clear()
