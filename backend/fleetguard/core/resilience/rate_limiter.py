"""
Per-client outbound rate limiting with backoff.

Each external client owns its own ``RateLimiter``; nothing here is shared
between clients or kept at module level.
"""

import asyncio
import math
import random
import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from fleetguard.core.error_handling.exceptions import RateLimitExceededException

logger = logging.getLogger(__name__)


class BackoffStrategy(Enum):
    """Backoff strategy types"""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    EXPONENTIAL_JITTER = "exponential_jitter"


@dataclass
class RateLimitConfig:
    """Configuration for one client's outbound budget"""
    max_requests: int = 30
    time_window_seconds: float = 60.0

    # Burst handling
    burst_capacity: int = 5
    burst_refill_rate: float = 1.0  # tokens per second

    # Backoff after upstream quota signals
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL_JITTER
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 300.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1


@dataclass
class TokenBucket:
    """Token bucket for burst control"""
    capacity: int
    refill_rate: float
    clock: Callable[[], float] = time.monotonic
    tokens: float = field(init=False)
    last_refill: float = field(init=False)

    def __post_init__(self):
        self.tokens = float(self.capacity)
        self.last_refill = self.clock()

    def try_consume(self, tokens: int = 1) -> bool:
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def seconds_until_available(self, tokens: int = 1) -> float:
        missing = tokens - self.tokens
        if missing <= 0:
            return 0.0
        return missing / self.refill_rate if self.refill_rate > 0 else math.inf

    def _refill(self):
        now = self.clock()
        elapsed = now - self.last_refill
        self.last_refill = now
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)


@dataclass
class RateLimitMetrics:
    allowed_requests: int = 0
    rejected_requests: int = 0
    backoff_triggered: int = 0
    consecutive_failures: int = 0


class BackoffCalculator:
    """Calculates backoff delays"""

    @staticmethod
    def calculate_backoff(
        strategy: BackoffStrategy,
        attempt: int,
        initial_delay: float,
        max_delay: float,
        multiplier: float = 2.0,
        jitter_factor: float = 0.1
    ) -> float:
        if strategy == BackoffStrategy.FIXED:
            delay = initial_delay
        else:
            delay = initial_delay * (multiplier ** (attempt - 1))
            if strategy == BackoffStrategy.EXPONENTIAL_JITTER:
                delay += delay * jitter_factor * (random.random() - 0.5)

        return max(0.0, min(max_delay, delay))


class RateLimiter:
    """
    Sliding window plus token bucket limiter for a single external client.

    ``acquire()`` never waits: when the budget is exhausted it raises
    ``RateLimitExceededException`` and the caller reports the service as
    unavailable for this scan. ``record_failure()`` is called when the upstream
    itself signals a quota problem (HTTP 429) and starts a backoff period.
    """

    def __init__(
        self,
        name: str,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.config = config or RateLimitConfig()
        self.clock = clock
        self.metrics = RateLimitMetrics()

        self.token_bucket = TokenBucket(
            capacity=self.config.burst_capacity,
            refill_rate=self.config.burst_refill_rate,
            clock=clock
        )
        self.request_times: List[float] = []
        self.backoff_until: float = 0.0
        self.lock = asyncio.Lock()

    async def acquire(self, tokens: int = 1) -> None:
        async with self.lock:
            now = self.clock()

            if now < self.backoff_until:
                self.metrics.rejected_requests += 1
                raise RateLimitExceededException(
                    self.name, retry_after=math.ceil(self.backoff_until - now)
                )

            window_start = now - self.config.time_window_seconds
            self.request_times = [t for t in self.request_times if t > window_start]
            if len(self.request_times) + tokens > self.config.max_requests:
                self.metrics.rejected_requests += 1
                oldest = self.request_times[0] if self.request_times else now
                retry_after = oldest + self.config.time_window_seconds - now
                raise RateLimitExceededException(self.name, retry_after=max(1, math.ceil(retry_after)))

            if not self.token_bucket.try_consume(tokens):
                self.metrics.rejected_requests += 1
                raise RateLimitExceededException(
                    self.name,
                    retry_after=max(1, math.ceil(self.token_bucket.seconds_until_available(tokens)))
                )

            self.request_times.extend([now] * tokens)
            self.metrics.allowed_requests += 1

    def record_success(self) -> None:
        self.metrics.consecutive_failures = 0

    def record_failure(self, retry_after: Optional[float] = None) -> float:
        """Upstream refused us; back off and return the backoff length in seconds"""
        self.metrics.consecutive_failures += 1
        delay = BackoffCalculator.calculate_backoff(
            strategy=self.config.backoff_strategy,
            attempt=min(self.metrics.consecutive_failures, 10),
            initial_delay=self.config.initial_backoff_seconds,
            max_delay=self.config.max_backoff_seconds,
            multiplier=self.config.backoff_multiplier,
            jitter_factor=self.config.jitter_factor
        )
        if retry_after:
            delay = max(delay, min(float(retry_after), self.config.max_backoff_seconds))

        self.backoff_until = max(self.backoff_until, self.clock() + delay)
        self.metrics.backoff_triggered += 1
        logger.warning(
            f"[RATE] '{self.name}' backing off for {delay:.1f}s "
            f"after {self.metrics.consecutive_failures} upstream quota signal(s)"
        )
        return delay

    def get_metrics(self) -> Dict[str, Any]:
        now = self.clock()
        return {
            "name": self.name,
            "allowed_requests": self.metrics.allowed_requests,
            "rejected_requests": self.metrics.rejected_requests,
            "backoff_triggered": self.metrics.backoff_triggered,
            "consecutive_failures": self.metrics.consecutive_failures,
            "current_backoff_seconds": max(0.0, self.backoff_until - now),
            "requests_in_window": len(self.request_times),
        }
