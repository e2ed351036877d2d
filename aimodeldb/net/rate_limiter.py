"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Blocking token-bucket pacing for outbound provider calls.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Dict, Optional

from aimodeldb.config import DEFAULT_TIER, TIER_LIMITS


class RateLimiter:
    """Enforce a maximum number of operations per time window.

    The limiter implements a token-bucket algorithm. Each call to
    :meth:`acquire` consumes a single token. Tokens refill at a constant rate
    defined by ``max_calls`` over ``period_seconds``. When
    ``min_interval_seconds`` is set, consecutive acquisitions are also spaced
    at least that far apart.
    """

    def __init__(
        self,
        max_calls: int,
        period_seconds: float,
        *,
        min_interval_seconds: float = 0.0,
        time_fn: Optional[Callable[[], float]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ) -> None:
        if max_calls <= 0:
            raise ValueError("max_calls must be positive.")
        if period_seconds <= 0:
            raise ValueError("period_seconds must be positive.")
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must not be negative.")

        self._max_calls = float(max_calls)
        self._period_seconds = float(period_seconds)
        self._rate_per_second = self._max_calls / self._period_seconds
        self._time_per_token = self._period_seconds / self._max_calls
        self._min_interval = float(min_interval_seconds)
        self._time_fn = time_fn or time.monotonic
        self._sleep_fn = sleep_fn or time.sleep

        self._lock = threading.Lock()
        self._tokens = self._max_calls
        self._last_refill = self._time_fn()
        self._last_acquired: Optional[float] = None

    def acquire(self) -> None:
        """Block until a token is available."""
        while True:
            with self._lock:
                now = self._time_fn()
                self._refill_tokens(now)

                spacing_wait = 0.0
                if self._last_acquired is not None:
                    spacing_wait = self._min_interval - (
                        now - self._last_acquired
                    )

                if self._tokens >= 1.0 and spacing_wait <= 0:
                    self._tokens -= 1.0
                    self._last_acquired = now
                    return

                deficit = max(0.0, 1.0 - self._tokens)
                wait_time = max(deficit * self._time_per_token, spacing_wait)

            # Sleep outside the critical section to avoid blocking
            # other threads.
            self._sleep_fn(wait_time)

    def _refill_tokens(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return

        replenished = elapsed * self._rate_per_second
        self._tokens = min(self._max_calls, self._tokens + replenished)
        self._last_refill = now


@dataclass(frozen=True)
class ProviderTier:
    """Named pacing profile for an external LLM provider account."""

    name: str
    max_requests_per_minute: int
    min_interval_ms: int

    @property
    def concurrency(self) -> int:
        # Lower tiers serialise; higher tiers fan out, capped at four workers.
        if self.max_requests_per_minute <= 20:
            return 1
        if self.max_requests_per_minute <= 50:
            return 2
        if self.max_requests_per_minute <= 100:
            return 3
        return 4


PROVIDER_TIERS: Dict[str, ProviderTier] = {
    name: ProviderTier(
        name=name,
        max_requests_per_minute=limits["max_requests_per_minute"],
        min_interval_ms=limits["min_interval_ms"],
    )
    for name, limits in TIER_LIMITS.items()
}


def get_tier(name: Optional[str]) -> ProviderTier:
    """Resolve a tier name, raising ``ValueError`` for unknown names."""
    key = (name or DEFAULT_TIER).strip().lower()
    try:
        return PROVIDER_TIERS[key]
    except KeyError as exc:
        raise ValueError(f"Unknown provider tier '{name}'") from exc


def limiter_for_tier(
    name: Optional[str],
    *,
    time_fn: Optional[Callable[[], float]] = None,
    sleep_fn: Optional[Callable[[float], None]] = None,
) -> RateLimiter:
    tier = get_tier(name)
    return RateLimiter(
        max_calls=tier.max_requests_per_minute,
        period_seconds=60.0,
        min_interval_seconds=tier.min_interval_ms / 1000.0,
        time_fn=time_fn,
        sleep_fn=sleep_fn,
    )


def concurrency_for_tier(name: Optional[str]) -> int:
    return get_tier(name).concurrency
