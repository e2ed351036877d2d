"""Base class for rate-limited service clients."""

from __future__ import annotations

import logging
import time
from typing import Callable, Generic, Optional, TypeVar

from aimodeldb.clients.errors import RateLimitExceeded
from aimodeldb.net.rate_governor import RateGovernor, RateLimitProfile
from aimodeldb.net.rate_limiter import RateLimiter

T = TypeVar("T")


class BaseClient(Generic[T]):
    """Provide rate-limited execution of outbound requests.

    The pacing limiter blocks; the optional governor is a shared quota that
    rejects instead of waiting.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        *,
        logger: Optional[logging.Logger] = None,
        governor: Optional[RateGovernor] = None,
        governor_key: Optional[str] = None,
        governor_profile: Optional[RateLimitProfile] = None,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._logger = logger or logging.getLogger(self.__class__.__name__)
        self._governor = governor
        self._governor_key = governor_key
        self._governor_profile = governor_profile

    def _check_governor(self) -> None:
        if (
            self._governor is None
            or self._governor_key is None
            or self._governor_profile is None
        ):
            return
        result = self._governor.check(
            self._governor_key,
            self._governor_profile.max_attempts,
            self._governor_profile.window_ms,
        )
        if not result.allowed:
            raise RateLimitExceeded(self._governor_key, result.retry_after)

    def _execute_with_rate_limit(
        self,
        operation: Callable[[], T],
        *,
        name: Optional[str] = None,
    ) -> T:
        """Run ``operation`` after waiting for rate-limiter availability."""
        label = name or getattr(operation, "__name__", "<anonymous>")
        self._check_governor()
        self._rate_limiter.acquire()

        started_at = time.perf_counter()
        try:
            return operation()
        finally:
            elapsed_ms = (time.perf_counter() - started_at) * 1000.0
            if self._logger.isEnabledFor(logging.DEBUG):
                self._logger.debug(
                    "Operation %s completed in %.2f ms",
                    label,
                    elapsed_ms,
                )
