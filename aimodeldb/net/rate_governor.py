"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Keyed fixed-window rate governor shared by sync, validation and the proxy.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Protocol, Tuple

from aimodeldb.config import (DATA_SOURCE_MAX_ATTEMPTS, DATA_SOURCE_PREFIXES,
                              DEFAULT_WINDOW_MS, GITHUB_MAX_ATTEMPTS,
                              GITHUB_PREFIXES, LLM_PROVIDER_MAX_ATTEMPTS,
                              LLM_PROVIDER_PREFIXES, RETENTION_SECONDS,
                              SWEEP_INTERVAL_SECONDS)

_LOGGER = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    """Counter state for one key. Times are epoch milliseconds."""

    key: str
    attempts: int
    window_start: int
    last_attempt: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: int
    retry_after: Optional[int] = None


@dataclass(frozen=True)
class RateLimitProfile:
    max_attempts: int
    window_ms: int


class RateLimitStore(Protocol):
    """Storage for rate-limit entries; swap for an external cache if needed."""

    def get(self, key: str) -> Optional[RateLimitEntry]:
        """Return the entry for ``key`` or ``None``."""

    def set(self, entry: RateLimitEntry) -> None:
        """Create or replace the entry for ``entry.key``."""

    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    def items(self) -> Iterator[Tuple[str, RateLimitEntry]]:
        """Iterate over a snapshot of stored entries."""


class InMemoryRateLimitStore(RateLimitStore):
    """Dictionary-backed entry store."""

    def __init__(self) -> None:
        self._entries: Dict[str, RateLimitEntry] = {}

    def get(self, key: str) -> Optional[RateLimitEntry]:
        return self._entries.get(key)

    def set(self, entry: RateLimitEntry) -> None:
        self._entries[entry.key] = entry

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def items(self) -> Iterator[Tuple[str, RateLimitEntry]]:
        return iter(list(self._entries.items()))

    def __len__(self) -> int:
        return len(self._entries)


class RateGovernor:
    """Admit or reject operations against a per-key fixed-window quota.

    The first call for a key opens a window and counts as attempt one.
    Calls inside the window are admitted until ``max_attempts`` is reached;
    the window resets wholesale on the first call after it has elapsed.
    All reads and writes of the store happen under a single lock.
    """

    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        *,
        clock: Optional[Callable[[], float]] = None,
        retention_seconds: float = RETENTION_SECONDS,
    ) -> None:
        self._store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock or time.time
        self._retention_ms = int(retention_seconds * 1000)
        self._lock = threading.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def check(
        self, key: str, max_attempts: int, window_ms: int
    ) -> RateLimitResult:
        """Count one attempt for ``key`` and report whether it is admitted."""

        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive.")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive.")

        with self._lock:
            now = self._now_ms()
            entry = self._store.get(key)

            if entry is None or now - entry.window_start >= window_ms:
                entry = RateLimitEntry(
                    key=key, attempts=1, window_start=now, last_attempt=now
                )
                self._store.set(entry)
                return RateLimitResult(
                    allowed=True,
                    remaining=max_attempts - 1,
                    reset_at=now + window_ms,
                )

            reset_at = entry.window_start + window_ms
            entry.last_attempt = now
            if entry.attempts >= max_attempts:
                self._store.set(entry)
                retry_after = max(1, math.ceil((reset_at - now) / 1000))
                _LOGGER.debug(
                    "Rate limit exceeded for %s (%d/%d), retry in %ss",
                    key,
                    entry.attempts,
                    max_attempts,
                    retry_after,
                )
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=retry_after,
                )

            entry.attempts += 1
            self._store.set(entry)
            return RateLimitResult(
                allowed=True,
                remaining=max_attempts - entry.attempts,
                reset_at=reset_at,
            )

    def sweep(self, now: Optional[float] = None) -> int:
        """Purge entries idle beyond the retention horizon; return a count."""

        with self._lock:
            now_ms = int(now * 1000) if now is not None else self._now_ms()
            stale = [
                key
                for key, entry in self._store.items()
                if now_ms - entry.last_attempt > self._retention_ms
                and now_ms - entry.window_start > self._retention_ms
            ]
            for key in stale:
                self._store.delete(key)

        if stale:
            _LOGGER.info("Purged %d idle rate-limit entries", len(stale))
        return len(stale)

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one key, or every key when ``key`` is omitted."""

        with self._lock:
            if key is not None:
                self._store.delete(key)
                return
            for existing, _ in self._store.items():
                self._store.delete(existing)

    def stats(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {
                key: {
                    "attempts": entry.attempts,
                    "windowStart": entry.window_start,
                    "lastAttempt": entry.last_attempt,
                }
                for key, entry in self._store.items()
            }


def _build_profiles() -> Dict[str, RateLimitProfile]:
    profiles: Dict[str, RateLimitProfile] = {}
    for prefix in DATA_SOURCE_PREFIXES:
        profiles[prefix] = RateLimitProfile(
            DATA_SOURCE_MAX_ATTEMPTS, DEFAULT_WINDOW_MS
        )
    for prefix in GITHUB_PREFIXES:
        profiles[prefix] = RateLimitProfile(
            GITHUB_MAX_ATTEMPTS, DEFAULT_WINDOW_MS
        )
    for prefix in LLM_PROVIDER_PREFIXES:
        profiles[prefix] = RateLimitProfile(
            LLM_PROVIDER_MAX_ATTEMPTS, DEFAULT_WINDOW_MS
        )
    return profiles


RESOURCE_PROFILES: Dict[str, RateLimitProfile] = _build_profiles()
LLM_PROVIDER_PROFILE = RateLimitProfile(
    LLM_PROVIDER_MAX_ATTEMPTS, DEFAULT_WINDOW_MS
)
DATA_SOURCE_PROFILE = RateLimitProfile(
    DATA_SOURCE_MAX_ATTEMPTS, DEFAULT_WINDOW_MS
)


def profile_for_path(path: str) -> Optional[Tuple[str, RateLimitProfile]]:
    """Return ``(prefix, profile)`` for a guarded request path."""

    for prefix, profile in RESOURCE_PROFILES.items():
        if path == prefix or path.startswith(prefix + "/"):
            return prefix, profile
    return None


class Sweeper:
    """Background thread that periodically calls :meth:`RateGovernor.sweep`."""

    def __init__(
        self, governor: RateGovernor, interval_seconds: float
    ) -> None:
        self._governor = governor
        self._interval = interval_seconds
        self._stopped = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name="rate-governor-sweeper", daemon=True
        )

    def start(self) -> "Sweeper":
        self._thread.start()
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stopped.set()
        if self._thread.is_alive():
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            self._governor.sweep()


def start_sweeper(
    governor: RateGovernor,
    interval_seconds: float = SWEEP_INTERVAL_SECONDS,
) -> Sweeper:
    """Start periodic housekeeping and return a handle with ``stop()``."""

    return Sweeper(governor, interval_seconds).start()
