"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Validation job scheduler.

Jobs wait in a FIFO queue and are dispatched by a small worker pool whose
size follows the provider tier. Every dispatch is admitted by the shared
rate governor and paced by the tier limiter. Finished jobs move to a
bounded archive so that memory stays flat even when nobody clears it.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections import OrderedDict, deque
from typing import (Any, Callable, Deque, Dict, Iterable, List, Mapping,
                    Optional, Sequence, Tuple, Union)

import requests  # type: ignore[import]

from aimodeldb.clients.errors import (NoProviderConfigured,
                                      ProviderHTTPError,
                                      ProviderResponseError,
                                      RateLimitExceeded)
from aimodeldb.clients.providers import (NO_PROVIDER_MESSAGE, ProviderConfig,
                                         select_provider)
from aimodeldb.config import (ARCHIVE_LIMIT, BACKOFF_BASE_SECONDS,
                              DEFAULT_MAX_ATTEMPTS, DEFAULT_TIER,
                              MAX_BACKOFF_SECONDS, MAX_PENDING_JOBS)
from aimodeldb.models import (JobStatus, Model, ProgressEvent, ValidationJob,
                              ValidationSource, new_job_id)
from aimodeldb.net.rate_governor import LLM_PROVIDER_PROFILE, RateGovernor
from aimodeldb.net.rate_limiter import (RateLimiter, concurrency_for_tier,
                                        get_tier, limiter_for_tier)
from aimodeldb.services.merge import MergeOrigin
from aimodeldb.storage.errors import StoreError

_LOGGER = logging.getLogger(__name__)

EnrichFn = Callable[
    [Model, Sequence[ValidationSource], ProviderConfig],
    Union[Mapping[str, Any], Model],
]
ProviderSource = Union[
    Sequence[ProviderConfig], Callable[[], Sequence[ProviderConfig]]
]

CONFIGURATION = "configuration"


class SchedulerError(RuntimeError):
    """Raised for invalid scheduler usage."""


class QueueFull(SchedulerError):
    """Raised when a submission would exceed the pending job bound."""


def classify_error(exc: BaseException) -> Tuple[str, str]:
    """Map a dispatch error to ``(category, operator message)``."""

    if isinstance(exc, NoProviderConfigured):
        return CONFIGURATION, str(exc) or NO_PROVIDER_MESSAGE
    if isinstance(exc, RateLimitExceeded):
        return "rate_limited", (
            f"Rate limit reached; retry after {exc.retry_after}s."
        )
    if isinstance(exc, ProviderHTTPError):
        status = exc.status_code
        if status == 401:
            return "unauthorized", (
                "API authentication failed (401). Check your API key."
            )
        if status == 403:
            return "forbidden", (
                "API access forbidden (403). Check your plan and "
                "permissions."
            )
        if status == 404:
            return "not_found", (
                "Model or endpoint not found (404). Check the model name "
                "and base URL."
            )
        if status == 429:
            return "rate_limited", (
                "Provider rate limit exceeded (429). Lower the tier or wait "
                "before retrying."
            )
        if status >= 500:
            return "server_error", (
                f"Provider server error ({status}). Try again later."
            )
        return "http_error", str(exc)
    if isinstance(exc, requests.RequestException):
        return "transport", f"Network error: {exc}"
    if isinstance(exc, ProviderResponseError):
        return "invalid_response", str(exc)
    if isinstance(exc, StoreError):
        return "storage", f"Could not save the result: {exc}"
    return "unknown", str(exc) or exc.__class__.__name__


def build_result_model(
    model: Model, payload: Union[Mapping[str, Any], Model]
) -> Model:
    """Turn an enrichment payload into a record keyed like ``model``."""

    if isinstance(payload, Model):
        candidate = payload
    else:
        candidate = Model.from_dict({**payload, "id": model.id})
    return dataclasses.replace(
        candidate,
        id=model.id,
        name=model.name,
        provider=model.provider or candidate.provider,
        source=model.source,
        is_favorite=model.is_favorite,
        is_nsfw_flagged=model.is_nsfw_flagged,
    )


class ValidationScheduler:
    """Bounded-concurrency executor for validation jobs."""

    def __init__(
        self,
        repository,
        enrich: EnrichFn,
        providers: ProviderSource,
        *,
        governor: Optional[RateGovernor] = None,
        tier: str = DEFAULT_TIER,
        preferred_provider: Optional[str] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        pacing: Optional[RateLimiter] = None,
        backoff_base: float = BACKOFF_BASE_SECONDS,
        backoff_max: float = MAX_BACKOFF_SECONDS,
        archive_limit: int = ARCHIVE_LIMIT,
        max_pending: int = MAX_PENDING_JOBS,
        workers: Optional[int] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._repository = repository
        self._enrich = enrich
        if callable(providers):
            self._providers = providers
        else:
            fixed = list(providers)
            self._providers = lambda: fixed
        self._governor = governor
        self._tier = get_tier(tier).name
        self._preferred = preferred_provider
        self._max_attempts = max_attempts
        self._pacing = pacing
        self._limiters: Dict[Tuple[str, str], RateLimiter] = {}
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._archive_limit = max(0, archive_limit)
        self._max_pending = max_pending
        self._workers = workers
        self._worker_limit = workers or concurrency_for_tier(tier)
        self._sleep = sleep_fn or time.sleep
        self._on_progress = on_progress

        self._cond = threading.Condition()
        self._pending: Deque[str] = deque()
        self._live: Dict[str, ValidationJob] = {}
        self._archive: "OrderedDict[str, ValidationJob]" = OrderedDict()
        self._paused = False
        self._stopped = False
        self._in_flight = 0
        self._dispatches = 0
        self._config_error_reported = False
        self._threads: List[threading.Thread] = []

    # Queue control -------------------------------------------------------

    def submit(
        self,
        models: Iterable[Model],
        sources: Iterable[ValidationSource] = (ValidationSource.API,),
    ) -> List[str]:
        """Queue one job per model and return the new job ids."""

        batch = list(models)
        source_tuple = tuple(ValidationSource(item) for item in sources)
        events: List[ProgressEvent] = []
        with self._cond:
            if self._stopped:
                raise SchedulerError("Scheduler has been shut down")
            if len(self._live) + len(batch) > self._max_pending:
                raise QueueFull(
                    f"Cannot queue {len(batch)} jobs; "
                    f"limit is {self._max_pending}"
                )
            ids: List[str] = []
            for model in batch:
                job = ValidationJob(
                    id=new_job_id(),
                    model=model,
                    sources=source_tuple,
                    max_attempts=self._max_attempts,
                )
                self._live[job.id] = job
                self._pending.append(job.id)
                ids.append(job.id)
                events.append(self._event_locked(job))
            self._config_error_reported = False
            self._ensure_workers_locked()
            self._cond.notify_all()
        if ids:
            _LOGGER.info("Queued %d validation jobs", len(ids))
        self._emit(events)
        return ids

    def pause(self) -> None:
        with self._cond:
            self._paused = True
        _LOGGER.info("Validation paused")

    def resume(self) -> None:
        with self._cond:
            self._paused = False
            self._cond.notify_all()
        _LOGGER.info("Validation resumed")

    @property
    def paused(self) -> bool:
        with self._cond:
            return self._paused

    def cancel_all(self) -> int:
        """Cancel pending and in-flight jobs; returns how many were hit.

        Calls already on the wire cannot be interrupted; their results are
        dropped when they arrive.
        """

        events: List[ProgressEvent] = []
        with self._cond:
            self._pending.clear()
            cancelled = list(self._live.values())
            for job in cancelled:
                self._finish_locked(
                    job, JobStatus.CANCELLED, error="Cancelled by user"
                )
                events.append(self._event_locked(job))
            self._cond.notify_all()
        if cancelled:
            _LOGGER.info("Cancelled %d validation jobs", len(cancelled))
        self._emit(events)
        return len(cancelled)

    def clear_finished(self) -> int:
        with self._cond:
            count = len(self._archive)
            self._archive.clear()
        return count

    def jobs(self) -> List[ValidationJob]:
        """Snapshot copies: archived jobs first, then live ones."""

        with self._cond:
            return [
                dataclasses.replace(job)
                for job in list(self._archive.values())
                + list(self._live.values())
            ]

    def counts(self) -> Dict[str, int]:
        with self._cond:
            counts = {status.value: 0 for status in JobStatus}
            for job in list(self._archive.values()) + list(
                self._live.values()
            ):
                counts[job.status.value] += 1
            counts["total"] = len(self._archive) + len(self._live)
            return counts

    @property
    def dispatches(self) -> int:
        """Number of calls handed to the enrichment function so far."""
        with self._cond:
            return self._dispatches

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no job is pending or processing."""

        with self._cond:
            return self._cond.wait_for(
                lambda: not self._live and self._in_flight == 0, timeout
            )

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        with self._cond:
            self._stopped = True
            self._cond.notify_all()
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)

    # Workers -------------------------------------------------------------

    def _ensure_workers_locked(self) -> None:
        if self._workers is None:
            self._worker_limit = concurrency_for_tier(self._active_tier())
        self._threads = [t for t in self._threads if t.is_alive()]
        while len(self._threads) < self._worker_limit:
            thread = threading.Thread(
                target=self._worker,
                name=f"validation-worker-{len(self._threads) + 1}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

    def _active_tier(self) -> str:
        """Tier of the provider jobs would go to, else the default tier."""
        try:
            provider = select_provider(self._providers(), self._preferred)
        except NoProviderConfigured:
            return self._tier
        return self._known_tier(provider)

    def _known_tier(self, provider: ProviderConfig) -> str:
        if not provider.tier:
            return self._tier
        try:
            return get_tier(provider.tier).name
        except ValueError:
            _LOGGER.warning(
                "Unknown tier %r for provider %s; using %s",
                provider.tier,
                provider.key,
                self._tier,
            )
            return self._tier

    def _limiter_for(self, provider: ProviderConfig) -> RateLimiter:
        if self._pacing is not None:
            return self._pacing
        tier = self._known_tier(provider)
        with self._cond:
            limiter = self._limiters.get((provider.key, tier))
            if limiter is None:
                limiter = limiter_for_tier(tier)
                self._limiters[(provider.key, tier)] = limiter
            return limiter

    def _worker(self) -> None:
        while True:
            with self._cond:
                while not self._stopped and (
                    self._paused
                    or not self._pending
                    or self._in_flight >= self._worker_limit
                ):
                    self._cond.wait()
                if self._stopped:
                    return
                job = self._live[self._pending.popleft()]
                job.status = JobStatus.PROCESSING
                job.attempts += 1
                job.updated_at = time.time()
                self._in_flight += 1
                event = self._event_locked(job)
            self._emit([event])
            try:
                self._run_attempt(job)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.exception("Validation worker error on %s", job.id)
                self._abort(job, exc)
            finally:
                with self._cond:
                    self._in_flight -= 1
                    self._cond.notify_all()

    def _abort(self, job: ValidationJob, exc: BaseException) -> None:
        category, message = classify_error(exc)
        with self._cond:
            if job.status is not JobStatus.PROCESSING:
                return
            job.error_category = category
            self._finish_locked(job, JobStatus.FAILED, error=message)
            event = self._event_locked(job)
        self._emit([event])

    def _run_attempt(self, job: ValidationJob) -> None:
        try:
            provider = select_provider(self._providers(), self._preferred)
        except NoProviderConfigured as exc:
            self._fail_all_for_configuration(job, exc)
            return

        if self._governor is not None:
            verdict = self._governor.check(
                f"llm:{provider.key}",
                LLM_PROVIDER_PROFILE.max_attempts,
                LLM_PROVIDER_PROFILE.window_ms,
            )
            if not verdict.allowed:
                self._handle_error(
                    job,
                    RateLimitExceeded(
                        f"llm:{provider.key}", verdict.retry_after
                    ),
                    delay=float(verdict.retry_after or 1),
                )
                return

        self._limiter_for(provider).acquire()
        with self._cond:
            if job.status is not JobStatus.PROCESSING:
                return
            self._dispatches += 1
        try:
            payload = self._enrich(job.model, job.sources, provider)
        except NoProviderConfigured as exc:
            self._fail_all_for_configuration(job, exc)
            return
        except Exception as exc:  # noqa: BLE001
            self._handle_error(job, exc)
            return
        self._handle_success(job, payload)

    def _handle_success(
        self, job: ValidationJob, payload: Union[Mapping[str, Any], Model]
    ) -> None:
        try:
            result = build_result_model(job.model, payload)
        except ValueError as exc:
            self._handle_error(job, ProviderResponseError(str(exc)))
            return
        with self._cond:
            if job.status is not JobStatus.PROCESSING:
                _LOGGER.debug("Discarding result of cancelled %s", job.id)
                return
        try:
            merged = self._repository.apply(
                [result], origin=MergeOrigin.VALIDATION
            )
        except StoreError as exc:
            self._handle_error(job, exc)
            return
        with self._cond:
            if job.status is not JobStatus.PROCESSING:
                return
            job.result = next(
                (m for m in merged.merged if m.id == job.model.id), result
            )
            self._finish_locked(job, JobStatus.COMPLETED)
            event = self._event_locked(job)
        _LOGGER.info(
            "Validated %s in %d attempt(s)", job.model.name, job.attempts
        )
        self._emit([event])

    def _handle_error(
        self,
        job: ValidationJob,
        exc: BaseException,
        *,
        delay: Optional[float] = None,
    ) -> None:
        category, message = classify_error(exc)
        with self._cond:
            if job.status is not JobStatus.PROCESSING:
                return
            job.error = message
            job.error_category = category
            if job.attempts >= job.max_attempts:
                self._finish_locked(job, JobStatus.FAILED, error=message)
                event = self._event_locked(job)
                retry = False
            else:
                retry = True
        if not retry:
            _LOGGER.warning(
                "Validation of %s failed after %d attempt(s): %s",
                job.model.name,
                job.attempts,
                message,
            )
            self._emit([event])
            return

        if delay is None:
            delay = self._backoff_base * (2 ** (job.attempts - 1))
        delay = min(delay, self._backoff_max)
        _LOGGER.info(
            "Retrying %s in %.1fs (attempt %d/%d): %s",
            job.model.name,
            delay,
            job.attempts,
            job.max_attempts,
            message,
        )
        self._sleep(delay)
        with self._cond:
            if job.status is not JobStatus.PROCESSING:
                return
            job.status = JobStatus.PENDING
            job.updated_at = time.time()
            self._pending.appendleft(job.id)
            event = self._event_locked(job)
            self._cond.notify_all()
        self._emit([event])

    def _fail_all_for_configuration(
        self, job: ValidationJob, exc: NoProviderConfigured
    ) -> None:
        message = str(exc) or NO_PROVIDER_MESSAGE
        events: List[ProgressEvent] = []
        with self._cond:
            victims = [job] if job.status is JobStatus.PROCESSING else []
            victims.extend(self._live[job_id] for job_id in self._pending)
            self._pending.clear()
            for victim in victims:
                victim.error_category = CONFIGURATION
                self._finish_locked(victim, JobStatus.FAILED, error=message)
                events.append(self._event_locked(victim))
            report = not self._config_error_reported
            self._config_error_reported = True
            self._cond.notify_all()
        if report:
            _LOGGER.error("%s (%d jobs failed)", message, len(victims))
        self._emit(events)

    # Bookkeeping ---------------------------------------------------------

    def _finish_locked(
        self,
        job: ValidationJob,
        status: JobStatus,
        *,
        error: Optional[str] = None,
    ) -> None:
        job.status = status
        if error is not None:
            job.error = error
        job.updated_at = time.time()
        self._live.pop(job.id, None)
        self._archive[job.id] = job
        while len(self._archive) > self._archive_limit:
            self._archive.popitem(last=False)

    def _event_locked(self, job: ValidationJob) -> ProgressEvent:
        done = len(self._archive)
        return ProgressEvent(
            current=done,
            total=done + len(self._live),
            source=job.model.name,
            status_message=f"{job.id} {job.status.value}",
        )

    def _emit(self, events: Iterable[ProgressEvent]) -> None:
        if self._on_progress is None:
            return
        for event in events:
            try:
                self._on_progress(event)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Progress listener failed")
