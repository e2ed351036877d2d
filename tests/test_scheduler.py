"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Tests for the validation job scheduler.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import List

import pytest
import requests  # type: ignore[import]

from aimodeldb.clients.errors import (NoProviderConfigured,
                                      ProviderHTTPError,
                                      ProviderResponseError,
                                      RateLimitExceeded)
from aimodeldb.clients.providers import ProviderConfig
from aimodeldb.models import Domain, JobStatus
from aimodeldb.net.rate_governor import RateGovernor
from aimodeldb.services import scheduler as scheduler_module
from aimodeldb.services.scheduler import (QueueFull, SchedulerError,
                                          ValidationScheduler,
                                          build_result_model,
                                          classify_error)
from aimodeldb.storage import CatalogRepository, InMemoryModelStore
from aimodeldb.storage.errors import StoreUnavailableError

OPENAI = ProviderConfig(key="openai", api_key="sk-test")


class DummyLimiter:
    def __init__(self) -> None:
        self.calls = 0

    def acquire(self) -> None:
        self.calls += 1


@pytest.fixture()
def repository() -> CatalogRepository:
    return CatalogRepository()


@pytest.fixture()
def make_scheduler(repository):
    created: List[ValidationScheduler] = []

    def _factory(enrich, **overrides) -> ValidationScheduler:
        options = {
            "providers": [OPENAI],
            "pacing": DummyLimiter(),
            "sleep_fn": lambda _: None,
            "workers": 2,
        }
        options.update(overrides)
        providers = options.pop("providers")
        scheduler = ValidationScheduler(
            repository, enrich, providers, **options
        )
        created.append(scheduler)
        return scheduler

    yield _factory
    for scheduler in created:
        scheduler.cancel_all()
        scheduler.shutdown(timeout=1.0)


def _fail_with(status: int):
    def _enrich(model, sources, provider):
        raise ProviderHTTPError(status, "upstream")

    return _enrich


def _succeed(model, sources, provider):
    return {"parameters": "70B"}


def test_failing_jobs_converge_after_max_attempts(
    make_scheduler, make_model
) -> None:
    scheduler = make_scheduler(_fail_with(500))

    scheduler.submit([make_model(f"Model {index}") for index in range(5)])

    assert scheduler.wait_idle(timeout=5.0)
    jobs = scheduler.jobs()
    assert [job.status for job in jobs] == [JobStatus.FAILED] * 5
    assert {job.attempts for job in jobs} == {3}
    assert {job.error_category for job in jobs} == {"server_error"}
    assert scheduler.dispatches == 15


def test_paused_queue_dispatches_nothing_until_resumed(
    make_scheduler, make_model
) -> None:
    scheduler = make_scheduler(_succeed)
    scheduler.pause()

    scheduler.submit([make_model(f"Model {index}") for index in range(3)])
    time.sleep(0.05)

    assert scheduler.paused is True
    assert scheduler.dispatches == 0
    assert scheduler.counts()["pending"] == 3

    scheduler.resume()

    assert scheduler.wait_idle(timeout=5.0)
    assert scheduler.counts()["completed"] == 3


def test_success_merges_through_the_repository(
    make_scheduler, repository, make_model
) -> None:
    repository.apply(
        [make_model("Alpha", provider="A", domain=Domain.LLM)]
    )

    def _enrich(model, sources, provider):
        assert provider.key == "openai"
        return {"parameters": "70B", "provider": "Other", "name": "Renamed"}

    scheduler = make_scheduler(_enrich)
    scheduler.submit([repository.get("alpha")])

    assert scheduler.wait_idle(timeout=5.0)
    stored = repository.get("alpha")
    assert stored.parameters == "70B"
    assert stored.provider == "A"
    assert stored.name == "Alpha"
    assert stored.domain is Domain.LLM
    job = scheduler.jobs()[0]
    assert job.status is JobStatus.COMPLETED
    assert job.attempts == 1
    assert job.result == stored


def test_missing_provider_fails_every_job_once(
    make_scheduler, make_model, caplog
) -> None:
    scheduler = make_scheduler(
        _succeed,
        providers=[ProviderConfig(key="openai", enabled=False)],
        workers=1,
    )
    scheduler.pause()
    scheduler.submit([make_model(f"Model {index}") for index in range(4)])

    scheduler.resume()

    assert scheduler.wait_idle(timeout=5.0)
    jobs = scheduler.jobs()
    assert [job.status for job in jobs] == [JobStatus.FAILED] * 4
    assert {job.error_category for job in jobs} == {"configuration"}
    assert scheduler.dispatches == 0
    errors = [
        record
        for record in caplog.records
        if record.levelno == logging.ERROR
        and record.name == "aimodeldb.services.scheduler"
    ]
    assert len(errors) == 1


def test_cancel_discards_results_still_on_the_wire(
    make_scheduler, repository, make_model
) -> None:
    started = threading.Event()
    release = threading.Event()

    def _enrich(model, sources, provider):
        started.set()
        release.wait(5.0)
        return {"parameters": "7B"}

    repository.apply([make_model(f"Model {index}") for index in range(3)])
    scheduler = make_scheduler(_enrich, workers=1)
    scheduler.submit(repository.list())
    assert started.wait(2.0)

    assert scheduler.cancel_all() == 3
    release.set()

    assert scheduler.wait_idle(timeout=5.0)
    assert scheduler.counts()["cancelled"] == 3
    assert scheduler.dispatches == 1
    assert all(model.parameters is None for model in repository.list())


def test_governor_denials_wait_for_the_window(
    make_scheduler, make_model, fake_clock
) -> None:
    governor = RateGovernor(clock=fake_clock.time)
    for _ in range(20):
        governor.check("llm:openai", 20, 60_000)
    scheduler = make_scheduler(
        _succeed,
        governor=governor,
        sleep_fn=fake_clock.sleep,
        max_attempts=10,
        workers=1,
    )

    scheduler.submit([make_model("Alpha")])

    assert scheduler.wait_idle(timeout=5.0)
    job = scheduler.jobs()[0]
    assert job.status is JobStatus.COMPLETED
    assert job.attempts == 7
    assert fake_clock.sleeps == [10.0] * 6
    assert scheduler.dispatches == 1


def test_governor_denials_exhaust_attempts(
    make_scheduler, make_model, fake_clock
) -> None:
    governor = RateGovernor(clock=fake_clock.time)
    for _ in range(20):
        governor.check("llm:openai", 20, 60_000)
    scheduler = make_scheduler(
        _succeed, governor=governor, sleep_fn=fake_clock.sleep, workers=1
    )

    scheduler.submit([make_model("Alpha")])

    assert scheduler.wait_idle(timeout=5.0)
    job = scheduler.jobs()[0]
    assert job.status is JobStatus.FAILED
    assert job.error_category == "rate_limited"
    assert fake_clock.sleeps == [10.0, 10.0]
    assert scheduler.dispatches == 0


def test_retries_back_off_exponentially(make_scheduler, make_model) -> None:
    sleeps: List[float] = []
    scheduler = make_scheduler(
        _fail_with(503), sleep_fn=sleeps.append, workers=1
    )

    scheduler.submit([make_model("Alpha")])

    assert scheduler.wait_idle(timeout=5.0)
    assert sleeps == [1.0, 2.0]


def test_worker_pool_bounds_concurrency(make_scheduler, make_model) -> None:
    lock = threading.Lock()
    active = {"now": 0, "peak": 0}

    def _enrich(model, sources, provider):
        with lock:
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
        time.sleep(0.02)
        with lock:
            active["now"] -= 1
        return {}

    scheduler = make_scheduler(_enrich, workers=2)
    scheduler.submit([make_model(f"Model {index}") for index in range(6)])

    assert scheduler.wait_idle(timeout=5.0)
    assert active["peak"] <= 2
    assert scheduler.counts()["completed"] == 6


def test_archive_evicts_oldest_finished_jobs(
    make_scheduler, make_model
) -> None:
    scheduler = make_scheduler(_succeed, archive_limit=2, workers=1)

    ids = scheduler.submit(
        [make_model(f"Model {index}") for index in range(4)]
    )

    assert scheduler.wait_idle(timeout=5.0)
    assert [job.id for job in scheduler.jobs()] == ids[2:]
    assert scheduler.counts()["total"] == 2
    assert scheduler.clear_finished() == 2
    assert scheduler.jobs() == []


def test_submit_rejects_batches_beyond_the_bound(
    make_scheduler, make_model
) -> None:
    scheduler = make_scheduler(_succeed, max_pending=2)
    scheduler.pause()
    scheduler.submit([make_model("Alpha"), make_model("Beta")])

    with pytest.raises(QueueFull):
        scheduler.submit([make_model("Gamma")])


def test_submit_after_shutdown_is_rejected(make_scheduler, make_model) -> None:
    scheduler = make_scheduler(_succeed)
    scheduler.shutdown(timeout=1.0)

    with pytest.raises(SchedulerError):
        scheduler.submit([make_model("Alpha")])


def test_progress_events_follow_the_job(make_scheduler, make_model) -> None:
    events = []
    scheduler = make_scheduler(_succeed, on_progress=events.append)
    scheduler.pause()

    (job_id,) = scheduler.submit([make_model("Alpha")])
    scheduler.resume()

    assert scheduler.wait_idle(timeout=5.0)
    assert [event.status_message for event in events] == [
        f"{job_id} pending",
        f"{job_id} processing",
        f"{job_id} completed",
    ]
    assert (events[-1].current, events[-1].total) == (1, 1)


def test_snapshots_do_not_leak_internal_state(
    make_scheduler, make_model
) -> None:
    scheduler = make_scheduler(_succeed)
    scheduler.pause()
    scheduler.submit([make_model("Alpha")])

    snapshot = scheduler.jobs()[0]
    snapshot.status = JobStatus.FAILED

    assert scheduler.counts()["pending"] == 1


def test_invalid_max_attempts(repository) -> None:
    with pytest.raises(ValueError):
        ValidationScheduler(repository, _succeed, [OPENAI], max_attempts=0)


def test_result_model_keeps_identity(make_model) -> None:
    model = make_model(
        "Alpha", provider="A", source="hub", is_favorite=True
    )

    result = build_result_model(
        model, {"id": "other", "name": "Other", "context_window": "8k"}
    )

    assert result.id == "alpha"
    assert result.name == "Alpha"
    assert result.provider == "A"
    assert result.source == "hub"
    assert result.is_favorite is True
    assert result.context_window == "8k"


@pytest.mark.parametrize(
    "exc, category",
    [
        (NoProviderConfigured("none"), "configuration"),
        (RateLimitExceeded("llm:openai", 5), "rate_limited"),
        (ProviderHTTPError(401), "unauthorized"),
        (ProviderHTTPError(403), "forbidden"),
        (ProviderHTTPError(404), "not_found"),
        (ProviderHTTPError(429), "rate_limited"),
        (ProviderHTTPError(502), "server_error"),
        (ProviderHTTPError(418), "http_error"),
        (requests.ConnectionError("reset"), "transport"),
        (ProviderResponseError("garbled"), "invalid_response"),
        (StoreUnavailableError("disk full"), "storage"),
        (KeyError("x"), "unknown"),
    ],
)
def test_classify_error(exc, category) -> None:
    assert classify_error(exc)[0] == category


def test_unauthorized_message_points_at_the_key() -> None:
    _, message = classify_error(ProviderHTTPError(401))

    assert message == "API authentication failed (401). Check your API key."


class FullDiskStore(InMemoryModelStore):
    def save(self, models) -> None:
        raise StoreUnavailableError("disk full")


def test_store_failures_still_converge(make_model) -> None:
    scheduler = ValidationScheduler(
        CatalogRepository(FullDiskStore()),
        _succeed,
        [OPENAI],
        pacing=DummyLimiter(),
        sleep_fn=lambda _: None,
        workers=1,
    )
    try:
        scheduler.submit([make_model("Alpha")])

        assert scheduler.wait_idle(timeout=5.0)
        (job,) = scheduler.jobs()
        assert job.status is JobStatus.FAILED
        assert job.error_category == "storage"
        assert job.attempts == 3
        assert "disk full" in job.error
    finally:
        scheduler.shutdown(timeout=1.0)


def test_unexpected_worker_errors_fail_the_job(
    make_scheduler, make_model, caplog
) -> None:
    def _broken_providers():
        raise KeyError("providers unavailable")

    scheduler = make_scheduler(_succeed, workers=1)
    scheduler._providers = _broken_providers

    with caplog.at_level(logging.ERROR):
        scheduler.submit([make_model("Alpha")])
        assert scheduler.wait_idle(timeout=5.0)

    (job,) = scheduler.jobs()
    assert job.status is JobStatus.FAILED
    assert job.error_category == "unknown"
    assert "Validation worker error" in caplog.text

    scheduler._providers = lambda: [OPENAI]
    scheduler.submit([make_model("Beta")])
    assert scheduler.wait_idle(timeout=5.0)
    assert scheduler.jobs()[-1].status is JobStatus.COMPLETED


def test_failing_progress_listener_does_not_stall_jobs(
    make_scheduler, make_model
) -> None:
    def _listener(event) -> None:
        raise RuntimeError("listener broke")

    scheduler = make_scheduler(_succeed, workers=1, on_progress=_listener)

    scheduler.submit([make_model("Alpha")])

    assert scheduler.wait_idle(timeout=5.0)
    assert [job.status for job in scheduler.jobs()] == [JobStatus.COMPLETED]


def test_pacing_follows_each_providers_tier(repository, monkeypatch) -> None:
    requested: List[str] = []

    def _limiter(tier):
        requested.append(tier)
        return DummyLimiter()

    monkeypatch.setattr(scheduler_module, "limiter_for_tier", _limiter)
    slow = ProviderConfig(key="openai", api_key="sk-test", tier="free")
    fast = ProviderConfig(key="ollama", protocol="ollama", tier="tier4")
    scheduler = ValidationScheduler(
        repository, _succeed, [slow, fast], sleep_fn=lambda _: None
    )
    try:
        free_limiter = scheduler._limiter_for(slow)
        fast_limiter = scheduler._limiter_for(fast)

        assert requested == ["free", "tier4"]
        assert free_limiter is not fast_limiter
        assert scheduler._limiter_for(slow) is free_limiter
        assert requested == ["free", "tier4"]
    finally:
        scheduler.shutdown(timeout=1.0)


def test_worker_count_follows_the_selected_provider(
    repository, make_model
) -> None:
    fast = ProviderConfig(key="openai", api_key="sk-test", tier="tier4")
    scheduler = ValidationScheduler(
        repository,
        _succeed,
        [fast],
        tier="free",
        pacing=DummyLimiter(),
        sleep_fn=lambda _: None,
    )
    try:
        scheduler.submit([make_model("Alpha")])
        assert scheduler.wait_idle(timeout=5.0)

        assert scheduler._worker_limit == 4
    finally:
        scheduler.shutdown(timeout=1.0)


def test_unknown_provider_tier_falls_back_to_the_default(
    repository,
) -> None:
    odd = ProviderConfig(key="openai", api_key="sk-test", tier="platinum")
    scheduler = ValidationScheduler(
        repository, _succeed, [odd], tier="tier2", pacing=DummyLimiter()
    )

    assert scheduler._active_tier() == "tier2"
