from __future__ import annotations

from typing import Any, List

import pytest

from aimodeldb.models import ValidationSource
from aimodeldb.services.scheduler import QueueFull
from aimodeldb.services.sync import SyncSummary


class DummyScheduler:
    def __init__(self) -> None:
        self.submitted: List[Any] = []
        self.paused = False
        self.full = False

    def submit(self, models, sources):
        if self.full:
            raise QueueFull("Cannot queue 1 jobs; limit is 0")
        self.submitted.append((list(models), list(sources)))
        return [f"job_{index}" for index, _ in enumerate(models)]

    def jobs(self):
        return []

    def counts(self):
        return {"pending": 0, "total": 0}

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def cancel_all(self):
        return 2

    def clear_finished(self):
        return 1


class DummyPipeline:
    def __init__(self) -> None:
        self.configs: List[Any] = []

    def run(self, config=None):
        self.configs.append(config)
        return SyncSummary(found=3, added=2, updated=1)


@pytest.fixture()
def scheduler(web_app) -> DummyScheduler:
    dummy = DummyScheduler()
    web_app.config["SCHEDULER"] = dummy
    return dummy


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_list_models_hides_flagged_by_default(client):
    hidden = client.get("/api/models").get_json()
    shown = client.get("/api/models?includeNsfw=true").get_json()

    assert [item["name"] for item in hidden] == ["Alpha"]
    assert len(shown) == 2


def test_get_model_and_missing_model(client):
    assert client.get("/api/models/alpha").get_json()["provider"] == "A"

    response = client.get("/api/models/missing")
    assert response.status_code == 404
    assert "missing" in response.get_json()["error"]


def test_toggle_favorite_and_filter(client):
    response = client.post("/api/models/alpha/favorite")
    assert response.get_json()["isFavorite"] is True

    favorites = client.get("/api/models?favorites=1").get_json()
    assert [item["id"] for item in favorites] == ["alpha"]


def test_set_nsfw_flag_validates_input(client):
    bad = client.post("/api/models/alpha/nsfw", json={"flagged": "yes"})
    missing = client.post("/api/models/nope/nsfw", json={"flagged": True})
    ok = client.post("/api/models/alpha/nsfw", json={"flagged": True})

    assert bad.status_code == 400
    assert missing.status_code == 404
    assert ok.get_json()["isNSFWFlagged"] is True
    assert "nsfw" in ok.get_json()["tags"]


def test_safety_rescan(client):
    response = client.post("/api/safety/rescan")
    assert response.status_code == 200
    assert response.get_json() == {"flagged": 0, "unflagged": 0}


def test_rate_limit_stats_include_proxy_clients(client):
    client.get("/openai-api/models")

    stats = client.get("/api/rate-limits").get_json()

    assert stats["127.0.0.1:/openai-api"]["attempts"] == 1


def test_sync_requires_a_pipeline(client):
    assert client.post("/api/sync").status_code == 503


def test_sync_runs_the_pipeline(client, web_app):
    pipeline = DummyPipeline()
    web_app.config["SYNC_PIPELINE"] = pipeline

    response = client.post("/api/sync", json={"huggingface": {"limit": 5}})
    rejected = client.post("/api/sync", json=[1, 2])

    assert response.status_code == 200
    assert response.get_json()["added"] == 2
    assert pipeline.configs == [{"huggingface": {"limit": 5}}]
    assert rejected.status_code == 400


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/api/validation/jobs"),
        ("post", "/api/validation/jobs"),
        ("post", "/api/validation/pause"),
        ("post", "/api/validation/resume"),
        ("post", "/api/validation/cancel"),
        ("post", "/api/validation/clear"),
    ],
)
def test_validation_requires_a_scheduler(client, method, path):
    response = getattr(client, method)(path)
    assert response.status_code == 503


def test_submit_defaults_to_incomplete_models(client, scheduler):
    response = client.post("/api/validation/jobs", json={})

    assert response.status_code == 202
    assert response.get_json() == {"jobIds": ["job_0", "job_1"]}
    models, sources = scheduler.submitted[0]
    assert len(models) == 2
    assert sources == [ValidationSource.API]


def test_submit_selected_models_and_sources(client, scheduler):
    response = client.post(
        "/api/validation/jobs",
        json={"modelIds": ["alpha"], "sources": ["websearch"]},
    )

    assert response.status_code == 202
    models, sources = scheduler.submitted[0]
    assert [model.id for model in models] == ["alpha"]
    assert sources == [ValidationSource.WEBSEARCH]


@pytest.mark.parametrize(
    "payload, status",
    [
        ({"modelIds": ["missing"]}, 404),
        ({"modelIds": "alpha"}, 400),
        ({"sources": ["carrier-pigeon"]}, 400),
    ],
)
def test_submit_rejects_bad_payloads(client, scheduler, payload, status):
    response = client.post("/api/validation/jobs", json=payload)

    assert response.status_code == status
    assert scheduler.submitted == []


def test_submit_reports_a_full_queue(client, scheduler):
    scheduler.full = True

    response = client.post("/api/validation/jobs", json={})

    assert response.status_code == 409


def test_queue_controls(client, scheduler):
    assert client.post("/api/validation/pause").get_json() == {
        "paused": True
    }
    assert scheduler.paused is True
    assert client.get("/api/validation/jobs").get_json() == {
        "jobs": [],
        "counts": {"pending": 0, "total": 0},
        "paused": True,
    }
    assert client.post("/api/validation/resume").get_json() == {
        "paused": False
    }
    assert client.post("/api/validation/cancel").get_json() == {
        "cancelled": 2
    }
    assert client.post("/api/validation/clear").get_json() == {
        "cleared": 1
    }
