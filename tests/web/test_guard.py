"""Tests for the inbound proxy guard and upstream forwarding."""

from __future__ import annotations

import requests  # type: ignore[import]

from aimodeldb.webapp.guard import origin_allowed
from aimodeldb.webapp.proxy import resolve_target

ALLOWED = {"Origin": "http://localhost:5173"}


def test_disallowed_origin_is_rejected_before_counting(
    client, governor, session
) -> None:
    response = client.get(
        "/openai-api/models", headers={"Origin": "https://evil.example"}
    )

    assert response.status_code == 403
    assert response.get_json()["error"] == "forbidden"
    assert governor.stats() == {}
    assert session.calls == []


def test_allowed_request_is_forwarded_with_quota_headers(
    client, session
) -> None:
    response = client.get(
        "/openai-api/models?limit=2",
        headers={**ALLOWED, "Authorization": "Bearer sk-test"},
    )

    assert response.status_code == 200
    assert response.get_json() == {"ok": True}
    assert response.headers["X-RateLimit-Limit"] == "20"
    assert response.headers["X-RateLimit-Remaining"] == "19"
    assert "X-RateLimit-Reset" in response.headers
    call = session.calls[0]
    assert call["url"] == "https://api.openai.com/v1/models"
    assert call["params"] == {"limit": ["2"]}
    assert call["headers"]["Authorization"] == "Bearer sk-test"
    assert "Origin" not in call["headers"]
    assert "Host" not in call["headers"]


def test_quota_exhaustion_returns_429(client, session) -> None:
    for _ in range(20):
        assert client.get("/openai-api/models").status_code == 200

    response = client.get("/openai-api/models")

    assert response.status_code == 429
    payload = response.get_json()
    assert payload["error"] == "rate_limit_exceeded"
    assert payload["retryAfter"] == 60
    assert response.headers["Retry-After"] == "60"
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert len(session.calls) == 20


def test_quota_recovers_after_the_window(client, fake_clock) -> None:
    for _ in range(21):
        client.get("/openai-api/models")

    fake_clock.advance(60)

    assert client.get("/openai-api/models").status_code == 200


def test_forwarded_clients_have_separate_quotas(client, governor) -> None:
    first = {"X-Forwarded-For": "1.1.1.1, 10.0.0.1"}
    for _ in range(20):
        client.get("/openai-api/models", headers=first)

    blocked = client.get("/openai-api/models", headers=first)
    other = client.get(
        "/openai-api/models", headers={"X-Forwarded-For": "2.2.2.2"}
    )

    assert blocked.status_code == 429
    assert other.status_code == 200
    assert governor.stats()["1.1.1.1:/openai-api"]["attempts"] == 20


def test_prefixes_have_independent_profiles(client) -> None:
    response = client.get("/huggingface-api/models")

    assert response.headers["X-RateLimit-Limit"] == "100"


def test_referer_is_checked_when_origin_is_absent(client) -> None:
    allowed = client.get(
        "/openai-api/models",
        headers={"Referer": "http://localhost:5173/catalog"},
    )
    rejected = client.get(
        "/openai-api/models",
        headers={"Referer": "http://localhost:51730/catalog"},
    )

    assert allowed.status_code == 200
    assert rejected.status_code == 403


def test_api_routes_are_not_rate_limited(client) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert "X-RateLimit-Limit" not in response.headers


def test_upstream_failure_maps_to_bad_gateway(client, session) -> None:
    session.error = requests.ConnectionError("refused")

    response = client.post("/openai-api/chat/completions", json={"a": 1})

    assert response.status_code == 502
    assert response.get_json()["error"] == "bad_gateway"


def test_unknown_paths_are_not_forwarded(client, session) -> None:
    response = client.get("/nowhere/at/all")

    assert response.status_code == 404
    assert session.calls == []


def test_origin_allowed() -> None:
    allowed = ("http://localhost:5173",)

    assert origin_allowed(None, allowed) is True
    assert origin_allowed("http://localhost:5173/", allowed) is True
    assert origin_allowed("http://localhost:5173.evil.io", allowed) is False


def test_resolve_target_prefers_longest_prefix() -> None:
    targets = {"/a": "https://short", "/a/b": "https://long/"}

    assert resolve_target("/a/b/c", targets) == ("/a/b", "https://long/c")
    assert resolve_target("/a/x", targets) == ("/a", "https://short/x")
    assert resolve_target("/ab", targets) is None
