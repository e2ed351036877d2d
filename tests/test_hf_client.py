"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Tests for the Hugging Face source adapter.
"""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, List

from aimodeldb.clients.hf_client import HFClient
from aimodeldb.net.rate_limiter import RateLimiter


class DummyLimiter(RateLimiter):
    def __init__(self) -> None:
        super().__init__(max_calls=1, period_seconds=1.0)
        self.invocations = 0

    def acquire(self) -> None:  # type: ignore[override]
        self.invocations += 1


class DummyApi:
    """Records ``list_models`` calls and returns canned ``ModelInfo``s."""

    def __init__(self, infos: List[Any]) -> None:
        self._infos = infos
        self.calls: List[Dict[str, Any]] = []

    def list_models(self, **kwargs: Any) -> List[Any]:
        self.calls.append(kwargs)
        return list(self._infos)


def _info(**overrides: Any) -> SimpleNamespace:
    values = {
        "id": "meta-llama/Llama-3-8B",
        "author": "meta-llama",
        "downloads": 1200,
        "likes": 40,
        "tags": ["text-generation", "license:llama3"],
        "pipeline_tag": "text-generation",
        "card_data": {"license": "llama3"},
        "created_at": datetime(2024, 4, 18, tzinfo=timezone.utc),
        "last_modified": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_fetch_maps_model_info_to_raw_records() -> None:
    api = DummyApi([_info()])
    limiter = DummyLimiter()
    client = HFClient(api=api, rate_limiter=limiter)

    records = client.fetch({"search": "llama", "limit": 5})

    assert limiter.invocations == 1
    assert api.calls[0]["search"] == "llama"
    assert api.calls[0]["limit"] == 5
    assert api.calls[0]["sort"] == "downloads"
    record = records[0]
    assert record["id"] == "meta-llama/Llama-3-8B"
    assert record["name"] == "Llama-3-8B"
    assert record["author"] == "meta-llama"
    assert record["url"] == "https://huggingface.co/meta-llama/Llama-3-8B"
    assert record["license"] == "llama3"
    assert record["downloads"] == 1200
    assert record["created_at"].startswith("2024-04-18")
    assert record["last_modified"] is None


def test_fetch_derives_author_from_repo_id() -> None:
    api = DummyApi([_info(id="example-org/tiny", author=None, card_data=None)])
    client = HFClient(api=api, rate_limiter=DummyLimiter())

    record = client.fetch()[0]

    assert record["author"] == "example-org"
    assert record["license"] is None


def test_adapter_name() -> None:
    assert HFClient(api=DummyApi([]), rate_limiter=DummyLimiter()).name == (
        "huggingface"
    )
