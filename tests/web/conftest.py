"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Fixtures for the Flask proxy and API tests.
"""

from __future__ import annotations

from typing import Any, Dict, Generator, List, Optional

import pytest

from aimodeldb.net.rate_governor import RateGovernor
from aimodeldb.services.safety import mark_nsfw
from aimodeldb.storage import CatalogRepository, InMemoryModelStore
from aimodeldb.webapp import create_app


class DummyUpstream:
    def __init__(
        self, status_code: int = 200, content: bytes = b'{"ok": true}'
    ) -> None:
        self.status_code = status_code
        self.content = content
        self.headers = {
            "Content-Type": "application/json",
            "Connection": "keep-alive",
        }


class DummySession:
    """Stands in for ``requests`` when forwarding proxied calls."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None
        self.response = DummyUpstream()

    def request(self, method: str, url: str, **kwargs: Any) -> DummyUpstream:
        self.calls.append({"method": method, "url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture()
def governor(fake_clock) -> RateGovernor:
    return RateGovernor(clock=fake_clock.time)


@pytest.fixture()
def repository(make_model) -> CatalogRepository:
    store = InMemoryModelStore(
        [
            make_model("Alpha", provider="A"),
            mark_nsfw(make_model("Nude Portrait Generator")),
        ]
    )
    return CatalogRepository(store)


@pytest.fixture()
def session() -> DummySession:
    return DummySession()


@pytest.fixture()
def web_app(governor, repository, session) -> Generator:
    """Provide a configured Flask application for request tests."""
    app = create_app(
        {
            "TESTING": True,
            "GOVERNOR": governor,
            "REPOSITORY": repository,
            "PROXY_SESSION": session,
        }
    )
    yield app


@pytest.fixture()
def client(web_app):
    """Flask test client fixture."""
    return web_app.test_client()
