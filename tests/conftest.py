"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Shared fixtures for the test suite.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, List

import pytest

from aimodeldb.models import Model
from aimodeldb.utils import env as env_module


class FakeClock:
    """Manually advanced clock with a recording ``sleep``."""

    def __init__(self, start: float = 1_000.0) -> None:
        self._now = start
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self._now

    def sleep(self, duration: float) -> None:
        self.sleeps.append(duration)
        self._now += duration

    def advance(self, seconds: float) -> None:
        self._now += seconds


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_model() -> Callable[..., Model]:
    """Build catalog models with terse keyword overrides."""

    def _factory(name: str = "Example Model", **overrides: Any) -> Model:
        values: dict = {"id": overrides.pop("id", name.lower()), "name": name}
        values.update(overrides)
        return Model(**values)

    return _factory


@pytest.fixture(autouse=True)
def _default_runtime_env(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path_factory: pytest.TempPathFactory,
) -> None:
    """
    _default_runtime_env: keep tests away from the developer's .env.
    :param monkeypatch:
    :param tmp_path_factory:
    :returns:
    """

    monkeypatch.setattr(env_module, "_ENV_LOADED", True)
    for name in (
        "AIMODELDB_PROVIDERS",
        "AIMODELDB_NSFW_KEYWORDS",
        "AIMODELDB_BLOCK_NSFW",
        "AIMODELDB_STORE_DIR",
        "AIMODELDB_SYNC_WORKERS",
    ):
        monkeypatch.delenv(name, raising=False)
    log_dir = tmp_path_factory.mktemp("logs")
    monkeypatch.setenv("LOG_FILE", str(Path(log_dir) / "aimodeldb.log"))
