"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Unit tests for logging configuration helper.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pytest

from aimodeldb import logging_config


@pytest.fixture(autouse=True)
def _reset_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(logging_config, "_CONFIGURED", False)


@pytest.fixture()
def basic_config_calls(monkeypatch: pytest.MonkeyPatch) -> List[Dict]:
    calls: List[Dict[str, Any]] = []

    def fake_basic_config(**kwargs: Any) -> None:
        calls.append(kwargs)

    monkeypatch.setattr(
        logging_config.logging, "basicConfig", fake_basic_config
    )
    return calls


def test_read_level_invalid_returns_none() -> None:
    assert logging_config._read_level("not-an-int") is None


def test_map_level_thresholds() -> None:
    assert logging_config._map_level(1) == logging_config.logging.INFO
    assert logging_config._map_level(2) == logging_config.logging.DEBUG


def test_configure_logging_silent_mode_skips_basic_config(
    monkeypatch: pytest.MonkeyPatch, basic_config_calls
) -> None:
    monkeypatch.setenv("LOG_LEVEL", "0")
    monkeypatch.delenv("LOG_FILE", raising=False)

    logging_config.configure_logging()

    assert basic_config_calls == []


def test_configure_logging_uses_stderr_when_no_file(
    monkeypatch: pytest.MonkeyPatch, basic_config_calls
) -> None:
    monkeypatch.setenv("LOG_LEVEL", "1")
    monkeypatch.delenv("LOG_FILE", raising=False)

    logging_config.configure_logging()
    logging_config.configure_logging()

    assert len(basic_config_calls) == 1
    assert basic_config_calls[0]["level"] == logging_config.logging.INFO
    assert "filename" not in basic_config_calls[0]


def test_configure_logging_writes_to_file_when_log_file_set(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, basic_config_calls
) -> None:
    log_path = tmp_path / "nested" / "app.log"
    monkeypatch.setenv("LOG_LEVEL", "2")
    monkeypatch.setenv("LOG_FILE", str(log_path))

    logging_config.configure_logging()

    assert basic_config_calls[0]["filename"] == log_path
    assert basic_config_calls[0]["filemode"] == "a"
    assert basic_config_calls[0]["level"] == logging_config.logging.DEBUG
    assert log_path.parent.is_dir()
