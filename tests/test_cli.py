"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Tests for the command-line entry point.
"""

from __future__ import annotations

import json

from aimodeldb import cli
from aimodeldb.services.sync import SyncSummary
from aimodeldb.storage import LocalJSONModelStore


class DummyPipeline:
    def __init__(self, summary: SyncSummary) -> None:
        self.summary = summary
        self.configs = []

    def run(self, config=None):
        self.configs.append(config)
        return self.summary


def _patch_services(monkeypatch, pipeline) -> None:
    monkeypatch.setattr(cli, "configure_logging", lambda: None)
    monkeypatch.setattr(
        cli,
        "build_services",
        lambda store_dir, tier: {"SYNC_PIPELINE": pipeline},
    )


def test_parser_defaults() -> None:
    parsed = cli.build_arg_parser().parse_args(["serve"])

    assert parsed.command == "serve"
    assert parsed.host == "127.0.0.1"
    assert parsed.port == 8787
    assert parsed.tier == "tier1"
    assert parsed.store_dir is None


def test_sync_prints_the_summary(monkeypatch, capsys) -> None:
    pipeline = DummyPipeline(SyncSummary(found=2, added=2))
    _patch_services(monkeypatch, pipeline)

    exit_code = cli.main(["sync", "--search", "llama", "--limit", "5"])

    assert exit_code == 0
    assert pipeline.configs == [
        {
            "huggingface": {"search": "llama", "limit": 5},
            "civitai": {"search": "llama", "limit": 5},
        }
    ]
    assert json.loads(capsys.readouterr().out)["added"] == 2


def test_sync_fails_when_nothing_was_fetched(monkeypatch) -> None:
    pipeline = DummyPipeline(SyncSummary(failed=1))
    _patch_services(monkeypatch, pipeline)

    assert cli.main(["sync"]) == 1


def test_build_services_uses_the_store_dir(tmp_path) -> None:
    services = cli.build_services(tmp_path)
    try:
        store = services["REPOSITORY"].store
        assert isinstance(store, LocalJSONModelStore)
        assert store.root == tmp_path
        assert services["SCHEDULER"].paused is False
    finally:
        services["SCHEDULER"].shutdown(timeout=1.0)


def test_build_services_syncs_every_catalog(tmp_path) -> None:
    services = cli.build_services(tmp_path)
    try:
        names = [
            adapter.name for adapter in services["SYNC_PIPELINE"]._adapters
        ]
        assert names == ["huggingface", "civitai"]
    finally:
        services["SCHEDULER"].shutdown(timeout=1.0)
