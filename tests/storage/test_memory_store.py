"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Tests for the in-memory model store.
"""

from __future__ import annotations

from aimodeldb.storage import InMemoryModelStore


def test_save_and_load_models(make_model) -> None:
    store = InMemoryModelStore()
    models = [make_model("Alpha"), make_model("Beta")]

    store.save(models)
    models.append(make_model("Gamma"))

    assert [model.name for model in store.load()] == ["Alpha", "Beta"]
    assert store.save_count == 1


def test_metadata_is_copied_on_the_way_in_and_out() -> None:
    store = InMemoryModelStore()
    value = {"found": 3, "errors": {}}

    store.save_metadata("last_sync", value)
    value["found"] = 99
    loaded = store.load_metadata("last_sync")
    loaded["errors"]["hub"] = "boom"

    assert store.load_metadata("last_sync") == {"found": 3, "errors": {}}
    assert store.load_metadata("missing") is None
