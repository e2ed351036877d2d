"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Single writer for catalog records.

Sync passes, validation results, user edits and safety scans all funnel
through :class:`CatalogRepository`, which serialises them behind one lock
and persists the merged set through a :class:`ModelStore`.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from aimodeldb.models import Model, is_incomplete
from aimodeldb.services import safety
from aimodeldb.services.merge import MergeOrigin, MergeResult, merge

from .base import ModelStore
from .errors import ModelNotFound
from .memory import InMemoryModelStore

_LOGGER = logging.getLogger(__name__)


class CatalogRepository:
    """Lock-guarded view of the canonical model set."""

    def __init__(
        self,
        store: Optional[ModelStore] = None,
        *,
        custom_keywords: Sequence[str] = (),
        today_fn=None,
    ) -> None:
        self._store = store or InMemoryModelStore()
        self._custom_keywords = tuple(custom_keywords)
        self._today_fn = today_fn or date.today
        self._lock = threading.RLock()
        self._models: List[Model] = self._store.load()

    @property
    def store(self) -> ModelStore:
        return self._store

    def load_on_start(self) -> Dict[str, int]:
        """Reload from the store and run the retroactive safety scan."""

        with self._lock:
            self._models = self._store.load()
            counts = self._rescan_locked()
        _LOGGER.info(
            "Loaded %d models (flagged=%d unflagged=%d)",
            len(self._models),
            counts["flagged"],
            counts["unflagged"],
        )
        return counts

    def list(self) -> List[Model]:
        with self._lock:
            return list(self._models)

    def get(self, model_id: str) -> Model:
        with self._lock:
            for model in self._models:
                if model.id == model_id:
                    return model
        raise ModelNotFound(f"Model '{model_id}' does not exist")

    def incomplete_models(self) -> List[Model]:
        """Models still missing fields that validation could fill."""

        with self._lock:
            return [model for model in self._models if is_incomplete(model)]

    def apply(
        self,
        incoming: Sequence[Model],
        origin: MergeOrigin = MergeOrigin.SYNC,
    ) -> MergeResult:
        """Merge ``incoming`` into the catalog and persist the result."""

        with self._lock:
            result = merge(
                self._models, incoming, origin, today=self._today_fn()
            )
            if result.merged != self._models:
                self._store.save(result.merged)
            self._models = list(result.merged)
        return result

    def toggle_favorite(self, model_id: str) -> Model:
        with self._lock:
            model = self.get(model_id)
            edited = dataclasses.replace(
                model, is_favorite=not model.is_favorite
            )
            self._replace_locked(edited)
            return self.get(model_id)

    def set_nsfw_flag(self, model_id: str, flagged: bool) -> Model:
        with self._lock:
            model = self.get(model_id)
            edited = (
                safety.mark_nsfw(model)
                if flagged
                else safety.unmark_nsfw(model)
            )
            self._replace_locked(edited)
            return self.get(model_id)

    def rescan_safety(self) -> Dict[str, int]:
        with self._lock:
            return self._rescan_locked()

    def save_metadata(self, key: str, value: Any) -> None:
        with self._lock:
            self._store.save_metadata(key, value)

    def load_metadata(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._store.load_metadata(key)

    def _replace_locked(self, edited: Model) -> None:
        self.apply([edited], origin=MergeOrigin.USER_EDIT)

    def _rescan_locked(self) -> Dict[str, int]:
        scanned, flagged, unflagged = safety.rescan(
            self._models, self._custom_keywords
        )
        changed = [
            after
            for before, after in zip(self._models, scanned)
            if before != after
        ]
        if changed:
            self.apply(changed, origin=MergeOrigin.SAFETY_SCAN)
        return {"flagged": flagged, "unflagged": unflagged}
