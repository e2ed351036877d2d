"""In-memory store implementation for development and tests."""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Sequence

from aimodeldb.models import Model

from .base import ModelStore


class InMemoryModelStore(ModelStore):
    """List-backed model store with a dictionary for metadata."""

    def __init__(self, models: Optional[Sequence[Model]] = None) -> None:
        self._models: List[Model] = list(models or [])
        self._metadata: Dict[str, Any] = {}
        self.save_count = 0

    def load(self) -> List[Model]:
        return list(self._models)

    def save(self, models: Sequence[Model]) -> None:
        self._models = list(models)
        self.save_count += 1

    def load_metadata(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._metadata.get(key))

    def save_metadata(self, key: str, value: Any) -> None:
        self._metadata[key] = copy.deepcopy(value)
