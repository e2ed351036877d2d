"""Abstract store interface for the model catalog."""

from __future__ import annotations

from typing import Any, List, Optional, Protocol, Sequence

from aimodeldb.models import Model


class ModelStore(Protocol):
    """Durable persistence of the canonical model set."""

    def load(self) -> List[Model]:
        """Return every stored model, in stored order."""

    def save(self, models: Sequence[Model]) -> None:
        """Replace the stored set; raise StoreError on failure."""

    def load_metadata(self, key: str) -> Optional[Any]:
        """Return a JSON-compatible value or ``None`` when unset."""

    def save_metadata(self, key: str, value: Any) -> None:
        """Persist a JSON-compatible value under ``key``."""
