"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

File-backed model store writing JSON documents under a base directory.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from aimodeldb.models import Model

from .base import ModelStore
from .errors import StoreError, StoreUnavailableError

_LOGGER = logging.getLogger(__name__)

DEFAULT_STORE_DIR = "/tmp/aimodeldb"
MODELS_FILE = "models.json"
METADATA_FILE = "metadata.json"


class LocalJSONModelStore(ModelStore):
    """Persist models and metadata as two JSON files.

    Each write lands in a temporary file in the same directory and is
    renamed over the target, so readers never see a partial document.
    """

    def __init__(self, base_dir: Optional[str | Path] = None) -> None:
        root = base_dir or os.getenv("AIMODELDB_STORE_DIR")
        self._root = Path(root or DEFAULT_STORE_DIR)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def load(self) -> List[Model]:
        payload = self._read(MODELS_FILE, default=[])
        if not isinstance(payload, list):
            raise StoreError(f"{MODELS_FILE} must contain a JSON array")
        models: List[Model] = []
        for index, item in enumerate(payload):
            try:
                models.append(Model.from_dict(item))
            except ValueError as exc:
                _LOGGER.warning(
                    "Skipping stored model #%d: %s", index, exc
                )
        return models

    def save(self, models: Sequence[Model]) -> None:
        self._write(MODELS_FILE, [model.to_dict() for model in models])

    def load_metadata(self, key: str) -> Optional[Any]:
        return self._read_metadata().get(key)

    def save_metadata(self, key: str, value: Any) -> None:
        metadata = self._read_metadata()
        metadata[key] = value
        self._write(METADATA_FILE, metadata)

    def _read_metadata(self) -> Dict[str, Any]:
        payload = self._read(METADATA_FILE, default={})
        if not isinstance(payload, dict):
            raise StoreError(f"{METADATA_FILE} must contain a JSON object")
        return payload

    def _read(self, name: str, *, default: Any) -> Any:
        path = self._root / name
        if not path.exists():
            return default
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except json.JSONDecodeError as exc:
            raise StoreError(f"Corrupt store file {path}: {exc}") from exc
        except OSError as exc:
            raise StoreUnavailableError(
                f"Unable to read {path}: {exc}"
            ) from exc

    def _write(self, name: str, payload: Any) -> None:
        path = self._root / name
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self._root), prefix=f".{name}.", suffix=".tmp"
            )
        except OSError as exc:
            raise StoreUnavailableError(
                f"Unable to write {path}: {exc}"
            ) from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, path)
        except OSError as exc:
            self._discard(tmp_name)
            raise StoreUnavailableError(
                f"Unable to write {path}: {exc}"
            ) from exc
        except (TypeError, ValueError) as exc:
            self._discard(tmp_name)
            raise StoreError(f"Cannot serialise {path}: {exc}") from exc
        _LOGGER.debug("Wrote %s", path)

    @staticmethod
    def _discard(tmp_name: str) -> None:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        except OSError as exc:
            _LOGGER.warning("Could not remove %s: %s", tmp_name, exc)
