"""Storage layer abstractions and adapters."""

from .base import ModelStore
from .catalog import CatalogRepository
from .errors import ModelNotFound, StoreError, StoreUnavailableError
from .local import LocalJSONModelStore
from .memory import InMemoryModelStore

__all__ = [
    "CatalogRepository",
    "InMemoryModelStore",
    "LocalJSONModelStore",
    "ModelNotFound",
    "ModelStore",
    "StoreError",
    "StoreUnavailableError",
]
