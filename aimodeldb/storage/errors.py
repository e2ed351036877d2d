"""Common store errors used across storage adapters."""

from __future__ import annotations


class StoreError(RuntimeError):
    """Base class for storage layer failures."""


class StoreUnavailableError(StoreError):
    """Raised when the backing store cannot be read or written right now."""


class ModelNotFound(StoreError):
    """Raised when a requested model id does not exist."""
