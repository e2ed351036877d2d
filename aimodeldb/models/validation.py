"""Validation job records and progress events."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .catalog import Model


class ValidationSource(str, Enum):
    """Where an enrichment call may look for missing facts."""

    API = "api"
    WEBSEARCH = "websearch"
    SCRAPING = "scraping"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


def new_job_id(now: Optional[float] = None) -> str:
    """Return ``job_<epoch ms>_<random>`` identifiers."""
    stamp = int((now if now is not None else time.time()) * 1000)
    return f"job_{stamp}_{secrets.token_hex(4)}"


@dataclass
class ValidationJob:
    """One enrichment request for one model.

    Instances are owned and mutated by the scheduler; callers only ever see
    snapshot copies.
    """

    id: str
    model: Model
    sources: Tuple[ValidationSource, ...]
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    error: Optional[str] = None
    error_category: Optional[str] = None
    result: Optional[Model] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "modelId": self.model.id,
            "modelName": self.model.name,
            "sources": [source.value for source in self.sources],
            "status": self.status.value,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "error": self.error,
            "errorCategory": self.error_category,
            "result": self.result.to_dict() if self.result else None,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class ProgressEvent:
    """Checkpoint emitted to presentation layers during sync and validation."""

    current: int
    total: int
    source: Optional[str] = None
    found: Optional[int] = None
    status_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "current": self.current,
            "total": self.total,
        }
        if self.source is not None:
            payload["source"] = self.source
        if self.found is not None:
            payload["found"] = self.found
        if self.status_message is not None:
            payload["statusMessage"] = self.status_message
        return payload
