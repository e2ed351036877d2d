"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Sync pass across every configured catalog source.

Sources are fetched in parallel; each completed batch is normalised,
screened by the safety classifier and merged into the catalog as soon as
it arrives. A failing source is reported in the summary and never stops
the others.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (Any, Callable, Dict, Iterable, List, Mapping, Optional,
                    Protocol, Sequence)

from aimodeldb.clients.errors import RateLimitExceeded
from aimodeldb.config import DEFAULT_SYNC_WORKERS, LAST_SYNC_METADATA_KEY
from aimodeldb.models import ProgressEvent
from aimodeldb.net.rate_governor import DATA_SOURCE_PROFILE, RateGovernor
from aimodeldb.services import safety
from aimodeldb.services.merge import MergeOrigin, Outcome
from aimodeldb.services.normalizer import normalize_batch
from aimodeldb.utils.env import env_int

_LOGGER = logging.getLogger(__name__)


class SourceAdapter(Protocol):
    """A catalog that can list raw model records."""

    name: str

    def fetch(
        self, config: Optional[Mapping[str, Any]] = None
    ) -> Iterable[Any]:
        """Return opaque raw records; may raise on transport failure."""


@dataclass
class SyncSummary:
    found: int = 0
    added: int = 0
    updated: int = 0
    duplicates: int = 0
    flagged: int = 0
    failed: int = 0
    skipped_records: int = 0
    errors: Dict[str, str] = field(default_factory=dict)
    finished_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": self.found,
            "added": self.added,
            "updated": self.updated,
            "duplicates": self.duplicates,
            "flagged": self.flagged,
            "failed": self.failed,
            "skippedRecords": self.skipped_records,
            "errors": dict(self.errors),
            "finishedAt": self.finished_at,
        }


def combine_outcomes(
    previous: Optional[Outcome], current: Outcome
) -> Outcome:
    """Fold two outcomes for the same identity within one pass."""

    if previous is None or previous is Outcome.DUPLICATE:
        return current
    if current is Outcome.DUPLICATE:
        return previous
    if previous is Outcome.ADDED and current is Outcome.UPDATED:
        return Outcome.UPDATED
    return previous


class SyncPipeline:
    """Fetch, normalise, screen and merge records from many sources."""

    def __init__(
        self,
        repository,
        adapters: Sequence[SourceAdapter],
        *,
        governor: Optional[RateGovernor] = None,
        safety_blocking: bool = False,
        custom_keywords: Sequence[str] = (),
        max_workers: Optional[int] = None,
    ) -> None:
        self._repository = repository
        self._adapters = list(adapters)
        self._governor = governor
        self._blocking = safety_blocking
        self._custom_keywords = tuple(custom_keywords)
        self._max_workers = max_workers or min(
            max(1, env_int("AIMODELDB_SYNC_WORKERS", DEFAULT_SYNC_WORKERS)),
            max(1, len(self._adapters)),
        )

    def run(
        self,
        config: Optional[Mapping[str, Mapping[str, Any]]] = None,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> SyncSummary:
        """Run one pass; ``config`` maps adapter names to their options."""

        options = dict(config or {})
        summary = SyncSummary()
        outcomes: Dict[str, Outcome] = {}
        total = len(self._adapters)
        lock = threading.Lock()
        progress = {"done": 0}

        def emit(event: ProgressEvent) -> None:
            if on_progress is not None:
                with lock:
                    on_progress(event)

        def started(name: str) -> None:
            emit(
                ProgressEvent(
                    progress["done"],
                    total,
                    source=name,
                    status_message=f"Fetching {name}",
                )
            )

        emit(ProgressEvent(0, total, status_message="Starting sync"))
        _LOGGER.info("Sync started across %d sources", total)

        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            futures = {
                pool.submit(
                    self._fetch, adapter, options.get(adapter.name), started
                ): adapter
                for adapter in self._adapters
            }

            for future in as_completed(futures):
                adapter = futures[future]
                try:
                    found = self._ingest(
                        adapter.name, future.result(), summary, outcomes
                    )
                except Exception as exc:  # noqa: BLE001
                    progress["done"] += 1
                    summary.failed += 1
                    summary.errors[adapter.name] = str(exc)
                    _LOGGER.warning(
                        "Source %s failed: %s", adapter.name, exc
                    )
                    emit(
                        ProgressEvent(
                            progress["done"],
                            total,
                            source=adapter.name,
                            found=0,
                            status_message=f"{adapter.name} failed",
                        )
                    )
                    continue

                progress["done"] += 1
                emit(
                    ProgressEvent(
                        progress["done"],
                        total,
                        source=adapter.name,
                        found=found,
                        status_message=f"Finished {adapter.name}",
                    )
                )

        for outcome in outcomes.values():
            if outcome is Outcome.ADDED:
                summary.added += 1
            elif outcome is Outcome.UPDATED:
                summary.updated += 1
            else:
                summary.duplicates += 1

        summary.finished_at = datetime.now(timezone.utc).isoformat()
        self._repository.save_metadata(
            LAST_SYNC_METADATA_KEY, summary.finished_at
        )
        _LOGGER.info(
            "Sync finished: found=%d added=%d updated=%d duplicates=%d "
            "flagged=%d failed=%d",
            summary.found,
            summary.added,
            summary.updated,
            summary.duplicates,
            summary.flagged,
            summary.failed,
        )
        return summary

    def _fetch(
        self,
        adapter: SourceAdapter,
        options: Optional[Mapping[str, Any]],
        started: Callable[[str], None],
    ) -> List[Any]:
        started(adapter.name)
        if self._governor is not None:
            key = f"sync:{adapter.name}"
            verdict = self._governor.check(
                key,
                DATA_SOURCE_PROFILE.max_attempts,
                DATA_SOURCE_PROFILE.window_ms,
            )
            if not verdict.allowed:
                raise RateLimitExceeded(key, verdict.retry_after)
        return list(adapter.fetch(options))

    def _ingest(
        self,
        source: str,
        raws: Sequence[Any],
        summary: SyncSummary,
        outcomes: Dict[str, Outcome],
    ) -> int:
        summary.found += len(raws)
        models, errors = normalize_batch(raws, source=source)
        summary.skipped_records += len(errors)

        kept, blocked = safety.filter_models(
            models,
            blocking=self._blocking,
            custom_keywords=self._custom_keywords,
        )
        tagged = sum(1 for model in kept if model.is_nsfw_flagged)
        summary.flagged += len(blocked) + tagged

        result = self._repository.apply(kept, origin=MergeOrigin.SYNC)
        for key, outcome in result.outcomes.items():
            outcomes[key] = combine_outcomes(outcomes.get(key), outcome)
        _LOGGER.debug(
            "Source %s: %d records, %s", source, len(raws),
            result.report.to_dict(),
        )
        return len(raws)
