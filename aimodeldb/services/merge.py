"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Identity resolution and record merging for the model catalog.

Every path that writes catalog records (sync, validation, user edits and the
safety scan) goes through :func:`merge`, so deduplication is decided by a
single :func:`identity_key` function.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from aimodeldb.models.catalog import Hosting, Model, PricingEntry

_LOGGER = logging.getLogger(__name__)

FUTURE_RELEASE_TAGS = ("unreleased", "future-release")

_BRACKETED = re.compile(r"\[([^\]]*)\]")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


class MergeOrigin(str, Enum):
    """Who produced the incoming records; decides field precedence."""

    SYNC = "sync"
    VALIDATION = "validation"
    USER_EDIT = "user_edit"
    SAFETY_SCAN = "safety_scan"


class Outcome(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    DUPLICATE = "duplicate"


@dataclass
class MergeReport:
    added: int = 0
    updated: int = 0
    duplicates: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[Outcome]) -> "MergeReport":
        report = cls()
        for outcome in outcomes:
            if outcome is Outcome.ADDED:
                report.added += 1
            elif outcome is Outcome.UPDATED:
                report.updated += 1
            else:
                report.duplicates += 1
        return report

    def to_dict(self) -> Dict[str, int]:
        return {
            "added": self.added,
            "updated": self.updated,
            "duplicates": self.duplicates,
        }


@dataclass
class MergeResult:
    merged: List[Model]
    report: MergeReport
    outcomes: Dict[str, Outcome] = field(default_factory=dict)


def normalize_name_for_match(name: Optional[str]) -> str:
    """Lower-case, unwrap ``[tags]`` and collapse punctuation to spaces."""

    if not name:
        return ""
    text = _BRACKETED.sub(r" \1 ", str(name).lower())
    return " ".join(_NON_ALNUM.sub(" ", text).split())


def _locator(value: Optional[str]) -> str:
    return (value or "").strip().lower().rstrip("/")


def identity_key(model: Model) -> str:
    """Derive the key that decides whether two records are the same model.

    ``name + provider`` when both are present, else the url or repo, else
    ``source + name``, else the record id.
    """

    name = normalize_name_for_match(model.name)
    provider = normalize_name_for_match(model.provider)
    if name and provider:
        return f"name:{name}|{provider}"
    locator = _locator(model.url) or _locator(model.repo)
    if locator:
        return f"loc:{locator}"
    source = (model.source or "").strip().lower()
    if name and source:
        return f"source:{source}|{name}"
    return f"id:{model.id}"


def sanitize_pricing(
    entries: Iterable[PricingEntry],
) -> Tuple[PricingEntry, ...]:
    """Drop ``flat`` from usage-priced units and remove duplicate lines."""

    cleaned: List[PricingEntry] = []
    seen = set()
    for entry in entries:
        if entry.is_api_shaped and entry.flat is not None:
            entry = dataclasses.replace(entry, flat=None)
        signature = entry.signature()
        if signature in seen:
            continue
        seen.add(signature)
        cleaned.append(entry)
    return tuple(cleaned)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == () or value == {}


def _pick(existing: Any, incoming: Any, incoming_wins: bool) -> Any:
    if incoming_wins:
        return existing if _is_empty(incoming) else incoming
    return incoming if _is_empty(existing) else existing


def _union(*groups: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(item for group in groups for item in group))


def _later(first: Optional[str], second: Optional[str]) -> Optional[str]:
    values = [value for value in (first, second) if value]
    return max(values) if values else None


def apply_release_tags(
    model: Model, today: Optional[date] = None
) -> Model:
    """Tag future releases; drop the tags once the date has passed."""

    if not model.release_date:
        return model
    current = (today or date.today()).isoformat()
    if model.release_date[:10] > current:
        tags = _union(model.tags, FUTURE_RELEASE_TAGS)
    else:
        tags = tuple(
            tag for tag in model.tags if tag not in FUTURE_RELEASE_TAGS
        )
    if tags == model.tags:
        return model
    return dataclasses.replace(model, tags=tags)


_SCALAR_FIELDS = (
    "name",
    "provider",
    "domain",
    "url",
    "repo",
    "description",
    "downloads",
    "release_date",
    "parameters",
    "context_window",
    "indemnity",
    "data_provenance",
    "analytics",
)


def merge_records(
    existing: Model,
    incoming: Model,
    origin: MergeOrigin = MergeOrigin.SYNC,
    *,
    today: Optional[date] = None,
) -> Model:
    """Merge ``incoming`` into ``existing`` under the precedence of ``origin``.

    Sync fills only fields that are empty on the existing record.
    Validation results and user edits win wherever they supply a value.
    Empty incoming values never clear existing data.
    """

    if origin is MergeOrigin.SAFETY_SCAN:
        return dataclasses.replace(
            existing,
            is_nsfw_flagged=incoming.is_nsfw_flagged,
            tags=incoming.tags,
        )

    incoming_wins = origin in (MergeOrigin.VALIDATION, MergeOrigin.USER_EDIT)
    values: Dict[str, Any] = {
        name: _pick(
            getattr(existing, name), getattr(incoming, name), incoming_wins
        )
        for name in _SCALAR_FIELDS
    }

    if incoming_wins and incoming.license.is_known:
        license_info = incoming.license
    elif existing.license.is_known:
        license_info = existing.license
    else:
        license_info = incoming.license
    other = incoming.license if license_info is existing.license else (
        existing.license
    )
    license_info = dataclasses.replace(
        license_info,
        url=license_info.url or other.url,
        notes=license_info.notes or other.notes,
    )

    if origin is MergeOrigin.USER_EDIT:
        hosting = incoming.hosting
        tags = incoming.tags
    else:
        hosting = Hosting(
            weights_available=existing.hosting.weights_available
            or incoming.hosting.weights_available,
            api_available=existing.hosting.api_available
            or incoming.hosting.api_available,
            on_premise_friendly=existing.hosting.on_premise_friendly
            or incoming.hosting.on_premise_friendly,
            providers=_union(
                existing.hosting.providers, incoming.hosting.providers
            ),
        )
        tags = _union(existing.tags, incoming.tags)

    pricing = sanitize_pricing(
        _pick(existing.pricing, incoming.pricing, incoming_wins)
    )
    benchmarks = _pick(existing.benchmarks, incoming.benchmarks, incoming_wins)

    if origin is MergeOrigin.USER_EDIT:
        is_favorite = incoming.is_favorite
        is_nsfw_flagged = incoming.is_nsfw_flagged
        flagged_image_urls = incoming.flagged_image_urls
    else:
        is_favorite = existing.is_favorite
        is_nsfw_flagged = existing.is_nsfw_flagged
        flagged_image_urls = _union(
            existing.flagged_image_urls, incoming.flagged_image_urls
        )

    merged = dataclasses.replace(
        existing,
        license=license_info,
        hosting=hosting,
        pricing=pricing,
        benchmarks=benchmarks,
        tags=tags,
        updated_at=_later(existing.updated_at, incoming.updated_at),
        usage_restrictions=_union(
            existing.usage_restrictions, incoming.usage_restrictions
        ),
        images=_union(existing.images, incoming.images),
        is_favorite=is_favorite,
        is_nsfw_flagged=is_nsfw_flagged,
        flagged_image_urls=flagged_image_urls,
        source_stats={**existing.source_stats, **incoming.source_stats},
        **values,
    )
    return apply_release_tags(merged, today)


def _collapse_batch(
    incoming: Sequence[Model], origin: MergeOrigin, today: Optional[date]
) -> Tuple[Dict[str, Model], Dict[str, Model], List[str]]:
    """Fold same-key records so that later ones win over earlier ones.

    Returns ``(folded, first_seen, order)`` keyed by identity key.
    """

    fold_origin = (
        origin
        if origin in (MergeOrigin.USER_EDIT, MergeOrigin.SAFETY_SCAN)
        else MergeOrigin.VALIDATION
    )
    folded: Dict[str, Model] = {}
    first_seen: Dict[str, Model] = {}
    order: List[str] = []
    for record in incoming:
        key = identity_key(record)
        previous = folded.get(key)
        if previous is None:
            folded[key] = record
            first_seen[key] = record
            order.append(key)
            continue
        combined = merge_records(previous, record, fold_origin, today=today)
        if record.is_nsfw_flagged and not combined.is_nsfw_flagged:
            combined = dataclasses.replace(combined, is_nsfw_flagged=True)
        folded[key] = combined
    return folded, first_seen, order


def merge(
    existing: Sequence[Model],
    incoming: Sequence[Model],
    origin: MergeOrigin = MergeOrigin.SYNC,
    *,
    today: Optional[date] = None,
) -> MergeResult:
    """Reconcile ``incoming`` with ``existing`` and report what changed.

    Outcomes are counted once per identity key: a new model is ``added``
    unless several batch records had to be reconciled into it, in which
    case it is ``updated``. A known model is ``updated`` when any field
    changed and a ``duplicate`` otherwise. The merged list keeps existing
    order and appends new models in batch order.
    """

    merged: List[Model] = list(existing)
    by_key: Dict[str, int] = {}
    by_id: Dict[str, int] = {}
    for index, model in enumerate(merged):
        by_key.setdefault(identity_key(model), index)
        by_id.setdefault(model.id, index)

    folded, first_seen, order = _collapse_batch(incoming, origin, today)
    outcomes: Dict[str, Outcome] = {}

    for key in order:
        record = folded[key]
        index = by_key.get(key)
        if index is None:
            index = by_id.get(record.id)

        if index is None:
            added = apply_release_tags(
                dataclasses.replace(
                    record, pricing=sanitize_pricing(record.pricing)
                ),
                today,
            )
            merged.append(added)
            by_key[key] = len(merged) - 1
            by_id.setdefault(added.id, len(merged) - 1)
            reconciled = record != first_seen[key]
            outcomes[key] = Outcome.UPDATED if reconciled else Outcome.ADDED
            continue

        current = merged[index]
        result = merge_records(current, record, origin, today=today)
        merged[index] = result
        by_key.setdefault(identity_key(result), index)
        outcomes[key] = (
            Outcome.UPDATED if result != current else Outcome.DUPLICATE
        )

    report = MergeReport.from_outcomes(outcomes.values())
    _LOGGER.debug(
        "Merged %d incoming (%s): added=%d updated=%d duplicates=%d",
        len(incoming),
        origin.value,
        report.added,
        report.updated,
        report.duplicates,
    )
    return MergeResult(merged=merged, report=report, outcomes=outcomes)
