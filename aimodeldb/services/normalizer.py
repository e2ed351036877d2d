"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Map provider-shaped raw records onto the canonical :class:`Model`.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from aimodeldb.models.catalog import (Domain, Hosting, LicenseInfo, Model,
                                      PricingEntry, SourceStat,
                                      pricing_from_dict)
from aimodeldb.services.license_analysis import (classify_license,
                                                 infer_license_from_tags)

_LOGGER = logging.getLogger(__name__)

PARAMETER_PATTERN = re.compile(r"\b(\d{1,3}(?:\.\d+)?)\s*([bm])\b", re.I)
_DATE_PATTERN = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
_PRICE_PATTERN = re.compile(
    r"\$\s*(?P<amount>\d+(?:\.\d+)?)\s*(?:/|per)\s*(?P<unit>[\w\s]+)", re.I
)
_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")

# Catalogs that publish downloadable weights.
OPEN_WEIGHT_SOURCES = frozenset(
    {
        "huggingface",
        "civitai",
        "civitasbay",
        "tensorart",
        "openmodeldb",
        "kaggle",
        "roboflow",
        "github",
        "ollama",
    }
)

# Ordered: the first matching marker decides the domain.
_DOMAIN_MARKERS: Sequence[Tuple[Domain, Tuple[str, ...]]] = (
    (Domain.LORA, ("lora", "locon", "lycoris", "loha")),
    (
        Domain.BACKGROUND_REMOVAL,
        ("background-removal", "remove-background", "rmbg", "matting"),
    ),
    (Domain.UPSCALER, ("upscal", "super-resolution", "esrgan")),
    (
        Domain.VLM,
        (
            "image-text-to-text",
            "visual-question-answering",
            "vlm",
            "vision-language",
        ),
    ),
    (Domain.ASR, ("automatic-speech-recognition", "asr", "speech-to-text")),
    (Domain.TTS, ("text-to-speech", "tts")),
    (Domain.VIDEO_GEN, ("text-to-video", "image-to-video", "video-gen")),
    (Domain.THREE_D, ("text-to-3d", "image-to-3d", "3d")),
    (
        Domain.IMAGE_GEN,
        (
            "text-to-image",
            "image-to-image",
            "stable-diffusion",
            "diffusers",
            "checkpoint",
            "flux",
        ),
    ),
    (Domain.AUDIO, ("text-to-audio", "audio", "music")),
    (Domain.WORLD_SIM, ("world-model", "simulation", "robotics")),
    (
        Domain.VISION,
        (
            "image-classification",
            "object-detection",
            "image-segmentation",
            "depth-estimation",
            "computer-vision",
        ),
    ),
    (
        Domain.LLM,
        (
            "text-generation",
            "text2text-generation",
            "conversational",
            "llm",
            "chat",
        ),
    ),
)


class NormalizationError(RuntimeError):
    """Raised when a raw record cannot be mapped to a model."""


def slugify(text: str) -> str:
    return _SLUG_PATTERN.sub("-", text.lower()).strip("-")


def infer_domain(hints: Iterable[str]) -> Optional[Domain]:
    lowered = [hint.lower() for hint in hints if hint and ":" not in hint]
    for domain, markers in _DOMAIN_MARKERS:
        for hint in lowered:
            if any(marker == hint or marker in hint for marker in markers):
                return domain
    return None


def infer_parameters(*texts: Optional[str]) -> Optional[str]:
    """Find parameter counts such as ``7B`` or ``350M`` in names or tags."""
    for text in texts:
        if not text:
            continue
        match = PARAMETER_PATTERN.search(text.replace("_", " "))
        if match:
            return f"{match.group(1)}{match.group(2).upper()}"
    return None


def normalize_date(value: Any) -> Optional[str]:
    """Return ``YYYY-MM-DD`` for ISO strings, datetimes or epoch numbers."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 10**11 else value
        try:
            stamp = datetime.fromtimestamp(seconds, timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
        return stamp.date().isoformat()
    text = str(value).strip()
    match = _DATE_PATTERN.search(text)
    if match:
        return "-".join(match.groups())
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed.date().isoformat()


def parse_pricing(value: Any) -> Tuple[PricingEntry, ...]:
    """Parse pricing lists or free text like ``$0.50 per 1M tokens``."""
    if value is None:
        return ()
    if isinstance(value, Mapping):
        value = [value]
    if isinstance(value, (list, tuple)):
        entries = []
        for item in value:
            if isinstance(item, Mapping):
                entries.append(pricing_from_dict(item))
            elif isinstance(item, str):
                entries.extend(parse_pricing(item))
        return tuple(entries)

    entries = []
    for match in _PRICE_PATTERN.finditer(str(value)):
        amount = float(match.group("amount"))
        unit = " ".join(match.group("unit").split()).lower()
        entry = PricingEntry(unit=unit)
        if entry.is_subscription:
            entries.append(PricingEntry(unit=unit, flat=amount))
        else:
            entries.append(PricingEntry(unit=unit, input=amount))
    return tuple(entries)


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _sequence(raw: Mapping[str, Any], key: str) -> List[Any]:
    """Read a list-valued field; comma-separated strings are split."""
    value = raw.get(key)
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return list(value)
    raise NormalizationError(
        f"field '{key}' must be a list, got {type(value).__name__}"
    )


def _tags(raw: Mapping[str, Any]) -> Tuple[str, ...]:
    tags: List[str] = []
    for item in _sequence(raw, "tags"):
        if isinstance(item, Mapping):
            item = item.get("name")
        text = _text(item)
        if text and text not in tags:
            tags.append(text)
    return tuple(tags)


def _downloads(raw: Mapping[str, Any]) -> Optional[int]:
    value = _first(raw, "downloads", "downloadCount", "download_count")
    if value is None and isinstance(raw.get("stats"), Mapping):
        value = _first(raw["stats"], "downloadCount", "downloads")
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _provider(raw: Mapping[str, Any], raw_id: Optional[str]) -> Optional[str]:
    value = _first(raw, "provider", "author", "owner", "organization")
    if value is None and isinstance(raw.get("creator"), Mapping):
        value = _first(raw["creator"], "username", "name")
    if value is None and raw_id and "/" in raw_id:
        value = raw_id.split("/", 1)[0]
    return _text(value)


def _license(raw: Mapping[str, Any], tags: Sequence[str]) -> LicenseInfo:
    value = raw.get("license")
    if isinstance(value, Mapping):
        info = classify_license(
            _text(value.get("name")),
            url=_text(value.get("url")),
            notes=_text(value.get("notes")),
        )
        if value.get("commercial_use") is not None:
            info = LicenseInfo(
                name=info.name,
                type=info.type,
                commercial_use=bool(value.get("commercial_use")),
                attribution_required=info.attribution_required,
                share_alike=info.share_alike,
                copyleft=info.copyleft,
                url=info.url,
                notes=info.notes,
            )
        return info
    name = _text(value) or infer_license_from_tags(tags)
    return classify_license(name)


def _hosting(
    raw: Mapping[str, Any],
    source: str,
    pricing: Sequence[PricingEntry],
) -> Hosting:
    value = raw.get("hosting")
    if isinstance(value, Mapping):
        providers = value.get("providers") or []
        return Hosting(
            weights_available=bool(value.get("weights_available")),
            api_available=bool(value.get("api_available")),
            on_premise_friendly=bool(value.get("on_premise_friendly")),
            providers=tuple(str(item) for item in providers if item),
        )
    weights = source.lower() in OPEN_WEIGHT_SOURCES
    api = any(entry.is_api_shaped for entry in pricing)
    return Hosting(
        weights_available=weights,
        api_available=api,
        on_premise_friendly=weights,
    )


def normalize(raw: Any, *, source: str) -> Model:
    """Map one opaque source record onto the canonical model."""

    if not isinstance(raw, Mapping):
        raise NormalizationError(
            f"{source} record is not a mapping: {type(raw).__name__}"
        )
    try:
        return _build(raw, source)
    except (TypeError, ValueError, OverflowError) as exc:
        raise NormalizationError(
            f"{source} record is malformed: {exc}"
        ) from exc


def _build(raw: Mapping[str, Any], source: str) -> Model:
    raw_id = _text(_first(raw, "id", "modelId", "model_id"))
    name = _text(
        _first(raw, "name", "modelId", "model_name", "title", "Model Name")
    )
    if name is None and raw_id:
        name = raw_id.split("/")[-1]
    if not name:
        raise NormalizationError(f"{source} record has neither id nor name")

    provider = _provider(raw, raw_id)
    tags = _tags(raw)
    domain = Domain.parse(raw.get("domain")) if raw.get("domain") else None
    if domain is None:
        hints = [
            _text(raw.get("pipeline_tag")) or "",
            _text(raw.get("type")) or "",
            *tags,
        ]
        domain = infer_domain(hints)

    pricing = parse_pricing(raw.get("pricing"))
    downloads = _downloads(raw)
    updated_at = normalize_date(
        _first(raw, "updated_at", "last_modified", "lastModified", "updatedAt")
    )
    release_date = normalize_date(
        _first(raw, "release_date", "created_at", "createdAt", "publishedAt")
    )
    model_id = raw_id or slugify(f"{source}-{provider or ''}-{name}")

    return Model(
        id=model_id,
        name=name,
        provider=provider,
        domain=domain,
        source=source,
        url=_text(_first(raw, "url", "link", "homepage")),
        repo=_text(raw.get("repo")),
        description=_text(_first(raw, "description", "summary")),
        license=_license(raw, tags),
        hosting=_hosting(raw, source, pricing),
        pricing=pricing,
        downloads=downloads,
        release_date=release_date,
        updated_at=updated_at,
        tags=tags,
        parameters=_text(raw.get("parameters"))
        or infer_parameters(name, *tags),
        context_window=_text(_first(raw, "context_window", "contextWindow")),
        usage_restrictions=tuple(
            str(item) for item in _sequence(raw, "usage_restrictions")
        ),
        images=tuple(
            str(item.get("url") if isinstance(item, Mapping) else item)
            for item in _sequence(raw, "images")
            if item
        ),
        source_stats={
            source: SourceStat(downloads=downloads, updated_at=updated_at)
        },
    )


def normalize_batch(
    raws: Iterable[Any], *, source: str
) -> Tuple[List[Model], List[str]]:
    """Normalize a batch, skipping (and reporting) malformed records."""

    models: List[Model] = []
    errors: List[str] = []
    for index, raw in enumerate(raws):
        try:
            models.append(normalize(raw, source=source))
        except NormalizationError as error:
            _LOGGER.warning(
                "Skipping %s record #%d: %s", source, index, error
            )
            errors.append(str(error))
    return models, errors
