"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Canonical catalog records and their JSON representation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

API_UNIT_MARKERS = ("token", "request", "call")
SUBSCRIPTION_UNIT_MARKERS = ("month", "year", "annual", "subscription", "plan")


class Domain(str, Enum):
    """Model category used for filtering and completeness rules."""

    LLM = "LLM"
    VLM = "VLM"
    VISION = "Vision"
    IMAGE_GEN = "ImageGen"
    VIDEO_GEN = "VideoGen"
    AUDIO = "Audio"
    ASR = "ASR"
    TTS = "TTS"
    THREE_D = "3D"
    WORLD_SIM = "World/Sim"
    LORA = "LoRA"
    FINE_TUNE = "FineTune"
    BACKGROUND_REMOVAL = "BackgroundRemoval"
    UPSCALER = "Upscaler"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Any) -> Optional["Domain"]:
        """Return the matching member (case-insensitive) or ``Other``."""
        if value is None or value == "":
            return None
        if isinstance(value, Domain):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        return cls.OTHER


class LicenseType(str, Enum):
    """Coarse license family."""

    OSI = "OSI"
    COPYLEFT = "Copyleft"
    NON_COMMERCIAL = "Non-Commercial"
    CUSTOM = "Custom"
    PROPRIETARY = "Proprietary"

    @classmethod
    def parse(cls, value: Any) -> Optional["LicenseType"]:
        if value is None or value == "":
            return None
        if isinstance(value, LicenseType):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        return cls.CUSTOM


@dataclass(frozen=True)
class LicenseInfo:
    """License name, family and usage terms; unknown booleans are False."""

    name: Optional[str] = None
    type: Optional[LicenseType] = None
    commercial_use: bool = False
    attribution_required: bool = False
    share_alike: bool = False
    copyleft: bool = False
    url: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_known(self) -> bool:
        return bool(self.name) and self.name.lower() != "unknown"


@dataclass(frozen=True)
class Hosting:
    """Where and how a model can be run."""

    weights_available: bool = False
    api_available: bool = False
    on_premise_friendly: bool = False
    providers: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PricingEntry:
    """One pricing line: per-unit costs or a flat subscription fee."""

    unit: Optional[str] = None
    input: Optional[float] = None
    output: Optional[float] = None
    flat: Optional[float] = None
    currency: str = "USD"
    model: Optional[str] = None
    notes: Optional[str] = None
    url: Optional[str] = None

    @property
    def is_api_shaped(self) -> bool:
        unit = (self.unit or "").lower()
        return any(marker in unit for marker in API_UNIT_MARKERS)

    @property
    def is_subscription(self) -> bool:
        unit = (self.unit or "").lower()
        return any(marker in unit for marker in SUBSCRIPTION_UNIT_MARKERS)

    def signature(self) -> str:
        """Key used to deduplicate otherwise identical entries."""
        return "|".join(
            [
                (self.model or "").lower(),
                (self.unit or "").lower(),
                _num_text(self.input),
                _num_text(self.output),
                _num_text(self.flat),
                (self.currency or "").upper(),
            ]
        )


@dataclass(frozen=True)
class SourceStat:
    """Per-catalog provenance snapshot."""

    downloads: Optional[int] = None
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class Model:
    """Canonical catalog entry after normalization."""

    id: str
    name: str
    provider: Optional[str] = None
    domain: Optional[Domain] = None
    source: Optional[str] = None
    url: Optional[str] = None
    repo: Optional[str] = None
    description: Optional[str] = None
    license: LicenseInfo = field(default_factory=LicenseInfo)
    hosting: Hosting = field(default_factory=Hosting)
    pricing: Tuple[PricingEntry, ...] = ()
    downloads: Optional[int] = None
    release_date: Optional[str] = None
    updated_at: Optional[str] = None
    tags: Tuple[str, ...] = ()
    parameters: Optional[str] = None
    context_window: Optional[str] = None
    indemnity: Optional[str] = None
    data_provenance: Optional[str] = None
    usage_restrictions: Tuple[str, ...] = ()
    benchmarks: Tuple[Mapping[str, Any], ...] = ()
    images: Tuple[str, ...] = ()
    analytics: Optional[Mapping[str, Any]] = None
    is_favorite: bool = False
    is_nsfw_flagged: bool = False
    flagged_image_urls: Tuple[str, ...] = ()
    source_stats: Mapping[str, SourceStat] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to the JSON shape shared with the desktop client."""
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "domain": self.domain.value if self.domain else None,
            "source": self.source,
            "url": self.url,
            "repo": self.repo,
            "description": self.description,
            "license": {
                "name": self.license.name,
                "type": self.license.type.value if self.license.type else None,
                "commercial_use": self.license.commercial_use,
                "attribution_required": self.license.attribution_required,
                "share_alike": self.license.share_alike,
                "copyleft": self.license.copyleft,
                "url": self.license.url,
                "notes": self.license.notes,
            },
            "hosting": {
                "weights_available": self.hosting.weights_available,
                "api_available": self.hosting.api_available,
                "on_premise_friendly": self.hosting.on_premise_friendly,
                "providers": list(self.hosting.providers),
            },
            "pricing": [_pricing_to_dict(entry) for entry in self.pricing],
            "downloads": self.downloads,
            "release_date": self.release_date,
            "updated_at": self.updated_at,
            "tags": list(self.tags),
            "parameters": self.parameters,
            "context_window": self.context_window,
            "indemnity": self.indemnity,
            "data_provenance": self.data_provenance,
            "usage_restrictions": list(self.usage_restrictions),
            "benchmarks": [dict(item) for item in self.benchmarks],
            "images": list(self.images),
            "analytics": dict(self.analytics) if self.analytics else None,
            "isFavorite": self.is_favorite,
            "isNSFWFlagged": self.is_nsfw_flagged,
            "flaggedImageUrls": list(self.flagged_image_urls),
            "source_stats": {
                name: {
                    "downloads": stat.downloads,
                    "updated_at": stat.updated_at,
                }
                for name, stat in self.source_stats.items()
            },
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "Model":
        """Rebuild a model from :meth:`to_dict` output (or a close variant)."""
        if not isinstance(payload, Mapping):
            raise ValueError("Model payload must be a mapping")
        model_id = _text(payload.get("id"))
        name = _text(payload.get("name"))
        if not model_id and not name:
            raise ValueError("Model payload requires an id or a name")

        license_raw = payload.get("license")
        if isinstance(license_raw, str):
            license_raw = {"name": license_raw}
        license_raw = license_raw if isinstance(license_raw, Mapping) else {}
        hosting_raw = payload.get("hosting")
        hosting_raw = hosting_raw if isinstance(hosting_raw, Mapping) else {}
        stats_raw = payload.get("source_stats")
        stats_raw = stats_raw if isinstance(stats_raw, Mapping) else {}

        return cls(
            id=model_id or name or "",
            name=name or model_id or "",
            provider=_text(payload.get("provider")),
            domain=Domain.parse(payload.get("domain")),
            source=_text(payload.get("source")),
            url=_text(payload.get("url")),
            repo=_text(payload.get("repo")),
            description=_text(payload.get("description")),
            license=LicenseInfo(
                name=_text(license_raw.get("name")),
                type=LicenseType.parse(license_raw.get("type")),
                commercial_use=bool(license_raw.get("commercial_use")),
                attribution_required=bool(
                    license_raw.get("attribution_required")
                ),
                share_alike=bool(license_raw.get("share_alike")),
                copyleft=bool(license_raw.get("copyleft")),
                url=_text(license_raw.get("url")),
                notes=_text(license_raw.get("notes")),
            ),
            hosting=Hosting(
                weights_available=bool(hosting_raw.get("weights_available")),
                api_available=bool(hosting_raw.get("api_available")),
                on_premise_friendly=bool(
                    hosting_raw.get("on_premise_friendly")
                ),
                providers=_str_tuple(hosting_raw.get("providers")),
            ),
            pricing=tuple(
                pricing_from_dict(item)
                for item in _as_list(payload.get("pricing"))
                if isinstance(item, Mapping)
            ),
            downloads=_int_or_none(payload.get("downloads")),
            release_date=_text(payload.get("release_date")),
            updated_at=_text(payload.get("updated_at")),
            tags=_str_tuple(payload.get("tags")),
            parameters=_text(payload.get("parameters")),
            context_window=_text(payload.get("context_window")),
            indemnity=_text(payload.get("indemnity")),
            data_provenance=_text(payload.get("data_provenance")),
            usage_restrictions=_str_tuple(payload.get("usage_restrictions")),
            benchmarks=tuple(
                dict(item)
                for item in _as_list(payload.get("benchmarks"))
                if isinstance(item, Mapping)
            ),
            images=_str_tuple(payload.get("images")),
            analytics=(
                dict(payload["analytics"])
                if isinstance(payload.get("analytics"), Mapping)
                else None
            ),
            is_favorite=bool(
                payload.get("isFavorite", payload.get("is_favorite", False))
            ),
            is_nsfw_flagged=bool(
                payload.get(
                    "isNSFWFlagged", payload.get("is_nsfw_flagged", False)
                )
            ),
            flagged_image_urls=_str_tuple(
                payload.get(
                    "flaggedImageUrls", payload.get("flagged_image_urls")
                )
            ),
            source_stats={
                str(key): SourceStat(
                    downloads=_int_or_none(value.get("downloads")),
                    updated_at=_text(value.get("updated_at")),
                )
                for key, value in stats_raw.items()
                if isinstance(value, Mapping)
            },
        )


def pricing_from_dict(payload: Mapping[str, Any]) -> PricingEntry:
    return PricingEntry(
        unit=_text(payload.get("unit")),
        input=_float_or_none(payload.get("input")),
        output=_float_or_none(payload.get("output")),
        flat=_float_or_none(payload.get("flat")),
        currency=(_text(payload.get("currency")) or "USD").upper(),
        model=_text(payload.get("model")),
        notes=_text(payload.get("notes")),
        url=_text(payload.get("url")),
    )


def _pricing_to_dict(entry: PricingEntry) -> Dict[str, Any]:
    return {
        "model": entry.model,
        "unit": entry.unit,
        "input": entry.input,
        "output": entry.output,
        "flat": entry.flat,
        "currency": entry.currency,
        "notes": entry.notes,
        "url": entry.url,
    }


_PARAMETER_DOMAINS = {Domain.LLM, Domain.VLM, Domain.IMAGE_GEN}
_CONTEXT_DOMAINS = {Domain.LLM, Domain.VLM}


def missing_fields(model: Model) -> List[str]:
    """List the fields a validation pass should try to fill in."""

    missing: List[str] = []
    if not model.name:
        missing.append("name")
    if not model.provider:
        missing.append("provider")
    if model.domain is None:
        missing.append("domain")
    if not model.description:
        missing.append("description")
    if model.domain in _PARAMETER_DOMAINS and not model.parameters:
        missing.append("parameters")
    if model.domain in _CONTEXT_DOMAINS and not model.context_window:
        missing.append("context_window")
    if not model.license.is_known:
        missing.append("license.name")
    if not model.release_date and not model.updated_at:
        missing.append("release_date")
    if not model.tags:
        missing.append("tags")
    return missing


def is_incomplete(model: Model) -> bool:
    return bool(missing_fields(model))


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    text = str(value).strip()
    return text or None


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _str_tuple(value: Any) -> Tuple[str, ...]:
    items: List[str] = []
    for item in _as_list(value):
        text = _text(item)
        if text and text not in items:
            items.append(text)
    return tuple(items)


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _float_or_none(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _num_text(value: Optional[float]) -> str:
    if value is None:
        return ""
    return f"{value:g}"
