"""Helpers for classifying model licenses from names and tags."""

from __future__ import annotations

import re
from typing import Dict, Iterable, Optional

from aimodeldb.models.catalog import LicenseInfo, LicenseType

_LICENSE_PATTERNS: Dict[str, re.Pattern[str]] = {
    "Apache-2.0": re.compile(r"apache[\s\-_]*(license)?[\s\-_]*2(\.0)?", re.I),
    "MIT": re.compile(r"^mit$|\bmit\s+license\b", re.I),
    "BSD-3-Clause": re.compile(r"bsd[\s\-_]*3", re.I),
    "BSD-2-Clause": re.compile(r"bsd[\s\-_]*2", re.I),
    "AGPL-3.0": re.compile(r"\bagpl", re.I),
    "LGPL-3.0": re.compile(r"\blgpl", re.I),
    "GPL-3.0": re.compile(r"\bgpl[\s\-_]*3", re.I),
    "GPL-2.0": re.compile(r"\bgpl[\s\-_]*2", re.I),
    "MPL-2.0": re.compile(r"\bmpl", re.I),
    "CC-BY-NC-SA-4.0": re.compile(r"cc[\s\-_]*by[\s\-_]*nc[\s\-_]*sa", re.I),
    "CC-BY-NC-4.0": re.compile(r"cc[\s\-_]*by[\s\-_]*nc", re.I),
    "CC-BY-SA-4.0": re.compile(r"cc[\s\-_]*by[\s\-_]*sa", re.I),
    "CC-BY-4.0": re.compile(r"cc[\s\-_]*by(?![\s\-_]*(nc|sa|nd))", re.I),
    "CC0-1.0": re.compile(r"\bcc0\b", re.I),
    "OpenRAIL-M": re.compile(r"openrail", re.I),
    "Llama Community": re.compile(r"\bllama[\s\-_]*\d", re.I),
    "Gemma Terms": re.compile(r"\bgemma\b", re.I),
}

_ALIASES = {
    "apache 2.0": "Apache-2.0",
    "apache-2.0": "Apache-2.0",
    "apache2": "Apache-2.0",
    "mit": "MIT",
    "gpl": "GPL-3.0",
    "cc-by-4.0": "CC-BY-4.0",
    "cc-by-nc-4.0": "CC-BY-NC-4.0",
    "cc-by-sa-4.0": "CC-BY-SA-4.0",
    "creativeml-openrail-m": "OpenRAIL-M",
    "openrail": "OpenRAIL-M",
    "openrail++": "OpenRAIL-M",
    "proprietary": "Proprietary",
    "other": "Custom",
    "unknown": "Unknown",
}

_OSI = {
    "Apache-2.0",
    "MIT",
    "BSD-3-Clause",
    "BSD-2-Clause",
    "MPL-2.0",
    "CC0-1.0",
    "CC-BY-4.0",
}
_COPYLEFT = {"GPL-3.0", "GPL-2.0", "AGPL-3.0", "LGPL-3.0", "CC-BY-SA-4.0"}
_NON_COMMERCIAL = {"CC-BY-NC-4.0", "CC-BY-NC-SA-4.0"}


def normalize_license_name(name: Optional[str]) -> Optional[str]:
    """Map free-form license text to a canonical short name."""

    if name is None:
        return None
    text = str(name).strip()
    if not text:
        return None
    alias = _ALIASES.get(text.lower())
    if alias:
        return alias
    for canonical, pattern in _LICENSE_PATTERNS.items():
        if pattern.search(text):
            return canonical
    return text


def infer_license_from_tags(tags: Iterable[str]) -> Optional[str]:
    """Read ``license:<slug>`` tags as published by the Hugging Face Hub."""

    for tag in tags:
        if tag.lower().startswith("license:"):
            slug = tag.split(":", 1)[1].strip()
            if slug:
                return normalize_license_name(slug)
    return None


def _determine_type(canonical: str) -> LicenseType:
    lowered = canonical.lower()
    if canonical in _NON_COMMERCIAL or "non-commercial" in lowered or (
        re.search(r"\bnc\b", lowered)
    ):
        return LicenseType.NON_COMMERCIAL
    if canonical in _OSI or re.search(r"\b(mit|apache|bsd)\b", lowered):
        return LicenseType.OSI
    if canonical in _COPYLEFT or "gpl" in lowered or "copyleft" in lowered:
        return LicenseType.COPYLEFT
    if "proprietary" in lowered or "commercial" in lowered:
        return LicenseType.PROPRIETARY
    return LicenseType.CUSTOM


def classify_license(
    name: Optional[str],
    *,
    url: Optional[str] = None,
    notes: Optional[str] = None,
) -> LicenseInfo:
    """Infer the license family and usage terms from a license name."""

    canonical = normalize_license_name(name)
    if not canonical or canonical == "Unknown":
        return LicenseInfo(name=canonical, url=url, notes=notes)

    license_type = _determine_type(canonical)
    lowered = canonical.lower()
    copyleft = license_type == LicenseType.COPYLEFT
    share_alike = copyleft or "-sa" in lowered
    commercial = license_type in (LicenseType.OSI, LicenseType.COPYLEFT) or (
        "openrail" in lowered
    )
    attribution = (
        lowered.startswith("cc-by")
        or canonical in {"Apache-2.0", "MIT", "BSD-3-Clause", "BSD-2-Clause"}
        or "llama" in lowered
    )
    return LicenseInfo(
        name=canonical,
        type=license_type,
        commercial_use=commercial,
        attribution_required=attribution,
        share_alike=share_alike,
        copyleft=copyleft,
        url=url,
        notes=notes,
    )
