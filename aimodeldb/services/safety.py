"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Rule-based adult-content classifier for catalog records.

Rules are pure functions evaluated in order; the first one that returns a
verdict wins. The last rule always answers, so :func:`classify` is total.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass
from typing import (Callable, Iterable, List, Optional, Pattern, Sequence,
                    Tuple)

from aimodeldb.models.catalog import Model

_LOGGER = logging.getLogger(__name__)

NSFW_TAG = "nsfw"
SCORE_THRESHOLD = 100
TAG_WEIGHT = 100
DESCRIPTION_WEIGHT = 50
MIN_TAG_TERM_LENGTH = 3

EXPLICIT_TERMS: Tuple[str, ...] = (
    "porn",
    "porno",
    "pornographic",
    "hentai",
    "xxx",
    "rule34",
    "yiff",
    "fetish",
    "bdsm",
    "kink",
    "kinky",
    "nsfw",
    "18+",
    "nude",
    "nudes",
    "nudity",
    "naked",
    "sex",
    "sexual",
    "erotic",
    "erotica",
    "lewd",
    "ecchi",
    "topless",
    "genitals",
)

SAFETY_TOOL_MARKERS: Tuple[str, ...] = (
    "detector",
    "detection",
    "detect",
    "classifier",
    "classification",
    "filter",
    "moderation",
    "checker",
    "safety",
)

TRUSTED_PROVIDERS = frozenset(
    {
        "google",
        "google-bert",
        "google-t5",
        "facebook",
        "facebookai",
        "meta",
        "meta-llama",
        "microsoft",
        "openai",
        "anthropic",
        "huggingface",
        "sentence-transformers",
        "distilbert",
        "mistralai",
        "nvidia",
        "ibm",
        "ibm-granite",
        "apple",
        "amazon",
        "cohere",
        "qwen",
        "deepseek-ai",
        "allenai",
    }
)

# Written in normalized form: letter/digit runs are split (t5 -> "t 5").
SAFE_FAMILY_PATTERNS: Tuple[str, ...] = (
    r"bert",
    r"distilbert",
    r"roberta",
    r"albert",
    r"electra",
    r"deberta",
    r"gpt",
    r"llama",
    r"t 5",
    r"flan",
    r"gemma",
    r"gemini",
    r"mistral",
    r"mixtral",
    r"qwen",
    r"phi",
    r"falcon",
    r"bloom",
    r"whisper",
    r"wav 2 vec",
    r"clip",
    r"vit",
    r"resnet",
    r"yolov?",
    r"stable diffusion",
    r"sdxl",
    r"flux",
    r"kandinsky",
    r"musicgen",
    r"bark",
    r"esrgan",
    r"upscaler",
    r"encoder",
    r"embedding",
    r"embeddings",
    r"classifier",
    r"segmentation",
    r"controlnet",
)

HIGH_RISK_SOURCES: Tuple[str, ...] = (
    "civitai",
    "civitaiarchive",
    "civitasbay",
    "tensorart",
)

_CAMEL_LOWER_UPPER = re.compile(r"([a-z])([A-Z])")
_CAMEL_ACRONYM = re.compile(r"([A-Z]+)([A-Z][a-z])")
_LETTER_DIGIT = re.compile(r"([A-Za-z])(\d)")
_DIGIT_LETTER = re.compile(r"(\d)([A-Za-z])")
_NON_WORD = re.compile(r"[^a-z0-9+]+")


@dataclass(frozen=True)
class SafetyVerdict:
    is_nsfw: bool
    confidence: float
    reasons: Tuple[str, ...] = ()
    flagged_terms: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RuleContext:
    """Precomputed views of one model shared by every rule."""

    name: str
    normalized_name: str
    provider: str
    source: str
    description: str
    tags: Tuple[str, ...]
    name_terms: Tuple[str, ...]
    tag_terms: Tuple[str, ...]


Rule = Callable[[Model, RuleContext], Optional[SafetyVerdict]]


def normalize_name(text: Optional[str]) -> str:
    """Lower-case and space out CamelCase, delimiters and digit runs."""

    if not text:
        return ""
    spaced = _CAMEL_ACRONYM.sub(r"\1 \2", text)
    spaced = _CAMEL_LOWER_UPPER.sub(r"\1 \2", spaced)
    spaced = _LETTER_DIGIT.sub(r"\1 \2", spaced)
    spaced = _DIGIT_LETTER.sub(r"\1 \2", spaced)
    return " ".join(_NON_WORD.sub(" ", spaced.lower()).split())


def _normalize_tag(tag: str) -> str:
    return re.sub(r"[^a-z0-9]", "", tag.lower())


def _term_pattern(term: str) -> Pattern[str]:
    return re.compile(
        r"(?<![a-z0-9])" + re.escape(term) + r"(?![a-z0-9])"
    )


def _find_terms(text: str, terms: Iterable[str]) -> List[str]:
    """Word-boundary search for each term and its no-space variant."""

    hits: List[str] = []
    if not text:
        return hits
    for term in terms:
        variants = {normalize_name(term), term.lower().replace(" ", "")}
        for variant in variants:
            if variant and _term_pattern(variant).search(text):
                hits.append(term)
                break
    return hits


def safety_tool_rule(
    model: Model, context: RuleContext
) -> Optional[SafetyVerdict]:
    """Detectors and filters for adult content are not themselves unsafe."""

    words = set(context.normalized_name.split())
    if "nsfw" in words or "nsfw" in context.name.lower():
        if words.intersection(SAFETY_TOOL_MARKERS):
            return SafetyVerdict(
                False, 0.0, reasons=("NSFW detection/safety model",)
            )
    return None


def explicit_name_rule(
    model: Model, context: RuleContext
) -> Optional[SafetyVerdict]:
    hits = _find_terms(context.normalized_name, context.name_terms)
    if hits:
        return SafetyVerdict(
            True,
            1.0,
            reasons=("Flagged terms in model name",),
            flagged_terms=tuple(dict.fromkeys(hits)),
        )
    return None


def trusted_provider_rule(
    model: Model, context: RuleContext
) -> Optional[SafetyVerdict]:
    if context.provider and context.provider in TRUSTED_PROVIDERS:
        return SafetyVerdict(False, 0.0, reasons=("Trusted provider",))
    return None


_SAFE_FAMILY_REGEX = re.compile(
    r"(?<![a-z0-9])(" + "|".join(SAFE_FAMILY_PATTERNS) + r")(?![a-z0-9])"
)


def safe_family_rule(
    model: Model, context: RuleContext
) -> Optional[SafetyVerdict]:
    """General-purpose model families are not unsafe by themselves."""

    if _SAFE_FAMILY_REGEX.search(context.normalized_name):
        return SafetyVerdict(
            False, 0.0, reasons=("Known safe model pattern",)
        )
    return None


def _is_high_risk(context: RuleContext) -> bool:
    return any(
        marker in context.provider or marker in context.source
        for marker in HIGH_RISK_SOURCES
    )


def scored_rule(model: Model, context: RuleContext) -> SafetyVerdict:
    score = 0
    reasons: List[str] = []
    flagged: List[str] = []

    if _is_high_risk(context) and context.description:
        description = normalize_name(context.description)
        hits = _find_terms(description, context.name_terms)
        if hits:
            score += DESCRIPTION_WEIGHT * len(set(hits))
            flagged.extend(hits)
            reasons.append("Explicit terms in description")

    wanted = {
        _normalize_tag(term): term
        for term in context.tag_terms
        if len(_normalize_tag(term)) >= MIN_TAG_TERM_LENGTH
    }
    tag_hits = [tag for tag in context.tags if _normalize_tag(tag) in wanted]
    if tag_hits:
        score += TAG_WEIGHT * len(tag_hits)
        flagged.extend(tag_hits)
        reasons.append("NSFW tags detected")

    is_nsfw = score >= SCORE_THRESHOLD
    return SafetyVerdict(
        is_nsfw,
        1.0 if is_nsfw else round(score / SCORE_THRESHOLD, 2),
        reasons=tuple(reasons),
        flagged_terms=tuple(dict.fromkeys(flagged)),
    )


RULES: Sequence[Rule] = (
    safety_tool_rule,
    explicit_name_rule,
    trusted_provider_rule,
    safe_family_rule,
    scored_rule,
)


def _context(model: Model, custom_keywords: Sequence[str]) -> RuleContext:
    extra = tuple(
        keyword.strip().lower()
        for keyword in custom_keywords
        if keyword and keyword.strip()
    )
    return RuleContext(
        name=model.name or "",
        normalized_name=normalize_name(model.name),
        provider=(model.provider or "").strip().lower(),
        source=(model.source or "").strip().lower(),
        description=model.description or "",
        tags=tuple(model.tags),
        name_terms=EXPLICIT_TERMS + extra,
        tag_terms=EXPLICIT_TERMS + extra,
    )


def classify(
    model: Model, custom_keywords: Sequence[str] = ()
) -> SafetyVerdict:
    """Return the verdict of the first rule that answers."""

    context = _context(model, custom_keywords)
    for rule in RULES:
        verdict = rule(model, context)
        if verdict is not None:
            return verdict
    # scored_rule always answers; kept for type checkers.
    return SafetyVerdict(False, 0.0)


def mark_nsfw(model: Model) -> Model:
    tags = tuple(dict.fromkeys(model.tags + (NSFW_TAG,)))
    return dataclasses.replace(model, is_nsfw_flagged=True, tags=tags)


def unmark_nsfw(model: Model) -> Model:
    tags = tuple(tag for tag in model.tags if tag != NSFW_TAG)
    return dataclasses.replace(model, is_nsfw_flagged=False, tags=tags)


def filter_models(
    models: Iterable[Model],
    *,
    blocking: bool,
    custom_keywords: Sequence[str] = (),
) -> Tuple[List[Model], List[Model]]:
    """Split a batch into ``(kept, blocked)``.

    In blocking mode unsafe records go to ``blocked``. In tagging mode they
    are kept, marked with ``is_nsfw_flagged`` and the ``nsfw`` tag.
    """

    kept: List[Model] = []
    blocked: List[Model] = []
    for model in models:
        verdict = classify(model, custom_keywords)
        if not verdict.is_nsfw:
            kept.append(model)
        elif blocking:
            blocked.append(model)
        else:
            kept.append(mark_nsfw(model))

    if blocked:
        _LOGGER.warning("Safety filter blocked %d records", len(blocked))
    return kept, blocked


def rescan(
    models: Iterable[Model], custom_keywords: Sequence[str] = ()
) -> Tuple[List[Model], int, int]:
    """Re-evaluate every record, tagging new hits and clearing stale flags.

    The ``nsfw`` tag is the flag marker itself, so it is ignored as evidence.
    Favourites and flagged image URLs are left untouched.
    """

    results: List[Model] = []
    flagged = 0
    unflagged = 0
    for model in models:
        cleared = unmark_nsfw(model)
        verdict = classify(cleared, custom_keywords)
        has_tag = NSFW_TAG in model.tags
        if verdict.is_nsfw and not (model.is_nsfw_flagged and has_tag):
            results.append(mark_nsfw(model))
            flagged += 1
        elif not verdict.is_nsfw and (model.is_nsfw_flagged or has_tag):
            results.append(unmark_nsfw(model))
            unflagged += 1
        else:
            results.append(model)

    if flagged:
        _LOGGER.info("Safety scan tagged %d models as NSFW", flagged)
    if unflagged:
        _LOGGER.info("Safety scan untagged %d false positives", unflagged)
    return results, flagged, unflagged
