"""Confidence model for multi-source business facts.

Every fact gathered during research is wrapped in a ``ConfValue`` that records
where it came from and how much we believe it. Confidence starts from a fixed
base score per source kind, is reduced by deterministic penalties (empty value,
placeholder, stale, bad format, unverifiable model-only claims) and is raised
by a graduated corroboration boost when distinct kinds of source agree.

All functions here are pure: no I/O, no exceptions on malformed numbers
(non-finite inputs are clamped, not rejected).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from .config.settings import SECTION_WEIGHTS
from .models import ConfValue, SourceKind, SourceRef, clamp_confidence, round2, utc_now_iso

logger = logging.getLogger(__name__)

MAX_CONFIDENCE = 0.98
EMPTY_PENALTY = 0.15
PLACEHOLDER_PENALTY = 0.10
STALE_PENALTY = 0.10
FORMAT_PENALTY = 0.10
LLM_ONLY_INFERRED_PENALTY = 0.15

BASE_CONFIDENCE: Dict[SourceKind, float] = {
    SourceKind.OWNER_PROVIDED: 0.95,
    SourceKind.USER_PROVIDED: 0.90,
    SourceKind.MAPPING_SERVICE: 0.92,
    SourceKind.OPEN_MAP_DATA: 0.80,
    SourceKind.REVIEW_PLATFORM: 0.80,
    SourceKind.DOMAIN_REGISTRY: 0.70,
    SourceKind.STREET_IMAGERY: 0.70,
    SourceKind.SOCIAL_PROFILE: 0.70,
    SourceKind.MODEL_GENERATED: 0.50,
    SourceKind.INTERNAL_INFERENCE: 0.45,
    SourceKind.STOCK_ASSET: 0.30,
}

# Boost by number of distinct source kinds; 4 or more share the top boost.
CORROBORATION_BOOSTS: Dict[int, float] = {
    1: 0.00,
    2: 0.08,
    3: 0.15,
    4: 0.20,
}


class FieldCategory(str, Enum):
    VERIFIED = "verified"     # confirmable from public listings
    INFERRED = "inferred"     # educated guesses, not independently verifiable
    GENERATED = "generated"   # creative copy


FIELD_CATEGORIES: Dict[str, FieldCategory] = {
    "identity.business_name": FieldCategory.VERIFIED,
    "identity.phone": FieldCategory.VERIFIED,
    "identity.address": FieldCategory.VERIFIED,
    "identity.geo": FieldCategory.VERIFIED,
    "identity.google": FieldCategory.VERIFIED,
    "identity.website_url": FieldCategory.VERIFIED,
    "identity.business_type": FieldCategory.VERIFIED,
    "identity.categories": FieldCategory.VERIFIED,
    "operations.hours": FieldCategory.VERIFIED,
    "trust.reviews": FieldCategory.VERIFIED,

    "operations.payments": FieldCategory.INFERRED,
    "operations.amenities": FieldCategory.INFERRED,
    "operations.accessibility": FieldCategory.INFERRED,
    "operations.booking": FieldCategory.INFERRED,
    "operations.policies": FieldCategory.INFERRED,
    "operations.languages_spoken": FieldCategory.INFERRED,
    "offerings.services": FieldCategory.INFERRED,
    "offerings.products_sold": FieldCategory.INFERRED,
    "trust.team": FieldCategory.INFERRED,
    "trust.social_links": FieldCategory.INFERRED,

    "identity.tagline": FieldCategory.GENERATED,
    "identity.description": FieldCategory.GENERATED,
    "identity.mission_statement": FieldCategory.GENERATED,
    "marketing.selling_points": FieldCategory.GENERATED,
    "marketing.hero_slogans": FieldCategory.GENERATED,
    "marketing.benefit_bullets": FieldCategory.GENERATED,
    "brand.colors": FieldCategory.GENERATED,
    "brand.fonts": FieldCategory.GENERATED,
    "brand.brand_personality": FieldCategory.GENERATED,
    "seo.title": FieldCategory.GENERATED,
    "seo.description": FieldCategory.GENERATED,
    "seo.primary_keywords": FieldCategory.GENERATED,
    "media.hero_images": FieldCategory.GENERATED,
}


class ProminenceLevel(str, Enum):
    PROMINENT = "prominent"
    STANDARD = "standard"
    DEEMPHASIZE = "deemphasize"
    HIDE_OR_PLACEHOLDER = "hide_or_placeholder"


PROMINENCE_THRESHOLDS: Dict[ProminenceLevel, float] = {
    ProminenceLevel.PROMINENT: 0.85,
    ProminenceLevel.STANDARD: 0.70,
    ProminenceLevel.DEEMPHASIZE: 0.50,
    ProminenceLevel.HIDE_OR_PLACEHOLDER: 0.0,
}

UI_COMPONENT_MIN_CONFIDENCE: Dict[str, float] = {
    "hero.title": 0.80,
    "hero.tagline": 0.80,
    "contact.phone": 0.85,
    "contact.booking_cta": 0.85,
    "contact.address": 0.85,
    "contact.map": 0.85,
    "hours.display": 0.80,
    "reviews.aggregate": 0.80,
    "services.pricing": 0.75,
    "team.bios": 0.70,
    "brand.colors": 0.70,
    "brand.fonts": 0.70,
    "marketing.copy": 0.60,
    "images.hero": 0.50,
    "images.gallery": 0.40,
}
DEFAULT_COMPONENT_MIN_CONFIDENCE = 0.50


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def corroboration_boost(distinct_kinds: int) -> float:
    if distinct_kinds >= 4:
        return CORROBORATION_BOOSTS[4]
    return CORROBORATION_BOOSTS.get(distinct_kinds, 0.0)


def wrap(
    value: Any,
    source_kind: SourceKind,
    *,
    rationale: Optional[str] = None,
    is_placeholder: bool = False,
    source_id: Optional[str] = None,
    source_url: Optional[str] = None,
    notes: Optional[str] = None,
    confidence_override: Optional[float] = None,
) -> ConfValue:
    """Wrap a single-source fact, scoring it from the source kind's base confidence."""
    now = utc_now_iso()
    kind = SourceKind(source_kind)
    score = BASE_CONFIDENCE[kind] if confidence_override is None else clamp_confidence(confidence_override)

    if _is_empty(value):
        score = max(0.0, score - EMPTY_PENALTY)
    if is_placeholder:
        score = max(0.0, score - PLACEHOLDER_PENALTY)

    return ConfValue(
        value=value,
        confidence=score,
        sources=[SourceRef(kind=kind, id=source_id, url=source_url, retrieved_at=now, notes=notes)],
        rationale=rationale,
        last_verified_at=now,
        is_placeholder=is_placeholder,
    )


def dedupe_sources(sources: Iterable[SourceRef]) -> List[SourceRef]:
    """Drop repeated sources, keyed on kind + id-or-url, keeping first occurrence."""
    seen = set()
    unique = []
    for src in sources:
        key = src.dedup_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(src)
    return unique


def merge(a: ConfValue, b: ConfValue) -> ConfValue:
    """Merge two facts about the same field.

    The higher-confidence side (ties go to ``a``) supplies value and rationale;
    sources are unioned and a corroboration boost is applied on the number of
    distinct source kinds, capped at ``MAX_CONFIDENCE``.
    """
    a_wins = clamp_confidence(a.confidence) >= clamp_confidence(b.confidence)
    primary, other = (a, b) if a_wins else (b, a)

    sources = dedupe_sources([*a.sources, *b.sources])
    kinds = {s.kind for s in sources}
    score = min(MAX_CONFIDENCE, clamp_confidence(primary.confidence) + corroboration_boost(len(kinds)))

    return ConfValue(
        value=primary.value,
        confidence=score,
        sources=sources,
        rationale=primary.rationale or other.rationale,
        last_verified_at=primary.last_verified_at,
        is_placeholder=primary.is_placeholder and other.is_placeholder,
    )


def merge_all(values: Iterable[ConfValue]) -> Optional[ConfValue]:
    """Left fold of ``merge``; None for an empty input."""
    merged = None
    for v in values:
        merged = v if merged is None else merge(merged, v)
    return merged


def apply_penalties(
    conf: ConfValue,
    *,
    is_empty: Optional[bool] = None,
    is_stale: bool = False,
    format_valid: Optional[bool] = None,
    field_category: Optional[FieldCategory] = None,
) -> float:
    """Score a fact after corroboration boost and deterministic penalties.

    -0.15 empty, -0.10 placeholder, -0.10 stale, -0.10 failed format check,
    and a further -0.15 for an inferred field whose only source kind is
    model-generated.
    """
    score = clamp_confidence(conf.confidence)
    kinds = {s.kind for s in conf.sources}
    score = min(MAX_CONFIDENCE, score + corroboration_boost(len(kinds)))

    if is_empty or _is_empty(conf.value):
        score = max(0.0, score - EMPTY_PENALTY)
    if conf.is_placeholder:
        score = max(0.0, score - PLACEHOLDER_PENALTY)
    if is_stale:
        score = max(0.0, score - STALE_PENALTY)
    if format_valid is False:
        score = max(0.0, score - FORMAT_PENALTY)
    if field_category == FieldCategory.INFERRED and kinds == {SourceKind.MODEL_GENERATED}:
        score = max(0.0, score - LLM_ONLY_INFERRED_PENALTY)

    return round2(score)


def is_conf_shaped(node: Any) -> bool:
    if isinstance(node, ConfValue):
        return True
    return isinstance(node, Mapping) and {"value", "confidence", "sources"} <= set(node.keys())


def _leaf_confidence(node: Any) -> float:
    raw = node.confidence if isinstance(node, ConfValue) else node.get("confidence")
    return clamp_confidence(raw)


def iter_conf_leaves(tree: Any, path: str = "") -> Iterable[Tuple[str, float]]:
    """Yield ``(dotted_path, confidence)`` for every ConfValue-shaped node.

    Leaves are not descended into, so a ConfValue whose value is itself a
    tree of ConfValues counts once.
    """
    if tree is None:
        return
    if is_conf_shaped(tree):
        yield path, _leaf_confidence(tree)
        return
    if isinstance(tree, BaseModel):
        tree = {k: getattr(tree, k) for k in type(tree).model_fields}
    if isinstance(tree, Mapping):
        for key, child in tree.items():
            yield from iter_conf_leaves(child, f"{path}.{key}" if path else str(key))
    elif isinstance(tree, (list, tuple)):
        for i, child in enumerate(tree):
            yield from iter_conf_leaves(child, f"{path}[{i}]")


def _section_of(path: str) -> str:
    return path.split(".", 1)[0].split("[", 1)[0]


def aggregate_confidence(tree: Any, section_weights: Optional[Dict[str, float]] = None) -> float:
    """Weighted mean of leaf confidences, weighted by top-level section.

    Sections absent from ``section_weights`` weigh 1. Returns 0 when the tree
    holds no ConfValue leaves.
    """
    weights = SECTION_WEIGHTS if section_weights is None else section_weights
    total_weight = 0.0
    weighted_sum = 0.0
    for path, confidence in iter_conf_leaves(tree):
        w = clamp_weight(weights.get(_section_of(path), 1))
        total_weight += w
        weighted_sum += confidence * w
    if total_weight <= 0:
        return 0.0
    return round2(weighted_sum / total_weight)


def section_confidence(tree: Any) -> float:
    """Unweighted mean of leaf confidences within one section."""
    scores = [c for _, c in iter_conf_leaves(tree)]
    if not scores:
        return 0.0
    return round2(sum(scores) / len(scores))


def clamp_weight(w: Any) -> float:
    try:
        w = float(w)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(w) or w < 0:
        return 0.0
    return w


def prominence_level(confidence: float) -> ProminenceLevel:
    c = clamp_confidence(confidence)
    if c >= PROMINENCE_THRESHOLDS[ProminenceLevel.PROMINENT]:
        return ProminenceLevel.PROMINENT
    if c >= PROMINENCE_THRESHOLDS[ProminenceLevel.STANDARD]:
        return ProminenceLevel.STANDARD
    if c >= PROMINENCE_THRESHOLDS[ProminenceLevel.DEEMPHASIZE]:
        return ProminenceLevel.DEEMPHASIZE
    return ProminenceLevel.HIDE_OR_PLACEHOLDER


def should_show_component(component: str, confidence: float) -> bool:
    minimum = UI_COMPONENT_MIN_CONFIDENCE.get(component, DEFAULT_COMPONENT_MIN_CONFIDENCE)
    return clamp_confidence(confidence) >= minimum
