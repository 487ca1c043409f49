"""Preference normalisation: raw wish levels -> fairness-adjusted weights."""
from __future__ import annotations

import math
from collections import Counter
from typing import Dict, List, Optional, Sequence

from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import (
    Member,
    NormalizationResult,
    NormalizedPlace,
    NormalizedUser,
    OptimizationSettings,
    Place,
    PlaceWeight,
)
from itinerary_engine.stages.validation import ensure_trip_inputs

logger = get_logger(__name__)

CATEGORY_WEIGHTS: Dict[str, float] = {
    "must_visit": 1.3,
    "landmark": 1.2,
    "cultural": 1.1,
    "restaurant": 1.0,
    "entertainment": 1.0,
    "shopping": 1.0,
    "nature": 1.0,
    "accommodation": 0.9,
    "transport": 0.8,
    "other": 0.9,
}
DEFAULT_CATEGORY_WEIGHT = 1.0

UNIFORM_WISH_WEIGHT = 0.2
BASE_BOUNDS = (0.1, 3.0)
FAIRNESS_FACTOR_BOUNDS = (0.3, 1.5)
WEIGHT_BOUNDS = (0.1, 2.0)
VISIT_DATE_BOOST = 1.2
DOMINANT_CATEGORY_SHARE = 0.5
RARE_CATEGORY_SHARE = 0.1
DOMINANT_CATEGORY_FACTOR = 0.9
RARE_CATEGORY_FACTOR = 1.1
SETTINGS_EMPHASIS_CUTOFF = 0.7
GROUP_FAIRNESS_DECAY = 5.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def category_weight(category: Optional[str]) -> float:
    return CATEGORY_WEIGHTS.get((category or "").strip().lower(), DEFAULT_CATEGORY_WEIGHT)


def fairness_factor_for(member_count: int, ideal_per_member: float, contributing_members: int) -> float:
    """Down-weight prolific contributors and up-weight quiet ones, within bounds."""
    if contributing_members <= 1 or member_count <= 0:
        return 1.0
    return _clamp(math.sqrt(ideal_per_member / member_count), *FAIRNESS_FACTOR_BOUNDS)


def settings_multiplier(relative_importance: float, fairness_factor: float, settings: OptimizationSettings) -> float:
    if settings.fairness_weight > SETTINGS_EMPHASIS_CUTOFF:
        return fairness_factor
    if settings.efficiency_weight > SETTINGS_EMPHASIS_CUTOFF:
        return relative_importance
    return (relative_importance + fairness_factor) / 2


def group_fairness(contributions: Sequence[float]) -> float:
    """Map the variance of member contributions onto (0, 1] with exponential decay."""
    if len(contributions) <= 1:
        return 1.0
    mean = sum(contributions) / len(contributions)
    variance = sum((c - mean) ** 2 for c in contributions) / len(contributions)
    return math.exp(-variance * GROUP_FAIRNESS_DECAY)


def normalize_preferences(
    places: Sequence[Place],
    members: Sequence[Member],
    settings: Optional[OptimizationSettings] = None,
    *,
    trip_id: str = "adhoc",
) -> NormalizationResult:
    """Turn every member's raw wish levels into comparable normalised weights.

    Degenerate inputs never raise: an empty place list returns an empty
    result with a group fairness of 1.0, a lone contributor keeps a fairness
    factor of 1.0, and members who rated everything the same are pinned to
    a minimal base weight. Each case is reported in ``edge_cases``.
    """
    settings = settings or OptimizationSettings()
    ensure_trip_inputs(trip_id, places, members)
    edge_cases: List[str] = []

    if not places:
        edge_cases.append("no_member_places")
        logger.info("Normalizer: trip %s has no places; returning empty result", trip_id)
        return NormalizationResult(group_fairness_score=1.0, edge_cases=edge_cases)

    by_member: Dict[str, List[Place]] = {}
    for place in places:
        by_member.setdefault(place.member_id, []).append(place)

    for member in members:
        if member.id not in by_member:
            edge_cases.append(f"member_{member.id}_no_places")

    contributing = len(by_member)
    if contributing == 1:
        edge_cases.append("single_member")

    active = sum(1 for member in members if member.can_add_places)
    if active == 0:
        active = contributing
    ideal_per_member = len(places) / active

    category_counts = Counter(category_weight_key(place.category) for place in places)
    total_places = len(places)

    members_by_id = {member.id: member for member in members}
    bases: Dict[str, float] = {}
    factors: Dict[str, float] = {}
    summaries: Dict[str, NormalizedUser] = {}
    contributions: List[float] = []

    for member_id, owned in by_member.items():
        count = len(owned)
        avg_wish = sum(place.wish_level for place in owned) / count
        uniform = count > 1 and len({place.wish_level for place in owned}) == 1
        if uniform:
            edge_cases.append(f"member_{member_id}_uniform_wish_levels")

        for place in owned:
            if uniform:
                base = UNIFORM_WISH_WEIGHT
            else:
                base = _clamp(place.wish_level / avg_wish * category_weight(place.category), *BASE_BOUNDS)
            bases[place.id] = base

        factors[member_id] = fairness_factor_for(count, ideal_per_member, contributing)
        contributions.append(sum(bases[place.id] for place in owned) * math.sqrt(1 / count))
        member = members_by_id.get(member_id)
        summaries[member_id] = NormalizedUser(
            member_id=member_id,
            member_name=member.name if member else "",
            avg_wish_level=round(avg_wish, 4),
            place_count=count,
            fairness_factor=factors[member_id],
            uniform_wish_levels=uniform,
        )

    normalized: List[NormalizedPlace] = []
    for place in places:
        count = len(by_member[place.member_id])
        base = bases[place.id]
        factor = factors[place.member_id]

        importance = base / BASE_BOUNDS[1]
        if place.visit_date is not None:
            importance *= VISIT_DATE_BOOST
        share = category_counts[category_weight_key(place.category)] / total_places
        if share > DOMINANT_CATEGORY_SHARE:
            importance *= DOMINANT_CATEGORY_FACTOR
        elif share < RARE_CATEGORY_SHARE:
            importance *= RARE_CATEGORY_FACTOR
        importance = _clamp(importance, 0.0, 1.0)

        multiplier = settings_multiplier(importance, factor, settings)
        weight = _clamp(importance * factor * multiplier, *WEIGHT_BOUNDS)

        item = NormalizedPlace(
            **place.model_dump(),
            normalized_weight=weight,
            fairness_factor=factor,
            relative_importance=importance,
            normalized_wish_level=base,
            fairness_score=base / count,
            member_place_count=count,
        )
        normalized.append(item)
        summaries[place.member_id].normalized_places.append(
            PlaceWeight(place_id=place.id, normalized_weight=weight, fairness_score=item.fairness_score)
        )

    score = group_fairness(contributions)
    logger.info(
        "Normalizer: trip %s -> %d places across %d members (group fairness %.3f)",
        trip_id,
        len(normalized),
        contributing,
        score,
    )
    if edge_cases:
        logger.debug("Normalizer edge cases for %s: %s", trip_id, edge_cases)

    return NormalizationResult(
        normalized_users=list(summaries.values()),
        normalized_places=normalized,
        group_fairness_score=score,
        edge_cases=edge_cases,
    )


def category_weight_key(category: Optional[str]) -> str:
    return (category or "other").strip().lower() or "other"
