# itinerary_engine/orchestrator.py
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from itinerary_engine.config import EngineSettings, load_settings
from itinerary_engine.errors import InputError
from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import (
    NormalizeRequest,
    NormalizeResponse,
    OptimizationResult,
    OptimizeRequest,
    RouteRequest,
    RouteResponse,
    SelectionSummary,
    SelectRequest,
    SelectResponse,
    TripConstraints,
)
from itinerary_engine.stages.place_selector import GeneticParameters, select_places
from itinerary_engine.stages.preference_normalizer import normalize_preferences
from itinerary_engine.stages.route_constructor import construct_route
from itinerary_engine.stages.schedule_generator import generate_schedule
from itinerary_engine.tools.airport_directory import AirportDirectory
from itinerary_engine.tools.result_cache import ResultCache, cache_key

logger = get_logger(__name__)

_result_cache: Optional[ResultCache[OptimizationResult]] = None


def get_result_cache(settings: Optional[EngineSettings] = None) -> ResultCache[OptimizationResult]:
    global _result_cache
    if _result_cache is None:
        settings = settings or load_settings()
        _result_cache = ResultCache(ttl_seconds=settings.cache_ttl_seconds)
    return _result_cache


def reset_result_cache() -> None:
    global _result_cache
    _result_cache = None


def _genetic_parameters(settings: EngineSettings) -> GeneticParameters:
    return GeneticParameters(time_budget_seconds=settings.ga_time_budget_seconds)


def _directory(settings: EngineSettings) -> AirportDirectory:
    return AirportDirectory(
        api_key=settings.airport_api_key,
        endpoint=settings.airport_endpoint,
        timeout=settings.airport_timeout,
    )


# ---------- individual stages ----------
def normalize_trip(request: NormalizeRequest) -> NormalizeResponse:
    result = normalize_preferences(request.places, request.members, request.settings, trip_id=request.trip_id)
    return NormalizeResponse(trip_id=request.trip_id, **result.model_dump())


def select_trip_places(request: SelectRequest, settings: Optional[EngineSettings] = None) -> SelectResponse:
    settings = settings or load_settings()
    result = select_places(
        request.normalized_places,
        request.members,
        request.trip_duration_days,
        request.max_places_per_day,
        request.fairness_threshold,
        params=_genetic_parameters(settings),
        seed=settings.ga_seed,
        trip_id=request.trip_id,
    )
    return SelectResponse(trip_id=request.trip_id, **result.model_dump())


async def route_trip(request: RouteRequest, settings: Optional[EngineSettings] = None) -> RouteResponse:
    """Order the already-selected places, add airport legs and build the schedule."""
    settings = settings or load_settings()
    _ensure_unique_places(request.selected_places)
    notes: List[str] = []
    directory = _directory(settings)
    route = await construct_route(
        request.selected_places,
        request.departure_point,
        request.arrival_point,
        directory,
        radius_km=request.search_radius_km or settings.airport_radius_km,
        concurrency=settings.airport_concurrency,
        notes=notes,
    )
    if directory.fallback_used:
        notes.append("Airport directory unavailable or empty for some lookups; static airport table used.")
    schedule = generate_schedule(
        route,
        trip_duration_days=request.constraints.trip_duration_days,
        day_start=settings.day_start_minutes,
        day_end=settings.day_end_minutes,
        preferred_transport=_explicit_transport(request.constraints),
        notes=notes,
    )
    logger.info(
        "Route+schedule for trip %s (member %s): %d nodes, score %d",
        request.trip_id,
        request.member_id or "-",
        len(route),
        schedule.optimization_score.total_score,
    )
    return RouteResponse(trip_id=request.trip_id, **schedule.model_dump())


def _explicit_transport(constraints: TripConstraints) -> Optional[str]:
    # only a caller-supplied preference is reported when overridden
    if "preferred_transport" in constraints.model_fields_set:
        return constraints.preferred_transport
    return None


def _ensure_unique_places(places) -> None:
    seen: set[str] = set()
    for place in places:
        if place.id in seen:
            raise InputError(f"duplicate place id {place.id} in selected_places")
        seen.add(place.id)


# ---------- full pipeline ----------
async def run_pipeline(request: OptimizeRequest, settings: EngineSettings) -> OptimizationResult:
    """Normalizer -> Selector -> Route Constructor -> Schedule Generator."""
    if request.member_id and request.members and request.member_id not in {m.id for m in request.members}:
        raise InputError(f"member {request.member_id} is not part of trip {request.trip_id}")

    notes: List[str] = []
    normalized = await asyncio.to_thread(
        normalize_preferences,
        request.places,
        request.members,
        request.settings,
        trip_id=request.trip_id,
    )
    notes.extend(f"edge_case: {code}" for code in normalized.edge_cases)

    constraints = request.constraints
    selection = await asyncio.to_thread(
        select_places,
        normalized.normalized_places,
        request.members,
        constraints.trip_duration_days,
        constraints.max_places_per_day,
        constraints.fairness_threshold,
        params=_genetic_parameters(settings),
        seed=settings.ga_seed,
        trip_id=request.trip_id,
    )
    notes.extend(selection.rationale)

    routed = await route_trip(
        RouteRequest(
            trip_id=request.trip_id,
            member_id=request.member_id,
            selected_places=selection.selected_places,
            departure_point=request.departure_point,
            arrival_point=request.arrival_point,
            constraints=constraints,
            search_radius_km=request.search_radius_km,
        ),
        settings,
    )
    notes.extend(routed.notes)

    return OptimizationResult(
        trip_id=request.trip_id,
        route=routed.route,
        daily_schedules=routed.daily_schedules,
        fairness_score=selection.fairness_score,
        efficiency_score=selection.efficiency_score,
        group_fairness_score=normalized.group_fairness_score,
        total_travel_minutes=routed.total_travel_minutes,
        total_visit_minutes=routed.total_visit_minutes,
        optimization_score=routed.optimization_score,
        selection=SelectionSummary(
            strategy=selection.strategy,
            rationale=selection.rationale,
            best_effort=selection.best_effort,
            member_distribution=selection.member_distribution,
            selected_place_ids=[place.id for place in selection.selected_places],
            diversity_score=selection.diversity_score,
        ),
        notes=notes,
    )


def _settings_fingerprint(request: OptimizeRequest) -> Dict[str, Any]:
    return {
        "settings": request.settings.model_dump(mode="json"),
        "constraints": request.constraints.model_dump(mode="json"),
        "members": sorted((m.model_dump(mode="json") for m in request.members), key=lambda m: m["id"]),
        "departure": request.departure_point.model_dump(mode="json"),
        "arrival": request.arrival_point.model_dump(mode="json") if request.arrival_point else None,
        "search_radius_km": request.search_radius_km,
    }


async def optimize_trip(
    request: OptimizeRequest,
    settings: Optional[EngineSettings] = None,
    cache: Optional[ResultCache[OptimizationResult]] = None,
) -> OptimizationResult:
    """Cached full pipeline bounded by the request timeout.

    Raises ``asyncio.TimeoutError`` when the pipeline does not finish in time;
    nothing partial is returned or cached in that case.
    """
    settings = settings or load_settings()
    cache = cache or get_result_cache(settings)
    places = sorted((p.model_dump(mode="json") for p in request.places), key=lambda p: p["id"])
    key = cache_key(request.trip_id, places, _settings_fingerprint(request))

    if request.force_refresh:
        await cache.invalidate(key)

    logger.info(
        "Optimizing trip %s: %d places, %d members",
        request.trip_id,
        len(request.places),
        len(request.members),
    )
    result, cached = await asyncio.wait_for(
        cache.get_or_compute(key, lambda: run_pipeline(request, settings)),
        timeout=settings.request_timeout_seconds,
    )
    if cached:
        logger.info("Serving cached optimization for trip %s", request.trip_id)
        return result.model_copy(update={"cached": True})
    return result
