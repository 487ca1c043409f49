"""Route construction: nearest-neighbour ordering plus long-haul airport legs."""
from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import Airport, Coordinate, Endpoint, Place, RouteNode
from itinerary_engine.tools.geo import distance_between

logger = get_logger(__name__)

LONG_HAUL_KM = 300.0
DEFAULT_SEARCH_RADIUS_KM = 150.0
OUTBOUND_AIRPORT_STAY = 60
INBOUND_AIRPORT_STAY = 30


class AirportLookup(Protocol):
    async def nearby(self, location: Coordinate, radius_km: float) -> List[Airport]:
        ...


def endpoint_node(endpoint: Endpoint, kind: str) -> RouteNode:
    return RouteNode(
        kind=kind,
        id=kind,
        name=endpoint.name,
        location=endpoint.location,
        category=kind,
        stay_duration_minutes=endpoint.stay_duration_minutes,
    )


def place_node(place: Place) -> RouteNode:
    return RouteNode(
        kind="place",
        id=place.id,
        name=place.name,
        location=place.location,
        category=place.category,
        stay_duration_minutes=place.stay_duration_minutes,
        member_id=place.member_id,
        normalized_weight=getattr(place, "normalized_weight", None),
    )


def airport_node(airport: Airport, role: str, segment_index: int) -> RouteNode:
    return RouteNode(
        kind="airport",
        id=f"airport-{airport.code}-{segment_index}-{role}",
        name=airport.name,
        location=airport.location,
        category="airport",
        stay_duration_minutes=OUTBOUND_AIRPORT_STAY if role == "outbound" else INBOUND_AIRPORT_STAY,
        airport_code=airport.code,
        airport_role=role,
        original_segment_index=segment_index,
    )


def nearest_neighbor_order(start: Coordinate, places: Sequence[Place]) -> List[Place]:
    """Greedy nearest-neighbour tour from ``start``; O(n^2), not globally optimal.

    Ties go to the place listed first.
    """
    remaining = list(places)
    ordered: List[Place] = []
    current = start
    while remaining:
        best_pos = 0
        best_distance = distance_between(current, remaining[0].location)
        for pos in range(1, len(remaining)):
            distance = distance_between(current, remaining[pos].location)
            if distance < best_distance:
                best_pos, best_distance = pos, distance
        chosen = remaining.pop(best_pos)
        ordered.append(chosen)
        current = chosen.location
    return ordered


def best_airport_pair(
    origin: Coordinate,
    destination: Coordinate,
    origin_airports: Sequence[Airport],
    destination_airports: Sequence[Airport],
) -> Optional[Tuple[Airport, Airport]]:
    """Prefer far-apart airports that sit close to the two endpoints."""
    best: Optional[Tuple[Airport, Airport]] = None
    best_score = 0.0
    for dep in origin_airports:
        access_origin = distance_between(origin, dep.location)
        for arr in destination_airports:
            if dep.code == arr.code:
                continue
            flight_km = distance_between(dep.location, arr.location)
            score = flight_km / (1 + access_origin + distance_between(destination, arr.location))
            if score > best_score:
                best, best_score = (dep, arr), score
    return best


async def _airports_for_segment(
    index: int,
    origin: RouteNode,
    destination: RouteNode,
    directory: AirportLookup,
    radius_km: float,
    gate: asyncio.Semaphore,
) -> Optional[Tuple[Airport, Airport]]:
    async with gate:
        origin_airports, destination_airports = await asyncio.gather(
            directory.nearby(origin.location, radius_km),
            directory.nearby(destination.location, radius_km),
        )
    pair = best_airport_pair(origin.location, destination.location, origin_airports, destination_airports)
    if pair is None:
        logger.debug("Segment %d (%s -> %s): no usable airport pair, keeping ground route", index, origin.name, destination.name)
    else:
        logger.debug("Segment %d (%s -> %s): flying %s -> %s", index, origin.name, destination.name, pair[0].code, pair[1].code)
    return pair


async def insert_airports(
    route: Sequence[RouteNode],
    directory: AirportLookup,
    *,
    radius_km: float = DEFAULT_SEARCH_RADIUS_KM,
    concurrency: int = 4,
    notes: Optional[List[str]] = None,
) -> List[RouteNode]:
    """Insert an outbound/inbound airport pair into every leg longer than 300 km.

    Lookups for separate legs run concurrently behind a semaphore; results are
    matched back by segment index so completion order never matters.
    """
    long_segments = [
        idx
        for idx in range(len(route) - 1)
        if distance_between(route[idx].location, route[idx + 1].location) > LONG_HAUL_KM
    ]
    if not long_segments:
        return list(route)

    gate = asyncio.Semaphore(max(1, concurrency))
    outcomes: List[Any] = await asyncio.gather(
        *(
            _airports_for_segment(idx, route[idx], route[idx + 1], directory, radius_km, gate)
            for idx in long_segments
        ),
        return_exceptions=True,
    )

    pairs = {}
    for idx, outcome in zip(long_segments, outcomes):
        if isinstance(outcome, BaseException):
            logger.warning("Airport insertion failed for segment %d", idx, exc_info=outcome)
            if notes is not None:
                notes.append(f"Segment {idx}: airport lookup failed; ground route kept.")
            continue
        if outcome is None:
            if notes is not None:
                notes.append(f"Segment {idx}: no airport pair within {radius_km:.0f} km; ground route kept.")
            continue
        pairs[idx] = outcome

    result: List[RouteNode] = []
    for idx, node in enumerate(route):
        result.append(node)
        if idx in pairs:
            dep, arr = pairs[idx]
            result.append(airport_node(dep, "outbound", idx))
            result.append(airport_node(arr, "inbound", idx))
    logger.info(
        "Route: %d long-haul segment(s), %d airport pair(s) inserted",
        len(long_segments),
        len(pairs),
    )
    return result


async def construct_route(
    places: Sequence[Place],
    departure: Endpoint,
    arrival: Optional[Endpoint],
    directory: Optional[AirportLookup],
    *,
    radius_km: float = DEFAULT_SEARCH_RADIUS_KM,
    concurrency: int = 4,
    notes: Optional[List[str]] = None,
) -> List[RouteNode]:
    """Departure, every selected place exactly once, arrival; airports as needed."""
    arrival = arrival or departure
    ordered = nearest_neighbor_order(departure.location, places)
    route = [endpoint_node(departure, "departure")]
    route.extend(place_node(place) for place in ordered)
    route.append(endpoint_node(arrival, "arrival"))
    if directory is None:
        return route
    return await insert_airports(route, directory, radius_km=radius_km, concurrency=concurrency, notes=notes)
