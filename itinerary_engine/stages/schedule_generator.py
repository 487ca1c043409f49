"""Schedule generation: timestamps, transport modes and day splitting."""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import DailySchedule, OptimizationScore, RouteNode, ScheduleResult, ScheduledStop
from itinerary_engine.tools.geo import distance_between

logger = get_logger(__name__)

MINUTES_PER_DAY = 24 * 60
DEFAULT_DAY_START = 9 * 60
DEFAULT_DAY_END = 20 * 60

WALKING_MAX_KM = 50.0
CAR_MAX_KM = 300.0
LONG_FLIGHT_KM = 1000.0
WALKING_KMH = 5.0
CAR_KMH = 60.0
FLIGHT_KMH = 650.0
LONG_FLIGHT_KMH = 850.0
FLIGHT_BUFFER_MIN = 120
LONG_FLIGHT_BUFFER_MIN = 180

UNREALISTIC_LEG_MIN = 720
UNREALISTIC_DAY_TRAVEL_MIN = 720
DEFAULT_PREFERENCE = 0.8


def format_clock(minutes: int) -> str:
    minutes = int(minutes) % MINUTES_PER_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _is_airport(node: RouteNode) -> bool:
    return node.kind == "airport" or node.category == "airport"


def transport_mode_for(origin: RouteNode, destination: RouteNode, distance_km: float) -> str:
    """Fly only between two airports; otherwise drive long legs and walk short ones."""
    if distance_km > CAR_MAX_KM:
        return "flight" if _is_airport(origin) and _is_airport(destination) else "car"
    if distance_km > WALKING_MAX_KM:
        return "car"
    return "walking"


def travel_minutes(mode: str, distance_km: float) -> int:
    if mode == "walking":
        return int(round(distance_km / WALKING_KMH * 60))
    if mode == "car":
        return int(round(distance_km / CAR_KMH * 60))
    if distance_km > LONG_FLIGHT_KM:
        return int(round(distance_km / LONG_FLIGHT_KMH * 60 + LONG_FLIGHT_BUFFER_MIN))
    return int(round(distance_km / FLIGHT_KMH * 60 + FLIGHT_BUFFER_MIN))


def _close_day(day: int, stops: List[ScheduledStop]) -> DailySchedule:
    return DailySchedule(
        day=day,
        scheduled_places=list(stops),
        total_travel_time=sum(stop.travel_time_from_previous for stop in stops),
        visit_time_minutes=sum(stop.stay_duration_minutes for stop in stops if stop.kind == "place"),
    )


def build_daily_schedules(
    route: Sequence[RouteNode],
    *,
    day_start: int = DEFAULT_DAY_START,
    day_end: int = DEFAULT_DAY_END,
) -> List[DailySchedule]:
    """Walk ``route`` in order with a running clock and split it into days.

    A new day begins when an arrival would land after ``day_end`` and the
    current day already has stops; the clock then restarts at ``day_start``
    and the leg's travel time is added. Legs that run past midnight roll the
    day counter forward. Every node is emitted exactly once.
    """
    days: List[DailySchedule] = []
    stops: List[ScheduledStop] = []
    day = 1
    clock = day_start

    for idx, node in enumerate(route):
        mode: Optional[str] = None
        travel = 0
        arrival = clock
        if idx > 0:
            previous = route[idx - 1]
            distance = distance_between(previous.location, node.location)
            mode = transport_mode_for(previous, node, distance)
            travel = travel_minutes(mode, distance)
            arrival = clock + travel
            if arrival > day_end and stops:
                days.append(_close_day(day, stops))
                stops = []
                day += 1
                arrival = day_start + travel
            while arrival >= MINUTES_PER_DAY:
                if stops:
                    days.append(_close_day(day, stops))
                    stops = []
                day += 1
                arrival -= MINUTES_PER_DAY

        departure = arrival + node.stay_duration_minutes
        stops.append(
            ScheduledStop(
                **node.model_dump(),
                day=day,
                arrival_time=format_clock(arrival),
                departure_time=format_clock(departure),
                transport_mode=mode,
                travel_time_from_previous=travel,
                order_in_day=len(stops) + 1,
            )
        )
        clock = departure

    if stops:
        days.append(_close_day(day, stops))
    return days


def validation_issues(schedules: Sequence[DailySchedule]) -> List[str]:
    issues: List[str] = []
    long_legs = sum(
        1
        for schedule in schedules
        for stop in schedule.scheduled_places
        if stop.travel_time_from_previous > UNREALISTIC_LEG_MIN
    )
    if long_legs:
        issues.append(f"{long_legs} unrealistic travel times (>12h) found")
    for schedule in schedules:
        if schedule.total_travel_time > UNREALISTIC_DAY_TRAVEL_MIN:
            issues.append(
                f"Day {schedule.day} has excessive travel time ({round(schedule.total_travel_time / 60)}h)"
            )
    flight_days = sum(
        1
        for schedule in schedules
        if any(stop.transport_mode == "flight" for stop in schedule.scheduled_places)
    )
    if schedules and flight_days > len(schedules) * 0.5:
        issues.append("Too many flight days - schedule may be unrealistic")
    return issues


def score_schedule(schedules: Sequence[DailySchedule]) -> OptimizationScore:
    """Blend travel efficiency, preference, balance and feasibility into 0-100 scores."""
    total_travel = sum(schedule.total_travel_time for schedule in schedules)
    total_visit = sum(schedule.visit_time_minutes for schedule in schedules)
    efficiency = total_visit / (total_visit + total_travel) if total_visit > 0 and total_travel > 0 else 0.5

    visits = [stop for schedule in schedules for stop in schedule.scheduled_places if stop.kind == "place"]
    if visits:
        weights = [stop.normalized_weight if stop.normalized_weight is not None else DEFAULT_PREFERENCE for stop in visits]
        preference = min(1.0, sum(weights) / len(weights))
    else:
        preference = DEFAULT_PREFERENCE

    fairness = 1.0
    counts: Dict[str, int] = {}
    for stop in visits:
        counts[stop.member_id or ""] = counts.get(stop.member_id or "", 0) + 1
    if len(counts) > 1:
        mean = sum(counts.values()) / len(counts)
        variance = sum((c - mean) ** 2 for c in counts.values()) / len(counts)
        fairness = max(0.0, 1 - variance / mean)

    issues = validation_issues(schedules)
    feasibility = 1.0 if not issues else max(0.1, 1.0 - len(issues) * 0.2)
    total = (efficiency * 0.3 + preference * 0.2 + fairness * 0.2 + feasibility * 0.3) * 100

    def pct(value: float) -> int:
        return int(round(max(0.0, min(100.0, value))))

    return OptimizationScore(
        total_score=pct(total),
        fairness_score=pct(fairness * 100),
        efficiency_score=pct(efficiency * 100),
        feasibility_score=pct(feasibility * 100),
        details={
            "travel_efficiency": efficiency,
            "wish_satisfaction": preference,
            "member_balance": fairness,
            "time_constraint_compliance": feasibility,
        },
        validation_issues=issues,
    )


def generate_schedule(
    route: Sequence[RouteNode],
    *,
    trip_duration_days: Optional[int] = None,
    day_start: int = DEFAULT_DAY_START,
    day_end: int = DEFAULT_DAY_END,
    preferred_transport: Optional[str] = None,
    notes: Optional[List[str]] = None,
) -> ScheduleResult:
    notes = list(notes or [])
    schedules = build_daily_schedules(route, day_start=day_start, day_end=day_end)
    if preferred_transport:
        overridden = sum(
            1
            for schedule in schedules
            for stop in schedule.scheduled_places
            if stop.transport_mode is not None and stop.transport_mode != preferred_transport
        )
        if overridden:
            notes.append(
                f"Preferred transport {preferred_transport} overridden on {overridden} leg(s); "
                "modes follow leg distance."
            )
    total_travel = sum(schedule.total_travel_time for schedule in schedules)
    total_visit = sum(schedule.visit_time_minutes for schedule in schedules)

    days_used = schedules[-1].day if schedules else 0
    if trip_duration_days is not None and days_used > trip_duration_days:
        notes.append(
            f"Schedule needs {days_used} days but the trip lasts {trip_duration_days}; no stops were dropped."
        )
        logger.warning("Schedule spills past trip length (%d > %d days)", days_used, trip_duration_days)

    logger.info(
        "Schedule: %d stops over %d day(s), %d min travel, %d min visiting",
        len(route),
        days_used,
        total_travel,
        total_visit,
    )
    return ScheduleResult(
        route=list(route),
        daily_schedules=schedules,
        optimization_score=score_schedule(schedules),
        total_travel_minutes=total_travel,
        total_visit_minutes=total_visit,
        notes=notes,
    )
