import pytest

from itinerary_engine.schemas import Coordinate, RouteNode
from itinerary_engine.stages.schedule_generator import (
    build_daily_schedules,
    format_clock,
    generate_schedule,
    score_schedule,
    transport_mode_for,
    travel_minutes,
)


def _node(node_id: str, kind: str = "place", lat: float = 35.68, lng: float = 139.76, stay: int = 0, **extra) -> RouteNode:
    return RouteNode(
        kind=kind,
        id=node_id,
        name=node_id,
        location=Coordinate(lat=lat, lng=lng),
        category="airport" if kind == "airport" else "other",
        stay_duration_minutes=stay,
        **extra,
    )


def test_empty_selection_schedules_only_endpoints():
    route = [_node("departure", "departure"), _node("arrival", "arrival")]
    result = generate_schedule(route, trip_duration_days=1)

    assert len(result.daily_schedules) == 1
    stops = result.daily_schedules[0].scheduled_places
    assert [stop.kind for stop in stops] == ["departure", "arrival"]
    assert stops[0].transport_mode is None
    assert stops[0].arrival_time == "09:00"
    assert stops[1].transport_mode == "walking"
    assert stops[1].travel_time_from_previous == 0
    assert result.total_visit_minutes == 0
    assert result.daily_schedules[0].visit_time_minutes == 0


def test_transport_mode_thresholds():
    place_a, place_b = _node("a"), _node("b")
    airport_a, airport_b = _node("x", "airport"), _node("y", "airport")

    assert transport_mode_for(place_a, place_b, 12.0) == "walking"
    assert transport_mode_for(place_a, place_b, 50.0) == "walking"
    assert transport_mode_for(airport_a, airport_b, 49.0) == "walking"
    assert transport_mode_for(place_a, place_b, 50.5) == "car"
    assert transport_mode_for(place_a, place_b, 400.0) == "car"
    assert transport_mode_for(airport_a, place_b, 400.0) == "car"
    assert transport_mode_for(airport_a, airport_b, 400.0) == "flight"


def test_travel_minutes_by_mode():
    assert travel_minutes("walking", 10.0) == 120
    assert travel_minutes("car", 120.0) == 120
    assert travel_minutes("flight", 500.0) == round(500 / 650 * 60 + 120)
    assert travel_minutes("flight", 1700.0) == 300


def test_stops_are_timed_in_order():
    route = [
        _node("departure", "departure"),
        _node("museum", stay=90),
        _node("cafe", lat=35.69, stay=45),
        _node("arrival", "arrival"),
    ]
    stops = build_daily_schedules(route)[0].scheduled_places

    assert [s.order_in_day for s in stops] == [1, 2, 3, 4]
    assert stops[1].arrival_time == "09:00" and stops[1].departure_time == "10:30"
    walk = stops[2].travel_time_from_previous
    assert walk > 0
    assert stops[2].arrival_time == format_clock(10 * 60 + 30 + walk)


def test_late_arrivals_roll_over_to_next_day():
    route = [_node("departure", "departure")]
    route += [_node(f"p{i}", stay=180) for i in range(1, 6)]
    route.append(_node("arrival", "arrival"))

    days = build_daily_schedules(route)

    assert [d.day for d in days] == [1, 2]
    assert [s.id for s in days[0].scheduled_places] == ["departure", "p1", "p2", "p3", "p4"]
    first_next_day = days[1].scheduled_places[0]
    assert first_next_day.id == "p5"
    assert first_next_day.arrival_time == "09:00"
    assert first_next_day.order_in_day == 1
    assert days[0].visit_time_minutes == 4 * 180
    assert sum(len(d.scheduled_places) for d in days) == len(route)


def test_legs_past_midnight_advance_the_day():
    route = [_node("departure", "departure", lat=0.0, lng=0.0), _node("far", lat=0.0, lng=17.986)]
    days = build_daily_schedules(route)

    far = days[-1].scheduled_places[0]
    assert far.day == 3
    assert far.transport_mode == "car"
    assert far.arrival_time == format_clock(9 * 60 + far.travel_time_from_previous - 24 * 60)


def test_visit_time_ignores_airports_and_endpoints():
    route = [
        _node("departure", "departure", stay=15),
        _node("HND", "airport", stay=60, airport_role="outbound"),
        _node("ITM", "airport", stay=30, airport_role="inbound"),
        _node("castle", stay=120),
        _node("arrival", "arrival"),
    ]
    result = generate_schedule(route)

    assert result.total_visit_minutes == 120


def test_overlong_schedule_is_noted_not_truncated():
    route = [_node("departure", "departure")] + [_node(f"p{i}", stay=240) for i in range(6)] + [_node("arrival", "arrival")]
    result = generate_schedule(route, trip_duration_days=1)

    assert len(result.route) == len(route)
    assert sum(len(d.scheduled_places) for d in result.daily_schedules) == len(route)
    assert any("no stops were dropped" in note for note in result.notes)


def test_score_for_empty_route_uses_neutral_defaults():
    days = build_daily_schedules([_node("departure", "departure"), _node("arrival", "arrival")])
    score = score_schedule(days)

    assert score.efficiency_score == 50
    assert score.fairness_score == 100
    assert score.feasibility_score == 100
    assert score.total_score == 81
    assert score.validation_issues == []


def test_score_flags_unrealistic_travel():
    route = [_node("departure", "departure", lat=0.0, lng=0.0), _node("far", lat=0.0, lng=17.986, stay=60)]
    score = score_schedule(build_daily_schedules(route))

    assert any("unrealistic" in issue for issue in score.validation_issues)
    assert score.feasibility_score < 100


def test_score_fairness_counts_member_balance():
    route = [
        _node("departure", "departure"),
        _node("a1", stay=60, member_id="a", normalized_weight=0.5),
        _node("a2", stay=60, member_id="a", normalized_weight=0.5),
        _node("b1", stay=60, member_id="b", normalized_weight=0.5),
        _node("arrival", "arrival"),
    ]
    score = score_schedule(build_daily_schedules(route))

    # counts [2, 1]: variance 0.25 over mean 1.5
    assert score.fairness_score == round((1 - 0.25 / 1.5) * 100)
    assert score.details["wish_satisfaction"] == pytest.approx(0.5)


def test_overridden_transport_preference_is_noted():
    route = [
        _node("departure", "departure", lat=35.68, lng=139.76),
        _node("maebashi", lat=36.25, lng=139.76, stay=60),
        _node("nearby", lat=36.255, lng=139.765, stay=30),
    ]

    result = generate_schedule(route, preferred_transport="car")
    assert any("Preferred transport car overridden on 1 leg(s)" in note for note in result.notes)

    quiet = generate_schedule(route)
    assert not any("Preferred transport" in note for note in quiet.notes)
