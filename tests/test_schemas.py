import pydantic
import pytest

from itinerary_engine.schemas import Member, OptimizeRequest, Place, RouteRequest, NormalizedPlace, TripConstraints

SAMPLE_PAYLOAD = {
    "trip_id": "kansai-2025",
    "member_id": "u1",
    "places": [
        {
            "id": "fushimi",
            "name": "Fushimi Inari",
            "location": {"latitude": 34.9671, "longitude": 135.7727},
            "category": "cultural",
            "user_id": "u1",
            "wish_level": 5,
            "visit_date": "2025-04-02",
            "opening_hours": "06:00-18:00",
        }
    ],
    "members": [{"user_id": "u1", "name": "Yuki"}],
    "departure_point": {"name": "Kyoto Station", "location": {"lat": 34.9858, "lng": 135.7588}},
}


def test_optimize_request_accepts_legacy_aliases():
    request = OptimizeRequest.model_validate(SAMPLE_PAYLOAD)

    place = request.places[0]
    assert place.member_id == "u1"
    assert place.location.lat == pytest.approx(34.9671)
    assert place.stay_duration_minutes == 120
    assert place.visit_date.isoformat() == "2025-04-02"
    assert request.members[0].id == "u1"
    assert request.constraints.max_total_places == 12
    assert request.force_refresh is False

    dumped = request.model_dump(mode="json")
    assert dumped["places"][0]["member_id"] == "u1"
    assert "opening_hours" not in dumped["places"][0]


@pytest.mark.parametrize("wish_level", [0, 6])
def test_wish_level_must_be_between_one_and_five(wish_level):
    payload = {**SAMPLE_PAYLOAD["places"][0], "wish_level": wish_level}
    with pytest.raises(pydantic.ValidationError):
        Place.model_validate(payload)


def test_coordinates_are_range_checked():
    payload = {**SAMPLE_PAYLOAD["places"][0], "location": {"lat": 91.0, "lng": 0.0}}
    with pytest.raises(pydantic.ValidationError):
        Place.model_validate(payload)


def test_places_are_immutable():
    place = Place.model_validate(SAMPLE_PAYLOAD["places"][0])
    with pytest.raises(pydantic.ValidationError):
        place.wish_level = 1


def test_constraints_require_positive_days():
    with pytest.raises(pydantic.ValidationError):
        TripConstraints(trip_duration_days=0)


def test_route_request_keeps_normalized_weight():
    normalized = {
        **SAMPLE_PAYLOAD["places"][0],
        "normalized_weight": 1.4,
        "fairness_factor": 1.0,
        "relative_importance": 0.6,
    }
    request = RouteRequest.model_validate(
        {"trip_id": "t", "selected_places": [normalized], "departure_point": SAMPLE_PAYLOAD["departure_point"]}
    )

    assert isinstance(request.selected_places[0], NormalizedPlace)
    assert request.selected_places[0].normalized_weight == pytest.approx(1.4)
    assert request.arrival_point is None


def test_member_defaults():
    member = Member.model_validate({"member_id": "m9"})
    assert member.id == "m9"
    assert member.can_add_places is True
    assert member.weight == 1.0
