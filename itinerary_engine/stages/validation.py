"""Cross-record checks applied before any stage runs."""
from __future__ import annotations

from typing import Iterable, List, Sequence

from itinerary_engine.errors import InputError
from itinerary_engine.schemas import Member, Place


def ensure_trip_inputs(trip_id: str, places: Sequence[Place], members: Sequence[Member]) -> None:
    """Reject requests that would force a stage to guess.

    Places and members must carry unique ids, and when any place is present
    the member list must be non-empty and must contain every place owner.
    """
    if not trip_id or not str(trip_id).strip():
        raise InputError("trip_id is required")

    duplicates = _duplicates(place.id for place in places)
    if duplicates:
        raise InputError(
            "place ids must be unique",
            [{"loc": ["places"], "msg": f"duplicate place id {pid}", "type": "input_error"} for pid in duplicates],
        )

    duplicate_members = _duplicates(member.id for member in members)
    if duplicate_members:
        raise InputError(
            "member ids must be unique",
            [{"loc": ["members"], "msg": f"duplicate member id {mid}", "type": "input_error"} for mid in duplicate_members],
        )

    if places and not members:
        raise InputError("members are required when places are supplied")

    unknown = sorted(_unknown_owners(places, members))
    if unknown:
        raise InputError(
            "places reference members that are not part of the trip",
            [{"loc": ["places", "member_id"], "msg": f"unknown member {mid}", "type": "input_error"} for mid in unknown],
        )


def _duplicates(ids: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    repeated: List[str] = []
    for value in ids:
        if value in seen and value not in repeated:
            repeated.append(value)
        seen.add(value)
    return repeated


def _unknown_owners(places: Iterable[Place], members: Iterable[Member]) -> set[str]:
    known = {member.id for member in members}
    return {place.member_id for place in places if place.member_id not in known}
