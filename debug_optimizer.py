# debug_optimizer.py
import asyncio
import json

from itinerary_engine.orchestrator import optimize_trip
from itinerary_engine.schemas import OptimizeRequest


async def main():
    payload = {
        "trip_id": "debug-kansai-kanto",
        "member_id": "aiko",
        "members": [
            {"id": "aiko", "name": "Aiko"},
            {"id": "ben", "name": "Ben"},
            {"id": "carla", "name": "Carla"},
        ],
        "places": [
            {"id": "p1", "name": "Senso-ji", "location": {"lat": 35.7148, "lng": 139.7967}, "category": "cultural", "member_id": "aiko", "wish_level": 5},
            {"id": "p2", "name": "Shibuya Crossing", "location": {"lat": 35.6595, "lng": 139.7005}, "category": "landmark", "member_id": "aiko", "wish_level": 3, "stay_duration_minutes": 45},
            {"id": "p3", "name": "Tsukiji Outer Market", "location": {"lat": 35.6655, "lng": 139.7707}, "category": "restaurant", "member_id": "aiko", "wish_level": 4, "stay_duration_minutes": 90},
            {"id": "p4", "name": "Fushimi Inari", "location": {"lat": 34.9671, "lng": 135.7727}, "category": "must_visit", "member_id": "ben", "wish_level": 5},
            {"id": "p5", "name": "Dotonbori", "location": {"lat": 34.6687, "lng": 135.5013}, "category": "entertainment", "member_id": "ben", "wish_level": 2, "stay_duration_minutes": 90},
            {"id": "p6", "name": "Meiji Jingu", "location": {"lat": 35.6764, "lng": 139.6993}, "category": "nature", "member_id": "carla", "wish_level": 4},
            {"id": "p7", "name": "teamLab Planets", "location": {"lat": 35.6491, "lng": 139.7898}, "category": "entertainment", "member_id": "carla", "wish_level": 5, "visit_date": "2025-10-12"},
            {"id": "p8", "name": "Ginza", "location": {"lat": 35.6717, "lng": 139.7650}, "category": "shopping", "member_id": "carla", "wish_level": 2, "stay_duration_minutes": 60},
        ],
        "settings": {"fairness_weight": 0.6, "efficiency_weight": 0.4},
        "constraints": {"trip_duration_days": 3, "max_places_per_day": 3, "fairness_threshold": 0.4},
        "departure_point": {"name": "Tokyo Station", "location": {"lat": 35.6812, "lng": 139.7671}},
    }

    # Call the pipeline directly
    result = await optimize_trip(OptimizeRequest.model_validate(payload))
    print("Optimizer returned:\n")
    print(json.dumps(result.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    asyncio.run(main())
