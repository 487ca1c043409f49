from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import os

import httpx

from itinerary_engine.config import DEFAULT_AIRPORT_ENDPOINT
from itinerary_engine.errors import ExternalLookupFailure
from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import Airport, Coordinate
from itinerary_engine.tools.geo import haversine_km

logger = get_logger(__name__)

AIRPORT_TYPES = {
    "large_airport": "large",
    "medium_airport": "medium",
    "small_airport": "small",
}
TIER_RANK = {"large": 0, "medium": 1, "small": 2}
MILITARY_MARKERS = ("air base", "air force", "military", "naval air", "army airfield")


@dataclass(frozen=True)
class CountryBox:
    country_code: str
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, location: Coordinate) -> bool:
        return self.min_lat <= location.lat <= self.max_lat and self.min_lng <= location.lng <= self.max_lng


COUNTRY_BOXES: Tuple[CountryBox, ...] = (
    CountryBox("JP", 24.0, 46.0, 122.0, 146.0),
    CountryBox("KR", 33.0, 39.0, 124.0, 131.0),
    CountryBox("CN", 18.0, 54.0, 73.0, 135.0),
    CountryBox("HK", 22.1, 22.6, 113.8, 114.5),
    CountryBox("TW", 21.8, 25.4, 119.3, 122.1),
    CountryBox("TH", 5.5, 20.5, 97.3, 105.7),
    CountryBox("SG", 1.15, 1.48, 103.6, 104.1),
    CountryBox("US", 24.0, 49.5, -125.0, -66.9),
    CountryBox("CA", 41.7, 70.0, -141.0, -52.6),
    CountryBox("GB", 49.8, 60.9, -8.7, 1.8),
    CountryBox("FR", 41.3, 51.1, -5.2, 9.6),
    CountryBox("DE", 47.3, 55.1, 5.9, 15.0),
    CountryBox("ES", 36.0, 43.8, -9.3, 3.3),
    CountryBox("IT", 36.6, 47.1, 6.6, 18.5),
    CountryBox("NL", 50.75, 53.7, 3.3, 7.2),
    CountryBox("AU", -44.0, -10.0, 112.0, 154.0),
)

# (code, name, lat, lng, tier)
_FALLBACK_ROWS: Dict[str, Sequence[Tuple[str, str, float, float, str]]] = {
    "JP": (
        ("HND", "Tokyo Haneda Airport", 35.5494, 139.7798, "large"),
        ("NRT", "Narita International Airport", 35.7647, 140.3864, "large"),
        ("KIX", "Kansai International Airport", 34.4347, 135.2441, "large"),
        ("ITM", "Osaka Itami Airport", 34.7855, 135.4382, "medium"),
        ("NGO", "Chubu Centrair International Airport", 34.8584, 136.8054, "large"),
        ("FUK", "Fukuoka Airport", 33.5859, 130.4509, "large"),
        ("CTS", "New Chitose Airport", 42.7752, 141.6923, "large"),
        ("OKA", "Naha Airport", 26.1958, 127.6459, "large"),
    ),
    "KR": (
        ("ICN", "Incheon International Airport", 37.4602, 126.4407, "large"),
        ("GMP", "Gimpo International Airport", 37.5583, 126.7906, "large"),
        ("PUS", "Gimhae International Airport", 35.1795, 128.9382, "large"),
        ("CJU", "Jeju International Airport", 33.5113, 126.4930, "large"),
    ),
    "CN": (
        ("PEK", "Beijing Capital International Airport", 40.0799, 116.6031, "large"),
        ("PVG", "Shanghai Pudong International Airport", 31.1443, 121.8083, "large"),
        ("CAN", "Guangzhou Baiyun International Airport", 23.3924, 113.2988, "large"),
        ("SZX", "Shenzhen Bao'an International Airport", 22.6393, 113.8107, "large"),
        ("CTU", "Chengdu Shuangliu International Airport", 30.5785, 103.9471, "large"),
    ),
    "HK": (("HKG", "Hong Kong International Airport", 22.3080, 113.9185, "large"),),
    "TW": (("TPE", "Taiwan Taoyuan International Airport", 25.0797, 121.2342, "large"),),
    "TH": (
        ("BKK", "Suvarnabhumi Airport", 13.6900, 100.7501, "large"),
        ("DMK", "Don Mueang International Airport", 13.9126, 100.6068, "large"),
        ("HKT", "Phuket International Airport", 8.1132, 98.3169, "large"),
        ("CNX", "Chiang Mai International Airport", 18.7668, 98.9626, "medium"),
    ),
    "SG": (("SIN", "Singapore Changi Airport", 1.3644, 103.9915, "large"),),
    "US": (
        ("JFK", "John F. Kennedy International Airport", 40.6413, -73.7781, "large"),
        ("EWR", "Newark Liberty International Airport", 40.6895, -74.1745, "large"),
        ("BOS", "Boston Logan International Airport", 42.3656, -71.0096, "large"),
        ("ORD", "Chicago O'Hare International Airport", 41.9742, -87.9073, "large"),
        ("ATL", "Hartsfield-Jackson Atlanta International Airport", 33.6407, -84.4277, "large"),
        ("MIA", "Miami International Airport", 25.7959, -80.2870, "large"),
        ("DFW", "Dallas/Fort Worth International Airport", 32.8998, -97.0403, "large"),
        ("DEN", "Denver International Airport", 39.8561, -104.6737, "large"),
        ("LAS", "Harry Reid International Airport", 36.0840, -115.1537, "large"),
        ("LAX", "Los Angeles International Airport", 33.9416, -118.4085, "large"),
        ("SFO", "San Francisco International Airport", 37.6213, -122.3790, "large"),
        ("SEA", "Seattle-Tacoma International Airport", 47.4502, -122.3088, "large"),
    ),
    "CA": (
        ("YYZ", "Toronto Pearson International Airport", 43.6777, -79.6248, "large"),
        ("YUL", "Montreal-Trudeau International Airport", 45.4706, -73.7408, "large"),
        ("YVR", "Vancouver International Airport", 49.1967, -123.1815, "large"),
    ),
    "GB": (
        ("LHR", "London Heathrow Airport", 51.4700, -0.4543, "large"),
        ("LGW", "London Gatwick Airport", 51.1537, -0.1821, "large"),
        ("MAN", "Manchester Airport", 53.3537, -2.2750, "large"),
        ("EDI", "Edinburgh Airport", 55.9508, -3.3615, "large"),
    ),
    "FR": (
        ("CDG", "Paris Charles de Gaulle Airport", 49.0097, 2.5479, "large"),
        ("ORY", "Paris Orly Airport", 48.7262, 2.3652, "large"),
        ("LYS", "Lyon-Saint Exupery Airport", 45.7256, 5.0811, "large"),
        ("MRS", "Marseille Provence Airport", 43.4393, 5.2214, "large"),
        ("NCE", "Nice Cote d'Azur Airport", 43.6584, 7.2159, "large"),
    ),
    "DE": (
        ("FRA", "Frankfurt Airport", 50.0379, 8.5622, "large"),
        ("MUC", "Munich Airport", 48.3537, 11.7750, "large"),
        ("BER", "Berlin Brandenburg Airport", 52.3667, 13.5033, "large"),
        ("HAM", "Hamburg Airport", 53.6304, 9.9882, "large"),
    ),
    "ES": (
        ("MAD", "Adolfo Suarez Madrid-Barajas Airport", 40.4983, -3.5676, "large"),
        ("BCN", "Barcelona-El Prat Airport", 41.2974, 2.0833, "large"),
        ("AGP", "Malaga-Costa del Sol Airport", 36.6749, -4.4991, "large"),
    ),
    "IT": (
        ("FCO", "Rome Fiumicino Airport", 41.8003, 12.2389, "large"),
        ("MXP", "Milan Malpensa Airport", 45.6306, 8.7281, "large"),
        ("VCE", "Venice Marco Polo Airport", 45.5053, 12.3519, "large"),
        ("NAP", "Naples International Airport", 40.8860, 14.2908, "large"),
    ),
    "NL": (("AMS", "Amsterdam Airport Schiphol", 52.3105, 4.7683, "large"),),
    "AU": (
        ("SYD", "Sydney Kingsford Smith Airport", -33.9399, 151.1753, "large"),
        ("MEL", "Melbourne Airport", -37.6690, 144.8410, "large"),
        ("BNE", "Brisbane Airport", -27.3842, 153.1175, "large"),
        ("PER", "Perth Airport", -31.9385, 115.9672, "large"),
    ),
}

FALLBACK_AIRPORTS: Dict[str, Tuple[Airport, ...]] = {
    country: tuple(
        Airport(code=code, name=name, location=Coordinate(lat=lat, lng=lng), tier=tier, country_code=country)
        for code, name, lat, lng, tier in rows
    )
    for country, rows in _FALLBACK_ROWS.items()
}


def _rank(location: Coordinate, airports: Iterable[Airport], radius_km: float, limit: int) -> List[Airport]:
    scored: List[Tuple[int, float, Airport]] = []
    for airport in airports:
        distance = haversine_km(location.lat, location.lng, airport.location.lat, airport.location.lng)
        if distance <= radius_km:
            scored.append((TIER_RANK.get(airport.tier, 3), distance, airport))
    scored.sort(key=lambda item: (item[0], item[1], item[2].code))
    return [airport for _, _, airport in scored[:limit]]


def fallback_airports(location: Coordinate, radius_km: float, limit: int = 8) -> List[Airport]:
    """Major airports from the static table whose country box contains ``location``."""
    seen: set[str] = set()
    pool: List[Airport] = []
    for box in COUNTRY_BOXES:
        if not box.contains(location):
            continue
        for airport in FALLBACK_AIRPORTS.get(box.country_code, ()):
            if airport.code not in seen:
                seen.add(airport.code)
                pool.append(airport)
    return _rank(location, pool, radius_km, limit)


class AirportDirectory:
    """
    Nearby-airport lookup backed by AirportDB, with the static table as a safety net.
    One instance lives for one request; results are cached per instance.
    """
    SEARCH_ENDPOINT = DEFAULT_AIRPORT_ENDPOINT

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        timeout: float = 5.0,
        max_candidates: int = 8,
    ):
        self.api_key = api_key or os.getenv("AIRPORTDB_API_KEY")
        self.endpoint = endpoint or self.SEARCH_ENDPOINT
        self.timeout = timeout
        self.max_candidates = max_candidates
        self.fallback_used = False
        self.failures: List[str] = []
        self._cache: Dict[Tuple[float, float, float], List[Airport]] = {}
        self._missing_key_logged = False

    async def nearby(self, location: Coordinate, radius_km: float) -> List[Airport]:
        """Airports within ``radius_km`` of ``location``; never raises."""
        key = (round(location.lat, 4), round(location.lng, 4), round(radius_km, 1))
        if key in self._cache:
            return self._cache[key]

        airports: List[Airport] = []
        try:
            airports = await self.search(location, radius_km)
        except ExternalLookupFailure as exc:
            self.failures.append(str(exc))
            if self.api_key or not self._missing_key_logged:
                logger.warning("Airport lookup failed near (%.4f, %.4f): %s", location.lat, location.lng, exc)
                self._missing_key_logged = True
        except Exception as exc:
            self.failures.append(f"{type(exc).__name__}: {exc}")
            logger.warning(
                "Unexpected airport directory response near (%.4f, %.4f)", location.lat, location.lng, exc_info=True
            )

        if not airports:
            airports = fallback_airports(location, radius_km, self.max_candidates)
            self.fallback_used = True
            logger.debug(
                "Using static airport table near (%.4f, %.4f): %s",
                location.lat,
                location.lng,
                [airport.code for airport in airports],
            )

        self._cache[key] = airports
        return airports

    async def search(self, location: Coordinate, radius_km: float) -> List[Airport]:
        """Query AirportDB and return commercial airports ranked by size and distance."""
        if not self.api_key:
            raise ExternalLookupFailure("AIRPORTDB_API_KEY environment variable not configured")

        params = {
            "lat": location.lat,
            "lng": location.lng,
            "radius": int(radius_km * 1000),
            "type": "all",
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.endpoint, params=params, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise ExternalLookupFailure(f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise ExternalLookupFailure(f"invalid JSON from airport directory: {exc}") from exc

        if not isinstance(data, dict):
            raise ExternalLookupFailure(f"unexpected airport directory payload: {type(data).__name__}")
        raw = data.get("airports") or []
        if not isinstance(raw, list):
            raise ExternalLookupFailure("unexpected airport directory payload: airports is not a list")
        return _rank(location, self._parse(raw), radius_km, self.max_candidates)

    @staticmethod
    def _parse(raw: Iterable[Dict[str, Any]]) -> List[Airport]:
        airports: List[Airport] = []
        seen: set[str] = set()
        for item in raw:
            if not isinstance(item, dict):
                continue
            tier = AIRPORT_TYPES.get(str(item.get("type") or "").lower())
            if tier is None:
                continue
            name = str(item.get("name") or "")
            if any(marker in name.lower() for marker in MILITARY_MARKERS):
                continue
            iata = str(item.get("iata_code") or "").strip().upper()
            icao = str(item.get("icao_code") or "").strip().upper()
            if tier == "small" and len(iata) != 3:
                continue
            code = iata or icao
            if not code or code in seen:
                continue
            try:
                location = Coordinate(lat=float(item["latitude"]), lng=float(item["longitude"]))
            except (KeyError, TypeError, ValueError):
                continue
            seen.add(code)
            airports.append(
                Airport(
                    code=code,
                    name=name or code,
                    location=location,
                    tier=tier,
                    country_code=item.get("country_code") or None,
                )
            )
        return airports
