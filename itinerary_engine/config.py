# itinerary_engine/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

DEFAULT_AIRPORT_ENDPOINT = "https://api.airportdb.io/v1/airports"


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _clock_env(name: str, default: str) -> int:
    """Parse an ``HH:MM`` variable into minutes after midnight."""
    raw = (os.getenv(name) or default).strip()
    try:
        hours, minutes = raw.split(":", 1)
        value = int(hours) * 60 + int(minutes)
    except ValueError:
        hours, minutes = default.split(":", 1)
        return int(hours) * 60 + int(minutes)
    if not 0 <= value < 24 * 60:
        hours, minutes = default.split(":", 1)
        return int(hours) * 60 + int(minutes)
    return value


@dataclass(frozen=True)
class EngineSettings:
    allowed_origins: List[str]
    airport_api_key: Optional[str]
    airport_endpoint: str = DEFAULT_AIRPORT_ENDPOINT
    airport_timeout: float = 5.0
    airport_radius_km: float = 150.0
    airport_concurrency: int = 4
    cache_ttl_seconds: float = 1800.0
    request_timeout_seconds: float = 60.0
    ga_time_budget_seconds: float = 5.0
    ga_seed: Optional[int] = None
    day_start_minutes: int = 9 * 60
    day_end_minutes: int = 20 * 60


def load_settings() -> EngineSettings:
    """Read engine settings from the environment (after ``.env`` is loaded)."""
    raw_origins = os.getenv("ITINERARY_ENGINE_ALLOWED_ORIGINS") or "*"
    allowed_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
    if not allowed_origins:
        allowed_origins = ["*"]

    raw_seed = os.getenv("ITINERARY_ENGINE_GA_SEED")
    seed: Optional[int] = None
    if raw_seed and raw_seed.strip():
        try:
            seed = int(raw_seed)
        except ValueError:
            seed = None

    day_start = _clock_env("ITINERARY_ENGINE_DAY_START", "09:00")
    day_end = _clock_env("ITINERARY_ENGINE_DAY_END", "20:00")
    if day_end <= day_start:
        day_start, day_end = 9 * 60, 20 * 60

    return EngineSettings(
        allowed_origins=allowed_origins,
        airport_api_key=os.getenv("AIRPORTDB_API_KEY") or None,
        airport_endpoint=os.getenv("ITINERARY_ENGINE_AIRPORT_ENDPOINT") or DEFAULT_AIRPORT_ENDPOINT,
        airport_timeout=max(0.1, _float_env("ITINERARY_ENGINE_AIRPORT_TIMEOUT", 5.0)),
        airport_radius_km=max(1.0, _float_env("ITINERARY_ENGINE_AIRPORT_RADIUS_KM", 150.0)),
        airport_concurrency=max(1, _int_env("ITINERARY_ENGINE_AIRPORT_CONCURRENCY", 4)),
        cache_ttl_seconds=max(0.0, _float_env("ITINERARY_ENGINE_CACHE_TTL", 1800.0)),
        request_timeout_seconds=max(1.0, _float_env("ITINERARY_ENGINE_REQUEST_TIMEOUT", 60.0)),
        ga_time_budget_seconds=max(0.05, _float_env("ITINERARY_ENGINE_GA_TIME_BUDGET", 5.0)),
        ga_seed=seed,
        day_start_minutes=day_start,
        day_end_minutes=day_end,
    )
