from __future__ import annotations

import asyncio
from typing import Any, Dict, Type, TypeVar

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from itinerary_engine.config import load_settings
from itinerary_engine.errors import InputError
from itinerary_engine.logging_setup import get_logger
from itinerary_engine.orchestrator import normalize_trip, optimize_trip, route_trip, select_trip_places
from itinerary_engine.schemas import NormalizeRequest, OptimizeRequest, RouteRequest, SelectRequest

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

app = FastAPI(title="Trip Itinerary Optimization API")

# Operators can scope browser access via ITINERARY_ENGINE_ALLOWED_ORIGINS.
settings = load_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _validate(model: Type[ModelT], payload: Dict[str, Any]) -> ModelT:
    """Validate at the boundary so no stage ever sees a malformed record."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False)) from exc


def _input_error(exc: InputError) -> HTTPException:
    logger.info("Rejected request: %s", exc.message)
    return HTTPException(status_code=422, detail=exc.to_detail())


@app.post("/api/normalize")
async def api_normalize(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    request = _validate(NormalizeRequest, payload)
    try:
        response = normalize_trip(request)
    except InputError as exc:
        raise _input_error(exc) from exc
    return response.model_dump(mode="json")


@app.post("/api/select")
async def api_select(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    request = _validate(SelectRequest, payload)
    try:
        response = await asyncio.to_thread(select_trip_places, request)
    except InputError as exc:
        raise _input_error(exc) from exc
    return response.model_dump(mode="json")


@app.post("/api/route")
async def api_route(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    request = _validate(RouteRequest, payload)
    current = load_settings()
    try:
        response = await asyncio.wait_for(route_trip(request, current), timeout=current.request_timeout_seconds)
    except InputError as exc:
        raise _input_error(exc) from exc
    except asyncio.TimeoutError as exc:
        logger.warning("Route request for trip %s timed out", request.trip_id)
        raise HTTPException(status_code=504, detail="Route computation timed out") from exc
    return response.model_dump(mode="json")


@app.post("/api/optimize")
async def api_optimize(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Full cached pipeline: normalize, select, route and schedule."""
    request = _validate(OptimizeRequest, payload)
    try:
        result = await optimize_trip(request)
    except InputError as exc:
        raise _input_error(exc) from exc
    except asyncio.TimeoutError as exc:
        logger.warning("Optimization for trip %s timed out", request.trip_id)
        raise HTTPException(status_code=504, detail="Optimization timed out") from exc
    return result.model_dump(mode="json")
