# Weather API - Saved locations and cached conditions
#
# The weather fetch pipeline lives elsewhere; these endpoints only manage
# saved locations and read back what it cached.

from typing import Any, Dict, List, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from ..services import SkyViewServices
from ..weather import ForecastType
from .security import verify_session_token

router = APIRouter(prefix="/api/weather", tags=["weather"])


def get_services(request: Request) -> SkyViewServices:
    return request.app.state.services


class AddLocationRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    make_default: bool = False


class CacheWeatherRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    payload: Dict[str, Any]


class CacheForecastRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    forecast_type: ForecastType
    entries: List[Tuple[int, Dict[str, Any]]]


@router.get("/locations")
async def list_locations(
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    return {"locations": [loc.to_dict() for loc in services.locations.list_locations()]}


@router.post("/locations", status_code=status.HTTP_201_CREATED)
async def add_location(
    request: AddLocationRequest,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    location = services.locations.add_location(
        request.name, request.latitude, request.longitude, make_default=request.make_default
    )
    return location.to_dict()


@router.post("/locations/{location_id}/default")
async def set_default_location(
    location_id: str,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    services.locations.set_default_location(location_id)
    return {"success": True}


@router.delete("/locations/{location_id}")
async def delete_location(
    location_id: str,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    services.locations.delete_location(location_id)
    return {"success": True}


@router.put("/cache/current")
async def cache_weather(
    request: CacheWeatherRequest,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    entry = services.weather_cache.put(request.latitude, request.longitude, request.payload)
    return {"success": True, "cached_at": entry.cached_at}


@router.get("/cache/current")
async def cached_weather(
    latitude: float,
    longitude: float,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    entry = services.weather_cache.get(latitude, longitude)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No fresh weather cached near this location"
        )
    return {"payload": entry.payload, "timestamp": entry.timestamp, "cached_at": entry.cached_at}


@router.put("/cache/forecast")
async def cache_forecast(
    request: CacheForecastRequest,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    stored = services.forecast_cache.put_forecasts(
        request.latitude, request.longitude, request.forecast_type, request.entries
    )
    return {"success": True, "stored": stored}


@router.get("/cache/forecast")
async def cached_forecast(
    latitude: float,
    longitude: float,
    forecast_type: ForecastType = ForecastType.HOURLY,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    entries = services.forecast_cache.get_forecast(latitude, longitude, forecast_type)
    return {
        "forecast_type": forecast_type.value,
        "entries": [{"timestamp": e.timestamp, "payload": e.payload} for e in entries],
    }
