import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from journey_module.exceptions import GraphUnavailable
from journey_module.planner import PlanRequest, create_journey_planner, request_logger

logger = logging.getLogger(__name__)

# Global planner instance
_journey_planner = None


def get_journey_planner():
    return _journey_planner


def set_journey_planner(planner):
    global _journey_planner
    _journey_planner = planner


@asynccontextmanager
async def lifespan(_: FastAPI):
    if _journey_planner is None:
        try:
            set_journey_planner(await run_in_threadpool(create_journey_planner))
        except GraphUnavailable as e:
            logger.error(f"Network unavailable at startup: {e}")
    yield
    planner = get_journey_planner()
    if planner is not None:
        await planner.aclose()


app = FastAPI(title="Journey Planner API", version="1.0.0", lifespan=lifespan)


class HealthResponse(BaseModel):
    status: str
    message: str


class GeoPointModel(BaseModel):
    latitude: float
    longitude: float


class LegModel(BaseModel):
    leg_id: int
    origin_stop_id: int
    destination_stop_id: int
    route_id: int
    route_name: str
    route_number: str
    route_mode: Optional[str] = None
    route_colour: List[int]
    geopath: List[GeoPointModel]
    travel_minutes: float
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    tier: Optional[str] = None
    arrival_from_pattern: bool = False
    wait_minutes: Optional[int] = None
    total_minutes: Optional[int] = None


class JourneyModel(BaseModel):
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    cost: float
    degraded: bool
    legs: List[LegModel]


class TripPlanResponse(BaseModel):
    num_journeys: int
    journeys: List[JourneyModel]


def parse_departure_time(value: Optional[str]) -> Optional[datetime]:
    """ISO-8601; a trailing Z means UTC and naive values are local time."""
    if value is None or value.strip() == "":
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid departure_time: {value!r}")


def format_leg(leg):
    return {
        "leg_id": leg.leg_id,
        "origin_stop_id": leg.origin_stop_id,
        "destination_stop_id": leg.destination_stop_id,
        "route_id": leg.route_id,
        "route_name": leg.route_name,
        "route_number": leg.route_number,
        "route_mode": leg.route_mode.name.lower() if leg.route_mode is not None else None,
        "route_colour": list(leg.route_colour),
        "geopath": [{"latitude": p.latitude, "longitude": p.longitude} for p in leg.geopath],
        "travel_minutes": leg.travel_minutes,
        "departure_time": leg.departure_time,
        "arrival_time": leg.arrival_time,
        "tier": leg.tier.value if leg.tier is not None else None,
        "arrival_from_pattern": leg.arrival_from_pattern,
        "wait_minutes": leg.wait_minutes,
        "total_minutes": leg.total_minutes,
    }


def format_variant(variant):
    return {
        "departure_time": variant.departure_time,
        "arrival_time": variant.arrival_time,
        "cost": variant.itinerary.cost,
        "degraded": variant.degraded,
        "legs": [format_leg(leg) for leg in variant.legs],
    }


def format_itinerary(itinerary):
    return {
        "cost": itinerary.cost,
        "degraded": True,
        "legs": [format_leg(leg) for leg in itinerary.legs],
    }


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    if get_journey_planner() is None:
        return {"status": "unavailable", "message": "Network data is not loaded"}
    return {
        "status": "healthy",
        "message": "Journey Planner API is running"
    }


@app.get("/trip-plan/{origin}/{destination}", response_model=TripPlanResponse)
async def trip_plan(
    origin: int,
    destination: int,
    k: int = Query(3, ge=0),
    departure_time: Optional[str] = None,
    departures_per_journey: int = Query(3, ge=1, le=10),
    include_replacement_buses: bool = False,
    realtime: bool = True,
):
    """
    Plan journeys between two stops.

    Args:
        origin: stop to depart from
        destination: stop to arrive at
        k: number of distinct itineraries wanted (at most 3 are returned)
        departure_time: earliest departure, ISO-8601; defaults to now
        departures_per_journey: timed variants per itinerary
        include_replacement_buses: allow replacement services
        realtime: False returns the static itineraries without times

    Returns:
        TripPlanResponse, ordered by arrival when realtime is on
    """
    planner = get_journey_planner()
    if planner is None:
        raise HTTPException(
            status_code=503,
            detail="Server is still loading network data. Please try again in a moment.",
        )

    request = PlanRequest(
        origin_stop_id=origin,
        destination_stop_id=destination,
        k=k,
        departure_time=parse_departure_time(departure_time),
        departures_per_journey=departures_per_journey,
        include_replacement_services=include_replacement_buses,
    )

    try:
        if realtime:
            result = await planner.plan(request)
            journeys = [format_variant(v) for v in result.variants]
        else:
            result = await run_in_threadpool(planner.search, request, request_logger())
            journeys = [format_itinerary(it) for it in result.itineraries]
    except GraphUnavailable as e:
        logger.error(f"Network unavailable: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "num_journeys": len(journeys),
        "journeys": journeys,
    }


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=8000)
