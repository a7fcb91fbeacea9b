import asyncio
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from journey_module.config import LiveDataCredentials, PlannerSettings
from journey_module.database import PostgresConnector
from journey_module.enrichment import RealtimeEnricher, to_utc
from journey_module.exceptions import NoRouteFound
from journey_module.models import Itinerary, ItineraryVariant, Leg
from journey_module.network import NetworkStore, load_network_data
from journey_module.ptv_client import PTVClient
from journey_module.rate_limit import RateLimiter
from journey_module.routing import JourneySearch, SearchResult

logger = logging.getLogger(__name__)


class RequestLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the request id."""

    def process(self, msg, kwargs):
        return f"[{self.extra['request_id']}] {msg}", kwargs


def request_logger(request_id: Optional[str] = None) -> RequestLogAdapter:
    return RequestLogAdapter(logger, {"request_id": request_id or uuid.uuid4().hex[:8]})


@dataclass
class PlanRequest:
    origin_stop_id: int
    destination_stop_id: int
    k: int = 3
    departure_time: Optional[datetime] = None
    departures_per_journey: int = 3
    include_replacement_services: bool = False


@dataclass
class PlanResult:
    variants: List[ItineraryVariant] = field(default_factory=list)
    itineraries: List[Itinerary] = field(default_factory=list)

    @property
    def legs(self) -> List[Leg]:
        return [leg for itinerary in self.itineraries for leg in itinerary.legs]

    def raise_if_empty(self):
        if not self.itineraries:
            raise NoRouteFound("No journey found between the requested stops")
        return self


class JourneyPlanner:
    """
    Planning entry point: static search followed by real-time enrichment.

    The store and live source are shared between requests; everything else
    is built per request.
    """

    def __init__(self, store: NetworkStore, live_source, settings: Optional[PlannerSettings] = None):
        self.store = store
        self.live_source = live_source
        self.settings = settings or PlannerSettings()
        self.journey_search = JourneySearch(store, self.settings)
        self.enricher = RealtimeEnricher(live_source, store, self.settings)

    def search(self, request: PlanRequest, log=None) -> SearchResult:
        """Static itineraries only, no live data involved."""
        log = log or request_logger()
        return self.journey_search.search(
            request.origin_stop_id,
            request.destination_stop_id,
            k=request.k,
            exclude_replacement=not request.include_replacement_services,
            log=log,
        )

    async def plan(self, request: PlanRequest, request_id: Optional[str] = None) -> PlanResult:
        """
        Plan a journey.

        Args:
            request: PlanRequest with the stops, departure time and limits
            request_id: identifier carried by every log line of this request

        Returns:
            PlanResult; both lists are empty when no itinerary exists

        Raises:
            ValueError: departures_per_journey is below 1
            GraphUnavailable: the network store cannot be used
        """
        if request.departures_per_journey < 1:
            raise ValueError("departures_per_journey must be at least 1")

        log = request_logger(request_id)
        requested = to_utc(request.departure_time)
        log.info(
            f"Planning {request.origin_stop_id} -> {request.destination_stop_id} "
            f"k={request.k} at {requested.isoformat()}"
        )

        # Path search is CPU bound; keep it off the event loop
        result = await asyncio.to_thread(self.search, request, log)
        if not result:
            return PlanResult()

        variants = await self.enricher.enrich(
            result.itineraries,
            requested,
            max_journeys=request.k,
            departures_per_journey=request.departures_per_journey,
            log=log,
        )
        return PlanResult(variants=variants, itineraries=result.itineraries)

    async def aclose(self):
        close = getattr(self.live_source, "aclose", None)
        if close is not None:
            await close()


def load_store(settings: PlannerSettings) -> NetworkStore:
    """CSV snapshot when NETWORK_DATA_DIR is set, PostgreSQL otherwise."""
    data_dir = os.environ.get("NETWORK_DATA_DIR")
    if data_dir:
        data = load_network_data(data_dir)
    else:
        data = PostgresConnector().fetch_network_data()
    return NetworkStore(data, transfer_penalty=settings.transfer_penalty)


def create_journey_planner(settings: Optional[PlannerSettings] = None) -> JourneyPlanner:
    """
    Convenience function to create and initialize a planner.

    Loads the network, then wires a signed live client behind one shared
    rate limiter.
    """
    settings = settings or PlannerSettings.from_env()
    credentials = LiveDataCredentials.from_env()

    logger.info("Loading network data...")
    store = load_store(settings)
    store.warm()
    logger.info(f"Network ready: {len(store.stops)} stops, {len(store.routes)} routes")

    client = PTVClient(
        credentials.dev_id,
        credentials.api_key,
        base_url=credentials.base_url,
        rate_limiter=RateLimiter(settings.rate_limit_interval_s, settings.rate_limit_burst),
        timeout=settings.request_timeout_s,
    )
    return JourneyPlanner(store, client, settings)
