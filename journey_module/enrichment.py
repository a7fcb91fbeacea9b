"""
Real-time enrichment of static itineraries.

For every itinerary the first leg's upcoming departures each seed one variant.
Each variant is then propagated leg by leg: a leg may leave no earlier than the
previous arrival plus the transfer buffer. Timing comes from the first tier
that can supply it:

    Realtime          a live departure of the leg's route at its origin stop
    SyntheticHeadway  evenly spaced departures (first leg only, no live data)
    GraphFallback     earliest allowed time + pad, duration from ride costs

Collaborator failures only ever downgrade a tier; they never abort a request.
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from journey_module.config import PlannerSettings
from journey_module.exceptions import CollaboratorError
from journey_module.models import (
    Departure,
    Itinerary,
    ItineraryVariant,
    Leg,
    Tier,
    TransportMode,
    normalize_route_id,
)

logger = logging.getLogger(__name__)

_LATEST = datetime.max.replace(tzinfo=timezone.utc)


def to_utc(value: Optional[datetime]) -> datetime:
    """Aware UTC datetime; naive values are taken as local time, None as now."""
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TimedDeparture:
    """Result of a departure lookup: when the leg leaves and which tier supplied it."""
    time: datetime
    tier: Tier
    run_ref: Optional[str] = None


def matching_departures(
    departures: Sequence[Departure],
    live_route_id: str,
    stop_id: int,
    after: datetime,
) -> List[Departure]:
    """Departures of one route at one stop leaving strictly after `after`, earliest first."""
    selected = [
        d for d in departures
        if d.route_id == live_route_id
        and d.stop_id in (None, stop_id)
        and d.time is not None
        and d.time > after
    ]
    return sorted(selected, key=lambda d: d.time)


def rank_variants(variants: Sequence[ItineraryVariant]) -> List[ItineraryVariant]:
    """Earliest final arrival first; variants without an arrival go last."""
    return sorted(
        variants,
        key=lambda v: (v.arrival_time is None, v.arrival_time or _LATEST),
    )


def annotate_first_leg(variant: ItineraryVariant, requested: datetime) -> ItineraryVariant:
    first = variant.legs[0]
    if first.departure_time is None:
        return variant
    wait = max(0.0, (first.departure_time - requested).total_seconds() / 60.0)
    riding = sum(
        (leg.arrival_time - leg.departure_time).total_seconds() / 60.0
        for leg in variant.legs if leg.is_timed
    )
    first.wait_minutes = int(wait)
    first.total_minutes = int(round(wait + riding))
    return variant


class RealtimeEnricher:
    """
    Expands itineraries into timed variants.

    `live_source` must provide two coroutines:
        get_departures(route_type, stop_id, max_results, after=None, route_id=None) -> List[Departure]
        get_pattern(run_ref, route_type) -> List[PatternStop]
    Both may raise CollaboratorError (or a subclass) on failure.
    """

    def __init__(self, live_source, store, settings: Optional[PlannerSettings] = None):
        self.live_source = live_source
        self.store = store
        self.settings = settings or PlannerSettings()

    async def enrich(
        self,
        itineraries: Sequence[Itinerary],
        departure_time: Optional[datetime] = None,
        max_journeys: int = 3,
        departures_per_journey: Optional[int] = None,
        log=logger,
    ) -> List[ItineraryVariant]:
        requested = to_utc(departure_time)
        lookahead = departures_per_journey or self.settings.lookahead
        selected = [it for it in itineraries[:min(max_journeys, self.settings.max_itineraries)] if it.legs]
        if not selected:
            return []

        # One permit per work item; the rate limiter inside the client spaces the calls
        workers = asyncio.Semaphore(self.settings.max_workers)

        async def seed(itinerary):
            async with workers:
                return await self.first_departures(itinerary, requested, lookahead, log)

        async def propagate(itinerary, first_departure, index):
            async with workers:
                return await self.propagate(itinerary, first_departure, requested, index, log)

        seeds = await asyncio.gather(*(seed(it) for it in selected))
        variants = await asyncio.gather(*(
            propagate(itinerary, first_departure, index)
            for itinerary, departures in zip(selected, seeds)
            for index, first_departure in enumerate(departures)
        ))

        ranked = rank_variants(variants)
        degraded = sum(1 for v in ranked if v.degraded)
        log.info(
            f"Enriched {len(selected)} itineraries into {len(ranked)} variants ({degraded} with estimated times)"
        )
        return ranked

    async def first_departures(
        self, itinerary: Itinerary, requested: datetime, lookahead: int, log=logger
    ) -> List[TimedDeparture]:
        """Upcoming live departures of the first leg, or a synthetic headway."""
        first = itinerary.legs[0]
        departures = await self._live_departures(first, requested, log)
        live = matching_departures(departures, self._live_route_id(first), first.origin_stop_id, requested)
        if live:
            return [TimedDeparture(d.time, Tier.REALTIME, d.run_ref) for d in live[:lookahead]]

        log.info(
            f"No live departures for route {first.route_id} at stop {first.origin_stop_id}, "
            f"using a {self.settings.synthetic_headway:g} minute headway"
        )
        headway = timedelta(minutes=self.settings.synthetic_headway)
        return [
            TimedDeparture(requested + i * headway, Tier.SYNTHETIC_HEADWAY)
            for i in range(lookahead)
        ]

    async def propagate(
        self,
        itinerary: Itinerary,
        first_departure: TimedDeparture,
        requested: datetime,
        variant_index: int = 0,
        log=logger,
    ) -> ItineraryVariant:
        """
        Fold over the legs, each step yielding a timed leg and the next
        earliest-departure bound.
        """
        buffer = timedelta(minutes=self.settings.transfer_buffer)
        timed: List[Leg] = []
        bound: Optional[datetime] = None

        for position, leg in enumerate(itinerary.legs):
            if position == 0:
                departure = first_departure
            else:
                departure = await self.next_departure(leg, bound, log)
            arrival, from_pattern = await self.arrival(leg, departure, log)
            timed.append(replace(
                leg,
                leg_id=leg.leg_id * 100 + variant_index,
                geopath=list(leg.geopath),
                departure_time=departure.time,
                arrival_time=arrival,
                tier=departure.tier,
                arrival_from_pattern=from_pattern,
            ))
            bound = arrival + buffer

        return annotate_first_leg(ItineraryVariant(itinerary=itinerary, legs=timed), requested)

    async def next_departure(self, leg: Leg, earliest: datetime, log=logger) -> TimedDeparture:
        """First live departure after `earliest`, else a graph-based estimate."""
        departures = await self._live_departures(leg, earliest, log)
        live = matching_departures(departures, self._live_route_id(leg), leg.origin_stop_id, earliest)
        if live:
            return TimedDeparture(live[0].time, Tier.REALTIME, live[0].run_ref)

        log.info(
            f"No live departure for route {leg.route_id} at stop {leg.origin_stop_id}, using estimated times"
        )
        return TimedDeparture(
            earliest + timedelta(minutes=self.settings.fallback_pad),
            Tier.GRAPH_FALLBACK,
        )

    async def arrival(self, leg: Leg, departure: TimedDeparture, log=logger):
        """
        Arrival at the leg's destination and whether it came from the run pattern.
        """
        mode = self._mode(leg)
        if departure.tier is Tier.REALTIME and departure.run_ref and mode is not None:
            try:
                pattern = await self.live_source.get_pattern(departure.run_ref, int(mode))
            except CollaboratorError as e:
                log.warning(f"Pattern lookup failed for run {departure.run_ref}: {e}")
                pattern = []
            for stop in pattern:
                if stop.stop_id == leg.destination_stop_id and stop.time is not None and stop.time > departure.time:
                    return stop.time, True

        # Dijkstra over the store graph; keep it off the event loop
        minutes = await asyncio.to_thread(self.graph_minutes, leg)
        return departure.time + timedelta(minutes=minutes), False

    def graph_minutes(self, leg: Leg) -> float:
        """Ride time from the graph, else the leg's own ride cost, else the default."""
        minutes = self.store.route_travel_minutes(leg.route_id, leg.origin_stop_id, leg.destination_stop_id)
        if minutes > 0:
            return minutes
        if leg.travel_minutes > 0:
            return leg.travel_minutes
        return self.settings.default_leg_minutes

    async def _live_departures(self, leg: Leg, after: datetime, log) -> List[Departure]:
        mode = self._mode(leg)
        if mode is None:
            return []
        try:
            return await self.live_source.get_departures(
                int(mode),
                leg.origin_stop_id,
                max_results=self.settings.departures_page_size,
                after=after,
                route_id=self._live_route_id(leg),
            )
        except CollaboratorError as e:
            log.warning(f"Live departures unavailable at stop {leg.origin_stop_id}: {e}")
            return []

    def _route(self, leg: Leg):
        routes = self.store.routes
        return routes.get(leg.route_id) or routes.get(normalize_route_id(leg.route_id))

    def _mode(self, leg: Leg) -> Optional[TransportMode]:
        if leg.route_mode is not None:
            return leg.route_mode
        route = self._route(leg)
        return route.mode if route else None

    def _live_route_id(self, leg: Leg) -> str:
        route = self._route(leg)
        if route is not None:
            return route.live_route_id
        return str(normalize_route_id(leg.route_id))
