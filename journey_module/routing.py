import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from journey_module.config import PlannerSettings
from journey_module.graph import hub_key, is_hub
from journey_module.models import (
    GraphPath,
    Itinerary,
    Leg,
    Route,
    Stop,
    TransportMode,
    normalize_route_id,
)

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    itineraries: List[Itinerary] = field(default_factory=list)

    @property
    def legs(self) -> List[Leg]:
        """All legs of all itineraries, flattened."""
        return [leg for itinerary in self.itineraries for leg in itinerary.legs]

    def __bool__(self):
        return bool(self.itineraries)


def raw_candidate_count(k: int, settings: PlannerSettings) -> int:
    """Ask the store for more paths than needed so filtering still leaves k."""
    return max(k * 2, settings.min_raw_candidates)


def names_match(stop_name: str, tokens: Iterable[str]) -> bool:
    """Case-insensitive containment in either direction ('Richmond Station' ~ 'Richmond')."""
    name = stop_name.lower()
    for token in tokens:
        token = token.lower()
        if token in name or name in token:
            return True
    return False


class BoardingRule:
    """
    Regional routes may only be boarded or alighted at interchange stations.

    Matching is done on stop names, so a stop is 'blocked' when its name
    matches the deny list and does not also match the allow list. Stops with
    no known name are never blocked.
    """

    def __init__(self, stops: Dict[int, Stop], routes: Dict[int, Route], allowed, blocked):
        self.stops = stops
        self.routes = routes
        self.allowed = tuple(allowed)
        self.blocked = tuple(blocked)

    @classmethod
    def from_settings(cls, stops, routes, settings: PlannerSettings):
        return cls(stops, routes, settings.regional_allowed_stations, settings.regional_blocked_stations)

    def is_regional(self, route_id: int) -> bool:
        route = self.routes.get(route_id)
        if route is not None and route.mode == TransportMode.REGIONAL:
            return True
        base_id = normalize_route_id(route_id)
        if base_id != route_id:
            base = self.routes.get(base_id)
            return base is not None and base.mode == TransportMode.REGIONAL
        return False

    def stop_blocked(self, stop_id: int) -> bool:
        stop = self.stops.get(stop_id)
        if stop is None:
            return False
        return names_match(stop.name, self.blocked) and not names_match(stop.name, self.allowed)

    def permits(self, itinerary: Itinerary, log=logger) -> bool:
        for leg in itinerary.legs:
            if not self.is_regional(leg.route_id):
                continue
            if self.stop_blocked(leg.origin_stop_id) or self.stop_blocked(leg.destination_stop_id):
                log.debug(
                    f"Regional boarding rule rejected route {leg.route_id}: "
                    f"{leg.origin_stop_id} -> {leg.destination_stop_id}"
                )
                return False
        return True


def deduplicate(itineraries: Iterable[Itinerary]) -> List[Itinerary]:
    """Keep the first itinerary per (origin, base route, destination) leg sequence."""
    seen = set()
    unique = []
    for itinerary in itineraries:
        signature = itinerary.signature
        if signature in seen:
            continue
        seen.add(signature)
        unique.append(itinerary)
    return unique


class JourneySearch:
    """Turns k-shortest graph paths into ranked, distinct itineraries."""

    def __init__(self, store, settings: Optional[PlannerSettings] = None):
        self.store = store
        self.settings = settings or PlannerSettings()

    def search(
        self,
        origin_stop_id: int,
        destination_stop_id: int,
        k: int = 3,
        exclude_replacement: bool = True,
        log=logger,
    ) -> SearchResult:
        """
        Find up to min(k, max_itineraries) distinct itineraries.

        No path, a same-stop request or unknown stops all give an empty
        result; only GraphUnavailable propagates from the store.
        """
        if k <= 0 or origin_stop_id == destination_stop_id:
            return SearchResult()
        stops = self.store.stops
        if origin_stop_id not in stops or destination_stop_id not in stops:
            log.info(f"Unknown stop in request {origin_stop_id} -> {destination_stop_id}")
            return SearchResult()

        raw_k = raw_candidate_count(k, self.settings)
        paths = self.store.k_shortest_paths(
            hub_key(origin_stop_id),
            hub_key(destination_stop_id),
            raw_k,
            exclude_replacement=exclude_replacement,
        )
        if not paths:
            log.info(f"No path between {origin_stop_id} and {destination_stop_id}")
            return SearchResult()

        itineraries = []
        next_leg_id = 1
        for path in paths:
            itinerary = self._itinerary_from_path(path, next_leg_id)
            if itinerary is None:
                continue
            next_leg_id += len(itinerary.legs)
            itineraries.append(itinerary)

        rule = BoardingRule.from_settings(stops, self.store.routes, self.settings)
        permitted = [it for it in itineraries if rule.permits(it, log)]
        unique = deduplicate(permitted)
        limit = min(k, self.settings.max_itineraries)
        log.info(
            f"{len(paths)} raw paths, {len(itineraries)} itineraries, {len(permitted)} permitted, "
            f"{len(unique)} unique, returning {min(limit, len(unique))}"
        )
        return SearchResult(itineraries=unique[:limit])

    def _itinerary_from_path(self, path: GraphPath, first_leg_id: int) -> Optional[Itinerary]:
        nodes = path.nodes
        costs = path.edge_costs

        # Positions of route nodes; hubs only anchor the search and pivot transfers
        positions = [i for i, node in enumerate(nodes) if not is_hub(node.key)]
        if not positions:
            return None

        runs = []
        run = [positions[0]]
        for position in positions[1:]:
            if nodes[position].route_id == nodes[run[-1]].route_id and position == run[-1] + 1:
                run.append(position)
            else:
                runs.append(run)
                run = [position]
        runs.append(run)

        legs = []
        for run in runs:
            if len(run) < 2:
                continue
            ride_minutes = sum(costs[i] for i in range(run[0], run[-1]))
            legs.append(self._leg(
                first_leg_id + len(legs),
                [nodes[i].stop_id for i in run],
                nodes[run[0]].route_id,
                ride_minutes,
            ))
        if not legs:
            return None

        # In-network cost: everything between the first and last route node
        cost = sum(costs[positions[0]:positions[-1]])
        return Itinerary(legs=legs, cost=cost)

    def _leg(self, leg_id: int, stop_ids: Sequence[int], route_id: int, ride_minutes: float) -> Leg:
        route = self.store.routes.get(route_id) or self.store.routes.get(normalize_route_id(route_id))
        return Leg(
            leg_id=leg_id,
            origin_stop_id=stop_ids[0],
            destination_stop_id=stop_ids[-1],
            route_id=route_id,
            route_name=route.name if route else "",
            route_number=route.number if route else "",
            route_mode=route.mode if route else None,
            route_colour=route.colour if route else (0, 0, 0),
            geopath=self.store.segment_geopath(route_id, stop_ids),
            travel_minutes=ride_minutes,
        )


def search_journeys(store, origin_stop_id, destination_stop_id, k=3, exclude_replacement=True, settings=None):
    """
    Find up to min(k, 3) distinct itineraries between two stops.

    Args:
        store: NetworkStore to search
        origin_stop_id: stop to start from
        destination_stop_id: stop to arrive at
        k: number of itineraries requested
        exclude_replacement: leave replacement services out of the graph

    Returns:
        SearchResult with the itineraries and their flattened legs
    """
    return JourneySearch(store, settings).search(
        origin_stop_id, destination_stop_id, k=k, exclude_replacement=exclude_replacement
    )
