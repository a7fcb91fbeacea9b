from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import List, Optional, Tuple


# Expanded route patterns are stored as base_id * 1000 + pattern_index
PATTERN_FACTOR = 1000
PATTERN_ID_MIN = 1000
PATTERN_ID_MAX = 100000


class TransportMode(IntEnum):
    """Route types as used by the live data source."""
    TRAIN = 0
    TRAM = 1
    BUS = 2
    REGIONAL = 3
    NIGHT_BUS = 4


class Tier(str, Enum):
    """Which data source supplied a leg's timing."""
    REALTIME = "realtime"
    SYNTHETIC_HEADWAY = "synthetic_headway"
    GRAPH_FALLBACK = "graph_fallback"


def normalize_route_id(route_id: int) -> int:
    """Collapse an expanded-pattern route id (e.g. 14000) back to its base route (14)."""
    if PATTERN_ID_MIN <= route_id < PATTERN_ID_MAX:
        return route_id // PATTERN_FACTOR
    return route_id


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Stop:
    stop_id: int
    name: str
    latitude: float
    longitude: float
    mode: TransportMode = TransportMode.TRAIN
    suburb: Optional[str] = None
    landmark: Optional[str] = None

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)


@dataclass(frozen=True)
class Route:
    route_id: int
    name: str
    mode: TransportMode
    number: str = ""
    external_id: Optional[str] = None
    colour: Tuple[int, int, int] = (0, 0, 0)
    is_replacement: bool = False

    @property
    def live_route_id(self) -> str:
        """Identifier used when matching live departures to this route."""
        if self.external_id:
            return self.external_id
        return str(normalize_route_id(self.route_id))


@dataclass(frozen=True)
class RideSegment:
    """A schedule-derived hop between two consecutive stops of a route."""
    route_id: int
    from_stop_id: int
    to_stop_id: int
    minutes: float
    bidirectional: bool = True


@dataclass(frozen=True)
class ShapePoint:
    latitude: float
    longitude: float
    stop_id: Optional[int] = None


@dataclass(frozen=True)
class PathNode:
    key: int
    stop_id: int
    route_id: int


@dataclass
class GraphPath:
    """One path returned by the network store, hub nodes included."""
    nodes: List[PathNode]
    edge_costs: List[float]

    @property
    def total_cost(self) -> float:
        return sum(self.edge_costs)


@dataclass(frozen=True)
class Departure:
    route_id: str
    stop_id: Optional[int] = None
    run_ref: Optional[str] = None
    scheduled_utc: Optional[datetime] = None
    estimated_utc: Optional[datetime] = None

    @property
    def time(self) -> Optional[datetime]:
        # Estimated time wins whenever the source provides one
        return self.estimated_utc or self.scheduled_utc


@dataclass(frozen=True)
class PatternStop:
    stop_id: int
    scheduled_utc: Optional[datetime] = None
    estimated_utc: Optional[datetime] = None

    @property
    def time(self) -> Optional[datetime]:
        return self.estimated_utc or self.scheduled_utc


@dataclass
class Leg:
    """One continuous ride on one route."""
    leg_id: int
    origin_stop_id: int
    destination_stop_id: int
    route_id: int
    route_name: str = ""
    route_number: str = ""
    route_mode: Optional[TransportMode] = None
    route_colour: Tuple[int, int, int] = (0, 0, 0)
    geopath: List[GeoPoint] = field(default_factory=list)
    travel_minutes: float = 0.0
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    tier: Optional[Tier] = None
    arrival_from_pattern: bool = False
    wait_minutes: Optional[int] = None
    total_minutes: Optional[int] = None

    @property
    def is_timed(self) -> bool:
        return self.departure_time is not None and self.arrival_time is not None


@dataclass
class Itinerary:
    legs: List[Leg]
    cost: float = 0.0

    @property
    def origin_stop_id(self) -> int:
        return self.legs[0].origin_stop_id

    @property
    def destination_stop_id(self) -> int:
        return self.legs[-1].destination_stop_id

    @property
    def signature(self) -> str:
        return "|".join(
            f"{leg.origin_stop_id}-{normalize_route_id(leg.route_id)}-{leg.destination_stop_id}"
            for leg in self.legs
        )


@dataclass
class ItineraryVariant:
    itinerary: Itinerary
    legs: List[Leg]

    @property
    def departure_time(self) -> Optional[datetime]:
        return self.legs[0].departure_time if self.legs else None

    @property
    def arrival_time(self) -> Optional[datetime]:
        return self.legs[-1].arrival_time if self.legs else None

    @property
    def tiers(self) -> List[Optional[Tier]]:
        return [leg.tier for leg in self.legs]

    @property
    def degraded(self) -> bool:
        """True when any leg used an estimate instead of live data."""
        return any(tier is not Tier.REALTIME for tier in self.tiers)
