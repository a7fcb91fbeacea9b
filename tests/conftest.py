from datetime import datetime, timedelta, timezone

import pytest

from journey_module.config import PlannerSettings
from journey_module.exceptions import CollaboratorTimeout
from journey_module.models import Departure, PatternStop, RideSegment, Route, ShapePoint, Stop, TransportMode
from journey_module.network import NetworkData, NetworkStore

REQUESTED = datetime(2024, 1, 4, 8, 0, tzinfo=timezone.utc)

ALPHA, BRAVO, CHARLIE, DELTA = 1, 2, 3, 4
RICHMOND, SOUTHERN_CROSS, GEELONG, ISOLATED = 5, 6, 8, 9

LINE, LINE_PATTERN, TRAM, REPLACEMENT_BUS, REGIONAL, SUBURBAN = 10, 10001, 20, 40, 30, 50


def make_network_data():
    """
    Alpha -(10: 4)- Bravo -(10: 6)- Charlie -(20: 7)- Delta
    10001 is a slower stopping pattern of line 10; 40 is a replacement bus
    Alpha -> Delta. Regional 30 runs Southern Cross - Richmond - Geelong,
    suburban 50 runs Southern Cross - Richmond slowly.
    """
    stops = {
        ALPHA: Stop(ALPHA, "Alpha", -37.80, 144.90),
        BRAVO: Stop(BRAVO, "Bravo", -37.81, 144.91),
        CHARLIE: Stop(CHARLIE, "Charlie", -37.82, 144.92),
        DELTA: Stop(DELTA, "Delta", -37.83, 144.93, mode=TransportMode.TRAM),
        RICHMOND: Stop(RICHMOND, "Richmond Station", -37.824, 144.990),
        SOUTHERN_CROSS: Stop(SOUTHERN_CROSS, "Southern Cross Station", -37.818, 144.952),
        GEELONG: Stop(GEELONG, "Geelong Station", -38.144, 144.355, mode=TransportMode.REGIONAL),
        ISOLATED: Stop(ISOLATED, "Nowhere", -36.0, 145.0),
    }
    routes = {
        LINE: Route(LINE, "Alpha Line", TransportMode.TRAIN, external_id="10"),
        LINE_PATTERN: Route(LINE_PATTERN, "Alpha Line (stopping)", TransportMode.TRAIN),
        TRAM: Route(TRAM, "Charlie - Delta", TransportMode.TRAM, number="20", colour=(120, 190, 32)),
        REPLACEMENT_BUS: Route(REPLACEMENT_BUS, "Rail Replacement", TransportMode.BUS, is_replacement=True),
        REGIONAL: Route(REGIONAL, "Geelong Line", TransportMode.REGIONAL),
        SUBURBAN: Route(SUBURBAN, "City Loop", TransportMode.TRAIN),
    }
    segments = [
        RideSegment(LINE, ALPHA, BRAVO, 4),
        RideSegment(LINE, BRAVO, CHARLIE, 6),
        RideSegment(LINE_PATTERN, ALPHA, BRAVO, 5),
        RideSegment(LINE_PATTERN, BRAVO, CHARLIE, 6),
        RideSegment(TRAM, CHARLIE, DELTA, 7),
        RideSegment(REPLACEMENT_BUS, ALPHA, DELTA, 5),
        RideSegment(REGIONAL, SOUTHERN_CROSS, RICHMOND, 3),
        RideSegment(REGIONAL, RICHMOND, GEELONG, 50),
        RideSegment(SUBURBAN, SOUTHERN_CROSS, RICHMOND, 20),
    ]
    shapes = {
        LINE: [
            ShapePoint(-37.80, 144.90, ALPHA),
            ShapePoint(-37.805, 144.905),
            ShapePoint(-37.81, 144.91, BRAVO),
            ShapePoint(-37.815, 144.915),
            ShapePoint(-37.82, 144.92, CHARLIE),
        ],
    }
    return NetworkData(stops=stops, routes=routes, segments=segments, shapes=shapes)


@pytest.fixture
def network_data():
    return make_network_data()


@pytest.fixture
def store(network_data):
    return NetworkStore(network_data, transfer_penalty=5.0)


@pytest.fixture
def settings():
    return PlannerSettings()


def at(minutes):
    return REQUESTED + timedelta(minutes=minutes)


class FakeLiveSource:
    """Scripted live data: departures keyed by stop, patterns keyed by run."""

    def __init__(self, departures=None, patterns=None, error=None):
        self.departures = departures or {}
        self.patterns = patterns or {}
        self.error = error
        self.calls = []

    async def get_departures(self, route_type, stop_id, max_results=10, after=None, route_id=None):
        self.calls.append(("departures", route_type, stop_id, after, route_id))
        if self.error is not None:
            raise self.error
        return [d for d in self.departures.get(stop_id, []) if route_id is None or d.route_id == route_id]

    async def get_pattern(self, run_ref, route_type):
        self.calls.append(("pattern", run_ref, route_type))
        if self.error is not None:
            raise self.error
        return list(self.patterns.get(run_ref, []))


@pytest.fixture
def failing_source():
    return FakeLiveSource(error=CollaboratorTimeout("timed out"))


@pytest.fixture
def live_source():
    """Live departures for the Alpha -> Delta trip (line 10 then tram 20)."""
    return FakeLiveSource(
        departures={
            ALPHA: [
                Departure("10", ALPHA, "run-a", scheduled_utc=at(2)),
                Departure("10", ALPHA, "run-b", scheduled_utc=at(17), estimated_utc=at(19)),
                Departure("10", ALPHA, "run-old", scheduled_utc=at(-5)),
                Departure("99", ALPHA, "other", scheduled_utc=at(1)),
                Departure("10", ALPHA, "run-c", scheduled_utc=at(32)),
            ],
            CHARLIE: [
                Departure("20", CHARLIE, "tram-1", scheduled_utc=at(14)),
                Departure("20", CHARLIE, "tram-2", scheduled_utc=at(20)),
                Departure("20", CHARLIE, "tram-3", scheduled_utc=at(45)),
            ],
        },
        patterns={
            "run-a": [PatternStop(ALPHA, at(2)), PatternStop(BRAVO, at(6)), PatternStop(CHARLIE, at(13))],
            "tram-2": [PatternStop(CHARLIE, at(20)), PatternStop(DELTA, at(26))],
        },
    )


@pytest.fixture
def make_live_source():
    return FakeLiveSource
