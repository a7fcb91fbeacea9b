import pytest

from journey_module.graph import (
    RIDE_EDGE,
    TRANSFER_EDGE,
    build_transit_graph,
    exclude_replacement_services,
    hub_key,
    is_hub,
    node_key,
    split_node_key,
)
from journey_module.models import RideSegment, Route, Stop, TransportMode, normalize_route_id

from conftest import ALPHA, BRAVO, CHARLIE, DELTA, LINE, REPLACEMENT_BUS, TRAM


def test_node_key_round_trip():
    key = node_key(1071, 14000)
    assert key == 1071 * 1_000_000_000 + 14000
    assert split_node_key(key) == (1071, 14000)
    assert not is_hub(key)
    assert is_hub(hub_key(1071))


@pytest.mark.parametrize("route_id, expected", [
    (14, 14),
    (999, 999),
    (1000, 1),
    (14000, 14),
    (14003, 14),
    (99999, 99),
    (100000, 100000),
])
def test_normalize_route_id(route_id, expected):
    assert normalize_route_id(route_id) == expected


def test_ride_edges_in_both_directions(network_data):
    graph = build_transit_graph(network_data.stops, network_data.routes, network_data.segments, 5.0)

    forward = graph.edges[node_key(ALPHA, LINE), node_key(BRAVO, LINE)]
    backward = graph.edges[node_key(BRAVO, LINE), node_key(ALPHA, LINE)]
    assert forward == {"cost": 4.0, "kind": RIDE_EDGE}
    assert backward == {"cost": 4.0, "kind": RIDE_EDGE}


def test_transfer_edges_cost_half_the_penalty(network_data):
    graph = build_transit_graph(network_data.stops, network_data.routes, network_data.segments, 5.0)

    hub = hub_key(CHARLIE)
    for route_id in (LINE, TRAM):
        route_node = node_key(CHARLIE, route_id)
        assert graph.edges[hub, route_node] == {"cost": 2.5, "kind": TRANSFER_EDGE}
        assert graph.edges[route_node, hub] == {"cost": 2.5, "kind": TRANSFER_EDGE}

    # Changing route at a stop costs the full penalty
    change = graph.edges[node_key(CHARLIE, LINE), hub]["cost"] + graph.edges[hub, node_key(CHARLIE, TRAM)]["cost"]
    assert change == 5.0


def test_node_attributes(network_data):
    graph = build_transit_graph(network_data.stops, network_data.routes, network_data.segments, 5.0)

    assert graph.nodes[node_key(DELTA, TRAM)] == {"stop_id": DELTA, "route_id": TRAM}
    assert graph.nodes[hub_key(DELTA)] == {"stop_id": DELTA, "route_id": 0}


def test_one_way_segment():
    stops = {1: Stop(1, "A", 0, 0), 2: Stop(2, "B", 0, 1)}
    routes = {7: Route(7, "Loop", TransportMode.BUS)}
    graph = build_transit_graph(stops, routes, [RideSegment(7, 1, 2, 3, bidirectional=False)], 5.0)

    assert graph.has_edge(node_key(1, 7), node_key(2, 7))
    assert not graph.has_edge(node_key(2, 7), node_key(1, 7))


def test_cheapest_duplicate_segment_wins():
    stops = {1: Stop(1, "A", 0, 0), 2: Stop(2, "B", 0, 1)}
    routes = {7: Route(7, "Loop", TransportMode.BUS)}
    segments = [RideSegment(7, 1, 2, 9), RideSegment(7, 1, 2, 4), RideSegment(7, 1, 2, 6)]
    graph = build_transit_graph(stops, routes, segments, 5.0)

    assert graph.edges[node_key(1, 7), node_key(2, 7)]["cost"] == 4.0


def test_unknown_references_are_skipped(caplog):
    stops = {1: Stop(1, "A", 0, 0), 2: Stop(2, "B", 0, 1)}
    routes = {7: Route(7, "Loop", TransportMode.BUS)}
    segments = [RideSegment(7, 1, 2, 3), RideSegment(8, 1, 2, 3), RideSegment(7, 1, 99, 3)]

    with caplog.at_level("WARNING"):
        graph = build_transit_graph(stops, routes, segments, 5.0)

    assert graph.number_of_nodes() == 4
    assert "Skipped 2 ride segments" in caplog.text


def test_replacement_services_excluded(network_data):
    graph = build_transit_graph(
        network_data.stops,
        network_data.routes,
        network_data.segments,
        5.0,
        exclude=exclude_replacement_services,
    )

    assert node_key(ALPHA, REPLACEMENT_BUS) not in graph
    assert node_key(ALPHA, LINE) in graph
