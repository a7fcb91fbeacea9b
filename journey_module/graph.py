import logging
from typing import Callable, Dict, Iterable, Optional, Tuple

import networkx as nx

from journey_module.models import RideSegment, Route, Stop

logger = logging.getLogger(__name__)

NODE_KEY_FACTOR = 1_000_000_000
HUB_ROUTE_ID = 0

RIDE_EDGE = "ride"
TRANSFER_EDGE = "transfer"


def node_key(stop_id: int, route_id: int = HUB_ROUTE_ID) -> int:
    """Encode (stop_id, route_id) as one integer key. route_id 0 is the stop's hub."""
    return stop_id * NODE_KEY_FACTOR + route_id


def hub_key(stop_id: int) -> int:
    return node_key(stop_id, HUB_ROUTE_ID)


def split_node_key(key: int) -> Tuple[int, int]:
    return key // NODE_KEY_FACTOR, key % NODE_KEY_FACTOR


def is_hub(key: int) -> bool:
    return key % NODE_KEY_FACTOR == HUB_ROUTE_ID


def exclude_replacement_services(route: Route) -> bool:
    return route.is_replacement


def build_transit_graph(
    stops: Dict[int, Stop],
    routes: Dict[int, Route],
    segments: Iterable[RideSegment],
    transfer_penalty: float,
    exclude: Optional[Callable[[Route], bool]] = None,
) -> nx.DiGraph:
    """
    Build the routing graph of per-route nodes and per-stop hub nodes.

    Ride edges join consecutive stops of the same route, once per traversable
    direction. Every route node is joined to its stop's hub in both directions,
    each half costing transfer_penalty / 2, so changing route at a stop costs the
    full penalty.

    Args:
        stops: stop_id -> Stop
        routes: route_id -> Route
        segments: schedule-derived ride segments
        transfer_penalty: minutes charged for a change of route
        exclude: optional predicate; routes for which it returns True get no edges

    Returns:
        networkx DiGraph keyed by node_key(); edges carry 'cost' and 'kind'
    """
    graph = nx.DiGraph()
    half_penalty = transfer_penalty / 2.0
    excluded = set()
    skipped = 0

    for segment in segments:
        route = routes.get(segment.route_id)
        if route is None or segment.from_stop_id not in stops or segment.to_stop_id not in stops:
            skipped += 1
            continue
        if exclude is not None and exclude(route):
            excluded.add(route.route_id)
            continue
        if segment.from_stop_id == segment.to_stop_id:
            continue

        source = node_key(segment.from_stop_id, segment.route_id)
        target = node_key(segment.to_stop_id, segment.route_id)
        for key, stop_id in ((source, segment.from_stop_id), (target, segment.to_stop_id)):
            if key not in graph:
                graph.add_node(key, stop_id=stop_id, route_id=segment.route_id)

        cost = float(segment.minutes)
        _add_cheapest_edge(graph, source, target, cost)
        if segment.bidirectional:
            _add_cheapest_edge(graph, target, source, cost)

    # Transfer edges between each route node and the hub of its stop
    route_nodes = [(key, data["stop_id"]) for key, data in graph.nodes(data=True)]
    for key, stop_id in route_nodes:
        hub = hub_key(stop_id)
        if hub not in graph:
            graph.add_node(hub, stop_id=stop_id, route_id=HUB_ROUTE_ID)
        graph.add_edge(hub, key, cost=half_penalty, kind=TRANSFER_EDGE)
        graph.add_edge(key, hub, cost=half_penalty, kind=TRANSFER_EDGE)

    if skipped:
        logger.warning(f"Skipped {skipped} ride segments referencing unknown stops or routes")
    if excluded:
        logger.info(f"Excluded {len(excluded)} routes from the graph")
    logger.info(
        f"Built transit graph with {graph.number_of_nodes()} nodes and {graph.number_of_edges()} edges"
    )
    return graph


def undirected_view(graph: nx.DiGraph) -> nx.Graph:
    """
    Undirected copy of the routing graph for path search.

    A hop present in both directions keeps the cheaper of the two costs.
    """
    undirected = nx.Graph()
    undirected.add_nodes_from(graph.nodes(data=True))
    for source, target, data in graph.edges(data=True):
        _add_cheapest_edge(undirected, source, target, data["cost"], data["kind"])
    return undirected


def _add_cheapest_edge(graph, source, target, cost, kind=RIDE_EDGE):
    # Several trips of a route may report different times for the same hop
    existing = graph.get_edge_data(source, target)
    if existing is None or cost < existing["cost"]:
        graph.add_edge(source, target, cost=cost, kind=kind)
