import logging
import os
import threading
from dataclasses import dataclass, field
from itertools import islice
from typing import Dict, List, Optional, Sequence

import networkx as nx
import pandas as pd

from journey_module.exceptions import GraphUnavailable
from journey_module.graph import (
    build_transit_graph,
    exclude_replacement_services,
    node_key,
    split_node_key,
    undirected_view,
)
from journey_module.models import (
    GeoPoint,
    GraphPath,
    PathNode,
    RideSegment,
    Route,
    ShapePoint,
    Stop,
    TransportMode,
    normalize_route_id,
)

logger = logging.getLogger(__name__)


@dataclass
class NetworkData:
    """Static reference data the planner runs on."""
    stops: Dict[int, Stop]
    routes: Dict[int, Route]
    segments: List[RideSegment]
    shapes: Dict[int, List[ShapePoint]] = field(default_factory=dict)


def _is_missing(value):
    return value is None or (isinstance(value, float) and pd.isna(value))


def _optional_str(value):
    if _is_missing(value):
        return None
    value = str(value).strip()
    return value or None


def _parse_bool(value):
    if _is_missing(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "t", "yes", "y")
    return bool(value)


def _parse_colour(value):
    """Accept 'RRGGBB', '#RRGGBB' or 'r,g,b'."""
    value = _optional_str(value)
    if value is None:
        return (0, 0, 0)
    if "," in value:
        parts = [int(p) for p in value.split(",")]
        if len(parts) != 3:
            raise ValueError(f"Invalid colour: {value!r}")
        return tuple(parts)
    value = value.lstrip("#")
    if len(value) != 6:
        raise ValueError(f"Invalid colour: {value!r}")
    return tuple(int(value[i:i + 2], 16) for i in (0, 2, 4))


def stop_from_record(record) -> Stop:
    return Stop(
        stop_id=int(record["stop_id"]),
        name=str(record["stop_name"]),
        latitude=float(record["stop_latitude"]),
        longitude=float(record["stop_longitude"]),
        mode=TransportMode(int(record.get("route_type", 0))),
        suburb=_optional_str(record.get("stop_suburb")),
        landmark=_optional_str(record.get("stop_landmark")),
    )


def route_from_record(record) -> Route:
    number = _optional_str(record.get("route_number"))
    return Route(
        route_id=int(record["route_id"]),
        name=str(record["route_name"]),
        mode=TransportMode(int(record["route_type"])),
        number=number or "",
        external_id=_optional_str(record.get("route_gtfs_id")),
        colour=_parse_colour(record.get("route_colour")),
        is_replacement=_parse_bool(record.get("is_replacement_bus")),
    )


def segment_from_record(record) -> RideSegment:
    bidirectional = record.get("bidirectional")
    return RideSegment(
        route_id=int(record["route_id"]),
        from_stop_id=int(record["from_stop_id"]),
        to_stop_id=int(record["to_stop_id"]),
        minutes=float(record["travel_minutes"]),
        bidirectional=True if _is_missing(bidirectional) else _parse_bool(bidirectional),
    )


def shapes_from_records(records) -> Dict[int, List[ShapePoint]]:
    """Group shape rows by route, ordered by shape_pt_sequence."""
    ordered = sorted(records, key=lambda r: (int(r["route_id"]), int(r["shape_pt_sequence"])))
    shapes: Dict[int, List[ShapePoint]] = {}
    for record in ordered:
        stop_id = record.get("stop_id")
        shapes.setdefault(int(record["route_id"]), []).append(
            ShapePoint(
                latitude=float(record["shape_pt_lat"]),
                longitude=float(record["shape_pt_lon"]),
                stop_id=None if _is_missing(stop_id) else int(stop_id),
            )
        )
    return shapes


def network_data_from_records(stop_rows, route_rows, segment_rows, shape_rows=()) -> NetworkData:
    try:
        stops = {stop.stop_id: stop for stop in map(stop_from_record, stop_rows)}
        routes = {route.route_id: route for route in map(route_from_record, route_rows)}
        segments = [segment_from_record(row) for row in segment_rows]
        shapes = shapes_from_records(shape_rows)
    except (KeyError, TypeError, ValueError) as e:
        raise GraphUnavailable(f"Malformed network data: {e}") from e
    return NetworkData(stops=stops, routes=routes, segments=segments, shapes=shapes)


def load_network_data(data_dir) -> NetworkData:
    """
    Load a CSV snapshot of the network.

    Args:
        data_dir: directory holding stops.csv, routes.csv, segments.csv and
            optionally shapes.csv

    Returns:
        NetworkData
    """
    def read(name, required=True):
        path = os.path.join(data_dir, name)
        if not required and not os.path.exists(path):
            return []
        try:
            # Everything as text; the record converters do the typing
            return pd.read_csv(path, dtype=str).to_dict("records")
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise GraphUnavailable(f"Cannot read {path}: {e}") from e

    data = network_data_from_records(
        read("stops.csv"),
        read("routes.csv"),
        read("segments.csv"),
        read("shapes.csv", required=False),
    )
    logger.info(
        f"Loaded network snapshot from {data_dir}: {len(data.stops)} stops, "
        f"{len(data.routes)} routes, {len(data.segments)} segments, {len(data.shapes)} shapes"
    )
    return data


class NetworkStore:
    """In-memory network store answering k-shortest-path and metadata queries."""

    def __init__(self, data: NetworkData, transfer_penalty: float = 5.0):
        if not data.stops or not data.routes:
            raise GraphUnavailable("Network store holds no stops or routes")
        self._data = data
        self.transfer_penalty = transfer_penalty
        self._graphs: Dict[bool, nx.DiGraph] = {}
        self._undirected: Dict[bool, nx.Graph] = {}
        self._route_nodes: Dict[int, List[int]] = {}
        self._shape_index: Dict[int, Dict[int, int]] = {}
        self._lock = threading.Lock()

    @property
    def stops(self) -> Dict[int, Stop]:
        return self._data.stops

    @property
    def routes(self) -> Dict[int, Route]:
        return self._data.routes

    def graph(self, exclude_replacement: bool = False) -> nx.DiGraph:
        """Directed routing graph, built once per exclusion setting."""
        with self._lock:
            if exclude_replacement not in self._graphs:
                self._graphs[exclude_replacement] = build_transit_graph(
                    self._data.stops,
                    self._data.routes,
                    self._data.segments,
                    self.transfer_penalty,
                    exclude=exclude_replacement_services if exclude_replacement else None,
                )
            return self._graphs[exclude_replacement]

    def undirected_graph(self, exclude_replacement: bool = False) -> nx.Graph:
        directed = self.graph(exclude_replacement)
        with self._lock:
            if exclude_replacement not in self._undirected:
                self._undirected[exclude_replacement] = undirected_view(directed)
            return self._undirected[exclude_replacement]

    def warm(self):
        """Build every graph variant up front so no request pays for it."""
        for exclude_replacement in (True, False):
            self.undirected_graph(exclude_replacement)

    def k_shortest_paths(
        self,
        origin_key: int,
        destination_key: int,
        k: int,
        exclude_replacement: bool = False,
    ) -> List[GraphPath]:
        """
        Return up to k loopless paths in increasing cost order (Yen's algorithm).

        An unknown node or an unreachable destination yields an empty list.
        """
        graph = self.undirected_graph(exclude_replacement)
        if k <= 0 or origin_key == destination_key:
            return []
        if origin_key not in graph or destination_key not in graph:
            return []

        try:
            candidates = list(islice(
                nx.shortest_simple_paths(graph, origin_key, destination_key, weight="cost"),
                k,
            ))
        except nx.NetworkXNoPath:
            return []

        paths = []
        for keys in candidates:
            nodes = [PathNode(key, *split_node_key(key)) for key in keys]
            costs = [graph.edges[u, v]["cost"] for u, v in zip(keys[:-1], keys[1:])]
            paths.append(GraphPath(nodes=nodes, edge_costs=costs))
        return paths

    def route_travel_minutes(self, route_id: int, from_stop_id: int, to_stop_id: int) -> float:
        """
        Ride cost between two stops staying on one route; 0.0 when unknown.

        The base route of an expanded pattern is tried when the pattern itself
        has no edges between the stops.
        """
        graph = self.undirected_graph(False)
        for candidate in dict.fromkeys((route_id, normalize_route_id(route_id))):
            source = node_key(from_stop_id, candidate)
            target = node_key(to_stop_id, candidate)
            if source not in graph or target not in graph:
                continue
            route_graph = graph.subgraph(self._nodes_of_route(graph, candidate))
            try:
                minutes = nx.dijkstra_path_length(route_graph, source, target, weight="cost")
            except nx.NetworkXNoPath:
                continue
            if minutes > 0:
                return float(minutes)
        return 0.0

    def segment_geopath(self, route_id: int, stop_ids: Sequence[int]) -> List[GeoPoint]:
        """
        Stitch the route shape between consecutive stops of a ride.

        Pairs the shape cannot resolve fall back to straight lines between the
        stop coordinates.
        """
        points = [self.stops[s].point for s in stop_ids if s in self.stops]
        if len(stop_ids) < 2:
            return points

        shape, index = self._shape_for(route_id)
        geopath: List[GeoPoint] = []
        for i, (from_stop, to_stop) in enumerate(zip(stop_ids[:-1], stop_ids[1:])):
            start, end = index.get(from_stop), index.get(to_stop)
            if start is not None and end is not None and start != end:
                if start < end:
                    section = shape[start:end + 1]
                else:
                    section = list(reversed(shape[end:start + 1]))
                section = [GeoPoint(p.latitude, p.longitude) for p in section]
                geopath.extend(section if i == 0 else section[1:])
            else:
                if i == 0 and from_stop in self.stops:
                    geopath.append(self.stops[from_stop].point)
                if to_stop in self.stops:
                    geopath.append(self.stops[to_stop].point)
        return geopath

    def _nodes_of_route(self, graph, route_id):
        with self._lock:
            if route_id not in self._route_nodes:
                self._route_nodes[route_id] = [
                    key for key, data in graph.nodes(data=True) if data["route_id"] == route_id
                ]
            return self._route_nodes[route_id]

    def _shape_for(self, route_id):
        shape_route: Optional[int] = None
        for candidate in (route_id, normalize_route_id(route_id)):
            if candidate in self._data.shapes:
                shape_route = candidate
                break
        if shape_route is None:
            return [], {}

        shape = self._data.shapes[shape_route]
        with self._lock:
            if shape_route not in self._shape_index:
                index: Dict[int, int] = {}
                for position, point in enumerate(shape):
                    if point.stop_id is not None and point.stop_id not in index:
                        index[point.stop_id] = position
                self._shape_index[shape_route] = index
            return shape, self._shape_index[shape_route]
