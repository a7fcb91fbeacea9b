import os
import time
import logging

import psycopg2
from psycopg2 import OperationalError
from psycopg2.extras import RealDictCursor
from dotenv import load_dotenv

from journey_module.exceptions import GraphUnavailable
from journey_module.network import NetworkData, network_data_from_records

logger = logging.getLogger(__name__)


STOPS_QUERY = """
    SELECT stop_id, stop_name, stop_latitude, stop_longitude, route_type,
           stop_suburb, stop_landmark
    FROM stops;
"""

ROUTES_QUERY = """
    SELECT route_id, route_name, route_number, route_type, route_gtfs_id,
           route_colour, is_replacement_bus
    FROM routes;
"""

SEGMENTS_QUERY = """
    SELECT route_id, from_stop_id, to_stop_id, travel_minutes, bidirectional
    FROM route_segments
    ORDER BY route_id, segment_sequence;
"""

SHAPES_QUERY = """
    SELECT route_id, shape_pt_sequence, shape_pt_lat, shape_pt_lon, stop_id
    FROM route_shapes
    ORDER BY route_id, shape_pt_sequence;
"""

CONNECT_ATTEMPTS = 5
CONNECT_RETRY_DELAY_S = 2


class PostgresConnector:
    """Reads the static network from PostgreSQL. One instance per process."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            instance = super(PostgresConnector, cls).__new__(cls)
            instance._load_settings()
            cls._instance = instance
        return cls._instance

    def _load_settings(self):
        load_dotenv()
        try:
            self.connect_kwargs = {
                "database": os.environ["PG_DB_NAME"],
                "user": os.environ["PG_USER"],
                "password": os.environ["PG_PASSWORD"],
                "host": os.environ.get("PG_HOST", "localhost"),
                "port": os.environ.get("PG_PORT", "5432"),
                "sslmode": os.environ.get("PGSSLMODE", "prefer"),
            }
        except KeyError as e:
            raise EnvironmentError(
                f"Missing required environment variable: {e}. Check your shell environment or .env file."
            ) from e

    @property
    def target(self) -> str:
        kwargs = self.connect_kwargs
        return f"{kwargs['host']}:{kwargs['port']}/{kwargs['database']}"

    def connect(self):
        """Open a new connection, retrying while the server refuses it."""
        for attempt in range(1, CONNECT_ATTEMPTS + 1):
            try:
                connection = psycopg2.connect(**self.connect_kwargs)
            except OperationalError as e:
                if attempt == CONNECT_ATTEMPTS:
                    logger.error(f"Could not reach {self.target} after {attempt} attempts: {e}")
                    raise
                logger.info(f"{self.target} not reachable ({attempt}/{CONNECT_ATTEMPTS}), retrying...")
                time.sleep(CONNECT_RETRY_DELAY_S)
            else:
                logger.info(f"Connected to {self.target}")
                return connection

    def fetch_network_data(self) -> NetworkData:
        """
        Read stops, routes, ride segments and route shapes in one go.

        The connection only lives for the duration of the read.

        Raises:
            GraphUnavailable: the database cannot be reached or a query fails
        """
        try:
            connection = self.connect()
            try:
                with connection.cursor(cursor_factory=RealDictCursor) as cur:
                    stop_rows, route_rows, segment_rows, shape_rows = [
                        _fetch_all(cur, query)
                        for query in (STOPS_QUERY, ROUTES_QUERY, SEGMENTS_QUERY, SHAPES_QUERY)
                    ]
            finally:
                connection.close()
        except psycopg2.Error as e:
            logger.error(f"Database error while reading the network: {e}", exc_info=True)
            raise GraphUnavailable(f"Network store unavailable: {e}") from e

        logger.info(
            f"Fetched {len(stop_rows)} stops, {len(route_rows)} routes, "
            f"{len(segment_rows)} segments and {len(shape_rows)} shape points"
        )
        return network_data_from_records(stop_rows, route_rows, segment_rows, shape_rows)


def _fetch_all(cursor, query):
    cursor.execute(query)
    return [dict(row) for row in cursor.fetchall()]
