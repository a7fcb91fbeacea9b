"""
Client for the live departures / run pattern API.

Every request is signed: the path and query (including devid) are hashed with
HMAC-SHA1 using the API key, and the uppercase hex digest is appended as the
`signature` parameter.
"""
import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import quote, urlencode

import httpx

from journey_module.config import PTV_API_BASE
from journey_module.exceptions import CollaboratorError, CollaboratorMalformed, CollaboratorTimeout
from journey_module.models import Departure, PatternStop

logger = logging.getLogger(__name__)


def parse_utc(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as returned by the API; naive values are UTC."""
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise CollaboratorMalformed(f"Timestamp is not a string: {value!r}")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise CollaboratorMalformed(f"Invalid timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _optional_int(value):
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise CollaboratorMalformed(f"Expected an integer, got {value!r}") from e


def parse_departures(payload) -> List[Departure]:
    rows = _rows(payload)
    departures = []
    for row in rows:
        route_id = row.get("route_id")
        if route_id is None:
            raise CollaboratorMalformed("Departure without route_id")
        run_ref = row.get("run_ref")
        if run_ref is None and row.get("run_id") is not None:
            run_ref = str(row["run_id"])
        departures.append(Departure(
            route_id=str(route_id),
            stop_id=_optional_int(row.get("stop_id")),
            run_ref=str(run_ref) if run_ref not in (None, "") else None,
            scheduled_utc=parse_utc(row.get("scheduled_departure_utc")),
            estimated_utc=parse_utc(row.get("estimated_departure_utc")),
        ))
    return departures


def parse_pattern(payload) -> List[PatternStop]:
    stops = []
    for row in _rows(payload):
        stop_id = _optional_int(row.get("stop_id"))
        if stop_id is None:
            raise CollaboratorMalformed("Pattern row without stop_id")
        stops.append(PatternStop(
            stop_id=stop_id,
            scheduled_utc=parse_utc(row.get("scheduled_departure_utc")),
            estimated_utc=parse_utc(row.get("estimated_departure_utc")),
        ))
    return stops


def _rows(payload):
    if not isinstance(payload, dict):
        raise CollaboratorMalformed("Response body is not a JSON object")
    rows = payload.get("departures")
    if rows is None:
        return []
    if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
        raise CollaboratorMalformed("'departures' is not a list of objects")
    return rows


class PTVClient:
    """Async client for live departures and run patterns."""

    def __init__(
        self,
        dev_id: str,
        api_key: str,
        base_url: str = PTV_API_BASE,
        http_client: Optional[httpx.AsyncClient] = None,
        rate_limiter=None,
        timeout: float = 5.0,
    ):
        self.dev_id = dev_id
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient()

    async def aclose(self):
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    def sign(self, endpoint: str) -> str:
        """Return endpoint with devid and signature appended."""
        separator = "&" if "?" in endpoint else "?"
        with_dev_id = f"{endpoint}{separator}devid={self.dev_id}"
        signature = hmac.new(
            self.api_key.encode("utf-8"),
            with_dev_id.encode("utf-8"),
            hashlib.sha1,
        ).hexdigest().upper()
        return f"{with_dev_id}&signature={signature}"

    async def _call_api(self, endpoint: str):
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        url = f"{self.base_url}{self.sign(endpoint)}"
        logger.debug(f"Requesting {endpoint}")
        try:
            response = await self._http.get(url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning(f"Live data request timed out: {endpoint}")
            raise CollaboratorTimeout(f"Timed out requesting {endpoint}") from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"Live data HTTP error {e.response.status_code}: {endpoint}")
            raise CollaboratorError(f"HTTP {e.response.status_code} from {endpoint}") from e
        except httpx.RequestError as e:
            logger.warning(f"Live data request failed: {e}")
            raise CollaboratorError(f"Request to {endpoint} failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise CollaboratorMalformed(f"Invalid JSON from {endpoint}") from e

    async def get_departures(
        self,
        route_type: int,
        stop_id: int,
        max_results: int = 10,
        after: Optional[datetime] = None,
        route_id: Optional[str] = None,
    ) -> List[Departure]:
        """
        Departures from a stop, optionally restricted to one route.

        Args:
            route_type: 0=Train, 1=Tram, 2=Bus, 3=Regional, 4=NightBus
            stop_id: stop to depart from
            max_results: departures per route returned by the API
            after: only departures from this time on
            route_id: live route identifier to restrict to
        """
        endpoint = f"/v3/departures/route_type/{int(route_type)}/stop/{int(stop_id)}"
        if route_id is not None:
            endpoint += f"/route/{quote(str(route_id), safe='')}"
        params = [("max_results", int(max_results))]
        if after is not None:
            params.append(("date_utc", format_utc(after)))
        payload = await self._call_api(f"{endpoint}?{urlencode(params)}")
        return parse_departures(payload)

    async def get_pattern(self, run_ref: str, route_type: int) -> List[PatternStop]:
        """Stop-level times of one run, in running order."""
        endpoint = f"/v3/pattern/run/{quote(str(run_ref), safe='')}/route_type/{int(route_type)}"
        payload = await self._call_api(endpoint)
        return parse_pattern(payload)
