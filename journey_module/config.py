import os
from dataclasses import dataclass, fields
from typing import Tuple

from dotenv import load_dotenv


# Regional (long-haul) services may only be boarded or alighted at these stations
DEFAULT_REGIONAL_ALLOWED_STATIONS: Tuple[str, ...] = (
    "Southern Cross",
    "Flinders Street",
    "Pakenham",
    "Sunbury",
)

# Suburban stations where regional trains stop but boarding is not permitted.
# Anything also present in the allowed list is dropped from this one.
DEFAULT_REGIONAL_BLOCKED_STATIONS: Tuple[str, ...] = (
    "Caulfield", "Footscray", "Sunshine", "Dandenong", "Clayton", "Oakleigh",
    "South Yarra", "Richmond", "Camberwell", "Box Hill", "Ringwood",
    "Flinders Street",
    "North Melbourne", "South Kensington", "Seddon", "Yarraville", "Newport",
    "Laverton", "Werribee", "Tarneit", "Wyndham Vale", "Little River",
    "Broadmeadows", "Craigieburn", "Essendon", "Moonee Ponds", "Watergardens",
)

PTV_API_BASE = "https://timetableapi.ptv.vic.gov.au"


@dataclass(frozen=True)
class PlannerSettings:
    """Tunable constants of the planning engine.

    All durations are in minutes unless the name says otherwise.
    """

    transfer_penalty: float = 5.0
    transfer_buffer: float = 3.0
    synthetic_headway: float = 12.0
    fallback_pad: float = 5.0
    default_leg_minutes: float = 10.0
    lookahead: int = 4
    max_itineraries: int = 3
    min_raw_candidates: int = 6
    departures_page_size: int = 50
    rate_limit_interval_s: float = 0.3
    rate_limit_burst: int = 1
    request_timeout_s: float = 5.0
    max_workers: int = 4
    regional_allowed_stations: Tuple[str, ...] = DEFAULT_REGIONAL_ALLOWED_STATIONS
    regional_blocked_stations: Tuple[str, ...] = DEFAULT_REGIONAL_BLOCKED_STATIONS

    def __post_init__(self):
        allowed = {name.lower() for name in self.regional_allowed_stations}
        blocked = tuple(
            name for name in self.regional_blocked_stations
            if name.lower() not in allowed
        )
        object.__setattr__(self, "regional_blocked_stations", blocked)

    @classmethod
    def from_env(cls):
        """
        Build settings from the environment (and a .env file if present).

        Every field can be overridden with a PLANNER_<FIELD_NAME> variable,
        e.g. PLANNER_TRANSFER_BUFFER=4. Station lists are comma separated.
        """
        load_dotenv()
        overrides = {}
        for f in fields(cls):
            env_name = f"PLANNER_{f.name.upper()}"
            raw = os.environ.get(env_name)
            if raw is None or raw.strip() == "":
                continue
            try:
                if isinstance(f.default, tuple):
                    overrides[f.name] = tuple(s.strip() for s in raw.split(",") if s.strip())
                elif isinstance(f.default, int):
                    overrides[f.name] = int(raw)
                else:
                    overrides[f.name] = float(raw)
            except ValueError as e:
                raise EnvironmentError(f"Invalid value for {env_name}: {raw!r}") from e
        return cls(**overrides)


@dataclass(frozen=True)
class LiveDataCredentials:
    dev_id: str
    api_key: str
    base_url: str = PTV_API_BASE

    @classmethod
    def from_env(cls):
        load_dotenv()
        try:
            return cls(
                dev_id=os.environ["PTV_DEV_ID"].strip(),
                api_key=os.environ["PTV_API_KEY"].strip(),
                base_url=os.environ.get("PTV_API_BASE", PTV_API_BASE),
            )
        except KeyError as e:
            raise EnvironmentError(
                f"Missing required environment variable: {e}. Check your shell environment or .env file."
            ) from e
