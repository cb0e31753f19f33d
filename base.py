from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

# Creation-time strings as the forecast archive expects them, e.g. 2025-05-29T12:00:00Z
CREATION_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class City:
    def __init__(self, name, lon, lat):
        self.name = name
        self.lon = lon
        self.lat = lat


class ForecastSource(ABC):
    """Scalar access to a forecast archive keyed by creation time and forecast hour.

    Implementations must match creation time and forecast hour exactly. A
    missing record is reported as ``None``; an unreachable service or a
    malformed response raises ``FetchTransientError``.
    """

    def __init__(self, source_name: str):
        self.source_name = source_name

    @abstractmethod
    def fetch_region_mean(self, creation_time: datetime, forecast_hour: int) -> Optional[float]:
        pass

    @abstractmethod
    def available_forecast_hours(self, creation_time: datetime) -> List[int]:
        pass

    @abstractmethod
    def fetch_point_values(
        self, creation_time: datetime, forecast_hour: int, cities: List[City]
    ) -> Dict[str, Optional[float]]:
        pass

    def region_stats(self, creation_time: datetime, forecast_hour: int) -> Optional[Dict[str, float]]:
        """min/max/mean/count over the region, None when unsupported or absent."""
        return None

    def valid_time(self, creation_time: datetime, forecast_hour: int) -> datetime:
        return creation_time + timedelta(hours=forecast_hour)


def format_creation_time(creation_time: datetime) -> str:
    """Format a creation time as ``YYYY-MM-DDTHH:MM:SSZ`` (UTC)."""
    if creation_time.tzinfo is not None:
        creation_time = creation_time.astimezone(timezone.utc)
    return creation_time.strftime(CREATION_TIME_FORMAT)


def parse_creation_time(value: str) -> datetime:
    """Parse ``YYYY-MM-DDTHH:MM:SSZ`` into an aware UTC datetime."""
    return datetime.strptime(value, CREATION_TIME_FORMAT).replace(tzinfo=timezone.utc)


def polygon_bounds(ring: List[Tuple[float, float]]) -> Tuple[float, float, float, float]:
    """Return (west, east, south, north) of a lon/lat polygon ring."""
    lons = [p[0] for p in ring]
    lats = [p[1] for p in ring]
    return min(lons), max(lons), min(lats), max(lats)
