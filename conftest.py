import threading

import pytest

from base import ForecastSource, format_creation_time


class DictForecastSource(ForecastSource):
    """In-memory source keyed by (creation string, forecast hour).

    A value that is an exception instance is raised instead of returned.
    """

    def __init__(self, values=None, points=None, stats=None):
        super().__init__("in-memory")
        self.values = dict(values or {})
        self.points = dict(points or {})
        self.stats = dict(stats or {})
        self.calls = []
        self._lock = threading.Lock()

    def _lookup(self, table, key):
        with self._lock:
            self.calls.append(key)
        value = table.get(key)
        if isinstance(value, Exception):
            raise value
        return value

    def fetch_region_mean(self, creation_time, forecast_hour):
        return self._lookup(self.values, (format_creation_time(creation_time), forecast_hour))

    def available_forecast_hours(self, creation_time):
        run = format_creation_time(creation_time)
        return sorted(h for (c, h) in self.values if c == run)

    def fetch_point_values(self, creation_time, forecast_hour, cities):
        found = self._lookup(self.points, (format_creation_time(creation_time), forecast_hour)) or {}
        return {c.name: found.get(c.name) for c in cities}

    def region_stats(self, creation_time, forecast_hour):
        return self._lookup(self.stats, (format_creation_time(creation_time), forecast_hour))


@pytest.fixture
def make_source():
    return DictForecastSource
