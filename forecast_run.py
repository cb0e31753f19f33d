"""
Forecast run explorer: the state behind the forecast dashboard.

Loading a run (creation date + run time) yields an immutable ForecastRunView
holding the forecast hours found, the hour-slider bounds and the region-mean
chart series. Selecting an hour (directly or by clicking the chart) yields an
HourSnapshot with per-city values. Presentation layers render these; nothing
here keeps module-level state between requests.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from base import City, ForecastSource, format_creation_time, parse_creation_time
from errors import FetchTransientError, MissingConfigError

logger = logging.getLogger(__name__)

RUN_TIMES = {
    "T00:00:00Z": "00:00 UTC",
    "T06:00:00Z": "06:00 UTC",
    "T12:00:00Z": "12:00 UTC",
    "T18:00:00Z": "18:00 UTC",
}
DEFAULT_RUN_TIME = "T12:00:00Z"

# Major German cities (approximate locations for point values)
CITIES = [
    City("Berlin", 13.4050, 52.5200),
    City("Hamburg", 9.9937, 53.5511),
    City("Munich", 11.5820, 48.1351),
    City("Cologne", 6.9603, 50.9375),
    City("Frankfurt", 8.6821, 50.1109),
]


@dataclass(frozen=True)
class HourSlider:
    min: int
    max: int
    step: int
    value: int

    def clamp(self, x) -> Optional[int]:
        """Round a chart x value to the nearest hour within the slider bounds."""
        if x is None:
            return None
        hour = int(round(float(x)))
        return max(self.min, min(self.max, hour))

    def to_dict(self) -> Dict:
        return {"min": self.min, "max": self.max, "step": self.step, "value": self.value}


@dataclass(frozen=True)
class ForecastRunView:
    creation_time: datetime
    forecast_hours: Tuple[int, ...]
    slider: HourSlider
    chart: Tuple[Tuple[int, Optional[float]], ...]
    status: str
    diagnostics: Optional[Dict[str, float]] = None

    @property
    def creation_string(self) -> str:
        return format_creation_time(self.creation_time)

    @property
    def found(self) -> int:
        return len(self.forecast_hours)

    def to_dict(self) -> Dict:
        return {
            "creation_time": self.creation_string,
            "found": self.found,
            "forecast_hours": list(self.forecast_hours),
            "slider": self.slider.to_dict(),
            "chart": {
                "title": f"Avg values (click to update map)\nRun: {self.creation_string}",
                "x": [h for h, _ in self.chart],
                "y": [v for _, v in self.chart],
            },
            "status": self.status,
            "diagnostics": dict(self.diagnostics) if self.diagnostics else None,
        }


@dataclass(frozen=True)
class HourSnapshot:
    hour: int
    values: Dict[str, Optional[float]]

    @property
    def labels(self) -> List[str]:
        return [city_label(name, value) for name, value in self.values.items()]

    def to_dict(self) -> Dict:
        return {"hour": self.hour, "values": dict(self.values), "labels": self.labels}


def city_label(name: str, value: Optional[float]) -> str:
    if value is None:
        return f"{name}: N/A"
    return f"{name}: {value:.0f}°"


def parse_run_request(date_str: Optional[str], time_str: Optional[str]) -> datetime:
    """Creation time from a YYYY-MM-DD date and one of RUN_TIMES."""
    if not date_str or not time_str:
        raise MissingConfigError("Date or time missing.")
    if time_str not in RUN_TIMES:
        raise MissingConfigError(f"Invalid run time '{time_str}'. Use one of {', '.join(RUN_TIMES)}.")
    try:
        return parse_creation_time(date_str.strip() + time_str)
    except ValueError:
        raise MissingConfigError("Invalid date. Use YYYY-MM-DD.")


def slider_for_hours(hours: Sequence[int]) -> HourSlider:
    """
    Slider spanning the available hours.

    The step is the spacing of the first two hours (1 when there is only one,
    or the spacing is not positive). No hours gives a 0..0 slider.
    """
    if not hours:
        return HourSlider(min=0, max=0, step=1, value=0)
    step = 1
    if len(hours) > 1 and hours[1] - hours[0] > 0:
        step = hours[1] - hours[0]
    return HourSlider(min=hours[0], max=hours[-1], step=step, value=hours[0])


def _safe_region_mean(source: ForecastSource, creation_time: datetime, hour: int) -> Optional[float]:
    try:
        return source.fetch_region_mean(creation_time, hour)
    except FetchTransientError as e:
        logger.warning(f"Region mean failed for F{hour:03d}: {e}")
        return None


def _safe_region_stats(source: ForecastSource, creation_time: datetime, hour: int) -> Optional[Dict[str, float]]:
    try:
        return source.region_stats(creation_time, hour)
    except FetchTransientError as e:
        logger.warning(f"Region stats failed for F{hour:03d}: {e}")
        return None


def load_forecast_run(
    source: ForecastSource,
    date_str: Optional[str],
    time_str: Optional[str] = DEFAULT_RUN_TIME,
    with_chart: bool = True,
    max_workers: int = 8,
) -> ForecastRunView:
    """
    Look up a forecast run and build its dashboard state.

    Args:
        source: Forecast source
        date_str: Creation date, YYYY-MM-DD
        time_str: Run time, one of RUN_TIMES
        with_chart: Fetch the region mean for every forecast hour
        max_workers: Worker pool size for chart fetches

    Returns:
        ForecastRunView; ``found == 0`` when no run matches exactly
    """
    creation_time = parse_run_request(date_str, time_str)
    creation_string = format_creation_time(creation_time)

    hours = sorted(source.available_forecast_hours(creation_time))
    status = f"Found {len(hours)} images for {creation_string}"
    logger.info(status)

    if not hours:
        logger.info(f"No forecast images found for {creation_string}")
        return ForecastRunView(creation_time, (), slider_for_hours([]), (), status)

    chart = ()
    if with_chart:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            means = list(executor.map(lambda h: _safe_region_mean(source, creation_time, h), hours))
        chart = tuple(zip(hours, means))

    diagnostics = _safe_region_stats(source, creation_time, hours[0])
    if diagnostics:
        logger.info(f"F{hours[0]:03d} region stats: {diagnostics}")

    return ForecastRunView(creation_time, tuple(hours), slider_for_hours(hours), chart, status, diagnostics)


def hour_snapshot(
    source: ForecastSource,
    view: ForecastRunView,
    hour: int,
    cities: Sequence[City] = CITIES,
) -> HourSnapshot:
    """City values for one hour of a loaded run; all N/A when the run has no such hour."""
    if hour not in view.forecast_hours:
        return HourSnapshot(hour, {c.name: None for c in cities})
    try:
        values = source.fetch_point_values(view.creation_time, hour, list(cities))
    except FetchTransientError as e:
        logger.warning(f"City values failed for F{hour:03d}: {e}")
        values = {c.name: None for c in cities}
    return HourSnapshot(hour, values)


def handle_chart_click(source: ForecastSource, view: ForecastRunView, x, cities: Sequence[City] = CITIES):
    """Snapshot for the hour under a chart click, or None for a click off the data."""
    hour = view.slider.clamp(x)
    if hour is None:
        return None
    return hour_snapshot(source, view, hour, cities)
