"""
ECMWF IFS forecasts through Google Earth Engine.

Reads the near-real-time IFS collection (ECMWF/NRT_FORECAST/IFS/OPER) and
reduces it server-side; only scalars come back to the client.

Install: pip install earthengine-api, then run 'earthengine authenticate'.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import ee

from base import City, ForecastSource, format_creation_time
from errors import FetchTransientError
from rate_limiter import earth_engine_rate_limiter

logger = logging.getLogger(__name__)

IFS_COLLECTION = "ECMWF/NRT_FORECAST/IFS/OPER"
IFS_BAND = "temperature_2m_sfc"
GEOBOUNDARIES_ADM0 = "WM/geoLab/geoBoundaries/600/ADM0"

MAX_PIXELS = 1e9

_ee_initialized = False


def init_ee(project: Optional[str] = None) -> None:
    """
    Initialize the Earth Engine API exactly once.
    Uses the given cloud project, or the default credentials' project.
    """
    global _ee_initialized
    if _ee_initialized:
        return

    try:
        if project:
            ee.Initialize(project=project)
            logger.info("Earth Engine initialized with project: %s", project)
        else:
            ee.Initialize()
            logger.info("Earth Engine initialized (default project)")
        _ee_initialized = True
    except Exception as exc:
        logger.error("Failed to initialize Earth Engine: %s", exc)
        raise FetchTransientError(
            "Could not initialize Earth Engine. "
            "Have you run 'earthengine authenticate'?"
        ) from exc


def country_geometry(name: str) -> ee.Geometry:
    """Country outline from geoBoundaries ADM0."""
    return (ee.FeatureCollection(GEOBOUNDARIES_ADM0)
            .filter(ee.Filter.eq("shapeName", name))
            .first()
            .geometry())


def creation_millis(creation_time: datetime) -> int:
    """Epoch milliseconds, as stored in the collection's creation_time property."""
    if creation_time.tzinfo is None:
        creation_time = creation_time.replace(tzinfo=timezone.utc)
    return int(creation_time.timestamp() * 1000)


@earth_engine_rate_limiter
def get_info(obj):
    """Evaluate a server-side object, mapping service failures to FetchTransientError."""
    try:
        return obj.getInfo()
    except ee.EEException as e:
        raise FetchTransientError(f"Earth Engine request failed: {e}") from e
    except OSError as e:
        raise FetchTransientError(f"Earth Engine unreachable: {e}") from e


class EarthEngineIFSSource(ForecastSource):
    """IFS 2 m temperature region means and point values via Earth Engine."""

    def __init__(
        self,
        region: Optional[Sequence[Tuple[float, float]]] = None,
        country: Optional[str] = None,
        band: str = IFS_BAND,
        scale_m: int = 25000,
        point_scale_m: int = 10000,
        project: Optional[str] = None,
    ):
        super().__init__("Earth Engine IFS")
        if region is None and country is None:
            raise ValueError("Either a region polygon or a country name is required")
        self.region = region
        self.country = country
        self.band = band
        self.scale_m = scale_m
        self.point_scale_m = point_scale_m
        self.project = project
        self._geometry = None

    @property
    def geometry(self) -> ee.Geometry:
        if self._geometry is None:
            init_ee(self.project)
            if self.country:
                self._geometry = country_geometry(self.country)
            else:
                self._geometry = ee.Geometry.Polygon([[list(p) for p in self.region]])
        return self._geometry

    def _run_collection(self, creation_time: datetime) -> ee.ImageCollection:
        init_ee(self.project)
        return (ee.ImageCollection(IFS_COLLECTION)
                .filter(ee.Filter.eq("creation_time", creation_millis(creation_time)))
                .select(self.band))

    def _image(self, creation_time: datetime, forecast_hour: int) -> ee.ImageCollection:
        return (self._run_collection(creation_time)
                .filter(ee.Filter.eq("forecast_hours", forecast_hour)))

    def fetch_region_mean(self, creation_time: datetime, forecast_hour: int) -> Optional[float]:
        matches = self._image(creation_time, forecast_hour)
        mean = ee.Image(matches.first()).reduceRegion(
            reducer=ee.Reducer.mean(),
            geometry=self.geometry,
            scale=self.scale_m,
            maxPixels=MAX_PIXELS,
        ).get(self.band)
        value = get_info(ee.Algorithms.If(matches.size().gt(0), mean, None))

        if value is None:
            logger.debug(f"No IFS record for {format_creation_time(creation_time)} F{forecast_hour:03d}")
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            raise FetchTransientError(f"Malformed region mean from Earth Engine: {value!r}")

    def available_forecast_hours(self, creation_time: datetime) -> List[int]:
        hours = get_info(self._run_collection(creation_time).aggregate_array("forecast_hours"))
        if not isinstance(hours, list):
            raise FetchTransientError(f"Malformed forecast hour list from Earth Engine: {hours!r}")
        return sorted({int(h) for h in hours})

    def region_stats(self, creation_time: datetime, forecast_hour: int) -> Optional[Dict[str, float]]:
        """Min, max, mean and pixel count over the region at the point scale."""
        matches = self._image(creation_time, forecast_hour)
        reducer = (ee.Reducer.minMax()
                   .combine(ee.Reducer.mean(), "", True)
                   .combine(ee.Reducer.count(), "", True))
        stats = ee.Image(matches.first()).select(self.band).reduceRegion(
            reducer=reducer,
            geometry=self.geometry,
            scale=self.point_scale_m,
            maxPixels=MAX_PIXELS,
        )
        info = get_info(ee.Algorithms.If(matches.size().gt(0), stats, None))
        if info is None:
            return None
        try:
            result = {key: info[f"{self.band}_{key}"] for key in ("min", "max", "mean", "count")}
        except (KeyError, TypeError) as e:
            raise FetchTransientError(f"Malformed region statistics from Earth Engine: {e}")
        if result["mean"] is None:
            return None
        return {k: (int(v) if k == "count" else float(v)) for k, v in result.items()}

    def fetch_point_values(
        self, creation_time: datetime, forecast_hour: int, cities: List[City]
    ) -> Dict[str, Optional[float]]:
        values: Dict[str, Optional[float]] = {c.name: None for c in cities}
        if not cities:
            return values

        matches = self._image(creation_time, forecast_hour)
        points = ee.FeatureCollection([
            ee.Feature(ee.Geometry.Point(c.lon, c.lat), {"name": c.name}) for c in cities
        ])
        reduced = ee.Image(matches.first()).reduceRegions(
            collection=points,
            reducer=ee.Reducer.first().setOutputs([self.band]),
            scale=self.point_scale_m,
        )
        info = get_info(ee.Algorithms.If(matches.size().gt(0), reduced, None))
        if info is None:
            return values

        try:
            for feature in info["features"]:
                props = feature.get("properties", {})
                value = props.get(self.band)
                values[props["name"]] = float(value) if value is not None else None
        except (KeyError, TypeError, ValueError) as e:
            raise FetchTransientError(f"Malformed point values from Earth Engine: {e}")
        return values
