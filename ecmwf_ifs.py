"""
ECMWF IFS (Integrated Forecasting System) forecasts from ECMWF Open Data.

Downloads single-field GRIB2 files (no authentication required) and reduces
them locally with xarray. Open Data only keeps the last few days of runs, so
this source suits recent date ranges; use the Earth Engine source for longer
archives.

Install: pip install ecmwf-opendata cfgrib
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import logging

import numpy as np
import requests
import xarray as xr

from base import City, ForecastSource, format_creation_time, polygon_bounds
from errors import FetchTransientError
from rate_limiter import ecmwf_rate_limiter

CACHE_DIR = Path.home() / ".cache" / "forecast_leadtime"

logger = logging.getLogger(__name__)

# 2 m temperature
IFS_PARAM = "2t"

# Open Data steps: 00Z/12Z runs to 240h (3-hourly to 144h, then 6-hourly), 06Z/18Z runs to 90h
IFS_LONG_RUN_HOURS = list(range(0, 145, 3)) + list(range(150, 241, 6))
IFS_SHORT_RUN_HOURS = list(range(0, 91, 3))
IFS_INIT_HOURS = [0, 6, 12, 18]


def run_forecast_hours(creation_time: datetime) -> List[int]:
    """Forecast hours published for a run, empty if no run exists at that time."""
    if creation_time.minute or creation_time.second or creation_time.hour not in IFS_INIT_HOURS:
        return []
    if creation_time.hour in (0, 12):
        return IFS_LONG_RUN_HOURS
    return IFS_SHORT_RUN_HOURS


def subset_region(da: xr.DataArray, bounds: Tuple[float, float, float, float]) -> xr.DataArray:
    """Subset data to a (west, east, south, north) box."""
    west, east, south, north = bounds

    lat_name = 'latitude' if 'latitude' in da.coords else 'lat'
    lon_name = 'longitude' if 'longitude' in da.coords else 'lon'

    lons = da[lon_name].values
    if np.any(lons < 0):
        da = da.sel({lon_name: slice(west, east)})
    else:
        west_360 = west % 360 if west < 0 else west
        east_360 = east % 360 if east < 0 else east
        if west_360 > east_360:
            da_west = da.sel({lon_name: slice(west_360, 360)})
            da_east = da.sel({lon_name: slice(0, east_360)})
            da = xr.concat([da_west, da_east], dim=lon_name)
        else:
            da = da.sel({lon_name: slice(west_360, east_360)})

    lat_vals = da[lat_name].values
    if len(lat_vals) > 1 and lat_vals[0] > lat_vals[-1]:
        da = da.sel({lat_name: slice(north, south)})
    else:
        da = da.sel({lat_name: slice(south, north)})

    return da


def area_mean(da: xr.DataArray) -> Optional[float]:
    """Mean over all finite grid points, None when there are none."""
    values = np.asarray(da.values, dtype=float)
    finite = np.isfinite(values)
    if not finite.any():
        return None
    return float(values[finite].mean())


def kelvin_to_celsius(da: xr.DataArray) -> xr.DataArray:
    units = da.attrs.get('units', da.attrs.get('GRIB_units', ''))
    if units == "K":
        da = da - 273.15
        da.attrs['units'] = 'C'
    return da


class IFSOpenDataSource(ForecastSource):
    """ECMWF IFS 2 m temperature (deg C) via ecmwf-opendata."""

    def __init__(self, region: Sequence[Tuple[float, float]], download_dir: Optional[Path] = None):
        super().__init__("ECMWF Open Data IFS")
        self.bounds = polygon_bounds(list(region))
        self._client = None
        self._download_dir = Path(download_dir) if download_dir else CACHE_DIR / "ifs_downloads"
        self._download_dir.mkdir(parents=True, exist_ok=True)

    def _get_client(self):
        """Get or create ECMWF Open Data client for IFS."""
        if self._client is None:
            from ecmwf.opendata import Client
            self._client = Client(source="aws", model="ifs")
        return self._client

    @ecmwf_rate_limiter
    def _download_grib(self, creation_time: datetime, forecast_hour: int) -> Optional[Path]:
        """Download one 2t GRIB field; None when the run/step is not published."""
        if creation_time.tzinfo is not None:
            creation_time = creation_time.astimezone(timezone.utc).replace(tzinfo=None)

        filename = f"ifs_{creation_time.strftime('%Y%m%d%H')}_{forecast_hour:03d}_{IFS_PARAM}.grib2"
        filepath = self._download_dir / filename

        if filepath.exists():
            logger.info(f"Using cached GRIB: {filename}")
            return filepath

        logger.info(f"Downloading IFS {IFS_PARAM} for F{forecast_hour:03d} from {creation_time.strftime('%Y%m%d %HZ')}")
        try:
            self._get_client().retrieve(
                date=creation_time.strftime('%Y%m%d'),
                time=creation_time.hour,
                step=forecast_hour,
                param=IFS_PARAM,
                type="fc",
                target=str(filepath.absolute()),
            )
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                return None
            raise FetchTransientError(f"ECMWF Open Data request failed: {e}") from e
        except (requests.RequestException, OSError) as e:
            raise FetchTransientError(f"ECMWF Open Data unreachable: {e}") from e

        if not filepath.exists():
            raise FetchTransientError(f"Download completed but file not found: {filepath}")
        logger.info(f"Downloaded {filepath.name} ({filepath.stat().st_size} bytes)")
        return filepath

    def _load_field(self, creation_time: datetime, forecast_hour: int) -> Optional[xr.DataArray]:
        if forecast_hour not in run_forecast_hours(creation_time):
            logger.debug(f"No IFS run/step for {format_creation_time(creation_time)} F{forecast_hour:03d}")
            return None

        grib_path = self._download_grib(creation_time, forecast_hour)
        if grib_path is None:
            return None

        try:
            with xr.open_dataset(
                str(grib_path),
                engine="cfgrib",
                backend_kwargs={"indexpath": ""},
            ) as ds:
                data_vars = list(ds.data_vars)
                if not data_vars:
                    raise FetchTransientError(f"No data found in GRIB file {grib_path.name}")
                da = ds[data_vars[0]].load()
        except (OSError, ValueError, EOFError) as e:
            grib_path.unlink(missing_ok=True)
            raise FetchTransientError(f"Unreadable GRIB file {grib_path.name}: {e}") from e

        return kelvin_to_celsius(da)

    def fetch_region_mean(self, creation_time: datetime, forecast_hour: int) -> Optional[float]:
        da = self._load_field(creation_time, forecast_hour)
        if da is None:
            return None
        return area_mean(subset_region(da, self.bounds))

    def available_forecast_hours(self, creation_time: datetime) -> List[int]:
        """Published steps of the run, empty when the run is off-cadence or not on Open Data."""
        hours = run_forecast_hours(creation_time)
        if not hours:
            return []
        # The analysis step exists for every published run
        if self._download_grib(creation_time, hours[0]) is None:
            logger.info(f"No IFS run on Open Data for {format_creation_time(creation_time)}")
            return []
        return list(hours)

    def region_stats(self, creation_time: datetime, forecast_hour: int) -> Optional[Dict[str, float]]:
        da = self._load_field(creation_time, forecast_hour)
        if da is None:
            return None
        values = np.asarray(subset_region(da, self.bounds).values, dtype=float)
        finite = values[np.isfinite(values)]
        if finite.size == 0:
            return None
        return {
            "min": float(finite.min()),
            "max": float(finite.max()),
            "mean": float(finite.mean()),
            "count": int(finite.size),
        }

    def fetch_point_values(
        self, creation_time: datetime, forecast_hour: int, cities: List[City]
    ) -> Dict[str, Optional[float]]:
        values: Dict[str, Optional[float]] = {c.name: None for c in cities}
        da = self._load_field(creation_time, forecast_hour) if cities else None
        if da is None:
            return values

        lat_name = 'latitude' if 'latitude' in da.coords else 'lat'
        lon_name = 'longitude' if 'longitude' in da.coords else 'lon'
        lon_360 = not np.any(da[lon_name].values < 0)

        for city in cities:
            lon = city.lon % 360 if lon_360 else city.lon
            value = float(da.sel({lat_name: city.lat, lon_name: lon}, method="nearest").values)
            values[city.name] = value if np.isfinite(value) else None
        return values
