"""
Built-up surface statistics from the JRC GHSL built-up surface layers.

Computes the mean built-up surface of a square cell (or a fixed rectangle) for
two epochs, expressed as percent of area, and optionally exports the clipped
percentage rasters to Google Drive.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import ee

from earth_engine import MAX_PIXELS, get_info, init_ee
from errors import FetchTransientError, MissingConfigError

logger = logging.getLogger(__name__)

GHSL_BUILT_S = "JRC/GHSL/P2023A/GHS_BUILT_S/{year}"
BUILT_BAND = "built_surface"
DEFAULT_EPOCHS = (1975, 2020)
EXPORT_SCALE_M = 30

# Den Haag, [west, south, east, north]
DEN_HAAG = [4.12, 51.94, 4.470, 52.123]


@dataclass(frozen=True)
class Cell:
    """Either a centre point with a side length, or a named rectangle."""
    name: str
    lat: Optional[float] = None
    lon: Optional[float] = None
    size_km: Optional[float] = None
    rectangle: Optional[Tuple[float, float, float, float]] = None

    @property
    def export_prefix(self) -> str:
        return self.name.replace(" ", "_")

    def geometry(self) -> ee.Geometry:
        if self.rectangle is not None:
            return ee.Geometry.Rectangle(list(self.rectangle))
        half_side_m = (self.size_km / 2) * 1000
        return ee.Geometry.Point([self.lon, self.lat]).buffer(half_side_m).bounds()

    def export_description(self, year: int) -> str:
        if self.rectangle is not None:
            return f"Built_up_surface_{self.export_prefix}_{year}"
        return f"Built_up_surface_{year}_{self.size_km:g}km_cell_percent"


@dataclass(frozen=True)
class EpochStats:
    year: int
    mean: Optional[float]
    percent: Optional[float]


@dataclass(frozen=True)
class BuiltUpComparison:
    cell: Cell
    epochs: Tuple[EpochStats, ...]

    @property
    def change(self) -> Optional[float]:
        """Percentage-point change from the first to the last epoch."""
        first, last = self.epochs[0].percent, self.epochs[-1].percent
        if first is None or last is None:
            return None
        return last - first

    def to_dict(self) -> Dict:
        return {
            "cell": {
                "name": self.cell.name,
                "lat": self.cell.lat,
                "lon": self.cell.lon,
                "size_km": self.cell.size_km,
                "rectangle": list(self.cell.rectangle) if self.cell.rectangle else None,
            },
            "epochs": [{"year": e.year, "mean": e.mean, "percent": e.percent} for e in self.epochs],
            "change": self.change,
        }


def point_cell(lat: float, lon: float, size_km: float) -> Cell:
    if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
        raise MissingConfigError(f"Invalid location ({lat}, {lon})")
    if size_km <= 0:
        raise MissingConfigError("Cell size must be positive")
    return Cell(name=f"{size_km:g} km cell", lat=lat, lon=lon, size_km=size_km)


def rectangle_cell(name: str, rectangle: Sequence[float]) -> Cell:
    if len(rectangle) != 4:
        raise MissingConfigError("Rectangle must be [west, south, east, north]")
    west, south, east, north = rectangle
    if west >= east or south >= north:
        raise MissingConfigError(f"Degenerate rectangle {list(rectangle)}")
    return Cell(name=name, rectangle=tuple(float(v) for v in rectangle))


def built_up_percentage(mean_surface: Optional[float]) -> Optional[float]:
    """Mean built-up m² per hectare-sized pixel to percent of area."""
    if mean_surface is None:
        return None
    return mean_surface / 10000 * 100


def built_surface_image(year: int) -> ee.Image:
    return ee.Image(GHSL_BUILT_S.format(year=year)).select(BUILT_BAND)


def mean_built_surface(year: int, region: ee.Geometry) -> Optional[float]:
    mean = built_surface_image(year).reduceRegion(
        reducer=ee.Reducer.mean(),
        geometry=region,
        scale=EXPORT_SCALE_M,
        maxPixels=MAX_PIXELS,
    ).get(BUILT_BAND)
    value = get_info(mean)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise FetchTransientError(f"Malformed built-up mean from Earth Engine: {value!r}")


def compare_built_up(
    cell: Cell,
    epochs: Sequence[int] = DEFAULT_EPOCHS,
    project: Optional[str] = None,
) -> BuiltUpComparison:
    """Mean built-up surface and percentage for every epoch over the cell."""
    if len(epochs) < 1:
        raise MissingConfigError("At least one epoch is required")
    init_ee(project)
    region = cell.geometry()

    stats = []
    for year in epochs:
        mean = mean_built_surface(year, region)
        percent = built_up_percentage(mean)
        if percent is None:
            logger.info(f"Built-up surface {year} for {cell.name}: no data")
        else:
            logger.info(f"Built-up surface percentage in {year} for the {cell.name}: {percent:.2f}")
        stats.append(EpochStats(year, mean, percent))
    return BuiltUpComparison(cell, tuple(stats))


def export_built_up(
    cell: Cell,
    epochs: Sequence[int] = DEFAULT_EPOCHS,
    start: bool = False,
    project: Optional[str] = None,
) -> List[ee.batch.Task]:
    """
    Create one Drive export per epoch of the clipped built-up raster.

    Point cells export the percentage raster, named rectangles the raw
    built-up surface. Tasks are only started when ``start`` is set.
    """
    init_ee(project)
    region = cell.geometry()
    tasks = []
    for year in epochs:
        image = built_surface_image(year).clip(region)
        if cell.rectangle is None:
            image = image.divide(10000).multiply(100)
        task = ee.batch.Export.image.toDrive(
            image=image,
            description=cell.export_description(year),
            scale=EXPORT_SCALE_M,
            region=region,
            maxPixels=MAX_PIXELS,
        )
        if start:
            task.start()
            logger.info(f"Started export {cell.export_description(year)}")
        tasks.append(task)
    return tasks
