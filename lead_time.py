"""
Lead-time forecast comparison.

For every validity date in a range, look up the forecast for that moment as
issued at several lead times (validity - lead hours), then compare two of the
lead times: per-date differences, their mean and population standard
deviation, and a chart-ready series with explicit gaps.

Usage
-----
    from lead_time import LeadTimeSpec, run_comparison

    result = run_comparison(source, config, first="48h", second="24h")
    result.stats.mean, result.stats.std
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from base import ForecastSource, format_creation_time
from errors import FetchTransientError, InvalidRangeError, MissingConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeadTimeSpec:
    name: str
    hours: int


@dataclass(frozen=True)
class ForecastSample:
    timestamp: datetime
    values: Mapping[str, Optional[float]]

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))


@dataclass(frozen=True)
class DifferenceRecord:
    timestamp: datetime
    difference: float


@dataclass(frozen=True)
class StatsSummary:
    count: int
    mean: Optional[float]
    std: Optional[float]

    @property
    def available(self) -> bool:
        return self.count > 0

    def to_dict(self) -> Dict:
        return {"count": self.count, "mean": self.mean, "std": self.std}


@dataclass(frozen=True)
class FetchCounts:
    requested: int = 0
    present: int = 0
    absent: int = 0
    failed: int = 0

    def to_dict(self) -> Dict:
        return {
            "requested": self.requested,
            "present": self.present,
            "absent": self.absent,
            "failed": self.failed,
        }


@dataclass(frozen=True)
class ComparisonResult:
    first: str
    second: str
    lead_specs: Tuple[LeadTimeSpec, ...]
    samples: Tuple[ForecastSample, ...]
    differences: Tuple[DifferenceRecord, ...]
    stats: StatsSummary
    series: Tuple[tuple, ...]
    difference_series: Tuple[tuple, ...]
    counts: FetchCounts = field(default_factory=FetchCounts)

    def to_dict(self) -> Dict:
        names = [s.name for s in self.lead_specs]
        return {
            "first": self.first,
            "second": self.second,
            "lead_hours": {s.name: s.hours for s in self.lead_specs},
            "samples": [
                {"time": s.timestamp.isoformat(), **{n: s.values.get(n) for n in names}}
                for s in self.samples
            ],
            "differences": [
                {"time": d.timestamp.isoformat(), "difference": d.difference}
                for d in self.differences
            ],
            "stats": self.stats.to_dict(),
            "series": {
                "columns": ["time"] + names,
                "rows": [[row[0].isoformat()] + list(row[1:]) for row in self.series],
            },
            "counts": self.counts.to_dict(),
        }


# ---------------------------------------------------------------------------
# Dates and creation times
# ---------------------------------------------------------------------------

def enumerate_validity_dates(start: date, end: date) -> List[date]:
    """Every calendar day from start to end, inclusive, ascending."""
    if end < start:
        raise InvalidRangeError(f"End date {end} precedes start date {start}")
    n_days = (end - start).days + 1
    return [start + timedelta(days=i) for i in range(n_days)]


def validity_timestamp(validity_date: date, run_hour: int = 12) -> datetime:
    return datetime(validity_date.year, validity_date.month, validity_date.day,
                    run_hour, tzinfo=timezone.utc)


def creation_time_for(validity_time: datetime, lead_hours: int) -> datetime:
    """Creation time of the run that is valid at validity_time after lead_hours."""
    return validity_time - timedelta(hours=lead_hours)


# ---------------------------------------------------------------------------
# Sample building
# ---------------------------------------------------------------------------

def _fetch_one(source: ForecastSource, creation_time: datetime, forecast_hour: int) -> Tuple[str, Optional[float]]:
    """Return (status, value); status is "present", "absent" or "failed"."""
    try:
        value = source.fetch_region_mean(creation_time, forecast_hour)
    except FetchTransientError as e:
        logger.warning(f"Fetch failed for {format_creation_time(creation_time)} F{forecast_hour:03d}: {e}")
        return "failed", None
    if value is None:
        return "absent", None
    return "present", float(value)


def build_samples(
    source: ForecastSource,
    validity_dates: Sequence[date],
    lead_specs: Sequence[LeadTimeSpec],
    run_hour: int = 12,
    max_workers: int = 8,
) -> Tuple[List[ForecastSample], FetchCounts]:
    """
    Fetch one value per (validity date, lead time) and assemble samples.

    The forecast valid at ``date @ run_hour`` from a run issued ``hours``
    earlier is the record with creation time ``validity - hours`` and
    forecast hour ``hours``. Fetches are independent and run on a bounded
    thread pool; results are joined by key, so completion order is irrelevant.

    Args:
        source: Forecast source honouring the exact-match contract
        validity_dates: Dates to sample, ascending
        lead_specs: Lead times to fetch for every date
        run_hour: UTC hour of the validity timestamp
        max_workers: Worker pool size

    Returns:
        Tuple of (samples ordered by validity time, fetch counters)
    """
    keys = []
    for d in validity_dates:
        valid = validity_timestamp(d, run_hour)
        for spec in lead_specs:
            keys.append((d, spec.name, creation_time_for(valid, spec.hours), spec.hours))

    results: Dict[Tuple[date, str], Optional[float]] = {}
    status_counts = {"present": 0, "absent": 0, "failed": 0}

    if keys:
        logger.info(f"Fetching {len(keys)} values from {source.source_name} "
                    f"({len(validity_dates)} dates x {len(lead_specs)} lead times)")
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(_fetch_one, source, creation, hours): (d, name)
                for d, name, creation, hours in keys
            }
            for future in as_completed(futures):
                status, value = future.result()
                results[futures[future]] = value
                status_counts[status] += 1

    samples = []
    for d in sorted(validity_dates):
        values = {spec.name: results.get((d, spec.name)) for spec in lead_specs}
        samples.append(ForecastSample(validity_timestamp(d, run_hour), values))

    counts = FetchCounts(requested=len(keys), **status_counts)
    logger.info(f"Fetched {counts.present} values, {counts.absent} absent, {counts.failed} failed")
    return samples, counts


# ---------------------------------------------------------------------------
# Differences and statistics
# ---------------------------------------------------------------------------

def compute_differences(samples: Sequence[ForecastSample], first: str, second: str) -> List[DifferenceRecord]:
    """``first - second`` for every sample that has both values; others are skipped."""
    for name in (first, second):
        if samples and not any(name in s.values for s in samples):
            raise MissingConfigError(f"Lead time '{name}' not present in samples")

    records = []
    for sample in samples:
        a = sample.values.get(first)
        b = sample.values.get(second)
        if a is None or b is None:
            continue
        records.append(DifferenceRecord(sample.timestamp, float(a - b)))
    return records


def summarize(differences: Sequence[DifferenceRecord]) -> StatsSummary:
    """Mean and population standard deviation (divides by N) of the differences."""
    if not differences:
        return StatsSummary(count=0, mean=None, std=None)
    values = np.array([d.difference for d in differences], dtype=float)
    return StatsSummary(
        count=len(values),
        mean=float(values.mean()),
        std=float(values.std(ddof=0)),
    )


# ---------------------------------------------------------------------------
# Chartable series
# ---------------------------------------------------------------------------

def build_series(samples: Sequence[ForecastSample], lead_names: Sequence[str]) -> List[tuple]:
    """(timestamp, value per lead...) rows, ascending; missing values stay None."""
    ordered = sorted(samples, key=lambda s: s.timestamp)
    return [(s.timestamp,) + tuple(s.values.get(n) for n in lead_names) for s in ordered]


def build_difference_series(differences: Sequence[DifferenceRecord]) -> List[tuple]:
    ordered = sorted(differences, key=lambda d: d.timestamp)
    return [(d.timestamp, d.difference) for d in ordered]


def series_to_frame(series: Sequence[tuple], columns: Sequence[str]) -> pd.DataFrame:
    """DataFrame indexed by time; gaps become NaN so plots break the line there."""
    df = pd.DataFrame(
        [row[1:] for row in series],
        index=pd.DatetimeIndex([row[0] for row in series], tz="UTC", name="time"),
        columns=list(columns),
        dtype=float,
    )
    return df


# ---------------------------------------------------------------------------
# Whole run
# ---------------------------------------------------------------------------

def default_pair(lead_specs: Sequence[LeadTimeSpec]) -> Tuple[str, str]:
    """(longest lead, shortest lead) names."""
    if len(lead_specs) < 2:
        raise MissingConfigError("At least two lead times are needed for a comparison")
    ordered = sorted(lead_specs, key=lambda s: s.hours)
    return ordered[-1].name, ordered[0].name


def run_comparison(
    source: ForecastSource,
    config,
    first: Optional[str] = None,
    second: Optional[str] = None,
) -> ComparisonResult:
    """
    Run the full comparison for a RunConfig.

    The date range and lead names are validated before anything is fetched.
    """
    if config.start_date is None or config.end_date is None:
        raise MissingConfigError("Start and end dates are required for a comparison")
    dates = enumerate_validity_dates(config.start_date, config.end_date)

    if first is None and second is None:
        first, second = default_pair(config.lead_specs)
    elif first is None or second is None:
        raise MissingConfigError("Both lead times of the comparison pair are required")
    config.lead_spec(first)
    config.lead_spec(second)

    samples, counts = build_samples(
        source, dates, config.lead_specs,
        run_hour=config.run_hour, max_workers=config.max_workers,
    )
    differences = compute_differences(samples, first, second)
    stats = summarize(differences)
    names = [s.name for s in config.lead_specs]

    if stats.available:
        logger.info(f"{first} - {second}: n={stats.count} mean={stats.mean:.3f} std={stats.std:.3f}")
    else:
        logger.info(f"{first} - {second}: no dates with both values")

    return ComparisonResult(
        first=first,
        second=second,
        lead_specs=tuple(config.lead_specs),
        samples=tuple(samples),
        differences=tuple(differences),
        stats=stats,
        series=tuple(build_series(samples, names)),
        difference_series=tuple(build_difference_series(differences)),
        counts=counts,
    )
