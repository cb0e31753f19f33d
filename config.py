"""
Run configuration for the lead-time comparison tools.

Values are resolved in this order (later wins):
    module defaults -> optional JSON file -> environment (.env via python-dotenv) -> explicit overrides

Environment variables:
    LEADTIME_START_DATE, LEADTIME_END_DATE   YYYY-MM-DD, required
    LEADTIME_HOURS                           comma list of lead hours, e.g. "24,48,312"
    LEADTIME_RUN_HOUR                        0, 6, 12 or 18 (UTC)
    LEADTIME_REGION                          JSON list of [lon, lat] pairs
    LEADTIME_COUNTRY                         geoBoundaries ADM0 name (Earth Engine only)
    LEADTIME_SCALE_M                         reduction scale in metres
    LEADTIME_SOURCE                          "earthengine" or "opendata"
    LEADTIME_MAX_WORKERS                     fetch worker pool size
    EE_PROJECT_ID                            Earth Engine cloud project
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

from errors import MissingConfigError
from lead_time import LeadTimeSpec

logger = logging.getLogger(__name__)

RUN_HOURS = [0, 6, 12, 18]
SOURCES = ["earthengine", "opendata"]

# Rough outline of Germany (lon, lat), used when no country lookup is available
GERMANY_POLYGON = [
    (5.87, 47.27),
    (15.04, 47.27),
    (15.04, 55.06),
    (5.87, 55.06),
    (5.87, 47.27),
]

DEFAULTS = {
    "start_date": None,
    "end_date": None,
    "lead_hours": [24, 48],
    "run_hour": 12,
    "region": GERMANY_POLYGON,
    "country": "Germany",
    "scale_m": 25000,
    "source": "earthengine",
    "max_workers": 8,
    "ee_project": None,
}

ENV_VARS = {
    "start_date": "LEADTIME_START_DATE",
    "end_date": "LEADTIME_END_DATE",
    "lead_hours": "LEADTIME_HOURS",
    "run_hour": "LEADTIME_RUN_HOUR",
    "region": "LEADTIME_REGION",
    "country": "LEADTIME_COUNTRY",
    "scale_m": "LEADTIME_SCALE_M",
    "source": "LEADTIME_SOURCE",
    "max_workers": "LEADTIME_MAX_WORKERS",
    "ee_project": "EE_PROJECT_ID",
}


@dataclass(frozen=True)
class RunConfig:
    start_date: Optional[date]
    end_date: Optional[date]
    lead_specs: Tuple[LeadTimeSpec, ...]
    run_hour: int = 12
    region: Tuple[Tuple[float, float], ...] = field(default_factory=lambda: tuple(GERMANY_POLYGON))
    country: Optional[str] = "Germany"
    scale_m: int = 25000
    source: str = "earthengine"
    max_workers: int = 8
    ee_project: Optional[str] = None

    def lead_spec(self, name: str) -> LeadTimeSpec:
        for spec in self.lead_specs:
            if spec.name == name:
                return spec
        raise MissingConfigError(
            f"Unknown lead time '{name}'. Configured: {', '.join(s.name for s in self.lead_specs)}"
        )


def parse_date(value, key: str = "date") -> date:
    """Parse a YYYY-MM-DD string (or pass a date through)."""
    if value is None or value == "":
        raise MissingConfigError(f"Missing required value: {key}")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
    except ValueError:
        raise MissingConfigError(f"Invalid {key} '{value}'. Use YYYY-MM-DD.")


def parse_lead_specs(value) -> Tuple[LeadTimeSpec, ...]:
    """
    Parse lead times from "24,48", [24, 48] or {"short": 24, "long": 48}.

    Unnamed hours are named "<hours>h".
    """
    if value is None or value == "" or value == [] or value == {}:
        raise MissingConfigError("Missing required value: lead_hours")

    if isinstance(value, dict):
        items = list(value.items())
    else:
        if isinstance(value, str):
            value = [v for v in value.split(",") if v.strip()]
        items = [(None, v) for v in value]

    specs = []
    for name, hours in items:
        try:
            hours = int(str(hours).strip().rstrip("h"))
        except ValueError:
            raise MissingConfigError(f"Invalid lead time '{hours}'")
        if hours < 0:
            raise MissingConfigError(f"Lead time must not be negative: {hours}")
        specs.append(LeadTimeSpec(name or f"{hours}h", hours))

    names = [s.name for s in specs]
    if len(set(names)) != len(names):
        raise MissingConfigError(f"Duplicate lead time names: {names}")
    return tuple(specs)


def _optional_date(value, key: str, required: bool) -> Optional[date]:
    if not required and value in (None, ""):
        return None
    return parse_date(value, key)


def _parse_int(value, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MissingConfigError(f"Invalid integer for {key}: {value!r}")


def _parse_region(value) -> Tuple[Tuple[float, float], ...]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise MissingConfigError(f"Invalid region JSON: {e}")
    try:
        ring = tuple((float(p[0]), float(p[1])) for p in value)
    except (TypeError, ValueError, IndexError):
        raise MissingConfigError("Region must be a list of [lon, lat] pairs")
    if len(ring) < 3:
        raise MissingConfigError("Region needs at least 3 vertices")
    return ring


def _read_config_file(path) -> Dict:
    path = Path(path)
    if not path.exists():
        raise MissingConfigError(f"Config file not found: {path}")
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise MissingConfigError(f"Invalid config file {path}: {e}")
    if not isinstance(data, dict):
        raise MissingConfigError(f"Config file {path} must contain a JSON object")
    return data


def _read_env() -> Dict:
    values = {}
    for key, env_var in ENV_VARS.items():
        raw = os.getenv(env_var)
        if raw not in (None, ""):
            values[key] = raw
    return values


def build_config(raw: Dict, require_dates: bool = True) -> RunConfig:
    """Validate a raw mapping of settings into a RunConfig.

    With require_dates=False the date range may be left out (dashboard and
    built-up tools only need the source settings).
    """
    merged = dict(DEFAULTS)
    merged.update({k: v for k, v in raw.items() if v is not None})
    # A custom polygon replaces the default country outline
    if raw.get("region") is not None and raw.get("country") is None:
        merged["country"] = None

    run_hour = _parse_int(merged["run_hour"], "run_hour")
    if run_hour not in RUN_HOURS:
        raise MissingConfigError(f"Invalid run hour {run_hour}. Must be one of {RUN_HOURS}")

    source = str(merged["source"]).lower()
    if source not in SOURCES:
        raise MissingConfigError(f"Invalid source '{source}'. Must be one of {SOURCES}")

    max_workers = _parse_int(merged["max_workers"], "max_workers")
    if max_workers < 1:
        raise MissingConfigError("max_workers must be at least 1")

    scale_m = _parse_int(merged["scale_m"], "scale_m")
    if scale_m <= 0:
        raise MissingConfigError("scale_m must be positive")

    return RunConfig(
        start_date=_optional_date(merged["start_date"], "start_date", require_dates),
        end_date=_optional_date(merged["end_date"], "end_date", require_dates),
        lead_specs=parse_lead_specs(merged["lead_hours"]),
        run_hour=run_hour,
        region=_parse_region(merged["region"]),
        country=merged["country"] or None,
        scale_m=scale_m,
        source=source,
        max_workers=max_workers,
        ee_project=merged["ee_project"],
    )


def load_config(
    path=None,
    overrides: Optional[Dict] = None,
    use_env: bool = True,
    require_dates: bool = True,
) -> RunConfig:
    """Resolve the run configuration from file, environment and overrides."""
    raw = {}
    if path:
        raw.update(_read_config_file(path))
        logger.info(f"Loaded config file {path}")
    if use_env:
        load_dotenv()
        raw.update(_read_env())
    if overrides:
        raw.update({k: v for k, v in overrides.items() if v is not None})
    return build_config(raw, require_dates=require_dates)


def config_to_dict(config: RunConfig) -> Dict:
    return {
        "start_date": config.start_date.isoformat() if config.start_date else None,
        "end_date": config.end_date.isoformat() if config.end_date else None,
        "lead_hours": {s.name: s.hours for s in config.lead_specs},
        "run_hour": config.run_hour,
        "region": [list(p) for p in config.region],
        "country": config.country,
        "scale_m": config.scale_m,
        "source": config.source,
        "max_workers": config.max_workers,
    }


def create_source(config: RunConfig):
    """Build the forecast source named by the config."""
    if config.source == "opendata":
        from ecmwf_ifs import IFSOpenDataSource
        return IFSOpenDataSource(region=config.region)

    from earth_engine import EarthEngineIFSSource
    return EarthEngineIFSSource(
        region=config.region,
        country=config.country,
        scale_m=config.scale_m,
        project=config.ee_project,
    )
