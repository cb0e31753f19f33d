import json
from datetime import date

import pytest

from config import GERMANY_POLYGON, build_config, config_to_dict, load_config, parse_lead_specs
from errors import MissingConfigError
from lead_time import LeadTimeSpec


@pytest.fixture
def clean_env(monkeypatch):
    for var in ["LEADTIME_START_DATE", "LEADTIME_END_DATE", "LEADTIME_HOURS", "LEADTIME_RUN_HOUR",
                "LEADTIME_REGION", "LEADTIME_COUNTRY", "LEADTIME_SCALE_M", "LEADTIME_SOURCE",
                "LEADTIME_MAX_WORKERS", "EE_PROJECT_ID"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("config.load_dotenv", lambda: None)


def test_defaults():
    config = build_config({"start_date": "2025-01-01", "end_date": "2025-01-31"})
    assert config.start_date == date(2025, 1, 1)
    assert config.end_date == date(2025, 1, 31)
    assert config.lead_specs == (LeadTimeSpec("24h", 24), LeadTimeSpec("48h", 48))
    assert config.run_hour == 12
    assert config.country == "Germany"
    assert config.region == tuple(GERMANY_POLYGON)
    assert config.source == "earthengine"


def test_missing_dates_raise():
    with pytest.raises(MissingConfigError):
        build_config({"start_date": "2025-01-01"})


def test_dates_optional_when_not_required():
    config = build_config({}, require_dates=False)
    assert config.start_date is None
    assert config_to_dict(config)["start_date"] is None


@pytest.mark.parametrize("raw", [
    {"start_date": "01/02/2025", "end_date": "2025-01-03"},
    {"start_date": "2025-01-01", "end_date": "2025-01-03", "run_hour": 3},
    {"start_date": "2025-01-01", "end_date": "2025-01-03", "source": "gfs"},
    {"start_date": "2025-01-01", "end_date": "2025-01-03", "max_workers": 0},
    {"start_date": "2025-01-01", "end_date": "2025-01-03", "lead_hours": "24,abc"},
    {"start_date": "2025-01-01", "end_date": "2025-01-03", "region": "[[1, 2]]"},
])
def test_malformed_values_raise(raw):
    with pytest.raises(MissingConfigError):
        build_config(raw)


def test_lead_spec_formats():
    assert parse_lead_specs("24, 48,312") == (
        LeadTimeSpec("24h", 24), LeadTimeSpec("48h", 48), LeadTimeSpec("312h", 312)
    )
    assert parse_lead_specs({"short": 24, "long": "312h"}) == (
        LeadTimeSpec("short", 24), LeadTimeSpec("long", 312)
    )
    with pytest.raises(MissingConfigError):
        parse_lead_specs("24,24")


def test_custom_region_drops_default_country():
    config = build_config({
        "start_date": "2025-01-01",
        "end_date": "2025-01-02",
        "region": [[4.0, 51.0], [5.0, 51.0], [5.0, 52.0], [4.0, 51.0]],
    })
    assert config.country is None
    assert config.region[0] == (4.0, 51.0)


def test_lead_spec_lookup():
    config = build_config({"start_date": "2025-01-01", "end_date": "2025-01-02"})
    assert config.lead_spec("48h").hours == 48
    with pytest.raises(MissingConfigError):
        config.lead_spec("72h")


def test_file_env_and_overrides(tmp_path, monkeypatch, clean_env):
    path = tmp_path / "run.json"
    path.write_text(json.dumps({
        "start_date": "2025-01-01",
        "end_date": "2025-01-10",
        "lead_hours": [24, 312],
        "run_hour": 0,
    }))
    monkeypatch.setenv("LEADTIME_RUN_HOUR", "18")
    monkeypatch.setenv("LEADTIME_MAX_WORKERS", "2")

    config = load_config(path, overrides={"end_date": "2025-01-05", "source": None})

    assert config.end_date == date(2025, 1, 5)
    assert config.run_hour == 18
    assert config.max_workers == 2
    assert [s.hours for s in config.lead_specs] == [24, 312]


def test_missing_config_file(tmp_path, clean_env):
    with pytest.raises(MissingConfigError):
        load_config(tmp_path / "nope.json")
