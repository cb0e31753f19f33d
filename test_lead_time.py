"""
Tests for the lead-time comparison pipeline, using an in-memory forecast source.
"""
import math
from datetime import date, datetime, timezone

import pandas as pd
import pytest

from config import build_config
from errors import FetchTransientError, InvalidRangeError, MissingConfigError
from lead_time import (
    DifferenceRecord,
    ForecastSample,
    LeadTimeSpec,
    build_difference_series,
    build_samples,
    build_series,
    compute_differences,
    creation_time_for,
    default_pair,
    enumerate_validity_dates,
    run_comparison,
    series_to_frame,
    summarize,
    validity_timestamp,
)

LEADS = (LeadTimeSpec("24h", 24), LeadTimeSpec("48h", 48))

# Jan 1-3 2025 at 12Z; day 2 has no 24h forecast
SCENARIO = {
    ("2024-12-31T12:00:00Z", 24): 10.0,
    ("2024-12-30T12:00:00Z", 48): 8.0,
    ("2024-12-31T12:00:00Z", 48): 9.0,
    ("2025-01-02T12:00:00Z", 24): 12.0,
    ("2025-01-01T12:00:00Z", 48): 11.0,
}


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def diffs(*values):
    return [DifferenceRecord(utc(2025, 1, i + 1, 12), v) for i, v in enumerate(values)]


def test_date_range_is_inclusive_and_daily():
    dates = enumerate_validity_dates(date(2025, 1, 30), date(2025, 3, 2))
    assert len(dates) == (date(2025, 3, 2) - date(2025, 1, 30)).days + 1
    assert dates[0] == date(2025, 1, 30)
    assert dates[-1] == date(2025, 3, 2)
    assert all((b - a).days == 1 for a, b in zip(dates, dates[1:]))


def test_single_day_range():
    assert enumerate_validity_dates(date(2025, 1, 1), date(2025, 1, 1)) == [date(2025, 1, 1)]


def test_end_before_start_raises():
    with pytest.raises(InvalidRangeError):
        enumerate_validity_dates(date(2025, 1, 2), date(2025, 1, 1))


def test_creation_time_subtracts_lead_hours():
    valid = validity_timestamp(date(2025, 1, 14), run_hour=12)
    assert valid == utc(2025, 1, 14, 12)
    assert creation_time_for(valid, 312) == utc(2025, 1, 1, 12)


def test_build_samples_joins_by_key(make_source):
    source = make_source(SCENARIO)
    dates = enumerate_validity_dates(date(2025, 1, 1), date(2025, 1, 3))
    samples, counts = build_samples(source, dates, LEADS, max_workers=4)

    assert [s.timestamp for s in samples] == [utc(2025, 1, d, 12) for d in (1, 2, 3)]
    assert dict(samples[0].values) == {"24h": 10.0, "48h": 8.0}
    assert dict(samples[1].values) == {"24h": None, "48h": 9.0}
    assert dict(samples[2].values) == {"24h": 12.0, "48h": 11.0}
    assert (counts.requested, counts.present, counts.absent, counts.failed) == (6, 5, 1, 0)


def test_transient_failure_becomes_gap(make_source):
    values = dict(SCENARIO)
    values[("2024-12-30T12:00:00Z", 48)] = FetchTransientError("timeout")
    source = make_source(values)
    dates = enumerate_validity_dates(date(2025, 1, 1), date(2025, 1, 3))

    samples, counts = build_samples(source, dates, LEADS)

    assert samples[0].values["48h"] is None
    assert samples[0].values["24h"] == 10.0
    assert counts.failed == 1
    assert len(source.calls) == 6


def test_samples_are_read_only():
    sample = ForecastSample(utc(2025, 1, 1, 12), {"24h": 1.0})
    with pytest.raises(TypeError):
        sample.values["24h"] = 2.0


def test_scenario_differences_and_stats(make_source):
    config = build_config({"start_date": "2025-01-01", "end_date": "2025-01-03", "lead_hours": "24,48"})
    result = run_comparison(make_source(SCENARIO), config, first="24h", second="48h")

    assert [(d.timestamp.day, d.difference) for d in result.differences] == [(1, 2.0), (3, 1.0)]
    assert result.stats.count == 2
    assert result.stats.mean == pytest.approx(1.5)
    assert result.stats.std == pytest.approx(0.5)
    assert len(result.differences) <= len(result.samples) <= 3


def test_default_pair_is_longest_minus_shortest():
    assert default_pair([LeadTimeSpec("312h", 312), LeadTimeSpec("24h", 24), LeadTimeSpec("48h", 48)]) == ("312h", "24h")
    with pytest.raises(MissingConfigError):
        default_pair([LeadTimeSpec("24h", 24)])


def test_difference_count_matches_complete_samples():
    samples = [
        ForecastSample(utc(2025, 1, 1, 12), {"a": 1.0, "b": 2.0}),
        ForecastSample(utc(2025, 1, 2, 12), {"a": None, "b": 2.0}),
        ForecastSample(utc(2025, 1, 3, 12), {"a": 3.0, "b": None}),
        ForecastSample(utc(2025, 1, 4, 12), {"a": 0.0, "b": 0.0}),
    ]
    records = compute_differences(samples, "a", "b")
    complete = [s for s in samples if s.values["a"] is not None and s.values["b"] is not None]
    assert len(records) == len(complete) == 2
    assert [r.difference for r in records] == [-1.0, 0.0]


def test_differences_are_repeatable():
    samples = [ForecastSample(utc(2025, 1, 1, 12), {"a": 5.5, "b": 2.0})]
    assert compute_differences(samples, "a", "b") == compute_differences(samples, "a", "b")


def test_unknown_lead_name_raises():
    samples = [ForecastSample(utc(2025, 1, 1, 12), {"a": 1.0, "b": 2.0})]
    with pytest.raises(MissingConfigError):
        compute_differences(samples, "a", "c")


def test_population_std():
    stats = summarize(diffs(2.0, 4.0, 6.0))
    assert stats.mean == pytest.approx(4.0)
    assert stats.std == pytest.approx(math.sqrt(8 / 3))


def test_empty_stats_are_not_available():
    stats = summarize([])
    assert stats.count == 0
    assert stats.mean is None
    assert stats.std is None
    assert not stats.available


def test_series_keeps_gaps():
    samples = [
        ForecastSample(utc(2025, 1, 3, 12), {"24h": 3.0}),
        ForecastSample(utc(2025, 1, 1, 12), {"24h": 1.0}),
        ForecastSample(utc(2025, 1, 2, 12), {"24h": None}),
    ]
    series = build_series(samples, ["24h"])
    assert series == [
        (utc(2025, 1, 1, 12), 1.0),
        (utc(2025, 1, 2, 12), None),
        (utc(2025, 1, 3, 12), 3.0),
    ]


def test_difference_series_is_ordered():
    records = [DifferenceRecord(utc(2025, 1, 2, 12), 1.0), DifferenceRecord(utc(2025, 1, 1, 12), 2.0)]
    assert build_difference_series(records) == [(utc(2025, 1, 1, 12), 2.0), (utc(2025, 1, 2, 12), 1.0)]


def test_series_frame_uses_nan_for_gaps():
    series = [(utc(2025, 1, 1, 12), 1.0), (utc(2025, 1, 2, 12), None), (utc(2025, 1, 3, 12), 3.0)]
    df = series_to_frame(series, ["24h"])
    assert len(df) == 3
    assert pd.isna(df["24h"].iloc[1])
    assert df["24h"].iloc[2] == 3.0


def test_invalid_range_aborts_before_fetching(make_source):
    source = make_source(SCENARIO)
    config = build_config({"start_date": "2025-01-03", "end_date": "2025-01-01"})
    with pytest.raises(InvalidRangeError):
        run_comparison(source, config)
    assert source.calls == []


def test_unknown_pair_aborts_before_fetching(make_source):
    source = make_source(SCENARIO)
    config = build_config({"start_date": "2025-01-01", "end_date": "2025-01-03"})
    with pytest.raises(MissingConfigError):
        run_comparison(source, config, first="72h", second="24h")
    assert source.calls == []


def test_result_to_dict_has_series_and_counts(make_source):
    config = build_config({"start_date": "2025-01-01", "end_date": "2025-01-03"})
    result = run_comparison(make_source(SCENARIO), config, first="24h", second="48h").to_dict()

    assert result["series"]["columns"] == ["time", "24h", "48h"]
    assert result["series"]["rows"][1] == ["2025-01-02T12:00:00+00:00", None, 9.0]
    assert result["stats"] == {"count": 2, "mean": 1.5, "std": 0.5}
    assert result["counts"]["absent"] == 1
