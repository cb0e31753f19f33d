import pytest

import built_up
from built_up import (
    DEN_HAAG,
    built_up_percentage,
    compare_built_up,
    point_cell,
    rectangle_cell,
)
from errors import MissingConfigError


def test_percentage():
    assert built_up_percentage(2500.0) == pytest.approx(25.0)
    assert built_up_percentage(0.0) == 0.0
    assert built_up_percentage(None) is None


def test_cell_validation():
    with pytest.raises(MissingConfigError):
        point_cell(51.5, -0.13, 0)
    with pytest.raises(MissingConfigError):
        point_cell(51.5, 200.0, 10)
    with pytest.raises(MissingConfigError):
        rectangle_cell("flat", [4.4, 51.9, 4.1, 52.1])


def test_export_descriptions():
    assert point_cell(51.5, -0.13, 70).export_description(1975) == "Built_up_surface_1975_70km_cell_percent"
    assert rectangle_cell("Den Haag", DEN_HAAG).export_description(2020) == "Built_up_surface_Den_Haag_2020"


def test_compare_built_up(monkeypatch):
    means = {1975: 1200.0, 2020: 3100.0}
    monkeypatch.setattr(built_up, "init_ee", lambda project=None: None)
    monkeypatch.setattr(built_up.Cell, "geometry", lambda self: "region")
    monkeypatch.setattr(built_up, "mean_built_surface", lambda year, region: means[year])

    comparison = compare_built_up(point_cell(51.5, -0.13, 70))

    assert [e.percent for e in comparison.epochs] == [pytest.approx(12.0), pytest.approx(31.0)]
    assert comparison.change == pytest.approx(19.0)
    assert comparison.to_dict()["epochs"][0] == {"year": 1975, "mean": 1200.0, "percent": pytest.approx(12.0)}


def test_missing_epoch_has_no_change(monkeypatch):
    monkeypatch.setattr(built_up, "init_ee", lambda project=None: None)
    monkeypatch.setattr(built_up.Cell, "geometry", lambda self: "region")
    monkeypatch.setattr(built_up, "mean_built_surface", lambda year, region: None if year == 1975 else 10.0)

    comparison = compare_built_up(rectangle_cell("Den Haag", DEN_HAAG))
    assert comparison.epochs[0].percent is None
    assert comparison.change is None
