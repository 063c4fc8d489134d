import json

import pytest

from poi_catalog.core.config import ConfigError
from poi_catalog.reconcile.geofence import Geofence, build_geofence


@pytest.mark.parametrize(
    "lat, lng, expected",
    [
        (19.33, -81.375, "Camana Bay"),
        (19.335, -81.385, "Seven Mile Beach"),
        (19.295, -81.385, "George Town"),
        (19.38, -81.41, "West Bay"),
        (19.37, -81.26, "North Side"),
        (19.30, -81.30, "Grand Cayman"),
        (19.70, -79.80, "Cayman Brac"),
        (19.69, -80.05, "Little Cayman"),
        (0.0, 0.0, None),
        (None, -81.3, None),
    ],
)
def test_classify(lat, lng, expected):
    assert Geofence().classify(lat, lng) == expected


def test_locate_returns_island():
    region = Geofence().locate(19.33, -81.375)
    assert region.island == "Grand Cayman"


def test_regions_from_file(tmp_path):
    path = tmp_path / "regions.json"
    path.write_text(json.dumps([
        {"name": "Harbour", "island": "Test Island", "latMin": 1, "latMax": 2, "lngMin": 1, "lngMax": 2},
    ]), encoding="utf-8")

    geofence = build_geofence(str(path))

    assert geofence.classify(1.5, 1.5) == "Harbour"
    assert geofence.classify(19.33, -81.375) is None


def test_bad_regions_file_is_config_error(tmp_path):
    path = tmp_path / "regions.json"
    path.write_text(json.dumps([{"name": "Harbour"}]), encoding="utf-8")
    with pytest.raises(ConfigError):
        build_geofence(str(path))
    with pytest.raises(ConfigError):
        build_geofence(str(tmp_path / "missing.json"))
