"""Tests for location distance filtering."""

from dataclasses import dataclass

import pytest

from muac_monitor.proximity import find_nearby, haversine_km, parse_coordinate, parse_point


@dataclass
class Place:
    name: str
    latitude: str | None
    longitude: str | None


LIMA = (-12.0464, -77.0428)


def test_haversine_is_symmetric_and_zero_on_same_point() -> None:
    forward = haversine_km(-12.0464, -77.0428, -13.5320, -71.9675)
    backward = haversine_km(-13.5320, -71.9675, -12.0464, -77.0428)
    assert forward == pytest.approx(backward)
    assert haversine_km(*LIMA, *LIMA) == 0.0


def test_haversine_one_degree_of_latitude() -> None:
    assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.195, abs=0.01)


def test_find_nearby_filters_by_radius_and_sorts_by_distance() -> None:
    places = [
        Place("far", "-12.2000", "-77.0428"),
        Place("near", "-12.0500", "-77.0428"),
        Place("here", "-12.0464", "-77.0428"),
    ]

    result = find_nearby(*LIMA, 5.0, places)

    assert [item.location.name for item in result] == ["here", "near"]
    assert result[0].distance_km == 0.0
    assert result[1].distance_km < 5.0


def test_location_on_radius_boundary_is_included() -> None:
    place = Place("edge", "1.0", "0.0")
    distance = haversine_km(0.0, 0.0, 1.0, 0.0)
    assert [item.location for item in find_nearby(0.0, 0.0, distance, [place])] == [place]
    assert find_nearby(0.0, 0.0, distance - 0.001, [place]) == []


def test_unparsable_locations_are_skipped() -> None:
    places = [
        Place("blank", "", "-77.0428"),
        Place("text", "north", "-77.0428"),
        Place("missing", None, None),
        Place("out-of-range", "95", "-77.0428"),
        Place("ok", " -12.0464 ", "-77.0428"),
    ]

    result = find_nearby(*LIMA, 1.0, places)

    assert [item.location.name for item in result] == ["ok"]


@pytest.mark.parametrize("radius", [0.0, -3.0])
def test_non_positive_radius_uses_default(radius: float) -> None:
    places = [Place("within-default", "-12.1300", "-77.0428"), Place("beyond", "-12.2000", "-77.0428")]

    result = find_nearby(*LIMA, radius, places)

    assert [item.location.name for item in result] == ["within-default"]
    assert find_nearby(*LIMA, radius, places, default_radius_km=50.0)[1].location.name == "beyond"


def test_parse_coordinate_bounds() -> None:
    assert parse_coordinate("-90", limit=90.0) == -90.0
    assert parse_coordinate("180.0", limit=180.0) == 180.0
    assert parse_coordinate("180.1", limit=180.0) is None
    assert parse_coordinate("nan", limit=90.0) is None
    assert parse_point("-12.5", None) is None
