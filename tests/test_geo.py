from __future__ import annotations

import math

import pytest

from youpick_service.geo import distance_or_none, haversine_distance, within_radius
from youpick_service.schemas import GeoPoint

EARTH_RADIUS_MILES = 3958.8


def _p(lat: float, lng: float) -> GeoPoint:
    return GeoPoint(latitude=lat, longitude=lng)


@pytest.mark.parametrize("point", [_p(0, 0), _p(40.7128, -74.006), _p(90, 0), _p(-33.86, 151.21)])
def test_distance_to_self_is_zero(point):
    assert haversine_distance(point, point) == 0


@pytest.mark.parametrize(
    "a,b",
    [
        (_p(40.7128, -74.006), _p(34.0522, -118.2437)),
        (_p(51.5, -0.12), _p(-33.86, 151.21)),
        (_p(0, 179.5), _p(0, -179.5)),
    ],
)
def test_distance_is_symmetric(a, b):
    assert haversine_distance(a, b) == pytest.approx(haversine_distance(b, a))


def test_one_degree_along_equator_in_miles():
    expected = EARTH_RADIUS_MILES * math.pi / 180
    assert haversine_distance(_p(0, 0), _p(0, 1)) == pytest.approx(expected)


def test_antipodal_points_are_half_the_circumference():
    assert haversine_distance(_p(0, 0), _p(0, 180)) == pytest.approx(EARTH_RADIUS_MILES * math.pi)
    assert haversine_distance(_p(90, 0), _p(-90, 0)) == pytest.approx(EARTH_RADIUS_MILES * math.pi)


def test_custom_radius():
    assert haversine_distance(_p(0, 0), _p(0, 180), radius=1.0) == pytest.approx(math.pi)


def test_distance_or_none_requires_both_sides():
    assert distance_or_none(None, 1.0, 1.0) is None
    assert distance_or_none(_p(0, 0), None, 1.0) is None
    assert distance_or_none(_p(0, 0), 1.0, None) is None


def test_zero_coordinates_count_as_known():
    assert distance_or_none(_p(0, 1), 0.0, 0.0) == pytest.approx(EARTH_RADIUS_MILES * math.pi / 180)


def test_within_radius_boundary_is_inclusive():
    center = _p(40.0, -75.0)
    edge = haversine_distance(center, _p(40.5, -75.0))
    assert within_radius(center, edge, 40.5, -75.0)
    assert not within_radius(center, edge * 0.99, 40.5, -75.0)


def test_within_radius_keeps_unknown_location():
    assert within_radius(_p(0, 0), 0.001, None, None)
