"""Tests for the geo module."""

import math

import pytest

from helpers import ORIGIN, north_of
from fieldsales_tracker.geo import (
    EARTH_RADIUS_M,
    distance_between,
    haversine_distance,
    should_geocode,
)
from fieldsales_tracker.models import Position

POINTS = [
    (25.1972, 55.2744),
    (51.5007, -0.1246),
    (-33.8568, 151.2153),
    (0.0, 0.0),
    (89.9, 179.9),
]


@pytest.mark.parametrize("a", POINTS)
@pytest.mark.parametrize("b", POINTS)
def test_distance_is_symmetric(a, b) -> None:
    """distance(a, b) == distance(b, a)."""
    assert haversine_distance(*a, *b) == pytest.approx(haversine_distance(*b, *a))


@pytest.mark.parametrize("p", POINTS)
def test_distance_to_self_is_zero(p) -> None:
    assert haversine_distance(*p, *p) == 0.0


def test_one_degree_of_latitude() -> None:
    """One degree along a meridian is R·π/180 meters."""
    expected = EARTH_RADIUS_M * math.pi / 180
    assert haversine_distance(0.0, 0.0, 1.0, 0.0) == pytest.approx(expected)


def test_dubai_to_london() -> None:
    """Known city pair matches the published great-circle figure."""
    d = haversine_distance(25.2048, 55.2708, 51.5074, -0.1278)
    assert d == pytest.approx(5_474_000, abs=20_000)


def test_distance_between_positions() -> None:
    a = Position(*ORIGIN)
    b = Position(*north_of(*ORIGIN, 250.0))
    assert distance_between(a, b) == pytest.approx(250.0, abs=1e-6)


class TestShouldGeocode:
    """The geocode gate is strictly greater than the threshold, in meters."""

    def test_first_sample_never_geocodes(self) -> None:
        assert should_geocode(None, Position(*ORIGIN)) is False

    def test_just_over_threshold(self) -> None:
        prev = Position(*ORIGIN)
        cur = Position(*north_of(*ORIGIN, 500.01))
        assert should_geocode(prev, cur) is True

    def test_just_under_threshold(self) -> None:
        prev = Position(*ORIGIN)
        cur = Position(*north_of(*ORIGIN, 499.99))
        assert should_geocode(prev, cur) is False

    def test_threshold_is_meters_not_kilometers(self) -> None:
        """A 600 m move triggers; the threshold is not 500 km."""
        prev = Position(*ORIGIN)
        cur = Position(*north_of(*ORIGIN, 600.0))
        assert should_geocode(prev, cur) is True

    def test_custom_threshold(self) -> None:
        prev = Position(*ORIGIN)
        cur = Position(*north_of(*ORIGIN, 150.0))
        assert should_geocode(prev, cur, threshold_m=100.0) is True
        assert should_geocode(prev, cur, threshold_m=200.0) is False


@pytest.mark.parametrize("lat", [88.85714285714286, 45.0, 0.0, -12.5])
def test_antipodal_points(lat) -> None:
    """Half the circumference, in either direction, without a math domain error."""
    half = math.pi * EARTH_RADIUS_M
    there = haversine_distance(-lat, 0.0, lat, 180.0)
    back = haversine_distance(lat, 180.0, -lat, 0.0)
    assert there == pytest.approx(half)
    assert back == pytest.approx(there)
