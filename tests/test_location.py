"""Tests for GPS verification against the booking address."""

import pytest

from marketplace_core.services.location_service import (
    extract_coordinates,
    haversine_distance,
    is_valid_coordinate,
    verify_location,
)

ADDRESS = {"formatted": "Calle 93 #11-26, Bogotá", "latitude": 4.6767, "longitude": -74.0483}


class TestCoordinates:
    @pytest.mark.parametrize("lat,lng", [(0, 0), (90, 180), (-90, -180), (4.67, -74.04)])
    def test_valid(self, lat, lng):
        assert is_valid_coordinate(lat, lng)

    @pytest.mark.parametrize("lat,lng", [
        (90.01, 0), (0, -180.01), (None, 1), ("x", 1), (float("nan"), 0),
        (True, False), (1, True), ("4.67", "-74.04"),
    ])
    def test_invalid(self, lat, lng):
        assert not is_valid_coordinate(lat, lng)

    def test_extract_accepts_short_keys(self):
        assert extract_coordinates({"lat": 1.5, "lng": 2.5}) == (1.5, 2.5)

    def test_extract_missing_coordinates(self):
        assert extract_coordinates({"formatted": "Somewhere"}) is None
        assert extract_coordinates(None) is None
        assert extract_coordinates("Calle 93") is None


class TestHaversine:
    def test_zero_distance(self):
        assert haversine_distance(4.6767, -74.0483, 4.6767, -74.0483) == 0

    def test_one_degree_latitude_is_about_111km(self):
        assert haversine_distance(0, 0, 1, 0) == pytest.approx(111_195, rel=0.001)


class TestVerifyLocation:
    def test_within_threshold(self):
        # ~100m north
        result = verify_location(4.6767 + 0.0009, -74.0483, ADDRESS, max_distance=150)
        assert result.verified
        assert result.distance < 150

    def test_outside_threshold(self):
        # ~220m north
        result = verify_location(4.6767 + 0.002, -74.0483, ADDRESS, max_distance=150)
        assert not result.verified
        assert result.distance > 150
        assert "max 150m" in result.reason

    def test_address_without_coordinates_is_unverified(self):
        result = verify_location(4.6767, -74.0483, {"formatted": "No geo"})
        assert not result.verified
        assert result.distance is None
