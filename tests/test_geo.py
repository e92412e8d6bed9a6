"""
test_geo.py — Haversine distance and nearby-sensor filtering.

Run with:
    pytest tests/test_geo.py -v
"""

from __future__ import annotations

import pytest

from bantay.spatial.geo import Coordinate, haversine, nearby_sensors

MARIKINA = Coordinate(14.65, 121.05)


def _sensor(sensor_id: str, location) -> dict:
    return {"sensor_id": sensor_id, "water_level": 1.0, "location": location}


class TestCoordinate:

    def test_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            Coordinate(91.0, 0.0)
        with pytest.raises(ValueError):
            Coordinate(0.0, -181.0)

    def test_from_mapping(self):
        assert Coordinate.from_mapping({"lat": "14.65", "lng": 121.05}) == MARIKINA
        assert Coordinate.from_mapping({"lat": 14.65}) is None
        assert Coordinate.from_mapping(None) is None


class TestHaversine:

    def test_same_point(self):
        assert haversine(MARIKINA, MARIKINA) == 0.0

    def test_one_degree_of_latitude(self):
        assert haversine(Coordinate(0, 0), Coordinate(1, 0)) == pytest.approx(111.195, abs=0.01)

    def test_symmetric(self):
        manila = Coordinate(14.5995, 120.9842)
        assert haversine(MARIKINA, manila) == haversine(manila, MARIKINA)


class TestNearbySensors:

    def test_filters_and_sorts(self):
        sensors = [
            _sensor("far", {"lat": 14.48, "lng": 121.0}),
            _sensor("north", {"lat": 14.70, "lng": 121.05}),
            _sensor("here", {"lat": 14.65, "lng": 121.05}),
        ]
        result = nearby_sensors(MARIKINA, sensors, radius_km=10)
        assert [s["sensor_id"] for s in result] == ["here", "north"]
        assert result[0]["distance_km"] == 0.0
        assert result[1]["distance_km"] == pytest.approx(5.56, abs=0.01)

    def test_input_not_mutated(self):
        sensors = [_sensor("here", {"lat": 14.65, "lng": 121.05})]
        nearby_sensors(MARIKINA, sensors)
        assert "distance_km" not in sensors[0]

    def test_skips_missing_or_invalid_locations(self):
        sensors = [
            _sensor("none", None),
            _sensor("partial", {"lat": 14.65}),
            _sensor("bogus", {"lat": 200, "lng": 121.05}),
            _sensor("here", {"lat": 14.65, "lng": 121.05}),
        ]
        assert [s["sensor_id"] for s in nearby_sensors(MARIKINA, sensors)] == ["here"]

    def test_radius_must_be_positive(self):
        with pytest.raises(ValueError):
            nearby_sensors(MARIKINA, [], radius_km=0)
