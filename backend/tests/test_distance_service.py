import math

from patriot_thanks.services.distance_service import (
    EARTH_RADIUS_MILES,
    Coordinates,
    SphericalCap,
    haversine_miles,
    miles_to_meters,
)


def test_haversine_zero_distance():
    assert haversine_miles(41.26, -95.94, 41.26, -95.94) == 0


def test_haversine_one_degree_of_latitude():
    distance = haversine_miles(40.0, -96.0, 41.0, -96.0)
    assert math.isclose(distance, EARTH_RADIUS_MILES * math.radians(1.0), rel_tol=1e-9)


def test_miles_to_meters():
    assert math.isclose(miles_to_meters(1.0), 1609.344)


def test_cap_contains_points_inside_radius_only():
    cap = SphericalCap.from_miles(Coordinates(41.2565, -95.9345), 10.0)
    inside = 41.2565 + math.degrees(9.5 / EARTH_RADIUS_MILES)
    outside = 41.2565 + math.degrees(10.5 / EARTH_RADIUS_MILES)

    assert cap.contains(inside, -95.9345)
    assert not cap.contains(outside, -95.9345)
    assert not cap.contains(None, -95.9345)


def test_bounding_box_encloses_cap():
    cap = SphericalCap.from_miles(Coordinates(41.2565, -95.9345), 25.0)
    min_lat, max_lat, min_lng, max_lng = cap.bounding_box()

    assert min_lat < 41.2565 < max_lat
    assert min_lng < -95.9345 < max_lng
    east = -95.9345 + math.degrees(24.9 / EARTH_RADIUS_MILES / math.cos(math.radians(41.2565)))
    assert cap.contains(41.2565, east)
    assert east < max_lng


def test_bounding_box_near_pole_spans_all_longitudes():
    cap = SphericalCap.from_miles(Coordinates(89.9, 10.0), 50.0)
    _, max_lat, min_lng, max_lng = cap.bounding_box()

    assert max_lat == 90.0
    assert (min_lng, max_lng) == (-180.0, 180.0)
