from __future__ import annotations

import math
from dataclasses import dataclass

EARTH_RADIUS_MILES = 3959.0
METERS_PER_MILE = 1609.344
# Places within this distance of a stored business are the same place.
DUPLICATE_DISTANCE_MILES = 0.06


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = math.sin(d_lat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(d_lon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


def miles_to_radians(miles: float) -> float:
    return miles / EARTH_RADIUS_MILES


def miles_to_meters(miles: float) -> float:
    return miles * METERS_PER_MILE


@dataclass(frozen=True)
class SphericalCap:
    """A center point plus an angular radius on the earth's surface."""

    center: Coordinates
    radius_radians: float

    @classmethod
    def from_miles(cls, center: Coordinates, radius_miles: float) -> "SphericalCap":
        return cls(center=center, radius_radians=miles_to_radians(radius_miles))

    @property
    def radius_miles(self) -> float:
        return self.radius_radians * EARTH_RADIUS_MILES

    def distance_miles(self, lat: float, lng: float) -> float:
        return haversine_miles(self.center.lat, self.center.lng, lat, lng)

    def contains(self, lat: float | None, lng: float | None) -> bool:
        if lat is None or lng is None:
            return False
        return self.distance_miles(lat, lng) <= self.radius_miles

    def bounding_box(self) -> tuple[float, float, float, float]:
        """Return (min_lat, max_lat, min_lng, max_lng) enclosing the cap."""
        lat_delta = math.degrees(self.radius_radians)
        min_lat = max(-90.0, self.center.lat - lat_delta)
        max_lat = min(90.0, self.center.lat + lat_delta)

        cos_lat = math.cos(math.radians(self.center.lat))
        if max_lat >= 90.0 or min_lat <= -90.0 or cos_lat <= 1e-9:
            return min_lat, max_lat, -180.0, 180.0

        lng_delta = math.degrees(math.asin(min(1.0, math.sin(self.radius_radians) / cos_lat)))
        min_lng = self.center.lng - lng_delta
        max_lng = self.center.lng + lng_delta
        if min_lng < -180.0 or max_lng > 180.0:
            return min_lat, max_lat, -180.0, 180.0
        return min_lat, max_lat, min_lng, max_lng
