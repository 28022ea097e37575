from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from ..telemetry import instrument_stage
from .distance_service import Coordinates
from .query_builder import BusinessSearchFields, SearchCenter

logger = logging.getLogger(__name__)

GEOCODE_API_URL = "https://maps.googleapis.com/maps/api/geocode/json"


class Geocoder(Protocol):
    def geocode(self, address: str) -> Coordinates | None: ...


def _extract_location(payload: dict[str, Any]) -> Coordinates | None:
    if payload.get("status") != "OK":
        return None
    results = payload.get("results")
    if not isinstance(results, list) or not results:
        return None
    geometry = results[0].get("geometry") if isinstance(results[0], dict) else None
    location = geometry.get("location") if isinstance(geometry, dict) else None
    if not isinstance(location, dict):
        return None
    lat = location.get("lat")
    lng = location.get("lng")
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return None
    return Coordinates(float(lat), float(lng))


class GoogleGeocoder:
    def __init__(self, api_key: str | None, *, client: httpx.Client | None = None, timeout: float = 10.0) -> None:
        self.api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def geocode(self, address: str) -> Coordinates | None:
        if not self.api_key:
            logger.warning("Geocoding skipped: no Google Maps API key configured")
            return None
        try:
            response = self._client.get(GEOCODE_API_URL, params={"address": address, "key": self.api_key})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError):
            logger.exception("Geocoding request failed for %r", address)
            return None

        if not isinstance(payload, dict):
            logger.warning("Unexpected geocoding payload for %r", address)
            return None
        coordinates = _extract_location(payload)
        if coordinates is None:
            logger.warning("Geocoding returned no result for %r (status=%s)", address, payload.get("status"))
        return coordinates

    def close(self) -> None:
        self._client.close()


@instrument_stage("geocode")
def resolve_search_center(fields: BusinessSearchFields, geocoder: Geocoder | None) -> SearchCenter | None:
    """Pick the coordinate basis for a search, if any.

    Explicit coordinates win over a postal code. A postal code that cannot
    be geocoded yields ``None``, leaving the literal zip match in place.
    """
    if fields.has_coordinates:
        return SearchCenter(
            lat=float(fields.lat),
            lng=float(fields.lng),
            radius_miles=fields.radius_miles,
            source="coordinates",
        )

    postal_code = fields.postal_code
    if postal_code is None or geocoder is None:
        return None

    try:
        coordinates = geocoder.geocode(postal_code)
    except Exception:
        logger.exception("Geocoder raised for postal code %s", postal_code)
        return None
    if coordinates is None:
        logger.info("Falling back to exact postal code match for %s", postal_code)
        return None
    return SearchCenter(
        lat=coordinates.lat,
        lng=coordinates.lng,
        radius_miles=fields.radius_miles,
        source="geocoded_zip",
    )
