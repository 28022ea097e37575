from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Protocol

import httpx

from ..catalog import CATEGORY_SEARCH_TERMS, DISCOUNT_FRIENDLY_PLACE_TYPES, category_for_place_types
from ..telemetry import instrument_stage
from .distance_service import DUPLICATE_DISTANCE_MILES, haversine_miles, miles_to_meters
from .query_builder import BusinessSearchFields, SearchCenter

logger = logging.getLogger(__name__)

PLACES_API_BASE_URL = "https://places.googleapis.com/v1"
SEARCH_TEXT_ENDPOINT = "/places:searchText"
SEARCH_NEARBY_ENDPOINT = "/places:searchNearby"
SEARCH_FIELD_MASK = (
    "places.id,places.displayName,places.formattedAddress,places.addressComponents,"
    "places.location,places.types,places.primaryType,places.nationalPhoneNumber,places.rating"
)
MAX_PLACES_RADIUS_METERS = 50_000.0

PlacesMode = Literal["text", "nearby"]


class PlacesError(RuntimeError):
    pass


@dataclass(frozen=True)
class PlacesQuery:
    mode: PlacesMode
    text: str | None = None
    included_types: tuple[str, ...] = ()


@dataclass
class ExternalPlace:
    place_id: str
    name: str
    lat: float
    lng: float
    formatted_address: str | None = None
    address1: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    phone: str | None = None
    types: list[str] = field(default_factory=list)
    category: str = "OTHER"
    rating: float | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": f"google_{self.place_id}",
            "placeId": self.place_id,
            "name": self.name,
            "bname": self.name,
            "address1": self.address1,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "formattedAddress": self.formatted_address,
            "phone": self.phone,
            "category": self.category,
            "types": list(self.types),
            "rating": self.rating,
            "lat": self.lat,
            "lng": self.lng,
            "isGooglePlace": True,
            "isExternal": True,
            "incentives": [],
            "hasIncentives": False,
            "isChain": False,
        }


class PlacesDirectory(Protocol):
    def text_search(self, query: str, center: SearchCenter, limit: int) -> list[ExternalPlace]: ...

    def nearby_search(self, types: tuple[str, ...], center: SearchCenter, limit: int) -> list[ExternalPlace]: ...


def select_places_query(fields: BusinessSearchFields) -> PlacesQuery:
    """Choose what to ask the places directory for.

    Business name, then free text, then the category's search term. With
    none of those, a nearby search restricted to discount-friendly types.
    """
    if fields.business_name:
        return PlacesQuery(mode="text", text=fields.business_name)
    if fields.q:
        return PlacesQuery(mode="text", text=fields.q)
    if fields.category and fields.category in CATEGORY_SEARCH_TERMS:
        return PlacesQuery(mode="text", text=CATEGORY_SEARCH_TERMS[fields.category])
    return PlacesQuery(mode="nearby", included_types=DISCOUNT_FRIENDLY_PLACE_TYPES)


def _coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        normalized = value.strip()
        return normalized or None
    return str(value).strip() or None


def _coerce_float(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value))
    except ValueError:
        return None


def _extract_place_id(item: dict[str, Any]) -> str | None:
    place_id = item.get("id")
    if isinstance(place_id, str) and place_id.strip():
        return place_id.strip()

    resource_name = item.get("name")
    if isinstance(resource_name, str) and resource_name.startswith("places/"):
        return resource_name.split("/", maxsplit=1)[1].strip() or None
    return None


def _address_parts(components: Any) -> dict[str, str | None]:
    parts: dict[str, str | None] = {"street_number": None, "route": None, "city": None, "state": None, "zip": None}
    if not isinstance(components, list):
        return parts
    for component in components:
        if not isinstance(component, dict):
            continue
        types = component.get("types") or []
        short_text = _coerce_text(component.get("shortText"))
        long_text = _coerce_text(component.get("longText"))
        if "street_number" in types:
            parts["street_number"] = long_text
        elif "route" in types:
            parts["route"] = long_text
        elif "locality" in types:
            parts["city"] = long_text
        elif "administrative_area_level_1" in types:
            parts["state"] = short_text
        elif "postal_code" in types:
            parts["zip"] = long_text
    return parts


def transform_place(item: dict[str, Any]) -> ExternalPlace | None:
    place_id = _extract_place_id(item)
    display_name = item.get("displayName")
    name = _coerce_text(display_name.get("text") if isinstance(display_name, dict) else display_name)
    location = item.get("location") if isinstance(item.get("location"), dict) else {}
    lat = _coerce_float(location.get("latitude"))
    lng = _coerce_float(location.get("longitude"))
    if place_id is None or name is None or lat is None or lng is None:
        return None

    types = [text for text in (_coerce_text(value) for value in item.get("types") or []) if text]
    primary_type = _coerce_text(item.get("primaryType"))
    if primary_type and primary_type not in types:
        types.insert(0, primary_type)

    parts = _address_parts(item.get("addressComponents"))
    street = " ".join(part for part in (parts["street_number"], parts["route"]) if part) or None
    formatted_address = _coerce_text(item.get("formattedAddress"))
    return ExternalPlace(
        place_id=place_id,
        name=name,
        lat=lat,
        lng=lng,
        formatted_address=formatted_address,
        address1=street or (formatted_address.split(",")[0].strip() if formatted_address else None),
        city=parts["city"],
        state=parts["state"],
        zip=parts["zip"],
        phone=_coerce_text(item.get("nationalPhoneNumber")),
        types=types,
        category=category_for_place_types(types),
        rating=_coerce_float(item.get("rating")),
    )


def _location_circle(center: SearchCenter) -> dict[str, Any]:
    return {
        "circle": {
            "center": {"latitude": center.lat, "longitude": center.lng},
            "radius": min(MAX_PLACES_RADIUS_METERS, miles_to_meters(center.radius_miles)),
        }
    }


class GooglePlacesClient:
    def __init__(self, api_key: str, *, client: httpx.Client | None = None, timeout: float = 10.0) -> None:
        self.api_key = api_key
        self._client = client or httpx.Client(base_url=PLACES_API_BASE_URL, timeout=timeout)

    def _headers(self) -> dict[str, str]:
        return {
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": SEARCH_FIELD_MASK,
            "Content-Type": "application/json",
        }

    def _post(self, endpoint: str, body: dict[str, Any]) -> list[ExternalPlace]:
        try:
            response = self._client.post(endpoint, headers=self._headers(), json=body)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PlacesError(f"Places request to {endpoint} failed: {exc}") from exc
        if not isinstance(payload, dict):
            raise PlacesError("Unexpected Google Places response payload")

        places: list[ExternalPlace] = []
        for item in payload.get("places", []):
            if not isinstance(item, dict):
                continue
            place = transform_place(item)
            if place is not None:
                places.append(place)
        return places

    def text_search(self, query: str, center: SearchCenter, limit: int) -> list[ExternalPlace]:
        body = {
            "textQuery": query,
            "pageSize": min(20, limit),
            "locationBias": _location_circle(center),
        }
        return self._post(SEARCH_TEXT_ENDPOINT, body)

    def nearby_search(self, types: tuple[str, ...], center: SearchCenter, limit: int) -> list[ExternalPlace]:
        body = {
            "includedTypes": list(types),
            "maxResultCount": min(20, limit),
            "locationRestriction": _location_circle(center),
        }
        return self._post(SEARCH_NEARBY_ENDPOINT, body)

    def close(self) -> None:
        self._client.close()


def is_duplicate(place: ExternalPlace, business: Any) -> bool:
    place_id = getattr(business, "google_place_id", None)
    if place_id and place_id == place.place_id:
        return True
    lat = getattr(business, "lat", None)
    lng = getattr(business, "lng", None)
    if lat is None or lng is None:
        return False
    return haversine_miles(lat, lng, place.lat, place.lng) <= DUPLICATE_DISTANCE_MILES


def deduplicate_places(places: Iterable[ExternalPlace], local_businesses: Iterable[Any]) -> list[ExternalPlace]:
    local = list(local_businesses)
    unique: list[ExternalPlace] = []
    seen_ids: set[str] = set()
    for place in places:
        if place.place_id in seen_ids:
            continue
        if any(is_duplicate(place, business) for business in local):
            continue
        seen_ids.add(place.place_id)
        unique.append(place)
    return unique


@instrument_stage("places")
def supplement(
    fields: BusinessSearchFields,
    center: SearchCenter | None,
    local_businesses: Iterable[Any],
    directory: PlacesDirectory | None,
    limit: int = 20,
) -> list[ExternalPlace]:
    if center is None or directory is None:
        return []

    query = select_places_query(fields)
    try:
        if query.mode == "text" and query.text:
            places = directory.text_search(query.text, center, limit)
        else:
            places = directory.nearby_search(query.included_types, center, limit)
    except Exception:
        logger.exception("External places lookup failed; continuing with local results only")
        return []

    unique = deduplicate_places(places, local_businesses)
    logger.info(
        "Places supplement mode=%s term=%r fetched=%s kept=%s",
        query.mode,
        query.text,
        len(places),
        len(unique),
    )
    return unique
