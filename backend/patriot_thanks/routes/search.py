from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db
from ..dependencies import get_app_settings, get_search_service
from ..services.query_builder import BusinessSearchFields
from ..services.search_service import SearchService

router = APIRouter(tags=["search"])

MAX_RADIUS_MILES = 100.0


def _resolve_coordinates(lat: float | None, lng: float | None) -> tuple[float | None, float | None]:
    if (lat is None) != (lng is None):
        raise HTTPException(status_code=400, detail="Both lat and lng are required for a location search")
    if lat is not None and not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise HTTPException(status_code=400, detail="Coordinates are out of range")
    return lat, lng


@router.get("/search")
def search(
    business_name: str | None = Query(default=None, alias="businessName"),
    address: str | None = Query(default=None),
    zip: str | None = Query(default=None),
    q: str | None = Query(default=None),
    city: str | None = Query(default=None),
    state: str | None = Query(default=None),
    category: str | None = Query(default=None),
    service_type: str | None = Query(default=None, alias="serviceType"),
    lat: float | None = Query(default=None),
    lng: float | None = Query(default=None),
    radius: float | None = Query(default=None, ge=0, le=MAX_RADIUS_MILES),
    db: Session = Depends(get_db),
    service: SearchService = Depends(get_search_service),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    resolved_lat, resolved_lng = _resolve_coordinates(lat, lng)
    fields = BusinessSearchFields(
        business_name=business_name,
        address=address,
        zip=zip,
        q=q,
        city=city,
        state=state,
        category=category,
        service_type=service_type,
        lat=resolved_lat,
        lng=resolved_lng,
        radius_miles=radius or settings.default_search_radius_miles,
    )
    if fields.is_empty():
        raise HTTPException(
            status_code=400,
            detail="At least one search parameter is required (businessName, address, zip, q, city, "
            "lat/lng, serviceType, or category)",
        )
    return service.search(db, fields)
