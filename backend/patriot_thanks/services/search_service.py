from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.orm import Session

from ..models import Business
from ..telemetry import get_current_trace, instrument_stage
from .business_service import business_payload, is_featured_veteran_owned
from .geocoding_service import Geocoder, resolve_search_center
from .incentive_service import EMPTY_RESOLUTION, ResolvedIncentives, resolve_incentives_for_businesses
from .places_service import ExternalPlace, PlacesDirectory, supplement
from .query_builder import (
    BusinessFilter,
    BusinessSearchFields,
    Condition,
    FilterSummary,
    SearchCenter,
    build_business_filter,
)

logger = logging.getLogger(__name__)

VERIFIED_STATUSES = frozenset({"verified", "certified"})


@dataclass
class SearchHit:
    """One row of the merged result list."""

    name: str
    distance_miles: float | None
    name_matches: bool
    featured_veteran_owned: bool
    veteran_owned: bool
    business: Business | None = None
    resolution: ResolvedIncentives = EMPTY_RESOLUTION
    place: ExternalPlace | None = None

    @property
    def is_external(self) -> bool:
        return self.place is not None

    def rank_key(self) -> tuple[bool, bool, bool, float, str]:
        distance = self.distance_miles if self.distance_miles is not None else math.inf
        return (
            not self.featured_veteran_owned,
            not self.veteran_owned,
            not self.name_matches,
            distance,
            self.name.lower(),
        )

    def to_payload(self) -> dict[str, Any]:
        if self.place is not None:
            payload = self.place.to_payload()
        else:
            payload = business_payload(self.business)
            offers = [offer.to_payload() for offer in self.resolution.offers]
            payload["incentives"] = offers
            payload["hasIncentives"] = bool(offers)
            payload["incentiveSource"] = self.resolution.kind
            payload["isChain"] = bool(self.business.chain_id or self.business.chain_name)
            payload["isExternal"] = False
        payload["distance"] = round(self.distance_miles, 2) if self.distance_miles is not None else None
        payload["nameMatches"] = self.name_matches
        return payload


def rank_hits(hits: list[SearchHit], center: SearchCenter | None) -> list[SearchHit]:
    if center is None:
        return sorted(hits, key=lambda hit: hit.name.lower())
    return sorted(hits, key=SearchHit.rank_key)


def _condition_expression(condition: Condition):
    column = getattr(Business, condition.field)
    if condition.op == "contains":
        return column.icontains(condition.value, autoescape=True)
    if condition.op == "fuzzy":
        # Prefilter only; BusinessFilter.matches makes the final call.
        return column.ilike("%" + "%".join(condition.value) + "%")
    if condition.op == "iequals":
        return func.lower(column) == condition.value.lower()
    return column == condition.value


def apply_filter(stmt: Select, business_filter: BusinessFilter) -> Select:
    stmt = stmt.where(Business.status == business_filter.status)
    for clause in business_filter.clauses:
        stmt = stmt.where(or_(*[_condition_expression(condition) for condition in clause.any_of]))

    cap = business_filter.cap
    if cap is not None:
        min_lat, max_lat, min_lng, max_lng = cap.bounding_box()
        stmt = stmt.where(
            and_(
                Business.lat.is_not(None),
                Business.lng.is_not(None),
                Business.lat.between(min_lat, max_lat),
                Business.lng.between(min_lng, max_lng),
            )
        )
    return stmt


class SearchService:
    def __init__(
        self,
        geocoder: Geocoder | None = None,
        places: PlacesDirectory | None = None,
        *,
        result_limit: int = 500,
        places_limit: int = 20,
    ) -> None:
        self.geocoder = geocoder
        self.places = places
        self.result_limit = result_limit
        self.places_limit = places_limit

    @staticmethod
    def _record_trace_search(search_type: str) -> None:
        trace = get_current_trace()
        if trace is not None:
            trace.mark_search(search_type)

    @staticmethod
    def _record_trace_results(local_count: int, external_count: int) -> None:
        trace = get_current_trace()
        if trace is not None:
            trace.set_result_summary(local_count, external_count)

    @instrument_stage("db")
    def _fetch_local(self, db: Session, business_filter: BusinessFilter) -> list[Business]:
        stmt = apply_filter(select(Business), business_filter).order_by(Business.name.asc())
        candidates = db.execute(stmt).scalars().all()
        matched = [business for business in candidates if business_filter.matches(business)]
        if business_filter.center is not None:
            cap = business_filter.cap
            matched.sort(key=lambda business: cap.distance_miles(business.lat, business.lng))
        return matched[: self.result_limit]

    @instrument_stage("db")
    def _resolve_incentives(self, db: Session, businesses: list[Business]) -> dict[str, ResolvedIncentives]:
        return resolve_incentives_for_businesses(db, businesses)

    @staticmethod
    def _local_hit(
        business: Business,
        business_filter: BusinessFilter,
        resolution: ResolvedIncentives,
    ) -> SearchHit:
        center = business_filter.center
        distance = None
        name_matches = False
        if center is not None:
            distance = business_filter.cap.distance_miles(business.lat, business.lng)
            name_matches = business_filter.name_matches(business)
        return SearchHit(
            name=business.name,
            distance_miles=distance,
            name_matches=name_matches,
            featured_veteran_owned=is_featured_veteran_owned(business),
            veteran_owned=business.is_veteran_owned,
            business=business,
            resolution=resolution,
        )

    @staticmethod
    def _external_hit(place: ExternalPlace, business_filter: BusinessFilter) -> SearchHit:
        cap = business_filter.cap
        return SearchHit(
            name=place.name,
            distance_miles=cap.distance_miles(place.lat, place.lng) if cap is not None else None,
            name_matches=False,
            featured_veteran_owned=False,
            veteran_owned=False,
            place=place,
        )

    @staticmethod
    def _vbo_stats(businesses: list[Business]) -> dict[str, int]:
        veteran_owned = [business for business in businesses if business.is_veteran_owned]
        return {
            "total": len(veteran_owned),
            "featured": sum(1 for business in veteran_owned if is_featured_veteran_owned(business)),
            "verified": sum(
                1 for business in veteran_owned if business.veteran_verification_status in VERIFIED_STATUSES
            ),
        }

    def search(self, db: Session, fields: BusinessSearchFields) -> dict[str, Any]:
        search_type = fields.search_type()
        self._record_trace_search(search_type)

        center = resolve_search_center(fields, self.geocoder)
        business_filter = build_business_filter(fields, center)
        businesses = self._fetch_local(db, business_filter)
        resolutions = self._resolve_incentives(db, businesses)

        if fields.service_type:
            businesses = [
                business
                for business in businesses
                if any(offer.applies_to(fields.service_type) for offer in resolutions[str(business.id)].offers)
            ]

        with_external = center is not None and not fields.service_type
        external: list[ExternalPlace] = []
        if with_external:
            external = supplement(fields, center, businesses, self.places, limit=self.places_limit)

        hits = self._rank(businesses, external, business_filter, resolutions)
        self._record_trace_results(len(businesses), len(external))
        logger.info(
            "Search type=%s center=%s clauses=%s local=%s external=%s",
            search_type,
            center.source if center else None,
            ",".join(business_filter.clause_kinds()) or "-",
            len(businesses),
            len(external),
        )

        results = [hit.to_payload() for hit in hits]
        return {
            "results": results,
            "total": len(results),
            "localCount": len(businesses),
            "externalCount": len(external),
            "searchType": search_type,
            "filters": FilterSummary.from_fields(fields, center).to_payload(),
            "vboStats": self._vbo_stats(businesses),
            "hasLocationSearch": center is not None,
            "hasBusinessNameSearch": fields.business_name is not None,
            "hasAddressSearch": fields.address is not None,
        }

    @instrument_stage("ranking")
    def _rank(
        self,
        businesses: list[Business],
        external: list[ExternalPlace],
        business_filter: BusinessFilter,
        resolutions: dict[str, ResolvedIncentives],
    ) -> list[SearchHit]:
        hits = [
            self._local_hit(business, business_filter, resolutions.get(str(business.id), EMPTY_RESOLUTION))
            for business in businesses
        ]
        hits.extend(self._external_hit(place, business_filter) for place in external)
        return rank_hits(hits, business_filter.center)
