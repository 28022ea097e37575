from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal

from ..catalog import KEYWORD_CATEGORIES
from .distance_service import Coordinates, SphericalCap

ACTIVE_STATUS = "active"
POSTAL_CODE_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")
_NON_ALNUM = re.compile(r"[^0-9a-z]+")
_WHITESPACE = re.compile(r"\s+")

ConditionOp = Literal["contains", "fuzzy", "iequals", "equals"]
CenterSource = Literal["coordinates", "geocoded_zip"]

# Clause kinds that name an administrative area and give way to radius search.
AREA_CLAUSE_KINDS: frozenset[str] = frozenset({"zip", "city", "state"})
ADDRESS_FIELDS: tuple[str, ...] = ("address1", "address2", "city", "state", "zip")
KEYWORD_FIELDS: tuple[str, ...] = ("name", "address1", "category", "chain_name")
NAME_FIELDS: tuple[str, ...] = ("name", "chain_name")


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def compact_text(value: str | None) -> str:
    """Lowercase alphanumerics only: punctuation dropped, whitespace fully elastic."""
    if not value:
        return ""
    return _NON_ALNUM.sub("", value.lower())


def normalize_postal_code(value: str) -> str:
    return value.strip().replace("-", "")


def is_postal_code(value: str | None) -> bool:
    return bool(value) and POSTAL_CODE_PATTERN.match(value.strip()) is not None


@dataclass
class BusinessSearchFields:
    business_name: str | None = None
    address: str | None = None
    zip: str | None = None
    q: str | None = None
    city: str | None = None
    state: str | None = None
    category: str | None = None
    service_type: str | None = None
    lat: float | None = None
    lng: float | None = None
    radius_miles: float = 25.0

    def __post_init__(self) -> None:
        self.business_name = _clean(self.business_name)
        self.address = _clean(self.address)
        self.zip = _clean(self.zip)
        self.q = _clean(self.q)
        self.city = _clean(self.city)
        self.state = _clean(self.state)
        category = _clean(self.category)
        self.category = category.upper() if category else None
        service_type = _clean(self.service_type)
        self.service_type = service_type.upper() if service_type else None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def postal_code(self) -> str | None:
        if is_postal_code(self.address):
            return self.address
        if not self.address and is_postal_code(self.zip):
            return self.zip
        return None

    def is_empty(self) -> bool:
        return not any(
            (
                self.business_name,
                self.address,
                self.zip,
                self.q,
                self.city,
                self.has_coordinates,
                self.service_type,
                self.category,
            )
        )

    def search_type(self) -> str:
        if self.business_name and self.address:
            return "business_and_location"
        if self.business_name:
            return "business_name"
        if self.address or self.zip:
            return "address"
        if self.service_type and not self.q and not self.city:
            return "service_type_only"
        if self.city:
            return "city"
        if self.q:
            return "keyword"
        if self.has_coordinates:
            return "location"
        return "unknown"


@dataclass(frozen=True)
class SearchCenter:
    lat: float
    lng: float
    radius_miles: float
    source: CenterSource

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.lat, self.lng)

    def cap(self) -> SphericalCap:
        return SphericalCap.from_miles(self.coordinates, self.radius_miles)

    def to_payload(self) -> dict[str, Any]:
        return {"lat": self.lat, "lng": self.lng, "radius": self.radius_miles, "source": self.source}


@dataclass(frozen=True)
class Condition:
    field: str
    op: ConditionOp
    value: str

    def matches(self, record: Any) -> bool:
        raw = getattr(record, self.field, None)
        if raw is None:
            return False
        text = str(raw)
        if self.op == "contains":
            return self.value.lower() in text.lower()
        if self.op == "fuzzy":
            return bool(self.value) and self.value in compact_text(text)
        if self.op == "iequals":
            return text.lower() == self.value.lower()
        return text == self.value


@dataclass(frozen=True)
class Clause:
    """OR-group of conditions; clauses in a filter are ANDed."""

    kind: str
    any_of: tuple[Condition, ...]

    def matches(self, record: Any) -> bool:
        return any(condition.matches(record) for condition in self.any_of)


@dataclass(frozen=True)
class BusinessFilter:
    clauses: tuple[Clause, ...] = ()
    status: str = ACTIVE_STATUS
    center: SearchCenter | None = None
    name_clause: Clause | None = None
    name_deferred: bool = False

    @property
    def cap(self) -> SphericalCap | None:
        if self.center is None:
            return None
        return self.center.cap()

    def clause_kinds(self) -> list[str]:
        return [clause.kind for clause in self.clauses]

    def matches(self, record: Any) -> bool:
        if getattr(record, "status", None) != self.status:
            return False
        if not all(clause.matches(record) for clause in self.clauses):
            return False
        cap = self.cap
        if cap is not None and not cap.contains(getattr(record, "lat", None), getattr(record, "lng", None)):
            return False
        return True

    def name_matches(self, record: Any) -> bool:
        if self.name_clause is None:
            return False
        return self.name_clause.matches(record)


def _name_clause(business_name: str) -> Clause:
    conditions: list[Condition] = []
    compact = compact_text(business_name)
    for field_name in NAME_FIELDS:
        conditions.append(Condition(field_name, "contains", business_name))
        if compact:
            conditions.append(Condition(field_name, "fuzzy", compact))
    return Clause("name", tuple(conditions))


def _keyword_clause(q: str) -> Clause:
    conditions = [Condition(field_name, "contains", q) for field_name in KEYWORD_FIELDS]
    keyword_category = KEYWORD_CATEGORIES.get(_WHITESPACE.sub(" ", q.lower()))
    if keyword_category is not None:
        conditions.append(Condition("category", "equals", keyword_category))
    return Clause("keyword", tuple(conditions))


def build_business_filter(
    fields: BusinessSearchFields,
    center: SearchCenter | None = None,
) -> BusinessFilter:
    """Translate search fields into a filter over active businesses.

    ``center`` is the resolved coordinate basis (explicit lat/lng or a
    geocoded postal code). When it is present the business name becomes a
    ranking signal instead of a hard clause, and administrative-area
    clauses are dropped in favour of the radius.
    """
    clauses: list[Clause] = []
    name_clause = _name_clause(fields.business_name) if fields.business_name else None
    name_deferred = name_clause is not None and center is not None
    if name_clause is not None and not name_deferred:
        clauses.append(name_clause)

    if fields.address:
        if fields.postal_code is not None:
            # Only survives when geocoding produced no center.
            clauses.append(Clause("zip", (Condition("zip", "equals", normalize_postal_code(fields.address)),)))
        else:
            clauses.append(
                Clause("address", tuple(Condition(name, "contains", fields.address) for name in ADDRESS_FIELDS))
            )

    if fields.zip:
        clauses.append(Clause("zip", (Condition("zip", "equals", normalize_postal_code(fields.zip)),)))

    if fields.q:
        clauses.append(_keyword_clause(fields.q))

    if fields.city:
        clauses.append(Clause("city", (Condition("city", "contains", fields.city),)))

    if fields.state:
        clauses.append(Clause("state", (Condition("state", "iequals", fields.state),)))

    if fields.category:
        clauses.append(Clause("category", (Condition("category", "equals", fields.category),)))

    if center is not None:
        clauses = [clause for clause in clauses if clause.kind not in AREA_CLAUSE_KINDS]

    return BusinessFilter(
        clauses=tuple(clauses),
        center=center,
        name_clause=name_clause,
        name_deferred=name_deferred,
    )


@dataclass
class FilterSummary:
    """Echo of the inputs returned to clients alongside results."""

    business_name: str | None
    address: str | None
    zip: str | None
    q: str | None
    city: str | None
    state: str | None
    category: str | None
    service_type: str | None
    location: dict[str, Any] | None = field(default=None)

    @classmethod
    def from_fields(cls, fields: BusinessSearchFields, center: SearchCenter | None) -> "FilterSummary":
        return cls(
            business_name=fields.business_name,
            address=fields.address,
            zip=fields.zip,
            q=fields.q,
            city=fields.city,
            state=fields.state,
            category=fields.category,
            service_type=fields.service_type,
            location=center.to_payload() if center is not None else None,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "businessName": self.business_name,
            "address": self.address,
            "zip": self.zip,
            "query": self.q,
            "city": self.city,
            "state": self.state,
            "type": self.category,
            "serviceType": self.service_type,
            "location": self.location,
        }
