from types import SimpleNamespace

from patriot_thanks.services.query_builder import (
    BusinessSearchFields,
    SearchCenter,
    build_business_filter,
    compact_text,
)


def _record(**overrides):
    values = {
        "name": "Joe's Crab Shack",
        "chain_name": None,
        "address1": "1 River Rd",
        "address2": None,
        "city": "Omaha",
        "state": "NE",
        "zip": "68102",
        "category": "REST",
        "status": "active",
        "lat": None,
        "lng": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_compact_text_drops_punctuation_and_spaces():
    assert compact_text("Joe's  Crab-Shack") == "joescrabshack"
    assert compact_text(None) == ""


def test_name_filter_is_whitespace_and_punctuation_tolerant():
    business_filter = build_business_filter(BusinessSearchFields(business_name="joes crabshack"))

    assert business_filter.clause_kinds() == ["name"]
    assert business_filter.matches(_record())
    assert not business_filter.matches(_record(name="Red Lobster"))


def test_name_filter_matches_chain_name():
    business_filter = build_business_filter(BusinessSearchFields(business_name="Home Depot"))

    assert business_filter.matches(_record(name="Store #4410", chain_name="The Home Depot"))


def test_inactive_businesses_never_match():
    business_filter = build_business_filter(BusinessSearchFields(city="omaha"))

    assert business_filter.matches(_record())
    assert not business_filter.matches(_record(status="inactive"))


def test_keyword_that_names_a_category_matches_by_category():
    business_filter = build_business_filter(BusinessSearchFields(q="restaurants"))

    assert business_filter.matches(_record(name="Blue Plate", category="REST"))
    assert not business_filter.matches(_record(name="Blue Plate", category="GROC"))


def test_postal_code_address_without_center_is_exact_zip():
    business_filter = build_business_filter(BusinessSearchFields(address="68102"))

    assert business_filter.clause_kinds() == ["zip"]
    assert business_filter.matches(_record())
    assert not business_filter.matches(_record(zip="68103"))


def test_postal_code_prefers_address_then_zip():
    assert BusinessSearchFields(zip=" 52402 ").postal_code == "52402"
    assert BusinessSearchFields(address="68102", zip="52402").postal_code == "68102"
    assert BusinessSearchFields(address="Cedar Rapids", zip="52402").postal_code is None
    assert BusinessSearchFields(zip="5240").postal_code is None
    assert BusinessSearchFields(zip="52402").search_type() == "address"


def test_center_drops_area_clauses_and_defers_name():
    fields = BusinessSearchFields(business_name="Crab", address="68102", state="NE", category="REST")
    center = SearchCenter(lat=41.2565, lng=-95.9345, radius_miles=10.0, source="geocoded_zip")
    business_filter = build_business_filter(fields, center)

    assert business_filter.clause_kinds() == ["category"]
    assert business_filter.name_deferred
    near = _record(name="Pizza Palace", zip="99999", state="IA", lat=41.26, lng=-95.93)
    assert business_filter.matches(near)
    assert not business_filter.name_matches(near)
    assert business_filter.name_matches(_record(lat=41.26, lng=-95.93))


def test_search_type_and_emptiness():
    assert BusinessSearchFields().is_empty()
    assert BusinessSearchFields(service_type="vt").search_type() == "service_type_only"
    assert BusinessSearchFields(business_name="x", address="y").search_type() == "business_and_location"
    assert BusinessSearchFields(lat=1.0, lng=2.0).search_type() == "location"
    assert BusinessSearchFields(category=" rest ").category == "REST"
