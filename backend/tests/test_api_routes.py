import json
import math

from conftest import StaticGeocoder, make_business
from sqlalchemy import select

from patriot_thanks.models import Chain, ChainIncentive, Incentive, VerificationDocument
from patriot_thanks.services.distance_service import EARTH_RADIUS_MILES, Coordinates
from patriot_thanks.services.search_service import SearchService


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_search_requires_a_parameter(client):
    response = client.get("/api/search")
    assert response.status_code == 400
    assert response.json()["message"].startswith("At least one search parameter is required")


def test_search_rejects_half_a_coordinate_and_bad_radius(client):
    assert client.get("/api/search", params={"lat": 41.2}).status_code == 400
    assert client.get("/api/search", params={"lat": 141.2, "lng": 10}).status_code == 400
    bad_radius = client.get("/api/search", params={"lat": 41.2, "lng": -95.9, "radius": -5})
    assert bad_radius.status_code == 400
    assert bad_radius.json()["errors"][0]["field"] == "query.radius"
    assert client.get("/api/search", params={"lat": 41.2, "lng": -95.9, "radius": 101}).status_code == 400


def test_search_zero_radius_uses_default(client):
    response = client.get("/api/search", params={"lat": 41.2, "lng": -95.9, "radius": 0})

    assert response.status_code == 200
    assert response.json()["filters"]["location"]["radius"] == 25


def test_search_by_zip_and_radius_uses_geocoded_center(client, db_session):
    center = Coordinates(41.9779, -91.6656)
    north = math.degrees(1 / EARTH_RADIUS_MILES)
    make_business(db_session, "Near Other Zip", zip="52403", lat=center.lat + 5 * north, lng=center.lng)
    make_business(db_session, "Far Same Zip", zip="52402", lat=center.lat + 60 * north, lng=center.lng)
    geocoder = StaticGeocoder(center)
    client.app.state.search_service = SearchService(geocoder, None)

    body = client.get("/api/search", params={"zip": "52402", "radius": 25}).json()

    assert geocoder.calls == ["52402"]
    assert [item["bname"] for item in body["results"]] == ["Near Other Zip"]
    assert body["filters"]["location"]["source"] == "geocoded_zip"
    assert body["searchType"] == "address"


def test_search_by_name(client, db_session):
    make_business(db_session, "Main Street Diner")
    make_business(db_session, "Hardware Hank", category="HARDW")

    response = client.get("/api/search", params={"businessName": "main st"})

    assert response.status_code == 200
    body = response.json()
    assert [item["bname"] for item in body["results"]] == ["Main Street Diner"]
    assert body["searchType"] == "business_name"
    assert body["filters"]["businessName"] == "main st"
    assert "X-Request-Id" in response.headers
    assert json.loads(response.headers["X-Search-Performance"])["local_count"] == 1


def test_chains_discovery_and_invalid_operation(client):
    listing = client.get("/api/chains")
    assert "sync_locations" in listing.json()["operations"]
    assert client.get("/api/chains", params={"operation": "explode"}).status_code == 400


def test_chain_mutations_require_admin(client, member_headers):
    body = {"chain_name": "Applebee's", "business_type": "REST"}
    anonymous = client.post("/api/chains", params={"operation": "create"}, json=body)
    member = client.post("/api/chains", params={"operation": "create"}, json=body, headers=member_headers)

    assert anonymous.status_code == 401
    assert member.status_code == 403


def test_chain_create_and_read_back(client, admin_headers):
    created = client.post(
        "/api/chains",
        params={"operation": "create"},
        json={"chain_name": "Applebee's", "business_type": "rest", "universal_incentives": True},
        headers=admin_headers,
    )
    assert created.status_code == 201
    chain_id = created.json()["chain"]["_id"]

    fetched = client.get("/api/chains", params={"operation": "get", "id": chain_id})
    assert fetched.json()["chain"]["business_type"] == "REST"

    missing = client.get("/api/chains", params={"operation": "search"})
    assert missing.status_code == 400


def test_business_detail_reports_incentive_source(client, db_session):
    chain = Chain(name="Lowe's", business_type="HARDW", universal_incentives=True)
    chain.incentives.append(ChainIncentive(eligible_categories=["VT"], amount=10, information="10% off"))
    db_session.add(chain)
    db_session.commit()
    store = make_business(db_session, "Lowe's #1", chain_id=chain.id, chain_name=chain.name, universal_incentives=True)

    detail = client.get(f"/api/businesses/{store.id}")
    incentives = client.get(f"/api/businesses/{store.id}/incentives")

    assert detail.json()["business"]["incentiveSource"] == "inherited"
    assert detail.json()["business"]["chain"]["chain_name"] == "Lowe's"
    assert incentives.json()["source"] == "inherited"
    assert incentives.json()["chain_id"] == str(chain.id)


def test_business_lookup_errors(client):
    assert client.get("/api/businesses/not-a-uuid").status_code == 400
    assert client.get("/api/businesses/2d6e9f5a-2f2c-4d8a-9a57-8f2f4c8b9a10").status_code == 404


def test_business_create_validation_and_admin_delete(client, member_headers, admin_headers):
    invalid = client.post("/api/businesses", json={"name": "No Address", "category": "REST"}, headers=member_headers)
    assert invalid.status_code == 400
    assert "errors" in invalid.json()

    created = client.post(
        "/api/businesses",
        json={
            "bname": "Liberty Books",
            "type": "book",
            "address1": "5 Oak",
            "city": "Lincoln",
            "state": "ne",
            "zip": "68508",
        },
        headers=member_headers,
    )
    assert created.status_code == 201
    business_id = created.json()["business"]["_id"]
    assert created.json()["business"]["state"] == "NE"

    assert client.delete(f"/api/businesses/{business_id}", headers=member_headers).status_code == 403
    deleted = client.delete(f"/api/businesses/{business_id}", headers=admin_headers)
    assert deleted.json()["status"] == "inactive"
    assert client.get("/api/businesses").json()["pagination"]["total"] == 0


def test_incentive_routes(client, db_session, member_headers, admin_headers):
    business = make_business(db_session)

    created = client.post(
        "/api/incentives",
        json={
            "business_id": str(business.id),
            "eligible_categories": ["VT", "FR"],
            "amount": 15,
            "information": "Weekdays",
        },
        headers=member_headers,
    )
    assert created.status_code == 201
    incentive_id = created.json()["incentive"]["_id"]

    listed = client.get("/api/incentives", params={"type": "FR"}).json()
    assert listed["pagination"]["total"] == 1

    assert client.delete(f"/api/incentives/{incentive_id}", headers=admin_headers).status_code == 200
    assert client.get("/api/incentives").json()["incentives"] == []
    assert client.get(f"/api/incentives/{incentive_id}").json()["incentive"]["is_available"] is False


def test_incentive_overlap_returns_conflict_details(client, db_session, member_headers):
    chain = Chain(name="Lowe's", business_type="HARDW", universal_incentives=True)
    chain.incentives.append(ChainIncentive(eligible_categories=["VT"], amount=10, information="10% off"))
    db_session.add(chain)
    db_session.commit()
    store = make_business(db_session, "Lowe's #1", chain_id=chain.id, chain_name=chain.name, universal_incentives=True)

    response = client.post(
        "/api/incentives",
        json={"business_id": str(store.id), "eligible_categories": ["VT"], "amount": 5, "information": "x"},
        headers=member_headers,
    )

    assert response.status_code == 409
    assert response.json()["overlapping_categories"] == ["VT"]


def test_favorites_round_trip(client, db_session, member_headers):
    business = make_business(db_session)
    incentive = Incentive(business_id=business.id, eligible_categories=["VT"], amount=10, information="x")
    db_session.add(incentive)
    db_session.commit()

    favorite_business = {"itemId": str(business.id), "type": "business"}
    first = client.post("/api/favorites", json=favorite_business, headers=member_headers)
    second = client.post("/api/favorites", json=favorite_business, headers=member_headers)
    client.post("/api/favorites", json={"itemId": str(incentive.id), "type": "incentive"}, headers=member_headers)

    assert first.json()["message"] == "business added to favorites"
    assert second.json()["message"] == "business already in favorites"
    favorites = client.get("/api/favorites", headers=member_headers).json()["favorites"]
    assert [item["bname"] for item in favorites["businesses"]] == [business.name]
    assert favorites["incentives"][0]["business"]["bname"] == business.name

    removed = client.delete(
        "/api/favorites", params={"itemId": str(business.id), "type": "business"}, headers=member_headers
    )
    assert removed.json()["message"] == "business removed from favorites"
    bad_kind = client.post("/api/favorites", json={"itemId": str(business.id), "type": "chain"}, headers=member_headers)
    assert bad_kind.status_code == 400


def test_verification_upload(client, database, settings, member, member_headers, tmp_path):
    settings.upload_dir = str(tmp_path)

    rejected = client.post(
        "/api/veteran-verification/upload",
        files={"document": ("dd214.txt", b"text", "text/plain")},
        data={"documentType": "DD214"},
        headers=member_headers,
    )
    assert rejected.status_code == 400

    accepted = client.post(
        "/api/veteran-verification/upload",
        files={"document": ("my dd214.pdf", b"%PDF-1.4", "application/pdf")},
        data={"documentType": "DD214"},
        headers=member_headers,
    )
    assert accepted.status_code == 200
    assert accepted.json()["verificationStatus"] == "pending"

    stored = list((tmp_path / "veteran-verification").iterdir())
    assert len(stored) == 1
    assert stored[0].name.startswith(f"{member.id}_DD214_")
    assert stored[0].name.endswith("_my_dd214.pdf")
    with database.session() as session:
        assert session.execute(select(VerificationDocument)).scalar_one().size_bytes == 8


def test_admin_migration_endpoint(client, db_session, admin_headers, member_headers):
    business = make_business(db_session)
    db_session.add(Incentive(business_id=business.id, type=None, amount=0, information="legacy"))
    db_session.commit()

    assert client.post("/api/admin/migrate", json={}, headers=member_headers).status_code == 403
    dry = client.post("/api/admin/migrate", json={"dryRun": True}, headers=admin_headers).json()
    assert dry["dry_run"] is True
    assert dry["incentives"]["migrated"] == 1

    real = client.post("/api/admin/migrate", json={}, headers=admin_headers).json()
    assert real["success"] is True
    with client.app.state.database.session() as session:
        assert session.execute(select(Incentive)).scalar_one().eligible_categories == ["NA"]
