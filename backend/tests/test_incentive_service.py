import pytest
from conftest import make_business, make_user

from patriot_thanks.errors import ConflictError, NotFoundError, ValidationError
from patriot_thanks.models import Chain, ChainIncentive, Incentive
from patriot_thanks.services.incentive_service import (
    create_incentive,
    disable_incentive,
    list_incentives,
    resolve_incentives,
    resolve_incentives_for_businesses,
    update_incentive,
)


def _chain(session, universal=True, categories=("VT",), active=True):
    chain = Chain(name="Lowe's", business_type="HARDW", universal_incentives=universal)
    chain.incentives.append(
        ChainIncentive(eligible_categories=list(categories), amount=10, information="Chain-wide", is_active=active)
    )
    session.add(chain)
    session.commit()
    return chain


def _member_of(session, chain, inherits=True):
    return make_business(
        session,
        "Lowe's of Omaha",
        category="HARDW",
        chain_id=chain.id,
        chain_name=chain.name,
        universal_incentives=inherits,
        is_chain_location=True,
    )


def test_inheriting_location_gets_only_chain_offers(db_session):
    chain = _chain(db_session)
    store = _member_of(db_session, chain)
    db_session.add(Incentive(business_id=store.id, eligible_categories=["SP"], amount=5, information="Local"))
    db_session.commit()

    resolution = resolve_incentives(db_session, store.id)

    assert resolution.kind == "inherited"
    assert resolution.chain_id == str(chain.id)
    assert [offer.eligible_categories for offer in resolution.offers] == [("VT",)]


def test_location_with_inheritance_off_gets_only_owned_offers(db_session):
    chain = _chain(db_session)
    store = _member_of(db_session, chain, inherits=False)
    db_session.add(Incentive(business_id=store.id, eligible_categories=["SP"], amount=5, information="Local"))
    db_session.commit()

    resolution = resolve_incentives(db_session, store.id)

    assert resolution.kind == "owned"
    assert [offer.eligible_categories for offer in resolution.offers] == [("SP",)]


def test_inactive_chain_incentives_and_unavailable_offers_are_hidden(db_session):
    chain = _chain(db_session, active=False)
    store = _member_of(db_session, chain)
    standalone = make_business(db_session, "Corner Shop")
    db_session.add(Incentive(business_id=standalone.id, type="VT", amount=5, information="Old", is_available=False))
    db_session.commit()

    resolved = resolve_incentives_for_businesses(db_session, [store, standalone])

    assert resolved[str(store.id)].offers == ()
    assert resolved[str(standalone.id)].offers == ()


def test_unknown_business_resolves_to_nothing(db_session):
    assert resolve_incentives(db_session, "not-a-uuid").offers == ()


def test_legacy_type_counts_as_single_category(db_session):
    business = make_business(db_session)
    db_session.add(Incentive(business_id=business.id, type="fr", amount=15, information="Legacy"))
    db_session.commit()

    [offer] = resolve_incentives(db_session, business.id).offers

    assert offer.eligible_categories == ("FR",)
    assert offer.applies_to("fr")


def test_create_rejects_categories_the_chain_already_covers(db_session):
    user = make_user(db_session)
    chain = _chain(db_session, categories=("VT", "AD"))
    store = _member_of(db_session, chain)

    with pytest.raises(ConflictError) as excinfo:
        create_incentive(
            db_session,
            {"business_id": str(store.id), "eligible_categories": ["AD", "SP"], "amount": 5, "information": "x"},
            user,
        )

    assert excinfo.value.details == {"overlapping_categories": ["AD"]}


def test_create_requires_core_fields(db_session):
    user = make_user(db_session)
    with pytest.raises(ValidationError):
        create_incentive(db_session, {"eligible_categories": ["VT"], "amount": 5}, user)


def test_create_update_and_disable(db_session):
    user = make_user(db_session)
    business = make_business(db_session)

    incentive = create_incentive(
        db_session,
        {"business_id": str(business.id), "type": "VT", "amount": "10", "information": "Ten percent"},
        user,
    )
    assert incentive.eligible_categories == ["VT"]
    assert incentive.amount == 10.0

    update_incentive(db_session, incentive.id, {"eligible_categories": ["VT", "OT"], "amount": 12}, user)
    listed = list_incentives(db_session, category="ot")
    assert listed["pagination"]["total"] == 1
    assert listed["incentives"][0]["business"]["bname"] == business.name

    disable_incentive(db_session, incentive.id, user)
    assert list_incentives(db_session)["incentives"] == []


def test_update_unknown_incentive(db_session):
    user = make_user(db_session)
    with pytest.raises(NotFoundError):
        update_incentive(db_session, "2d6e9f5a-2f2c-4d8a-9a57-8f2f4c8b9a10", {"amount": 1}, user)
