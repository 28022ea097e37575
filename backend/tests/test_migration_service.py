from conftest import make_business

from patriot_thanks.models import Chain, ChainIncentive, Incentive
from patriot_thanks.services.migration_service import (
    categories_for_type,
    migrate_chain_incentive_categories,
    migrate_incentive_categories,
)


def test_categories_for_type():
    assert categories_for_type("vt") == ["VT"]
    assert categories_for_type("  ") == ["NA"]
    assert categories_for_type(None) == ["NA"]


def test_migration_backfills_only_records_without_categories(db_session):
    business = make_business(db_session)
    legacy = Incentive(business_id=business.id, type="AD", amount=10, information="legacy")
    untyped = Incentive(business_id=business.id, type=None, amount=5, information="untyped")
    current = Incentive(business_id=business.id, eligible_categories=["VT", "SP"], amount=5, information="new")
    db_session.add_all([legacy, untyped, current])
    db_session.commit()

    summary = migrate_incentive_categories(db_session)

    assert (summary.total, summary.migrated, summary.skipped, summary.errors) == (3, 2, 1, 0)
    db_session.expire_all()
    assert db_session.get(Incentive, legacy.id).eligible_categories == ["AD"]
    assert db_session.get(Incentive, untyped.id).eligible_categories == ["NA"]
    assert db_session.get(Incentive, current.id).eligible_categories == ["VT", "SP"]


def test_dry_run_reports_without_writing(db_session):
    business = make_business(db_session)
    legacy = Incentive(business_id=business.id, type="FR", amount=10, information="legacy")
    db_session.add(legacy)
    db_session.commit()

    summary = migrate_incentive_categories(db_session, dry_run=True)

    assert summary.migrated == 1
    assert "would set eligible_categories" in summary.logs[0]
    db_session.expire_all()
    assert db_session.get(Incentive, legacy.id).eligible_categories is None


def test_chain_incentives_are_migrated(db_session):
    chain = Chain(name="Culver's", business_type="REST")
    chain.incentives.append(ChainIncentive(eligible_categories=[], type="MR", amount=10))
    db_session.add(chain)
    db_session.commit()

    summary = migrate_chain_incentive_categories(db_session)

    assert summary.success
    db_session.expire_all()
    assert db_session.get(Chain, chain.id).incentives[0].eligible_categories == ["MR"]
